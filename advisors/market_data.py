"""
market_data.py — Rate-limited, caching client for the Alpha Vantage API.

Every agent in the advisory panel asks for overlapping data (the same quote,
the same daily series), while the provider quota is small. This client:

- Checks a per-data-kind TTL cache before touching the network
- Routes every network call through the shared RateLimiter
- Collapses concurrent requests for the same cache key into one call
- Fetches bundles (symbols × requirements) in parallel, degrading failed
  pairs to "missing" instead of failing the bundle
- Raises typed errors for HTTP failures and for error / rate-limit payloads
  the provider returns with HTTP 200

Usage:
    client = MarketDataClient(api_key="...", tier="premium")
    quote = await client.get_quote("AAPL")
    price = await client.get_price("AAPL")
    bundle = await client.fetch_bundle(
        [DataRequirement.QUOTE, DataRequirement.FUNDAMENTALS], ["AAPL", "MSFT"]
    )
"""

from __future__ import annotations

import asyncio
import json
from enum import Enum
from typing import Any, Awaitable, Callable, Dict, Iterable, List, Mapping, Optional

import httpx
from loguru import logger

from data_cache import DataCache
from rate_limiter import RateLimiter


# ─── Constants ────────────────────────────────────────────────────────────────

AV_BASE_URL = "https://www.alphavantage.co/query"
DEFAULT_TIMEOUT = 15.0

MINUTE = 60.0
HOUR = 60 * MINUTE
DAY = 24 * HOUR


class DataRequirement(str, Enum):
    """Kinds of provider data an agent can ask for."""
    QUOTE = "quote"
    INTRADAY = "intraday"
    DAILY_SERIES = "daily_series"
    WEEKLY_SERIES = "weekly_series"
    FUNDAMENTALS = "fundamentals"
    INCOME_STATEMENT = "income_statement"
    BALANCE_SHEET = "balance_sheet"
    CASH_FLOW = "cash_flow"
    EARNINGS = "earnings"
    NEWS_SENTIMENT = "news_sentiment"
    SECTOR_PERFORMANCE = "sector_performance"
    TECHNICAL_RSI = "technical_rsi"
    TECHNICAL_MACD = "technical_macd"
    TECHNICAL_BBANDS = "technical_bbands"
    TECHNICAL_SMA = "technical_sma"
    TECHNICAL_EMA = "technical_ema"


TTL_SECONDS: Dict[DataRequirement, float] = {
    DataRequirement.QUOTE: 60.0,
    DataRequirement.INTRADAY: 60.0,
    DataRequirement.DAILY_SERIES: HOUR,
    DataRequirement.WEEKLY_SERIES: DAY,
    DataRequirement.FUNDAMENTALS: DAY,
    DataRequirement.INCOME_STATEMENT: DAY,
    DataRequirement.BALANCE_SHEET: DAY,
    DataRequirement.CASH_FLOW: DAY,
    DataRequirement.EARNINGS: HOUR,
    DataRequirement.NEWS_SENTIMENT: 5 * MINUTE,
    DataRequirement.SECTOR_PERFORMANCE: 15 * MINUTE,
    DataRequirement.TECHNICAL_RSI: 30 * MINUTE,
    DataRequirement.TECHNICAL_MACD: 30 * MINUTE,
    DataRequirement.TECHNICAL_BBANDS: 30 * MINUTE,
    DataRequirement.TECHNICAL_SMA: 30 * MINUTE,
    DataRequirement.TECHNICAL_EMA: 30 * MINUTE,
}
DEFAULT_TTL_SECONDS = 5 * MINUTE

TECHNICAL_INDICATORS: Dict[str, DataRequirement] = {
    "RSI": DataRequirement.TECHNICAL_RSI,
    "MACD": DataRequirement.TECHNICAL_MACD,
    "BBANDS": DataRequirement.TECHNICAL_BBANDS,
    "SMA": DataRequirement.TECHNICAL_SMA,
    "EMA": DataRequirement.TECHNICAL_EMA,
}

TECHNICAL_DEFAULTS: Dict[str, str] = {
    "time_period": "14",
    "series_type": "close",
    "interval": "daily",
}

INTRADAY_INTERVALS = frozenset({"1min", "5min", "15min", "30min", "60min"})


def get_ttl(requirement: DataRequirement) -> float:
    """Freshness window in seconds for a data kind (5 minutes if unlisted)."""
    return TTL_SECONDS.get(requirement, DEFAULT_TTL_SECONDS)


# ─── Exceptions ───────────────────────────────────────────────────────────────


class MarketDataError(Exception):
    """Base exception for provider fetch failures."""


class ProviderHTTPError(MarketDataError):
    """Non-2xx response or transport failure (including timeouts)."""

    def __init__(self, message: str, status_code: Optional[int] = None) -> None:
        super().__init__(message)
        self.status_code = status_code


class ProviderRateLimitError(MarketDataError):
    """Provider answered with a quota note instead of data."""


class ProviderResponseError(MarketDataError):
    """Provider answered with an error message or an unusable body."""


# ─── Market Data Client ───────────────────────────────────────────────────────


class MarketDataClient:
    """
    Caching, throttled access to every endpoint the advisors use.

    Parameters
    ----------
    api_key : provider API key.
    tier : "premium" (75/min) or "free" (25/day); ignored if rate_limiter given.
    rate_limiter, cache : injectable collaborators (fresh ones by default).
    base_url : provider endpoint.
    http_timeout : transport timeout in seconds.
    """

    def __init__(
        self,
        api_key: str,
        tier: str = "premium",
        *,
        rate_limiter: Optional[RateLimiter] = None,
        cache: Optional[DataCache] = None,
        base_url: str = AV_BASE_URL,
        http_timeout: float = DEFAULT_TIMEOUT,
    ) -> None:
        self.api_key = api_key
        self.base_url = base_url
        self.http_timeout = http_timeout
        self.rate_limiter = rate_limiter or RateLimiter(tier)
        self.cache = cache or DataCache()
        self._inflight: Dict[str, asyncio.Future] = {}

    # ─── Quote & Time Series ─────────────────────────────────────────────────

    async def get_quote(self, symbol: str) -> Dict[str, Any]:
        """Latest global quote."""
        symbol = symbol.upper()
        return await self.cached_fetch(
            f"{symbol}:quote",
            get_ttl(DataRequirement.QUOTE),
            {"function": "GLOBAL_QUOTE", "symbol": symbol},
        )

    async def get_daily_series(self, symbol: str) -> Dict[str, Any]:
        symbol = symbol.upper()
        return await self.cached_fetch(
            f"{symbol}:daily",
            get_ttl(DataRequirement.DAILY_SERIES),
            {"function": "TIME_SERIES_DAILY_ADJUSTED", "symbol": symbol, "outputsize": "compact"},
        )

    async def get_weekly_series(self, symbol: str) -> Dict[str, Any]:
        symbol = symbol.upper()
        return await self.cached_fetch(
            f"{symbol}:weekly",
            get_ttl(DataRequirement.WEEKLY_SERIES),
            {"function": "TIME_SERIES_WEEKLY_ADJUSTED", "symbol": symbol},
        )

    async def get_intraday(self, symbol: str, interval: str = "5min") -> Dict[str, Any]:
        if interval not in INTRADAY_INTERVALS:
            raise ValueError(f"interval must be one of {sorted(INTRADAY_INTERVALS)}, got {interval!r}")
        symbol = symbol.upper()
        return await self.cached_fetch(
            f"{symbol}:intraday:{interval}",
            get_ttl(DataRequirement.INTRADAY),
            {"function": "TIME_SERIES_INTRADAY", "symbol": symbol,
             "interval": interval, "outputsize": "compact"},
        )

    # ─── Fundamentals ────────────────────────────────────────────────────────

    async def get_fundamentals(self, symbol: str) -> Dict[str, Any]:
        """Company overview."""
        return await self._statement(symbol, "fundamentals", "OVERVIEW", DataRequirement.FUNDAMENTALS)

    async def get_income_statement(self, symbol: str) -> Dict[str, Any]:
        return await self._statement(
            symbol, "income_statement", "INCOME_STATEMENT", DataRequirement.INCOME_STATEMENT
        )

    async def get_balance_sheet(self, symbol: str) -> Dict[str, Any]:
        return await self._statement(
            symbol, "balance_sheet", "BALANCE_SHEET", DataRequirement.BALANCE_SHEET
        )

    async def get_cash_flow(self, symbol: str) -> Dict[str, Any]:
        return await self._statement(symbol, "cash_flow", "CASH_FLOW", DataRequirement.CASH_FLOW)

    async def get_earnings(self, symbol: str) -> Dict[str, Any]:
        return await self._statement(symbol, "earnings", "EARNINGS", DataRequirement.EARNINGS)

    async def _statement(
        self, symbol: str, kind: str, function: str, requirement: DataRequirement
    ) -> Dict[str, Any]:
        symbol = symbol.upper()
        return await self.cached_fetch(
            f"{symbol}:{kind}", get_ttl(requirement), {"function": function, "symbol": symbol}
        )

    # ─── Technicals, News, Sectors ───────────────────────────────────────────

    async def get_technical_indicator(
        self,
        symbol: str,
        indicator: str,
        params: Optional[Mapping[str, Any]] = None,
    ) -> Dict[str, Any]:
        """
        Fetch a technical indicator (RSI, MACD, BBANDS, SMA, EMA, ...).

        Defaults: time_period=14, series_type=close, interval=daily.
        Unknown indicators are cached with the RSI freshness window.
        """
        symbol = symbol.upper()
        indicator = indicator.upper()
        overrides = {k: str(v) for k, v in (params or {}).items()}
        requirement = TECHNICAL_INDICATORS.get(indicator, DataRequirement.TECHNICAL_RSI)
        cache_key = f"{symbol}:technical:{indicator}:{json.dumps(overrides, sort_keys=True)}"
        return await self.cached_fetch(
            cache_key,
            get_ttl(requirement),
            {"function": indicator, "symbol": symbol, **TECHNICAL_DEFAULTS, **overrides},
        )

    async def get_news_sentiment(self, tickers: str | Iterable[str]) -> Dict[str, Any]:
        if isinstance(tickers, str):
            ticker_str = tickers.upper()
        else:
            ticker_str = ",".join(t.upper() for t in tickers)
        return await self.cached_fetch(
            f"news:{ticker_str}",
            get_ttl(DataRequirement.NEWS_SENTIMENT),
            {"function": "NEWS_SENTIMENT", "tickers": ticker_str},
        )

    async def get_sector_performance(self) -> Dict[str, Any]:
        return await self.cached_fetch(
            "sector_performance",
            get_ttl(DataRequirement.SECTOR_PERFORMANCE),
            {"function": "SECTOR"},
        )

    async def search(self, keywords: str) -> Dict[str, Any]:
        """Symbol search. Throttled but never cached."""
        return await self.rate_limiter.schedule(
            lambda: self._fetch_from_api({"function": "SYMBOL_SEARCH", "keywords": keywords})
        )

    # ─── Prices ──────────────────────────────────────────────────────────────

    async def get_price(self, symbol: str) -> float:
        """Current price parsed from the global quote."""
        data = await self.get_quote(symbol)
        quote = data.get("Global Quote") or {}
        raw = quote.get("05. price")
        try:
            price = float(raw)
        except (TypeError, ValueError):
            raise ProviderResponseError(f"No price in quote for {symbol.upper()}: {quote!r}")
        if price <= 0:
            raise ProviderResponseError(f"Non-positive price {price} for {symbol.upper()}")
        return price

    async def get_prices(self, symbols: Iterable[str]) -> Dict[str, float]:
        """
        Current prices for many symbols, fetched concurrently.

        Symbols that fail are logged and left out of the result.
        """
        unique = sorted({s.upper() for s in symbols})
        if not unique:
            return {}
        results = await asyncio.gather(
            *(self.get_price(s) for s in unique), return_exceptions=True
        )
        prices: Dict[str, float] = {}
        for symbol, result in zip(unique, results):
            if isinstance(result, BaseException):
                logger.warning("Price fetch failed for {}: {}", symbol, result)
                continue
            prices[symbol] = result
        return prices

    # ─── Bundle Fetcher ──────────────────────────────────────────────────────

    async def fetch_bundle(
        self,
        requirements: Iterable[DataRequirement],
        symbols: Iterable[str],
    ) -> Dict[str, Dict[DataRequirement, Any]]:
        """
        Fetch symbols × requirements in parallel.

        Each (symbol, requirement) pair still goes through the cache and the
        shared limiter. A failing pair is logged and simply absent from the
        result; the bundle itself never raises for provider errors.
        """
        reqs = list(dict.fromkeys(requirements))
        syms = list(dict.fromkeys(s.upper() for s in symbols))
        result: Dict[str, Dict[DataRequirement, Any]] = {s: {} for s in syms}

        pairs = [(s, r) for s in syms for r in reqs]
        outcomes = await asyncio.gather(
            *(self._fetch_requirement(s, r) for s, r in pairs), return_exceptions=True
        )
        for (symbol, requirement), outcome in zip(pairs, outcomes):
            if isinstance(outcome, BaseException):
                logger.warning(
                    "Failed to fetch {} for {}: {}", requirement.value, symbol, outcome
                )
                continue
            result[symbol][requirement] = outcome
        return result

    def _fetch_requirement(self, symbol: str, requirement: DataRequirement) -> Awaitable[Any]:
        fetchers: Dict[DataRequirement, Callable[[], Awaitable[Any]]] = {
            DataRequirement.QUOTE: lambda: self.get_quote(symbol),
            DataRequirement.INTRADAY: lambda: self.get_intraday(symbol),
            DataRequirement.DAILY_SERIES: lambda: self.get_daily_series(symbol),
            DataRequirement.WEEKLY_SERIES: lambda: self.get_weekly_series(symbol),
            DataRequirement.FUNDAMENTALS: lambda: self.get_fundamentals(symbol),
            DataRequirement.INCOME_STATEMENT: lambda: self.get_income_statement(symbol),
            DataRequirement.BALANCE_SHEET: lambda: self.get_balance_sheet(symbol),
            DataRequirement.CASH_FLOW: lambda: self.get_cash_flow(symbol),
            DataRequirement.EARNINGS: lambda: self.get_earnings(symbol),
            DataRequirement.NEWS_SENTIMENT: lambda: self.get_news_sentiment(symbol),
            DataRequirement.SECTOR_PERFORMANCE: self.get_sector_performance,
            DataRequirement.TECHNICAL_RSI: lambda: self.get_technical_indicator(symbol, "RSI"),
            DataRequirement.TECHNICAL_MACD: lambda: self.get_technical_indicator(symbol, "MACD"),
            DataRequirement.TECHNICAL_BBANDS: lambda: self.get_technical_indicator(symbol, "BBANDS"),
            DataRequirement.TECHNICAL_SMA: lambda: self.get_technical_indicator(symbol, "SMA"),
            DataRequirement.TECHNICAL_EMA: lambda: self.get_technical_indicator(symbol, "EMA"),
        }
        return fetchers[requirement]()

    # ─── Configuration ───────────────────────────────────────────────────────

    def is_configured(self) -> bool:
        return bool(self.api_key)

    def remaining_calls(self) -> int:
        return self.rate_limiter.remaining_calls()

    # ─── Network Layer ───────────────────────────────────────────────────────

    async def cached_fetch(
        self, cache_key: str, ttl: float, params: Mapping[str, Any]
    ) -> Dict[str, Any]:
        """
        Serve cache_key from cache if fresh, else fetch through the limiter.

        Concurrent misses on the same key share a single provider call. The
        call runs in its own task, so a cancelled caller only stops waiting;
        the other callers still get the result and it is still cached.
        Failures are not cached.
        """
        cached = self.cache.get(cache_key)
        if cached is not None:
            return cached

        task = self._inflight.get(cache_key)
        if task is None:
            task = asyncio.ensure_future(self._fetch_and_store(cache_key, ttl, params))
            self._inflight[cache_key] = task
            task.add_done_callback(lambda t: self._forget_inflight(cache_key, t))
        return await asyncio.shield(task)

    async def _fetch_and_store(
        self, cache_key: str, ttl: float, params: Mapping[str, Any]
    ) -> Dict[str, Any]:
        data = await self.rate_limiter.schedule(lambda: self._fetch_from_api(params))
        self.cache.set(cache_key, data, ttl)
        return data

    def _forget_inflight(self, cache_key: str, task: asyncio.Future) -> None:
        if self._inflight.get(cache_key) is task:
            del self._inflight[cache_key]
        # mark retrieved so a failure nobody awaited does not warn at GC
        if not task.cancelled():
            task.exception()

    async def _fetch_from_api(self, params: Mapping[str, Any]) -> Dict[str, Any]:
        """One HTTP GET against the provider, with payload-level error checks."""
        query = {"apikey": self.api_key}
        query.update({k: str(v) for k, v in params.items()})
        function = query.get("function", "?")

        try:
            async with httpx.AsyncClient(timeout=self.http_timeout) as client:
                resp = await client.get(self.base_url, params=query)
        except httpx.HTTPError as exc:
            raise ProviderHTTPError(f"Alpha Vantage request failed ({function}): {exc}") from exc

        if not 200 <= resp.status_code < 300:
            raise ProviderHTTPError(
                f"Alpha Vantage API error ({function}): HTTP {resp.status_code}",
                status_code=resp.status_code,
            )

        try:
            data = resp.json()
        except ValueError as exc:
            raise ProviderResponseError(f"Alpha Vantage returned invalid JSON ({function})") from exc

        if not isinstance(data, dict):
            raise ProviderResponseError(f"Alpha Vantage returned unexpected body ({function}): {data!r}")
        if "Error Message" in data:
            raise ProviderResponseError(f"Alpha Vantage error ({function}): {data['Error Message']}")
        if "Note" in data:
            raise ProviderRateLimitError(f"Alpha Vantage rate limit ({function}): {data['Note']}")
        if "Information" in data:
            raise ProviderRateLimitError(f"Alpha Vantage rate limit ({function}): {data['Information']}")

        logger.debug("Alpha Vantage {} fetched for {}", function, query.get("symbol") or query.get("tickers", "-"))
        return data

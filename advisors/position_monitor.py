"""
position_monitor.py — Reconciliation sweeps over open paper trades.

One sweep:
  open trades → distinct symbols → current prices (market data client)
  → TradingEngine.check_triggers() → notification if anything closed

The same sweep runs once at launch (to catch stops/targets crossed while
the app was closed) and then on a fixed interval while running.

Features:
- Configurable interval (default 60s)
- Never raises: every failure is logged, counted and turned into an
  empty ReconciliationResult
- An empty price map is a no-op
- Metrics: sweeps_run, trades_closed, errors, last_sweep_at

Usage:
    monitor = PositionMonitor(engine, market_data, notifier=LogNotifier())
    await monitor.reconcile_on_launch()
    await monitor.start()
    # ... later ...
    await monitor.stop()
"""

from __future__ import annotations

import asyncio
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Dict, List, Optional, Protocol, Sequence

from loguru import logger

from notifications import ALERT_TITLE, Notifier, NullNotifier, format_trade_alert
from trade_ledger import TradeRecord
from trading_engine import TradingEngine


class PriceSource(Protocol):
    async def get_prices(self, symbols: Sequence[str]) -> Dict[str, float]:
        ...


# ─── Data Classes ─────────────────────────────────────────────────────────────


@dataclass
class MonitorConfig:
    """Position monitor parameters."""
    interval_seconds: float = 60.0
    notify_on_close: bool = True


@dataclass
class MonitorMetrics:
    """Runtime metrics for the position monitor."""
    sweeps_run: int = 0
    trades_closed: int = 0
    errors: int = 0
    last_sweep_at: Optional[str] = None
    started_at: Optional[str] = None

    def to_dict(self) -> dict:
        return {
            "sweeps_run": self.sweeps_run,
            "trades_closed": self.trades_closed,
            "errors": self.errors,
            "last_sweep_at": self.last_sweep_at,
            "started_at": self.started_at,
        }


@dataclass
class ReconciliationResult:
    """Outcome of one sweep."""
    trades_checked: int = 0
    trades_closed: int = 0
    closed_trades: List[TradeRecord] = field(default_factory=list)
    timestamp: str = field(default_factory=lambda: datetime.now(timezone.utc).isoformat())

    def to_dict(self) -> dict:
        return {
            "trades_checked": self.trades_checked,
            "trades_closed": self.trades_closed,
            "closed_trades": [t.to_dict() for t in self.closed_trades],
            "timestamp": self.timestamp,
        }


# ─── Position Monitor ─────────────────────────────────────────────────────────


class PositionMonitor:
    """
    Periodic stop-loss / take-profit reconciliation.

    Parameters
    ----------
    engine : TradingEngine
        Owns the ledger and portfolio; its check_triggers() does the closing.
    prices : PriceSource
        Anything with an async get_prices(symbols), normally the
        MarketDataClient.
    notifier : Notifier
        Receives a summary when a sweep closes trades.
    """

    def __init__(
        self,
        engine: TradingEngine,
        prices: PriceSource,
        notifier: Optional[Notifier] = None,
        config: Optional[MonitorConfig] = None,
    ) -> None:
        self.engine = engine
        self.prices = prices
        self.notifier = notifier or NullNotifier()
        self.config = config or MonitorConfig()
        self.metrics = MonitorMetrics()

        self._running = False
        self._task: Optional[asyncio.Task] = None

    @property
    def is_running(self) -> bool:
        return self._running

    # ─── Lifecycle ────────────────────────────────────────────────────────────

    async def start(self) -> None:
        """Sweep now, then every interval_seconds until stop()."""
        if self._running:
            logger.warning("PositionMonitor already running")
            return

        self._running = True
        self.metrics.started_at = datetime.now(timezone.utc).isoformat()
        logger.info("PositionMonitor starting (interval={}s)", self.config.interval_seconds)
        self._task = asyncio.create_task(self._loop())

    async def stop(self) -> None:
        """Cancel the sweep task and wait for it to finish."""
        if not self._running:
            return

        logger.info("PositionMonitor stopping…")
        self._running = False

        if self._task and not self._task.done():
            self._task.cancel()
            try:
                await self._task
            except asyncio.CancelledError:
                pass

        logger.info("PositionMonitor stopped. Metrics: {}", self.metrics.to_dict())

    async def _loop(self) -> None:
        while self._running:
            await self.run_once()
            if self._running:
                await asyncio.sleep(self.config.interval_seconds)

    # ─── Sweeps ───────────────────────────────────────────────────────────────

    async def reconcile_on_launch(self) -> ReconciliationResult:
        """Catch up on triggers crossed while the app was not running."""
        logger.info("Reconciling open positions on launch")
        result = await self.run_once()
        if result.trades_closed:
            logger.info(
                "Launch reconciliation closed {} of {} open trades",
                result.trades_closed, result.trades_checked,
            )
        return result

    async def run_once(self) -> ReconciliationResult:
        """One sweep over every open trade. Never raises."""
        self.metrics.sweeps_run += 1
        self.metrics.last_sweep_at = datetime.now(timezone.utc).isoformat()

        try:
            open_trades = self.engine.store.get_open_trades()
            if not open_trades:
                logger.debug("No open trades to reconcile")
                return ReconciliationResult()

            symbols = sorted({t.symbol for t in open_trades})
            prices = await self.prices.get_prices(symbols)
            if not prices:
                logger.warning("No prices available for {}; skipping sweep", ", ".join(symbols))
                return ReconciliationResult(trades_checked=len(open_trades))

            missing = [s for s in symbols if s not in prices]
            if missing:
                logger.warning("No price for {}; those trades were not checked", ", ".join(missing))

            closed = self.engine.check_triggers(prices)
        except asyncio.CancelledError:
            raise
        except Exception as exc:
            self.metrics.errors += 1
            logger.exception("Reconciliation sweep failed: {}", exc)
            return ReconciliationResult()

        self.metrics.trades_closed += len(closed)
        result = ReconciliationResult(
            trades_checked=len(open_trades),
            trades_closed=len(closed),
            closed_trades=closed,
        )
        logger.info("Sweep checked {} open trades, closed {}", result.trades_checked, result.trades_closed)

        if closed and self.config.notify_on_close:
            await self._notify(closed)
        return result

    async def _notify(self, closed: List[TradeRecord]) -> None:
        body = format_trade_alert(closed)
        try:
            await self.notifier.notify(ALERT_TITLE, body)
        except Exception as exc:
            logger.warning("Notification via {} failed: {}", self.notifier.name, exc)

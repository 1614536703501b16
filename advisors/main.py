#!/usr/bin/env python3
"""
main.py — Stock Advisors paper trading core entry point

Wires the paper trading core together and runs it headless:
1. Loads settings from the environment / .env
2. Opens the trade ledger (SQLite, or in-memory for ":memory:")
3. Rebuilds the portfolio view from the ledger
4. Reconciles open positions against current prices
5. Keeps monitoring stops / targets until interrupted

Usage:
    python main.py [--once] [--leaderboard] [--log-level DEBUG]

Environment:
    See settings.py for the variables read.
"""

import argparse
import asyncio
import os
import sys
from dataclasses import dataclass
from typing import Optional

from loguru import logger

from agent_performance import AgentPerformance
from data_cache import DataCache
from market_data import MarketDataClient
from memory_ledger import InMemoryTradeLedger
from notifications import LogNotifier, Notifier
from paper_portfolio import PaperPortfolio
from position_monitor import MonitorConfig, PositionMonitor
from rate_limiter import RateLimiter
from settings import Settings, SettingsError
from trade_ledger import SQLiteTradeLedger, TradeLedger
from trading_engine import TradingEngine
from trade_outcome import TradeOutcomeService


def setup_logging(log_level: str = "INFO") -> None:
    logger.remove()
    logger.add(
        sys.stdout,
        format="<green>{time:HH:mm:ss}</green> | <level>{level: <8}</level> | {message}",
        level=log_level,
        colorize=True,
    )
    os.makedirs("logs", exist_ok=True)
    logger.add(
        "logs/advisors.log",
        rotation="10 MB",
        retention="7 days",
        level="DEBUG",
        format="{time:YYYY-MM-DD HH:mm:ss} | {level} | {message}",
    )


@dataclass
class AdvisorApp:
    """Every long-lived component of one session."""
    settings: Settings
    market_data: MarketDataClient
    store: TradeLedger
    portfolio: PaperPortfolio
    outcomes: TradeOutcomeService
    engine: TradingEngine
    performance: AgentPerformance
    monitor: PositionMonitor

    def close(self) -> None:
        self.store.close()


def open_store(settings: Settings) -> TradeLedger:
    if settings.uses_memory_store:
        logger.info("Using in-memory trade ledger (nothing is persisted)")
        return InMemoryTradeLedger()
    logger.info("Using SQLite trade ledger at {}", settings.db_path)
    return SQLiteTradeLedger(settings.db_path)


def build_app(settings: Settings, notifier: Optional[Notifier] = None) -> AdvisorApp:
    """Construct and connect every component; no global state involved."""
    market_data = MarketDataClient(
        settings.api_key,
        rate_limiter=RateLimiter(settings.rate_limit_tier),
        cache=DataCache(),
        http_timeout=settings.http_timeout,
    )
    store = open_store(settings)
    portfolio = PaperPortfolio(store, settings.starting_capital)
    outcomes = TradeOutcomeService(store)
    engine = TradingEngine(store, portfolio, settings.max_position_pct, outcomes)
    monitor = PositionMonitor(
        engine,
        market_data,
        notifier=notifier or LogNotifier(),
        config=MonitorConfig(interval_seconds=settings.monitor_interval_seconds),
    )
    return AdvisorApp(
        settings=settings,
        market_data=market_data,
        store=store,
        portfolio=portfolio,
        outcomes=outcomes,
        engine=engine,
        performance=AgentPerformance(store),
        monitor=monitor,
    )


def print_leaderboard(app: AdvisorApp) -> None:
    entries = app.performance.leaderboard()
    if not entries:
        logger.info("No resolved recommendations yet; leaderboard is empty")
        return
    logger.info("=== Agent Leaderboard ===")
    for rank, e in enumerate(entries, start=1):
        logger.info(
            "{:>2}. {:<28} score={:7.2f} win_rate={:5.1f}% avg_return={:+.2f}% "
            "sharpe={:.2f} pf={:.2f} ({} resolved)",
            rank, e.agent_id, e.score, e.win_rate, e.avg_return,
            e.sharpe_ratio, e.profit_factor, e.resolved_count,
        )


async def run(app: AdvisorApp, once: bool = False) -> None:
    """Reconcile on launch, then monitor until cancelled (or exit if once)."""
    state = app.portfolio.initialize()
    logger.info(
        "Portfolio: value=${:,.2f} cash=${:,.2f} pnl=${:,.2f}",
        state.total_portfolio_value, state.virtual_cash, state.pnl,
    )
    if not app.market_data.is_configured():
        logger.warning("ALPHA_VANTAGE_API_KEY not set; price fetches will fail")

    await app.monitor.reconcile_on_launch()
    if once:
        return

    await app.monitor.start()
    try:
        while app.monitor.is_running:
            await asyncio.sleep(1)
    finally:
        await app.monitor.stop()


async def main() -> None:
    parser = argparse.ArgumentParser(description="Stock Advisors paper trading core")
    parser.add_argument("--once", action="store_true",
                        help="Reconcile open positions once then exit")
    parser.add_argument("--leaderboard", action="store_true",
                        help="Print the agent leaderboard then exit")
    parser.add_argument("--log-level", default=None,
                        help="Override LOG_LEVEL (DEBUG, INFO, WARNING, ...)")
    args = parser.parse_args()

    try:
        settings = Settings.from_env()
    except SettingsError as e:
        setup_logging("INFO")
        logger.error("Invalid configuration: {}", e)
        sys.exit(1)

    setup_logging(args.log_level or settings.log_level)
    logger.info("=== Stock Advisors Starting ===")
    logger.info("Settings: {}", settings.to_dict())

    app = build_app(settings)
    try:
        if args.leaderboard:
            print_leaderboard(app)
            return
        await run(app, once=args.once)
    finally:
        app.close()


def cli() -> None:
    try:
        asyncio.run(main())
    except KeyboardInterrupt:
        logger.info("Shutting down...")


if __name__ == "__main__":
    cli()

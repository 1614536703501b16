"""
paper_portfolio.py — Derived portfolio view over the trade ledger.

Nothing here is persisted. Cash is reconstructed from the ledger on every
refresh:

    cash = starting_capital
         + realized P&L of closed trades
         - cost of open long positions
         + proceeds of open short positions

so the view always agrees with the cash movements the trading engine makes
(long entry debits, short entry credits, the reverse on close).

Open shorts are carried as a liability (-price × qty) in the total value.

Usage:
    portfolio = PaperPortfolio(ledger, starting_capital=100_000)
    portfolio.initialize()
    portfolio.update_positions({"AAPL": 152.3})
    print(portfolio.state().to_dict())
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Dict, List, Optional, Tuple

from loguru import logger

from trade_ledger import TradeLedger, TradeRecord


# ─── Data Classes ─────────────────────────────────────────────────────────────


@dataclass(frozen=True)
class PortfolioState:
    """Snapshot of the paper portfolio. Rebuilt, never mutated."""
    virtual_cash: float
    positions: Tuple[TradeRecord, ...]
    starting_capital: float
    total_portfolio_value: float
    pnl: float
    pnl_percent: float
    unrealized_pnl: float
    last_updated: Optional[str] = None

    def to_dict(self) -> dict:
        return {
            "virtual_cash": round(self.virtual_cash, 2),
            "positions": [p.to_dict() for p in self.positions],
            "starting_capital": self.starting_capital,
            "total_portfolio_value": round(self.total_portfolio_value, 2),
            "pnl": round(self.pnl, 2),
            "pnl_percent": round(self.pnl_percent, 4),
            "unrealized_pnl": round(self.unrealized_pnl, 2),
            "last_updated": self.last_updated,
        }


@dataclass
class PortfolioSummary:
    """Mark-to-market aggregate over a set of open trades."""
    total_value: float = 0.0
    total_cost: float = 0.0
    unrealized_pnl: float = 0.0
    unrealized_pnl_percent: float = 0.0
    position_count: int = 0
    largest_position: Optional[Dict[str, object]] = None

    def to_dict(self) -> dict:
        return {
            "total_value": round(self.total_value, 2),
            "total_cost": round(self.total_cost, 2),
            "unrealized_pnl": round(self.unrealized_pnl, 2),
            "unrealized_pnl_percent": round(self.unrealized_pnl_percent, 4),
            "position_count": self.position_count,
            "largest_position": self.largest_position,
        }


# ─── Pure Helpers ─────────────────────────────────────────────────────────────


def position_value(trade: TradeRecord, price: float) -> float:
    """Signed market value: longs are assets, shorts are liabilities."""
    value = price * trade.quantity
    return value if trade.is_long else -value


def unrealized_pnl(trade: TradeRecord, price: float) -> float:
    direction = 1.0 if trade.is_long else -1.0
    return direction * (price - trade.entry_price) * trade.quantity


def portfolio_summary(
    open_trades: List[TradeRecord], current_prices: Dict[str, float]
) -> PortfolioSummary:
    """
    Aggregate open trades against current prices.

    Trades whose symbol has no price are counted in position_count but
    excluded from the value/cost totals.
    """
    summary = PortfolioSummary(position_count=len(open_trades))
    largest_value = 0.0
    largest_symbol = ""

    for trade in open_trades:
        price = current_prices.get(trade.symbol)
        if price is None:
            continue
        market_value = price * trade.quantity
        summary.total_cost += trade.cost_basis
        summary.total_value += market_value
        summary.unrealized_pnl += unrealized_pnl(trade, price)
        if market_value > largest_value:
            largest_value = market_value
            largest_symbol = trade.symbol

    if summary.total_cost > 0:
        summary.unrealized_pnl_percent = summary.unrealized_pnl / summary.total_cost * 100
    if largest_symbol:
        summary.largest_position = {"symbol": largest_symbol, "value": largest_value}
    return summary


# ─── Paper Portfolio ──────────────────────────────────────────────────────────


class PaperPortfolio:
    """
    Read-through portfolio view.

    Holds a copy of the open trades and the latest known prices; every
    mutator replaces the underlying fields and rebuilds the snapshot in the
    same synchronous step, so readers never see a half-updated state.
    """

    def __init__(self, store: TradeLedger, starting_capital: float = 100_000.0) -> None:
        if starting_capital <= 0:
            raise ValueError(f"starting_capital must be positive, got {starting_capital}")
        self.store = store
        self.starting_capital = float(starting_capital)
        self._cash = self.starting_capital
        self._positions: Tuple[TradeRecord, ...] = ()
        self._prices: Dict[str, float] = {}
        self._last_updated: Optional[str] = None
        self._state = self._build_state()

    # ── Loading ────────────────────────────────────────────────────────────

    def initialize(self) -> PortfolioState:
        """Load open trades and reconstruct cash from the ledger."""
        state = self.refresh_positions()
        logger.info(
            "Portfolio loaded: {} open positions, cash=${:,.2f}",
            len(state.positions), state.virtual_cash,
        )
        return state

    def refresh_positions(self) -> PortfolioState:
        """Reload open trades and recompute cash and totals."""
        open_trades = self.store.get_open_trades()
        realized = sum(t.pnl_dollars or 0.0 for t in self.store.get_closed_trades())

        cash = self.starting_capital + realized
        for trade in open_trades:
            cash += -trade.cost_basis if trade.is_long else trade.cost_basis

        self._cash = cash
        self._positions = tuple(open_trades)
        self._state = self._build_state()
        return self._state

    # ── Mutators ───────────────────────────────────────────────────────────

    def adjust_cash(self, amount: float) -> PortfolioState:
        """Add amount (negative to debit) to virtual cash."""
        self._cash += amount
        self._state = self._build_state()
        return self._state

    def update_positions(self, current_prices: Dict[str, float]) -> PortfolioState:
        """Mark open positions to market. Unknown symbols stay at entry price."""
        self._prices.update({s.upper(): float(p) for s, p in current_prices.items()})
        self._last_updated = datetime.now(timezone.utc).isoformat()
        self._state = self._build_state()
        return self._state

    # ── Accessors ──────────────────────────────────────────────────────────

    def state(self) -> PortfolioState:
        return self._state

    @property
    def virtual_cash(self) -> float:
        return self._state.virtual_cash

    @property
    def total_portfolio_value(self) -> float:
        return self._state.total_portfolio_value

    @property
    def positions(self) -> Tuple[TradeRecord, ...]:
        return self._state.positions

    def price_for(self, trade: TradeRecord) -> float:
        return self._prices.get(trade.symbol, trade.entry_price)

    # ── Internals ──────────────────────────────────────────────────────────

    def _build_state(self) -> PortfolioState:
        market_value = 0.0
        unrealized = 0.0
        for trade in self._positions:
            price = self.price_for(trade)
            market_value += position_value(trade, price)
            unrealized += unrealized_pnl(trade, price)

        total = self._cash + market_value
        pnl = total - self.starting_capital
        return PortfolioState(
            virtual_cash=self._cash,
            positions=self._positions,
            starting_capital=self.starting_capital,
            total_portfolio_value=total,
            pnl=pnl,
            pnl_percent=pnl / self.starting_capital * 100,
            unrealized_pnl=unrealized,
            last_updated=self._last_updated,
        )

"""
trading_engine.py — Paper trade execution and stop/target monitoring.

Turns an agent Recommendation into an open paper trade:

  1. Reject HOLD and recommendations without a usable entry price
  2. Reject a second recommendation while the agent's previous one on the
     same symbol is still pending
  3. Size the position (position_sizer.size_position)
  4. Reject if the cost exceeds available cash
  5. Persist the trade and its pending track record
  6. Debit cash for longs / credit cash for shorts, refresh the portfolio

check_triggers() closes open trades whose stop-loss or take-profit has
been crossed, at the configured level rather than the (possibly gapped)
market price. If both levels are crossed on the same check the stop wins.

Usage:
    engine = TradingEngine(ledger, portfolio)
    trade = engine.execute(rec, agent_id="citadel-technical")
    closed = engine.check_triggers({"AAPL": 139.5})
"""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Dict, List, Optional, Tuple

from loguru import logger

from paper_portfolio import PaperPortfolio
from position_sizer import explain_size
from trade_ledger import (
    NewTrade,
    PendingRecommendationExistsError,
    RecommendationAction,
    TradeAlreadyClosedError,
    TradeLedger,
    TradeRecord,
    TradeStatus,
    days_between,
    is_long_action,
)
from trade_outcome import TradeOutcomeService


DEFAULT_MAX_POSITION_PCT = 0.10


# ─── Exceptions ───────────────────────────────────────────────────────────────


class TradeExecutionError(Exception):
    """Base exception for trade execution failures."""


class InvalidEntryPriceError(TradeExecutionError):
    """No positive entry price was available."""


class InsufficientCashError(TradeExecutionError):
    """The sized position costs more than the available cash."""


class NotActionableError(TradeExecutionError):
    """The recommendation does not open a position (HOLD)."""


# ─── Recommendation ───────────────────────────────────────────────────────────


@dataclass
class Recommendation:
    """
    An agent's trade call, as produced by the agent layer.

    current_price is the quoted market price at recommendation time; when
    absent the target price doubles as the entry price.
    """
    symbol: str
    action: str
    confidence: float = 50.0
    time_horizon: str = ""
    rationale: str = ""
    target_price: Optional[float] = None
    stop_loss: Optional[float] = None
    current_price: Optional[float] = None

    @property
    def entry_price(self) -> Optional[float]:
        if self.current_price is not None:
            return self.current_price
        return self.target_price

    @property
    def take_profit(self) -> Optional[float]:
        # a target that is also the entry would trigger immediately
        if self.current_price is None:
            return None
        return self.target_price


# ─── Trigger Evaluation ───────────────────────────────────────────────────────


def evaluate_triggers(trade: TradeRecord, price: float) -> Optional[Tuple[str, float]]:
    """
    Return (status, exit_level) if price crosses the trade's stop or target.

    Longs stop at price <= stop and take profit at price >= target; shorts
    are inverted. The stop is checked first.
    """
    long = trade.is_long
    if trade.stop_loss is not None:
        stopped = price <= trade.stop_loss if long else price >= trade.stop_loss
        if stopped:
            return TradeStatus.STOPPED_OUT.value, trade.stop_loss
    if trade.take_profit is not None:
        hit = price >= trade.take_profit if long else price <= trade.take_profit
        if hit:
            return TradeStatus.TARGET_HIT.value, trade.take_profit
    return None


# ─── Trading Engine ───────────────────────────────────────────────────────────


class TradingEngine:
    """
    Executes recommendations against the paper portfolio.

    Parameters
    ----------
    store : TradeLedger
    portfolio : PaperPortfolio
        Supplies default portfolio value / cash and is refreshed after
        every mutation.
    max_position_pct : float
        Default single-position cap as a fraction of portfolio value.
    """

    def __init__(
        self,
        store: TradeLedger,
        portfolio: PaperPortfolio,
        max_position_pct: float = DEFAULT_MAX_POSITION_PCT,
        outcomes: Optional[TradeOutcomeService] = None,
    ) -> None:
        self.store = store
        self.portfolio = portfolio
        self.max_position_pct = max_position_pct
        self.outcomes = outcomes or TradeOutcomeService(store)

    # ── Execution ──────────────────────────────────────────────────────────

    def execute(
        self,
        recommendation: Recommendation,
        agent_id: str,
        portfolio_value: Optional[float] = None,
        available_cash: Optional[float] = None,
        max_position_pct: Optional[float] = None,
        pipeline_id: Optional[str] = None,
    ) -> TradeRecord:
        """Open a paper trade for the recommendation. Returns the stored trade."""
        symbol = recommendation.symbol.strip().upper()
        action = RecommendationAction(recommendation.action)
        if action is RecommendationAction.HOLD:
            raise NotActionableError(f"HOLD on {symbol} does not open a position")

        entry_price = recommendation.entry_price
        if entry_price is None or entry_price <= 0:
            raise InvalidEntryPriceError(
                f"Cannot execute trade for {symbol}: entry price is {entry_price}"
            )

        pending = self.store.find_pending_recommendation(agent_id, symbol)
        if pending is not None:
            raise PendingRecommendationExistsError(
                f"{agent_id} already has pending recommendation #{pending.id} on {symbol}"
            )

        state = self.portfolio.state()
        if portfolio_value is None:
            portfolio_value = state.total_portfolio_value
        if available_cash is None:
            available_cash = state.virtual_cash
        if max_position_pct is None:
            max_position_pct = self.max_position_pct

        sizing = explain_size(
            price=entry_price,
            stop_loss=recommendation.stop_loss,
            portfolio_value=portfolio_value,
            available_cash=available_cash,
            max_position_pct=max_position_pct,
            confidence=recommendation.confidence,
        )
        quantity = sizing.shares
        total_cost = quantity * entry_price
        logger.debug("Sizing {} {}: {}", action.value, symbol, sizing.to_dict())

        if total_cost > available_cash:
            raise InsufficientCashError(
                f"Insufficient cash for {symbol}: need ${total_cost:,.2f} "
                f"but only ${available_cash:,.2f} available"
            )

        entry_date = datetime.now(timezone.utc).isoformat()
        trade_id = self.store.record_trade(NewTrade(
            symbol=symbol,
            action=action.value,
            quantity=quantity,
            entry_price=entry_price,
            entry_date=entry_date,
            recommended_by=agent_id,
            stop_loss=recommendation.stop_loss,
            take_profit=recommendation.take_profit,
            confidence=recommendation.confidence,
            pipeline_id=pipeline_id,
            notes=recommendation.rationale or None,
        ))
        self.store.record_recommendation(
            agent_id=agent_id,
            symbol=symbol,
            recommendation=action.value,
            confidence=recommendation.confidence,
            target_price=recommendation.target_price,
            stop_loss=recommendation.stop_loss,
            pipeline_id=pipeline_id,
            recommended_at=entry_date,
        )

        self.portfolio.adjust_cash(-total_cost if is_long_action(action.value) else total_cost)
        self.portfolio.refresh_positions()

        logger.info(
            "Executed {} {} x {} @ ${:.2f} (total: ${:,.2f}), agent: {}",
            action.value, quantity, symbol, entry_price, total_cost, agent_id,
        )
        trade = self.store.get_trade(trade_id)
        assert trade is not None
        return trade

    # ── Closing ────────────────────────────────────────────────────────────

    def check_triggers(
        self, current_prices: Dict[str, float], now: Optional[str] = None
    ) -> List[TradeRecord]:
        """
        Close every open trade whose stop or target is crossed.

        Trades without a price in current_prices are skipped. Trades already
        in a terminal status are never re-evaluated.
        """
        if not current_prices:
            return []
        prices = {s.upper(): p for s, p in current_prices.items()}
        closed: List[TradeRecord] = []

        for trade in self.store.get_open_trades():
            price = prices.get(trade.symbol)
            if price is None:
                continue
            trigger = evaluate_triggers(trade, price)
            if trigger is None:
                continue
            status, level = trigger
            result = self._close(trade, level, status, now)
            if result is not None:
                closed.append(result)

        self.portfolio.refresh_positions()
        self.portfolio.update_positions(prices)
        return closed

    def close_position(self, trade_id: int, current_price: float) -> TradeRecord:
        """Manually close an open trade at the market price."""
        trade = self.store.get_trade(trade_id)
        if trade is not None and not trade.is_open:
            raise TradeAlreadyClosedError(f"Trade #{trade_id} is already {trade.status}")
        closed = self._settle(trade_id, current_price, TradeStatus.CLOSED.value, None)
        self.portfolio.refresh_positions()
        return closed

    def expire_positions(
        self,
        current_prices: Dict[str, float],
        max_holding_days: int,
        now: Optional[str] = None,
    ) -> List[TradeRecord]:
        """
        Close trades held longer than max_holding_days with status expired.

        Exit is the current price, or the entry price when none is known.
        """
        now = now or datetime.now(timezone.utc).isoformat()
        prices = {s.upper(): p for s, p in current_prices.items()}
        expired: List[TradeRecord] = []

        for trade in self.store.get_open_trades():
            if days_between(trade.entry_date, now) <= max_holding_days:
                continue
            exit_price = prices.get(trade.symbol, trade.entry_price)
            result = self._close(trade, exit_price, TradeStatus.EXPIRED.value, now)
            if result is not None:
                expired.append(result)

        if expired:
            self.portfolio.refresh_positions()
        return expired

    def _close(
        self, trade: TradeRecord, exit_price: float, status: str, exit_date: Optional[str]
    ) -> Optional[TradeRecord]:
        try:
            return self._settle(trade.id, exit_price, status, exit_date)
        except TradeAlreadyClosedError:
            logger.warning("Trade #{} ({}) was already closed, skipping", trade.id, trade.symbol)
            return None

    def _settle(
        self, trade_id: int, exit_price: float, status: str, exit_date: Optional[str]
    ) -> TradeRecord:
        """Close via the outcome service and move the exit proceeds through cash."""
        closed = self.outcomes.close_with_outcome(trade_id, exit_price, exit_date, status)
        proceeds = closed.exit_price * closed.quantity
        self.portfolio.adjust_cash(proceeds if closed.is_long else -proceeds)
        logger.info(
            "{}: {} x {} @ ${:.2f}, P&L: ${:,.2f} ({:+.2f}%)",
            closed.status.upper(), closed.quantity, closed.symbol, closed.exit_price,
            closed.pnl_dollars, closed.pnl_percent,
        )
        return closed

"""
trade_outcome.py — Keeps trades and agent track records in sync on close.

Closing a trade through TradeOutcomeService also resolves the pending
track record of the agent that recommended it:

    stopped_out / target_hit / expired  → same outcome
    return > +0.5%                      → win
    return < -0.5%                      → loss
    otherwise                           → breakeven

peak_return is the realized return; worst_drawdown stays unknown (None).
Neither can be measured without intraday price history.

Resolution is best-effort: a trade with no pending record still closes, and
a ledger error while resolving is logged without undoing the close.
"""

from __future__ import annotations

from typing import Optional

from loguru import logger

from trade_ledger import (
    LedgerError,
    RecommendationOutcome,
    TradeLedger,
    TradeRecord,
    TradeStatus,
)


WIN_THRESHOLD_PCT = 0.5
LOSS_THRESHOLD_PCT = -0.5

_STATUS_OUTCOMES = {
    TradeStatus.STOPPED_OUT.value: RecommendationOutcome.STOPPED_OUT.value,
    TradeStatus.TARGET_HIT.value: RecommendationOutcome.TARGET_HIT.value,
    TradeStatus.EXPIRED.value: RecommendationOutcome.EXPIRED.value,
}


def classify_outcome(status: str, actual_return: float) -> str:
    """Map a close status and realized return (percent) to an outcome."""
    if status in _STATUS_OUTCOMES:
        return _STATUS_OUTCOMES[status]
    if actual_return > WIN_THRESHOLD_PCT:
        return RecommendationOutcome.WIN.value
    if actual_return < LOSS_THRESHOLD_PCT:
        return RecommendationOutcome.LOSS.value
    return RecommendationOutcome.BREAKEVEN.value


class TradeOutcomeService:
    """Closes trades and resolves the matching agent recommendation."""

    def __init__(self, store: TradeLedger) -> None:
        self.store = store

    def close_with_outcome(
        self,
        trade_id: int,
        exit_price: float,
        exit_date: Optional[str] = None,
        status: str = TradeStatus.CLOSED.value,
    ) -> TradeRecord:
        """
        Close the trade, then resolve its pending track record if one exists.

        Ledger errors from the close (unknown id, already closed) propagate
        and nothing is resolved. Errors from the resolution are logged and
        the closed trade is still returned.
        """
        trade = self.store.close_trade(trade_id, exit_price, exit_date, status)
        try:
            self._resolve_track_record(trade)
        except (LedgerError, ValueError) as exc:
            logger.warning(
                "Trade #{} closed but its track record was not resolved: {}", trade.id, exc
            )
        return trade

    def _resolve_track_record(self, trade: TradeRecord) -> None:
        record = self.store.find_pending_recommendation(
            trade.recommended_by, trade.symbol, trade.pipeline_id
        )
        if record is None:
            logger.debug(
                "No pending track record for {} on {}; trade #{} closed without resolution",
                trade.recommended_by, trade.symbol, trade.id,
            )
            return

        actual_return = trade.pnl_percent or 0.0
        outcome = classify_outcome(trade.status, actual_return)
        self.store.resolve_recommendation(
            record.id,
            outcome,
            actual_return,
            peak_return=trade.pnl_percent,
            worst_drawdown=None,
            resolved_at=trade.exit_date,
        )
        logger.info(
            "Track record #{} ({} on {}) resolved: {} ({:+.2f}%)",
            record.id, trade.recommended_by, trade.symbol, outcome, actual_return,
        )

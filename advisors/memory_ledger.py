"""
memory_ledger.py — Non-durable TradeLedger backed by dicts keyed by row id.

Used when no database is available (ADVISORS_DB_PATH=":memory:" in a
headless/browser context) and as the second implementation the ledger
tests run against. Lifecycle rules are inherited from TradeLedger; this
class only stores and queries rows.

Assumes single-threaded access, same as the event loop that drives it.

Usage:
    ledger = InMemoryTradeLedger()
    trade_id = ledger.record_trade(NewTrade(...))
"""

from __future__ import annotations

import copy
from typing import Dict, List, Optional

from trade_ledger import (
    CloseResult,
    NewTrade,
    RecommendationAction,
    TrackRecord,
    TradeFilters,
    TradeLedger,
    TradeRecord,
    TradeStatus,
    utc_now_iso,
)


class InMemoryTradeLedger(TradeLedger):
    """Dict-backed ledger. Returned records are copies; mutate via the API."""

    def __init__(self) -> None:
        self._trades: Dict[int, TradeRecord] = {}
        self._records: Dict[int, TrackRecord] = {}
        self._next_trade_id = 1
        self._next_record_id = 1

    # ── Trades ─────────────────────────────────────────────────────────────

    def _insert_trade(self, trade: NewTrade) -> int:
        trade_id = self._next_trade_id
        self._next_trade_id += 1
        self._trades[trade_id] = TradeRecord(
            id=trade_id,
            symbol=trade.symbol,
            action=RecommendationAction(trade.action).value,
            quantity=trade.quantity,
            entry_price=float(trade.entry_price),
            entry_date=trade.entry_date,
            recommended_by=trade.recommended_by,
            stop_loss=trade.stop_loss,
            take_profit=trade.take_profit,
            confidence=trade.confidence,
            pipeline_id=trade.pipeline_id,
            notes=trade.notes,
            created_at=utc_now_iso(),
        )
        return trade_id

    def _apply_close(self, trade_id: int, result: CloseResult) -> bool:
        trade = self._trades.get(trade_id)
        if trade is None or not trade.is_open:
            return False
        trade.exit_price = result.exit_price
        trade.exit_date = result.exit_date
        trade.status = result.status
        trade.pnl_dollars = result.pnl_dollars
        trade.pnl_percent = result.pnl_percent
        trade.holding_days = result.holding_days
        return True

    def _write_status(self, trade_id: int, status: str) -> None:
        if trade_id in self._trades:
            self._trades[trade_id].status = status

    def get_trade(self, trade_id: int) -> Optional[TradeRecord]:
        trade = self._trades.get(trade_id)
        return copy.copy(trade) if trade else None

    def get_open_trades(self) -> List[TradeRecord]:
        rows = [t for t in self._trades.values() if t.is_open]
        return self._newest_entry_first(rows)

    def get_closed_trades(self, filters: Optional[TradeFilters] = None) -> List[TradeRecord]:
        filters = filters or TradeFilters()
        status = TradeStatus(filters.status).value if filters.status is not None else None

        rows = []
        for t in self._trades.values():
            if status is not None:
                if t.status != status:
                    continue
            elif t.is_open:
                continue
            if filters.symbol and t.symbol != filters.symbol.upper():
                continue
            if filters.agent_id and t.recommended_by != filters.agent_id:
                continue
            if filters.start_date and (t.exit_date is None or t.exit_date < filters.start_date):
                continue
            if filters.end_date and (t.exit_date is None or t.exit_date > filters.end_date):
                continue
            pnl = t.pnl_dollars
            if filters.outcome == "win" and not (pnl is not None and pnl > 0):
                continue
            if filters.outcome == "loss" and not (pnl is not None and pnl <= 0):
                continue
            rows.append(t)

        rows.sort(key=lambda t: (t.exit_date or "", t.id), reverse=True)
        return [copy.copy(t) for t in rows]

    def get_trades_by_agent(self, agent_id: str) -> List[TradeRecord]:
        rows = [t for t in self._trades.values() if t.recommended_by == agent_id]
        return self._newest_entry_first(rows)

    @staticmethod
    def _newest_entry_first(rows: List[TradeRecord]) -> List[TradeRecord]:
        rows = sorted(rows, key=lambda t: (t.entry_date, t.id), reverse=True)
        return [copy.copy(t) for t in rows]

    # ── Track Records ──────────────────────────────────────────────────────

    def _insert_track_record(self, record: TrackRecord) -> int:
        record_id = self._next_record_id
        self._next_record_id += 1
        stored = copy.copy(record)
        stored.id = record_id
        self._records[record_id] = stored
        return record_id

    def _write_resolution(self, record: TrackRecord) -> None:
        self._records[record.id] = copy.copy(record)

    def get_track_record(self, record_id: int) -> Optional[TrackRecord]:
        record = self._records.get(record_id)
        return copy.copy(record) if record else None

    def get_agent_track_record(self, agent_id: str) -> List[TrackRecord]:
        rows = [r for r in self._records.values() if r.agent_id == agent_id]
        return self._newest_recommendation_first(rows)

    def get_agent_track_record_for_symbol(self, agent_id: str, symbol: str) -> List[TrackRecord]:
        symbol = symbol.upper()
        rows = [
            r for r in self._records.values()
            if r.agent_id == agent_id and r.symbol == symbol
        ]
        return self._newest_recommendation_first(rows)

    def get_recent_recommendations(self, agent_id: str, limit: int = 10) -> List[TrackRecord]:
        return self.get_agent_track_record(agent_id)[: max(0, int(limit))]

    def list_agent_ids(self) -> List[str]:
        return sorted({r.agent_id for r in self._records.values()})

    @staticmethod
    def _newest_recommendation_first(rows: List[TrackRecord]) -> List[TrackRecord]:
        rows = sorted(rows, key=lambda r: (r.recommended_at, r.id), reverse=True)
        return [copy.copy(r) for r in rows]

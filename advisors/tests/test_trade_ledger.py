"""
test_trade_ledger.py — Tests for the trade ledger (SQLite and in-memory).

Coverage:
  - NewTrade validation: empty fields, bad action, non-positive qty/price
  - Trade lifecycle: open → terminal exactly once, P&L and holding days
  - Queries: open/closed ordering, TradeFilters, per-agent trades
  - Track records: pending invariant, resolution, days_to_outcome
  - SQLite specifics: file persistence, context manager
"""

from __future__ import annotations

import pytest

from trade_ledger import (
    LedgerValidationError,
    NewTrade,
    PendingRecommendationExistsError,
    SQLiteTradeLedger,
    TrackRecordAlreadyResolvedError,
    TrackRecordNotFoundError,
    TradeAlreadyClosedError,
    TradeFilters,
    TradeNotFoundError,
    TradeRecord,
    compute_close,
    days_between,
    is_long_action,
)


def make_trade(**overrides) -> NewTrade:
    fields = dict(
        symbol="AAPL",
        action="BUY",
        quantity=10,
        entry_price=100.0,
        recommended_by="citadel-technical",
        entry_date="2026-01-05T14:30:00+00:00",
        stop_loss=95.0,
        take_profit=120.0,
        confidence=70.0,
    )
    fields.update(overrides)
    return NewTrade(**fields)


# ─── Helpers ──────────────────────────────────────────────────────────────────


class TestHelpers:
    @pytest.mark.parametrize("action,expected", [
        ("BUY", True), ("STRONG_BUY", True),
        ("SELL", False), ("STRONG_SELL", False), ("HOLD", False),
    ])
    def test_is_long_action(self, action, expected):
        assert is_long_action(action) is expected

    def test_days_between_rounds(self):
        assert days_between("2026-01-01T00:00:00+00:00", "2026-01-03T13:00:00+00:00") == 3

    def test_days_between_never_negative(self):
        assert days_between("2026-01-05T00:00:00+00:00", "2026-01-01T00:00:00+00:00") == 0

    def test_days_between_naive_is_utc(self):
        assert days_between("2026-01-01T00:00:00", "2026-01-02T00:00:00Z") == 1

    def test_compute_close_short(self):
        trade = TradeRecord(
            id=1, symbol="TSLA", action="SELL", quantity=5, entry_price=200.0,
            entry_date="2026-01-01T00:00:00+00:00", recommended_by="a",
        )
        result = compute_close(trade, 180.0, "2026-01-11T00:00:00+00:00", "closed")
        assert result.pnl_dollars == pytest.approx(100.0)
        assert result.pnl_percent == pytest.approx(10.0)
        assert result.holding_days == 10


# ─── Recording Trades ─────────────────────────────────────────────────────────


class TestRecordTrade:
    def test_returns_id_and_stores_open(self, ledger):
        trade_id = ledger.record_trade(make_trade())
        trade = ledger.get_trade(trade_id)
        assert trade.status == "open"
        assert trade.is_open
        assert trade.symbol == "AAPL"
        assert trade.exit_price is None
        assert trade.pnl_dollars is None

    def test_symbol_upper_cased(self, ledger):
        trade_id = ledger.record_trade(make_trade(symbol=" msft "))
        assert ledger.get_trade(trade_id).symbol == "MSFT"

    def test_ids_increase(self, ledger):
        a = ledger.record_trade(make_trade())
        b = ledger.record_trade(make_trade(symbol="MSFT"))
        assert b > a

    def test_unknown_trade_is_none(self, ledger):
        assert ledger.get_trade(999) is None

    @pytest.mark.parametrize("overrides", [
        {"symbol": ""},
        {"recommended_by": "  "},
        {"action": "BUY_MORE"},
        {"quantity": 0},
        {"quantity": -5},
        {"quantity": 2.5},
        {"entry_price": 0},
        {"entry_price": -10.0},
        {"confidence": 101},
        {"entry_date": "soon"},
    ])
    def test_validation(self, ledger, overrides):
        with pytest.raises(LedgerValidationError):
            ledger.record_trade(make_trade(**overrides))
        assert ledger.get_open_trades() == []


# ─── Closing Trades ───────────────────────────────────────────────────────────


class TestCloseTrade:
    def test_long_close_computes_pnl(self, ledger):
        trade_id = ledger.record_trade(make_trade())
        closed = ledger.close_trade(trade_id, 110.0, "2026-01-12T14:30:00+00:00")
        assert closed.status == "closed"
        assert closed.exit_price == 110.0
        assert closed.pnl_dollars == pytest.approx(100.0)
        assert closed.pnl_percent == pytest.approx(10.0)
        assert closed.holding_days == 7

    def test_short_close_computes_pnl(self, ledger):
        trade_id = ledger.record_trade(make_trade(action="STRONG_SELL"))
        closed = ledger.close_trade(trade_id, 110.0, "2026-01-06T14:30:00+00:00")
        assert closed.pnl_dollars == pytest.approx(-100.0)
        assert closed.pnl_percent == pytest.approx(-10.0)

    def test_close_with_terminal_status(self, ledger):
        trade_id = ledger.record_trade(make_trade())
        closed = ledger.close_trade(trade_id, 95.0, status="stopped_out")
        assert closed.status == "stopped_out"

    def test_second_close_fails_without_change(self, ledger):
        trade_id = ledger.record_trade(make_trade())
        first = ledger.close_trade(trade_id, 110.0, "2026-01-12T14:30:00+00:00")
        with pytest.raises(TradeAlreadyClosedError):
            ledger.close_trade(trade_id, 50.0, "2026-01-13T14:30:00+00:00", status="stopped_out")
        after = ledger.get_trade(trade_id)
        assert after.status == first.status
        assert after.pnl_dollars == first.pnl_dollars
        assert after.exit_price == 110.0

    def test_close_unknown(self, ledger):
        with pytest.raises(TradeNotFoundError):
            ledger.close_trade(42, 100.0)

    def test_close_to_open_rejected(self, ledger):
        trade_id = ledger.record_trade(make_trade())
        with pytest.raises(LedgerValidationError):
            ledger.close_trade(trade_id, 100.0, status="open")

    def test_non_positive_exit_rejected(self, ledger):
        trade_id = ledger.record_trade(make_trade())
        with pytest.raises(LedgerValidationError):
            ledger.close_trade(trade_id, 0.0)
        assert ledger.get_trade(trade_id).is_open

    def test_unparseable_exit_date_rejected(self, ledger):
        trade_id = ledger.record_trade(make_trade())
        with pytest.raises(LedgerValidationError, match="exit_date"):
            ledger.close_trade(trade_id, 110.0, "next tuesday")
        assert ledger.get_trade(trade_id).is_open


# ─── Status Updates ───────────────────────────────────────────────────────────


class TestUpdateStatus:
    def test_closed_trade_can_be_cancelled(self, ledger):
        trade_id = ledger.record_trade(make_trade())
        ledger.close_trade(trade_id, 95.0)
        updated = ledger.update_trade_status(trade_id, "cancelled")
        assert updated.status == "cancelled"
        assert updated.exit_price == 95.0

    def test_terminal_status_not_relabelled(self, ledger):
        trade_id = ledger.record_trade(make_trade())
        ledger.close_trade(trade_id, 95.0)
        with pytest.raises(TradeAlreadyClosedError):
            ledger.update_trade_status(trade_id, "stopped_out")
        assert ledger.get_trade(trade_id).status == "closed"

    def test_cannot_reopen(self, ledger):
        trade_id = ledger.record_trade(make_trade())
        ledger.close_trade(trade_id, 95.0)
        with pytest.raises(TradeAlreadyClosedError):
            ledger.update_trade_status(trade_id, "open")

    def test_open_trade_must_be_closed_properly(self, ledger):
        trade_id = ledger.record_trade(make_trade())
        with pytest.raises(LedgerValidationError):
            ledger.update_trade_status(trade_id, "cancelled")

    def test_unknown(self, ledger):
        with pytest.raises(TradeNotFoundError):
            ledger.update_trade_status(7, "closed")


# ─── Queries ──────────────────────────────────────────────────────────────────


class TestQueries:
    def test_open_trades_newest_first(self, ledger):
        ledger.record_trade(make_trade(symbol="A", entry_date="2026-01-01T00:00:00+00:00"))
        ledger.record_trade(make_trade(symbol="B", entry_date="2026-01-03T00:00:00+00:00"))
        ledger.record_trade(make_trade(symbol="C", entry_date="2026-01-02T00:00:00+00:00"))
        assert [t.symbol for t in ledger.get_open_trades()] == ["B", "C", "A"]

    def test_open_excludes_closed(self, ledger):
        a = ledger.record_trade(make_trade(symbol="A"))
        ledger.record_trade(make_trade(symbol="B"))
        ledger.close_trade(a, 101.0)
        assert [t.symbol for t in ledger.get_open_trades()] == ["B"]
        assert [t.symbol for t in ledger.get_closed_trades()] == ["A"]

    def test_closed_newest_exit_first(self, ledger):
        a = ledger.record_trade(make_trade(symbol="A"))
        b = ledger.record_trade(make_trade(symbol="B"))
        ledger.close_trade(a, 101.0, "2026-02-02T00:00:00+00:00")
        ledger.close_trade(b, 101.0, "2026-02-01T00:00:00+00:00")
        assert [t.symbol for t in ledger.get_closed_trades()] == ["A", "B"]

    def _seed_closed(self, ledger):
        w = ledger.record_trade(make_trade(symbol="AAPL", recommended_by="alpha"))
        l = ledger.record_trade(make_trade(symbol="MSFT", recommended_by="beta"))
        s = ledger.record_trade(make_trade(symbol="AAPL", recommended_by="beta"))
        ledger.close_trade(w, 110.0, "2026-01-10T00:00:00+00:00")
        ledger.close_trade(l, 90.0, "2026-01-20T00:00:00+00:00", status="stopped_out")
        ledger.close_trade(s, 100.0, "2026-01-30T00:00:00+00:00", status="expired")

    def test_filter_symbol(self, ledger):
        self._seed_closed(ledger)
        assert {t.recommended_by for t in ledger.get_closed_trades(TradeFilters(symbol="aapl"))} == {"alpha", "beta"}

    def test_filter_agent(self, ledger):
        self._seed_closed(ledger)
        assert len(ledger.get_closed_trades(TradeFilters(agent_id="beta"))) == 2

    def test_filter_dates(self, ledger):
        self._seed_closed(ledger)
        rows = ledger.get_closed_trades(TradeFilters(
            start_date="2026-01-15T00:00:00+00:00", end_date="2026-01-25T00:00:00+00:00",
        ))
        assert [t.symbol for t in rows] == ["MSFT"]

    def test_filter_outcome(self, ledger):
        self._seed_closed(ledger)
        assert [t.exit_price for t in ledger.get_closed_trades(TradeFilters(outcome="win"))] == [110.0]
        assert len(ledger.get_closed_trades(TradeFilters(outcome="loss"))) == 2

    def test_filter_status(self, ledger):
        self._seed_closed(ledger)
        rows = ledger.get_closed_trades(TradeFilters(status="stopped_out"))
        assert [t.symbol for t in rows] == ["MSFT"]

    def test_trades_by_agent_any_status(self, ledger):
        a = ledger.record_trade(make_trade(recommended_by="alpha"))
        ledger.record_trade(make_trade(symbol="MSFT", recommended_by="alpha"))
        ledger.record_trade(make_trade(recommended_by="beta"))
        ledger.close_trade(a, 105.0)
        assert len(ledger.get_trades_by_agent("alpha")) == 2

    def test_returned_records_are_snapshots(self, ledger):
        trade_id = ledger.record_trade(make_trade())
        snapshot = ledger.get_trade(trade_id)
        ledger.close_trade(trade_id, 110.0)
        assert snapshot.status == "open"


# ─── Track Records ────────────────────────────────────────────────────────────


class TestTrackRecords:
    def test_record_is_pending(self, ledger):
        rec_id = ledger.record_recommendation("alpha", "aapl", "BUY", 80, 150.0, 140.0)
        rec = ledger.get_track_record(rec_id)
        assert rec.outcome == "pending"
        assert rec.is_pending
        assert rec.symbol == "AAPL"
        assert rec.target_price == 150.0

    def test_second_pending_for_pair_rejected(self, ledger):
        ledger.record_recommendation("alpha", "AAPL", "BUY")
        with pytest.raises(PendingRecommendationExistsError):
            ledger.record_recommendation("alpha", "AAPL", "STRONG_BUY")

    def test_other_agent_or_symbol_allowed(self, ledger):
        ledger.record_recommendation("alpha", "AAPL", "BUY")
        ledger.record_recommendation("beta", "AAPL", "BUY")
        ledger.record_recommendation("alpha", "MSFT", "SELL")
        assert ledger.list_agent_ids() == ["alpha", "beta"]

    def test_new_pending_after_resolution(self, ledger):
        first = ledger.record_recommendation("alpha", "AAPL", "BUY")
        ledger.resolve_recommendation(first, "win", 4.2)
        second = ledger.record_recommendation("alpha", "AAPL", "BUY")
        assert ledger.find_pending_recommendation("alpha", "AAPL").id == second

    def test_resolve_sets_fields(self, ledger):
        rec_id = ledger.record_recommendation(
            "alpha", "AAPL", "BUY", recommended_at="2026-01-01T00:00:00+00:00"
        )
        rec = ledger.resolve_recommendation(
            rec_id, "target_hit", 12.5, peak_return=12.5,
            resolved_at="2026-01-08T00:00:00+00:00",
        )
        assert rec.outcome == "target_hit"
        stored = ledger.get_track_record(rec_id)
        assert stored.actual_return == 12.5
        assert stored.peak_return == 12.5
        assert stored.worst_drawdown is None
        assert stored.days_to_outcome == 7
        assert stored.resolved_at == "2026-01-08T00:00:00+00:00"

    def test_resolve_twice_fails(self, ledger):
        rec_id = ledger.record_recommendation("alpha", "AAPL", "BUY")
        ledger.resolve_recommendation(rec_id, "loss", -3.0)
        with pytest.raises(TrackRecordAlreadyResolvedError):
            ledger.resolve_recommendation(rec_id, "win", 3.0)
        assert ledger.get_track_record(rec_id).outcome == "loss"

    def test_resolve_unknown(self, ledger):
        with pytest.raises(TrackRecordNotFoundError):
            ledger.resolve_recommendation(99, "win", 1.0)

    def test_resolve_to_pending_rejected(self, ledger):
        rec_id = ledger.record_recommendation("alpha", "AAPL", "BUY")
        with pytest.raises(LedgerValidationError):
            ledger.resolve_recommendation(rec_id, "pending", 0.0)

    def test_find_pending_none(self, ledger):
        assert ledger.find_pending_recommendation("alpha", "AAPL") is None

    def test_find_pending_prefers_pipeline(self, ledger):
        rec_id = ledger.record_recommendation("alpha", "AAPL", "BUY", pipeline_id="run-7")
        found = ledger.find_pending_recommendation("alpha", "AAPL", pipeline_id="run-7")
        assert found.id == rec_id
        assert found.pipeline_id == "run-7"

    def test_agent_history_newest_first_and_limit(self, ledger):
        for i, symbol in enumerate(["A", "B", "C"]):
            ledger.record_recommendation(
                "alpha", symbol, "BUY", recommended_at=f"2026-01-0{i + 1}T00:00:00+00:00"
            )
        assert [r.symbol for r in ledger.get_agent_track_record("alpha")] == ["C", "B", "A"]
        assert [r.symbol for r in ledger.get_recent_recommendations("alpha", limit=2)] == ["C", "B"]

    def test_history_for_symbol(self, ledger):
        ledger.record_recommendation("alpha", "AAPL", "BUY")
        ledger.record_recommendation("alpha", "MSFT", "BUY")
        rows = ledger.get_agent_track_record_for_symbol("alpha", "aapl")
        assert [r.symbol for r in rows] == ["AAPL"]

    def test_confidence_range_validated(self, ledger):
        with pytest.raises(LedgerValidationError):
            ledger.record_recommendation("alpha", "AAPL", "BUY", confidence=-1)

    def test_unparseable_recommended_at_rejected(self, ledger):
        with pytest.raises(LedgerValidationError, match="recommended_at"):
            ledger.record_recommendation("alpha", "AAPL", "BUY", recommended_at="yesterday")
        assert ledger.find_pending_recommendation("alpha", "AAPL") is None


# ─── SQLite Specifics ─────────────────────────────────────────────────────────


class TestSQLiteLedger:
    def test_persists_across_connections(self, tmp_path):
        path = str(tmp_path / "advisors.db")
        with SQLiteTradeLedger(path) as ledger:
            trade_id = ledger.record_trade(make_trade())
            ledger.record_recommendation("alpha", "AAPL", "BUY")
        with SQLiteTradeLedger(path) as ledger:
            assert ledger.get_trade(trade_id).symbol == "AAPL"
            assert ledger.find_pending_recommendation("alpha", "AAPL") is not None

    def test_schema_creation_is_idempotent(self, tmp_path):
        path = str(tmp_path / "advisors.db")
        SQLiteTradeLedger(path).close()
        ledger = SQLiteTradeLedger(path)
        assert ledger.get_open_trades() == []
        ledger.close()

    def test_to_dict_round_trips_columns(self):
        ledger = SQLiteTradeLedger()
        trade_id = ledger.record_trade(make_trade(pipeline_id="run-1", notes="breakout"))
        d = ledger.get_trade(trade_id).to_dict()
        assert d["pipeline_id"] == "run-1"
        assert d["notes"] == "breakout"
        assert d["recommended_by"] == "citadel-technical"
        ledger.close()

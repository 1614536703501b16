"""
test_trading_engine.py — Tests for TradingEngine execution and triggers.
"""

from __future__ import annotations

import pytest

from paper_portfolio import PaperPortfolio
from trade_ledger import (
    NewTrade,
    PendingRecommendationExistsError,
    TrackRecord,
    TradeAlreadyClosedError,
    TradeNotFoundError,
)
from trading_engine import (
    InsufficientCashError,
    InvalidEntryPriceError,
    NotActionableError,
    Recommendation,
    TradingEngine,
    evaluate_triggers,
)


@pytest.fixture
def portfolio(ledger):
    p = PaperPortfolio(ledger, starting_capital=100_000.0)
    p.initialize()
    return p


@pytest.fixture
def engine(ledger, portfolio):
    return TradingEngine(ledger, portfolio, max_position_pct=0.10)


def aapl_rec(**overrides):
    fields = dict(symbol="AAPL", action="BUY", confidence=80, target_price=150.0, stop_loss=140.0)
    fields.update(overrides)
    return Recommendation(**fields)


def seed_open(ledger, **overrides):
    fields = dict(
        symbol="SYM", action="BUY", quantity=10, entry_price=100.0,
        recommended_by="alpha", stop_loss=95.0, take_profit=120.0,
        entry_date="2026-01-01T00:00:00+00:00",
    )
    fields.update(overrides)
    trade_id = ledger.record_trade(NewTrade(**fields))
    ledger.record_recommendation(fields["recommended_by"], fields["symbol"], fields["action"])
    return trade_id


# ─── Recommendation ───────────────────────────────────────────────────────────


class TestRecommendation:
    def test_entry_falls_back_to_target(self):
        rec = aapl_rec()
        assert rec.entry_price == 150.0
        assert rec.take_profit is None

    def test_quoted_price_is_entry(self):
        rec = aapl_rec(current_price=145.0)
        assert rec.entry_price == 145.0
        assert rec.take_profit == 150.0


# ─── execute ──────────────────────────────────────────────────────────────────


class TestExecute:
    def test_aapl_scenario(self, engine, ledger, portfolio):
        trade = engine.execute(aapl_rec(), agent_id="citadel-technical", pipeline_id="run-1")
        assert trade.quantity == 66
        assert trade.entry_price == 150.0
        assert trade.status == "open"
        assert trade.pipeline_id == "run-1"
        assert portfolio.virtual_cash == pytest.approx(100_000.0 - 9_900.0)
        assert [t.id for t in portfolio.positions] == [trade.id]

    def test_records_pending_track_record(self, engine, ledger):
        engine.execute(aapl_rec(), agent_id="citadel-technical")
        rec = ledger.find_pending_recommendation("citadel-technical", "AAPL")
        assert rec is not None
        assert rec.recommendation == "BUY"
        assert rec.target_price == 150.0

    def test_short_credits_cash(self, engine, portfolio):
        trade = engine.execute(
            Recommendation(symbol="TSLA", action="SELL", confidence=80,
                           current_price=200.0, target_price=170.0, stop_loss=210.0),
            agent_id="sentinel",
        )
        assert portfolio.virtual_cash == pytest.approx(100_000.0 + trade.quantity * 200.0)
        # short marked at entry leaves total value unchanged
        assert portfolio.total_portfolio_value == pytest.approx(100_000.0)

    def test_non_positive_entry_fails_fast(self, engine, ledger):
        with pytest.raises(InvalidEntryPriceError):
            engine.execute(aapl_rec(target_price=None), agent_id="alpha")
        with pytest.raises(InvalidEntryPriceError):
            engine.execute(aapl_rec(target_price=0.0), agent_id="alpha")
        assert ledger.get_open_trades() == []
        assert ledger.list_agent_ids() == []

    def test_hold_is_not_actionable(self, engine, ledger):
        with pytest.raises(NotActionableError):
            engine.execute(aapl_rec(action="HOLD"), agent_id="alpha")
        assert ledger.get_open_trades() == []

    def test_insufficient_cash(self, engine, ledger, portfolio):
        with pytest.raises(InsufficientCashError):
            engine.execute(aapl_rec(target_price=5_000.0, stop_loss=4_900.0),
                           agent_id="alpha", available_cash=1_000.0)
        assert ledger.get_open_trades() == []
        assert portfolio.virtual_cash == 100_000.0

    def test_duplicate_pending_rejected_before_persisting(self, engine, ledger):
        engine.execute(aapl_rec(), agent_id="alpha")
        with pytest.raises(PendingRecommendationExistsError):
            engine.execute(aapl_rec(), agent_id="alpha")
        assert len(ledger.get_open_trades()) == 1

    def test_explicit_sizing_inputs(self, engine):
        trade = engine.execute(aapl_rec(), agent_id="alpha",
                               portfolio_value=50_000.0, available_cash=50_000.0,
                               max_position_pct=0.05)
        assert trade.quantity == 16     # floor(2500 / 150)


# ─── evaluate_triggers ────────────────────────────────────────────────────────


class TestEvaluateTriggers:
    def _trade(self, ledger, **kw):
        return ledger.get_trade(seed_open(ledger, **kw))

    def test_long_stop(self, ledger):
        assert evaluate_triggers(self._trade(ledger), 94.0) == ("stopped_out", 95.0)

    def test_long_target(self, ledger):
        assert evaluate_triggers(self._trade(ledger), 125.0) == ("target_hit", 120.0)

    def test_long_inside_band(self, ledger):
        assert evaluate_triggers(self._trade(ledger), 100.0) is None

    def test_short_inverted(self, ledger):
        t = self._trade(ledger, action="SELL", stop_loss=105.0, take_profit=80.0)
        assert evaluate_triggers(t, 106.0) == ("stopped_out", 105.0)
        assert evaluate_triggers(t, 79.0) == ("target_hit", 80.0)
        assert evaluate_triggers(t, 95.0) is None

    def test_stop_wins_when_both_cross(self, ledger):
        t = self._trade(ledger, stop_loss=110.0, take_profit=105.0)
        assert evaluate_triggers(t, 108.0) == ("stopped_out", 110.0)
        assert evaluate_triggers(t, 104.0) == ("stopped_out", 110.0)

    def test_no_levels(self, ledger):
        t = self._trade(ledger, stop_loss=None, take_profit=None)
        assert evaluate_triggers(t, 1.0) is None


# ─── check_triggers ───────────────────────────────────────────────────────────


class TestCheckTriggers:
    def test_closes_at_stop_not_gap_price(self, engine, ledger):
        trade_id = seed_open(ledger)
        closed = engine.check_triggers({"SYM": 94.0})
        assert len(closed) == 1
        assert closed[0].id == trade_id
        assert closed[0].status == "stopped_out"
        assert closed[0].exit_price == 95.0
        assert closed[0].pnl_dollars == pytest.approx(-50.0)

    def test_resolves_track_record(self, engine, ledger):
        seed_open(ledger)
        engine.check_triggers({"SYM": 130.0})
        rec = ledger.get_agent_track_record("alpha")[0]
        assert rec.outcome == "target_hit"
        assert rec.actual_return == pytest.approx(20.0)

    def test_idempotent(self, engine, ledger):
        seed_open(ledger)
        assert len(engine.check_triggers({"SYM": 94.0})) == 1
        assert engine.check_triggers({"SYM": 90.0}) == []

    def test_missing_price_skipped(self, engine, ledger):
        seed_open(ledger)
        assert engine.check_triggers({"OTHER": 1.0}) == []
        assert len(ledger.get_open_trades()) == 1

    def test_empty_prices_noop(self, engine, ledger):
        seed_open(ledger)
        assert engine.check_triggers({}) == []

    def test_cash_returned_on_close(self, engine, ledger, portfolio):
        trade = engine.execute(aapl_rec(current_price=150.0, target_price=160.0), agent_id="alpha")
        engine.check_triggers({"AAPL": 165.0})
        expected = 100_000.0 + trade.quantity * (160.0 - 150.0)
        assert portfolio.virtual_cash == pytest.approx(expected)
        assert portfolio.positions == ()

    def test_short_cover_debits_cash(self, engine, ledger, portfolio):
        trade = engine.execute(
            Recommendation(symbol="TSLA", action="STRONG_SELL", confidence=80,
                           current_price=200.0, target_price=170.0, stop_loss=210.0),
            agent_id="sentinel",
        )
        engine.check_triggers({"TSLA": 215.0})
        assert portfolio.virtual_cash == pytest.approx(100_000.0 - trade.quantity * 10.0)

    def test_unresolvable_track_record_does_not_stop_sweep(self, engine, ledger, portfolio):
        ledger.record_trade(NewTrade(
            symbol="AAPL", action="BUY", quantity=10, entry_price=100.0,
            recommended_by="alpha", stop_loss=95.0, take_profit=120.0,
            entry_date="2026-01-01T00:00:00+00:00",
        ))
        ledger._insert_track_record(TrackRecord(
            id=0, agent_id="alpha", symbol="AAPL", recommendation="BUY",
            recommended_at="yesterday", outcome="pending",
        ))
        seed_open(ledger, symbol="MSFT")

        closed = engine.check_triggers({"AAPL": 90.0, "MSFT": 90.0})

        assert sorted(t.symbol for t in closed) == ["AAPL", "MSFT"]
        assert all(t.status == "stopped_out" for t in closed)
        assert portfolio.positions == ()
        assert ledger.get_agent_track_record_for_symbol("alpha", "MSFT")[0].outcome == "stopped_out"


# ─── Manual Close / Expiry ────────────────────────────────────────────────────


class TestClosePosition:
    def test_manual_close_at_market(self, engine, ledger):
        trade_id = seed_open(ledger)
        closed = engine.close_position(trade_id, 103.0)
        assert closed.status == "closed"
        assert closed.exit_price == 103.0
        rec = ledger.get_agent_track_record("alpha")[0]
        assert rec.outcome == "win"

    def test_close_twice(self, engine, ledger):
        trade_id = seed_open(ledger)
        engine.close_position(trade_id, 103.0)
        with pytest.raises(TradeAlreadyClosedError):
            engine.close_position(trade_id, 104.0)

    def test_close_unknown(self, engine):
        with pytest.raises(TradeNotFoundError):
            engine.close_position(404, 10.0)


class TestExpirePositions:
    def test_expires_old_trades(self, engine, ledger):
        old = seed_open(ledger, entry_date="2026-01-01T00:00:00+00:00")
        seed_open(ledger, symbol="NEW", entry_date="2026-01-25T00:00:00+00:00")
        expired = engine.expire_positions({"SYM": 101.0}, max_holding_days=20,
                                          now="2026-01-30T00:00:00+00:00")
        assert [t.id for t in expired] == [old]
        assert expired[0].status == "expired"
        assert expired[0].holding_days == 29
        assert ledger.get_agent_track_record_for_symbol("alpha", "SYM")[0].outcome == "expired"

    def test_unpriced_expires_at_entry(self, engine, ledger):
        seed_open(ledger)
        expired = engine.expire_positions({}, max_holding_days=1, now="2026-02-01T00:00:00+00:00")
        assert expired[0].exit_price == 100.0
        assert expired[0].pnl_dollars == 0.0

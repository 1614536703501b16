"""
trade_ledger.py — Persistent store for paper trades and agent track records.

Two tables back the whole paper trading core:

    trades               one row per paper position, open → terminal once
    agent_track_records  one row per acted-on recommendation, resolved once

TradeLedger is the repository interface every other module talks to; it
carries the lifecycle rules (validation, single close, single resolution,
one pending record per agent+symbol) so both implementations enforce them
identically:

    SQLiteTradeLedger   durable, file-backed (":memory:" for tests)
    InMemoryTradeLedger non-durable, dict-backed (memory_ledger.py)

Usage:
    ledger = SQLiteTradeLedger("advisors.db")
    trade_id = ledger.record_trade(NewTrade(symbol="AAPL", action="BUY", ...))
    closed = ledger.close_trade(trade_id, exit_price=155.0, status="target_hit")
    records = ledger.get_agent_track_record("citadel-technical")
"""

from __future__ import annotations

import json
import sqlite3
from abc import ABC, abstractmethod
from dataclasses import asdict, dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Dict, List, Optional

from loguru import logger


# ─── Enums ────────────────────────────────────────────────────────────────────


class RecommendationAction(str, Enum):
    BUY = "BUY"
    SELL = "SELL"
    STRONG_BUY = "STRONG_BUY"
    STRONG_SELL = "STRONG_SELL"
    HOLD = "HOLD"


class TradeStatus(str, Enum):
    OPEN = "open"
    CLOSED = "closed"
    STOPPED_OUT = "stopped_out"
    TARGET_HIT = "target_hit"
    EXPIRED = "expired"
    CANCELLED = "cancelled"


class RecommendationOutcome(str, Enum):
    WIN = "win"
    LOSS = "loss"
    BREAKEVEN = "breakeven"
    STOPPED_OUT = "stopped_out"
    TARGET_HIT = "target_hit"
    EXPIRED = "expired"
    PENDING = "pending"


LONG_ACTIONS = frozenset({RecommendationAction.BUY, RecommendationAction.STRONG_BUY})
TERMINAL_STATUSES = frozenset(s for s in TradeStatus if s is not TradeStatus.OPEN)

SECONDS_PER_DAY = 86_400.0


def is_long_action(action: str) -> bool:
    """BUY / STRONG_BUY open long positions; everything else is short-side."""
    return RecommendationAction(action) in LONG_ACTIONS


def utc_now_iso() -> str:
    return datetime.now(timezone.utc).isoformat()


def parse_timestamp(value: str) -> datetime:
    """Parse an ISO-8601 timestamp; naive values are taken as UTC."""
    dt = datetime.fromisoformat(value.replace("Z", "+00:00"))
    if dt.tzinfo is None:
        dt = dt.replace(tzinfo=timezone.utc)
    return dt


def days_between(start: str, end: str) -> int:
    """Whole days from start to end, rounded, never negative."""
    delta = (parse_timestamp(end) - parse_timestamp(start)).total_seconds()
    return max(0, round(delta / SECONDS_PER_DAY))


# ─── Data Classes ─────────────────────────────────────────────────────────────


@dataclass
class NewTrade:
    """Input for opening a paper position."""
    symbol: str
    action: str
    quantity: int
    entry_price: float
    recommended_by: str
    entry_date: str = field(default_factory=utc_now_iso)
    stop_loss: Optional[float] = None
    take_profit: Optional[float] = None
    confidence: Optional[float] = None
    pipeline_id: Optional[str] = None
    notes: Optional[str] = None


@dataclass
class TradeRecord:
    """A paper trade as stored in the ledger."""
    id: int
    symbol: str
    action: str
    quantity: int
    entry_price: float
    entry_date: str
    recommended_by: str
    status: str = TradeStatus.OPEN.value
    exit_price: Optional[float] = None
    exit_date: Optional[str] = None
    stop_loss: Optional[float] = None
    take_profit: Optional[float] = None
    pnl_dollars: Optional[float] = None
    pnl_percent: Optional[float] = None
    holding_days: Optional[int] = None
    confidence: Optional[float] = None
    pipeline_id: Optional[str] = None
    notes: Optional[str] = None
    created_at: str = field(default_factory=utc_now_iso)

    @property
    def is_long(self) -> bool:
        return is_long_action(self.action)

    @property
    def is_open(self) -> bool:
        return self.status == TradeStatus.OPEN.value

    @property
    def cost_basis(self) -> float:
        return self.entry_price * self.quantity

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)

    def to_json(self) -> str:
        return json.dumps(self.to_dict())

    @classmethod
    def from_row(cls, row: sqlite3.Row) -> "TradeRecord":
        return cls(**{k: row[k] for k in row.keys()})


@dataclass
class TrackRecord:
    """One acted-on agent recommendation and, once known, its outcome."""
    id: int
    agent_id: str
    symbol: str
    recommendation: str
    recommended_at: str
    confidence: Optional[float] = None
    target_price: Optional[float] = None
    stop_loss: Optional[float] = None
    pipeline_id: Optional[str] = None
    outcome: Optional[str] = None
    actual_return: Optional[float] = None
    peak_return: Optional[float] = None
    worst_drawdown: Optional[float] = None
    days_to_outcome: Optional[int] = None
    resolved_at: Optional[str] = None
    created_at: str = field(default_factory=utc_now_iso)

    @property
    def is_pending(self) -> bool:
        return self.outcome is None or self.outcome == RecommendationOutcome.PENDING.value

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)

    @classmethod
    def from_row(cls, row: sqlite3.Row) -> "TrackRecord":
        return cls(**{k: row[k] for k in row.keys()})


@dataclass
class TradeFilters:
    """Optional filters for closed-trade queries (ANDed)."""
    symbol: Optional[str] = None
    agent_id: Optional[str] = None
    start_date: Optional[str] = None
    end_date: Optional[str] = None
    outcome: Optional[str] = None       # "win" (pnl > 0) | "loss" (pnl <= 0)
    status: Optional[str] = None        # a specific terminal status


@dataclass
class CloseResult:
    """Realized figures for a position closed at exit_price."""
    exit_price: float
    exit_date: str
    status: str
    pnl_dollars: float
    pnl_percent: float
    holding_days: int


def compute_close(
    trade: TradeRecord, exit_price: float, exit_date: str, status: str
) -> CloseResult:
    """Direction-aware realized P&L and holding period for a close."""
    direction = 1.0 if trade.is_long else -1.0
    diff = direction * (exit_price - trade.entry_price)
    return CloseResult(
        exit_price=exit_price,
        exit_date=exit_date,
        status=status,
        pnl_dollars=diff * trade.quantity,
        pnl_percent=diff / trade.entry_price * 100.0,
        holding_days=days_between(trade.entry_date, exit_date),
    )


# ─── Exceptions ───────────────────────────────────────────────────────────────


class LedgerError(Exception):
    """Base exception for trade ledger errors."""


class LedgerValidationError(LedgerError):
    """Raised when a record fails validation."""


class TradeNotFoundError(LedgerError):
    """No trade with the given id."""


class TradeAlreadyClosedError(LedgerError):
    """The trade already reached a terminal status."""


class TrackRecordNotFoundError(LedgerError):
    """No track record with the given id."""


class TrackRecordAlreadyResolvedError(LedgerError):
    """The track record already has a final outcome."""


class PendingRecommendationExistsError(LedgerError):
    """The agent already has an unresolved recommendation on the symbol."""


# ─── Repository Interface ─────────────────────────────────────────────────────


class TradeLedger(ABC):
    """
    Repository for trades and track records.

    Subclasses provide storage primitives; lifecycle rules live here.
    Writes for a given trade id are serialized by the storage layer: a close
    only applies while the row is still open.
    """

    # ── Trades ─────────────────────────────────────────────────────────────

    def record_trade(self, trade: NewTrade) -> int:
        """Persist a new open trade. Returns its id."""
        self._validate_new_trade(trade)
        trade.symbol = trade.symbol.strip().upper()
        trade.action = RecommendationAction(trade.action).value
        trade_id = self._insert_trade(trade)
        logger.debug(
            "Ledger: trade #{} recorded {} {} x {} @ {:.2f}",
            trade_id, trade.action, trade.quantity, trade.symbol, trade.entry_price,
        )
        return trade_id

    def close_trade(
        self,
        trade_id: int,
        exit_price: float,
        exit_date: Optional[str] = None,
        status: str = TradeStatus.CLOSED.value,
    ) -> TradeRecord:
        """
        Close an open trade, computing realized P&L and holding days.

        Raises TradeNotFoundError / TradeAlreadyClosedError; a failed close
        leaves the row untouched.
        """
        status = TradeStatus(status).value
        if status == TradeStatus.OPEN.value:
            raise LedgerValidationError("close status must be terminal, got 'open'")
        if not isinstance(exit_price, (int, float)) or exit_price <= 0:
            raise LedgerValidationError(f"exit_price must be positive, got {exit_price}")

        trade = self.get_trade(trade_id)
        if trade is None:
            raise TradeNotFoundError(f"Trade #{trade_id} not found")
        if not trade.is_open:
            raise TradeAlreadyClosedError(f"Trade #{trade_id} is already {trade.status}")

        exit_date = self._require_timestamp(exit_date or utc_now_iso(), "exit_date")
        result = compute_close(trade, float(exit_price), exit_date, status)
        if not self._apply_close(trade_id, result):
            raise TradeAlreadyClosedError(f"Trade #{trade_id} was closed concurrently")

        closed = self.get_trade(trade_id)
        assert closed is not None
        return closed

    def update_trade_status(self, trade_id: int, status: str) -> TradeRecord:
        """
        Mark a closed trade as cancelled.

        The only relabel allowed after close is to cancelled, which voids
        the paper trade while keeping its recorded exit and P&L. A trade
        never reopens, and an open trade must go through close_trade().
        """
        status = TradeStatus(status).value
        trade = self.get_trade(trade_id)
        if trade is None:
            raise TradeNotFoundError(f"Trade #{trade_id} not found")
        if not trade.is_open and status != TradeStatus.CANCELLED.value:
            raise TradeAlreadyClosedError(
                f"Trade #{trade_id} is already {trade.status}; it can only be cancelled"
            )
        if trade.is_open and status != TradeStatus.OPEN.value:
            raise LedgerValidationError(
                f"Trade #{trade_id} is open; use close_trade() to reach {status!r}"
            )
        self._write_status(trade_id, status)
        updated = self.get_trade(trade_id)
        assert updated is not None
        return updated

    @abstractmethod
    def get_trade(self, trade_id: int) -> Optional[TradeRecord]:
        ...

    @abstractmethod
    def get_open_trades(self) -> List[TradeRecord]:
        """Open trades, newest entry first."""

    @abstractmethod
    def get_closed_trades(self, filters: Optional[TradeFilters] = None) -> List[TradeRecord]:
        """Terminal trades matching filters, newest exit first."""

    @abstractmethod
    def get_trades_by_agent(self, agent_id: str) -> List[TradeRecord]:
        """All trades (any status) recommended by agent_id, newest entry first."""

    # ── Track Records ──────────────────────────────────────────────────────

    def record_recommendation(
        self,
        agent_id: str,
        symbol: str,
        recommendation: str,
        confidence: Optional[float] = None,
        target_price: Optional[float] = None,
        stop_loss: Optional[float] = None,
        pipeline_id: Optional[str] = None,
        recommended_at: Optional[str] = None,
    ) -> int:
        """
        Record an acted-on recommendation as pending. Returns its id.

        At most one pending record may exist per (agent_id, symbol); a
        second one raises PendingRecommendationExistsError.
        """
        if not agent_id or not agent_id.strip():
            raise LedgerValidationError("agent_id must not be empty")
        if not symbol or not symbol.strip():
            raise LedgerValidationError("symbol must not be empty")
        if confidence is not None and not 0 <= confidence <= 100:
            raise LedgerValidationError(f"confidence must be within 0..100, got {confidence}")
        symbol = symbol.strip().upper()
        recommended_at = self._require_timestamp(recommended_at or utc_now_iso(), "recommended_at")
        recommendation = RecommendationAction(recommendation).value

        existing = self.find_pending_recommendation(agent_id, symbol)
        if existing is not None:
            raise PendingRecommendationExistsError(
                f"{agent_id} already has pending recommendation #{existing.id} on {symbol}"
            )

        record = TrackRecord(
            id=0,
            agent_id=agent_id,
            symbol=symbol,
            recommendation=recommendation,
            recommended_at=recommended_at,
            confidence=confidence,
            target_price=target_price,
            stop_loss=stop_loss,
            pipeline_id=pipeline_id,
            outcome=RecommendationOutcome.PENDING.value,
        )
        return self._insert_track_record(record)

    def resolve_recommendation(
        self,
        record_id: int,
        outcome: str,
        actual_return: float,
        peak_return: Optional[float] = None,
        worst_drawdown: Optional[float] = None,
        resolved_at: Optional[str] = None,
    ) -> TrackRecord:
        """Attach the final outcome to a pending track record."""
        outcome = RecommendationOutcome(outcome).value
        if outcome == RecommendationOutcome.PENDING.value:
            raise LedgerValidationError("cannot resolve a recommendation to 'pending'")

        record = self.get_track_record(record_id)
        if record is None:
            raise TrackRecordNotFoundError(f"Track record #{record_id} not found")
        if not record.is_pending:
            raise TrackRecordAlreadyResolvedError(
                f"Track record #{record_id} already resolved as {record.outcome}"
            )

        resolved_at = self._require_timestamp(resolved_at or utc_now_iso(), "resolved_at")
        record.outcome = outcome
        record.actual_return = actual_return
        record.peak_return = peak_return
        record.worst_drawdown = worst_drawdown
        record.days_to_outcome = days_between(record.recommended_at, resolved_at)
        record.resolved_at = resolved_at
        self._write_resolution(record)
        return record

    def find_pending_recommendation(
        self, agent_id: str, symbol: str, pipeline_id: Optional[str] = None
    ) -> Optional[TrackRecord]:
        """
        The pending record for (agent_id, symbol), or None.

        When pipeline_id is given, a record from that pipeline is preferred.
        """
        pending = [
            r for r in self.get_agent_track_record_for_symbol(agent_id, symbol)
            if r.is_pending
        ]
        if not pending:
            return None
        if pipeline_id is not None:
            for record in pending:
                if record.pipeline_id == pipeline_id:
                    return record
        return pending[0]

    @abstractmethod
    def get_track_record(self, record_id: int) -> Optional[TrackRecord]:
        ...

    @abstractmethod
    def get_agent_track_record(self, agent_id: str) -> List[TrackRecord]:
        """All records for agent_id, newest recommendation first."""

    @abstractmethod
    def get_agent_track_record_for_symbol(self, agent_id: str, symbol: str) -> List[TrackRecord]:
        ...

    @abstractmethod
    def get_recent_recommendations(self, agent_id: str, limit: int = 10) -> List[TrackRecord]:
        ...

    @abstractmethod
    def list_agent_ids(self) -> List[str]:
        """Distinct agent ids with any track record, sorted."""

    # ── Lifecycle ──────────────────────────────────────────────────────────

    def close(self) -> None:
        """Release storage resources."""

    def __enter__(self) -> "TradeLedger":
        return self

    def __exit__(self, *_) -> None:
        self.close()

    # ── Storage Primitives ─────────────────────────────────────────────────

    @abstractmethod
    def _insert_trade(self, trade: NewTrade) -> int:
        ...

    @abstractmethod
    def _apply_close(self, trade_id: int, result: CloseResult) -> bool:
        """Write close figures if the trade is still open. False otherwise."""

    @abstractmethod
    def _write_status(self, trade_id: int, status: str) -> None:
        ...

    @abstractmethod
    def _insert_track_record(self, record: TrackRecord) -> int:
        ...

    @abstractmethod
    def _write_resolution(self, record: TrackRecord) -> None:
        ...

    # ── Validation ─────────────────────────────────────────────────────────

    @staticmethod
    def _validate_new_trade(trade: NewTrade) -> None:
        if not trade.symbol or not trade.symbol.strip():
            raise LedgerValidationError("symbol must not be empty")
        if not trade.recommended_by or not trade.recommended_by.strip():
            raise LedgerValidationError("recommended_by must not be empty")
        try:
            RecommendationAction(trade.action)
        except ValueError:
            raise LedgerValidationError(
                f"action must be one of {[a.value for a in RecommendationAction]}, got {trade.action!r}"
            ) from None
        if not isinstance(trade.quantity, int) or isinstance(trade.quantity, bool) or trade.quantity <= 0:
            raise LedgerValidationError(f"quantity must be a positive integer, got {trade.quantity!r}")
        if not isinstance(trade.entry_price, (int, float)) or trade.entry_price <= 0:
            raise LedgerValidationError(f"entry_price must be positive, got {trade.entry_price}")
        if trade.confidence is not None and not 0 <= trade.confidence <= 100:
            raise LedgerValidationError(f"confidence must be within 0..100, got {trade.confidence}")
        TradeLedger._require_timestamp(trade.entry_date, "entry_date")

    @staticmethod
    def _require_timestamp(value: str, name: str) -> str:
        try:
            parse_timestamp(value)
        except (TypeError, ValueError, AttributeError):
            raise LedgerValidationError(f"{name} must be an ISO-8601 timestamp, got {value!r}") from None
        return value


# ─── SQLite Implementation ────────────────────────────────────────────────────

_SCHEMA = (
    """
    CREATE TABLE IF NOT EXISTS trades (
        id              INTEGER PRIMARY KEY AUTOINCREMENT,
        symbol          TEXT NOT NULL,
        action          TEXT NOT NULL,
        quantity        INTEGER NOT NULL CHECK(quantity > 0),
        entry_price     REAL NOT NULL CHECK(entry_price > 0),
        entry_date      TEXT NOT NULL,
        exit_price      REAL,
        exit_date       TEXT,
        stop_loss       REAL,
        take_profit     REAL,
        status          TEXT NOT NULL DEFAULT 'open',
        pnl_dollars     REAL,
        pnl_percent     REAL,
        holding_days    INTEGER,
        recommended_by  TEXT NOT NULL,
        confidence      REAL,
        pipeline_id     TEXT,
        notes           TEXT,
        created_at      TEXT NOT NULL
    )
    """,
    """
    CREATE TABLE IF NOT EXISTS agent_track_records (
        id              INTEGER PRIMARY KEY AUTOINCREMENT,
        agent_id        TEXT NOT NULL,
        symbol          TEXT NOT NULL,
        recommendation  TEXT NOT NULL,
        confidence      REAL,
        target_price    REAL,
        stop_loss       REAL,
        pipeline_id     TEXT,
        recommended_at  TEXT NOT NULL,
        outcome         TEXT,
        actual_return   REAL,
        peak_return     REAL,
        worst_drawdown  REAL,
        days_to_outcome INTEGER,
        resolved_at     TEXT,
        created_at      TEXT NOT NULL
    )
    """,
    "CREATE INDEX IF NOT EXISTS idx_trades_symbol ON trades(symbol)",
    "CREATE INDEX IF NOT EXISTS idx_trades_status ON trades(status)",
    "CREATE INDEX IF NOT EXISTS idx_trades_recommended_by ON trades(recommended_by)",
    "CREATE INDEX IF NOT EXISTS idx_track_agent ON agent_track_records(agent_id)",
    "CREATE INDEX IF NOT EXISTS idx_track_symbol ON agent_track_records(symbol)",
)


class SQLiteTradeLedger(TradeLedger):
    """
    SQLite-backed ledger.

    Parameters
    ----------
    db_path : str
        Path to the database file, or ":memory:" for a throwaway database.
    """

    def __init__(self, db_path: str = ":memory:") -> None:
        self.db_path = db_path
        self._conn: sqlite3.Connection = sqlite3.connect(db_path, check_same_thread=False)
        self._conn.row_factory = sqlite3.Row
        self._init_schema()

    def _init_schema(self) -> None:
        """Create tables and indexes if they don't exist."""
        with self._conn:
            for statement in _SCHEMA:
                self._conn.execute(statement)

    def close(self) -> None:
        self._conn.close()

    # ── Trades ─────────────────────────────────────────────────────────────

    def _insert_trade(self, trade: NewTrade) -> int:
        try:
            with self._conn:
                cur = self._conn.execute(
                    """
                    INSERT INTO trades
                        (symbol, action, quantity, entry_price, entry_date, stop_loss,
                         take_profit, status, recommended_by, confidence, pipeline_id,
                         notes, created_at)
                    VALUES (?, ?, ?, ?, ?, ?, ?, 'open', ?, ?, ?, ?, ?)
                    """,
                    (trade.symbol, trade.action, trade.quantity, trade.entry_price,
                     trade.entry_date, trade.stop_loss, trade.take_profit,
                     trade.recommended_by, trade.confidence, trade.pipeline_id,
                     trade.notes, utc_now_iso()),
                )
        except sqlite3.DatabaseError as e:
            raise LedgerError(f"DB error recording trade: {e}") from e
        return int(cur.lastrowid)

    def _apply_close(self, trade_id: int, result: CloseResult) -> bool:
        with self._conn:
            cur = self._conn.execute(
                """
                UPDATE trades
                SET exit_price = ?, exit_date = ?, status = ?,
                    pnl_dollars = ?, pnl_percent = ?, holding_days = ?
                WHERE id = ? AND status = 'open'
                """,
                (result.exit_price, result.exit_date, result.status, result.pnl_dollars,
                 result.pnl_percent, result.holding_days, trade_id),
            )
        return cur.rowcount > 0

    def _write_status(self, trade_id: int, status: str) -> None:
        with self._conn:
            self._conn.execute("UPDATE trades SET status = ? WHERE id = ?", (status, trade_id))

    def get_trade(self, trade_id: int) -> Optional[TradeRecord]:
        row = self._conn.execute("SELECT * FROM trades WHERE id = ?", (trade_id,)).fetchone()
        return TradeRecord.from_row(row) if row else None

    def get_open_trades(self) -> List[TradeRecord]:
        rows = self._conn.execute(
            "SELECT * FROM trades WHERE status = 'open' ORDER BY entry_date DESC, id DESC"
        ).fetchall()
        return [TradeRecord.from_row(r) for r in rows]

    def get_closed_trades(self, filters: Optional[TradeFilters] = None) -> List[TradeRecord]:
        filters = filters or TradeFilters()
        if filters.status is not None:
            clauses: List[str] = ["status = ?"]
            params: List[Any] = [TradeStatus(filters.status).value]
        else:
            clauses = ["status != ?"]
            params = [TradeStatus.OPEN.value]

        if filters.symbol:
            clauses.append("symbol = ?")
            params.append(filters.symbol.upper())
        if filters.agent_id:
            clauses.append("recommended_by = ?")
            params.append(filters.agent_id)
        if filters.start_date:
            clauses.append("exit_date >= ?")
            params.append(filters.start_date)
        if filters.end_date:
            clauses.append("exit_date <= ?")
            params.append(filters.end_date)
        if filters.outcome == "win":
            clauses.append("pnl_dollars > 0")
        elif filters.outcome == "loss":
            clauses.append("pnl_dollars <= 0")

        sql = f"SELECT * FROM trades WHERE {' AND '.join(clauses)} ORDER BY exit_date DESC, id DESC"
        return [TradeRecord.from_row(r) for r in self._conn.execute(sql, params).fetchall()]

    def get_trades_by_agent(self, agent_id: str) -> List[TradeRecord]:
        rows = self._conn.execute(
            "SELECT * FROM trades WHERE recommended_by = ? ORDER BY entry_date DESC, id DESC",
            (agent_id,),
        ).fetchall()
        return [TradeRecord.from_row(r) for r in rows]

    # ── Track Records ──────────────────────────────────────────────────────

    def _insert_track_record(self, record: TrackRecord) -> int:
        with self._conn:
            cur = self._conn.execute(
                """
                INSERT INTO agent_track_records
                    (agent_id, symbol, recommendation, confidence, target_price, stop_loss,
                     pipeline_id, recommended_at, outcome, created_at)
                VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?)
                """,
                (record.agent_id, record.symbol, record.recommendation, record.confidence,
                 record.target_price, record.stop_loss, record.pipeline_id,
                 record.recommended_at, record.outcome, record.created_at),
            )
        return int(cur.lastrowid)

    def _write_resolution(self, record: TrackRecord) -> None:
        with self._conn:
            self._conn.execute(
                """
                UPDATE agent_track_records
                SET outcome = ?, actual_return = ?, peak_return = ?, worst_drawdown = ?,
                    days_to_outcome = ?, resolved_at = ?
                WHERE id = ?
                """,
                (record.outcome, record.actual_return, record.peak_return,
                 record.worst_drawdown, record.days_to_outcome, record.resolved_at, record.id),
            )

    def get_track_record(self, record_id: int) -> Optional[TrackRecord]:
        row = self._conn.execute(
            "SELECT * FROM agent_track_records WHERE id = ?", (record_id,)
        ).fetchone()
        return TrackRecord.from_row(row) if row else None

    def get_agent_track_record(self, agent_id: str) -> List[TrackRecord]:
        rows = self._conn.execute(
            "SELECT * FROM agent_track_records WHERE agent_id = ? "
            "ORDER BY recommended_at DESC, id DESC",
            (agent_id,),
        ).fetchall()
        return [TrackRecord.from_row(r) for r in rows]

    def get_agent_track_record_for_symbol(self, agent_id: str, symbol: str) -> List[TrackRecord]:
        rows = self._conn.execute(
            "SELECT * FROM agent_track_records WHERE agent_id = ? AND symbol = ? "
            "ORDER BY recommended_at DESC, id DESC",
            (agent_id, symbol.upper()),
        ).fetchall()
        return [TrackRecord.from_row(r) for r in rows]

    def get_recent_recommendations(self, agent_id: str, limit: int = 10) -> List[TrackRecord]:
        rows = self._conn.execute(
            "SELECT * FROM agent_track_records WHERE agent_id = ? "
            "ORDER BY recommended_at DESC, id DESC LIMIT ?",
            (agent_id, int(limit)),
        ).fetchall()
        return [TrackRecord.from_row(r) for r in rows]

    def list_agent_ids(self) -> List[str]:
        rows = self._conn.execute(
            "SELECT DISTINCT agent_id FROM agent_track_records ORDER BY agent_id"
        ).fetchall()
        return [r["agent_id"] for r in rows]

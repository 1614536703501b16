"""
agent_performance.py — Per-agent statistics and leaderboard from track records.

All figures are recomputed from the ledger on every call; nothing here is
cached or stored.

Win set:  outcomes "win" and "target_hit"
Loss set: outcomes "loss" and "stopped_out"

Leaderboard score:
    0.3 × win_rate + 0.3 × avg_return + 0.2 × (10 × sharpe)
    + 0.2 × (5 × min(profit_factor, 10))
"""

from __future__ import annotations

import math
from dataclasses import asdict, dataclass
from typing import Iterable, List, Optional

from trade_ledger import RecommendationOutcome, TrackRecord, TradeLedger


WIN_OUTCOMES = frozenset({RecommendationOutcome.WIN.value, RecommendationOutcome.TARGET_HIT.value})
LOSS_OUTCOMES = frozenset({RecommendationOutcome.LOSS.value, RecommendationOutcome.STOPPED_OUT.value})

PROFIT_FACTOR_SCORE_CAP = 10.0


# ─── Data Classes ─────────────────────────────────────────────────────────────


@dataclass(frozen=True)
class AgentStats:
    agent_id: str
    total_recommendations: int = 0
    resolved_count: int = 0
    pending_count: int = 0
    wins: int = 0
    losses: int = 0
    win_rate: float = 0.0           # percent of resolved
    avg_return: float = 0.0
    avg_win_return: float = 0.0
    avg_loss_return: float = 0.0
    best_return: float = 0.0
    worst_return: float = 0.0
    avg_confidence: float = 0.0
    avg_days_to_outcome: float = 0.0
    max_drawdown: float = 0.0
    sharpe_ratio: float = 0.0
    profit_factor: float = 0.0

    def to_dict(self) -> dict:
        return asdict(self)


@dataclass(frozen=True)
class LeaderboardEntry:
    agent_id: str
    win_rate: float
    avg_return: float
    total_recommendations: int
    resolved_count: int
    sharpe_ratio: float
    profit_factor: float
    score: float

    def to_dict(self) -> dict:
        return asdict(self)


# ─── Pure Aggregation ─────────────────────────────────────────────────────────


def _mean(values: List[float]) -> float:
    return sum(values) / len(values) if values else 0.0


def _returns(records: Iterable[TrackRecord]) -> List[float]:
    return [r.actual_return for r in records if r.actual_return is not None]


def compute_stats(agent_id: str, records: List[TrackRecord]) -> AgentStats:
    """Aggregate a list of track records. Never yields NaN or infinity."""
    resolved = [r for r in records if not r.is_pending]
    pending_count = len(records) - len(resolved)
    wins = [r for r in resolved if r.outcome in WIN_OUTCOMES]
    losses = [r for r in resolved if r.outcome in LOSS_OUTCOMES]

    returns = _returns(resolved)
    win_returns = _returns(wins)
    loss_returns = _returns(losses)
    confidences = [r.confidence for r in records if r.confidence is not None]
    days = [r.days_to_outcome for r in resolved if r.days_to_outcome is not None]
    drawdowns = [r.worst_drawdown for r in resolved if r.worst_drawdown is not None]

    avg_return = _mean(returns)
    if len(returns) > 1:
        variance = sum((r - avg_return) ** 2 for r in returns) / (len(returns) - 1)
        std_dev = math.sqrt(variance)
    else:
        std_dev = 0.0
    sharpe = avg_return / std_dev if std_dev > 0 else 0.0

    gross_wins = sum(win_returns)
    gross_losses = abs(sum(loss_returns))
    if gross_losses > 0:
        profit_factor = gross_wins / gross_losses
    else:
        # no losses: report the gross win sum instead of infinity
        profit_factor = gross_wins if gross_wins > 0 else 0.0

    return AgentStats(
        agent_id=agent_id,
        total_recommendations=len(records),
        resolved_count=len(resolved),
        pending_count=pending_count,
        wins=len(wins),
        losses=len(losses),
        win_rate=len(wins) / len(resolved) * 100 if resolved else 0.0,
        avg_return=avg_return,
        avg_win_return=_mean(win_returns),
        avg_loss_return=_mean(loss_returns),
        best_return=max(returns) if returns else 0.0,
        worst_return=min(returns) if returns else 0.0,
        avg_confidence=_mean(confidences),
        avg_days_to_outcome=_mean(days),
        max_drawdown=min(drawdowns) if drawdowns else 0.0,
        sharpe_ratio=sharpe,
        profit_factor=profit_factor,
    )


def composite_score(stats: AgentStats) -> float:
    capped_pf = min(stats.profit_factor, PROFIT_FACTOR_SCORE_CAP)
    return (
        stats.win_rate * 0.3
        + stats.avg_return * 0.3
        + stats.sharpe_ratio * 10 * 0.2
        + capped_pf * 5 * 0.2
    )


# ─── Aggregator ───────────────────────────────────────────────────────────────


class AgentPerformance:
    """Read-only view of agent track records in a TradeLedger."""

    def __init__(self, store: TradeLedger) -> None:
        self.store = store

    def stats(self, agent_id: str) -> AgentStats:
        return compute_stats(agent_id, self.store.get_agent_track_record(agent_id))

    def stats_for_symbol(self, agent_id: str, symbol: str) -> AgentStats:
        """Same aggregate, restricted to one symbol."""
        records = self.store.get_agent_track_record_for_symbol(agent_id, symbol)
        return compute_stats(agent_id, records)

    def leaderboard(self, limit: Optional[int] = None) -> List[LeaderboardEntry]:
        """Agents with at least one resolved record, best score first."""
        entries: List[LeaderboardEntry] = []
        for agent_id in self.store.list_agent_ids():
            stats = self.stats(agent_id)
            if stats.resolved_count == 0:
                continue
            entries.append(LeaderboardEntry(
                agent_id=agent_id,
                win_rate=stats.win_rate,
                avg_return=stats.avg_return,
                total_recommendations=stats.total_recommendations,
                resolved_count=stats.resolved_count,
                sharpe_ratio=stats.sharpe_ratio,
                profit_factor=stats.profit_factor,
                score=composite_score(stats),
            ))

        entries.sort(key=lambda e: e.score, reverse=True)
        return entries[:limit] if limit is not None else entries

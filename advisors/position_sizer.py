"""
position_sizer.py — Share-count sizing for paper trades.

Combines three independent caps and takes the most conservative:

  1. Half-Kelly: confidence/100 (clamped to [0.01, 0.99]) as the win
     probability of an even-money bet, raw Kelly max(0, 2p - 1), halved
  2. Position cap: max_position_pct of portfolio value
  3. Risk budget: risk_fraction of portfolio value divided by the per-share
     distance to the stop (or an implied adverse move when no stop is set)

The minimum is then limited by available cash and floored at one share.

Usage:
    shares = size_position(price=150.0, stop_loss=140.0, portfolio_value=100_000,
                           available_cash=100_000, max_position_pct=0.10,
                           confidence=80)
    # → 66
"""

from __future__ import annotations

import math
from dataclasses import dataclass
from typing import Optional


# Fraction of portfolio value put at risk per trade
DEFAULT_RISK_FRACTION = 0.02

# Without a stop, assume an adverse move of this many risk fractions of price
IMPLIED_STOP_MULTIPLIER = 5

MIN_WIN_PROBABILITY = 0.01
MAX_WIN_PROBABILITY = 0.99


@dataclass
class SizingBreakdown:
    """Every cap that went into a sizing decision, for logging."""
    kelly_fraction: float
    kelly_shares: int
    cap_shares: int
    risk_shares: int
    cash_shares: int
    shares: int

    def to_dict(self) -> dict:
        return {
            "kelly_fraction": round(self.kelly_fraction, 4),
            "kelly_shares": self.kelly_shares,
            "cap_shares": self.cap_shares,
            "risk_shares": self.risk_shares,
            "cash_shares": self.cash_shares,
            "shares": self.shares,
        }


def half_kelly_fraction(confidence: float) -> float:
    """Half of the even-money Kelly fraction for a confidence in 0..100."""
    p = min(MAX_WIN_PROBABILITY, max(MIN_WIN_PROBABILITY, confidence / 100.0))
    return max(0.0, 2 * p - 1) / 2


def explain_size(
    price: float,
    stop_loss: Optional[float],
    portfolio_value: float,
    available_cash: float,
    max_position_pct: float,
    confidence: float = 50,
    risk_fraction: float = DEFAULT_RISK_FRACTION,
) -> SizingBreakdown:
    """
    Compute the share count together with each individual cap.

    A non-positive price or portfolio value yields the one-share floor;
    callers that must reject such inputs validate them first.
    """
    if price <= 0 or portfolio_value <= 0:
        return SizingBreakdown(0.0, 0, 0, 0, 0, 1)

    kelly = half_kelly_fraction(confidence)
    kelly_shares = math.floor(kelly * portfolio_value / price)
    cap_shares = math.floor(max_position_pct * portfolio_value / price)

    if stop_loss is not None and stop_loss > 0:
        risk_per_share = abs(price - stop_loss)
    else:
        risk_per_share = price * risk_fraction * IMPLIED_STOP_MULTIPLIER

    if risk_per_share > 0:
        risk_shares = math.floor(risk_fraction * portfolio_value / risk_per_share)
    else:
        # stop at the entry price carries no measurable risk
        risk_shares = cap_shares

    cash_shares = math.floor(max(0.0, available_cash) / price)
    shares = max(1, min(kelly_shares, cap_shares, risk_shares, cash_shares))

    return SizingBreakdown(
        kelly_fraction=kelly,
        kelly_shares=kelly_shares,
        cap_shares=cap_shares,
        risk_shares=risk_shares,
        cash_shares=cash_shares,
        shares=shares,
    )


def size_position(
    price: float,
    stop_loss: Optional[float],
    portfolio_value: float,
    available_cash: float,
    max_position_pct: float,
    confidence: float = 50,
    risk_fraction: float = DEFAULT_RISK_FRACTION,
) -> int:
    """Shares to buy (or sell short); always at least 1."""
    return explain_size(
        price, stop_loss, portfolio_value, available_cash,
        max_position_pct, confidence, risk_fraction,
    ).shares

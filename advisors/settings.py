"""
settings.py — Session configuration loaded from the environment / .env.

Settings are read once at startup and treated as immutable for the
session.

Environment:
    ALPHA_VANTAGE_API_KEY      market data API key (empty → unconfigured)
    AV_RATE_LIMIT_TIER         "premium" (75/min) or "free" (25/day)
    STARTING_CAPITAL           paper portfolio starting cash (default 100000)
    MAX_POSITION_PCT           single position cap, 0 < pct <= 1 (default 0.10)
    MONITOR_INTERVAL_SECONDS   reconciliation interval (default 60)
    ADVISORS_DB_PATH           SQLite file, ":memory:" for the in-memory store
    LOG_LEVEL                  loguru level (default INFO)
    HTTP_TIMEOUT               provider request timeout in seconds (default 15)
"""

from __future__ import annotations

import os
from dataclasses import asdict, dataclass
from typing import Mapping, Optional

from dotenv import load_dotenv

from rate_limiter import TIERS


MEMORY_DB_PATH = ":memory:"


class SettingsError(ValueError):
    """An environment variable holds an unusable value."""


@dataclass(frozen=True)
class Settings:
    api_key: str = ""
    rate_limit_tier: str = "premium"
    starting_capital: float = 100_000.0
    max_position_pct: float = 0.10
    monitor_interval_seconds: float = 60.0
    db_path: str = "advisors.db"
    log_level: str = "INFO"
    http_timeout: float = 15.0

    def __post_init__(self) -> None:
        if self.rate_limit_tier not in TIERS:
            raise SettingsError(
                f"AV_RATE_LIMIT_TIER must be one of {sorted(TIERS)}, got {self.rate_limit_tier!r}"
            )
        if self.starting_capital <= 0:
            raise SettingsError(f"STARTING_CAPITAL must be positive, got {self.starting_capital}")
        if not 0 < self.max_position_pct <= 1:
            raise SettingsError(
                f"MAX_POSITION_PCT must be within (0, 1], got {self.max_position_pct}"
            )
        if self.monitor_interval_seconds <= 0:
            raise SettingsError(
                f"MONITOR_INTERVAL_SECONDS must be positive, got {self.monitor_interval_seconds}"
            )
        if self.http_timeout <= 0:
            raise SettingsError(f"HTTP_TIMEOUT must be positive, got {self.http_timeout}")

    @property
    def uses_memory_store(self) -> bool:
        return self.db_path == MEMORY_DB_PATH

    def to_dict(self) -> dict:
        """Settings with the API key masked, safe to log."""
        data = asdict(self)
        data["api_key"] = "***" if self.api_key else ""
        return data

    @classmethod
    def from_env(
        cls, environ: Optional[Mapping[str, str]] = None, dotenv: bool = True
    ) -> "Settings":
        if dotenv:
            load_dotenv()
        env = os.environ if environ is None else environ
        defaults = cls()
        return cls(
            api_key=env.get("ALPHA_VANTAGE_API_KEY", "").strip(),
            rate_limit_tier=env.get("AV_RATE_LIMIT_TIER", defaults.rate_limit_tier).strip().lower(),
            starting_capital=_float(env, "STARTING_CAPITAL", defaults.starting_capital),
            max_position_pct=_float(env, "MAX_POSITION_PCT", defaults.max_position_pct),
            monitor_interval_seconds=_float(
                env, "MONITOR_INTERVAL_SECONDS", defaults.monitor_interval_seconds
            ),
            db_path=env.get("ADVISORS_DB_PATH", defaults.db_path).strip() or defaults.db_path,
            log_level=env.get("LOG_LEVEL", defaults.log_level).strip().upper(),
            http_timeout=_float(env, "HTTP_TIMEOUT", defaults.http_timeout),
        )


def _float(env: Mapping[str, str], name: str, default: float) -> float:
    raw = env.get(name)
    if raw is None or raw.strip() == "":
        return default
    try:
        return float(raw)
    except ValueError:
        raise SettingsError(f"{name} must be a number, got {raw!r}") from None

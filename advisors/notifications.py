"""
notifications.py — User-facing trade alerts.

The position monitor emits a notification when a sweep closes trades.
Delivery is best-effort: a notifier is chosen at startup (NullNotifier
when there is nowhere to deliver to) and its failures are logged by the
caller, never propagated.

Usage:
    notifier = CallbackNotifier(lambda title, body: print(title, body))
    await notifier.notify("Stock Advisors - Trade Alert", "1 trade(s) triggered: AAPL stopped_out")
"""

from __future__ import annotations

import asyncio
from typing import Any, Awaitable, Callable, Iterable, Union

from loguru import logger

from trade_ledger import TradeRecord


ALERT_TITLE = "Stock Advisors - Trade Alert"


def format_trade_alert(closed: Iterable[TradeRecord]) -> str:
    """'2 trade(s) triggered: AAPL stopped_out, MSFT target_hit'"""
    closed = list(closed)
    parts = ", ".join(f"{t.symbol} {t.status}" for t in closed)
    return f"{len(closed)} trade(s) triggered: {parts}"


class Notifier:
    """Base notifier. Subclasses deliver a title/body pair somewhere."""

    name = "base"

    async def notify(self, title: str, body: str) -> None:
        raise NotImplementedError


class NullNotifier(Notifier):
    """Discards every notification (headless runs)."""

    name = "null"

    async def notify(self, title: str, body: str) -> None:
        return None


class LogNotifier(Notifier):
    """Writes notifications to the log."""

    name = "log"

    def __init__(self, level: str = "INFO") -> None:
        self.level = level

    async def notify(self, title: str, body: str) -> None:
        logger.log(self.level, "[{}] {}", title, body)


class CallbackNotifier(Notifier):
    """Hands notifications to a plain or async callable."""

    name = "callback"

    def __init__(
        self, callback: Callable[[str, str], Union[None, Awaitable[Any]]]
    ) -> None:
        self.callback = callback

    async def notify(self, title: str, body: str) -> None:
        result = self.callback(title, body)
        if asyncio.iscoroutine(result) or isinstance(result, asyncio.Future):
            await result

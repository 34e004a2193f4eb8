"""Keyed trailing-edge debounce on the running asyncio loop."""

import asyncio
from typing import Callable, Optional

import structlog

logger = structlog.get_logger(__name__)


class Debouncer:
    """
    Collapse bursts of ``schedule(key)`` calls into one ``callback(key)``.

    Each key has its own timer. The key is bound when the timer is
    armed, so the callback always receives the key that was current at
    schedule time, never whatever is current when the timer fires.

    Usage:
        debouncer = Debouncer(0.5, persist_session)
        debouncer.schedule(session.id)
    """

    def __init__(self, delay_seconds: float, callback: Callable[[str], None]):
        self.delay_seconds = delay_seconds
        self.callback = callback
        self._timers: dict[str, asyncio.TimerHandle] = {}

    @property
    def pending(self) -> list[str]:
        return list(self._timers)

    def schedule(self, key: str) -> None:
        """Arm (or re-arm) the timer for key; without a running loop, fire now."""
        self.cancel(key)
        try:
            loop = asyncio.get_running_loop()
        except RuntimeError:
            self._fire(key)
            return
        self._timers[key] = loop.call_later(self.delay_seconds, self._fire, key)

    def cancel(self, key: str) -> None:
        timer = self._timers.pop(key, None)
        if timer is not None:
            timer.cancel()

    def flush(self, key: Optional[str] = None) -> None:
        """Fire pending timers now (one key, or all of them)."""
        keys = [key] if key is not None else list(self._timers)
        for k in keys:
            if k in self._timers:
                self.cancel(k)
                self._fire(k)

    def _fire(self, key: str) -> None:
        self._timers.pop(key, None)
        try:
            self.callback(key)
        except Exception as e:
            logger.error("Debounced callback failed", key=key, error=str(e))

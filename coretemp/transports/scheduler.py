"""Cancellable timers on the running asyncio loop."""

from __future__ import annotations

import asyncio
from collections.abc import Callable


class AsyncioScheduler:
    def __init__(self, loop: asyncio.AbstractEventLoop | None = None) -> None:
        self._loop = loop or asyncio.get_running_loop()

    def call_later(self, delay_s: float, callback: Callable[[], None]) -> asyncio.TimerHandle:
        return self._loop.call_later(delay_s, callback)

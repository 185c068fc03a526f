"""Shared request-path state.

Owned by the lifecycle coordinator; middlewares only read the shutdown flag
and bump the in-flight counter.
"""

from __future__ import annotations

import asyncio
import time


class PipelineState:
    """Shutdown flag, start time and in-flight HTTP request tracking."""

    def __init__(self) -> None:
        self.started_at = time.monotonic()
        self._shutting_down = False
        self._inflight = 0
        self._idle = asyncio.Event()
        self._idle.set()

    @property
    def shutting_down(self) -> bool:
        return self._shutting_down

    @property
    def inflight(self) -> int:
        return self._inflight

    def begin_shutdown(self) -> None:
        self._shutting_down = True

    def request_started(self) -> None:
        self._inflight += 1
        self._idle.clear()

    def request_finished(self) -> None:
        self._inflight -= 1
        if self._inflight <= 0:
            self._inflight = 0
            self._idle.set()

    async def wait_idle(self) -> None:
        await self._idle.wait()

# SPDX-License-Identifier: LGPL-3.0-only
# Copyright (c) 2026 Mirrowel

# src/gemini_auth/utils/single_flight.py

import asyncio
from typing import Awaitable, Callable, Generic, Optional, TypeVar

T = TypeVar("T")


class SingleFlight(Generic[T]):
    """
    Collapses concurrent calls into one in-flight attempt.

    The first caller starts the attempt under a lock; callers arriving while it
    runs await the same task and receive its result or its exception. Once the
    attempt settles, the next call starts a fresh one.

    Followers await through asyncio.shield, so a cancelled caller does not
    cancel the attempt other callers are waiting on.
    """

    def __init__(self, name: str = "single-flight"):
        self.name = name
        self._lock = asyncio.Lock()
        self._inflight: Optional["asyncio.Task[T]"] = None

    @property
    def in_flight(self) -> bool:
        return self._inflight is not None and not self._inflight.done()

    async def run(self, factory: Callable[[], Awaitable[T]]) -> T:
        async with self._lock:
            if self._inflight is None or self._inflight.done():
                self._inflight = asyncio.ensure_future(factory())
                self._inflight.add_done_callback(_consume_exception)
            task = self._inflight
        return await asyncio.shield(task)


def _consume_exception(task: "asyncio.Task") -> None:
    # Mark the exception as retrieved when every waiter was cancelled
    if not task.cancelled():
        task.exception()

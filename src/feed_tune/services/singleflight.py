# ABOUTME: In-process single-flight: concurrent calls with the same key share one execution.
# ABOUTME: Used to collapse overlapping refresh triggers for the same feed.

import asyncio
from collections.abc import Awaitable, Callable, Hashable
from typing import Any


class SingleFlight:
    def __init__(self) -> None:
        self._inflight: dict[Hashable, asyncio.Task] = {}

    def in_flight(self, key: Hashable) -> bool:
        return key in self._inflight

    async def run(self, key: Hashable, func: Callable[[], Awaitable[Any]]) -> Any:
        """Run ``func`` unless a call for ``key`` is already running; then join it.

        Every joined caller receives the same result or exception. A cancelled
        caller does not cancel the shared execution.
        """
        task = self._inflight.get(key)
        if task is None:
            task = asyncio.ensure_future(func())
            self._inflight[key] = task
            task.add_done_callback(lambda _task: self._inflight.pop(key, None))
        return await asyncio.shield(task)

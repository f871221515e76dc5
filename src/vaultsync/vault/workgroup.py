"""Bounded-concurrency task group with first-error cancellation.

Used by both the wildcard crawl and the leaf fetch fan-out. Work is submitted
with ``go()``; at most ``limit`` submissions run at once. The first exception
cancels all outstanding work, stops new work from starting and is re-raised
from ``wait()``.
"""

from __future__ import annotations

import asyncio
from collections.abc import Awaitable, Callable
from typing import Any


class WorkerGroup:
    """Run coroutines with a concurrency cap, failing fast on the first error.

    Usage::

        async with WorkerGroup(limit=10) as group:
            for path in paths:
                group.go(read_path, path)

    Leaving the ``async with`` block waits for every submission and raises
    the first error, if any.

    Args:
        limit: Maximum number of submissions running concurrently.
    """

    def __init__(self, limit: int) -> None:
        if limit < 1:
            raise ValueError("limit must be at least 1")
        self._semaphore = asyncio.Semaphore(limit)
        self._tasks: set[asyncio.Task[None]] = set()
        self._error: BaseException | None = None

    @property
    def failed(self) -> bool:
        """Whether a submission has already failed."""
        return self._error is not None

    def go(self, func: Callable[..., Awaitable[Any]], *args: Any) -> None:
        """Schedule ``func(*args)``; it starts once a slot is free.

        Submissions made after a failure are dropped.
        """
        if self._error is not None:
            return
        task = asyncio.create_task(self._run(func, args))
        self._tasks.add(task)
        task.add_done_callback(self._tasks.discard)

    async def _run(self, func: Callable[..., Awaitable[Any]], args: tuple[Any, ...]) -> None:
        try:
            async with self._semaphore:
                # A failure elsewhere may have happened while queued
                if self._error is not None:
                    return
                await func(*args)
        except asyncio.CancelledError:
            raise
        except Exception as exc:
            if self._error is None:
                self._error = exc
                self._cancel(exclude=asyncio.current_task())

    def _cancel(self, exclude: asyncio.Task[Any] | None = None) -> None:
        for task in self._tasks:
            if task is not exclude and not task.done():
                task.cancel()

    async def wait(self) -> None:
        """Wait for all submissions, then raise the first error if any."""
        try:
            while self._tasks:
                await asyncio.gather(*list(self._tasks), return_exceptions=True)
        except asyncio.CancelledError:
            self._cancel()
            raise
        if self._error is not None:
            raise self._error

    async def __aenter__(self) -> WorkerGroup:
        return self

    async def __aexit__(self, exc_type: type[BaseException] | None, exc: BaseException | None, tb: Any) -> None:
        if exc is not None:
            self._cancel()
            await asyncio.gather(*list(self._tasks), return_exceptions=True)
            return
        await self.wait()

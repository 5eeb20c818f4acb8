"""
Request Coalescing

Singleflight registry: at most one in-flight task per key. Concurrent
callers for the same key await the same task and observe the same result
or exception. The registration is dropped as soon as the task settles, so
the next call after completion starts fresh.

The registry is process-local; cross-instance deduplication comes from
re-checking the shared cache inside the coalesced body.
"""
import asyncio
from typing import Any, Awaitable, Callable, Dict, Tuple

from src.parcelcache.utils.logger import get_logger

logger = get_logger(__name__)

Factory = Callable[[], Awaitable[Any]]


class Coalescer:
    """
    Keyed registry of in-flight tasks (Idle | InFlight(task) per key).

    Keys must be namespaced per operation (``map:``, ``addr:``, ``lookup:``,
    ``snapshot:``, ``snapshot-refresh:``) so callers never join a task
    producing a different result shape.
    """

    def __init__(self):
        self._in_flight: Dict[str, asyncio.Task] = {}

    def acquire(self, key: str, factory: Factory) -> Tuple[bool, asyncio.Task]:
        """
        Join the task registered under ``key`` or start one from ``factory``.

        Returns:
            (is_new, task) where is_new is True when this call started the task
        """
        task = self._in_flight.get(key)
        if task is not None:
            return False, task

        task = asyncio.ensure_future(factory())
        self._in_flight[key] = task
        task.add_done_callback(lambda done: self._settled(key, done))
        return True, task

    def release(self, key: str, task: asyncio.Task) -> None:
        """Drop the registration if it still points at ``task``."""
        if self._in_flight.get(key) is task:
            del self._in_flight[key]

    def _settled(self, key: str, task: asyncio.Task) -> None:
        self.release(key, task)
        if not task.cancelled():
            # marks the exception retrieved; awaiting callers still receive it
            task.exception()

    async def coalesce(self, key: str, factory: Factory) -> Any:
        """
        Run ``factory`` once per key at a time and share its outcome.

        Cancelling one waiting caller does not cancel the shared task.
        """
        is_new, task = self.acquire(key, factory)
        if not is_new:
            logger.debug("coalesced_request_joined", key=key)
        return await asyncio.shield(task)

    def spawn(self, key: str, factory: Factory) -> asyncio.Task:
        """Fire-and-forget variant of coalesce; returns the shared task."""
        _, task = self.acquire(key, factory)
        return task

    def is_in_flight(self, key: str) -> bool:
        return key in self._in_flight

    def in_flight(self, key: str) -> asyncio.Task:
        """Task currently registered under ``key`` (KeyError when idle)."""
        return self._in_flight[key]

    def __len__(self) -> int:
        return len(self._in_flight)

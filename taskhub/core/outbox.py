"""Post-commit side effects.

Work that touches the outside world (Celery jobs, task events) is collected
while a transaction is open and only released after it commits.
"""
from __future__ import annotations

import logging
from contextlib import asynccontextmanager
from typing import Any, Awaitable, Callable, List, Tuple

from sqlalchemy.ext.asyncio import AsyncSession

logger = logging.getLogger(__name__)


class Outbox:
    """Queue of pending effects for a single transaction."""

    def __init__(self) -> None:
        self._jobs: List[Tuple[Any, tuple]] = []
        self._events: List[Tuple[Callable[..., Awaitable[Any]], tuple, dict]] = []
        self._on_rollback: List[Tuple[Callable[..., Any], tuple]] = []

    def enqueue_job(self, job, *args) -> None:
        """Schedule ``job.delay(*args)`` for after commit."""
        self._jobs.append((job, args))

    def enqueue_event(self, publish: Callable[..., Awaitable[Any]], *args, **kwargs) -> None:
        """Schedule an awaitable publisher call for after commit."""
        self._events.append((publish, args, kwargs))

    def on_rollback(self, callback: Callable[..., Any], *args) -> None:
        """Register cleanup that only runs when the transaction is discarded."""
        self._on_rollback.append((callback, args))

    @property
    def pending(self) -> int:
        return len(self._jobs) + len(self._events)

    async def drain(self) -> None:
        """Dispatch every queued effect. Failures are logged, never raised."""
        jobs, self._jobs = self._jobs, []
        events, self._events = self._events, []
        self._on_rollback = []

        for job, args in jobs:
            try:
                job.delay(*args)
            except Exception:
                logger.exception("Failed to dispatch job %s", getattr(job, "name", job))

        for publish, args, kwargs in events:
            try:
                await publish(*args, **kwargs)
            except Exception:
                logger.exception("Failed to publish event via %s", getattr(publish, "__name__", publish))

    def discard(self) -> None:
        """Drop queued effects and run rollback cleanup."""
        callbacks, self._on_rollback = self._on_rollback, []
        self._jobs = []
        self._events = []
        for callback, args in callbacks:
            try:
                callback(*args)
            except Exception:
                logger.exception("Rollback cleanup %s failed", getattr(callback, "__name__", callback))


@asynccontextmanager
async def transaction(db: AsyncSession):
    """Commit ``db`` on success and drain the outbox; roll back and discard otherwise."""
    outbox = Outbox()
    try:
        yield outbox
        await db.commit()
    except BaseException:
        await db.rollback()
        outbox.discard()
        raise
    await outbox.drain()

"""Durable scheduler for delayed resumption.

Scheduled resumes live in a :class:`~litestar_flows.core.protocols.ScheduleStore`, so
they survive restarts. A resume is deleted only after its callback returned, which
makes delivery at-least-once; the engine ignores resumes whose token is stale.
"""

from __future__ import annotations

import asyncio
from contextlib import suppress
from datetime import datetime, timezone
from typing import TYPE_CHECKING, Any

import structlog

from litestar_flows.core.context import ScheduledResume
from litestar_flows.exceptions import ExecutionNotFoundError

if TYPE_CHECKING:
    from collections.abc import Awaitable, Callable
    from uuid import UUID

    from litestar_flows.core.protocols import ScheduleStore

__all__ = ("Scheduler",)

logger = structlog.get_logger(__name__)


class Scheduler:
    """Fires due resumes through a callback.

    Attributes:
        store: Durable schedule storage.
        callback: Called with ``(execution_id, token)`` for each due resume.
        poll_interval: Seconds between polls of the background loop.
        batch_size: Maximum resumes fired per poll.

    Example:
        >>> scheduler = Scheduler(store, engine.resume_timer)
        >>> await scheduler.schedule_resume(execution_id, due_at, token=3)
        >>> await scheduler.tick()
    """

    def __init__(
        self,
        store: ScheduleStore,
        callback: Callable[[UUID, int], Awaitable[Any]],
        *,
        poll_interval: float = 1.0,
        batch_size: int = 100,
    ) -> None:
        self.store = store
        self.callback = callback
        self.poll_interval = poll_interval
        self.batch_size = batch_size
        self._task: asyncio.Task[None] | None = None

    async def schedule_resume(self, execution_id: UUID, due_at: datetime, token: int) -> ScheduledResume:
        """Persist a resume for ``execution_id`` at ``due_at``.

        Args:
            execution_id: The waiting context.
            due_at: Earliest firing time.
            token: The context's ``step_epoch`` at suspension time.

        Returns:
            The stored resume.
        """
        resume = ScheduledResume(execution_id=execution_id, due_at=due_at, token=token)
        await self.store.add(resume)
        logger.debug("resume_scheduled", execution_id=str(execution_id), due_at=due_at.isoformat(), token=token)
        return resume

    async def cancel(self, execution_id: UUID) -> None:
        """Drop every pending resume of an execution."""
        await self.store.delete_for_execution(execution_id)

    async def tick(self, now: datetime | None = None) -> int:
        """Fire every resume due at ``now``.

        A resume whose callback raised stays stored and is retried on a later tick,
        except when its execution no longer exists.

        Args:
            now: Reference time. Defaults to the current UTC time.

        Returns:
            Number of resumes fired and removed.
        """
        now = now or datetime.now(timezone.utc)
        fired = 0
        for resume in await self.store.due(now, self.batch_size):
            log = logger.bind(execution_id=str(resume.execution_id), token=resume.token)
            try:
                await self.callback(resume.execution_id, resume.token)
            except ExecutionNotFoundError:
                log.info("resume_dropped_missing_execution")
            except Exception:
                # Kept for the next tick.
                log.exception("resume_failed")
                continue
            await self.store.delete(resume.id)
            fired += 1
        return fired

    async def start(self) -> None:
        """Start the background polling loop."""
        if self._task is None or self._task.done():
            self._task = asyncio.create_task(self._run(), name="litestar-flows-scheduler")

    async def stop(self) -> None:
        if self._task is None:
            return
        self._task.cancel()
        with suppress(asyncio.CancelledError):
            await self._task
        self._task = None

    @property
    def running(self) -> bool:
        return self._task is not None and not self._task.done()

    async def _run(self) -> None:
        logger.info("scheduler_started", poll_interval=self.poll_interval)
        while True:
            try:
                await self.tick()
            except Exception:
                # The loop must outlive a failing poll of the store.
                logger.exception("scheduler_tick_failed")
            await asyncio.sleep(self.poll_interval)

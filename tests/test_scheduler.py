"""Tests for the durable scheduler."""

from __future__ import annotations

import asyncio
from datetime import datetime, timedelta, timezone
from uuid import UUID, uuid4

import pytest

from litestar_flows.core.context import ScheduledResume
from litestar_flows.engine.memory import InMemoryScheduleStore
from litestar_flows.engine.scheduler import Scheduler
from litestar_flows.exceptions import ExecutionNotFoundError, ProviderError

NOW = datetime(2026, 10, 17, 12, 0, tzinfo=timezone.utc)


class RecordingCallback:
    """Scheduler callback recording calls and raising for selected executions."""

    def __init__(self) -> None:
        self.calls: list[tuple[UUID, int]] = []
        self.errors: dict[UUID, Exception] = {}

    async def __call__(self, execution_id: UUID, token: int) -> None:
        self.calls.append((execution_id, token))
        if execution_id in self.errors:
            raise self.errors[execution_id]


class UnreliableScheduleStore(InMemoryScheduleStore):
    """Schedule store whose first polls fail."""

    def __init__(self, failures: int) -> None:
        super().__init__()
        self.failures = failures

    async def due(self, now: datetime, limit: int) -> list[ScheduledResume]:
        if self.failures:
            self.failures -= 1
            raise RuntimeError("db connection reset")
        return await super().due(now, limit)


@pytest.fixture
def store() -> InMemoryScheduleStore:
    return InMemoryScheduleStore()


@pytest.fixture
def callback() -> RecordingCallback:
    return RecordingCallback()


@pytest.fixture
def scheduler(store: InMemoryScheduleStore, callback: RecordingCallback) -> Scheduler:
    return Scheduler(store, callback, poll_interval=0.01)


@pytest.mark.unit
@pytest.mark.asyncio
class TestScheduler:
    """Tests for Scheduler."""

    async def test_fires_only_due_resumes(
        self, scheduler: Scheduler, store: InMemoryScheduleStore, callback: RecordingCallback
    ) -> None:
        soon, later = uuid4(), uuid4()
        await scheduler.schedule_resume(soon, NOW + timedelta(minutes=5), token=2)
        await scheduler.schedule_resume(later, NOW + timedelta(hours=1), token=7)

        assert await scheduler.tick(NOW) == 0
        assert await scheduler.tick(NOW + timedelta(minutes=5)) == 1
        assert callback.calls == [(soon, 2)]
        assert len(store) == 1

    async def test_fires_in_due_order(self, scheduler: Scheduler, callback: RecordingCallback) -> None:
        first, second, third = uuid4(), uuid4(), uuid4()
        await scheduler.schedule_resume(second, NOW + timedelta(minutes=2), token=1)
        await scheduler.schedule_resume(third, NOW + timedelta(minutes=3), token=1)
        await scheduler.schedule_resume(first, NOW + timedelta(minutes=1), token=1)

        assert await scheduler.tick(NOW + timedelta(minutes=10)) == 3
        assert [execution_id for execution_id, _ in callback.calls] == [first, second, third]

    async def test_batch_size_limits_one_tick(
        self, store: InMemoryScheduleStore, callback: RecordingCallback
    ) -> None:
        scheduler = Scheduler(store, callback, batch_size=2)
        for _ in range(3):
            await scheduler.schedule_resume(uuid4(), NOW, token=1)

        assert await scheduler.tick(NOW) == 2
        assert await scheduler.tick(NOW) == 1

    async def test_failed_callback_keeps_resume(
        self, scheduler: Scheduler, store: InMemoryScheduleStore, callback: RecordingCallback
    ) -> None:
        execution_id = uuid4()
        callback.errors[execution_id] = ProviderError("storage unavailable", status_code=503)
        await scheduler.schedule_resume(execution_id, NOW, token=1)

        assert await scheduler.tick(NOW) == 0
        assert len(store) == 1

        del callback.errors[execution_id]
        assert await scheduler.tick(NOW) == 1
        assert len(store) == 0

    async def test_missing_execution_drops_resume(
        self, scheduler: Scheduler, store: InMemoryScheduleStore, callback: RecordingCallback
    ) -> None:
        execution_id = uuid4()
        callback.errors[execution_id] = ExecutionNotFoundError(execution_id)
        await scheduler.schedule_resume(execution_id, NOW, token=1)

        assert await scheduler.tick(NOW) == 1
        assert len(store) == 0

    async def test_cancel_drops_every_resume_of_an_execution(
        self, scheduler: Scheduler, store: InMemoryScheduleStore
    ) -> None:
        execution_id, other = uuid4(), uuid4()
        await scheduler.schedule_resume(execution_id, NOW, token=1)
        await scheduler.schedule_resume(execution_id, NOW + timedelta(hours=1), token=2)
        await scheduler.schedule_resume(other, NOW, token=1)

        await scheduler.cancel(execution_id)

        assert len(store) == 1

    async def test_background_loop(self, scheduler: Scheduler, callback: RecordingCallback) -> None:
        execution_id = uuid4()
        await scheduler.schedule_resume(execution_id, datetime.now(timezone.utc) - timedelta(seconds=1), token=4)

        await scheduler.start()
        assert scheduler.running
        try:
            for _ in range(100):
                if callback.calls:
                    break
                await asyncio.sleep(0.01)
        finally:
            await scheduler.stop()

        assert not scheduler.running
        assert callback.calls == [(execution_id, 4)]

    async def test_unexpected_callback_error_keeps_resume(
        self, scheduler: Scheduler, store: InMemoryScheduleStore, callback: RecordingCallback
    ) -> None:
        failing, healthy = uuid4(), uuid4()
        callback.errors[failing] = RuntimeError("db connection reset")
        await scheduler.schedule_resume(failing, NOW, token=1)
        await scheduler.schedule_resume(healthy, NOW + timedelta(seconds=1), token=1)

        assert await scheduler.tick(NOW + timedelta(minutes=1)) == 1
        assert [execution_id for execution_id, _ in callback.calls] == [failing, healthy]
        assert len(store) == 1

    async def test_background_loop_survives_unexpected_errors(
        self, scheduler: Scheduler, callback: RecordingCallback
    ) -> None:
        execution_id = uuid4()
        callback.errors[execution_id] = RuntimeError("db connection reset")
        await scheduler.schedule_resume(execution_id, datetime.now(timezone.utc) - timedelta(seconds=1), token=1)

        await scheduler.start()
        try:
            for _ in range(100):
                if len(callback.calls) >= 2:
                    break
                await asyncio.sleep(0.01)
            assert scheduler.running
        finally:
            await scheduler.stop()

        assert len(callback.calls) >= 2

    async def test_background_loop_survives_store_errors(self, callback: RecordingCallback) -> None:
        store = UnreliableScheduleStore(failures=2)
        scheduler = Scheduler(store, callback, poll_interval=0.01)
        execution_id = uuid4()
        await scheduler.schedule_resume(execution_id, datetime.now(timezone.utc) - timedelta(seconds=1), token=3)

        await scheduler.start()
        try:
            for _ in range(100):
                if callback.calls:
                    break
                await asyncio.sleep(0.01)
            assert scheduler.running
        finally:
            await scheduler.stop()

        assert callback.calls == [(execution_id, 3)]

    async def test_stop_without_start(self, scheduler: Scheduler) -> None:
        await scheduler.stop()
        assert not scheduler.running

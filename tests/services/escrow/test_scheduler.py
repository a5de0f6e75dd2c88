"""
Dispute Scheduler Tests
=======================

Durable task lifecycle, firing, and restart recovery.

Version: 0.1.0
"""

import asyncio
from datetime import timedelta

import pytest

from services.escrow.models import DisputeTaskState
from services.escrow.services import DisputeScheduler, FireOutcome

from tests.conftest import LEDGER_EPOCH


class RecordingCallback:
    """Fire callback that records calls and returns a fixed outcome."""

    def __init__(self, outcome: FireOutcome | None = None, error: Exception | None = None):
        self.outcome = outcome or FireOutcome("eligible")
        self.error = error
        self.calls: list[tuple[str, str]] = []

    async def __call__(self, loan_id: str, commitment: str) -> FireOutcome:
        self.calls.append((loan_id, commitment))
        if self.error is not None:
            raise self.error
        return self.outcome


class BlockingCallback:
    """Fire callback that waits until released, like a slow ledger read."""

    def __init__(self) -> None:
        self.entered = asyncio.Event()
        self.release = asyncio.Event()

    async def __call__(self, loan_id: str, commitment: str) -> FireOutcome:
        self.entered.set()
        await self.release.wait()
        return FireOutcome("eligible")


@pytest.fixture
def callback() -> RecordingCallback:
    return RecordingCallback()


@pytest.fixture
def scheduler(session_factory, ledger, codec, callback) -> DisputeScheduler:
    scheduler = DisputeScheduler(session_factory, clock=ledger.current_timestamp, codec=codec)
    scheduler.set_callback(callback)
    return scheduler


DEADLINE = LEDGER_EPOCH + timedelta(seconds=600)


class TestScheduleAndCancel:
    """Task creation, replacement and cancellation."""

    @pytest.mark.asyncio
    async def test_schedule_creates_task(self, scheduler):
        task = await scheduler.schedule("1", "0xC1", DEADLINE)

        assert task.commitment == "0xc1"
        assert task.state == DisputeTaskState.SCHEDULED
        assert task.fires_at == DEADLINE

    @pytest.mark.asyncio
    async def test_schedule_replaces_existing(self, scheduler):
        await scheduler.schedule("1", "0xc1", DEADLINE)
        later = DEADLINE + timedelta(hours=1)

        await scheduler.schedule("1", "0xc1", later)
        tasks, total = await scheduler.pending()

        assert total == 1
        assert tasks[0].fires_at == later

    @pytest.mark.asyncio
    async def test_cancel(self, scheduler, ledger, callback):
        await scheduler.schedule("1", "0xc1", DEADLINE)

        assert await scheduler.cancel("1", "0xc1") is True
        assert await scheduler.cancel("1", "0xc1") is False
        assert await scheduler.cancel("1", "0xc2") is False

        ledger.advance_time(601)
        assert await scheduler.run_due() == 0
        assert callback.calls == []
        assert (await scheduler.get("1", "0xc1")).state == DisputeTaskState.CANCELLED

    @pytest.mark.asyncio
    async def test_pending_sorted_by_fire_time(self, scheduler):
        await scheduler.schedule("2", "0xc2", DEADLINE + timedelta(seconds=10))
        await scheduler.schedule("1", "0xc1", DEADLINE)

        tasks, total = await scheduler.pending(limit=1)

        assert total == 2
        assert [(t.loan_id, t.commitment) for t in tasks] == [("1", "0xc1")]


class TestFiring:
    """Tasks fire once their time has passed on the ledger clock."""

    @pytest.mark.asyncio
    async def test_not_due_does_not_fire(self, scheduler, ledger, callback):
        await scheduler.schedule("1", "0xc1", DEADLINE)
        ledger.advance_time(599)

        assert await scheduler.run_due() == 0
        assert callback.calls == []

    @pytest.mark.asyncio
    async def test_fires_once(self, scheduler, ledger, callback):
        await scheduler.schedule("1", "0xc1", DEADLINE)
        ledger.advance_time(600)

        assert await scheduler.run_due() == 1
        assert await scheduler.run_due() == 0

        task = await scheduler.get("1", "0xc1")
        assert callback.calls == [("1", "0xc1")]
        assert task.state == DisputeTaskState.CONSUMED
        assert task.outcome == "eligible"

    @pytest.mark.asyncio
    async def test_reschedule_outcome(self, session_factory, ledger, codec):
        later = DEADLINE + timedelta(seconds=300)
        scheduler = DisputeScheduler(session_factory, clock=ledger.current_timestamp, codec=codec)
        scheduler.set_callback(RecordingCallback(FireOutcome("not_overdue", reschedule_at=later)))
        await scheduler.schedule("1", "0xc1", DEADLINE)
        ledger.advance_time(600)

        await scheduler.run_due()
        task = await scheduler.get("1", "0xc1")

        assert task.state == DisputeTaskState.SCHEDULED
        assert task.fires_at == later
        assert task.outcome == "not_overdue"

    @pytest.mark.asyncio
    async def test_callback_error_rearms(self, session_factory, ledger, codec):
        callback = RecordingCallback(error=RuntimeError("ledger down"))
        scheduler = DisputeScheduler(session_factory, clock=ledger.current_timestamp, codec=codec)
        scheduler.set_callback(callback)
        await scheduler.schedule("1", "0xc1", DEADLINE)
        ledger.advance_time(600)

        await scheduler.run_due()
        task = await scheduler.get("1", "0xc1")
        assert task.state == DisputeTaskState.SCHEDULED
        assert task.outcome == "error:RuntimeError"

        callback.error = None
        await scheduler.run_due()
        assert len(callback.calls) == 2
        assert (await scheduler.get("1", "0xc1")).state == DisputeTaskState.CONSUMED

    @pytest.mark.asyncio
    async def test_schedule_not_blocked_by_inflight_fire(self, session_factory, ledger, codec):
        blocking = BlockingCallback()
        scheduler = DisputeScheduler(session_factory, clock=ledger.current_timestamp, codec=codec)
        scheduler.set_callback(blocking)
        await scheduler.schedule("1", "0xc1", DEADLINE)
        ledger.advance_time(600)

        firing = asyncio.create_task(scheduler.run_due())
        await asyncio.wait_for(blocking.entered.wait(), timeout=1)
        later = DEADLINE + timedelta(hours=1)
        await asyncio.wait_for(scheduler.schedule("1", "0xc1", later), timeout=0.5)

        blocking.release.set()
        assert await firing == 1

        task = await scheduler.get("1", "0xc1")
        assert task.state == DisputeTaskState.SCHEDULED
        assert task.fires_at == later
        assert task.outcome is None

    @pytest.mark.asyncio
    async def test_locks_released_after_use(self, scheduler, ledger):
        await scheduler.schedule("1", "0xc1", DEADLINE)
        await scheduler.schedule("2", "0xc2", DEADLINE)
        await scheduler.cancel("2", "0xc2")
        ledger.advance_time(600)

        await scheduler.run_due()

        assert len(scheduler._locks) == 0


class TestRecovery:
    """Tasks persist across scheduler instances."""

    @pytest.mark.asyncio
    async def test_overdue_tasks_fire_on_recover(self, scheduler, session_factory, ledger, codec):
        await scheduler.schedule("1", "0xc1", DEADLINE)
        await scheduler.schedule("2", "0xc2", DEADLINE + timedelta(days=1))
        ledger.advance_time(3600)

        callback = RecordingCallback()
        restarted = DisputeScheduler(session_factory, clock=ledger.current_timestamp, codec=codec)
        restarted.set_callback(callback)

        assert await restarted.recover() == 1
        assert callback.calls == [("1", "0xc1")]
        assert (await restarted.get("2", "0xc2")).state == DisputeTaskState.SCHEDULED

    @pytest.mark.asyncio
    async def test_interrupted_fire_is_rearmed(self, scheduler, session_factory, ledger, codec):
        from services.escrow.models import DisputeTaskModel
        from shared.database import db_session

        await scheduler.schedule("1", "0xc1", DEADLINE)
        async with db_session(session_factory) as session:
            task = await session.get(DisputeTaskModel, ("1", "0xc1"))
            task.state = DisputeTaskState.FIRED.value
        ledger.advance_time(600)

        callback = RecordingCallback()
        restarted = DisputeScheduler(session_factory, clock=ledger.current_timestamp, codec=codec)
        restarted.set_callback(callback)
        await restarted.recover()

        assert callback.calls == [("1", "0xc1")]
        assert (await restarted.get("1", "0xc1")).state == DisputeTaskState.CONSUMED

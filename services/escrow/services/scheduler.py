"""
Dispute Scheduler
=================

Durable per-application dispute-window tasks.

State machine per `(loan_id, commitment)`:

    none -> scheduled -> fired -> consumed | cancelled

The scheduler is an optimisation, not the authority: when a task fires,
the callback re-derives eligibility from the ledger. A lost or late fire
only delays disclosure. Tasks survive restarts; `start()` fires every
task that came due while the process was down.

Version: 0.1.0
"""

import asyncio
from collections.abc import Awaitable, Callable
from dataclasses import dataclass
from datetime import UTC, datetime
from typing import Any

from pydantic import BaseModel
from sqlalchemy import func, select
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from services.escrow.models import DisputeTaskModel, DisputeTaskState
from services.escrow.services.locks import KeyedLocks
from shared.config import settings
from shared.database import db_session
from shared.logging import get_logger, short_hex
from shared.zk import FieldCodec


logger = get_logger(__name__)


@dataclass(frozen=True)
class FireOutcome:
    """Result of a fire callback; `reschedule_at` re-arms the task."""

    outcome: str
    reschedule_at: datetime | None = None


FireCallback = Callable[[str, str], Awaitable[FireOutcome]]
Clock = Callable[[], Awaitable[datetime]]


class DisputeTask(BaseModel):
    """Public view of a dispute task."""

    loan_id: str
    commitment: str
    fires_at: datetime
    state: DisputeTaskState
    outcome: str | None = None
    updated_at: datetime

    @classmethod
    def from_model(cls, model: DisputeTaskModel) -> "DisputeTask":
        return cls(
            loan_id=model.loan_id,
            commitment=model.commitment,
            fires_at=model.fires_at,
            state=DisputeTaskState(model.state),
            outcome=model.outcome,
            updated_at=model.updated_at,
        )


async def _system_clock() -> datetime:
    return datetime.now(UTC)


class DisputeScheduler:
    """
    Poll-driven scheduler over the `dispute_tasks` table.

    `schedule`, `cancel` and the fire state changes serialize per key. The
    fire callback runs unlocked, and at most one per key is in flight.
    """

    def __init__(
        self,
        session_factory: async_sessionmaker[AsyncSession] | None = None,
        clock: Clock | None = None,
        codec: FieldCodec | None = None,
        poll_interval: float | None = None,
    ) -> None:
        self._session_factory = session_factory
        self._clock = clock or _system_clock
        self.codec = codec or FieldCodec.from_settings()
        self.poll_interval = poll_interval or settings.scheduler.poll_interval_seconds
        self._callback: FireCallback | None = None
        self._locks = KeyedLocks()
        self._task: asyncio.Task[None] | None = None

    def set_callback(self, callback: FireCallback) -> None:
        self._callback = callback

    def _key(self, loan_id: str, commitment: str | int) -> tuple[str, str]:
        return str(loan_id), self.codec.normalize(commitment)

    # =========================================================================
    # Task Operations
    # =========================================================================

    async def schedule(self, loan_id: str, commitment: str | int, fires_at: datetime) -> DisputeTask:
        """Create or replace the task for `(loan_id, commitment)`."""
        key = self._key(loan_id, commitment)
        async with self._locks.hold(key):
            async with db_session(self._session_factory) as session:
                task = await session.get(DisputeTaskModel, key)
                if task is None:
                    task = DisputeTaskModel(loan_id=key[0], commitment=key[1], fires_at=fires_at)
                    session.add(task)
                task.fires_at = fires_at
                task.state = DisputeTaskState.SCHEDULED.value
                task.outcome = None
                task.updated_at = datetime.now(UTC)
                await session.flush()
                view = DisputeTask.from_model(task)

        logger.info(
            "dispute_scheduled",
            loan_id=key[0],
            commitment=short_hex(key[1]),
            fires_at=fires_at.isoformat(),
        )
        return view

    async def cancel(self, loan_id: str, commitment: str | int) -> bool:
        """
        Cancel a scheduled task without firing it.

        Returns:
            True if a scheduled task was cancelled
        """
        key = self._key(loan_id, commitment)
        async with self._locks.hold(key):
            async with db_session(self._session_factory) as session:
                task = await session.get(DisputeTaskModel, key)
                if task is None or task.state != DisputeTaskState.SCHEDULED.value:
                    return False
                task.state = DisputeTaskState.CANCELLED.value
                task.outcome = "cancelled"

        logger.info("dispute_cancelled", loan_id=key[0], commitment=short_hex(key[1]))
        return True

    async def mark_consumed(self, loan_id: str, commitment: str | int, outcome: str) -> None:
        """Close a task whose application was disclosed on demand."""
        key = self._key(loan_id, commitment)
        async with db_session(self._session_factory) as session:
            task = await session.get(DisputeTaskModel, key)
            if task is not None and task.state == DisputeTaskState.SCHEDULED.value:
                task.state = DisputeTaskState.CONSUMED.value
                task.outcome = outcome

    async def get(self, loan_id: str, commitment: str | int) -> DisputeTask | None:
        key = self._key(loan_id, commitment)
        async with db_session(self._session_factory) as session:
            task = await session.get(DisputeTaskModel, key)
            return DisputeTask.from_model(task) if task else None

    async def pending(self, limit: int = 100, offset: int = 0) -> tuple[list[DisputeTask], int]:
        """Scheduled tasks, soonest first, with the total count."""
        async with db_session(self._session_factory) as session:
            total = await session.scalar(
                select(func.count())
                .select_from(DisputeTaskModel)
                .where(DisputeTaskModel.state == DisputeTaskState.SCHEDULED.value)
            )
            result = await session.execute(
                select(DisputeTaskModel)
                .where(DisputeTaskModel.state == DisputeTaskState.SCHEDULED.value)
                .order_by(DisputeTaskModel.fires_at)
                .offset(offset)
                .limit(limit)
            )
            return [DisputeTask.from_model(t) for t in result.scalars()], total or 0

    # =========================================================================
    # Firing
    # =========================================================================

    async def run_due(self) -> int:
        """
        Fire every scheduled task whose `fires_at` has passed.

        Returns:
            Number of tasks fired
        """
        now = await self._clock()
        async with db_session(self._session_factory) as session:
            result = await session.execute(
                select(DisputeTaskModel.loan_id, DisputeTaskModel.commitment)
                .where(
                    DisputeTaskModel.state == DisputeTaskState.SCHEDULED.value,
                    DisputeTaskModel.fires_at <= now,
                )
                .order_by(DisputeTaskModel.fires_at)
            )
            due = [(row.loan_id, row.commitment) for row in result]

        fired = 0
        for loan_id, commitment in due:
            if await self._fire(loan_id, commitment, now):
                fired += 1
        return fired

    async def _fire(self, loan_id: str, commitment: str, now: datetime) -> bool:
        key = (loan_id, commitment)
        async with self._locks.hold(key):
            async with db_session(self._session_factory) as session:
                task = await session.get(DisputeTaskModel, key)
                # A concurrent cancel or reschedule wins
                if (
                    task is None
                    or task.state != DisputeTaskState.SCHEDULED.value
                    or task.fires_at > now
                ):
                    return False
                task.state = DisputeTaskState.FIRED.value

        logger.info("dispute_fired", loan_id=loan_id, commitment=short_hex(commitment))

        # Runs unlocked; FIRED keeps other pollers off this key
        try:
            if self._callback is None:
                result = FireOutcome("no_handler")
            else:
                result = await self._callback(loan_id, commitment)
        except Exception as e:
            # Leave the task armed so the next poll retries it
            logger.error(
                "dispute_fire_failed",
                loan_id=loan_id,
                commitment=short_hex(commitment),
                error=str(e),
                error_type=type(e).__name__,
            )
            result = FireOutcome(f"error:{type(e).__name__}", reschedule_at=now)

        async with self._locks.hold(key):
            async with db_session(self._session_factory) as session:
                task = await session.get(DisputeTaskModel, key)
                # Only apply the outcome if nobody rescheduled or cancelled meanwhile
                applied = task is not None and task.state == DisputeTaskState.FIRED.value
                if applied:
                    task.outcome = result.outcome
                    if result.reschedule_at is not None:
                        task.state = DisputeTaskState.SCHEDULED.value
                        task.fires_at = result.reschedule_at
                    else:
                        task.state = DisputeTaskState.CONSUMED.value

        logger.info(
            "dispute_fire_completed",
            loan_id=loan_id,
            commitment=short_hex(commitment),
            outcome=result.outcome,
            rescheduled=result.reschedule_at is not None,
            applied=applied,
        )
        return True

    # =========================================================================
    # Lifecycle
    # =========================================================================

    async def recover(self) -> int:
        """
        Resume after a restart.

        Tasks caught mid-fire go back to `scheduled`; overdue tasks fire now.
        """
        async with db_session(self._session_factory) as session:
            result = await session.execute(
                select(DisputeTaskModel).where(
                    DisputeTaskModel.state == DisputeTaskState.FIRED.value
                )
            )
            interrupted = list(result.scalars())
            for task in interrupted:
                task.state = DisputeTaskState.SCHEDULED.value

        if interrupted:
            logger.warning("dispute_tasks_rearmed", count=len(interrupted))

        fired = await self.run_due()
        logger.info("dispute_scheduler_recovered", fired=fired)
        return fired

    async def _loop(self) -> None:
        while True:
            try:
                await self.run_due()
            except Exception as e:
                logger.error("dispute_poll_failed", error=str(e), error_type=type(e).__name__)
            await asyncio.sleep(self.poll_interval)

    async def start(self) -> None:
        """Recover persisted tasks, then poll in the background."""
        if self._task is not None:
            return
        await self.recover()
        self._task = asyncio.create_task(self._loop(), name="dispute-scheduler")
        logger.info("dispute_scheduler_started", poll_interval=self.poll_interval)

    async def stop(self) -> None:
        if self._task is None:
            return
        self._task.cancel()
        try:
            await self._task
        except asyncio.CancelledError:
            pass
        self._task = None
        logger.info("dispute_scheduler_stopped")

    async def stats(self) -> dict[str, Any]:
        async with db_session(self._session_factory) as session:
            rows = (
                await session.execute(
                    select(DisputeTaskModel.state, func.count()).group_by(DisputeTaskModel.state)
                )
            ).all()
        return {state: count for state, count in rows}

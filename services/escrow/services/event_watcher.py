"""
Ledger Event Watcher
====================

Follows loan contract events and keeps the escrow state in step:

- application_submitted: record the commitment and note the match
- application_approved:  schedule the dispute task at the ledger deadline
- application_repaid:    cancel the dispute task

The last processed block is persisted, so a restart resumes where it
stopped. Handlers are idempotent; replaying a block is harmless.

Version: 0.1.0
"""

import asyncio
from datetime import datetime
from itertools import groupby

from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from services.escrow.models import CommitmentKind, LedgerCursorModel
from services.escrow.services.index import CommitmentIndex
from services.escrow.services.scheduler import DisputeScheduler
from shared.config import settings
from shared.database import db_session
from shared.ledger import LedgerClient, LedgerEvent, LedgerEventType, LedgerUnavailableError
from shared.logging import get_logger


logger = get_logger(__name__)

_CURSOR_ID = 1


class LedgerEventWatcher:
    """Polls `ledger.get_events` from the persisted cursor."""

    def __init__(
        self,
        ledger: LedgerClient,
        index: CommitmentIndex,
        scheduler: DisputeScheduler,
        session_factory: async_sessionmaker[AsyncSession] | None = None,
        poll_interval: float | None = None,
    ) -> None:
        self.ledger = ledger
        self.index = index
        self.scheduler = scheduler
        self._session_factory = session_factory
        self.poll_interval = poll_interval or settings.event_watcher.poll_interval_seconds
        self._task: asyncio.Task[None] | None = None

    async def get_cursor(self) -> int:
        async with db_session(self._session_factory) as session:
            cursor = await session.get(LedgerCursorModel, _CURSOR_ID)
            return cursor.last_block if cursor else 0

    async def _save_cursor(self, block: int) -> None:
        async with db_session(self._session_factory) as session:
            cursor = await session.get(LedgerCursorModel, _CURSOR_ID)
            if cursor is None:
                session.add(LedgerCursorModel(id=_CURSOR_ID, last_block=block))
            else:
                cursor.last_block = block

    async def poll_once(self) -> int:
        """
        Process every event after the cursor, one block at a time.

        If a handler raises, the cursor stays before that block and the
        whole block is replayed on the next poll.

        Returns:
            Number of events handled
        """
        cursor = await self.get_cursor()
        try:
            async with asyncio.timeout(settings.ledger.timeout_seconds):
                events = await self.ledger.get_events(cursor + 1)
        except (LedgerUnavailableError, TimeoutError) as e:
            logger.warning("event_poll_failed", from_block=cursor + 1, error=type(e).__name__)
            return 0

        handled = 0
        ordered = sorted(events, key=lambda e: e.block_number)
        for block, block_events in groupby(ordered, key=lambda e: e.block_number):
            for event in block_events:
                await self.handle(event)
                handled += 1
            # Only a fully handled block advances the cursor
            if block > cursor:
                cursor = block
                await self._save_cursor(cursor)

        if handled:
            logger.info("ledger_events_processed", count=handled, cursor=cursor)
        return handled

    async def handle(self, event: LedgerEvent) -> None:
        if event.commitment is None:
            return

        if event.event_type == LedgerEventType.APPLICATION_SUBMITTED:
            await self.index.record(event.commitment, CommitmentKind.ACTIVITY)
            await self.index.note_application(event.loan_id, event.commitment)

        elif event.event_type == LedgerEventType.APPLICATION_APPROVED:
            deadline = event.data.get("repayment_deadline")
            if deadline is None:
                logger.warning("approval_event_without_deadline", loan_id=event.loan_id)
                return
            await self.scheduler.schedule(
                event.loan_id,
                event.commitment,
                datetime.fromisoformat(deadline),
            )

        elif event.event_type == LedgerEventType.APPLICATION_REPAID:
            await self.scheduler.cancel(event.loan_id, event.commitment)

    async def _loop(self) -> None:
        while True:
            try:
                await self.poll_once()
            except Exception as e:
                logger.error("event_watcher_failed", error=str(e), error_type=type(e).__name__)
            await asyncio.sleep(self.poll_interval)

    async def start(self) -> None:
        if self._task is not None:
            return
        self._task = asyncio.create_task(self._loop(), name="ledger-event-watcher")
        logger.info("event_watcher_started", poll_interval=self.poll_interval)

    async def stop(self) -> None:
        if self._task is None:
            return
        self._task.cancel()
        try:
            await self._task
        except asyncio.CancelledError:
            pass
        self._task = None
        logger.info("event_watcher_stopped")

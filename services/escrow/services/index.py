"""
Commitment Index
================

Reverse mapping from loans to the commitments the backend has observed.

The ledger only answers point lookups on `(loan_id, commitment)`, so
"list applications for a loan" is a local-index-guided scan: every known
commitment is tested against the ledger. Scans are bounded by:

- a per-pair result cache (`commitment_loan_tests`): positive results are
  permanent, negative results expire after a short TTL
- a cap on the number of commitments scanned (most recent first), plus
  every commitment already known to match the loan
- a concurrency limit on in-flight ledger lookups

A commitment that was never `record`-ed cannot be discovered.

Version: 0.1.0
"""

import asyncio
from datetime import UTC, datetime, timedelta
from typing import Any

from sqlalchemy import func, select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from services.escrow.errors import LedgerUnavailable, NotFound
from services.escrow.models import (
    CommitmentIndexModel,
    CommitmentKind,
    CommitmentLoanTestModel,
)
from shared.config import settings
from shared.database import db_session
from shared.ledger import LedgerClient, LedgerUnavailableError, LoanApplication
from shared.logging import get_logger, short_hex
from shared.zk import FieldCodec


logger = get_logger(__name__)


class CommitmentIndex:
    """
    Durable commitment index with ledger-backed discovery.

    `record` commits before returning, and every scan reads the index
    fresh, so a recorded commitment is visible to all later scans. No lock
    is held while awaiting the ledger.
    """

    def __init__(
        self,
        ledger: LedgerClient,
        session_factory: async_sessionmaker[AsyncSession] | None = None,
        codec: FieldCodec | None = None,
        negative_ttl_seconds: int | None = None,
        max_scan: int | None = None,
        concurrency: int | None = None,
        lookup_timeout: float | None = None,
    ) -> None:
        self.ledger = ledger
        self._session_factory = session_factory
        self.codec = codec or FieldCodec.from_settings()
        self.negative_ttl = timedelta(
            seconds=settings.discovery.negative_cache_ttl_seconds
            if negative_ttl_seconds is None
            else negative_ttl_seconds
        )
        self.max_scan = max_scan or settings.discovery.max_scan
        self.concurrency = concurrency or settings.discovery.concurrency
        self.lookup_timeout = lookup_timeout or settings.ledger.timeout_seconds

    # =========================================================================
    # Recording
    # =========================================================================

    async def record(
        self,
        commitment: str | int,
        kind: CommitmentKind = CommitmentKind.ACTIVITY,
    ) -> tuple[CommitmentIndexModel, bool]:
        """
        Append a commitment if it is not already indexed.

        Returns:
            Tuple of (entry, created)

        Raises:
            FieldOverflow: If the commitment is not a field element
        """
        value = self.codec.normalize(commitment)

        async with db_session(self._session_factory) as session:
            existing = await self._get_entry(session, value)
            if existing is not None:
                return existing, False

        try:
            async with db_session(self._session_factory) as session:
                entry = CommitmentIndexModel(commitment=value, kind=kind.value)
                session.add(entry)
        except IntegrityError:
            # Lost an insert race; the winner's row is the entry
            async with db_session(self._session_factory) as session:
                existing = await self._get_entry(session, value)
            return existing, False

        logger.info("commitment_recorded", commitment=short_hex(value), kind=kind.value)
        return entry, True

    async def note_application(self, loan_id: str, commitment: str | int) -> None:
        """Mark a pair as a known match (from a ledger submission event)."""
        value = self.codec.normalize(commitment)
        async with db_session(self._session_factory) as session:
            await session.merge(
                CommitmentLoanTestModel(
                    commitment=value,
                    loan_id=str(loan_id),
                    matched=True,
                    checked_at=datetime.now(UTC),
                )
            )

    async def contains(self, commitment: str | int) -> bool:
        value = self.codec.normalize(commitment)
        async with db_session(self._session_factory) as session:
            return await self._get_entry(session, value) is not None

    @staticmethod
    async def _get_entry(session: AsyncSession, commitment: str) -> CommitmentIndexModel | None:
        result = await session.execute(
            select(CommitmentIndexModel).where(CommitmentIndexModel.commitment == commitment)
        )
        return result.scalar_one_or_none()

    # =========================================================================
    # Discovery
    # =========================================================================

    async def discover_applications(self, loan_id: str) -> list[LoanApplication]:
        """
        Find every ledger application for a loan among indexed commitments.

        Raises:
            NotFound: If the loan does not exist
            LedgerUnavailable: If a ledger lookup fails or times out
        """
        loan_id = str(loan_id)
        loan = await self._ledger_call(self.ledger.get_loan(loan_id))
        if loan is None:
            raise NotFound(f"Loan not found: {loan_id}")

        async with db_session(self._session_factory) as session:
            result = await session.execute(
                select(CommitmentIndexModel.commitment)
                .where(CommitmentIndexModel.kind == CommitmentKind.ACTIVITY.value)
                .order_by(CommitmentIndexModel.sequence.desc())
                .limit(self.max_scan)
            )
            recent = list(result.scalars().all())
            # Known matches are always re-checked, however old
            result = await session.execute(
                select(CommitmentLoanTestModel.commitment).where(
                    CommitmentLoanTestModel.loan_id == loan_id,
                    CommitmentLoanTestModel.matched.is_(True),
                )
            )
            known = list(result.scalars().all())
        candidates = list(dict.fromkeys(recent + known))

        applications = await self._scan([(loan_id, c) for c in candidates])

        logger.info(
            "applications_discovered",
            loan_id=loan_id,
            scanned=len(candidates),
            found=len(applications),
        )
        return applications

    async def discover_by_identity(
        self,
        activity_commitments: list[str],
        page: int = 1,
        page_size: int | None = None,
    ) -> tuple[list[LoanApplication], bool]:
        """
        Find a borrower's applications across recently created loans.

        Loans are paged newest first; only the borrower's own registered
        activity commitments are tested.

        Returns:
            Tuple of (applications, has_more)
        """
        page_size = page_size or settings.discovery.recent_loans_page_size
        loan_count = await self._ledger_call(self.ledger.get_loan_count())

        newest = loan_count - (page - 1) * page_size
        oldest = max(1, newest - page_size + 1)
        if newest < 1 or not activity_commitments:
            return [], False

        loan_ids = [str(i) for i in range(newest, oldest - 1, -1)]
        pairs = [
            (loan_id, self.codec.normalize(c))
            for loan_id in loan_ids
            for c in activity_commitments
        ]
        applications = await self._scan(pairs)
        return applications, oldest > 1

    async def _scan(self, pairs: list[tuple[str, str]]) -> list[LoanApplication]:
        """Test `(loan_id, commitment)` pairs, skipping fresh negative results."""
        if not pairs:
            return []

        now = datetime.now(UTC)
        async with db_session(self._session_factory) as session:
            loan_ids = sorted({loan_id for loan_id, _ in pairs})
            result = await session.execute(
                select(CommitmentLoanTestModel).where(CommitmentLoanTestModel.loan_id.in_(loan_ids))
            )
            cached = {(row.loan_id, row.commitment): row for row in result.scalars().all()}

        to_check = [
            pair
            for pair in pairs
            if not (
                pair in cached
                and not cached[pair].matched
                and now - cached[pair].checked_at < self.negative_ttl
            )
        ]

        semaphore = asyncio.Semaphore(self.concurrency)

        async def lookup(loan_id: str, commitment: str) -> LoanApplication | None:
            async with semaphore:
                return await self._ledger_call(self.ledger.get_application(loan_id, commitment))

        results = await asyncio.gather(*(lookup(loan_id, c) for loan_id, c in to_check))

        checked_at = datetime.now(UTC)
        async with db_session(self._session_factory) as session:
            for (loan_id, commitment), application in zip(to_check, results):
                await session.merge(
                    CommitmentLoanTestModel(
                        commitment=commitment,
                        loan_id=loan_id,
                        matched=application is not None,
                        checked_at=checked_at,
                    )
                )

        return [a for a in results if a is not None]

    async def _ledger_call(self, awaitable: Any) -> Any:
        try:
            async with asyncio.timeout(self.lookup_timeout):
                return await awaitable
        except (LedgerUnavailableError, TimeoutError) as e:
            logger.warning("index_ledger_lookup_failed", error=type(e).__name__)
            raise LedgerUnavailable("Ledger lookup failed") from e

    # =========================================================================
    # Statistics
    # =========================================================================

    async def stats(self) -> dict[str, Any]:
        """Index size by kind and cached lookup results."""
        async with db_session(self._session_factory) as session:
            by_kind = dict(
                (
                    await session.execute(
                        select(CommitmentIndexModel.kind, func.count()).group_by(
                            CommitmentIndexModel.kind
                        )
                    )
                ).all()
            )
            tested = await session.scalar(select(func.count()).select_from(CommitmentLoanTestModel))
            matched = await session.scalar(
                select(func.count())
                .select_from(CommitmentLoanTestModel)
                .where(CommitmentLoanTestModel.matched.is_(True))
            )

        return {
            "total_commitments": sum(by_kind.values()),
            "activity_commitments": by_kind.get(CommitmentKind.ACTIVITY.value, 0),
            "identity_commitments": by_kind.get(CommitmentKind.IDENTITY.value, 0),
            "pairs_tested": tested or 0,
            "pairs_matched": matched or 0,
            "negative_cache_ttl_seconds": int(self.negative_ttl.total_seconds()),
        }

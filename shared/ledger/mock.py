"""
Mock Ledger Client
==================

In-memory mock implementation for development and testing.

Also exposes the write side of the loan contract (create, apply, approve,
repay) so tests and local demos can drive the ledger. The escrow core never
calls these.

Version: 0.1.0
"""

from datetime import UTC, datetime, timedelta
from typing import Any

from shared.config import LedgerMode
from shared.ledger.client import (
    ApplicationStatus,
    LedgerClient,
    LedgerEvent,
    LedgerEventType,
    LedgerUnavailableError,
    LoanApplication,
    LoanTerms,
)
from shared.logging import get_logger, short_hex

logger = get_logger(__name__)


def _key(commitment: str) -> str:
    """Normalize a felt hex string for use as a lookup key."""
    return hex(int(commitment, 16))


class MockLedgerClient(LedgerClient):
    """
    In-memory mock ledger client.

    Simulates the loan contract without requiring a node.
    Time only moves forward, via `advance_time`.

    Data is stored in memory and lost on restart.
    """

    def __init__(self, start_time: datetime | None = None) -> None:
        """Initialize mock client with in-memory storage."""
        self._connected = False
        self._block_number = 1000
        self._now = start_time or datetime.now(UTC)

        # In-memory storage
        self._loans: dict[str, LoanTerms] = {}
        self._applications: dict[tuple[str, str], LoanApplication] = {}
        self._events: list[LedgerEvent] = []

        # Failure injection and call accounting
        self._failures_remaining = 0
        self.lookup_count = 0

        logger.debug("mock_ledger_initialized")

    @property
    def mode(self) -> LedgerMode:
        return LedgerMode.MOCK

    async def connect(self) -> None:
        """Simulate connection."""
        self._connected = True
        logger.info("mock_ledger_connected")

    async def disconnect(self) -> None:
        """Simulate disconnection."""
        self._connected = False
        logger.info("mock_ledger_disconnected")

    async def health_check(self) -> dict[str, Any]:
        """Check mock ledger health."""
        return {
            "status": "healthy",
            "mode": self.mode.value,
            "connected": self._connected,
            "block_number": self._block_number,
            "loans": len(self._loans),
            "applications": len(self._applications),
        }

    def _maybe_fail(self) -> None:
        if self._failures_remaining > 0:
            self._failures_remaining -= 1
            raise LedgerUnavailableError("mock ledger unavailable")

    def _next_block(self) -> int:
        """Get next block number."""
        self._block_number += 1
        return self._block_number

    def _emit(
        self,
        event_type: LedgerEventType,
        loan_id: str,
        commitment: str | None = None,
        **data: Any,
    ) -> LedgerEvent:
        event = LedgerEvent(
            event_type=event_type,
            block_number=self._next_block(),
            loan_id=loan_id,
            commitment=commitment,
            timestamp=self._now,
            data=data,
        )
        self._events.append(event)
        return event

    # =========================================================================
    # Point Lookups
    # =========================================================================

    async def get_application(
        self,
        loan_id: str,
        commitment: str,
    ) -> LoanApplication | None:
        """Look up one application."""
        self._maybe_fail()
        self.lookup_count += 1
        application = self._applications.get((str(loan_id), _key(commitment)))
        return application.model_copy() if application else None

    async def get_loan(self, loan_id: str) -> LoanTerms | None:
        """Get loan terms."""
        self._maybe_fail()
        loan = self._loans.get(str(loan_id))
        return loan.model_copy() if loan else None

    async def get_loan_count(self) -> int:
        """Get the number of loans."""
        self._maybe_fail()
        return len(self._loans)

    # =========================================================================
    # Time and Events
    # =========================================================================

    async def current_timestamp(self) -> datetime:
        """Get the current mock block time."""
        self._maybe_fail()
        return self._now

    async def get_block_number(self) -> int:
        """Get the latest block number."""
        self._maybe_fail()
        return self._block_number

    async def get_events(
        self,
        from_block: int,
        to_block: int | None = None,
    ) -> list[LedgerEvent]:
        """Get events in a block range."""
        self._maybe_fail()
        upper = self._block_number if to_block is None else to_block
        return [e for e in self._events if from_block <= e.block_number <= upper]

    # =========================================================================
    # Contract Simulation
    # =========================================================================

    def create_loan(
        self,
        lender: str,
        amount: int,
        repayment_period_seconds: int,
        min_activity_score: int = 0,
        interest_bps: int = 0,
    ) -> LoanTerms:
        """Publish a loan offer; ids are sequential starting at "1"."""
        loan_id = str(len(self._loans) + 1)
        loan = LoanTerms(
            loan_id=loan_id,
            lender=lender,
            amount=amount,
            interest_bps=interest_bps,
            repayment_period_seconds=repayment_period_seconds,
            min_activity_score=min_activity_score,
            created_at=self._now,
        )
        self._loans[loan_id] = loan
        self._emit(LedgerEventType.LOAN_CREATED, loan_id, lender=lender)
        logger.debug("mock_loan_created", loan_id=loan_id, lender=lender)
        return loan

    def submit_application(
        self,
        loan_id: str,
        commitment: str,
        borrower_wallet: str,
    ) -> LoanApplication:
        """File an application under an activity commitment."""
        loan_id = str(loan_id)
        if loan_id not in self._loans:
            raise ValueError(f"Loan not found: {loan_id}")

        key = (loan_id, _key(commitment))
        if key in self._applications:
            raise ValueError("Application already exists for this commitment")

        application = LoanApplication(
            loan_id=loan_id,
            commitment=_key(commitment),
            borrower_wallet=borrower_wallet,
            status=ApplicationStatus.PENDING,
            applied_at=self._now,
        )
        self._applications[key] = application
        self._emit(
            LedgerEventType.APPLICATION_SUBMITTED,
            loan_id,
            application.commitment,
            borrower_wallet=borrower_wallet,
        )
        logger.debug(
            "mock_application_submitted",
            loan_id=loan_id,
            commitment=short_hex(commitment),
        )
        return application

    def approve_application(self, loan_id: str, commitment: str) -> LoanApplication:
        """Approve a pending application and start the repayment clock."""
        application = self._applications[(str(loan_id), _key(commitment))]
        if application.status != ApplicationStatus.PENDING:
            raise ValueError(f"Cannot approve application in status {application.status.value}")

        period = self._loans[str(loan_id)].repayment_period_seconds
        application.status = ApplicationStatus.APPROVED
        application.approved_at = self._now
        application.repayment_deadline = self._now + timedelta(seconds=period)
        self._emit(
            LedgerEventType.APPLICATION_APPROVED,
            str(loan_id),
            application.commitment,
            repayment_deadline=application.repayment_deadline.isoformat(),
        )
        return application.model_copy()

    def repay_application(self, loan_id: str, commitment: str) -> LoanApplication:
        """Mark an approved application as repaid."""
        application = self._applications[(str(loan_id), _key(commitment))]
        if application.status != ApplicationStatus.APPROVED:
            raise ValueError(f"Cannot repay application in status {application.status.value}")

        application.status = ApplicationStatus.REPAID
        application.repaid_at = self._now
        self._emit(LedgerEventType.APPLICATION_REPAID, str(loan_id), application.commitment)
        return application.model_copy()

    # =========================================================================
    # Test Utilities
    # =========================================================================

    def advance_time(self, seconds: float) -> datetime:
        """Move the ledger clock forward."""
        if seconds < 0:
            raise ValueError("Ledger time is monotonic")
        self._now = self._now + timedelta(seconds=seconds)
        self._next_block()
        return self._now

    def fail_next(self, count: int = 1) -> None:
        """Make the next `count` reads raise LedgerUnavailableError."""
        self._failures_remaining = count

    def clear_all(self) -> None:
        """Clear all mock data (for testing)."""
        self._loans.clear()
        self._applications.clear()
        self._events.clear()
        self._block_number = 1000
        self._failures_remaining = 0
        self.lookup_count = 0
        logger.debug("mock_ledger_cleared")

    def get_stats(self) -> dict[str, int]:
        """Get storage statistics."""
        return {
            "loans": len(self._loans),
            "applications": len(self._applications),
            "events": len(self._events),
            "block_number": self._block_number,
        }

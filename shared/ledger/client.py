"""
Ledger Client Interface
=======================

Abstract base class and models for the loan ledger.

The ledger is treated as an opaque point-lookup store with monotonic time:
applications can be fetched by `(loan_id, commitment)` but never enumerated.

Version: 0.1.0
"""

from abc import ABC, abstractmethod
from datetime import datetime
from enum import Enum
from typing import Any

from pydantic import BaseModel, Field

from shared.config import LedgerMode, settings
from shared.logging import get_logger

logger = get_logger(__name__)


class LedgerUnavailableError(Exception):
    """Raised when the ledger cannot be reached or times out."""


class ApplicationStatus(str, Enum):
    """Loan application status as recorded on the ledger."""

    PENDING = "pending"
    APPROVED = "approved"
    REPAID = "repaid"


class LedgerEventType(str, Enum):
    """Events emitted by the loan contract."""

    LOAN_CREATED = "loan_created"
    APPLICATION_SUBMITTED = "application_submitted"
    APPLICATION_APPROVED = "application_approved"
    APPLICATION_REPAID = "application_repaid"


class LoanTerms(BaseModel):
    """Loan offer published by a lender."""

    loan_id: str = Field(..., description="Ledger loan identifier")
    lender: str = Field(..., description="Lender wallet address")
    amount: int = Field(..., ge=0, description="Principal in base units")
    interest_bps: int = Field(default=0, ge=0)
    repayment_period_seconds: int = Field(..., gt=0)
    min_activity_score: int = Field(default=0, ge=0)
    created_at: datetime
    active: bool = True


class LoanApplication(BaseModel):
    """Ledger-owned application, keyed by `(loan_id, commitment)`."""

    loan_id: str
    commitment: str = Field(..., description="Activity commitment (felt hex)")
    borrower_wallet: str
    status: ApplicationStatus
    applied_at: datetime
    approved_at: datetime | None = None
    repayment_deadline: datetime | None = None
    repaid_at: datetime | None = None


class LedgerEvent(BaseModel):
    """Immutable record emitted by the ledger."""

    event_type: LedgerEventType
    block_number: int
    loan_id: str
    commitment: str | None = None
    timestamp: datetime
    data: dict[str, Any] = Field(default_factory=dict)


class LedgerClient(ABC):
    """
    Abstract base class for ledger clients.

    Implements the Strategy pattern for different ledger modes.
    The escrow core only ever reads from the ledger.
    """

    @property
    @abstractmethod
    def mode(self) -> LedgerMode:
        """Get the ledger mode."""
        ...

    @abstractmethod
    async def connect(self) -> None:
        """Connect to the ledger network."""
        ...

    @abstractmethod
    async def disconnect(self) -> None:
        """Disconnect from the ledger network."""
        ...

    @abstractmethod
    async def health_check(self) -> dict[str, Any]:
        """Check ledger health."""
        ...

    # =========================================================================
    # Point Lookups
    # =========================================================================

    @abstractmethod
    async def get_application(
        self,
        loan_id: str,
        commitment: str,
    ) -> LoanApplication | None:
        """
        Look up one application.

        Args:
            loan_id: Loan identifier
            commitment: Activity commitment the application was filed under

        Returns:
            LoanApplication or None if no application exists for the pair
        """
        ...

    @abstractmethod
    async def get_loan(self, loan_id: str) -> LoanTerms | None:
        """
        Get the published terms of a loan.

        Args:
            loan_id: Loan identifier

        Returns:
            LoanTerms or None if the loan does not exist
        """
        ...

    @abstractmethod
    async def get_loan_count(self) -> int:
        """
        Get the number of loans ever created.

        Loan ids are sequential ("1".."count"), so recent loans can be paged
        backwards from the count.
        """
        ...

    # =========================================================================
    # Time and Events
    # =========================================================================

    @abstractmethod
    async def current_timestamp(self) -> datetime:
        """Get the ledger's current (monotonic) block timestamp."""
        ...

    @abstractmethod
    async def get_block_number(self) -> int:
        """Get the latest block number."""
        ...

    @abstractmethod
    async def get_events(
        self,
        from_block: int,
        to_block: int | None = None,
    ) -> list[LedgerEvent]:
        """
        Get events emitted in a block range (inclusive).

        Args:
            from_block: First block to include
            to_block: Last block to include (latest if None)

        Returns:
            Events ordered by block number
        """
        ...


# Global client instance
_client: LedgerClient | None = None


def get_ledger_client() -> LedgerClient:
    """
    Get the configured ledger client instance.

    Returns:
        LedgerClient instance based on settings
    """
    global _client

    if _client is None:
        mode = settings.ledger.mode

        if mode == LedgerMode.MOCK:
            from shared.ledger.mock import MockLedgerClient

            _client = MockLedgerClient()
        elif mode in (LedgerMode.TESTNET, LedgerMode.MAINNET):
            raise NotImplementedError(
                f"Ledger mode '{mode}' not yet implemented. "
                "Use LEDGER_MODE=mock for development."
            )
        else:
            raise ValueError(f"Unknown ledger mode: {mode}")

        logger.info(
            "ledger_client_initialized",
            mode=mode.value,
        )

    return _client


def set_ledger_client(client: LedgerClient) -> None:
    """
    Set a custom ledger client.

    Args:
        client: LedgerClient instance
    """
    global _client
    _client = client
    logger.info(
        "ledger_client_set",
        mode=client.mode.value,
    )


def reset_ledger_client() -> None:
    """Reset the client to be re-initialized."""
    global _client
    _client = None

"""
Commitment Database Models
==========================

SQLAlchemy ORM models for the commitment discovery index and the borrower
binding registry.

Version: 0.1.0
"""

from datetime import UTC, datetime
from enum import Enum

from sqlalchemy import Boolean, Column, Index, Integer, String

from shared.database import Base, UTCDateTime


def _utcnow() -> datetime:
    return datetime.now(UTC)


class CommitmentKind(str, Enum):
    """Which commitment type an index entry holds."""

    ACTIVITY = "activity"
    IDENTITY = "identity"


class CommitmentIndexModel(Base):
    """
    Append-only index of every commitment the backend has observed.

    `sequence` gives a total insert order so scans can be bounded to the
    most recent entries.
    """

    __tablename__ = "commitment_index"
    __table_args__ = (Index("ix_commitment_index_kind_seen", "kind", "first_seen_at"),)

    sequence = Column(Integer, primary_key=True, autoincrement=True)
    commitment = Column(String(66), nullable=False, unique=True)
    kind = Column(String(16), nullable=False, default=CommitmentKind.ACTIVITY.value)
    first_seen_at = Column(UTCDateTime, nullable=False, default=_utcnow)


class CommitmentLoanTestModel(Base):
    """
    Result of one ledger point lookup for `(commitment, loan_id)`.

    Negative results expire after the configured TTL; positive results are
    permanent because a ledger application is never deleted.
    """

    __tablename__ = "commitment_loan_tests"

    commitment = Column(String(66), primary_key=True)
    loan_id = Column(String(78), primary_key=True)
    matched = Column(Boolean, nullable=False, default=False)
    checked_at = Column(UTCDateTime, nullable=False, default=_utcnow)


class BorrowerBindingModel(Base):
    """Permanent identity commitment registered for a wallet (first use wins)."""

    __tablename__ = "borrower_bindings"

    identity_commitment = Column(String(66), primary_key=True)
    wallet_address = Column(String(66), nullable=False, unique=True)
    escrow_id = Column(String(64))
    created_at = Column(UTCDateTime, nullable=False, default=_utcnow)
    updated_at = Column(UTCDateTime, nullable=False, default=_utcnow, onupdate=_utcnow)


class ActivityOpeningModel(Base):
    """
    Client-registered opening of an activity commitment.

    Only the nonce is kept. The score is recovered from the borrower secret,
    which only exists inside the sealed identity envelope.
    """

    __tablename__ = "activity_openings"
    __table_args__ = (Index("ix_activity_openings_identity", "identity_commitment"),)

    activity_commitment = Column(String(66), primary_key=True)
    identity_commitment = Column(String(66), nullable=False)
    nonce = Column(String(66), nullable=False)
    created_at = Column(UTCDateTime, nullable=False, default=_utcnow)

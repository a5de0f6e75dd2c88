"""
Escrow Database Models
======================

SQLAlchemy ORM models for sealed identity escrows and trustee
acknowledgements. Share values are never stored here, only their digests.

Version: 0.1.0
"""

from datetime import UTC, datetime
from enum import Enum

from sqlalchemy import JSON, Boolean, Column, ForeignKey, Integer, String, Text

from shared.database import Base, UTCDateTime


def _utcnow() -> datetime:
    return datetime.now(UTC)


class EscrowState(str, Enum):
    """Distribution state of an escrow."""

    PENDING_DISTRIBUTION = "pending_distribution"
    DISTRIBUTED = "distributed"


class EscrowRecordModel(Base):
    """One sealed identity payload per identity commitment."""

    __tablename__ = "escrow_records"

    escrow_id = Column(String(64), primary_key=True)
    identity_commitment = Column(String(66), nullable=False, unique=True)
    locator = Column(String(128), nullable=False)
    threshold = Column(Integer, nullable=False)
    total_shares = Column(Integer, nullable=False)
    key_check = Column(String(64), nullable=False)
    share_digests = Column(JSON, nullable=False, default=dict)  # str(index) -> sha256 hex
    state = Column(String(32), nullable=False, default=EscrowState.PENDING_DISTRIBUTION.value)
    created_at = Column(UTCDateTime, nullable=False, default=_utcnow)
    updated_at = Column(UTCDateTime, nullable=False, default=_utcnow, onupdate=_utcnow)

    def digests_by_index(self) -> dict[int, str]:
        return {int(k): v for k, v in (self.share_digests or {}).items()}


class TrusteeAckModel(Base):
    """Delivery status of one trustee's share."""

    __tablename__ = "trustee_acks"

    escrow_id = Column(
        String(64),
        ForeignKey("escrow_records.escrow_id", ondelete="CASCADE"),
        primary_key=True,
    )
    trustee_id = Column(String(64), primary_key=True)
    share_index = Column(Integer, nullable=False)
    acknowledged = Column(Boolean, nullable=False, default=False)
    error = Column(Text)
    updated_at = Column(UTCDateTime, nullable=False, default=_utcnow, onupdate=_utcnow)

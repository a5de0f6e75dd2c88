"""
Dispute Database Models
=======================

SQLAlchemy ORM models for dispute-window tasks and the ledger event cursor.

Version: 0.1.0
"""

from datetime import UTC, datetime
from enum import Enum

from sqlalchemy import Column, Index, Integer, String, Text

from shared.database import Base, UTCDateTime


def _utcnow() -> datetime:
    return datetime.now(UTC)


class DisputeTaskState(str, Enum):
    """Per-application task state: scheduled -> fired -> consumed | cancelled."""

    SCHEDULED = "scheduled"
    FIRED = "fired"
    CONSUMED = "consumed"
    CANCELLED = "cancelled"


class DisputeTaskModel(Base):
    """One dispute-window task per `(loan_id, commitment)`."""

    __tablename__ = "dispute_tasks"
    __table_args__ = (Index("ix_dispute_tasks_state_fires", "state", "fires_at"),)

    loan_id = Column(String(78), primary_key=True)
    commitment = Column(String(66), primary_key=True)
    fires_at = Column(UTCDateTime, nullable=False)
    state = Column(String(16), nullable=False, default=DisputeTaskState.SCHEDULED.value)
    outcome = Column(Text)
    created_at = Column(UTCDateTime, nullable=False, default=_utcnow)
    updated_at = Column(UTCDateTime, nullable=False, default=_utcnow, onupdate=_utcnow)


class LedgerCursorModel(Base):
    """Last ledger block processed by the event watcher (single row)."""

    __tablename__ = "ledger_cursor"

    id = Column(Integer, primary_key=True)
    last_block = Column(Integer, nullable=False, default=0)
    updated_at = Column(UTCDateTime, nullable=False, default=_utcnow, onupdate=_utcnow)

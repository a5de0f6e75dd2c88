"""
Escrow Database Models
======================

SQLAlchemy ORM models for the escrow service.

Tables:
- commitment_index: Every observed commitment, in insert order
- commitment_loan_tests: Ledger lookup results per (commitment, loan)
- borrower_bindings: Identity commitment per wallet
- activity_openings: Openings of activity commitments
- escrow_records: Sealed identity payloads and share digests
- trustee_acks: Share delivery status per trustee
- dispute_tasks: Dispute-window tasks
- ledger_cursor: Event watcher checkpoint

Version: 0.1.0
"""

from services.escrow.models.commitment import (
    ActivityOpeningModel,
    BorrowerBindingModel,
    CommitmentIndexModel,
    CommitmentKind,
    CommitmentLoanTestModel,
)
from services.escrow.models.dispute import (
    DisputeTaskModel,
    DisputeTaskState,
    LedgerCursorModel,
)
from services.escrow.models.escrow import (
    EscrowRecordModel,
    EscrowState,
    TrusteeAckModel,
)

__all__ = [
    # Commitments
    "CommitmentIndexModel",
    "CommitmentKind",
    "CommitmentLoanTestModel",
    "BorrowerBindingModel",
    "ActivityOpeningModel",
    # Escrow
    "EscrowRecordModel",
    "EscrowState",
    "TrusteeAckModel",
    # Disputes
    "DisputeTaskModel",
    "DisputeTaskState",
    "LedgerCursorModel",
]

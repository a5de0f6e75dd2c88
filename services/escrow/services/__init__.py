"""
Escrow Services
===============

Business logic for the escrow service.

Services:
- BindingRegistry: Identity and activity bindings
- CommitmentIndex: Commitment recording and ledger discovery scans
- EscrowService: Identity sealing and share distribution
- DisputeScheduler: Durable dispute-window tasks
- DisclosureOrchestrator: Reveal eligibility and disclosure
- LedgerEventWatcher: Ledger event follower

Version: 0.1.0
"""

from services.escrow.services.bindings import BindingRegistry
from services.escrow.services.disclosure import DisclosureOrchestrator, RevealResult
from services.escrow.services.escrow import (
    EscrowService,
    EscrowStatus,
    IdentityEnvelope,
    TrusteeAckStatus,
)
from services.escrow.services.event_watcher import LedgerEventWatcher
from services.escrow.services.index import CommitmentIndex
from services.escrow.services.scheduler import (
    DisputeScheduler,
    DisputeTask,
    FireOutcome,
)


__all__ = [
    "BindingRegistry",
    "CommitmentIndex",
    "EscrowService",
    "EscrowStatus",
    "IdentityEnvelope",
    "TrusteeAckStatus",
    "DisputeScheduler",
    "DisputeTask",
    "FireOutcome",
    "DisclosureOrchestrator",
    "RevealResult",
    "LedgerEventWatcher",
]

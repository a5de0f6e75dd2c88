"""
Escrow Service Test Helpers
===========================

Fixtures that drive a borrower through sealing and a loan application.
"""

from dataclasses import dataclass

import pytest

from services.escrow.dependencies import EscrowContainer
from services.escrow.models import CommitmentKind
from services.escrow.services import EscrowStatus
from shared.ledger import MockLedgerClient


TRUSTEES = ["t1", "t2", "t3", "t4", "t5"]
IDENTITY_FIELDS = {
    "document_hash": "0x9f2c",
    "name_commitment": "0x51aa",
}
REPAYMENT_PERIOD = 600


@dataclass
class Application:
    """A submitted application and the opening of its activity commitment."""

    loan_id: str
    commitment: str
    score: int
    nonce: int


@pytest.fixture
def seal(container: EscrowContainer):
    """Seal a borrower's identity over five trustees with threshold three."""

    async def _seal(borrower, trustees=None, threshold=3) -> EscrowStatus:
        return await container.escrow.seal_identity(
            identity_commitment=borrower.identity,
            wallet_address=borrower.wallet,
            borrower_secret=borrower.secret_hex,
            identity_fields=IDENTITY_FIELDS,
            trustees=trustees or TRUSTEES,
            threshold=threshold,
        )

    return _seal


@pytest.fixture
def apply(container: EscrowContainer, ledger: MockLedgerClient):
    """Record an activity commitment and file it against a (new) loan."""

    async def _apply(borrower, loan_id: str | None = None, score: int = 720) -> Application:
        if loan_id is None:
            loan_id = ledger.create_loan("0x1e4d", 1000, REPAYMENT_PERIOD).loan_id
        nonce = container.engine.generate_nonce()
        commitment = container.engine.derive_activity_commitment(borrower.secret, score, nonce).hex

        await container.index.record(commitment, CommitmentKind.ACTIVITY)
        await container.bindings.register_activity(commitment, borrower.identity, score, nonce)
        ledger.submit_application(loan_id, commitment, borrower.wallet)
        return Application(loan_id=loan_id, commitment=commitment, score=score, nonce=nonce)

    return _apply

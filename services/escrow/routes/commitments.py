"""
Commitment Routes
=================

Record commitments, register identity bindings, and report index stats.
"""

from datetime import datetime
from typing import Any

from fastapi import APIRouter, Depends, status
from pydantic import BaseModel, Field, model_validator

from services.escrow.dependencies import EscrowContainer, get_container
from services.escrow.models import CommitmentKind
from shared.logging import get_logger
from shared.zk import MAX_SCORE


logger = get_logger(__name__)
router = APIRouter()


# ============================================================================
# Request/Response Models
# ============================================================================


class RecordCommitmentRequest(BaseModel):
    """Record an activity commitment, optionally with its opening."""

    commitment: str = Field(..., description="Activity commitment (felt hex)")
    identity_commitment: str | None = Field(None, description="Identity the commitment opens to")
    score: int | None = Field(None, ge=0, le=MAX_SCORE)
    nonce: str | None = Field(None, description="Nonce used in the commitment (felt hex)")

    @model_validator(mode="after")
    def opening_is_complete(self) -> "RecordCommitmentRequest":
        parts = (self.identity_commitment, self.score, self.nonce)
        if any(p is not None for p in parts) and any(p is None for p in parts):
            raise ValueError("identity_commitment, score and nonce must be given together")
        return self


class RecordCommitmentResponse(BaseModel):
    """Index entry for a recorded commitment."""

    commitment: str
    kind: CommitmentKind
    created: bool
    first_seen_at: datetime
    opening_registered: bool


class RegisterIdentityRequest(BaseModel):
    """Bind a permanent identity commitment to a wallet."""

    identity_commitment: str
    wallet_address: str


class RegisterIdentityResponse(BaseModel):
    identity_commitment: str
    wallet_address: str
    escrow_id: str | None = None
    created_at: datetime


# ============================================================================
# Endpoints
# ============================================================================


@router.post("", response_model=RecordCommitmentResponse, status_code=status.HTTP_201_CREATED)
async def record_commitment(
    request: RecordCommitmentRequest,
    container: EscrowContainer = Depends(get_container),
) -> RecordCommitmentResponse:
    """
    Record an activity commitment in the discovery index.

    When the opening is supplied it is registered against the identity, so
    the commitment can later be traced during disclosure.
    """
    entry, created = await container.index.record(request.commitment, CommitmentKind.ACTIVITY)

    opening_registered = False
    if request.identity_commitment is not None:
        await container.bindings.register_activity(
            entry.commitment,
            request.identity_commitment,
            request.score,  # type: ignore[arg-type]
            request.nonce,  # type: ignore[arg-type]
        )
        opening_registered = True

    return RecordCommitmentResponse(
        commitment=entry.commitment,
        kind=CommitmentKind(entry.kind),
        created=created,
        first_seen_at=entry.first_seen_at,
        opening_registered=opening_registered,
    )


@router.post(
    "/identity",
    response_model=RegisterIdentityResponse,
    status_code=status.HTTP_201_CREATED,
)
async def register_identity(
    request: RegisterIdentityRequest,
    container: EscrowContainer = Depends(get_container),
) -> RegisterIdentityResponse:
    """Register an identity commitment for a wallet (first use wins)."""
    binding = await container.bindings.register_identity(
        request.identity_commitment,
        request.wallet_address,
    )
    await container.index.record(binding.identity_commitment, CommitmentKind.IDENTITY)

    return RegisterIdentityResponse(
        identity_commitment=binding.identity_commitment,
        wallet_address=binding.wallet_address,
        escrow_id=binding.escrow_id,
        created_at=binding.created_at,
    )


@router.get("/stats")
async def commitment_stats(
    container: EscrowContainer = Depends(get_container),
) -> dict[str, Any]:
    """Index and binding registry statistics."""
    return {
        "index": await container.index.stats(),
        "bindings": await container.bindings.stats(),
    }

"""
Escrow Routes
=============

Seal identity envelopes and track trustee share distribution.
"""

from fastapi import APIRouter, Depends, status
from pydantic import BaseModel, Field

from services.escrow.dependencies import EscrowContainer, get_container
from services.escrow.services import EscrowStatus
from shared.logging import get_logger


logger = get_logger(__name__)
router = APIRouter()


class SealIdentityRequest(BaseModel):
    """Identity envelope to seal, with the secret that opens its commitment."""

    identity_commitment: str
    wallet_address: str
    borrower_secret: str = Field(..., description="BorrowerSecret (felt hex)")
    identity_fields: dict[str, str] = Field(
        ...,
        description="Verified identity fields: document hash, normalized field commitments",
    )
    trustees: list[str] | None = Field(None, min_length=2, description="Defaults to configured trustees")
    threshold: int | None = Field(None, ge=2)

    def __repr__(self) -> str:
        return f"SealIdentityRequest(identity_commitment={self.identity_commitment!r})"


@router.post("", response_model=EscrowStatus, status_code=status.HTTP_201_CREATED)
async def seal_identity(
    request: SealIdentityRequest,
    container: EscrowContainer = Depends(get_container),
) -> EscrowStatus:
    """
    Seal an identity and distribute key shares to trustees.

    The escrow is usable for disclosure once `state` is `distributed`.
    """
    return await container.escrow.seal_identity(
        identity_commitment=request.identity_commitment,
        wallet_address=request.wallet_address,
        borrower_secret=request.borrower_secret,
        identity_fields=request.identity_fields,
        trustees=request.trustees,
        threshold=request.threshold,
    )


@router.get("/{escrow_id}", response_model=EscrowStatus)
async def escrow_status(
    escrow_id: str,
    container: EscrowContainer = Depends(get_container),
) -> EscrowStatus:
    """Per-trustee share acknowledgement report."""
    return await container.escrow.status(escrow_id)


@router.post("/{escrow_id}/redistribute", response_model=EscrowStatus)
async def redistribute(
    escrow_id: str,
    container: EscrowContainer = Depends(get_container),
) -> EscrowStatus:
    """Retry share delivery to trustees that have not acknowledged."""
    return await container.escrow.redistribute(escrow_id)

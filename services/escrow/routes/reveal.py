"""
Reveal Routes
=============

Identity disclosure for defaulted applications.

Callers learn only three outcomes: the identity, "not overdue yet" with
the remaining time, or an opaque "cannot reveal". The specific reason is
logged server-side.
"""

from fastapi import APIRouter, Depends, HTTPException, status
from pydantic import BaseModel

from services.escrow.dependencies import EscrowContainer, get_container
from services.escrow.errors import REVEAL_ERRORS, NotOverdue
from services.escrow.services import RevealResult
from shared.logging import get_logger, short_hex


logger = get_logger(__name__)
router = APIRouter()


class RevealRequest(BaseModel):
    loan_id: str
    commitment: str


@router.post("", response_model=RevealResult)
async def attempt_reveal(
    request: RevealRequest,
    container: EscrowContainer = Depends(get_container),
) -> RevealResult:
    """Reveal the identity behind an overdue application."""
    try:
        return await container.disclosure.attempt_reveal(request.loan_id, request.commitment)
    except NotOverdue:
        raise
    except REVEAL_ERRORS as e:
        logger.warning(
            "reveal_refused",
            loan_id=request.loan_id,
            commitment=short_hex(request.commitment),
            reason=getattr(e, "code", type(e).__name__),
        )
        raise HTTPException(
            status_code=status.HTTP_403_FORBIDDEN,
            detail="cannot_reveal",
        ) from e

"""
Discovery Routes
================

Local-index-guided application scans against the ledger.
"""

from fastapi import APIRouter, Depends, Query
from pydantic import BaseModel

from services.escrow.dependencies import EscrowContainer, get_container
from shared.config import settings
from shared.ledger import LoanApplication
from shared.models.common import PaginatedResponse


router = APIRouter()


class LoanApplicationsResponse(BaseModel):
    loan_id: str
    applications: list[LoanApplication]
    total: int


@router.get("/loans/{loan_id}/applications", response_model=LoanApplicationsResponse)
async def discover_applications(
    loan_id: str,
    container: EscrowContainer = Depends(get_container),
) -> LoanApplicationsResponse:
    """
    List the applications filed against a loan.

    Only commitments the backend has recorded can be found.
    """
    applications = await container.index.discover_applications(loan_id)
    return LoanApplicationsResponse(
        loan_id=loan_id,
        applications=sorted(applications, key=lambda a: a.applied_at),
        total=len(applications),
    )


@router.get(
    "/identities/{identity_commitment}/applications",
    response_model=PaginatedResponse[LoanApplication],
)
async def discover_by_identity(
    identity_commitment: str,
    page: int = Query(default=1, ge=1),
    page_size: int | None = Query(default=None, ge=1, le=500),
    container: EscrowContainer = Depends(get_container),
) -> PaginatedResponse[LoanApplication]:
    """A borrower's applications across recent loans, newest loans first."""
    activities = await container.bindings.activities_for_identity(identity_commitment)
    applications, has_more = await container.index.discover_by_identity(
        activities,
        page=page,
        page_size=page_size,
    )
    return PaginatedResponse[LoanApplication](
        items=applications,
        total=len(applications),
        page=page,
        page_size=page_size or settings.discovery.recent_loans_page_size,
        has_more=has_more,
    )

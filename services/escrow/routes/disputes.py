"""
Dispute Routes
==============

Schedule, cancel and list dispute-window tasks.
"""

from datetime import datetime, timedelta

from fastapi import APIRouter, Depends, Query, status
from pydantic import BaseModel, Field

from services.escrow.dependencies import EscrowContainer, get_container
from services.escrow.errors import NotApproved, NotFound
from services.escrow.services import DisputeTask
from shared.config import settings
from shared.models.common import PaginatedResponse


router = APIRouter()


class ScheduleDisputeRequest(BaseModel):
    """Schedule the dispute window for an approved application."""

    loan_id: str
    commitment: str
    deadline: datetime | None = Field(
        None,
        description="Defaults to the ledger repayment deadline",
    )


class CancelDisputeResponse(BaseModel):
    loan_id: str
    commitment: str
    cancelled: bool


@router.post("", response_model=DisputeTask, status_code=status.HTTP_201_CREATED)
async def schedule_dispute(
    request: ScheduleDisputeRequest,
    container: EscrowContainer = Depends(get_container),
) -> DisputeTask:
    """
    Schedule (or replace) the dispute task for an application.

    Without an explicit deadline the ledger's repayment deadline is used,
    falling back to approval time plus the configured dispute window.
    """
    deadline = request.deadline
    if deadline is None:
        application = await container.disclosure.get_application(request.loan_id, request.commitment)
        if application is None:
            raise NotFound("No application for this loan and commitment")
        if application.repayment_deadline is not None:
            deadline = application.repayment_deadline
        elif application.approved_at is not None:
            deadline = application.approved_at + timedelta(
                seconds=settings.scheduler.dispute_window_seconds
            )
        else:
            raise NotApproved("Application is not approved")

    return await container.scheduler.schedule(request.loan_id, request.commitment, deadline)


@router.delete("/{loan_id}/{commitment}", response_model=CancelDisputeResponse)
async def cancel_dispute(
    loan_id: str,
    commitment: str,
    container: EscrowContainer = Depends(get_container),
) -> CancelDisputeResponse:
    """Cancel a pending dispute task (loan repaid before the deadline)."""
    cancelled = await container.scheduler.cancel(loan_id, commitment)
    return CancelDisputeResponse(
        loan_id=loan_id,
        commitment=container.scheduler.codec.normalize(commitment),
        cancelled=cancelled,
    )


@router.get("", response_model=PaginatedResponse[DisputeTask])
async def pending_disputes(
    page: int = Query(default=1, ge=1),
    page_size: int = Query(default=50, ge=1, le=500),
    container: EscrowContainer = Depends(get_container),
) -> PaginatedResponse[DisputeTask]:
    """Scheduled dispute tasks, soonest first."""
    tasks, total = await container.scheduler.pending(limit=page_size, offset=(page - 1) * page_size)
    return PaginatedResponse[DisputeTask](
        items=tasks,
        total=total,
        page=page,
        page_size=page_size,
        has_more=page * page_size < total,
    )

"""
Disclosure Orchestrator
=======================

Answers "may this application's identity be revealed, and with what?"

`attempt_reveal(loan_id, activity_commitment)`:
1. Ledger point lookup              -> NotFound
2. Status must be approved          -> NotApproved
3. Ledger time past the deadline    -> NotOverdue (with remaining seconds)
4. Activity commitment must trace to a sealed identity -> BindingUnverifiable
5. Collect shares, reconstruct, unseal, verify the binding with the sealed
   secret, then return the identity fields and the ledger wallet

Eligibility is always recomputed from the ledger. Every failure is
terminal for the call; nothing is partially revealed.

Version: 0.1.0
"""

import asyncio
from collections.abc import Awaitable, Callable
from datetime import UTC, datetime
from typing import Any

from pydantic import BaseModel
from tenacity import (
    retry,
    retry_if_exception_type,
    stop_after_attempt,
    wait_exponential,
)

from services.escrow.errors import (
    BindingUnverifiable,
    LedgerUnavailable,
    NotApproved,
    NotFound,
    NotOverdue,
)
from services.escrow.services.bindings import BindingRegistry
from services.escrow.services.escrow import EscrowService
from services.escrow.services.scheduler import DisputeScheduler, FireOutcome
from shared.config import settings
from shared.ledger import (
    ApplicationStatus,
    LedgerClient,
    LedgerUnavailableError,
    LoanApplication,
)
from shared.logging import get_logger, short_hex
from shared.zk import CommitmentEngine


logger = get_logger(__name__)


class RevealResult(BaseModel):
    """Disclosed identity for one defaulted application."""

    loan_id: str
    activity_commitment: str
    identity_commitment: str
    wallet_address: str
    identity_fields: dict[str, str]
    repayment_deadline: datetime
    revealed_at: datetime


class DisclosureOrchestrator:
    """Composes ledger, binding registry, escrow and scheduler."""

    def __init__(
        self,
        ledger: LedgerClient,
        bindings: BindingRegistry,
        escrow: EscrowService,
        scheduler: DisputeScheduler | None = None,
        engine: CommitmentEngine | None = None,
        ledger_timeout: float | None = None,
    ) -> None:
        self.ledger = ledger
        self.bindings = bindings
        self.escrow = escrow
        self.scheduler = scheduler
        self.engine = engine or escrow.engine
        self.ledger_timeout = ledger_timeout or settings.ledger.timeout_seconds

    # =========================================================================
    # Ledger Reads
    # =========================================================================

    @retry(
        retry=retry_if_exception_type(LedgerUnavailableError),
        stop=stop_after_attempt(settings.ledger.max_retries),
        wait=wait_exponential(multiplier=0.2, min=0.2, max=5),
        reraise=True,
        before_sleep=lambda retry_state: logger.warning(
            "ledger_retry",
            attempt=retry_state.attempt_number,
            wait=retry_state.next_action.sleep,  # type: ignore[union-attr]
        ),
    )
    async def _read_ledger(self, call: Callable[..., Awaitable[Any]], *args: Any) -> Any:
        try:
            async with asyncio.timeout(self.ledger_timeout):
                return await call(*args)
        except TimeoutError as e:
            raise LedgerUnavailableError("ledger read timed out") from e

    async def _ledger(self, call: Callable[..., Awaitable[Any]], *args: Any) -> Any:
        try:
            return await self._read_ledger(call, *args)
        except LedgerUnavailableError as e:
            logger.error("ledger_unavailable", error=str(e))
            raise LedgerUnavailable("Ledger unavailable") from e

    async def get_application(self, loan_id: str, activity_commitment: str) -> LoanApplication | None:
        """Ledger point lookup with timeout and bounded retries."""
        return await self._ledger(self.ledger.get_application, str(loan_id), activity_commitment)

    # =========================================================================
    # Eligibility
    # =========================================================================

    async def check_eligibility(self, loan_id: str, activity_commitment: str) -> LoanApplication:
        """
        Steps 1-3: the application exists, is approved, and is overdue.

        Raises:
            NotFound, NotApproved, NotOverdue, LedgerUnavailable
        """
        application = await self.get_application(loan_id, activity_commitment)
        if application is None:
            raise NotFound("No application for this loan and commitment")

        if application.status != ApplicationStatus.APPROVED or application.repayment_deadline is None:
            raise NotApproved(f"Application is {application.status.value}")

        now: datetime = await self._ledger(self.ledger.current_timestamp)
        if now <= application.repayment_deadline:
            remaining = (application.repayment_deadline - now).total_seconds()
            raise NotOverdue(remaining, deadline=application.repayment_deadline)

        return application

    # =========================================================================
    # Reveal
    # =========================================================================

    async def attempt_reveal(self, loan_id: str, activity_commitment: str | int) -> RevealResult:
        """
        Reveal the identity behind a defaulted application.

        Raises:
            NotFound, NotApproved, NotOverdue, BindingUnverifiable,
            DistributionPending, InsufficientShares, ShareIntegrityError,
            DecryptionFailed, LedgerUnavailable
        """
        loan_id = str(loan_id)
        activity = self.bindings.codec.normalize(activity_commitment)
        log = logger.bind(loan_id=loan_id, activity_commitment=short_hex(activity))

        application = await self.check_eligibility(loan_id, activity)

        claimed = await self.bindings.get_opening(activity)
        if claimed is None:
            log.warning("reveal_binding_missing")
            raise BindingUnverifiable("No identity binding for this activity commitment")
        identity = claimed.identity_commitment

        record = await self.escrow.get_record_for_identity(identity)
        if record is None:
            log.warning("reveal_escrow_missing")
            raise BindingUnverifiable("No escrow sealed for this identity")

        shares = await self.escrow.collect_shares(record)
        envelope = await self.escrow.open_envelope(record, shares)

        secret = int(envelope.borrower_secret, 16)
        score = self.engine.recover_score(secret, int(activity, 16), claimed.nonce)
        bound = score is not None and self.engine.verify_binding(
            secret,
            int(identity, 16),
            int(activity, 16),
            claimed.with_score(score),
        )
        if not bound:
            log.warning("reveal_binding_rejected", escrow_id=record.escrow_id)
            raise BindingUnverifiable("Activity commitment does not trace to the sealed identity")

        if self.scheduler is not None:
            await self.scheduler.mark_consumed(loan_id, activity, "revealed")

        log.info("identity_revealed", escrow_id=record.escrow_id)
        return RevealResult(
            loan_id=loan_id,
            activity_commitment=activity,
            identity_commitment=identity,
            wallet_address=application.borrower_wallet,
            identity_fields=envelope.identity_fields,
            repayment_deadline=application.repayment_deadline,
            revealed_at=datetime.now(UTC),
        )

    # =========================================================================
    # Scheduler Callback
    # =========================================================================

    async def handle_dispute_fire(self, loan_id: str, activity_commitment: str) -> FireOutcome:
        """
        Re-derive eligibility when a dispute window closes.

        A repaid (or otherwise non-approved) application is a no-op. An
        early fire re-arms the task at the ledger deadline. Ledger failures
        propagate so the scheduler retries.
        """
        try:
            await self.check_eligibility(loan_id, activity_commitment)
        except NotFound:
            return FireOutcome("not_found")
        except NotApproved as e:
            logger.info(
                "dispute_fire_noop",
                loan_id=loan_id,
                commitment=short_hex(activity_commitment),
                reason=e.message,
            )
            return FireOutcome("not_approved")
        except NotOverdue as e:
            return FireOutcome("not_overdue", reschedule_at=e.deadline)

        claimed = await self.bindings.get_opening(activity_commitment)
        if (
            claimed is None
            or await self.escrow.get_record_for_identity(claimed.identity_commitment) is None
        ):
            logger.warning("dispute_eligible_unbound", loan_id=loan_id)
            return FireOutcome("eligible_unbound")

        logger.info(
            "dispute_eligible",
            loan_id=loan_id,
            commitment=short_hex(activity_commitment),
        )
        return FireOutcome("eligible")

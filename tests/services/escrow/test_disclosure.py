"""
Disclosure Orchestrator Tests
=============================

End-to-end reveal over the mock ledger, in-memory trustees and sqlite.

Version: 0.1.0
"""

import pytest

from services.escrow.errors import (
    BindingUnverifiable,
    DistributionPending,
    LedgerUnavailable,
    NotApproved,
    NotFound,
    NotOverdue,
    ShareIntegrityError,
)
from services.escrow.models import DisputeTaskState

from tests.services.escrow.conftest import IDENTITY_FIELDS, REPAYMENT_PERIOD


@pytest.fixture
def overdue_application(ledger, make_borrower, seal, apply):
    """A sealed borrower whose approved application is one second overdue."""

    async def _build():
        borrower = make_borrower()
        await seal(borrower)
        application = await apply(borrower)
        ledger.approve_application(application.loan_id, application.commitment)
        ledger.advance_time(REPAYMENT_PERIOD + 1)
        return borrower, application

    return _build


class TestAttemptReveal:
    """Tests for attempt_reveal."""

    @pytest.mark.asyncio
    async def test_reveal_after_deadline(self, container, overdue_application):
        borrower, application = await overdue_application()

        result = await container.disclosure.attempt_reveal(application.loan_id, application.commitment)

        assert result.identity_commitment == borrower.identity
        assert result.identity_fields == IDENTITY_FIELDS
        assert result.wallet_address == borrower.wallet
        assert result.activity_commitment == application.commitment

    @pytest.mark.asyncio
    async def test_deadline_boundary(self, container, ledger, make_borrower, seal, apply):
        borrower = make_borrower()
        await seal(borrower)
        application = await apply(borrower)
        ledger.approve_application(application.loan_id, application.commitment)

        ledger.advance_time(REPAYMENT_PERIOD - 1)
        with pytest.raises(NotOverdue) as exc_info:
            await container.disclosure.attempt_reveal(application.loan_id, application.commitment)
        assert exc_info.value.remaining_seconds == 1

        ledger.advance_time(1)
        with pytest.raises(NotOverdue):
            await container.disclosure.attempt_reveal(application.loan_id, application.commitment)

        ledger.advance_time(1)
        result = await container.disclosure.attempt_reveal(application.loan_id, application.commitment)
        assert result.identity_commitment == borrower.identity

    @pytest.mark.asyncio
    async def test_unknown_application(self, container, ledger):
        loan = ledger.create_loan("0x1e4d", 1000, REPAYMENT_PERIOD)

        with pytest.raises(NotFound):
            await container.disclosure.attempt_reveal(loan.loan_id, "0xc1")

    @pytest.mark.asyncio
    async def test_pending_application(self, container, make_borrower, seal, apply):
        borrower = make_borrower()
        await seal(borrower)
        application = await apply(borrower)

        with pytest.raises(NotApproved):
            await container.disclosure.attempt_reveal(application.loan_id, application.commitment)

    @pytest.mark.asyncio
    async def test_repaid_application(self, container, ledger, make_borrower, seal, apply):
        borrower = make_borrower()
        await seal(borrower)
        application = await apply(borrower)
        ledger.approve_application(application.loan_id, application.commitment)
        ledger.repay_application(application.loan_id, application.commitment)
        ledger.advance_time(REPAYMENT_PERIOD + 1)

        with pytest.raises(NotApproved):
            await container.disclosure.attempt_reveal(application.loan_id, application.commitment)

    @pytest.mark.asyncio
    async def test_unregistered_commitment(self, container, ledger):
        loan = ledger.create_loan("0x1e4d", 1000, REPAYMENT_PERIOD)
        ledger.submit_application(loan.loan_id, "0xc1", "0xb0b")
        ledger.approve_application(loan.loan_id, "0xc1")
        ledger.advance_time(REPAYMENT_PERIOD + 1)

        with pytest.raises(BindingUnverifiable):
            await container.disclosure.attempt_reveal(loan.loan_id, "0xc1")

    @pytest.mark.asyncio
    async def test_identity_without_escrow(self, container, ledger, make_borrower, apply):
        borrower = make_borrower()
        await container.bindings.register_identity(borrower.identity, borrower.wallet)
        application = await apply(borrower)
        ledger.approve_application(application.loan_id, application.commitment)
        ledger.advance_time(REPAYMENT_PERIOD + 1)

        with pytest.raises(BindingUnverifiable):
            await container.disclosure.attempt_reveal(application.loan_id, application.commitment)

    @pytest.mark.asyncio
    async def test_opening_claimed_by_wrong_identity(
        self, container, ledger, engine, make_borrower, seal
    ):
        """An activity commitment registered under someone else's identity is not revealed."""
        victim = make_borrower()
        borrower = make_borrower()
        await seal(victim)
        await seal(borrower)

        nonce = engine.generate_nonce()
        commitment = engine.derive_activity_commitment(borrower.secret, 720, nonce).hex
        await container.bindings.register_activity(commitment, victim.identity, 720, nonce)
        loan = ledger.create_loan("0x1e4d", 1000, REPAYMENT_PERIOD)
        ledger.submit_application(loan.loan_id, commitment, borrower.wallet)
        ledger.approve_application(loan.loan_id, commitment)
        ledger.advance_time(REPAYMENT_PERIOD + 1)

        with pytest.raises(BindingUnverifiable):
            await container.disclosure.attempt_reveal(loan.loan_id, commitment)

    @pytest.mark.asyncio
    async def test_distribution_pending(self, container, channel, ledger, make_borrower, seal, apply):
        borrower = make_borrower()
        for trustee_id in ("t3", "t4", "t5"):
            channel.set_reachable(trustee_id, False)
        await seal(borrower)
        application = await apply(borrower)
        ledger.approve_application(application.loan_id, application.commitment)
        ledger.advance_time(REPAYMENT_PERIOD + 1)

        with pytest.raises(DistributionPending):
            await container.disclosure.attempt_reveal(application.loan_id, application.commitment)

    @pytest.mark.asyncio
    async def test_tampered_share(self, container, channel, overdue_application):
        borrower, application = await overdue_application()
        record = await container.escrow.get_record_for_identity(borrower.identity)
        share = await channel.receive("t2", record.escrow_id)
        channel.overwrite("t2", record.escrow_id, f"{share.index}:{share.value ^ 1:x}")

        with pytest.raises(ShareIntegrityError):
            await container.disclosure.attempt_reveal(application.loan_id, application.commitment)

    @pytest.mark.asyncio
    async def test_transient_ledger_failure_is_retried(self, container, ledger, overdue_application):
        borrower, application = await overdue_application()
        ledger.fail_next(1)

        result = await container.disclosure.attempt_reveal(application.loan_id, application.commitment)

        assert result.identity_commitment == borrower.identity

    @pytest.mark.asyncio
    async def test_ledger_unavailable(self, container, ledger, overdue_application):
        _, application = await overdue_application()
        ledger.fail_next(100)

        with pytest.raises(LedgerUnavailable):
            await container.disclosure.attempt_reveal(application.loan_id, application.commitment)

    @pytest.mark.asyncio
    async def test_reveal_consumes_scheduled_task(self, container, overdue_application):
        _, application = await overdue_application()
        await container.scheduler.schedule(
            application.loan_id,
            application.commitment,
            await container.ledger.current_timestamp(),
        )

        await container.disclosure.attempt_reveal(application.loan_id, application.commitment)
        task = await container.scheduler.get(application.loan_id, application.commitment)

        assert task.state == DisputeTaskState.CONSUMED
        assert task.outcome == "revealed"


class TestDisputeFire:
    """Scheduler callback outcomes."""

    @pytest.mark.asyncio
    async def test_repaid_before_deadline_is_noop(self, container, ledger, make_borrower, seal, apply):
        borrower = make_borrower()
        await seal(borrower)
        application = await apply(borrower)
        approved = ledger.approve_application(application.loan_id, application.commitment)
        await container.scheduler.schedule(
            application.loan_id, application.commitment, approved.repayment_deadline
        )
        ledger.repay_application(application.loan_id, application.commitment)
        ledger.advance_time(REPAYMENT_PERIOD)

        assert await container.scheduler.run_due() == 1
        task = await container.scheduler.get(application.loan_id, application.commitment)

        assert task.state == DisputeTaskState.CONSUMED
        assert task.outcome == "not_approved"

    @pytest.mark.asyncio
    async def test_early_fire_rearms_at_deadline(self, container, ledger, make_borrower, seal, apply):
        borrower = make_borrower()
        await seal(borrower)
        application = await apply(borrower)
        approved = ledger.approve_application(application.loan_id, application.commitment)

        outcome = await container.disclosure.handle_dispute_fire(
            application.loan_id, application.commitment
        )

        assert outcome.outcome == "not_overdue"
        assert outcome.reschedule_at == approved.repayment_deadline

    @pytest.mark.asyncio
    async def test_eligible(self, container, overdue_application):
        _, application = await overdue_application()

        outcome = await container.disclosure.handle_dispute_fire(
            application.loan_id, application.commitment
        )

        assert outcome.outcome == "eligible"
        assert outcome.reschedule_at is None

    @pytest.mark.asyncio
    async def test_eligible_but_unbound(self, container, ledger):
        loan = ledger.create_loan("0x1e4d", 1000, REPAYMENT_PERIOD)
        ledger.submit_application(loan.loan_id, "0xc1", "0xb0b")
        ledger.approve_application(loan.loan_id, "0xc1")
        ledger.advance_time(REPAYMENT_PERIOD + 1)

        outcome = await container.disclosure.handle_dispute_fire(loan.loan_id, "0xc1")

        assert outcome.outcome == "eligible_unbound"

    @pytest.mark.asyncio
    async def test_not_found(self, container, ledger):
        loan = ledger.create_loan("0x1e4d", 1000, REPAYMENT_PERIOD)

        outcome = await container.disclosure.handle_dispute_fire(loan.loan_id, "0xc1")

        assert outcome.outcome == "not_found"

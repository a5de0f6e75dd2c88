"""
Identity Escrow Tests
=====================

Sealing, share distribution, redistribution and reopening.

Version: 0.1.0
"""

import pytest

from services.escrow.core import KeyShare
from services.escrow.errors import (
    BindingUnverifiable,
    DistributionPending,
    IdentityAlreadySealed,
    InsufficientShares,
    InsufficientTrustees,
    NotFound,
    ShareIntegrityError,
)
from services.escrow.models import EscrowState
from services.escrow.services import EscrowService

from tests.services.escrow.conftest import IDENTITY_FIELDS, TRUSTEES


async def _shares_from(channel, escrow_id: str, trustee_ids: list[str]) -> list[KeyShare]:
    return [await channel.receive(t, escrow_id) for t in trustee_ids]


# =============================================================================
# Sealing and Distribution
# =============================================================================


class TestSealIdentity:
    """Tests for seal_identity and distribution."""

    @pytest.mark.asyncio
    async def test_seal_distributes_one_share_per_trustee(self, container, channel, make_borrower, seal):
        borrower = make_borrower()

        status = await seal(borrower)

        assert status.state == EscrowState.DISTRIBUTED
        assert status.threshold == 3
        assert status.total_shares == 5
        assert status.acknowledged == 5
        assert status.redistributable is False
        assert [t.share_index for t in status.trustees] == [1, 2, 3, 4, 5]
        assert all(channel.holds(t, status.escrow_id) for t in TRUSTEES)

        binding = await container.bindings.get_identity(borrower.identity)
        assert binding.escrow_id == status.escrow_id

    @pytest.mark.asyncio
    async def test_payload_store_holds_ciphertext_only(self, payload_store, make_borrower, seal):
        borrower = make_borrower()

        status = await seal(borrower)
        blob = await payload_store.get(status.locator)

        assert IDENTITY_FIELDS["document_hash"].encode() not in blob
        assert borrower.secret_hex.encode() not in blob

    @pytest.mark.asyncio
    async def test_secret_must_open_commitment(self, container, make_borrower):
        borrower = make_borrower()
        other = make_borrower()

        with pytest.raises(BindingUnverifiable):
            await container.escrow.seal_identity(
                identity_commitment=borrower.identity,
                wallet_address=borrower.wallet,
                borrower_secret=other.secret_hex,
                identity_fields=IDENTITY_FIELDS,
                trustees=TRUSTEES,
                threshold=3,
            )

    @pytest.mark.asyncio
    async def test_second_seal_rejected(self, make_borrower, seal):
        borrower = make_borrower()
        await seal(borrower)

        with pytest.raises(IdentityAlreadySealed):
            await seal(borrower)

    @pytest.mark.asyncio
    async def test_threshold_above_trustee_count(self, make_borrower, seal):
        with pytest.raises(InsufficientTrustees):
            await seal(make_borrower(), trustees=["t1", "t2"], threshold=3)

    @pytest.mark.asyncio
    @pytest.mark.parametrize(
        ("trustees", "threshold"),
        [(["t1", "t2", "t3"], 0), ([], 2), ([], None)],
    )
    async def test_explicit_empty_arguments_not_defaulted(
        self, container, make_borrower, trustees, threshold
    ):
        borrower = make_borrower()

        with pytest.raises(InsufficientTrustees):
            await container.escrow.seal_identity(
                identity_commitment=borrower.identity,
                wallet_address=borrower.wallet,
                borrower_secret=borrower.secret_hex,
                identity_fields=IDENTITY_FIELDS,
                trustees=trustees,
                threshold=threshold,
            )
        assert await container.bindings.get_identity(borrower.identity) is None

    @pytest.mark.asyncio
    async def test_container_keeps_injected_collaborators(self, container, channel, payload_store):
        assert container.payload_store is payload_store
        assert container.channel is channel
        assert container.escrow.payload_store is payload_store

    @pytest.mark.asyncio
    async def test_locks_released_after_seal(self, container, make_borrower, seal):
        await seal(make_borrower())
        await seal(make_borrower())

        assert len(container.escrow._locks) == 0

    @pytest.mark.asyncio
    async def test_unknown_escrow(self, container):
        with pytest.raises(NotFound):
            await container.escrow.status("escrow:missing")


class TestDistribution:
    """Partial delivery and redistribution."""

    @pytest.mark.asyncio
    async def test_below_threshold_stays_pending(self, container, channel, make_borrower, seal):
        for trustee_id in ("t3", "t4", "t5"):
            channel.set_reachable(trustee_id, False)

        status = await seal(make_borrower())

        assert status.state == EscrowState.PENDING_DISTRIBUTION
        assert status.acknowledged == 2
        assert status.redistributable is True
        failed = [t for t in status.trustees if not t.acknowledged]
        assert {t.trustee_id for t in failed} == {"t3", "t4", "t5"}
        assert all(t.error == "TrusteeUnavailable" for t in failed)

        record = await container.escrow.get_record_for_identity(status.identity_commitment)
        with pytest.raises(DistributionPending):
            await container.escrow.collect_shares(record)

    @pytest.mark.asyncio
    async def test_redistribute_delivers_remaining_shares(self, container, channel, make_borrower, seal):
        for trustee_id in ("t3", "t4", "t5"):
            channel.set_reachable(trustee_id, False)
        status = await seal(make_borrower())

        channel.set_reachable("t3", True)
        status = await container.escrow.redistribute(status.escrow_id)
        assert status.state == EscrowState.DISTRIBUTED
        assert status.acknowledged == 3
        assert status.redistributable is True

        channel.set_reachable("t4", True)
        channel.set_reachable("t5", True)
        status = await container.escrow.redistribute(status.escrow_id)
        assert status.acknowledged == 5
        assert status.redistributable is False

    @pytest.mark.asyncio
    async def test_lost_outbox_requires_reseal(
        self, container, channel, payload_store, session_factory, make_borrower, seal
    ):
        borrower = make_borrower()
        for trustee_id in ("t2", "t3", "t4", "t5"):
            channel.set_reachable(trustee_id, False)
        status = await seal(borrower)

        # A restarted process no longer holds the undelivered shares
        restarted = EscrowService(
            channel,
            payload_store,
            container.bindings,
            session_factory,
            container.engine,
        )
        with pytest.raises(DistributionPending):
            await restarted.redistribute(status.escrow_id)

        for trustee_id in ("t2", "t3", "t4", "t5"):
            channel.set_reachable(trustee_id, True)
        resealed = await restarted.seal_identity(
            identity_commitment=borrower.identity,
            wallet_address=borrower.wallet,
            borrower_secret=borrower.secret_hex,
            identity_fields=IDENTITY_FIELDS,
            trustees=TRUSTEES,
            threshold=3,
        )

        assert resealed.escrow_id != status.escrow_id
        assert resealed.state == EscrowState.DISTRIBUTED
        with pytest.raises(NotFound):
            await restarted.status(status.escrow_id)


# =============================================================================
# Reopening
# =============================================================================


class TestOpenEnvelope:
    """Reconstruction from trustee shares."""

    @pytest.mark.asyncio
    async def test_any_threshold_subset_opens(self, container, channel, make_borrower, seal):
        borrower = make_borrower()
        status = await seal(borrower)
        record = await container.escrow.get_record_for_identity(borrower.identity)

        shares = await _shares_from(channel, status.escrow_id, ["t1", "t3", "t5"])
        envelope = await container.escrow.open_envelope(record, shares)

        assert envelope.identity_commitment == borrower.identity
        assert envelope.identity_fields == IDENTITY_FIELDS
        assert int(envelope.borrower_secret, 16) == borrower.secret

    @pytest.mark.asyncio
    async def test_two_shares_are_not_enough(self, container, channel, make_borrower, seal):
        borrower = make_borrower()
        status = await seal(borrower)
        record = await container.escrow.get_record_for_identity(borrower.identity)

        shares = await _shares_from(channel, status.escrow_id, ["t1", "t2"])
        with pytest.raises(InsufficientShares):
            await container.escrow.open_envelope(record, shares)

    @pytest.mark.asyncio
    async def test_collect_skips_unreachable_trustees(self, container, channel, make_borrower, seal):
        borrower = make_borrower()
        await seal(borrower)
        record = await container.escrow.get_record_for_identity(borrower.identity)
        channel.set_reachable("t1", False)
        channel.set_reachable("t2", False)

        shares = await container.escrow.collect_shares(record)

        assert len(shares) >= 3
        assert {s.trustee_id for s in shares} <= {"t3", "t4", "t5"}

    @pytest.mark.asyncio
    async def test_tampered_share_detected(self, container, channel, make_borrower, seal):
        borrower = make_borrower()
        status = await seal(borrower)
        record = await container.escrow.get_record_for_identity(borrower.identity)

        original = await channel.receive("t1", status.escrow_id)
        channel.overwrite("t1", status.escrow_id, f"{original.index}:{original.value + 1:x}")

        shares = await container.escrow.collect_shares(record)
        with pytest.raises(ShareIntegrityError):
            await container.escrow.open_envelope(record, shares)

"""
Commitment Index Tests
======================

Recording and ledger-backed discovery.

Version: 0.1.0
"""

import pytest

from services.escrow.errors import LedgerUnavailable, NotFound
from services.escrow.models import CommitmentKind
from services.escrow.services import CommitmentIndex
from shared.zk import FieldOverflow


@pytest.fixture
def index(ledger, session_factory, codec) -> CommitmentIndex:
    return CommitmentIndex(ledger, session_factory, codec, negative_ttl_seconds=60)


class TestRecord:
    """Tests for CommitmentIndex.record."""

    @pytest.mark.asyncio
    async def test_record_is_idempotent(self, index):
        first, created = await index.record("0x0ABC")
        again, created_again = await index.record("0xabc")

        assert created is True
        assert created_again is False
        assert first.commitment == again.commitment == "0xabc"
        assert first.sequence == again.sequence

    @pytest.mark.asyncio
    async def test_sequence_is_monotonic(self, index):
        a, _ = await index.record("0x1")
        b, _ = await index.record("0x2")

        assert b.sequence > a.sequence
        assert await index.contains("0x2")
        assert not await index.contains("0x3")

    @pytest.mark.asyncio
    async def test_non_field_value_rejected(self, index, codec):
        with pytest.raises(FieldOverflow):
            await index.record(hex(codec.modulus))

    @pytest.mark.asyncio
    async def test_stats_by_kind(self, index):
        await index.record("0x1")
        await index.record("0x2", CommitmentKind.IDENTITY)

        stats = await index.stats()

        assert stats["total_commitments"] == 2
        assert stats["activity_commitments"] == 1
        assert stats["identity_commitments"] == 1


class TestDiscoverApplications:
    """Tests for per-loan discovery."""

    @pytest.mark.asyncio
    async def test_finds_only_matching_commitment(self, index, ledger):
        c1, c2, c3 = "0xc1", "0xc2", "0xc3"
        for c in (c1, c2, c3):
            await index.record(c)
        loan = ledger.create_loan("0x1e4d", 1000, 600)
        ledger.submit_application(loan.loan_id, c2, "0xb0b")

        found = await index.discover_applications(loan.loan_id)

        assert [a.commitment for a in found] == [c2]

    @pytest.mark.asyncio
    async def test_repeat_scan_is_stable(self, index, ledger):
        for c in ("0xc1", "0xc2", "0xc3"):
            await index.record(c)
        loan = ledger.create_loan("0x1e4d", 1000, 600)
        ledger.submit_application(loan.loan_id, "0xc2", "0xb0b")

        first = await index.discover_applications(loan.loan_id)
        second = await index.discover_applications(loan.loan_id)

        assert [a.commitment for a in first] == [a.commitment for a in second]

    @pytest.mark.asyncio
    async def test_negative_results_are_cached(self, index, ledger):
        for c in ("0xc1", "0xc2", "0xc3"):
            await index.record(c)
        loan = ledger.create_loan("0x1e4d", 1000, 600)
        ledger.submit_application(loan.loan_id, "0xc2", "0xb0b")

        await index.discover_applications(loan.loan_id)
        lookups = ledger.lookup_count
        await index.discover_applications(loan.loan_id)

        # Only the positive pair is looked up again
        assert ledger.lookup_count - lookups == 1

    @pytest.mark.asyncio
    async def test_expired_negatives_are_rechecked(self, ledger, session_factory, codec):
        index = CommitmentIndex(ledger, session_factory, codec, negative_ttl_seconds=0)
        await index.record("0xc1")
        loan = ledger.create_loan("0x1e4d", 1000, 600)

        assert await index.discover_applications(loan.loan_id) == []
        ledger.submit_application(loan.loan_id, "0xc1", "0xb0b")

        found = await index.discover_applications(loan.loan_id)
        assert [a.commitment for a in found] == ["0xc1"]

    @pytest.mark.asyncio
    async def test_commitment_recorded_later_is_found(self, index, ledger):
        loan = ledger.create_loan("0x1e4d", 1000, 600)
        ledger.submit_application(loan.loan_id, "0xc9", "0xb0b")
        assert await index.discover_applications(loan.loan_id) == []

        await index.record("0xc9")

        found = await index.discover_applications(loan.loan_id)
        assert [a.commitment for a in found] == ["0xc9"]

    @pytest.mark.asyncio
    async def test_known_match_survives_scan_cap(self, ledger, session_factory, codec):
        index = CommitmentIndex(ledger, session_factory, codec, max_scan=2)
        await index.record("0xc1")
        loan = ledger.create_loan("0x1e4d", 1000, 600)
        ledger.submit_application(loan.loan_id, "0xc1", "0xb0b")
        await index.note_application(loan.loan_id, "0xc1")
        await index.record("0xc2")
        await index.record("0xc3")

        found = await index.discover_applications(loan.loan_id)

        assert [a.commitment for a in found] == ["0xc1"]

    @pytest.mark.asyncio
    async def test_scan_cap_limits_unknown_pairs(self, ledger, session_factory, codec):
        index = CommitmentIndex(ledger, session_factory, codec, max_scan=2)
        for c in ("0xc1", "0xc2", "0xc3"):
            await index.record(c)
        loan = ledger.create_loan("0x1e4d", 1000, 600)

        await index.discover_applications(loan.loan_id)

        assert ledger.lookup_count == 2

    @pytest.mark.asyncio
    async def test_identity_commitments_not_scanned(self, index, ledger):
        await index.record("0xd1", CommitmentKind.IDENTITY)
        loan = ledger.create_loan("0x1e4d", 1000, 600)

        await index.discover_applications(loan.loan_id)

        assert ledger.lookup_count == 0

    @pytest.mark.asyncio
    async def test_unknown_loan(self, index):
        with pytest.raises(NotFound):
            await index.discover_applications("42")

    @pytest.mark.asyncio
    async def test_ledger_failure(self, index, ledger):
        ledger.create_loan("0x1e4d", 1000, 600)
        ledger.fail_next()

        with pytest.raises(LedgerUnavailable):
            await index.discover_applications("1")

    @pytest.mark.asyncio
    async def test_noted_application_counts_as_match(self, index):
        await index.note_application("7", "0xc1")

        stats = await index.stats()

        assert stats["pairs_matched"] == 1


class TestDiscoverByIdentity:
    """Tests for borrower-centric discovery over recent loans."""

    @pytest.mark.asyncio
    async def test_pages_newest_loans_first(self, index, ledger):
        loans = [ledger.create_loan("0x1e4d", 1000, 600) for _ in range(5)]
        ledger.submit_application(loans[0].loan_id, "0xa1", "0xb0b")
        ledger.submit_application(loans[4].loan_id, "0xa2", "0xb0b")

        page_one, more = await index.discover_by_identity(["0xa1", "0xa2"], page=1, page_size=3)
        page_two, more_two = await index.discover_by_identity(["0xa1", "0xa2"], page=2, page_size=3)

        assert [(a.loan_id, a.commitment) for a in page_one] == [("5", "0xa2")]
        assert more is True
        assert [(a.loan_id, a.commitment) for a in page_two] == [("1", "0xa1")]
        assert more_two is False

    @pytest.mark.asyncio
    async def test_no_commitments(self, index, ledger):
        ledger.create_loan("0x1e4d", 1000, 600)

        assert await index.discover_by_identity([]) == ([], False)

    @pytest.mark.asyncio
    async def test_page_past_end(self, index, ledger):
        ledger.create_loan("0x1e4d", 1000, 600)

        assert await index.discover_by_identity(["0xa1"], page=3, page_size=5) == ([], False)

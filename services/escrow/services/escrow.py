"""
Identity Escrow Service
=======================

Seals a borrower's identity envelope, distributes key shares to trustees,
and reopens the envelope for the Disclosure Orchestrator.

Distribution is tracked per trustee. An escrow stays in
`pending_distribution` until at least `threshold` trustees acknowledged,
and reconstruction is refused until then. Undelivered shares are held in
process memory only, by the sealer, until their trustee acknowledges.

Version: 0.1.0
"""

import asyncio
import uuid
from datetime import UTC, datetime

from pydantic import BaseModel, Field
from sqlalchemy import delete, select
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from services.escrow.core import (
    EncryptedIdentityPayload,
    KeyShare,
    reconstruct,
    seal,
    unseal,
)
from services.escrow.errors import (
    BindingUnverifiable,
    DecryptionFailed,
    DistributionPending,
    IdentityAlreadySealed,
    NotFound,
    PayloadStoreError,
    ShareIntegrityError,
    TrusteeUnavailable,
)
from services.escrow.integrations import PayloadStore, TrusteeChannel
from services.escrow.models import EscrowRecordModel, EscrowState, TrusteeAckModel
from services.escrow.services.bindings import BindingRegistry
from services.escrow.services.locks import KeyedLocks
from shared.config import settings
from shared.database import db_session
from shared.logging import get_logger, short_hex
from shared.zk import CommitmentEngine


logger = get_logger(__name__)


# =============================================================================
# Models
# =============================================================================


class IdentityEnvelope(BaseModel):
    """Plaintext sealed under the escrow key."""

    identity_commitment: str
    wallet_address: str
    borrower_secret: str = Field(..., description="BorrowerSecret as felt hex")
    identity_fields: dict[str, str] = Field(default_factory=dict)
    sealed_at: datetime = Field(default_factory=lambda: datetime.now(UTC))

    def __repr__(self) -> str:
        return f"IdentityEnvelope(identity_commitment={self.identity_commitment!r})"


class TrusteeAckStatus(BaseModel):
    """Delivery status of one trustee's share."""

    trustee_id: str
    share_index: int
    acknowledged: bool
    error: str | None = None


class EscrowStatus(BaseModel):
    """Distribution report for one escrow."""

    escrow_id: str
    identity_commitment: str
    locator: str
    state: EscrowState
    threshold: int
    total_shares: int
    acknowledged: int
    trustees: list[TrusteeAckStatus]
    redistributable: bool = Field(
        ...,
        description="Whether undelivered shares are still held for a retry",
    )
    created_at: datetime


# =============================================================================
# Service
# =============================================================================


class EscrowService:
    """Seal, distribute and reopen identity escrows."""

    def __init__(
        self,
        channel: TrusteeChannel,
        payload_store: PayloadStore,
        bindings: BindingRegistry,
        session_factory: async_sessionmaker[AsyncSession] | None = None,
        engine: CommitmentEngine | None = None,
        allow_refresh: bool | None = None,
        trustee_timeout: float | None = None,
        store_timeout: float | None = None,
    ) -> None:
        self.channel = channel
        self.payload_store = payload_store
        self.bindings = bindings
        self._session_factory = session_factory
        self.engine = engine or CommitmentEngine(bindings.codec)
        self.allow_refresh = (
            settings.escrow.allow_identity_refresh if allow_refresh is None else allow_refresh
        )
        self.trustee_timeout = trustee_timeout or settings.trustees.timeout_seconds
        self.store_timeout = store_timeout or settings.payload_store.timeout_seconds

        # escrow_id -> trustee_id -> share not yet acknowledged
        self._outbox: dict[str, dict[str, KeyShare]] = {}
        self._locks = KeyedLocks()

    # =========================================================================
    # Sealing
    # =========================================================================

    async def seal_identity(
        self,
        identity_commitment: str | int,
        wallet_address: str | int,
        borrower_secret: str | int,
        identity_fields: dict[str, str],
        trustees: list[str] | None = None,
        threshold: int | None = None,
    ) -> EscrowStatus:
        """
        Seal an identity envelope and distribute its key shares.

        The identity commitment must open to `(borrower_secret, wallet)`.

        Raises:
            BindingUnverifiable: If the commitment does not match the secret
            IdentityAlreadySealed: If an escrow exists and refresh is disabled
            InsufficientTrustees: If the trustee set cannot meet the threshold
            PayloadStoreError: If the ciphertext cannot be stored
        """
        codec = self.bindings.codec
        identity = codec.normalize(identity_commitment)
        wallet = codec.normalize(wallet_address)
        secret = codec.parse(borrower_secret)
        if trustees is None:
            trustees = settings.escrow.default_trustee_list
        if threshold is None:
            threshold = settings.escrow.default_threshold

        derived = self.engine.derive_identity_commitment(secret, wallet)
        if derived.hex != identity:
            raise BindingUnverifiable("Identity commitment does not open to the supplied secret")

        async with self._locks.hold(identity):
            previous = await self.get_record_for_identity(identity)
            if previous is not None and not self._replaceable(previous):
                raise IdentityAlreadySealed("An escrow is already sealed for this identity")

            envelope = IdentityEnvelope(
                identity_commitment=identity,
                wallet_address=wallet,
                borrower_secret=codec.to_hex(secret),
                identity_fields=identity_fields,
            )
            escrow_id = f"escrow:{uuid.uuid4().hex}"
            encrypted, shares = seal(
                envelope.model_dump_json().encode(),
                trustees,
                threshold,
                associated_data=f"{identity}|{escrow_id}".encode(),
                escrow_id=escrow_id,
            )
            await self.bindings.register_identity(identity, wallet)

            try:
                async with asyncio.timeout(self.store_timeout):
                    locator = await self.payload_store.put(encrypted.to_bytes())
            except TimeoutError as e:
                raise PayloadStoreError("Payload store timed out") from e

            async with db_session(self._session_factory) as session:
                if previous is not None:
                    await session.execute(
                        delete(TrusteeAckModel).where(TrusteeAckModel.escrow_id == previous.escrow_id)
                    )
                    await session.execute(
                        delete(EscrowRecordModel).where(
                            EscrowRecordModel.escrow_id == previous.escrow_id
                        )
                    )
                    await session.flush()
                session.add(
                    EscrowRecordModel(
                        escrow_id=escrow_id,
                        identity_commitment=identity,
                        locator=locator,
                        threshold=threshold,
                        total_shares=len(shares),
                        key_check=encrypted.key_check,
                        share_digests={str(k): v for k, v in encrypted.share_digests.items()},
                        state=EscrowState.PENDING_DISTRIBUTION.value,
                    )
                )
                for share in shares:
                    session.add(
                        TrusteeAckModel(
                            escrow_id=escrow_id,
                            trustee_id=share.trustee_id,
                            share_index=share.index,
                            acknowledged=False,
                        )
                    )

            if previous is not None:
                self._outbox.pop(previous.escrow_id, None)
            self._outbox[escrow_id] = {s.trustee_id: s for s in shares}

            await self.bindings.attach_escrow(identity, escrow_id)

        logger.info(
            "identity_sealed",
            escrow_id=escrow_id,
            identity_commitment=short_hex(identity),
            threshold=threshold,
            total_shares=len(shares),
            replaced=previous is not None,
        )
        return await self.distribute(escrow_id)

    def _replaceable(self, record: EscrowRecordModel) -> bool:
        if self.allow_refresh:
            return True
        # A pending escrow whose undelivered shares were lost can only be re-sealed
        return (
            record.state == EscrowState.PENDING_DISTRIBUTION.value
            and record.escrow_id not in self._outbox
        )

    # =========================================================================
    # Distribution
    # =========================================================================

    async def distribute(self, escrow_id: str) -> EscrowStatus:
        """
        Send every undelivered share to its trustee.

        Unreachable trustees are recorded and left for `redistribute`.
        """
        async with self._locks.hold(escrow_id):
            pending = dict(self._outbox.get(escrow_id, {}))
            if pending:
                results = await asyncio.gather(
                    *(self._send(trustee_id, share) for trustee_id, share in pending.items())
                )
                await self._record_acks(escrow_id, list(zip(pending, results)))
                for trustee_id, error in zip(pending, results):
                    if error is None:
                        self._outbox[escrow_id].pop(trustee_id, None)
                if not self._outbox.get(escrow_id):
                    self._outbox.pop(escrow_id, None)

        return await self.status(escrow_id)

    async def redistribute(self, escrow_id: str) -> EscrowStatus:
        """
        Retry delivery to trustees that have not acknowledged.

        Raises:
            NotFound: Unknown escrow
            DistributionPending: Undelivered shares are no longer held and
                the escrow is below threshold; the identity must be re-sealed
        """
        current = await self.status(escrow_id)
        if escrow_id not in self._outbox:
            if current.state == EscrowState.PENDING_DISTRIBUTION:
                raise DistributionPending("Undelivered shares are gone; re-seal the identity")
            return current
        return await self.distribute(escrow_id)

    async def _send(self, trustee_id: str, share: KeyShare) -> str | None:
        try:
            async with asyncio.timeout(self.trustee_timeout):
                await self.channel.send(trustee_id, share)
        except (TrusteeUnavailable, TimeoutError) as e:
            logger.warning(
                "share_delivery_failed",
                escrow_id=share.escrow_id,
                trustee_id=trustee_id,
                error=type(e).__name__,
            )
            return type(e).__name__
        logger.info("share_delivered", escrow_id=share.escrow_id, trustee_id=trustee_id)
        return None

    async def _record_acks(self, escrow_id: str, results: list[tuple[str, str | None]]) -> None:
        async with db_session(self._session_factory) as session:
            record = await session.get(EscrowRecordModel, escrow_id)
            if record is None:
                raise NotFound(f"Escrow not found: {escrow_id}")

            acks = {
                ack.trustee_id: ack
                for ack in (
                    await session.execute(
                        select(TrusteeAckModel).where(TrusteeAckModel.escrow_id == escrow_id)
                    )
                ).scalars()
            }
            for trustee_id, error in results:
                ack = acks[trustee_id]
                ack.acknowledged = error is None
                ack.error = error

            acknowledged = sum(1 for ack in acks.values() if ack.acknowledged)
            if acknowledged >= record.threshold and record.state != EscrowState.DISTRIBUTED.value:
                record.state = EscrowState.DISTRIBUTED.value
                logger.info("escrow_distributed", escrow_id=escrow_id, acknowledged=acknowledged)

    # =========================================================================
    # Queries
    # =========================================================================

    async def status(self, escrow_id: str) -> EscrowStatus:
        """
        Share distribution report.

        Raises:
            NotFound: Unknown escrow
        """
        async with db_session(self._session_factory) as session:
            record = await session.get(EscrowRecordModel, escrow_id)
            if record is None:
                raise NotFound(f"Escrow not found: {escrow_id}")
            acks = (
                await session.execute(
                    select(TrusteeAckModel)
                    .where(TrusteeAckModel.escrow_id == escrow_id)
                    .order_by(TrusteeAckModel.share_index)
                )
            ).scalars().all()

        return EscrowStatus(
            escrow_id=record.escrow_id,
            identity_commitment=record.identity_commitment,
            locator=record.locator,
            state=EscrowState(record.state),
            threshold=record.threshold,
            total_shares=record.total_shares,
            acknowledged=sum(1 for a in acks if a.acknowledged),
            trustees=[
                TrusteeAckStatus(
                    trustee_id=a.trustee_id,
                    share_index=a.share_index,
                    acknowledged=a.acknowledged,
                    error=a.error,
                )
                for a in acks
            ],
            redistributable=escrow_id in self._outbox,
            created_at=record.created_at,
        )

    async def get_record_for_identity(self, identity_commitment: str) -> EscrowRecordModel | None:
        async with db_session(self._session_factory) as session:
            result = await session.execute(
                select(EscrowRecordModel).where(
                    EscrowRecordModel.identity_commitment == identity_commitment
                )
            )
            return result.scalar_one_or_none()

    # =========================================================================
    # Reopening
    # =========================================================================

    async def collect_shares(self, record: EscrowRecordModel) -> list[KeyShare]:
        """
        Request shares from acknowledged trustees until `threshold` arrive.

        Trustees that fail are skipped; the caller decides whether the
        result is enough.

        Raises:
            DistributionPending: If fewer than `threshold` trustees acknowledged
        """
        if record.state != EscrowState.DISTRIBUTED.value:
            raise DistributionPending("Escrow shares are not fully distributed")

        async with db_session(self._session_factory) as session:
            trustee_ids = list(
                (
                    await session.execute(
                        select(TrusteeAckModel.trustee_id)
                        .where(
                            TrusteeAckModel.escrow_id == record.escrow_id,
                            TrusteeAckModel.acknowledged.is_(True),
                        )
                        .order_by(TrusteeAckModel.share_index)
                    )
                ).scalars()
            )

        async def request(trustee_id: str) -> KeyShare | None:
            try:
                async with asyncio.timeout(self.trustee_timeout):
                    return await self.channel.receive(trustee_id, record.escrow_id)
            except (TrusteeUnavailable, TimeoutError) as e:
                logger.warning(
                    "share_request_failed",
                    escrow_id=record.escrow_id,
                    trustee_id=trustee_id,
                    error=type(e).__name__,
                )
                return None

        shares: list[KeyShare] = []
        for start in range(0, len(trustee_ids), record.threshold):
            batch = trustee_ids[start : start + record.threshold]
            shares.extend(s for s in await asyncio.gather(*(request(t) for t in batch)) if s)
            if len(shares) >= record.threshold:
                break

        logger.info(
            "shares_collected",
            escrow_id=record.escrow_id,
            shares_collected=len(shares),
            threshold=record.threshold,
        )
        return shares

    async def open_envelope(
        self,
        record: EscrowRecordModel,
        shares: list[KeyShare],
    ) -> IdentityEnvelope:
        """
        Reconstruct the escrow key, decrypt, and parse the envelope.

        The key is wiped as soon as decryption returns or fails.

        Raises:
            InsufficientShares, ShareIntegrityError, DecryptionFailed
        """
        try:
            async with asyncio.timeout(self.store_timeout):
                blob = await self.payload_store.get(record.locator)
        except TimeoutError as e:
            raise PayloadStoreError("Payload store timed out") from e

        encrypted = EncryptedIdentityPayload.from_bytes(blob)
        if encrypted.escrow_id != record.escrow_id:
            raise DecryptionFailed("Payload belongs to a different escrow")

        with reconstruct(
            shares,
            record.threshold,
            record.digests_by_index(),
            record.key_check,
            record.escrow_id,
        ) as key:
            plaintext = unseal(encrypted, key)

        try:
            envelope = IdentityEnvelope.model_validate_json(plaintext)
        except ValueError as e:
            raise DecryptionFailed("Identity envelope is malformed") from e
        if envelope.identity_commitment != record.identity_commitment:
            raise ShareIntegrityError("Envelope does not belong to this identity")
        return envelope

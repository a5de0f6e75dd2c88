"""
Borrower Binding Registry
=========================

Tracks which identity commitment belongs to which wallet (first use wins)
and which identity each registered activity commitment opens to.

The registry stores commitments and score-free openings. Tying an activity
commitment to an identity still requires the borrower secret, which is
sealed in escrow; see `CommitmentEngine.verify_binding`.

Version: 0.1.0
"""

from dataclasses import dataclass
from typing import Any

from sqlalchemy import func, select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from services.escrow.errors import BindingUnverifiable, IdentityAlreadySealed
from services.escrow.models import ActivityOpeningModel, BorrowerBindingModel
from shared.database import db_session
from shared.logging import get_logger, short_hex
from shared.zk import MAX_SCORE, BindingOpening, FieldCodec


logger = get_logger(__name__)


@dataclass(frozen=True)
class StoredOpening:
    """Everything persisted about an activity opening; the score is not."""

    identity_commitment: str
    wallet_binding: int
    nonce: int

    def with_score(self, score: int) -> BindingOpening:
        return BindingOpening(wallet_binding=self.wallet_binding, score=score, nonce=self.nonce)


class BindingRegistry:
    """Durable identity and activity binding registry."""

    def __init__(
        self,
        session_factory: async_sessionmaker[AsyncSession] | None = None,
        codec: FieldCodec | None = None,
    ) -> None:
        self._session_factory = session_factory
        self.codec = codec or FieldCodec.from_settings()

    # =========================================================================
    # Identity
    # =========================================================================

    async def register_identity(
        self,
        identity_commitment: str | int,
        wallet_address: str | int,
    ) -> BorrowerBindingModel:
        """
        Bind an identity commitment to a wallet.

        Re-registering the same pair is a no-op. A different identity for a
        known wallet, or a known identity for a different wallet, is
        rejected: rotating the secret means a new wallet and identity.

        Raises:
            IdentityAlreadySealed: On a conflicting registration
        """
        identity = self.codec.normalize(identity_commitment)
        wallet = self.codec.normalize(wallet_address)

        try:
            async with db_session(self._session_factory) as session:
                existing = await session.get(BorrowerBindingModel, identity)
                if existing is not None and existing.wallet_address == wallet:
                    return existing

                by_wallet = (
                    await session.execute(
                        select(BorrowerBindingModel).where(
                            BorrowerBindingModel.wallet_address == wallet
                        )
                    )
                ).scalar_one_or_none()

                if existing is not None or by_wallet is not None:
                    logger.warning(
                        "identity_registration_conflict",
                        identity_commitment=short_hex(identity),
                    )
                    raise IdentityAlreadySealed("Identity already registered for this borrower")

                binding = BorrowerBindingModel(identity_commitment=identity, wallet_address=wallet)
                session.add(binding)
        except IntegrityError as e:
            raise IdentityAlreadySealed("Concurrent identity registration") from e

        logger.info("identity_registered", identity_commitment=short_hex(identity))
        return binding

    async def get_identity(self, identity_commitment: str | int) -> BorrowerBindingModel | None:
        identity = self.codec.normalize(identity_commitment)
        async with db_session(self._session_factory) as session:
            return await session.get(BorrowerBindingModel, identity)

    async def identity_for_wallet(self, wallet_address: str | int) -> BorrowerBindingModel | None:
        wallet = self.codec.normalize(wallet_address)
        async with db_session(self._session_factory) as session:
            result = await session.execute(
                select(BorrowerBindingModel).where(BorrowerBindingModel.wallet_address == wallet)
            )
            return result.scalar_one_or_none()

    async def attach_escrow(self, identity_commitment: str, escrow_id: str) -> None:
        async with db_session(self._session_factory) as session:
            binding = await session.get(BorrowerBindingModel, identity_commitment)
            if binding is None:
                raise BindingUnverifiable("Identity is not registered")
            binding.escrow_id = escrow_id

    # =========================================================================
    # Activity
    # =========================================================================

    async def register_activity(
        self,
        activity_commitment: str | int,
        identity_commitment: str | int,
        score: int,
        nonce: str | int,
    ) -> ActivityOpeningModel:
        """
        Record the opening of an activity commitment.

        The score is range-checked but not stored; disclosure recovers it
        from the sealed secret. The first opening registered for a
        commitment is kept.

        Raises:
            BindingUnverifiable: If the identity commitment is unknown
            ValueError: If the score is outside `[0, MAX_SCORE]`
        """
        activity = self.codec.normalize(activity_commitment)
        identity = self.codec.normalize(identity_commitment)
        nonce_hex = self.codec.normalize(nonce)
        if not 0 <= score <= MAX_SCORE:
            raise ValueError(f"Activity score must be between 0 and {MAX_SCORE}")

        async with db_session(self._session_factory) as session:
            if await session.get(BorrowerBindingModel, identity) is None:
                raise BindingUnverifiable("Identity is not registered")

            existing = await session.get(ActivityOpeningModel, activity)
            if existing is not None:
                return existing

            opening = ActivityOpeningModel(
                activity_commitment=activity,
                identity_commitment=identity,
                nonce=nonce_hex,
            )
            session.add(opening)

        logger.info(
            "activity_opening_registered",
            activity_commitment=short_hex(activity),
            identity_commitment=short_hex(identity),
        )
        return opening

    async def get_opening(self, activity_commitment: str | int) -> StoredOpening | None:
        """
        Look up the claimed identity and stored opening for an activity commitment.

        The wallet binding comes from the identity's registered wallet.
        Returns None if either half is missing.
        """
        activity = self.codec.normalize(activity_commitment)
        async with db_session(self._session_factory) as session:
            opening = await session.get(ActivityOpeningModel, activity)
            if opening is None:
                return None
            binding = await session.get(BorrowerBindingModel, opening.identity_commitment)
            if binding is None:
                return None
            return StoredOpening(
                identity_commitment=opening.identity_commitment,
                wallet_binding=int(binding.wallet_address, 16),
                nonce=int(opening.nonce, 16),
            )

    async def activities_for_identity(self, identity_commitment: str | int) -> list[str]:
        identity = self.codec.normalize(identity_commitment)
        async with db_session(self._session_factory) as session:
            result = await session.execute(
                select(ActivityOpeningModel.activity_commitment)
                .where(ActivityOpeningModel.identity_commitment == identity)
                .order_by(ActivityOpeningModel.created_at.desc())
            )
            return list(result.scalars().all())

    async def stats(self) -> dict[str, Any]:
        """Wallets with an identity, registered openings, and identities with both."""
        async with db_session(self._session_factory) as session:
            identities = await session.scalar(select(func.count()).select_from(BorrowerBindingModel))
            openings = await session.scalar(select(func.count()).select_from(ActivityOpeningModel))
            with_activity = await session.scalar(
                select(func.count(func.distinct(ActivityOpeningModel.identity_commitment)))
            )
            escrowed = await session.scalar(
                select(func.count())
                .select_from(BorrowerBindingModel)
                .where(BorrowerBindingModel.escrow_id.is_not(None))
            )
        return {
            "identities": identities or 0,
            "activity_openings": openings or 0,
            "identities_with_activity": with_activity or 0,
            "identities_escrowed": escrowed or 0,
        }

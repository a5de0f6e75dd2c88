"""
Commitment Engine
=================

Derives the two commitment types from a borrower secret.

- IdentityCommitment = H(secret, wallet_binding): permanent per borrower.
- ActivityCommitment = H(secret, score, nonce): regenerated on every proof
  refresh. A fresh nonce per derivation keeps equal scores from producing
  equal commitments.

The two live in separate hash domains and cannot be correlated without the
secret. `verify_binding` is the single place where they are tied together.

Version: 0.1.0
"""

import hmac
import secrets
from dataclasses import dataclass

from shared.zk.field import FieldCodec, FieldOverflow


IDENTITY_DOMAIN = b"veilcredit/identity-commitment/v1"
ACTIVITY_DOMAIN = b"veilcredit/activity-commitment/v1"

# Nonces stay below 2^248 so they are field elements for any >=249-bit field
NONCE_BITS = 248

# Activity scores are bounded; the prover rejects anything above this
MAX_SCORE = 1000


@dataclass(frozen=True)
class IdentityCommitment:
    """Permanent identity binding of a borrower."""

    value: int

    @property
    def hex(self) -> str:
        return FieldCodec.to_hex(self.value)


@dataclass(frozen=True)
class ActivityCommitment:
    """Per-proof binding of a borrower's activity score."""

    value: int

    @property
    def hex(self) -> str:
        return FieldCodec.to_hex(self.value)


@dataclass(frozen=True)
class BindingOpening:
    """Values that open both commitments for a given secret."""

    wallet_binding: int
    score: int
    nonce: int


def wallet_to_field(wallet: str | int, codec: FieldCodec) -> int:
    """Encode a wallet address (hex or int) as a field element."""
    return codec.parse(wallet)


class CommitmentEngine:
    """
    Pure commitment derivation over a fixed field.

    Usage:
        engine = CommitmentEngine()
        secret = engine.generate_secret()
        identity = engine.derive_identity_commitment(secret, wallet)
        activity = engine.derive_activity_commitment(secret, 720, engine.generate_nonce())
    """

    def __init__(self, codec: FieldCodec | None = None) -> None:
        self.codec = codec or FieldCodec.from_settings()

    def generate_secret(self) -> int:
        """Generate a BorrowerSecret (client side, once per identity)."""
        return 1 + secrets.randbelow(self.codec.modulus - 1)

    def generate_nonce(self) -> int:
        """Generate a fresh activity nonce."""
        return secrets.randbits(NONCE_BITS)

    def _check_secret(self, secret: int) -> None:
        if secret <= 0 or secret >= self.codec.modulus:
            raise FieldOverflow("Borrower secret must be a non-zero field element")

    def derive_identity_commitment(
        self,
        secret: int,
        wallet_binding: str | int,
    ) -> IdentityCommitment:
        """
        Derive the permanent identity commitment.

        Idempotent; enforcing "first use wins" is the caller's job.
        """
        self._check_secret(secret)
        wallet = wallet_to_field(wallet_binding, self.codec)
        return IdentityCommitment(self.codec.hash_to_field(IDENTITY_DOMAIN, secret, wallet))

    def derive_activity_commitment(
        self,
        secret: int,
        score: int,
        nonce: int,
    ) -> ActivityCommitment:
        """Derive a per-proof activity commitment."""
        self._check_secret(secret)
        if score < 0:
            raise ValueError("Activity score must be non-negative")
        if nonce < 0 or nonce >= self.codec.modulus:
            raise FieldOverflow("Nonce must be a field element")
        return ActivityCommitment(self.codec.hash_to_field(ACTIVITY_DOMAIN, secret, score, nonce))

    def recover_score(
        self,
        secret: int,
        activity_commitment: ActivityCommitment | int,
        nonce: int,
    ) -> int | None:
        """
        Find the score an activity commitment was derived with.

        Only the holder of `secret` can do this. Returns None if no score in
        `[0, MAX_SCORE]` matches.
        """
        target = int(getattr(activity_commitment, "value", activity_commitment))
        try:
            for score in range(MAX_SCORE + 1):
                if self.derive_activity_commitment(secret, score, nonce).value == target:
                    return score
        except ValueError:
            return None
        return None

    def verify_binding(
        self,
        secret: int,
        identity_commitment: IdentityCommitment | int,
        activity_commitment: ActivityCommitment | int,
        opening: BindingOpening,
    ) -> bool:
        """
        Check that both commitments were derived from `secret`.

        Returns False (never raises) for malformed inputs so that callers
        can treat every failure as "not bound".
        """
        identity_value = getattr(identity_commitment, "value", identity_commitment)
        activity_value = getattr(activity_commitment, "value", activity_commitment)

        for value in (identity_value, activity_value):
            if not 0 <= int(value) < self.codec.modulus:
                return False

        try:
            expected_identity = self.derive_identity_commitment(secret, opening.wallet_binding)
            expected_activity = self.derive_activity_commitment(
                secret,
                opening.score,
                opening.nonce,
            )
        except ValueError:
            return False

        identity_ok = hmac.compare_digest(
            expected_identity.value.to_bytes(32, "big"),
            int(identity_value).to_bytes(32, "big"),
        )
        activity_ok = hmac.compare_digest(
            expected_activity.value.to_bytes(32, "big"),
            int(activity_value).to_bytes(32, "big"),
        )
        return identity_ok and activity_ok

"""
Identity Sealing
================

Pure cryptographic half of the Secret-Sharing Escrow: no I/O, no storage.

- `seal` draws a fresh 256-bit EscrowKey, encrypts the identity payload with
  AES-256-GCM and splits the key into per-trustee Shamir shares.
- `reconstruct` authenticates every share against the digests recorded at
  seal time, interpolates, and checks the result against a key-confirmation
  tag before handing the key out.
- `unseal` is authenticated decryption; it either returns the full
  plaintext or raises.

Version: 0.1.0
"""

import base64
import hashlib
import hmac
import json
import secrets
import uuid
from collections.abc import Iterable
from dataclasses import dataclass, field
from typing import Any

from cryptography.exceptions import InvalidTag
from cryptography.hazmat.primitives.ciphers.aead import AESGCM

from services.escrow.core.shamir import PRIME, combine_shares, split_secret
from services.escrow.errors import (
    DecryptionFailed,
    InsufficientShares,
    InsufficientTrustees,
    ShareIntegrityError,
)


KEY_BYTES = 32
NONCE_BYTES = 12
ENVELOPE_VERSION = 1

_KEY_CHECK_DOMAIN = b"veilcredit/escrow-key-check/v1"
_SHARE_DIGEST_DOMAIN = b"veilcredit/escrow-share/v1"


class EscrowKey:
    """
    Single-use symmetric key held in a mutable buffer.

    Use as a context manager so the buffer is overwritten with zeros as
    soon as the caller is done with it, on success or failure.
    """

    __slots__ = ("_buffer",)

    def __init__(self, material: bytes | bytearray) -> None:
        if len(material) != KEY_BYTES:
            raise ValueError(f"Escrow key must be {KEY_BYTES} bytes")
        self._buffer = bytearray(material)

    @classmethod
    def generate(cls) -> "EscrowKey":
        return cls(secrets.token_bytes(KEY_BYTES))

    @property
    def material(self) -> bytearray:
        if not any(self._buffer):
            raise ValueError("Escrow key has been wiped")
        return self._buffer

    def to_int(self) -> int:
        return int.from_bytes(self.material, "big")

    def wipe(self) -> None:
        for i in range(len(self._buffer)):
            self._buffer[i] = 0

    @property
    def wiped(self) -> bool:
        return not any(self._buffer)

    def __enter__(self) -> "EscrowKey":
        return self

    def __exit__(self, *exc: object) -> None:
        self.wipe()

    def __repr__(self) -> str:
        return "EscrowKey(***)"


@dataclass(frozen=True)
class KeyShare:
    """One trustee's share of an EscrowKey."""

    escrow_id: str
    trustee_id: str
    index: int
    value: int

    def encode(self) -> str:
        """Wire form sent over a trustee channel."""
        return f"{self.index}:{self.value:x}"

    @classmethod
    def decode(cls, escrow_id: str, trustee_id: str, encoded: str) -> "KeyShare":
        try:
            index_text, value_text = encoded.split(":", 1)
            return cls(
                escrow_id=escrow_id,
                trustee_id=trustee_id,
                index=int(index_text),
                value=int(value_text, 16),
            )
        except ValueError as e:
            raise ShareIntegrityError("Malformed share") from e

    def __repr__(self) -> str:
        return f"KeyShare(escrow_id={self.escrow_id!r}, trustee_id={self.trustee_id!r}, index={self.index})"


@dataclass(frozen=True)
class EncryptedIdentityPayload:
    """Ciphertext envelope plus the public material needed to release it."""

    escrow_id: str
    nonce: bytes
    ciphertext: bytes
    associated_data: bytes
    key_check: str
    share_digests: dict[int, str] = field(default_factory=dict)

    def to_bytes(self) -> bytes:
        """Serialize the envelope for the payload store."""
        document = {
            "v": ENVELOPE_VERSION,
            "escrow_id": self.escrow_id,
            "nonce": base64.b64encode(self.nonce).decode(),
            "ciphertext": base64.b64encode(self.ciphertext).decode(),
            "aad": base64.b64encode(self.associated_data).decode(),
            "key_check": self.key_check,
            "share_digests": {str(k): v for k, v in self.share_digests.items()},
        }
        return json.dumps(document, sort_keys=True, separators=(",", ":")).encode()

    @classmethod
    def from_bytes(cls, data: bytes) -> "EncryptedIdentityPayload":
        try:
            document: dict[str, Any] = json.loads(data)
            if document.get("v") != ENVELOPE_VERSION:
                raise ValueError(f"Unsupported envelope version {document.get('v')}")
            return cls(
                escrow_id=document["escrow_id"],
                nonce=base64.b64decode(document["nonce"]),
                ciphertext=base64.b64decode(document["ciphertext"]),
                associated_data=base64.b64decode(document["aad"]),
                key_check=document["key_check"],
                share_digests={int(k): v for k, v in document["share_digests"].items()},
            )
        except (KeyError, TypeError, ValueError) as e:
            raise DecryptionFailed("Malformed identity envelope") from e


def key_check_tag(key: EscrowKey, escrow_id: str) -> str:
    """Key-confirmation tag: HMAC-SHA256(key, domain || escrow_id)."""
    return hmac.new(
        bytes(key.material),
        _KEY_CHECK_DOMAIN + escrow_id.encode(),
        hashlib.sha256,
    ).hexdigest()


def share_digest(escrow_id: str, index: int, value: int) -> str:
    """Digest binding a share value to its escrow and index."""
    hasher = hashlib.sha256(_SHARE_DIGEST_DOMAIN)
    hasher.update(escrow_id.encode())
    hasher.update(index.to_bytes(4, "big"))
    hasher.update(value.to_bytes(66, "big"))
    return hasher.hexdigest()


def seal(
    payload: bytes,
    trustees: list[str],
    threshold: int,
    associated_data: bytes = b"",
    escrow_id: str | None = None,
) -> tuple[EncryptedIdentityPayload, list[KeyShare]]:
    """
    Encrypt a payload and split its key among trustees.

    Args:
        payload: Plaintext identity document
        trustees: Trustee ids; one share each, in order
        threshold: Shares needed to reconstruct
        associated_data: Authenticated but unencrypted context
        escrow_id: Identifier for the escrow (generated if omitted)

    Returns:
        Tuple of (encrypted payload, per-trustee shares)

    Raises:
        InsufficientTrustees: If threshold < 2 or len(trustees) < threshold
    """
    if threshold < 2:
        raise InsufficientTrustees("Threshold must be at least 2")
    if len(trustees) < threshold:
        raise InsufficientTrustees(
            f"{len(trustees)} trustees cannot satisfy threshold {threshold}"
        )
    if len(set(trustees)) != len(trustees):
        raise InsufficientTrustees("Trustee ids must be distinct")

    escrow_id = escrow_id or f"escrow:{uuid.uuid4().hex}"
    nonce = secrets.token_bytes(NONCE_BYTES)

    with EscrowKey.generate() as key:
        ciphertext = AESGCM(bytes(key.material)).encrypt(nonce, payload, associated_data)
        points = split_secret(key.to_int(), len(trustees), threshold)
        tag = key_check_tag(key, escrow_id)

    shares = [
        KeyShare(escrow_id=escrow_id, trustee_id=trustee_id, index=x, value=y)
        for trustee_id, (x, y) in zip(trustees, points)
    ]

    encrypted = EncryptedIdentityPayload(
        escrow_id=escrow_id,
        nonce=nonce,
        ciphertext=ciphertext,
        associated_data=associated_data,
        key_check=tag,
        share_digests={s.index: share_digest(escrow_id, s.index, s.value) for s in shares},
    )
    return encrypted, shares


def reconstruct(
    shares: Iterable[KeyShare],
    threshold: int,
    share_digests: dict[int, str],
    key_check: str,
    escrow_id: str,
) -> EscrowKey:
    """
    Rebuild the EscrowKey from authenticated shares.

    Raises:
        InsufficientShares: Fewer than `threshold` distinct shares
        ShareIntegrityError: A share fails its digest, two shares disagree,
            or the combined key fails the confirmation tag
    """
    distinct: dict[int, KeyShare] = {}
    for share in shares:
        if share.escrow_id != escrow_id:
            raise ShareIntegrityError("Share belongs to a different escrow")
        existing = distinct.get(share.index)
        if existing is not None and existing.value != share.value:
            raise ShareIntegrityError("Conflicting shares for the same index")
        distinct[share.index] = share

    if len(distinct) < threshold:
        raise InsufficientShares(f"Need {threshold} shares, got {len(distinct)}")

    for index, share in distinct.items():
        expected = share_digests.get(index)
        actual = share_digest(escrow_id, index, share.value)
        if expected is None or not hmac.compare_digest(expected, actual):
            raise ShareIntegrityError(f"Share {index} failed authentication")

    selected = sorted(distinct.values(), key=lambda s: s.index)[:threshold]
    secret = combine_shares([(s.index, s.value) for s in selected])
    if secret >= 1 << (KEY_BYTES * 8) or secret >= PRIME:
        raise ShareIntegrityError("Combined value is not a valid key")

    key = EscrowKey(secret.to_bytes(KEY_BYTES, "big"))
    if not hmac.compare_digest(key_check_tag(key, escrow_id), key_check):
        key.wipe()
        raise ShareIntegrityError("Reconstructed key failed confirmation")
    return key


def unseal(encrypted: EncryptedIdentityPayload, key: EscrowKey) -> bytes:
    """
    Authenticated decryption.

    Raises:
        DecryptionFailed: On tag mismatch (wrong key or tampering)
    """
    try:
        return AESGCM(bytes(key.material)).decrypt(
            encrypted.nonce,
            encrypted.ciphertext,
            encrypted.associated_data,
        )
    except (InvalidTag, ValueError) as e:
        raise DecryptionFailed("Identity payload failed authentication") from e

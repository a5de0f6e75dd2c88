"""
Field Codec
===========

Canonical reduction of hash outputs into the ledger's scalar field.

Every caller (prover side and ledger-consuming side) must reduce through
this codec so that one logical commitment always maps to one scalar.
Reduction never wraps modulo the prime:

1. keep the most significant `bit_length(modulus)` bits of the digest;
2. if that value is still >= modulus, clear its top bit.

Step 2 can only fire for the handful of values between the modulus and the
next power of two, and it always lands strictly below the modulus because
every prime satisfies `2^(bits-1) <= p`.

Version: 0.1.0
"""

import hashlib
from dataclasses import dataclass

from shared.config import settings


class FieldOverflow(ValueError):
    """Raised when a value cannot be placed in the field safely."""


@dataclass(frozen=True)
class FieldCodec:
    """
    Deterministic hash-to-field reduction.

    Attributes:
        modulus: Prime modulus of the scalar field
        min_entropy_bits: Minimum bits a reduced value must retain
    """

    modulus: int
    min_entropy_bits: int = 128

    def __post_init__(self) -> None:
        if self.modulus < 3:
            raise ValueError("Field modulus must be an odd prime")
        if self.min_entropy_bits > self.safe_bits:
            raise ValueError(
                f"min_entropy_bits {self.min_entropy_bits} exceeds field capacity {self.safe_bits}"
            )

    @classmethod
    def from_settings(cls) -> "FieldCodec":
        """Build the codec configured for this deployment."""
        return cls(
            modulus=settings.field.modulus,
            min_entropy_bits=settings.field.min_entropy_bits,
        )

    @property
    def bit_width(self) -> int:
        """Number of bits needed to represent the modulus."""
        return self.modulus.bit_length()

    @property
    def safe_bits(self) -> int:
        """Bits guaranteed to survive reduction of any digest."""
        return self.bit_width - 1

    def reduce(self, raw_hash: bytes) -> int:
        """
        Reduce a raw digest into the field.

        Args:
            raw_hash: Hash output, big-endian

        Returns:
            Scalar strictly less than the modulus

        Raises:
            FieldOverflow: If the digest is too short to retain
                `min_entropy_bits` after reduction
        """
        raw_bits = len(raw_hash) * 8
        retained = min(raw_bits, self.safe_bits)
        if retained < self.min_entropy_bits:
            raise FieldOverflow(
                f"Digest of {raw_bits} bits keeps {retained} bits after reduction; "
                f"{self.min_entropy_bits} required"
            )

        value = int.from_bytes(raw_hash, "big")
        if raw_bits > self.bit_width:
            value >>= raw_bits - self.bit_width

        if value >= self.modulus:
            value &= (1 << self.safe_bits) - 1

        return value

    def hash_to_field(self, domain: bytes, *elements: int) -> int:
        """
        SHA-256 over a domain tag and fixed-width elements, reduced.

        Elements are encoded as 32-byte big-endian words so that no two
        distinct input tuples share an encoding.
        """
        hasher = hashlib.sha256()
        hasher.update(len(domain).to_bytes(2, "big"))
        hasher.update(domain)
        for element in elements:
            if element < 0 or element >= 1 << 256:
                raise FieldOverflow(f"Element out of encodable range: {element}")
            hasher.update(element.to_bytes(32, "big"))
        return self.reduce(hasher.digest())

    def parse(self, value: str | int) -> int:
        """
        Parse a felt (hex string or int) and check it is a field element.

        Raises:
            FieldOverflow: If the value is negative or not below the modulus
        """
        scalar = int(value, 16) if isinstance(value, str) else int(value)
        if scalar < 0 or scalar >= self.modulus:
            raise FieldOverflow("Value is not a field element")
        return scalar

    @staticmethod
    def to_hex(scalar: int) -> str:
        """Canonical felt hex representation (lowercase, no padding)."""
        return hex(scalar)

    def normalize(self, value: str | int) -> str:
        """Parse then re-encode a felt in canonical hex form."""
        return self.to_hex(self.parse(value))

"""
ZK-SNARK Data Models
====================

Pydantic models for activity-threshold proof data.

The escrow core treats proofs as opaque; only the activity commitment
carried in the public signals is consumed.

Version: 0.1.0
"""

from datetime import UTC, datetime
from enum import Enum

from pydantic import BaseModel, Field, field_validator


class ProofBackend(str, Enum):
    """Proof generation backends."""

    SNARKJS = "snarkjs"
    MOCK = "mock"


class ZKProof(BaseModel):
    """
    A zero-knowledge proof.

    Compatible with snarkjs Groth16 proof format.
    """

    # Proof points (G1 and G2 elements)
    pi_a: list[str] = Field(..., description="Proof point A (G1)")
    pi_b: list[list[str]] = Field(..., description="Proof point B (G2)")
    pi_c: list[str] = Field(..., description="Proof point C (G1)")

    # Protocol info
    protocol: str = Field(default="groth16")
    curve: str = Field(default="bn128")

    def to_calldata(self) -> list[int]:
        """Flatten into the 8 integers a verifier contract expects."""
        return [
            int(self.pi_a[0]),
            int(self.pi_a[1]),
            int(self.pi_b[0][0]),
            int(self.pi_b[0][1]),
            int(self.pi_b[1][0]),
            int(self.pi_b[1][1]),
            int(self.pi_c[0]),
            int(self.pi_c[1]),
        ]


class PublicSignals(BaseModel):
    """Public inputs and outputs from a proof: `[threshold, activity_commitment]`."""

    signals: list[str] = Field(..., description="Public signals as decimal strings")

    @property
    def commitment(self) -> str:
        """Get the activity commitment (last signal) as felt hex."""
        return hex(int(self.signals[-1])) if self.signals else ""

    def to_int_list(self) -> list[int]:
        """Convert to list of integers."""
        return [int(s) for s in self.signals]


class ProofMetadata(BaseModel):
    """Metadata about a generated proof."""

    backend: ProofBackend
    circuit_name: str
    generated_at: datetime = Field(default_factory=lambda: datetime.now(UTC))
    proving_time_ms: int = Field(..., ge=0)
    threshold: int


class ActivityProof(BaseModel):
    """Proof that an activity score meets a lender's threshold."""

    proof: ZKProof
    public_signals: PublicSignals
    activity_commitment: str = Field(..., description="Activity commitment (felt hex)")
    metadata: ProofMetadata


class ActivityProofRequest(BaseModel):
    """Request to generate an activity threshold proof."""

    threshold: int = Field(..., ge=0, le=1000, description="Lender's minimum score")
    score: int = Field(..., ge=0, le=1000, description="Wallet activity score (0-1000)")

    @field_validator("score")
    @classmethod
    def score_must_meet_threshold(cls, v: int, info) -> int:
        threshold = info.data.get("threshold", 0)
        if v < threshold:
            raise ValueError(f"Score {v} does not meet threshold {threshold}")
        return v

"""
ZK Module
=========

Field codec, commitment engine and the activity-threshold prover adapter.

Usage:
    from shared.zk import ActivityProver, CommitmentEngine, ProofBackend

    engine = CommitmentEngine()
    secret = engine.generate_secret()
    identity = engine.derive_identity_commitment(secret, wallet_address)

    prover = ActivityProver(backend=ProofBackend.MOCK, engine=engine)
    proof = await prover.generate_proof(score=720, threshold=600, secret=secret)

Version: 1.0.0
"""

from shared.zk.commitments import (
    MAX_SCORE,
    ActivityCommitment,
    BindingOpening,
    CommitmentEngine,
    IdentityCommitment,
)
from shared.zk.field import FieldCodec, FieldOverflow
from shared.zk.models import (
    ActivityProof,
    ActivityProofRequest,
    ProofBackend,
    ProofMetadata,
    PublicSignals,
    ZKProof,
)
from shared.zk.prover import ActivityProver


__all__ = [
    # Field
    "FieldCodec",
    "FieldOverflow",
    # Commitments
    "CommitmentEngine",
    "IdentityCommitment",
    "ActivityCommitment",
    "BindingOpening",
    "MAX_SCORE",
    # Prover
    "ActivityProver",
    # Models
    "ActivityProof",
    "ActivityProofRequest",
    "ProofBackend",
    "ProofMetadata",
    "PublicSignals",
    "ZKProof",
]

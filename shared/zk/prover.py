"""
ZK-SNARK Proof Generation
=========================

Python wrapper around the activity-threshold circuit.

Uses snarkjs via subprocess for proof generation, or a mock backend for
development and tests. In both cases the activity commitment is derived
through `CommitmentEngine`, so the prover and the ledger-consuming side
apply the same field reduction.

Version: 0.1.0
"""

import asyncio
import hashlib
import json
import subprocess
import time
from pathlib import Path
from typing import Any

from shared.logging import get_logger, short_hex
from shared.zk.commitments import MAX_SCORE, CommitmentEngine
from shared.zk.models import (
    ActivityProof,
    ProofBackend,
    ProofMetadata,
    PublicSignals,
    ZKProof,
)


logger = get_logger(__name__)

# Default circuit build directory
DEFAULT_BUILD_DIR = Path(__file__).parent.parent.parent / "circuits" / "build"

CIRCUIT_NAME = "activity_threshold"


class ActivityProver:
    """
    Proof generator for "activity score >= threshold".

    Usage:
        prover = ActivityProver(backend=ProofBackend.MOCK)

        result = await prover.generate_proof(score=720, threshold=600, secret=secret)
        result.activity_commitment  # the only value the escrow core consumes
    """

    def __init__(
        self,
        backend: ProofBackend = ProofBackend.SNARKJS,
        build_dir: str | Path | None = None,
        engine: CommitmentEngine | None = None,
    ):
        """
        Initialize the prover.

        Args:
            backend: snarkjs (real circuit) or mock
            build_dir: Path to circuit build directory.
                      Defaults to circuits/build/
            engine: Commitment engine (defaults to the configured field)
        """
        self.backend = backend
        self.build_dir = Path(build_dir) if build_dir else DEFAULT_BUILD_DIR
        self.engine = engine or CommitmentEngine()
        self._validate_setup()

    def _validate_setup(self) -> None:
        """Validate that required circuit files exist."""
        if self.backend == ProofBackend.SNARKJS and not self.build_dir.exists():
            logger.warning(
                "zk_circuit_build_dir_not_found",
                path=str(self.build_dir),
            )

    async def _run_snarkjs(
        self,
        input_data: dict[str, Any],
    ) -> tuple[dict, list[str], int]:
        """
        Run snarkjs to generate a proof.

        Returns:
            Tuple of (proof_json, public_signals, proving_time_ms)
        """
        circuit_dir = self.build_dir / CIRCUIT_NAME
        wasm_path = circuit_dir / f"{CIRCUIT_NAME}_js" / f"{CIRCUIT_NAME}.wasm"
        zkey_path = circuit_dir / "proving_key.zkey"

        if not wasm_path.exists():
            raise FileNotFoundError(f"Circuit WASM not found: {wasm_path}")
        if not zkey_path.exists():
            raise FileNotFoundError(f"Proving key not found: {zkey_path}")

        # Write input to temp file
        input_file = circuit_dir / "input_temp.json"
        with open(input_file, "w") as f:
            json.dump(input_data, f)

        try:
            start_time = time.time()

            result = await asyncio.to_thread(
                subprocess.run,
                [
                    "npx",
                    "snarkjs",
                    "groth16",
                    "fullprove",
                    str(input_file),
                    str(wasm_path),
                    str(zkey_path),
                    str(circuit_dir / "proof_temp.json"),
                    str(circuit_dir / "public_temp.json"),
                ],
                capture_output=True,
                text=True,
                cwd=self.build_dir.parent,
            )

            proving_time_ms = int((time.time() - start_time) * 1000)

            if result.returncode != 0:
                logger.error(
                    "snarkjs_proof_generation_failed",
                    stderr=result.stderr,
                    circuit=CIRCUIT_NAME,
                )
                raise RuntimeError(f"Proof generation failed: {result.stderr}")

            with open(circuit_dir / "proof_temp.json") as f:
                proof_json = json.load(f)
            with open(circuit_dir / "public_temp.json") as f:
                public_signals = json.load(f)

            return proof_json, public_signals, proving_time_ms

        finally:
            # Witness inputs contain the borrower secret
            for temp_file in ["input_temp.json", "proof_temp.json", "public_temp.json"]:
                temp_path = circuit_dir / temp_file
                if temp_path.exists():
                    temp_path.unlink()

    def _mock_proof(self, input_data: dict[str, Any]) -> dict[str, Any]:
        """Deterministic placeholder proof points for the mock backend."""
        seed = hashlib.sha256(json.dumps(input_data, sort_keys=True).encode()).digest()
        points = [str(int.from_bytes(seed[i : i + 4], "big")) for i in range(0, 32, 4)]
        return {
            "pi_a": [points[0], points[1], "1"],
            "pi_b": [[points[2], points[3]], [points[4], points[5]], ["1", "0"]],
            "pi_c": [points[6], points[7], "1"],
            "protocol": "groth16",
            "curve": "bn128",
        }

    async def generate_proof(
        self,
        score: int,
        threshold: int,
        secret: int,
        nonce: int | None = None,
    ) -> ActivityProof:
        """
        Generate a proof that score >= threshold.

        Args:
            score: Wallet activity score (0-1000)
            threshold: Lender's minimum score
            secret: BorrowerSecret (stays on this side of the call)
            nonce: Optional nonce (fresh one generated if not provided)

        Returns:
            ActivityProof with proof, public signals and activity commitment

        Raises:
            ValueError: If score < threshold or values out of range
        """
        if score < threshold:
            raise ValueError(f"Score {score} does not meet threshold {threshold}")
        if score > MAX_SCORE or threshold > MAX_SCORE:
            raise ValueError(f"Score and threshold must be <= {MAX_SCORE}")

        nonce = self.engine.generate_nonce() if nonce is None else nonce
        commitment = self.engine.derive_activity_commitment(secret, score, nonce)

        input_data = {
            "threshold": str(threshold),
            "score": str(score),
            "secret": str(secret),
            "nonce": str(nonce),
        }

        if self.backend == ProofBackend.MOCK:
            start = time.perf_counter()
            proof_json = self._mock_proof(input_data)
            public_signals = [str(threshold), str(commitment.value)]
            proving_time_ms = int((time.perf_counter() - start) * 1000)
        else:
            proof_json, public_signals, proving_time_ms = await self._run_snarkjs(input_data)
            if int(public_signals[-1]) != commitment.value:
                # Circuit and backend disagree on the reduction
                raise RuntimeError("Circuit commitment does not match canonical reduction")

        logger.info(
            "activity_proof_generated",
            backend=self.backend.value,
            threshold=threshold,
            commitment=short_hex(commitment.hex),
            proving_time_ms=proving_time_ms,
        )

        return ActivityProof(
            proof=ZKProof(**proof_json),
            public_signals=PublicSignals(signals=public_signals),
            activity_commitment=commitment.hex,
            metadata=ProofMetadata(
                backend=self.backend,
                circuit_name=CIRCUIT_NAME,
                proving_time_ms=proving_time_ms,
                threshold=threshold,
            ),
        )

"""Proof pipeline — turns one feedback disclosure into a proof hash.

Steps for every disclosure:
1. Build the circuit input record binding (secret, commitment, guess,
   feedback), laid out exactly as the circuit manifest declares.
2. Pre-flight: the commitment must open to the secret and the feedback
   must be what the FeedbackEngine computes. A dishonest tuple cannot
   satisfy the circuit, so there is no point paying for a proof.
3. Witness generation, then proof generation. Both are expensive and
   are not retried: a failure is terminal for this attempt and surfaces
   as ProofGenerationFailed.
4. Local verification, best effort. A failed or crashing verifier is
   logged and reported in the result but never blocks submission; the
   opponent's verification is the source of truth.
5. proof_hash = sha256(proof bytes), tagged as a real proof.

The proving backend is heavy (circuit load, key setup). The pipeline
owns exactly one instance, acquired lazily on first use and released by
close(). There is no module-level cache.

The degraded path is explicit: ``fallback_proof_hash`` digests only the
disclosed values and is tagged FALLBACK_DIGEST, so it can never pass for
a proof hash in stored data.
"""

from __future__ import annotations

import hashlib
import logging
from dataclasses import dataclass, field
from typing import Any, Callable, Optional, Protocol, runtime_checkable

from zkmind.crypto.commitment import CircuitManifest, CommitmentScheme
from zkmind.engine.feedback import FeedbackEngine
from zkmind.errors import CommitmentSchemeMismatch, ProofGenerationFailed, ZKMindError
from zkmind.models.game import (
    Code,
    Feedback,
    GuessRecord,
    ProofHash,
    ProofHashKind,
    Secret,
)

logger = logging.getLogger(__name__)


# Field order the pipeline produces. Must equal the manifest's inputs.
CIRCUIT_INPUT_SCHEMA = (
    "secret_code",
    "commitment",
    "guess",
    "correct_position",
    "correct_color",
)

DEFAULT_MODE = "keccak"
FALLBACK_DOMAIN = b"zkmind.fallback-digest.v1"


@runtime_checkable
class ProvingBackend(Protocol):
    """The external prover. Treated as a versioned dependency."""

    @property
    def manifest(self) -> CircuitManifest:
        """The circuit interface this backend was built for."""
        ...

    def execute(self, inputs: dict[str, Any]) -> bytes:
        """Solve the circuit for the given inputs and return the witness."""
        ...

    def prove(self, witness: bytes, mode: str) -> bytes:
        """Generate proof bytes from a witness."""
        ...

    def verify(self, proof: bytes, mode: str) -> bool:
        """Check proof bytes."""
        ...

    def close(self) -> None:
        """Release backend resources."""
        ...


BackendFactory = Callable[[], ProvingBackend]


def unavailable_backend(reason: str) -> BackendFactory:
    """A factory for deployments with no prover installed."""

    def _factory() -> ProvingBackend:
        raise ProofGenerationFailed(f"prover unavailable: {reason}")

    return _factory


@dataclass(frozen=True)
class ProofResult:
    """Outcome of one proving run.

    locally_verified is None when local verification was skipped or
    the verifier itself crashed.
    """
    proof: bytes
    proof_hash: ProofHash
    public_inputs: dict[str, Any] = field(default_factory=dict)
    locally_verified: Optional[bool] = None


class ProofPipeline:
    """Orchestrates witness/proof/verify/hash around an external prover.

    Usage:
        with ProofPipeline(lambda: NargoBarretenbergBackend(circuit_dir)) as pipeline:
            result = pipeline.prepare_and_prove(secret, commitment, guess, feedback)
            submit(result.proof_hash)
    """

    def __init__(
        self,
        backend_factory: BackendFactory,
        mode: str = DEFAULT_MODE,
        verify_locally: bool = True,
    ) -> None:
        self._backend_factory = backend_factory
        self._backend: Optional[ProvingBackend] = None
        self._mode = mode
        self._verify_locally = verify_locally
        self._closed = False

    # ------------------------------------------------------------------
    # Backend lifecycle
    # ------------------------------------------------------------------

    def _acquire(self) -> ProvingBackend:
        if self._closed:
            raise ProofGenerationFailed("proof pipeline is closed")
        if self._backend is not None:
            return self._backend

        try:
            backend = self._backend_factory()
        except ZKMindError:
            raise
        except Exception as e:
            raise ProofGenerationFailed(f"prover unavailable: {e}") from e

        manifest = backend.manifest
        # Commitment drift is a configuration error, never degraded.
        try:
            CommitmentScheme.require_manifest(manifest)
        except CommitmentSchemeMismatch:
            backend.close()
            raise
        if manifest.input_names != CIRCUIT_INPUT_SCHEMA:
            backend.close()
            raise ProofGenerationFailed(
                f"circuit input schema mismatch: circuit declares "
                f"{list(manifest.input_names)}, pipeline builds {list(CIRCUIT_INPUT_SCHEMA)}"
            )
        self._backend = backend
        return backend

    @property
    def is_acquired(self) -> bool:
        return self._backend is not None

    def close(self) -> None:
        """Release the backend. Safe to call more than once."""
        backend, self._backend = self._backend, None
        self._closed = True
        if backend is not None:
            backend.close()

    def __enter__(self) -> ProofPipeline:
        return self

    def __exit__(self, *exc_info: object) -> None:
        self.close()

    # ------------------------------------------------------------------
    # Proving
    # ------------------------------------------------------------------

    @staticmethod
    def build_inputs(
        secret: Code,
        commitment: bytes,
        guess: Code,
        feedback: Feedback,
    ) -> dict[str, Any]:
        """Build the circuit input record in declaration order."""
        return {
            "secret_code": [str(s) for s in secret],
            "commitment": [str(b) for b in commitment],
            "guess": [str(g) for g in guess],
            "correct_position": str(feedback.exact_matches),
            "correct_color": str(feedback.color_matches),
        }

    def prepare_and_prove(
        self,
        secret: Secret,
        commitment: bytes,
        guess: Code,
        feedback: Feedback,
    ) -> ProofResult:
        if not CommitmentScheme.open(commitment, secret):
            raise ProofGenerationFailed(
                "secret does not open the session commitment; circuit would reject"
            )
        if not FeedbackEngine.is_consistent(secret, guess, feedback):
            raise ProofGenerationFailed(
                "claimed feedback does not match the secret; circuit would reject"
            )

        backend = self._acquire()
        inputs = self.build_inputs(secret, commitment, guess, feedback)

        try:
            witness = backend.execute(inputs)
        except Exception as e:
            raise ProofGenerationFailed(f"witness generation failed: {e}") from e
        try:
            proof = backend.prove(witness, self._mode)
        except Exception as e:
            raise ProofGenerationFailed(f"proof generation failed: {e}") from e
        if not proof:
            raise ProofGenerationFailed("prover returned an empty proof")

        locally_verified: Optional[bool] = None
        if self._verify_locally:
            try:
                locally_verified = bool(backend.verify(proof, self._mode))
            except Exception as e:
                logger.warning("Local proof verification skipped: %s", e)
            else:
                if not locally_verified:
                    logger.warning(
                        "Local proof verification failed for guess %s; submitting anyway",
                        guess.to_list(),
                    )

        public_inputs = {
            name: inputs[name] for name in backend.manifest.public_input_names
        }
        return ProofResult(
            proof=proof,
            proof_hash=self.proof_hash_of(proof),
            public_inputs=public_inputs,
            locally_verified=locally_verified,
        )

    # ------------------------------------------------------------------
    # Hashing and audit
    # ------------------------------------------------------------------

    @staticmethod
    def proof_hash_of(proof: bytes) -> ProofHash:
        return ProofHash(kind=ProofHashKind.ZK_PROOF, digest=hashlib.sha256(proof).digest())

    @staticmethod
    def fallback_proof_hash(commitment: bytes, guess: Code, feedback: Feedback) -> ProofHash:
        """Non-cryptographic placeholder built from disclosed values only.

        Carries no honesty guarantee. Never includes the secret: a digest
        over a 1296-element secret space would leak it to brute force.
        """
        data = (
            FALLBACK_DOMAIN
            + bytes(commitment)
            + bytes(guess.symbols)
            + bytes([feedback.exact_matches, feedback.color_matches])
        )
        return ProofHash(
            kind=ProofHashKind.FALLBACK_DIGEST, digest=hashlib.sha256(data).digest()
        )

    def audit(self, proof: bytes, record: GuessRecord) -> bool:
        """Check disclosed proof bytes against a stored GuessRecord.

        The stored hash must be a real proof hash, must equal sha256 of
        the disclosed bytes, and the backend must accept the proof.
        """
        if record.proof_hash.is_fallback:
            return False
        if self.proof_hash_of(proof) != record.proof_hash:
            return False
        backend = self._acquire()
        try:
            return bool(backend.verify(proof, self._mode))
        except Exception as e:
            logger.warning("Proof audit could not run the verifier: %s", e)
            return False

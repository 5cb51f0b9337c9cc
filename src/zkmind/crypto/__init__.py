"""Cryptographic pieces — commitments, proof pipeline, transcript anchoring."""

from zkmind.crypto.commitment import CircuitManifest, CommitmentScheme
from zkmind.crypto.proof_pipeline import ProofPipeline, ProofResult, ProvingBackend

__all__ = [
    "CircuitManifest",
    "CommitmentScheme",
    "ProofPipeline",
    "ProofResult",
    "ProvingBackend",
]

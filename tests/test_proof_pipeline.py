"""Tests for ProofPipeline — proves pre-flight checks, backend lifecycle and audit."""

import dataclasses
import hashlib

import pytest

from conftest import FakeBackend
from zkmind.crypto.commitment import CircuitInput, CircuitManifest, CommitmentScheme
from zkmind.crypto.proof_pipeline import (
    CIRCUIT_INPUT_SCHEMA,
    ProofPipeline,
    ProvingBackend,
    unavailable_backend,
)
from zkmind.errors import CommitmentSchemeMismatch, ProofGenerationFailed
from zkmind.models.game import Code, Feedback, GuessRecord, ProofHashKind, Secret


SECRET = Secret.of(0, 1, 2, 3)
COMMITMENT = CommitmentScheme.commit(SECRET)
GUESS = Code.of(0, 2, 1, 5)
FEEDBACK = Feedback(1, 2)


class TestBuildInputs:
    def test_field_order_matches_circuit(self) -> None:
        inputs = ProofPipeline.build_inputs(SECRET, COMMITMENT, GUESS, FEEDBACK)
        assert tuple(inputs) == CIRCUIT_INPUT_SCHEMA
        assert tuple(inputs) == CircuitManifest.load().input_names

    def test_values_are_decimal_strings(self) -> None:
        inputs = ProofPipeline.build_inputs(SECRET, COMMITMENT, GUESS, FEEDBACK)
        assert inputs["secret_code"] == ["0", "1", "2", "3"]
        assert inputs["guess"] == ["0", "2", "1", "5"]
        assert len(inputs["commitment"]) == 32
        assert inputs["commitment"][0] == str(COMMITMENT[0])
        assert inputs["correct_position"] == "1"
        assert inputs["correct_color"] == "2"


class TestPrepareAndProve:
    def test_fake_backend_satisfies_protocol(self, backend: FakeBackend) -> None:
        assert isinstance(backend, ProvingBackend)

    def test_proof_hash_is_sha256_of_proof(self, pipeline: ProofPipeline) -> None:
        result = pipeline.prepare_and_prove(SECRET, COMMITMENT, GUESS, FEEDBACK)
        assert result.proof_hash.kind is ProofHashKind.ZK_PROOF
        assert result.proof_hash.digest == hashlib.sha256(result.proof).digest()
        assert result.locally_verified is True

    def test_public_inputs_exclude_secret(self, pipeline: ProofPipeline) -> None:
        result = pipeline.prepare_and_prove(SECRET, COMMITMENT, GUESS, FEEDBACK)
        assert "secret_code" not in result.public_inputs
        assert result.public_inputs["guess"] == ["0", "2", "1", "5"]

    def test_wrong_feedback_fails_before_backend(self, pipeline: ProofPipeline, backend: FakeBackend) -> None:
        with pytest.raises(ProofGenerationFailed, match="feedback"):
            pipeline.prepare_and_prove(SECRET, COMMITMENT, GUESS, Feedback(2, 1))
        assert backend.executed == []
        assert not pipeline.is_acquired

    def test_wrong_secret_fails_before_backend(self, pipeline: ProofPipeline, backend: FakeBackend) -> None:
        other = Secret.of(5, 5, 5, 5)
        with pytest.raises(ProofGenerationFailed, match="commitment"):
            pipeline.prepare_and_prove(other, COMMITMENT, GUESS, Feedback(0, 0))
        assert backend.executed == []

    def test_witness_failure_is_terminal(self) -> None:
        pipeline = ProofPipeline(lambda: FakeBackend(fail_on="execute"))
        with pytest.raises(ProofGenerationFailed, match="witness"):
            pipeline.prepare_and_prove(SECRET, COMMITMENT, GUESS, FEEDBACK)

    def test_prover_failure_is_terminal(self) -> None:
        pipeline = ProofPipeline(lambda: FakeBackend(fail_on="prove"))
        with pytest.raises(ProofGenerationFailed, match="proof generation"):
            pipeline.prepare_and_prove(SECRET, COMMITMENT, GUESS, FEEDBACK)

    def test_local_verify_failure_does_not_block(self) -> None:
        pipeline = ProofPipeline(lambda: FakeBackend(verify_result=False))
        result = pipeline.prepare_and_prove(SECRET, COMMITMENT, GUESS, FEEDBACK)
        assert result.locally_verified is False
        assert result.proof

    def test_verifier_crash_is_reported_as_unknown(self) -> None:
        pipeline = ProofPipeline(lambda: FakeBackend(fail_on="verify"))
        result = pipeline.prepare_and_prove(SECRET, COMMITMENT, GUESS, FEEDBACK)
        assert result.locally_verified is None

    def test_local_verify_can_be_skipped(self, backend: FakeBackend) -> None:
        pipeline = ProofPipeline(lambda: backend, verify_locally=False)
        result = pipeline.prepare_and_prove(SECRET, COMMITMENT, GUESS, FEEDBACK)
        assert result.locally_verified is None
        assert backend.verified == []


class TestBackendLifecycle:
    def test_backend_acquired_once(self) -> None:
        created = []

        def factory() -> FakeBackend:
            created.append(FakeBackend())
            return created[-1]

        pipeline = ProofPipeline(factory)
        assert not pipeline.is_acquired
        pipeline.prepare_and_prove(SECRET, COMMITMENT, GUESS, FEEDBACK)
        pipeline.prepare_and_prove(SECRET, COMMITMENT, Code.of(0, 1, 2, 3), Feedback(4, 0))
        assert len(created) == 1

    def test_close_releases_backend_and_is_idempotent(self, pipeline: ProofPipeline, backend: FakeBackend) -> None:
        pipeline.prepare_and_prove(SECRET, COMMITMENT, GUESS, FEEDBACK)
        pipeline.close()
        pipeline.close()
        assert backend.closed
        assert not pipeline.is_acquired
        with pytest.raises(ProofGenerationFailed, match="closed"):
            pipeline.prepare_and_prove(SECRET, COMMITMENT, GUESS, FEEDBACK)

    def test_context_manager_closes(self, backend: FakeBackend) -> None:
        with ProofPipeline(lambda: backend) as pipeline:
            pipeline.prepare_and_prove(SECRET, COMMITMENT, GUESS, FEEDBACK)
        assert backend.closed

    def test_unavailable_backend(self) -> None:
        pipeline = ProofPipeline(unavailable_backend("nargo not installed"))
        with pytest.raises(ProofGenerationFailed, match="nargo not installed"):
            pipeline.prepare_and_prove(SECRET, COMMITMENT, GUESS, FEEDBACK)

    def test_factory_exception_becomes_proof_failure(self) -> None:
        def factory() -> FakeBackend:
            raise FileNotFoundError("bb")

        with pytest.raises(ProofGenerationFailed, match="prover unavailable"):
            ProofPipeline(factory).prepare_and_prove(SECRET, COMMITMENT, GUESS, FEEDBACK)

    def test_commitment_drift_is_not_degraded(self) -> None:
        manifest = CircuitManifest.load()
        drifted = dataclasses.replace(
            manifest, commitment={**manifest.commitment, "hash": "poseidon2"},
        )
        backend = FakeBackend(manifest=drifted)
        pipeline = ProofPipeline(lambda: backend)
        with pytest.raises(CommitmentSchemeMismatch):
            pipeline.prepare_and_prove(SECRET, COMMITMENT, GUESS, FEEDBACK)
        assert backend.closed

    def test_input_schema_mismatch_closes_backend(self) -> None:
        manifest = CircuitManifest.load()
        reordered = dataclasses.replace(manifest, inputs=tuple(reversed(manifest.inputs)))
        backend = FakeBackend(manifest=reordered)
        pipeline = ProofPipeline(lambda: backend)
        with pytest.raises(ProofGenerationFailed, match="input schema"):
            pipeline.prepare_and_prove(SECRET, COMMITMENT, GUESS, FEEDBACK)
        assert backend.closed

    def test_extra_input_is_a_mismatch(self) -> None:
        manifest = CircuitManifest.load()
        extended = dataclasses.replace(
            manifest, inputs=manifest.inputs + (CircuitInput("salt", "Field", "private"),),
        )
        pipeline = ProofPipeline(lambda: FakeBackend(manifest=extended))
        with pytest.raises(ProofGenerationFailed):
            pipeline.prepare_and_prove(SECRET, COMMITMENT, GUESS, FEEDBACK)


class TestFallbackAndAudit:
    def test_fallback_is_tagged_and_secret_free(self) -> None:
        fallback = ProofPipeline.fallback_proof_hash(COMMITMENT, GUESS, FEEDBACK)
        assert fallback.kind is ProofHashKind.FALLBACK_DIGEST
        assert fallback.encode()[0] == 0xFE
        # Same public values, different secret: identical digest.
        assert fallback == ProofPipeline.fallback_proof_hash(COMMITMENT, GUESS, FEEDBACK)

    def test_fallback_depends_on_disclosed_values(self) -> None:
        a = ProofPipeline.fallback_proof_hash(COMMITMENT, GUESS, FEEDBACK)
        b = ProofPipeline.fallback_proof_hash(COMMITMENT, GUESS, Feedback(0, 3))
        assert a != b

    def test_audit_accepts_disclosed_proof(self, pipeline: ProofPipeline) -> None:
        result = pipeline.prepare_and_prove(SECRET, COMMITMENT, GUESS, FEEDBACK)
        record = GuessRecord(guess=GUESS, feedback=FEEDBACK, proof_hash=result.proof_hash)
        assert pipeline.audit(result.proof, record)

    def test_audit_rejects_other_bytes(self, pipeline: ProofPipeline) -> None:
        result = pipeline.prepare_and_prove(SECRET, COMMITMENT, GUESS, FEEDBACK)
        record = GuessRecord(guess=GUESS, feedback=FEEDBACK, proof_hash=result.proof_hash)
        assert not pipeline.audit(result.proof + b"x", record)

    def test_audit_rejects_fallback_records(self, pipeline: ProofPipeline) -> None:
        fallback = ProofPipeline.fallback_proof_hash(COMMITMENT, GUESS, FEEDBACK)
        record = GuessRecord(guess=GUESS, feedback=FEEDBACK, proof_hash=fallback)
        assert not pipeline.audit(b"anything", record)

    def test_audit_with_crashing_verifier_is_false(self) -> None:
        honest = ProofPipeline(lambda: FakeBackend())
        result = honest.prepare_and_prove(SECRET, COMMITMENT, GUESS, FEEDBACK)
        record = GuessRecord(guess=GUESS, feedback=FEEDBACK, proof_hash=result.proof_hash)
        auditor = ProofPipeline(lambda: FakeBackend(fail_on="verify"))
        assert not auditor.audit(result.proof, record)

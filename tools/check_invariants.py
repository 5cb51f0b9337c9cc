#!/usr/bin/env python3
"""ZKMind invariant checks against the packaged circuit and the config."""

import itertools
import sys
from pathlib import Path


ROOT = Path(__file__).resolve().parents[1]
sys.path.insert(0, str(ROOT / "src"))

from zkmind.config import DEFAULT_CONFIG_DIR, ProtocolConfig
from zkmind.crypto.commitment import PACKAGED_MANIFEST, CircuitManifest, CommitmentScheme
from zkmind.crypto.proof_pipeline import CIRCUIT_INPUT_SCHEMA
from zkmind.crypto.prover_cli import compiled_manifest, declared_manifest
from zkmind.engine.feedback import FeedbackEngine
from zkmind.errors import CommitmentSchemeMismatch, ProtocolErrorCode
from zkmind.models.game import CODE_LENGTH, NUM_COLORS, Code, ProofHash, ProofHashKind


# Published commitment vectors. A change here breaks every stored game.
COMMITMENT_VECTORS = {
    (0, 1, 2, 3): "3a103077fee74d3669d59a43ce19a3631c529f1301b58c5d0cd15ef142149393",
    (5, 5, 5, 5): "090ee93a4bfcfa9f3a5476c529f035138b12c99d9709df7854a0844face9827c",
    (0, 0, 0, 0): "0f8e8c77a172d2c37e13449781fd6798bef8f14a6397aa2b5939cea26b2d646e",
}

# (secret, guess, exact, color)
FEEDBACK_VECTORS = [
    ((0, 1, 2, 3), (0, 1, 2, 3), 4, 0),
    ((0, 1, 2, 3), (3, 2, 1, 0), 0, 4),
    ((0, 0, 1, 1), (0, 1, 0, 1), 2, 2),
    ((0, 0, 0, 1), (0, 1, 1, 1), 2, 0),
    ((1, 2, 3, 4), (5, 5, 5, 5), 0, 0),
    ((2, 2, 3, 3), (3, 3, 2, 2), 0, 4),
    ((0, 0, 1, 2), (0, 1, 0, 0), 1, 2),
    ((1, 1, 2, 2), (1, 2, 1, 2), 2, 2),
    ((0, 1, 2, 3), (0, 0, 0, 0), 1, 0),
]


def check_commitment(manifest: CircuitManifest, errors: list[str]) -> None:
    errors.extend(CommitmentScheme.check_manifest(manifest))
    if manifest.input_names != CIRCUIT_INPUT_SCHEMA:
        errors.append(
            f"circuit inputs {list(manifest.input_names)} != "
            f"pipeline inputs {list(CIRCUIT_INPUT_SCHEMA)}"
        )
    if "secret_code" in manifest.public_input_names:
        errors.append("secret_code must be a private circuit input")
    for symbols, expected in COMMITMENT_VECTORS.items():
        actual = CommitmentScheme.commit(Code(symbols)).hex()
        if actual != expected:
            errors.append(f"commitment vector {list(symbols)}: {actual} != {expected}")


def check_compiled_circuit(circuit_dir: Path, errors: list[str]) -> None:
    """Compare a compiled circuit, when one exists, against its manifest."""
    declared = declared_manifest(circuit_dir)
    if not (circuit_dir / "target" / f"{declared.circuit}.json").exists():
        return
    try:
        check_commitment(compiled_manifest(circuit_dir, declared), errors)
    except (ValueError, CommitmentSchemeMismatch) as e:
        errors.append(f"compiled circuit in {circuit_dir}: {e}")


def check_feedback(errors: list[str]) -> None:
    for secret, guess, exact, color in FEEDBACK_VECTORS:
        feedback = FeedbackEngine.compute(Code(secret), Code(guess))
        if feedback.as_tuple() != (exact, color):
            errors.append(
                f"feedback {list(secret)} vs {list(guess)}: "
                f"{feedback.as_tuple()} != {(exact, color)}"
            )
    for symbols in itertools.product(range(NUM_COLORS), repeat=CODE_LENGTH):
        code = Code(symbols)
        if FeedbackEngine.compute(code, code).as_tuple() != (CODE_LENGTH, 0):
            errors.append(f"self-feedback of {list(symbols)} is not a win")
            break


def check_error_codes(errors: list[str]) -> None:
    codes = [int(c) for c in ProtocolErrorCode]
    if codes != list(range(1, len(codes) + 1)):
        errors.append(f"protocol error codes must be 1..{len(codes)} without gaps")


def check_proof_hash_tags(errors: list[str]) -> None:
    tags = {ProofHash(kind, bytes(32)).encode()[0] for kind in ProofHashKind}
    if len(tags) != len(ProofHashKind):
        errors.append("proof hash kinds must have distinct tags")


def check(config_dir: Path = DEFAULT_CONFIG_DIR) -> int:
    errors: list[str] = []

    # --- Circuit / commitment agreement ---
    check_commitment(CircuitManifest.load(PACKAGED_MANIFEST), errors)
    config = ProtocolConfig.from_config_dir(config_dir)
    circuit_dir = Path(config.prover.circuit_dir)
    check_compiled_circuit(circuit_dir if circuit_dir.is_absolute() else ROOT / circuit_dir, errors)

    # --- Feedback algorithm ---
    check_feedback(errors)

    # --- Wire constants ---
    check_error_codes(errors)
    check_proof_hash_tags(errors)

    # --- Configuration ---
    errors.extend(config.validate())
    if config.ledger.manual_footprint.instructions < 10_000_000:
        errors.append("manual footprint instruction budget is too small for submit_feedback")

    if errors:
        print("Invariant check failed:")
        for err in errors:
            print(f"  - {err}")
        return 1

    print("Invariant checks passed.")
    return 0


if __name__ == "__main__":
    raise SystemExit(check())

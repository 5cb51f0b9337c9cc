"""Commitment scheme — binds the CodeMaker to a secret for the whole session.

Encoding (scheme id ``sha256-be32-v1``):

    commitment = SHA-256( word(DOMAIN) || word(s0) || word(s1) || word(s2) || word(s3) )

where ``word(x)`` is the 32-byte big-endian encoding of x as a field
element, and DOMAIN is the integer value of the ASCII bytes ``zkmind``.

The proof circuit recomputes this digest internally. Soundness depends
on both sides using the same function, byte width, element order and
domain separator, and a mismatch does not break any functional test —
honest games still "work". So the circuit manifest declares the scheme
it asserts, and ``require_manifest`` turns any divergence into a hard
configuration error before a single proof is generated.
"""

from __future__ import annotations

import hashlib
import hmac
import json
from dataclasses import dataclass
from pathlib import Path
from typing import Any

from zkmind.errors import CommitmentSchemeMismatch
from zkmind.models.game import CODE_LENGTH, DIGEST_SIZE, Code


PACKAGED_MANIFEST = Path(__file__).resolve().parents[1] / "circuits" / "mastermind.manifest.json"


@dataclass(frozen=True)
class CircuitInput:
    """One declared circuit input, in declaration order."""
    name: str
    type: str
    visibility: str  # "private" | "public"


@dataclass(frozen=True)
class CircuitManifest:
    """The proving circuit's declared interface.

    ``inputs`` order is significant: the prover maps inputs by name but
    public inputs are laid out in declaration order inside the proof.
    """
    circuit: str
    version: str
    oracle_hash: str
    inputs: tuple[CircuitInput, ...]
    commitment: dict[str, Any]

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> CircuitManifest:
        return cls(
            circuit=data["circuit"],
            version=data["version"],
            oracle_hash=data["oracle_hash"],
            inputs=tuple(
                CircuitInput(name=i["name"], type=i["type"], visibility=i["visibility"])
                for i in data["inputs"]
            ),
            commitment=dict(data["commitment"]),
        )

    @classmethod
    def load(cls, path: Path = PACKAGED_MANIFEST) -> CircuitManifest:
        with path.open("r", encoding="utf-8") as handle:
            return cls.from_dict(json.load(handle))

    @property
    def input_names(self) -> tuple[str, ...]:
        return tuple(i.name for i in self.inputs)

    @property
    def public_input_names(self) -> tuple[str, ...]:
        return tuple(i.name for i in self.inputs if i.visibility == "public")


class CommitmentScheme:
    """Deterministic, binding commitment to a Secret.

    Usage:
        commitment = CommitmentScheme.commit(secret)
        assert CommitmentScheme.open(commitment, secret)
    """

    SCHEME_ID = "sha256-be32-v1"
    HASH_NAME = "sha256"
    WORD_BYTES = 32
    BYTE_ORDER = "big"
    DOMAIN_SEPARATOR = int.from_bytes(b"zkmind", "big")
    ELEMENT_ORDER = ("domain_separator",) + tuple(
        f"secret_code[{i}]" for i in range(CODE_LENGTH)
    )

    @classmethod
    def encode(cls, secret: Code) -> bytes:
        """Return the exact preimage that the circuit hashes."""
        words = [cls.DOMAIN_SEPARATOR, *secret]
        return b"".join(w.to_bytes(cls.WORD_BYTES, cls.BYTE_ORDER) for w in words)

    @classmethod
    def commit(cls, secret: Code) -> bytes:
        return hashlib.sha256(cls.encode(secret)).digest()

    @classmethod
    def open(cls, commitment: bytes, secret: Code) -> bool:
        """Recompute the commitment and compare in constant time."""
        if not isinstance(commitment, (bytes, bytearray)) or len(commitment) != DIGEST_SIZE:
            return False
        return hmac.compare_digest(bytes(commitment), cls.commit(secret))

    # ------------------------------------------------------------------
    # Circuit pinning
    # ------------------------------------------------------------------

    @classmethod
    def descriptor(cls) -> dict[str, Any]:
        """The commitment block a compatible circuit manifest must declare."""
        return {
            "scheme": cls.SCHEME_ID,
            "hash": cls.HASH_NAME,
            "word_bytes": cls.WORD_BYTES,
            "byte_order": cls.BYTE_ORDER,
            "domain_separator": hex(cls.DOMAIN_SEPARATOR),
            "elements": list(cls.ELEMENT_ORDER),
        }

    @classmethod
    def check_manifest(cls, manifest: CircuitManifest) -> list[str]:
        """Compare the circuit's declared commitment against ours.

        Returns a list of mismatches. Empty list means the two agree.
        """
        errors: list[str] = []
        expected = cls.descriptor()
        declared = manifest.commitment
        for key, value in expected.items():
            if key not in declared:
                errors.append(f"circuit manifest missing commitment.{key}")
            elif declared[key] != value:
                errors.append(
                    f"commitment.{key}: circuit declares {declared[key]!r}, "
                    f"package uses {value!r}"
                )
        for key in declared:
            if key not in expected:
                errors.append(f"circuit manifest has unknown commitment.{key}")
        return errors

    @classmethod
    def require_manifest(cls, manifest: CircuitManifest) -> None:
        errors = cls.check_manifest(manifest)
        if errors:
            raise CommitmentSchemeMismatch(
                f"circuit {manifest.circuit} {manifest.version}: " + "; ".join(errors)
            )

"""Tests for CommitmentScheme — proves the encoding is pinned and checked."""

import dataclasses

import pytest

from zkmind.crypto.commitment import CircuitManifest, CommitmentScheme
from zkmind.errors import CommitmentSchemeMismatch
from zkmind.models.game import Code, Secret


class TestEncoding:
    def test_preimage_is_five_big_endian_words(self) -> None:
        encoded = CommitmentScheme.encode(Secret.of(0, 1, 2, 3))
        assert len(encoded) == 5 * 32
        assert encoded[:32] == (0).to_bytes(26, "big") + b"zkmind"
        assert encoded[32:64] == bytes(32)
        assert encoded[-1] == 3

    @pytest.mark.parametrize("symbols, expected", [
        ((0, 1, 2, 3), "3a103077fee74d3669d59a43ce19a3631c529f1301b58c5d0cd15ef142149393"),
        ((5, 5, 5, 5), "090ee93a4bfcfa9f3a5476c529f035138b12c99d9709df7854a0844face9827c"),
        ((0, 0, 0, 0), "0f8e8c77a172d2c37e13449781fd6798bef8f14a6397aa2b5939cea26b2d646e"),
    ])
    def test_pinned_vectors(self, symbols: tuple, expected: str) -> None:
        assert CommitmentScheme.commit(Secret(symbols)).hex() == expected

    def test_order_matters(self) -> None:
        assert CommitmentScheme.commit(Code.of(0, 1, 2, 3)) != CommitmentScheme.commit(Code.of(3, 2, 1, 0))


class TestOpen:
    def test_opens_with_committed_secret(self) -> None:
        secret = Secret.of(1, 4, 4, 2)
        assert CommitmentScheme.open(CommitmentScheme.commit(secret), secret)

    def test_rejects_other_secret(self) -> None:
        commitment = CommitmentScheme.commit(Secret.of(1, 4, 4, 2))
        assert not CommitmentScheme.open(commitment, Secret.of(1, 4, 2, 4))

    def test_rejects_malformed_commitment(self) -> None:
        assert not CommitmentScheme.open(b"\x01" * 31, Secret.of(0, 0, 0, 0))
        assert not CommitmentScheme.open("not-bytes", Secret.of(0, 0, 0, 0))


class TestManifestPinning:
    def test_packaged_manifest_agrees(self) -> None:
        manifest = CircuitManifest.load()
        assert CommitmentScheme.check_manifest(manifest) == []
        CommitmentScheme.require_manifest(manifest)

    def test_secret_is_private_input(self) -> None:
        manifest = CircuitManifest.load()
        assert "secret_code" not in manifest.public_input_names
        assert manifest.input_names[0] == "secret_code"

    def test_domain_drift_is_detected(self) -> None:
        manifest = CircuitManifest.load()
        drifted = dataclasses.replace(
            manifest, commitment={**manifest.commitment, "domain_separator": "0x0"},
        )
        errors = CommitmentScheme.check_manifest(drifted)
        assert any("domain_separator" in e for e in errors)
        with pytest.raises(CommitmentSchemeMismatch):
            CommitmentScheme.require_manifest(drifted)

    def test_missing_and_unknown_keys_are_reported(self) -> None:
        manifest = CircuitManifest.load()
        commitment = dict(manifest.commitment)
        del commitment["byte_order"]
        commitment["salt"] = True
        errors = CommitmentScheme.check_manifest(dataclasses.replace(manifest, commitment=commitment))
        assert any("missing commitment.byte_order" in e for e in errors)
        assert any("unknown commitment.salt" in e for e in errors)

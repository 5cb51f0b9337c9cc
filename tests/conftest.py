"""Shared fixtures — deterministic wallets, an in-memory ledger, a fake prover."""

import hashlib
import json
from typing import Any, Optional

import pytest

from zkmind.config import LedgerSettings
from zkmind.crypto.commitment import CircuitManifest
from zkmind.crypto.proof_pipeline import ProofPipeline
from zkmind.ledger.contract import GameContract, RecordingGameHub
from zkmind.ledger.memory import InMemoryLedger
from zkmind.ledger.transactor import LedgerTransactor
from zkmind.wallet import LocalKeyWallet


CONTRACT_ID = "zkmind-test"

MAKER_KEY = "0x" + "11" * 32
BREAKER_KEY = "0x" + "22" * 32
STRANGER_KEY = "0x" + "33" * 32


class FakeBackend:
    """ProvingBackend double: proofs are a hash of the witness."""

    def __init__(
        self,
        manifest: Optional[CircuitManifest] = None,
        verify_result: bool = True,
        fail_on: Optional[str] = None,
    ) -> None:
        self._manifest = manifest or CircuitManifest.load()
        self.verify_result = verify_result
        self.fail_on = fail_on
        self.executed: list[dict[str, Any]] = []
        self.verified: list[bytes] = []
        self.closed = False

    @property
    def manifest(self) -> CircuitManifest:
        return self._manifest

    def execute(self, inputs: dict[str, Any]) -> bytes:
        if self.fail_on == "execute":
            raise RuntimeError("constraint failed")
        self.executed.append(inputs)
        return json.dumps(inputs, sort_keys=True).encode("utf-8")

    def prove(self, witness: bytes, mode: str) -> bytes:
        if self.fail_on == "prove":
            raise RuntimeError("prover crashed")
        return b"proof:" + mode.encode() + b":" + hashlib.sha256(witness).digest()

    def verify(self, proof: bytes, mode: str) -> bool:
        if self.fail_on == "verify":
            raise RuntimeError("verifier crashed")
        self.verified.append(proof)
        return self.verify_result and proof.startswith(b"proof:")

    def close(self) -> None:
        self.closed = True


@pytest.fixture
def maker_wallet() -> LocalKeyWallet:
    return LocalKeyWallet(MAKER_KEY)


@pytest.fixture
def breaker_wallet() -> LocalKeyWallet:
    return LocalKeyWallet(BREAKER_KEY)


@pytest.fixture
def stranger_wallet() -> LocalKeyWallet:
    return LocalKeyWallet(STRANGER_KEY)


@pytest.fixture
def hub() -> RecordingGameHub:
    return RecordingGameHub()


@pytest.fixture
def contract(hub: RecordingGameHub) -> GameContract:
    return GameContract(CONTRACT_ID, hub=hub)


@pytest.fixture
def ledger(contract: GameContract) -> InMemoryLedger:
    return InMemoryLedger(contract)


@pytest.fixture
def settings() -> LedgerSettings:
    return LedgerSettings(contract_id=CONTRACT_ID, max_polls=10)


@pytest.fixture
def transactor(ledger: InMemoryLedger, settings: LedgerSettings) -> LedgerTransactor:
    return LedgerTransactor(ledger, CONTRACT_ID, settings, sleep=lambda _s: None)


@pytest.fixture
def backend() -> FakeBackend:
    return FakeBackend()


@pytest.fixture
def pipeline(backend: FakeBackend) -> ProofPipeline:
    return ProofPipeline(lambda: backend)

"""Protocol configuration.

Loaded from ``config/protocol.json`` and optionally overridden by
``ZKMIND_*`` environment variables. Command-line entry points call
``load_dotenv()`` first, so a local ``.env`` file works too.

Usage:
    config = ProtocolConfig.from_config_dir(config_dir).with_env_overrides()
    transactor = LedgerTransactor(client, config.ledger.contract_id, config.ledger)
"""

from __future__ import annotations

import json
import os
from dataclasses import dataclass, field, replace
from pathlib import Path
from typing import Any, Mapping, Optional

from zkmind.models.game import MAX_GUESSES


DEFAULT_CONFIG_DIR = Path(__file__).resolve().parents[2] / "config"
CONFIG_FILENAME = "protocol.json"


@dataclass(frozen=True)
class ManualFootprintSettings:
    """Fixed, conservative resources for submissions that skip write simulation."""
    instructions: int = 50_000_000
    read_bytes: int = 20_000
    write_bytes: int = 20_000
    resource_fee: int = 5_000_000
    fee: int = 10_000_000


@dataclass(frozen=True)
class LedgerSettings:
    contract_id: str = "zkmind-local"
    simulation_retries: int = 1
    settle_interval_seconds: float = 4.0
    poll_interval_seconds: float = 2.0
    max_polls: int = 150
    base_fee: int = 100
    tx_timeout_seconds: int = 300
    session_ttl_ledgers: int = 518_400
    manual_footprint: ManualFootprintSettings = field(default_factory=ManualFootprintSettings)


@dataclass(frozen=True)
class ProverSettings:
    circuit_dir: str = "circuits/mastermind"
    mode: str = "keccak"
    verify_locally: bool = True
    nargo: str = "nargo"
    bb: str = "bb"


@dataclass(frozen=True)
class AnchorSettings:
    chain_id: int = 11155111
    gas: int = 30_000
    gas_price_gwei: str = "2"


@dataclass(frozen=True)
class ProtocolConfig:
    max_guesses: int = MAX_GUESSES
    ledger: LedgerSettings = field(default_factory=LedgerSettings)
    prover: ProverSettings = field(default_factory=ProverSettings)
    anchor: AnchorSettings = field(default_factory=AnchorSettings)

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> ProtocolConfig:
        ledger_data = dict(data.get("ledger", {}))
        manual = ManualFootprintSettings(**ledger_data.pop("manual_footprint", {}))
        return cls(
            max_guesses=int(data.get("game", {}).get("max_guesses", MAX_GUESSES)),
            ledger=LedgerSettings(manual_footprint=manual, **ledger_data),
            prover=ProverSettings(**data.get("prover", {})),
            anchor=AnchorSettings(**data.get("anchor", {})),
        )

    @classmethod
    def from_config_dir(cls, config_dir: Path = DEFAULT_CONFIG_DIR) -> ProtocolConfig:
        path = Path(config_dir) / CONFIG_FILENAME
        if not path.exists():
            return cls()
        with path.open("r", encoding="utf-8") as handle:
            return cls.from_dict(json.load(handle))

    def with_env_overrides(self, environ: Optional[Mapping[str, str]] = None) -> ProtocolConfig:
        """Apply ZKMIND_* environment variables on top of file values."""
        env = os.environ if environ is None else environ
        ledger = self.ledger
        prover = self.prover
        anchor = self.anchor
        max_guesses = self.max_guesses

        if "ZKMIND_MAX_GUESSES" in env:
            max_guesses = int(env["ZKMIND_MAX_GUESSES"])
        if "ZKMIND_CONTRACT_ID" in env:
            ledger = replace(ledger, contract_id=env["ZKMIND_CONTRACT_ID"])
        if "ZKMIND_SIMULATION_RETRIES" in env:
            ledger = replace(ledger, simulation_retries=int(env["ZKMIND_SIMULATION_RETRIES"]))
        if "ZKMIND_SETTLE_INTERVAL" in env:
            ledger = replace(ledger, settle_interval_seconds=float(env["ZKMIND_SETTLE_INTERVAL"]))
        if "ZKMIND_POLL_INTERVAL" in env:
            ledger = replace(ledger, poll_interval_seconds=float(env["ZKMIND_POLL_INTERVAL"]))
        if "ZKMIND_MAX_POLLS" in env:
            ledger = replace(ledger, max_polls=int(env["ZKMIND_MAX_POLLS"]))
        if "ZKMIND_CIRCUIT_DIR" in env:
            prover = replace(prover, circuit_dir=env["ZKMIND_CIRCUIT_DIR"])
        if "ZKMIND_PROVER_MODE" in env:
            prover = replace(prover, mode=env["ZKMIND_PROVER_MODE"])
        if "ZKMIND_VERIFY_LOCALLY" in env:
            prover = replace(
                prover,
                verify_locally=env["ZKMIND_VERIFY_LOCALLY"].strip().lower() in ("1", "true", "yes"),
            )
        if "ZKMIND_CHAIN_ID" in env:
            anchor = replace(anchor, chain_id=int(env["ZKMIND_CHAIN_ID"]))

        return replace(
            self, max_guesses=max_guesses, ledger=ledger, prover=prover, anchor=anchor,
        )

    def validate(self) -> list[str]:
        """Return configuration errors. Empty list means valid."""
        errors: list[str] = []
        if self.max_guesses < 1:
            errors.append(f"game.max_guesses must be >= 1, got {self.max_guesses}")
        ledger = self.ledger
        if ledger.simulation_retries < 0:
            errors.append("ledger.simulation_retries must be >= 0")
        if ledger.settle_interval_seconds < 0 or ledger.poll_interval_seconds < 0:
            errors.append("ledger intervals must be >= 0")
        if ledger.max_polls < 1:
            errors.append("ledger.max_polls must be >= 1")
        if ledger.session_ttl_ledgers < 1:
            errors.append("ledger.session_ttl_ledgers must be >= 1")
        manual = ledger.manual_footprint
        if manual.fee < manual.resource_fee + ledger.base_fee:
            errors.append(
                "ledger.manual_footprint.fee must cover resource_fee plus base_fee"
            )
        if min(manual.instructions, manual.read_bytes, manual.write_bytes) <= 0:
            errors.append("ledger.manual_footprint resources must be > 0")
        if self.prover.mode not in ("keccak", "poseidon2"):
            errors.append(f"prover.mode must be keccak or poseidon2, got {self.prover.mode!r}")
        return errors

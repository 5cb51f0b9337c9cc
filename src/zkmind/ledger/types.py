"""Ledger boundary types — operations, storage keys, footprints, transactions.

A transaction that writes contract storage must declare up front every
storage key it will touch (its footprint) and the resources it may use.
Normally the footprint comes from simulating the transaction against the
ledger's current state. When simulation cannot be trusted, the footprint
is assembled by hand (see ``LedgerTransactor.build_with_manual_footprint``).
"""

from __future__ import annotations

import enum
import hashlib
import json
from dataclasses import dataclass
from typing import Any, Optional


class OperationKind(str, enum.Enum):
    """Contract entry points."""
    NEW_GAME = "new_game"
    COMMIT_CODE = "commit_code"
    SUBMIT_GUESS = "submit_guess"
    SUBMIT_FEEDBACK = "submit_feedback"
    GET_GAME = "get_game"
    REPORT_RESULT = "report_result"

    @property
    def is_read_only(self) -> bool:
        return self is OperationKind.GET_GAME


class Durability(str, enum.Enum):
    TEMPORARY = "temporary"  # expires after its TTL
    INSTANCE = "instance"  # lives as long as the contract


class AuthCredentials(str, enum.Enum):
    SOURCE_ACCOUNT = "source_account"  # covered by the transaction signature
    ADDRESS = "address"  # separately signed by the authorizing address


class SimulationErrorKind(str, enum.Enum):
    CONTRACT = "contract"  # the contract returned an error code
    HOST = "host"  # anything else: network, encoding, budget


class TxStatus(str, enum.Enum):
    NOT_FOUND = "not_found"
    SUCCESS = "success"
    FAILED = "failed"


class SubmissionPath(str, enum.Enum):
    SIMULATED = "simulated"
    MANUAL_FOOTPRINT = "manual_footprint"


def _canonical(data: Any) -> bytes:
    return json.dumps(data, sort_keys=True, separators=(",", ":"), default=_encode_default).encode("utf-8")


def _encode_default(value: Any) -> Any:
    if isinstance(value, (bytes, bytearray)):
        return "0x" + bytes(value).hex()
    if isinstance(value, enum.Enum):
        return value.value
    raise TypeError(f"cannot encode {type(value).__name__}")


# ----------------------------------------------------------------------
# Operations
# ----------------------------------------------------------------------

@dataclass(frozen=True)
class Operation:
    """One contract call, described in ledger-level values.

    ``source`` is the account that pays for and signs the transaction.
    ``signers`` are every address whose authorization the call requires;
    the transactor refuses to build unless it holds a wallet for each.
    """
    kind: OperationKind
    args: tuple
    source: str
    signers: tuple[str, ...] = ()

    @classmethod
    def new_game(cls, session_id: int, codemaker: str, codebreaker: str) -> Operation:
        return cls(
            OperationKind.NEW_GAME, (session_id, codemaker, codebreaker),
            source=codemaker, signers=(codemaker, codebreaker),
        )

    @classmethod
    def commit_code(cls, session_id: int, codemaker: str, commitment: bytes) -> Operation:
        return cls(
            OperationKind.COMMIT_CODE, (session_id, codemaker, bytes(commitment)),
            source=codemaker, signers=(codemaker,),
        )

    @classmethod
    def submit_guess(cls, session_id: int, codebreaker: str, guess: list[int]) -> Operation:
        return cls(
            OperationKind.SUBMIT_GUESS, (session_id, codebreaker, tuple(guess)),
            source=codebreaker, signers=(codebreaker,),
        )

    @classmethod
    def submit_feedback(
        cls,
        session_id: int,
        codemaker: str,
        correct_position: int,
        correct_color: int,
        proof_hash: bytes,
    ) -> Operation:
        return cls(
            OperationKind.SUBMIT_FEEDBACK,
            (session_id, codemaker, correct_position, correct_color, bytes(proof_hash)),
            source=codemaker, signers=(codemaker,),
        )

    @classmethod
    def get_game(cls, session_id: int, source: str = "") -> Operation:
        return cls(OperationKind.GET_GAME, (session_id,), source=source)

    @classmethod
    def report_result(cls, session_id: int, source: str) -> Operation:
        return cls(OperationKind.REPORT_RESULT, (session_id,), source=source)

    @property
    def session_id(self) -> int:
        return self.args[0]


@dataclass(frozen=True)
class Invocation:
    """The contract call carried by a transaction."""
    contract_id: str
    function: OperationKind
    args: tuple

    def to_dict(self) -> dict[str, Any]:
        return {
            "contract_id": self.contract_id,
            "function": self.function.value,
            "args": list(self.args),
        }

    def digest(self) -> str:
        """Hex digest that authorization entries sign over."""
        return hashlib.sha256(_canonical(self.to_dict())).hexdigest()


# ----------------------------------------------------------------------
# Storage and resources
# ----------------------------------------------------------------------

@dataclass(frozen=True)
class StorageKey:
    """Address of one contract storage entry."""
    contract_id: str
    durability: Durability
    key: tuple

    def to_dict(self) -> dict[str, Any]:
        return {
            "contract_id": self.contract_id,
            "durability": self.durability.value,
            "key": list(self.key),
        }


@dataclass(frozen=True)
class Footprint:
    """Storage keys a transaction may read, and those it may also write."""
    read_only: frozenset[StorageKey] = frozenset()
    read_write: frozenset[StorageKey] = frozenset()

    def allows_read(self, key: StorageKey) -> bool:
        return key in self.read_only or key in self.read_write

    def allows_write(self, key: StorageKey) -> bool:
        return key in self.read_write

    def promote_temporary(self) -> Footprint:
        """Move every temporary read-only key to read-write."""
        promoted = {k for k in self.read_only if k.durability is Durability.TEMPORARY}
        return Footprint(
            read_only=frozenset(self.read_only - promoted),
            read_write=frozenset(self.read_write | promoted),
        )

    def to_dict(self) -> dict[str, Any]:
        return {
            "read_only": sorted((k.to_dict() for k in self.read_only), key=_canonical),
            "read_write": sorted((k.to_dict() for k in self.read_write), key=_canonical),
        }


@dataclass(frozen=True)
class ResourceBudget:
    instructions: int
    read_bytes: int
    write_bytes: int

    def covers(self, other: ResourceBudget) -> bool:
        return (
            self.instructions >= other.instructions
            and self.read_bytes >= other.read_bytes
            and self.write_bytes >= other.write_bytes
        )

    def to_dict(self) -> dict[str, Any]:
        return {
            "instructions": self.instructions,
            "read_bytes": self.read_bytes,
            "write_bytes": self.write_bytes,
        }


@dataclass(frozen=True)
class AuthEntry:
    """Authorization of one address for one invocation."""
    address: str
    credentials: AuthCredentials
    invocation_digest: str
    signature: Optional[str] = None  # hex; None for SOURCE_ACCOUNT

    def to_dict(self) -> dict[str, Any]:
        return {
            "address": self.address,
            "credentials": self.credentials.value,
            "invocation_digest": self.invocation_digest,
            "signature": self.signature,
        }


# ----------------------------------------------------------------------
# Transactions
# ----------------------------------------------------------------------

@dataclass(frozen=True)
class Transaction:
    source: str
    sequence: int
    invocation: Invocation
    fee: int
    footprint: Optional[Footprint] = None
    resources: Optional[ResourceBudget] = None
    resource_fee: int = 0
    auth: tuple[AuthEntry, ...] = ()
    timeout_seconds: int = 300

    def to_dict(self) -> dict[str, Any]:
        return {
            "source": self.source,
            "sequence": self.sequence,
            "invocation": self.invocation.to_dict(),
            "fee": self.fee,
            "footprint": self.footprint.to_dict() if self.footprint else None,
            "resources": self.resources.to_dict() if self.resources else None,
            "resource_fee": self.resource_fee,
            "auth": [a.to_dict() for a in self.auth],
            "timeout_seconds": self.timeout_seconds,
        }

    @property
    def tx_hash(self) -> str:
        return hashlib.sha256(_canonical(self.to_dict())).hexdigest()


@dataclass(frozen=True)
class SignedTransaction:
    transaction: Transaction
    signer: str
    signature: str  # hex

    @property
    def tx_hash(self) -> str:
        return self.transaction.tx_hash


@dataclass(frozen=True)
class AccountState:
    address: str
    sequence: int


@dataclass(frozen=True)
class SimulationResult:
    """Outcome of a dry run against the simulation view."""
    return_value: Any = None
    footprint: Optional[Footprint] = None
    resources: Optional[ResourceBudget] = None
    resource_fee: int = 0
    required_auth: tuple[str, ...] = ()
    error_kind: Optional[SimulationErrorKind] = None
    contract_error: Optional[int] = None
    error_message: str = ""
    latest_ledger: int = 0

    @property
    def ok(self) -> bool:
        return self.error_kind is None


@dataclass(frozen=True)
class SendResult:
    tx_hash: str
    accepted: bool
    error: str = ""
    duplicate: bool = False  # the ledger already holds this transaction


@dataclass(frozen=True)
class TransactionInfo:
    tx_hash: str
    status: TxStatus
    ledger: Optional[int] = None
    return_value: Any = None
    error: str = ""


@dataclass(frozen=True)
class SubmissionOutcome:
    """What the transactor reports after a transaction reached finality."""
    operation: OperationKind
    tx_hash: str
    ledger: int
    return_value: Any = None
    path: SubmissionPath = SubmissionPath.SIMULATED
    attempts: int = 1
    polls: int = 0

    def to_dict(self) -> dict[str, Any]:
        return {
            "operation": self.operation.value,
            "tx_hash": self.tx_hash,
            "ledger": self.ledger,
            "path": self.path.value,
            "attempts": self.attempts,
            "polls": self.polls,
        }


def encoded_size(value: Any) -> int:
    """Size in bytes of a value's canonical ledger encoding."""
    return len(_canonical(value))

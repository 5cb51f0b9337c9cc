"""Error taxonomy for the ZKMind protocol.

Every error answers one question for the caller: did the shared ledger
state possibly change? Errors raised before a transaction was sent carry
``state_may_have_changed = False`` — nothing happened, retry freely.
Errors raised after an accepted send carry ``True`` — re-fetch the session before
retrying, because the transaction may still have landed.
"""

from __future__ import annotations

import enum
from typing import Optional


class ProtocolErrorCode(int, enum.Enum):
    """Rejection reasons. Codes 1-8 match the on-ledger contract errors."""
    GAME_NOT_FOUND = 1
    NOT_CODEMAKER = 2
    NOT_CODEBREAKER = 3
    INVALID_PHASE = 4
    INVALID_GUESS_VALUE = 5
    MAX_GUESSES_REACHED = 6
    INVALID_FEEDBACK = 7
    GAME_ALREADY_ENDED = 8
    SESSION_EXISTS = 9
    ALREADY_COMMITTED = 10
    INVALID_COMMITMENT = 11
    INVALID_PROOF_HASH = 12
    SELF_PLAY = 13
    INVALID_SESSION_ID = 14
    SCHEMA_MISMATCH = 15
    SECRET_UNKNOWN = 16
    SECRET_MISMATCH = 17


class ZKMindError(Exception):
    """Base class for all protocol errors."""

    state_may_have_changed: bool = False


class ProtocolViolation(ZKMindError):
    """Wrong actor, wrong phase, malformed value. Rejected locally, never retried."""

    def __init__(self, code: ProtocolErrorCode, message: str) -> None:
        super().__init__(f"{code.name}: {message}")
        self.code = code
        self.message = message


class SchemaMismatch(ProtocolViolation):
    """A ledger record did not match the fixed game schema."""

    def __init__(self, message: str) -> None:
        super().__init__(ProtocolErrorCode.SCHEMA_MISMATCH, message)


class LedgerError(ZKMindError):
    """Base class for failures reported by the ledger boundary."""


class SimulationFailed(LedgerError):
    """Simulation failed for a reason other than a contract error."""


class TransientLedgerError(LedgerError):
    """Simulation kept failing with a contract error after the retry budget.

    Most often the simulation view lags the committed state by a ledger.
    """

    def __init__(
        self,
        message: str,
        contract_error: Optional[int] = None,
        attempts: int = 0,
    ) -> None:
        super().__init__(message)
        self.contract_error = contract_error
        self.attempts = attempts


class FinalityError(LedgerError):
    """The ledger rejected or failed a transaction after it was sent.

    A send the ledger refused outright never landed and is raised with
    ``state_may_have_changed=False``.
    """

    def __init__(
        self,
        message: str,
        tx_hash: Optional[str] = None,
        state_may_have_changed: bool = True,
    ) -> None:
        super().__init__(message)
        self.tx_hash = tx_hash
        self.state_may_have_changed = state_may_have_changed


class OperationAbandoned(LedgerError):
    """The caller cancelled the operation.

    Cancelling before the send changes nothing. Cancelling while polling
    a sent transaction (``tx_hash`` set) leaves its outcome unknown.
    """

    def __init__(self, message: str, tx_hash: Optional[str] = None) -> None:
        super().__init__(message)
        self.tx_hash = tx_hash
        self.state_may_have_changed = tx_hash is not None


class ProofGenerationFailed(ZKMindError):
    """The prover was unavailable or the circuit rejected the inputs."""


class CommitmentSchemeMismatch(ZKMindError):
    """The circuit asserts a different commitment encoding than this package."""


class WalletError(ZKMindError):
    """The wallet could not produce a signature."""

    NOT_INSTALLED = "not_installed"
    USER_DECLINED = "user_declined"

    def __init__(self, reason: str, message: str) -> None:
        super().__init__(f"{reason}: {message}")
        self.reason = reason

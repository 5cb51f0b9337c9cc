"""The on-ledger game program.

Entry points mirror the deployed contract: ``new_game``, ``commit_code``,
``submit_guess``, ``submit_feedback``, read-only ``get_game`` and
``report_result``. Every mutating call re-runs the GameStateMachine
guards against the state the ledger holds at apply time, so of two
conflicting submissions only the first one to be applied succeeds.

Games live in temporary storage under ``("Game", session_id)`` with a
TTL of GAME_TTL_LEDGERS, extended on every write. An expired game reads
as GAME_NOT_FOUND.

The contract never sees a secret. It stores commitments, guesses,
feedback and proof hashes, and trusts the proof hash as an opaque value.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, Callable, Optional, Protocol

from zkmind.engine.state_machine import GameStateMachine
from zkmind.errors import ProtocolErrorCode, ProtocolViolation
from zkmind.ledger.codec import decode_game, encode_game
from zkmind.ledger.types import (
    Durability,
    Footprint,
    OperationKind,
    ResourceBudget,
    StorageKey,
    encoded_size,
)
from zkmind.models.game import MAX_GUESSES, Code, GameSession, ProofHash


GAME_TTL_LEDGERS = 518_400  # ~30 days of 5 s ledgers

INSTRUCTIONS_PER_CALL = 1_000_000
INSTRUCTIONS_PER_BYTE = 2_000


def game_storage_key(contract_id: str, session_id: int) -> StorageKey:
    return StorageKey(contract_id, Durability.TEMPORARY, ("Game", session_id))


class ContractError(Exception):
    """The contract rejected the call. Nothing was written."""

    def __init__(self, code: ProtocolErrorCode, message: str = "") -> None:
        super().__init__(f"Error(Contract, #{int(code)}) {code.name}: {message}")
        self.code = code


class HostError(Exception):
    """The host refused to run the call: auth, footprint or budget."""


@dataclass(frozen=True)
class StorageEntry:
    value: Any
    live_until: Optional[int] = None  # None: no expiry


class HostEnv:
    """Execution environment for one invocation.

    With ``authorized`` set to None the env runs in recording mode, as
    simulation does: every requested authorization is noted and granted,
    and every storage access is noted to build the footprint. Otherwise
    authorizations, footprint and budget are enforced.

    Writes are buffered in ``changes`` and deferred calls in ``deferred``;
    the ledger commits both only when the invocation succeeds.
    """

    def __init__(
        self,
        state: dict[StorageKey, StorageEntry],
        ledger_seq: int,
        authorized: Optional[frozenset[str]] = None,
        footprint: Optional[Footprint] = None,
        budget: Optional[ResourceBudget] = None,
    ) -> None:
        self._state = state
        self.ledger_seq = ledger_seq
        self._authorized = authorized
        self._footprint = footprint
        self._budget = budget
        self.changes: dict[StorageKey, StorageEntry] = {}
        self.deferred: list[Callable[[], None]] = []
        self.auth_requested: list[str] = []
        self._reads: set[StorageKey] = set()
        self._writes: set[StorageKey] = set()
        self._instructions = INSTRUCTIONS_PER_CALL
        self._read_bytes = 0
        self._write_bytes = 0

    # -- auth ----------------------------------------------------------

    def require_auth(self, address: str) -> None:
        if address not in self.auth_requested:
            self.auth_requested.append(address)
        if self._authorized is not None and address not in self._authorized:
            raise HostError(f"missing authorization for {address}")

    # -- storage -------------------------------------------------------

    def _live(self, key: StorageKey) -> Optional[StorageEntry]:
        entry = self.changes.get(key, self._state.get(key))
        if entry is None:
            return None
        if entry.live_until is not None and entry.live_until < self.ledger_seq:
            return None
        return entry

    def get(self, key: StorageKey) -> Any:
        if self._footprint is not None and not self._footprint.allows_read(key):
            raise HostError(f"storage key {key.key} outside footprint")
        self._reads.add(key)
        entry = self._live(key)
        if entry is None:
            return None
        self._charge(read_bytes=encoded_size(entry.value))
        return entry.value

    def set(self, key: StorageKey, value: Any, ttl_ledgers: Optional[int] = None) -> None:
        if self._footprint is not None and not self._footprint.allows_write(key):
            raise HostError(f"storage key {key.key} is read-only in footprint")
        self._writes.add(key)
        previous = self._live(key)
        live_until = previous.live_until if previous is not None else None
        if ttl_ledgers is not None:
            live_until = max(live_until or 0, self.ledger_seq + ttl_ledgers)
        self._charge(write_bytes=encoded_size(value))
        self.changes[key] = StorageEntry(value=value, live_until=live_until)

    def defer(self, call: Callable[[], None]) -> None:
        self.deferred.append(call)

    # -- metering ------------------------------------------------------

    def _charge(self, read_bytes: int = 0, write_bytes: int = 0) -> None:
        self._read_bytes += read_bytes
        self._write_bytes += write_bytes
        self._instructions += (read_bytes + write_bytes) * INSTRUCTIONS_PER_BYTE
        if self._budget is not None and not self._budget.covers(self.usage):
            raise HostError(
                f"resource limit exceeded: used {self.usage.to_dict()}, "
                f"budget {self._budget.to_dict()}"
            )

    @property
    def usage(self) -> ResourceBudget:
        return ResourceBudget(
            instructions=self._instructions,
            read_bytes=self._read_bytes,
            write_bytes=self._write_bytes,
        )

    def recorded_footprint(self) -> Footprint:
        return Footprint(
            read_only=frozenset(self._reads - self._writes),
            read_write=frozenset(self._writes),
        )


class GameHub(Protocol):
    """Receives finished game results."""

    def end_game(self, session_id: int, codemaker_won: bool) -> None:
        ...


@dataclass
class RecordingGameHub:
    """A GameHub that keeps reported results in memory."""
    results: dict[int, bool] = field(default_factory=dict)

    def end_game(self, session_id: int, codemaker_won: bool) -> None:
        self.results[session_id] = codemaker_won


class GameContract:
    """Dispatches invocations to entry points over a HostEnv."""

    def __init__(
        self,
        contract_id: str,
        hub: Optional[GameHub] = None,
        max_guesses: int = MAX_GUESSES,
        ttl_ledgers: int = GAME_TTL_LEDGERS,
    ) -> None:
        self.contract_id = contract_id
        self.hub = hub if hub is not None else RecordingGameHub()
        self.ttl_ledgers = ttl_ledgers
        self._machine = GameStateMachine(max_guesses=max_guesses)
        self._entry_points: dict[OperationKind, Callable[..., Any]] = {
            OperationKind.NEW_GAME: self.new_game,
            OperationKind.COMMIT_CODE: self.commit_code,
            OperationKind.SUBMIT_GUESS: self.submit_guess,
            OperationKind.SUBMIT_FEEDBACK: self.submit_feedback,
            OperationKind.GET_GAME: self.get_game,
            OperationKind.REPORT_RESULT: self.report_result,
        }

    @property
    def instance_key(self) -> StorageKey:
        return StorageKey(self.contract_id, Durability.INSTANCE, ("Instance",))

    def game_key(self, session_id: int) -> StorageKey:
        return game_storage_key(self.contract_id, session_id)

    def install(self, state: dict[StorageKey, StorageEntry]) -> None:
        """Write the contract instance entry into fresh ledger state."""
        state[self.instance_key] = StorageEntry(
            value={"max_guesses": self._machine.max_guesses, "ttl_ledgers": self.ttl_ledgers},
        )

    def invoke(self, env: HostEnv, function: OperationKind, args: tuple) -> Any:
        if env.get(self.instance_key) is None:
            raise HostError(f"contract {self.contract_id} is not installed")
        entry_point = self._entry_points.get(function)
        if entry_point is None:
            raise HostError(f"unknown entry point: {function}")
        try:
            return entry_point(env, *args)
        except ProtocolViolation as e:
            raise ContractError(e.code, e.message) from e
        except TypeError as e:
            raise HostError(f"bad arguments for {function.value}: {e}") from e

    # ------------------------------------------------------------------
    # Storage helpers
    # ------------------------------------------------------------------

    def _load(self, env: HostEnv, session_id: int) -> Optional[GameSession]:
        record = env.get(self.game_key(session_id))
        return decode_game(record) if record is not None else None

    def _require(self, env: HostEnv, session_id: int) -> GameSession:
        session = self._load(env, session_id)
        if session is None:
            raise ContractError(
                ProtocolErrorCode.GAME_NOT_FOUND, f"no game for session {session_id}"
            )
        return session

    def _save(self, env: HostEnv, session: GameSession) -> None:
        env.set(self.game_key(session.session_id), encode_game(session), self.ttl_ledgers)

    # ------------------------------------------------------------------
    # Entry points
    # ------------------------------------------------------------------

    def new_game(self, env: HostEnv, session_id: int, codemaker: str, codebreaker: str) -> None:
        env.require_auth(codemaker)
        env.require_auth(codebreaker)
        existing = self._load(env, session_id)
        self._save(env, self._machine.initiate(session_id, codemaker, codebreaker, existing))

    def commit_code(self, env: HostEnv, session_id: int, codemaker: str, commitment: bytes) -> None:
        env.require_auth(codemaker)
        session = self._require(env, session_id)
        self._save(env, self._machine.commit_code(session, codemaker, commitment))

    def submit_guess(self, env: HostEnv, session_id: int, codebreaker: str, guess: tuple) -> None:
        env.require_auth(codebreaker)
        session = self._require(env, session_id)
        self._save(env, self._machine.submit_guess(session, codebreaker, Code(tuple(guess))))

    def submit_feedback(
        self,
        env: HostEnv,
        session_id: int,
        codemaker: str,
        correct_position: int,
        correct_color: int,
        proof_hash: bytes,
    ) -> None:
        env.require_auth(codemaker)
        session = self._require(env, session_id)
        updated = self._machine.submit_feedback(
            session, codemaker, correct_position, correct_color, ProofHash.decode(proof_hash),
        )
        self._save(env, updated)

    def get_game(self, env: HostEnv, session_id: int) -> dict[str, Any]:
        return encode_game(self._require(env, session_id))

    def report_result(self, env: HostEnv, session_id: int) -> bool:
        """Report a finished game to the hub. Returns codemaker_won."""
        session = self._require(env, session_id)
        if not session.is_finished:
            raise ContractError(
                ProtocolErrorCode.INVALID_PHASE,
                f"session {session_id} is {session.phase.value}, not finished",
            )
        codemaker_won = session.winner == session.codemaker
        env.defer(lambda: self.hub.end_game(session_id, codemaker_won))
        return codemaker_won

"""Fixed-schema codec for game records in ledger storage.

The ledger stores a game as a flat map with exactly these fields:

    session_id     u32
    codemaker      address
    codebreaker    address
    phase          u32 (0..3)
    commitment     32 bytes, all zero until committed
    guesses        list of 4-symbol lists, one per completed guess
    feedbacks      list of {correct_position, correct_color, proof_hash}
    guess_count    u32, == len(guesses) == len(feedbacks)
    max_guesses    u32
    winner         address or None
    current_guess  4-symbol list while waiting for feedback, else empty

Decoding is exhaustive: a missing field, an unknown field, a wrong type
or an inconsistent combination raises SchemaMismatch. Nothing is filled
in with a default.
"""

from __future__ import annotations

from typing import Any, Mapping

from zkmind.errors import ProtocolViolation, SchemaMismatch
from zkmind.models.game import (
    DIGEST_SIZE,
    MAX_SESSION_ID,
    Code,
    Feedback,
    GamePhase,
    GameSession,
    GuessRecord,
    ProofHash,
)


GAME_FIELDS = frozenset({
    "session_id",
    "codemaker",
    "codebreaker",
    "phase",
    "commitment",
    "guesses",
    "feedbacks",
    "guess_count",
    "max_guesses",
    "winner",
    "current_guess",
})
FEEDBACK_FIELDS = frozenset({"correct_position", "correct_color", "proof_hash"})

UNSET_COMMITMENT = bytes(DIGEST_SIZE)


def encode_game(session: GameSession) -> dict[str, Any]:
    """Encode a session into its ledger record."""
    return {
        "session_id": session.session_id,
        "codemaker": session.codemaker,
        "codebreaker": session.codebreaker,
        "phase": session.phase.ledger_code,
        "commitment": session.commitment if session.commitment is not None else UNSET_COMMITMENT,
        "guesses": [list(r.guess.symbols) for r in session.records],
        "feedbacks": [
            {
                "correct_position": r.feedback.exact_matches,
                "correct_color": r.feedback.color_matches,
                "proof_hash": r.proof_hash.encode(),
            }
            for r in session.records
        ],
        "guess_count": session.guess_count,
        "max_guesses": session.max_guesses,
        "winner": session.winner,
        "current_guess": list(session.pending_guess.symbols) if session.pending_guess else [],
    }


def _require_fields(record: Mapping[str, Any], expected: frozenset, label: str) -> None:
    if not isinstance(record, Mapping):
        raise SchemaMismatch(f"{label} must be a map, got {type(record).__name__}")
    missing = expected - set(record)
    unknown = set(record) - expected
    if missing:
        raise SchemaMismatch(f"{label} missing fields: {sorted(missing)}")
    if unknown:
        raise SchemaMismatch(f"{label} has unknown fields: {sorted(unknown)}")


def _u32(record: Mapping[str, Any], name: str) -> int:
    value = record[name]
    if isinstance(value, bool) or not isinstance(value, int) or not 0 <= value <= MAX_SESSION_ID:
        raise SchemaMismatch(f"{name} must be a u32, got {value!r}")
    return value


def _address(record: Mapping[str, Any], name: str) -> str:
    value = record[name]
    if not isinstance(value, str) or not value:
        raise SchemaMismatch(f"{name} must be a non-empty address, got {value!r}")
    return value


def _code(value: Any, label: str) -> Code:
    if not isinstance(value, (list, tuple)):
        raise SchemaMismatch(f"{label} must be a list, got {type(value).__name__}")
    try:
        return Code(tuple(value))
    except ProtocolViolation as e:
        raise SchemaMismatch(f"{label}: {e.message}") from e


def _record(guess: Any, feedback: Any, index: int) -> GuessRecord:
    _require_fields(feedback, FEEDBACK_FIELDS, f"feedbacks[{index}]")
    raw_hash = feedback["proof_hash"]
    try:
        return GuessRecord(
            guess=_code(guess, f"guesses[{index}]"),
            feedback=Feedback(
                exact_matches=feedback["correct_position"],
                color_matches=feedback["correct_color"],
            ),
            proof_hash=ProofHash.decode(raw_hash),
        )
    except ProtocolViolation as e:
        if isinstance(e, SchemaMismatch):
            raise
        raise SchemaMismatch(f"feedbacks[{index}]: {e.message}") from e


def decode_game(record: Mapping[str, Any]) -> GameSession:
    """Decode a ledger record, rejecting anything outside the fixed schema."""
    _require_fields(record, GAME_FIELDS, "game record")

    session_id = _u32(record, "session_id")
    codemaker = _address(record, "codemaker")
    codebreaker = _address(record, "codebreaker")
    guess_count = _u32(record, "guess_count")
    max_guesses = _u32(record, "max_guesses")

    try:
        phase = GamePhase.from_ledger_code(_u32(record, "phase"))
    except ValueError as e:
        raise SchemaMismatch(str(e)) from e

    commitment = record["commitment"]
    if not isinstance(commitment, (bytes, bytearray)) or len(commitment) != DIGEST_SIZE:
        raise SchemaMismatch(f"commitment must be {DIGEST_SIZE} bytes")
    committed = bytes(commitment) != UNSET_COMMITMENT
    if committed == (phase == GamePhase.WAITING_FOR_COMMITMENT):
        raise SchemaMismatch(
            f"commitment {'set' if committed else 'unset'} in phase {phase.value}"
        )

    guesses = record["guesses"]
    feedbacks = record["feedbacks"]
    if not isinstance(guesses, (list, tuple)) or not isinstance(feedbacks, (list, tuple)):
        raise SchemaMismatch("guesses and feedbacks must be lists")
    if not len(guesses) == len(feedbacks) == guess_count:
        raise SchemaMismatch(
            f"guess_count={guess_count} but {len(guesses)} guesses "
            f"and {len(feedbacks)} feedbacks"
        )
    if guess_count > max_guesses:
        raise SchemaMismatch(f"guess_count={guess_count} exceeds max_guesses={max_guesses}")
    records = tuple(_record(g, f, i) for i, (g, f) in enumerate(zip(guesses, feedbacks)))

    current_guess = record["current_guess"]
    if not isinstance(current_guess, (list, tuple)):
        raise SchemaMismatch("current_guess must be a list")
    pending = _code(current_guess, "current_guess") if current_guess else None
    if (pending is not None) != (phase == GamePhase.WAITING_FOR_FEEDBACK):
        raise SchemaMismatch(f"current_guess inconsistent with phase {phase.value}")

    winner = record["winner"]
    if winner is not None:
        winner = _address(record, "winner")
        if winner not in (codemaker, codebreaker):
            raise SchemaMismatch(f"winner {winner} is not a player")
    if (winner is not None) != (phase == GamePhase.FINISHED):
        raise SchemaMismatch(f"winner inconsistent with phase {phase.value}")

    return GameSession(
        session_id=session_id,
        codemaker=codemaker,
        codebreaker=codebreaker,
        phase=phase,
        max_guesses=max_guesses,
        commitment=bytes(commitment) if committed else None,
        records=records,
        pending_guess=pending,
        winner=winner,
    )

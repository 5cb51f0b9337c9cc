"""Game state machine — enforces the session lifecycle.

    lobby → waiting_for_commitment → waiting_for_guess
          → waiting_for_feedback → {waiting_for_guess | finished}

Transitions are fail-closed: anything not explicitly allowed is rejected
with a ProtocolViolation. Sessions are immutable, so every successful
transition returns a new snapshot and a rejected one leaves the caller's
snapshot untouched.

The same machine runs in two places: locally, to reject an illegal move
before anything is sent, and inside the ledger contract, where the
guards are re-checked at commit time. That second check is what resolves
two conflicting submissions: the first committed write wins.
"""

from __future__ import annotations

from dataclasses import replace
from typing import Optional

from zkmind.errors import ProtocolErrorCode, ProtocolViolation
from zkmind.models.game import (
    DIGEST_SIZE,
    MAX_GUESSES,
    MAX_SESSION_ID,
    Code,
    Feedback,
    GamePhase,
    GameSession,
    GuessRecord,
    ProofHash,
)


# Legal transitions: {from_phase: {allowed_to_phases}}
_TRANSITIONS: dict[GamePhase, set[GamePhase]] = {
    GamePhase.LOBBY: {GamePhase.WAITING_FOR_COMMITMENT},
    GamePhase.WAITING_FOR_COMMITMENT: {GamePhase.WAITING_FOR_GUESS},
    GamePhase.WAITING_FOR_GUESS: {GamePhase.WAITING_FOR_FEEDBACK},
    GamePhase.WAITING_FOR_FEEDBACK: {
        GamePhase.WAITING_FOR_GUESS,
        GamePhase.FINISHED,
    },
    # Terminal
    GamePhase.FINISHED: set(),
}


class GameStateMachine:
    """Validates and applies game transitions.

    Pure computation: persistence and submission are handled by the
    ledger contract and the service layer.
    """

    def __init__(self, max_guesses: int = MAX_GUESSES) -> None:
        if max_guesses < 1:
            raise ValueError("max_guesses must be >= 1")
        self._max_guesses = max_guesses

    @property
    def max_guesses(self) -> int:
        return self._max_guesses

    @staticmethod
    def valid_transitions(phase: GamePhase) -> set[GamePhase]:
        return set(_TRANSITIONS.get(phase, set()))

    @staticmethod
    def is_terminal(phase: GamePhase) -> bool:
        return not _TRANSITIONS.get(phase)

    # ------------------------------------------------------------------
    # Transitions
    # ------------------------------------------------------------------

    def initiate(
        self,
        session_id: int,
        codemaker: str,
        codebreaker: str,
        existing: Optional[GameSession] = None,
    ) -> GameSession:
        """Create a session in waiting_for_commitment."""
        if existing is not None:
            raise ProtocolViolation(
                ProtocolErrorCode.SESSION_EXISTS,
                f"session {session_id} already exists",
            )
        if isinstance(session_id, bool) or not isinstance(session_id, int) \
                or not 0 <= session_id <= MAX_SESSION_ID:
            raise ProtocolViolation(
                ProtocolErrorCode.INVALID_SESSION_ID,
                f"session id {session_id!r} is not an unsigned 32-bit integer",
            )
        if not codemaker or not codebreaker:
            raise ProtocolViolation(
                ProtocolErrorCode.INVALID_SESSION_ID,
                "both player identities are required",
            )
        if codemaker == codebreaker:
            raise ProtocolViolation(
                ProtocolErrorCode.SELF_PLAY,
                "codemaker and codebreaker must be different identities",
            )

        draft = GameSession(
            session_id=session_id,
            codemaker=codemaker,
            codebreaker=codebreaker,
            phase=GamePhase.LOBBY,
            max_guesses=self._max_guesses,
        )
        return self._move(draft, GamePhase.WAITING_FOR_COMMITMENT)

    def commit_code(self, session: GameSession, actor: str, commitment: bytes) -> GameSession:
        """Record the CodeMaker's commitment. Allowed exactly once."""
        self._require_phase(session, GamePhase.WAITING_FOR_COMMITMENT)
        self._require_codemaker(session, actor)
        if session.commitment is not None:
            raise ProtocolViolation(
                ProtocolErrorCode.ALREADY_COMMITTED,
                f"session {session.session_id} already has a commitment",
            )
        if not isinstance(commitment, (bytes, bytearray)) or len(commitment) != DIGEST_SIZE:
            raise ProtocolViolation(
                ProtocolErrorCode.INVALID_COMMITMENT,
                f"commitment must be {DIGEST_SIZE} bytes",
            )
        if not any(commitment):
            raise ProtocolViolation(
                ProtocolErrorCode.INVALID_COMMITMENT,
                "all-zero commitment is reserved for 'not committed'",
            )
        return self._move(session, GamePhase.WAITING_FOR_GUESS, commitment=bytes(commitment))

    def submit_guess(self, session: GameSession, actor: str, guess: Code) -> GameSession:
        """Record the CodeBreaker's next guess as pending."""
        self._require_phase(session, GamePhase.WAITING_FOR_GUESS)
        if actor != session.codebreaker:
            raise ProtocolViolation(
                ProtocolErrorCode.NOT_CODEBREAKER,
                f"{actor} is not the codebreaker of session {session.session_id}",
            )
        if session.guess_count >= session.max_guesses:
            raise ProtocolViolation(
                ProtocolErrorCode.MAX_GUESSES_REACHED,
                f"session {session.session_id} used all {session.max_guesses} guesses",
            )
        if not isinstance(guess, Code):
            guess = Code(tuple(guess))
        return self._move(
            session, GamePhase.WAITING_FOR_FEEDBACK, pending_guess=Code(guess.symbols)
        )

    def submit_feedback(
        self,
        session: GameSession,
        actor: str,
        exact_matches: int,
        color_matches: int,
        proof_hash: ProofHash,
    ) -> GameSession:
        """Consume the pending guess and append its GuessRecord."""
        self._require_phase(session, GamePhase.WAITING_FOR_FEEDBACK)
        self._require_codemaker(session, actor)
        feedback = Feedback(exact_matches=exact_matches, color_matches=color_matches)
        if not isinstance(proof_hash, ProofHash):
            raise ProtocolViolation(
                ProtocolErrorCode.INVALID_PROOF_HASH, "proof_hash must be a ProofHash"
            )
        if session.pending_guess is None:
            # Unreachable through this machine; guards hand-built sessions.
            raise ProtocolViolation(
                ProtocolErrorCode.INVALID_PHASE,
                f"session {session.session_id} has no pending guess",
            )

        records = session.records + (
            GuessRecord(guess=session.pending_guess, feedback=feedback, proof_hash=proof_hash),
        )
        if feedback.is_solved:
            return self._move(
                session, GamePhase.FINISHED,
                records=records, pending_guess=None, winner=session.codebreaker,
            )
        if len(records) >= session.max_guesses:
            return self._move(
                session, GamePhase.FINISHED,
                records=records, pending_guess=None, winner=session.codemaker,
            )
        return self._move(
            session, GamePhase.WAITING_FOR_GUESS, records=records, pending_guess=None
        )

    # ------------------------------------------------------------------
    # Guards
    # ------------------------------------------------------------------

    @staticmethod
    def _require_phase(session: GameSession, expected: GamePhase) -> None:
        if session.phase == GamePhase.FINISHED:
            raise ProtocolViolation(
                ProtocolErrorCode.GAME_ALREADY_ENDED,
                f"session {session.session_id} is finished",
            )
        if session.phase != expected:
            raise ProtocolViolation(
                ProtocolErrorCode.INVALID_PHASE,
                f"session {session.session_id} is {session.phase.value}, "
                f"expected {expected.value}",
            )

    @staticmethod
    def _require_codemaker(session: GameSession, actor: str) -> None:
        if actor != session.codemaker:
            raise ProtocolViolation(
                ProtocolErrorCode.NOT_CODEMAKER,
                f"{actor} is not the codemaker of session {session.session_id}",
            )

    @staticmethod
    def _move(session: GameSession, target: GamePhase, **changes) -> GameSession:
        if target not in _TRANSITIONS.get(session.phase, set()):
            raise ProtocolViolation(
                ProtocolErrorCode.INVALID_PHASE,
                f"Illegal transition: {session.phase.value} → {target.value}",
            )
        return replace(session, phase=target, **changes)

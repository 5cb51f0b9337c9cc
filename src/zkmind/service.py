"""ZKMind service — one party's facade over the whole protocol.

Orchestrates, for the identity behind ``wallet``:
- Session lifecycle (new_game, commit_code, submit_guess, submit_feedback)
- Proof generation for feedback, with an explicit opt-in fallback
- Ledger submission through the LedgerTransactor
- Reads (authoritative direct storage read)
- Result reporting to the game hub and transcript anchoring
- The local audit trail (event log)

Every public operation returns a ServiceResult. Protocol errors become
``success=False`` with the error class, the protocol code where there is
one, and ``state_may_have_changed`` so the caller knows whether to
re-fetch before retrying.

Each move is checked twice: locally by the GameStateMachine against an
authoritative read, so an illegal move never costs a transaction, and
again by the ledger contract when the transaction is applied.

The secret stays in this process. It is held by a SecretKeeper, used by
the FeedbackEngine and the ProofPipeline, and never handed to the
transactor, the event log or a ServiceResult.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import Any, Iterable, Optional, Sequence, Union

from zkmind.config import ProtocolConfig
from zkmind.crypto.anchor import anchor_to_chain, transcript_digest
from zkmind.crypto.commitment import CommitmentScheme
from zkmind.crypto.proof_pipeline import ProofPipeline
from zkmind.engine.feedback import FeedbackEngine
from zkmind.engine.state_machine import GameStateMachine
from zkmind.errors import (
    ProofGenerationFailed,
    ProtocolErrorCode,
    ProtocolViolation,
    ZKMindError,
)
from zkmind.ledger.transactor import LedgerTransactor
from zkmind.ledger.types import Operation, SubmissionOutcome, SubmissionPath
from zkmind.models.game import Code, Feedback, GamePhase, GameSession, ProofHash, Secret
from zkmind.persistence.event_log import EventKind, EventLog
from zkmind.wallet import Wallet

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class ServiceResult:
    """Result of a service operation."""
    success: bool
    errors: list[str] = field(default_factory=list)
    data: dict[str, Any] = field(default_factory=dict)


def _failure(error: ZKMindError) -> ServiceResult:
    data: dict[str, Any] = {
        "error": type(error).__name__,
        "state_may_have_changed": error.state_may_have_changed,
    }
    if isinstance(error, ProtocolViolation):
        data["code"] = error.code.name
    tx_hash = getattr(error, "tx_hash", None)
    if tx_hash:
        data["tx_hash"] = tx_hash
    return ServiceResult(success=False, errors=[str(error)], data=data)


class SecretKeeper:
    """Holds the CodeMaker's secrets, per session, in process memory only."""

    def __init__(self) -> None:
        self._secrets: dict[int, Secret] = {}

    def put(self, session_id: int, secret: Secret) -> None:
        self._secrets[session_id] = secret

    def get(self, session_id: int) -> Secret:
        secret = self._secrets.get(session_id)
        if secret is None:
            raise ProtocolViolation(
                ProtocolErrorCode.SECRET_UNKNOWN,
                f"no secret held for session {session_id}",
            )
        return secret

    def forget(self, session_id: int) -> None:
        self._secrets.pop(session_id, None)

    def __contains__(self, session_id: object) -> bool:
        return session_id in self._secrets

    def __repr__(self) -> str:
        return f"SecretKeeper(sessions={sorted(self._secrets)})"


class ZKMindService:
    """Protocol facade for one player.

    Usage:
        config = ProtocolConfig.from_config_dir(config_dir).with_env_overrides()
        transactor = LedgerTransactor(client, config.ledger.contract_id, config.ledger)
        maker = ZKMindService(transactor, maker_wallet, pipeline=pipeline)
        breaker = ZKMindService(transactor, breaker_wallet)

        maker.new_game(7, breaker_wallet)
        maker.commit_code(7, Secret.of(0, 1, 2, 3))
        breaker.submit_guess(7, Code.of(0, 1, 2, 3))
        maker.submit_feedback(7)
    """

    def __init__(
        self,
        transactor: LedgerTransactor,
        wallet: Wallet,
        pipeline: Optional[ProofPipeline] = None,
        event_log: Optional[EventLog] = None,
        config: Optional[ProtocolConfig] = None,
        secrets: Optional[SecretKeeper] = None,
    ) -> None:
        self._transactor = transactor
        self._wallet = wallet
        self._pipeline = pipeline
        self._event_log = event_log if event_log is not None else EventLog()
        self._config = config or ProtocolConfig()
        self._machine = GameStateMachine(max_guesses=self._config.max_guesses)
        self._secrets = secrets if secrets is not None else SecretKeeper()

    @property
    def address(self) -> str:
        return self._wallet.address

    @property
    def event_log(self) -> EventLog:
        return self._event_log

    def close(self) -> None:
        """Release the proving backend, if one was acquired."""
        if self._pipeline is not None:
            self._pipeline.close()

    def __enter__(self) -> ZKMindService:
        return self

    def __exit__(self, *exc_info: object) -> None:
        self.close()

    # ------------------------------------------------------------------
    # Session lifecycle
    # ------------------------------------------------------------------

    def new_game(self, session_id: int, codebreaker: Wallet) -> ServiceResult:
        """Start a session with this wallet as CodeMaker.

        Both players authorize the call; the CodeBreaker's wallet only
        signs an authorization entry.
        """
        try:
            existing = self._transactor.get_game(session_id)
            self._machine.initiate(session_id, self.address, codebreaker.address, existing)
            outcome = self._submit(
                Operation.new_game(session_id, self.address, codebreaker.address),
                cosigners=(codebreaker,),
            )
        except ZKMindError as e:
            return self._failed(e, session_id)

        errors = self._record(EventKind.GAME_INITIATED, {
            "session_id": session_id,
            "codemaker": self.address,
            "codebreaker": codebreaker.address,
            **outcome.to_dict(),
        })
        return ServiceResult(success=True, errors=errors, data={
            "session_id": session_id,
            "phase": GamePhase.WAITING_FOR_COMMITMENT.value,
            **outcome.to_dict(),
        })

    def commit_code(self, session_id: int, secret: Union[Secret, Code, str]) -> ServiceResult:
        """Commit to a secret code and keep the secret locally."""
        try:
            secret = self._as_secret(secret)
            commitment = CommitmentScheme.commit(secret)
            session = self._require_session(session_id)
            self._machine.commit_code(session, self.address, commitment)
        except ZKMindError as e:
            return self._failed(e, session_id)

        # Held before sending: a commitment that lands after a lost
        # response must still be openable.
        self._secrets.put(session_id, secret)
        try:
            outcome = self._submit(Operation.commit_code(session_id, self.address, commitment))
        except ZKMindError as e:
            if not e.state_may_have_changed:
                self._secrets.forget(session_id)
            return self._failed(e, session_id)

        errors = self._record(EventKind.CODE_COMMITTED, {
            "session_id": session_id,
            "commitment": commitment.hex(),
            "scheme": CommitmentScheme.SCHEME_ID,
            **outcome.to_dict(),
        })
        return ServiceResult(success=True, errors=errors, data={
            "session_id": session_id,
            "commitment": commitment.hex(),
            "phase": GamePhase.WAITING_FOR_GUESS.value,
            **outcome.to_dict(),
        })

    def submit_guess(
        self,
        session_id: int,
        guess: Union[Code, str, Sequence[int]],
    ) -> ServiceResult:
        try:
            guess = self._as_code(guess)
            session = self._require_session(session_id)
            self._machine.submit_guess(session, self.address, guess)
            outcome = self._submit(
                Operation.submit_guess(session_id, self.address, guess.to_list())
            )
        except ZKMindError as e:
            return self._failed(e, session_id)

        errors = self._record(EventKind.GUESS_SUBMITTED, {
            "session_id": session_id,
            "guess": guess.to_list(),
            "guess_number": session.guess_count + 1,
            **outcome.to_dict(),
        })
        return ServiceResult(success=True, errors=errors, data={
            "session_id": session_id,
            "guess": guess.to_list(),
            "phase": GamePhase.WAITING_FOR_FEEDBACK.value,
            **outcome.to_dict(),
        })

    def submit_feedback(self, session_id: int, allow_fallback: bool = False) -> ServiceResult:
        """Score the pending guess, prove it, and submit the feedback.

        With ``allow_fallback`` a prover failure degrades to a fallback
        digest, tagged as such on the ledger. Without it the failure is
        returned and nothing is submitted.
        """
        warnings: list[str] = []
        try:
            session = self._require_session(session_id)
            self._require_feedback_turn(session)
            guess = session.pending_guess
            secret = self._secrets.get(session_id)
            if not CommitmentScheme.open(session.commitment, secret):
                raise ProtocolViolation(
                    ProtocolErrorCode.SECRET_MISMATCH,
                    f"held secret does not open the commitment of session {session_id}",
                )
            feedback = FeedbackEngine.compute(secret, guess)
            proof_hash, locally_verified, warnings = self._prove(
                session, secret, guess, feedback, allow_fallback,
            )
            updated = self._machine.submit_feedback(
                session, self.address,
                feedback.exact_matches, feedback.color_matches, proof_hash,
            )
            outcome = self._submit(Operation.submit_feedback(
                session_id, self.address,
                feedback.exact_matches, feedback.color_matches, proof_hash.encode(),
            ))
        except ZKMindError as e:
            return self._failed(e, session_id)

        errors = warnings + self._record(EventKind.FEEDBACK_SUBMITTED, {
            "session_id": session_id,
            "guess": guess.to_list(),
            "exact_matches": feedback.exact_matches,
            "color_matches": feedback.color_matches,
            "proof_hash": proof_hash.hex(),
            "proof_kind": proof_hash.kind.value,
            **outcome.to_dict(),
        })
        if updated.is_finished:
            errors += self._record(EventKind.GAME_FINISHED, {
                "session_id": session_id,
                "winner": updated.winner,
                "guess_count": updated.guess_count,
            })
            self._secrets.forget(session_id)

        return ServiceResult(success=True, errors=errors, data={
            "session_id": session_id,
            "exact_matches": feedback.exact_matches,
            "color_matches": feedback.color_matches,
            "proof_hash": proof_hash.hex(),
            "proof_kind": proof_hash.kind.value,
            "locally_verified": locally_verified,
            "phase": updated.phase.value,
            "winner": updated.winner,
            **outcome.to_dict(),
        })

    def report_result(self, session_id: int) -> ServiceResult:
        """Report a finished game to the game hub."""
        try:
            session = self._require_session(session_id)
            if not session.is_finished:
                raise ProtocolViolation(
                    ProtocolErrorCode.INVALID_PHASE,
                    f"session {session_id} is {session.phase.value}, not finished",
                )
            outcome = self._transactor.report_result(session_id, self._wallet)
        except ZKMindError as e:
            return self._failed(e, session_id)

        codemaker_won = bool(outcome.return_value)
        errors = self._record(EventKind.RESULT_REPORTED, {
            "session_id": session_id,
            "codemaker_won": codemaker_won,
            **outcome.to_dict(),
        })
        return ServiceResult(success=True, errors=errors, data={
            "session_id": session_id,
            "winner": session.winner,
            "codemaker_won": codemaker_won,
            **outcome.to_dict(),
        })

    # ------------------------------------------------------------------
    # Reads and audit
    # ------------------------------------------------------------------

    def get_game(self, session_id: int) -> ServiceResult:
        """Authoritative read of the session. Never changes state."""
        try:
            session = self._require_session(session_id)
        except ZKMindError as e:
            return _failure(e)
        data = session.to_dict()
        role = session.role_of(self.address)
        data["role"] = role.value if role else None
        return ServiceResult(success=True, data=data)

    def audit_proof(self, session_id: int, guess_index: int, proof: bytes) -> ServiceResult:
        """Check disclosed proof bytes against a stored feedback record."""
        if self._pipeline is None:
            return ServiceResult(success=False, errors=["No proof pipeline configured"])
        try:
            session = self._require_session(session_id)
            if not 0 <= guess_index < session.guess_count:
                return ServiceResult(
                    success=False,
                    errors=[f"Guess index {guess_index} out of range 0..{session.guess_count - 1}"],
                )
            record = session.records[guess_index]
            valid = self._pipeline.audit(proof, record)
        except ZKMindError as e:
            return _failure(e)
        return ServiceResult(success=True, data={
            "session_id": session_id,
            "guess_index": guess_index,
            "valid": valid,
            "proof_kind": record.proof_hash.kind.value,
        })

    def anchor_transcript(self, session_id: int, rpc_url: str, private_key: str) -> ServiceResult:
        """Anchor a finished session's transcript digest on Ethereum."""
        try:
            session = self._require_session(session_id)
            if not session.is_finished:
                raise ProtocolViolation(
                    ProtocolErrorCode.INVALID_PHASE,
                    f"session {session_id} is {session.phase.value}, not finished",
                )
        except ZKMindError as e:
            return _failure(e)

        settings = self._config.anchor
        try:
            record = anchor_to_chain(
                session, rpc_url, private_key,
                chain_id=settings.chain_id,
                gas=settings.gas,
                gas_price_gwei=settings.gas_price_gwei,
            )
        except Exception as e:
            logger.warning("Anchoring session %d failed: %s", session_id, e)
            return ServiceResult(success=False, errors=[f"Anchoring failed: {e}"], data={
                "transcript_digest": transcript_digest(session),
            })

        errors = self._record(EventKind.TRANSCRIPT_ANCHORED, record.to_dict())
        return ServiceResult(success=True, errors=errors, data=record.to_dict())

    # ------------------------------------------------------------------
    # Internals
    # ------------------------------------------------------------------

    def _require_session(self, session_id: int) -> GameSession:
        session = self._transactor.get_game(session_id)
        if session is None:
            raise ProtocolViolation(
                ProtocolErrorCode.GAME_NOT_FOUND, f"no game for session {session_id}"
            )
        return session

    def _require_feedback_turn(self, session: GameSession) -> None:
        """Reject before the secret or the prover is touched."""
        if session.is_finished:
            raise ProtocolViolation(
                ProtocolErrorCode.GAME_ALREADY_ENDED,
                f"session {session.session_id} is finished",
            )
        if session.phase != GamePhase.WAITING_FOR_FEEDBACK or session.pending_guess is None:
            raise ProtocolViolation(
                ProtocolErrorCode.INVALID_PHASE,
                f"session {session.session_id} is {session.phase.value}, "
                f"expected {GamePhase.WAITING_FOR_FEEDBACK.value}",
            )
        if self.address != session.codemaker:
            raise ProtocolViolation(
                ProtocolErrorCode.NOT_CODEMAKER,
                f"{self.address} is not the codemaker of session {session.session_id}",
            )

    @staticmethod
    def _as_code(value: Union[Code, str, Iterable[int]]) -> Code:
        if isinstance(value, Code):
            return Code(value.symbols)
        if isinstance(value, str):
            return Code.parse(value)
        return Code(tuple(value))

    @classmethod
    def _as_secret(cls, value: Union[Secret, Code, str]) -> Secret:
        if isinstance(value, Secret):
            return value
        return Secret(cls._as_code(value).symbols)

    def _prove(
        self,
        session: GameSession,
        secret: Secret,
        guess: Code,
        feedback: Feedback,
        allow_fallback: bool,
    ) -> tuple[ProofHash, Optional[bool], list[str]]:
        """Return (proof_hash, locally_verified, warnings)."""
        warnings: list[str] = []
        try:
            if self._pipeline is None:
                raise ProofGenerationFailed("no proof pipeline configured")
            result = self._pipeline.prepare_and_prove(secret, session.commitment, guess, feedback)
        except ProofGenerationFailed as e:
            if not allow_fallback:
                raise
            logger.warning("Proof generation failed, using fallback digest: %s", e)
            proof_hash = ProofPipeline.fallback_proof_hash(session.commitment, guess, feedback)
            warnings += self._record(EventKind.PROOF_FALLBACK_USED, {
                "session_id": session.session_id,
                "reason": str(e),
                "proof_hash": proof_hash.hex(),
            })
            return proof_hash, None, warnings

        warnings += self._record(EventKind.PROOF_GENERATED, {
            "session_id": session.session_id,
            "proof_hash": result.proof_hash.hex(),
            "proof_size": len(result.proof),
            "locally_verified": result.locally_verified,
        })
        if result.locally_verified is False:
            warnings += self._record(EventKind.PROOF_LOCAL_VERIFY_FAILED, {
                "session_id": session.session_id,
                "proof_hash": result.proof_hash.hex(),
            })
        return result.proof_hash, result.locally_verified, warnings

    def _submit(
        self,
        operation: Operation,
        cosigners: Sequence[Wallet] = (),
    ) -> SubmissionOutcome:
        outcome = self._transactor.submit(operation, self._wallet, cosigners=cosigners)
        if outcome.attempts > 1:
            self._record(EventKind.SIMULATION_RETRIED, {
                "session_id": operation.session_id,
                "operation": operation.kind.value,
                "attempts": outcome.attempts,
            })
        if outcome.path is SubmissionPath.MANUAL_FOOTPRINT:
            self._record(EventKind.MANUAL_FOOTPRINT_USED, {
                "session_id": operation.session_id,
                "operation": operation.kind.value,
                "tx_hash": outcome.tx_hash,
            })
        return outcome

    def _failed(self, error: ZKMindError, session_id: int) -> ServiceResult:
        if error.state_may_have_changed:
            self._record(EventKind.TRANSACTION_FAILED, {
                "session_id": session_id,
                "error": type(error).__name__,
                "message": str(error),
                "tx_hash": getattr(error, "tx_hash", None),
            })
        return _failure(error)

    def _record(self, kind: EventKind, payload: dict[str, Any]) -> list[str]:
        """Append an audit event. Returns a list with the error, if any."""
        try:
            self._event_log.record(kind, self.address, payload)
        except (ValueError, OSError) as e:
            logger.error("Event log failure: %s", e)
            return [f"Event log failure: {e}"]
        return []

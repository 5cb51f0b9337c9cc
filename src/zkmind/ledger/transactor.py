"""Ledger transactor — gets one operation from intent to finality.

    build (latest account sequence)
      → simulate
          ok → assemble footprint, resources, fee, auth
          stale-read contract error → wait one settlement interval, rebuild, retry
          any other contract error  → ProtocolViolation, nothing sent
          host error → SimulationFailed
      → stale read still failing after the retry budget:
          submit_feedback → build_with_manual_footprint
          anything else   → TransientLedgerError
      → sign (wallet) → send → poll until no longer NOT_FOUND
          rejected send → FinalityError, nothing landed
          FAILED → FinalityError
          success → SubmissionOutcome

Why the manual path exists: the simulation view can lag the committed
state by a ledger. Right after the CodeBreaker's guess lands, simulating
submit_feedback may still see waiting_for_guess and fail with
INVALID_PHASE, although the write itself would succeed. The game cannot
progress without feedback, so for that one operation the transactor
builds the footprint by hand from a read-only get_game simulation,
which does succeed on the stale view, and pays for a fixed, generous
resource budget instead. The ledger still re-checks every guard when it
applies the transaction, so a genuinely invalid feedback fails there.

Only INVALID_PHASE and GAME_NOT_FOUND can come from a lagging view: an
older snapshot has fewer guesses, no later phase and maybe no game yet.
Every other contract error would repeat against committed state, so it
is raised as a ProtocolViolation straight away.

Every error raised before ``send`` leaves the ledger untouched, and so
does a send the ledger refuses outright. Every error raised after an
accepted send carries ``state_may_have_changed``: re-fetch the session
before retrying.
"""

from __future__ import annotations

import logging
import threading
import time
from dataclasses import replace
from typing import Callable, Optional, Sequence

from zkmind.config import LedgerSettings
from zkmind.errors import (
    FinalityError,
    OperationAbandoned,
    ProtocolErrorCode,
    ProtocolViolation,
    SimulationFailed,
    TransientLedgerError,
    WalletError,
)
from zkmind.ledger.client import LedgerClient
from zkmind.ledger.codec import decode_game
from zkmind.ledger.contract import game_storage_key
from zkmind.ledger.types import (
    AuthCredentials,
    AuthEntry,
    Invocation,
    Operation,
    OperationKind,
    ResourceBudget,
    SignedTransaction,
    SimulationErrorKind,
    SimulationResult,
    SubmissionOutcome,
    SubmissionPath,
    Transaction,
    TransactionInfo,
    TxStatus,
)
from zkmind.models.game import GameSession
from zkmind.wallet import Wallet

logger = logging.getLogger(__name__)


# Only this operation may be submitted without a successful simulation.
MANUAL_FOOTPRINT_OPERATIONS = frozenset({OperationKind.SUBMIT_FEEDBACK})

# Contract errors a lagging simulation view can report for a valid call.
STALE_READ_ERRORS = frozenset({
    ProtocolErrorCode.INVALID_PHASE,
    ProtocolErrorCode.GAME_NOT_FOUND,
})


class LedgerTransactor:
    """Builds, simulates, signs, sends and polls contract transactions.

    Usage:
        transactor = LedgerTransactor(client, config.ledger.contract_id, config.ledger)
        outcome = transactor.submit(Operation.commit_code(7, maker.address, c), maker)
        session = transactor.get_game(7)
    """

    def __init__(
        self,
        client: LedgerClient,
        contract_id: str,
        settings: Optional[LedgerSettings] = None,
        sleep: Callable[[float], None] = time.sleep,
    ) -> None:
        self._client = client
        self._contract_id = contract_id
        self._settings = settings or LedgerSettings(contract_id=contract_id)
        self._sleep = sleep

    @property
    def contract_id(self) -> str:
        return self._contract_id

    # ------------------------------------------------------------------
    # Submission
    # ------------------------------------------------------------------

    def submit(
        self,
        operation: Operation,
        wallet: Wallet,
        cosigners: Sequence[Wallet] = (),
        cancel: Optional[threading.Event] = None,
    ) -> SubmissionOutcome:
        if operation.kind.is_read_only:
            raise ValueError(f"{operation.kind.value} is read-only; use get_game or query_game")
        self._check_cancel(cancel, operation)
        self._require_signers(operation, wallet, cosigners)

        path = SubmissionPath.SIMULATED
        try:
            tx, attempts = self._build_simulated(operation, cosigners, cancel)
        except TransientLedgerError as e:
            if operation.kind not in MANUAL_FOOTPRINT_OPERATIONS:
                raise
            logger.warning(
                "%s simulation still failing after %d attempts (%s); "
                "submitting with manual footprint",
                operation.kind.value, e.attempts, e,
            )
            tx = self.build_with_manual_footprint(operation)
            attempts = e.attempts
            path = SubmissionPath.MANUAL_FOOTPRINT

        self._check_cancel(cancel, operation)
        signed = wallet.sign(tx)
        info, polls = self._send_and_wait(signed, cancel)
        return SubmissionOutcome(
            operation=operation.kind,
            tx_hash=info.tx_hash,
            ledger=info.ledger or 0,
            return_value=info.return_value,
            path=path,
            attempts=attempts,
            polls=polls,
        )

    def report_result(
        self,
        session_id: int,
        wallet: Wallet,
        cancel: Optional[threading.Event] = None,
    ) -> SubmissionOutcome:
        """Report a finished game to the game hub. Either player may call."""
        return self.submit(Operation.report_result(session_id, wallet.address), wallet, cancel=cancel)

    # ------------------------------------------------------------------
    # Building
    # ------------------------------------------------------------------

    def _invocation(self, operation: Operation) -> Invocation:
        return Invocation(self._contract_id, operation.kind, operation.args)

    def _base_transaction(self, operation: Operation) -> Transaction:
        account = self._client.get_account(operation.source)
        return Transaction(
            source=operation.source,
            sequence=account.sequence + 1,
            invocation=self._invocation(operation),
            fee=self._settings.base_fee,
            timeout_seconds=self._settings.tx_timeout_seconds,
        )

    def _build_simulated(
        self,
        operation: Operation,
        cosigners: Sequence[Wallet],
        cancel: Optional[threading.Event],
    ) -> tuple[Transaction, int]:
        max_attempts = self._settings.simulation_retries + 1
        last: Optional[SimulationResult] = None
        for attempt in range(1, max_attempts + 1):
            if attempt > 1:
                self._check_cancel(cancel, operation)
                self._sleep(self._settings.settle_interval_seconds)
            tx = self._base_transaction(operation)
            sim = self._client.simulate(tx)
            if sim.ok:
                return self._assemble(tx, sim, operation, cosigners), attempt
            if sim.error_kind is SimulationErrorKind.HOST:
                raise SimulationFailed(
                    f"{operation.kind.value} simulation failed: {sim.error_message}"
                )
            self._raise_unless_stale(operation, sim)
            last = sim
            logger.warning(
                "%s simulation failed (attempt %d/%d): %s",
                operation.kind.value, attempt, max_attempts, sim.error_message,
            )

        raise TransientLedgerError(
            f"{operation.kind.value} simulation failed: {last.error_message}",
            contract_error=last.contract_error,
            attempts=max_attempts,
        )

    @staticmethod
    def _require_signers(operation: Operation, wallet: Wallet, cosigners: Sequence[Wallet]) -> None:
        """Every declared signer needs a wallet before the ledger is touched."""
        available = {wallet.address.lower()} | {w.address.lower() for w in cosigners}
        missing = [s for s in operation.signers if s.lower() not in available]
        if missing:
            raise WalletError(
                WalletError.NOT_INSTALLED,
                f"{operation.kind.value} needs authorization from {', '.join(missing)}",
            )

    @staticmethod
    def _raise_unless_stale(operation: Operation, sim: SimulationResult) -> None:
        try:
            code = ProtocolErrorCode(sim.contract_error)
        except ValueError:
            raise SimulationFailed(
                f"{operation.kind.value} simulation failed with unknown contract error "
                f"{sim.contract_error}: {sim.error_message}"
            ) from None
        if code not in STALE_READ_ERRORS:
            raise ProtocolViolation(code, f"{operation.kind.value} rejected: {sim.error_message}")

    def _assemble(
        self,
        tx: Transaction,
        sim: SimulationResult,
        operation: Operation,
        cosigners: Sequence[Wallet],
    ) -> Transaction:
        by_address = {w.address.lower(): w for w in cosigners}
        auth = []
        for address in sim.required_auth:
            if address.lower() == operation.source.lower():
                auth.append(AuthEntry(
                    address=address,
                    credentials=AuthCredentials.SOURCE_ACCOUNT,
                    invocation_digest=tx.invocation.digest(),
                ))
                continue
            cosigner = by_address.get(address.lower())
            if cosigner is None:
                raise WalletError(
                    WalletError.NOT_INSTALLED,
                    f"{operation.kind.value} needs authorization from {address}",
                )
            auth.append(cosigner.authorize(tx.invocation))

        return replace(
            tx,
            footprint=sim.footprint,
            resources=sim.resources,
            resource_fee=sim.resource_fee,
            fee=self._settings.base_fee + sim.resource_fee,
            auth=tuple(auth),
        )

    def build_with_manual_footprint(self, operation: Operation) -> Transaction:
        """Build a submit_feedback transaction without simulating the write.

        1. Simulate read-only get_game for the session.
        2. Take its footprint and move temporary contract-data keys (the
           game entry) from read-only to read-write.
        3. Attach the fixed conservative resource budget and fee.
        4. Authorize the source account for the invocation.
        """
        if operation.kind not in MANUAL_FOOTPRINT_OPERATIONS:
            raise ValueError(
                f"manual footprint is only allowed for "
                f"{sorted(k.value for k in MANUAL_FOOTPRINT_OPERATIONS)}, "
                f"not {operation.kind.value}"
            )

        read_tx = Transaction(
            source=operation.source,
            sequence=0,
            invocation=Invocation(self._contract_id, OperationKind.GET_GAME, (operation.session_id,)),
            fee=self._settings.base_fee,
            timeout_seconds=30,
        )
        sim = self._client.simulate(read_tx)
        if not sim.ok or sim.footprint is None:
            raise SimulationFailed(
                f"manual footprint: get_game simulation also failed: {sim.error_message}"
            )

        manual = self._settings.manual_footprint
        invocation = self._invocation(operation)
        account = self._client.get_account(operation.source)
        return Transaction(
            source=operation.source,
            sequence=account.sequence + 1,
            invocation=invocation,
            fee=manual.fee,
            footprint=sim.footprint.promote_temporary(),
            resources=ResourceBudget(
                instructions=manual.instructions,
                read_bytes=manual.read_bytes,
                write_bytes=manual.write_bytes,
            ),
            resource_fee=manual.resource_fee,
            auth=(
                AuthEntry(
                    address=operation.source,
                    credentials=AuthCredentials.SOURCE_ACCOUNT,
                    invocation_digest=invocation.digest(),
                ),
            ),
            timeout_seconds=self._settings.tx_timeout_seconds,
        )

    # ------------------------------------------------------------------
    # Send and poll
    # ------------------------------------------------------------------

    def _send_and_wait(
        self,
        signed: SignedTransaction,
        cancel: Optional[threading.Event],
    ) -> tuple[TransactionInfo, int]:
        result = self._client.send(signed)
        if not result.accepted:
            # A duplicate means an earlier send of this transaction may land.
            raise FinalityError(
                f"transaction send rejected: {result.error}", result.tx_hash,
                state_may_have_changed=result.duplicate,
            )

        polls = 0
        while True:
            info = self._client.get_transaction(result.tx_hash)
            polls += 1
            if info.status is not TxStatus.NOT_FOUND:
                break
            if polls >= self._settings.max_polls:
                raise FinalityError(
                    f"transaction not final after {polls} polls", result.tx_hash
                )
            if cancel is not None and cancel.is_set():
                raise OperationAbandoned(
                    f"abandoned while waiting for {result.tx_hash}", result.tx_hash
                )
            self._sleep(self._settings.poll_interval_seconds)

        if info.status is TxStatus.FAILED:
            raise FinalityError(
                f"transaction failed on ledger {info.ledger}: {info.error}", result.tx_hash
            )
        return info, polls

    @staticmethod
    def _check_cancel(cancel: Optional[threading.Event], operation: Operation) -> None:
        if cancel is not None and cancel.is_set():
            raise OperationAbandoned(f"{operation.kind.value} cancelled before send")

    # ------------------------------------------------------------------
    # Reads
    # ------------------------------------------------------------------

    def get_game(self, session_id: int) -> Optional[GameSession]:
        """Read the game straight from committed storage.

        Authoritative and not subject to simulation lag. Returns None for
        an unknown or expired session.
        """
        record = self._client.read(game_storage_key(self._contract_id, session_id))
        if record is None:
            return None
        return decode_game(record)

    def query_game(self, session_id: int) -> Optional[GameSession]:
        """Read the game through a read-only get_game simulation.

        Subject to simulation lag; prefer get_game.
        """
        read_tx = Transaction(
            source="",
            sequence=0,
            invocation=Invocation(self._contract_id, OperationKind.GET_GAME, (session_id,)),
            fee=self._settings.base_fee,
            timeout_seconds=30,
        )
        sim = self._client.simulate(read_tx)
        if sim.ok:
            return decode_game(sim.return_value)
        if sim.contract_error == ProtocolErrorCode.GAME_NOT_FOUND:
            return None
        raise SimulationFailed(f"get_game simulation failed: {sim.error_message}")

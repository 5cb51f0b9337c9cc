"""In-process ledger for tests, demos and local play.

Deterministic model of the behaviour the transactor has to cope with:

- Transactions are applied in the order they are sent, each in its own
  ledger, with every contract guard re-checked against committed state.
- ``simulate`` runs against a view that lags the latest ledger by
  ``simulation_lag`` ledgers. Right after a write, a simulation of the
  next move sees the old phase and fails with a contract error, exactly
  like a lagging RPC node. ``close_ledger`` advances the chain without
  a transaction and lets the view catch up.
- A sent transaction reads as NOT_FOUND for ``finality_polls`` polls.
- Footprints, resource budgets, fees, sequence numbers, transaction
  signatures and authorization entries are all enforced at apply time.

Signatures are Ethereum personal-message signatures over the transaction
hash (``eth_account``), so ledger addresses are checksummed Ethereum
addresses.
"""

from __future__ import annotations

import logging
from typing import Any, Optional

from eth_account import Account
from eth_account.messages import encode_defunct

from zkmind.ledger.contract import ContractError, GameContract, HostEnv, HostError, StorageEntry
from zkmind.ledger.types import (
    AccountState,
    AuthCredentials,
    ResourceBudget,
    SendResult,
    SignedTransaction,
    SimulationErrorKind,
    SimulationResult,
    StorageKey,
    Transaction,
    TransactionInfo,
    TxStatus,
)

logger = logging.getLogger(__name__)


FEE_PER_MILLION_INSTRUCTIONS = 25_000
FEE_PER_BYTE = 100


def resource_fee_for(resources: ResourceBudget) -> int:
    return (
        resources.instructions * FEE_PER_MILLION_INSTRUCTIONS // 1_000_000
        + (resources.read_bytes + resources.write_bytes) * FEE_PER_BYTE
    )


def recover_signer(digest_hex: str, signature: str) -> Optional[str]:
    """Address that produced a personal-message signature over a hex digest."""
    try:
        return Account.recover_message(
            encode_defunct(primitive=bytes.fromhex(digest_hex)), signature=signature
        )
    except Exception as e:
        logger.debug("Signature recovery failed: %s", e)
        return None


def same_address(a: Optional[str], b: Optional[str]) -> bool:
    return a is not None and b is not None and a.lower() == b.lower()


class InMemoryLedger:
    """A single-contract ledger held in memory."""

    def __init__(
        self,
        contract: GameContract,
        simulation_lag: int = 0,
        finality_polls: int = 1,
        base_fee: int = 100,
        resource_margin: float = 0.2,
    ) -> None:
        self.contract = contract
        self.simulation_lag = simulation_lag
        self.finality_polls = finality_polls
        self.base_fee = base_fee
        self.resource_margin = resource_margin

        self._ledger_seq = 1
        self._state: dict[StorageKey, StorageEntry] = {}
        contract.install(self._state)
        self._snapshots: list[dict[StorageKey, StorageEntry]] = [dict(self._state)]
        self._accounts: dict[str, int] = {}
        self._transactions: dict[str, TransactionInfo] = {}
        self._unseen_polls: dict[str, int] = {}
        self.sent: list[SignedTransaction] = []

    # ------------------------------------------------------------------
    # Chain progress
    # ------------------------------------------------------------------

    @property
    def latest_ledger(self) -> int:
        return self._ledger_seq

    def close_ledger(self, count: int = 1) -> int:
        """Close ``count`` empty ledgers. Returns the new latest sequence."""
        for _ in range(count):
            self._ledger_seq += 1
            self._snapshots.append(dict(self._state))
        return self._ledger_seq

    def _view(self) -> tuple[dict[StorageKey, StorageEntry], int]:
        index = max(0, len(self._snapshots) - 1 - self.simulation_lag)
        return self._snapshots[index], index + 1

    # ------------------------------------------------------------------
    # LedgerClient
    # ------------------------------------------------------------------

    def get_account(self, address: str) -> AccountState:
        return AccountState(address=address, sequence=self._accounts.get(address.lower(), 0))

    def simulate(self, tx: Transaction) -> SimulationResult:
        state, seq = self._view()
        if tx.invocation.contract_id != self.contract.contract_id:
            return SimulationResult(
                error_kind=SimulationErrorKind.HOST,
                error_message=f"unknown contract {tx.invocation.contract_id}",
                latest_ledger=seq,
            )
        env = HostEnv(state, seq)
        try:
            value = self.contract.invoke(env, tx.invocation.function, tx.invocation.args)
        except ContractError as e:
            return SimulationResult(
                error_kind=SimulationErrorKind.CONTRACT,
                contract_error=int(e.code),
                error_message=str(e),
                latest_ledger=seq,
            )
        except HostError as e:
            return SimulationResult(
                error_kind=SimulationErrorKind.HOST, error_message=str(e), latest_ledger=seq,
            )

        used = env.usage
        scale = 1.0 + self.resource_margin
        resources = ResourceBudget(
            instructions=int(used.instructions * scale),
            read_bytes=int(used.read_bytes * scale) + 1024,
            write_bytes=int(used.write_bytes * scale) + 1024 if used.write_bytes else 0,
        )
        return SimulationResult(
            return_value=value,
            footprint=env.recorded_footprint(),
            resources=resources,
            resource_fee=resource_fee_for(resources),
            required_auth=tuple(env.auth_requested),
            latest_ledger=seq,
        )

    def send(self, signed: SignedTransaction) -> SendResult:
        tx = signed.transaction
        tx_hash = tx.tx_hash

        if tx_hash in self._transactions:
            return SendResult(
                tx_hash=tx_hash, accepted=False, error="duplicate transaction", duplicate=True,
            )
        error = self._reject_reason(signed)
        if error:
            logger.debug("Rejected tx %s: %s", tx_hash, error)
            return SendResult(tx_hash=tx_hash, accepted=False, error=error)

        self._accounts[tx.source.lower()] = tx.sequence
        self.sent.append(signed)
        self._apply(tx)
        self._unseen_polls[tx_hash] = self.finality_polls
        return SendResult(tx_hash=tx_hash, accepted=True)

    def get_transaction(self, tx_hash: str) -> TransactionInfo:
        info = self._transactions.get(tx_hash)
        if info is None:
            return TransactionInfo(tx_hash=tx_hash, status=TxStatus.NOT_FOUND)
        remaining = self._unseen_polls.get(tx_hash, 0)
        if remaining > 0:
            self._unseen_polls[tx_hash] = remaining - 1
            return TransactionInfo(tx_hash=tx_hash, status=TxStatus.NOT_FOUND)
        return info

    def read(self, key: StorageKey) -> Optional[Any]:
        entry = self._state.get(key)
        if entry is None:
            return None
        if entry.live_until is not None and entry.live_until < self._ledger_seq:
            return None
        return entry.value

    # ------------------------------------------------------------------
    # Validation and apply
    # ------------------------------------------------------------------

    def _reject_reason(self, signed: SignedTransaction) -> str:
        tx = signed.transaction
        if not same_address(signed.signer, tx.source):
            return "signer is not the source account"
        if not same_address(recover_signer(tx.tx_hash, signed.signature), tx.source):
            return "bad transaction signature"
        expected_seq = self._accounts.get(tx.source.lower(), 0) + 1
        if tx.sequence != expected_seq:
            return f"bad sequence: got {tx.sequence}, expected {expected_seq}"
        if tx.fee < self.base_fee + tx.resource_fee:
            return f"fee {tx.fee} below base fee plus resource fee {tx.resource_fee}"
        if tx.footprint is None or tx.resources is None:
            return "transaction has no footprint or resources"
        return ""

    def _authorized(self, tx: Transaction) -> frozenset[str]:
        digest = tx.invocation.digest()
        authorized = set()
        for entry in tx.auth:
            if entry.invocation_digest != digest:
                continue
            if entry.credentials is AuthCredentials.SOURCE_ACCOUNT:
                if same_address(entry.address, tx.source):
                    authorized.add(entry.address)
            elif entry.signature and same_address(
                recover_signer(digest, entry.signature), entry.address
            ):
                authorized.add(entry.address)
        return frozenset(authorized)

    def _apply(self, tx: Transaction) -> None:
        self._ledger_seq += 1
        env = HostEnv(
            self._state,
            self._ledger_seq,
            authorized=self._authorized(tx),
            footprint=tx.footprint,
            budget=tx.resources,
        )
        try:
            value = self.contract.invoke(env, tx.invocation.function, tx.invocation.args)
        except (ContractError, HostError) as e:
            info = TransactionInfo(
                tx_hash=tx.tx_hash, status=TxStatus.FAILED, ledger=self._ledger_seq, error=str(e),
            )
        else:
            self._state.update(env.changes)
            for call in env.deferred:
                call()
            info = TransactionInfo(
                tx_hash=tx.tx_hash, status=TxStatus.SUCCESS,
                ledger=self._ledger_seq, return_value=value,
            )
        self._transactions[tx.tx_hash] = info
        self._snapshots.append(dict(self._state))

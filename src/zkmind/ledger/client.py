"""Ledger client boundary.

The transactor talks to the ledger only through this protocol, so a
network RPC client and the in-process ``InMemoryLedger`` are
interchangeable.
"""

from __future__ import annotations

from typing import Any, Optional, Protocol, runtime_checkable

from zkmind.ledger.types import (
    AccountState,
    SendResult,
    SignedTransaction,
    SimulationResult,
    StorageKey,
    Transaction,
    TransactionInfo,
)


@runtime_checkable
class LedgerClient(Protocol):

    @property
    def latest_ledger(self) -> int:
        ...

    def get_account(self, address: str) -> AccountState:
        """Current sequence number for a source account."""
        ...

    def simulate(self, tx: Transaction) -> SimulationResult:
        """Dry-run a transaction. The simulation view may lag committed state."""
        ...

    def send(self, signed: SignedTransaction) -> SendResult:
        """Submit a signed transaction. Acceptance is not finality."""
        ...

    def get_transaction(self, tx_hash: str) -> TransactionInfo:
        """Poll a sent transaction. NOT_FOUND until it is final."""
        ...

    def read(self, key: StorageKey) -> Optional[Any]:
        """Read a storage entry from committed state, bypassing simulation."""
        ...

"""Ledger boundary — contract, clients and the transaction discipline."""

from zkmind.ledger.client import LedgerClient
from zkmind.ledger.contract import GameContract, RecordingGameHub
from zkmind.ledger.memory import InMemoryLedger
from zkmind.ledger.transactor import LedgerTransactor
from zkmind.ledger.types import Operation, OperationKind, SubmissionOutcome, SubmissionPath

__all__ = [
    "GameContract",
    "InMemoryLedger",
    "LedgerClient",
    "LedgerTransactor",
    "Operation",
    "OperationKind",
    "RecordingGameHub",
    "SubmissionOutcome",
    "SubmissionPath",
]

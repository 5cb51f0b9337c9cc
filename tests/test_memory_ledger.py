"""Tests for InMemoryLedger — proves simulation lag, finality and send validation."""

from dataclasses import replace

import pytest

from conftest import CONTRACT_ID
from zkmind.ledger.client import LedgerClient
from zkmind.ledger.memory import InMemoryLedger, recover_signer
from zkmind.ledger.types import (
    AuthCredentials,
    AuthEntry,
    Invocation,
    Operation,
    SimulationErrorKind,
    Transaction,
    TxStatus,
)
from zkmind.errors import ProtocolErrorCode
from zkmind.models.game import GamePhase
from zkmind.wallet import LocalKeyWallet


def _build(ledger: InMemoryLedger, operation: Operation, cosigners=()) -> Transaction:
    invocation = Invocation(CONTRACT_ID, operation.kind, operation.args)
    tx = Transaction(
        source=operation.source,
        sequence=ledger.get_account(operation.source).sequence + 1,
        invocation=invocation,
        fee=ledger.base_fee,
    )
    sim = ledger.simulate(tx)
    assert sim.ok, sim.error_message
    by_address = {w.address: w for w in cosigners}
    auth = tuple(
        AuthEntry(address, AuthCredentials.SOURCE_ACCOUNT, invocation.digest())
        if address == operation.source else by_address[address].authorize(invocation)
        for address in sim.required_auth
    )
    return replace(
        tx, footprint=sim.footprint, resources=sim.resources,
        resource_fee=sim.resource_fee, fee=ledger.base_fee + sim.resource_fee, auth=auth,
    )


def _new_game(ledger: InMemoryLedger, maker: LocalKeyWallet, breaker: LocalKeyWallet) -> str:
    tx = _build(ledger, Operation.new_game(1, maker.address, breaker.address), cosigners=(breaker,))
    result = ledger.send(maker.sign(tx))
    assert result.accepted, result.error
    return result.tx_hash


class TestClientProtocol:
    def test_satisfies_ledger_client(self, ledger: InMemoryLedger) -> None:
        assert isinstance(ledger, LedgerClient)


class TestSendAndFinality:
    def test_applied_transaction_becomes_visible_after_polls(self, ledger, maker_wallet, breaker_wallet) -> None:
        ledger.finality_polls = 2
        tx_hash = _new_game(ledger, maker_wallet, breaker_wallet)
        assert ledger.get_transaction(tx_hash).status is TxStatus.NOT_FOUND
        assert ledger.get_transaction(tx_hash).status is TxStatus.NOT_FOUND
        info = ledger.get_transaction(tx_hash)
        assert info.status is TxStatus.SUCCESS
        assert info.ledger == 2

    def test_each_transaction_closes_a_ledger(self, ledger, maker_wallet, breaker_wallet) -> None:
        start = ledger.latest_ledger
        _new_game(ledger, maker_wallet, breaker_wallet)
        assert ledger.latest_ledger == start + 1

    def test_unknown_hash_is_not_found(self, ledger: InMemoryLedger) -> None:
        assert ledger.get_transaction("ab" * 32).status is TxStatus.NOT_FOUND

    def test_read_returns_committed_record(self, ledger, contract, maker_wallet, breaker_wallet) -> None:
        _new_game(ledger, maker_wallet, breaker_wallet)
        record = ledger.read(contract.game_key(1))
        assert record["phase"] == GamePhase.WAITING_FOR_COMMITMENT.ledger_code


class TestSendRejections:
    def test_duplicate(self, ledger, maker_wallet, breaker_wallet) -> None:
        tx = _build(ledger, Operation.new_game(1, maker_wallet.address, breaker_wallet.address), (breaker_wallet,))
        signed = maker_wallet.sign(tx)
        assert ledger.send(signed).accepted
        result = ledger.send(signed)
        assert not result.accepted
        assert "duplicate" in result.error
        assert result.duplicate

    def test_bad_signature(self, ledger, maker_wallet, breaker_wallet, stranger_wallet) -> None:
        tx = _build(ledger, Operation.new_game(1, maker_wallet.address, breaker_wallet.address), (breaker_wallet,))
        forged = replace(maker_wallet.sign(tx), signature=stranger_wallet.authorize(tx.invocation).signature)
        result = ledger.send(forged)
        assert not result.accepted
        assert not result.duplicate
        assert "signature" in result.error

    def test_signer_must_be_source(self, ledger, maker_wallet, breaker_wallet) -> None:
        tx = _build(ledger, Operation.new_game(1, maker_wallet.address, breaker_wallet.address), (breaker_wallet,))
        signed = replace(maker_wallet.sign(tx), signer=breaker_wallet.address)
        assert "signer" in ledger.send(signed).error

    def test_bad_sequence(self, ledger, maker_wallet, breaker_wallet) -> None:
        tx = _build(ledger, Operation.new_game(1, maker_wallet.address, breaker_wallet.address), (breaker_wallet,))
        result = ledger.send(maker_wallet.sign(replace(tx, sequence=5)))
        assert "sequence" in result.error

    def test_fee_must_cover_resources(self, ledger, maker_wallet, breaker_wallet) -> None:
        tx = _build(ledger, Operation.new_game(1, maker_wallet.address, breaker_wallet.address), (breaker_wallet,))
        result = ledger.send(maker_wallet.sign(replace(tx, fee=ledger.base_fee)))
        assert "fee" in result.error

    def test_footprint_required(self, ledger, maker_wallet, breaker_wallet) -> None:
        tx = _build(ledger, Operation.new_game(1, maker_wallet.address, breaker_wallet.address), (breaker_wallet,))
        result = ledger.send(maker_wallet.sign(replace(tx, footprint=None)))
        assert "footprint" in result.error

    def test_missing_cosigner_auth_fails_on_apply(self, ledger, maker_wallet, breaker_wallet) -> None:
        tx = _build(ledger, Operation.new_game(1, maker_wallet.address, breaker_wallet.address), (breaker_wallet,))
        tx = replace(tx, auth=tx.auth[:1])
        result = ledger.send(maker_wallet.sign(tx))
        assert result.accepted
        info = ledger.get_transaction(result.tx_hash)
        info = ledger.get_transaction(result.tx_hash)
        assert info.status is TxStatus.FAILED
        assert "authorization" in info.error
        assert ledger.read(ledger.contract.game_key(1)) is None


class TestSimulationLag:
    def test_lagging_view_sees_previous_state(self, ledger, maker_wallet, breaker_wallet) -> None:
        _new_game(ledger, maker_wallet, breaker_wallet)
        ledger.simulation_lag = 1
        read_tx = Transaction(
            source=maker_wallet.address, sequence=0,
            invocation=Invocation(CONTRACT_ID, Operation.get_game(1).kind, (1,)), fee=100,
        )
        sim = ledger.simulate(read_tx)
        assert sim.error_kind is SimulationErrorKind.CONTRACT
        assert sim.contract_error == ProtocolErrorCode.GAME_NOT_FOUND

    def test_closing_a_ledger_catches_up(self, ledger, maker_wallet, breaker_wallet) -> None:
        _new_game(ledger, maker_wallet, breaker_wallet)
        ledger.simulation_lag = 1
        ledger.close_ledger()
        read_tx = Transaction(
            source=maker_wallet.address, sequence=0,
            invocation=Invocation(CONTRACT_ID, Operation.get_game(1).kind, (1,)), fee=100,
        )
        assert ledger.simulate(read_tx).ok

    def test_unknown_contract_is_host_error(self, ledger, maker_wallet) -> None:
        read_tx = Transaction(
            source=maker_wallet.address, sequence=0,
            invocation=Invocation("other", Operation.get_game(1).kind, (1,)), fee=100,
        )
        assert ledger.simulate(read_tx).error_kind is SimulationErrorKind.HOST


class TestSignatures:
    def test_recover_signer(self, maker_wallet) -> None:
        invocation = Invocation(CONTRACT_ID, Operation.get_game(1).kind, (1,))
        entry = maker_wallet.authorize(invocation)
        assert recover_signer(invocation.digest(), entry.signature) == maker_wallet.address

    def test_recover_garbage_is_none(self) -> None:
        assert recover_signer("00" * 32, "0x1234") is None

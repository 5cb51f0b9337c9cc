"""Tests for ZKMindService — proves the protocol end to end over an in-memory ledger."""

import hashlib
import json

import pytest

from conftest import FakeBackend
from zkmind.crypto.anchor import AnchorRecord
from zkmind.crypto.commitment import CommitmentScheme
from zkmind.crypto.proof_pipeline import ProofPipeline
from zkmind.models.game import Code, GamePhase, ProofHashKind, Secret
from zkmind.persistence.event_log import EventKind, EventLog
from zkmind.service import SecretKeeper, ZKMindService


SECRET = Secret.of(0, 1, 2, 3)


@pytest.fixture
def events() -> EventLog:
    return EventLog()


@pytest.fixture
def maker(transactor, maker_wallet, pipeline, events) -> ZKMindService:
    return ZKMindService(transactor, maker_wallet, pipeline=pipeline, event_log=events)


@pytest.fixture
def breaker(transactor, breaker_wallet, events) -> ZKMindService:
    return ZKMindService(transactor, breaker_wallet, event_log=events)


@pytest.fixture
def committed(maker: ZKMindService, breaker_wallet) -> int:
    assert maker.new_game(1, breaker_wallet).success
    assert maker.commit_code(1, SECRET).success
    return 1


class TestLifecycle:
    def test_breaker_wins_in_one_guess(self, maker, breaker, committed, hub) -> None:
        assert breaker.submit_guess(committed, "0123").success
        result = maker.submit_feedback(committed)
        assert result.success, result.errors
        assert result.data["exact_matches"] == 4
        assert result.data["proof_kind"] == ProofHashKind.ZK_PROOF.value
        assert result.data["locally_verified"] is True
        assert result.data["phase"] == GamePhase.FINISHED.value
        assert result.data["winner"] == breaker.address

        report = breaker.report_result(committed)
        assert report.success
        assert report.data["codemaker_won"] is False
        assert hub.results == {committed: False}

    def test_maker_wins_after_max_guesses(self, maker, breaker, committed) -> None:
        for _ in range(12):
            assert breaker.submit_guess(committed, Code.of(5, 5, 5, 5)).success
            result = maker.submit_feedback(committed)
            assert result.success, result.errors
        assert result.data["winner"] == maker.address
        assert maker.report_result(committed).data["codemaker_won"] is True

    def test_feedback_is_scored_from_secret(self, maker, breaker, committed) -> None:
        breaker.submit_guess(committed, [3, 2, 1, 0])
        result = maker.submit_feedback(committed)
        assert (result.data["exact_matches"], result.data["color_matches"]) == (0, 4)
        session = maker.get_game(committed).data
        assert session["phase"] == GamePhase.WAITING_FOR_GUESS.value
        assert session["records"][0]["proof_kind"] == ProofHashKind.ZK_PROOF.value

    def test_secret_forgotten_when_game_ends(self, transactor, maker_wallet, breaker_wallet, pipeline) -> None:
        secrets = SecretKeeper()
        maker = ZKMindService(transactor, maker_wallet, pipeline=pipeline, secrets=secrets)
        breaker = ZKMindService(transactor, breaker_wallet)
        maker.new_game(1, breaker_wallet)
        maker.commit_code(1, SECRET)
        assert 1 in secrets
        breaker.submit_guess(1, "0123")
        maker.submit_feedback(1)
        assert 1 not in secrets

    def test_secret_forgotten_when_commit_send_refused(self, transactor, ledger, maker_wallet, breaker_wallet) -> None:
        secrets = SecretKeeper()
        maker = ZKMindService(transactor, maker_wallet, secrets=secrets)
        maker.new_game(1, breaker_wallet)
        ledger.base_fee = 10_000
        result = maker.commit_code(1, SECRET)
        assert not result.success
        assert result.data["state_may_have_changed"] is False
        assert 1 not in secrets

    def test_commit_returns_pinned_commitment(self, maker, breaker_wallet) -> None:
        maker.new_game(1, breaker_wallet)
        result = maker.commit_code(1, "0123")
        assert result.data["commitment"] == CommitmentScheme.commit(SECRET).hex()


class TestRejections:
    def test_unknown_session(self, maker) -> None:
        result = maker.get_game(99)
        assert not result.success
        assert result.data["code"] == "GAME_NOT_FOUND"
        assert result.data["state_may_have_changed"] is False

    def test_self_play(self, maker, maker_wallet) -> None:
        result = maker.new_game(1, maker_wallet)
        assert result.data["code"] == "SELF_PLAY"

    def test_wrong_actor_costs_no_transaction(self, maker, breaker, breaker_wallet, ledger) -> None:
        maker.new_game(1, breaker_wallet)
        sent = len(ledger.sent)
        result = breaker.commit_code(1, SECRET)
        assert result.data["code"] == "NOT_CODEMAKER"
        assert len(ledger.sent) == sent

    def test_maker_cannot_guess(self, maker, committed) -> None:
        assert maker.submit_guess(committed, "0123").data["code"] == "NOT_CODEBREAKER"

    def test_bad_guess_symbols(self, breaker, committed) -> None:
        result = breaker.submit_guess(committed, [0, 1, 2, 6])
        assert not result.success
        assert result.data["code"] == "INVALID_GUESS_VALUE"

    def test_feedback_out_of_turn(self, maker, committed) -> None:
        assert maker.submit_feedback(committed).data["code"] == "INVALID_PHASE"

    def test_breaker_cannot_give_feedback(self, breaker, committed) -> None:
        breaker.submit_guess(committed, "0123")
        assert breaker.submit_feedback(committed).data["code"] == "NOT_CODEMAKER"

    def test_secret_unknown(self, transactor, maker_wallet, pipeline, breaker, committed) -> None:
        fresh = ZKMindService(transactor, maker_wallet, pipeline=pipeline)
        breaker.submit_guess(committed, "0123")
        assert fresh.submit_feedback(committed).data["code"] == "SECRET_UNKNOWN"

    def test_secret_mismatch(self, transactor, maker_wallet, pipeline, breaker, committed) -> None:
        secrets = SecretKeeper()
        secrets.put(committed, Secret.of(5, 4, 3, 2))
        wrong = ZKMindService(transactor, maker_wallet, pipeline=pipeline, secrets=secrets)
        breaker.submit_guess(committed, "0123")
        assert wrong.submit_feedback(committed).data["code"] == "SECRET_MISMATCH"

    def test_report_before_finish(self, maker, committed) -> None:
        assert maker.report_result(committed).data["code"] == "INVALID_PHASE"

    def test_finished_game_rejects_feedback(self, maker, breaker, committed) -> None:
        breaker.submit_guess(committed, "0123")
        maker.submit_feedback(committed)
        assert maker.submit_feedback(committed).data["code"] == "GAME_ALREADY_ENDED"


class TestProofFallback:
    def _maker(self, transactor, maker_wallet, events, backend) -> ZKMindService:
        return ZKMindService(
            transactor, maker_wallet, pipeline=ProofPipeline(lambda: backend), event_log=events,
        )

    def test_prover_failure_submits_nothing(self, transactor, maker_wallet, breaker, events, breaker_wallet, ledger) -> None:
        maker = self._maker(transactor, maker_wallet, events, FakeBackend(fail_on="prove"))
        maker.new_game(1, breaker_wallet)
        maker.commit_code(1, SECRET)
        breaker.submit_guess(1, "0123")
        sent = len(ledger.sent)
        result = maker.submit_feedback(1)
        assert not result.success
        assert result.data["error"] == "ProofGenerationFailed"
        assert len(ledger.sent) == sent
        assert maker.get_game(1).data["phase"] == GamePhase.WAITING_FOR_FEEDBACK.value

    def test_fallback_is_tagged_and_logged(self, transactor, maker_wallet, breaker, events, breaker_wallet) -> None:
        maker = self._maker(transactor, maker_wallet, events, FakeBackend(fail_on="execute"))
        maker.new_game(1, breaker_wallet)
        maker.commit_code(1, SECRET)
        breaker.submit_guess(1, "5555")
        result = maker.submit_feedback(1, allow_fallback=True)
        assert result.success, result.errors
        assert result.data["proof_kind"] == ProofHashKind.FALLBACK_DIGEST.value
        assert result.data["locally_verified"] is None
        assert result.data["proof_hash"].startswith("fe")
        assert len(events.events(EventKind.PROOF_FALLBACK_USED)) == 1

    def test_no_pipeline_needs_fallback(self, transactor, maker_wallet, breaker, breaker_wallet) -> None:
        maker = ZKMindService(transactor, maker_wallet)
        maker.new_game(1, breaker_wallet)
        maker.commit_code(1, SECRET)
        breaker.submit_guess(1, "0123")
        assert maker.submit_feedback(1).data["error"] == "ProofGenerationFailed"
        assert maker.submit_feedback(1, allow_fallback=True).success

    def test_local_verify_failure_still_submits(self, transactor, maker_wallet, breaker, events, breaker_wallet) -> None:
        maker = self._maker(transactor, maker_wallet, events, FakeBackend(verify_result=False))
        maker.new_game(1, breaker_wallet)
        maker.commit_code(1, SECRET)
        breaker.submit_guess(1, "0123")
        result = maker.submit_feedback(1)
        assert result.success
        assert result.data["locally_verified"] is False
        assert len(events.events(EventKind.PROOF_LOCAL_VERIFY_FAILED)) == 1


class TestAudit:
    def test_disclosed_proof_checks_out(self, maker, breaker, committed, backend) -> None:
        breaker.submit_guess(committed, "0123")
        maker.submit_feedback(committed)
        witness = backend.executed[-1]
        proof = b"proof:keccak:" + hashlib.sha256(
            json.dumps(witness, sort_keys=True).encode("utf-8")
        ).digest()
        assert maker.audit_proof(committed, 0, proof).data["valid"] is True
        assert maker.audit_proof(committed, 0, b"forged").data["valid"] is False

    def test_index_out_of_range(self, maker, committed) -> None:
        assert not maker.audit_proof(committed, 0, b"x").success

    def test_requires_pipeline(self, breaker, committed) -> None:
        assert not breaker.audit_proof(committed, 0, b"x").success


class TestEventsAndReads:
    def test_every_step_is_recorded(self, maker, breaker, committed, events) -> None:
        breaker.submit_guess(committed, "0123")
        maker.submit_feedback(committed)
        maker.report_result(committed)
        kinds = [e.event_kind for e in events.for_session(committed)]
        assert kinds == [
            EventKind.GAME_INITIATED,
            EventKind.CODE_COMMITTED,
            EventKind.GUESS_SUBMITTED,
            EventKind.PROOF_GENERATED,
            EventKind.FEEDBACK_SUBMITTED,
            EventKind.GAME_FINISHED,
            EventKind.RESULT_REPORTED,
        ]

    def test_events_never_carry_the_secret(self, maker, breaker, committed, events) -> None:
        breaker.submit_guess(committed, "5555")
        maker.submit_feedback(committed)
        for event in events.events():
            assert "secret" not in event.payload

    def test_get_game_is_idempotent(self, maker, breaker, committed, ledger) -> None:
        sent = len(ledger.sent)
        assert maker.get_game(committed).data == maker.get_game(committed).data
        assert len(ledger.sent) == sent

    def test_role_in_reads(self, maker, breaker, stranger_wallet, transactor, committed) -> None:
        assert maker.get_game(committed).data["role"] == "codemaker"
        assert breaker.get_game(committed).data["role"] == "codebreaker"
        assert ZKMindService(transactor, stranger_wallet).get_game(committed).data["role"] is None

    def test_close_releases_backend(self, maker, breaker, committed, backend) -> None:
        breaker.submit_guess(committed, "0123")
        maker.submit_feedback(committed)
        with maker:
            pass
        assert backend.closed


class TestAnchor:
    def test_requires_finished(self, maker, committed) -> None:
        assert maker.anchor_transcript(committed, "http://rpc", "0x" + "11" * 32).data["code"] == "INVALID_PHASE"

    def test_anchor_records_event(self, maker, breaker, committed, events, monkeypatch) -> None:
        breaker.submit_guess(committed, "0123")
        maker.submit_feedback(committed)

        def fake_anchor(session, rpc_url, private_key, **kwargs):
            assert kwargs["chain_id"] == 11155111
            return AnchorRecord(
                session_id=session.session_id, transcript_digest="ab" * 32,
                tx_hash="0x01", block_number=7, chain_id=kwargs["chain_id"],
                timestamp_utc="2026-01-01T00:00:00Z", explorer_url="",
            )

        monkeypatch.setattr("zkmind.service.anchor_to_chain", fake_anchor)
        result = maker.anchor_transcript(committed, "http://rpc", "0x" + "11" * 32)
        assert result.success
        assert result.data["block_number"] == 7
        assert len(events.events(EventKind.TRANSCRIPT_ANCHORED)) == 1

    def test_anchor_failure_reports_digest(self, maker, breaker, committed, monkeypatch) -> None:
        breaker.submit_guess(committed, "0123")
        maker.submit_feedback(committed)

        def broken(*args, **kwargs):
            raise ConnectionError("rpc down")

        monkeypatch.setattr("zkmind.service.anchor_to_chain", broken)
        result = maker.anchor_transcript(committed, "http://rpc", "0x" + "11" * 32)
        assert not result.success
        assert "rpc down" in result.errors[0]
        assert len(result.data["transcript_digest"]) == 64

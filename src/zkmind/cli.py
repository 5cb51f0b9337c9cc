"""ZKMind CLI — command-line interface for the protocol.

Usage:
    python -m zkmind.cli commit --secret 0,1,2,3
    python -m zkmind.cli feedback --secret 0,1,2,3 --guess 0,2,1,5
    python -m zkmind.cli demo --session 7 --secret red,blue,green,yellow
    python -m zkmind.cli demo --prover --data data/
    python -m zkmind.cli check-invariants
"""

from __future__ import annotations

import argparse
import itertools
import json
import logging
import random
import sys
from pathlib import Path
from typing import Optional

from dotenv import load_dotenv

from zkmind.config import DEFAULT_CONFIG_DIR, ProtocolConfig
from zkmind.crypto.anchor import transcript
from zkmind.crypto.commitment import CommitmentScheme
from zkmind.crypto.proof_pipeline import ProofPipeline
from zkmind.engine.feedback import FeedbackEngine
from zkmind.errors import ZKMindError
from zkmind.ledger.contract import GameContract
from zkmind.ledger.memory import InMemoryLedger
from zkmind.ledger.transactor import LedgerTransactor
from zkmind.models.game import CODE_LENGTH, NUM_COLORS, Code, GameSession, Secret
from zkmind.persistence.event_log import EventLog
from zkmind.service import ServiceResult, ZKMindService
from zkmind.wallet import LocalKeyWallet


ROOT = Path(__file__).resolve().parents[2]


def cmd_commit(args: argparse.Namespace) -> int:
    try:
        secret = Secret(Code.parse(args.secret).symbols)
    except ZKMindError as e:
        print(f"Failed: {e}", file=sys.stderr)
        return 1
    print(json.dumps({
        "scheme": CommitmentScheme.SCHEME_ID,
        "commitment": CommitmentScheme.commit(secret).hex(),
    }, indent=2))
    return 0


def cmd_feedback(args: argparse.Namespace) -> int:
    try:
        feedback = FeedbackEngine.compute(Code.parse(args.secret), Code.parse(args.guess))
    except ZKMindError as e:
        print(f"Failed: {e}", file=sys.stderr)
        return 1
    print(json.dumps({
        "exact_matches": feedback.exact_matches,
        "color_matches": feedback.color_matches,
        "solved": feedback.is_solved,
    }, indent=2))
    return 0


def next_consistent_guess(session: GameSession) -> Code:
    """First code, in lexicographic order, consistent with every scored guess."""
    for symbols in itertools.product(range(NUM_COLORS), repeat=CODE_LENGTH):
        candidate = Code(symbols)
        if all(
            FeedbackEngine.is_consistent(candidate, r.guess, r.feedback)
            for r in session.records
        ):
            return candidate
    raise ValueError("no code is consistent with the recorded feedback")


def _make_pipeline(config: ProtocolConfig) -> ProofPipeline:
    from zkmind.crypto.prover_cli import NargoBarretenbergBackend

    prover = config.prover
    circuit_dir = Path(prover.circuit_dir)
    if not circuit_dir.is_absolute():
        circuit_dir = ROOT / circuit_dir
    return ProofPipeline(
        lambda: NargoBarretenbergBackend(circuit_dir, nargo=prover.nargo, bb=prover.bb),
        mode=prover.mode,
        verify_locally=prover.verify_locally,
    )


def make_demo_ledger(config: ProtocolConfig, lag: int) -> InMemoryLedger:
    """In-memory ledger running the game contract with the configured limits."""
    contract = GameContract(
        config.ledger.contract_id,
        max_guesses=config.max_guesses,
        ttl_ledgers=config.ledger.session_ttl_ledgers,
    )
    return InMemoryLedger(contract, simulation_lag=lag, base_fee=config.ledger.base_fee)


def _require(result: ServiceResult, step: str) -> None:
    if not result.success:
        raise RuntimeError(f"{step} failed: {'; '.join(result.errors)}")


def cmd_demo(args: argparse.Namespace) -> int:
    """Play one full game against an in-memory ledger with a lagging simulator."""
    config = ProtocolConfig.from_config_dir(args.config).with_env_overrides()
    errors = config.validate()
    if errors:
        print(f"Failed: {'; '.join(errors)}", file=sys.stderr)
        return 1

    ledger = make_demo_ledger(config, args.lag)
    # Waiting one settlement interval lets the simulation view catch up.
    transactor = LedgerTransactor(
        ledger, config.ledger.contract_id, config.ledger,
        sleep=lambda _seconds: ledger.close_ledger(),
    )

    event_log = None
    if args.data:
        args.data.mkdir(parents=True, exist_ok=True)
        event_log = EventLog(storage_path=args.data / "events.jsonl")
    shared_log = event_log if event_log is not None else EventLog()

    maker_wallet = LocalKeyWallet.create()
    breaker_wallet = LocalKeyWallet.create()
    pipeline = _make_pipeline(config) if args.prover else None
    maker = ZKMindService(
        transactor, maker_wallet, pipeline=pipeline, event_log=shared_log, config=config,
    )
    breaker = ZKMindService(transactor, breaker_wallet, event_log=shared_log, config=config)

    if args.secret:
        secret = Secret(Code.parse(args.secret).symbols)
    else:
        rng = random.SystemRandom()
        secret = Secret(tuple(rng.randrange(NUM_COLORS) for _ in range(CODE_LENGTH)))

    try:
        with maker:
            _require(maker.new_game(args.session, breaker_wallet), "new_game")
            _require(maker.commit_code(args.session, secret), "commit_code")
            while True:
                session = transactor.get_game(args.session)
                if session.is_finished:
                    break
                guess = next_consistent_guess(session)
                _require(breaker.submit_guess(args.session, guess), "submit_guess")
                result = maker.submit_feedback(args.session, allow_fallback=not args.prover)
                _require(result, "submit_feedback")
                print(
                    f"guess {session.guess_count + 1}: {guess.to_list()} -> "
                    f"{result.data['exact_matches']} exact, {result.data['color_matches']} color "
                    f"[{result.data['proof_kind']}, {result.data['path']}]"
                )
            _require(maker.report_result(args.session), "report_result")
    except (RuntimeError, ZKMindError) as e:
        print(f"Failed: {e}", file=sys.stderr)
        return 1

    final = transactor.get_game(args.session)
    winner = "codebreaker" if final.winner == final.codebreaker else "codemaker"
    print(f"Winner: {winner} after {final.guess_count} guesses")
    if args.data:
        path = args.data / f"transcript-{args.session}.json"
        path.write_text(json.dumps(transcript(final), indent=2, sort_keys=True) + "\n", encoding="utf-8")
        print(f"Transcript written to {path}")
    return 0


def cmd_check_invariants(args: argparse.Namespace) -> int:
    """Run protocol invariant checks."""
    tools_dir = ROOT / "tools"
    sys.path.insert(0, str(tools_dir))
    from check_invariants import check
    return check(args.config)


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="zkmind",
        description="ZKMind — commit-reveal, proof-carrying Mastermind",
    )
    parser.add_argument(
        "--config",
        type=Path,
        default=DEFAULT_CONFIG_DIR,
        help="Path to config directory (default: config/)",
    )
    parser.add_argument("-v", "--verbose", action="store_true", help="Enable debug logging")
    sub = parser.add_subparsers(dest="command")

    # commit
    p_commit = sub.add_parser("commit", help="Compute the commitment for a secret code")
    p_commit.add_argument("--secret", required=True, help='Code, e.g. "0,1,2,3" or "red,blue,green,yellow"')

    # feedback
    p_fb = sub.add_parser("feedback", help="Score a guess against a secret")
    p_fb.add_argument("--secret", required=True, help="Secret code")
    p_fb.add_argument("--guess", required=True, help="Guess code")

    # demo
    p_demo = sub.add_parser("demo", help="Play a full game on an in-memory ledger")
    p_demo.add_argument("--session", type=int, default=1, help="Session id (default: 1)")
    p_demo.add_argument("--secret", help="Secret code (default: random)")
    p_demo.add_argument("--lag", type=int, default=1, help="Simulation lag in ledgers (default: 1)")
    p_demo.add_argument("--prover", action="store_true", help="Prove feedback with nargo/bb")
    p_demo.add_argument("--data", type=Path, help="Directory for events.jsonl and the transcript")

    # check-invariants
    sub.add_parser("check-invariants", help="Run protocol invariant checks")

    return parser


def main(argv: Optional[list[str]] = None) -> int:
    load_dotenv()
    parser = build_parser()
    args = parser.parse_args(argv)

    logging.basicConfig(
        level=logging.DEBUG if args.verbose else logging.WARNING,
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )

    if args.command is None:
        parser.print_help()
        return 0

    commands = {
        "commit": cmd_commit,
        "feedback": cmd_feedback,
        "demo": cmd_demo,
        "check-invariants": cmd_check_invariants,
    }

    handler = commands.get(args.command)
    if handler is None:
        print(f"Unknown command: {args.command}", file=sys.stderr)
        return 1

    return handler(args)


if __name__ == "__main__":
    raise SystemExit(main())

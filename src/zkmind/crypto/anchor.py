"""Transcript anchoring — pins a finished game's public record on Ethereum.

Game sessions live in temporary ledger storage and expire after their
TTL. A player who wants a durable, timestamped record of a finished game
(every guess, every feedback, every proof hash, the commitment and the
winner) computes the transcript digest and embeds it in a 0-ETH
self-send transaction. Anyone holding the same transcript can recompute
the digest and compare.

Nothing executes on-chain. The chain is only a witness.
"""

from __future__ import annotations

import hashlib
import json
import logging
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Any

from zkmind.models.game import GamePhase, GameSession

logger = logging.getLogger(__name__)


TRANSCRIPT_VERSION = "zkmind-transcript-v1"

EXPLORERS = {
    1: "https://etherscan.io/tx/",
    11155111: "https://sepolia.etherscan.io/tx/",
}


@dataclass(frozen=True)
class AnchorRecord:
    """A record of a successful transcript anchor."""
    session_id: int
    transcript_digest: str
    tx_hash: str
    block_number: int
    chain_id: int
    timestamp_utc: str
    explorer_url: str

    def to_dict(self) -> dict[str, Any]:
        return {
            "session_id": self.session_id,
            "transcript_digest": self.transcript_digest,
            "tx_hash": self.tx_hash,
            "block_number": self.block_number,
            "chain_id": self.chain_id,
            "timestamp_utc": self.timestamp_utc,
            "explorer_url": self.explorer_url,
        }


def transcript(session: GameSession) -> dict[str, Any]:
    """The public transcript of a session, tagged with its format version."""
    body = session.to_dict()
    body["version"] = TRANSCRIPT_VERSION
    return body


def canonical_digest(body: dict[str, Any]) -> str:
    """SHA-256 hex digest of a transcript body in canonical JSON.

    Canonical form: sorted keys, no whitespace, UTF-8.
    """
    canonical = json.dumps(
        body, sort_keys=True, separators=(",", ":"), ensure_ascii=False,
    ).encode("utf-8")
    return hashlib.sha256(canonical).hexdigest()


def transcript_digest(session: GameSession) -> str:
    """Digest of a session's transcript. Only finished sessions have a stable one."""
    if not session.is_finished:
        raise ValueError(
            f"session {session.session_id} is {session.phase.value}; "
            "only finished sessions can be anchored"
        )
    return canonical_digest(transcript(session))


def check_transcript(body: dict[str, Any]) -> list[str]:
    """Validate a transcript loaded from disk. Empty list means anchorable."""
    errors: list[str] = []
    if body.get("version") != TRANSCRIPT_VERSION:
        errors.append(f"unsupported transcript version: {body.get('version')!r}")
    if body.get("phase") != GamePhase.FINISHED.value:
        errors.append(f"transcript phase is {body.get('phase')!r}, not finished")
    if not isinstance(body.get("session_id"), int):
        errors.append("transcript has no integer session_id")
    return errors


def anchor_digest(
    digest: str,
    session_id: int,
    rpc_url: str,
    private_key: str,
    chain_id: int = 11155111,  # Sepolia
    gas: int = 30_000,
    gas_price_gwei: str = "2",
    timeout: int = 300,
) -> AnchorRecord:
    """Embed a transcript digest in a 0-ETH self-send and wait for one confirmation."""
    from web3 import Web3, HTTPProvider
    from eth_account import Account

    w3 = Web3(HTTPProvider(rpc_url))
    acct = Account.from_key(private_key)

    nonce = w3.eth.get_transaction_count(acct.address)
    tx = {
        "to": acct.address,  # self-send, 0 ETH
        "value": 0,
        "gas": gas,
        "gasPrice": w3.to_wei(gas_price_gwei, "gwei"),
        "nonce": nonce,
        "chainId": chain_id,
        "data": bytes.fromhex(digest),
    }

    signed = acct.sign_transaction(tx)
    tx_hash = w3.eth.send_raw_transaction(signed.raw_transaction)
    logger.info("Anchor tx sent for session %d: %s", session_id, tx_hash.hex())

    receipt = w3.eth.wait_for_transaction_receipt(tx_hash, timeout=timeout)

    explorer_url = EXPLORERS[chain_id] + tx_hash.hex() if chain_id in EXPLORERS else ""
    now = datetime.now(timezone.utc).strftime("%Y-%m-%dT%H:%M:%SZ")
    logger.info("Anchor confirmed in block %d", receipt.blockNumber)

    return AnchorRecord(
        session_id=session_id,
        transcript_digest=digest,
        tx_hash=tx_hash.hex(),
        block_number=receipt.blockNumber,
        chain_id=chain_id,
        timestamp_utc=now,
        explorer_url=explorer_url,
    )


def anchor_to_chain(
    session: GameSession,
    rpc_url: str,
    private_key: str,
    chain_id: int = 11155111,
    gas: int = 30_000,
    gas_price_gwei: str = "2",
    timeout: int = 300,
) -> AnchorRecord:
    """Anchor a finished session's transcript digest to Ethereum."""
    return anchor_digest(
        transcript_digest(session), session.session_id, rpc_url, private_key,
        chain_id=chain_id, gas=gas, gas_price_gwei=gas_price_gwei, timeout=timeout,
    )

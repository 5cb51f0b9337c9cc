#!/usr/bin/env python3
"""Anchor a finished ZKMind game transcript on Ethereum Sepolia.

Reads a transcript written by ``zkmind demo --data DIR`` (or any
transcript produced by ``zkmind.crypto.anchor.transcript``), computes
its canonical SHA-256 digest and embeds it in a 0-ETH self-send. The
anchor is appended to docs/ANCHORS.md.

Usage:
    python3 tools/anchor_transcript.py data/transcript-7.json
    python3 tools/anchor_transcript.py data/transcript-7.json "Tournament final"

Requires:
    SEPOLIA_RPC_URL and PRIVATE_KEY in a .env file at the project root.
"""

import json
import os
import sys
from pathlib import Path

ROOT = Path(__file__).resolve().parents[1]
sys.path.insert(0, str(ROOT / "src"))

from dotenv import load_dotenv
from zkmind.config import ProtocolConfig
from zkmind.crypto.anchor import anchor_digest, canonical_digest, check_transcript

ANCHORS_FILE = ROOT / "docs" / "ANCHORS.md"


def main(argv: list[str]) -> int:
    load_dotenv(ROOT / ".env")

    rpc_url = os.getenv("SEPOLIA_RPC_URL")
    private_key = os.getenv("PRIVATE_KEY") or os.getenv("SEPOLIA_PRIVATE_KEY")
    if not rpc_url or not private_key:
        print("ERROR: Missing SEPOLIA_RPC_URL and/or PRIVATE_KEY in .env")
        return 1

    if not argv:
        print("ERROR: usage: anchor_transcript.py TRANSCRIPT.json [description]")
        return 1
    path = Path(argv[0])
    if not path.exists():
        print(f"ERROR: Transcript not found: {path}")
        return 1
    description = " ".join(argv[1:])

    body = json.loads(path.read_text(encoding="utf-8"))
    errors = check_transcript(body)
    if errors:
        for err in errors:
            print(f"ERROR: {err}")
        return 1

    digest = canonical_digest(body)
    print("=" * 60)
    print("ZKMIND — TRANSCRIPT ANCHOR")
    print("=" * 60)
    print(f"  Session:        {body['session_id']}")
    print(f"  Transcript:     {path.name}")
    print(f"  SHA-256:        {digest}")
    if description:
        print(f"  Description:    {description}")
    print()

    anchor = ProtocolConfig.from_config_dir().with_env_overrides().anchor
    record = anchor_digest(
        digest,
        body["session_id"],
        rpc_url,
        private_key,
        chain_id=anchor.chain_id,
        gas=anchor.gas,
        gas_price_gwei=anchor.gas_price_gwei,
    )

    entry_lines = [
        f"## Session {record.session_id}",
        "",
        f"- `{digest}` → [tx {record.tx_hash[:10]}...]({record.explorer_url})",
        f"  Transcript: `{path.name}` | Ethereum Block: {record.block_number} | Anchored: {record.timestamp_utc}",
    ]
    if description:
        entry_lines.append(f"  **{description}**")
    entry_lines.append("")

    ANCHORS_FILE.parent.mkdir(parents=True, exist_ok=True)
    with ANCHORS_FILE.open("a", encoding="utf-8") as f:
        f.write("\n" + "\n".join(entry_lines))

    print(f"  Tx:             {record.tx_hash}")
    print(f"  Eth Block:      {record.block_number}")
    print(f"  Explorer:       {record.explorer_url}")
    print(f"  Logged:         {ANCHORS_FILE}")
    return 0


if __name__ == "__main__":
    raise SystemExit(main(sys.argv[1:]))

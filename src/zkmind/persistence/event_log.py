"""Append-only event log — the local audit trail of protocol actions.

Every action a party takes, and every degraded path it falls back to
(fallback proof hashes, manual-footprint submissions, failed local
verification), produces an event. Events are immutable once written and
hash-chained: each record commits to the hash of the one before it, so a
JSONL file with an edited, reordered or deleted line fails to load.

The log is what a player hands to a third party after a dispute, and the
source for transcript anchoring. Payloads carry public values only; a
payload with a secret-bearing field is refused.
"""

from __future__ import annotations

import enum
import hashlib
import json
from dataclasses import dataclass
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Mapping, Optional


class EventKind(str, enum.Enum):
    """Classification of protocol events."""
    GAME_INITIATED = "game_initiated"
    CODE_COMMITTED = "code_committed"
    GUESS_SUBMITTED = "guess_submitted"
    FEEDBACK_SUBMITTED = "feedback_submitted"
    GAME_FINISHED = "game_finished"
    RESULT_REPORTED = "result_reported"
    # Proof pipeline
    PROOF_GENERATED = "proof_generated"
    PROOF_LOCAL_VERIFY_FAILED = "proof_local_verify_failed"
    PROOF_FALLBACK_USED = "proof_fallback_used"
    # Ledger submission
    SIMULATION_RETRIED = "simulation_retried"
    MANUAL_FOOTPRINT_USED = "manual_footprint_used"
    TRANSACTION_FAILED = "transaction_failed"
    TRANSCRIPT_ANCHORED = "transcript_anchored"


CHAIN_START = "sha256:" + "0" * 64

FORBIDDEN_PAYLOAD_KEYS = frozenset({"secret", "secret_code", "private_key"})


def _digest(body: Mapping[str, Any]) -> str:
    canonical = json.dumps(body, sort_keys=True, ensure_ascii=False).encode("utf-8")
    return f"sha256:{hashlib.sha256(canonical).hexdigest()}"


@dataclass(frozen=True)
class EventRecord:
    """One immutable, chained event."""
    event_id: str
    event_kind: EventKind
    timestamp_utc: str
    actor_id: str
    payload: dict[str, Any]
    prev_hash: str
    event_hash: str

    @classmethod
    def create(
        cls,
        event_id: str,
        event_kind: EventKind,
        actor_id: str,
        payload: dict[str, Any],
        prev_hash: str = CHAIN_START,
        timestamp_utc: Optional[datetime] = None,
    ) -> EventRecord:
        ts = (timestamp_utc or datetime.now(timezone.utc)).strftime("%Y-%m-%dT%H:%M:%SZ")
        body = {
            "event_id": event_id,
            "event_kind": event_kind.value,
            "timestamp_utc": ts,
            "actor_id": actor_id,
            "payload": payload,
            "prev_hash": prev_hash,
        }
        return cls(
            event_id=event_id,
            event_kind=event_kind,
            timestamp_utc=ts,
            actor_id=actor_id,
            payload=payload,
            prev_hash=prev_hash,
            event_hash=_digest(body),
        )

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> EventRecord:
        """Rebuild a stored record, recomputing its hash.

        Raises ValueError if the stored hash does not match the content.
        """
        event = cls.create(
            event_id=data["event_id"],
            event_kind=EventKind(data["event_kind"]),
            actor_id=data["actor_id"],
            payload=data["payload"],
            prev_hash=data["prev_hash"],
            timestamp_utc=datetime.strptime(
                data["timestamp_utc"], "%Y-%m-%dT%H:%M:%SZ"
            ).replace(tzinfo=timezone.utc),
        )
        if event.event_hash != data["event_hash"]:
            raise ValueError(
                f"event {data['event_id']} stored hash {data['event_hash']} "
                f"!= computed {event.event_hash}"
            )
        return event

    def to_dict(self) -> dict[str, Any]:
        return {
            "event_id": self.event_id,
            "event_kind": self.event_kind.value,
            "timestamp_utc": self.timestamp_utc,
            "actor_id": self.actor_id,
            "payload": self.payload,
            "prev_hash": self.prev_hash,
            "event_hash": self.event_hash,
        }


class EventLog:
    """Append-only, hash-chained event log with optional JSONL persistence."""

    def __init__(self, storage_path: Optional[Path] = None) -> None:
        self._events: list[EventRecord] = []
        self._event_ids: set[str] = set()
        self._storage_path = storage_path

        if storage_path and storage_path.exists():
            self._load(storage_path)

    @property
    def head_hash(self) -> str:
        """Hash the next event must chain from."""
        return self._events[-1].event_hash if self._events else CHAIN_START

    @property
    def count(self) -> int:
        return len(self._events)

    @property
    def last_event(self) -> Optional[EventRecord]:
        return self._events[-1] if self._events else None

    def append(self, event: EventRecord) -> None:
        """Append an event that chains from the current head.

        Raises ValueError on a duplicate id (replay), a chain break, or a
        payload carrying a secret-bearing field.
        """
        self._accept(event, "append")
        if self._storage_path:
            self._storage_path.parent.mkdir(parents=True, exist_ok=True)
            with self._storage_path.open("a", encoding="utf-8") as f:
                f.write(json.dumps(event.to_dict(), sort_keys=True, ensure_ascii=False) + "\n")

    def record(self, event_kind: EventKind, actor_id: str, payload: dict[str, Any]) -> EventRecord:
        """Create, chain and append an event with the next sequential id."""
        event = EventRecord.create(
            event_id=f"evt-{self.count + 1:06d}",
            event_kind=event_kind,
            actor_id=actor_id,
            payload=payload,
            prev_hash=self.head_hash,
        )
        self.append(event)
        return event

    def events(self, kind: Optional[EventKind] = None) -> list[EventRecord]:
        if kind is None:
            return list(self._events)
        return [e for e in self._events if e.event_kind == kind]

    def for_session(self, session_id: int) -> list[EventRecord]:
        return [e for e in self._events if e.payload.get("session_id") == session_id]

    def _accept(self, event: EventRecord, where: str) -> None:
        if event.event_id in self._event_ids:
            raise ValueError(f"Duplicate event ID ({where}): {event.event_id}")
        if event.prev_hash != self.head_hash:
            raise ValueError(
                f"Chain break ({where}): event {event.event_id} follows "
                f"{event.prev_hash}, head is {self.head_hash}"
            )
        leaked = FORBIDDEN_PAYLOAD_KEYS & set(event.payload)
        if leaked:
            raise ValueError(f"Event {event.event_id} payload carries {sorted(leaked)}")
        self._events.append(event)
        self._event_ids.add(event.event_id)

    def _load(self, path: Path) -> None:
        """Replay a JSONL file. Fail-closed on any tampering."""
        with path.open("r", encoding="utf-8") as f:
            for line_num, line in enumerate(f, 1):
                line = line.strip()
                if not line:
                    continue
                try:
                    event = EventRecord.from_dict(json.loads(line))
                except ValueError as e:
                    raise ValueError(f"Integrity check failed (line {line_num}): {e}") from e
                self._accept(event, f"line {line_num}")

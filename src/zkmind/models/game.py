"""Game data model — codes, feedback, proof hashes, and the session aggregate.

Everything here except the Secret is public: it lives in shared ledger
storage and may be read by anyone. The Secret exists only inside the
CodeMaker's process; it has a masked repr and no serialisation method.

Sessions are immutable snapshots. State transitions (see
``zkmind.engine.state_machine``) return a new snapshot and never mutate
the one they were given, so a rejected transition leaves the caller's
view exactly as it was.
"""

from __future__ import annotations

import enum
from dataclasses import dataclass, field
from typing import Any, Iterable, Iterator, Optional

from zkmind.errors import ProtocolErrorCode, ProtocolViolation


CODE_LENGTH = 4
NUM_COLORS = 6
MAX_GUESSES = 12
COLOR_NAMES = ("red", "blue", "green", "yellow", "purple", "orange")

# Session ids are unsigned 32-bit integers on the ledger.
MAX_SESSION_ID = 2**32 - 1


class GamePhase(str, enum.Enum):
    """Session lifecycle phases."""
    LOBBY = "lobby"  # Client-side only, never stored on the ledger
    WAITING_FOR_COMMITMENT = "waiting_for_commitment"
    WAITING_FOR_GUESS = "waiting_for_guess"
    WAITING_FOR_FEEDBACK = "waiting_for_feedback"
    FINISHED = "finished"

    @property
    def ledger_code(self) -> int:
        if self is GamePhase.LOBBY:
            raise ValueError("lobby phase has no ledger representation")
        return _PHASE_TO_CODE[self]

    @classmethod
    def from_ledger_code(cls, code: int) -> GamePhase:
        try:
            return _CODE_TO_PHASE[code]
        except KeyError:
            raise ValueError(f"Unknown ledger phase code: {code}") from None


_PHASE_TO_CODE = {
    GamePhase.WAITING_FOR_COMMITMENT: 0,
    GamePhase.WAITING_FOR_GUESS: 1,
    GamePhase.WAITING_FOR_FEEDBACK: 2,
    GamePhase.FINISHED: 3,
}
_CODE_TO_PHASE = {code: phase for phase, code in _PHASE_TO_CODE.items()}


class PlayerRole(str, enum.Enum):
    CODEMAKER = "codemaker"
    CODEBREAKER = "codebreaker"


class ProofHashKind(str, enum.Enum):
    """Origin of a stored proof hash."""
    ZK_PROOF = "zk_proof"  # sha256 of real proof bytes
    FALLBACK_DIGEST = "fallback_digest"  # digest of disclosed values, no honesty guarantee


_KIND_TAGS = {
    ProofHashKind.ZK_PROOF: 0x01,
    ProofHashKind.FALLBACK_DIGEST: 0xFE,
}
_TAG_KINDS = {tag: kind for kind, tag in _KIND_TAGS.items()}

DIGEST_SIZE = 32
PROOF_HASH_SIZE = DIGEST_SIZE + 1


@dataclass(frozen=True)
class Code:
    """An ordered sequence of CODE_LENGTH symbols drawn from 0..NUM_COLORS-1."""
    symbols: tuple[int, ...]

    def __post_init__(self) -> None:
        symbols = tuple(self.symbols)
        if len(symbols) != CODE_LENGTH:
            raise ProtocolViolation(
                ProtocolErrorCode.INVALID_GUESS_VALUE,
                f"code must have {CODE_LENGTH} symbols, got {len(symbols)}",
            )
        for s in symbols:
            if isinstance(s, bool) or not isinstance(s, int) or not 0 <= s < NUM_COLORS:
                raise ProtocolViolation(
                    ProtocolErrorCode.INVALID_GUESS_VALUE,
                    f"symbol {s!r} outside 0..{NUM_COLORS - 1}",
                )
        object.__setattr__(self, "symbols", symbols)

    @classmethod
    def of(cls, *symbols: int) -> Code:
        return cls(tuple(symbols))

    @classmethod
    def from_names(cls, names: Iterable[str]) -> Code:
        """Build a code from color names, e.g. ``["red", "blue", ...]``."""
        names = list(names)
        try:
            return cls(tuple(COLOR_NAMES.index(n.strip().lower()) for n in names))
        except ValueError:
            raise ProtocolViolation(
                ProtocolErrorCode.INVALID_GUESS_VALUE,
                f"unknown color in {list(names)!r}",
            ) from None

    @classmethod
    def parse(cls, text: str) -> Code:
        """Parse ``"0,1,2,3"``, ``"0123"`` or ``"red,blue,green,yellow"``."""
        parts = [p.strip() for p in text.split(",") if p.strip()]
        if len(parts) == 1 and parts[0].isdigit():
            parts = list(parts[0])
        if all(p.isdigit() for p in parts):
            return cls(tuple(int(p) for p in parts))
        return cls.from_names(parts)

    def __iter__(self) -> Iterator[int]:
        return iter(self.symbols)

    def __len__(self) -> int:
        return len(self.symbols)

    def __getitem__(self, index: int) -> int:
        return self.symbols[index]

    def to_list(self) -> list[int]:
        return list(self.symbols)


@dataclass(frozen=True, repr=False)
class Secret(Code):
    """The CodeMaker's secret code. Local-only; never serialised."""

    def __repr__(self) -> str:
        return "Secret(****)"

    def to_list(self) -> list[int]:
        raise TypeError("Secret codes are not serialisable")


@dataclass(frozen=True)
class Feedback:
    """Red/white peg counts for one guess."""
    exact_matches: int
    color_matches: int

    def __post_init__(self) -> None:
        for name in ("exact_matches", "color_matches"):
            value = getattr(self, name)
            if isinstance(value, bool) or not isinstance(value, int):
                raise ProtocolViolation(
                    ProtocolErrorCode.INVALID_FEEDBACK, f"{name} must be an int"
                )
            if not 0 <= value <= CODE_LENGTH:
                raise ProtocolViolation(
                    ProtocolErrorCode.INVALID_FEEDBACK,
                    f"{name}={value} outside 0..{CODE_LENGTH}",
                )
        if self.exact_matches + self.color_matches > CODE_LENGTH:
            raise ProtocolViolation(
                ProtocolErrorCode.INVALID_FEEDBACK,
                f"exact_matches + color_matches = "
                f"{self.exact_matches + self.color_matches} exceeds {CODE_LENGTH}",
            )

    @property
    def is_solved(self) -> bool:
        return self.exact_matches == CODE_LENGTH

    def as_tuple(self) -> tuple[int, int]:
        return (self.exact_matches, self.color_matches)


@dataclass(frozen=True)
class ProofHash:
    """A 32-byte digest tagged with its origin.

    Ledger encoding is one tag byte followed by the digest, so a fallback
    digest can never be mistaken for the hash of a real proof.
    """
    kind: ProofHashKind
    digest: bytes

    def __post_init__(self) -> None:
        if not isinstance(self.digest, (bytes, bytearray)) or len(self.digest) != DIGEST_SIZE:
            raise ProtocolViolation(
                ProtocolErrorCode.INVALID_PROOF_HASH,
                f"proof digest must be {DIGEST_SIZE} bytes",
            )
        object.__setattr__(self, "digest", bytes(self.digest))

    @property
    def is_fallback(self) -> bool:
        return self.kind is ProofHashKind.FALLBACK_DIGEST

    def encode(self) -> bytes:
        return bytes([_KIND_TAGS[self.kind]]) + self.digest

    @classmethod
    def decode(cls, raw: bytes) -> ProofHash:
        if not isinstance(raw, (bytes, bytearray)) or len(raw) != PROOF_HASH_SIZE:
            raise ProtocolViolation(
                ProtocolErrorCode.INVALID_PROOF_HASH,
                f"encoded proof hash must be {PROOF_HASH_SIZE} bytes",
            )
        kind = _TAG_KINDS.get(raw[0])
        if kind is None:
            raise ProtocolViolation(
                ProtocolErrorCode.INVALID_PROOF_HASH,
                f"unknown proof hash tag 0x{raw[0]:02x}",
            )
        return cls(kind=kind, digest=bytes(raw[1:]))

    def hex(self) -> str:
        return self.encode().hex()


@dataclass(frozen=True)
class GuessRecord:
    """One completed guess. Index in the session == guess ordinal."""
    guess: Code
    feedback: Feedback
    proof_hash: ProofHash


@dataclass(frozen=True)
class GameSession:
    """Aggregate root for one game.

    ``pending_guess`` is set by submit_guess and consumed atomically by
    the next submit_feedback; it is None in every other phase.
    """
    session_id: int
    codemaker: str
    codebreaker: str
    phase: GamePhase
    max_guesses: int = MAX_GUESSES
    commitment: Optional[bytes] = None
    records: tuple[GuessRecord, ...] = field(default_factory=tuple)
    pending_guess: Optional[Code] = None
    winner: Optional[str] = None

    @property
    def guess_count(self) -> int:
        return len(self.records)

    @property
    def is_finished(self) -> bool:
        return self.phase == GamePhase.FINISHED

    def role_of(self, actor: str) -> Optional[PlayerRole]:
        """Return the role an identity plays in this session, if any."""
        if actor == self.codemaker:
            return PlayerRole.CODEMAKER
        if actor == self.codebreaker:
            return PlayerRole.CODEBREAKER
        return None

    def to_dict(self) -> dict[str, Any]:
        """Public JSON-friendly view of the session."""
        return {
            "session_id": self.session_id,
            "codemaker": self.codemaker,
            "codebreaker": self.codebreaker,
            "phase": self.phase.value,
            "max_guesses": self.max_guesses,
            "guess_count": self.guess_count,
            "commitment": self.commitment.hex() if self.commitment else None,
            "records": [
                {
                    "guess": r.guess.to_list(),
                    "exact_matches": r.feedback.exact_matches,
                    "color_matches": r.feedback.color_matches,
                    "proof_hash": r.proof_hash.hex(),
                    "proof_kind": r.proof_hash.kind.value,
                }
                for r in self.records
            ],
            "pending_guess": self.pending_guess.to_list() if self.pending_guess else None,
            "winner": self.winner,
        }

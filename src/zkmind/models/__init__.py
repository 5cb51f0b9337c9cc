"""Core data models for ZKMind."""

from zkmind.models.game import (
    CODE_LENGTH,
    COLOR_NAMES,
    MAX_GUESSES,
    NUM_COLORS,
    Code,
    Feedback,
    GamePhase,
    GameSession,
    GuessRecord,
    PlayerRole,
    ProofHash,
    ProofHashKind,
    Secret,
)

__all__ = [
    "CODE_LENGTH",
    "COLOR_NAMES",
    "MAX_GUESSES",
    "NUM_COLORS",
    "Code",
    "Feedback",
    "GamePhase",
    "GameSession",
    "GuessRecord",
    "PlayerRole",
    "ProofHash",
    "ProofHashKind",
    "Secret",
]

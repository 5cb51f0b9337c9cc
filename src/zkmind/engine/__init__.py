"""Game engine — feedback scoring and the session state machine."""

from zkmind.engine.feedback import FeedbackEngine
from zkmind.engine.state_machine import GameStateMachine

__all__ = ["FeedbackEngine", "GameStateMachine"]

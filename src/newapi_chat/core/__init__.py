"""Turn orchestration."""

from newapi_chat.core.turn import TurnContext, TurnController, TurnState

__all__ = ["TurnContext", "TurnController", "TurnState"]

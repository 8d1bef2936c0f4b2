"""
Advisory collaborator interface.
The advisor turns a conversation into a structured Recommendation; the
governance core never interprets natural language itself.
"""

from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from typing import Any, Dict, List

from ..core.errors import CollaboratorError
from ..core.schema import Action, ChatMessage, Recommendation


@dataclass
class ConversationContext:
    """Everything an advisor sees for one turn."""
    session_id: str
    user_message: str
    history: List[ChatMessage] = field(default_factory=list)
    philosophy_context: str = ""
    system_context: Dict[str, Any] = field(default_factory=dict)

    def transcript(self) -> str:
        return "\n".join(f"{m.role}: {m.message}" for m in self.history)


class BaseAdvisor(ABC):
    """
    Abstract base class for advisory collaborators.
    Implementations raise CollaboratorError when they cannot produce a recommendation.
    """

    def __init__(self, advisor_id: str, model_name: str):
        self.advisor_id = advisor_id
        self.model_name = model_name

    @abstractmethod
    async def get_recommendation(self, context: ConversationContext) -> Recommendation:
        pass

    def get_status(self) -> Dict[str, Any]:
        """Get current status of this advisor."""
        return {
            "advisor_id": self.advisor_id,
            "model_name": self.model_name,
            "advisor_type": self.__class__.__name__,
            "status": "ready"
        }


def parse_recommendation(data: Any) -> Recommendation:
    """
    Build a Recommendation from an advisor's JSON reply.

    Expected shape: {"response": str, "actions": [{"type", "target_entity_id", "payload"}]}.
    "text" is accepted in place of "response".
    """
    if not isinstance(data, dict):
        raise CollaboratorError("Advisor reply must be a JSON object")

    text = data.get("response", data.get("text"))
    if not isinstance(text, str):
        raise CollaboratorError("Advisor reply is missing the 'response' text")

    raw_actions = data.get("actions") or []
    if not isinstance(raw_actions, list):
        raise CollaboratorError("Advisor 'actions' must be a list")

    actions = []
    for index, raw in enumerate(raw_actions):
        if not isinstance(raw, dict) or not raw.get("type"):
            raise CollaboratorError(f"Advisor action {index} has no 'type'")
        if raw.get("payload") is not None and not isinstance(raw["payload"], dict):
            raise CollaboratorError(f"Advisor action {index} payload must be an object")
        actions.append(Action.from_dict(raw))

    return Recommendation(text=text, proposed_actions=tuple(actions))

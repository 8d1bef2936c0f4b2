"""
Record types shared by the governance pipeline.
"""

from dataclasses import dataclass, field, asdict
from datetime import datetime
from typing import Any, Dict, List, Optional, Tuple

# Dispositions
APPROVED = "approved"
FLAGGED = "flagged"
REJECTED = "rejected"
DISPOSITIONS = (APPROVED, FLAGGED, REJECTED)

PHILOSOPHY_TYPES = (
    "mission", "vision", "purpose", "value",
    "guiding_principle", "operating_principle", "theme",
)

CHAT_ROLES = ("user", "assistant")


@dataclass(frozen=True)
class PhilosophyItem:
    id: str
    type: str  # one of PHILOSOPHY_TYPES
    title: str
    content: str
    category: Optional[str] = None
    priority_weight: int = 50
    is_active: bool = True


@dataclass(frozen=True)
class NonNegotiable:
    id: str
    rule_number: int
    title: str
    description: str
    auto_reject: bool = False
    validation_keywords: Tuple[str, ...] = ()
    blocked_action_types: Tuple[str, ...] = ()
    is_active: bool = True


@dataclass(frozen=True)
class DecisionHierarchyLevel:
    level: int
    stakeholder: str
    weight: float
    description: str = ""


@dataclass(frozen=True)
class Action:
    """A single proposed mutation, interpreted by the handler registered for `type`."""
    type: str
    target_entity_id: Optional[str]
    payload: Dict[str, Any] = field(default_factory=dict)

    def to_dict(self) -> Dict[str, Any]:
        return {"type": self.type, "target_entity_id": self.target_entity_id, "payload": dict(self.payload)}

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> 'Action':
        return cls(
            type=str(data.get("type", "")),
            target_entity_id=data.get("target_entity_id"),
            payload=dict(data.get("payload") or {})
        )


@dataclass(frozen=True)
class Recommendation:
    text: str
    proposed_actions: Tuple[Action, ...] = ()

    def snapshot(self) -> Dict[str, Any]:
        """Plain-dict copy stored with the validation record."""
        return {
            "text": self.text,
            "proposed_actions": [a.to_dict() for a in self.proposed_actions]
        }


@dataclass(frozen=True)
class ValidationRecord:
    """
    One evaluation outcome.

    Approved records written by a chat turn get exactly one ExecutionOutcome.
    Records from standalone validation (no session) and corrections for an
    earlier turn are evaluate-only and never have an outcome.
    """
    id: int
    created_at: datetime
    status: str
    score: int
    violated_non_negotiable_ids: Tuple[int, ...]
    recommendation_snapshot: Dict[str, Any]
    session_id: Optional[str] = None
    turn_id: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        data = asdict(self)
        data['created_at'] = self.created_at.isoformat()
        data['violated_non_negotiable_ids'] = list(self.violated_non_negotiable_ids)
        return data


@dataclass(frozen=True)
class ExecutionOutcome:
    validation_id: int
    executed: bool
    failed_action_index: Optional[int] = None
    error_kind: Optional[str] = None
    error_message: Optional[str] = None
    applied_count: int = 0


@dataclass(frozen=True)
class ChatMessage:
    id: int
    session_id: str
    role: str
    message: str
    created_at: datetime


@dataclass(frozen=True)
class ChatSession:
    session_id: str
    created_at: datetime
    message_count: int = 0


@dataclass
class CategoryScore:
    category: str
    score: int
    count: int


@dataclass
class AlignmentScore:
    overall_score: int
    total_validations: int
    approved_count: int
    flagged_count: int
    rejected_count: int
    breakdown: List[CategoryScore]

    @property
    def has_data(self) -> bool:
        return self.total_validations > 0

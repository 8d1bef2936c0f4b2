"""
Mock advisor - deterministic recommendations without an external model.
Used for development, tests, and when no model service is configured.
"""

import re
from typing import List, Optional

from .advisor import BaseAdvisor, ConversationContext
from ..core.schema import Action, Recommendation

_NUMBER = r"(-?\d+(?:\.\d+)?)"

# Command phrases the mock understands, checked in order
_ACTION_PATTERNS = [
    (re.compile(rf"\bset\s+(?:the\s+)?target\s+(?:for|of)\s+kpi\s+([\w-]+)\s+to\s+{_NUMBER}", re.I), "updateKpiTarget"),
    (re.compile(rf"\brecord\s+{_NUMBER}\s+for\s+kpi\s+([\w-]+)", re.I), "createKpiHistoryEntry"),
    (re.compile(rf"\b(?:set|update)\s+kpi\s+([\w-]+)\s+to\s+{_NUMBER}", re.I), "updateKpiValue"),
    (re.compile(r"\bmark\s+(?:ogsm|component|objective|goal|strategy|measure)\s+([\w-]+)\s+(?:as\s+)?(\w+)", re.I),
     "updateOgsmStatus"),
]


class MockAdvisor(BaseAdvisor):
    """
    Rule-based advisor that turns simple command phrases into proposed actions.

    Supported phrases:
    - "set kpi <id> to <n>" / "update kpi <id> to <n>"  -> updateKpiValue
    - "set the target for kpi <id> to <n>"               -> updateKpiTarget
    - "record <n> for kpi <id>"                          -> createKpiHistoryEntry
    - "mark strategy <id> as <status>"                   -> updateOgsmStatus

    The reply text restates the request so that keyword rules see what the
    user asked for.
    """

    def __init__(self, advisor_id: str = "mock_advisor", model_name: str = "mock-model"):
        super().__init__(advisor_id, model_name)

    async def get_recommendation(self, context: ConversationContext) -> Recommendation:
        message = (context.user_message or "").strip()
        actions = self.extract_actions(message)

        if actions:
            summary = "; ".join(f"{a.type} on {a.target_entity_id}" for a in actions)
            text = f"Recommendation for: {message}. Proposed changes: {summary}."
        else:
            text = f"Recommendation for: {message}. No data changes proposed."
        return Recommendation(text=text, proposed_actions=tuple(actions))

    @staticmethod
    def extract_actions(message: str) -> List[Action]:
        actions = []
        for clause in re.split(r"\s+(?:and|then)\s+|;\s*|\.(?:\s+|$)", message):
            action = _match_clause(clause)
            if action is not None:
                actions.append(action)
        return actions


def _match_clause(clause: str) -> Optional[Action]:
    for pattern, action_type in _ACTION_PATTERNS:
        m = pattern.search(clause)
        if not m:
            continue
        if action_type == "createKpiHistoryEntry":
            value, kpi_id = m.group(1), m.group(2)
            return Action(type=action_type, target_entity_id=kpi_id, payload={"kpiId": kpi_id, "value": float(value)})
        if action_type == "updateOgsmStatus":
            component_id, status = m.group(1), m.group(2).lower()
            return Action(type=action_type, target_entity_id=component_id,
                          payload={"componentId": component_id, "status": status})
        kpi_id, value = m.group(1), m.group(2)
        return Action(type=action_type, target_entity_id=kpi_id, payload={"kpiId": kpi_id, "value": float(value)})
    return None

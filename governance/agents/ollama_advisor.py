"""
Ollama advisor - recommendations from a local Ollama model.
The model is asked for JSON: {"response": str, "actions": [...]}.
"""

import asyncio
import json
from typing import Any, Dict, List

import ollama

from .advisor import BaseAdvisor, ConversationContext, parse_recommendation
from ..core.errors import CollaboratorError
from ..core.schema import Recommendation

REPLY_INSTRUCTIONS = """Reply with a single JSON object and nothing else:
{"response": "<your recommendation for the user>",
 "actions": [{"type": "<action type>", "target_entity_id": "<id>", "payload": {...}}]}
Use "actions": [] when no planning data should change.
Supported action types: updateKpiValue, updateKpiTarget, updateOgsmStatus, createKpiHistoryEntry,
createKpi, deleteKpi, createOgsmComponent, updateOgsmComponent, deleteOgsmComponent."""


class OllamaAdvisor(BaseAdvisor):
    """
    Advisor backed by the ollama client.
    The blocking client call runs in a worker thread.
    """

    def __init__(self, model_name: str, advisor_id: str = "ollama_advisor", temperature: float = 0.3):
        super().__init__(advisor_id, model_name)
        self.temperature = temperature

    async def get_recommendation(self, context: ConversationContext) -> Recommendation:
        messages = self._build_ollama_messages(context)

        try:
            response = await asyncio.to_thread(
                ollama.chat,
                model=self.model_name,
                messages=messages,
                format='json',
                options={
                    'temperature': self.temperature,
                    'top_p': 0.9
                }
            )
        except ollama.ResponseError as e:
            raise CollaboratorError(f"Ollama model error: {e}") from e
        except Exception as e:
            raise CollaboratorError(f"Ollama request failed: {e}") from e

        content = _message_content(response)
        if not content:
            raise CollaboratorError("Ollama returned an empty reply")

        try:
            data = json.loads(content)
        except json.JSONDecodeError as e:
            raise CollaboratorError(f"Ollama reply is not valid JSON: {e}") from e

        return parse_recommendation(data)

    def _build_ollama_messages(self, context: ConversationContext) -> List[Dict[str, str]]:
        """
        Build messages array in Ollama format: system prompt (philosophy,
        planning data, reply contract), then history, then the current message.
        """
        system_parts = []
        if context.philosophy_context:
            system_parts.append(context.philosophy_context)
        if context.system_context:
            system_parts.append("Current planning data:\n" + json.dumps(context.system_context, indent=2, default=str))
        system_parts.append(REPLY_INSTRUCTIONS)

        messages = [{'role': 'system', 'content': "\n\n".join(system_parts)}]
        for msg in context.history:
            messages.append({'role': msg.role, 'content': msg.message})
        messages.append({'role': 'user', 'content': context.user_message})
        return messages

    def get_status(self) -> Dict[str, Any]:
        status = super().get_status()
        status['ollama_available'] = check_ollama_health(self.model_name)
        return status


def _message_content(response: Any) -> str:
    # The client returns a ChatResponse object; older releases returned a dict
    message = response['message'] if 'message' in response else None
    if message is None:
        return ""
    return (message['content'] or "").strip()


def check_ollama_health(model_name: str = None) -> bool:
    """Check if Ollama is reachable and, when given, that the model is pulled."""
    try:
        models = ollama.list()
        if model_name is None:
            return True
        names = [m.get('model') or m.get('name') for m in models.get('models', [])]
        return model_name in names
    except Exception:
        return False

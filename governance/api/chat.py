"""
Chat API - every turn goes through the governance pipeline before the
reply reaches the user.
"""

from fastapi import APIRouter, HTTPException, Depends, status

from .schemas import (
    ChatMessageRequest,
    ChatMessageResponse,
    ChatHistoryResponse,
    ChatMessageItem,
    ChatSessionItem,
    ChatSessionListResponse
)
from .services import GovernanceServices, get_services
from util.logging import audit_event

router = APIRouter()


@router.post("/message", response_model=ChatMessageResponse)
async def send_message(request: ChatMessageRequest, services: GovernanceServices = Depends(get_services)):
    """
    Submit one chat turn.

    Collaborator failures and cancellation are mapped to HTTP errors by the
    app's exception handlers.
    """
    result = await services.orchestrator.submit_turn(request.session_id, request.message)
    return ChatMessageResponse(
        session_id=result.session_id,
        response=result.reply,
        disposition=result.disposition,
        score=result.score,
        violated_rule_ids=result.violated_rule_ids,
        executed=result.executed,
        validation_id=result.validation_id,
        failed_action_index=result.failed_action_index,
        error_kind=result.error_kind,
        states=result.states,
        turn_id=result.turn_id
    )


# Define /sessions BEFORE /{session_id} to avoid path parameter conflict
@router.get("/sessions", response_model=ChatSessionListResponse)
def list_sessions(services: GovernanceServices = Depends(get_services)):
    return ChatSessionListResponse(sessions=[
        ChatSessionItem(session_id=s.session_id, created_at=s.created_at, message_count=s.message_count)
        for s in services.transcript.list_sessions()
    ])


@router.get("/{session_id}", response_model=ChatHistoryResponse)
def get_session_history(session_id: str, services: GovernanceServices = Depends(get_services)):
    if not services.transcript.session_exists(session_id):
        raise HTTPException(status_code=404, detail="Session not found")

    messages = services.transcript.get_history(session_id)
    return ChatHistoryResponse(
        session_id=session_id,
        messages=[
            ChatMessageItem(id=m.id, role=m.role, message=m.message, created_at=m.created_at)
            for m in messages
        ]
    )


@router.delete("/{session_id}", status_code=status.HTTP_200_OK)
def delete_session(session_id: str, services: GovernanceServices = Depends(get_services)):
    """Delete a session with its messages and validation records."""
    if not services.transcript.delete_session(session_id):
        raise HTTPException(status_code=404, detail="Session not found")
    # The cascade removes validation rows; drop the cached score
    services.aggregator.invalidate()
    audit_event("chat.session_deleted", {"session_id": session_id})
    return {"success": True, "session_id": session_id}

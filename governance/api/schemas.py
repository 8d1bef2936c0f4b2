"""
Request and response models for the governance API.
"""

from pydantic import BaseModel, field_validator, Field
from typing import Optional, List, Dict, Any
from datetime import datetime

from ..core.schema import PHILOSOPHY_TYPES


class HealthResponse(BaseModel):
    status: str
    version: str
    db_health: bool
    advisor: Dict[str, Any]
    config_issues: List[str] = []


class ErrorResponse(BaseModel):
    error: str
    error_kind: str
    detail: Optional[str] = None


# Chat

class ChatMessageRequest(BaseModel):
    message: str
    session_id: Optional[str] = None

    @field_validator('message')
    @classmethod
    def message_must_not_be_empty(cls, v):
        if not v.strip():
            raise ValueError('message cannot be empty')
        return v

    @field_validator('message')
    @classmethod
    def message_length_limit(cls, v):
        if len(v) > 8000:
            raise ValueError('message too long (max 8000 characters)')
        return v


class ChatMessageResponse(BaseModel):
    session_id: str
    response: str
    disposition: str
    score: int
    violated_rule_ids: List[int]
    executed: bool
    validation_id: int
    failed_action_index: Optional[int] = None
    error_kind: Optional[str] = None
    states: List[str] = []
    turn_id: Optional[str] = None


class ChatMessageItem(BaseModel):
    id: int
    role: str
    message: str
    created_at: datetime


class ChatHistoryResponse(BaseModel):
    session_id: str
    messages: List[ChatMessageItem]


class ChatSessionItem(BaseModel):
    session_id: str
    created_at: datetime
    message_count: int


class ChatSessionListResponse(BaseModel):
    sessions: List[ChatSessionItem]


# Philosophy

class PhilosophyDocumentRequest(BaseModel):
    type: str
    title: str
    content: str
    category: Optional[str] = None
    priority_weight: int = Field(default=50, ge=0, le=100)

    @field_validator('type')
    @classmethod
    def type_must_be_valid(cls, v):
        if v not in PHILOSOPHY_TYPES:
            raise ValueError(f'type must be one of: {list(PHILOSOPHY_TYPES)}')
        return v

    @field_validator('title', 'content')
    @classmethod
    def text_must_not_be_empty(cls, v):
        if not v.strip():
            raise ValueError('value cannot be empty')
        return v


class PhilosophyDocumentItem(BaseModel):
    id: str
    type: str
    title: str
    content: str
    category: Optional[str] = None
    priority_weight: int


class PhilosophyDocumentListResponse(BaseModel):
    documents: List[PhilosophyDocumentItem]


class NonNegotiableRequest(BaseModel):
    rule_number: int = Field(ge=1)
    title: str
    description: str = ""
    auto_reject: bool = False
    validation_keywords: List[str] = []
    blocked_action_types: List[str] = []

    @field_validator('title')
    @classmethod
    def title_must_not_be_empty(cls, v):
        if not v.strip():
            raise ValueError('title cannot be empty')
        return v

    @field_validator('validation_keywords', 'blocked_action_types')
    @classmethod
    def entries_must_not_be_empty(cls, v):
        if any(not item.strip() for item in v):
            raise ValueError('entries cannot be empty')
        return v


class NonNegotiableItem(BaseModel):
    id: str
    rule_number: int
    title: str
    description: str
    auto_reject: bool
    validation_keywords: List[str]
    blocked_action_types: List[str]


class NonNegotiableListResponse(BaseModel):
    non_negotiables: List[NonNegotiableItem]


class DecisionHierarchyItem(BaseModel):
    level: int
    stakeholder: str
    weight: float
    description: str = ""


class DecisionHierarchyResponse(BaseModel):
    levels: List[DecisionHierarchyItem]


class ActionModel(BaseModel):
    type: str
    target_entity_id: Optional[str] = None
    payload: Dict[str, Any] = {}

    @field_validator('type')
    @classmethod
    def type_must_not_be_empty(cls, v):
        if not v.strip():
            raise ValueError('type cannot be empty')
        return v


class ValidateRequest(BaseModel):
    text: str
    proposed_actions: List[ActionModel] = []
    # Re-validate an earlier turn; the new record is appended for that turn
    turn_id: Optional[str] = None


class ViolatedRule(BaseModel):
    rule_number: int
    title: Optional[str] = None
    auto_reject: Optional[bool] = None


class ValidationResponse(BaseModel):
    id: int
    created_at: datetime
    status: str
    score: int
    violated_non_negotiable_ids: List[int]
    violated_rules: List[ViolatedRule] = []
    recommendation_snapshot: Dict[str, Any]
    session_id: Optional[str] = None
    turn_id: Optional[str] = None


class ValidationListResponse(BaseModel):
    validations: List[ValidationResponse]


class CategoryScoreModel(BaseModel):
    category: str
    score: int
    count: int


class AlignmentResponse(BaseModel):
    overall_score: int
    total_validations: int
    approved_count: int
    flagged_count: int
    rejected_count: int
    has_data: bool
    breakdown: List[CategoryScoreModel]


# Planning data (read-only)

class KPIItem(BaseModel):
    id: str
    name: str
    description: Optional[str] = None
    target_value: Optional[float] = None
    current_value: Optional[float] = None
    unit: Optional[str] = None
    frequency: Optional[str] = None
    status: Optional[str] = None
    ogsm_component_id: Optional[str] = None


class KPIListResponse(BaseModel):
    kpis: List[KPIItem]


class KPIHistoryItem(BaseModel):
    id: int
    value: float
    recorded_date: str
    notes: Optional[str] = None


class KPIDetailResponse(BaseModel):
    kpi: KPIItem
    history: List[KPIHistoryItem]

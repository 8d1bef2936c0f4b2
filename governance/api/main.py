"""
Recommendation governance API.
Chat turns, philosophy and non-negotiable authoring, the validation ledger
and alignment metrics.
"""

from contextlib import asynccontextmanager

from fastapi import FastAPI, HTTPException, Depends, Query, Request
from fastapi.responses import JSONResponse
from fastapi.middleware.cors import CORSMiddleware

from .schemas import (
    HealthResponse,
    PhilosophyDocumentRequest,
    PhilosophyDocumentItem,
    PhilosophyDocumentListResponse,
    NonNegotiableRequest,
    NonNegotiableItem,
    NonNegotiableListResponse,
    DecisionHierarchyItem,
    DecisionHierarchyResponse,
    ValidateRequest,
    ValidationResponse,
    ValidationListResponse,
    ViolatedRule,
    AlignmentResponse,
    CategoryScoreModel,
    KPIItem,
    KPIListResponse,
    KPIHistoryItem,
    KPIDetailResponse
)
from .services import GovernanceServices, get_services
from ..core import config
from ..core.db import init_db, health_check
from ..core.disposition import decide
from ..core.errors import CollaboratorError, CollaboratorTimeout, TurnCancelled, RuleConfigurationError
from ..core.evaluator import violated_ids
from ..core.rules import RuleSnapshot
from ..core.schema import Action, NonNegotiable, PhilosophyItem, Recommendation, ValidationRecord
from util.logging import logger, audit_event


@asynccontextmanager
async def lifespan(app: FastAPI):
    init_db()
    for issue in config.validate_config():
        logger.warning(f"Configuration issue: {issue}")
    logger.log_operation("startup", "success", {"version": config.VERSION, "db_path": config.DB_PATH})
    yield


# Initialize the FastAPI application
app = FastAPI(
    title="Recommendation Governance API",
    version=config.VERSION,
    description="Validates advisor recommendations against organizational philosophy before they are applied",
    docs_url="/docs" if config.debug_enabled() else None,
    redoc_url="/redoc" if config.debug_enabled() else None,
    lifespan=lifespan
)

app.add_middleware(
    CORSMiddleware,
    allow_origins=["http://localhost:3000", "http://127.0.0.1:3000"],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


def _error(status_code: int, exc: Exception) -> JSONResponse:
    return JSONResponse(
        status_code=status_code,
        content={"error": exc.__class__.__name__, "error_kind": exc.error_kind, "detail": str(exc)}
    )


# CollaboratorTimeout subclasses CollaboratorError; Starlette resolves the most specific handler
@app.exception_handler(CollaboratorTimeout)
async def collaborator_timeout_handler(request: Request, exc: CollaboratorTimeout):
    return _error(504, exc)


@app.exception_handler(CollaboratorError)
async def collaborator_error_handler(request: Request, exc: CollaboratorError):
    return _error(502, exc)


@app.exception_handler(TurnCancelled)
async def turn_cancelled_handler(request: Request, exc: TurnCancelled):
    return _error(409, exc)


@app.exception_handler(RuleConfigurationError)
async def rule_configuration_handler(request: Request, exc: RuleConfigurationError):
    return _error(400, exc)


@app.get("/health", response_model=HealthResponse)
def health_check_endpoint(services: GovernanceServices = Depends(get_services)):
    """Check system health."""
    db_health = health_check(services.ledger.db_path)
    return HealthResponse(
        status="healthy" if db_health else "unhealthy",
        version=config.VERSION,
        db_health=db_health,
        advisor=services.advisor.get_status(),
        config_issues=config.validate_config()
    )


# Philosophy

def _document_item(item: PhilosophyItem) -> PhilosophyDocumentItem:
    return PhilosophyDocumentItem(
        id=item.id, type=item.type, title=item.title, content=item.content,
        category=item.category, priority_weight=item.priority_weight
    )


def _rule_item(rule: NonNegotiable) -> NonNegotiableItem:
    return NonNegotiableItem(
        id=rule.id,
        rule_number=rule.rule_number,
        title=rule.title,
        description=rule.description,
        auto_reject=rule.auto_reject,
        validation_keywords=list(rule.validation_keywords),
        blocked_action_types=list(rule.blocked_action_types)
    )


def _validation_response(record: ValidationRecord, snapshot: RuleSnapshot) -> ValidationResponse:
    violated_rules = []
    for number in record.violated_non_negotiable_ids:
        # Retired rules keep their number but are no longer in the snapshot
        rule = snapshot.rule_by_number(number)
        violated_rules.append(ViolatedRule(
            rule_number=number,
            title=rule.title if rule else None,
            auto_reject=rule.auto_reject if rule else None
        ))
    return ValidationResponse(
        id=record.id,
        created_at=record.created_at,
        status=record.status,
        score=record.score,
        violated_non_negotiable_ids=list(record.violated_non_negotiable_ids),
        violated_rules=violated_rules,
        recommendation_snapshot=record.recommendation_snapshot,
        session_id=record.session_id,
        turn_id=record.turn_id
    )


@app.get("/philosophy/documents", response_model=PhilosophyDocumentListResponse)
def list_philosophy_documents(type: str = None, services: GovernanceServices = Depends(get_services)):
    snapshot = services.rule_store.snapshot()
    items = snapshot.items_of_type(type) if type else list(snapshot.philosophy_items)
    return PhilosophyDocumentListResponse(documents=[_document_item(i) for i in items])


@app.post("/philosophy/documents", response_model=PhilosophyDocumentItem, status_code=201)
def create_philosophy_document(request: PhilosophyDocumentRequest,
                               services: GovernanceServices = Depends(get_services)):
    item = services.rule_store.add_philosophy_item(
        type=request.type,
        title=request.title,
        content=request.content,
        category=request.category,
        priority_weight=request.priority_weight
    )
    audit_event("philosophy.document_created", {"item_id": item.id, "type": item.type},
                payload={"title": item.title, "content": item.content})
    return _document_item(item)


@app.get("/philosophy/non-negotiables", response_model=NonNegotiableListResponse)
def list_non_negotiables(services: GovernanceServices = Depends(get_services)):
    snapshot = services.rule_store.snapshot()
    return NonNegotiableListResponse(non_negotiables=[_rule_item(r) for r in snapshot.non_negotiables])


@app.post("/philosophy/non-negotiables", response_model=NonNegotiableItem, status_code=201)
def create_non_negotiable(request: NonNegotiableRequest, services: GovernanceServices = Depends(get_services)):
    rule = services.rule_store.add_non_negotiable(
        rule_number=request.rule_number,
        title=request.title,
        description=request.description,
        auto_reject=request.auto_reject,
        validation_keywords=request.validation_keywords,
        blocked_action_types=request.blocked_action_types
    )
    audit_event("philosophy.non_negotiable_created", {"rule_number": rule.rule_number, "auto_reject": rule.auto_reject},
                payload={"validation_keywords": list(rule.validation_keywords)})
    return _rule_item(rule)


@app.get("/philosophy/decision-hierarchy", response_model=DecisionHierarchyResponse)
def get_decision_hierarchy(services: GovernanceServices = Depends(get_services)):
    snapshot = services.rule_store.snapshot()
    return DecisionHierarchyResponse(levels=[
        DecisionHierarchyItem(level=l.level, stakeholder=l.stakeholder, weight=l.weight, description=l.description)
        for l in snapshot.decision_hierarchy
    ])


@app.post("/philosophy/validate", response_model=ValidationResponse)
def validate_recommendation(request: ValidateRequest, services: GovernanceServices = Depends(get_services)):
    """
    Evaluate and record a recommendation. Proposed actions are never executed here.

    With a turn_id the record is a correction for that turn and keeps the
    turn's session, so deleting the session still removes it.
    """
    session_id = None
    if request.turn_id is not None:
        earlier = services.ledger.for_turn(request.turn_id)
        if not earlier:
            raise HTTPException(status_code=404, detail="Turn not found")
        session_id = earlier[-1].session_id

    recommendation = Recommendation(
        text=request.text,
        proposed_actions=tuple(Action.from_dict(a.model_dump()) for a in request.proposed_actions)
    )
    snapshot = services.rule_store.snapshot()
    violations = services.evaluator.evaluate(recommendation, snapshot)
    status, score = decide(violations)
    record = services.ledger.record(status, violated_ids(violations), recommendation.snapshot(), score=score,
                                    session_id=session_id, turn_id=request.turn_id)
    audit_event("philosophy.validate", {"validation_id": record.id, "status": status, "turn_id": request.turn_id},
                payload={"text": recommendation.text, "action_count": len(recommendation.proposed_actions)})
    return _validation_response(record, snapshot)


@app.get("/philosophy/validations/recent", response_model=ValidationListResponse)
def get_recent_validations(limit: int = Query(default=None, ge=1, le=100),
                           services: GovernanceServices = Depends(get_services)):
    records = services.orchestrator.get_recent_validations(limit)
    snapshot = services.rule_store.snapshot()
    return ValidationListResponse(validations=[_validation_response(r, snapshot) for r in records])


@app.get("/philosophy/alignment", response_model=AlignmentResponse)
def get_alignment(services: GovernanceServices = Depends(get_services)):
    score = services.orchestrator.get_alignment_score()
    return AlignmentResponse(
        overall_score=score.overall_score,
        total_validations=score.total_validations,
        approved_count=score.approved_count,
        flagged_count=score.flagged_count,
        rejected_count=score.rejected_count,
        has_data=score.has_data,
        breakdown=[CategoryScoreModel(category=c.category, score=c.score, count=c.count) for c in score.breakdown]
    )


# Planning data (read-only)

@app.get("/kpis", response_model=KPIListResponse)
def list_kpis(services: GovernanceServices = Depends(get_services)):
    return KPIListResponse(kpis=[KPIItem(**kpi) for kpi in services.planning_store.list_kpis()])


@app.get("/kpis/{kpi_id}", response_model=KPIDetailResponse)
def get_kpi(kpi_id: str, services: GovernanceServices = Depends(get_services)):
    kpi = services.planning_store.get_kpi(kpi_id)
    if kpi is None:
        raise HTTPException(status_code=404, detail="KPI not found")
    history = [KPIHistoryItem(**h) for h in services.planning_store.list_kpi_history(kpi_id)]
    return KPIDetailResponse(kpi=KPIItem(**kpi), history=history)


from .chat import router as chat_router

app.include_router(chat_router, prefix="/chat", tags=["chat"])

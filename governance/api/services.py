"""
Wiring of the governance components behind the API.
Built lazily on first use and shared by all routes.
"""

from dataclasses import dataclass
from typing import Optional

from ..agents.advisor import BaseAdvisor
from ..agents.orchestrator import SessionOrchestrator
from ..core import config
from ..core.actions import ActionExecutor
from ..core.alignment import AlignmentAggregator
from ..core.cache import StaleNotifier
from ..core.evaluator import RuleEvaluator
from ..core.ledger import ValidationLedger
from ..core.planning import PlanningStore
from ..core.rules import RuleStore
from ..core.transcript import TranscriptStore


@dataclass
class GovernanceServices:
    notifier: StaleNotifier
    rule_store: RuleStore
    evaluator: RuleEvaluator
    ledger: ValidationLedger
    planning_store: PlanningStore
    executor: ActionExecutor
    aggregator: AlignmentAggregator
    transcript: TranscriptStore
    advisor: BaseAdvisor
    orchestrator: SessionOrchestrator


def build_services(db_path: str = None, advisor: BaseAdvisor = None) -> GovernanceServices:
    db_path = db_path or config.DB_PATH
    advisor = advisor or config.get_advisor()

    notifier = StaleNotifier()
    rule_store = RuleStore(db_path, notifier=notifier)
    evaluator = RuleEvaluator()
    ledger = ValidationLedger(db_path, notifier=notifier)
    planning_store = PlanningStore(db_path)
    executor = ActionExecutor(planning_store, notifier=notifier, db_path=db_path)
    aggregator = AlignmentAggregator(ledger, rule_store, notifier=notifier, window=config.ALIGNMENT_WINDOW)
    transcript = TranscriptStore(db_path)

    orchestrator = SessionOrchestrator(
        rule_store=rule_store,
        evaluator=evaluator,
        ledger=ledger,
        executor=executor,
        aggregator=aggregator,
        transcript=transcript,
        planning_store=planning_store,
        advisor=advisor,
        timeout=config.ADVISOR_TIMEOUT_SEC
    )

    return GovernanceServices(
        notifier=notifier,
        rule_store=rule_store,
        evaluator=evaluator,
        ledger=ledger,
        planning_store=planning_store,
        executor=executor,
        aggregator=aggregator,
        transcript=transcript,
        advisor=advisor,
        orchestrator=orchestrator
    )


_services: Optional[GovernanceServices] = None


def get_services() -> GovernanceServices:
    """FastAPI dependency returning the shared services."""
    global _services
    if _services is None:
        _services = build_services()
    return _services


def set_services(services: Optional[GovernanceServices]) -> None:
    """Replace the shared services (None rebuilds them on next use)."""
    global _services
    _services = services

"""
Session orchestrator - drives one chat turn through the governance pipeline.

Received -> RecommendationObtained -> Evaluated -> Approved/Flagged/Rejected
-> (Executed | ExecutionFailed) -> Persisted

A turn that fails to get a recommendation (CollaboratorError,
CollaboratorTimeout) or is cancelled before evaluation leaves no ledger entry
and no assistant message. Once the validation record is written the rest of
the turn is synchronous, so it always reaches Persisted.
"""

import asyncio
import uuid
from dataclasses import dataclass, field
from typing import Dict, List, Optional, Tuple

from .advisor import BaseAdvisor, ConversationContext
from ..core import config
from ..core.actions import ActionExecutor
from ..core.alignment import AlignmentAggregator
from ..core.disposition import decide
from ..core.errors import CollaboratorError, CollaboratorTimeout, TurnCancelled
from ..core.evaluator import RuleEvaluator, violated_ids
from ..core.ledger import ValidationLedger
from ..core.planning import PlanningStore
from ..core.rules import RuleStore
from ..core.schema import (AlignmentScore, ExecutionOutcome, NonNegotiable, Recommendation, ValidationRecord,
                           APPROVED, FLAGGED, REJECTED)
from ..core.transcript import TranscriptStore
from util.logging import logger


class TurnState:
    RECEIVED = "Received"
    RECOMMENDATION_OBTAINED = "RecommendationObtained"
    EVALUATED = "Evaluated"
    APPROVED = "Approved"
    FLAGGED = "Flagged"
    REJECTED = "Rejected"
    EXECUTED = "Executed"
    EXECUTION_FAILED = "ExecutionFailed"
    PERSISTED = "Persisted"
    COLLABORATOR_ERROR = "CollaboratorError"
    COLLABORATOR_TIMEOUT = "CollaboratorTimeout"
    CANCELLED = "Cancelled"


_DISPOSITION_STATES = {
    APPROVED: TurnState.APPROVED,
    FLAGGED: TurnState.FLAGGED,
    REJECTED: TurnState.REJECTED,
}


@dataclass
class TurnResult:
    session_id: str
    reply: str
    disposition: str
    score: int
    violated_rule_ids: List[int]
    executed: bool
    validation_id: int
    failed_action_index: Optional[int] = None
    error_kind: Optional[str] = None
    states: List[str] = field(default_factory=list)
    turn_id: Optional[str] = None


class _SessionLock:
    """asyncio.Lock plus the number of turns holding or waiting on it."""

    def __init__(self):
        self.lock = asyncio.Lock()
        self.users = 0


class SessionOrchestrator:
    """
    Runs chat turns. Turns of one session are serialized in submission
    order; turns of different sessions run concurrently.
    """

    def __init__(self, rule_store: RuleStore, evaluator: RuleEvaluator, ledger: ValidationLedger,
                 executor: ActionExecutor, aggregator: AlignmentAggregator, transcript: TranscriptStore,
                 planning_store: PlanningStore, advisor: BaseAdvisor, timeout: float = None,
                 context_messages: int = None):
        self.rule_store = rule_store
        self.evaluator = evaluator
        self.ledger = ledger
        self.executor = executor
        self.aggregator = aggregator
        self.transcript = transcript
        self.planning_store = planning_store
        self.advisor = advisor
        self.timeout = timeout if timeout is not None else config.ADVISOR_TIMEOUT_SEC
        self.context_messages = context_messages if context_messages is not None else config.CHAT_CONTEXT_MESSAGES

        self._session_locks: Dict[str, _SessionLock] = {}

    async def submit_turn(self, session_id: Optional[str], user_message: str,
                          cancel_event: Optional[asyncio.Event] = None) -> TurnResult:
        """
        Process one user message end to end.

        Raises CollaboratorTimeout, CollaboratorError or TurnCancelled when the
        turn is aborted before evaluation.
        """
        session_id = session_id or str(uuid.uuid4())
        entry = self._session_locks.get(session_id)
        if entry is None:
            entry = self._session_locks[session_id] = _SessionLock()
        entry.users += 1
        try:
            async with entry.lock:
                return await self._run_turn(session_id, user_message, cancel_event)
        finally:
            entry.users -= 1
            if entry.users == 0 and self._session_locks.get(session_id) is entry:
                del self._session_locks[session_id]

    def active_sessions(self) -> int:
        """Number of sessions with a turn running or queued."""
        return len(self._session_locks)

    async def _run_turn(self, session_id: str, user_message: str,
                        cancel_event: Optional[asyncio.Event]) -> TurnResult:
        turn_id = str(uuid.uuid4())
        states: List[str] = []

        def enter(state: str, details: dict = None):
            states.append(state)
            logger.log_turn_state(session_id, turn_id, state, details)

        # Received
        history = self.transcript.get_history(session_id, limit=self.context_messages)
        self.transcript.append_message(session_id, "user", user_message)
        snapshot = self.rule_store.snapshot()
        enter(TurnState.RECEIVED, {"rule_snapshot_version": snapshot.version})

        self._check_cancelled(cancel_event, session_id, turn_id, states)

        context = ConversationContext(
            session_id=session_id,
            user_message=user_message,
            history=history,
            philosophy_context=snapshot.philosophy_context(),
            system_context=self.planning_store.system_context()
        )
        recommendation = await self._obtain_recommendation(context, session_id, turn_id, states)
        enter(TurnState.RECOMMENDATION_OBTAINED, {"action_count": len(recommendation.proposed_actions)})

        self._check_cancelled(cancel_event, session_id, turn_id, states)

        # Evaluated; no await points from here on. The store calls below must stay
        # synchronous, moving them to a thread would let a turn stop after its record.
        violations = self.evaluator.evaluate(recommendation, snapshot)
        status, score = decide(violations)
        record = self.ledger.record(status, violated_ids(violations), recommendation.snapshot(),
                                    score=score, session_id=session_id, turn_id=turn_id)
        enter(TurnState.EVALUATED, {"validation_id": record.id})
        enter(_DISPOSITION_STATES[status])

        outcome = None
        if status == APPROVED:
            outcome = self.executor.execute(record.id, recommendation.proposed_actions)
            if outcome.executed:
                enter(TurnState.EXECUTED, {"applied": outcome.applied_count})
            else:
                enter(TurnState.EXECUTION_FAILED, {
                    "failed_action_index": outcome.failed_action_index,
                    "error_kind": outcome.error_kind
                })

        reply = compose_reply(recommendation, record, violations, outcome)
        self.transcript.append_message(session_id, "assistant", reply)
        enter(TurnState.PERSISTED)

        return TurnResult(
            session_id=session_id,
            reply=reply,
            disposition=status,
            score=score,
            violated_rule_ids=list(record.violated_non_negotiable_ids),
            executed=bool(outcome and outcome.executed),
            validation_id=record.id,
            failed_action_index=outcome.failed_action_index if outcome else None,
            error_kind=outcome.error_kind if outcome else None,
            states=states,
            turn_id=turn_id
        )

    async def _obtain_recommendation(self, context: ConversationContext, session_id: str, turn_id: str,
                                     states: List[str]) -> Recommendation:
        try:
            recommendation = await asyncio.wait_for(self.advisor.get_recommendation(context), timeout=self.timeout)
        except asyncio.TimeoutError as e:
            self._abort(TurnState.COLLABORATOR_TIMEOUT, session_id, turn_id, states,
                        f"no reply within {self.timeout}s")
            raise CollaboratorTimeout(f"Advisor did not answer within {self.timeout} seconds") from e
        except CollaboratorError as e:
            self._abort(TurnState.COLLABORATOR_ERROR, session_id, turn_id, states, str(e))
            raise
        except asyncio.CancelledError:
            self._abort(TurnState.CANCELLED, session_id, turn_id, states, "task cancelled")
            raise
        except Exception as e:
            self._abort(TurnState.COLLABORATOR_ERROR, session_id, turn_id, states, str(e))
            raise CollaboratorError(f"Advisor failed: {e}") from e

        if not isinstance(recommendation, Recommendation):
            self._abort(TurnState.COLLABORATOR_ERROR, session_id, turn_id, states, "not a Recommendation")
            raise CollaboratorError("Advisor returned an invalid recommendation")
        return recommendation

    def _check_cancelled(self, cancel_event: Optional[asyncio.Event], session_id: str, turn_id: str,
                         states: List[str]) -> None:
        if cancel_event is not None and cancel_event.is_set():
            self._abort(TurnState.CANCELLED, session_id, turn_id, states, "cancelled by caller")
            raise TurnCancelled(f"Turn {turn_id} on session {session_id} was cancelled before evaluation")

    def _abort(self, state: str, session_id: str, turn_id: str, states: List[str], reason: str) -> None:
        states.append(state)
        logger.log_turn_state(session_id, turn_id, state, {"reason": reason})
        if state != TurnState.CANCELLED:
            logger.log_collaborator_failure(self.advisor.advisor_id, state, session_id, reason)

    def get_recent_validations(self, limit: int = None) -> List[ValidationRecord]:
        return self.ledger.recent(limit or config.RECENT_VALIDATIONS_LIMIT)

    def get_alignment_score(self) -> AlignmentScore:
        return self.aggregator.score()


def compose_reply(recommendation: Recommendation, record: ValidationRecord,
                  violations: Tuple[NonNegotiable, ...], outcome: Optional[ExecutionOutcome]) -> str:
    """Advice text followed by the governance verdict the user sees."""
    lines = [recommendation.text, "", f"Governance check: {record.status.upper()} (score {record.score})"]

    for rule in violations:
        marker = " [AUTO-REJECT]" if rule.auto_reject else ""
        lines.append(f"- Violates non-negotiable #{rule.rule_number}: {rule.title}{marker}")

    if record.status == REJECTED:
        lines.append("This recommendation was rejected; no changes were applied.")
    elif record.status == FLAGGED:
        lines.append("This recommendation needs review; no changes were applied.")
    elif outcome is not None:
        if outcome.executed:
            if outcome.applied_count:
                lines.append(f"Applied {outcome.applied_count} change(s) to planning data.")
        else:
            index = outcome.failed_action_index
            where = f"action {index + 1}" if index is not None else "the planning store"
            lines.append(f"Approved, but applying changes failed at {where} ({outcome.error_kind}); "
                         f"nothing was changed.")

    return "\n".join(lines)

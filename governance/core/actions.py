"""
Action executor - applies an approved recommendation's proposed actions.

A batch is all-or-nothing: every action runs inside one planning-store
transaction, and the first failure rolls the whole batch back. Handlers are
looked up by Action.type in an ActionRegistry; a type nobody registered is a
failure (UnknownActionType), never a silent skip.
"""

import sqlite3
from datetime import datetime
from typing import Any, Callable, Dict, Iterable, List, Optional

from .cache import StaleNotifier, PLANNING_DATA
from .db import get_db
from .errors import ActionError, ActionHandlerFailure, UnknownActionType
from .planning import PlanningStore, PlanningTransaction
from .schema import Action, ExecutionOutcome
from util.logging import logger

ActionHandler = Callable[[PlanningTransaction, Action], None]


def _get(payload: Dict[str, Any], *keys: str, default: Any = None) -> Any:
    """First present key wins; advisors send both camelCase and snake_case."""
    for key in keys:
        if key in payload and payload[key] is not None:
            return payload[key]
    return default


def _number(payload: Dict[str, Any], *keys: str, required: bool = True) -> Optional[float]:
    value = _get(payload, *keys)
    if value is None:
        if required:
            raise ValueError(f"payload is missing '{keys[0]}'")
        return None
    if isinstance(value, bool):
        raise ValueError(f"'{keys[0]}' must be numeric, got {value!r}")
    try:
        return float(value)
    except (TypeError, ValueError):
        raise ValueError(f"'{keys[0]}' must be numeric, got {value!r}")


def _target(action: Action, *keys: str) -> str:
    target = action.target_entity_id or _get(action.payload, *keys)
    if not target:
        raise ValueError(f"{action.type} needs a target entity id")
    return str(target)


# Default handlers

def update_kpi_value(txn: PlanningTransaction, action: Action) -> None:
    kpi_id = _target(action, 'kpiId', 'kpi_id')
    value = _number(action.payload, 'value', 'currentValue', 'current_value')
    txn.set_kpi_current_value(kpi_id, value)
    txn.add_kpi_history(kpi_id, value, notes=_get(action.payload, 'notes', default="Recorded via advisor"))


def update_kpi_target(txn: PlanningTransaction, action: Action) -> None:
    kpi_id = _target(action, 'kpiId', 'kpi_id')
    txn.set_kpi_target_value(kpi_id, _number(action.payload, 'value', 'targetValue', 'target_value'))


def update_ogsm_status(txn: PlanningTransaction, action: Action) -> None:
    component_id = _target(action, 'componentId', 'component_id')
    status = _get(action.payload, 'status')
    if not status:
        raise ValueError("payload is missing 'status'")
    txn.set_ogsm_status(component_id, str(status))


def create_kpi_history_entry(txn: PlanningTransaction, action: Action) -> None:
    kpi_id = _target(action, 'kpiId', 'kpi_id')
    value = _number(action.payload, 'value')
    txn.add_kpi_history(
        kpi_id, value,
        recorded_date=_get(action.payload, 'recordedDate', 'recorded_date'),
        notes=_get(action.payload, 'notes', default="")
    )
    # A recorded measurement becomes the KPI's current value
    txn.set_kpi_current_value(kpi_id, value)


def create_kpi(txn: PlanningTransaction, action: Action) -> None:
    payload = action.payload
    txn.create_kpi(
        name=_get(payload, 'name'),
        target_value=_number(payload, 'targetValue', 'target_value', required=False),
        current_value=_number(payload, 'currentValue', 'current_value', required=False),
        unit=_get(payload, 'unit'),
        frequency=_get(payload, 'frequency', default='monthly'),
        description=_get(payload, 'description'),
        ogsm_component_id=_get(payload, 'ogsmComponentId', 'ogsm_component_id'),
        kpi_id=action.target_entity_id
    )


def delete_kpi(txn: PlanningTransaction, action: Action) -> None:
    txn.delete_kpi(_target(action, 'kpiId', 'kpi_id'))


def create_ogsm_component(txn: PlanningTransaction, action: Action) -> None:
    payload = action.payload
    txn.create_ogsm_component(
        component_type=_get(payload, 'componentType', 'component_type'),
        title=_get(payload, 'title'),
        description=_get(payload, 'description'),
        parent_id=_get(payload, 'parentId', 'parent_id'),
        component_id=action.target_entity_id
    )


def update_ogsm_component(txn: PlanningTransaction, action: Action) -> None:
    txn.update_ogsm_component(
        _target(action, 'componentId', 'component_id'),
        title=_get(action.payload, 'title'),
        description=_get(action.payload, 'description')
    )


def delete_ogsm_component(txn: PlanningTransaction, action: Action) -> None:
    txn.delete_ogsm_component(_target(action, 'componentId', 'component_id'))


DEFAULT_HANDLERS: Dict[str, ActionHandler] = {
    'updateKpiValue': update_kpi_value,
    'updateKpiTarget': update_kpi_target,
    'updateOgsmStatus': update_ogsm_status,
    'createKpiHistoryEntry': create_kpi_history_entry,
    'createKpi': create_kpi,
    'deleteKpi': delete_kpi,
    'createOgsmComponent': create_ogsm_component,
    'updateOgsmComponent': update_ogsm_component,
    'deleteOgsmComponent': delete_ogsm_component,
}


class ActionRegistry:
    """Open mapping from action type to handler."""

    def __init__(self, handlers: Dict[str, ActionHandler] = None):
        self._handlers: Dict[str, ActionHandler] = dict(DEFAULT_HANDLERS if handlers is None else handlers)

    def register(self, action_type: str, handler: ActionHandler) -> None:
        if not action_type:
            raise ValueError("action_type is required")
        self._handlers[action_type] = handler

    def get(self, action_type: str) -> ActionHandler:
        handler = self._handlers.get(action_type)
        if handler is None:
            raise UnknownActionType(f"No handler registered for action type '{action_type}'", action_type)
        return handler

    def types(self) -> List[str]:
        return sorted(self._handlers)


class ActionExecutor:

    def __init__(self, planning_store: PlanningStore, registry: ActionRegistry = None,
                 notifier: StaleNotifier = None, db_path: str = None):
        self.planning_store = planning_store
        self.registry = registry or ActionRegistry()
        self.notifier = notifier
        self.db_path = db_path

    def execute(self, validation_id: int, actions: Iterable[Action]) -> ExecutionOutcome:
        """
        Apply `actions` in order as one unit.

        Only call this for a validation whose disposition is approved. On
        failure nothing from the batch remains in the planning store and the
        outcome names the 0-based index of the failing action.
        """
        actions = list(actions)
        index = None

        try:
            with self.planning_store.transaction() as txn:
                for index, action in enumerate(actions):
                    self._apply(txn, action)
        except ActionError as e:
            outcome = ExecutionOutcome(
                validation_id=validation_id,
                executed=False,
                failed_action_index=index,
                error_kind=e.error_kind,
                error_message=str(e)
            )
        except sqlite3.Error as e:
            # Store-level failure (lock timeout, commit error); no single action is to blame
            outcome = ExecutionOutcome(
                validation_id=validation_id,
                executed=False,
                failed_action_index=None,
                error_kind=ActionHandlerFailure.error_kind,
                error_message=f"planning store transaction failed: {e}"
            )
        else:
            outcome = ExecutionOutcome(validation_id=validation_id, executed=True, applied_count=len(actions))

        self._record_outcome(outcome)
        logger.log_execution(validation_id, outcome.executed, len(actions),
                             outcome.failed_action_index, outcome.error_kind)

        if outcome.executed and actions and self.notifier is not None:
            self.notifier.notify(PLANNING_DATA)
        return outcome

    def _apply(self, txn: PlanningTransaction, action: Action) -> None:
        handler = self.registry.get(action.type)
        try:
            handler(txn, action)
        except ActionError:
            raise
        except Exception as e:
            raise ActionHandlerFailure(f"{action.type} failed: {e}", action.type) from e

    def _record_outcome(self, outcome: ExecutionOutcome) -> None:
        with get_db(self.db_path) as conn:
            conn.execute('''
                INSERT INTO execution_outcomes
                    (validation_id, executed, failed_action_index, error_kind, error_message, applied_count, created_at)
                VALUES (?, ?, ?, ?, ?, ?, ?)
            ''', (outcome.validation_id, outcome.executed, outcome.failed_action_index, outcome.error_kind,
                  outcome.error_message, outcome.applied_count, datetime.now().isoformat()))
            conn.commit()

    def get_outcome(self, validation_id: int) -> Optional[ExecutionOutcome]:
        with get_db(self.db_path) as conn:
            cursor = conn.cursor()
            cursor.execute('''
                SELECT validation_id, executed, failed_action_index, error_kind, error_message, applied_count
                FROM execution_outcomes WHERE validation_id = ?
            ''', (validation_id,))
            row = cursor.fetchone()
            if not row:
                return None
            validation_id, executed, failed_action_index, error_kind, error_message, applied_count = row
            return ExecutionOutcome(
                validation_id=validation_id,
                executed=bool(executed),
                failed_action_index=failed_action_index,
                error_kind=error_kind,
                error_message=error_message,
                applied_count=applied_count
            )

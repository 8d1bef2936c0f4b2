"""
Shared fixtures: every test gets its own SQLite file.
"""

import pytest

from governance.core import config
from governance.core.actions import ActionExecutor
from governance.core.alignment import AlignmentAggregator
from governance.core.cache import StaleNotifier
from governance.core.db import init_db
from governance.core.evaluator import RuleEvaluator
from governance.core.ledger import ValidationLedger
from governance.core.planning import PlanningStore
from governance.core.rules import RuleStore
from governance.core.transcript import TranscriptStore


@pytest.fixture
def db_path(tmp_path, monkeypatch):
    """Fresh database; config.DB_PATH points at it for code that uses the default."""
    path = str(tmp_path / "governance.db")
    monkeypatch.setattr(config, "DB_PATH", path)
    init_db(path)
    return path


@pytest.fixture
def notifier():
    return StaleNotifier()


@pytest.fixture
def rule_store(db_path, notifier):
    return RuleStore(db_path, notifier=notifier)


@pytest.fixture
def ledger(db_path, notifier):
    return ValidationLedger(db_path, notifier=notifier)


@pytest.fixture
def planning_store(db_path):
    return PlanningStore(db_path)


@pytest.fixture
def executor(planning_store, notifier, db_path):
    return ActionExecutor(planning_store, notifier=notifier, db_path=db_path)


@pytest.fixture
def aggregator(ledger, rule_store, notifier):
    return AlignmentAggregator(ledger, rule_store, notifier=notifier)


@pytest.fixture
def transcript(db_path):
    return TranscriptStore(db_path)


@pytest.fixture
def evaluator():
    return RuleEvaluator()


@pytest.fixture
def kpi_k1(planning_store):
    """KPI 'k1' with a target of 12000."""
    with planning_store.transaction() as txn:
        txn.create_kpi(name="Monthly active users", target_value=12000, current_value=9000,
                       unit="users", kpi_id="k1")
    return "k1"

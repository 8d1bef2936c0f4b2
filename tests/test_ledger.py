"""
Validation ledger tests.
"""

import sqlite3

import pytest

from governance.core.db import get_db


def snapshot_of(text):
    return {"text": text, "proposed_actions": []}


class TestValidationLedger:
    """Append-only ledger behavior."""

    def test_record_defaults_score_from_status(self, ledger):
        record = ledger.record("flagged", [5], snapshot_of("Consider a layoff"))
        assert record.id > 0
        assert record.score == 50
        assert record.violated_non_negotiable_ids == (5,)

        stored = ledger.get(record.id)
        assert stored.status == "flagged"
        assert stored.recommendation_snapshot == snapshot_of("Consider a layoff")

    def test_invalid_status(self, ledger):
        with pytest.raises(ValueError):
            ledger.record("maybe", [], snapshot_of("x"))

    def test_created_at_strictly_increasing(self, ledger):
        records = [ledger.record("approved", [], snapshot_of(str(i))) for i in range(10)]
        stamps = [r.created_at for r in records]
        assert all(a < b for a, b in zip(stamps, stamps[1:]))

    def test_recent_newest_first(self, ledger):
        ids = [ledger.record("approved", [], snapshot_of(str(i))).id for i in range(4)]
        assert [r.id for r in ledger.recent(3)] == list(reversed(ids))[:3]
        assert ledger.recent(0) == []

    def test_counts_by_status(self, ledger):
        ledger.record("approved", [], snapshot_of("a"))
        ledger.record("approved", [], snapshot_of("b"))
        ledger.record("rejected", [3], snapshot_of("c"))
        assert ledger.counts_by_status() == {"approved": 2, "flagged": 0, "rejected": 1}
        assert ledger.counts_by_status(last_n=1) == {"approved": 0, "flagged": 0, "rejected": 1}

    def test_state_tracks_appends(self, ledger):
        assert ledger.state() == (0, 0)
        record = ledger.record("approved", [], snapshot_of("a"))
        assert ledger.state() == (record.id, 1)
        assert ledger.latest_id() == record.id

    def test_updates_are_refused(self, ledger, db_path):
        record = ledger.record("rejected", [3], snapshot_of("x"))
        with get_db(db_path) as conn:
            with pytest.raises(sqlite3.DatabaseError):
                conn.execute("UPDATE validations SET status = 'approved' WHERE id = ?", (record.id,))
        assert ledger.get(record.id).status == "rejected"

    def test_record_notifies_validations_topic(self, ledger, notifier):
        seen = []
        notifier.subscribe("validations", "test", seen.append)
        ledger.record("approved", [], snapshot_of("a"))
        assert seen == ["validations"]

    def test_correction_appends_for_same_turn(self, ledger):
        first = ledger.record("flagged", [5], snapshot_of("Consider a layoff"), turn_id="t1")
        ledger.record("approved", [], snapshot_of("unrelated"), turn_id="t2")
        correction = ledger.record("approved", [], snapshot_of("Consider retraining"), turn_id="t1")

        history = ledger.for_turn("t1")
        assert [r.id for r in history] == [first.id, correction.id]
        assert ledger.get(first.id).status == "flagged"
        assert ledger.for_turn("missing") == []

"""
Transcript store tests, including the cascading session delete.
"""

import pytest

from governance.core.db import get_db


class TestTranscriptStore:

    def test_append_creates_session(self, transcript):
        transcript.append_message("s1", "user", "hello")
        assert transcript.session_exists("s1")
        assert [m.message for m in transcript.get_history("s1")] == ["hello"]

    def test_ensure_session_is_idempotent(self, transcript):
        assert transcript.ensure_session("s1")
        assert not transcript.ensure_session("s1")

    def test_invalid_role(self, transcript):
        with pytest.raises(ValueError):
            transcript.append_message("s1", "system", "hi")

    def test_history_limit_keeps_latest_in_order(self, transcript):
        for i in range(5):
            transcript.append_message("s1", "user" if i % 2 == 0 else "assistant", f"m{i}")
        assert [m.message for m in transcript.get_history("s1", limit=3)] == ["m2", "m3", "m4"]

    def test_history_limit_zero_is_empty(self, transcript):
        transcript.append_message("s1", "user", "hello")
        assert transcript.get_history("s1", limit=0) == []
        assert len(transcript.get_history("s1")) == 1

    def test_list_sessions_counts_messages(self, transcript):
        transcript.append_message("s1", "user", "a")
        transcript.append_message("s1", "assistant", "b")
        transcript.ensure_session("s2")
        counts = {s.session_id: s.message_count for s in transcript.list_sessions()}
        assert counts == {"s1": 2, "s2": 0}

    def test_delete_cascades_to_messages_and_validations(self, transcript, ledger, executor, db_path):
        transcript.append_message("s1", "user", "a")
        record = ledger.record("approved", [], {"text": "a", "proposed_actions": []}, session_id="s1")
        executor.execute(record.id, [])
        kept = ledger.record("flagged", [5], {"text": "b", "proposed_actions": []})

        assert transcript.delete_session("s1")

        with get_db(db_path) as conn:
            assert conn.execute("SELECT COUNT(*) FROM chat_messages WHERE session_id = 's1'").fetchone()[0] == 0
            assert conn.execute("SELECT COUNT(*) FROM execution_outcomes").fetchone()[0] == 0
        assert ledger.get(record.id) is None
        assert ledger.get(kept.id) is not None

    def test_delete_unknown_session(self, transcript):
        assert not transcript.delete_session("missing")

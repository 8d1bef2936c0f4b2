"""
Validation ledger - append-only record of every evaluated recommendation.

No update or delete is exposed. A correction is a new record
for the same conversational turn; rows only disappear when the transcript
collaborator deletes the session they belong to.
"""

import json
import threading
from datetime import datetime, timedelta
from typing import Any, Dict, Iterable, List, Optional, Tuple

from .cache import StaleNotifier, VALIDATIONS
from .db import get_db
from .disposition import DISPOSITION_SCORES
from .schema import ValidationRecord, DISPOSITIONS
from util.logging import logger


def _row_to_record(row) -> ValidationRecord:
    record_id, created_at, status, score, violated, snapshot, session_id, turn_id = row
    return ValidationRecord(
        id=record_id,
        created_at=datetime.fromisoformat(created_at),
        status=status,
        score=score,
        violated_non_negotiable_ids=tuple(json.loads(violated)),
        recommendation_snapshot=json.loads(snapshot),
        session_id=session_id,
        turn_id=turn_id
    )


_SELECT = '''
    SELECT id, created_at, status, score, violated_ids, recommendation_snapshot, session_id, turn_id
    FROM validations
'''


class ValidationLedger:

    def __init__(self, db_path: str = None, notifier: Optional[StaleNotifier] = None):
        self.db_path = db_path
        self.notifier = notifier
        # Serializes appends so created_at stays strictly increasing
        self._append_lock = threading.Lock()

    def record(self, status: str, violations: Iterable[int], recommendation_snapshot: Dict[str, Any],
               score: Optional[int] = None, session_id: Optional[str] = None,
               turn_id: Optional[str] = None) -> ValidationRecord:
        """
        Durably append one evaluation outcome.

        Re-validating a turn appends another record with the same turn_id;
        the earlier record is left as it was.
        """
        if status not in DISPOSITIONS:
            raise ValueError(f"status must be one of: {list(DISPOSITIONS)}")
        if score is None:
            score = DISPOSITION_SCORES[status]
        violated = [int(v) for v in violations]

        with self._append_lock:
            with get_db(self.db_path) as conn:
                cursor = conn.cursor()
                cursor.execute("SELECT MAX(created_at) FROM validations")
                last = cursor.fetchone()[0]

                created_at = datetime.now()
                if last is not None:
                    last_ts = datetime.fromisoformat(last)
                    if created_at <= last_ts:
                        created_at = last_ts + timedelta(microseconds=1)

                cursor.execute('''
                    INSERT INTO validations (created_at, status, score, violated_ids, recommendation_snapshot, session_id, turn_id)
                    VALUES (?, ?, ?, ?, ?, ?, ?)
                ''', (created_at.isoformat(timespec='microseconds'), status, score, json.dumps(violated),
                      json.dumps(recommendation_snapshot), session_id, turn_id))
                conn.commit()
                record_id = cursor.lastrowid

        record = ValidationRecord(
            id=record_id,
            created_at=created_at,
            status=status,
            score=score,
            violated_non_negotiable_ids=tuple(violated),
            recommendation_snapshot=recommendation_snapshot,
            session_id=session_id,
            turn_id=turn_id
        )
        logger.log_validation(record.id, status, score, violated, session_id)

        if self.notifier is not None:
            self.notifier.notify(VALIDATIONS)
        return record

    def get(self, validation_id: int) -> Optional[ValidationRecord]:
        with get_db(self.db_path) as conn:
            cursor = conn.cursor()
            cursor.execute(_SELECT + " WHERE id = ?", (validation_id,))
            row = cursor.fetchone()
            return _row_to_record(row) if row else None

    def recent(self, n: int) -> List[ValidationRecord]:
        """The n most recent records, newest first."""
        if n <= 0:
            return []
        with get_db(self.db_path) as conn:
            cursor = conn.cursor()
            cursor.execute(_SELECT + " ORDER BY created_at DESC, id DESC LIMIT ?", (n,))
            return [_row_to_record(row) for row in cursor.fetchall()]

    def for_session(self, session_id: str) -> List[ValidationRecord]:
        """Records of one session in the order they were written."""
        with get_db(self.db_path) as conn:
            cursor = conn.cursor()
            cursor.execute(_SELECT + " WHERE session_id = ? ORDER BY created_at ASC, id ASC", (session_id,))
            return [_row_to_record(row) for row in cursor.fetchall()]

    def for_turn(self, turn_id: str) -> List[ValidationRecord]:
        """All records for one turn, oldest first; the last one is the current outcome."""
        with get_db(self.db_path) as conn:
            cursor = conn.cursor()
            cursor.execute(_SELECT + " WHERE turn_id = ? ORDER BY created_at ASC, id ASC", (turn_id,))
            return [_row_to_record(row) for row in cursor.fetchall()]

    def counts_by_status(self, since: Optional[datetime] = None, last_n: Optional[int] = None) -> Dict[str, int]:
        """
        Count records per disposition.

        `since` restricts to records created at or after a timestamp, `last_n`
        to the n most recent records. Without either the whole ledger counts.
        """
        counts = {status: 0 for status in DISPOSITIONS}
        query = "SELECT status, COUNT(*) FROM (SELECT status, created_at, id FROM validations"
        params: list = []
        if since is not None:
            query += " WHERE created_at >= ?"
            params.append(since.isoformat(timespec='microseconds'))
        query += " ORDER BY created_at DESC, id DESC"
        if last_n:
            query += " LIMIT ?"
            params.append(last_n)
        query += ") GROUP BY status"

        with get_db(self.db_path) as conn:
            cursor = conn.cursor()
            cursor.execute(query, params)
            for status, count in cursor.fetchall():
                counts[status] = count
        return counts

    def latest_id(self) -> int:
        """Id of the newest record, 0 for an empty ledger."""
        return self.state()[0]

    def state(self) -> Tuple[int, int]:
        """(newest id, row count); changes whenever a record is appended or a session delete removes rows."""
        with get_db(self.db_path) as conn:
            cursor = conn.cursor()
            cursor.execute("SELECT COALESCE(MAX(id), 0), COUNT(*) FROM validations")
            max_id, count = cursor.fetchone()
            return max_id, count

"""
Transcript store - chat sessions and their ordered messages.
"""

import threading
from datetime import datetime
from typing import List

from .db import get_db
from .schema import ChatMessage, ChatSession, CHAT_ROLES


class TranscriptStore:

    def __init__(self, db_path: str = None):
        self.db_path = db_path
        self._write_lock = threading.Lock()

    def ensure_session(self, session_id: str) -> bool:
        """Create the session if it does not exist. Returns True when it was created."""
        with get_db(self.db_path) as conn:
            cursor = conn.cursor()
            cursor.execute("INSERT OR IGNORE INTO chat_sessions (session_id, created_at) VALUES (?, ?)",
                           (session_id, datetime.now().isoformat()))
            conn.commit()
            return cursor.rowcount > 0

    def session_exists(self, session_id: str) -> bool:
        with get_db(self.db_path) as conn:
            cursor = conn.cursor()
            cursor.execute("SELECT 1 FROM chat_sessions WHERE session_id = ?", (session_id,))
            return cursor.fetchone() is not None

    def append_message(self, session_id: str, role: str, text: str, timestamp: datetime = None) -> ChatMessage:
        if role not in CHAT_ROLES:
            raise ValueError(f"role must be one of: {list(CHAT_ROLES)}")

        timestamp = timestamp or datetime.now()
        with self._write_lock:
            self.ensure_session(session_id)
            with get_db(self.db_path) as conn:
                cursor = conn.cursor()
                cursor.execute('''
                    INSERT INTO chat_messages (session_id, role, message, created_at) VALUES (?, ?, ?, ?)
                ''', (session_id, role, text, timestamp.isoformat()))
                conn.commit()
                message_id = cursor.lastrowid

        return ChatMessage(id=message_id, session_id=session_id, role=role, message=text, created_at=timestamp)

    def get_history(self, session_id: str, limit: int = None) -> List[ChatMessage]:
        """
        Messages of a session in append order.

        With `limit`, only the most recent `limit` messages are returned
        (still oldest first); a limit of 0 returns no messages.
        """
        if limit is not None and limit <= 0:
            return []
        with get_db(self.db_path) as conn:
            cursor = conn.cursor()
            if limit is not None:
                cursor.execute('''
                    SELECT id, session_id, role, message, created_at FROM (
                        SELECT * FROM chat_messages WHERE session_id = ? ORDER BY id DESC LIMIT ?
                    ) ORDER BY id ASC
                ''', (session_id, limit))
            else:
                cursor.execute('''
                    SELECT id, session_id, role, message, created_at
                    FROM chat_messages WHERE session_id = ? ORDER BY id ASC
                ''', (session_id,))
            return [
                ChatMessage(id=mid, session_id=sid, role=role, message=message,
                            created_at=datetime.fromisoformat(created_at))
                for mid, sid, role, message, created_at in cursor.fetchall()
            ]

    def list_sessions(self) -> List[ChatSession]:
        """Sessions, most recently created first."""
        with get_db(self.db_path) as conn:
            cursor = conn.cursor()
            cursor.execute('''
                SELECT s.session_id, s.created_at, COUNT(m.id)
                FROM chat_sessions s LEFT JOIN chat_messages m ON m.session_id = s.session_id
                GROUP BY s.session_id, s.created_at
                ORDER BY s.created_at DESC
            ''')
            return [
                ChatSession(session_id=sid, created_at=datetime.fromisoformat(created_at), message_count=count)
                for sid, created_at, count in cursor.fetchall()
            ]

    def delete_session(self, session_id: str) -> bool:
        """Delete a session; messages and the session's validation records go with it."""
        with get_db(self.db_path) as conn:
            cursor = conn.cursor()
            cursor.execute("DELETE FROM chat_sessions WHERE session_id = ?", (session_id,))
            conn.commit()
            return cursor.rowcount > 0

"""
SQLite foundation for rules, the validation ledger, transcripts and planning data.
"""

import sqlite3
from contextlib import contextmanager
from typing import Generator
from . import config


@contextmanager
def get_db(db_path: str = None) -> Generator[sqlite3.Connection, None, None]:
    """Get a SQLite database connection with foreign keys enforced."""
    conn = sqlite3.connect(db_path or config.DB_PATH)
    conn.execute("PRAGMA foreign_keys = ON")
    try:
        yield conn
    finally:
        conn.close()


def init_db(db_path: str = None):
    """Initialize the database with required tables."""
    config.ensure_db_directory(db_path)
    with get_db(db_path) as conn:
        cursor = conn.cursor()

        # Rule store
        cursor.execute('''
            CREATE TABLE IF NOT EXISTS philosophy_documents (
                id TEXT PRIMARY KEY,
                type TEXT NOT NULL,
                category TEXT,
                title TEXT NOT NULL,
                content TEXT NOT NULL,
                priority_weight INTEGER DEFAULT 50,
                is_active BOOLEAN DEFAULT TRUE,
                created_at TEXT NOT NULL
            )
        ''')

        cursor.execute('''
            CREATE TABLE IF NOT EXISTS non_negotiables (
                id TEXT PRIMARY KEY,
                rule_number INTEGER NOT NULL UNIQUE,
                title TEXT NOT NULL,
                description TEXT,
                auto_reject BOOLEAN DEFAULT FALSE,
                validation_keywords TEXT,   -- JSON array
                blocked_action_types TEXT,  -- JSON array
                is_active BOOLEAN DEFAULT TRUE,
                created_at TEXT NOT NULL
            )
        ''')

        # rule_number is referenced by historical validations
        cursor.execute('''
            CREATE TRIGGER IF NOT EXISTS non_negotiables_rule_number_immutable
            BEFORE UPDATE OF rule_number ON non_negotiables
            BEGIN
                SELECT RAISE(ABORT, 'rule_number is immutable');
            END
        ''')

        cursor.execute('''
            CREATE TABLE IF NOT EXISTS decision_hierarchy (
                level INTEGER PRIMARY KEY,
                stakeholder TEXT NOT NULL,
                weight REAL,
                description TEXT
            )
        ''')

        # Transcript store
        cursor.execute('''
            CREATE TABLE IF NOT EXISTS chat_sessions (
                session_id TEXT PRIMARY KEY,
                created_at TEXT NOT NULL
            )
        ''')

        cursor.execute('''
            CREATE TABLE IF NOT EXISTS chat_messages (
                id INTEGER PRIMARY KEY AUTOINCREMENT,
                session_id TEXT NOT NULL REFERENCES chat_sessions(session_id) ON DELETE CASCADE,
                role TEXT NOT NULL,
                message TEXT NOT NULL,
                created_at TEXT NOT NULL
            )
        ''')
        cursor.execute('CREATE INDEX IF NOT EXISTS idx_chat_messages_session ON chat_messages(session_id, id)')

        # Validation ledger
        cursor.execute('''
            CREATE TABLE IF NOT EXISTS validations (
                id INTEGER PRIMARY KEY AUTOINCREMENT,
                created_at TEXT NOT NULL,
                status TEXT NOT NULL,
                score INTEGER NOT NULL,
                violated_ids TEXT NOT NULL,             -- JSON array of rule numbers
                recommendation_snapshot TEXT NOT NULL,  -- JSON object
                session_id TEXT REFERENCES chat_sessions(session_id) ON DELETE CASCADE,
                turn_id TEXT                            -- conversational turn this outcome belongs to
            )
        ''')
        cursor.execute('CREATE INDEX IF NOT EXISTS idx_validations_created ON validations(created_at DESC)')
        cursor.execute('CREATE INDEX IF NOT EXISTS idx_validations_turn ON validations(turn_id)')

        cursor.execute('''
            CREATE TRIGGER IF NOT EXISTS validations_append_only
            BEFORE UPDATE ON validations
            BEGIN
                SELECT RAISE(ABORT, 'validations are append-only');
            END
        ''')

        cursor.execute('''
            CREATE TABLE IF NOT EXISTS execution_outcomes (
                validation_id INTEGER PRIMARY KEY REFERENCES validations(id) ON DELETE CASCADE,
                executed BOOLEAN NOT NULL,
                failed_action_index INTEGER,
                error_kind TEXT,
                error_message TEXT,
                applied_count INTEGER DEFAULT 0,
                created_at TEXT NOT NULL
            )
        ''')

        # Planning data
        cursor.execute('''
            CREATE TABLE IF NOT EXISTS ogsm_components (
                id TEXT PRIMARY KEY,
                component_type TEXT NOT NULL,
                title TEXT NOT NULL,
                description TEXT,
                parent_id TEXT,
                status TEXT DEFAULT 'active',
                order_index INTEGER DEFAULT 0,
                created_at TEXT NOT NULL,
                updated_at TEXT NOT NULL
            )
        ''')

        cursor.execute('''
            CREATE TABLE IF NOT EXISTS kpis (
                id TEXT PRIMARY KEY,
                ogsm_component_id TEXT,
                name TEXT NOT NULL,
                description TEXT,
                target_value REAL,
                current_value REAL,
                unit TEXT,
                frequency TEXT DEFAULT 'monthly',
                status TEXT DEFAULT 'at_risk',
                auto_calculate_status BOOLEAN DEFAULT TRUE,
                created_at TEXT NOT NULL,
                updated_at TEXT NOT NULL
            )
        ''')

        cursor.execute('''
            CREATE TABLE IF NOT EXISTS kpi_history (
                id INTEGER PRIMARY KEY AUTOINCREMENT,
                kpi_id TEXT NOT NULL REFERENCES kpis(id) ON DELETE CASCADE,
                value REAL NOT NULL,
                recorded_date TEXT NOT NULL,
                notes TEXT,
                created_at TEXT NOT NULL
            )
        ''')
        cursor.execute('CREATE INDEX IF NOT EXISTS idx_kpi_history_kpi ON kpi_history(kpi_id, recorded_date DESC)')

        conn.commit()


REQUIRED_TABLES = [
    'philosophy_documents', 'non_negotiables', 'decision_hierarchy',
    'chat_sessions', 'chat_messages', 'validations', 'execution_outcomes',
    'ogsm_components', 'kpis', 'kpi_history'
]


def health_check(db_path: str = None):
    """Check database health."""
    try:
        with get_db(db_path) as conn:
            cursor = conn.cursor()
            cursor.execute("SELECT name FROM sqlite_master WHERE type='table';")
            table_names = [table[0] for table in cursor.fetchall()]
            return all(table in table_names for table in REQUIRED_TABLES)
    except sqlite3.Error:
        return False

"""
Planning-data store - KPIs, KPI history and OGSM components.

Writes go through PlanningStore.transaction(), which hands out a
PlanningTransaction bound to one connection: everything done through it
commits together or rolls back together. Read methods serve the dashboard
and the advisor's system context.
"""

import sqlite3
import uuid
from contextlib import contextmanager
from datetime import datetime
from typing import Any, Dict, Generator, List, Optional

from . import config
from .db import get_db

KPI_STATUSES = ('on_track', 'at_risk', 'off_track')
KPI_FREQUENCIES = ('daily', 'weekly', 'monthly', 'quarterly', 'annual')
OGSM_TYPES = ('objective', 'goal', 'strategy', 'measure')
OGSM_STATUSES = ('not_started', 'in_progress', 'on_hold', 'completed', 'cancelled', 'active')

_KPI_COLUMNS = ('id', 'ogsm_component_id', 'name', 'description', 'target_value', 'current_value', 'unit',
                'frequency', 'status', 'auto_calculate_status', 'created_at', 'updated_at')
_OGSM_COLUMNS = ('id', 'component_type', 'title', 'description', 'parent_id', 'status', 'order_index',
                 'created_at', 'updated_at')
_HISTORY_COLUMNS = ('id', 'kpi_id', 'value', 'recorded_date', 'notes', 'created_at')


def calculate_kpi_status(current_value: Optional[float], target_value: Optional[float],
                         at_risk_threshold: float = None, off_track_threshold: float = None) -> str:
    """Status from the current/target ratio. Missing or zero values count as at risk."""
    at_risk_threshold = config.KPI_AT_RISK_THRESHOLD if at_risk_threshold is None else at_risk_threshold
    off_track_threshold = config.KPI_OFF_TRACK_THRESHOLD if off_track_threshold is None else off_track_threshold

    if not current_value or not target_value:
        return 'at_risk'

    progress_ratio = current_value / target_value
    if progress_ratio >= at_risk_threshold:
        return 'on_track'
    elif progress_ratio >= off_track_threshold:
        return 'at_risk'
    return 'off_track'


def _now() -> str:
    return datetime.now().isoformat()


class PlanningTransaction:
    """Write capability scoped to one open transaction. Lookups of missing entities raise KeyError."""

    def __init__(self, conn: sqlite3.Connection):
        self.conn = conn

    def _fetch(self, table: str, columns, entity_id: str) -> Optional[Dict[str, Any]]:
        cursor = self.conn.execute(f"SELECT {', '.join(columns)} FROM {table} WHERE id = ?", (entity_id,))
        row = cursor.fetchone()
        return dict(zip(columns, row)) if row else None

    def _require(self, table: str, columns, entity_id: str, label: str) -> Dict[str, Any]:
        row = self._fetch(table, columns, entity_id)
        if row is None:
            raise KeyError(f"{label} '{entity_id}' not found")
        return row

    # KPIs

    def get_kpi(self, kpi_id: str) -> Optional[Dict[str, Any]]:
        return self._fetch('kpis', _KPI_COLUMNS, kpi_id)

    def create_kpi(self, name: str, target_value: float = None, current_value: float = None, unit: str = None,
                   frequency: str = 'monthly', description: str = None, ogsm_component_id: str = None,
                   kpi_id: str = None) -> str:
        if not name or not str(name).strip():
            raise ValueError("KPI name is required")
        if frequency not in KPI_FREQUENCIES:
            raise ValueError(f"frequency must be one of: {list(KPI_FREQUENCIES)}")

        kpi_id = kpi_id or str(uuid.uuid4())
        now = _now()
        self.conn.execute('''
            INSERT INTO kpis (id, ogsm_component_id, name, description, target_value, current_value, unit,
                              frequency, status, created_at, updated_at)
            VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?)
        ''', (kpi_id, ogsm_component_id, name, description, target_value, current_value, unit, frequency,
              calculate_kpi_status(current_value, target_value), now, now))
        return kpi_id

    def set_kpi_current_value(self, kpi_id: str, value: float) -> None:
        self._require('kpis', _KPI_COLUMNS, kpi_id, "KPI")
        self.conn.execute("UPDATE kpis SET current_value = ?, updated_at = ? WHERE id = ?", (value, _now(), kpi_id))
        self.recalculate_kpi_status(kpi_id)

    def set_kpi_target_value(self, kpi_id: str, value: float) -> None:
        self._require('kpis', _KPI_COLUMNS, kpi_id, "KPI")
        self.conn.execute("UPDATE kpis SET target_value = ?, updated_at = ? WHERE id = ?", (value, _now(), kpi_id))
        self.recalculate_kpi_status(kpi_id)

    def recalculate_kpi_status(self, kpi_id: str) -> str:
        kpi = self._require('kpis', _KPI_COLUMNS, kpi_id, "KPI")
        if not kpi['auto_calculate_status']:
            return kpi['status']
        status = calculate_kpi_status(kpi['current_value'], kpi['target_value'])
        self.conn.execute("UPDATE kpis SET status = ? WHERE id = ?", (status, kpi_id))
        return status

    def add_kpi_history(self, kpi_id: str, value: float, recorded_date: str = None, notes: str = "") -> int:
        self._require('kpis', _KPI_COLUMNS, kpi_id, "KPI")
        cursor = self.conn.execute('''
            INSERT INTO kpi_history (kpi_id, value, recorded_date, notes, created_at)
            VALUES (?, ?, ?, ?, ?)
        ''', (kpi_id, value, recorded_date or datetime.now().date().isoformat(), notes or "", _now()))
        return cursor.lastrowid

    def delete_kpi(self, kpi_id: str) -> None:
        self._require('kpis', _KPI_COLUMNS, kpi_id, "KPI")
        self.conn.execute("DELETE FROM kpis WHERE id = ?", (kpi_id,))

    # OGSM components

    def get_ogsm_component(self, component_id: str) -> Optional[Dict[str, Any]]:
        return self._fetch('ogsm_components', _OGSM_COLUMNS, component_id)

    def create_ogsm_component(self, component_type: str, title: str, description: str = None,
                              parent_id: str = None, component_id: str = None) -> str:
        if component_type not in OGSM_TYPES:
            raise ValueError(f"component_type must be one of: {list(OGSM_TYPES)}")
        if not title or not str(title).strip():
            raise ValueError("title is required")
        if parent_id is not None:
            self._require('ogsm_components', _OGSM_COLUMNS, parent_id, "Parent component")

        component_id = component_id or str(uuid.uuid4())
        now = _now()
        self.conn.execute('''
            INSERT INTO ogsm_components (id, component_type, title, description, parent_id, created_at, updated_at)
            VALUES (?, ?, ?, ?, ?, ?, ?)
        ''', (component_id, component_type, title, description, parent_id, now, now))
        return component_id

    def update_ogsm_component(self, component_id: str, title: str = None, description: str = None) -> None:
        current = self._require('ogsm_components', _OGSM_COLUMNS, component_id, "OGSM component")
        self.conn.execute('''
            UPDATE ogsm_components SET title = ?, description = ?, updated_at = ? WHERE id = ?
        ''', (title if title is not None else current['title'],
              description if description is not None else current['description'],
              _now(), component_id))

    def set_ogsm_status(self, component_id: str, status: str) -> None:
        if status not in OGSM_STATUSES:
            raise ValueError(f"status must be one of: {list(OGSM_STATUSES)}")
        self._require('ogsm_components', _OGSM_COLUMNS, component_id, "OGSM component")
        self.conn.execute("UPDATE ogsm_components SET status = ?, updated_at = ? WHERE id = ?",
                          (status, _now(), component_id))

    def delete_ogsm_component(self, component_id: str) -> None:
        self._require('ogsm_components', _OGSM_COLUMNS, component_id, "OGSM component")
        self.conn.execute("DELETE FROM ogsm_components WHERE id = ?", (component_id,))


class PlanningStore:

    def __init__(self, db_path: str = None):
        self.db_path = db_path

    @contextmanager
    def transaction(self) -> Generator[PlanningTransaction, None, None]:
        """Open a write transaction; commits on normal exit, rolls back if the block raises."""
        with get_db(self.db_path) as conn:
            conn.execute("BEGIN IMMEDIATE")
            try:
                yield PlanningTransaction(conn)
            except BaseException:
                conn.rollback()
                raise
            else:
                conn.commit()

    def _select(self, query: str, columns, params=()) -> List[Dict[str, Any]]:
        with get_db(self.db_path) as conn:
            cursor = conn.execute(query, params)
            return [dict(zip(columns, row)) for row in cursor.fetchall()]

    def get_kpi(self, kpi_id: str) -> Optional[Dict[str, Any]]:
        rows = self._select(f"SELECT {', '.join(_KPI_COLUMNS)} FROM kpis WHERE id = ?", _KPI_COLUMNS, (kpi_id,))
        return rows[0] if rows else None

    def list_kpis(self, limit: int = None) -> List[Dict[str, Any]]:
        query = f"SELECT {', '.join(_KPI_COLUMNS)} FROM kpis ORDER BY created_at, id"
        if limit:
            return self._select(query + " LIMIT ?", _KPI_COLUMNS, (limit,))
        return self._select(query, _KPI_COLUMNS)

    def list_kpi_history(self, kpi_id: str) -> List[Dict[str, Any]]:
        return self._select(
            f"SELECT {', '.join(_HISTORY_COLUMNS)} FROM kpi_history WHERE kpi_id = ? ORDER BY recorded_date DESC, id DESC",
            _HISTORY_COLUMNS, (kpi_id,)
        )

    def get_ogsm_component(self, component_id: str) -> Optional[Dict[str, Any]]:
        rows = self._select(f"SELECT {', '.join(_OGSM_COLUMNS)} FROM ogsm_components WHERE id = ?",
                            _OGSM_COLUMNS, (component_id,))
        return rows[0] if rows else None

    def list_ogsm_components(self, component_type: str = None, limit: int = None) -> List[Dict[str, Any]]:
        query = f"SELECT {', '.join(_OGSM_COLUMNS)} FROM ogsm_components"
        params: list = []
        if component_type:
            query += " WHERE component_type = ?"
            params.append(component_type)
        query += " ORDER BY order_index, created_at"
        if limit:
            query += " LIMIT ?"
            params.append(limit)
        return self._select(query, _OGSM_COLUMNS, params)

    def system_context(self, limit: int = 20) -> Dict[str, List[Dict[str, Any]]]:
        """Compact KPI/OGSM view handed to the advisor so it can reference real entity ids."""
        kpis = [
            {k: kpi[k] for k in ('id', 'name', 'target_value', 'current_value', 'unit', 'status')}
            for kpi in self.list_kpis(limit=limit)
        ]
        ogsm = [
            {k: c[k] for k in ('id', 'component_type', 'title', 'status')}
            for c in self.list_ogsm_components(limit=limit)
        ]
        return {"kpis": kpis, "ogsm": ogsm}

"""
Rule store - philosophy documents, non-negotiables and the decision hierarchy.

Evaluations never read the tables directly. They work from an immutable
RuleSnapshot; refresh() builds a new snapshot and swaps it in, so a turn that
already holds a snapshot keeps a consistent view while the rules change.
"""

import json
import sqlite3
import threading
import uuid
from dataclasses import dataclass
from datetime import datetime
from typing import Dict, Iterable, List, Optional, Tuple

from .cache import StaleNotifier, RULES
from .db import get_db
from .errors import RuleConfigurationError
from .schema import PhilosophyItem, NonNegotiable, DecisionHierarchyLevel, PHILOSOPHY_TYPES
from util.logging import logger


@dataclass(frozen=True)
class RuleSnapshot:
    """Versioned, read-only view of the rule store."""
    version: int
    non_negotiables: Tuple[NonNegotiable, ...] = ()
    philosophy_items: Tuple[PhilosophyItem, ...] = ()
    decision_hierarchy: Tuple[DecisionHierarchyLevel, ...] = ()

    def rule_by_number(self, rule_number: int) -> Optional[NonNegotiable]:
        for rule in self.non_negotiables:
            if rule.rule_number == rule_number:
                return rule
        return None

    def items_of_type(self, *types: str) -> List[PhilosophyItem]:
        return [item for item in self.philosophy_items if item.type in types]

    def philosophy_context(self) -> str:
        """
        Render the philosophy prompt handed to the advisor with every turn.

        Sections appear only when the store has items for them, except the
        decision hierarchy and non-negotiables headers which are always present.
        """
        lines = ["# Foundational Philosophy", ""]
        lines.append("All recommendations must be aligned with the following foundational "
                     "documents and operational rules.")
        lines.append("")

        for item_type, heading in (("mission", "Mission Statement"),
                                   ("vision", "Vision Statement"),
                                   ("purpose", "Purpose Statement")):
            items = self.items_of_type(item_type)
            if items:
                lines += [f"## {heading}", items[0].content, ""]

        values = self.items_of_type("value")
        if values:
            lines.append("## Core Values (Non-negotiable characteristics)")
            lines += [f"- **{v.category or v.title}**: {v.content}" for v in values]
            lines.append("")

        for item_type, heading in (("guiding_principle", "Guiding Principles (Department philosophy)"),
                                   ("operating_principle", "Operating Principles (Concrete actions)")):
            items = self.items_of_type(item_type)
            if items:
                lines.append(f"## {heading}")
                lines += [f"- {p.title}" for p in items]
                lines.append("")

        lines.append("## Decision-Making Hierarchy (ABSOLUTE PRIORITY ORDER)")
        lines.append("All decisions and recommendations MUST prioritize stakeholders in this exact order:")
        for level in self.decision_hierarchy:
            lines.append(f"{level.level}. **{level.stakeholder}** (Weight: {level.weight}) - {level.description}")
        lines.append("")

        lines.append("## Non-Negotiables (ABSOLUTE RULES)")
        lines.append("These are hard constraints. Any recommendation that violates these rules is IMMEDIATELY INVALID:")
        lines.append("")
        for rule in self.non_negotiables:
            lines.append(f"{rule.rule_number}. **{rule.title}**")
            lines.append(f"   {rule.description}")
            if rule.auto_reject:
                lines.append("   AUTO-REJECT: Violations of this rule will automatically invalidate recommendations.")
            lines.append("")

        lines += [
            "---",
            "",
            "**IMPORTANT**: When providing recommendations:",
            "1. Cite which Core Values, Principles, or Non-Negotiables support your recommendation",
            "2. Explain how your recommendation aligns with the Decision Hierarchy",
            "3. Identify any potential conflicts between principles and explain your resolution",
            "4. If a recommendation would violate a Non-Negotiable, clearly state why it's not viable",
            "",
        ]
        return "\n".join(lines)


def _to_tuple(raw: Optional[str]) -> Tuple[str, ...]:
    if not raw:
        return ()
    return tuple(str(v) for v in json.loads(raw))


class RuleStore:
    """SQLite-backed source of rule snapshots."""

    def __init__(self, db_path: str = None, notifier: Optional[StaleNotifier] = None):
        self.db_path = db_path
        self.notifier = notifier
        self._snapshot: Optional[RuleSnapshot] = None
        self._version = 0
        self._lock = threading.Lock()

    # Read-only snapshot source

    def load_non_negotiables(self) -> List[NonNegotiable]:
        """Active non-negotiables ordered by rule number."""
        with get_db(self.db_path) as conn:
            cursor = conn.cursor()
            cursor.execute('''
                SELECT id, rule_number, title, description, auto_reject,
                       validation_keywords, blocked_action_types, is_active
                FROM non_negotiables
                WHERE is_active = 1
                ORDER BY rule_number
            ''')
            rules = []
            for row in cursor.fetchall():
                rule_id, rule_number, title, description, auto_reject, keywords, blocked, is_active = row
                try:
                    rules.append(NonNegotiable(
                        id=rule_id,
                        rule_number=rule_number,
                        title=title,
                        description=description or "",
                        auto_reject=bool(auto_reject),
                        validation_keywords=_to_tuple(keywords),
                        blocked_action_types=_to_tuple(blocked),
                        is_active=bool(is_active)
                    ))
                except (ValueError, TypeError) as e:
                    raise RuleConfigurationError(f"Non-negotiable {rule_number} has malformed detection fields: {e}")
            return rules

    def load_philosophy_items(self) -> List[PhilosophyItem]:
        """Active philosophy items ordered by priority weight, then type and category."""
        with get_db(self.db_path) as conn:
            cursor = conn.cursor()
            cursor.execute('''
                SELECT id, type, title, content, category, priority_weight, is_active
                FROM philosophy_documents
                WHERE is_active = 1
                ORDER BY priority_weight DESC, type, category, created_at
            ''')
            return [
                PhilosophyItem(
                    id=item_id, type=item_type, title=title, content=content,
                    category=category, priority_weight=priority_weight, is_active=bool(is_active)
                )
                for item_id, item_type, title, content, category, priority_weight, is_active in cursor.fetchall()
            ]

    def load_decision_hierarchy(self) -> List[DecisionHierarchyLevel]:
        with get_db(self.db_path) as conn:
            cursor = conn.cursor()
            cursor.execute("SELECT level, stakeholder, weight, description FROM decision_hierarchy ORDER BY level ASC")
            return [
                DecisionHierarchyLevel(level=level, stakeholder=stakeholder, weight=weight, description=description or "")
                for level, stakeholder, weight, description in cursor.fetchall()
            ]

    def refresh(self) -> RuleSnapshot:
        """Load and validate the current rules, then publish them as a new snapshot."""
        non_negotiables = self.load_non_negotiables()
        philosophy_items = self.load_philosophy_items()
        hierarchy = self.load_decision_hierarchy()

        issues = self._validate(non_negotiables, philosophy_items)
        if issues:
            raise RuleConfigurationError("; ".join(issues))

        with self._lock:
            self._version += 1
            snapshot = RuleSnapshot(
                version=self._version,
                non_negotiables=tuple(non_negotiables),
                philosophy_items=tuple(philosophy_items),
                decision_hierarchy=tuple(hierarchy)
            )
            self._snapshot = snapshot

        logger.log_rule_snapshot(snapshot.version, len(non_negotiables), len(philosophy_items))
        if self.notifier is not None and snapshot.version > 1:
            self.notifier.notify(RULES)
        return snapshot

    def snapshot(self) -> RuleSnapshot:
        """Current snapshot, loading it on first use."""
        snapshot = self._snapshot
        if snapshot is None:
            snapshot = self.refresh()
        return snapshot

    @staticmethod
    def _validate(non_negotiables: List[NonNegotiable], philosophy_items: List[PhilosophyItem]) -> List[str]:
        issues = []
        seen: Dict[int, str] = {}
        for rule in non_negotiables:
            if not isinstance(rule.rule_number, int) or rule.rule_number < 1:
                issues.append(f"Invalid rule_number {rule.rule_number!r} for rule '{rule.title}'")
            elif rule.rule_number in seen:
                issues.append(f"Duplicate rule_number {rule.rule_number}")
            else:
                seen[rule.rule_number] = rule.id
            if not rule.title.strip():
                issues.append(f"Rule {rule.rule_number} has an empty title")
            if any(not kw.strip() for kw in rule.validation_keywords):
                issues.append(f"Rule {rule.rule_number} has an empty validation keyword")

        for item in philosophy_items:
            if item.type not in PHILOSOPHY_TYPES:
                issues.append(f"Philosophy item {item.id} has unknown type '{item.type}'")
        return issues

    # Authoring

    @staticmethod
    def _new_philosophy_item(type: str, title: str, content: str, category: str = None,
                             priority_weight: int = 50) -> PhilosophyItem:
        if type not in PHILOSOPHY_TYPES:
            raise RuleConfigurationError(f"Invalid type. Must be one of: {', '.join(PHILOSOPHY_TYPES)}")
        if not title.strip() or not content.strip():
            raise RuleConfigurationError("title and content are required")
        return PhilosophyItem(
            id=str(uuid.uuid4()), type=type, title=title, content=content,
            category=category, priority_weight=priority_weight
        )

    @staticmethod
    def _insert_philosophy_item(conn, item: PhilosophyItem) -> None:
        conn.execute('''
            INSERT INTO philosophy_documents (id, type, category, title, content, priority_weight, is_active, created_at)
            VALUES (?, ?, ?, ?, ?, ?, 1, ?)
        ''', (item.id, item.type, item.category, item.title, item.content, item.priority_weight,
              datetime.now().isoformat()))

    def add_philosophy_item(self, type: str, title: str, content: str, category: str = None,
                            priority_weight: int = 50) -> PhilosophyItem:
        """Publish a new philosophy item."""
        item = self._new_philosophy_item(type, title, content, category, priority_weight)
        with get_db(self.db_path) as conn:
            self._insert_philosophy_item(conn, item)
            conn.commit()

        self.refresh()
        return item

    def replace_philosophy_item(self, item_id: str, **changes) -> PhilosophyItem:
        """
        Replace a published item: the old row is kept inactive for audit, a new one is published.

        Both writes share one commit; an invalid replacement leaves the old item active.
        """
        current = next((i for i in self.load_philosophy_items() if i.id == item_id), None)
        if current is None:
            raise RuleConfigurationError(f"Philosophy item {item_id} not found or inactive")

        item = self._new_philosophy_item(
            type=changes.get("type", current.type),
            title=changes.get("title", current.title),
            content=changes.get("content", current.content),
            category=changes.get("category", current.category),
            priority_weight=changes.get("priority_weight", current.priority_weight)
        )
        with get_db(self.db_path) as conn:
            try:
                conn.execute("UPDATE philosophy_documents SET is_active = 0 WHERE id = ?", (item_id,))
                self._insert_philosophy_item(conn, item)
                conn.commit()
            except sqlite3.Error:
                conn.rollback()
                raise

        self.refresh()
        return item

    def add_non_negotiable(self, rule_number: int, title: str, description: str = "", auto_reject: bool = False,
                           validation_keywords: Iterable[str] = (),
                           blocked_action_types: Iterable[str] = ()) -> NonNegotiable:
        """Register a new non-negotiable. Rule numbers are never reused."""
        if not isinstance(rule_number, int) or rule_number < 1:
            raise RuleConfigurationError(f"rule_number must be a positive integer, got {rule_number!r}")
        if not title.strip():
            raise RuleConfigurationError("title is required")

        rule = NonNegotiable(
            id=str(uuid.uuid4()),
            rule_number=rule_number,
            title=title,
            description=description,
            auto_reject=bool(auto_reject),
            validation_keywords=tuple(validation_keywords),
            blocked_action_types=tuple(blocked_action_types)
        )
        try:
            with get_db(self.db_path) as conn:
                conn.execute('''
                    INSERT INTO non_negotiables
                        (id, rule_number, title, description, auto_reject, validation_keywords,
                         blocked_action_types, is_active, created_at)
                    VALUES (?, ?, ?, ?, ?, ?, ?, 1, ?)
                ''', (rule.id, rule.rule_number, rule.title, rule.description, rule.auto_reject,
                      json.dumps(list(rule.validation_keywords)), json.dumps(list(rule.blocked_action_types)),
                      datetime.now().isoformat()))
                conn.commit()
        except sqlite3.IntegrityError:
            raise RuleConfigurationError(f"rule_number {rule_number} is already assigned")

        self.refresh()
        return rule

    def deactivate_non_negotiable(self, rule_number: int) -> bool:
        """Retire a rule. Its number stays reserved for historical validations."""
        with get_db(self.db_path) as conn:
            cursor = conn.cursor()
            cursor.execute("UPDATE non_negotiables SET is_active = 0 WHERE rule_number = ? AND is_active = 1",
                           (rule_number,))
            conn.commit()
            changed = cursor.rowcount > 0

        if changed:
            self.refresh()
        return changed

    def set_decision_hierarchy(self, levels: Iterable[DecisionHierarchyLevel]) -> None:
        with get_db(self.db_path) as conn:
            conn.execute("DELETE FROM decision_hierarchy")
            conn.executemany(
                "INSERT INTO decision_hierarchy (level, stakeholder, weight, description) VALUES (?, ?, ?, ?)",
                [(l.level, l.stakeholder, l.weight, l.description) for l in levels]
            )
            conn.commit()

        self.refresh()

#!/usr/bin/env python3
"""
Seed the rule store (and optionally planning data) from a JSON file.

File layout:
{
  "philosophy": [{"type": "value", "title": "...", "content": "...", "category": null, "priority_weight": 50}],
  "non_negotiables": [{"rule_number": 1, "title": "...", "description": "...", "auto_reject": true,
                       "validation_keywords": ["..."], "blocked_action_types": []}],
  "decision_hierarchy": [{"level": 1, "stakeholder": "...", "weight": 0.4, "description": "..."}],
  "kpis": [{"id": "k1", "name": "...", "target_value": 100, "current_value": 80, "unit": "..."}],
  "ogsm": [{"id": "o1", "component_type": "objective", "title": "..."}]
}
"""

import argparse
import json
import sys
from pathlib import Path
from typing import Any, Dict

sys.path.insert(0, str(Path(__file__).parent.parent))

from governance.core import config
from governance.core.db import init_db
from governance.core.errors import RuleConfigurationError
from governance.core.planning import PlanningStore
from governance.core.rules import RuleStore
from governance.core.schema import DecisionHierarchyLevel


def seed(data: Dict[str, Any], db_path: str = None) -> Dict[str, Any]:
    """Apply a seed document. Rules whose number is already taken are skipped and reported."""
    init_db(db_path)
    rule_store = RuleStore(db_path)
    snapshot = rule_store.snapshot()
    summary = {"philosophy": 0, "non_negotiables": 0, "decision_hierarchy": 0, "kpis": 0, "ogsm": 0,
               "skipped": []}

    existing = {(i.type, i.title) for i in snapshot.philosophy_items}
    for item in data.get("philosophy", []):
        if (item["type"], item["title"]) in existing:
            summary["skipped"].append(f"philosophy '{item['title']}' already present")
            continue
        rule_store.add_philosophy_item(
            type=item["type"],
            title=item["title"],
            content=item["content"],
            category=item.get("category"),
            priority_weight=item.get("priority_weight", 50)
        )
        summary["philosophy"] += 1

    for rule in data.get("non_negotiables", []):
        try:
            rule_store.add_non_negotiable(
                rule_number=rule["rule_number"],
                title=rule["title"],
                description=rule.get("description", ""),
                auto_reject=rule.get("auto_reject", False),
                validation_keywords=rule.get("validation_keywords", []),
                blocked_action_types=rule.get("blocked_action_types", [])
            )
            summary["non_negotiables"] += 1
        except RuleConfigurationError as e:
            summary["skipped"].append(f"rule {rule.get('rule_number')}: {e}")

    levels = data.get("decision_hierarchy")
    if levels:
        rule_store.set_decision_hierarchy([
            DecisionHierarchyLevel(level=l["level"], stakeholder=l["stakeholder"], weight=l.get("weight", 0),
                                   description=l.get("description", ""))
            for l in levels
        ])
        summary["decision_hierarchy"] = len(levels)

    planning_store = PlanningStore(db_path)
    with planning_store.transaction() as txn:
        for component in data.get("ogsm", []):
            if txn.get_ogsm_component(component["id"]):
                continue
            txn.create_ogsm_component(
                component_type=component["component_type"],
                title=component["title"],
                description=component.get("description"),
                parent_id=component.get("parent_id"),
                component_id=component["id"]
            )
            summary["ogsm"] += 1
        for kpi in data.get("kpis", []):
            if txn.get_kpi(kpi["id"]):
                continue
            txn.create_kpi(
                name=kpi["name"],
                target_value=kpi.get("target_value"),
                current_value=kpi.get("current_value"),
                unit=kpi.get("unit"),
                frequency=kpi.get("frequency", "monthly"),
                description=kpi.get("description"),
                ogsm_component_id=kpi.get("ogsm_component_id"),
                kpi_id=kpi["id"]
            )
            summary["kpis"] += 1

    return summary


def main():
    parser = argparse.ArgumentParser(
        description="Seed philosophy, non-negotiables and planning data",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
  %(prog)s data/rules.example.json
  %(prog)s data/rules.example.json --db ./data/test.db --json

Environment variables:
- DB_PATH=./data/governance.db (database location)
        """
    )
    parser.add_argument("seed_file", help="JSON seed document")
    parser.add_argument("--db", default=None, help=f"Database path (default: {config.DB_PATH})")
    parser.add_argument("--json", "-j", action="store_true", help="Output the summary as JSON")
    args = parser.parse_args()

    try:
        data = json.loads(Path(args.seed_file).read_text())
    except (OSError, json.JSONDecodeError) as e:
        print(f"Cannot read seed file: {e}", file=sys.stderr)
        sys.exit(1)

    try:
        summary = seed(data, args.db)
    except (RuleConfigurationError, ValueError, KeyError) as e:
        print(f"Seeding failed: {e}", file=sys.stderr)
        sys.exit(1)

    if args.json:
        print(json.dumps(summary, indent=2))
    else:
        for key in ("philosophy", "non_negotiables", "decision_hierarchy", "ogsm", "kpis"):
            print(f"{key}: {summary[key]}")
        for reason in summary["skipped"]:
            print(f"skipped: {reason}")


if __name__ == "__main__":
    main()

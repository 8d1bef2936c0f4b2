#!/usr/bin/env python3
"""
Print the alignment score and the most recent validations.
"""

import argparse
import json
import sys
from pathlib import Path

sys.path.insert(0, str(Path(__file__).parent.parent))

from governance.core import config
from governance.core.alignment import AlignmentAggregator
from governance.core.db import health_check
from governance.core.ledger import ValidationLedger
from governance.core.rules import RuleStore


def build_report(db_path: str = None, limit: int = None, window: int = None) -> dict:
    ledger = ValidationLedger(db_path)
    rule_store = RuleStore(db_path)
    window = config.ALIGNMENT_WINDOW if window is None else window
    score = AlignmentAggregator(ledger, rule_store, window=window).score()
    snapshot = rule_store.snapshot()

    recent = []
    for record in ledger.recent(limit or config.RECENT_VALIDATIONS_LIMIT):
        rules = [snapshot.rule_by_number(n) for n in record.violated_non_negotiable_ids]
        recent.append({
            "id": record.id,
            "created_at": record.created_at.isoformat(),
            "status": record.status,
            "score": record.score,
            "violated": [r.title if r else f"#{n}" for r, n in zip(rules, record.violated_non_negotiable_ids)],
            "text": record.recommendation_snapshot.get("text", "")[:80]
        })

    return {
        "overall_score": score.overall_score,
        "has_data": score.has_data,
        "total_validations": score.total_validations,
        "counts": {"approved": score.approved_count, "flagged": score.flagged_count,
                   "rejected": score.rejected_count},
        "breakdown": [{"category": c.category, "score": c.score, "count": c.count} for c in score.breakdown],
        "recent": recent
    }


def format_report(report: dict) -> str:
    lines = []
    suffix = "" if report["has_data"] else " (no validations yet, default)"
    lines.append(f"Overall alignment: {report['overall_score']}%{suffix}")
    counts = report["counts"]
    lines.append(f"Validations: {report['total_validations']} "
                 f"(approved {counts['approved']}, flagged {counts['flagged']}, rejected {counts['rejected']})")
    for category in report["breakdown"]:
        lines.append(f"  {category['category']}: {category['score']}% ({category['count']})")

    if report["recent"]:
        lines.append("Recent validations:")
        for item in report["recent"]:
            violated = f" violates {', '.join(item['violated'])}" if item["violated"] else ""
            lines.append(f"  [{item['id']}] {item['status'].upper()} {item['score']}{violated} - {item['text']}")
    return "\n".join(lines)


def main():
    parser = argparse.ArgumentParser(description="Alignment score and recent validations")
    parser.add_argument("--db", default=None, help=f"Database path (default: {config.DB_PATH})")
    parser.add_argument("--limit", "-n", type=int, default=None, help="Number of recent validations to show")
    parser.add_argument("--window", "-w", type=int, default=None,
                        help="Score only the N most recent validations (0 = all)")
    parser.add_argument("--json", "-j", action="store_true", help="Output as JSON")
    args = parser.parse_args()

    if not health_check(args.db):
        print("Database is missing or not initialized; run scripts/seed_rules.py first", file=sys.stderr)
        sys.exit(1)

    report = build_report(args.db, args.limit, args.window)
    print(json.dumps(report, indent=2) if args.json else format_report(report))


if __name__ == "__main__":
    main()

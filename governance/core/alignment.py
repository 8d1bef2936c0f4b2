"""
Alignment aggregator - rolling alignment metrics from the validation ledger.
"""

import threading
from typing import Optional, Tuple

from .cache import StaleNotifier, PLANNING_DATA, VALIDATIONS, RULES
from .disposition import DISPOSITION_SCORES
from .ledger import ValidationLedger
from .rules import RuleStore
from .schema import AlignmentScore, CategoryScore, APPROVED, FLAGGED, REJECTED

# Reported while the ledger is empty. This is a product decision ("assume
# reasonably aligned until measured"), not a statistic; callers tell it apart
# from a measurement through total_validations == 0.
NO_DATA_ALIGNMENT_SCORE = 85

# Placeholder category scores. Values and Principles are scored on whether the
# organization has configured any items of that kind, not on measured
# validation outcomes, because validations are not yet attributed to
# individual values or principles. Replace once per-category data exists.
VALUES_CONFIGURED_SCORE = 90
VALUES_MISSING_SCORE = 85
PRINCIPLES_CONFIGURED_SCORE = 85
PRINCIPLES_MISSING_SCORE = 80


def overall_score(approved: int, flagged: int, rejected: int) -> int:
    """Mean disposition score, rounded half up; NO_DATA_ALIGNMENT_SCORE for no records."""
    total = approved + flagged + rejected
    if total == 0:
        return NO_DATA_ALIGNMENT_SCORE
    points = (approved * DISPOSITION_SCORES[APPROVED]
              + flagged * DISPOSITION_SCORES[FLAGGED]
              + rejected * DISPOSITION_SCORES[REJECTED])
    # Integer half-up rounding of points / total
    return (2 * points + total) // (2 * total)


class AlignmentAggregator:
    """
    Computes AlignmentScore lazily and caches it.

    The cache key is the ledger state plus the rule snapshot version, so a
    new validation or rule change is picked up on the next read even before
    the stale notification is delivered.
    """

    def __init__(self, ledger: ValidationLedger, rule_store: RuleStore,
                 notifier: StaleNotifier = None, window: int = 0):
        self.ledger = ledger
        self.rule_store = rule_store
        self.window = window
        self._cached: Optional[Tuple[tuple, AlignmentScore]] = None
        self._lock = threading.Lock()

        if notifier is not None:
            for topic in (VALIDATIONS, PLANNING_DATA, RULES):
                notifier.subscribe(topic, "alignment_aggregator", self.invalidate)

    def invalidate(self, topic: str = None) -> None:
        """Drop the cached score. Safe to call any number of times."""
        with self._lock:
            self._cached = None

    def score(self) -> AlignmentScore:
        snapshot = self.rule_store.snapshot()
        key = (self.ledger.state(), snapshot.version, self.window)

        with self._lock:
            if self._cached is not None and self._cached[0] == key:
                return self._cached[1]

        counts = self.ledger.counts_by_status(last_n=self.window or None)
        approved, flagged, rejected = counts[APPROVED], counts[FLAGGED], counts[REJECTED]
        overall = overall_score(approved, flagged, rejected)

        value_count = len(snapshot.items_of_type("value"))
        principle_count = len(snapshot.items_of_type("guiding_principle", "operating_principle"))

        breakdown = [
            CategoryScore(
                category="Values",
                score=VALUES_CONFIGURED_SCORE if value_count else VALUES_MISSING_SCORE,
                count=value_count
            ),
            CategoryScore(
                category="Principles",
                score=PRINCIPLES_CONFIGURED_SCORE if principle_count else PRINCIPLES_MISSING_SCORE,
                count=principle_count
            ),
            # Validation outcomes are rule outcomes by construction
            CategoryScore(category="Non-Negotiables", score=overall, count=len(snapshot.non_negotiables)),
        ]

        result = AlignmentScore(
            overall_score=overall,
            total_validations=approved + flagged + rejected,
            approved_count=approved,
            flagged_count=flagged,
            rejected_count=rejected,
            breakdown=breakdown
        )

        with self._lock:
            self._cached = (key, result)
        return result

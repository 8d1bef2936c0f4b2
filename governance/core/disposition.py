"""
Disposition policy - violated rules -> (status, score).
"""

from typing import Iterable, Tuple

from .schema import APPROVED, FLAGGED, REJECTED, NonNegotiable

# Per-record score. The alignment aggregate is the mean of these values,
# so this table is the single source for both.
DISPOSITION_SCORES = {
    APPROVED: 100,
    FLAGGED: 50,
    REJECTED: 0,
}


def decide(violations: Iterable[NonNegotiable]) -> Tuple[str, int]:
    """
    Tri-state decision over the violated rules.

    No violations approves. Any auto-reject rule rejects, however many other
    rules were also violated. Anything else is flagged for review.
    """
    violations = list(violations)
    if not violations:
        status = APPROVED
    elif any(rule.auto_reject for rule in violations):
        status = REJECTED
    else:
        status = FLAGGED
    return status, DISPOSITION_SCORES[status]

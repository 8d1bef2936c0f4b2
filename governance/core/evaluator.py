"""
Rule evaluator - (recommendation, rule snapshot) -> violated non-negotiables.
"""

from typing import Iterable, Optional, Tuple

from .matchers import RuleMatcher, default_matcher
from .rules import RuleSnapshot
from .schema import NonNegotiable, Recommendation
from util.logging import logger


class RuleEvaluator:
    """
    Pure evaluation step of the governance pipeline.

    Holds no state besides its matcher, so one instance is shared by every
    session. A matcher that raises for a rule is logged and that rule counts
    as not violated; evaluation itself never fails.
    """

    def __init__(self, matcher: Optional[RuleMatcher] = None):
        self.matcher = matcher or default_matcher()

    def evaluate(self, recommendation: Recommendation, snapshot: RuleSnapshot) -> Tuple[NonNegotiable, ...]:
        """Return the violated rules ordered by rule number ascending."""
        violations = []
        for rule in sorted(snapshot.non_negotiables, key=lambda r: r.rule_number):
            try:
                if self.matcher.matches(rule, recommendation):
                    violations.append(rule)
            except Exception as e:
                logger.warning(f"Matcher '{self.matcher.name}' failed on rule {rule.rule_number}, "
                               f"treating as not violated: {e}")
        return tuple(violations)


def violated_ids(violations: Iterable[NonNegotiable]) -> Tuple[int, ...]:
    """Rule numbers of the violated rules, in evaluation order."""
    return tuple(rule.rule_number for rule in violations)

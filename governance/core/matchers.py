"""
Rule matching strategies.

The evaluator only knows the RuleMatcher interface; a new strategy (embedding
similarity, an LLM judge) plugs in without touching the pipeline. Matchers must
be deterministic for a fixed (rule, recommendation) pair.
"""

from abc import ABC, abstractmethod
from typing import Any, Iterator

from .schema import NonNegotiable, Recommendation


class RuleMatcher(ABC):
    """Decides whether a recommendation violates a single rule."""

    name = "matcher"

    @abstractmethod
    def matches(self, rule: NonNegotiable, recommendation: Recommendation) -> bool:
        pass


def _payload_strings(value: Any) -> Iterator[str]:
    """Yield every string found in an action payload, depth first."""
    if isinstance(value, str):
        yield value
    elif isinstance(value, dict):
        for key in sorted(value, key=str):
            yield from _payload_strings(value[key])
    elif isinstance(value, (list, tuple)):
        for item in value:
            yield from _payload_strings(item)


class KeywordMatcher(RuleMatcher):
    """
    Case-insensitive substring match of the rule's validation keywords.

    Searches the recommendation text and every string inside the proposed
    action payloads. A rule without keywords never matches.
    """

    name = "keyword"

    def matches(self, rule: NonNegotiable, recommendation: Recommendation) -> bool:
        if not rule.validation_keywords:
            return False

        haystacks = [(recommendation.text or "").lower()]
        for action in recommendation.proposed_actions:
            haystacks.extend(s.lower() for s in _payload_strings(action.payload))

        for keyword in rule.validation_keywords:
            needle = keyword.lower()
            if any(needle in text for text in haystacks):
                return True
        return False


class ActionTypeMatcher(RuleMatcher):
    """Violated when the recommendation proposes an action type the rule blocks."""

    name = "action_type"

    def matches(self, rule: NonNegotiable, recommendation: Recommendation) -> bool:
        if not rule.blocked_action_types:
            return False
        blocked = set(rule.blocked_action_types)
        return any(action.type in blocked for action in recommendation.proposed_actions)


class AnyMatcher(RuleMatcher):
    """Composite: the rule is violated if any child matcher says so."""

    name = "any"

    def __init__(self, *matchers: RuleMatcher):
        if not matchers:
            raise ValueError("AnyMatcher needs at least one matcher")
        self.matchers = matchers

    def matches(self, rule: NonNegotiable, recommendation: Recommendation) -> bool:
        return any(m.matches(rule, recommendation) for m in self.matchers)


def default_matcher() -> RuleMatcher:
    return AnyMatcher(KeywordMatcher(), ActionTypeMatcher())

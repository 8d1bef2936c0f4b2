"""
Alignment aggregator tests.
"""

from governance.core.alignment import (
    overall_score,
    AlignmentAggregator,
    NO_DATA_ALIGNMENT_SCORE,
    VALUES_CONFIGURED_SCORE,
    VALUES_MISSING_SCORE,
    PRINCIPLES_MISSING_SCORE,
)


def snapshot_of(text):
    return {"text": text, "proposed_actions": []}


class TestOverallScore:

    def test_no_data_default(self):
        assert overall_score(0, 0, 0) == NO_DATA_ALIGNMENT_SCORE == 85

    def test_mean_of_disposition_scores(self):
        assert overall_score(1, 0, 0) == 100
        assert overall_score(1, 1, 0) == 75
        assert overall_score(0, 0, 4) == 0

    def test_rounds_half_up(self):
        assert overall_score(1, 2, 1) == 50
        # 100 / 3 = 33.3
        assert overall_score(1, 0, 2) == 33
        # 50 / 4 = 12.5
        assert overall_score(0, 1, 3) == 13

    def test_monotonic_in_approved(self):
        total = 10
        for flagged_share in range(total + 1):
            previous = None
            for approved in range(total - flagged_share + 1):
                rejected = total - flagged_share - approved
                score = overall_score(approved, flagged_share, rejected)
                if previous is not None:
                    assert score >= previous
                previous = score


class TestAlignmentAggregator:
    """Cached alignment metrics."""

    def test_empty_ledger_reports_no_data(self, aggregator):
        score = aggregator.score()
        assert score.overall_score == 85
        assert score.total_validations == 0
        assert not score.has_data

    def test_counts_and_breakdown(self, aggregator, ledger, rule_store):
        rule_store.add_philosophy_item("value", "Integrity", "We tell the truth")
        rule_store.add_non_negotiable(3, "No falsified data", auto_reject=True, validation_keywords=["falsify"])
        ledger.record("approved", [], snapshot_of("a"))
        ledger.record("flagged", [5], snapshot_of("b"))

        score = aggregator.score()
        assert score.overall_score == 75
        assert (score.approved_count, score.flagged_count, score.rejected_count) == (1, 1, 0)

        breakdown = {c.category: c for c in score.breakdown}
        assert breakdown["Values"].score == VALUES_CONFIGURED_SCORE
        assert breakdown["Values"].count == 1
        assert breakdown["Principles"].score == PRINCIPLES_MISSING_SCORE
        assert breakdown["Non-Negotiables"].score == 75
        assert breakdown["Non-Negotiables"].count == 1

    def test_values_missing_placeholder(self, aggregator):
        breakdown = {c.category: c for c in aggregator.score().breakdown}
        assert breakdown["Values"].score == VALUES_MISSING_SCORE

    def test_recomputes_after_new_record(self, aggregator, ledger):
        ledger.record("approved", [], snapshot_of("a"))
        assert aggregator.score().overall_score == 100
        ledger.record("rejected", [3], snapshot_of("b"))
        assert aggregator.score().overall_score == 50

    def test_cached_until_invalidated(self, aggregator, ledger):
        ledger.record("approved", [], snapshot_of("a"))
        first = aggregator.score()
        assert aggregator.score() is first
        aggregator.invalidate("planning_data")
        assert aggregator.score() is not first

    def test_window_uses_most_recent_records(self, ledger, rule_store):
        ledger.record("rejected", [3], snapshot_of("old"))
        ledger.record("approved", [], snapshot_of("new"))
        windowed = AlignmentAggregator(ledger, rule_store, window=1)
        assert windowed.score().overall_score == 100
        assert windowed.score().total_validations == 1

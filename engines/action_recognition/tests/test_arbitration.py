"""
Tests for the arbitration engine.
"""

import pytest

from engines.action_recognition.arbitration import arbitrate, evaluation_order
from engines.action_recognition.ensemble import ClassificationResult

PRIORITY = ['abuse', 'arrest', 'shoplifting', 'vandalism']


class TestArbitrate:
    def test_highest_score_wins(self):
        scores = {'arrest': 0.1, 'vandalism': 0.6, 'abuse': 0.05, 'shoplifting': 0.3}
        assert arbitrate(scores, 0.2, PRIORITY) == ('vandalism', 0.6)

    def test_tie_goes_to_earlier_priority(self):
        scores = {'arrest': 0.5, 'vandalism': 0.5}
        assert arbitrate(scores, 0.2, ['arrest', 'vandalism']) == ('arrest', 0.5)

    def test_tie_follows_priority_not_mapping_order(self):
        scores = {'vandalism': 0.5, 'arrest': 0.5}
        assert arbitrate(scores, 0.2, ['arrest', 'vandalism']) == ('arrest', 0.5)
        assert arbitrate(scores, 0.2, ['vandalism', 'arrest']) == ('vandalism', 0.5)

    def test_all_below_threshold_returns_none(self):
        scores = {'abuse': 0.1, 'arrest': 0.19, 'shoplifting': 0.0, 'vandalism': 0.05}
        assert arbitrate(scores, 0.2, PRIORITY) is None

    def test_score_equal_to_threshold_is_candidate(self):
        assert arbitrate({'abuse': 0.2}, 0.2, PRIORITY) == ('abuse', 0.2)

    def test_empty_scores(self):
        assert arbitrate({}, 0.2, PRIORITY) is None

    def test_none_iff_nothing_meets_threshold(self):
        cases = [
            {'abuse': 0.3},
            {'abuse': 0.1, 'arrest': 0.25},
            {'abuse': 0.1, 'arrest': 0.15},
            {},
        ]
        for scores in cases:
            result = arbitrate(scores, 0.2, PRIORITY)
            assert (result is None) == all(v < 0.2 for v in scores.values())

    def test_missing_category_after_failure(self):
        # 'vandalism' classifier failed this cycle and is absent
        scores = {'abuse': 0.05, 'arrest': 0.4, 'shoplifting': 0.3}
        assert arbitrate(scores, 0.2, PRIORITY) == ('arrest', 0.4)

    def test_idempotent(self):
        scores = {'abuse': 0.7, 'arrest': 0.7, 'shoplifting': 0.2}
        first = arbitrate(scores, 0.2, PRIORITY)
        second = arbitrate(scores, 0.2, PRIORITY)
        assert first == second == ('abuse', 0.7)

    def test_accepts_classification_results(self):
        scores = {
            'arrest': ClassificationResult('arrest', 0.3),
            'vandalism': ClassificationResult('vandalism', 0.9),
        }
        assert arbitrate(scores, 0.2, PRIORITY) == ('vandalism', 0.9)

    def test_nan_score_ignored(self):
        scores = {'abuse': float('nan'), 'arrest': 0.3}
        assert arbitrate(scores, 0.2, PRIORITY) == ('arrest', 0.3)

    def test_per_category_threshold(self):
        scores = {'abuse': 0.5, 'arrest': 0.3}
        # abuse needs 0.6 on its own model, so arrest wins
        assert arbitrate(scores, 0.2, PRIORITY, thresholds={'abuse': 0.6}) == ('arrest', 0.3)

    def test_zero_threshold_zero_score(self):
        assert arbitrate({'abuse': 0.0, 'arrest': 0.0}, 0.0, PRIORITY) == ('abuse', 0.0)


class TestEvaluationOrder:
    def test_priority_first(self):
        assert evaluation_order({'vandalism', 'abuse'}, PRIORITY) == ['abuse', 'vandalism']

    def test_unlisted_categories_sorted_last(self):
        order = evaluation_order(['zeta', 'arrest', 'alpha'], ['arrest'])
        assert order == ['arrest', 'alpha', 'zeta']

    def test_priority_entries_without_scores_skipped(self):
        assert evaluation_order(['arrest'], PRIORITY) == ['arrest']

    @pytest.mark.parametrize('scores', [
        {'zeta': 0.5, 'alpha': 0.5},
        {'alpha': 0.5, 'zeta': 0.5},
    ])
    def test_unlisted_tie_is_deterministic(self, scores):
        assert arbitrate(scores, 0.2, []) == ('alpha', 0.5)

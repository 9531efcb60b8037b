"""Unit tests for bioage_framework.validation module.

Tests fold construction, grouped CV deviance and the one-standard-error rule.
"""
import pytest
import numpy as np
from bioage_framework.exceptions import ConfigurationError
from bioage_framework.validation import (
    CVConfig,
    event_balanced_splitter,
    fold_deviance,
    one_se_rule,
    summarize_cv_deviance,
)


class TestEventBalancedSplitter:
    """Tests for event_balanced_splitter."""

    def test_folds_partition_rows(self, cohort):
        """Test that test folds cover every row exactly once."""
        splits = event_balanced_splitter(cohort.event, CVConfig(n_splits=5))
        test_rows = np.concatenate([te for _, te in splits])

        assert len(splits) == 5
        assert sorted(test_rows) == list(range(cohort.n_subjects))

    def test_events_balanced(self, cohort):
        """Test that each fold holds close to a fifth of the events."""
        splits = event_balanced_splitter(cohort.event, CVConfig(n_splits=5))
        per_fold = [cohort.event[te].sum() for _, te in splits]

        assert max(per_fold) - min(per_fold) <= 1

    def test_seed_determines_folds(self, cohort):
        """Test that the same seed gives the same folds."""
        a = event_balanced_splitter(cohort.event, CVConfig(n_splits=4, random_state=5))
        b = event_balanced_splitter(cohort.event, CVConfig(n_splits=4, random_state=5))

        for (_, te_a), (_, te_b) in zip(a, b):
            np.testing.assert_array_equal(te_a, te_b)

    def test_more_folds_than_subjects(self):
        with pytest.raises(ConfigurationError, match="subjects"):
            event_balanced_splitter(np.array([1, 0, 1]), CVConfig(n_splits=4))

    def test_more_folds_than_events(self):
        with pytest.raises(ConfigurationError, match="events"):
            event_balanced_splitter(np.array([1, 0, 1, 0, 0, 0]), CVConfig(n_splits=3))


class TestFoldDeviance:
    """Tests for fold_deviance."""

    def test_positive_and_zero_at_null(self, cohort):
        """Test that held-out deviance is positive for any coefficients."""
        X = cohort.design(["biomarker1", "biomarker2"]).to_numpy()
        splits = event_balanced_splitter(cohort.event, CVConfig(n_splits=5))
        train_idx = splits[0][0]
        coefs = np.array([[0.0, 0.5], [0.0, -0.3]])

        dev = fold_deviance(cohort.time, cohort.event, X, train_idx, coefs)

        assert dev.shape == (2,)
        assert np.all(dev > 0)

    def test_informative_coefficients_reduce_deviance(self, cohort):
        """Test that true coefficients beat the null model on held-out data."""
        X = cohort.design(["biomarker1", "biomarker2"]).to_numpy()
        splits = event_balanced_splitter(cohort.event, CVConfig(n_splits=5))
        coefs = np.array([[0.0, 0.5], [0.0, -0.3]])

        total = sum(
            fold_deviance(cohort.time, cohort.event, X, tr, coefs) for tr, _ in splits
        )

        assert total[1] < total[0]


class TestSummarizeCVDeviance:
    """Tests for summarize_cv_deviance."""

    def test_event_weighted_mean(self):
        """Test the weighted mean and standard error by hand."""
        deviances = np.array([[4.0], [12.0]])
        n_events = np.array([2, 6])

        cvm, cvsd = summarize_cv_deviance(deviances, n_events)

        # per-event deviance is 2.0 for both folds
        assert cvm[0] == pytest.approx(2.0)
        assert cvsd[0] == pytest.approx(0.0)

    def test_spread(self):
        deviances = np.array([[1.0], [3.0]])
        cvm, cvsd = summarize_cv_deviance(deviances, np.array([1, 1]))

        assert cvm[0] == pytest.approx(2.0)
        assert cvsd[0] == pytest.approx(1.0)


class TestOneSERule:
    """Tests for one_se_rule."""

    def test_picks_largest_penalty_within_one_se(self):
        """Test selection along a path of decreasing penalties."""
        cvm = np.array([3.0, 2.5, 2.1, 2.0, 2.05])
        cvsd = np.array([0.1, 0.1, 0.1, 0.15, 0.1])

        idx_min, idx_1se = one_se_rule(cvm, cvsd)

        assert idx_min == 3
        assert idx_1se == 2

    def test_minimum_at_first_penalty(self):
        idx_min, idx_1se = one_se_rule(np.array([1.0, 2.0]), np.array([0.0, 0.0]))

        assert idx_min == idx_1se == 0

"""Unit tests for bioage_framework.selection module.

Tests cross-validated penalized Cox selection: age retention, determinism,
path shape and the skip conditions.
"""
import pytest
import numpy as np
from bioage_framework.config import ExecutionConfig, SelectionConfig
from bioage_framework.data import prepare_cohort
from bioage_framework.exceptions import ConfigurationError
from bioage_framework.selection import PATH_COLUMNS, select_covariates

SELECTION_COVARIATES = ["age", "biomarker1", "biomarker2", "noise1", "noise2"]


@pytest.fixture(scope="module")
def selection_cohort(selection_table):
    return prepare_cohort(selection_table, SELECTION_COVARIATES)


@pytest.fixture(scope="module")
def lasso_result(selection_cohort):
    cfg = SelectionConfig(feature_selection=True, folds=5, n_lambdas=40)
    return select_covariates(selection_cohort, cfg)


class TestSelectCovariates:
    """Tests for select_covariates."""

    def test_age_always_first(self, lasso_result):
        """Test that age is retained and listed first."""
        assert lasso_result.selected_vars[0] == "age"
        assert lasso_result.original_vars == tuple(SELECTION_COVARIATES)
        assert not lasso_result.skipped

    def test_informative_biomarkers_kept(self, lasso_result):
        """Test that strong biomarkers survive the one-standard-error rule."""
        assert "biomarker1" in lasso_result.selected_vars
        assert set(lasso_result.selected_vars) <= set(SELECTION_COVARIATES)

    def test_selected_in_input_order(self, lasso_result):
        order = [SELECTION_COVARIATES.index(v) for v in lasso_result.selected_vars]

        assert order == sorted(order)

    def test_path_structure(self, lasso_result):
        """Test the regularization path table."""
        path = lasso_result.regularization_path

        assert list(path.columns) == PATH_COLUMNS
        assert len(path) > 1
        assert np.all(np.diff(path["lambda"].to_numpy()) < 0)
        assert np.all(np.isfinite(path["cv_deviance"]))
        assert lasso_result.lambda_1se >= lasso_result.lambda_min
        assert lasso_result.lambda_1se in set(path["lambda"])
        assert lasso_result.path_pairs()[0] == (path["lambda"].iloc[0],
                                                path["cv_deviance"].iloc[0])

    def test_selection_count_shrinks_with_penalty(self, lasso_result):
        """Test that fewer biomarkers are active as the penalty grows."""
        n_nonzero = lasso_result.regularization_path["n_nonzero"].to_numpy()

        # lambdas decrease along the path, so the count must not decrease
        assert np.all(np.diff(n_nonzero) >= 0)
        assert n_nonzero[0] == 0

    def test_deterministic(self, selection_cohort, lasso_result):
        """Test that the same seed reproduces the same selection."""
        cfg = SelectionConfig(feature_selection=True, folds=5, n_lambdas=40)
        again = select_covariates(selection_cohort, cfg)

        assert again.selected_vars == lasso_result.selected_vars
        np.testing.assert_allclose(
            again.regularization_path["cv_deviance"],
            lasso_result.regularization_path["cv_deviance"],
        )

    def test_parallel_matches_sequential(self, selection_cohort, lasso_result):
        """Test that fold parallelism does not change the outcome."""
        cfg = SelectionConfig(feature_selection=True, folds=5, n_lambdas=40)
        parallel = select_covariates(
            selection_cohort, cfg, ExecutionConfig(mode="mp", n_jobs=2, backend="threading")
        )

        assert parallel.selected_vars == lasso_result.selected_vars
        np.testing.assert_allclose(
            parallel.regularization_path["cv_deviance"],
            lasso_result.regularization_path["cv_deviance"],
        )

    @pytest.mark.parametrize("alpha", [0.0, 0.2, 0.5, 1.0])
    def test_elasticnet_keeps_age(self, selection_cohort, alpha):
        """Test age retention for elastic net mixing values."""
        cfg = SelectionConfig(feature_selection=True, selection_method="elasticnet",
                              alpha=alpha, folds=3, n_lambdas=20)
        result = select_covariates(selection_cohort, cfg)

        assert result.selected_vars[0] == "age"
        assert result.alpha == alpha
        assert result.method == "elasticnet"

    def test_ridge_keeps_every_biomarker(self, selection_cohort):
        """Test that alpha 0 scores a full ridge path and drops nothing."""
        cfg = SelectionConfig(feature_selection=True, selection_method="elasticnet",
                              alpha=0.0, folds=3, n_lambdas=15)
        result = select_covariates(selection_cohort, cfg)
        path = result.regularization_path

        assert result.selected_vars == tuple(SELECTION_COVARIATES)
        assert result.dropped_vars == ()
        assert len(path) == 15
        assert (path["n_nonzero"] == len(SELECTION_COVARIATES) - 1).all()
        assert np.all(np.diff(path["lambda"].to_numpy()) < 0)
        assert np.isfinite(path["cv_deviance"]).all()
        assert result.lambda_1se >= result.lambda_min

    def test_disabled_is_skipped(self, selection_cohort):
        """Test that method 'none' skips selection and keeps every covariate."""
        cfg = SelectionConfig(feature_selection=True, selection_method="none")
        result = select_covariates(selection_cohort, cfg)

        assert result.skipped
        assert result.selected_vars == tuple(SELECTION_COVARIATES)
        assert result.regularization_path.empty

    def test_single_biomarker_skipped_with_warning(self, selection_table, caplog):
        """Test that fewer than two biomarkers logs a warning and skips."""
        cohort = prepare_cohort(selection_table, ["age", "biomarker1"])
        cfg = SelectionConfig(feature_selection=True)

        with caplog.at_level("WARNING", logger="bioage_framework"):
            result = select_covariates(cohort, cfg)

        assert result.skipped
        assert result.selected_vars == ("age", "biomarker1")
        assert any("at least 2 biomarkers" in r.message for r in caplog.records)

    def test_too_many_folds(self, small_table):
        """Test that more folds than subjects is a configuration error."""
        small_table["biomarker2"] = [0.3, 0.1, -0.2, 0.5, 1.0, -1.0]
        cohort = prepare_cohort(small_table, ["age", "biomarker1", "biomarker2"])
        cfg = SelectionConfig(feature_selection=True, folds=10)

        with pytest.raises(ConfigurationError):
            select_covariates(cohort, cfg)

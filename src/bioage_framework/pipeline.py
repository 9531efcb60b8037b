"""Entry points for biological-age computation.

Two hazard families are supported:

- ``compute_gompertz_bioage``: Gompertz reference and augmented models, with
  optional cross-validated penalized Cox selection of the biomarker panel
- ``compute_cox_bioage``: Cox reference and augmented models (no selection)

Both run the same stages: cohort preparation, optional selection, reference
and age-constrained augmented fits, calibration, and result assembly.

Example:
    >>> from bioage_framework.pipeline import compute_gompertz_bioage
    >>> result = compute_gompertz_bioage(df, ["age", "albumin", "crp"],
    ...                                  feature_selection=True)
    >>> result.bioage_coefficients.as_series()
    >>> result.scored_cohort["bioage"].describe()
"""
from __future__ import annotations
from typing import Iterable, Optional
import logging
import pandas as pd

from bioage_framework.calibration import calibrate
from bioage_framework.config import BioAgeConfig, resolve_selection
from bioage_framework.data import prepare_cohort
from bioage_framework.fitting import fit_cox_models, fit_gompertz_models
from bioage_framework.metrics import bioage_diagnostics
from bioage_framework.results import BioAgeResult, assemble_result
from bioage_framework.selection import select_covariates
from bioage_framework.timing import log_execution_time

logger = logging.getLogger(__name__)


@log_execution_time()
def compute_gompertz_bioage(
    cohort_table: pd.DataFrame,
    covariate_names: Iterable[str],
    feature_selection: Optional[bool] = None,
    selection_method: Optional[str] = None,
    alpha: Optional[float] = None,
    folds: Optional[int] = None,
    seed: Optional[int] = None,
    config: Optional[BioAgeConfig] = None,
) -> BioAgeResult:
    """Compute Gompertz-calibrated biological age.

    Options left as None fall back to ``config.selection`` (defaults:
    no selection, lasso, alpha=1.0, 10 folds, seed 123).

    Args:
        cohort_table: One row per subject with ``time``, ``status`` and every
            covariate
        covariate_names: Covariates to use; must include ``"age"``
        feature_selection: Narrow the biomarker panel by penalized Cox CV
        selection_method: "lasso", "elasticnet" or "none"
        alpha: Elastic net mixing parameter (used by "elasticnet")
        folds: Number of cross-validation folds
        seed: Seed of the fold assignment
        config: Optional master configuration

    Returns:
        BioAgeResult with method "gompertz". ``selection`` is set only when
        selection was requested.

    Raises:
        ConfigurationError: On invalid options or missing columns
        DataError: If the cohort cannot support a fit
        FitError: If a penalized or hazard model fit does not converge
    """
    config = config or BioAgeConfig()
    selection_cfg = resolve_selection(
        config,
        feature_selection=feature_selection,
        selection_method=selection_method,
        alpha=alpha,
        folds=folds,
        seed=seed,
    )
    cohort = prepare_cohort(cohort_table, covariate_names)

    selection = None
    covariates = cohort.covariates
    if selection_cfg.feature_selection:
        selection = select_covariates(cohort, selection_cfg, config.execution)
        covariates = covariates.restrict(selection.selected_vars)

    models = fit_gompertz_models(cohort, covariates, config.fit)
    coefficients, bioage = calibrate(models, cohort)
    return assemble_result(
        "gompertz",
        models,
        coefficients,
        cohort,
        bioage,
        selection=selection,
        diagnostics=bioage_diagnostics(cohort, bioage),
    )


@log_execution_time()
def compute_cox_bioage(
    cohort_table: pd.DataFrame,
    covariate_names: Iterable[str],
    config: Optional[BioAgeConfig] = None,
) -> BioAgeResult:
    """Compute Cox-calibrated biological age.

    Args:
        cohort_table: One row per subject with ``time``, ``status`` and every
            covariate
        covariate_names: Covariates to use; must include ``"age"``
        config: Optional master configuration (fit settings only)

    Returns:
        BioAgeResult with method "cox" and no selection

    Raises:
        ConfigurationError: On missing columns
        DataError: If the cohort cannot support a fit
        FitError: If a Cox fit does not converge
    """
    config = config or BioAgeConfig()
    cohort = prepare_cohort(cohort_table, covariate_names)

    models = fit_cox_models(cohort, cohort.covariates, config.fit)
    coefficients, bioage = calibrate(models, cohort)
    return assemble_result(
        "cox",
        models,
        coefficients,
        cohort,
        bioage,
        diagnostics=bioage_diagnostics(cohort, bioage),
    )

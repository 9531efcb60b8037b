"""Cross-validated penalized Cox selection of biomarkers.

Fits a lasso or elastic net Cox path with scikit-survival (or a ridge path
with statsmodels when the L1 share is 0) on standardized biomarkers, scores
every penalty strength by grouped partial-likelihood deviance over seeded
event-stratified folds, and keeps the biomarkers with a nonzero coefficient at
the one-standard-error penalty. Chronological age is never penalized and is
always part of the returned set.
"""
from __future__ import annotations
from dataclasses import dataclass, field
from typing import List, Optional, Tuple
import logging
import numpy as np
import pandas as pd
from joblib import Parallel, delayed
from sklearn.preprocessing import StandardScaler
from sksurv.linear_model import CoxnetSurvivalAnalysis
from statsmodels.duration.hazard_regression import PHReg

from bioage_framework.config import ExecutionConfig, SelectionConfig
from bioage_framework.data import AGE_COL, Cohort, to_structured_y
from bioage_framework.exceptions import FitError
from bioage_framework.logging_config import ProgressLogger, capture_warnings, log_performance
from bioage_framework.timing import Timer, log_execution_time
from bioage_framework.validation import (
    CVConfig,
    event_balanced_splitter,
    fold_deviance,
    one_se_rule,
    summarize_cv_deviance,
)

logger = logging.getLogger(__name__)

PATH_COLUMNS = ["lambda", "cv_deviance", "cv_deviance_se", "n_nonzero"]

# L1 share used to size the largest ridge penalty
_RIDGE_L1_FLOOR = 1e-3


@dataclass(frozen=True, eq=False)
class SelectionResult:
    """Outcome of covariate selection.

    Attributes:
        selected_vars: Retained covariates, age first
        original_vars: Covariates offered to selection, age first
        regularization_path: DataFrame with PATH_COLUMNS, one row per penalty,
            penalties decreasing. Empty when selection was skipped.
        lambda_min: Penalty with the smallest CV deviance
        lambda_1se: Largest penalty within one standard error of the minimum
        method: Selection method that ran ("lasso", "elasticnet", "none")
        alpha: Effective elastic net mixing parameter
        skipped: True when no penalized fit was run
        reason: Why selection was skipped
    """
    selected_vars: Tuple[str, ...]
    original_vars: Tuple[str, ...]
    regularization_path: pd.DataFrame = field(
        default_factory=lambda: pd.DataFrame(columns=PATH_COLUMNS)
    )
    lambda_min: Optional[float] = None
    lambda_1se: Optional[float] = None
    method: str = "none"
    alpha: Optional[float] = None
    skipped: bool = False
    reason: str = ""

    @property
    def dropped_vars(self) -> Tuple[str, ...]:
        return tuple(v for v in self.original_vars if v not in self.selected_vars)

    def path_pairs(self) -> List[Tuple[float, float]]:
        """The path as (penalty strength, CV deviance) pairs."""
        path = self.regularization_path
        return list(zip(path["lambda"].astype(float), path["cv_deviance"].astype(float)))


def _coxnet(cfg: SelectionConfig, alphas: Optional[np.ndarray] = None) -> CoxnetSurvivalAnalysis:
    return CoxnetSurvivalAnalysis(
        l1_ratio=cfg.l1_ratio,
        alphas=alphas,
        n_alphas=cfg.n_lambdas,
        alpha_min_ratio=cfg.lambda_min_ratio,
        max_iter=100000,
    )


def _ridge_lambdas(time: np.ndarray, event: np.ndarray, X: np.ndarray,
                   cfg: SelectionConfig) -> np.ndarray:
    """Decreasing ridge penalty grid.

    The largest penalty is the one that would zero every coefficient under an
    L1 share of ``_RIDGE_L1_FLOOR``; the grid is log-spaced down from there.
    """
    score = PHReg(time, X, status=event, ties="breslow").score(np.zeros(X.shape[1]))
    lambda_max = np.max(np.abs(score)) / len(time) / _RIDGE_L1_FLOOR
    ratio = cfg.lambda_min_ratio
    if ratio == "auto":
        ratio = 1e-4 if X.shape[0] > X.shape[1] else 1e-2
    return np.geomspace(lambda_max, lambda_max * float(ratio), cfg.n_lambdas)


def _fit_ridge_path(time: np.ndarray, event: np.ndarray, X: np.ndarray,
                    alphas: np.ndarray, covariates) -> np.ndarray:
    """Ridge Cox coefficients for each penalty, warm-started along the path."""
    model = PHReg(time, X, status=event, ties="breslow")
    start = np.zeros(X.shape[1])
    coefs = []
    for lam in alphas:
        try:
            res = model.fit_regularized(
                method="elastic_net", alpha=float(lam), L1_wt=0.0, start_params=start
            )
        except (np.linalg.LinAlgError, ValueError) as exc:
            raise FitError("selection", covariates, detail=str(exc)) from exc
        start = np.asarray(res.params, dtype=float)
        coefs.append(start)
    return np.column_stack(coefs)


def _fit_path(
    time: np.ndarray,
    event: np.ndarray,
    X: np.ndarray,
    y: np.ndarray,
    cfg: SelectionConfig,
    alphas: Optional[np.ndarray],
    covariates,
) -> Tuple[np.ndarray, np.ndarray]:
    """Fit the penalized Cox path on standardized biomarkers.

    Uses scikit-survival's Coxnet when the L1 share is positive and a
    statsmodels ridge path when it is 0.

    Returns:
        Tuple (alphas, coefs); coefs has shape (n_features, n_alphas)
    """
    if cfg.l1_ratio == 0.0:
        if alphas is None:
            alphas = _ridge_lambdas(time, event, X, cfg)
        return np.asarray(alphas, dtype=float), _fit_ridge_path(time, event, X, alphas, covariates)

    model = _coxnet(cfg, alphas)
    try:
        model.fit(X, y)
    except (ArithmeticError, ValueError) as exc:
        raise FitError("selection", covariates, detail=str(exc)) from exc
    coefs = np.asarray(model.coef_, dtype=float)
    return np.asarray(model.alphas_, dtype=float)[:coefs.shape[1]], coefs


def _evaluate_fold(
    fold_idx: int,
    train_idx: np.ndarray,
    test_idx: np.ndarray,
    time: np.ndarray,
    event: np.ndarray,
    X: np.ndarray,
    y: np.ndarray,
    alphas: np.ndarray,
    cfg: SelectionConfig,
    covariates: Tuple[str, ...],
) -> dict:
    """Fit the penalty path without one fold and score it on that fold.

    Returns:
        Dictionary with fold, deviance (per penalty) and n_events of the fold
    """
    scaler = StandardScaler().fit(X[train_idx])
    X_std = scaler.transform(X)
    _, coefs = _fit_path(time[train_idx], event[train_idx], X_std[train_idx], y[train_idx],
                         cfg, alphas, covariates)

    if coefs.shape[1] < len(alphas):
        # the path stopped early; hold the last solution for smaller penalties
        pad = np.repeat(coefs[:, -1:], len(alphas) - coefs.shape[1], axis=1)
        coefs = np.hstack([coefs, pad])

    return {
        "fold": fold_idx,
        "deviance": fold_deviance(time, event, X_std, train_idx, coefs),
        "n_events": int(event[test_idx].sum()),
    }


def _skipped(cohort: Cohort, cfg: SelectionConfig, reason: str) -> SelectionResult:
    return SelectionResult(
        selected_vars=cohort.covariates.names,
        original_vars=cohort.covariates.names,
        method=cfg.selection_method,
        alpha=cfg.l1_ratio,
        skipped=True,
        reason=reason,
    )


@log_execution_time()
def select_covariates(
    cohort: Cohort,
    cfg: SelectionConfig,
    execution: Optional[ExecutionConfig] = None,
) -> SelectionResult:
    """Select biomarkers by cross-validated penalized Cox regression.

    Args:
        cohort: Prepared cohort
        cfg: Selection configuration (method, alpha, folds, seed)
        execution: Fold execution configuration; sequential if None

    Returns:
        SelectionResult with age plus the biomarkers retained at the
        one-standard-error penalty

    Raises:
        ConfigurationError: If there are more folds than subjects or events
        FitError: If the penalized Cox path cannot be fitted

    Example:
        >>> result = select_covariates(cohort, SelectionConfig(feature_selection=True))
        >>> result.selected_vars
        ('age', 'albumin', 'crp')
    """
    execution = execution or ExecutionConfig()
    biomarkers = cohort.covariates.biomarkers

    if not cfg.enabled:
        return _skipped(cohort, cfg, "selection disabled")
    if len(biomarkers) < 2:
        logger.warning(
            f"Covariate selection needs at least 2 biomarkers besides age, got "
            f"{len(biomarkers)}; keeping {list(cohort.covariates)}"
        )
        return _skipped(cohort, cfg, "fewer than 2 biomarkers")

    splits = event_balanced_splitter(
        cohort.event, CVConfig(n_splits=int(cfg.folds), random_state=cfg.seed)
    )

    logger.info(
        f"Selecting among {len(biomarkers)} biomarkers: method={cfg.selection_method}, "
        f"alpha={cfg.l1_ratio}, folds={cfg.folds}, seed={cfg.seed}"
    )

    time = cohort.time
    event = cohort.event
    X = cohort.design(biomarkers).to_numpy()
    y = to_structured_y(cohort.frame)

    with capture_warnings(logger):
        with Timer(logger, "Penalized Cox path on full cohort"):
            alphas, full_coefs = _fit_path(
                time, event, StandardScaler().fit_transform(X), y, cfg, None, biomarkers
            )

        fold_args = dict(time=time, event=event, X=X, y=y, alphas=alphas, cfg=cfg,
                         covariates=biomarkers)
        with Timer(logger, "Selection cross-validation"):
            if execution.is_parallel():
                logger.info(f"Parallel CV with {execution.n_jobs} jobs")
                fold_results = Parallel(
                    n_jobs=execution.n_jobs,
                    verbose=execution.verbose,
                    backend=execution.backend
                )(
                    delayed(_evaluate_fold)(fold_idx, tr, te, **fold_args)
                    for fold_idx, (tr, te) in enumerate(splits)
                )
            else:
                progress = ProgressLogger(logger, total=len(splits), desc="Selection CV folds")
                fold_results = []
                for fold_idx, (tr, te) in enumerate(splits):
                    res = _evaluate_fold(fold_idx, tr, te, **fold_args)
                    fold_results.append(res)
                    progress.update(1, metrics={"n_events": res["n_events"]})

    deviances = np.vstack([r["deviance"] for r in fold_results])
    n_events = np.array([r["n_events"] for r in fold_results])
    cvm, cvsd = summarize_cv_deviance(deviances, n_events)
    idx_min, idx_1se = one_se_rule(cvm, cvsd)

    path = pd.DataFrame({
        "lambda": alphas,
        "cv_deviance": cvm,
        "cv_deviance_se": cvsd,
        "n_nonzero": (full_coefs != 0).sum(axis=0).astype(int),
    }, columns=PATH_COLUMNS)

    chosen = full_coefs[:, idx_1se]
    retained = tuple(b for b, c in zip(biomarkers, chosen) if c != 0)
    selected = (AGE_COL,) + retained

    log_performance(
        logger,
        "Covariate selection",
        lambda_min=round(float(alphas[idx_min]), 6),
        lambda_1se=round(float(alphas[idx_1se]), 6),
        n_selected=len(retained),
    )
    logger.info(f"Selected covariates: {list(selected)}")

    return SelectionResult(
        selected_vars=selected,
        original_vars=cohort.covariates.names,
        regularization_path=path,
        lambda_min=float(alphas[idx_min]),
        lambda_1se=float(alphas[idx_1se]),
        method=cfg.selection_method,
        alpha=cfg.l1_ratio,
        skipped=False,
    )

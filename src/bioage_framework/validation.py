from __future__ import annotations
from dataclasses import dataclass
from typing import List, Tuple
import numpy as np
from sklearn.model_selection import StratifiedKFold
from statsmodels.duration.hazard_regression import PHReg

from bioage_framework.exceptions import ConfigurationError


@dataclass
class CVConfig:
    """Configuration for cross-validation setup.

    Attributes:
        n_splits: Number of folds for cross-validation. Defaults to 10
        random_state: Random seed of the fold assignment. Defaults to 123
        shuffle: Whether to shuffle data before splitting. Defaults to True
    """
    n_splits: int = 10
    random_state: int = 123
    shuffle: bool = True


def event_balanced_splitter(event: np.ndarray, cfg: CVConfig) -> List[Tuple[np.ndarray, np.ndarray]]:
    """Create stratified K-fold splits balanced on event indicator.

    Every fold receives close to the cohort's share of events, so each held-out
    fold contributes at least one event to the cross-validated deviance.

    Args:
        event: Event indicators (1 = event), shape (n_samples,)
        cfg: CVConfig instance with cross-validation parameters

    Returns:
        List of (train_indices, test_indices) tuples for each fold

    Raises:
        ConfigurationError: If there are more folds than subjects or events

    Example:
        >>> splits = event_balanced_splitter(cohort.event, CVConfig(n_splits=5))
        >>> for fold_idx, (train_idx, test_idx) in enumerate(splits):
        ...     print(f"Fold {fold_idx}: {len(train_idx)} train, {len(test_idx)} test")
    """
    events = np.asarray(event).astype(int)
    if cfg.n_splits > len(events):
        raise ConfigurationError(
            f"folds ({cfg.n_splits}) cannot exceed the number of subjects ({len(events)})"
        )
    if cfg.n_splits > events.sum():
        raise ConfigurationError(
            f"folds ({cfg.n_splits}) cannot exceed the number of events ({int(events.sum())})"
        )
    skf = StratifiedKFold(
        n_splits=cfg.n_splits, shuffle=cfg.shuffle, random_state=cfg.random_state
    )
    return list(skf.split(np.zeros_like(events), events))


def fold_deviance(
    time: np.ndarray,
    event: np.ndarray,
    X: np.ndarray,
    train_idx: np.ndarray,
    coefs: np.ndarray,
) -> np.ndarray:
    """Grouped partial-likelihood deviance of one held-out fold along a path.

    The held-out contribution of coefficients ``b`` fitted without the fold is
    ``-2 * (PL_full(b) - PL_train(b))``, the Breslow log partial likelihood of
    the whole cohort minus that of the training rows. Risk sets therefore use
    every subject, which keeps small folds stable.

    Args:
        time: Follow-up times of the whole cohort
        event: Event indicators of the whole cohort
        X: Design matrix of the whole cohort, on the scale of ``coefs``
        train_idx: Row indices used to fit ``coefs``
        coefs: Coefficients, shape (n_features, n_lambdas)

    Returns:
        Array of deviances, shape (n_lambdas,)
    """
    full = PHReg(time, X, status=event, ties="breslow")
    train = PHReg(time[train_idx], X[train_idx], status=event[train_idx], ties="breslow")
    return np.array([
        -2.0 * (full.loglike(beta) - train.loglike(beta))
        for beta in np.asarray(coefs, dtype=float).T
    ])


def summarize_cv_deviance(deviances: np.ndarray, n_events: np.ndarray) -> Tuple[np.ndarray, np.ndarray]:
    """Event-weighted mean and standard error of fold deviances.

    Args:
        deviances: Raw fold deviances, shape (n_folds, n_lambdas)
        n_events: Events in each held-out fold, shape (n_folds,)

    Returns:
        Tuple (cv_deviance, cv_deviance_se), each with shape (n_lambdas,)
    """
    weights = np.asarray(n_events, dtype=float)
    per_event = np.asarray(deviances, dtype=float) / weights[:, None]
    cvm = np.average(per_event, axis=0, weights=weights)
    spread = np.average((per_event - cvm) ** 2, axis=0, weights=weights)
    cvsd = np.sqrt(spread / (len(weights) - 1))
    return cvm, cvsd


def one_se_rule(cv_deviance: np.ndarray, cv_deviance_se: np.ndarray) -> Tuple[int, int]:
    """Locate the deviance minimum and the one-standard-error choice.

    Args:
        cv_deviance: Mean CV deviance along a path of decreasing penalties
        cv_deviance_se: Standard error of ``cv_deviance``

    Returns:
        Tuple (idx_min, idx_1se). ``idx_1se`` is the largest penalty whose
        deviance is within one standard error of the minimum.
    """
    idx_min = int(np.nanargmin(cv_deviance))
    threshold = cv_deviance[idx_min] + cv_deviance_se[idx_min]
    idx_1se = int(np.flatnonzero(cv_deviance <= threshold).min())
    return idx_min, idx_1se

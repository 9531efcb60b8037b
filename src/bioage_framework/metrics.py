from __future__ import annotations
from typing import Any, Dict
import logging
import numpy as np
import pandas as pd
from sksurv.metrics import concordance_index_censored

from bioage_framework.data import AGE_COL, Cohort

logger = logging.getLogger(__name__)


def compute_cindex(event: np.ndarray, time: np.ndarray, risk_scores: np.ndarray) -> float:
    """Calculate Harrell's concordance index.

    Args:
        event: Event indicators, shape (n_samples,)
        time: Follow-up times, shape (n_samples,)
        risk_scores: Scores where higher values indicate higher risk

    Returns:
        Concordance index between 0.5 (random) and 1.0 (perfect discrimination)

    Raises:
        ValueError: If no pair of subjects is comparable

    Example:
        >>> cindex = compute_cindex(cohort.event, cohort.time, bioage.to_numpy())
        >>> print(f"C-index: {cindex:.3f}")
        C-index: 0.742
    """
    result = concordance_index_censored(
        np.asarray(event).astype(bool),
        np.asarray(time, dtype=float),
        np.asarray(risk_scores, dtype=float),
    )
    return float(result[0])


def bioage_diagnostics(cohort: Cohort, bioage: pd.Series) -> Dict[str, Any]:
    """Summarize row filtering and the discrimination of biological age.

    Concordance is reported for biological age and, as a baseline, for
    chronological age against the same outcome. A cohort without comparable
    pairs reports NaN for both and logs a warning.

    Args:
        cohort: Cohort the score was computed on
        bioage: Biological age aligned with ``cohort.frame``

    Returns:
        Dictionary with n_subjects, n_events, n_dropped, dropped_index,
        cindex_bioage, cindex_age, mean_bioage and mean_age
    """
    age = cohort.frame[AGE_COL].to_numpy(dtype=float)
    try:
        cindex_bioage = compute_cindex(cohort.event, cohort.time, bioage.to_numpy())
        cindex_age = compute_cindex(cohort.event, cohort.time, age)
    except ValueError as exc:
        logger.warning(f"Concordance not available: {exc}")
        cindex_bioage = cindex_age = float("nan")

    return {
        "n_subjects": cohort.n_subjects,
        "n_events": cohort.n_events,
        "n_dropped": cohort.n_dropped,
        "dropped_index": list(cohort.dropped_index),
        "cindex_bioage": cindex_bioage,
        "cindex_age": cindex_age,
        "mean_bioage": float(bioage.mean()),
        "mean_age": float(age.mean()),
    }

"""Convert augmented hazard coefficients into a biological-age score.

Each covariate weight is its augmented log-hazard coefficient divided by the
reference age slope, so one unit of the composite carries the same hazard as
one year of chronological age. The intercept aligns the composite with the
reference model's hazard on average over the cohort.
"""
from __future__ import annotations
from dataclasses import dataclass, field
from typing import Mapping, Tuple
import logging
import numpy as np
import pandas as pd

from bioage_framework.data import AGE_COL, BIOAGE_COL, Cohort
from bioage_framework.exceptions import FitError
from bioage_framework.fitting import ModelPair
from bioage_framework.models import CoxModel, GompertzModel

logger = logging.getLogger(__name__)

INTERCEPT_NAME = "x0"


@dataclass(frozen=True)
class BioAgeCoefficients:
    """Age-equivalent weights of a biological-age score.

    ``bioage = intercept + age_weight * age + sum(weights[b] * b)``

    Attributes:
        weights: Biomarker -> weight in years per unit, age excluded
        age_weight: Weight of chronological age (1 by construction)
        intercept: Offset in years
    """
    weights: Mapping[str, float] = field(default_factory=dict)
    age_weight: float = 1.0
    intercept: float = 0.0

    @property
    def covariates(self) -> Tuple[str, ...]:
        return (AGE_COL,) + tuple(self.weights)

    def as_series(self) -> pd.Series:
        """Flat named vector ``age, biomarkers..., x0``."""
        values = [self.age_weight, *self.weights.values(), self.intercept]
        return pd.Series(values, index=[*self.covariates, INTERCEPT_NAME], dtype=float)


def _gompertz_intercept(models: ModelPair, frame: pd.DataFrame, aging_rate: float) -> float:
    """``log(rate2/rate1)/beta_age + mean(log(h1(0|z) / h2(0|z)))/beta_age``."""
    reference, augmented = models.reference, models.augmented
    log_ratio = reference.log_hazard(0.0, frame) - augmented.log_hazard(0.0, frame)
    return float(
        np.log(augmented.rate / reference.rate) / aging_rate
        + np.mean(log_ratio / aging_rate)
    )


def _cox_intercept(models: ModelPair, frame: pd.DataFrame, aging_rate: float) -> float:
    """``mean(log(risk1 / risk2))/beta_age`` on uncentred linear predictors.

    Without centring, x0 absorbs the mean biomarker contribution instead of
    sitting near zero.
    """
    log_ratio = models.reference.linear_predictor(frame) - models.augmented.linear_predictor(frame)
    return float(np.mean(log_ratio / aging_rate))


def score(cohort: Cohort, coefficients: BioAgeCoefficients) -> pd.Series:
    """Apply biological-age coefficients to a cohort.

    Args:
        cohort: Cohort holding every covariate of ``coefficients``
        coefficients: Weights and intercept from ``calibrate``

    Returns:
        Series named ``bioage`` aligned with ``cohort.frame``
    """
    weights = np.array(
        [coefficients.age_weight, *coefficients.weights.values()], dtype=float
    )
    composite = cohort.design(coefficients.covariates).to_numpy() @ weights
    return pd.Series(
        coefficients.intercept + composite, index=cohort.frame.index, name=BIOAGE_COL
    )


def calibrate(models: ModelPair, cohort: Cohort) -> Tuple[BioAgeCoefficients, pd.Series]:
    """Derive biological-age weights, intercept and per-subject scores.

    Args:
        models: Reference and age-constrained augmented models
        cohort: Cohort the models were fitted on

    Returns:
        Tuple (BioAgeCoefficients, biological age Series)

    Raises:
        FitError: If the reference age slope is zero or not finite

    Example:
        >>> coefficients, bioage = calibrate(fit_gompertz_models(cohort), cohort)
        >>> coefficients.as_series()
        age            1.000
        biomarker1     4.981
        x0            -0.012
        dtype: float64
    """
    aging_rate = models.aging_rate
    if not np.isfinite(aging_rate) or aging_rate == 0:
        raise FitError(
            "reference", [AGE_COL],
            detail=f"age coefficient {aging_rate} cannot scale biological age",
        )

    augmented = models.augmented
    weights = {
        name: float(augmented.coefficients[name] / aging_rate)
        for name in models.covariates.biomarkers
    }
    age_weight = float(augmented.coefficients[AGE_COL] / aging_rate)

    if models.covariates.age_only:
        intercept = 0.0
    elif isinstance(augmented, GompertzModel):
        intercept = _gompertz_intercept(models, cohort.frame, aging_rate)
    elif isinstance(augmented, CoxModel):
        intercept = _cox_intercept(models, cohort.frame, aging_rate)
    else:
        raise TypeError(f"Unsupported hazard model: {type(augmented).__name__}")

    coefficients = BioAgeCoefficients(weights=weights, age_weight=age_weight, intercept=intercept)
    logger.info(f"Biological-age coefficients: {coefficients.as_series().round(6).to_dict()}")
    return coefficients, score(cohort, coefficients)

"""Reference and augmented hazard model fits.

Both hazard families follow the same recipe:

1. Reference model: hazard on chronological age only.
2. Augmented model: hazard on age plus the biomarkers, with the age
   coefficient pinned to the reference estimate so that the biomarker
   coefficients are measured on the reference model's aging scale.

The Gompertz augmented model is first fitted unconstrained and then refitted
with the age slope held, starting from the unconstrained estimates. The Cox
augmented model enters age through an offset. When the covariate set is age
only, the reference model doubles as the augmented model.
"""
from __future__ import annotations
from dataclasses import dataclass
from typing import Optional, Union
import logging

from bioage_framework.config import FitConfig
from bioage_framework.data import AGE_COL, Cohort, CovariateSet
from bioage_framework.logging_config import capture_warnings, log_performance
from bioage_framework.models import (
    CoxModel,
    CoxRegression,
    GompertzModel,
    GompertzRegression,
    SharedConstraint,
)
from bioage_framework.timing import Timer

logger = logging.getLogger(__name__)

HazardModel = Union[GompertzModel, CoxModel]


@dataclass(frozen=True, eq=False)
class ModelPair:
    """Reference and augmented models of one hazard family.

    Attributes:
        reference: Age-only model
        augmented: Age-plus-biomarker model with the age coefficient held at
            the reference value (the reference itself for age-only sets)
        covariates: Covariates of the augmented model, age first
    """
    reference: HazardModel
    augmented: HazardModel
    covariates: CovariateSet

    @property
    def aging_rate(self) -> float:
        """Age log-hazard slope of the reference model."""
        return float(self.reference.coefficients[AGE_COL])


def _log_fit(label: str, model: HazardModel) -> None:
    log_performance(
        logger,
        f"{model.name.capitalize()} {label} fit",
        n_iter=model.n_iter,
        loglik=round(model.log_likelihood, 4),
    )


def fit_gompertz_models(
    cohort: Cohort,
    covariates: Optional[CovariateSet] = None,
    fit_config: Optional[FitConfig] = None,
) -> ModelPair:
    """Fit the reference and age-constrained augmented Gompertz models.

    Args:
        cohort: Prepared cohort
        covariates: Covariates of the augmented model (defaults to the cohort's)
        fit_config: Optimizer settings

    Returns:
        ModelPair of GompertzModel

    Raises:
        FitError: If any of the fits does not converge
    """
    covariates = covariates or cohort.covariates
    fit_config = fit_config or FitConfig()
    regression = GompertzRegression(max_iter=fit_config.max_iter, tol=fit_config.tol)
    time, event = cohort.time, cohort.event

    with capture_warnings(logger):
        with Timer(logger, "Gompertz reference fit"):
            reference = regression.fit(time, event, cohort.design([AGE_COL]), label="reference")
        _log_fit("reference", reference)

        if covariates.age_only:
            return ModelPair(reference=reference, augmented=reference, covariates=covariates)

        design = cohort.design(covariates.names)
        with Timer(logger, "Gompertz augmented fit"):
            unconstrained = regression.fit(time, event, design, label="augmented")
        _log_fit("augmented", unconstrained)

        constraint = SharedConstraint(
            parameter=AGE_COL,
            value=reference.coefficients[AGE_COL],
            source="reference",
        )
        with Timer(logger, "Gompertz constrained augmented fit"):
            augmented = regression.fit(
                time,
                event,
                design,
                fixed={AGE_COL: constraint.value},
                init=unconstrained,
                label="augmented-constrained",
                constraint=constraint,
            )
        _log_fit("augmented-constrained", augmented)

    return ModelPair(reference=reference, augmented=augmented, covariates=covariates)


def fit_cox_models(
    cohort: Cohort,
    covariates: Optional[CovariateSet] = None,
    fit_config: Optional[FitConfig] = None,
) -> ModelPair:
    """Fit the reference Cox model and the augmented model with an age offset.

    Args:
        cohort: Prepared cohort
        covariates: Covariates of the augmented model (defaults to the cohort's)
        fit_config: Optimizer settings

    Returns:
        ModelPair of CoxModel

    Raises:
        FitError: If either fit does not converge
    """
    covariates = covariates or cohort.covariates
    fit_config = fit_config or FitConfig()
    regression = CoxRegression(
        max_iter=fit_config.max_iter, ties=fit_config.cox_ties, tol=fit_config.tol
    )
    time, event = cohort.time, cohort.event

    with capture_warnings(logger):
        with Timer(logger, "Cox reference fit"):
            reference = regression.fit(time, event, cohort.design([AGE_COL]), label="reference")
        _log_fit("reference", reference)

        if covariates.age_only:
            return ModelPair(reference=reference, augmented=reference, covariates=covariates)

        constraint = SharedConstraint(
            parameter=AGE_COL,
            value=reference.coefficients[AGE_COL],
            source="reference",
        )
        with Timer(logger, "Cox augmented fit"):
            augmented = regression.fit(
                time,
                event,
                cohort.design(covariates.names),
                fixed={AGE_COL: constraint.value},
                label="augmented",
                constraint=constraint,
            )
        _log_fit("augmented", augmented)

    return ModelPair(reference=reference, augmented=augmented, covariates=covariates)

"""Exception hierarchy for the biological-age pipeline.

Configuration and data problems are detected before any model is fitted and
raised as ``ConfigurationError`` / ``DataError``. Optimizer failures surface as
``FitError`` and abort the whole computation.
"""
from __future__ import annotations
from typing import Optional, Sequence


class BioAgeError(Exception):
    """Base class for all errors raised by bioage_framework."""


class ConfigurationError(BioAgeError, ValueError):
    """Invalid caller configuration (columns, covariates, selection options)."""


class DataError(BioAgeError, ValueError):
    """Cohort content cannot support a fit (empty, invalid time/status, no events)."""


class FitError(BioAgeError, RuntimeError):
    """A hazard model or selection fit failed to converge.

    Attributes:
        model: Which fit failed ("reference", "augmented", "augmented-constrained",
            "selection")
        covariates: Covariates attempted in the failing fit
        n_iter: Optimizer iterations performed, if known
        detail: Optimizer or library message
    """

    def __init__(
        self,
        model: str,
        covariates: Sequence[str],
        n_iter: Optional[int] = None,
        detail: str = "",
    ):
        self.model = model
        self.covariates = tuple(covariates)
        self.n_iter = n_iter
        self.detail = detail
        terms = " + ".join(self.covariates) if self.covariates else "<none>"
        msg = f"{model} fit did not converge for Surv(time, status) ~ {terms}"
        if n_iter is not None:
            msg += f" after {n_iter} iterations"
        if detail:
            msg += f": {detail}"
        super().__init__(msg)

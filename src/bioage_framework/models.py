from __future__ import annotations
from dataclasses import dataclass, field
from typing import ClassVar, Dict, Mapping, Optional, Tuple
import logging
import numpy as np
import pandas as pd

from scipy.optimize import minimize
from statsmodels.duration.hazard_regression import PHReg

from bioage_framework.exceptions import FitError

logger = logging.getLogger(__name__)

# |shape * t| below which the Gompertz integrals use their Taylor series
_SERIES_CUTOFF = 1e-3


@dataclass(frozen=True)
class SharedConstraint:
    """A parameter held fixed during fitting.

    Attributes:
        parameter: Name of the held parameter (a covariate name or "shape")
        value: Value the parameter was pinned to
        source: Model the value was taken from
    """
    parameter: str
    value: float
    source: str = "reference"


class BaseHazardModel:
    """Base class for fitted hazard model records.

    Provides the shared interface used by the calibration step: a linear
    predictor over covariates and a positional coefficient vector.

    Attributes:
        name: String identifier for the hazard family
    """

    name: ClassVar[str] = "base"
    coefficients: Mapping[str, float]
    fixed: Tuple[str, ...]
    constraint: Optional[SharedConstraint]

    @property
    def covariates(self) -> Tuple[str, ...]:
        """Covariate names in coefficient order."""
        return tuple(self.coefficients)

    @property
    def constrained(self) -> bool:
        """True if any parameter was held fixed while fitting."""
        return self.constraint is not None

    def linear_predictor(self, frame: pd.DataFrame) -> np.ndarray:
        """Compute ``beta . z`` for every row of ``frame`` (no centring).

        Args:
            frame: DataFrame holding at least the model covariates

        Returns:
            Array with shape (n_samples,)
        """
        X = frame[list(self.covariates)].to_numpy(dtype=float)
        beta = np.array([self.coefficients[c] for c in self.covariates], dtype=float)
        return X @ beta

    def coefficient_vector(self) -> pd.Series:
        """Return the positional coefficient vector of the model.

        Raises:
            NotImplementedError: Must be implemented by subclass
        """
        raise NotImplementedError


@dataclass(frozen=True)
class GompertzModel(BaseHazardModel):
    """Fitted Gompertz proportional hazards model.

    Hazard: ``h(t | z) = rate * exp(shape * t) * exp(beta . z)``.

    Attributes:
        rate: Baseline rate (hazard at t=0 for z=0), > 0
        shape: Exponential growth rate of the hazard over follow-up time
        coefficients: Covariate name -> log-hazard coefficient, in fit order
        fixed: Parameters held fixed during the fit
        constraint: Shared constraint applied during the fit, if any
        log_likelihood: Maximized full log-likelihood
        n_iter: Optimizer iterations
        converged: Whether the optimizer reported convergence
    """
    name: ClassVar[str] = "gompertz"

    rate: float
    shape: float
    coefficients: Mapping[str, float]
    fixed: Tuple[str, ...] = ()
    constraint: Optional[SharedConstraint] = None
    log_likelihood: float = float("nan")
    n_iter: int = 0
    converged: bool = True

    def log_hazard(self, times, frame: pd.DataFrame) -> np.ndarray:
        """Log hazard of every row of ``frame`` at ``times``.

        Args:
            times: Scalar or array broadcastable against the rows of ``frame``
            frame: DataFrame with the model covariates

        Returns:
            Array with shape (n_samples,)
        """
        return np.log(self.rate) + self.shape * np.asarray(times, dtype=float) \
            + self.linear_predictor(frame)

    def hazard(self, times, frame: pd.DataFrame) -> np.ndarray:
        return np.exp(self.log_hazard(times, frame))

    def coefficient_vector(self) -> pd.Series:
        """Coefficients as ``(rate, shape, beta_1, ..., beta_p)``."""
        values = [self.rate, self.shape] + [self.coefficients[c] for c in self.covariates]
        return pd.Series(values, index=["rate", "shape", *self.covariates], dtype=float)


@dataclass(frozen=True)
class CoxModel(BaseHazardModel):
    """Fitted Cox proportional hazards model (relative risk only).

    Attributes:
        coefficients: Covariate name -> log hazard ratio, in fit order. Held
            covariates enter through a linear offset and keep their pinned value.
        fixed: Covariates entered as an offset instead of being estimated
        constraint: Shared constraint applied during the fit, if any
        standard_errors: Standard errors of the estimated coefficients
        log_likelihood: Maximized log partial likelihood
        n_iter: Newton iterations
        converged: Whether the score vanished at the solution
    """
    name: ClassVar[str] = "cox"

    coefficients: Mapping[str, float]
    fixed: Tuple[str, ...] = ()
    constraint: Optional[SharedConstraint] = None
    standard_errors: Mapping[str, float] = field(default_factory=dict)
    log_likelihood: float = float("nan")
    n_iter: int = 0
    converged: bool = True

    def relative_risk(self, frame: pd.DataFrame) -> np.ndarray:
        """Exponentiated, uncentred linear predictor (offset included)."""
        return np.exp(self.linear_predictor(frame))

    def coefficient_vector(self) -> pd.Series:
        """Coefficients in covariate order, held ones included."""
        return pd.Series(
            [self.coefficients[c] for c in self.covariates],
            index=list(self.covariates),
            dtype=float,
        )


def _gompertz_integrals(shape: float, t: np.ndarray):
    """Integral ``g = (exp(shape*t) - 1) / shape`` and its first two shape derivatives.

    Returns:
        Tuple (g, dg/dshape, d2g/dshape2), each with the shape of ``t``
    """
    x = shape * t
    small = np.abs(x) < _SERIES_CUTOFF
    denom = np.where(small, 1.0, shape)
    with np.errstate(over="ignore", invalid="ignore"):
        e = np.exp(x)
        g = np.where(small, t * (1 + x / 2 + x ** 2 / 6 + x ** 3 / 24), np.expm1(x) / denom)
        g1 = np.where(small, t ** 2 * (0.5 + x / 3 + x ** 2 / 8), (t * e - g) / denom)
        g2 = np.where(small, t ** 3 * (1 / 3 + x / 4 + x ** 2 / 10), (t ** 2 * e - 2 * g1) / denom)
    return g, g1, g2


@dataclass
class GompertzRegression:
    """Maximum-likelihood Gompertz regression with optional pinned parameters.

    Covariates are centred internally so the intercept and the covariate
    coefficients are close to orthogonal; reported rates are for uncentred
    covariates. The mean negative log-likelihood is minimized with SciPy's
    ``trust-exact`` method using the analytic gradient and Hessian.

    Attributes:
        max_iter: Maximum optimizer iterations
        tol: Gradient tolerance on the mean log-likelihood

    Example:
        >>> reg = GompertzRegression()
        >>> ref = reg.fit(cohort.time, cohort.event, cohort.design(["age"]))
        >>> aug = reg.fit(cohort.time, cohort.event, cohort.design(["age", "crp"]),
        ...               fixed={"age": ref.coefficients["age"]})
    """
    max_iter: int = 200
    tol: float = 1e-8

    def fit(
        self,
        time: np.ndarray,
        event: np.ndarray,
        X: pd.DataFrame,
        fixed: Optional[Dict[str, float]] = None,
        init: Optional[GompertzModel] = None,
        label: str = "reference",
        constraint: Optional[SharedConstraint] = None,
    ) -> GompertzModel:
        """Fit the model by maximum likelihood.

        Args:
            time: Follow-up times, shape (n_samples,)
            event: Event indicators (1 = event), shape (n_samples,)
            X: Covariates, one column per coefficient
            fixed: Parameters to hold fixed, keyed by covariate name or "shape"
            init: Model whose estimates seed the optimizer
            label: Name of this fit in logs and errors
            constraint: Constraint record stored on the fitted model

        Returns:
            Fitted GompertzModel

        Raises:
            FitError: If the optimizer does not converge within max_iter
            ValueError: If ``fixed`` names an unknown parameter
        """
        fixed = dict(fixed or {})
        covariates = [str(c) for c in X.columns]
        names = ["log_rate", "shape", *covariates]
        unknown = set(fixed) - set(names[1:])
        if unknown:
            raise ValueError(f"Cannot fix unknown Gompertz parameters: {sorted(unknown)}")

        t = np.asarray(time, dtype=float)
        d = np.asarray(event, dtype=float)
        Z = X.to_numpy(dtype=float)
        means = Z.mean(axis=0)
        Zc = Z - means
        design = np.column_stack([np.ones(len(t)), Zc])
        n = len(t)

        theta0 = np.zeros(len(names))
        if init is not None:
            beta_init = np.array([init.coefficients.get(c, 0.0) for c in covariates])
            theta0[1] = init.shape
            theta0[2:] = beta_init
        else:
            theta0[0] = np.log(d.sum() / t.sum())
        for key, value in fixed.items():
            theta0[names.index(key)] = value
        if init is not None:
            theta0[0] = np.log(init.rate) + theta0[2:] @ means

        free = np.array([name not in fixed for name in names])
        cache = {}

        def _parts(theta_free):
            key = theta_free.tobytes()
            if key not in cache:
                theta = theta0.copy()
                theta[free] = theta_free
                shape, beta = theta[1], theta[2:]
                eta = theta[0] + Zc @ beta
                g, g1, g2 = _gompertz_integrals(shape, t)
                with np.errstate(over="ignore", invalid="ignore"):
                    risk = np.exp(eta)
                    cumhaz = risk * g
                    loglik = np.sum(d * (eta + shape * t)) - np.sum(cumhaz)

                    grad = np.empty(len(names))
                    grad[[0, *range(2, len(names))]] = design.T @ (d - cumhaz)
                    grad[1] = np.sum(d * t) - np.sum(risk * g1)

                    idx = [0, *range(2, len(names))]
                    hess = np.empty((len(names), len(names)))
                    hess[np.ix_(idx, idx)] = -(design * cumhaz[:, None]).T @ design
                    cross = -design.T @ (risk * g1)
                    hess[idx, 1] = cross
                    hess[1, idx] = cross
                    hess[1, 1] = -np.sum(risk * g2)

                cache.clear()
                cache[key] = (
                    -loglik / n,
                    -grad[free] / n,
                    -hess[np.ix_(free, free)] / n,
                )
            return cache[key]

        res = minimize(
            lambda x: _parts(x)[0],
            theta0[free],
            jac=lambda x: _parts(x)[1],
            hess=lambda x: _parts(x)[2],
            method="trust-exact",
            options={"maxiter": self.max_iter, "gtol": self.tol},
        )

        grad_norm = float(np.max(np.abs(res.jac))) if np.size(res.jac) else 0.0
        # trust-exact reports precision loss at the optimum as a failure
        converged = bool(res.success) or (
            res.nit < self.max_iter and np.isfinite(res.fun) and grad_norm < np.sqrt(self.tol)
        )
        if not converged or not np.all(np.isfinite(res.x)):
            raise FitError(label, covariates, n_iter=int(res.nit), detail=str(res.message))

        theta = theta0.copy()
        theta[free] = res.x
        beta = theta[2:]
        model = GompertzModel(
            rate=float(np.exp(theta[0] - beta @ means)),
            shape=float(theta[1]),
            coefficients={c: float(b) for c, b in zip(covariates, beta)},
            fixed=tuple(k for k in names if k in fixed),
            constraint=constraint,
            log_likelihood=float(-res.fun * n),
            n_iter=int(res.nit),
        )
        logger.debug(
            f"Gompertz {label} fit: rate={model.rate:.4g}, shape={model.shape:.4g}, "
            f"coefficients={model.coefficients}, n_iter={model.n_iter}"
        )
        return model


@dataclass
class CoxRegression:
    """Cox partial-likelihood regression with optional offset covariates.

    Wraps statsmodels' ``PHReg``; covariates listed in ``fixed`` are not
    estimated but enter the linear predictor as ``offset = sum(value * z)``.

    Attributes:
        max_iter: Maximum Newton iterations
        ties: Tie handling, "efron" or "breslow"
        tol: Convergence tolerance; the mean score at the solution must be
            below ``sqrt(tol)``

    Example:
        >>> reg = CoxRegression()
        >>> ref = reg.fit(cohort.time, cohort.event, cohort.design(["age"]))
    """
    max_iter: int = 200
    ties: str = "efron"
    tol: float = 1e-8

    def fit(
        self,
        time: np.ndarray,
        event: np.ndarray,
        X: pd.DataFrame,
        fixed: Optional[Dict[str, float]] = None,
        label: str = "reference",
        constraint: Optional[SharedConstraint] = None,
    ) -> CoxModel:
        """Fit the model by maximum partial likelihood.

        Args:
            time: Follow-up times, shape (n_samples,)
            event: Event indicators (1 = event), shape (n_samples,)
            X: Covariates, held and estimated ones, in coefficient order
            fixed: Covariate name -> value for coefficients held by an offset
            label: Name of this fit in logs and errors
            constraint: Constraint record stored on the fitted model

        Returns:
            Fitted CoxModel

        Raises:
            FitError: If Newton-Raphson does not converge within max_iter
            ValueError: If every covariate is held fixed
        """
        fixed = dict(fixed or {})
        covariates = [str(c) for c in X.columns]
        estimated = [c for c in covariates if c not in fixed]
        if not estimated:
            raise ValueError("CoxRegression needs at least one estimated covariate")

        offset = None
        if fixed:
            held = list(fixed)
            offset = X[held].to_numpy(dtype=float) @ np.array([fixed[c] for c in held])

        exog = X[estimated].to_numpy(dtype=float)
        status = np.asarray(event, dtype=int)
        model = PHReg(np.asarray(time, dtype=float), exog, status=status,
                      offset=offset, ties=self.ties)

        iterations = []
        try:
            res = model.fit(maxiter=self.max_iter, disp=False,
                            callback=lambda params: iterations.append(1))
        except (np.linalg.LinAlgError, ValueError) as exc:
            raise FitError(label, covariates, n_iter=len(iterations), detail=str(exc)) from exc

        params = np.asarray(res.params, dtype=float)
        score = np.asarray(model.score(params), dtype=float)
        mean_score = float(np.max(np.abs(score))) / len(status)
        if not np.all(np.isfinite(params)) or mean_score > np.sqrt(self.tol):
            raise FitError(
                label, covariates, n_iter=len(iterations),
                detail=f"max |score| / n = {mean_score:.3g}",
            )

        estimates = dict(zip(estimated, params))
        fitted = CoxModel(
            coefficients={c: float(fixed[c]) if c in fixed else float(estimates[c])
                          for c in covariates},
            fixed=tuple(c for c in covariates if c in fixed),
            constraint=constraint,
            standard_errors=dict(zip(estimated, np.asarray(res.bse, dtype=float))),
            log_likelihood=float(res.llf),
            n_iter=len(iterations),
        )
        logger.debug(
            f"Cox {label} fit: coefficients={fitted.coefficients}, n_iter={fitted.n_iter}"
        )
        return fitted

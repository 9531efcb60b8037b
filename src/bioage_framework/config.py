"""Configuration for hazard fitting, covariate selection and execution.

This module centralizes every tunable of the biological-age pipeline:
- FitConfig: optimizer bounds for the Gompertz and Cox fits
- SelectionConfig: cross-validated penalized Cox selection of biomarkers
- ExecutionConfig: sequential or joblib-parallel fold fitting
- BioAgeConfig: master configuration, serializable to/from JSON
"""
from __future__ import annotations
from enum import Enum
from dataclasses import dataclass, field
from typing import Optional, Union
import os
import json
import multiprocessing

from bioage_framework.exceptions import ConfigurationError


SELECTION_METHODS = ("lasso", "elasticnet", "none")
COX_TIES = ("efron", "breslow")


class ExecutionMode(str, Enum):
    """Execution mode for cross-validation folds.

    Attributes:
        SEQUENTIAL: Folds are fitted one after another (default)
        MULTIPROCESSING: Folds are fitted in parallel with joblib
    """
    SEQUENTIAL = "sequential"
    MULTIPROCESSING = "mp"


@dataclass
class ExecutionConfig:
    """Configuration for execution mode and parallelization of CV folds.

    Fold results do not depend on the execution mode: every fold receives its
    indices from the seeded splitter before any work is dispatched.

    Attributes:
        mode: Execution mode (sequential or mp)
        n_jobs: Number of parallel jobs. -1 means use all cores, 1 means sequential
        verbose: Verbosity level for joblib (0=silent, 10=progress bar, 50=detailed)
        backend: Joblib backend ('loky', 'threading', 'multiprocessing')

    Example:
        >>> config = ExecutionConfig()
        >>> config = ExecutionConfig(mode=ExecutionMode.MULTIPROCESSING, n_jobs=-1)
    """
    mode: ExecutionMode = ExecutionMode.SEQUENTIAL
    n_jobs: int = 1
    verbose: int = 0
    backend: str = "loky"

    def __post_init__(self):
        """Validate and normalize configuration."""
        if isinstance(self.mode, str):
            try:
                self.mode = ExecutionMode(self.mode)
            except ValueError as exc:
                raise ConfigurationError(f"Unknown execution mode: {self.mode!r}") from exc

        if self.n_jobs == -1:
            self.n_jobs = multiprocessing.cpu_count()
        elif self.n_jobs < 1:
            raise ConfigurationError(f"n_jobs must be -1 or positive, got {self.n_jobs}")

        if self.mode == ExecutionMode.SEQUENTIAL:
            self.n_jobs = 1

    def is_parallel(self) -> bool:
        """Check if parallel execution is enabled.

        Returns:
            True if execution mode supports parallelism and n_jobs > 1
        """
        return self.mode != ExecutionMode.SEQUENTIAL and self.n_jobs > 1

    def __str__(self) -> str:
        return (
            f"ExecutionConfig(mode={self.mode.value}, "
            f"n_jobs={self.n_jobs}, "
            f"parallel={self.is_parallel()})"
        )


@dataclass
class FitConfig:
    """Optimizer settings shared by the reference and augmented hazard fits.

    Attributes:
        max_iter: Upper bound on optimizer iterations per fit. Exceeding it is
            reported as a FitError rather than looping indefinitely.
        tol: Gradient tolerance on the per-subject log-likelihood
        cox_ties: Tie handling of the Cox partial likelihood ("efron" or "breslow")
    """
    max_iter: int = 200
    """Maximum optimizer iterations for a single hazard model fit."""

    tol: float = 1e-8
    """Convergence tolerance on the gradient of the mean log-likelihood."""

    cox_ties: str = "efron"
    """Tie handling for Cox partial likelihood.

    Valid options: "efron", "breslow"
    """

    def __post_init__(self):
        if self.max_iter < 1:
            raise ConfigurationError(f"max_iter must be positive, got {self.max_iter}")
        if not self.tol > 0:
            raise ConfigurationError(f"tol must be positive, got {self.tol}")
        if self.cox_ties not in COX_TIES:
            raise ConfigurationError(
                f"cox_ties must be one of {COX_TIES}, got {self.cox_ties!r}"
            )


@dataclass
class SelectionConfig:
    """Configuration for cross-validated penalized Cox covariate selection.

    Attributes:
        feature_selection: Whether to narrow the biomarker panel before fitting
        selection_method: "lasso" (alpha forced to 1), "elasticnet" (uses alpha),
            or "none" (selection skipped)
        alpha: Elastic net mixing parameter in [0, 1]; 1 is the pure L1
            penalty, 0 a ridge penalty that keeps every biomarker
        folds: Number of cross-validation folds
        seed: Seed of the fold assignment
        n_lambdas: Number of penalty strengths on the regularization path
        lambda_min_ratio: Ratio of smallest to largest penalty, or "auto"
    """
    feature_selection: bool = False
    selection_method: str = "lasso"
    alpha: float = 1.0
    folds: int = 10
    seed: int = 123
    n_lambdas: int = 100
    lambda_min_ratio: Union[float, str] = "auto"

    def __post_init__(self):
        if self.selection_method not in SELECTION_METHODS:
            raise ConfigurationError(
                f"selection_method must be one of {SELECTION_METHODS}, "
                f"got {self.selection_method!r}"
            )
        if not 0.0 <= float(self.alpha) <= 1.0:
            raise ConfigurationError(f"alpha must lie in [0, 1], got {self.alpha}")
        if int(self.folds) != self.folds or self.folds < 2:
            raise ConfigurationError(f"folds must be an integer >= 2, got {self.folds}")
        if self.n_lambdas < 2:
            raise ConfigurationError(f"n_lambdas must be >= 2, got {self.n_lambdas}")
        if self.lambda_min_ratio != "auto" and not 0.0 < float(self.lambda_min_ratio) < 1.0:
            raise ConfigurationError(
                f"lambda_min_ratio must be 'auto' or in (0, 1), got {self.lambda_min_ratio}"
            )

    @property
    def l1_ratio(self) -> float:
        """Effective L1 share: 1.0 for lasso, alpha for elastic net."""
        if self.selection_method == "elasticnet":
            return float(self.alpha)
        return 1.0

    @property
    def enabled(self) -> bool:
        """True when selection was requested with an actual method."""
        return self.feature_selection and self.selection_method != "none"


@dataclass
class BioAgeConfig:
    """Master configuration for the biological-age pipeline.

    Can be serialized to/from JSON so a computation can be reproduced.

    Attributes:
        fit: Optimizer configuration for the hazard model fits
        selection: Covariate selection configuration
        execution: Fold execution configuration
        description: Optional description of this configuration

    Example:
        >>> config = BioAgeConfig(selection=SelectionConfig(feature_selection=True))
        >>> config.save("configs/nhanes_lasso.json")
        >>> loaded = BioAgeConfig.load("configs/nhanes_lasso.json")
    """
    fit: FitConfig = field(default_factory=FitConfig)
    selection: SelectionConfig = field(default_factory=SelectionConfig)
    execution: ExecutionConfig = field(default_factory=ExecutionConfig)

    description: str = ""
    """Optional description of this configuration."""

    def to_dict(self) -> dict:
        """Convert configuration to dictionary for serialization.

        Returns:
            Dictionary representation of configuration
        """
        def _dataclass_to_dict(obj):
            """Recursively convert dataclass to dict."""
            if hasattr(obj, '__dataclass_fields__'):
                return {
                    k: _dataclass_to_dict(v)
                    for k, v in obj.__dict__.items()
                }
            elif isinstance(obj, Enum):
                return obj.value
            else:
                return obj

        return _dataclass_to_dict(self)

    def save(self, path: str) -> None:
        """Save configuration to JSON file.

        Args:
            path: Path to output JSON file
        """
        config_dict = self.to_dict()
        directory = os.path.dirname(path)
        if directory:
            os.makedirs(directory, exist_ok=True)

        with open(path, 'w') as f:
            json.dump(config_dict, f, indent=2)

    @classmethod
    def load(cls, path: str) -> "BioAgeConfig":
        """Load configuration from JSON file.

        Args:
            path: Path to input JSON file

        Returns:
            BioAgeConfig instance
        """
        with open(path) as f:
            data = json.load(f)

        return cls(
            fit=FitConfig(**data['fit']),
            selection=SelectionConfig(**data['selection']),
            execution=ExecutionConfig(**data['execution']),
            description=data.get('description', '')
        )


def resolve_selection(
    config: Optional[BioAgeConfig] = None,
    **overrides,
) -> SelectionConfig:
    """Build the effective SelectionConfig from a base config and explicit options.

    Keyword options that are not None replace the corresponding field of
    ``config.selection``; validation runs on the merged result.

    Args:
        config: Optional master configuration providing defaults
        **overrides: SelectionConfig field values given by the caller

    Returns:
        Validated SelectionConfig

    Raises:
        ConfigurationError: If the merged options are invalid
    """
    base = (config or BioAgeConfig()).selection
    merged = dict(base.__dict__)
    merged.update({k: v for k, v in overrides.items() if v is not None})
    return SelectionConfig(**merged)

from __future__ import annotations
from dataclasses import dataclass, field
from typing import Iterable, Sequence, Tuple
import logging
import numpy as np
import pandas as pd

from bioage_framework.exceptions import ConfigurationError, DataError

logger = logging.getLogger(__name__)

# Expected columns
TIME_COL = "time"
EVENT_COL = "status"
AGE_COL = "age"
BIOAGE_COL = "bioage"


@dataclass(frozen=True)
class CovariateSet:
    """Ordered set of covariate names with chronological age first.

    Replaces model formulas assembled at runtime: every fit receives a
    CovariateSet and the position of a name here is the position of its
    coefficient in the fitted model's coefficient vector.

    Attributes:
        names: Covariate names, ``"age"`` first, no duplicates

    Example:
        >>> cs = CovariateSet.from_names(["albumin", "age", "crp"])
        >>> cs.names
        ('age', 'albumin', 'crp')
        >>> cs.biomarkers
        ('albumin', 'crp')
    """
    names: Tuple[str, ...]

    def __post_init__(self):
        if not self.names or self.names[0] != AGE_COL:
            raise ConfigurationError("'age' must be included in the variable list")
        if len(set(self.names)) != len(self.names):
            raise ConfigurationError(f"Duplicate covariate names in {list(self.names)}")

    @classmethod
    def from_names(cls, names: Iterable[str]) -> "CovariateSet":
        """Build a set from caller-supplied names, moving age to the front.

        Args:
            names: Covariate names, which must include ``"age"``

        Returns:
            CovariateSet with biomarkers in their supplied order

        Raises:
            ConfigurationError: If age is missing or a name repeats
        """
        names = [str(n) for n in names]
        if AGE_COL not in names:
            raise ConfigurationError("'age' must be included in the variable list")
        return cls((AGE_COL,) + tuple(n for n in names if n != AGE_COL))

    @property
    def biomarkers(self) -> Tuple[str, ...]:
        """Covariates other than chronological age, in order."""
        return self.names[1:]

    @property
    def age_only(self) -> bool:
        return len(self.names) == 1

    def restrict(self, keep: Iterable[str]) -> "CovariateSet":
        """Keep age plus the biomarkers in ``keep``, preserving this set's order."""
        keep = set(keep)
        return CovariateSet((AGE_COL,) + tuple(b for b in self.biomarkers if b in keep))

    def __len__(self) -> int:
        return len(self.names)

    def __iter__(self):
        return iter(self.names)


@dataclass(frozen=True, eq=False)
class Cohort:
    """Row-complete cohort ready for hazard model fitting.

    Attributes:
        frame: DataFrame with TIME_COL, EVENT_COL and the covariates, original
            index labels preserved. Treated as read-only by every stage.
        covariates: Requested covariates
        n_dropped: Number of rows removed for missing values
        dropped_index: Index labels of the removed rows, in original order
    """
    frame: pd.DataFrame
    covariates: CovariateSet
    n_dropped: int = 0
    dropped_index: Tuple = field(default_factory=tuple)

    @property
    def n_subjects(self) -> int:
        return len(self.frame)

    @property
    def n_events(self) -> int:
        return int(self.frame[EVENT_COL].sum())

    @property
    def time(self) -> np.ndarray:
        return self.frame[TIME_COL].to_numpy(dtype=float)

    @property
    def event(self) -> np.ndarray:
        return self.frame[EVENT_COL].to_numpy(dtype=int)

    def design(self, covariates: Sequence[str]) -> pd.DataFrame:
        """Covariate columns in the given order, as floats."""
        return self.frame[list(covariates)].astype(float)


def prepare_cohort(table: pd.DataFrame, covariate_names: Iterable[str]) -> Cohort:
    """Validate a raw cohort table and drop incomplete rows.

    Keeps only the time, status and requested covariate columns, removes every
    row with a missing value in any of them (no imputation), and checks that
    what remains can support a survival fit.

    Args:
        table: Raw cohort table with one row per subject
        covariate_names: Requested covariates; must include ``"age"``

    Returns:
        Cohort with the filtered frame and drop diagnostics

    Raises:
        ConfigurationError: If age is not requested, or the table lacks the
            time, status or a requested covariate column
        DataError: If no rows remain, follow-up times are not positive, status
            is not 0/1, a covariate is not numeric, or no event is observed

    Example:
        >>> cohort = prepare_cohort(df, ["age", "albumin", "crp"])
        >>> cohort.n_subjects, cohort.n_dropped
        (998, 2)
    """
    covariates = CovariateSet.from_names(covariate_names)

    if not all(c in table.columns for c in (TIME_COL, EVENT_COL)):
        raise ConfigurationError("Data must contain 'time' and 'status' columns")

    missing_cols = [c for c in covariates if c not in table.columns]
    if missing_cols:
        raise ConfigurationError(
            f"Covariate columns {missing_cols} not found in input table. "
            f"Available columns: {list(table.columns)[:10]}"
        )

    cols_needed = [TIME_COL, EVENT_COL] + list(covariates)
    data = table[cols_needed].copy()

    incomplete = data.isna().any(axis=1)
    dropped_index = tuple(data.index[incomplete])
    if dropped_index:
        logger.warning(
            f"Removing {len(dropped_index):,} of {len(data):,} records with missing values"
        )
        data = data.loc[~incomplete]

    if data.empty:
        raise DataError("Cohort is empty after removing rows with missing values")

    non_numeric = [c for c in covariates if not pd.api.types.is_numeric_dtype(data[c])]
    if non_numeric:
        raise DataError(f"Covariates must be numeric, got non-numeric columns {non_numeric}")

    if not pd.api.types.is_numeric_dtype(data[TIME_COL]):
        raise DataError("'time' must be numeric")
    if (data[TIME_COL] <= 0).any():
        raise DataError(
            f"Follow-up time must be positive; {(data[TIME_COL] <= 0).sum():,} records have time <= 0"
        )

    status = pd.to_numeric(data[EVENT_COL], errors="coerce").astype(float)
    if not status.isin([0.0, 1.0]).all():
        raise DataError("'status' must be coded 0 (censored) / 1 (event)")
    data[EVENT_COL] = status.astype(int)

    if data[EVENT_COL].sum() == 0:
        raise DataError("Cohort contains no events; hazard models cannot be fitted")

    logger.info(
        f"Prepared cohort: {len(data):,} subjects, {int(data[EVENT_COL].sum()):,} events, "
        f"covariates={list(covariates)}"
    )
    return Cohort(
        frame=data,
        covariates=covariates,
        n_dropped=len(dropped_index),
        dropped_index=dropped_index,
    )


def to_structured_y(df: pd.DataFrame) -> np.ndarray:
    """Create scikit-survival structured array from DataFrame.

    Args:
        df: DataFrame containing EVENT_COL and TIME_COL columns

    Returns:
        Structured numpy array with dtype=[('event', bool), ('time', float)]

    Example:
        >>> df = pd.DataFrame({'status': [1, 0], 'time': [12.5, 24.0]})
        >>> y = to_structured_y(df)
        >>> y.dtype.names
        ('event', 'time')
    """
    y = np.array(
        list(zip(df[EVENT_COL].astype(bool).values, df[TIME_COL].astype(float).values)),
        dtype=[("event", bool), ("time", float)],
    )
    return y

from __future__ import annotations
from dataclasses import dataclass, field
from typing import Any, Dict, Optional, Tuple
import pandas as pd

from bioage_framework.calibration import BioAgeCoefficients
from bioage_framework.data import BIOAGE_COL, Cohort
from bioage_framework.fitting import ModelPair
from bioage_framework.selection import SelectionResult


@dataclass(frozen=True, eq=False)
class BioAgeResult:
    """Outcome of one biological-age computation.

    Attributes:
        method: Hazard family, "gompertz" or "cox"
        reference_model_coefficients: Coefficient vector of the age-only model
        augmented_model_coefficients: Coefficient vector of the augmented model
        bioage_coefficients: Weights and intercept of the score
        scored_cohort: Prepared cohort with a ``bioage`` column
        selection: Selection outcome when selection was requested, else None
        diagnostics: Row filtering counts and concordance summaries
    """
    method: str
    reference_model_coefficients: pd.Series
    augmented_model_coefficients: pd.Series
    bioage_coefficients: BioAgeCoefficients
    scored_cohort: pd.DataFrame
    selection: Optional[SelectionResult] = None
    diagnostics: Dict[str, Any] = field(default_factory=dict)

    @property
    def selected_vars(self) -> Optional[Tuple[str, ...]]:
        return None if self.selection is None else self.selection.selected_vars

    @property
    def original_vars(self) -> Optional[Tuple[str, ...]]:
        return None if self.selection is None else self.selection.original_vars

    @property
    def bioage(self) -> pd.Series:
        return self.scored_cohort[BIOAGE_COL]


def assemble_result(
    method: str,
    models: ModelPair,
    coefficients: BioAgeCoefficients,
    cohort: Cohort,
    bioage: pd.Series,
    selection: Optional[SelectionResult] = None,
    diagnostics: Optional[Dict[str, Any]] = None,
) -> BioAgeResult:
    """Package fitted models, coefficients and scores into a BioAgeResult.

    The cohort frame is copied; the scored frame keeps the original index.
    """
    return BioAgeResult(
        method=method,
        reference_model_coefficients=models.reference.coefficient_vector(),
        augmented_model_coefficients=models.augmented.coefficient_vector(),
        bioage_coefficients=coefficients,
        scored_cohort=cohort.frame.assign(**{BIOAGE_COL: bioage}),
        selection=selection,
        diagnostics=dict(diagnostics or {}),
    )

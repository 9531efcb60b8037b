"""Unit tests for bioage_framework.data module.

Tests covariate ordering, cohort validation and row filtering.
"""
import pytest
import numpy as np
import pandas as pd
from bioage_framework.data import (
    CovariateSet,
    prepare_cohort,
    to_structured_y,
    BIOAGE_COL,
)
from bioage_framework.exceptions import ConfigurationError, DataError


class TestCovariateSet:
    """Tests for CovariateSet ordering and validation."""

    def test_age_moved_first(self):
        """Test that age is placed first and biomarker order is kept."""
        cs = CovariateSet.from_names(["crp", "age", "albumin"])

        assert cs.names == ("age", "crp", "albumin")
        assert cs.biomarkers == ("crp", "albumin")
        assert not cs.age_only

    def test_age_only(self):
        """Test the degenerate age-only set."""
        cs = CovariateSet.from_names(["age"])

        assert cs.age_only
        assert cs.biomarkers == ()
        assert len(cs) == 1

    def test_missing_age_raises(self):
        """Test that a covariate list without age is rejected."""
        with pytest.raises(ConfigurationError, match="age"):
            CovariateSet.from_names(["crp", "albumin"])

    def test_duplicates_raise(self):
        """Test that repeated names are rejected."""
        with pytest.raises(ConfigurationError, match="Duplicate"):
            CovariateSet.from_names(["age", "crp", "crp"])

    def test_restrict_keeps_order_and_age(self):
        """Test that restrict keeps age and the original biomarker order."""
        cs = CovariateSet.from_names(["age", "a", "b", "c"])

        assert cs.restrict(["c", "a"]).names == ("age", "a", "c")
        assert cs.restrict([]).names == ("age",)


class TestPrepareCohort:
    """Tests for prepare_cohort validation and filtering."""

    def test_drops_incomplete_rows(self, small_table):
        """Test that rows with missing values are removed and counted."""
        cohort = prepare_cohort(small_table, ["age", "biomarker1"])

        assert cohort.n_subjects == 5
        assert cohort.n_dropped == 1
        assert cohort.dropped_index == (11,)
        assert list(cohort.frame.index) == [10, 12, 13, 14, 15]

    def test_drop_logged_as_warning(self, small_table, caplog):
        """Test that dropping rows emits a warning."""
        with caplog.at_level("WARNING", logger="bioage_framework"):
            prepare_cohort(small_table, ["age", "biomarker1"])

        assert any("missing values" in r.message for r in caplog.records)

    def test_unrequested_columns_do_not_drop_rows(self, small_table):
        """Test that missing values outside requested columns are ignored."""
        cohort = prepare_cohort(small_table, ["age"])

        assert cohort.n_dropped == 0
        assert list(cohort.frame.columns) == ["time", "status", "age"]

    def test_input_not_modified(self, small_table):
        """Test that the caller's table is left untouched."""
        before = small_table.copy()
        prepare_cohort(small_table, ["age", "biomarker1"])

        pd.testing.assert_frame_equal(small_table, before)

    def test_missing_covariate_column(self, small_table):
        """Test that a requested covariate absent from the table is rejected."""
        with pytest.raises(ConfigurationError, match="crp"):
            prepare_cohort(small_table, ["age", "crp"])

    def test_missing_time_column(self, small_table):
        """Test that a table without time is rejected."""
        with pytest.raises(ConfigurationError, match="time"):
            prepare_cohort(small_table.drop(columns="time"), ["age"])

    def test_age_not_requested(self, small_table):
        """Test that omitting age from the names is rejected."""
        with pytest.raises(ConfigurationError):
            prepare_cohort(small_table, ["biomarker1"])

    def test_nonpositive_time(self, small_table):
        """Test that zero follow-up time is a data error."""
        small_table.loc[10, "time"] = 0.0
        with pytest.raises(DataError, match="positive"):
            prepare_cohort(small_table, ["age"])

    def test_invalid_status(self, small_table):
        """Test that status values other than 0/1 are rejected."""
        small_table.loc[10, "status"] = 2
        with pytest.raises(DataError, match="status"):
            prepare_cohort(small_table, ["age"])

    def test_boolean_status_accepted(self, small_table):
        """Test that a boolean status column is coded as 0/1."""
        small_table["status"] = small_table["status"].astype(bool)
        cohort = prepare_cohort(small_table, ["age"])

        assert cohort.n_events == 3
        assert set(cohort.event) == {0, 1}

    def test_no_events(self, small_table):
        """Test that a fully censored cohort is rejected."""
        small_table["status"] = 0
        with pytest.raises(DataError, match="no events"):
            prepare_cohort(small_table, ["age"])

    def test_empty_after_filtering(self, small_table):
        """Test that a cohort emptied by filtering is rejected."""
        small_table["biomarker1"] = np.nan
        with pytest.raises(DataError, match="empty"):
            prepare_cohort(small_table, ["age", "biomarker1"])

    def test_non_numeric_covariate(self, small_table):
        """Test that text covariates are rejected."""
        small_table["group"] = list("abcdef")
        with pytest.raises(DataError, match="numeric"):
            prepare_cohort(small_table, ["age", "group"])

    def test_design_column_order(self, small_table):
        """Test that design returns columns in the requested order."""
        cohort = prepare_cohort(small_table, ["biomarker1", "age"])
        design = cohort.design(cohort.covariates)

        assert list(design.columns) == ["age", "biomarker1"]
        assert BIOAGE_COL not in cohort.frame.columns


class TestToStructuredY:
    """Tests for to_structured_y function."""

    def test_basic_conversion(self):
        """Test basic conversion of DataFrame to structured array."""
        df = pd.DataFrame({"status": [1, 0, 1], "time": [12.5, 24.0, 6.0]})
        y = to_structured_y(df)

        assert y.dtype.names == ("event", "time")
        assert len(y) == 3
        assert y["event"].dtype == bool
        assert y["event"][0]
        assert y["time"][1] == 24.0

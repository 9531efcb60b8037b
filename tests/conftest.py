"""Pytest configuration and shared fixtures for bioage framework tests.

Cohorts are simulated from a Gompertz proportional hazards model so tests can
compare estimates against known parameters.
"""
import logging
import pytest
import pandas as pd
import numpy as np

from bioage_framework.data import prepare_cohort
from bioage_framework.logging_config import LOGGER_NAME


AGE_BETA = 0.08
TRUE_COEFFICIENTS = {"age": AGE_BETA, "biomarker1": 0.5, "biomarker2": -0.3}


def simulate_cohort(
    n,
    coefficients,
    rate=1e-4,
    shape=0.05,
    seed=0,
    max_follow_up=15.0,
):
    """Simulate a right-censored cohort from a Gompertz hazard.

    Age is uniform on [40, 80]; every other covariate is standard normal.
    Censoring is uniform on [2, max_follow_up].

    Args:
        n: Number of subjects
        coefficients: Covariate name -> log-hazard coefficient, including "age"
        rate: Gompertz rate at t=0 for all covariates zero
        shape: Gompertz shape
        seed: Seed for numpy's default_rng
        max_follow_up: Largest censoring time

    Returns:
        pd.DataFrame with time, status and one column per covariate
    """
    rng = np.random.default_rng(seed)
    data = {}
    for name in coefficients:
        if name == "age":
            data[name] = rng.uniform(40, 80, n)
        else:
            data[name] = rng.standard_normal(n)
    lp = sum(coefficients[name] * data[name] for name in coefficients)

    e = rng.exponential(size=n)
    event_time = np.log1p(shape * e / (rate * np.exp(lp))) / shape
    censor_time = rng.uniform(2.0, max_follow_up, n)

    df = pd.DataFrame(data)
    df.insert(0, "status", (event_time <= censor_time).astype(int))
    df.insert(0, "time", np.minimum(event_time, censor_time))
    return df


@pytest.fixture(autouse=True)
def reset_package_logger():
    """Restore propagation of the package logger after each test.

    ``setup_logging`` installs handlers and disables propagation, which would
    hide records from pytest's ``caplog`` in later tests.
    """
    yield
    logger = logging.getLogger(LOGGER_NAME)
    for handler in list(logger.handlers):
        logger.removeHandler(handler)
        handler.close()
    logger.propagate = True
    logger.setLevel(logging.NOTSET)


@pytest.fixture(scope="session")
def simulated_table():
    """1,000 simulated subjects with age, biomarker1 and biomarker2.

    Returns:
        pd.DataFrame: Cohort table (treat as read-only)
    """
    return simulate_cohort(1000, TRUE_COEFFICIENTS, seed=2024)


@pytest.fixture
def cohort_table(simulated_table):
    """Mutable copy of the simulated cohort table."""
    return simulated_table.copy()


@pytest.fixture(scope="session")
def large_table():
    """20,000 simulated subjects for parameter recovery checks."""
    return simulate_cohort(20000, TRUE_COEFFICIENTS, seed=7)


@pytest.fixture(scope="session")
def selection_table():
    """2,000 subjects with two informative and two null biomarkers."""
    coefficients = {
        "age": AGE_BETA,
        "biomarker1": 0.6,
        "biomarker2": -0.4,
        "noise1": 0.0,
        "noise2": 0.0,
    }
    return simulate_cohort(2000, coefficients, seed=11)


@pytest.fixture
def cohort(simulated_table):
    """Prepared cohort over age, biomarker1 and biomarker2."""
    return prepare_cohort(simulated_table, ["age", "biomarker1", "biomarker2"])


@pytest.fixture
def small_table():
    """Hand-written 6-subject table with one missing biomarker value."""
    return pd.DataFrame({
        "time": [1.0, 2.5, 3.0, 4.2, 5.0, 6.1],
        "status": [1, 0, 1, 0, 1, 0],
        "age": [50.0, 61.0, 70.0, 45.0, 66.0, 58.0],
        "biomarker1": [0.1, np.nan, -0.4, 1.2, 0.3, -0.8],
    }, index=[10, 11, 12, 13, 14, 15])


@pytest.fixture(scope="session")
def simulate():
    """Return the cohort simulator for tests that need custom parameters."""
    return simulate_cohort

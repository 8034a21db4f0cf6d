import numpy as np
import pandas as pd
import pytest

from src.config import (
    CELL_AGE_GROUPS,
    CENSUS_AGE_ROW_OFFSETS,
    CENSUS_LINE_NUMBER_BASE,
    CENSUS_SEX_COLUMNS,
    METADATA_COLUMNS,
    PARTIES,
)
from src.models.party_model import INTERCEPT, MALE_TERM, PartyModel, age_term

BLOCK_ROWS = max(CENSUS_AGE_ROW_OFFSETS.values()) + 2


def make_census(district_counts):
    """
    Census profile frame with one block of rows per district.

    Args:
        district_counts: list of dicts mapping census age group -> (male, female)
            counts; missing groups get (100, 100).

    Returns:
        (census, line_numbers) where line_numbers[i] is the starting line of block i.
    """
    rows = []
    line_numbers = []
    for i, counts in enumerate(district_counts):
        line_numbers.append(CENSUS_LINE_NUMBER_BASE + i * BLOCK_ROWS)
        block = [{"characteristic": "filler", "male": 0.0, "female": 0.0} for _ in range(BLOCK_ROWS)]
        for bracket, offset in CENSUS_AGE_ROW_OFFSETS.items():
            male, female = counts.get(bracket, (100.0, 100.0))
            block[offset] = {"characteristic": bracket, "male": male, "female": female}
        rows.extend(block)
    census = pd.DataFrame(rows).rename(
        columns={"male": CENSUS_SEX_COLUMNS["Male"], "female": CENSUS_SEX_COLUMNS["Female"]}
    )
    return census, line_numbers


def make_metadata(codes, line_numbers, names=None):
    names = names or [f"Riding {code}" for code in codes]
    return pd.DataFrame({"geo_code": codes, "geo_name": names, "line_number": line_numbers})


def make_raw_metadata(codes, line_numbers):
    return pd.DataFrame(
        {
            METADATA_COLUMNS["geo_code"]: codes,
            METADATA_COLUMNS["geo_name"]: [f"Place {c}" for c in codes],
            METADATA_COLUMNS["line_number"]: line_numbers,
        }
    )


def make_model(party, intercept=0.0, random_intercepts=None, age_effects=None, male=0.0):
    """Party model with explicit coefficients; age groups default to a zero offset."""
    coefficients = {INTERCEPT: intercept, MALE_TERM: male}
    for group in CELL_AGE_GROUPS[1:]:
        coefficients[age_term(group)] = (age_effects or {}).get(group, 0.0)
    return PartyModel(
        party=party,
        coefficients=coefficients,
        std_errors={name: 0.1 for name in coefficients},
        random_intercepts=random_intercepts or {},
        random_intercept_sd=0.5,
    )


@pytest.fixture
def party_labels():
    return [party for party, _ in PARTIES]


@pytest.fixture
def two_district_census():
    census, lines = make_census([{}, {}])
    metadata = make_metadata(["35001", "35002"], lines)
    return census, metadata


@pytest.fixture
def raw_survey():
    rng = np.random.default_rng(42)
    n = 400
    return pd.DataFrame(
        {
            "cps19_votechoice": rng.choice([1, 2, 3, 4, 5, 6, np.nan], size=n),
            "cps19_age": rng.integers(18, 90, size=n),
            "cps19_gender": rng.choice([1, 2, 3], size=n),
            "riding_code": rng.choice([35001, 35002, 35003], size=n).astype(float),
        }
    )

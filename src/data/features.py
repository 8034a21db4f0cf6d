import logging
from typing import List, Optional, Sequence, Tuple

import numpy as np
import pandas as pd

from src.config import AGE_GROUPS, MALE_CODE, PARTIES

logger = logging.getLogger(__name__)


def party_column(party: str) -> str:
    """Indicator column name for a party label, e.g. 'NDP' -> 'vote_ndp'."""
    return f"vote_{party.lower()}"


def age_to_bracket(age) -> Optional[str]:
    """
    Bucket a numeric age into the survey age groups.

    18-19 is its own group, then 5-year bands from "20 to 24" up to
    "95 to 99", and "100 or more". Ages under 18 (or missing) have no group.
    """
    if age is None or pd.isna(age):
        return None
    age = int(np.floor(age))
    if age < 18:
        return None
    if age < 20:
        return "18 to 19"
    if age >= 100:
        return "100 or more"
    lower = 20 + 5 * ((age - 20) // 5)
    return f"{lower} to {lower + 4}"


def recode_sex(code) -> str:
    """Collapse the survey gender code to Male/Female."""
    return "Male" if code == MALE_CODE else "Female"


def derive_features(survey: pd.DataFrame, parties: Sequence[Tuple[str, int]] = PARTIES) -> pd.DataFrame:
    """
    Build the modelling frame from the cleaned survey.

    Args:
        survey: Output of loaders.prepare_survey (vote_choice, age, sex, district).
        parties: Ordered (label, vote-choice code) pairs.

    Returns:
        New DataFrame with age_group (ordered categorical), sex, district and one
        0/1 vote indicator per party.
    """
    derived = pd.DataFrame(index=survey.index)
    derived["age_group"] = pd.Categorical(
        survey["age"].map(age_to_bracket), categories=AGE_GROUPS, ordered=True
    )
    derived["sex"] = survey["sex"].map(recode_sex)
    derived["district"] = survey["district"].astype(str)

    for party, code in parties:
        derived[party_column(party)] = (survey["vote_choice"] == code).astype(int)

    no_group = derived["age_group"].isna().sum()
    if no_group:
        logger.warning(f"{no_group} respondents have no age group and were removed")
        derived = derived[derived["age_group"].notna()]

    tracked = derived[[party_column(party) for party, _ in parties]].sum(axis=1)
    logger.info(
        f"Derived features for {len(derived)} respondents "
        f"({int((tracked == 0).sum())} without a tracked-party vote)"
    )
    return derived.reset_index(drop=True)


def party_columns(parties: Sequence[Tuple[str, int]] = PARTIES) -> List[str]:
    return [party_column(party) for party, _ in parties]

import logging
import os
from typing import Dict, Iterable, List, Optional

import numpy as np
import pandas as pd

from src.config import (
    CENSUS_ENCODING,
    CENSUS_SEX_COLUMNS,
    DEFAULT_CENSUS_FILE,
    DEFAULT_METADATA_FILE,
    DEFAULT_SURVEY_FILE,
    EXCLUDED_GEO_CODES,
    METADATA_COLUMNS,
    SURVEY_COLUMNS,
)

logger = logging.getLogger(__name__)


class DataShapeError(ValueError):
    """Raised when an input table is missing columns or has an unusable layout."""


def _require_columns(df: pd.DataFrame, required: Iterable[str], source: str) -> None:
    missing = [col for col in required if col not in df.columns]
    if missing:
        raise DataShapeError(f"{source} is missing required columns: {missing}")


def normalize_code(value) -> Optional[str]:
    """Stringify a district/geo code, dropping the '.0' pandas adds to integer floats."""
    if value is None or pd.isna(value):
        return None
    if isinstance(value, (float, np.floating)) and float(value).is_integer():
        return str(int(value))
    text = str(value).strip()
    if text.endswith(".0") and text[:-2].isdigit():
        text = text[:-2]
    if text.isdigit():
        # Canada is listed as "01" in some geography files
        text = str(int(text))
    return text or None


def load_survey(path: str = DEFAULT_SURVEY_FILE, columns: Optional[Dict[str, str]] = None) -> pd.DataFrame:
    """
    Load the raw survey extract and keep the columns used by the model.

    Rows with a missing age, sex or district are dropped here so that feature
    derivation never sees a malformed respondent. A missing vote choice is kept:
    it simply means the respondent backs none of the tracked parties.

    Args:
        path: CSV (or parquet) file with one row per respondent.
        columns: Optional override of the logical -> raw column name mapping.

    Returns:
        DataFrame with columns vote_choice, age, sex, district.
    """
    columns = {**SURVEY_COLUMNS, **(columns or {})}
    if not os.path.exists(path):
        raise FileNotFoundError(f"Survey file not found: {path}")

    if path.endswith(".parquet"):
        raw = pd.read_parquet(path)
    else:
        raw = pd.read_csv(path, low_memory=False)
    logger.info(f"Loaded {len(raw)} survey rows from {path}")
    return prepare_survey(raw, columns)


def prepare_survey(raw: pd.DataFrame, columns: Optional[Dict[str, str]] = None) -> pd.DataFrame:
    """Select, rename and clean the survey columns of an already loaded frame."""
    columns = {**SURVEY_COLUMNS, **(columns or {})}
    _require_columns(raw, columns.values(), "Survey data")

    survey = raw[list(columns.values())].rename(columns={raw_name: name for name, raw_name in columns.items()})
    survey["age"] = pd.to_numeric(survey["age"], errors="coerce")
    survey["sex"] = pd.to_numeric(survey["sex"], errors="coerce")
    survey["vote_choice"] = pd.to_numeric(survey["vote_choice"], errors="coerce")
    survey["district"] = survey["district"].map(normalize_code)

    before = len(survey)
    survey = survey.dropna(subset=["age", "sex", "district"])
    survey = survey[survey["age"] >= 18].reset_index(drop=True)
    dropped = before - len(survey)
    if dropped:
        logger.warning(f"Dropped {dropped} survey rows with missing/invalid age, sex or district")
    return survey


def load_census(path: str = DEFAULT_CENSUS_FILE, sex_columns: Optional[Dict[str, str]] = None) -> pd.DataFrame:
    """
    Load the census profile extract.

    Row positions are preserved (no filtering, no re-sorting) because district
    blocks are addressed by row offset from the metadata starting line.
    """
    sex_columns = sex_columns or CENSUS_SEX_COLUMNS
    if not os.path.exists(path):
        raise FileNotFoundError(f"Census file not found: {path}")

    census = pd.read_csv(path, encoding=CENSUS_ENCODING, low_memory=False)
    _require_columns(census, sex_columns.values(), "Census data")
    logger.info(f"Loaded {len(census)} census rows from {path}")
    return census


def load_census_metadata(
    path: str = DEFAULT_METADATA_FILE,
    excluded_codes: Iterable[str] = EXCLUDED_GEO_CODES,
) -> pd.DataFrame:
    """Load the geo starting-row listing and keep only the riding rows."""
    if not os.path.exists(path):
        raise FileNotFoundError(f"Census metadata file not found: {path}")
    raw = pd.read_csv(path, encoding=CENSUS_ENCODING)
    return prepare_census_metadata(raw, excluded_codes)


def prepare_census_metadata(raw: pd.DataFrame, excluded_codes: Iterable[str] = EXCLUDED_GEO_CODES) -> pd.DataFrame:
    """
    Rename the metadata columns and remove the aggregate geography rows.

    Returns:
        DataFrame with columns geo_code (str), geo_name, line_number (int),
        one row per riding, in file order.
    """
    _require_columns(raw, METADATA_COLUMNS.values(), "Census metadata")
    metadata = raw[list(METADATA_COLUMNS.values())].rename(
        columns={raw_name: name for name, raw_name in METADATA_COLUMNS.items()}
    )
    metadata["geo_code"] = metadata["geo_code"].map(normalize_code)

    line_numbers = pd.to_numeric(metadata["line_number"], errors="coerce")
    bad = metadata.loc[line_numbers.isna(), "geo_code"].tolist()
    if bad:
        raise DataShapeError(f"Census metadata has non-numeric line numbers for geo codes: {bad}")
    metadata["line_number"] = line_numbers.astype(int)

    excluded = {normalize_code(code) for code in excluded_codes}
    is_excluded = metadata["geo_code"].isin(excluded)
    metadata = metadata[~is_excluded].reset_index(drop=True)
    logger.info(f"Census metadata: {len(metadata)} ridings ({int(is_excluded.sum())} aggregate rows excluded)")

    duplicated: List[str] = metadata.loc[metadata["geo_code"].duplicated(), "geo_code"].tolist()
    if duplicated:
        raise DataShapeError(f"Census metadata lists geo codes more than once: {duplicated}")
    return metadata

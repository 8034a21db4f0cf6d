import logging
from typing import Dict, Optional

import pandas as pd

from src.config import (
    CELL_AGE_GROUPS,
    CENSUS_AGE_ROW_OFFSETS,
    CENSUS_LINE_NUMBER_BASE,
    CENSUS_SEX_COLUMNS,
    SEXES,
    YOUNGEST_BRACKET_SHARE,
    YOUNGEST_CENSUS_BRACKET,
)
from src.data.loaders import DataShapeError

logger = logging.getLogger(__name__)


class CensusLayoutError(DataShapeError):
    """Raised when a district's census block cannot be read at its row offsets."""


def apportion_youngest(count: float, share: float = YOUNGEST_BRACKET_SHARE) -> float:
    """Estimate the 18-19 population from the census 15-19 count (fixed linear share)."""
    return share * count


def _read_count(census: pd.DataFrame, row: int, column: str, district: str, bracket: str) -> float:
    if row < 0 or row >= len(census):
        raise CensusLayoutError(
            f"District {district}: census row {row} for '{bracket}' is out of range (0-{len(census) - 1})"
        )
    value = pd.to_numeric(census.iloc[row][column], errors="coerce")
    if pd.isna(value):
        raise CensusLayoutError(
            f"District {district}: census row {row} column '{column}' ('{bracket}') is not a number"
        )
    if value < 0:
        raise CensusLayoutError(
            f"District {district}: census row {row} column '{column}' ('{bracket}') is negative ({value})"
        )
    return float(value)


def build_population_cells(
    census: pd.DataFrame,
    district: str,
    line_number: int,
    age_row_offsets: Optional[Dict[str, int]] = None,
    sex_columns: Optional[Dict[str, str]] = None,
    line_number_base: int = CENSUS_LINE_NUMBER_BASE,
) -> pd.DataFrame:
    """
    Reconstruct the age x sex population table of one district.

    The youngest cell ("18 to 19") is synthesized from the wider census
    "15 to 19" row; every other age group is read at its fixed offset from the
    district's starting row.

    Args:
        census: Census profile frame, rows in file order.
        district: Geographic code, used for the cells and error messages.
        line_number: The district's starting line from the metadata file.
        age_row_offsets: Census age group -> row offset from the starting row.
        sex_columns: Sex -> census count column.
        line_number_base: Line number of the first data row.

    Returns:
        DataFrame with columns district, age_group, sex, n (34 rows).
    """
    age_row_offsets = age_row_offsets or CENSUS_AGE_ROW_OFFSETS
    sex_columns = sex_columns or CENSUS_SEX_COLUMNS
    start_row = int(line_number) - line_number_base

    records = []
    for sex in SEXES:
        column = sex_columns[sex]
        for bracket in CELL_AGE_GROUPS:
            if bracket == CELL_AGE_GROUPS[0]:
                row = start_row + age_row_offsets[YOUNGEST_CENSUS_BRACKET]
                n = apportion_youngest(_read_count(census, row, column, district, YOUNGEST_CENSUS_BRACKET))
            else:
                row = start_row + age_row_offsets[bracket]
                n = _read_count(census, row, column, district, bracket)
            records.append({"district": district, "age_group": bracket, "sex": sex, "n": n})

    cells = pd.DataFrame.from_records(records)
    logger.debug(f"District {district}: {len(cells)} cells, population {cells['n'].sum():.0f}")
    return cells


def build_all_population_cells(census: pd.DataFrame, metadata: pd.DataFrame, **kwargs) -> pd.DataFrame:
    """Population cells for every riding listed in the metadata, concatenated."""
    frames = [
        build_population_cells(census, row.geo_code, row.line_number, **kwargs)
        for row in metadata.itertuples(index=False)
    ]
    if not frames:
        return pd.DataFrame(columns=["district", "age_group", "sex", "n"])
    return pd.concat(frames, ignore_index=True)

import pandas as pd
import pytest

from src.config import CELL_AGE_GROUPS, SEXES
from src.data.census import (
    CensusLayoutError,
    apportion_youngest,
    build_all_population_cells,
    build_population_cells,
)
from tests.conftest import make_census, make_metadata


class TestPopulationCells:
    """Reconstruction of the age x sex cells of a district."""

    def test_thirty_four_cells(self):
        census, lines = make_census([{}])
        cells = build_population_cells(census, "35001", lines[0])

        assert len(cells) == 34
        assert set(cells["sex"]) == set(SEXES)
        assert cells.groupby("sex")["age_group"].apply(list).to_dict() == {s: CELL_AGE_GROUPS for s in SEXES}
        assert (cells["district"] == "35001").all()

    def test_youngest_bracket_apportionment(self):
        """A census 15-19 count of 1000 gives exactly 400 people aged 18-19."""
        assert apportion_youngest(1000) == 400

        census, lines = make_census([{"15 to 19": (1000.0, 500.0)}])
        cells = build_population_cells(census, "35001", lines[0]).set_index(["age_group", "sex"])["n"]

        assert cells[("18 to 19", "Male")] == 400
        assert cells[("18 to 19", "Female")] == 200

    def test_counts_are_read_at_offsets(self):
        census, lines = make_census([{}, {"60 to 64": (321.0, 123.0), "95 to 99": (7.0, 9.0)}])
        cells = build_population_cells(census, "35002", lines[1]).set_index(["age_group", "sex"])["n"]

        assert cells[("60 to 64", "Male")] == 321
        assert cells[("60 to 64", "Female")] == 123
        assert cells[("95 to 99", "Male")] == 7
        assert cells[("95 to 99", "Female")] == 9
        assert cells[("20 to 24", "Male")] == 100

    def test_out_of_range_offset_fails_with_district(self):
        census, lines = make_census([{}])
        with pytest.raises(CensusLayoutError, match="District 35009.*out of range"):
            build_population_cells(census, "35009", lines[0] + 1000)

    def test_negative_start_row_fails(self):
        census, _ = make_census([{}])
        with pytest.raises(CensusLayoutError, match="out of range"):
            build_population_cells(census, "35009", -50)

    def test_non_numeric_count_fails(self):
        census, lines = make_census([{"30 to 34": ("x", 10.0)}])
        with pytest.raises(CensusLayoutError, match="not a number"):
            build_population_cells(census, "35001", lines[0])

    def test_negative_count_fails(self):
        census, lines = make_census([{"30 to 34": (-5.0, 10.0)}])
        with pytest.raises(CensusLayoutError, match="negative"):
            build_population_cells(census, "35001", lines[0])

    def test_all_districts(self):
        census, lines = make_census([{}, {}, {}])
        metadata = make_metadata(["1", "2", "3"], lines)
        cells = build_all_population_cells(census, metadata)
        assert len(cells) == 3 * 34
        assert cells.groupby("district").size().tolist() == [34, 34, 34]

    def test_no_districts(self):
        census, _ = make_census([{}])
        cells = build_all_population_cells(census, make_metadata([], []))
        assert cells.empty
        assert list(cells.columns) == ["district", "age_group", "sex", "n"]

import numpy as np
import pandas as pd
import pytest

from src.config import AGE_GROUPS
from src.data.features import age_to_bracket, derive_features, party_column, party_columns, recode_sex
from src.data.loaders import prepare_survey


class TestAgeBrackets:
    """Age bucketing into the survey age groups."""

    @pytest.mark.parametrize(
        "age,expected",
        [
            (18, "18 to 19"),
            (19, "18 to 19"),
            (20, "20 to 24"),
            (24, "20 to 24"),
            (25, "25 to 29"),
            (57, "55 to 59"),
            (99, "95 to 99"),
            (100, "100 or more"),
            (104, "100 or more"),
        ],
    )
    def test_bracket_boundaries(self, age, expected):
        assert age_to_bracket(age) == expected

    def test_underage_and_missing_have_no_bracket(self):
        assert age_to_bracket(17) is None
        assert age_to_bracket(np.nan) is None
        assert age_to_bracket(None) is None

    def test_eighteen_ordered_groups(self):
        assert len(AGE_GROUPS) == 18
        assert AGE_GROUPS[0] == "18 to 19"
        assert AGE_GROUPS[-2] == "95 to 99"
        assert AGE_GROUPS[-1] == "100 or more"


class TestDeriveFeatures:
    """Derived respondent frame."""

    def test_sex_collapses_to_two_values(self):
        assert recode_sex(1) == "Male"
        assert recode_sex(2) == "Female"
        assert recode_sex(3) == "Female"

    def test_vote_indicators(self):
        survey = pd.DataFrame(
            {
                "vote_choice": [1, 2, 3, 4, 5, 6, np.nan],
                "age": [30] * 7,
                "sex": [1] * 7,
                "district": ["10001"] * 7,
            }
        )
        derived = derive_features(survey)

        assert derived.loc[0, "vote_liberal"] == 1
        assert derived.loc[1, "vote_conservative"] == 1
        assert derived.loc[2, "vote_ndp"] == 1
        assert derived.loc[3, "vote_bloc"] == 1
        assert derived.loc[4, "vote_green"] == 1
        # Another party and no answer get zero on all tracked parties
        assert derived.loc[5, party_columns()].sum() == 0
        assert derived.loc[6, party_columns()].sum() == 0
        # Each respondent backs at most one tracked party
        assert (derived[party_columns()].sum(axis=1) <= 1).all()

    def test_district_is_string_without_float_suffix(self, raw_survey):
        derived = derive_features(prepare_survey(raw_survey))
        assert set(derived["district"]) <= {"35001", "35002", "35003"}

    def test_age_group_is_ordered_categorical(self, raw_survey):
        derived = derive_features(prepare_survey(raw_survey))
        assert derived["age_group"].cat.ordered
        assert list(derived["age_group"].cat.categories) == AGE_GROUPS

    def test_input_frame_is_not_modified(self, raw_survey):
        survey = prepare_survey(raw_survey)
        before = survey.copy()
        derive_features(survey)
        pd.testing.assert_frame_equal(survey, before)

    def test_party_column_names(self):
        assert party_column("Liberal") == "vote_liberal"
        assert party_column("NDP") == "vote_ndp"

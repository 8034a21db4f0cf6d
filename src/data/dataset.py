import logging
from typing import Dict, List, Optional, Sequence, Tuple

import pandas as pd

from src.config import (
    DEFAULT_CENSUS_FILE,
    DEFAULT_METADATA_FILE,
    DEFAULT_SURVEY_FILE,
    PARTIES,
)
from src.data.census import build_population_cells
from src.data.features import derive_features, party_columns
from src.data.loaders import (
    load_census,
    load_census_metadata,
    load_survey,
    prepare_census_metadata,
    prepare_survey,
)

logger = logging.getLogger(__name__)


class MRPDataset:
    """Class for loading and preparing the survey and census data for MRP

    Holds the derived respondent frame used to fit the party models, the
    census profile used to rebuild population cells, and the list of ridings
    with their census starting lines.
    """

    def __init__(
        self,
        survey: pd.DataFrame,
        census: pd.DataFrame,
        metadata: pd.DataFrame,
        parties: Sequence[Tuple[str, int]] = PARTIES,
        derived: bool = False,
    ):
        """
        Parameters
        ----------
        survey : pd.DataFrame
            Cleaned survey rows (see loaders.prepare_survey), or already derived
            features when ``derived`` is True.
        census : pd.DataFrame
            Census profile rows in file order.
        metadata : pd.DataFrame
            Riding listing (geo_code, geo_name, line_number).
        parties : sequence of (label, code)
            Tracked parties in tie-break order.
        """
        self.parties = list(parties)
        self.party_labels = [party for party, _ in self.parties]
        self.respondents = survey.copy() if derived else derive_features(survey, self.parties)
        self.census = census
        self.metadata = metadata.reset_index(drop=True)

        self.districts: List[str] = self.metadata["geo_code"].tolist()
        self.district_names: Dict[str, str] = dict(zip(self.metadata["geo_code"], self.metadata["geo_name"]))
        self.sampled_districts = sorted(self.respondents["district"].unique())

        unknown = sorted(set(self.sampled_districts) - set(self.districts))
        if unknown:
            logger.warning(f"{len(unknown)} survey districts are not in the census metadata: {unknown[:10]}")
        sampled = set(self.sampled_districts)
        unsampled = [d for d in self.districts if d not in sampled]
        logger.info(
            f"Dataset: {len(self.respondents)} respondents, {len(self.districts)} ridings "
            f"({len(unsampled)} without respondents)"
        )
        self.unsampled_districts = unsampled

    @classmethod
    def from_files(
        cls,
        survey_path: str = DEFAULT_SURVEY_FILE,
        census_path: str = DEFAULT_CENSUS_FILE,
        metadata_path: str = DEFAULT_METADATA_FILE,
        survey_columns: Optional[Dict[str, str]] = None,
        parties: Sequence[Tuple[str, int]] = PARTIES,
    ) -> "MRPDataset":
        return cls(
            survey=load_survey(survey_path, survey_columns),
            census=load_census(census_path),
            metadata=load_census_metadata(metadata_path),
            parties=parties,
        )

    @classmethod
    def from_frames(cls, raw_survey: pd.DataFrame, census: pd.DataFrame, raw_metadata: pd.DataFrame, **kwargs) -> "MRPDataset":
        """Build from raw in-memory tables (same cleaning as the file loaders)."""
        return cls(prepare_survey(raw_survey), census, prepare_census_metadata(raw_metadata), **kwargs)

    @property
    def vote_columns(self) -> List[str]:
        return party_columns(self.parties)

    def line_number(self, district: str) -> int:
        match = self.metadata.loc[self.metadata["geo_code"] == district, "line_number"]
        if match.empty:
            raise KeyError(f"District {district} is not in the census metadata")
        return int(match.iloc[0])

    def population_cells(self, district: str) -> pd.DataFrame:
        """The 34 age x sex population cells of one riding."""
        return build_population_cells(self.census, district, self.line_number(district))

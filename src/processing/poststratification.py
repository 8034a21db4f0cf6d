"""
Poststratification of the party models against census population cells.

For every riding the engine rebuilds the 34 age x sex cells from the census,
predicts each party's support in every cell, averages the predictions with
the cell populations as weights and awards the riding to the party with the
highest weighted support.
"""

import logging
from dataclasses import dataclass, field
from typing import Dict, List, Mapping, Optional, Tuple

import numpy as np
import pandas as pd

from src.config import DEFAULT_FALLBACK_POLICY, DEFAULT_TIE_POLICY
from src.data.census import CensusLayoutError, build_population_cells
from src.models.party_model import PartyModel
from src.processing.electoral_systems import FirstPastThePostSystem, TiedDistrictError

logger = logging.getLogger(__name__)

ON_ERROR_POLICIES = ("raise", "collect")


class PoststratificationError(ValueError):
    """Raised when a district's weighted support cannot be computed."""


@dataclass(frozen=True)
class DistrictResult:
    district: str
    winner: str
    probabilities: Dict[str, float]
    population: float
    fallback_parties: Tuple[str, ...] = ()
    tied_parties: Tuple[str, ...] = ()

    @property
    def used_fallback(self) -> bool:
        return bool(self.fallback_parties)

    @property
    def is_tie(self) -> bool:
        return bool(self.tied_parties)


@dataclass
class PoststratificationResult:
    parties: List[str]
    districts: List[DistrictResult] = field(default_factory=list)
    failures: Dict[str, str] = field(default_factory=dict)

    @property
    def seats(self) -> Dict[str, int]:
        tally = {party: 0 for party in self.parties}
        for result in self.districts:
            tally[result.winner] += 1
        return tally

    def winners(self) -> Dict[str, str]:
        return {result.district: result.winner for result in self.districts}

    def to_frame(self) -> pd.DataFrame:
        rows = []
        for result in self.districts:
            row = {
                'district': result.district,
                'winner': result.winner,
                'population': result.population,
                'used_fallback': result.used_fallback,
                'tie': result.is_tie,
            }
            row.update({f'p_{party}': result.probabilities[party] for party in self.parties})
            rows.append(row)
        columns = ['district', 'winner', 'population', 'used_fallback', 'tie'] + [f'p_{p}' for p in self.parties]
        return pd.DataFrame(rows, columns=columns)


def weighted_support(probabilities: np.ndarray, counts: np.ndarray) -> float:
    """Population-weighted mean probability: sum(p * n) / sum(n)."""
    total = counts.sum()
    if total <= 0:
        raise PoststratificationError("Population weights sum to zero")
    return float((probabilities * counts).sum() / total)


def poststratify_district(
    cells: pd.DataFrame,
    models: Mapping[str, PartyModel],
    district: str,
    fallback_policy: str = DEFAULT_FALLBACK_POLICY,
    electoral_system: Optional[FirstPastThePostSystem] = None,
) -> DistrictResult:
    """
    Weighted support of every party in one district and the predicted winner.

    Args:
        cells: Population cells of the district (age_group, sex, n).
        models: Party label -> fitted model, in tie-break precedence order.
        district: Geographic code of the district.
        fallback_policy: What to use for parties without an intercept for this district.
        electoral_system: Winner selection; defaults to first-past-the-post with precedence ties.

    Returns:
        DistrictResult
    """
    electoral_system = electoral_system or FirstPastThePostSystem()
    counts = cells['n'].to_numpy(dtype=float)
    if np.isnan(counts).any() or (counts < 0).any():
        raise PoststratificationError(f"District {district}: population cells must be non-negative numbers")
    if counts.sum() <= 0:
        raise PoststratificationError(f"District {district}: all population cells are empty")

    age_groups = cells['age_group'].to_numpy()
    is_male = (cells['sex'] == 'Male').to_numpy().astype(float)

    probabilities = {}
    fallback_parties = []
    for party, model in models.items():
        try:
            cell_probs, used_fallback = model.predict_proba(age_groups, is_male, district, fallback_policy)
        except KeyError as e:
            raise PoststratificationError(f"District {district}: {e.args[0] if e.args else e}") from e
        if np.isnan(cell_probs).any():
            raise PoststratificationError(f"District {district}: {party} model produced NaN probabilities")
        probabilities[party] = weighted_support(cell_probs, counts)
        if used_fallback:
            fallback_parties.append(party)

    if fallback_parties:
        logger.info(f"District {district} has no respondents; fallback '{fallback_policy}' used for {fallback_parties}")

    try:
        winner = electoral_system.select_winner(probabilities)
    except TiedDistrictError as e:
        raise PoststratificationError(f"District {district}: {e}") from e

    return DistrictResult(
        district=district,
        winner=winner,
        probabilities=probabilities,
        population=float(counts.sum()),
        fallback_parties=tuple(fallback_parties),
        tied_parties=tuple(electoral_system.last_tied),
    )


def run_poststratification(
    census: pd.DataFrame,
    metadata: pd.DataFrame,
    models: Mapping[str, PartyModel],
    fallback_policy: str = DEFAULT_FALLBACK_POLICY,
    tie_policy: str = DEFAULT_TIE_POLICY,
    on_error: str = "raise",
    **cell_kwargs,
) -> PoststratificationResult:
    """
    Poststratify every riding in the metadata.

    Districts are independent of each other, so the order of processing does
    not affect the result. With on_error="raise" the first failing district
    aborts the run; with on_error="collect" failures are recorded on the
    result and the remaining districts are still processed.
    """
    if on_error not in ON_ERROR_POLICIES:
        raise ValueError(f"Unknown on_error policy: {on_error}")
    if not models:
        raise ValueError("At least one party model is required")

    electoral_system = FirstPastThePostSystem(tie_policy=tie_policy)
    result = PoststratificationResult(parties=list(models))

    for row in metadata.itertuples(index=False):
        district = row.geo_code
        try:
            cells = build_population_cells(census, district, row.line_number, **cell_kwargs)
            district_result = poststratify_district(
                cells, models, district, fallback_policy=fallback_policy, electoral_system=electoral_system
            )
        except (CensusLayoutError, PoststratificationError) as e:
            if on_error == "raise":
                raise
            logger.error(f"Skipping district {district}: {e}")
            result.failures[district] = str(e)
            continue
        result.districts.append(district_result)

    fallbacks = sum(1 for r in result.districts if r.used_fallback)
    logger.info(
        f"Poststratified {len(result.districts)} districts "
        f"({fallbacks} with unsampled-district fallback, {len(result.failures)} failed)"
    )
    return result

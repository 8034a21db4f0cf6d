import json
import logging
import os
from typing import Dict, Mapping, Optional

import numpy as np
import pandas as pd
import xarray as xr

from src.evaluation.diagnostics import coefficient_table, model_diagnostics
from src.models.party_model import PartyModel
from src.processing.poststratification import PoststratificationResult

logger = logging.getLogger(__name__)


def seat_totals(result: PoststratificationResult) -> Dict[str, int]:
    """National seats per party; every tracked party is present, even with zero seats."""
    return result.seats


def district_shares_array(result: PoststratificationResult) -> xr.DataArray:
    """Weighted support as a (district, party) DataArray."""
    values = np.array(
        [[r.probabilities[party] for party in result.parties] for r in result.districts],
        dtype=float,
    ).reshape(len(result.districts), len(result.parties))
    return xr.DataArray(
        values,
        dims=("district", "party"),
        coords={"district": [r.district for r in result.districts], "party": result.parties},
        name="weighted_support",
    )


def build_district_table(result: PoststratificationResult, metadata: Optional[pd.DataFrame] = None) -> pd.DataFrame:
    """
    Per-district winners and support, keyed by geographic code for choropleth joins.

    Args:
        result: Poststratification output.
        metadata: Optional riding listing; adds the riding names.

    Returns:
        DataFrame with geo_code, [geo_name], winner, margin, population, flags
        and one p_<party> column per party.
    """
    table = result.to_frame().rename(columns={"district": "geo_code"})
    if table.empty:
        return table
    probs = table[[f"p_{party}" for party in result.parties]].to_numpy()
    ordered = np.sort(probs, axis=1)
    table.insert(2, "margin", ordered[:, -1] - ordered[:, -2] if probs.shape[1] > 1 else ordered[:, -1])
    if metadata is not None:
        names = metadata[["geo_code", "geo_name"]]
        table = table.merge(names, on="geo_code", how="left")
        table.insert(1, "geo_name", table.pop("geo_name"))
    return table


def generate_district_forecast_json(
    shares: xr.DataArray,
    winners: Mapping[str, str],
    output_dir: str,
    district_names: Optional[Mapping[str, str]] = None,
) -> str:
    """
    Writes district_forecast.json: one entry per district with its winner and
    the weighted support of every party.

    Returns:
        Path of the written file.
    """
    district_names = district_names or {}
    forecast_data = []
    for district in shares["district"].values.tolist():
        support = shares.sel(district=district)
        forecast_data.append(
            {
                "district_code": district,
                "district_name": district_names.get(district, district),
                "winning_party": winners[district],
                "support": {party: float(support.sel(party=party)) for party in shares["party"].values.tolist()},
            }
        )
    output_path = os.path.join(output_dir, "district_forecast.json")
    with open(output_path, "w") as f:
        json.dump(forecast_data, f, indent=2)
    logger.info(f"District forecast JSON saved to {output_path}")
    return output_path


def write_outputs(
    result: PoststratificationResult,
    models: Mapping[str, PartyModel],
    output_dir: str,
    metadata: Optional[pd.DataFrame] = None,
) -> Dict[str, str]:
    """Save seat totals, the district table, the forecast JSON and the model diagnostics."""
    os.makedirs(output_dir, exist_ok=True)
    paths = {}

    paths["seat_totals"] = os.path.join(output_dir, "seat_totals.json")
    with open(paths["seat_totals"], "w") as f:
        json.dump(
            {"seats": seat_totals(result), "districts": len(result.districts), "failures": result.failures},
            f,
            indent=2,
        )

    paths["district_results"] = os.path.join(output_dir, "district_results.csv")
    build_district_table(result, metadata).to_csv(paths["district_results"], index=False)

    names = None if metadata is None else dict(zip(metadata["geo_code"], metadata["geo_name"]))
    paths["district_forecast"] = generate_district_forecast_json(
        district_shares_array(result), result.winners(), output_dir, names
    )

    if models:
        paths["model_summary"] = os.path.join(output_dir, "model_summary.csv")
        pd.concat([coefficient_table(model) for model in models.values()]).to_csv(paths["model_summary"])
        paths["model_diagnostics"] = os.path.join(output_dir, "model_diagnostics.json")
        with open(paths["model_diagnostics"], "w") as f:
            json.dump([model_diagnostics(model) for model in models.values()], f, indent=2)

    logger.info(f"Wrote {len(paths)} output files to {output_dir}")
    return paths


def print_report(result: PoststratificationResult, models: Optional[Mapping[str, PartyModel]] = None) -> None:
    """Console summary: model diagnostics and national seat totals."""
    if models:
        for party, model in models.items():
            diag = model_diagnostics(model)
            print(f"\n=== {party} model ===")
            print(
                f"n={diag['n_obs']}, districts={diag['n_sampled_districts']}, "
                f"district SD={diag['random_intercept_sd']:.3f}, converged={diag['converged']}"
            )
            if diag["r2_marginal"] is not None:
                print(f"R2 (fixed effects)={diag['r2_marginal']:.3f}, R2 (fixed+random)={diag['r2_conditional']:.3f}")
            print(coefficient_table(model).drop(columns="party").round(4).to_string())

    print("\n=== Seat totals ===")
    seats = seat_totals(result)
    for party, count in seats.items():
        print(f"{party:<14}{count:>4}")
    print(f"{'Total':<14}{sum(seats.values()):>4}")
    fallbacks = sum(1 for r in result.districts if r.used_fallback)
    ties = sum(1 for r in result.districts if r.is_tie)
    print(f"Districts: {len(result.districts)} ({fallbacks} unsampled, {ties} ties, {len(result.failures)} failed)")

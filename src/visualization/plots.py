import logging
import os
from typing import Mapping, Optional

import matplotlib.patches as mpatches
import matplotlib.pyplot as plt
import pandas as pd
import seaborn as sns

from src.evaluation.diagnostics import coefficient_table
from src.models.party_model import INTERCEPT, PartyModel

logger = logging.getLogger(__name__)

# --- Define Standard Party Colors ---
PARTY_COLORS = {
    'Liberal': '#D71920',       # Red
    'Conservative': '#1A4782',  # Blue
    'Bloc': '#33B2CC',          # Light Blue
    'NDP': '#F37021',           # Orange
    'Green': '#3D9B35',         # Green
    'other': '#D3D3D3'          # Light Grey
}


def _get_party_color(party_name):
    """Helper function to get party color, defaulting to grey."""
    return PARTY_COLORS.get(party_name, '#808080')


def _save(fig, output_dir: str, filename: str) -> str:
    os.makedirs(output_dir, exist_ok=True)
    path = os.path.join(output_dir, filename)
    fig.savefig(path, dpi=150, bbox_inches='tight')
    plt.close(fig)
    logger.info(f"Saved plot to {path}")
    return path


def plot_seat_totals(seats: Mapping[str, int], output_dir: str) -> str:
    """Bar chart of national seat totals per party."""
    parties = list(seats)
    fig, ax = plt.subplots(figsize=(8, 5))
    bars = ax.bar(parties, [seats[p] for p in parties], color=[_get_party_color(p) for p in parties])
    for bar, party in zip(bars, parties):
        ax.annotate(
            str(seats[party]),
            (bar.get_x() + bar.get_width() / 2, bar.get_height()),
            ha='center', va='bottom', fontsize=10,
        )
    total = sum(seats.values())
    majority = total // 2 + 1
    ax.axhline(majority, color='black', linestyle='--', linewidth=1, label=f'Majority ({majority})')
    ax.set_ylabel('Seats')
    ax.set_title(f'Estimated seats, full turnout ({total} ridings)')
    ax.legend(frameon=False)
    sns.despine(ax=ax)
    return _save(fig, output_dir, 'seat_totals.png')


def plot_district_support_heatmap(district_table: pd.DataFrame, output_dir: str, max_districts: int = 60) -> str:
    """
    Heatmap of weighted support per party for the most competitive districts.

    Args:
        district_table: Output of report_outputs.build_district_table.
        output_dir: Directory for the PNG.
        max_districts: Number of districts (lowest margin first) to show.
    """
    prob_cols = [c for c in district_table.columns if c.startswith('p_')]
    subset = district_table.sort_values('margin').head(max_districts)
    labels = subset['geo_name'] if 'geo_name' in subset.columns else subset['geo_code']
    matrix = subset[prob_cols].rename(columns=lambda c: c[2:])
    matrix.index = labels

    fig, ax = plt.subplots(figsize=(8, max(4, 0.25 * len(matrix))))
    sns.heatmap(matrix, cmap='viridis', vmin=0, ax=ax, cbar_kws={'label': 'Weighted support'})
    ax.set_title('Weighted support in the closest districts')
    ax.set_ylabel('')
    return _save(fig, output_dir, 'district_support_heatmap.png')


def plot_fixed_effects(models: Mapping[str, PartyModel], output_dir: str) -> str:
    """Forest plot of the age and sex coefficients (±1.96 SE) for every party model."""
    table = pd.concat([coefficient_table(model) for model in models.values()]).reset_index()
    table = table[table['term'] != INTERCEPT]
    table['lower'] = table['estimate'] - 1.96 * table['std_error']
    table['upper'] = table['estimate'] + 1.96 * table['std_error']
    terms = list(dict.fromkeys(table['term']))

    fig, axes = plt.subplots(1, len(models), figsize=(3.2 * len(models), 0.35 * len(terms) + 2), sharey=True)
    if len(models) == 1:
        axes = [axes]
    for ax, party in zip(axes, models):
        party_table = table[table['party'] == party].set_index('term').reindex(terms)
        y = range(len(terms))
        ax.errorbar(
            party_table['estimate'], y,
            xerr=[party_table['estimate'] - party_table['lower'], party_table['upper'] - party_table['estimate']],
            fmt='o', color=_get_party_color(party), ecolor='grey', capsize=2,
        )
        ax.axvline(0, color='black', linewidth=0.8)
        ax.set_title(party)
        ax.set_xlabel('Log-odds')
    axes[0].set_yticks(list(range(len(terms))))
    axes[0].set_yticklabels([t.replace('age_group[T.', '').replace('sex[T.', '').rstrip(']') for t in terms])
    fig.suptitle('Fixed effects relative to 18-19 year old women')
    fig.tight_layout()
    return _save(fig, output_dir, 'fixed_effects.png')


def plot_survey_composition(respondents: pd.DataFrame, output_dir: str) -> str:
    """Respondent counts by age group and sex."""
    counts = respondents.groupby(['age_group', 'sex'], observed=False).size().rename('respondents').reset_index()
    fig, ax = plt.subplots(figsize=(10, 5))
    sns.barplot(data=counts, x='age_group', y='respondents', hue='sex', ax=ax)
    ax.set_xlabel('Age group')
    ax.set_ylabel('Respondents')
    ax.tick_params(axis='x', rotation=60)
    ax.set_title('Survey composition')
    sns.despine(ax=ax)
    return _save(fig, output_dir, 'survey_composition.png')


def plot_winner_map(
    district_table: pd.DataFrame,
    boundaries_path: str,
    output_dir: str,
    boundary_code_column: str = 'FEDUID',
) -> Optional[str]:
    """
    Choropleth of the predicted winner in every riding.

    Args:
        district_table: Output of report_outputs.build_district_table (geo_code, winner).
        boundaries_path: Any file geopandas can read (shapefile, GeoJSON, ...).
        output_dir: Directory for the PNG.
        boundary_code_column: Column of the boundary file holding the riding code.
    """
    import geopandas as gpd

    boundaries = gpd.read_file(boundaries_path)
    if boundary_code_column not in boundaries.columns:
        logger.error(f"Boundary file has no '{boundary_code_column}' column; skipping winner map")
        return None
    boundaries['geo_code'] = boundaries[boundary_code_column].astype(str)
    merged = boundaries.merge(district_table[['geo_code', 'winner']], on='geo_code', how='left')
    unmatched = int(merged['winner'].isna().sum())
    if unmatched:
        logger.warning(f"{unmatched} boundary polygons have no predicted winner")
    merged['color'] = merged['winner'].map(_get_party_color).fillna(PARTY_COLORS['other'])

    fig, ax = plt.subplots(figsize=(12, 10))
    merged.plot(ax=ax, color=merged['color'], edgecolor='white', linewidth=0.2)
    ax.set_axis_off()
    handles = [
        mpatches.Patch(color=_get_party_color(party), label=party)
        for party in district_table['winner'].unique()
    ]
    ax.legend(handles=handles, loc='lower left', frameon=False)
    ax.set_title('Predicted winner by riding')
    return _save(fig, output_dir, 'winner_map.png')

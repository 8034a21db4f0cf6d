# src/evaluation/diagnostics.py

import numpy as np
import pandas as pd
from scipy import stats
from typing import Dict, Sequence, Tuple

from src.config import PARTIES
from src.data.features import party_column
from src.models.party_model import PartyModel

# Residual variance of the logistic distribution on the latent scale
LOGISTIC_RESIDUAL_VARIANCE = np.pi ** 2 / 3


def nakagawa_r2(var_fixed: float, var_random: float) -> Tuple[float, float]:
    """
    Marginal and conditional R² for a logistic mixed model.

    Follows Nakagawa & Schielzeth (2013): the marginal R² is the share of latent
    variance explained by the fixed effects, the conditional R² the share
    explained by fixed and random effects together.

    Args:
        var_fixed: Variance of the fixed-effects linear predictor across observations.
        var_random: Variance of the random intercepts (sigma² of the district effect).

    Returns:
        (marginal, conditional)
    """
    total = var_fixed + var_random + LOGISTIC_RESIDUAL_VARIANCE
    return var_fixed / total, (var_fixed + var_random) / total


def coefficient_table(model: PartyModel) -> pd.DataFrame:
    """
    Fixed-effect estimates with standard errors, z statistics and p-values.

    The p-values use the normal approximation of the Laplace posterior.
    """
    names = list(model.coefficients)
    estimates = np.array([model.coefficients[name] for name in names], dtype=float)
    std_errors = np.array([model.std_errors.get(name, np.nan) for name in names], dtype=float)
    with np.errstate(divide='ignore', invalid='ignore'):
        z_values = estimates / std_errors
    p_values = 2 * stats.norm.sf(np.abs(z_values))
    table = pd.DataFrame(
        {
            'estimate': estimates,
            'std_error': std_errors,
            'z_value': z_values,
            'p_value': p_values,
        },
        index=pd.Index(names, name='term'),
    )
    table.insert(0, 'party', model.party)
    return table


def model_diagnostics(model: PartyModel) -> Dict:
    """Scalar diagnostics of one fitted model, JSON friendly."""
    return {
        'party': model.party,
        'n_obs': int(model.n_obs),
        'n_sampled_districts': len(model.random_intercepts),
        'random_intercept_sd': float(model.random_intercept_sd),
        'converged': bool(model.converged),
        'fit_warnings': list(model.fit_warnings),
        'r2_marginal': None if model.r2_marginal is None else float(model.r2_marginal),
        'r2_conditional': None if model.r2_conditional is None else float(model.r2_conditional),
    }


def describe_survey(derived: pd.DataFrame, parties: Sequence[Tuple[str, int]] = PARTIES) -> Dict[str, pd.DataFrame]:
    """Descriptive statistics of the modelling frame: composition, support, district coverage."""
    age_counts = derived['age_group'].value_counts(sort=False).rename('respondents').to_frame()
    sex_counts = derived['sex'].value_counts().rename('respondents').to_frame()

    support = pd.DataFrame(
        {
            'respondents': [int(derived[party_column(p)].sum()) for p, _ in parties],
            'share': [float(derived[party_column(p)].mean()) if len(derived) else np.nan for p, _ in parties],
        },
        index=pd.Index([p for p, _ in parties], name='party'),
    )

    per_district = derived.groupby('district').size()
    coverage = pd.DataFrame(
        {
            'districts_sampled': [int(per_district.size)],
            'median_respondents': [float(per_district.median()) if per_district.size else 0.0],
            'min_respondents': [int(per_district.min()) if per_district.size else 0],
            'max_respondents': [int(per_district.max()) if per_district.size else 0],
        }
    )
    return {
        'age_groups': age_counts,
        'sex': sex_counts,
        'party_support': support,
        'district_coverage': coverage,
    }

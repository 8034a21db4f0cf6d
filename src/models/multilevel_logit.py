"""
Multilevel logistic regression per party.

Each party is modelled as a separate binary outcome (voted for the party or
not) with fixed effects for age group and sex and a random intercept per
district. Fitting uses the Laplace approximation of statsmodels'
BinomialBayesMixedGLM (posterior mode plus curvature), which is much faster
than adaptive quadrature and accurate enough for random intercepts on
tens of thousands of respondents.
"""

import logging
import warnings
from typing import Dict, List, Optional, Sequence, Tuple

import numpy as np
import pandas as pd
from scipy import sparse
from statsmodels.genmod.bayes_mixed_glm import BinomialBayesMixedGLM

from src.config import (
    CELL_AGE_GROUPS,
    DEFAULT_FE_PRIOR_SD,
    DEFAULT_OPTIMIZER,
    DEFAULT_VCP_PRIOR_SD,
    PARTIES,
    REFERENCE_AGE_GROUP,
)
from src.data.features import party_column
from src.evaluation.diagnostics import nakagawa_r2
from src.models.party_model import INTERCEPT, MALE_TERM, PartyModel, age_term

logger = logging.getLogger(__name__)


def modelling_frame(derived: pd.DataFrame) -> pd.DataFrame:
    """Respondents whose age group has a poststratification cell."""
    in_cells = derived["age_group"].isin(CELL_AGE_GROUPS)
    excluded = int((~in_cells).sum())
    if excluded:
        logger.info(f"Excluding {excluded} respondents outside the poststratification age groups")
    return derived[in_cells].reset_index(drop=True)


def build_fixed_design(data: pd.DataFrame) -> pd.DataFrame:
    """
    Fixed-effects design matrix: intercept, age-group indicators (treatment
    coding against the youngest group) and a male indicator.

    Every cell age group keeps its column. An age group without respondents
    gets an all-zero column whose coefficient stays at the prior mode (0).
    """
    design = pd.DataFrame({INTERCEPT: np.ones(len(data))}, index=data.index)
    age_groups = data["age_group"].astype(str)
    for group in CELL_AGE_GROUPS:
        if group == REFERENCE_AGE_GROUP:
            continue
        indicator = (age_groups == group).astype(float)
        if indicator.sum() == 0:
            logger.warning(f"No respondents in age group '{group}'; its offset is held at the prior mode")
        design[age_term(group)] = indicator
    design[MALE_TERM] = (data["sex"] == "Male").astype(float)
    return design


def build_district_design(data: pd.DataFrame) -> Tuple[sparse.csr_matrix, List[str]]:
    """Sparse one-hot matrix of district membership and the district order of its columns."""
    codes, districts = pd.factorize(data["district"].astype(str), sort=True)
    n = len(data)
    matrix = sparse.csr_matrix(
        (np.ones(n), (np.arange(n), codes)), shape=(n, len(districts))
    )
    return matrix, [str(d) for d in districts]


def fit_party_model(
    data: pd.DataFrame,
    party: str,
    optimizer: str = DEFAULT_OPTIMIZER,
    fe_prior_sd: float = DEFAULT_FE_PRIOR_SD,
    vcp_prior_sd: float = DEFAULT_VCP_PRIOR_SD,
    design: Optional[pd.DataFrame] = None,
    minim_opts: Optional[Dict] = None,
) -> PartyModel:
    """
    Fit vote_<party> ~ age_group + sex + (1 | district).

    Args:
        data: Modelling frame (see modelling_frame) with the party's indicator.
        party: Party label.
        optimizer: scipy.optimize method used for the posterior mode.
        fe_prior_sd: Prior SD of the fixed effects.
        vcp_prior_sd: Prior SD of the log random-intercept SD.
        design: Precomputed fixed-effects design (shared across parties).
        minim_opts: Options passed to the optimizer (e.g. maxiter).

    Returns:
        PartyModel. Non-convergence does not raise; it is recorded on the model.
    """
    column = party_column(party)
    if column not in data.columns:
        raise ValueError(f"Modelling frame has no indicator column '{column}' for {party}")

    design = build_fixed_design(data) if design is None else design
    exog_vc, districts = build_district_design(data)
    endog = data[column].to_numpy(dtype=float)

    model = BinomialBayesMixedGLM(
        endog,
        design.to_numpy(),
        exog_vc,
        np.zeros(len(districts), dtype=int),
        vcp_p=vcp_prior_sd,
        fe_p=fe_prior_sd,
        fep_names=list(design.columns),
        vcp_names=["district"],
        vc_names=districts,
    )

    with warnings.catch_warnings(record=True) as caught:
        warnings.simplefilter("always")
        result = model.fit_map(method=optimizer, minim_opts=minim_opts)

    fit_warnings = [str(w.message) for w in caught if "converge" in str(w.message).lower()]
    for w in caught:
        if str(w.message) not in fit_warnings:
            logger.debug(f"{party} fit warning: {w.message}")
    optim = getattr(result, "optim_retvals", None)
    converged = not fit_warnings and (optim is None or bool(getattr(optim, "success", True)))
    if not converged:
        if not fit_warnings:
            fit_warnings.append(f"Optimizer reported failure: {getattr(optim, 'message', 'unknown')}")
        for message in fit_warnings:
            logger.warning(f"{party} model did not converge: {message}")

    fe_mean = np.asarray(result.fe_mean, dtype=float)
    fe_sd = np.asarray(result.fe_sd, dtype=float)
    random_sd = float(np.exp(np.asarray(result.vcp_mean, dtype=float)[0]))

    var_fixed = float(np.var(design.to_numpy() @ fe_mean))
    r2_marginal, r2_conditional = nakagawa_r2(var_fixed, random_sd ** 2)

    party_model = PartyModel(
        party=party,
        coefficients=dict(zip(design.columns, fe_mean.tolist())),
        std_errors=dict(zip(design.columns, fe_sd.tolist())),
        random_intercepts=dict(zip(districts, np.asarray(result.vc_mean, dtype=float).tolist())),
        random_intercept_se=dict(zip(districts, np.asarray(result.vc_sd, dtype=float).tolist())),
        random_intercept_sd=random_sd,
        n_obs=len(data),
        converged=converged,
        fit_warnings=tuple(fit_warnings),
        r2_marginal=r2_marginal,
        r2_conditional=r2_conditional,
    )
    logger.info(
        f"Fitted {party} model on {len(data)} respondents in {len(districts)} districts "
        f"(district SD={random_sd:.3f}, R2m={r2_marginal:.3f}, R2c={r2_conditional:.3f})"
    )
    return party_model


def fit_party_models(
    derived: pd.DataFrame,
    parties: Sequence[Tuple[str, int]] = PARTIES,
    **fit_kwargs,
) -> Dict[str, PartyModel]:
    """Fit one model per tracked party, in party order, sharing a single design matrix."""
    data = modelling_frame(derived)
    if data.empty:
        raise ValueError("No respondents left to fit the party models")
    design = build_fixed_design(data)

    models = {}
    for party, _ in parties:
        models[party] = fit_party_model(data, party, design=design, **fit_kwargs)

    failed = [party for party, model in models.items() if not model.converged]
    if failed:
        logger.warning(f"Models with convergence warnings: {failed}")
    return models

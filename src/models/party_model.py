import json
import logging
from dataclasses import dataclass, field
from functools import lru_cache
from types import MappingProxyType
from typing import Dict, List, Mapping, Optional, Tuple

import numpy as np
from scipy.special import expit

from src.config import REFERENCE_AGE_GROUP

logger = logging.getLogger(__name__)

INTERCEPT = "Intercept"
MALE_TERM = "sex[T.Male]"
FALLBACK_POLICIES = ("population", "sample_mean", "refuse")


def age_term(age_group: str) -> str:
    """Fixed-effect name of an age-group indicator (treatment coding)."""
    return f"age_group[T.{age_group}]"


@lru_cache(maxsize=None)
def _warn_missing_age_term(party: str, age_group: str) -> None:
    # Once per party and age group, not once per district
    logger.warning(f"{party} model has no coefficient for age group '{age_group}'; using a zero offset")


class MissingInterceptError(KeyError):
    """Raised when a district has no fitted intercept and the policy refuses a fallback."""


@dataclass(frozen=True)
class PartyModel:
    """
    Fitted multilevel logistic regression for one party.

    Coefficients are on the log-odds scale: an intercept, one offset per
    non-reference age group, one offset for male respondents, and one random
    intercept per sampled district. Instances are read-only once built.
    """

    party: str
    coefficients: Mapping[str, float]
    std_errors: Mapping[str, float]
    random_intercepts: Mapping[str, float]
    random_intercept_sd: float
    random_intercept_se: Mapping[str, float] = field(default_factory=dict)
    n_obs: int = 0
    converged: bool = True
    fit_warnings: Tuple[str, ...] = ()
    r2_marginal: Optional[float] = None
    r2_conditional: Optional[float] = None

    def __post_init__(self):
        for name in ("coefficients", "std_errors", "random_intercepts", "random_intercept_se"):
            object.__setattr__(self, name, MappingProxyType(dict(getattr(self, name))))
        object.__setattr__(self, "fit_warnings", tuple(self.fit_warnings))
        if INTERCEPT not in self.coefficients:
            raise ValueError(f"{self.party} model has no '{INTERCEPT}' coefficient")

    @property
    def sampled_districts(self) -> List[str]:
        return list(self.random_intercepts)

    def age_offset(self, age_group: str) -> float:
        if age_group == REFERENCE_AGE_GROUP:
            return 0.0
        term = age_term(age_group)
        if term not in self.coefficients:
            _warn_missing_age_term(self.party, age_group)
            return 0.0
        return self.coefficients[term]

    def district_offset(self, district: str, policy: str = "population") -> Tuple[float, bool]:
        """
        Random intercept of a district and whether a fallback was used.

        Districts without respondents get a zero offset under "population" (the
        population-level intercept), the mean fitted intercept under
        "sample_mean", and raise MissingInterceptError under "refuse".
        """
        if policy not in FALLBACK_POLICIES:
            raise ValueError(f"Unknown fallback policy: {policy}")
        if district in self.random_intercepts:
            return self.random_intercepts[district], False
        if policy == "population":
            return 0.0, True
        if policy == "sample_mean" and self.random_intercepts:
            return float(np.mean(list(self.random_intercepts.values()))), True
        raise MissingInterceptError(
            f"{self.party} model has no intercept for district {district} (fallback policy '{policy}')"
        )

    def linear_predictor(
        self,
        age_groups: np.ndarray,
        is_male: np.ndarray,
        district: str,
        policy: str = "population",
    ) -> Tuple[np.ndarray, bool]:
        """Log-odds for each (age group, sex) cell of one district."""
        offset, used_fallback = self.district_offset(district, policy)
        age_part = np.array([self.age_offset(group) for group in age_groups], dtype=float)
        log_odds = (
            self.coefficients[INTERCEPT]
            + age_part
            + np.asarray(is_male, dtype=float) * self.coefficients.get(MALE_TERM, 0.0)
            + offset
        )
        return log_odds, used_fallback

    def predict_proba(self, age_groups, is_male, district: str, policy: str = "population") -> Tuple[np.ndarray, bool]:
        log_odds, used_fallback = self.linear_predictor(age_groups, is_male, district, policy)
        # expit(x) == exp(x) / (1 + exp(x)) without overflow
        return expit(log_odds), used_fallback

    def to_dict(self) -> Dict:
        return {
            "party": self.party,
            "coefficients": dict(self.coefficients),
            "std_errors": dict(self.std_errors),
            "random_intercepts": dict(self.random_intercepts),
            "random_intercept_se": dict(self.random_intercept_se),
            "random_intercept_sd": self.random_intercept_sd,
            "n_obs": self.n_obs,
            "converged": self.converged,
            "fit_warnings": list(self.fit_warnings),
            "r2_marginal": self.r2_marginal,
            "r2_conditional": self.r2_conditional,
        }

    @classmethod
    def from_dict(cls, data: Dict) -> "PartyModel":
        return cls(
            party=data["party"],
            coefficients=data["coefficients"],
            std_errors=data.get("std_errors", {}),
            random_intercepts={str(k): v for k, v in data.get("random_intercepts", {}).items()},
            random_intercept_sd=data.get("random_intercept_sd", 0.0),
            random_intercept_se={str(k): v for k, v in data.get("random_intercept_se", {}).items()},
            n_obs=data.get("n_obs", 0),
            converged=data.get("converged", True),
            fit_warnings=tuple(data.get("fit_warnings", ())),
            r2_marginal=data.get("r2_marginal"),
            r2_conditional=data.get("r2_conditional"),
        )


def save_models(models: Mapping[str, PartyModel], path: str) -> None:
    """Write fitted models to a JSON file, preserving party order."""
    with open(path, "w") as f:
        json.dump([model.to_dict() for model in models.values()], f, indent=2)


def load_models(path: str) -> Dict[str, PartyModel]:
    """Read models written by save_models, keyed by party in file order."""
    with open(path) as f:
        data = json.load(f)
    return {entry["party"]: PartyModel.from_dict(entry) for entry in data}

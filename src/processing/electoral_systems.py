import logging
from typing import Dict, List, Sequence

import numpy as np

from src.config import DEFAULT_TIE_POLICY

logger = logging.getLogger(__name__)

TIE_POLICIES = ("precedence", "raise")


class TiedDistrictError(ValueError):
    """Raised when several parties share the top support and ties must not be broken silently."""

    def __init__(self, message: str, tied_parties: Sequence[str]):
        super().__init__(message)
        self.tied_parties = list(tied_parties)


class FirstPastThePostSystem:
    """
    Single-member plurality system used for Canadian federal ridings.

    The party with the strictly largest support takes the seat. Ties are
    handled by an explicit policy: "precedence" awards the seat to the tied
    party listed first in the support mapping (which follows the configured
    party order), "raise" refuses to pick.
    """

    def __init__(self, tie_policy: str = DEFAULT_TIE_POLICY):
        if tie_policy not in TIE_POLICIES:
            raise ValueError(f"Unknown tie policy: {tie_policy}")
        self.tie_policy = tie_policy
        self.last_tied: List[str] = []

    def leaders(self, support: Dict[str, float]) -> List[str]:
        """Parties sharing the maximum support, in mapping order."""
        values = np.array(list(support.values()), dtype=float)
        if values.size == 0 or np.isnan(values).any():
            raise ValueError(f"Support must be a non-empty mapping of numbers, got {support}")
        top = values.max()
        return [party for party, value in support.items() if value == top]

    def select_winner(self, support: Dict[str, float]) -> str:
        """
        Winner of one riding.

        Args:
            support: Dictionary mapping party names to support (votes or vote probability)

        Returns:
            Name of the winning party. Tied parties are kept in last_tied.
        """
        tied = self.leaders(support)
        self.last_tied = tied if len(tied) > 1 else []
        if len(tied) > 1:
            if self.tie_policy == "raise":
                raise TiedDistrictError(f"Tie between {tied} at support {support[tied[0]]:.6f}", tied)
            logger.warning(f"Tie between {tied}; awarding the seat to {tied[0]} by party order")
        return tied[0]

# =============================================================================
# planning_core/optimization/score_weights.py
# Score Weights for the Assignment Objective and Swap Refinement
# All values are dimensionless score points (higher = better)
# =============================================================================

from __future__ import annotations
from dataclasses import dataclass, field, fields
from typing import Any, Dict, Optional


def _rank_table(first: float, second: float, third: float) -> Dict[int, float]:
    return {1: first, 2: second, 3: third}


# =============================================================================
# SCORE WEIGHTS
# =============================================================================

@dataclass
class ScoreWeights:
    """
    Additive score terms used by the model builder and the swap engine.

    Base scores are ordered theater > site > admin so that, slot for slot,
    the solver fills operating-theater roles first, clinical sites second
    and falls back to administrative duty last.
    """

    # Operating theater
    theater_base: float = 100000.0
    theater_rank_bonus: Dict[int, float] = field(
        default_factory=lambda: _rank_table(3000.0, 2500.0, 2000.0)
    )

    # Clinical sites
    site_base: float = 50000.0
    site_rank_bonus: Dict[int, float] = field(
        default_factory=lambda: _rank_table(1200.0, 1100.0, 1000.0)
    )
    doctor_rank_bonus: Dict[int, float] = field(
        default_factory=lambda: _rank_table(1500.0, 1200.0, 900.0)
    )

    # Administrative fallback
    admin_base: float = 100.0
    admin_preference_bonus: float = 500.0

    # Progressive penalties: the k-th occurrence costs step * (k - 1)
    admin_penalty_step: float = 10.0
    undesirable_site_step: float = 150.0

    # Fixed penalties
    site_change_penalty: float = 600.0
    restricted_adjacency_penalty: float = 10000.0
    restricted_exchange_penalty: float = 10000.0

    def theater_bonus(self, rank: Optional[int]) -> float:
        """Bonus for a ranked theater competency (unranked = 0)"""
        return self.theater_rank_bonus.get(rank, 0.0) if rank else 0.0

    def site_bonus(self, rank: Optional[int]) -> float:
        return self.site_rank_bonus.get(rank, 0.0) if rank else 0.0

    def doctor_bonus(self, rank: Optional[int]) -> float:
        return self.doctor_rank_bonus.get(rank, 0.0) if rank else 0.0

    def to_dict(self) -> Dict[str, Any]:
        """Convert to dictionary for logging/serialization."""
        return {f.name: getattr(self, f.name) for f in fields(self)}

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> ScoreWeights:
        """
        Build weights from a (possibly partial) mapping.

        Rank tables may be given with string keys, as TOML requires.
        """
        known = {f.name for f in fields(cls)}
        kwargs: Dict[str, Any] = {}
        for key, value in data.items():
            if key not in known:
                continue
            if key.endswith("_rank_bonus"):
                value = {int(rank): float(bonus) for rank, bonus in value.items()}
            else:
                value = float(value)
            kwargs[key] = value
        return cls(**kwargs)


# Default weights
DEFAULT_SCORE_WEIGHTS = ScoreWeights()

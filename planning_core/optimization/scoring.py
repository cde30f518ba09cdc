# =============================================================================
# planning_core/optimization/scoring.py
# Assignment Scoring and Progressive Penalties
# Shared by the model builder (objective coefficients) and the swap engine
# =============================================================================

from __future__ import annotations
from collections import Counter, defaultdict
from dataclasses import dataclass, field
from datetime import date
from typing import Dict, Iterable, List, Optional, Tuple

from planning_core.errors import OptimizationError
from .constraint_config import OptimizerConfig
from .score_weights import ScoreWeights
from .types import (
    AdminDemand,
    Assignment,
    Demand,
    Period,
    ReferenceData,
    SiteDemand,
    Staff,
    TheaterDemand,
)


# =============================================================================
# PER-ASSIGNMENT SCORE
# =============================================================================

def theater_score(staff: Staff, role_id: str, weights: ScoreWeights) -> float:
    return weights.theater_base + weights.theater_bonus(staff.competency_rank(role_id))


def site_score(
    staff: Staff,
    site_id: str,
    doctor_ids: Iterable[str],
    weights: ScoreWeights,
) -> float:
    """Site base + site-rank bonus + one bonus per preferred doctor present."""
    score = weights.site_base + weights.site_bonus(staff.site_rank(site_id))
    for doctor_id in doctor_ids:
        score += weights.doctor_bonus(staff.doctor_rank(doctor_id))
    return score


def admin_score(staff: Staff, weights: ScoreWeights) -> float:
    bonus = weights.admin_preference_bonus if staff.prefers_admin else 0.0
    return weights.admin_base + bonus


def demand_score(
    staff: Staff,
    demand: Demand,
    day: date,
    period: Period,
    reference: ReferenceData,
    weights: ScoreWeights,
) -> float:
    """
    Score of one staff member covering one demand unit.

    Args:
        staff: Candidate staff member
        demand: Theater, site or admin demand
        day, period: Half-day of the demand
        reference: Reference data (doctor lookups)
        weights: Score weights

    Returns:
        Additive score, without progressive penalties
    """
    if isinstance(demand, TheaterDemand):
        return theater_score(staff, demand.role_id, weights)
    if isinstance(demand, SiteDemand):
        doctors = reference.doctors_at(demand.site_id, day, period)
        return site_score(staff, demand.site_id, doctors, weights)
    if isinstance(demand, AdminDemand):
        return admin_score(staff, weights)
    raise OptimizationError(
        f"Unknown demand kind: {type(demand).__name__}", details={"demand": repr(demand)}
    )


# =============================================================================
# PROGRESSIVE PENALTIES
# =============================================================================

def progressive_penalty(count: int, step: float) -> float:
    """Total penalty of `count` occurrences when the k-th costs step*(k-1)."""
    if count <= 1:
        return 0.0
    return step * count * (count - 1) / 2


def admin_penalty(staff: Staff, count: int, weights: ScoreWeights) -> float:
    if staff.prefers_admin:
        return 0.0
    return progressive_penalty(count, weights.admin_penalty_step)


def undesirable_site_penalty(count: int, weights: ScoreWeights) -> float:
    return progressive_penalty(count, weights.undesirable_site_step)


def penalizes_site(staff: Staff, site_id: str, config: OptimizerConfig) -> bool:
    """Undesirable sites only count against staff who do not rank them first."""
    return config.is_undesirable(site_id) and staff.site_rank(site_id) != 1


# =============================================================================
# RUN CONTEXT
# =============================================================================

@dataclass
class RunContext:
    """
    Mutable per-run bookkeeping of progressive-penalty counters.

    Owned by a single run; the model builder reads the counts as the
    "prior" occurrences and the materializer adds committed assignments.
    """

    admin_counts: Counter = field(default_factory=Counter)
    undesirable_counts: Counter = field(default_factory=Counter)

    def prior_admin(self, staff_id: str) -> int:
        return self.admin_counts[staff_id]

    def prior_undesirable(self, staff_id: str, site_id: str) -> int:
        return self.undesirable_counts[(staff_id, site_id)]

    def record(self, staff: Staff, assignment: Assignment, config: OptimizerConfig) -> None:
        """Update counters for a committed assignment."""
        demand = assignment.demand
        if isinstance(demand, AdminDemand) and not staff.prefers_admin:
            self.admin_counts[staff.id] += 1
        elif isinstance(demand, SiteDemand) and penalizes_site(staff, demand.site_id, config):
            self.undesirable_counts[(staff.id, demand.site_id)] += 1

    def to_dict(self) -> Dict[str, Dict[str, int]]:
        return {
            "admin": dict(self.admin_counts),
            "undesirable": {f"{s}@{site}": n for (s, site), n in self.undesirable_counts.items()},
        }


# =============================================================================
# PER-STAFF TOTAL (swap refinement)
# =============================================================================

@dataclass
class StaffMetrics:
    """Derived per-staff metrics of an assignment set."""

    admin_count: int = 0
    site_change_days: int = 0
    undesirable_count: int = 0
    restricted_adjacent_days: int = 0

    @property
    def is_problematic(self) -> bool:
        return self.admin_count >= 2 or self.site_change_days > 0


def _location(demand: Demand) -> Optional[Tuple[str, ...]]:
    if isinstance(demand, TheaterDemand):
        return ("theater",)
    if isinstance(demand, SiteDemand):
        return ("site", demand.site_id)
    return None


def staff_metrics(
    staff: Staff,
    slots: Iterable[Tuple[Demand, date, Period]],
    config: OptimizerConfig,
) -> Tuple[StaffMetrics, Dict[str, int]]:
    """
    Compute metrics for one staff member's (demand, date, period) slots.

    Returns:
        (metrics, undesirable-site counts by site id)
    """
    metrics = StaffMetrics()
    per_site: Dict[str, int] = defaultdict(int)
    by_day: Dict[date, List[Demand]] = defaultdict(list)

    for demand, day, _period in slots:
        by_day[day].append(demand)
        if isinstance(demand, AdminDemand):
            metrics.admin_count += 1
        elif isinstance(demand, SiteDemand) and config.is_undesirable(demand.site_id):
            metrics.undesirable_count += 1
            if penalizes_site(staff, demand.site_id, config):
                per_site[demand.site_id] += 1

    for demands in by_day.values():
        locations = {_location(d) for d in demands} - {None}
        if len(locations) > 1:
            metrics.site_change_days += 1
        has_theater = any(isinstance(d, TheaterDemand) for d in demands)
        has_restricted = any(
            isinstance(d, SiteDemand) and config.is_restricted(d.site_id) for d in demands
        )
        if has_theater and has_restricted:
            metrics.restricted_adjacent_days += 1

    return metrics, dict(per_site)


def staff_total_score(
    staff: Staff,
    slots: List[Tuple[Demand, date, Period]],
    reference: ReferenceData,
    config: OptimizerConfig,
) -> float:
    """
    Total score of one staff member's assignments.

    Sum of per-assignment scores minus progressive admin and undesirable-site
    penalties, intra-day site changes and theater/restricted-site adjacency.
    """
    weights = config.weights
    score = sum(demand_score(staff, d, day, p, reference, weights) for d, day, p in slots)

    metrics, per_site = staff_metrics(staff, slots, config)
    score -= admin_penalty(staff, metrics.admin_count, weights)
    score -= sum(undesirable_site_penalty(n, weights) for n in per_site.values())
    score -= weights.site_change_penalty * metrics.site_change_days
    score -= weights.restricted_adjacency_penalty * metrics.restricted_adjacent_days
    return score

# =============================================================================
# planning_core/optimization/model_builder.py
# Binary Assignment Model for Staff Planning
# Builds the PuLP problem: candidate variables, objective and constraints
# =============================================================================

from __future__ import annotations
from collections import defaultdict
from dataclasses import dataclass, field
from datetime import date
from typing import Dict, List, Optional, Set, Tuple

import pulp

from planning_core.errors import OptimizationError
from planning_core.logging import get_logger
from .constraint_config import OptimizerConfig
from .room_allocator import RoomAllocation
from .scoring import RunContext, demand_score, penalizes_site
from .types import (
    AdminDemand,
    Demand,
    Period,
    ReferenceData,
    SiteDemand,
    Staff,
    TheaterDemand,
    WeekKey,
    iso_week,
)

logger = get_logger(__name__)


# =============================================================================
# MODEL CONTAINERS
# =============================================================================

@dataclass(frozen=True)
class Candidate:
    """One (staff, demand unit, half-day) pairing backed by a binary variable."""

    staff_id: str
    demand: Demand
    date: date
    period: Period
    score: float


@dataclass(frozen=True)
class TheaterUnit:
    """A theater-role demand unit that must be covered exactly once."""

    demand: TheaterDemand
    date: date
    period: Period


@dataclass
class AssignmentModel:
    """
    Built assignment model.

    Attributes:
        problem: PuLP problem (maximize)
        candidates: Variable name -> candidate pairing
        variables: Variable name -> binary variable (candidate variables only)
        theater_units: All theater-role demand units of placed procedures
        unmet_units: Theater units without any eligible candidate
        site_capacities: (site, date, period) -> staff ceiling
        constraint_names: Names of the constraints added, in order
    """

    problem: pulp.LpProblem
    candidates: Dict[str, Candidate] = field(default_factory=dict)
    variables: Dict[str, pulp.LpVariable] = field(default_factory=dict)
    theater_units: List[TheaterUnit] = field(default_factory=list)
    unmet_units: List[TheaterUnit] = field(default_factory=list)
    site_capacities: Dict[Tuple[str, date, Period], int] = field(default_factory=dict)
    constraint_names: List[str] = field(default_factory=list)

    @property
    def num_variables(self) -> int:
        return len(self.problem.variables())

    @property
    def num_constraints(self) -> int:
        return len(self.constraint_names)

    @property
    def num_candidates(self) -> int:
        return len(self.candidates)


def expected_theater_units(
    reference: ReferenceData,
    placed_procedure_ids: Set[str],
) -> List[TheaterUnit]:
    """
    Expand placed procedures into theater-role demand units.

    Each role requirement with headcount N yields ordinals 1..N.
    """
    units = []
    procedures = sorted(
        (p for p in reference.procedures if p.id in placed_procedure_ids),
        key=lambda p: (p.date, p.period.order, p.id),
    )
    for procedure in procedures:
        for req in reference.requirements_for(procedure.intervention_type_id):
            for ordinal in range(1, req.count + 1):
                units.append(
                    TheaterUnit(
                        TheaterDemand(procedure.id, req.role_id, ordinal),
                        procedure.date,
                        procedure.period,
                    )
                )
    return units


# =============================================================================
# MODEL BUILDER
# =============================================================================

class AssignmentModelBuilder:
    """
    Build the binary assignment model.

    Variables:
        x[s,u]   staff s covers demand unit u (theater role, site slot, admin)
        chg      1 if a staff member works two different sites on one day
        w[s,d]   flexible staff s works on weekday d
        e        excess counters linearising the progressive penalties

    Objective (maximize):
        Σ score(s,u) · x[s,u]
        - site_change_penalty · Σ chg
        - progressive admin / undesirable-site penalties

    Constraints:
        Exact cover:   Σ_s x[s,u] = 1                 every theater unit
        Uniqueness:    Σ_u x[s,u] ≤ 1                 every (staff, date, period)
        Capacity:      Σ_s x[s,site] ≤ ceil(need)     every (site, date, period)
        Site change:   chg ≥ x[s,a,AM] + x[s,b,PM] - 1
        Restricted:    theater one half-day + restricted site other half-day ≤ 1
        Working days:  w[s,d] ≤ Σ x[s,·,d];  Σ_{d in week} w[s,d] ≥ min(quota, eligible days)
                       per flexible staff and ISO week

    Hard (staff, doctor) exclusions are enforced by never creating the
    variable.
    """

    def __init__(self, config: Optional[OptimizerConfig] = None):
        self.config = config or OptimizerConfig()
        self.weights = self.config.weights
        self._reset()

    def _reset(self) -> None:
        self.model: Optional[AssignmentModel] = None
        self._var_count = 0
        self._constraint_count = 0
        self._by_slot: Dict[Tuple[str, date, Period], List[pulp.LpVariable]] = defaultdict(list)
        self._by_day: Dict[Tuple[str, date], List[pulp.LpVariable]] = defaultdict(list)
        self._theater_by_slot: Dict[Tuple[str, date, Period], List[pulp.LpVariable]] = defaultdict(list)
        self._restricted_by_slot: Dict[Tuple[str, date, Period], List[pulp.LpVariable]] = defaultdict(list)
        self._site_by_slot: Dict[Tuple[str, date, Period], List[Tuple[str, pulp.LpVariable]]] = defaultdict(list)
        self._admin_by_staff: Dict[str, List[pulp.LpVariable]] = defaultdict(list)
        self._undesirable: Dict[Tuple[str, str], List[pulp.LpVariable]] = defaultdict(list)
        self._objective: List = []

    # -------------------------------------------------------------------------
    # Public API
    # -------------------------------------------------------------------------

    def build(
        self,
        reference: ReferenceData,
        rooms: RoomAllocation,
        context: Optional[RunContext] = None,
    ) -> AssignmentModel:
        """
        Build the model for one run.

        Args:
            reference: Loaded reference data for the target dates
            rooms: Room allocation; only placed procedures create demand
            context: Run context holding prior progressive-penalty counts

        Returns:
            AssignmentModel ready for the solver
        """
        self._reset()
        context = context or RunContext()
        problem = pulp.LpProblem("Staff_Planning", pulp.LpMaximize)
        self.model = AssignmentModel(problem=problem)

        staff = [reference.staff[sid] for sid in sorted(reference.staff)]

        self._add_theater_candidates(reference, rooms, staff)
        self._add_site_candidates(reference, staff)
        self._add_admin_candidates(reference, staff)

        self._add_uniqueness_constraints()
        self._add_site_change_penalties()
        self._add_restricted_day_exclusions()
        self._add_working_day_quotas(reference, staff)
        self._add_progressive_penalties(reference, context)

        problem += (pulp.lpSum(self._objective), "Total_Score")

        logger.info(
            f"Model built: {self.model.num_candidates} candidates, "
            f"{self.model.num_variables} variables, {self.model.num_constraints} constraints, "
            f"{len(self.model.unmet_units)} unmet theater units"
        )
        return self.model

    # -------------------------------------------------------------------------
    # Candidate variables
    # -------------------------------------------------------------------------

    def _new_var(self, prefix: str, cat: str = pulp.LpBinary, up: Optional[float] = None) -> pulp.LpVariable:
        self._var_count += 1
        return pulp.LpVariable(f"{prefix}_{self._var_count}", lowBound=0, upBound=up, cat=cat)

    def _add_constraint(self, constraint, prefix: str) -> None:
        self._constraint_count += 1
        name = f"{prefix}_{self._constraint_count}"
        self.model.problem += (constraint, name)
        self.model.constraint_names.append(name)

    def _add_candidate(
        self,
        staff: Staff,
        demand: Demand,
        day: date,
        period: Period,
        reference: ReferenceData,
    ) -> pulp.LpVariable:
        score = demand_score(staff, demand, day, period, reference, self.weights)
        var = self._new_var("x")
        self.model.candidates[var.name] = Candidate(staff.id, demand, day, period, score)
        self.model.variables[var.name] = var
        self._objective.append(score * var)

        self._by_slot[(staff.id, day, period)].append(var)
        self._by_day[(staff.id, day)].append(var)

        if isinstance(demand, TheaterDemand):
            self._theater_by_slot[(staff.id, day, period)].append(var)
        elif isinstance(demand, SiteDemand):
            self._site_by_slot[(staff.id, day, period)].append((demand.site_id, var))
            if self.config.is_restricted(demand.site_id):
                self._restricted_by_slot[(staff.id, day, period)].append(var)
            if penalizes_site(staff, demand.site_id, self.config):
                self._undesirable[(staff.id, demand.site_id)].append(var)
        elif isinstance(demand, AdminDemand):
            if not staff.prefers_admin:
                self._admin_by_staff[staff.id].append(var)
        else:
            raise OptimizationError(
                f"Unknown demand kind: {type(demand).__name__}", details={"demand": repr(demand)}
            )
        return var

    def _add_theater_candidates(
        self,
        reference: ReferenceData,
        rooms: RoomAllocation,
        staff: List[Staff],
    ) -> None:
        units = expected_theater_units(reference, rooms.placed_ids)
        self.model.theater_units = units

        for unit in units:
            procedure = reference.procedure(unit.demand.procedure_id)
            doctor_id = procedure.doctor_id if procedure else None
            unit_vars = [
                self._add_candidate(s, unit.demand, unit.date, unit.period, reference)
                for s in staff
                if s.has_competency(unit.demand.role_id)
                and reference.is_available(s.id, unit.date, unit.period)
                and not self.config.is_excluded(s.id, doctor_id)
            ]
            if not unit_vars:
                logger.warning(
                    f"No eligible staff for role {unit.demand.role_id} #{unit.demand.ordinal} "
                    f"of procedure {unit.demand.procedure_id} on {unit.date} {unit.period.value}"
                )
                self.model.unmet_units.append(unit)
                continue
            self._add_constraint(pulp.lpSum(unit_vars) == 1, "Cover")

    def _add_site_candidates(self, reference: ReferenceData, staff: List[Staff]) -> None:
        for site_id, day, period in reference.site_slots():
            capacity = reference.site_capacity(site_id, day, period)
            if capacity <= 0:
                continue
            self.model.site_capacities[(site_id, day, period)] = capacity
            doctors = reference.doctors_at(site_id, day, period)
            demand = SiteDemand(site_id)

            site_vars = [
                self._add_candidate(s, demand, day, period, reference)
                for s in staff
                if s.site_rank(site_id) is not None
                and reference.is_available(s.id, day, period)
                and not any(self.config.is_excluded(s.id, doc) for doc in doctors)
            ]
            if len(site_vars) > capacity:
                self._add_constraint(pulp.lpSum(site_vars) <= capacity, "Capacity")

    def _add_admin_candidates(self, reference: ReferenceData, staff: List[Staff]) -> None:
        demand = AdminDemand()
        for s in staff:
            for day, period in reference.available_slots(s.id):
                self._add_candidate(s, demand, day, period, reference)

    # -------------------------------------------------------------------------
    # Constraints
    # -------------------------------------------------------------------------

    def _add_uniqueness_constraints(self) -> None:
        for key in sorted(self._by_slot, key=lambda k: (k[0], k[1], k[2].order)):
            slot_vars = self._by_slot[key]
            if len(slot_vars) > 1:
                self._add_constraint(pulp.lpSum(slot_vars) <= 1, "Unique")

    def _add_site_change_penalties(self) -> None:
        penalty = self.weights.site_change_penalty
        if penalty <= 0:
            return
        for (staff_id, day, period), morning in sorted(
            self._site_by_slot.items(), key=lambda kv: (kv[0][0], kv[0][1], kv[0][2].order)
        ):
            if period is not Period.MORNING:
                continue
            afternoon = self._site_by_slot.get((staff_id, day, Period.AFTERNOON), [])
            for site_am, x_am in morning:
                for site_pm, x_pm in afternoon:
                    if site_am == site_pm:
                        continue
                    chg = self._new_var("chg", cat=pulp.LpContinuous, up=1)
                    self._add_constraint(chg >= x_am + x_pm - 1, "SiteChange")
                    self._objective.append(-penalty * chg)

    def _add_restricted_day_exclusions(self) -> None:
        if not self.config.restricted_site_ids:
            return
        for (staff_id, day, period), theater in sorted(
            self._theater_by_slot.items(), key=lambda kv: (kv[0][0], kv[0][1], kv[0][2].order)
        ):
            restricted = self._restricted_by_slot.get((staff_id, day, period.other), [])
            if restricted:
                self._add_constraint(
                    pulp.lpSum(theater) + pulp.lpSum(restricted) <= 1,
                    "Restricted",
                )

    def _add_working_day_quotas(self, reference: ReferenceData, staff: List[Staff]) -> None:
        for s in staff:
            if not s.flexible_hours or s.required_days <= 0:
                continue
            by_week: Dict[WeekKey, List[date]] = defaultdict(list)
            for d in reference.eligible_work_days(s.id):
                if self._by_day.get((s.id, d)):
                    by_week[iso_week(d)].append(d)

            # The quota is weekly: one constraint per ISO week of the run
            for week in sorted(by_week):
                eligible = by_week[week]
                quota = max(0, s.required_days - reference.prior_worked(s.id, week))
                target = min(quota, len(eligible))
                if target <= 0:
                    continue

                day_vars = []
                for d in eligible:
                    worked = self._new_var("day")
                    self._add_constraint(worked <= pulp.lpSum(self._by_day[(s.id, d)]), "WorkedDay")
                    day_vars.append(worked)
                self._add_constraint(pulp.lpSum(day_vars) >= target, "MinDays")
                logger.debug(
                    f"Staff {s.id}, week {week[0]}-W{week[1]:02d}: "
                    f"at least {target} of {len(eligible)} days"
                )

    def _add_progressive_penalties(self, reference: ReferenceData, context: RunContext) -> None:
        for staff_id in sorted(self._admin_by_staff):
            self._add_progressive_penalty(
                self._admin_by_staff[staff_id],
                context.prior_admin(staff_id),
                self.weights.admin_penalty_step,
                "AdminLoad",
            )
        for staff_id, site_id in sorted(self._undesirable):
            self._add_progressive_penalty(
                self._undesirable[(staff_id, site_id)],
                context.prior_undesirable(staff_id, site_id),
                self.weights.undesirable_site_step,
                "SiteLoad",
            )

    def _add_progressive_penalty(
        self,
        variables: List[pulp.LpVariable],
        prior: int,
        step: float,
        label: str,
    ) -> None:
        """
        Linearise the convex penalty step * Σ_{j≥1} max(0, prior + n - j).

        The k-th occurrence overall costs step * (k - 1); occurrences already
        counted in `prior` are not charged again.
        """
        if step <= 0 or not variables:
            return
        n = pulp.lpSum(variables)
        if prior > 1:
            self._objective.append(-step * (prior - 1) * n)
        for j in range(max(1, prior), prior + len(variables)):
            excess = self._new_var("e", cat=pulp.LpContinuous)
            self._add_constraint(excess >= n + prior - j, label)
            self._objective.append(-step * excess)

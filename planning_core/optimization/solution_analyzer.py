# =============================================================================
# planning_core/optimization/solution_analyzer.py
# Post-Solve Analysis: invariant checks and summary tables
# =============================================================================

from __future__ import annotations
from collections import Counter
from dataclasses import dataclass, field
from typing import Dict, List, Optional, Sequence

import pandas as pd

from planning_core.logging import get_logger
from .constraint_config import OptimizerConfig
from .model_builder import expected_theater_units
from .scoring import staff_metrics
from .types import (
    Assignment,
    ReferenceData,
    RoomAssignment,
    SiteDemand,
    TheaterDemand,
    slot_key,
)

logger = get_logger(__name__)


@dataclass
class InvariantReport:
    """Violations found in an assignment set, grouped by rule."""

    violations: Dict[str, List[str]] = field(default_factory=dict)

    @property
    def ok(self) -> bool:
        return not any(self.violations.values())

    def add(self, rule: str, message: str) -> None:
        self.violations.setdefault(rule, []).append(message)

    def all_messages(self) -> List[str]:
        return [f"{rule}: {msg}" for rule, msgs in self.violations.items() for msg in msgs]


class SolutionAnalyzer:
    """
    Check an assignment set against the planning rules and summarize it.

    Usage:
        analyzer = SolutionAnalyzer(reference, config)
        report = analyzer.check_invariants(assignments, rooms)
        if not report.ok:
            print(report.all_messages())
    """

    def __init__(self, reference: ReferenceData, config: Optional[OptimizerConfig] = None):
        self.reference = reference
        self.config = config or OptimizerConfig()

    # -------------------------------------------------------------------------
    # Invariants
    # -------------------------------------------------------------------------

    def check_invariants(
        self,
        assignments: Sequence[Assignment],
        rooms: Sequence[RoomAssignment] = (),
        require_cover: bool = True,
    ) -> InvariantReport:
        """
        Verify exact cover, uniqueness, capacity, competency, exclusions and
        room exclusivity.

        Args:
            assignments: Assignments to check
            rooms: Room assignments of the same run
            require_cover: Check that every theater unit of a placed procedure
                with an eligible candidate is covered exactly once

        Returns:
            InvariantReport (report.ok is True when nothing is violated)
        """
        report = InvariantReport()

        slots = Counter((a.staff_id, a.date, a.period) for a in assignments)
        for (staff_id, day, period), n in slots.items():
            if n > 1:
                report.add("uniqueness", f"{staff_id} has {n} assignments on {day} {period.value}")

        theater = Counter(
            (a.demand, a.date, a.period) for a in assignments if isinstance(a.demand, TheaterDemand)
        )
        for key, n in theater.items():
            if n > 1:
                report.add("exact_cover", f"{key[0]} covered {n} times")
        if require_cover:
            placed = {r.procedure_id for r in rooms}
            for unit in expected_theater_units(self.reference, placed):
                if theater[(unit.demand, unit.date, unit.period)] == 0 and self._coverable(unit):
                    report.add("exact_cover", f"{unit.demand} on {unit.date} {unit.period.value} uncovered")

        site_counts = Counter(
            (a.demand.site_id, a.date, a.period) for a in assignments if isinstance(a.demand, SiteDemand)
        )
        for (site_id, day, period), n in site_counts.items():
            ceiling = self.reference.site_capacity(site_id, day, period)
            if n > ceiling:
                report.add("capacity", f"{site_id} on {day} {period.value}: {n} > {ceiling}")

        for a in assignments:
            staff = self.reference.staff.get(a.staff_id)
            if staff is None:
                report.add("competency", f"unknown staff {a.staff_id}")
                continue
            if isinstance(a.demand, TheaterDemand) and not staff.has_competency(a.demand.role_id):
                report.add("competency", f"{a.staff_id} lacks role {a.demand.role_id}")
            if isinstance(a.demand, SiteDemand) and staff.site_rank(a.demand.site_id) is None:
                report.add("competency", f"{a.staff_id} has no ranked preference for {a.demand.site_id}")
            for doctor_id in self.reference.doctors_for_assignment(a):
                if self.config.is_excluded(a.staff_id, doctor_id):
                    report.add("exclusion", f"{a.staff_id} placed with excluded doctor {doctor_id}")

        room_slots = Counter((r.date, r.period, r.room) for r in rooms)
        for (day, period, room), n in room_slots.items():
            if n > 1:
                report.add("rooms", f"room {room} used {n} times on {day} {period.value}")

        if not report.ok:
            logger.warning(f"Invariant violations: {report.all_messages()}")
        return report

    def _coverable(self, unit) -> bool:
        procedure = self.reference.procedure(unit.demand.procedure_id)
        doctor_id = procedure.doctor_id if procedure else None
        return any(
            s.has_competency(unit.demand.role_id)
            and self.reference.is_available(s.id, unit.date, unit.period)
            and not self.config.is_excluded(s.id, doctor_id)
            for s in self.reference.staff.values()
        )

    # -------------------------------------------------------------------------
    # Summaries
    # -------------------------------------------------------------------------

    def assignments_frame(self, assignments: Sequence[Assignment]) -> pd.DataFrame:
        """One row per assignment."""
        rows = []
        for a in sorted(assignments, key=lambda a: (slot_key(a.date, a.period), a.staff_id)):
            demand = a.demand
            rows.append({
                "date": a.date,
                "period": a.period.value,
                "staff_id": a.staff_id,
                "kind": a.kind.value,
                "site_id": demand.site_id if isinstance(demand, SiteDemand) else None,
                "procedure_id": demand.procedure_id if isinstance(demand, TheaterDemand) else None,
                "role_id": demand.role_id if isinstance(demand, TheaterDemand) else None,
                "ordinal": a.ordinal,
            })
        columns = ["date", "period", "staff_id", "kind", "site_id", "procedure_id", "role_id", "ordinal"]
        return pd.DataFrame(rows, columns=columns)

    def kind_summary(self, assignments: Sequence[Assignment]) -> pd.DataFrame:
        """Assignment counts per date and kind."""
        df = self.assignments_frame(assignments)
        if df.empty:
            return pd.DataFrame()
        return df.pivot_table(index="date", columns="kind", values="staff_id", aggfunc="count", fill_value=0)

    def staff_summary(self, assignments: Sequence[Assignment]) -> pd.DataFrame:
        """Per-staff metrics used by the swap refinement."""
        by_staff: Dict[str, list] = {}
        for a in assignments:
            by_staff.setdefault(a.staff_id, []).append((a.demand, a.date, a.period))

        rows = []
        for staff_id in sorted(by_staff):
            staff = self.reference.staff.get(staff_id)
            if staff is None:
                continue
            metrics, _ = staff_metrics(staff, by_staff[staff_id], self.config)
            rows.append({
                "staff_id": staff_id,
                "assignments": len(by_staff[staff_id]),
                "days_worked": len({day for _, day, _ in by_staff[staff_id]}),
                "admin_slots": metrics.admin_count,
                "site_change_days": metrics.site_change_days,
                "undesirable_site_slots": metrics.undesirable_count,
                "problematic": metrics.is_problematic,
            })
        return pd.DataFrame(rows)

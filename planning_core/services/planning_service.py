# =============================================================================
# planning_core/services/planning_service.py
# Planning Service
# Orchestrates load -> rooms -> model -> solve -> materialize -> persist, and
# the separate swap refinement pass
# =============================================================================

from __future__ import annotations
import threading
from contextlib import contextmanager
from dataclasses import dataclass, field
from datetime import date
from typing import Any, Dict, Iterator, List, Optional, Sequence, Set, Union

import pandas as pd

from planning_core.data import PlanningRepository, ReferenceDataLoader
from planning_core.errors import (
    DataValidationError,
    ErrorContext,
    PlanningConflictError,
    error_boundary,
)
from planning_core.optimization import (
    AssignmentModelBuilder,
    Assignment,
    MilpSolver,
    OptimizerConfig,
    ReferenceData,
    RoomAllocator,
    RoomAssignment,
    RunContext,
    SolutionAnalyzer,
    SolutionMaterializer,
    SwapRefinementEngine,
)
from planning_core.optimization.types import slot_key
from .base_service import BaseService, ServiceResult

DateLike = Union[date, str]


# =============================================================================
# RESULT CONTAINERS
# =============================================================================

@dataclass
class RunSummary:
    """Outcome of one optimization run."""

    planning_id: Optional[str]
    dates: List[date]
    feasible: bool
    status: str
    objective: Optional[float] = None
    counts: Dict[str, int] = field(default_factory=dict)
    room_count: int = 0
    unassigned_procedures: List[str] = field(default_factory=list)
    unmet_units: List[Dict[str, Any]] = field(default_factory=list)
    num_variables: int = 0
    num_constraints: int = 0
    solve_time: float = 0.0
    # rule -> violation count from the post-run check; empty when clean
    violations: Dict[str, int] = field(default_factory=dict)
    assignments: List[Assignment] = field(default_factory=list, repr=False)
    rooms: List[RoomAssignment] = field(default_factory=list, repr=False)

    @property
    def total_assignments(self) -> int:
        return sum(self.counts.values())

    def to_dict(self) -> Dict[str, Any]:
        return {
            "planning_id": self.planning_id,
            "dates": [d.isoformat() for d in self.dates],
            "feasible": self.feasible,
            "status": self.status,
            "objective": self.objective,
            "counts": dict(self.counts),
            "room_count": self.room_count,
            "unassigned_procedures": list(self.unassigned_procedures),
            "unmet_units": list(self.unmet_units),
            "num_variables": self.num_variables,
            "num_constraints": self.num_constraints,
            "solve_time": round(self.solve_time, 3),
            "violations": dict(self.violations),
        }


@dataclass
class SwapSummary:
    """Outcome of one swap refinement pass."""

    planning_id: Optional[str]
    swap_count: int
    total_gain: float
    final_assignment_count: int
    iterations: int
    initial_score: float
    final_score: float
    changed_count: int = 0
    assignments: List[Assignment] = field(default_factory=list, repr=False)
    swaps: pd.DataFrame = field(default_factory=pd.DataFrame, repr=False)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "planning_id": self.planning_id,
            "swap_count": self.swap_count,
            "total_gain": round(self.total_gain, 2),
            "final_assignment_count": self.final_assignment_count,
            "iterations": self.iterations,
            "initial_score": round(self.initial_score, 2),
            "final_score": round(self.final_score, 2),
            "changed_count": self.changed_count,
        }


def describe_run(summary: RunSummary) -> Dict[str, Any]:
    """Result metadata for an optimization run."""
    return {
        "outcome": ServiceResult.COMPLETED if summary.feasible else ServiceResult.INFEASIBLE,
        "planning_id": summary.planning_id,
        "status": summary.status,
        "assignments": summary.total_assignments,
        "rooms": summary.room_count,
        "unmet_units": len(summary.unmet_units),
        "violations": summary.violations,
    }


def describe_swap(summary: SwapSummary) -> Dict[str, Any]:
    return {
        "outcome": ServiceResult.COMPLETED,
        "planning_id": summary.planning_id,
        "swap_count": summary.swap_count,
        "total_gain": round(summary.total_gain, 2),
    }


# =============================================================================
# DATE GUARD
# =============================================================================

class DateRangeGuard:
    """
    In-process single-writer guard: runs whose target dates overlap may not
    execute at the same time.
    """

    def __init__(self):
        self._lock = threading.Lock()
        self._claimed: Set[date] = set()

    @contextmanager
    def claim(self, dates: Sequence[date]) -> Iterator[None]:
        wanted = set(dates)
        with self._lock:
            overlap = sorted(self._claimed & wanted)
            if overlap:
                raise PlanningConflictError(
                    "Another planning run is writing these dates",
                    dates=[d.isoformat() for d in overlap],
                )
            self._claimed |= wanted
        try:
            yield
        finally:
            with self._lock:
                self._claimed -= wanted

    @property
    def claimed(self) -> Set[date]:
        with self._lock:
            return set(self._claimed)


# Shared by every service instance of this process
DEFAULT_DATE_GUARD = DateRangeGuard()


def parse_dates(dates: Sequence[DateLike]) -> List[date]:
    """Normalize dates/ISO strings into a sorted, de-duplicated list."""
    parsed = set()
    for value in dates:
        if isinstance(value, date):
            parsed.add(value)
            continue
        try:
            parsed.add(date.fromisoformat(str(value)))
        except ValueError:
            raise DataValidationError(f"Invalid date: {value!r}", column="date", value=value) from None
    if not parsed:
        raise DataValidationError("At least one target date is required", column="date")
    return sorted(parsed)


# =============================================================================
# PLANNING SERVICE
# =============================================================================

class PlanningService(BaseService):
    """
    Run the planning pipeline for a set of target dates.

    Usage:
        service = PlanningService(loader, repository, config)
        result = service.run_optimization(["2024-03-11", "2024-03-12"])
        if result.outcome == ServiceResult.COMPLETED:
            swap = service.run_swap_refinement(["2024-03-11", "2024-03-12"])

    A run without a repository (or with persist=False) computes everything
    but writes nothing.
    """

    def __init__(
        self,
        loader,
        repository=None,
        config: Optional[OptimizerConfig] = None,
        solver: Optional[MilpSolver] = None,
        guard: Optional[DateRangeGuard] = None,
    ):
        """
        Args:
            loader: Object with load(dates) -> ReferenceData
            repository: Optional PlanningRepository-like object
            config: Optimizer configuration
            solver: MILP solver (default: CBC with the configured limits)
            guard: Date guard (default: process-wide guard)
        """
        super().__init__()
        self.loader = loader
        self.repository = repository
        self.config = config or OptimizerConfig()
        self.config.validate()
        self.solver = solver or MilpSolver(time_limit=self.config.time_limit, gap=self.config.gap)
        self.guard = guard or DEFAULT_DATE_GUARD

    # -------------------------------------------------------------------------
    # Optimization
    # -------------------------------------------------------------------------

    def run_optimization(
        self,
        dates: Sequence[DateLike],
        planning_id: Optional[str] = None,
        persist: bool = True,
    ) -> ServiceResult:
        """
        Compute and store room and staff assignments for the target dates.

        Prior results for these dates are discarded first, so re-running the
        same dates replaces them.

        Args:
            dates: Target dates (date objects or ISO strings)
            planning_id: Optional planning id to reuse
            persist: Write results to the repository

        Returns:
            ServiceResult with a RunSummary; an infeasible solve is a
            successful result whose outcome is "infeasible"
        """
        return self.safe_execute(
            "Planning optimization run",
            self._run_optimization,
            dates,
            planning_id,
            persist,
            describe=describe_run,
        )

    def _run_optimization(
        self,
        dates: Sequence[DateLike],
        planning_id: Optional[str],
        persist: bool,
    ) -> RunSummary:
        target = parse_dates(dates)
        persist = persist and self.repository is not None
        with self.guard.claim(target):
            return self._optimize(target, planning_id, persist)

    def _optimize(self, dates: List[date], planning_id: Optional[str], persist: bool) -> RunSummary:
        context = RunContext()

        if persist:
            planning_id = self.repository.resolve_planning_id(dates, planning_id)
            self.repository.clear_assignments(planning_id, dates)
        self._update_progress(5, "Loading reference data")

        reference: ReferenceData = self.loader.load(dates)
        if persist:
            reference.prior_worked_days = self.repository.load_prior_worked_days(
                reference.staff, dates
            )
        self._update_progress(20, "Allocating rooms")

        with self.log_operation("Allocating rooms"):
            allocator = RoomAllocator(
                self.config.rooms, reference.intervention_types, reference.multi_flow_configs
            )
            rooms = allocator.allocate(reference.procedures)
            room_rows = (
                self.repository.save_room_assignments(planning_id, rooms.assignments, reference)
                if persist else {}
            )
        self._update_progress(35, "Building assignment model")

        with self.log_operation("Building assignment model"):
            model = AssignmentModelBuilder(self.config).build(reference, rooms, context)
        self._update_progress(50, "Solving")

        with self.log_operation("Solving assignment model"):
            outcome = self.solver.solve(model)
        self._update_progress(80, "Saving assignments")

        with self.log_operation("Materializing assignments"):
            assignments = SolutionMaterializer(self.config).materialize(
                model, outcome, reference, context
            )
            if persist and assignments:
                self.repository.save_staff_assignments(planning_id, assignments, room_rows)
        self._update_progress(100, "Done")

        counts: Dict[str, int] = {}
        for a in assignments:
            counts[a.kind.value] = counts.get(a.kind.value, 0) + 1

        summary = RunSummary(
            planning_id=planning_id,
            dates=dates,
            feasible=outcome.feasible,
            status=outcome.status if outcome.feasible else "infeasible",
            objective=outcome.objective,
            counts=counts,
            room_count=len(rooms.assignments),
            unassigned_procedures=[p.id for p in rooms.unassigned],
            unmet_units=[
                {
                    "procedure_id": u.demand.procedure_id,
                    "role_id": u.demand.role_id,
                    "ordinal": u.demand.ordinal,
                    "date": u.date.isoformat(),
                    "period": u.period.value,
                }
                for u in model.unmet_units
            ],
            num_variables=model.num_variables,
            num_constraints=model.num_constraints,
            solve_time=outcome.solve_time,
            violations=(
                self._check_invariants(reference, assignments, rooms.assignments)
                if outcome.feasible else {}
            ),
            assignments=assignments,
            rooms=rooms.assignments,
        )
        if not summary.feasible:
            self.logger.warning(
                f"Run for {dates[0]}..{dates[-1]} is infeasible ({outcome.status}); "
                f"{summary.room_count} rooms kept, no staff assigned"
            )
        return summary

    @error_boundary(default_return={}, error_message="Post-run invariant check failed")
    def _check_invariants(
        self,
        reference: ReferenceData,
        assignments: List[Assignment],
        rooms: List[RoomAssignment],
    ) -> Dict[str, int]:
        """Violation counts per rule; a failing check never fails the run."""
        report = SolutionAnalyzer(reference, self.config).check_invariants(assignments, rooms)
        return {rule: len(messages) for rule, messages in report.violations.items() if messages}

    # -------------------------------------------------------------------------
    # Swap refinement
    # -------------------------------------------------------------------------

    def run_swap_refinement(
        self,
        dates: Sequence[DateLike],
        planning_id: Optional[str] = None,
        assignments: Optional[List[Assignment]] = None,
        reference: Optional[ReferenceData] = None,
        persist: bool = True,
    ) -> ServiceResult:
        """
        Improve stored (or given) assignments by exchanging staff.

        Args:
            dates: Target dates
            planning_id: Planning whose rows are refined
            assignments: In-memory assignments to refine instead of stored ones
            reference: Reference data to reuse instead of loading it
            persist: Write changed staff ids back

        Returns:
            ServiceResult with a SwapSummary
        """
        return self.safe_execute(
            "Swap refinement",
            self._run_swap_refinement,
            dates,
            planning_id,
            assignments,
            reference,
            persist,
            describe=describe_swap,
        )

    def _run_swap_refinement(
        self,
        dates: Sequence[DateLike],
        planning_id: Optional[str],
        assignments: Optional[List[Assignment]],
        reference: Optional[ReferenceData],
        persist: bool,
    ) -> SwapSummary:
        target = parse_dates(dates)
        persist = persist and self.repository is not None
        with self.guard.claim(target):
            if reference is None:
                reference = self.loader.load(target)
            if assignments is None:
                if self.repository is None:
                    raise DataValidationError("No assignments given and no repository to load them from")
                planning_id = self.repository.resolve_planning_id(target, planning_id)
                assignments = self.repository.load_staff_assignments(planning_id, target, reference)

            assignments.sort(key=lambda a: (slot_key(a.date, a.period), a.staff_id))
            with self.log_operation("Refining assignments"):
                result = SwapRefinementEngine(reference, self.config).refine(assignments)

            if persist and result.changed:
                with ErrorContext("Persisting swap results", recoverable=False):
                    self.repository.update_staff_ids(result.changed)

        return SwapSummary(
            planning_id=planning_id,
            swap_count=result.swap_count,
            total_gain=result.total_gain,
            final_assignment_count=result.final_assignment_count,
            iterations=result.iterations,
            initial_score=result.initial_score,
            final_score=result.final_score,
            changed_count=len(result.changed),
            assignments=assignments,
            swaps=result.swaps_frame(),
        )


def build_planning_service(client, config: Optional[OptimizerConfig] = None) -> PlanningService:
    """Wire a PlanningService against a Supabase client."""
    config = config or OptimizerConfig()
    return PlanningService(
        loader=ReferenceDataLoader(client, config),
        repository=PlanningRepository(client, config),
        config=config,
    )

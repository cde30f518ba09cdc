# =============================================================================
# planning_core/optimization/swap_engine.py
# Swap Refinement Engine
# Local search over an existing assignment set: exchanges staff identities on
# half-days or whole days while the total score strictly improves
# =============================================================================

from __future__ import annotations
from collections import defaultdict
from dataclasses import dataclass, field
from datetime import date
from typing import Any, Dict, Iterator, List, Optional, Sequence, Tuple

import pandas as pd

from planning_core.errors import OptimizationError
from planning_core.logging import get_logger
from .constraint_config import OptimizerConfig
from .scoring import StaffMetrics, staff_metrics, staff_total_score
from .types import (
    AdminDemand,
    Assignment,
    Demand,
    Period,
    ReferenceData,
    SiteDemand,
    Staff,
    TheaterDemand,
    slot_key,
)

logger = get_logger(__name__)

# Gains at or below this are treated as no improvement
MIN_GAIN = 1e-6

SlotTuple = Tuple[Demand, date, Period]


# =============================================================================
# RESULT CONTAINERS
# =============================================================================

@dataclass
class SwapMove:
    """
    A candidate exchange of staff identities.

    pairs holds (index, index) positions in the assignment list; a half-day
    move has one pair, a full-day move one pair per half-day.
    """

    pairs: Tuple[Tuple[int, int], ...]
    full_day: bool
    gain: float = 0.0


@dataclass
class AppliedSwap:
    iteration: int
    staff_a: str
    staff_b: str
    date: date
    period: Optional[Period]
    full_day: bool
    gain: float

    def to_dict(self) -> Dict[str, Any]:
        return {
            "iteration": self.iteration,
            "staff_a": self.staff_a,
            "staff_b": self.staff_b,
            "date": self.date.isoformat(),
            "period": self.period.value if self.period else None,
            "full_day": self.full_day,
            "gain": round(self.gain, 2),
        }


@dataclass
class SwapResult:
    """Container for swap refinement results."""

    swap_count: int = 0
    total_gain: float = 0.0
    iterations: int = 0
    initial_score: float = 0.0
    final_score: float = 0.0
    final_assignment_count: int = 0
    swaps: List[AppliedSwap] = field(default_factory=list)
    changed: List[Assignment] = field(default_factory=list)

    def get_summary(self) -> Dict[str, Any]:
        """Get summary statistics."""
        return {
            "Swaps": self.swap_count,
            "Total Gain": round(self.total_gain, 2),
            "Iterations": self.iterations,
            "Initial Score": round(self.initial_score, 2),
            "Final Score": round(self.final_score, 2),
            "Assignments": self.final_assignment_count,
        }

    def swaps_frame(self) -> pd.DataFrame:
        return pd.DataFrame([s.to_dict() for s in self.swaps])


# =============================================================================
# ENGINE
# =============================================================================

class SwapRefinementEngine:
    """
    Iterative best-improvement search over staff exchanges.

    Each iteration recomputes per-staff metrics, enumerates candidate moves
    lazily (full-day exchanges between problematic and normal staff, then
    half-day exchanges between any two staff sharing a half-day), evaluates
    the score delta of each and applies the best strictly positive one.

    Ties are broken by: full-day before half-day, then the sorted staff id
    pair, then date and period.

    Only staff_id fields change; no assignment is created or removed.
    """

    def __init__(self, reference: ReferenceData, config: Optional[OptimizerConfig] = None):
        self.reference = reference
        self.config = config or OptimizerConfig()
        self.weights = self.config.weights

    # -------------------------------------------------------------------------
    # Public API
    # -------------------------------------------------------------------------

    def refine(self, assignments: List[Assignment]) -> SwapResult:
        """
        Improve an assignment set in place.

        Args:
            assignments: Materialized or persisted assignments (mutated)

        Returns:
            SwapResult with applied swaps, gains and changed assignments
        """
        original = [a.staff_id for a in assignments]
        unknown = sorted({a.staff_id for a in assignments} - set(self.reference.staff))
        if unknown:
            logger.warning(f"Assignments for unknown staff are left untouched: {unknown}")

        result = SwapResult(initial_score=self.total_score(assignments))

        for iteration in range(1, self.config.max_swap_iterations + 1):
            result.iterations = iteration
            metrics = self.compute_metrics(assignments)
            best = self._best_move(assignments, metrics)
            if best is None:
                logger.info(f"Iteration {iteration}: no improving move, stopping")
                break

            applied = self._apply(assignments, best, iteration)
            result.swaps.append(applied)
            result.swap_count += 1
            result.total_gain += best.gain
            logger.info(
                f"Iteration {iteration}: {'full-day' if best.full_day else 'half-day'} swap "
                f"{applied.staff_a} <-> {applied.staff_b} on {applied.date}, gain {best.gain:,.1f}"
            )
        else:
            if self.config.max_swap_iterations:
                logger.info(f"Iteration cap reached ({self.config.max_swap_iterations})")

        result.final_score = self.total_score(assignments)
        result.final_assignment_count = len(assignments)
        result.changed = [
            a for a, staff_id in zip(assignments, original) if a.staff_id != staff_id
        ]
        logger.info(
            f"Swap refinement: {result.swap_count} swaps, gain {result.total_gain:,.1f}, "
            f"score {result.initial_score:,.1f} -> {result.final_score:,.1f}"
        )
        return result

    def total_score(self, assignments: Sequence[Assignment]) -> float:
        """Total score of an assignment set (sum over known staff)."""
        return sum(
            staff_total_score(self.reference.staff[sid], slots, self.reference, self.config)
            for sid, slots in self._slots_by_staff(assignments).items()
        )

    def compute_metrics(self, assignments: Sequence[Assignment]) -> Dict[str, StaffMetrics]:
        """Admin count, site-change days and undesirable-site count per staff."""
        return {
            sid: staff_metrics(self.reference.staff[sid], slots, self.config)[0]
            for sid, slots in self._slots_by_staff(assignments).items()
        }

    def candidate_moves(
        self,
        assignments: Sequence[Assignment],
        metrics: Dict[str, StaffMetrics],
    ) -> Iterator[SwapMove]:
        """
        Lazily enumerate eligible moves for the current assignment set.

        Yields full-day moves (problematic x normal staff) first, then
        half-day moves over every pair of staff sharing a half-day.
        """
        problematic = sorted(sid for sid, m in metrics.items() if m.is_problematic)
        normal = sorted(sid for sid, m in metrics.items() if not m.is_problematic)

        by_day: Dict[Tuple[str, date], Dict[Period, int]] = defaultdict(dict)
        by_slot: Dict[Tuple[date, Period], List[int]] = defaultdict(list)
        for idx, a in enumerate(assignments):
            if a.staff_id not in metrics:
                continue
            by_day[(a.staff_id, a.date)][a.period] = idx
            by_slot[(a.date, a.period)].append(idx)

        for day in self.reference.dates:
            for p_id in problematic:
                p_day = by_day.get((p_id, day))
                if not p_day or len(p_day) != 2:
                    continue
                for n_id in normal:
                    n_day = by_day.get((n_id, day))
                    if not n_day or len(n_day) != 2:
                        continue
                    pairs = tuple((p_day[p], n_day[p]) for p in (Period.MORNING, Period.AFTERNOON))
                    if all(self._both_admin(assignments, i, j) for i, j in pairs):
                        continue
                    if all(self._pair_allowed(assignments, i, j, full_day=True) for i, j in pairs):
                        yield SwapMove(pairs=pairs, full_day=True)

        for slot in sorted(by_slot, key=lambda s: slot_key(*s)):
            indices = sorted(by_slot[slot], key=lambda i: assignments[i].staff_id)
            for pos, i in enumerate(indices):
                for j in indices[pos + 1:]:
                    if self._pair_allowed(assignments, i, j):
                        yield SwapMove(pairs=((i, j),), full_day=False)

    def evaluate(
        self,
        assignments: Sequence[Assignment],
        move: SwapMove,
        own: Optional[Dict[str, List[int]]] = None,
        current: Optional[Dict[str, float]] = None,
    ) -> float:
        """
        Score delta of a move.

        Only the two staff involved change, so the delta of the total score
        is the delta of their two per-staff scores. A move that directly
        exchanges a theater role with a restricted-site assignment carries an
        extra fixed penalty.

        Args:
            assignments: Current assignment set
            move: Candidate move
            own: Optional staff id -> assignment indices, reused across moves
            current: Optional staff id -> current per-staff score
        """
        first_i, first_j = move.pairs[0]
        staff_a = assignments[first_i].staff_id
        staff_b = assignments[first_j].staff_id
        from_a = {i for i, _ in move.pairs}
        from_b = {j for _, j in move.pairs}

        if own is None:
            own = self._indices_by_staff(assignments)
        a, b = self.reference.staff[staff_a], self.reference.staff[staff_b]

        after_a = [self._slot(assignments[k]) for k in own[staff_a] if k not in from_a]
        after_a += [self._slot(assignments[k]) for k in sorted(from_b)]
        after_b = [self._slot(assignments[k]) for k in own[staff_b] if k not in from_b]
        after_b += [self._slot(assignments[k]) for k in sorted(from_a)]

        if current is not None:
            before = current[staff_a] + current[staff_b]
        else:
            before = (
                self._staff_score(a, [self._slot(assignments[k]) for k in own[staff_a]])
                + self._staff_score(b, [self._slot(assignments[k]) for k in own[staff_b]])
            )
        gain = self._staff_score(a, after_a) + self._staff_score(b, after_b) - before
        for i, j in move.pairs:
            if self._is_restricted_exchange(assignments[i].demand, assignments[j].demand):
                gain -= self.weights.restricted_exchange_penalty
        return gain

    # -------------------------------------------------------------------------
    # Internals
    # -------------------------------------------------------------------------

    def _best_move(
        self,
        assignments: Sequence[Assignment],
        metrics: Dict[str, StaffMetrics],
    ) -> Optional[SwapMove]:
        own = self._indices_by_staff(assignments)
        current = {
            sid: self._staff_score(self.reference.staff[sid], [self._slot(assignments[k]) for k in idx])
            for sid, idx in own.items()
        }

        best: Optional[SwapMove] = None
        best_key = None
        for move in self.candidate_moves(assignments, metrics):
            move.gain = self.evaluate(assignments, move, own=own, current=current)
            if move.gain <= MIN_GAIN:
                continue
            key = self._tie_break_key(assignments, move)
            if best is None or key < best_key:
                best, best_key = move, key
        return best

    def _tie_break_key(self, assignments: Sequence[Assignment], move: SwapMove) -> Tuple:
        i, j = move.pairs[0]
        first = assignments[i]
        staff_pair = tuple(sorted((first.staff_id, assignments[j].staff_id)))
        period_order = -1 if move.full_day else first.period.order
        return (-round(move.gain, 6), 0 if move.full_day else 1, staff_pair, first.date, period_order)

    def _apply(self, assignments: List[Assignment], move: SwapMove, iteration: int) -> AppliedSwap:
        i, j = move.pairs[0]
        applied = AppliedSwap(
            iteration=iteration,
            staff_a=assignments[i].staff_id,
            staff_b=assignments[j].staff_id,
            date=assignments[i].date,
            period=None if move.full_day else assignments[i].period,
            full_day=move.full_day,
            gain=move.gain,
        )
        for i, j in move.pairs:
            assignments[i].staff_id, assignments[j].staff_id = (
                assignments[j].staff_id,
                assignments[i].staff_id,
            )
        return applied

    def _pair_allowed(
        self,
        assignments: Sequence[Assignment],
        i: int,
        j: int,
        full_day: bool = False,
    ) -> bool:
        x, y = assignments[i], assignments[j]
        if x.staff_id == y.staff_id:
            return False
        if self._both_admin(assignments, i, j):
            # identity exchange: harmless inside a full-day move, pointless alone
            return full_day
        if x.demand == y.demand:
            return full_day

        staff_x = self.reference.staff[x.staff_id]
        staff_y = self.reference.staff[y.staff_id]
        if self._is_anchored(staff_x, x) or self._is_anchored(staff_y, y):
            return False
        return self._can_take(staff_y, x) and self._can_take(staff_x, y)

    @staticmethod
    def _both_admin(assignments: Sequence[Assignment], i: int, j: int) -> bool:
        return isinstance(assignments[i].demand, AdminDemand) and isinstance(
            assignments[j].demand, AdminDemand
        )

    def _can_take(self, staff: Staff, assignment: Assignment) -> bool:
        """Whether staff may hold this assignment (competency, preference, exclusions)."""
        demand = assignment.demand
        if isinstance(demand, TheaterDemand):
            if not staff.has_competency(demand.role_id):
                return False
        elif isinstance(demand, SiteDemand):
            if staff.site_rank(demand.site_id) is None:
                return False
        elif isinstance(demand, AdminDemand):
            return True
        else:
            raise OptimizationError(
                f"Unknown demand kind: {type(demand).__name__}", details={"demand": repr(demand)}
            )

        doctors = self.reference.doctors_for_assignment(assignment)
        return not any(self.config.is_excluded(staff.id, doc) for doc in doctors)

    def _is_anchored(self, staff: Staff, assignment: Assignment) -> bool:
        """Staff on a site next to a rank-1/2 preferred doctor are not moved away."""
        if not isinstance(assignment.demand, SiteDemand):
            return False
        doctors = self.reference.doctors_at(
            assignment.demand.site_id, assignment.date, assignment.period
        )
        return any((staff.doctor_rank(doc) or 99) <= 2 for doc in doctors)

    def _is_restricted_exchange(self, x: Demand, y: Demand) -> bool:
        def restricted(d: Demand) -> bool:
            return isinstance(d, SiteDemand) and self.config.is_restricted(d.site_id)

        return (isinstance(x, TheaterDemand) and restricted(y)) or (
            isinstance(y, TheaterDemand) and restricted(x)
        )

    def _staff_score(self, staff: Staff, slots: List[SlotTuple]) -> float:
        return staff_total_score(staff, slots, self.reference, self.config)

    @staticmethod
    def _slot(assignment: Assignment) -> SlotTuple:
        return (assignment.demand, assignment.date, assignment.period)

    def _slots_by_staff(self, assignments: Sequence[Assignment]) -> Dict[str, List[SlotTuple]]:
        grouped: Dict[str, List[SlotTuple]] = defaultdict(list)
        for a in assignments:
            if a.staff_id in self.reference.staff:
                grouped[a.staff_id].append(self._slot(a))
        return dict(grouped)

    def _indices_by_staff(self, assignments: Sequence[Assignment]) -> Dict[str, List[int]]:
        own: Dict[str, List[int]] = defaultdict(list)
        for idx, a in enumerate(assignments):
            if a.staff_id in self.reference.staff:
                own[a.staff_id].append(idx)
        return dict(own)

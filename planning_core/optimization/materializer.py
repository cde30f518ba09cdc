# =============================================================================
# planning_core/optimization/materializer.py
# Solution Materializer
# Turns solved 0/1 variables back into assignment records
# =============================================================================

from __future__ import annotations
from typing import List, Optional

from planning_core.logging import get_logger
from .constraint_config import OptimizerConfig
from .milp_solver import SolverOutcome
from .model_builder import AssignmentModel
from .scoring import RunContext
from .types import Assignment, ReferenceData, slot_key

logger = get_logger(__name__)

SELECTION_THRESHOLD = 0.5


class SolutionMaterializer:
    """Translate a solver outcome into Assignment records."""

    def __init__(self, config: Optional[OptimizerConfig] = None):
        self.config = config or OptimizerConfig()

    def materialize(
        self,
        model: AssignmentModel,
        outcome: SolverOutcome,
        reference: ReferenceData,
        context: Optional[RunContext] = None,
    ) -> List[Assignment]:
        """
        Build assignments from every candidate valued >= 0.5.

        Args:
            model: The solved model
            outcome: Solver outcome for that model
            reference: Reference data of the run
            context: Run context; progressive-penalty counters are updated

        Returns:
            Assignments sorted by (date, period, staff id); empty if infeasible
        """
        if not outcome.feasible:
            logger.warning("Infeasible outcome: no staff assignments materialized")
            return []

        context = context if context is not None else RunContext()
        assignments = []
        for name, candidate in model.candidates.items():
            if outcome.value(name) < SELECTION_THRESHOLD:
                continue
            assignment = Assignment(
                staff_id=candidate.staff_id,
                demand=candidate.demand,
                date=candidate.date,
                period=candidate.period,
            )
            assignments.append(assignment)
            context.record(reference.staff[candidate.staff_id], assignment, self.config)

        assignments.sort(key=lambda a: (slot_key(a.date, a.period), a.staff_id))

        counts = {}
        for a in assignments:
            counts[a.kind.value] = counts.get(a.kind.value, 0) + 1
        logger.info(f"Materialized {len(assignments)} assignments: {counts}")
        logger.debug(f"Progressive counters: {context.to_dict()}")
        return assignments

# =============================================================================
# planning_core/optimization/milp_solver.py
# MILP Solver Invocation (PuLP / CBC)
# Feasibility flag, objective and 0/1 values for a built assignment model
# =============================================================================

from __future__ import annotations
import time
from dataclasses import dataclass, field
from typing import Any, Dict, Optional

import pulp

from planning_core.logging import get_logger
from .model_builder import AssignmentModel

logger = get_logger(__name__)

FEASIBLE_SOLUTION_STATUSES = (pulp.LpSolutionOptimal, pulp.LpSolutionIntegerFeasible)


# =============================================================================
# SOLVER OUTCOME
# =============================================================================

@dataclass
class SolverOutcome:
    """Container for solver results."""

    feasible: bool = False
    status: str = "Not Solved"
    is_optimal: bool = False
    objective: Optional[float] = None
    values: Dict[str, float] = field(default_factory=dict)
    solve_time: float = 0.0

    def value(self, name: str) -> float:
        return self.values.get(name) or 0.0

    def get_summary(self) -> Dict[str, Any]:
        """Get summary statistics."""
        return {
            "Status": self.status,
            "Feasible": self.feasible,
            "Is Optimal": self.is_optimal,
            "Objective": round(self.objective, 2) if self.objective is not None else None,
            "Solve Time": f"{self.solve_time:.3f}s",
        }


# =============================================================================
# SOLVER
# =============================================================================

class MilpSolver:
    """
    Thin wrapper around PuLP's bundled CBC solver.

    Solver failures are reported as an infeasible outcome, never raised:
    a run without staff assignments is still a valid (partial) result.
    """

    def __init__(self, time_limit: int = 60, gap: float = 0.01, msg: bool = False):
        """
        Args:
            time_limit: Maximum solve time in seconds
            gap: Relative optimality gap
            msg: Show CBC output
        """
        self.time_limit = time_limit
        self.gap = gap
        self.msg = msg

    def solve(self, model: AssignmentModel) -> SolverOutcome:
        """
        Solve a built model.

        Args:
            model: Output of AssignmentModelBuilder.build

        Returns:
            SolverOutcome with feasibility, objective and variable values
        """
        outcome = SolverOutcome()

        if not model.candidates:
            outcome.feasible = model.num_constraints == 0
            outcome.is_optimal = outcome.feasible
            outcome.status = "Optimal" if outcome.feasible else "Infeasible"
            outcome.objective = 0.0 if outcome.feasible else None
            logger.info("No candidate variables; solver not invoked")
            return outcome

        solver = pulp.PULP_CBC_CMD(timeLimit=self.time_limit, gapRel=self.gap, msg=self.msg)
        start = time.time()
        try:
            model.problem.solve(solver)
        except pulp.PulpSolverError as e:
            outcome.solve_time = time.time() - start
            outcome.status = f"Solver error: {e}"
            logger.error(f"CBC failed: {e}")
            return outcome
        outcome.solve_time = time.time() - start

        outcome.status = pulp.LpStatus[model.problem.status]
        outcome.feasible = model.problem.sol_status in FEASIBLE_SOLUTION_STATUSES
        outcome.is_optimal = model.problem.sol_status == pulp.LpSolutionOptimal

        if outcome.feasible:
            outcome.objective = pulp.value(model.problem.objective) or 0.0
            outcome.values = {
                v.name: v.varValue for v in model.problem.variables() if v.varValue is not None
            }
            logger.info(
                f"Solve finished: {outcome.status}, objective {outcome.objective:,.0f} "
                f"in {outcome.solve_time:.2f}s"
            )
        else:
            logger.warning(f"Solve finished without a feasible solution: {outcome.status}")

        return outcome

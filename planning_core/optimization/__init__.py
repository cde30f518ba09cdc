# =============================================================================
# planning_core/optimization/__init__.py
# Staff Planning Optimization Module
# =============================================================================
"""
Staff planning optimization.

Pipeline:
    RoomAllocator -> AssignmentModelBuilder -> MilpSolver
    -> SolutionMaterializer, then SwapRefinementEngine as a separate pass.
"""

# Domain types
from .types import (
    FULL_DAY,
    Period,
    AssignmentKind,
    expand_periods,
    iso_week,
    Staff,
    Site,
    Availability,
    Absence,
    InterventionType,
    RoleRequirement,
    MultiFlowEntry,
    MultiFlowConfig,
    Procedure,
    DoctorNeed,
    TheaterDemand,
    SiteDemand,
    AdminDemand,
    Demand,
    Assignment,
    RoomAssignment,
    ReferenceData,
)

# Configuration
from .score_weights import ScoreWeights, DEFAULT_SCORE_WEIGHTS
from .constraint_config import OptimizerConfig, DEFAULT_OPTIMIZER_CONFIG, DEFAULT_ROOMS

# Scoring
from .scoring import RunContext, StaffMetrics, demand_score, staff_total_score

# Pipeline components
from .room_allocator import RoomAllocator, RoomAllocation
from .model_builder import AssignmentModelBuilder, AssignmentModel, Candidate, TheaterUnit
from .milp_solver import MilpSolver, SolverOutcome
from .materializer import SolutionMaterializer
from .swap_engine import SwapRefinementEngine, SwapMove, SwapResult, AppliedSwap

# Analysis
from .solution_analyzer import SolutionAnalyzer, InvariantReport

__all__ = [
    # Types
    "FULL_DAY",
    "Period",
    "AssignmentKind",
    "expand_periods",
    "iso_week",
    "Staff",
    "Site",
    "Availability",
    "Absence",
    "InterventionType",
    "RoleRequirement",
    "MultiFlowEntry",
    "MultiFlowConfig",
    "Procedure",
    "DoctorNeed",
    "TheaterDemand",
    "SiteDemand",
    "AdminDemand",
    "Demand",
    "Assignment",
    "RoomAssignment",
    "ReferenceData",
    # Configuration
    "ScoreWeights",
    "DEFAULT_SCORE_WEIGHTS",
    "OptimizerConfig",
    "DEFAULT_OPTIMIZER_CONFIG",
    "DEFAULT_ROOMS",
    # Scoring
    "RunContext",
    "StaffMetrics",
    "demand_score",
    "staff_total_score",
    # Pipeline
    "RoomAllocator",
    "RoomAllocation",
    "AssignmentModelBuilder",
    "AssignmentModel",
    "Candidate",
    "TheaterUnit",
    "MilpSolver",
    "SolverOutcome",
    "SolutionMaterializer",
    "SwapRefinementEngine",
    "SwapMove",
    "SwapResult",
    "AppliedSwap",
    # Analysis
    "SolutionAnalyzer",
    "InvariantReport",
]

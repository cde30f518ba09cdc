# =============================================================================
# planning_core/services/__init__.py
# Service Layer for the Planning Optimizer
# =============================================================================
"""
Service layer: runs the planning pipeline and reports results as
ServiceResult objects.

Usage Example:
-------------
    from planning_core.data import get_supabase_client
    from planning_core.services import build_planning_service

    service = build_planning_service(get_supabase_client())
    result = service.run_optimization(["2024-03-11", "2024-03-12"])
    if not result:
        print(result.error_code, result.error)
    elif not result.data.feasible:
        print("Infeasible: rooms kept, no staff assigned")
"""

from .base_service import BaseService, ServiceResult
from .planning_service import (
    DateRangeGuard,
    PlanningService,
    RunSummary,
    SwapSummary,
    build_planning_service,
    parse_dates,
)

__all__ = [
    # Base
    "BaseService",
    "ServiceResult",
    # Planning
    "PlanningService",
    "RunSummary",
    "SwapSummary",
    "DateRangeGuard",
    "build_planning_service",
    "parse_dates",
]

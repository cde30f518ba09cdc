# =============================================================================
# planning_core/__init__.py
# Staff Planning Optimization Core
# =============================================================================
"""
Staff planning optimization core.

Assigns secretarial staff to operating-theater roles, clinical-site shifts
and administrative fallback duty over a set of dates and half-day periods,
then refines the result with a swap-based local search.

Usage:
    from planning_core.data import get_supabase_client
    from planning_core.services import build_planning_service

    service = build_planning_service(get_supabase_client())
    result = service.run_optimization(["2024-03-11", "2024-03-12"])
    if result.success:
        print(result.data.to_dict())
"""

__version__ = "1.0.0"

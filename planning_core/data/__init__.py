# =============================================================================
# planning_core/data/__init__.py
# Data Access Layer (Supabase)
# =============================================================================

from .supabase_client import (
    SupabaseService,
    get_supabase_client,
    load_credentials,
)
from .reference_loader import ReferenceDataLoader
from .planning_repository import PlanningRepository, iso_week_bounds

__all__ = [
    # Client
    "SupabaseService",
    "get_supabase_client",
    "load_credentials",
    # Loaders / repositories
    "ReferenceDataLoader",
    "PlanningRepository",
    "iso_week_bounds",
]

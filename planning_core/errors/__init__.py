# =============================================================================
# planning_core/errors/__init__.py
# Centralized Error Handling for the Planning Optimizer
# =============================================================================

from .exceptions import (
    PlanningError,
    DataValidationError,
    DataLoadError,
    DataWriteError,
    OptimizationError,
    PlanningConflictError,
    ConfigurationError,
)

from .handlers import (
    handle_error,
    ErrorContext,
    error_boundary,
)

__all__ = [
    # Exceptions
    "PlanningError",
    "DataValidationError",
    "DataLoadError",
    "DataWriteError",
    "OptimizationError",
    "PlanningConflictError",
    "ConfigurationError",
    # Handlers
    "handle_error",
    "ErrorContext",
    "error_boundary",
]

# =============================================================================
# planning_core/errors/handlers.py
# Error Handling Utilities for the Planning Optimizer
# =============================================================================

from __future__ import annotations
import functools
import traceback
from typing import Optional, Callable, TypeVar, Any

from planning_core.logging import get_logger
from .exceptions import PlanningError

logger = get_logger(__name__)

T = TypeVar("T")


def handle_error(
    error: Exception,
    log_error: bool = True,
    message: Optional[str] = None,
) -> dict:
    """
    Centralized error handling function.

    Args:
        error: The exception to handle
        log_error: Whether to log the error
        message: Custom message (uses the error message if None)

    Returns:
        Serializable description of the error
    """
    if isinstance(error, PlanningError):
        payload = error.to_dict()
        if message:
            payload["message"] = message
    else:
        payload = {
            "error_type": error.__class__.__name__,
            "code": "UNKNOWN",
            "message": message or str(error),
            "details": {"traceback": traceback.format_exc()},
            "recoverable": True,
        }

    if log_error:
        level = "error" if payload["recoverable"] else "critical"
        getattr(logger, level)(
            f"[{payload['code']}] {payload['message']}",
            extra={"details": payload["details"]},
            exc_info=error,
        )

    return payload


class ErrorContext:
    """
    Context manager for error handling with automatic logging.

    Usage:
        with ErrorContext("Persisting swap results", recoverable=False):
            repository.update_staff_ids(changed)
    """

    def __init__(self, operation: str, recoverable: bool = True):
        self.operation = operation
        self.recoverable = recoverable
        self.error: Optional[BaseException] = None

    def __enter__(self) -> ErrorContext:
        logger.info(f"Starting: {self.operation}")
        return self

    def __exit__(self, exc_type, exc_val, exc_tb) -> bool:
        if exc_type is None:
            logger.info(f"Completed: {self.operation}")
            return False

        if not isinstance(exc_val, Exception):
            return False

        self.error = exc_val
        if isinstance(exc_val, PlanningError):
            handle_error(exc_val)
        else:
            handle_error(exc_val, message=f"Error during: {self.operation}")

        # Suppress exception only if recoverable
        if isinstance(exc_val, PlanningError) and not exc_val.recoverable:
            return False
        return self.recoverable


def error_boundary(
    default_return: Any = None,
    error_message: Optional[str] = None,
    log: bool = True,
):
    """
    Decorator to wrap functions with error handling.

    Args:
        default_return: Value to return if function fails
        error_message: Custom error message
        log: Whether to log errors

    Usage:
        @error_boundary(default_return=[], error_message="Summary export failed")
        def export_summary(result) -> List[dict]:
            ...
    """
    def decorator(func: Callable[..., T]) -> Callable[..., Optional[T]]:
        @functools.wraps(func)
        def wrapper(*args, **kwargs) -> Optional[T]:
            try:
                return func(*args, **kwargs)
            except Exception as e:
                if log:
                    handle_error(e, message=error_message or f"Error in {func.__name__}: {e}")
                return default_return

        return wrapper

    return decorator

# =============================================================================
# planning_core/services/base_service.py
# Base Service Class and Result Container
# =============================================================================

from __future__ import annotations
from abc import ABC
from dataclasses import dataclass, field
from typing import Any, Callable, ClassVar, Dict, Optional

from planning_core.errors import PlanningError, handle_error
from planning_core.logging import LogContext, get_logger


@dataclass
class ServiceResult:
    """
    Result of a planning service call.

    A call ends in one of three outcomes:
        completed   success, the run produced its full result
        infeasible  success, rooms were kept but no staff could be assigned
        failed      no result; error and error_code say why

    The outcome and the run facts behind it (planning id, status, timings)
    live in metadata, so callers can branch without opening data.
    """

    COMPLETED: ClassVar[str] = "completed"
    INFEASIBLE: ClassVar[str] = "infeasible"
    FAILED: ClassVar[str] = "failed"

    success: bool
    data: Optional[Any] = None
    error: Optional[str] = None
    error_code: Optional[str] = None
    metadata: Dict[str, Any] = field(default_factory=dict)

    def __bool__(self) -> bool:
        return self.success

    @property
    def outcome(self) -> str:
        if not self.success:
            return self.FAILED
        return self.metadata.get("outcome", self.COMPLETED)

    @property
    def recoverable(self) -> bool:
        """Whether retrying the same call can succeed (failed results only)."""
        return self.metadata.get("recoverable", True)

    @classmethod
    def ok(cls, data: Any = None, **metadata: Any) -> ServiceResult:
        return cls(success=True, data=data, metadata=metadata)

    @classmethod
    def fail(cls, error: str, error_code: str = "UNKNOWN", **metadata: Any) -> ServiceResult:
        return cls(success=False, error=error, error_code=error_code, metadata=metadata)

    @classmethod
    def from_exception(cls, e: Exception, operation: Optional[str] = None) -> ServiceResult:
        """Failed result carrying a planning error's code, details and recoverability."""
        metadata: Dict[str, Any] = {}
        if operation:
            metadata["operation"] = operation
        if isinstance(e, PlanningError):
            metadata.update(details=e.details, recoverable=e.recoverable)
            return cls.fail(e.message, error_code=e.code, **metadata)
        return cls.fail(str(e), error_code="EXCEPTION", recoverable=False, **metadata)


class BaseService(ABC):
    """
    Base class for planning services: logger, progress callback and the
    exception-to-result boundary.

    Usage:
        class PlanningService(BaseService):
            def run_optimization(self, dates) -> ServiceResult:
                return self.safe_execute(
                    "Planning optimization run", self._run, dates,
                    describe=lambda summary: {"outcome": ...},
                )
    """

    def __init__(self):
        self.logger = get_logger(self.__class__.__name__)
        self._progress_callback: Optional[Callable[[int, str], None]] = None

    def set_progress_callback(self, callback: Callable[[int, str], None]) -> None:
        """
        Args:
            callback: Function that takes (percentage: int, message: str)
        """
        self._progress_callback = callback

    def _update_progress(self, percentage: int, message: str = "") -> None:
        if self._progress_callback:
            self._progress_callback(percentage, message)

    def log_operation(self, operation: str) -> LogContext:
        """
        Create a timing context for one pipeline step.

        Usage:
            with self.log_operation("Solving assignment model"):
                outcome = solver.solve(model)
        """
        return LogContext(self.logger, operation)

    def safe_execute(
        self,
        operation: str,
        func: Callable[..., Any],
        *args,
        describe: Optional[Callable[[Any], Dict[str, Any]]] = None,
        **kwargs,
    ) -> ServiceResult:
        """
        Run func and turn its return value or exception into a ServiceResult.

        Args:
            operation: Description used in logs and result metadata
            func: Function to execute
            *args, **kwargs: Arguments to pass to func
            describe: Maps func's return value to extra metadata
                (e.g. {"outcome": "infeasible", "status": ...})

        Returns:
            ServiceResult; metadata always holds the operation name
        """
        context = self.log_operation(operation)
        try:
            with context:
                data = func(*args, **kwargs)
        except PlanningError as e:
            handle_error(e)
            return ServiceResult.from_exception(e, operation=operation)
        except Exception as e:
            handle_error(e, message=f"{operation} failed: {e}")
            return ServiceResult.from_exception(e, operation=operation)

        metadata: Dict[str, Any] = {"operation": operation, "elapsed": round(context.elapsed, 3)}
        if describe is not None:
            metadata.update(describe(data))
        return ServiceResult.ok(data, **metadata)

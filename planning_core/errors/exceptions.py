# =============================================================================
# planning_core/errors/exceptions.py
# Custom Exception Hierarchy for the Planning Optimizer
# =============================================================================

from typing import Optional, Dict, Any, List


class PlanningError(Exception):
    """
    Base exception for all planning optimizer errors.

    Attributes:
        message: Human-readable error description
        code: Machine-readable error code (e.g., "DATA_001")
        details: Additional context as a dictionary
        recoverable: Whether the error can be recovered from
    """

    def __init__(
        self,
        message: str,
        code: Optional[str] = None,
        details: Optional[Dict[str, Any]] = None,
        recoverable: bool = True,
    ):
        super().__init__(message)
        self.message = message
        self.code = code or "PLAN_000"
        self.details = details or {}
        self.recoverable = recoverable

    def __str__(self) -> str:
        base = f"[{self.code}] {self.message}"
        if self.details:
            base += f" | Details: {self.details}"
        return base

    def to_dict(self) -> Dict[str, Any]:
        """Convert exception to dictionary for logging/serialization"""
        return {
            "error_type": self.__class__.__name__,
            "code": self.code,
            "message": self.message,
            "details": self.details,
            "recoverable": self.recoverable,
        }


# =============================================================================
# DATA LAYER EXCEPTIONS
# =============================================================================

class DataValidationError(PlanningError):
    """Raised when an input record is malformed"""

    def __init__(
        self,
        message: str,
        table: Optional[str] = None,
        column: Optional[str] = None,
        value: Optional[Any] = None,
        **kwargs,
    ):
        details = kwargs.pop("details", {})
        if table:
            details["table"] = table
        if column:
            details["column"] = column
        if value is not None:
            details["value"] = value

        super().__init__(
            message=message,
            code="DATA_001",
            details=details,
            **kwargs,
        )


class DataLoadError(PlanningError):
    """Raised when reading from the data store fails"""

    def __init__(
        self,
        message: str,
        table: Optional[str] = None,
        **kwargs,
    ):
        details = kwargs.pop("details", {})
        if table:
            details["table"] = table

        super().__init__(
            message=message,
            code="DATA_002",
            details=details,
            recoverable=False,
            **kwargs,
        )


class DataWriteError(PlanningError):
    """Raised when writing to the data store fails"""

    def __init__(
        self,
        message: str,
        table: Optional[str] = None,
        rows: Optional[int] = None,
        **kwargs,
    ):
        details = kwargs.pop("details", {})
        if table:
            details["table"] = table
        if rows is not None:
            details["rows"] = rows

        super().__init__(
            message=message,
            code="DATA_003",
            details=details,
            recoverable=False,
            **kwargs,
        )


# =============================================================================
# OPTIMIZATION EXCEPTIONS
# =============================================================================

class OptimizationError(PlanningError):
    """Raised when the assignment model cannot be built or read back"""

    def __init__(
        self,
        message: str,
        solver: Optional[str] = None,
        status: Optional[str] = None,
        constraints_violated: Optional[List[str]] = None,
        **kwargs,
    ):
        details = kwargs.pop("details", {})
        if solver:
            details["solver"] = solver
        if status:
            details["status"] = status
        if constraints_violated:
            details["constraints_violated"] = constraints_violated

        super().__init__(
            message=message,
            code="OPT_001",
            details=details,
            **kwargs,
        )


class PlanningConflictError(PlanningError):
    """Raised when a run targets dates another run is already writing"""

    def __init__(
        self,
        message: str,
        dates: Optional[List[str]] = None,
        **kwargs,
    ):
        details = kwargs.pop("details", {})
        if dates:
            details["dates"] = dates

        super().__init__(
            message=message,
            code="OPT_002",
            details=details,
            **kwargs,
        )


# =============================================================================
# CONFIGURATION EXCEPTIONS
# =============================================================================

class ConfigurationError(PlanningError):
    """Raised when configuration is invalid or missing"""

    def __init__(
        self,
        message: str,
        config_key: Optional[str] = None,
        expected_type: Optional[str] = None,
        **kwargs,
    ):
        details = kwargs.pop("details", {})
        if config_key:
            details["config_key"] = config_key
        if expected_type:
            details["expected_type"] = expected_type

        super().__init__(
            message=message,
            code="CONFIG_001",
            details=details,
            recoverable=False,
            **kwargs,
        )

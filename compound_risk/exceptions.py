"""
Exceptions of the Compound Risk service
Every service error carries a code, a message and a details dict that the
API layer renders as {code, message, details}
"""

from typing import Any, Dict, List, Optional

from pydantic import BaseModel


class ValidationError(BaseModel):
    """
    One problem found in a submitted formulation

    Attributes:
        code: Stable identifier such as 'duplicate_ingredient'
        message: Explanation for the pharmacist
        ingredient: Offending ingredient, if the problem is ingredient-specific
        field: Path of the offending field, e.g. 'ingredients[2].quantity'
        suggestion: How to fix the formulation
        context: Extra values for programmatic consumers
    """

    code: str
    message: str
    ingredient: Optional[str] = None
    field: Optional[str] = None
    suggestion: Optional[str] = None
    context: Optional[Dict[str, Any]] = None

    def __str__(self) -> str:
        parts = [f"[{self.code}] {self.message}"]
        if self.ingredient:
            parts.append(f"Ingredient: {self.ingredient}")
        if self.field:
            parts.append(f"Field: {self.field}")
        if self.suggestion:
            parts.append(f"Suggestion: {self.suggestion}")
        return " | ".join(parts)


class AssessmentError(Exception):
    """
    Base exception of the service

    Attributes:
        code: Stable machine-readable error code
        message: Human-readable description
        details: JSON-serializable context
    """

    def __init__(
        self, code: str, message: str, details: Optional[Dict[str, Any]] = None
    ):
        self.code = code
        self.message = message
        self.details = details or {}
        super().__init__(self.message)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "code": self.code,
            "message": self.message,
            "details": self.details,
        }

    def __str__(self) -> str:
        return f"[{self.code}] {self.message}"


# ============================================================================
# Source failures (absorbed by the fallback orchestrator)
# ============================================================================


class SourceError(AssessmentError):
    """
    A single hazard data source failed to produce a record

    Attributes:
        source: Name of the failing source or guarded operation
    """

    def __init__(
        self,
        code: str,
        message: str,
        source: Optional[str] = None,
        details: Optional[Dict[str, Any]] = None,
    ):
        self.source = source
        merged = dict(details or {})
        if source:
            merged["source"] = source
        super().__init__(code=code, message=message, details=merged)


class TransientSourceError(SourceError):
    """Network-level or malformed-response failure; the next source is tried"""

    def __init__(
        self,
        message: str,
        source: Optional[str] = None,
        details: Optional[Dict[str, Any]] = None,
        code: str = "transient_source_error",
    ):
        super().__init__(code=code, message=message, source=source, details=details)


class SourceTimeoutError(TransientSourceError):
    """A time-bounded source attempt did not finish in time"""

    def __init__(self, source: Optional[str], timeout: float):
        self.timeout = timeout
        super().__init__(
            message=f"Operation timed out after {timeout:g}s",
            source=source,
            details={"timeout_seconds": timeout},
            code="source_timeout",
        )


class CircuitOpenError(SourceError):
    """
    Raised when a circuit breaker is open and rejecting calls

    Attributes:
        recovery_time: Seconds until the breaker allows a trial call
    """

    def __init__(self, source: str, recovery_time: float):
        self.recovery_time = recovery_time
        super().__init__(
            code="circuit_open",
            message=(
                f"Circuit breaker open for {source}. "
                f"Recovery in {recovery_time:.1f}s"
            ),
            source=source,
            details={"recovery_time_seconds": round(recovery_time, 1)},
        )


class SourceDataNotFoundError(SourceError):
    """The source answered but holds no record for the identifier"""

    def __init__(self, source: str, identifier: str):
        self.identifier = identifier
        super().__init__(
            code="source_data_not_found",
            message=f"No {source} data available for '{identifier}'",
            source=source,
            details={"identifier": identifier},
        )


# ============================================================================
# Input, persistence and aggregation failures
# ============================================================================


class FormulationValidationError(AssessmentError):
    """
    Structurally invalid compound formulation, rejected before any lookup

    Attributes:
        errors: Individual validation errors
    """

    def __init__(self, errors: List[ValidationError]):
        self.errors = errors
        message = "; ".join(error.message for error in errors) or "Invalid formulation"
        super().__init__(
            code="invalid_formulation",
            message=message,
            details={"errors": [error.model_dump() for error in errors]},
        )


class QuotaExceededError(AssessmentError):
    """Persistence backend refused a snapshot because it is full"""

    def __init__(self, message: str, details: Optional[Dict[str, Any]] = None):
        super().__init__(code="quota_exceeded", message=message, details=details)


class InsufficientDataError(AssessmentError):
    """
    Too few sources succeeded in a parallel lookup

    Reported through ``FallbackResult.errors``; never raised to callers.
    """

    def __init__(self, context: str, success_rate: float, min_success_rate: float):
        self.success_rate = success_rate
        self.min_success_rate = min_success_rate
        super().__init__(
            code="insufficient_data",
            message=(
                f"{context}: only {round(success_rate * 100)}% of sources succeeded, "
                f"{round(min_success_rate * 100)}% required"
            ),
            details={
                "success_rate": success_rate,
                "min_success_rate": min_success_rate,
            },
        )

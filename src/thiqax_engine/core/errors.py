"""Error kinds raised by the application engine."""

from typing import Any, Dict, Optional, TYPE_CHECKING

if TYPE_CHECKING:
    from thiqax_engine.core.models import EligibilityVerdict


class EngineError(Exception):
    """Base exception for the application engine."""

    retryable = False

    def __init__(
        self,
        message: str,
        error_code: Optional[str] = None,
        details: Optional[Dict[str, Any]] = None,
        cause: Optional[BaseException] = None
    ):
        self.message = message
        self.error_code = error_code or self.__class__.__name__
        self.details = details or {}
        self.cause = cause
        super().__init__(self.message)

    def to_dict(self) -> Dict[str, Any]:
        """Convert exception to dictionary for logging/response."""
        result = {
            "error_type": self.__class__.__name__,
            "error_code": self.error_code,
            "message": self.message,
            "retryable": self.retryable,
            "details": self.details
        }
        if self.cause:
            result["cause"] = str(self.cause)
        return result


class NotFoundError(EngineError):
    """Raised when a job, profile, application or document id does not resolve."""

    def __init__(self, entity: str, entity_id: str, **kwargs):
        details = kwargs.pop("details", {})
        details.update({"entity": entity, "entity_id": entity_id})
        super().__init__(
            f"{entity.capitalize()} not found: {entity_id}",
            error_code="NOT_FOUND",
            details=details,
            **kwargs
        )
        self.entity = entity
        self.entity_id = entity_id


class IneligibleError(EngineError):
    """Raised when an application is refused; carries the full verdict."""

    def __init__(self, verdict: "EligibilityVerdict", **kwargs):
        super().__init__(
            "Job seeker is not eligible to apply",
            error_code="INELIGIBLE",
            details={
                "missing_requirements": list(verdict.missing_requirements),
                "reasons": list(verdict.reasons),
            },
            **kwargs
        )
        self.verdict = verdict


class ConflictError(EngineError):
    """Raised for a duplicate application or a lost concurrent write."""

    retryable = True

    def __init__(self, message: str, **kwargs):
        super().__init__(message, error_code="CONFLICT", **kwargs)


class InvalidTransitionError(EngineError):
    """Raised when a requested status change is not permitted."""

    def __init__(self, message: str, current: Optional[str] = None, target: Optional[str] = None, **kwargs):
        details = kwargs.pop("details", {})
        if current is not None:
            details["current_status"] = current
        if target is not None:
            details["target_status"] = target
        super().__init__(message, error_code="INVALID_TRANSITION", details=details, **kwargs)


class VersionConflictError(EngineError):
    """Raised when an optimistic-lock version check fails."""

    retryable = True

    def __init__(self, application_id: str, expected_version: int, actual_version: int, **kwargs):
        super().__init__(
            f"Application {application_id} changed concurrently "
            f"(expected version {expected_version}, found {actual_version})",
            error_code="VERSION_CONFLICT",
            details={
                "application_id": application_id,
                "expected_version": expected_version,
                "actual_version": actual_version,
            },
            **kwargs
        )
        self.application_id = application_id
        self.expected_version = expected_version
        self.actual_version = actual_version


class UpstreamUnavailableError(EngineError):
    """Raised when a collaborator store or dispatcher times out or errors."""

    retryable = True

    def __init__(self, message: str, operation: Optional[str] = None, **kwargs):
        details = kwargs.pop("details", {})
        if operation:
            details["operation"] = operation
        super().__init__(message, error_code="UPSTREAM_UNAVAILABLE", details=details, **kwargs)


class InvalidArgumentError(EngineError):
    """Raised when an operation argument is out of range."""

    def __init__(self, message: str, argument: Optional[str] = None, **kwargs):
        details = kwargs.pop("details", {})
        if argument is not None:
            details["argument"] = argument
        super().__init__(message, error_code="INVALID_ARGUMENT", details=details, **kwargs)

"""Error taxonomy for the decision engine and the standard API error body.

Domain errors:
- ValidationError: caller-supplied input violates a precondition; never
  reaches the reasoning provider.
- AnalysisContractError: the provider reply is unparsable or fails schema
  validation; nothing is applied to the decision.
- ProviderUnavailableError: network or provider failure.
- StateError: an illegal lifecycle or session transition.

Error response format:
{
    "error": "StateError",
    "message": "Cannot record an outcome for a decision in status DRAFT",
    "details": {"status": "DRAFT"},
    "request_id": "abc-123-def-456",
    "timestamp": "2026-01-29T12:00:00Z",
    "path": "/api/decisions/123/outcome"
}
"""

from datetime import UTC, datetime
from typing import Any, Optional

from pydantic import BaseModel, Field


class DecisionEngineError(Exception):
    """Base class for all decision engine errors."""

    error_type = "InternalError"

    def __init__(self, message: str, details: Optional[dict[str, Any]] = None):
        self.message = message
        self.details = details or {}
        super().__init__(message)


class ValidationError(DecisionEngineError, ValueError):
    """Raised when caller input violates a precondition."""

    error_type = "ValidationError"


class AnalysisContractError(DecisionEngineError):
    """Raised when a provider reply fails schema validation or cannot be parsed."""

    error_type = "AnalysisContractError"

    def __init__(
        self,
        message: str,
        operation: str = "analysis",
        violations: Optional[list[str]] = None,
    ):
        self.operation = operation
        self.violations = violations or []
        super().__init__(
            message,
            details={"operation": operation, "violations": self.violations},
        )


class ProviderUnavailableError(DecisionEngineError):
    """Raised when the reasoning provider cannot be reached or keeps failing."""

    error_type = "ProviderUnavailable"

    def __init__(self, message: str, provider: Optional[str] = None):
        self.provider = provider
        super().__init__(message, details={"provider": provider} if provider else None)


class StateError(DecisionEngineError):
    """Raised on an illegal lifecycle or session transition."""

    error_type = "StateError"


class DecisionNotFoundError(DecisionEngineError):
    """Raised when a decision does not exist for the requesting owner."""

    error_type = "NotFound"

    def __init__(self, decision_id: str):
        self.decision_id = decision_id
        super().__init__(
            f"Decision {decision_id} not found", details={"decision_id": decision_id}
        )


class SessionNotFoundError(DecisionEngineError):
    """Raised when a simulation session does not exist or has been discarded."""

    error_type = "NotFound"

    def __init__(self, session_id: str):
        self.session_id = session_id
        super().__init__(
            f"Simulation session {session_id} not found",
            details={"session_id": session_id},
        )


class ErrorResponse(BaseModel):
    """Standard error response schema for all API endpoints."""

    error: str = Field(
        ...,
        description="Error type/code (e.g., 'ValidationError', 'NotFound')",
        examples=["ValidationError", "NotFound", "StateError"],
    )
    message: str = Field(
        ...,
        description="Human-readable error message",
        examples=["Decision 123 not found"],
    )
    details: Optional[dict[str, Any]] = Field(
        default=None,
        description="Additional error context",
    )
    request_id: Optional[str] = Field(
        default=None,
        description="Request correlation ID for tracing",
    )
    timestamp: str = Field(
        default_factory=lambda: datetime.now(UTC).isoformat(),
        description="When the error occurred (ISO 8601)",
    )
    path: Optional[str] = Field(
        default=None,
        description="Request path that caused the error",
    )


def create_error_response(
    error: str,
    message: str,
    details: Optional[dict[str, Any]] = None,
    request_id: Optional[str] = None,
    path: Optional[str] = None,
) -> dict[str, Any]:
    """Create a standardized error response dictionary.

    Returns:
        Dictionary suitable for JSONResponse content
    """
    response = ErrorResponse(
        error=error,
        message=message,
        details=details or None,
        request_id=request_id,
        path=path,
    )
    return response.model_dump(exclude_none=True)

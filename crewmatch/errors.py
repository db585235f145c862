"""
Error taxonomy for the recommendation and booking core.

Validation, not-found and conflict errors propagate to the caller unchanged.
Upstream routing failures are absorbed by the distance layer and never
reach the caller.
"""

from typing import Any, Dict, Optional


class CrewmatchError(Exception):
    """Base error carrying structured details for the caller."""

    def __init__(self, message: str, **details: Any):
        super().__init__(message)
        self.message = message
        self.details: Dict[str, Any] = details


class ValidationError(CrewmatchError):
    """Malformed input. Rejected immediately, never retried."""

    def __init__(self, field: str, message: str):
        super().__init__(f"{field}: {message}", field=field)
        self.field = field


class NotFoundError(CrewmatchError):
    """Unknown job or contractor."""

    def __init__(self, kind: str, identifier: str):
        super().__init__(f"{kind} not found: {identifier}", kind=kind, identifier=identifier)
        self.kind = kind
        self.identifier = identifier


class ConflictError(CrewmatchError):
    """Booking could not be committed against current state."""

    def __init__(
        self,
        message: str,
        conflicting_assignment_id: Optional[str] = None,
        reason: Optional[str] = None,
    ):
        super().__init__(
            message,
            conflicting_assignment_id=conflicting_assignment_id,
            reason=reason,
        )
        self.conflicting_assignment_id = conflicting_assignment_id
        self.reason = reason


class SlotUnavailableError(ConflictError):
    """Re-validation found the slot infeasible (working hours, buffers, fatigue)."""


class ConcurrencyConflictError(ConflictError):
    """Another writer committed first; the caller must re-validate and retry."""


class UpstreamDegraded(CrewmatchError):
    """Routing provider failure. Recovered locally with a Haversine estimate."""


class CircuitOpenError(UpstreamDegraded):
    """Circuit breaker is open; the provider was not called."""


class RetryError(UpstreamDegraded):
    """Raised when all retry attempts are exhausted."""

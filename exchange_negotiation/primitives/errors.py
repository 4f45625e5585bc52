"""
Exchange Negotiation: Error Taxonomy

Every failure a negotiation action can report. Each error carries the HTTP
status it maps to and the short ``error`` label rendered as ``errorMsg``.
"""

from __future__ import annotations

from typing import Any


class NegotiationError(Exception):
    """Base class for all classified negotiation failures."""

    status_code: int = 500
    error: str = "Internal error"

    def __init__(self, message: str, **context: Any) -> None:
        super().__init__(message)
        self.message = message
        self.context = context

    def to_response(self) -> dict[str, Any]:
        return {
            "code": self.status_code,
            "errorMsg": self.error,
            "message": self.message,
        }


class NotFound(NegotiationError):
    status_code = 404
    error = "Resource not found"


class Conflict(NegotiationError):
    """Duplicate resource, already-in-state, or downstream failure."""

    status_code = 409
    error = "Conflicting resource"


class InvalidTransition(NegotiationError):
    """The record is in the wrong state for the requested action."""

    status_code = 400
    error = "Invalid operation"


class NegotiationTerminated(InvalidTransition):
    error = "Negotiation terminated"

    def __init__(self, message: str = "Negotiation has been terminated", **context: Any) -> None:
        super().__init__(message, **context)


class Unauthorized(NegotiationError):
    status_code = 401
    error = "Unauthorized operation"


class Forbidden(NegotiationError):
    status_code = 403
    error = "Forbidden operation"


class OwnershipViolation(Conflict):
    """A referenced service offering is not provided by the participant."""

    error = "Ownership violation"

    def __init__(self, participant_id: str, offering_ids: list[str]) -> None:
        super().__init__(
            "Participant does not own all service offerings",
            participant=participant_id,
            offerings=offering_ids,
        )
        self.participant_id = participant_id
        self.offering_ids = offering_ids


class PreconditionFailed(NegotiationError):
    """Required request context (usually the acting participant) is missing."""

    status_code = 412
    error = "Precondition failed"


class GatewayFailure(Conflict):
    """The contract service rejected or failed a call."""

    error = "Contract service failure"

    def __init__(
        self,
        message: str,
        downstream_status: int | None = None,
        downstream_message: str = "",
        **context: Any,
    ) -> None:
        if downstream_message:
            message = f"{message}: {downstream_message}"
        super().__init__(message, **context)
        self.downstream_status = downstream_status
        self.downstream_message = downstream_message

"""Error taxonomy shared by the event service and its entry points."""
from typing import Any, Dict, List, Optional


class ServiceError(Exception):
    """Base class for errors that map onto an API response."""

    code = 'INTERNAL_ERROR'
    status_code = 500

    def __init__(self, message: str, details: Optional[List[str]] = None):
        super().__init__(message)
        self.message = message
        self.details = list(details or [])

    def to_response_body(self) -> Dict[str, Any]:
        """
        Render the error in the API error envelope.

        Returns:
            ``{"error": {"code", "message", "details"?}}``
        """
        error: Dict[str, Any] = {
            'code': self.code,
            'message': self.message
        }
        if self.details:
            error['details'] = [{'message': msg} for msg in self.details]
        return {'error': error}


class ValidationError(ServiceError):
    """Malformed input or a broken business rule."""

    code = 'VALIDATION_ERROR'
    status_code = 400

    def __init__(self, details: List[str], message: str = 'Validation failed'):
        super().__init__(message, details)


class InvalidTransition(ValidationError):
    """Requested status change is not allowed from the current status."""

    def __init__(self, current, requested, reason: Optional[str] = None):
        self.current = current
        self.requested = requested
        detail = reason or (
            f"Cannot transition from {_name(current)} to {_name(requested)}"
        )
        super().__init__([detail], message=detail)


class NotFoundError(ServiceError):
    """Unknown identifier, or an event that is not publicly visible."""

    code = 'NOT_FOUND'
    status_code = 404

    def __init__(self, message: str = 'Resource not found'):
        super().__init__(message)


class InternalError(ServiceError):
    """Unexpected failure; the message never carries internals."""

    def __init__(self, message: str = 'Internal server error'):
        super().__init__(message)


def _name(status) -> str:
    return getattr(status, 'value', str(status))

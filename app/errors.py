"""
Error taxonomy for Artify Ghibli.

Every error raised by the services carries a stable machine-readable kind
(the class name) and the HTTP status it maps to. Route handlers let these
propagate; the exception handlers in ``app.main`` render them.
"""

from typing import Any, Dict, Optional


class ArtifyError(Exception):
    """Base class for all domain errors."""

    status_code = 500

    def __init__(
        self,
        message: str,
        details: Optional[Dict[str, Any]] = None,
        original_error: Optional[Exception] = None,
    ):
        super().__init__(message)
        self.message = message
        self.details = details or {}
        self.original_error = original_error

    @property
    def kind(self) -> str:
        return type(self).__name__

    def to_dict(self, include_details: bool = True) -> Dict[str, Any]:
        body: Dict[str, Any] = {"error": self.kind, "message": self.message}
        if include_details and self.details:
            body["details"] = self.details
        return body


class InvalidInput(ArtifyError):
    status_code = 400


class InvalidPlan(InvalidInput):
    pass


class Unauthorized(ArtifyError):
    status_code = 401


class InvalidCredentials(ArtifyError):
    status_code = 401


class Forbidden(ArtifyError):
    status_code = 403


class NotFound(ArtifyError):
    status_code = 404


class DuplicateEmail(ArtifyError):
    status_code = 409


class InvalidTransition(ArtifyError):
    status_code = 409


class QuotaExceeded(ArtifyError):
    status_code = 402


class NoActiveSubscription(QuotaExceeded):
    pass


class InvalidSignature(ArtifyError):
    status_code = 400


class InvalidOrExpiredToken(ArtifyError):
    status_code = 400


class UpstreamFailure(ArtifyError):
    """A storage, mail, payment or transformation capability failed."""

    status_code = 502

    def __init__(
        self,
        message: str,
        service: Optional[str] = None,
        original_error: Optional[Exception] = None,
    ):
        details = {"service": service} if service else {}
        super().__init__(message, details, original_error)

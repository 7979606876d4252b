"""Errors raised by the authorization flow.

Every failure the device or the browser can observe maps to exactly one of
these; the HTTP layer translates them to status codes.
"""


class AuthFlowError(Exception):
    """Base authorization flow exception."""

    status_code = 500

    def __init__(self, message: str = ""):
        self.message = message or self.__doc__ or self.__class__.__name__
        super().__init__(self.message)


class ValidationError(AuthFlowError):
    """Malformed or missing input."""

    status_code = 400


# Raised by the session store for bad device identifiers
InvalidInput = ValidationError


class NotFound(AuthFlowError):
    """Unknown session, state, device or token."""

    status_code = 404


class Expired(AuthFlowError):
    """Authorization session has expired."""

    status_code = 410


class Conflict(AuthFlowError):
    """Authorization session was already used."""

    status_code = 409


class Unauthorized(AuthFlowError):
    """Invalid or expired token."""

    status_code = 401


class ProviderError(AuthFlowError):
    """Identity provider failed or returned unusable data."""

    status_code = 502

    def __init__(self, message: str = "", provider_status: int | None = None):
        self.provider_status = provider_status
        super().__init__(message)


class InvalidState(AuthFlowError):
    """Invalid session status."""

    status_code = 500

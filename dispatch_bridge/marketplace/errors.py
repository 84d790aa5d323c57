# dispatch_bridge/marketplace/errors.py
from __future__ import annotations


class PartnerError(Exception):
    """Base class for everything raised while talking to the marketplace."""


class AuthError(PartnerError):
    """Credentials rejected, either by the OAuth endpoint or by a resource call."""

    def __init__(self, message: str, status_code: int | None = None, body: str | None = None):
        super().__init__(message)
        self.status_code = status_code
        self.body = body


class TokenExpiredError(AuthError):
    """A resource call answered 401; the cached token has already been dropped."""


class ApiRequestError(PartnerError):
    """Non-2xx answer other than 401."""

    def __init__(self, message: str, status_code: int | None = None, body: str | None = None):
        super().__init__(message)
        self.status_code = status_code
        self.body = body


class TransientNetworkError(ApiRequestError):
    """Timeout or connection failure; no response was received."""


class ConfigurationError(PartnerError):
    """The credential lacks what is needed to turn an order into a job."""


class InvalidOrderError(PartnerError):
    """The order detail lacks data the job needs (e.g. delivery coordinates)."""

"""Error taxonomy for the JSON API.

Every error a handler raises on purpose is a PortalError subclass carrying
the HTTP status it maps to. The app factory registers one error handler
that renders them as {"error": message}. Anything else is treated as an
unexpected upstream/store failure and becomes a generic 500.
"""


class PortalError(Exception):
    """Base class for errors surfaced to the caller verbatim."""

    status_code = 400

    def __init__(self, message):
        super().__init__(message)
        self.message = message


class Unauthenticated(PortalError):
    """No credential, or the identity provider rejected it."""

    status_code = 401


class Forbidden(PortalError):
    """Valid credential, insufficient role."""

    status_code = 403


class ValidationError(PortalError):
    """Amount out of range, non-integer amount, malformed email, etc."""


class ConflictError(PortalError):
    """Duplicate active subscription, self-deactivation, existing user."""


class NotFoundError(PortalError):
    """No customer mapping, no subscription, unknown member."""


class BadSignature(PortalError):
    """Webhook signature missing or invalid."""

"""Error taxonomy shared by provider clients, handlers and routes.

Provider clients translate transport failures and upstream status codes into
these types before anything crosses into the handler layer. Routes render
them with ``public_message`` only; the internal detail passed to the
constructor is for logs.
"""

from __future__ import annotations


class PortalError(Exception):
    """Base error for helpportal."""

    status_code = 500
    code = "internal_error"
    public_message = "An error occurred"

    def __init__(self, detail: str = "", *, public_message: str | None = None) -> None:
        super().__init__(detail or self.public_message)
        self.detail = detail
        if public_message is not None:
            self.public_message = public_message


class AuthRequired(PortalError):
    """No session, or the session cannot be resolved to a user."""

    status_code = 401
    code = "auth_required"
    public_message = "Not authenticated"


class ReconnectRequired(PortalError):
    """OAuth refresh failed; the tenant must re-run the connection flow."""

    status_code = 409
    code = "reconnect_required"
    public_message = "Jira connection expired. Please reconnect Jira."


class NotFound(PortalError):
    status_code = 404
    code = "not_found"
    public_message = "Not found"


class ProviderError(PortalError):
    """The provider rejected the request. Not worth retrying."""

    status_code = 502
    code = "provider_error"
    public_message = "Ticketing provider rejected the request"


class ProviderUnavailable(ProviderError):
    """Timeout, transport failure or 5xx from the provider. Retryable by the caller."""

    status_code = 503
    code = "provider_unavailable"
    public_message = "Ticketing provider is unavailable"


class InvalidSignature(PortalError):
    status_code = 400
    code = "invalid_signature"
    public_message = "Invalid signature"


class ValidationError(PortalError):
    """Malformed input. The message names the offending field and is safe to show."""

    status_code = 400
    code = "validation_error"

    def __init__(self, message: str, *, field: str | None = None) -> None:
        super().__init__(message, public_message=message)
        self.field = field


class InternalError(PortalError):
    pass

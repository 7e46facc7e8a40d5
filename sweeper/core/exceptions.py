"""
Application error taxonomy.

Errors that reach the HTTP boundary carry the status code they map to.
The handler in sweeper.main converts them into {"success": false, "error": ...}.
"""


class SweeperError(Exception):
    """Base class for errors surfaced to API callers."""

    status_code = 500

    def __init__(self, message: str):
        super().__init__(message)
        self.message = message


class AuthError(SweeperError):
    """User must (re-)authenticate. Never retried automatically."""

    status_code = 401


class NotAuthenticated(AuthError):
    """No logged-in user for this request."""


class NoGmailConnection(AuthError):
    """No stored Gmail token and no provider token in the session."""


class RefreshFailed(AuthError):
    """Access token refresh failed - user must reconnect Gmail."""


class ConfigurationError(SweeperError):
    """Server is missing required configuration (e.g. OAuth client credentials)."""

    status_code = 500


class PolicyError(SweeperError):
    """Request rejected by a safety policy before any side effect."""

    status_code = 403


class InsufficientSafeSenders(PolicyError):
    """Fewer safe senders than required for Super Actions."""

    def __init__(self, count: int, required: int):
        super().__init__(
            f"You need at least {required} safe senders to use Super Actions "
            f"(you currently have {count})"
        )
        self.count = count
        self.required = required


class InvalidAction(SweeperError):
    """Unknown action kind or malformed action parameters."""

    status_code = 400


class NotFound(SweeperError):
    """Requested resource does not exist for this user."""

    status_code = 404


class Conflict(SweeperError):
    """Resource already exists."""

    status_code = 409

class ChatError(Exception):
    """Base class for failures that are reported back to the client in-band."""

    status_code = 500

    def __init__(self, message: str):
        super().__init__(message)
        self.message = message


class AuthenticationError(ChatError):
    """Handshake-time credential failure. Terminates the connection."""

    status_code = 401


class AuthorizationError(ChatError):
    status_code = 403


class AccessDeniedError(AuthorizationError):
    """Caller is not allowed into a conversation (group membership, private policy)."""


class ValidationError(ChatError):
    status_code = 400


class NotFoundError(ChatError):
    status_code = 404


class InfrastructureError(ChatError):
    """Store or broker unreachable. Logged and surfaced as a generic error."""

    status_code = 503

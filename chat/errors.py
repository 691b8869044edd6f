"""
Error taxonomy for the chat sync engine.

Controllers turn these into a status line near the relevant control;
the API layer maps them onto HTTP status codes.
"""


class ChatError(Exception):
    """Base class for chat engine failures."""

    status_code = 500


class ChatValidationError(ChatError):
    """A required field is empty or the email is malformed."""

    status_code = 422

    def __init__(self, message: str, field: str = ""):
        super().__init__(message)
        self.field = field


class IdentityNotReady(ChatError):
    """The session service has not produced an identity yet."""

    status_code = 503

    def __init__(self, message: str = "Chat is still initializing, please wait a moment."):
        super().__init__(message)


class StoreWriteError(ChatError):
    """A write against the realtime store was not acknowledged."""

    status_code = 502


class Unauthorized(ChatError):
    """The caller is not the designated operator."""

    status_code = 403

    def __init__(self, message: str = "Access denied"):
        super().__init__(message)


class InvalidCredentials(ChatError):
    """Email/password sign-in was rejected."""

    status_code = 401

    def __init__(self, message: str = "Invalid credentials"):
        super().__init__(message)

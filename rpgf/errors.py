"""
rpgf/errors.py: Error taxonomy shared by every service.

ValidationError, AuthorizationError, NotFoundError and ConflictError are
recoverable at the boundary and safe to report verbatim. PersistenceError
wraps an unexpected storage failure; its message is deliberately generic.
"""


class RPGFError(Exception):
    """Base class for all errors raised by the round core."""

    status_code = 500

    def __init__(self, message: str):
        super().__init__(message)
        self.message = message


class ValidationError(RPGFError):
    """Malformed input: bad DTO, bad CSV, or a cap violation on submitted data.

    Carries every problem found, so that a caller can fix them all at once.
    """

    status_code = 400

    def __init__(self, messages):
        if isinstance(messages, str):
            messages = [messages]
        self.messages: list[str] = list(messages)
        super().__init__("\n".join(self.messages))


class AuthorizationError(RPGFError):
    """Requester lacks the admin or roster capability for the target round."""

    status_code = 403


class NotFoundError(RPGFError):
    """Referenced round, dataset or application does not exist."""

    status_code = 404


class ConflictError(RPGFError):
    """Operation would violate an invariant given the round's current state."""

    status_code = 409


class PersistenceError(RPGFError):
    """A transaction failed for a reason other than a domain error."""

    status_code = 500

    def __init__(self, message: str = "Internal failure while persisting changes."):
        super().__init__(message)

"""
Error taxonomy for the group membership lifecycle.

Only InvalidIdentityError (on required inputs) may abort a processing
cycle. Not-found, permission and authorization conditions are results of
the flows rather than exceptions; transport errors and best-effort write or
notification failures are converted at the flow boundary.
"""


class MembershipError(Exception):
    """Base exception for membership lifecycle errors."""

    def __init__(self, message: str, recoverable: bool = False):
        super().__init__(message)
        self.recoverable = recoverable


class InvalidIdentityError(MembershipError):
    """Malformed phone number or group address."""


class InvalidWorkItemError(InvalidIdentityError):
    """Queue payload that cannot be parsed into a work item."""

    def __init__(self, message: str, payload: str | None = None):
        super().__init__(message)
        self.payload = payload


class TransientCallError(MembershipError):
    """Transport failure on a collaborator call, possibly after retries."""

    def __init__(self, message: str, label: str | None = None, attempts: int = 1):
        super().__init__(message, recoverable=True)
        self.label = label
        self.attempts = attempts


class CallTimeoutError(TransientCallError):
    """A collaborator call did not complete within its timeout."""

    def __init__(self, label: str, timeout_ms: int):
        super().__init__(f"{label} timed out after {timeout_ms}ms", label=label)
        self.timeout_ms = timeout_ms


class PersistenceFailure(MembershipError):
    """A best-effort write failed. Carried in an Outcome, never raised."""

    def __init__(self, operation: str, cause: BaseException):
        super().__init__(f"{type(cause).__name__}: {cause}", recoverable=True)
        self.operation = operation
        self.__cause__ = cause


class NotificationFailure(MembershipError):
    """A best-effort notification failed. Carried in an Outcome, never raised."""

    def __init__(self, operation: str, detail: str):
        super().__init__(detail, recoverable=True)
        self.operation = operation


# Terminal errors are never retried by the bounded-call wrapper
TERMINAL_ERRORS = (InvalidIdentityError,)

"""Exception types raised while rendering, queueing, and delivering entries."""


class ObserverError(Exception):
    """Base class for all observer errors."""


class InvalidTokenError(ObserverError, ValueError):
    """Raised when an entry is enqueued with a missing or blank token."""

    def __init__(self, token=None):
        self.token = token
        super().__init__("Log token must be a non-blank string")


class InvalidMaxAttemptsError(ObserverError, ValueError):
    """Raised when an entry is enqueued with max_attempts <= 0."""

    def __init__(self, max_attempts: int):
        self.max_attempts = max_attempts
        super().__init__(f"max_attempts must be positive, got {max_attempts}")


class NullMemberError(ObserverError):
    """Raised when a composite member resolves to None during rendering."""

    def __init__(self, member_name: str):
        self.member_name = member_name
        super().__init__(f"Member {member_name!r} is None")


class DeliveryFailure(ObserverError):
    """A single transfer attempt for an entry failed."""

    def __init__(self, entry_id: int, attempt: int, reason=None):
        self.entry_id = entry_id
        self.attempt = attempt
        self.reason = reason
        message = f"Delivery of entry {entry_id} failed on attempt {attempt}"
        if reason is not None:
            message += f": {reason}"
        super().__init__(message)


class DeliveryAbandoned(DeliveryFailure):
    """All transfer attempts for an entry failed; the entry was dropped."""

    def __init__(self, entry_id: int, attempt: int, reason=None):
        super().__init__(entry_id, attempt, reason)
        self.args = (
            f"Entry {entry_id} abandoned after {attempt} attempts"
            + (f": {reason}" if reason is not None else ""),
        )

"""Log entry model and the handle returned to callers."""

import datetime
import enum
import threading
from dataclasses import dataclass, field

DEFAULT_MAX_ATTEMPTS = 10


class FailurePolicy(enum.Enum):
    """When a failed delivery is surfaced to the error sink."""

    RAISE_IMMEDIATELY = "raise_immediately"
    RAISE_AFTER_MAX_ATTEMPTS = "raise_after_max_attempts"
    SILENT = "silent"

    @classmethod
    def parse(cls, value: "str | FailurePolicy") -> "FailurePolicy":
        if isinstance(value, cls):
            return value
        normalized = str(value).strip().lower().replace("-", "_")
        for policy in cls:
            if policy.value == normalized:
                return policy
        raise ValueError(f"Unknown failure policy: {value!r}")


class EntryStatus(enum.Enum):
    PENDING = "pending"
    IN_FLIGHT = "in_flight"
    DELIVERED = "delivered"
    ABANDONED = "abandoned"

    @property
    def is_terminal(self) -> bool:
        return self in (EntryStatus.DELIVERED, EntryStatus.ABANDONED)


@dataclass(eq=False)
class LogEntry:
    """One rendered payload queued for transfer.

    Only ``attempts`` and ``status`` change after creation, and only under the
    owning queue's lock.
    """

    entry_id: int
    text: str
    token: str
    max_attempts: int = DEFAULT_MAX_ATTEMPTS
    failure_policy: FailurePolicy = FailurePolicy.SILENT
    created_at: datetime.datetime = field(
        default_factory=lambda: datetime.datetime.now(datetime.timezone.utc)
    )
    attempts: int = 0
    status: EntryStatus = EntryStatus.PENDING

    @property
    def length(self) -> int:
        return len(self.text)


def create_log_entry(
    entry_id: int,
    text: str,
    token: str,
    max_attempts: int = DEFAULT_MAX_ATTEMPTS,
    failure_policy: FailurePolicy = FailurePolicy.SILENT,
) -> LogEntry:
    """Factory function that creates a LogEntry."""
    return LogEntry(
        entry_id=entry_id,
        text=text,
        token=token,
        max_attempts=max_attempts,
        failure_policy=failure_policy,
    )


class EntryHandle:
    """Read-only view of a queued entry for status inspection."""

    def __init__(self, entry: LogEntry, condition: threading.Condition):
        self._entry = entry
        self._condition = condition

    @property
    def entry_id(self) -> int:
        return self._entry.entry_id

    @property
    def status(self) -> EntryStatus:
        with self._condition:
            return self._entry.status

    @property
    def attempts(self) -> int:
        with self._condition:
            return self._entry.attempts

    @property
    def is_terminal(self) -> bool:
        return self.status.is_terminal

    def wait(self, timeout: float | None = None) -> bool:
        """Block until the entry is delivered or abandoned.

        Returns True if the entry reached a terminal state, False on timeout.
        """
        with self._condition:
            return self._condition.wait_for(
                lambda: self._entry.status.is_terminal, timeout=timeout
            )

    def __repr__(self) -> str:
        return f"EntryHandle(entry_id={self.entry_id}, status={self.status.value})"

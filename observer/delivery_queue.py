"""In-memory FIFO delivery queue with per-entry retry and failure escalation."""

import collections
import logging
import threading
from typing import Callable, Protocol

from observer.errors import (
    DeliveryAbandoned,
    DeliveryFailure,
    InvalidMaxAttemptsError,
    InvalidTokenError,
)
from observer.models import (
    DEFAULT_MAX_ATTEMPTS,
    EntryHandle,
    EntryStatus,
    FailurePolicy,
    LogEntry,
    create_log_entry,
)

logger = logging.getLogger(__name__)


class ErrorSink(Protocol):
    """Receives delivery errors that an entry's failure policy surfaces."""

    def report(self, entry: LogEntry, cause: DeliveryFailure) -> None:
        ...


class LoggingErrorSink:
    """Logs surfaced delivery errors at ERROR level."""

    def report(self, entry: LogEntry, cause: DeliveryFailure) -> None:
        logger.error(
            "Delivery error for entry %d (%d/%d attempts, %d chars): %s",
            entry.entry_id, entry.attempts, entry.max_attempts, entry.length, cause,
        )


class CallbackErrorSink:
    """Forwards surfaced delivery errors to a callable."""

    def __init__(self, callback: Callable[[LogEntry, DeliveryFailure], None]):
        self._callback = callback

    def report(self, entry: LogEntry, cause: DeliveryFailure) -> None:
        self._callback(entry, cause)


def validate_token(token) -> str:
    if not isinstance(token, str) or not token.strip():
        raise InvalidTokenError(token)
    return token


class DeliveryQueue:
    """Ordered entries awaiting transfer.

    Entries are claimed oldest first with ``next_pending`` and resolved with
    ``report_outcome``. A failed entry that still has attempts left goes to
    the back of the queue. Every public method is atomic under one lock; the
    error sink is called after the lock is released.
    """

    def __init__(self, error_sink: ErrorSink | None = None):
        self._condition = threading.Condition()
        self._pending: collections.deque[LogEntry] = collections.deque()
        self._in_flight: dict[int, LogEntry] = {}
        self._error_sink = error_sink if error_sink is not None else LoggingErrorSink()
        self._last_id = 0
        self._enqueued = 0
        self._delivered = 0
        self._abandoned = 0
        self._failed_attempts = 0

    def __len__(self) -> int:
        with self._condition:
            return len(self._pending) + len(self._in_flight)

    @property
    def pending_count(self) -> int:
        with self._condition:
            return len(self._pending)

    @property
    def in_flight_count(self) -> int:
        with self._condition:
            return len(self._in_flight)

    def enqueue(
        self,
        text: str,
        token: str,
        max_attempts: int = DEFAULT_MAX_ATTEMPTS,
        failure_policy: FailurePolicy = FailurePolicy.SILENT,
    ) -> EntryHandle:
        """Append a new entry and return its handle.

        Raises TypeError when text is not a str, InvalidTokenError for a None
        or blank token and InvalidMaxAttemptsError for max_attempts <= 0.
        Nothing is queued when validation fails.
        """
        if not isinstance(text, str):
            raise TypeError(f"text must be a str, got {type(text).__name__}")
        validate_token(token)
        if max_attempts <= 0:
            raise InvalidMaxAttemptsError(max_attempts)
        failure_policy = FailurePolicy.parse(failure_policy)

        with self._condition:
            self._last_id += 1
            entry = create_log_entry(
                self._last_id, text, token, max_attempts, failure_policy,
            )
            self._pending.append(entry)
            self._enqueued += 1
            self._condition.notify_all()

        logger.debug(
            "Enqueued entry %d (%d chars, max_attempts=%d, policy=%s)",
            entry.entry_id, entry.length, max_attempts, failure_policy.value,
        )
        return EntryHandle(entry, self._condition)

    def next_pending(self) -> LogEntry | None:
        """Claim the oldest pending entry, or return None if there is none."""
        with self._condition:
            if not self._pending:
                return None
            entry = self._pending.popleft()
            entry.status = EntryStatus.IN_FLIGHT
            self._in_flight[entry.entry_id] = entry
            return entry

    def report_outcome(
        self,
        handle: EntryHandle | LogEntry,
        success: bool,
        cause: object = None,
    ) -> bool:
        """Apply the result of one delivery attempt.

        Returns False, changing nothing, when the entry is not currently
        claimed (already terminal, still pending, or unknown).
        """
        entry_id = handle.entry_id
        notification: DeliveryFailure | None = None

        with self._condition:
            entry = self._in_flight.pop(entry_id, None)
            if entry is None:
                logger.warning("Ignoring outcome for entry %d: not in flight", entry_id)
                return False

            if success:
                entry.status = EntryStatus.DELIVERED
                self._delivered += 1
            else:
                entry.attempts += 1
                self._failed_attempts += 1
                if entry.attempts < entry.max_attempts:
                    entry.status = EntryStatus.PENDING
                    self._pending.append(entry)
                    if entry.failure_policy is FailurePolicy.RAISE_IMMEDIATELY:
                        notification = DeliveryFailure(entry_id, entry.attempts, cause)
                else:
                    entry.status = EntryStatus.ABANDONED
                    self._abandoned += 1
                    if entry.failure_policy is not FailurePolicy.SILENT:
                        notification = DeliveryAbandoned(entry_id, entry.attempts, cause)
            status = entry.status
            attempts = entry.attempts
            self._condition.notify_all()

        if status is EntryStatus.DELIVERED:
            logger.debug("Entry %d delivered after %d failed attempts", entry_id, attempts)
        elif status is EntryStatus.ABANDONED:
            logger.warning("Abandoned entry %d after %d attempts", entry_id, attempts)
        else:
            logger.debug(
                "Entry %d failed attempt %d/%d, requeued",
                entry_id, attempts, entry.max_attempts,
            )

        if notification is not None:
            self._error_sink.report(entry, notification)
        return True

    def wait_until_empty(self, timeout: float | None = None) -> bool:
        """Block until every entry is terminal. Returns False on timeout."""
        with self._condition:
            return self._condition.wait_for(
                lambda: not self._pending and not self._in_flight, timeout=timeout,
            )

    def stats(self) -> dict:
        with self._condition:
            return {
                "enqueued": self._enqueued,
                "delivered": self._delivered,
                "abandoned": self._abandoned,
                "failed_attempts": self._failed_attempts,
                "pending": len(self._pending),
                "in_flight": len(self._in_flight),
            }

"""Tests for the delivery queue and its failure policies."""

import threading

import pytest

from observer.delivery_queue import CallbackErrorSink, DeliveryQueue
from observer.errors import (
    DeliveryAbandoned,
    DeliveryFailure,
    InvalidMaxAttemptsError,
    InvalidTokenError,
)
from observer.models import EntryStatus, FailurePolicy


def _fail(queue, times, cause=None):
    """Claim the head entry and report a failure, *times* times."""
    for _ in range(times):
        entry = queue.next_pending()
        assert entry is not None
        assert queue.report_outcome(entry, False, cause)


class TestEnqueue:
    def test_returns_pending_handle(self):
        queue = DeliveryQueue()
        handle = queue.enqueue("text", "tok")
        assert handle.status is EntryStatus.PENDING
        assert handle.attempts == 0
        assert not handle.is_terminal
        assert len(queue) == 1

    def test_entry_fields(self):
        queue = DeliveryQueue()
        queue.enqueue("hello", "tok", max_attempts=4, failure_policy="raise_immediately")
        entry = queue.next_pending()
        assert entry.text == "hello"
        assert entry.token == "tok"
        assert entry.length == 5
        assert entry.max_attempts == 4
        assert entry.failure_policy is FailurePolicy.RAISE_IMMEDIATELY
        assert entry.created_at.tzinfo is not None

    def test_defaults(self):
        queue = DeliveryQueue()
        queue.enqueue("x", "tok")
        entry = queue.next_pending()
        assert entry.max_attempts == 10
        assert entry.failure_policy is FailurePolicy.SILENT

    @pytest.mark.parametrize("token", [None, "", "   ", "\t\n"])
    def test_invalid_token_rejected(self, token):
        queue = DeliveryQueue()
        with pytest.raises(InvalidTokenError):
            queue.enqueue("text", token)
        assert len(queue) == 0
        assert queue.stats()["enqueued"] == 0

    @pytest.mark.parametrize("max_attempts", [0, -1])
    def test_invalid_max_attempts_rejected(self, max_attempts):
        queue = DeliveryQueue()
        with pytest.raises(InvalidMaxAttemptsError):
            queue.enqueue("text", "tok", max_attempts=max_attempts)
        assert len(queue) == 0

    @pytest.mark.parametrize("text", [None, 42, b"bytes"])
    def test_non_string_text_rejected(self, text):
        queue = DeliveryQueue()
        with pytest.raises(TypeError):
            queue.enqueue(text, "tok")
        assert len(queue) == 0
        assert queue.stats()["enqueued"] == 0
        assert queue.next_pending() is None

    def test_unknown_policy_rejected(self):
        queue = DeliveryQueue()
        with pytest.raises(ValueError):
            queue.enqueue("text", "tok", failure_policy="explode")
        assert len(queue) == 0


class TestOrdering:
    def test_fifo(self):
        queue = DeliveryQueue()
        for text in ("a", "b", "c"):
            queue.enqueue(text, "tok")
        assert [queue.next_pending().text for _ in range(3)] == ["a", "b", "c"]
        assert queue.next_pending() is None

    def test_claimed_entries_not_reclaimed(self):
        queue = DeliveryQueue()
        queue.enqueue("a", "tok")
        queue.enqueue("b", "tok")
        first = queue.next_pending()
        assert first.status is EntryStatus.IN_FLIGHT
        assert queue.next_pending().text == "b"
        assert queue.next_pending() is None
        assert queue.in_flight_count == 2

    def test_failed_entry_moves_to_back(self):
        queue = DeliveryQueue()
        queue.enqueue("a", "tok")
        queue.enqueue("b", "tok")
        _fail(queue, 1)
        assert queue.next_pending().text == "b"
        assert queue.next_pending().text == "a"


class TestOutcomes:
    def test_success_delivers_and_removes(self):
        queue = DeliveryQueue()
        handle = queue.enqueue("a", "tok")
        entry = queue.next_pending()
        assert queue.report_outcome(handle, True)
        assert handle.status is EntryStatus.DELIVERED
        assert entry.attempts == 0
        assert len(queue) == 0
        assert queue.next_pending() is None

    def test_silent_abandon_after_max_attempts(self, sink):
        queue = DeliveryQueue(sink)
        handle = queue.enqueue("a", "tok", max_attempts=3, failure_policy=FailurePolicy.SILENT)

        _fail(queue, 2)
        assert handle.status is EntryStatus.PENDING
        assert handle.attempts == 2

        _fail(queue, 1)
        assert handle.status is EntryStatus.ABANDONED
        assert handle.attempts == 3
        assert queue.next_pending() is None
        assert len(queue) == 0
        assert sink.reports == []

    def test_raise_after_max_attempts_reports_once(self, sink):
        queue = DeliveryQueue(sink)
        handle = queue.enqueue(
            "a", "tok", max_attempts=3, failure_policy=FailurePolicy.RAISE_AFTER_MAX_ATTEMPTS,
        )

        _fail(queue, 2, cause="boom")
        assert sink.reports == []

        _fail(queue, 1, cause="boom")
        assert len(sink.reports) == 1
        entry, cause = sink.reports[0]
        assert entry.entry_id == handle.entry_id
        assert isinstance(cause, DeliveryAbandoned)
        assert cause.attempt == 3
        assert cause.reason == "boom"

    def test_raise_immediately_reports_every_failure(self, sink):
        queue = DeliveryQueue(sink)
        handle = queue.enqueue(
            "a", "tok", max_attempts=3, failure_policy=FailurePolicy.RAISE_IMMEDIATELY,
        )

        _fail(queue, 1)
        assert len(sink.reports) == 1
        assert handle.status is EntryStatus.PENDING

        _fail(queue, 2)
        causes = [cause for _, cause in sink.reports]
        assert len(causes) == 3
        assert [c.attempt for c in causes] == [1, 2, 3]
        assert not isinstance(causes[0], DeliveryAbandoned)
        assert not isinstance(causes[1], DeliveryAbandoned)
        assert isinstance(causes[2], DeliveryAbandoned)
        assert all(isinstance(c, DeliveryFailure) for c in causes)

    def test_success_after_failures(self, sink):
        queue = DeliveryQueue(sink)
        handle = queue.enqueue("a", "tok", max_attempts=3)
        _fail(queue, 2)
        assert queue.report_outcome(queue.next_pending(), True)
        assert handle.status is EntryStatus.DELIVERED
        assert handle.attempts == 2

    def test_outcome_on_terminal_handle_rejected(self):
        queue = DeliveryQueue()
        handle = queue.enqueue("a", "tok", max_attempts=2)
        queue.next_pending()
        assert queue.report_outcome(handle, True)

        assert not queue.report_outcome(handle, True)
        assert not queue.report_outcome(handle, False)
        assert handle.status is EntryStatus.DELIVERED
        assert handle.attempts == 0
        stats = queue.stats()
        assert stats["delivered"] == 1
        assert stats["failed_attempts"] == 0

    def test_outcome_on_abandoned_handle_rejected(self, sink):
        queue = DeliveryQueue(sink)
        handle = queue.enqueue(
            "a", "tok", max_attempts=1, failure_policy=FailurePolicy.RAISE_AFTER_MAX_ATTEMPTS,
        )
        _fail(queue, 1)
        assert not queue.report_outcome(handle, False)
        assert handle.attempts == 1
        assert len(sink.reports) == 1

    def test_outcome_on_unclaimed_entry_rejected(self):
        queue = DeliveryQueue()
        handle = queue.enqueue("a", "tok")
        assert not queue.report_outcome(handle, True)
        assert handle.status is EntryStatus.PENDING

    def test_callback_sink(self):
        calls = []
        queue = DeliveryQueue(CallbackErrorSink(lambda entry, cause: calls.append(cause)))
        queue.enqueue("a", "tok", max_attempts=1, failure_policy="raise_after_max_attempts")
        _fail(queue, 1)
        assert len(calls) == 1


class TestWaiting:
    def test_wait_until_empty(self):
        queue = DeliveryQueue()
        assert queue.wait_until_empty(timeout=0.01)
        queue.enqueue("a", "tok")
        assert not queue.wait_until_empty(timeout=0.05)

    def test_handle_wait(self):
        queue = DeliveryQueue()
        handle = queue.enqueue("a", "tok")
        entry = queue.next_pending()

        timer = threading.Timer(0.05, queue.report_outcome, args=(entry, True))
        timer.start()
        try:
            assert handle.wait(timeout=5)
            assert handle.status is EntryStatus.DELIVERED
        finally:
            timer.cancel()

    def test_handle_wait_timeout(self):
        queue = DeliveryQueue()
        handle = queue.enqueue("a", "tok")
        assert not handle.wait(timeout=0.05)


class TestConcurrency:
    def test_concurrent_enqueue_keeps_every_entry(self):
        queue = DeliveryQueue()
        threads_count, per_thread = 8, 250

        def producer(n):
            for i in range(per_thread):
                queue.enqueue(f"{n}-{i}", "tok")

        threads = [threading.Thread(target=producer, args=(n,)) for n in range(threads_count)]
        for t in threads:
            t.start()
        for t in threads:
            t.join()

        assert len(queue) == threads_count * per_thread

        drained = []
        while True:
            entry = queue.next_pending()
            if entry is None:
                break
            drained.append(entry)
        assert len({e.entry_id for e in drained}) == threads_count * per_thread

        for n in range(threads_count):
            mine = [int(e.text.split("-")[1]) for e in drained if e.text.startswith(f"{n}-")]
            assert mine == list(range(per_thread))

    def test_concurrent_claims_never_overlap(self):
        queue = DeliveryQueue()
        for i in range(500):
            queue.enqueue(str(i), "tok")

        claimed = []
        lock = threading.Lock()

        def consumer():
            while True:
                entry = queue.next_pending()
                if entry is None:
                    return
                with lock:
                    claimed.append(entry.entry_id)
                queue.report_outcome(entry, True)

        threads = [threading.Thread(target=consumer) for _ in range(4)]
        for t in threads:
            t.start()
        for t in threads:
            t.join()

        assert len(claimed) == 500
        assert len(set(claimed)) == 500
        assert queue.stats()["delivered"] == 500
        assert len(queue) == 0

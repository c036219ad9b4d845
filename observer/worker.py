"""Background delivery workers that drain the queue through a transport."""

import logging
import random
import threading
import time

from observer.delivery_queue import DeliveryQueue
from observer.metrics import Metrics
from observer.models import EntryStatus, LogEntry
from observer.transport import Transport

logger = logging.getLogger(__name__)


class _SendCall:
    """One transport send running on its own daemon thread."""

    def __init__(self, transport: Transport, entry: LogEntry):
        self.entry_id = entry.entry_id
        self.done = threading.Event()
        self.success = False
        self.error: Exception | None = None
        self._transport = transport
        self._text = entry.text
        self._token = entry.token
        self._thread = threading.Thread(
            target=self._run, name=f"observer-send-{entry.entry_id}", daemon=True,
        )

    def start(self):
        self._thread.start()

    def _run(self):
        try:
            self.success = bool(self._transport.send(self._text, self._token))
        except Exception as e:
            self.error = e
        finally:
            self.done.set()


class DeliveryWorker:
    """A bounded pool of threads that claim, send, and resolve entries.

    Each thread loops: claim the oldest pending entry, send it, report the
    outcome. ``stop()`` is cooperative: threads finish their in-flight send
    and report it before exiting, and claim nothing new.

    With ``send_timeout`` set, each send runs on its own thread and the
    timeout starts when the send does. A send still running at the timeout
    counts as a failed attempt; its late result is dropped, and the worker
    claims nothing new until that send has returned.
    """

    def __init__(
        self,
        delivery_queue: DeliveryQueue,
        transport: Transport,
        workers: int = 1,
        send_timeout: float | None = None,
        poll_interval: float = 0.5,
        retry_base_delay: float = 0.5,
        retry_max_delay: float = 30.0,
        metrics: Metrics | None = None,
    ):
        if workers < 1:
            raise ValueError(f"workers must be positive, got {workers}")
        self._queue = delivery_queue
        self._transport = transport
        self._workers = workers
        self._send_timeout = send_timeout
        self._poll_interval = poll_interval
        self._retry_base_delay = retry_base_delay
        self._retry_max_delay = retry_max_delay
        self._metrics = metrics if metrics is not None else Metrics()
        self._shutdown = threading.Event()
        self._threads: list[threading.Thread] = []
        self._lock = threading.Lock()

    @property
    def metrics(self) -> Metrics:
        return self._metrics

    @property
    def running(self) -> bool:
        with self._lock:
            return any(t.is_alive() for t in self._threads)

    def start(self):
        """Start the worker threads. Calling start on a running pool is a no-op."""
        with self._lock:
            if any(t.is_alive() for t in self._threads):
                return
            self._shutdown.clear()
            self._threads = [
                threading.Thread(
                    target=self._worker_loop, name=f"observer-worker-{i}", daemon=True,
                )
                for i in range(self._workers)
            ]
            for t in self._threads:
                t.start()
        logger.info("Started %d delivery worker(s)", self._workers)

    def stop(self, timeout: float | None = 10.0):
        """Signal the workers to stop and wait for in-flight sends to finish."""
        self._shutdown.set()
        with self._lock:
            threads, self._threads = self._threads, []
        for t in threads:
            t.join(timeout=timeout)
            if t.is_alive():
                logger.warning("Worker %s did not stop within %.1fs", t.name, timeout)
        logger.info("Delivery workers stopped")

    def _worker_loop(self):
        consecutive_failures = 0
        stalled: _SendCall | None = None
        while not self._shutdown.is_set():
            if stalled is not None:
                if not stalled.done.is_set():
                    self._shutdown.wait(self._poll_interval)
                    continue
                logger.info(
                    "Timed-out send of entry %d returned late, result dropped",
                    stalled.entry_id,
                )
                stalled = None

            entry = self._queue.next_pending()
            if entry is None:
                self._shutdown.wait(self._poll_interval)
                continue

            success, cause, stalled = self._attempt(entry)

            try:
                self._queue.report_outcome(entry, success, cause)
            except Exception:
                logger.exception("Error sink raised for entry %d", entry.entry_id)

            if success:
                consecutive_failures = 0
                continue

            self._metrics.record_failed(timed_out=stalled is not None)
            if entry.status is EntryStatus.ABANDONED:
                self._metrics.record_abandoned(entry.failure_policy)
            else:
                self._metrics.record_requeued()
            consecutive_failures += 1
            delay = self._backoff_delay(
                consecutive_failures, self._retry_base_delay, self._retry_max_delay,
            )
            if delay > 0:
                logger.debug("Backing off %.2fs after %d failure(s)", delay, consecutive_failures)
                self._shutdown.wait(delay)

    def _attempt(self, entry: LogEntry) -> tuple[bool, object, _SendCall | None]:
        """Send one entry.

        Returns (success, failure cause, send still running after timeout).
        """
        retries = entry.attempts
        t0 = time.monotonic()
        if self._send_timeout is None:
            try:
                success = self._transport.send(entry.text, entry.token)
            except Exception as e:
                logger.warning("Transport raised while sending entry %d: %s", entry.entry_id, e)
                return False, e, None
        else:
            call = _SendCall(self._transport, entry)
            call.start()
            if not call.done.wait(self._send_timeout):
                logger.warning(
                    "Send of entry %d timed out after %.1fs", entry.entry_id, self._send_timeout,
                )
                return False, f"send timed out after {self._send_timeout}s", call
            if call.error is not None:
                logger.warning(
                    "Transport raised while sending entry %d: %s", entry.entry_id, call.error,
                )
                return False, call.error, None
            success = call.success

        if success:
            self._metrics.record_delivered((time.monotonic() - t0) * 1000, retries)
            return True, None, None
        return False, "transport reported failure", None

    @staticmethod
    def _backoff_delay(failures: int, base_delay: float, max_delay: float) -> float:
        """Exponential backoff with jitter.

        The base doubles per consecutive failure (base, 2*base, 4*base, ...),
        is capped at max_delay, then multiplied by a jitter factor in [0.8, 1.2].
        """
        if base_delay <= 0:
            return 0.0
        capped = min(base_delay * (2 ** (failures - 1)), max_delay)
        return capped * random.uniform(0.8, 1.2)

"""Delivery counters and a periodic reporter that logs per-interval deltas."""

import logging
import threading
from dataclasses import dataclass, field, replace

from observer.delivery_queue import DeliveryQueue
from observer.models import FailurePolicy

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class DeliverySnapshot:
    """Cumulative delivery counters at one point in time."""

    delivered: int = 0
    delivered_after_retry: int = 0
    failed_attempts: int = 0
    timeouts: int = 0
    requeued: int = 0
    abandoned: dict[FailurePolicy, int] = field(
        default_factory=lambda: {policy: 0 for policy in FailurePolicy}
    )
    total_latency_ms: float = 0.0
    max_latency_ms: float = 0.0

    @property
    def abandoned_total(self) -> int:
        return sum(self.abandoned.values())

    @property
    def avg_latency_ms(self) -> float:
        return self.total_latency_ms / self.delivered if self.delivered else 0.0


class Metrics:
    """Cumulative, thread-safe delivery counters.

    Counters only grow. Readers take a ``snapshot()`` and compare it with an
    earlier one; nothing is reset, so several readers can share one instance.
    """

    def __init__(self):
        self._lock = threading.Lock()
        self._current = DeliverySnapshot()

    def record_delivered(self, latency_ms: float, retries: int = 0):
        """Record a delivered entry, its send latency and how many failed attempts preceded it."""
        with self._lock:
            c = self._current
            self._current = replace(
                c,
                delivered=c.delivered + 1,
                delivered_after_retry=c.delivered_after_retry + (1 if retries else 0),
                total_latency_ms=c.total_latency_ms + latency_ms,
                max_latency_ms=max(c.max_latency_ms, latency_ms),
            )

    def record_failed(self, timed_out: bool = False):
        """Record one failed attempt."""
        with self._lock:
            c = self._current
            self._current = replace(
                c,
                failed_attempts=c.failed_attempts + 1,
                timeouts=c.timeouts + (1 if timed_out else 0),
            )

    def record_requeued(self):
        with self._lock:
            self._current = replace(self._current, requeued=self._current.requeued + 1)

    def record_abandoned(self, policy: FailurePolicy):
        with self._lock:
            abandoned = dict(self._current.abandoned)
            abandoned[policy] = abandoned.get(policy, 0) + 1
            self._current = replace(self._current, abandoned=abandoned)

    def snapshot(self) -> DeliverySnapshot:
        with self._lock:
            return self._current


def interval_summary(previous: DeliverySnapshot, current: DeliverySnapshot) -> dict:
    """Summarize what happened between two snapshots.

    Latency figures are averaged over the deliveries in the interval. The
    maximum is cumulative since the counters never reset.
    """
    delivered = current.delivered - previous.delivered
    latency = current.total_latency_ms - previous.total_latency_ms
    return {
        "delivered": delivered,
        "delivered_after_retry": current.delivered_after_retry - previous.delivered_after_retry,
        "failed_attempts": current.failed_attempts - previous.failed_attempts,
        "timeouts": current.timeouts - previous.timeouts,
        "requeued": current.requeued - previous.requeued,
        "abandoned": {
            policy.value: current.abandoned.get(policy, 0) - previous.abandoned.get(policy, 0)
            for policy in FailurePolicy
        },
        "avg_latency_ms": latency / delivered if delivered else 0.0,
        "max_latency_ms": current.max_latency_ms,
    }


class MetricsReporter:
    """Background thread that logs delivery activity and queue depth each interval."""

    def __init__(
        self,
        metrics: Metrics,
        delivery_queue: DeliveryQueue,
        interval: float,
        shutdown_event: threading.Event,
    ):
        self._metrics = metrics
        self._queue = delivery_queue
        self._interval = interval
        self._shutdown = shutdown_event
        self._previous = metrics.snapshot()
        self._thread: threading.Thread | None = None

    def start(self):
        self._thread = threading.Thread(
            target=self._report_loop, name="observer-metrics", daemon=True,
        )
        self._thread.start()

    def stop(self):
        """Wait for the reporter to exit once the shutdown event is set."""
        if self._thread:
            self._thread.join(timeout=5)

    def report(self) -> dict:
        """Log one summary covering the time since the previous report and return it."""
        current = self._metrics.snapshot()
        summary = interval_summary(self._previous, current)
        self._previous = current
        queue_stats = self._queue.stats()
        summary["pending"] = queue_stats["pending"]
        summary["in_flight"] = queue_stats["in_flight"]

        abandoned = " ".join(f"{k}={v}" for k, v in summary["abandoned"].items() if v)
        logger.info(
            "Delivery: delivered=%d (after retry %d) failed_attempts=%d timeouts=%d "
            "requeued=%d abandoned=[%s] avg_latency=%.1fms max_latency=%.1fms "
            "pending=%d in_flight=%d",
            summary["delivered"],
            summary["delivered_after_retry"],
            summary["failed_attempts"],
            summary["timeouts"],
            summary["requeued"],
            abandoned,
            summary["avg_latency_ms"],
            summary["max_latency_ms"],
            summary["pending"],
            summary["in_flight"],
        )
        return summary

    def _report_loop(self):
        while not self._shutdown.wait(self._interval):
            self.report()

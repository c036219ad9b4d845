"""Observer client: renders payloads, queues them, and runs delivery workers."""

import logging
import threading

from observer.config import Config
from observer.delivery_queue import DeliveryQueue, ErrorSink
from observer.metrics import MetricsReporter
from observer.models import EntryHandle, FailurePolicy
from observer.serializer import Serializer
from observer.transport import HTTPTransport, Transport
from observer.worker import DeliveryWorker

logger = logging.getLogger(__name__)


class Observer:
    """High-level client that wires the serializer, delivery queue,
    transport, and worker pool together.

    ``log`` renders on the caller's thread and only enqueues. Delivery runs
    after ``start()`` and stops with ``stop()``; the client never starts
    workers on its own.
    """

    def __init__(
        self,
        config: Config | None = None,
        transport: Transport | None = None,
        error_sink: ErrorSink | None = None,
        serializer: Serializer | None = None,
    ):
        self._config = config if config is not None else Config()
        self._serializer = serializer if serializer is not None else Serializer(
            mode=self._config.render_mode, max_depth=self._config.max_depth,
        )
        self._owns_transport = transport is None
        self._transport = transport if transport is not None else HTTPTransport(
            self._config.endpoint, timeout=self._config.send_timeout,
        )
        self._queue = DeliveryQueue(error_sink)
        self._worker = DeliveryWorker(
            self._queue,
            self._transport,
            workers=self._config.workers,
            send_timeout=self._config.send_timeout,
            poll_interval=self._config.poll_interval,
            retry_base_delay=self._config.retry_base_delay,
            retry_max_delay=self._config.retry_max_delay,
        )
        self._reporter_shutdown = threading.Event()
        self._reporter: MetricsReporter | None = None

    @property
    def config(self) -> Config:
        return self._config

    @property
    def queue(self) -> DeliveryQueue:
        return self._queue

    @property
    def worker(self) -> DeliveryWorker:
        return self._worker

    def log(
        self,
        payload: object,
        token: str | None = None,
        max_attempts: int | None = None,
        failure_policy: FailurePolicy | str | None = None,
        declared_type: type | None = None,
    ) -> EntryHandle:
        """Render *payload* and add it to the delivery queue.

        Unset arguments fall back to the configured defaults. Rendering and
        validation errors propagate here and leave the queue untouched.
        """
        text = self._serializer.render(payload, declared_type)
        return self._queue.enqueue(
            text,
            token if token is not None else self._config.token,
            max_attempts if max_attempts is not None else self._config.max_attempts,
            failure_policy if failure_policy is not None else self._config.failure_policy,
        )

    def start(self):
        """Start the delivery workers and, if configured, the metrics reporter."""
        self._worker.start()
        if self._config.metrics_interval > 0 and self._reporter is None:
            self._reporter_shutdown.clear()
            self._reporter = MetricsReporter(
                self._worker.metrics,
                self._queue,
                self._config.metrics_interval,
                self._reporter_shutdown,
            )
            self._reporter.start()

    def stop(self, drain_timeout: float | None = None):
        """Stop delivering.

        With *drain_timeout*, first wait up to that long for the queue to
        empty. Entries still queued afterwards stay pending. A transport the
        client built itself is closed; one passed in is left to the caller.
        """
        if drain_timeout is not None and self._worker.running:
            if not self._queue.wait_until_empty(drain_timeout):
                logger.warning(
                    "Queue not drained within %.1fs, %d entries remain",
                    drain_timeout, len(self._queue),
                )
        self._worker.stop()
        if self._reporter is not None:
            self._reporter_shutdown.set()
            self._reporter.stop()
            self._reporter = None
        if self._owns_transport:
            self._transport.close()
        logger.info("Observer stopped: %s", self._queue.stats())

    def __enter__(self) -> "Observer":
        self.start()
        return self

    def __exit__(self, exc_type, exc, tb):
        self.stop()

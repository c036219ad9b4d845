"""Entry point: ship lines from stdin or a file to the logging endpoint."""

import logging
import signal
import sys
import threading

from observer.client import Observer
from observer.config import load_config
from observer.delivery_queue import validate_token
from observer.errors import InvalidTokenError


def _iter_lines(path: str | None, shutdown_event: threading.Event):
    stream = open(path, "r", encoding="utf-8") if path else sys.stdin
    try:
        for line in stream:
            if shutdown_event.is_set():
                break
            yield line.rstrip("\n")
    finally:
        if path:
            stream.close()


def main():
    logging.basicConfig(
        level=logging.INFO,
        format="%(asctime)s [%(levelname)s] %(name)s — %(message)s",
        stream=sys.stderr,
    )
    logger = logging.getLogger(__name__)

    config = load_config()
    try:
        validate_token(config.token)
    except InvalidTokenError:
        logger.error("No log token configured (set OBSERVER_TOKEN or --token)")
        sys.exit(2)

    shutdown_event = threading.Event()

    def signal_handler(signum, frame):
        logger.info("Received signal %d, shutting down...", signum)
        shutdown_event.set()

    signal.signal(signal.SIGINT, signal_handler)
    signal.signal(signal.SIGTERM, signal_handler)

    logger.info(
        "Starting observer: endpoint=%s, workers=%d, mode=%s, source=%s",
        config.endpoint, config.workers, config.render_mode.value,
        config.input_file or "stdin",
    )

    observer = Observer(config)
    observer.start()
    try:
        for line in _iter_lines(config.input_file, shutdown_event):
            observer.log(line)
    finally:
        observer.stop(drain_timeout=None if shutdown_event.is_set() else 30.0)


if __name__ == "__main__":
    main()

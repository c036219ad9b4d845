"""Entry point for the development log collector."""

import logging
import os
import sys

from observer.server import create_app


def main():
    logging.basicConfig(
        level=logging.INFO,
        format="%(asctime)s [%(levelname)s] %(name)s — %(message)s",
        stream=sys.stderr,
    )

    host = os.environ.get("COLLECTOR_HOST", "0.0.0.0")
    port = int(os.environ.get("COLLECTOR_PORT", "8080"))
    token = os.environ.get("COLLECTOR_TOKEN") or None

    app = create_app(token=token)
    logging.getLogger(__name__).info("Collector listening on %s:%d", host, port)
    app.run(host=host, port=port)


if __name__ == "__main__":
    main()

import threading

import pytest
from werkzeug.serving import make_server

from observer.server import ReceivedLogStore, create_app


class ScriptedTransport:
    """Returns queued outcomes in order, then *default*. Records every send."""

    def __init__(self, outcomes=(), default=True):
        self._outcomes = list(outcomes)
        self._default = default
        self._lock = threading.Lock()
        self.sent: list[tuple[str, str]] = []

    def send(self, text, token):
        with self._lock:
            self.sent.append((text, token))
            outcome = self._outcomes.pop(0) if self._outcomes else self._default
        if isinstance(outcome, Exception):
            raise outcome
        return outcome


class CollectingSink:
    """Error sink that records every (entry, cause) it receives."""

    def __init__(self):
        self._lock = threading.Lock()
        self.reports = []

    def report(self, entry, cause):
        with self._lock:
            self.reports.append((entry, cause))


@pytest.fixture
def make_transport():
    return ScriptedTransport


@pytest.fixture
def sink():
    return CollectingSink()


@pytest.fixture
def collector():
    """Run the development collector on an ephemeral port.

    Yields (url, store).
    """
    store = ReceivedLogStore()
    app = create_app(token="secret-token", store=store)
    server = make_server("127.0.0.1", 0, app, threaded=True)
    t = threading.Thread(target=server.serve_forever, daemon=True)
    t.start()
    try:
        yield f"http://127.0.0.1:{server.server_port}/log", store
    finally:
        server.shutdown()
        t.join(timeout=5)

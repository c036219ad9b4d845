"""Transports deliver one rendered entry to the remote logging endpoint."""

import logging
import threading
from typing import Protocol

import requests

logger = logging.getLogger(__name__)

DEFAULT_ENDPOINT = "https://obsr.us/log"


class Transport(Protocol):
    def send(self, text: str, token: str) -> bool:
        """Deliver *text* under *token*. Returns True on success."""
        ...


class HTTPTransport:
    """POSTs entries as JSON ``{"token": ..., "text": ...}`` to an endpoint.

    A 2xx response is a success; any other status or a connection error is a
    failure. Retrying is left to the delivery queue.

    ``requests.Session`` is not thread-safe, so each sending thread gets its
    own session. ``close()`` closes every session opened so far; a later send
    opens a fresh one.
    """

    def __init__(self, endpoint: str = DEFAULT_ENDPOINT, timeout: float | None = 10.0):
        self._endpoint = endpoint
        self._timeout = timeout
        self._local = threading.local()
        self._sessions: list[requests.Session] = []
        self._lock = threading.Lock()

    @property
    def endpoint(self) -> str:
        return self._endpoint

    def _session(self) -> requests.Session:
        session = getattr(self._local, "session", None)
        if session is None:
            session = requests.Session()
            self._local.session = session
            with self._lock:
                self._sessions.append(session)
        return session

    def send(self, text: str, token: str) -> bool:
        try:
            response = self._session().post(
                self._endpoint,
                json={"token": token, "text": text},
                timeout=self._timeout,
            )
        except requests.RequestException as e:
            logger.warning("POST to %s failed: %s", self._endpoint, e)
            return False

        if 200 <= response.status_code < 300:
            return True
        logger.warning(
            "POST to %s rejected with HTTP %d: %s",
            self._endpoint, response.status_code, response.text[:200],
        )
        return False

    def close(self):
        """Close every session opened by this transport."""
        with self._lock:
            sessions, self._sessions = self._sessions, []
            self._local = threading.local()
        for session in sessions:
            session.close()
        logger.debug("Closed %d HTTP session(s) for %s", len(sessions), self._endpoint)

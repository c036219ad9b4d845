"""Development log collector that accepts entries from HTTPTransport.

Stores received entries in memory so tests and local runs can inspect them.
"""

import logging
import threading

from flask import Flask, jsonify, request

logger = logging.getLogger(__name__)


class ReceivedLogStore:
    """Thread-safe list of received ``{"token", "text"}`` entries."""

    def __init__(self):
        self._lock = threading.Lock()
        self._entries: list[dict] = []

    def add(self, entry: dict):
        with self._lock:
            self._entries.append(entry)

    def all(self) -> list[dict]:
        with self._lock:
            return list(self._entries)

    def __len__(self) -> int:
        with self._lock:
            return len(self._entries)


def create_app(token: str | None = None, store: ReceivedLogStore | None = None) -> Flask:
    """Flask application factory.

    When *token* is set, entries carrying a different token are rejected
    with 401.
    """
    app = Flask(__name__)
    store = store if store is not None else ReceivedLogStore()
    app.config["store"] = store

    @app.route("/health")
    def health():
        return jsonify({"status": "healthy", "received": len(store)})

    @app.route("/log", methods=["POST"])
    def ingest():
        body = request.get_json(silent=True)
        if (
            not isinstance(body, dict)
            or not isinstance(body.get("text"), str)
            or not isinstance(body.get("token"), str)
        ):
            return jsonify({"status": "error", "message": "expected JSON with token and text"}), 400

        if token is not None and body["token"] != token:
            logger.warning("Rejected entry with unknown token")
            return jsonify({"status": "error", "message": "invalid token"}), 401

        store.add({"token": body["token"], "text": body["text"]})
        logger.info("Received entry (%d chars)", len(body["text"]))
        return jsonify({"status": "ok"}), 201

    @app.route("/logs")
    def list_logs():
        return jsonify(store.all())

    return app

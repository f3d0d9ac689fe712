"""
Status Server - Simple HTTP server for health checks and debugging.

This module provides a lightweight HTTP server that exposes:
    GET /health - Returns {"status": "ok", "session": <state>}
    GET /peers - Returns the avatars and video windows of the room

The server runs in a background thread alongside the room client. Room
state is read on the client's event loop, which owns it.
"""

import asyncio
import concurrent.futures
import json
import logging
from collections.abc import Callable
from http import HTTPStatus
from http.server import BaseHTTPRequestHandler, HTTPServer
from threading import Thread
from typing import Any


logger = logging.getLogger(__name__)

DEFAULT_PORT = 8080

# How long a request waits for the event loop to take a snapshot
SNAPSHOT_TIMEOUT_S = 2.0


class StatusHandler(BaseHTTPRequestHandler):
    """HTTP request handler for health and status endpoints."""

    # Set on the per-server subclass built by StatusServer
    client: Any = None
    loop: asyncio.AbstractEventLoop | None = None

    def log_message(self, format: str, *args) -> None:
        """Override to use Python logging instead of stderr."""
        logger.debug(f"Status server: {format % args}")

    def _send_json_response(self, data: dict, status: int = HTTPStatus.OK) -> None:
        """Send a JSON response with the given data and status code."""
        self.send_response(status)
        self.send_header("Content-Type", "application/json")
        self.end_headers()
        self.wfile.write(json.dumps(data).encode("utf-8"))

    def do_GET(self) -> None:
        """Handle GET requests."""
        if self.path == "/health":
            self._handle_health()
        elif self.path == "/peers":
            self._handle_peers()
        elif self.path == "/":
            self._handle_root()
        else:
            self._handle_not_found()

    def _handle_health(self) -> None:
        session = getattr(self.client, "session", None)
        state = session.state.value if session is not None else "Idle"
        self._send_json_response({"status": "ok", "session": state})

    def _handle_peers(self) -> None:
        try:
            snapshot = self._read_on_loop(self.client.model.snapshot)
        except concurrent.futures.TimeoutError:
            logger.warning("Event loop did not answer the /peers snapshot in time")
            self._send_json_response({"error": "Busy"}, status=HTTPStatus.SERVICE_UNAVAILABLE)
            return
        self._send_json_response(snapshot)

    def _read_on_loop(self, read: Callable[[], dict]) -> dict:
        """
        Run ``read`` on the client's event loop and wait for its result.

        Falls back to calling it on this thread when no loop is running.
        """
        loop = self.loop
        if loop is None or not loop.is_running():
            return read()

        future: concurrent.futures.Future = concurrent.futures.Future()

        def run() -> None:
            try:
                future.set_result(read())
            except Exception as e:
                future.set_exception(e)

        loop.call_soon_threadsafe(run)
        return future.result(timeout=SNAPSHOT_TIMEOUT_S)

    def _handle_root(self) -> None:
        """Handle / endpoint - basic service info."""
        self._send_json_response(
            {
                "service": "roomsync",
                "endpoints": ["/health", "/peers"],
            }
        )

    def _handle_not_found(self) -> None:
        """Handle unknown endpoints."""
        self._send_json_response({"error": "Not found"}, status=HTTPStatus.NOT_FOUND)


class StatusServer:
    """
    Background HTTP server exposing the client state.

    Args:
        client: Object with ``model`` (RoomModel) and ``session`` attributes
        port: Port to listen on (0 picks a free port)
        host: Interface to bind
        loop: Event loop owning the client state (default: the running loop
            at ``start``)
    """

    def __init__(
        self,
        client: Any,
        port: int = DEFAULT_PORT,
        host: str = "0.0.0.0",
        loop: asyncio.AbstractEventLoop | None = None,
    ) -> None:
        self.client = client
        self.port = port
        self.host = host
        self.loop = loop
        self._server: HTTPServer | None = None
        self._thread: Thread | None = None

    @property
    def server_port(self) -> int | None:
        return self._server.server_port if self._server is not None else None

    def start(self) -> None:
        """Start the status server in a background thread."""
        if self.loop is None:
            try:
                self.loop = asyncio.get_running_loop()
            except RuntimeError:
                logger.debug("No running event loop, status reads run on the server thread")
        handler = type(
            "BoundStatusHandler", (StatusHandler,), {"client": self.client, "loop": self.loop}
        )
        self._server = HTTPServer((self.host, self.port), handler)
        self._thread = Thread(target=self._server.serve_forever, daemon=True)
        self._thread.start()
        logger.info(f"Status server started on port {self.server_port}")

    def stop(self) -> None:
        """Stop the status server."""
        if self._server is not None:
            self._server.shutdown()
            self._server.server_close()
            self._server = None
        if self._thread is not None:
            self._thread.join(timeout=5)
            self._thread = None
        logger.info("Status server stopped")

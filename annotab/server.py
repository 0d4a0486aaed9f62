from __future__ import annotations

import errno
import logging
import threading
from http.server import BaseHTTPRequestHandler, ThreadingHTTPServer
from pathlib import Path
from typing import Any
from urllib.parse import unquote, urlparse

from .record import PayloadError, SessionRecord, parse_exit_body
from .session import SessionState

logger = logging.getLogger(__name__)

MIME_TYPES = {
    ".html": "text/html; charset=utf-8",
    ".css": "text/css; charset=utf-8",
    ".js": "text/javascript; charset=utf-8",
    ".json": "application/json; charset=utf-8",
    ".txt": "text/plain; charset=utf-8",
    ".md": "text/plain; charset=utf-8",
    ".csv": "text/plain; charset=utf-8",
    ".png": "image/png",
    ".jpg": "image/jpeg",
    ".jpeg": "image/jpeg",
    ".gif": "image/gif",
    ".svg": "image/svg+xml",
    ".webp": "image/webp",
    ".ico": "image/x-icon",
    ".pdf": "application/pdf",
}


class ServerStartError(RuntimeError):
    pass


def resolve_static(base_dir: Path, url_path: str) -> Path | None:
    """Map a request path onto a file under ``base_dir``; ``None`` when it escapes the directory."""

    relative = unquote(url_path).lstrip("/")
    base = base_dir.resolve()
    target = (base / relative).resolve()
    if target != base and base not in target.parents:
        return None
    return target


def _handler_factory(state: SessionState) -> type[BaseHTTPRequestHandler]:
    class Handler(BaseHTTPRequestHandler):
        server_version = "AnnotabServer/1.0"

        def _send_common_headers(self) -> None:
            self.send_header("Cache-Control", "no-store")

        def _write_bytes(self, status: int, raw: bytes, content_type: str) -> None:
            self.send_response(status)
            self._send_common_headers()
            self.send_header("Content-Type", content_type)
            self.send_header("Content-Length", str(len(raw)))
            self.end_headers()
            self.wfile.write(raw)

        def _write_text(self, status: int, text: str) -> None:
            self._write_bytes(status, text.encode("utf-8"), "text/plain; charset=utf-8")

        def _write_html(self, html: str) -> None:
            self._write_bytes(200, html.encode("utf-8"), "text/html; charset=utf-8")

        def do_GET(self) -> None:  # noqa: N802
            path = urlparse(self.path).path
            if path in {"/", "/index.html"}:
                try:
                    self._write_html(state.render_html())
                except Exception as error:  # noqa: BLE001
                    logger.error("Failed to render %s: %s", state.source_path.name, error)
                    self._write_text(500, f"Failed to render page: {error}")
                return
            if path == "/healthz":
                self._write_text(200, "ok")
                return
            if path == "/sse":
                self._serve_events()
                return
            self._serve_static(path)

        def _serve_events(self) -> None:
            channel = state.open_channel()
            if channel is None:
                self._write_text(503, "session is closing")
                return
            try:
                self.send_response(200)
                self.send_header("Content-Type", "text/event-stream; charset=utf-8")
                self.send_header("Cache-Control", "no-cache")
                self.send_header("Connection", "keep-alive")
                self.end_headers()
                self.wfile.write(f"retry: {state.config.sse_retry_ms}\n\n".encode("utf-8"))
                self.wfile.flush()
                for data in channel.events():
                    self.wfile.write(f"data: {data}\n\n".encode("utf-8"))
                    self.wfile.flush()
            except OSError as error:
                logger.debug("Event stream to %s ended: %s", self.address_string(), error)
            finally:
                state.close_channel(channel)
                self.close_connection = True

        def _serve_static(self, path: str) -> None:
            target = resolve_static(state.source_path.parent, path)
            if target is None:
                self._write_text(403, "forbidden")
                return
            if not target.is_file():
                self._write_text(404, f"Not found: {path}")
                return
            try:
                raw = target.read_bytes()
            except OSError as error:
                logger.warning("Failed to read %s: %s", target, error)
                self._write_text(500, "failed to read file")
                return
            content_type = MIME_TYPES.get(target.suffix.lower(), "application/octet-stream")
            self._write_bytes(200, raw, content_type)

        def do_POST(self) -> None:  # noqa: N802
            path = urlparse(self.path).path
            if path != "/exit":
                self._write_text(404, f"Not found: {path}")
                return
            try:
                length = int(self.headers.get("Content-Length", "0"))
            except ValueError:
                self._write_text(400, "Invalid Content-Length header.")
                return
            if length < 0:
                self._write_text(400, "Invalid Content-Length header.")
                return
            if length > state.config.max_body_bytes:
                logger.warning("Rejected /exit payload of %d bytes (limit %d)", length, state.config.max_body_bytes)
                self.close_connection = True
                self._write_text(413, "payload too large")
                return
            raw = self.rfile.read(length) if length else b""
            record: SessionRecord | None = None
            error: PayloadError | None = None
            try:
                record = SessionRecord.from_payload(parse_exit_body(raw), file=state.source_path.name, mode=state.mode)
            except PayloadError as exc:
                error = exc
            if not state.begin_shutdown(record):
                self._write_text(409, "session already submitted")
                return
            if error is not None:
                logger.warning("Malformed /exit payload, closing session without a record: %s", error)
                self._write_text(400, "bad request")
            else:
                self._write_text(200, "bye")
            threading.Thread(target=self.server.shutdown, name="shutdown", daemon=True).start()

        def log_message(self, fmt: str, *args: Any) -> None:
            logger.debug("%s %s", self.address_string(), fmt % args)

    return Handler


def create_server(state: SessionState) -> ThreadingHTTPServer:
    """Bind the session's handler, walking upward from the configured port while it is taken."""

    handler = _handler_factory(state)
    host, port = state.config.host, state.config.port
    attempts = max(1, state.config.port_attempts) if port else 1
    for offset in range(attempts):
        candidate = port + offset if port else 0
        if candidate > 65535:
            break
        try:
            server = ThreadingHTTPServer((host, candidate), handler)
        except OSError as error:
            if error.errno != errno.EADDRINUSE:
                raise ServerStartError(f"Cannot bind {host}:{candidate}: {error}") from error
            logger.info("Port %d is in use, trying %d", candidate, candidate + 1)
            continue
        server.daemon_threads = True
        return server
    raise ServerStartError(f"No free port found starting at {port} ({attempts} attempts).")


def server_url(server: ThreadingHTTPServer) -> str:
    host, port = server.server_address[:2]
    if host in {"0.0.0.0", "::"}:
        host = "localhost"
    return f"http://{host}:{port}/"


def serve_until_submitted(server: ThreadingHTTPServer, state: SessionState) -> SessionRecord | None:
    """Run the listener until ``/exit`` drains the session; returns the submitted record, if any."""

    state.start()
    try:
        server.serve_forever(poll_interval=0.1)
    finally:
        state.close()
        server.server_close()
        logger.info("Session for %s closed", state.source_path.name)
    return state.record

"""
Local control API for a long-lived supervisor.

``kiro-sidecar serve`` keeps one ``SidecarSupervisor`` in memory and
exposes it on ``127.0.0.1:<control_port>`` so that separate CLI
invocations (or a GUI) can start, stop and query the same gateway:

    GET  /ping
    GET  /status
    POST /start   {StartParams, camelCase}
    POST /stop    {"port": 8080}
"""

from __future__ import annotations

import json
import logging
import threading
import urllib.error
import urllib.request
from http.server import BaseHTTPRequestHandler, ThreadingHTTPServer
from typing import Optional

from pydantic import ValidationError

from .errors import (
    AlreadyRunning,
    LockUnavailable,
    PortInUse,
    PortReleaseFailed,
    SidecarError,
)
from .models import SidecarStatus, StartParams
from .supervisor import SidecarSupervisor

logger = logging.getLogger("kiro_sidecar.control")

_CONFLICT_ERRORS = (AlreadyRunning, PortInUse, PortReleaseFailed)


class ControlUnavailable(SidecarError):
    """No control server answered on the control port."""

    kind = "ControlUnavailable"


class RemoteError(SidecarError):
    """An error reported by the control server, kind preserved."""

    def __init__(self, message: str, kind: str = "SidecarError"):
        super().__init__(message)
        self.kind = kind


def _http_status_for(exc: SidecarError) -> int:
    if isinstance(exc, _CONFLICT_ERRORS):
        return 409
    if isinstance(exc, LockUnavailable):
        return 503
    return 500


class ControlServer:
    """Serve a supervisor over local HTTP.

    Args:
        supervisor: The supervisor to expose.
        port: Control port; 0 picks a free one.
        host: Bind address. Keep it on loopback.
    """

    def __init__(self, supervisor: SidecarSupervisor, port: int, host: str = "127.0.0.1"):
        self.supervisor = supervisor
        self._server = ThreadingHTTPServer((host, port), self._handler_class())
        self._thread: Optional[threading.Thread] = None

    @property
    def port(self) -> int:
        return self._server.server_address[1]

    def _handler_class(self):
        supervisor = self.supervisor

        class ControlHandler(BaseHTTPRequestHandler):
            """HTTP handler for the supervisor control API."""

            def do_GET(self):
                if self.path == "/ping":
                    self._json_response({"pong": True})
                elif self.path == "/status":
                    self._run(supervisor.status)
                else:
                    self._json_response(
                        {"endpoints": ["/ping", "/status", "/start", "/stop"]},
                        status=404,
                    )

            def do_POST(self):
                body = self._read_json()
                if body is None:
                    return
                if self.path == "/start":
                    try:
                        params = StartParams.model_validate(body)
                    except ValidationError as exc:
                        self._json_response(
                            {"error": str(exc), "kind": "InvalidParams"}, status=400
                        )
                        return
                    self._run(lambda: supervisor.start(params))
                elif self.path == "/stop":
                    port = body.get("port")
                    if port is not None and not isinstance(port, int):
                        self._json_response(
                            {"error": "port must be an integer", "kind": "InvalidParams"},
                            status=400,
                        )
                        return
                    self._run(lambda: supervisor.stop(port))
                else:
                    self._json_response({"error": f"unknown endpoint {self.path}"}, status=404)

            def _run(self, operation):
                try:
                    status: SidecarStatus = operation()
                except SidecarError as exc:
                    logger.warning("Control request %s failed: %s", self.path, exc)
                    self._json_response(exc.to_dict(), status=_http_status_for(exc))
                    return
                except Exception as exc:
                    logger.exception("Control request %s crashed", self.path)
                    self._json_response({"error": str(exc), "kind": "InternalError"}, status=500)
                    return
                self._json_response(status.to_wire())

            def _read_json(self) -> Optional[dict]:
                try:
                    length = int(self.headers.get("Content-Length") or 0)
                except ValueError:
                    self._json_response(
                        {"error": "invalid Content-Length", "kind": "InvalidParams"}, status=400
                    )
                    return None
                raw = self.rfile.read(length) if length else b""
                if not raw:
                    return {}
                try:
                    data = json.loads(raw)
                except json.JSONDecodeError as exc:
                    self._json_response({"error": f"invalid JSON: {exc}"}, status=400)
                    return None
                if not isinstance(data, dict):
                    self._json_response({"error": "expected a JSON object"}, status=400)
                    return None
                return data

            def _json_response(self, data: dict, status: int = 200):
                payload = json.dumps(data, indent=2, default=str).encode()
                self.send_response(status)
                self.send_header("Content-Type", "application/json")
                self.send_header("Content-Length", str(len(payload)))
                self.end_headers()
                self.wfile.write(payload)

            def log_message(self, format, *args):
                logger.debug("API: %s", format % args)

        return ControlHandler

    def start(self) -> None:
        """Serve in a background thread."""
        self._thread = threading.Thread(
            target=self._server.serve_forever,
            name="kiro-sidecar-control",
            daemon=True,
        )
        self._thread.start()
        logger.info("Control API listening on http://127.0.0.1:%d", self.port)

    def stop(self) -> None:
        self._server.shutdown()
        self._server.server_close()
        if self._thread:
            self._thread.join(timeout=5)


class ControlClient:
    """Talk to a running ``kiro-sidecar serve``."""

    def __init__(self, port: int, host: str = "127.0.0.1", timeout: float = 30.0):
        self.base_url = f"http://{host}:{port}"
        self.timeout = timeout

    def _request(self, method: str, path: str, payload: Optional[dict] = None) -> dict:
        data = json.dumps(payload).encode() if payload is not None else None
        req = urllib.request.Request(
            self.base_url + path,
            data=data,
            method=method,
            headers={"Content-Type": "application/json"},
        )
        try:
            with urllib.request.urlopen(req, timeout=self.timeout) as resp:
                return json.loads(resp.read())
        except urllib.error.HTTPError as exc:
            try:
                body = json.loads(exc.read())
            except (json.JSONDecodeError, OSError):
                body = {}
            raise RemoteError(
                body.get("error") or f"control API returned HTTP {exc.code}",
                body.get("kind", "SidecarError"),
            ) from exc
        except (urllib.error.URLError, OSError) as exc:
            raise ControlUnavailable(
                f"control server not reachable at {self.base_url}: {exc}"
            ) from exc

    def ping(self) -> bool:
        try:
            return bool(self._request("GET", "/ping").get("pong"))
        except SidecarError:
            return False

    def status(self) -> SidecarStatus:
        return SidecarStatus.model_validate(self._request("GET", "/status"))

    def start(self, params: StartParams) -> SidecarStatus:
        payload = params.model_dump(by_alias=True, exclude_none=True)
        return SidecarStatus.model_validate(self._request("POST", "/start", payload))

    def stop(self, port: Optional[int] = None) -> SidecarStatus:
        payload = {"port": port} if port is not None else {}
        return SidecarStatus.model_validate(self._request("POST", "/stop", payload))

"""HTTP runtime for the mock EMREX provider: control API plus the redirect entry point."""

from __future__ import annotations

import json
import os
import socketserver
import threading
import time
from dataclasses import dataclass
from http import HTTPStatus
from http.server import BaseHTTPRequestHandler, HTTPServer
from typing import Any
from urllib.parse import parse_qs, urlsplit

import httpx
import structlog
from pydantic import BaseModel, Field

from .behavior import (
    BehaviorConfig,
    BehaviorMode,
    BehaviorTable,
    InvalidDelayError,
    MissingParameterError,
    UnknownBehaviorError,
)
from .payloads import CallbackPayload, build_callback_payload

LOGGER = structlog.get_logger("mock_provider")

DEFAULT_PORT = 9081
DEFAULT_CALLBACK_TIMEOUT = 10.0

# Test-only key, not tied to any real certificate.
MOCK_PUBLIC_KEY = """-----BEGIN PUBLIC KEY-----
MIIBIjANBgkqhkiG9w0BAQEFAAOCAQ8AMIIBCgKCAQEA0Z3VS5JJcds3xfn/ygWyf8BLfZ/pZ2xN
oJpcXHwWrRkRGMlKOGHnNQRGKXW+8rbFOZ2c8IZvZ2yqQv1X9VeGLKxW3JWqLG9N1X5e0CzBqE6z
qU4q/5qUdmT8XwXl3qB8dC0y0yJME8b3uQ3E8FhfqX+ZTpKJr7zP2Q5M9y9Zy+6P9qZ+H5qm8r0z
Z+H5qm8r0wIDAQAB
-----END PUBLIC KEY-----"""


class ProviderSettings(BaseModel):
    """Bind address and outbound behavior of the mock provider."""

    host: str = "0.0.0.0"
    port: int = DEFAULT_PORT
    endpoint_url: str | None = None
    callback_timeout: float = Field(default=DEFAULT_CALLBACK_TIMEOUT, gt=0)

    @classmethod
    def from_env(cls, **overrides: Any) -> "ProviderSettings":
        values: dict[str, Any] = {
            "port": int(os.getenv("MOCK_EMREX_PORT", str(DEFAULT_PORT))),
            "endpoint_url": os.getenv("MOCK_EMREX_ENDPOINT") or None,
            "callback_timeout": float(os.getenv("MOCK_EMREX_CALLBACK_TIMEOUT", str(DEFAULT_CALLBACK_TIMEOUT))),
        }
        values.update({key: value for key, value in overrides.items() if value is not None})
        return cls(**values)


@dataclass(frozen=True)
class CallbackResult:
    """Outcome of one redirect: what was sent back and whether the bridge accepted it."""

    session_id: str
    return_code: str
    delivered: bool
    status_code: int | None = None
    error: str | None = None


class ProviderSimulator:
    """Emulates an EMREX provider whose outcome is chosen through the behavior table."""

    def __init__(
        self,
        behaviors: BehaviorTable | None = None,
        *,
        callback_timeout: float = DEFAULT_CALLBACK_TIMEOUT,
        http_client: httpx.Client | None = None,
    ) -> None:
        self.behaviors = behaviors or BehaviorTable()
        self._callback_timeout = callback_timeout
        self._http_client = http_client
        self._released = threading.Event()

    def set_behavior(self, mode: Any = None, delay_ms: Any = None, session_id: str | None = None) -> BehaviorConfig:
        config = self.behaviors.set(mode, delay_ms, session_id=session_id)
        LOGGER.info(
            "behavior_updated",
            behavior=config.mode.value,
            delay_ms=config.delay_ms,
            session_id=session_id,
        )
        return config

    def get_config(self, session_id: str | None = None) -> BehaviorConfig:
        return self.behaviors.get(session_id)

    def reset(self) -> BehaviorConfig:
        config = self.behaviors.reset()
        LOGGER.info("behavior_reset", behavior=config.mode.value)
        return config

    def release(self) -> None:
        """Let every redirect parked by ``timeout`` mode return without answering."""

        self._released.set()

    def invoke(self, session_id: str | None, return_url: str | None) -> CallbackResult | None:
        """Complete the EMREX flow for ``session_id`` by posting back to ``return_url``.

        Returns ``None`` only for ``timeout`` mode, and only once the simulator
        has been released; until then the call blocks with no callback issued.
        """

        if not session_id or not return_url:
            raise MissingParameterError("Missing sessionId or returnUrl")

        config = self.behaviors.get(session_id)
        log = LOGGER.bind(session_id=session_id, behavior=config.mode.value)
        log.info("redirect_received", return_url=return_url)

        if config.mode is BehaviorMode.TIMEOUT:
            log.info("timeout_simulated")
            self._released.wait()
            return None

        if config.delay_ms > 0:
            time.sleep(config.delay_ms / 1000)

        payload = build_callback_payload(config.mode)
        return self._post_callback(session_id, return_url, payload, log)

    def _post_callback(
        self,
        session_id: str,
        return_url: str,
        payload: CallbackPayload,
        log: Any,
    ) -> CallbackResult:
        fields = payload.form_fields(session_id)
        client = self._http_client or httpx.Client(timeout=self._callback_timeout)
        try:
            response = client.post(return_url, data=fields)
        except httpx.HTTPError as exc:
            log.warning("callback_failed", return_code=payload.return_code, error=str(exc))
            return CallbackResult(
                session_id=session_id,
                return_code=payload.return_code,
                delivered=False,
                error=f"{type(exc).__name__}: {exc}",
            )
        finally:
            if self._http_client is None:
                client.close()

        delivered = response.is_success
        log.info(
            "callback_delivered" if delivered else "callback_rejected",
            return_code=payload.return_code,
            status=response.status_code,
        )
        return CallbackResult(
            session_id=session_id,
            return_code=payload.return_code,
            delivered=delivered,
            status_code=response.status_code,
            error=None if delivered else f"Bridge answered HTTP {response.status_code}",
        )


class ThreadedHTTPServer(socketserver.ThreadingMixIn, HTTPServer):
    daemon_threads = True


class ProviderServer:
    """Runs the simulator behind a threaded HTTP server."""

    def __init__(self, settings: ProviderSettings, simulator: ProviderSimulator | None = None) -> None:
        self._settings = settings
        self.simulator = simulator or ProviderSimulator(callback_timeout=settings.callback_timeout)
        self._httpd: ThreadedHTTPServer | None = None
        self._thread: threading.Thread | None = None
        self._ready = threading.Event()
        self._logger = LOGGER.bind(component="server")

    @property
    def port(self) -> int:
        if self._httpd is None:
            return self._settings.port
        return self._httpd.server_address[1]

    @property
    def url(self) -> str:
        host = self._settings.host
        if host in ("0.0.0.0", ""):
            host = "127.0.0.1"
        return f"http://{host}:{self.port}"

    @property
    def endpoint_url(self) -> str:
        return self._settings.endpoint_url or f"{self.url}/emrex"

    def start(self) -> None:
        self._logger.info("server_starting", host=self._settings.host, port=self._settings.port)
        httpd = ThreadedHTTPServer((self._settings.host, self._settings.port), self._build_handler_factory())
        self._httpd = httpd
        self._thread = threading.Thread(target=httpd.serve_forever, daemon=True)
        self._thread.start()
        self._ready.set()
        self._logger = self._logger.bind(host=httpd.server_address[0], port=httpd.server_address[1])
        self._logger.info("server_started", endpoint=self.endpoint_url)

    def stop(self) -> None:
        if not self._httpd:
            return
        self._logger.info("server_stopping")
        self.simulator.release()
        try:
            self._httpd.shutdown()
            self._httpd.server_close()
        finally:
            if self._thread:
                self._thread.join(timeout=2)
            self._httpd = None
        self._logger.info("server_stopped")

    def wait_until_ready(self, timeout: float = 1.0) -> bool:
        return self._ready.wait(timeout=timeout)

    def __enter__(self) -> "ProviderServer":
        self.start()
        self.wait_until_ready()
        return self

    def __exit__(self, exc_type, exc, tb) -> None:
        self.stop()

    def _build_handler_factory(self) -> type[BaseHTTPRequestHandler]:
        server = self
        simulator = self.simulator
        handler_logger = LOGGER.bind(component="handler")

        class Handler(BaseHTTPRequestHandler):
            def log_message(self, format: str, *args: Any) -> None:  # pragma: no cover - avoid stderr
                handler_logger.debug("http_trace", client_ip=self.client_address[0], message=format % args)

            def do_GET(self) -> None:  # noqa: N802 (BaseHTTPRequestHandler requirement)
                self._handle()

            def do_POST(self) -> None:  # noqa: N802
                self._handle()

            def _handle(self) -> None:
                parts = urlsplit(self.path)
                path = parts.path.rstrip("/") or "/"
                query = {key: values[-1] for key, values in parse_qs(parts.query).items()}
                body = self._read_body()
                try:
                    self._route(path, query, body)
                except Exception:
                    handler_logger.exception("request_failed", method=self.command, path=path)
                    self._respond_json(HTTPStatus.INTERNAL_SERVER_ERROR, {"error": "mock failure"})

            def _route(self, path: str, query: dict[str, str], body: dict[str, Any]) -> None:
                if path == "/emrex" and self.command in ("GET", "POST"):
                    params = {**query, **body}
                    session_id = params.get("sessionId") or params.get("stateId")
                    self._redirect(session_id, params.get("returnUrl"))
                    return
                if path == "/test/behavior" and self.command == "POST":
                    self._set_behavior(body)
                    return
                if path == "/test/config" and self.command == "GET":
                    config = simulator.get_config(query.get("sessionId"))
                    self._respond_json(HTTPStatus.OK, config.as_response())
                    return
                if path == "/test/reset" and self.command == "POST":
                    self._respond_json(HTTPStatus.OK, simulator.reset().as_response())
                    return
                if path == "/health" and self.command == "GET":
                    self._respond_json(HTTPStatus.OK, {"status": "ok", **simulator.get_config().as_response()})
                    return
                if path == "/certificates" and self.command == "GET":
                    handler_logger.info("certificates_requested")
                    self._respond_json(
                        HTTPStatus.OK,
                        {"ncps": [{"url": server.endpoint_url, "pubKey": MOCK_PUBLIC_KEY}]},
                    )
                    return
                handler_logger.warning("request_unmatched", method=self.command, path=path)
                self._respond_json(HTTPStatus.NOT_FOUND, {"error": "No route matched"})

            def _redirect(self, session_id: str | None, return_url: str | None) -> None:
                try:
                    result = simulator.invoke(session_id, return_url)
                except MissingParameterError as exc:
                    self._respond_json(HTTPStatus.BAD_REQUEST, {"error": str(exc)})
                    return
                if result is None:
                    # timeout mode: the connection is closed without any answer
                    self.close_connection = True
                    return
                if not result.delivered and result.status_code is None:
                    self._respond_json(HTTPStatus.INTERNAL_SERVER_ERROR, {"error": "Failed to communicate with Bridge"})
                    return
                self._respond_html(HTTPStatus.OK, _acknowledgement_page(result))

            def _set_behavior(self, body: dict[str, Any]) -> None:
                try:
                    config = simulator.set_behavior(
                        body.get("mode"),
                        body.get("delay"),
                        session_id=body.get("sessionId"),
                    )
                except UnknownBehaviorError as exc:
                    self._respond_json(HTTPStatus.BAD_REQUEST, {"error": str(exc), "accepted": exc.accepted})
                    return
                except InvalidDelayError as exc:
                    self._respond_json(HTTPStatus.BAD_REQUEST, {"error": str(exc)})
                    return
                self._respond_json(HTTPStatus.OK, config.as_response())

            def _read_body(self) -> dict[str, Any]:
                length = int(self.headers.get("Content-Length", 0) or 0)
                if not length:
                    return {}
                raw = self.rfile.read(length).decode("utf-8", errors="replace")
                content_type = self.headers.get("Content-Type", "")
                if "application/x-www-form-urlencoded" in content_type:
                    return {key: values[-1] for key, values in parse_qs(raw).items()}
                try:
                    payload = json.loads(raw)
                except json.JSONDecodeError:
                    return {}
                return payload if isinstance(payload, dict) else {}

            def _respond_json(self, status: HTTPStatus, payload: dict[str, Any]) -> None:
                self._respond(status, json.dumps(payload).encode("utf-8"), "application/json")

            def _respond_html(self, status: HTTPStatus, page: str) -> None:
                self._respond(status, page.encode("utf-8"), "text/html; charset=utf-8")

            def _respond(self, status: HTTPStatus, body: bytes, content_type: str) -> None:
                self.send_response(status)
                self.send_header("Content-Type", content_type)
                self.send_header("Content-Length", str(len(body)))
                self.end_headers()
                self.wfile.write(body)

        return Handler


def _acknowledgement_page(result: CallbackResult) -> str:
    return f"""<html>
  <body>
    <h1>Mock EMREX Provider</h1>
    <p>Data has been sent to the Bridge.</p>
    <p>Return code: {result.return_code}</p>
    <p>Bridge status: {result.status_code}</p>
    <p>You will be redirected shortly...</p>
  </body>
</html>"""

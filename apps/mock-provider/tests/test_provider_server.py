from __future__ import annotations

import base64
import threading
from http.server import BaseHTTPRequestHandler, HTTPServer
from urllib.parse import parse_qs

import httpx
import pytest

from mock_provider.behavior import BehaviorMode
from mock_provider.payloads import NOT_GZIPPED, SAMPLE_ELMO, decode_elmo
from mock_provider.server import ProviderServer, ProviderSettings, ProviderSimulator


class CallbackRecorder:
    """Stand-in for the bridge's store endpoint that records every form post."""

    def __init__(self, status: int = 200) -> None:
        self.status = status
        self.received: list[dict[str, str]] = []
        recorder = self

        class Handler(BaseHTTPRequestHandler):
            def do_POST(self) -> None:  # noqa: N802 - HTTP handler requirement
                length = int(self.headers.get("Content-Length", 0))
                raw = self.rfile.read(length).decode("utf-8")
                recorder.received.append({key: values[-1] for key, values in parse_qs(raw).items()})
                self.send_response(recorder.status)
                self.send_header("Content-Length", "0")
                self.end_headers()

            def log_message(self, format: str, *args: object) -> None:  # pragma: no cover - silence logs
                return

        self._server = HTTPServer(("127.0.0.1", 0), Handler)
        self._thread = threading.Thread(target=self._server.serve_forever, daemon=True)

    @property
    def url(self) -> str:
        return f"http://127.0.0.1:{self._server.server_address[1]}/store"

    def __enter__(self) -> "CallbackRecorder":
        self._thread.start()
        return self

    def __exit__(self, *exc: object) -> None:
        self._server.shutdown()
        self._server.server_close()


@pytest.fixture()
def provider() -> ProviderServer:
    server = ProviderServer(ProviderSettings(host="127.0.0.1", port=0, callback_timeout=2))
    with server:
        yield server


@pytest.fixture()
def bridge() -> CallbackRecorder:
    with CallbackRecorder() as recorder:
        yield recorder


def _redirect(provider: ProviderServer, session_id: str, return_url: str, timeout: float = 5) -> httpx.Response:
    return httpx.get(
        f"{provider.url}/emrex",
        params={"sessionId": session_id, "returnUrl": return_url},
        timeout=timeout,
    )


@pytest.mark.parametrize(
    ("mode", "return_code"),
    [
        (BehaviorMode.SUCCESS, "NCP_OK"),
        (BehaviorMode.ERROR, "NCP_ERROR"),
        (BehaviorMode.NO_RECORDS, "NCP_NO_RESULTS"),
        (BehaviorMode.CANCEL, "NCP_CANCEL"),
        (BehaviorMode.INVALID_GZIP, "NCP_OK"),
        (BehaviorMode.INVALID_XML, "NCP_OK"),
        (BehaviorMode.IDENTITY_MISMATCH, "NCP_OK"),
    ],
)
def test_each_mode_issues_exactly_one_callback(
    provider: ProviderServer, bridge: CallbackRecorder, mode: BehaviorMode, return_code: str
) -> None:
    httpx.post(f"{provider.url}/test/behavior", json={"mode": mode.value}, timeout=5).raise_for_status()

    response = _redirect(provider, "session-1", bridge.url)

    assert response.status_code == 200
    assert f"Return code: {return_code}" in response.text
    assert len(bridge.received) == 1
    callback = bridge.received[0]
    assert callback["sessionId"] == "session-1"
    assert callback["returnCode"] == return_code


def test_success_callback_carries_gzipped_elmo(provider: ProviderServer, bridge: CallbackRecorder) -> None:
    _redirect(provider, "session-ok", bridge.url)

    assert decode_elmo(bridge.received[0]["elmo"]) == SAMPLE_ELMO


def test_invalid_gzip_callback_is_plain_base64(provider: ProviderServer, bridge: CallbackRecorder) -> None:
    provider.simulator.set_behavior("invalid_gzip")

    _redirect(provider, "session-gz", bridge.url)

    assert base64.b64decode(bridge.received[0]["elmo"]) == NOT_GZIPPED


def test_error_modes_send_return_message_without_elmo(provider: ProviderServer, bridge: CallbackRecorder) -> None:
    provider.simulator.set_behavior("cancel")

    _redirect(provider, "session-cancel", bridge.url)

    callback = bridge.received[0]
    assert "elmo" not in callback
    assert callback["returnMessage"]


def test_timeout_mode_never_answers_or_calls_back(provider: ProviderServer, bridge: CallbackRecorder) -> None:
    provider.simulator.set_behavior("timeout")

    with pytest.raises(httpx.ReadTimeout):
        _redirect(provider, "session-timeout", bridge.url, timeout=0.5)

    assert bridge.received == []


def test_redirect_without_return_url_is_rejected(provider: ProviderServer, bridge: CallbackRecorder) -> None:
    response = httpx.get(f"{provider.url}/emrex", params={"sessionId": "abc"}, timeout=5)

    assert response.status_code == 400
    assert response.json() == {"error": "Missing sessionId or returnUrl"}
    assert bridge.received == []


def test_redirect_accepts_state_id_in_form_body(provider: ProviderServer, bridge: CallbackRecorder) -> None:
    response = httpx.post(
        f"{provider.url}/emrex",
        data={"stateId": "state-7", "returnUrl": bridge.url},
        timeout=5,
    )

    assert response.status_code == 200
    assert bridge.received[0]["sessionId"] == "state-7"


def test_unreachable_bridge_yields_server_error(provider: ProviderServer) -> None:
    with CallbackRecorder() as closed:
        dead_url = closed.url

    response = _redirect(provider, "session-x", dead_url)

    assert response.status_code == 500
    assert response.json() == {"error": "Failed to communicate with Bridge"}


def test_bridge_rejection_marks_callback_undelivered() -> None:
    simulator = ProviderSimulator(callback_timeout=2)
    with CallbackRecorder(status=422) as rejecting:
        result = simulator.invoke("session-r", rejecting.url)

    assert result is not None
    assert result.delivered is False
    assert result.status_code == 422
    assert len(rejecting.received) == 1


def test_unknown_mode_is_rejected_with_accepted_set(provider: ProviderServer) -> None:
    response = httpx.post(f"{provider.url}/test/behavior", json={"mode": "explode"}, timeout=5)

    assert response.status_code == 400
    payload = response.json()
    assert "explode" in payload["error"]
    assert payload["accepted"] == [mode.value for mode in BehaviorMode]
    assert provider.simulator.get_config().mode is BehaviorMode.SUCCESS


def test_negative_delay_is_rejected(provider: ProviderServer) -> None:
    response = httpx.post(f"{provider.url}/test/behavior", json={"mode": "error", "delay": -5}, timeout=5)

    assert response.status_code == 400


def test_behavior_endpoint_echoes_config(provider: ProviderServer) -> None:
    response = httpx.post(f"{provider.url}/test/behavior", json={"mode": "no_records", "delay": 250}, timeout=5)

    assert response.json() == {"behavior": "no_records", "responseDelay": 250}
    assert httpx.get(f"{provider.url}/test/config", timeout=5).json() == {
        "behavior": "no_records",
        "responseDelay": 250,
    }
    health = httpx.get(f"{provider.url}/health", timeout=5).json()
    assert health == {"status": "ok", "behavior": "no_records", "responseDelay": 250}


def test_session_override_leaves_default_untouched(provider: ProviderServer, bridge: CallbackRecorder) -> None:
    httpx.post(
        f"{provider.url}/test/behavior",
        json={"mode": "error", "sessionId": "special"},
        timeout=5,
    ).raise_for_status()

    _redirect(provider, "special", bridge.url)
    _redirect(provider, "ordinary", bridge.url)

    codes = {callback["sessionId"]: callback["returnCode"] for callback in bridge.received}
    assert codes == {"special": "NCP_ERROR", "ordinary": "NCP_OK"}
    session_config = httpx.get(f"{provider.url}/test/config", params={"sessionId": "special"}, timeout=5).json()
    assert session_config["behavior"] == "error"


def test_reset_restores_success(provider: ProviderServer) -> None:
    provider.simulator.set_behavior("cancel", 100, session_id="s1")

    response = httpx.post(f"{provider.url}/test/reset", timeout=5)

    assert response.json() == {"behavior": "success", "responseDelay": 0}
    assert provider.simulator.behaviors.session_count == 0


def test_certificates_advertise_redirect_endpoint(provider: ProviderServer) -> None:
    payload = httpx.get(f"{provider.url}/certificates", timeout=5).json()

    assert payload["ncps"][0]["url"] == f"{provider.url}/emrex"
    assert "BEGIN PUBLIC KEY" in payload["ncps"][0]["pubKey"]


def test_unknown_route_is_not_found(provider: ProviderServer) -> None:
    assert httpx.get(f"{provider.url}/nope", timeout=5).status_code == 404

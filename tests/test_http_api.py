from __future__ import annotations

import http.client
import json
import threading
from http.server import HTTPServer

import pytest

from crayon.api import CrayonAPI
from crayon.http_api import build_api_handler
from crayon.settings import ColorTable


@pytest.fixture
def server(engine, settings_cache):
    api = CrayonAPI(engine, settings_cache)
    httpd = HTTPServer(("127.0.0.1", 0), build_api_handler(api))
    thread = threading.Thread(target=httpd.serve_forever, daemon=True)
    thread.start()
    try:
        yield httpd
    finally:
        httpd.shutdown()
        httpd.server_close()


def _request(
    server: HTTPServer,
    method: str,
    path: str,
    body: object | None = None,
    headers: dict[str, str] | None = None,
) -> tuple[int, dict]:
    conn = http.client.HTTPConnection("127.0.0.1", int(server.server_address[1]), timeout=2)
    try:
        payload = None if body is None else json.dumps(body).encode("utf-8")
        request_headers = {"Content-Type": "application/json", **(headers or {})}
        conn.request(method, path, body=payload, headers=request_headers)
        resp = conn.getresponse()
        return resp.status, json.loads(resp.read().decode("utf-8"))
    finally:
        conn.close()


def test_get_settings_returns_defaults(server) -> None:
    status, payload = _request(server, "GET", "/v1/settings")

    assert status == 200
    assert payload["auto_mode"] is True
    assert payload["colors"]["json"] == ColorTable().json


def test_post_settings_normalizes_and_persists(server, settings_cache) -> None:
    status, payload = _request(
        server, "POST", "/v1/settings", {"autoMode": False, "colors": {"html": "#010203"}}
    )

    assert status == 200
    assert payload["auto_mode"] is False
    assert payload["colors"]["html"] == "#010203"
    assert payload["colors"]["status5xx"] == ColorTable().status5xx
    assert settings_cache.store.load().auto_mode is False


def test_colorize_reports_outcomes(server, source, writer) -> None:
    source.add("a", 200, ("application/json",))
    source.add("b", pending=True)

    status, payload = _request(server, "POST", "/v1/colorize", {"ids": ["a", "b", "a"]})

    assert status == 200
    assert payload == {"requested": 2, "colored": 1, "skipped": 1, "failed": 0}
    assert writer.writes == [("a", ColorTable().json)]


def test_colorize_empty_list_is_noop(server, writer) -> None:
    status, payload = _request(server, "POST", "/v1/colorize", {"ids": []})

    assert status == 200
    assert payload["requested"] == 0
    assert writer.writes == []


def test_colorize_rejects_malformed_ids(server) -> None:
    status, payload = _request(server, "POST", "/v1/colorize", {"ids": "a,b"})

    assert status == 400
    assert payload == {"error": "invalid_ids"}


def test_push_notification_endpoint(server, writer) -> None:
    status, payload = _request(
        server,
        "POST",
        "/v1/responses",
        {"id": "42", "status_code": 200, "content_type": "text/html"},
    )

    assert status == 202
    assert payload == {"ok": True}
    assert writer.writes == [("42", ColorTable().html)]


def test_push_notification_rejects_bad_payload(server) -> None:
    status, payload = _request(server, "POST", "/v1/responses", {"id": "", "status_code": 200})
    assert status == 400
    assert payload == {"error": "invalid_response"}

    status, _payload = _request(
        server, "POST", "/v1/responses", {"id": "1", "status_code": "200"}
    )
    assert status == 400


def test_status_reports_engine_state(server, engine) -> None:
    engine.tick()

    status, payload = _request(server, "GET", "/v1/status")

    assert status == 200
    assert payload["cursor_ready"] is True
    assert payload["pending"] == 0
    assert payload["auto_mode"] is True


def test_cross_origin_posts_are_rejected(server, writer) -> None:
    status, payload = _request(
        server,
        "POST",
        "/v1/responses",
        {"id": "1", "status_code": 500},
        headers={"Origin": "https://evil.example"},
    )

    assert status == 403
    assert payload == {"error": "forbidden"}
    assert writer.writes == []

    status, _payload = _request(
        server,
        "POST",
        "/v1/responses",
        {"id": "1", "status_code": 500},
        headers={"Origin": "http://localhost:5173"},
    )
    assert status == 202


def test_invalid_json_and_unknown_paths(server) -> None:
    conn = http.client.HTTPConnection("127.0.0.1", int(server.server_address[1]), timeout=2)
    try:
        conn.request("POST", "/v1/settings", body=b"{nope", headers={"Content-Length": "5"})
        resp = conn.getresponse()
        assert resp.status == 400
        assert json.loads(resp.read().decode("utf-8")) == {"error": "invalid_json"}
    finally:
        conn.close()

    status, payload = _request(server, "GET", "/v1/unknown")
    assert status == 404
    assert payload == {"error": "not_found"}


def _raw_post(server, content_length: str) -> tuple[int, dict]:
    conn = http.client.HTTPConnection("127.0.0.1", int(server.server_address[1]), timeout=2)
    try:
        conn.putrequest("POST", "/v1/settings")
        conn.putheader("Content-Type", "application/json")
        conn.putheader("Content-Length", content_length)
        conn.endheaders()
        resp = conn.getresponse()
        return resp.status, json.loads(resp.read().decode("utf-8"))
    finally:
        conn.close()


def test_body_length_errors(server) -> None:
    status, payload = _raw_post(server, "abc")
    assert status == 400
    assert payload == {"error": "invalid_content_length"}

    status, payload = _raw_post(server, str(10 * 1024 * 1024))
    assert status == 413
    assert payload == {"error": "payload_too_large"}

from __future__ import annotations

import json
import logging
import os
from http.server import BaseHTTPRequestHandler
from typing import Any
from urllib.parse import urlparse

from .api import CrayonAPI
from .engine import ColorizeError
from .exchanges import ExchangeResponse

logger = logging.getLogger(__name__)

MAX_BODY_BYTES = 64 * 1024

_ALLOWED_ORIGIN_HOSTS = {"127.0.0.1", "localhost", "::1"}


def _is_allowed_origin(url: str) -> bool:
    try:
        parsed = urlparse(url)
        hostname = parsed.hostname
        _ = parsed.port
    except ValueError:
        return False
    if parsed.scheme not in {"http", "https"}:
        return False
    return hostname in _ALLOWED_ORIGIN_HOSTS


def send_json_response(
    handler: BaseHTTPRequestHandler, payload: dict[str, Any], status: int = 200
) -> None:
    body = json.dumps(payload, ensure_ascii=False).encode("utf-8")
    handler.send_response(status)
    handler.send_header("Content-Type", "application/json; charset=utf-8")
    handler.send_header("Content-Length", str(len(body)))
    handler.end_headers()
    handler.wfile.write(body)


class RequestBodyError(ValueError):
    def __init__(self, code: str, status: int) -> None:
        super().__init__(code)
        self.code = code
        self.status = status


def _read_body(handler: BaseHTTPRequestHandler) -> bytes:
    try:
        length = int(handler.headers.get("Content-Length", "0") or 0)
    except ValueError as exc:
        raise RequestBodyError("invalid_content_length", 400) from exc
    if length <= 0:
        return b""
    if length > MAX_BODY_BYTES:
        raise RequestBodyError("payload_too_large", 413)
    return handler.rfile.read(length)


def _parse_json_body(raw: bytes) -> dict[str, Any] | None:
    if not raw:
        return None
    try:
        data = json.loads(raw.decode("utf-8"))
    except (json.JSONDecodeError, UnicodeDecodeError):
        return None
    return data if isinstance(data, dict) else None


def _parse_push(data: dict[str, Any]) -> tuple[str, ExchangeResponse] | None:
    exchange_id = data.get("id")
    if not isinstance(exchange_id, str) or not exchange_id.strip():
        return None
    status = data.get("status_code")
    if status is not None and (not isinstance(status, int) or isinstance(status, bool)):
        return None
    content_type = data.get("content_type")
    if content_type is None:
        values: tuple[str, ...] = ()
    elif isinstance(content_type, str):
        values = (content_type,)
    elif isinstance(content_type, list):
        values = tuple(value for value in content_type if isinstance(value, str))
    else:
        return None
    return exchange_id.strip(), ExchangeResponse(status_code=status, content_type=values)


def build_api_handler(api: CrayonAPI):
    class CrayonHandler(BaseHTTPRequestHandler):
        def log_message(self, format: str, *args: object) -> None:  # noqa: A002
            if os.environ.get("CRAYON_API_LOGS") == "1":
                super().log_message(format, *args)

        def _reject_cross_origin(self) -> bool:
            origin = self.headers.get("Origin")
            if not origin or _is_allowed_origin(origin):
                return False
            send_json_response(self, {"error": "forbidden"}, status=403)
            return True

        def do_GET(self) -> None:  # noqa: N802
            path = urlparse(self.path).path
            if path == "/v1/status":
                payload = api.engine.status()
                payload["auto_mode"] = api.get_settings().auto_mode
                send_json_response(self, payload)
                return
            if path == "/v1/settings":
                send_json_response(self, api.get_settings().to_dict())
                return
            send_json_response(self, {"error": "not_found"}, status=404)

        def do_POST(self) -> None:  # noqa: N802
            path = urlparse(self.path).path
            if path not in {"/v1/settings", "/v1/colorize", "/v1/responses"}:
                send_json_response(self, {"error": "not_found"}, status=404)
                return
            if self._reject_cross_origin():
                return
            try:
                raw = _read_body(self)
            except RequestBodyError as exc:
                send_json_response(self, {"error": exc.code}, status=exc.status)
                return
            data = _parse_json_body(raw)
            if data is None:
                send_json_response(self, {"error": "invalid_json"}, status=400)
                return
            if path == "/v1/settings":
                self._post_settings(data)
            elif path == "/v1/colorize":
                self._post_colorize(data)
            else:
                self._post_response(data)

        def _post_settings(self, data: dict[str, Any]) -> None:
            try:
                settings = api.set_settings(data)
            except ValueError as exc:
                send_json_response(self, {"error": str(exc) or "invalid_settings"}, status=400)
                return
            send_json_response(self, settings.to_dict())

        def _post_colorize(self, data: dict[str, Any]) -> None:
            ids = data.get("ids")
            if not isinstance(ids, list):
                send_json_response(self, {"error": "invalid_ids"}, status=400)
                return
            try:
                report = api.apply_crayon_colors(ids)
            except ColorizeError as exc:
                logger.error("colorize request failed", exc_info=exc)
                send_json_response(self, {"error": "colorize_failed"}, status=500)
                return
            send_json_response(self, report.to_dict())

        def _post_response(self, data: dict[str, Any]) -> None:
            parsed = _parse_push(data)
            if parsed is None:
                send_json_response(self, {"error": "invalid_response"}, status=400)
                return
            exchange_id, response = parsed
            api.engine.on_response(exchange_id, response)
            send_json_response(self, {"ok": True}, status=202)

    return CrayonHandler

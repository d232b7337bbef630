from __future__ import annotations

import base64
import binascii
import logging
from typing import Any
from urllib.parse import urlparse

import httpx

from .exchanges import Exchange, ExchangePage, ExchangeResponse

logger = logging.getLogger(__name__)

GRAPHQL_PATH = "/graphql"

REQUESTS_QUERY = """
  query crayonRequests($after: String, $first: Int, $last: Int) {
    requests(after: $after, first: $first, last: $last, order: { by: CREATED_AT, ordering: ASC }) {
      edges {
        node {
          id
          response {
            statusCode
            raw
          }
        }
      }
      pageInfo {
        endCursor
      }
    }
  }
"""

REQUEST_QUERY = """
  query crayonRequest($id: ID!) {
    request(id: $id) {
      id
      response {
        statusCode
        raw
      }
    }
  }
"""

UPDATE_METADATA_MUTATION = """
  mutation updateRequestMetadata($id: ID!, $input: UpdateRequestMetadataInput!) {
    updateRequestMetadata(id: $id, input: $input) {
      metadata {
        id
        color
      }
    }
  }
"""


class CaidoError(RuntimeError):
    pass


def build_base_url(address: str) -> str:
    trimmed = address.strip().rstrip("/")
    if not trimmed:
        return ""
    parsed = urlparse(trimmed)
    if parsed.scheme:
        return trimmed
    return f"http://{trimmed}"


def header_values(raw: bytes, name: str) -> tuple[str, ...]:
    """Return every value of header `name` from a raw HTTP response head."""
    head, sep, _body = raw.partition(b"\r\n\r\n")
    if not sep:
        head, _sep, _body = raw.partition(b"\n\n")
    wanted = name.lower()
    values: list[str] = []
    # First line is the status line.
    for line in head.splitlines()[1:]:
        header_name, colon, value = line.partition(b":")
        if not colon:
            continue
        if header_name.decode("latin-1").strip().lower() != wanted:
            continue
        values.append(value.decode("latin-1").strip())
    return tuple(values)


def _decode_raw(raw: object) -> bytes:
    if not isinstance(raw, str) or not raw:
        return b""
    try:
        return base64.b64decode(raw, validate=False)
    except (binascii.Error, ValueError):
        return b""


def _parse_response(node: object) -> ExchangeResponse | None:
    if not isinstance(node, dict):
        return None
    status = node.get("statusCode")
    status_code = status if isinstance(status, int) and not isinstance(status, bool) else None
    content_type = header_values(_decode_raw(node.get("raw")), "content-type")
    return ExchangeResponse(status_code=status_code, content_type=content_type)


def _parse_exchange(node: object) -> Exchange | None:
    if not isinstance(node, dict):
        return None
    exchange_id = str(node.get("id") or "").strip()
    if not exchange_id:
        return None
    return Exchange(id=exchange_id, response=_parse_response(node.get("response")))


def _error_messages(payload: dict[str, Any]) -> list[str]:
    errors = payload.get("errors")
    if not isinstance(errors, list):
        return []
    messages: list[str] = []
    for error in errors:
        if isinstance(error, dict):
            message = str(error.get("message") or "").strip()
            messages.append(message or "unknown error")
        else:
            messages.append(str(error))
    return messages


class CaidoClient:
    """GraphQL client for a Caido instance.

    Implements both the exchange source (paginated request history plus
    point lookup) and the color writer used by the engine.
    """

    def __init__(
        self,
        base_url: str,
        *,
        token: str | None = None,
        timeout_s: float = 10.0,
        transport: httpx.BaseTransport | None = None,
    ) -> None:
        resolved = build_base_url(base_url)
        if not resolved:
            raise ValueError("missing caido url")
        headers = {"Accept": "application/json"}
        if token:
            headers["Authorization"] = f"Bearer {token}"
        self.base_url = resolved
        self._client = httpx.Client(
            base_url=resolved,
            headers=headers,
            timeout=timeout_s,
            transport=transport,
        )

    def close(self) -> None:
        self._client.close()

    def __enter__(self) -> CaidoClient:
        return self

    def __exit__(self, *exc_info: object) -> None:
        self.close()

    def execute(self, query: str, variables: dict[str, Any] | None = None) -> dict[str, Any]:
        try:
            response = self._client.post(
                GRAPHQL_PATH,
                json={"query": query, "variables": variables or {}},
            )
        except httpx.HTTPError as exc:
            raise CaidoError(f"caido request failed: {exc}") from exc
        if response.status_code >= 400:
            snippet = response.text[:240].strip()
            suffix = f": {snippet}" if snippet else ""
            raise CaidoError(f"caido request failed ({response.status_code}){suffix}")
        try:
            payload = response.json()
        except ValueError as exc:
            raise CaidoError("caido returned non-json response") from exc
        if not isinstance(payload, dict):
            raise CaidoError(f"unexpected graphql payload: {type(payload).__name__}")
        return payload

    def _query_data(self, query: str, variables: dict[str, Any]) -> dict[str, Any]:
        payload = self.execute(query, variables)
        data = payload.get("data")
        messages = _error_messages(payload)
        if messages and not isinstance(data, dict):
            raise CaidoError("; ".join(messages))
        if messages:
            logger.warning("caido query returned partial errors", extra={"errors": messages})
        return data if isinstance(data, dict) else {}

    def query(
        self,
        *,
        after: str | None = None,
        first: int | None = None,
        last: int | None = None,
    ) -> ExchangePage:
        variables: dict[str, Any] = {}
        if after:
            variables["after"] = after
        if first is not None:
            variables["first"] = first
        if last is not None:
            variables["last"] = last
        data = self._query_data(REQUESTS_QUERY, variables)
        connection = data.get("requests")
        if not isinstance(connection, dict):
            raise CaidoError("invalid requests response")
        items: list[Exchange] = []
        edges = connection.get("edges")
        for edge in edges if isinstance(edges, list) else []:
            exchange = _parse_exchange(edge.get("node") if isinstance(edge, dict) else None)
            if exchange is not None:
                items.append(exchange)
        page_info = connection.get("pageInfo")
        end_cursor = page_info.get("endCursor") if isinstance(page_info, dict) else None
        return ExchangePage(items=items, end_cursor=str(end_cursor) if end_cursor else None)

    def get_exchange(self, exchange_id: str) -> Exchange | None:
        data = self._query_data(REQUEST_QUERY, {"id": exchange_id})
        return _parse_exchange(data.get("request"))

    def update_color(self, exchange_id: str, color: str) -> list[str]:
        payload = self.execute(
            UPDATE_METADATA_MUTATION,
            {"id": exchange_id, "input": {"color": color}},
        )
        return _error_messages(payload)

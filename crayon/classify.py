from __future__ import annotations

from collections.abc import Iterable
from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from .exchanges import ExchangeResponse
    from .settings import ColorTable

SVG_CONTENT_TYPE = "image/svg+xml"

JSON_MATCHES = ("application/json", "+json")
XML_MATCHES = ("application/xml", "text/xml", "+xml")
HTML_MATCHES = ("text/html", "application/xhtml+xml")


def normalize_content_type(values: Iterable[str] | str | None) -> str | None:
    if values is None:
        return None
    if isinstance(values, str):
        values = [values]
    parts = [value for value in values if isinstance(value, str)]
    if not parts:
        return None
    joined = ";".join(parts).strip().lower()
    return joined or None


def is_json_content_type(content_type: str) -> bool:
    return any(match in content_type for match in JSON_MATCHES)


def is_xml_content_type(content_type: str) -> bool:
    if SVG_CONTENT_TYPE in content_type:
        return False
    return any(match in content_type for match in XML_MATCHES)


def is_html_content_type(content_type: str) -> bool:
    return any(match in content_type for match in HTML_MATCHES)


def pick_color(status: int | None, content_type: str | None, colors: ColorTable) -> str | None:
    """Map a response status and content type to a color.

    None means "leave the exchange alone"; an empty string means "clear the
    color". Content type checks run json, xml, html in that order because a
    single type can satisfy more than one of them.
    """
    if status is None:
        return None
    if 200 <= status < 300:
        if content_type:
            if is_json_content_type(content_type):
                return colors.json
            if is_xml_content_type(content_type):
                return colors.xml
            if is_html_content_type(content_type):
                return colors.html
        return ""
    if status >= 500:
        return colors.status5xx
    if status >= 400:
        return colors.status4xx
    if status >= 300:
        return colors.status3xx
    return None


def pick_color_for_response(
    response: ExchangeResponse | None, colors: ColorTable
) -> str | None:
    if response is None:
        return None
    content_type = normalize_content_type(response.content_type)
    return pick_color(response.status_code, content_type, colors)

"""Debug logging utilities for CardDAV and admin API traffic."""

from __future__ import annotations

import json
import logging
from typing import Any

import httpx
from lxml import etree

logger = logging.getLogger("py_mabctl")
http_logger = logging.getLogger("py_mabctl.http")

REDACTED = "[REDACTED]"
REDACTED_HEADERS = {"authorization", "x-api-key", "x-admin-password"}
REDACTED_SETTINGS = {"admin_password", "api_key"}


def format_xml(xml_bytes: bytes | str) -> str:
    """Format XML with proper indentation.

    Args:
        xml_bytes: XML content as bytes or string

    Returns:
        Pretty-formatted XML string
    """
    if isinstance(xml_bytes, str):
        xml_bytes = xml_bytes.encode("utf-8")
    try:
        parser = etree.XMLParser(remove_blank_text=True)
        root = etree.fromstring(xml_bytes, parser)
    except etree.XMLSyntaxError:
        return xml_bytes.decode("utf-8", errors="replace")
    return etree.tostring(root, pretty_print=True, encoding="unicode")


def format_json(body: bytes | str) -> str:
    """Pretty-print a JSON body, or return it unchanged if it isn't JSON."""
    if isinstance(body, bytes):
        body = body.decode("utf-8", errors="replace")
    if not body:
        return ""
    try:
        decoded = json.loads(body)
    except ValueError:
        return body
    return json.dumps(decoded, indent=2, ensure_ascii=False)


def is_xml_content(content_type: str | None) -> bool:
    """Check if content type is XML."""
    if not content_type:
        return False
    return any(t in content_type.lower() for t in ("application/xml", "text/xml"))


def redact_headers(headers: Any) -> dict[str, str]:
    """Copy headers, hiding credentials."""
    return {
        k: REDACTED if k.lower() in REDACTED_HEADERS else v for k, v in dict(headers).items()
    }


def redact_settings(settings: dict[str, Any]) -> dict[str, Any]:
    """Copy configuration settings, hiding the configured secrets."""
    return {k: REDACTED if k in REDACTED_SETTINGS and v else v for k, v in settings.items()}


def _log_body(content_type: str, body: bytes) -> None:
    if is_xml_content(content_type):
        formatted = format_xml(body)
    elif "json" in content_type.lower():
        formatted = format_json(body)
    else:
        preview = body[:200].decode("utf-8", errors="replace")
        http_logger.debug(f"  [{len(body)} bytes] {preview}")
        if len(body) > 200:
            http_logger.debug(f"  ... ({len(body) - 200} more bytes)")
        return
    for line in formatted.split("\n"):
        if line.strip():
            http_logger.debug(f"  {line}")


def log_request(method: str, url: str, headers: Any, body: bytes | None) -> None:
    """Log an outgoing HTTP request.

    Args:
        method: HTTP method
        url: Request URL
        headers: Request headers
        body: Request body (if any)
    """
    http_logger.debug("=" * 80)
    http_logger.debug(f">>> REQUEST: {method} {url}")
    for name, value in redact_headers(headers).items():
        http_logger.debug(f"  {name}: {value}")
    if body:
        http_logger.debug("-" * 80)
        _log_body(dict(headers).get("content-type", ""), body)


def log_response(status_code: int, url: str, headers: Any, body: bytes | None) -> None:
    """Log an incoming HTTP response.

    Args:
        status_code: HTTP status code
        url: Request URL
        headers: Response headers
        body: Response body (if any)
    """
    http_logger.debug(f"<<< RESPONSE: {status_code} {url}")
    interesting_headers = ["content-type", "content-length", "etag", "dav", "www-authenticate"]
    for header in interesting_headers:
        value = headers.get(header)
        if value:
            http_logger.debug(f"  {header}: {value}")
    if body:
        http_logger.debug("-" * 80)
        _log_body(headers.get("content-type", ""), body)


async def _on_request(request: httpx.Request) -> None:
    log_request(request.method, str(request.url), request.headers, request.content)


async def _on_response(response: httpx.Response) -> None:
    await response.aread()
    log_response(response.status_code, str(response.request.url), response.headers, response.content)


def event_hooks(enabled: bool) -> dict[str, list[Any]]:
    """Return httpx event hooks that log traffic when enabled."""
    if not enabled:
        return {}
    return {"request": [_on_request], "response": [_on_response]}


def setup_debug_logging(level: int = logging.DEBUG) -> None:
    """Configure console logging for the py_mabctl loggers."""
    logger.setLevel(level)

    handler = logging.StreamHandler()
    handler.setLevel(level)

    # Simple format - just the message (since we format the logs ourselves)
    handler.setFormatter(logging.Formatter("%(message)s"))

    logger.addHandler(handler)

    # Prevent propagation to avoid duplicate logs
    logger.propagate = False

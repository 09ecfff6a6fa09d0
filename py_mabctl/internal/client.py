"""WebDAV request plumbing shared by the CardDAV client."""

from __future__ import annotations

import logging
from urllib.parse import urljoin, urlparse, urlunparse

import httpx
from lxml import etree

from ..errors import ProtocolError
from .elements import MultiStatus, Response, propfind_xml
from .internal import Depth, HTTPError

logger = logging.getLogger("py_mabctl.webdav")

# Longest error body quoted in an HTTPError
MAX_ERROR_TEXT = 1024


def _error_text(resp: httpx.Response) -> str:
    content_type = resp.headers.get("content-type", "text/plain")
    if not (content_type.startswith("text/") or "xml" in content_type):
        return ""
    text = resp.text.strip()
    if len(text) > MAX_ERROR_TEXT:
        text = text[:MAX_ERROR_TEXT] + " [...]"
    return text


class Client:
    """WebDAV requests against one endpoint."""

    def __init__(self, http_client: httpx.AsyncClient | None = None, endpoint: str = ""):
        """Initialize the client.

        Args:
            http_client: HTTP client carrying authentication (a plain one if None)
            endpoint: Base URL; relative paths resolve against it
        """
        self.http_client = http_client or httpx.AsyncClient()
        endpoint_url = urlparse(endpoint)
        if not endpoint_url.path.endswith("/"):
            endpoint_url = endpoint_url._replace(path=endpoint_url.path + "/")
        self.endpoint = endpoint_url

    def resolve_href(self, path: str) -> str:
        """Full URL of a server path, absolute or relative to the endpoint."""
        if path.startswith("/"):
            return urlunparse((self.endpoint.scheme, self.endpoint.netloc, path, "", "", ""))
        return urljoin(self.endpoint.geturl(), path)

    async def request(
        self,
        method: str,
        path: str,
        content: bytes | None = None,
        headers: dict[str, str] | None = None,
    ) -> httpx.Response:
        """Send a request.

        Raises:
            HTTPError: If the server answers with a non-2xx status; text and
                XML bodies are quoted in the error
        """
        url = self.resolve_href(path)
        logger.debug("%s %s", method, url)
        resp = await self.http_client.request(method, url, content=content, headers=headers or {})
        if not resp.is_success:
            raise HTTPError(resp.status_code, method=method, path=path, detail=_error_text(resp))
        return resp

    async def multistatus(
        self, method: str, path: str, body: etree._Element, depth: Depth | None = None
    ) -> MultiStatus:
        """Send an XML request that must be answered with 207 Multi-Status.

        Raises:
            ProtocolError: If the answer is not a multistatus body
        """
        headers = {"Content-Type": "text/xml; charset=utf-8"}
        if depth is not None:
            headers["Depth"] = depth.value
        content = etree.tostring(body, encoding="utf-8", xml_declaration=True)

        resp = await self.request(method, path, content=content, headers=headers)
        if resp.status_code != 207:
            raise ProtocolError(f"webdav: {method} {path}: expected 207 Multi-Status, got {resp.status_code}")
        return MultiStatus.from_bytes(resp.content)

    async def propfind(self, path: str, depth: Depth, *names: str) -> MultiStatus:
        return await self.multistatus("PROPFIND", path, propfind_xml(*names), depth=depth)

    async def propfind_one(self, path: str, *names: str) -> Response:
        """PROPFIND with Depth 0; the answer must describe exactly one resource."""
        ms = await self.propfind(path, Depth.ZERO, *names)
        if len(ms.responses) != 1:
            raise ProtocolError(f"webdav: PROPFIND {path} with Depth 0 returned {len(ms.responses)} responses")
        return ms.responses[0]

    async def options(self, path: str) -> set[str]:
        """Return the compliance classes of the ``DAV`` response header."""
        resp = await self.request("OPTIONS", path)
        return {c.strip().lower() for c in resp.headers.get("dav", "").split(",") if c.strip()}

    async def close(self) -> None:
        await self.http_client.aclose()

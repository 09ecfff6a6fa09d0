"""WebDAV and CardDAV XML names, request bodies and multistatus decoding."""

from __future__ import annotations

from dataclasses import dataclass, field
from urllib.parse import urlparse

from lxml import etree

from ..errors import ProtocolError
from .internal import HrefError, HTTPError

NAMESPACE = "DAV:"
CARDDAV_NAMESPACE = "urn:ietf:params:xml:ns:carddav"  # RFC 6352
NSMAP = {"d": NAMESPACE, "card": CARDDAV_NAMESPACE}


def dav(tag: str) -> str:
    """Qualified name in the DAV: namespace."""
    return f"{{{NAMESPACE}}}{tag}"


def card(tag: str) -> str:
    """Qualified name in the CardDAV namespace."""
    return f"{{{CARDDAV_NAMESPACE}}}{tag}"


RESOURCE_TYPE = dav("resourcetype")
DISPLAY_NAME = dav("displayname")
GET_ETAG = dav("getetag")
CURRENT_USER_PRINCIPAL = dav("current-user-principal")
UNAUTHENTICATED = dav("unauthenticated")

ADDRESSBOOK = card("addressbook")
ADDRESSBOOK_HOME_SET = card("addressbook-home-set")
ADDRESSBOOK_DESCRIPTION = card("addressbook-description")
MAX_RESOURCE_SIZE = card("max-resource-size")
ADDRESS_DATA = card("address-data")


def parse_status(line: str) -> int:
    """Return the code of a status line such as ``HTTP/1.1 200 OK``.

    Raises:
        ProtocolError: If the line has no numeric code
    """
    parts = line.split(None, 2)
    if len(parts) < 2 or not parts[1].isdigit():
        raise ProtocolError(f"webdav: invalid HTTP status {line!r}")
    return int(parts[1])


def href_path(href: str) -> str:
    """Reduce an href, absolute or not, to its path."""
    return urlparse(href.strip()).path


def hrefs(element: etree._Element) -> list[str]:
    """Paths of the ``DAV:href`` children of a property."""
    return [href_path(h.text) for h in element.findall(dav("href")) if h.text]


def resource_types(element: etree._Element) -> set[str]:
    """Qualified names listed in a ``DAV:resourcetype`` property."""
    return {child.tag for child in element if isinstance(child.tag, str)}


def _text(element: etree._Element | None) -> str:
    if element is None or element.text is None:
        return ""
    return element.text.strip()


@dataclass
class PropStat:
    """Properties that share one status inside a response."""

    status: int
    props: dict[str, etree._Element] = field(default_factory=dict)

    @classmethod
    def from_xml(cls, element: etree._Element) -> PropStat:
        prop_el = element.find(dav("prop"))
        props = {} if prop_el is None else {p.tag: p for p in prop_el if isinstance(p.tag, str)}
        return cls(status=parse_status(_text(element.find(dav("status")))), props=props)


@dataclass
class Response:
    """One ``DAV:response`` of a multistatus body."""

    hrefs: list[str] = field(default_factory=list)
    status: int | None = None
    propstats: list[PropStat] = field(default_factory=list)
    description: str = ""
    error: str = ""

    @classmethod
    def from_xml(cls, element: etree._Element) -> Response:
        status_text = _text(element.find(dav("status")))
        error_el = element.find(dav("error"))
        error = ""
        if error_el is not None and len(error_el):
            error = etree.QName(error_el[0]).localname
        return cls(
            hrefs=[h.text.strip() for h in element.findall(dav("href")) if h.text],
            status=parse_status(status_text) if status_text else None,
            propstats=[PropStat.from_xml(ps) for ps in element.findall(dav("propstat"))],
            description=_text(element.find(dav("responsedescription"))),
            error=error,
        )

    def err(self) -> HrefError | HTTPError | None:
        """The error this response reports, if its status is not 2xx."""
        if self.status is None or self.status // 100 == 2:
            return None
        detail = "; ".join(s for s in (self.description, self.error) if s)
        http_err = HTTPError(self.status, detail=detail)
        if len(self.hrefs) == 1:
            return HrefError(self.hrefs[0], http_err)
        return http_err

    def path(self) -> str:
        """Path this response refers to.

        Raises:
            HrefError: If the response reports an error status
            ProtocolError: If it does not carry exactly one href
        """
        err = self.err()
        if err is not None:
            raise err
        if len(self.hrefs) != 1:
            raise ProtocolError(f"webdav: expected exactly one href in response, got {len(self.hrefs)}")
        return href_path(self.hrefs[0])

    def get_prop(self, tag: str) -> etree._Element | None:
        """Find a property among the successful propstats."""
        for propstat in self.propstats:
            if propstat.status // 100 == 2 and tag in propstat.props:
                return propstat.props[tag]
        return None

    def prop_text(self, tag: str) -> str:
        return _text(self.get_prop(tag))


@dataclass
class MultiStatus:
    """A ``207 Multi-Status`` body."""

    responses: list[Response] = field(default_factory=list)

    @classmethod
    def from_xml(cls, element: etree._Element) -> MultiStatus:
        if element.tag != dav("multistatus"):
            raise ProtocolError(f"webdav: expected multistatus, got {element.tag}")
        return cls(responses=[Response.from_xml(r) for r in element.findall(dav("response"))])

    @classmethod
    def from_bytes(cls, content: bytes) -> MultiStatus:
        try:
            element = etree.fromstring(content)
        except etree.XMLSyntaxError as e:
            raise ProtocolError(f"webdav: malformed multistatus body: {e}") from e
        return cls.from_xml(element)


def propfind_xml(*names: str) -> etree._Element:
    """Build a PROPFIND body asking for the given properties."""
    root = etree.Element(dav("propfind"), nsmap=NSMAP)
    prop = etree.SubElement(root, dav("prop"))
    for name in names:
        etree.SubElement(prop, name)
    return root

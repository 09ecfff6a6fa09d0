"""CardDAV client implementation."""

from __future__ import annotations

import asyncio
import logging
import socket
from typing import Any

import httpx

from ..errors import ConfigurationError, DiscoveryError
from ..internal import Client as InternalClient
from ..internal import Depth
from ..internal import elements as elem
from .carddav import CAPABILITY_ADDRESSBOOK, VCARD_CONTENT_TYPE, AddressBook, AddressBookQuery, AddressObject
from .report import address_objects_from_multistatus, addressbook_query_xml

logger = logging.getLogger("py_mabctl.carddav")

ADDRESSBOOK_PROPS = (
    elem.RESOURCE_TYPE,
    elem.DISPLAY_NAME,
    elem.ADDRESSBOOK_DESCRIPTION,
    elem.MAX_RESOURCE_SIZE,
)


async def discover_context_url(domain: str, service: str = "carddav") -> str:
    """Find the CardDAV context URL of a mail domain.

    Follows RFC 6764 section 6 with the well-known path; the domain must
    resolve, the server then redirects to the actual context path.

    Args:
        domain: Domain name (the part of an account name after "@")
        service: Service name for the well-known path

    Returns:
        Context URL such as https://example.org/.well-known/carddav

    Raises:
        ConfigurationError: If the domain has no address record
    """
    loop = asyncio.get_running_loop()
    try:
        addrs = await loop.run_in_executor(
            None, socket.getaddrinfo, domain, 443, socket.AF_UNSPEC, socket.SOCK_STREAM
        )
    except OSError as e:
        raise ConfigurationError(f"failed {service} URL discovery for domain {domain}: {e}") from e
    if not addrs:
        raise ConfigurationError(f"failed {service} URL discovery for domain {domain}: no records")

    url = f"https://{domain}/.well-known/{service}"
    logger.info("discovered url: %s", url)
    return url


class Client:
    """CardDAV client for accessing remote address books."""

    def __init__(self, http_client: httpx.AsyncClient | None = None, endpoint: str = ""):
        """Initialize CardDAV client.

        Args:
            http_client: HTTP client to use (carries authentication)
            endpoint: CardDAV server endpoint URL
        """
        self.internal_client = InternalClient(http_client, endpoint)

    async def has_support(self) -> None:
        """Check that the endpoint advertises CardDAV support.

        Raises:
            DiscoveryError: If the DAV header lacks class 1 or addressbook
        """
        classes = await self.internal_client.options("")
        if "1" not in classes or CAPABILITY_ADDRESSBOOK not in classes:
            raise DiscoveryError(
                f"carddav: server {self.internal_client.endpoint.geturl()} doesn't support CardDAV"
            )

    async def find_current_user_principal(self) -> str:
        """Find the current user's principal path.

        Raises:
            DiscoveryError: If unauthenticated or no principal is advertised
        """
        resp = await self.internal_client.propfind_one("", elem.CURRENT_USER_PRINCIPAL)
        prop = resp.get_prop(elem.CURRENT_USER_PRINCIPAL)
        if prop is not None:
            if prop.find(elem.UNAUTHENTICATED) is not None:
                raise DiscoveryError("carddav: unauthenticated")
            paths = elem.hrefs(prop)
            if paths:
                return paths[0]
        raise DiscoveryError("carddav: could not find current user principal")

    async def find_address_book_home_set(self, principal: str) -> str:
        """Find the address book home collection of a principal."""
        resp = await self.internal_client.propfind_one(principal, elem.ADDRESSBOOK_HOME_SET)
        prop = resp.get_prop(elem.ADDRESSBOOK_HOME_SET)
        paths = elem.hrefs(prop) if prop is not None else []
        if not paths:
            raise DiscoveryError(f"carddav: no addressbook-home-set for {principal}")
        return paths[0]

    async def find_address_books(self, home_set: str) -> list[AddressBook]:
        """List the address book collections inside a home collection."""
        ms = await self.internal_client.propfind(home_set, Depth.ONE, *ADDRESSBOOK_PROPS)

        books: list[AddressBook] = []
        for resp in ms.responses:
            path = resp.path()
            res_type = resp.get_prop(elem.RESOURCE_TYPE)
            if res_type is None or elem.ADDRESSBOOK not in elem.resource_types(res_type):
                continue
            max_size = resp.prop_text(elem.MAX_RESOURCE_SIZE)
            books.append(
                AddressBook(
                    path=path,
                    name=resp.prop_text(elem.DISPLAY_NAME),
                    description=resp.prop_text(elem.ADDRESSBOOK_DESCRIPTION),
                    max_resource_size=int(max_size) if max_size.isdigit() else 0,
                )
            )
        return books

    async def query_address_book(self, path: str, query: AddressBookQuery) -> list[AddressObject]:
        """Run an addressbook-query REPORT against a book.

        Args:
            path: Address book path
            query: Property filters

        Returns:
            Matching address objects
        """
        ms = await self.internal_client.multistatus(
            "REPORT", path, addressbook_query_xml(query), depth=Depth.ONE
        )
        return address_objects_from_multistatus(ms)

    async def put_address_object(self, path: str, card: Any) -> AddressObject:
        """Store a vCard at a path.

        Args:
            path: Address object path
            card: vobject vCard component

        Returns:
            The stored object with the ETag reported by the server
        """
        resp = await self.internal_client.request(
            "PUT",
            path,
            content=card.serialize().encode("utf-8"),
            headers={"Content-Type": VCARD_CONTENT_TYPE},
        )
        etag = resp.headers.get("etag", "").strip('"')
        logger.debug("PUT %s -> %d etag=%s", path, resp.status_code, etag)
        return AddressObject(path=path, card=card, etag=etag)

    async def remove_all(self, path: str) -> None:
        """Remove an address object or collection.

        Args:
            path: Path to remove
        """
        await self.internal_client.request("DELETE", path)

    async def close(self) -> None:
        """Close the client."""
        await self.internal_client.close()

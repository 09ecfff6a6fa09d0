"""Address book client for one CardDAV account.

A :class:`CardClient` talks to the CardDAV server as a single user. It owns
one digest session and one HTTP connection pool, so it must be used by a
single task; bulk operations open one client per worker.
"""

from __future__ import annotations

import logging
import uuid
from typing import Any

import httpx

from . import debug
from .booktoken import DEFAULT_DAV_ROOT, address_uri, book_uri, parse_book_path
from .carddav import AddressBook, AddressBookQuery, AddressObject, Client, new_card
from .digest import DigestSession
from .errors import ProtocolError

logger = logging.getLogger("py_mabctl.cardclient")


class CardClient:
    """CardDAV operations on the address books of one user."""

    def __init__(
        self,
        username: str,
        password: str,
        url: str,
        *,
        cert: tuple[str, str] | None = None,
        insecure: bool = False,
        timeout: float = 30.0,
        root: str = DEFAULT_DAV_ROOT,
        verbose: bool = False,
        http_client: httpx.AsyncClient | None = None,
    ):
        """Initialize the client.

        Args:
            username: CardDAV account name
            password: CardDAV account password
            url: CardDAV endpoint URL (e.g. https://host/dav.php)
            cert: Client certificate and key file paths
            insecure: Skip server certificate verification
            timeout: Per-request timeout in seconds
            root: Server path prefix of the addressbooks collection
            verbose: Log HTTP traffic
            http_client: Preconfigured HTTP client (tests); it must carry its
                own authentication
        """
        self.username = username
        self.url = url
        self.root = root
        if http_client is None:
            http_client = httpx.AsyncClient(
                auth=DigestSession(username, password),
                cert=cert,
                verify=not insecure,
                timeout=timeout,
                follow_redirects=True,
                event_hooks=debug.event_hooks(verbose),
            )
        self.dav = Client(http_client, url)

    @classmethod
    async def open(cls, *args: Any, **kwargs: Any) -> CardClient:
        """Create a client and check that the server supports CardDAV."""
        client = cls(*args, **kwargs)
        try:
            await client.connect()
        except BaseException:
            await client.close()
            raise
        return client

    async def connect(self) -> None:
        """Check CardDAV support of the endpoint.

        Raises:
            DiscoveryError: If the server does not advertise address books
        """
        await self.dav.has_support()

    async def close(self) -> None:
        await self.dav.close()

    async def __aenter__(self) -> CardClient:
        await self.connect()
        return self

    async def __aexit__(self, *exc_info: Any) -> None:
        await self.close()

    def book_path(self, bookname: str) -> str:
        return book_uri(self.username, bookname, self.root)

    async def list(self) -> list[AddressBook]:
        """List the user's address books."""
        principal = await self.dav.find_current_user_principal()
        home_set = await self.dav.find_address_book_home_set(principal)
        books = await self.dav.find_address_books(home_set)
        logger.debug("%s: %d address books in %s", self.username, len(books), home_set)
        return books

    async def addresses(self, bookname: str) -> list[AddressObject]:
        """Return every address object in a book."""
        return await self.dav.query_address_book(self.book_path(bookname), AddressBookQuery())

    async def query_address(self, bookname: str, email: str) -> list[AddressObject]:
        """Return the address objects of a book whose EMAIL equals ``email``."""
        return await self.dav.query_address_book(
            self.book_path(bookname), AddressBookQuery.match("EMAIL", email)
        )

    async def add_address(self, bookname: str, email: str, name: str = "") -> AddressObject:
        """Add an address to a book unless it is already present.

        Args:
            bookname: Address book name
            email: Email address
            name: Display name; defaults to the email address

        Returns:
            The existing or the newly stored address object

        Raises:
            ProtocolError: If the stored object cannot be read back
        """
        found = await self.query_address(bookname, email)
        if found:
            logger.debug("%s/%s: %s already present", self.username, bookname, email)
            return found[0]

        uid = str(uuid.uuid4())
        path = address_uri(self.username, bookname, uid, self.root)
        await self.dav.put_address_object(path, new_card(email, uid, name))

        stored = await self.dav.query_address_book(
            self.book_path(bookname), AddressBookQuery.match("UID", uid)
        )
        if len(stored) != 1:
            raise ProtocolError(
                f"carddav: expected 1 object with UID {uid} in {self.username}/{bookname}, "
                f"got {len(stored)}"
            )
        logger.info("%s/%s: added %s", self.username, bookname, email)
        return stored[0]

    async def delete_address(self, bookname: str, email: str) -> list[AddressObject]:
        """Delete every address object in a book matching ``email``.

        Returns:
            The deleted objects (empty if nothing matched)
        """
        found = await self.query_address(bookname, email)
        for obj in found:
            await self.dav.remove_all(address_uri(self.username, bookname, obj.uid, self.root))
        if found:
            logger.info("%s/%s: deleted %d x %s", self.username, bookname, len(found), email)
        return found

    async def scan_address(self, email: str) -> list[AddressBook]:
        """Return the books that contain ``email``."""
        matches: list[AddressBook] = []
        for book in await self.list():
            _, bookname, _ = parse_book_path(book.path)
            if await self.query_address(bookname, email):
                matches.append(book)
        return matches

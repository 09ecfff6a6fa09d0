"""Address book controller.

The controller combines the admin API (users and books), the account store
(passwords) and per-user CardDAV clients (addresses) into the operations the
command line exposes, including the bulk dump, restore and clear workflows.
"""

from __future__ import annotations

import asyncio
import logging
import secrets
from collections.abc import Awaitable, Callable
from typing import Any

from .accounts import AccountStore, FileAccountStore, HTTPAccountStore
from .admin import AdminClient
from .booktoken import book_token, is_default_book, parse_book_path
from .cardclient import CardClient
from .carddav import AddressBook, card_email, discover_context_url
from .config import Config
from .errors import AggregateError, ConfigurationError, FormatError, NotFoundError, ProtocolError, RestoreError
from .models import (
    AccountResponse,
    AddBookResponse,
    AddressesResponse,
    AddressResponse,
    AddUserResponse,
    Book,
    BooksResponse,
    ConfigDump,
    DumpResponse,
    Response,
    StatusResponse,
    UserAccountsResponse,
    UserDump,
    UsersResponse,
)

logger = logging.getLogger("py_mabctl.controller")

PASSWORD_BYTES = 12

CardClientFactory = Callable[[str, str], CardClient]


def make_password() -> str:
    """Generate a random account password."""
    return secrets.token_hex(PASSWORD_BYTES)


def user_domain(username: str) -> str:
    """Return the domain part of an account name."""
    local, sep, domain = username.partition("@")
    if not sep or not local or not domain or "@" in domain:
        raise FormatError(f"invalid email address format: {username}")
    return domain


class Controller:
    """High level address book operations."""

    def __init__(
        self,
        config: Config,
        admin: AdminClient | None = None,
        accounts: AccountStore | None = None,
        card_client_factory: CardClientFactory | None = None,
    ):
        """Initialize the controller.

        Args:
            config: Resolved configuration
            admin: Admin API client; built from ``config`` when omitted
            accounts: Account store; a passwd file when ``config.passwd`` is
                set, otherwise the admin API
            card_client_factory: Callable building an unconnected CardClient
                from (username, password)
        """
        self.config = config
        self._owns_admin = admin is None
        self.admin = admin or AdminClient(config)
        if accounts is None:
            accounts = FileAccountStore(config.passwd) if config.passwd else HTTPAccountStore(self.admin)
        self.accounts = accounts
        self.card_client_factory = card_client_factory or self._default_card_client
        self._discovered: dict[str, str] = {}

    async def __aenter__(self) -> Controller:
        return self

    async def __aexit__(self, *exc_info: Any) -> None:
        await self.close()

    async def close(self) -> None:
        if self._owns_admin:
            await self.admin.close()

    def _default_card_client(self, username: str, password: str) -> CardClient:
        return CardClient(
            username,
            password,
            self._discovered.get(username.rpartition("@")[2], self.config.dav_url),
            cert=self.config.client_cert(),
            insecure=self.config.insecure,
            timeout=self.config.timeout,
            root=self.config.dav_root,
            verbose=self.config.verbose,
        )

    async def discover(self, username: str) -> str:
        """Discover and remember the CardDAV URL for a user's domain."""
        domain = user_domain(username)
        if domain not in self._discovered:
            self._discovered[domain] = await discover_context_url(domain)
        return self._discovered[domain]

    async def card_client(self, username: str, password: str | None = None) -> CardClient:
        """Open a connected CardDAV client for a user.

        The client belongs to the calling task.

        Raises:
            NotFoundError: If the account store has no password for the user
        """
        if password is None:
            password = await self.accounts.get_password(username)
        if self.config.discover:
            await self.discover(username)
        client = self.card_client_factory(username, password)
        try:
            await client.connect()
        except BaseException:
            await client.close()
            raise
        return client

    # Admin API passthrough

    async def initialize(self) -> Response:
        return await self.admin.initialize()

    async def reset(self) -> Response:
        return await self.admin.reset()

    async def status(self) -> StatusResponse:
        return await self.admin.get_status()

    async def uptime(self) -> Response:
        return await self.admin.get_uptime()

    async def shutdown(self) -> Response:
        return await self.admin.request_shutdown()

    # Users

    async def get_users(self) -> UsersResponse:
        return await self.admin.get_users()

    async def add_user(self, username: str, display: str = "", password: str = "") -> AddUserResponse:
        """Create a server user and remember its password.

        A random password is generated when none is given.
        """
        display = display or username
        password = password or make_password()
        response = await self.admin.add_user(username, display, password)
        await self.accounts.set_password(username, password)
        logger.info("added user %s", username)
        return response

    async def delete_user(self, username: str) -> Response:
        response = await self.admin.delete_user(username)
        await self.accounts.delete_password(username)
        logger.info("deleted user %s", username)
        return response

    async def get_password(self, username: str) -> AccountResponse:
        response = AccountResponse(request=f"get password: {username}", username=username)
        try:
            response.password = await self.accounts.get_password(username)
        except NotFoundError as e:
            response.message = str(e)
            return response
        response.success = True
        return response

    async def get_accounts(self) -> UserAccountsResponse:
        accounts = await self.accounts.list_accounts()
        return UserAccountsResponse(
            success=True,
            message=f"accounts: {len(accounts)}",
            request="get accounts",
            accounts=accounts,
        )

    async def set_accounts(self, accounts: dict[str, str]) -> UserAccountsResponse:
        await self.accounts.set_accounts(accounts)
        return UserAccountsResponse(
            success=True,
            message=f"accounts: {len(accounts)}",
            request="set accounts",
            accounts=dict(accounts),
        )

    # Books

    async def _convert_book(self, client: CardClient, dav_book: AddressBook) -> Book:
        username, bookname, token = parse_book_path(dav_book.path)
        addresses = await client.addresses(bookname)
        return Book(
            username=username,
            bookname=bookname,
            description=dav_book.description,
            contacts=len(addresses),
            token=token,
            uri=client.dav.internal_client.resolve_href(dav_book.path),
        )

    async def get_books(self, username: str) -> BooksResponse:
        """List a user's books as seen over CardDAV."""
        client = await self.card_client(username)
        try:
            books = [await self._convert_book(client, b) for b in await client.list()]
        finally:
            await client.close()
        return BooksResponse(
            success=True,
            message=f"user {username} books",
            request="CardDAV address books query",
            books=books,
        )

    async def get_books_admin(self, username: str | None = None) -> BooksResponse:
        return await self.admin.get_books(username)

    async def add_book(self, username: str, bookname: str, description: str = "") -> AddBookResponse:
        """Create an address book.

        Raises:
            ValueError: If the book name is the reserved default collection
        """
        if is_default_book(bookname):
            raise ValueError(f"book name {bookname!r} is reserved for the default address book")
        response = await self.admin.add_book(username, bookname, description or bookname)
        logger.info("added book %s/%s", username, bookname)
        return response

    async def delete_book(self, username: str, bookname: str) -> Response:
        return await self.admin.delete_book(username, book_token(username, bookname))

    # Addresses

    async def addresses(self, username: str, bookname: str) -> AddressesResponse:
        client = await self.card_client(username)
        try:
            found = await client.addresses(bookname)
        finally:
            await client.close()
        return AddressesResponse(
            success=True,
            message=f"{username} {bookname} addresses",
            request="CardDAV address query",
            addresses=found,
        )

    async def add_address(self, username: str, bookname: str, email: str, name: str = "") -> AddressResponse:
        client = await self.card_client(username)
        try:
            added = await client.add_address(bookname, email, name)
        finally:
            await client.close()
        return AddressResponse(
            success=True,
            message=f"added {email}",
            request=f"Add CardDAV address: {email}",
            address=added,
        )

    async def delete_address(self, username: str, bookname: str, email: str) -> AddressesResponse:
        client = await self.card_client(username)
        try:
            deleted = await client.delete_address(bookname, email)
        finally:
            await client.close()
        return AddressesResponse(
            success=True,
            message=f"deleted: {len(deleted)}" if deleted else f"not found: {email}",
            request=f"Delete CardDAV address: {email}",
            addresses=deleted,
        )

    async def query_address(self, username: str, bookname: str, email: str) -> AddressesResponse:
        client = await self.card_client(username)
        try:
            found = await client.query_address(bookname, email)
        finally:
            await client.close()
        return AddressesResponse(
            success=True,
            message=f"found: {len(found)}" if found else f"not found: {email}",
            request=f"Query CardDAV address: {email}",
            addresses=found,
        )

    async def scan_address(self, username: str, email: str) -> BooksResponse:
        """Return the books of a user that contain an address."""
        client = await self.card_client(username)
        try:
            books = [await self._convert_book(client, b) for b in await client.scan_address(email)]
        finally:
            await client.close()
        return BooksResponse(
            success=True,
            message=f"books found: {len(books)}",
            request=f"Scan books for CardDAV address: {email}",
            books=books,
        )

    # Bulk operations

    async def _bounded(
        self, semaphore: asyncio.Semaphore, username: str, work: Callable[[], Awaitable[Any]]
    ) -> Any:
        async with semaphore:
            try:
                async with asyncio.timeout(self.config.operation_timeout):
                    return await work()
            except TimeoutError as e:
                raise TimeoutError(
                    f"user {username}: timed out after {self.config.operation_timeout}s"
                ) from e

    def _semaphore(self) -> asyncio.Semaphore:
        return asyncio.Semaphore(max(1, self.config.max_workers))

    async def _dump_user(self, username: str, password: str) -> UserDump:
        user = UserDump(password=password)
        books = (await self.admin.get_books(username)).books
        client: CardClient | None = None
        try:
            for book in books:
                if book.contacts == 0:
                    user.books[book.bookname] = []
                    continue
                if client is None:
                    client = await self.card_client(username, password)
                emails = []
                for obj in await client.addresses(book.bookname):
                    email = card_email(obj.card)
                    if not email:
                        raise ProtocolError(
                            f"address without EMAIL: username={username} bookname={book.bookname} "
                            f"path={obj.path}"
                        )
                    emails.append(email)
                user.books[book.bookname] = emails
        finally:
            if client is not None:
                await client.close()
        logger.debug("dumped %s: %d books", username, len(user.books))
        return user

    async def dump(self, username: str | None = None) -> DumpResponse:
        """Snapshot users, passwords, books and addresses.

        Args:
            username: Only dump this user

        Raises:
            NotFoundError: If ``username`` is not a server user
            ConfigurationError: If a selected user has no stored password
        """
        usernames = [u.username for u in (await self.admin.get_users()).users]
        if username:
            if username not in usernames:
                raise NotFoundError(f"unknown user: {username}")
            usernames = [username]

        passwords = {}
        for name in usernames:
            try:
                passwords[name] = await self.accounts.get_password(name)
            except NotFoundError as e:
                raise ConfigurationError(f"no password for user {name}") from e

        semaphore = self._semaphore()
        tasks: dict[str, asyncio.Task[UserDump]] = {}
        try:
            async with asyncio.TaskGroup() as tg:
                for name in usernames:
                    tasks[name] = tg.create_task(
                        self._bounded(
                            semaphore, name, lambda name=name: self._dump_user(name, passwords[name])
                        )
                    )
        except ExceptionGroup as eg:
            raise eg.exceptions[0]

        dump = ConfigDump(users={name: task.result() for name, task in tasks.items()})
        return DumpResponse(
            success=True,
            message=f"dumped {len(dump.users)} users",
            request="dump",
            dump=dump,
        )

    async def _restore_addresses(self, username: str, password: str, user: UserDump) -> None:
        client = await self.card_client(username, password)
        try:
            for bookname, emails in user.books.items():
                for email in emails:
                    try:
                        await client.add_address(bookname, email)
                    except Exception as e:
                        raise RestoreError(
                            f"failed restoring username={username} bookname={bookname} address={email}: {e}"
                        ) from e
        finally:
            await client.close()

    async def restore(self, dump: ConfigDump, username: str | None = None) -> Response:
        """Recreate users, books and addresses from a dump.

        Users and books are created sequentially and the first failure stops
        the restore. Addresses are then added concurrently per user and all
        failures are reported together.

        Raises:
            NotFoundError: If ``username`` is not in the dump
            RestoreError: If a user or book cannot be created
            AggregateError: If adding addresses failed for any user
        """
        users = dump.users
        if username:
            if username not in users:
                raise NotFoundError(f"user {username} not in dump")
            users = {username: users[username]}

        for name, user in users.items():
            try:
                await self.add_user(name, name, user.password)
            except Exception as e:
                raise RestoreError(f"failed restoring username={name}: {e}") from e
            for bookname in user.books:
                if is_default_book(bookname):
                    continue
                try:
                    await self.admin.add_book(name, bookname, bookname)
                except Exception as e:
                    raise RestoreError(f"failed restoring username={name} bookname={bookname}: {e}") from e

        pending = {name: user for name, user in users.items() if any(user.books.values())}
        semaphore = self._semaphore()
        results = await asyncio.gather(
            *(
                self._bounded(
                    semaphore,
                    name,
                    lambda name=name, user=user: self._restore_addresses(name, user.password, user),
                )
                for name, user in pending.items()
            ),
            return_exceptions=True,
        )

        errors: list[Exception] = []
        for result in results:
            if isinstance(result, BaseException):
                if not isinstance(result, Exception):
                    raise result
                errors.append(result)
        if errors:
            raise AggregateError("restore failed", errors)

        return Response(success=True, message=f"restored {len(users)} users", request="restore from dump")

    async def clear(self) -> Response:
        """Delete every server user and every stored account."""
        accounts = await self.accounts.list_accounts()
        server_users = {u.username for u in (await self.admin.get_users()).users}

        for name in sorted(set(accounts) | server_users):
            if name in server_users:
                await self.admin.delete_user(name)
            if name in accounts:
                await self.accounts.delete_password(name)
            logger.info("cleared user %s", name)

        return Response(success=True, message="cleared", request="clear")

"""Client for the administrative REST API of the address book server.

The API is served next to the CardDAV endpoint (by default on port 4443 under
``/bcc``) and requires a TLS client certificate plus the ``X-Api-Key``,
``X-Admin-Username`` and ``X-Admin-Password`` headers on every request.
"""

from __future__ import annotations

import logging
from typing import Any, TypeVar
from urllib.parse import quote

import httpx

from . import debug
from .config import Config
from .errors import AdminAPIError, ProtocolError
from .models import (
    AccountResponse,
    AddBookResponse,
    AddUserResponse,
    BooksResponse,
    Response,
    StatusResponse,
    UserAccountsResponse,
    UsersResponse,
)

logger = logging.getLogger("py_mabctl.admin")

R = TypeVar("R", bound=Response)


class AdminClient:
    """Async client for the admin REST API."""

    def __init__(self, config: Config, http_client: httpx.AsyncClient | None = None):
        """Initialize the client.

        Args:
            config: Resolved configuration (admin URL, credentials, TLS files)
            http_client: Preconfigured HTTP client, used instead of building one
        """
        self.config = config
        headers = {
            "X-Api-Key": config.api_key,
            "X-Admin-Username": config.admin_username,
            "X-Admin-Password": config.admin_password,
        }
        if http_client is None:
            http_client = httpx.AsyncClient(
                base_url=config.admin_url,
                cert=config.client_cert(),
                verify=not config.insecure,
                timeout=config.timeout,
                event_hooks=debug.event_hooks(config.verbose),
            )
        http_client.headers.update(headers)
        self.http_client = http_client

    async def __aenter__(self) -> AdminClient:
        return self

    async def __aexit__(self, *exc_info: Any) -> None:
        await self.close()

    async def close(self) -> None:
        await self.http_client.aclose()

    async def _request(
        self, method: str, path: str, response_type: type[R], data: dict[str, Any] | None = None
    ) -> R:
        logger.debug("%s %s", method, path)
        try:
            resp = await self.http_client.request(method, path, json=data)
        except httpx.HTTPError as e:
            raise ProtocolError(f"admin: {method} {path} failed: {e}") from e

        if not resp.is_success:
            raise AdminAPIError(
                method, path, resp.status_code, resp.reason_phrase, debug.format_json(resp.content)
            )

        if not resp.content:
            return response_type()
        try:
            decoded = resp.json()
        except ValueError as e:
            raise ProtocolError(f"admin: failed decoding {method} {path} response: {e}\n{resp.text}") from e
        if not isinstance(decoded, dict):
            raise ProtocolError(f"admin: unexpected {method} {path} response: {resp.text}")
        return response_type.from_dict(decoded)  # type: ignore[return-value]

    async def initialize(self) -> Response:
        return await self._request("POST", "/initialize/", Response)

    async def reset(self) -> Response:
        return await self._request("POST", "/reset/", Response)

    async def get_status(self) -> StatusResponse:
        return await self._request("GET", "/status/", StatusResponse)

    async def get_uptime(self) -> Response:
        return await self._request("GET", "/uptime/", Response)

    async def request_shutdown(self) -> Response:
        return await self._request("POST", "/shutdown/", Response)

    async def get_users(self) -> UsersResponse:
        return await self._request("GET", "/users/", UsersResponse)

    async def get_books(self, username: str | None = None) -> BooksResponse:
        """List address books, for every user or for one.

        The server reports the number of contacts in each book.
        """
        if not username:
            return await self._request("GET", "/books/", BooksResponse)
        return await self._request("GET", f"/books/{quote(username, safe='')}/", BooksResponse)

    async def add_user(self, username: str, display: str, password: str) -> AddUserResponse:
        data = {"username": username, "displayname": display, "password": password}
        return await self._request("POST", "/user/", AddUserResponse, data)

    async def delete_user(self, username: str) -> Response:
        return await self._request("DELETE", "/user/", Response, {"username": username})

    async def add_book(self, username: str, bookname: str, description: str) -> AddBookResponse:
        data = {"username": username, "bookname": bookname, "description": description}
        return await self._request("POST", "/book/", AddBookResponse, data)

    async def delete_book(self, username: str, token: str) -> Response:
        return await self._request("DELETE", "/book/", Response, {"username": username, "token": token})

    async def get_password(self, username: str) -> AccountResponse:
        return await self._request("GET", f"/password/{quote(username, safe='')}/", AccountResponse)

    async def get_accounts(self) -> UserAccountsResponse:
        return await self._request("GET", "/accounts/", UserAccountsResponse)

    async def set_accounts(self, accounts: dict[str, str]) -> UserAccountsResponse:
        return await self._request("POST", "/accounts/", UserAccountsResponse, {"accounts": accounts})

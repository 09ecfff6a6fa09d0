"""Account stores: where CardDAV user passwords are kept.

The CardDAV server only accepts digest credentials, so every bulk or per-user
operation first needs the user's password. Two stores are provided: a local
``username:password`` file and the admin API's account endpoints.
"""

from __future__ import annotations

import logging
import os
from pathlib import Path
from typing import Protocol

from .admin import AdminClient
from .errors import AdminAPIError, ConfigurationError, NotFoundError

logger = logging.getLogger("py_mabctl.accounts")

PASSWD_MODE = 0o660


class AccountStore(Protocol):
    """Mapping of usernames to CardDAV passwords."""

    async def get_password(self, username: str) -> str: ...

    async def set_password(self, username: str, password: str) -> None: ...

    async def delete_password(self, username: str) -> None: ...

    async def list_accounts(self) -> dict[str, str]: ...

    async def set_accounts(self, accounts: dict[str, str]) -> None: ...


def _check_field(kind: str, value: str) -> None:
    if not value:
        raise ConfigurationError(f"illegal empty {kind}")
    if ":" in value or "\n" in value:
        raise ConfigurationError(f"illegal character in {kind}: {value if kind == 'username' else '***'}")


class FileAccountStore:
    """Accounts kept in a ``username:password`` file."""

    def __init__(self, path: str | Path):
        self.path = Path(path)

    def read(self) -> dict[str, str]:
        """Read the passwd file; a missing file is an empty store.

        Raises:
            ConfigurationError: If a line is not ``username:password``
        """
        if not self.path.exists():
            return {}
        accounts: dict[str, str] = {}
        with open(self.path) as f:
            for lineno, line in enumerate(f, 1):
                line = line.rstrip("\n")
                if not line:
                    continue
                fields = line.split(":")
                if len(fields) != 2:
                    raise ConfigurationError(f"failed parsing passwd file {self.path} line {lineno}")
                accounts[fields[0]] = fields[1]
        return accounts

    def write(self, accounts: dict[str, str]) -> None:
        """Replace the passwd file contents."""
        lines = []
        for username, password in accounts.items():
            _check_field("username", username)
            _check_field("password", password)
            lines.append(f"{username}:{password}\n")

        fd = os.open(self.path, os.O_WRONLY | os.O_CREAT | os.O_TRUNC, PASSWD_MODE)
        with os.fdopen(fd, "w") as f:
            f.writelines(lines)
        os.chmod(self.path, PASSWD_MODE)
        logger.debug("wrote %d accounts to %s", len(lines), self.path)

    async def get_password(self, username: str) -> str:
        accounts = self.read()
        if username not in accounts:
            raise NotFoundError(f"no password for user {username} in {self.path}")
        return accounts[username]

    async def set_password(self, username: str, password: str) -> None:
        accounts = self.read()
        accounts[username] = password
        self.write(accounts)

    async def delete_password(self, username: str) -> None:
        accounts = self.read()
        if accounts.pop(username, None) is not None:
            self.write(accounts)

    async def list_accounts(self) -> dict[str, str]:
        return self.read()

    async def set_accounts(self, accounts: dict[str, str]) -> None:
        self.write(dict(accounts))


class HTTPAccountStore:
    """Accounts kept by the admin API."""

    def __init__(self, admin: AdminClient):
        self.admin = admin

    async def get_password(self, username: str) -> str:
        try:
            response = await self.admin.get_password(username)
        except AdminAPIError as e:
            if e.status_code == 404:
                raise NotFoundError(f"unknown user: {username}") from e
            raise
        if not response.password:
            raise NotFoundError(f"unknown user: {username}")
        return response.password

    async def set_password(self, username: str, password: str) -> None:
        _check_field("username", username)
        _check_field("password", password)
        accounts = await self.list_accounts()
        accounts[username] = password
        await self.set_accounts(accounts)

    async def delete_password(self, username: str) -> None:
        accounts = await self.list_accounts()
        if accounts.pop(username, None) is not None:
            await self.set_accounts(accounts)

    async def list_accounts(self) -> dict[str, str]:
        response = await self.admin.get_accounts()
        return dict(response.accounts)

    async def set_accounts(self, accounts: dict[str, str]) -> None:
        await self.admin.set_accounts(dict(accounts))

"""Response types shared by the admin client, the controller and the CLI."""

from __future__ import annotations

import json
from dataclasses import asdict, dataclass, field
from typing import Any

from .carddav import AddressObject


@dataclass
class User:
    username: str
    displayname: str = ""
    uri: str = ""

    @staticmethod
    def from_dict(data: dict[str, Any]) -> User:
        return User(
            username=data.get("username", ""),
            displayname=data.get("displayname", ""),
            uri=data.get("uri", ""),
        )


@dataclass
class Book:
    username: str
    bookname: str
    description: str = ""
    contacts: int = 0
    token: str = ""
    uri: str = ""

    @staticmethod
    def from_dict(data: dict[str, Any]) -> Book:
        return Book(
            username=data.get("username", ""),
            bookname=data.get("bookname", ""),
            description=data.get("description", ""),
            contacts=int(data.get("contacts") or 0),
            token=data.get("token", ""),
            uri=data.get("uri", ""),
        )


@dataclass
class Response:
    """Fields present in every API and controller response."""

    success: bool = False
    message: str = ""
    request: str = ""

    @classmethod
    def _base(cls, data: dict[str, Any]) -> dict[str, Any]:
        return {
            "success": bool(data.get("success", False)),
            "message": data.get("message", "") or "",
            "request": data.get("request", "") or "",
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> Response:
        return cls(**cls._base(data))

    def to_dict(self) -> dict[str, Any]:
        return asdict(self)


@dataclass
class UsersResponse(Response):
    users: list[User] = field(default_factory=list)

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> UsersResponse:
        return cls(**cls._base(data), users=[User.from_dict(u) for u in data.get("users") or []])


@dataclass
class AddUserResponse(Response):
    user: User | None = None

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> AddUserResponse:
        user = data.get("user")
        return cls(**cls._base(data), user=User.from_dict(user) if user else None)


@dataclass
class BooksResponse(Response):
    books: list[Book] = field(default_factory=list)

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> BooksResponse:
        return cls(**cls._base(data), books=[Book.from_dict(b) for b in data.get("books") or []])


@dataclass
class AddBookResponse(Response):
    book: Book | None = None

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> AddBookResponse:
        book = data.get("book")
        return cls(**cls._base(data), book=Book.from_dict(book) if book else None)


@dataclass
class StatusResponse(Response):
    status: dict[str, str] = field(default_factory=dict)

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> StatusResponse:
        return cls(**cls._base(data), status=dict(data.get("status") or {}))


@dataclass
class AccountResponse(Response):
    username: str = ""
    password: str = ""

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> AccountResponse:
        return cls(
            **cls._base(data),
            username=data.get("username", ""),
            password=data.get("password", ""),
        )


@dataclass
class UserAccountsResponse(Response):
    accounts: dict[str, str] = field(default_factory=dict)

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> UserAccountsResponse:
        return cls(**cls._base(data), accounts=dict(data.get("accounts") or {}))


@dataclass
class AddressesResponse(Response):
    addresses: list[AddressObject] = field(default_factory=list)

    def to_dict(self) -> dict[str, Any]:
        return {
            "success": self.success,
            "message": self.message,
            "request": self.request,
            "addresses": [a.to_dict() for a in self.addresses],
        }


@dataclass
class AddressResponse(Response):
    address: AddressObject | None = None

    def to_dict(self) -> dict[str, Any]:
        return {
            "success": self.success,
            "message": self.message,
            "request": self.request,
            "address": self.address.to_dict() if self.address else None,
        }


@dataclass
class UserDump:
    password: str
    books: dict[str, list[str]] = field(default_factory=dict)


@dataclass
class ConfigDump:
    """Snapshot of users, passwords, books and email addresses.

    Serialized as ``{"<user>": {"password": ..., "books": {"<book>": [email, ...]}}}``.
    """

    users: dict[str, UserDump] = field(default_factory=dict)

    def to_dict(self) -> dict[str, Any]:
        return {
            username: {"password": user.password, "books": {k: list(v) for k, v in user.books.items()}}
            for username, user in self.users.items()
        }

    def to_json(self) -> str:
        return json.dumps(self.to_dict(), indent=2)

    @staticmethod
    def from_dict(data: dict[str, Any]) -> ConfigDump:
        users = {}
        for username, user in data.items():
            if not isinstance(user, dict):
                raise ValueError(f"dump entry for {username} is not an object")
            books = user.get("books") or {}
            users[username] = UserDump(
                password=user.get("password", ""),
                books={bookname: list(emails or []) for bookname, emails in books.items()},
            )
        return ConfigDump(users=users)

    @staticmethod
    def from_json(text: str) -> ConfigDump:
        data = json.loads(text)
        if not isinstance(data, dict):
            raise ValueError("dump must be a JSON object")
        return ConfigDump.from_dict(data)


@dataclass
class DumpResponse(Response):
    dump: ConfigDump = field(default_factory=ConfigDump)

    def to_dict(self) -> dict[str, Any]:
        return {
            "success": self.success,
            "message": self.message,
            "request": self.request,
            "dump": self.dump.to_dict(),
        }

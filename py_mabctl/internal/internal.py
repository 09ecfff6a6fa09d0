"""Errors and header values of the WebDAV layer."""

from __future__ import annotations

from enum import Enum
from http import HTTPStatus


class Depth(str, Enum):
    """Depth header values (RFC 4918 section 10.2) the client sends."""

    ZERO = "0"  # the resource itself
    ONE = "1"  # the resource and its direct members


def status_phrase(code: int) -> str:
    try:
        return HTTPStatus(code).phrase
    except ValueError:
        return "Unknown"


class HTTPError(Exception):
    """A WebDAV request, or one member of a multistatus, failed."""

    def __init__(self, status_code: int, method: str = "", path: str = "", detail: str = ""):
        self.status_code = status_code
        self.method = method
        self.path = path
        self.detail = detail
        super().__init__(str(self))

    def __str__(self) -> str:
        s = f"{self.status_code} {status_phrase(self.status_code)}"
        if self.method:
            s = f"{self.method} {self.path}: {s}"
        if self.detail:
            s = f"{s}: {self.detail}"
        return s


class HrefError(Exception):
    """Error status reported for one href of a multistatus response."""

    def __init__(self, href: str, err: HTTPError):
        self.href = href
        self.err = err
        super().__init__(str(self))

    def __str__(self) -> str:
        return f"{self.href}: {self.err}"


def is_not_found(err: Exception | None) -> bool:
    """Check whether an error means 404 Not Found."""
    if isinstance(err, HrefError):
        err = err.err
    return isinstance(err, HTTPError) and err.status_code == 404

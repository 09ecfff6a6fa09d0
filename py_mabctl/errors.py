"""Error types raised by the address book tooling."""

from __future__ import annotations


class MabError(Exception):
    """Base class for py-mabctl errors."""


class FormatError(MabError, ValueError):
    """A book token or book path could not be parsed."""


class ProtocolError(MabError):
    """The server sent a malformed or unsupported challenge or response."""


class AuthenticationError(MabError):
    """Credentials were rejected after a fresh challenge."""


class SessionOwnershipError(MabError, RuntimeError):
    """A digest session was used from a task that does not own it."""


class DiscoveryError(MabError):
    """The server does not advertise the expected capability."""


class NotFoundError(MabError, LookupError):
    """A user, account or book does not exist."""


class ConfigurationError(MabError):
    """Required configuration or a password mapping is missing."""


class AdminAPIError(MabError):
    """The administrative REST API returned a non-2xx status."""

    def __init__(self, method: str, path: str, status_code: int, reason: str = "", body: str = ""):
        self.method = method
        self.path = path
        self.status_code = status_code
        self.reason = reason
        self.body = body
        super().__init__(str(self))

    def __str__(self) -> str:
        status = f"{self.status_code} {self.reason}".rstrip()
        s = f"{self.method} {self.path} '{status}'"
        if self.body:
            return f"{s}\n{self.body}"
        return s


class RestoreError(MabError):
    """Restoring a user, book or address from a dump failed."""


class AggregateError(MabError):
    """One or more concurrent workers failed."""

    def __init__(self, message: str, errors: list[Exception]):
        self.message = message
        self.errors = list(errors)
        super().__init__(str(self))

    def __str__(self) -> str:
        lines = [f"{self.message} ({len(self.errors)} failed)"]
        lines.extend(f"  {err}" for err in self.errors)
        return "\n".join(lines)

"""HTTP Digest authentication session.

Implements the client side of RFC 7616 (and the RFC 2617 ``qop=auth``
computation it inherits) as an :class:`httpx.Auth` so it can be attached to
an :class:`httpx.AsyncClient`.

A session starts unchallenged and sends requests without credentials. The
first 401 carrying a ``WWW-Authenticate: Digest`` header moves it to the
challenged state; from then on every request is authorized pre-emptively
with an increasing nonce count. When the server answers an authorized
request with another 401 (for example because the nonce went stale) the
session takes the new challenge and retries once. A second 401 for the same
request is an authentication failure.

A session belongs to the task that first sends through it. The nonce count
must increase monotonically, so concurrent workers each need their own
session.
"""

from __future__ import annotations

import asyncio
import hashlib
import logging
import secrets
import threading
from collections.abc import Callable, Generator
from dataclasses import dataclass
from enum import Enum
from typing import Any
from urllib.request import parse_http_list

import httpx

from .errors import AuthenticationError, ProtocolError, SessionOwnershipError

logger = logging.getLogger("py_mabctl.digest")

QOP_AUTH = "auth"

_ALGORITHMS: dict[str, Callable[..., Any]] = {
    "MD5": hashlib.md5,
    "MD5-SESS": hashlib.md5,
    "SHA": hashlib.sha1,
    "SHA-SESS": hashlib.sha1,
    "SHA-256": hashlib.sha256,
    "SHA-256-SESS": hashlib.sha256,
    "SHA-512": hashlib.sha512,
    "SHA-512-SESS": hashlib.sha512,
}


class SessionState(Enum):
    """Digest session states."""

    UNCHALLENGED = "unchallenged"
    CHALLENGED = "challenged"
    AUTHORIZING = "authorizing"


@dataclass
class DigestChallenge:
    """Parameters of a ``WWW-Authenticate: Digest`` challenge."""

    realm: str
    nonce: str
    qop: str | None = None
    opaque: str | None = None
    algorithm: str = "MD5"
    stale: bool = False


def parse_challenge(header: str) -> DigestChallenge:
    """Parse a Digest challenge header.

    Args:
        header: Value of the WWW-Authenticate header

    Returns:
        Parsed challenge

    Raises:
        ProtocolError: If the header is not a usable Digest challenge
    """
    scheme, _, fields = header.strip().partition(" ")
    if scheme.lower() != "digest":
        raise ProtocolError(f"digest: unsupported authentication scheme: {scheme!r}")

    params: dict[str, str] = {}
    for field in parse_http_list(fields):
        key, sep, value = field.strip().partition("=")
        if not sep:
            raise ProtocolError(f"digest: malformed challenge field: {field!r}")
        value = value.strip()
        if len(value) >= 2 and value[0] == value[-1] == '"':
            value = value[1:-1]
        params[key.strip().lower()] = value

    for required in ("nonce", "realm"):
        if required not in params:
            raise ProtocolError(f"digest: challenge is missing {required!r}")

    qop = params.get("qop")
    if qop is not None:
        offered = [q.strip().lower() for q in qop.split(",") if q.strip()]
        if QOP_AUTH not in offered:
            raise ProtocolError(f"digest: unsupported qop {qop!r}, only 'auth' is implemented")
        qop = QOP_AUTH

    algorithm = params.get("algorithm", "MD5").upper()
    if algorithm not in _ALGORITHMS:
        raise ProtocolError(f"digest: unsupported algorithm {algorithm!r}")

    return DigestChallenge(
        realm=params["realm"],
        nonce=params["nonce"],
        qop=qop,
        opaque=params.get("opaque"),
        algorithm=algorithm,
        stale=params.get("stale", "").lower() == "true",
    )


def make_client_nonce() -> str:
    """Generate an unpredictable client nonce."""
    return secrets.token_hex(16)


def _current_actor() -> object:
    try:
        task = asyncio.current_task()
    except RuntimeError:
        task = None
    return task or threading.current_thread()


class DigestSession(httpx.Auth):
    """Digest authentication state for one user against one server."""

    def __init__(self, username: str, password: str):
        self.username = username
        self._password = password
        self.state = SessionState.UNCHALLENGED
        self.challenge_params: DigestChallenge | None = None
        self.nonce_count = 0
        self.client_nonce = ""
        self._ha1 = ""
        self._owner: object | None = None

    def _hash(self, data: str) -> str:
        assert self.challenge_params is not None
        hash_func = _ALGORITHMS[self.challenge_params.algorithm]
        return hash_func(data.encode("utf-8")).hexdigest()

    def _claim(self) -> None:
        actor = _current_actor()
        if self._owner is None:
            self._owner = actor
        elif self._owner is not actor:
            raise SessionOwnershipError(
                f"digest session for {self.username} is owned by another task"
            )

    def challenge(self, header: str) -> DigestChallenge:
        """Accept a new server challenge.

        Resets the nonce count and generates a fresh client nonce.
        """
        params = parse_challenge(header)
        self.challenge_params = params
        self.nonce_count = 0
        self.client_nonce = make_client_nonce()
        self._ha1 = self._hash(f"{self.username}:{params.realm}:{self._password}")
        if params.algorithm.endswith("-SESS"):
            self._ha1 = self._hash(f"{self._ha1}:{params.nonce}:{self.client_nonce}")
        self.state = SessionState.CHALLENGED
        logger.debug(
            "digest challenge for %s: realm=%s algorithm=%s stale=%s",
            self.username,
            params.realm,
            params.algorithm,
            params.stale,
        )
        return params

    def authorization(self, method: str, uri: str) -> str:
        """Build the Authorization header for the next request.

        Args:
            method: HTTP method
            uri: Request URI (path and query) as sent on the request line

        Returns:
            Authorization header value

        Raises:
            ProtocolError: If the session has not been challenged yet
        """
        params = self.challenge_params
        if params is None or self.state is SessionState.UNCHALLENGED:
            raise ProtocolError("digest: cannot authorize before a challenge")

        self.state = SessionState.AUTHORIZING
        self.nonce_count += 1
        nc = f"{self.nonce_count:08x}"
        ha2 = self._hash(f"{method}:{uri}")

        if params.qop:
            response = self._hash(
                f"{self._ha1}:{params.nonce}:{nc}:{self.client_nonce}:{params.qop}:{ha2}"
            )
        else:
            response = self._hash(f"{self._ha1}:{params.nonce}:{ha2}")

        fields = [
            f'username="{self.username}"',
            f'realm="{params.realm}"',
            f'nonce="{params.nonce}"',
            f'uri="{uri}"',
            f'response="{response}"',
            f"algorithm={params.algorithm}",
        ]
        if params.qop:
            fields += [f"qop={params.qop}", f"nc={nc}", f'cnonce="{self.client_nonce}"']
        if params.opaque is not None:
            fields.append(f'opaque="{params.opaque}"')

        return "Digest " + ", ".join(fields)

    def _authorize(self, request: httpx.Request) -> None:
        uri = request.url.raw_path.decode("ascii")
        request.headers["Authorization"] = self.authorization(request.method, uri)

    def _challenge_from(self, response: httpx.Response) -> str:
        for value in response.headers.get_list("www-authenticate"):
            if value.strip().lower().startswith("digest"):
                return value
        raise ProtocolError(
            f"digest: {response.status_code} response to {response.request.method} "
            f"{response.request.url.path} without a Digest challenge"
        )

    def auth_flow(self, request: httpx.Request) -> Generator[httpx.Request, httpx.Response, None]:
        self._claim()

        if self.state is not SessionState.UNCHALLENGED:
            self._authorize(request)

        response = yield request
        if response.status_code != 401:
            if self.state is SessionState.AUTHORIZING:
                self.state = SessionState.CHALLENGED
            return

        self.challenge(self._challenge_from(response))
        self._authorize(request)
        logger.debug("retrying %s %s with new digest challenge", request.method, request.url.path)

        response = yield request
        if response.status_code == 401:
            self.state = SessionState.UNCHALLENGED
            raise AuthenticationError(
                f"digest: credentials for {self.username} rejected by {request.url.host}"
            )
        self.state = SessionState.CHALLENGED

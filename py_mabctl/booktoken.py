"""Book tokens and address book paths.

A book token is the collection segment of an address book path on the
CardDAV server. It is derived from the owning username and the book name:

    alice@example.org + "Work" -> alice-example-org-work

The reserved collection every account owns is called ``default`` and keeps
that name as its token.
"""

from __future__ import annotations

from urllib.parse import unquote

from .errors import FormatError

DEFAULT_BOOK = "default"
DEFAULT_DAV_ROOT = "/dav.php"

_TOKEN_CHARS = frozenset("abcdefghijklmnopqrstuvwxyz0123456789")


def is_default_book(bookname: str) -> bool:
    """Check whether a book name refers to the reserved default collection."""
    return bookname.lower() == DEFAULT_BOOK


def _encode(text: str) -> str:
    return "".join(ch if ch in _TOKEN_CHARS else "-" for ch in text.lower())


def book_token(username: str, bookname: str) -> str:
    """Return the collection token for a user's book.

    Args:
        username: Account name (an email address by convention)
        bookname: Address book name; any spelling of "default" is the
            reserved collection

    Returns:
        Token used as the collection segment of the book path
    """
    if is_default_book(bookname):
        return DEFAULT_BOOK
    return _encode(f"{username}-{bookname}")


def parse_book_token(username: str, token: str) -> tuple[str, str]:
    """Recover (username, bookname) from a book token.

    The token normally starts with the encoded username from the book path,
    which is stripped to leave the book name. Tokens that do not carry that
    prefix are split as ``local-domain-tld-bookname``.

    Args:
        username: Username segment taken from the book path
        token: Book token

    Returns:
        Tuple of (username, bookname)

    Raises:
        FormatError: If the token is the reserved default token or does not
            contain a username prefix
    """
    if token == DEFAULT_BOOK:
        raise FormatError(f"token {token!r} is reserved for the default book of {username}")

    prefix = _encode(f"{username}-")
    if username and token.startswith(prefix) and len(token) > len(prefix):
        return username, token[len(prefix):]

    fields = token.split("-", 3)
    if len(fields) != 4 or not all(fields):
        raise FormatError(f"unexpected token format: {token}")

    return f"{fields[0]}@{fields[1]}.{fields[2]}", fields[3]


def parse_book_path(path: str) -> tuple[str, str, str]:
    """Split an address book path into (username, bookname, token).

    The path looks like ``/dav.php/addressbooks/<username>/<token>/``.

    Raises:
        FormatError: If the path is too short or the token cannot be parsed
    """
    fields = path.split("/")
    if len(fields) < 4:
        raise FormatError(f"unexpected book path: {path}")

    path_username = unquote(fields[-3])
    token = fields[-2]
    if not path_username or not token:
        raise FormatError(f"unexpected book path: {path}")

    if token == DEFAULT_BOOK:
        return path_username, DEFAULT_BOOK, token

    username, bookname = parse_book_token(path_username, token)
    return username, bookname, token


def book_uri(username: str, bookname: str, root: str = DEFAULT_DAV_ROOT) -> str:
    """Return the server path of a user's address book."""
    return f"{root.rstrip('/')}/addressbooks/{username}/{book_token(username, bookname)}/"


def address_uri(username: str, bookname: str, uid: str, root: str = DEFAULT_DAV_ROOT) -> str:
    """Return the server path of an address object stored in a book."""
    return f"{book_uri(username, bookname, root)}{uid}.vcf"

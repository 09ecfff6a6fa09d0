"""Administration tooling for CardDAV address books."""

from .booktoken import book_token, book_uri, parse_book_path, parse_book_token
from .cardclient import CardClient
from .config import Config, load_config
from .controller import Controller
from .digest import DigestSession

__version__ = "1.3.8"

__all__ = [
    "CardClient",
    "Config",
    "Controller",
    "DigestSession",
    "book_token",
    "book_uri",
    "load_config",
    "parse_book_path",
    "parse_book_token",
]

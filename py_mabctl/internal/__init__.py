"""Internal WebDAV client plumbing."""

from . import elements
from .client import Client
from .elements import MultiStatus, Response
from .internal import Depth, HrefError, HTTPError, is_not_found

__all__ = [
    "elements",
    "Client",
    "MultiStatus",
    "Response",
    "Depth",
    "HrefError",
    "HTTPError",
    "is_not_found",
]

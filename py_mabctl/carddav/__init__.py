"""CardDAV support for py-mabctl."""

from .carddav import (
    CAPABILITY_ADDRESSBOOK,
    VCARD_VERSION,
    AddressBook,
    AddressBookQuery,
    AddressObject,
    PropFilter,
    TextMatch,
    card_email,
    card_uid,
    new_card,
    parse_card,
)
from .client import Client, discover_context_url

__all__ = [
    "CAPABILITY_ADDRESSBOOK",
    "VCARD_VERSION",
    "AddressBook",
    "AddressBookQuery",
    "AddressObject",
    "Client",
    "PropFilter",
    "TextMatch",
    "card_email",
    "card_uid",
    "discover_context_url",
    "new_card",
    "parse_card",
]

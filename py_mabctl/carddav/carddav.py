"""CardDAV types and vCard support.

CardDAV is defined in RFC 6352.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any

import vobject
from vobject.vcard import Name

# CardDAV capability advertised in the DAV header
CAPABILITY_ADDRESSBOOK = "addressbook"

VCARD_VERSION = "3.0"
VCARD_CONTENT_TYPE = "text/vcard; charset=utf-8"


@dataclass
class AddressBook:
    """CardDAV address book collection."""

    path: str
    name: str = ""
    description: str = ""
    max_resource_size: int = 0


@dataclass
class AddressObject:
    """CardDAV address object (vCard data)."""

    path: str
    card: Any = None  # vobject vCard component
    etag: str = ""

    @property
    def email(self) -> str:
        return card_email(self.card)

    @property
    def uid(self) -> str:
        return card_uid(self.card)

    def to_dict(self) -> dict[str, Any]:
        """Plain representation used for JSON output."""
        data: dict[str, Any] = {"path": self.path, "etag": self.etag}
        if self.card is not None:
            data["uid"] = card_uid(self.card)
            data["email"] = card_email(self.card)
            fn = self.card.contents.get("fn")
            data["name"] = fn[0].value if fn else ""
            data["card"] = self.card.serialize()
        return data


@dataclass
class TextMatch:
    """Text matching filter."""

    text: str
    negate_condition: bool = False
    match_type: str = "equals"  # contains, equals, starts-with, ends-with
    collation: str = "i;unicode-casemap"


@dataclass
class PropFilter:
    """Property filter for address book queries."""

    name: str
    is_not_defined: bool = False
    text_matches: list[TextMatch] = field(default_factory=list)
    all_text_match: bool = False


@dataclass
class AddressBookQuery:
    """CardDAV addressbook-query REPORT request."""

    prop_filters: list[PropFilter] = field(default_factory=list)
    filter_test: str = "anyof"  # anyof or allof
    limit: int = 0  # <= 0 means unlimited

    @staticmethod
    def match(name: str, text: str) -> AddressBookQuery:
        """Query for objects whose property ``name`` equals ``text``."""
        return AddressBookQuery(prop_filters=[PropFilter(name=name, text_matches=[TextMatch(text=text)])])


def parse_card(vcard_data: str) -> Any:
    """Parse a vCard object.

    Args:
        vcard_data: vCard data as string

    Returns:
        vobject vCard component

    Raises:
        ValueError: If the data is not a vCard with a UID
    """
    try:
        vcard = vobject.readOne(vcard_data)
    except Exception as e:
        raise ValueError(f"invalid vCard object: {e}") from e

    if vcard.name != "VCARD":
        raise ValueError(f"expected VCARD, got {vcard.name}")
    if "uid" not in vcard.contents:
        raise ValueError("vCard must have a UID property")

    return vcard


def new_card(email: str, uid: str, name: str = "") -> Any:
    """Build a minimal vCard for an email address.

    The display name is split on its first space into given and family
    name; a single word is kept as additional name.
    """
    card = vobject.vCard()
    card.add("version").value = VCARD_VERSION
    card.add("uid").value = uid
    card.add("email").value = email
    card.add("fn").value = name or email

    given, sep, family = name.partition(" ")
    if sep:
        card.add("n").value = Name(family=family, given=given)
    else:
        card.add("n").value = Name(additional=name)

    return card


def card_email(card: Any) -> str:
    """Return the first EMAIL value of a card, or an empty string."""
    if card is None:
        return ""
    emails = card.contents.get("email")
    return str(emails[0].value) if emails else ""


def card_uid(card: Any) -> str:
    """Return the UID of a card, or an empty string."""
    if card is None:
        return ""
    uids = card.contents.get("uid")
    return str(uids[0].value) if uids else ""

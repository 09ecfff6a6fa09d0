"""Tests for CardDAV vCard helpers."""
import pytest

from py_mabctl.carddav import card_email, card_uid, new_card, parse_card


def test_parse_card_valid():
    """Test parsing a valid vCard."""
    vcard_data = """BEGIN:VCARD
VERSION:3.0
FN:John Doe
N:Doe;John;;;
UID:test-contact-123
EMAIL:john@example.com
TEL:+1-555-1234
END:VCARD"""

    card = parse_card(vcard_data)

    assert card_uid(card) == "test-contact-123", f"Expected test-contact-123, got {card_uid(card)}"
    assert card_email(card) == "john@example.com"


def test_parse_card_version_4():
    """Test parsing a vCard version 4.0."""
    vcard_data = """BEGIN:VCARD
VERSION:4.0
FN:Jane Smith
N:Smith;Jane;;;
UID:test-contact-456
EMAIL:jane@example.com
END:VCARD"""

    card = parse_card(vcard_data)

    assert card_uid(card) == "test-contact-456", f"Expected test-contact-456, got {card_uid(card)}"


def test_parse_card_missing_uid():
    """Test that vCard without UID is rejected."""
    vcard_data = """BEGIN:VCARD
VERSION:3.0
FN:No UID Contact
N:Contact;NoUID;;;
EMAIL:nouid@example.com
END:VCARD"""

    with pytest.raises(ValueError, match="UID"):
        parse_card(vcard_data)


def test_parse_card_invalid_format():
    """Test that invalid vCard format is rejected."""
    vcard_data = """This is not a valid vCard"""

    with pytest.raises(ValueError):
        parse_card(vcard_data)


def test_new_card_round_trip():
    """Test that a generated card parses back with the same fields."""
    card = parse_card(new_card("bob@example.net", "uid-1", "Bob van Smith").serialize())

    assert card_uid(card) == "uid-1"
    assert card_email(card) == "bob@example.net"
    assert card.fn.value == "Bob van Smith"
    assert card.n.value.given == "Bob"
    assert card.n.value.family == "van Smith"


def test_new_card_without_name():
    card = new_card("bob@example.net", "uid-2")

    assert card.fn.value == "bob@example.net"
    assert card.version.value == "3.0"


def test_card_helpers_on_empty_card():
    assert card_email(None) == ""
    assert card_uid(None) == ""

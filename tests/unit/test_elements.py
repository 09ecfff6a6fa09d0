"""Tests for internal elements and CardDAV REPORT bodies."""

import pytest
from lxml import etree

from py_mabctl.carddav import AddressBookQuery, PropFilter, TextMatch
from py_mabctl.carddav.report import address_objects_from_multistatus, addressbook_query_xml
from py_mabctl.errors import ProtocolError
from py_mabctl.internal import elements as elem
from py_mabctl.internal.elements import MultiStatus, parse_status, propfind_xml
from py_mabctl.internal.internal import HrefError, HTTPError, is_not_found

# https://tools.ietf.org/html/rfc4918#section-9.6.2
EXAMPLE_DELETE_MULTISTATUS_STR = """<?xml version="1.0" encoding="utf-8" ?>
<d:multistatus xmlns:d="DAV:">
  <d:response>
    <d:href>http://www.example.com/container/resource3</d:href>
    <d:status>HTTP/1.1 423 Locked</d:status>
    <d:error><d:lock-token-submitted/></d:error>
  </d:response>
</d:multistatus>"""

# https://tools.ietf.org/html/rfc6352#section-8.6.4
EXAMPLE_QUERY_MULTISTATUS_STR = """<?xml version="1.0" encoding="utf-8" ?>
<D:multistatus xmlns:D="DAV:" xmlns:C="urn:ietf:params:xml:ns:carddav">
  <D:response>
    <D:href>/home/bernard/addressbook/v102.vcf</D:href>
    <D:propstat>
      <D:prop>
        <D:getetag>"23ba4d-ff11fb"</D:getetag>
        <C:address-data>BEGIN:VCARD
VERSION:3.0
NICKNAME:me
UID:34222-232@example.com
FN:Cyrus Daboo
EMAIL:daboo@example.com
END:VCARD
</C:address-data>
      </D:prop>
      <D:status>HTTP/1.1 200 OK</D:status>
    </D:propstat>
  </D:response>
</D:multistatus>"""


def test_response_err_error():
    """Test that an error status in a multistatus becomes an HrefError."""
    xml_elem = etree.fromstring(EXAMPLE_DELETE_MULTISTATUS_STR.encode("utf-8"))
    ms = MultiStatus.from_xml(xml_elem)

    assert len(ms.responses) == 1, f"expected 1 <response>, got {len(ms.responses)}"

    resp = ms.responses[0]
    err = resp.err()

    assert err is not None, "Response.err() returned None, expected non-nil"
    # Should be HrefError wrapping HTTPError
    assert isinstance(err, HrefError), f"Response.err() = {type(err)}, expected HrefError"
    assert isinstance(err.err, HTTPError), f"HrefError.err = {type(err.err)}, expected HTTPError"
    assert err.err.status_code == 423, f"HTTPError.status_code = {err.err.status_code}, expected 423"
    assert err.href == "http://www.example.com/container/resource3"
    assert "lock-token-submitted" in str(err)
    assert not is_not_found(err)

    with pytest.raises(HrefError):
        resp.path()


def test_multistatus_requires_root():
    with pytest.raises(ProtocolError, match="multistatus"):
        MultiStatus.from_xml(etree.fromstring(b"<d:prop xmlns:d='DAV:'/>"))
    with pytest.raises(ProtocolError, match="malformed"):
        MultiStatus.from_bytes(b"<html>")


@pytest.mark.parametrize("line", ["", "HTTP/1.1", "HTTP/1.1 OK fine"])
def test_parse_status_rejects(line):
    with pytest.raises(ProtocolError):
        parse_status(line)


def test_parse_status():
    assert parse_status("HTTP/1.1 207 Multi-Status") == 207


def test_propfind_xml():
    root = propfind_xml(elem.DISPLAY_NAME, elem.ADDRESSBOOK_HOME_SET)

    assert root.tag == "{DAV:}propfind"
    assert [child.tag for child in root.find("{DAV:}prop")] == [
        "{DAV:}displayname",
        "{urn:ietf:params:xml:ns:carddav}addressbook-home-set",
    ]


def test_addressbook_query_xml():
    query = AddressBookQuery(
        prop_filters=[
            PropFilter(name="EMAIL", text_matches=[TextMatch(text="bob@example.net")]),
            PropFilter(name="UID", is_not_defined=True),
        ],
        filter_test="allof",
        limit=5,
    )

    root = addressbook_query_xml(query)

    assert root.tag == "{urn:ietf:params:xml:ns:carddav}addressbook-query"
    card = "urn:ietf:params:xml:ns:carddav"
    filter_el = root.find(f"{{{card}}}filter")
    assert filter_el.get("test") == "allof"
    prop_filters = filter_el.findall(f"{{{card}}}prop-filter")
    assert [pf.get("name") for pf in prop_filters] == ["EMAIL", "UID"]
    text_match = prop_filters[0].find(f"{{{card}}}text-match")
    assert text_match.text == "bob@example.net"
    assert text_match.get("match-type") == "equals"
    assert prop_filters[1].find(f"{{{card}}}is-not-defined") is not None
    assert root.find(f"{{{card}}}limit/{{{card}}}nresults").text == "5"
    assert root.find(f"{{DAV:}}prop/{{{card}}}address-data") is not None


def test_address_objects_from_multistatus():
    ms = MultiStatus.from_xml(etree.fromstring(EXAMPLE_QUERY_MULTISTATUS_STR.encode("utf-8")))

    objects = address_objects_from_multistatus(ms)

    assert len(objects) == 1
    obj = objects[0]
    assert obj.path == "/home/bernard/addressbook/v102.vcf"
    assert obj.etag == "23ba4d-ff11fb"
    assert obj.uid == "34222-232@example.com"
    assert obj.email == "daboo@example.com"
    assert obj.to_dict()["name"] == "Cyrus Daboo"

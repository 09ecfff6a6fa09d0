"""CardDAV REPORT request bodies and multistatus decoding."""

from __future__ import annotations

import logging

from lxml import etree

from ..errors import ProtocolError
from ..internal import elements as elem
from .carddav import AddressBookQuery, AddressObject, parse_card

logger = logging.getLogger("py_mabctl.carddav")


def addressbook_query_xml(query: AddressBookQuery) -> etree._Element:
    """Build an addressbook-query REPORT body (RFC 6352 section 8.6).

    The body always asks for the ETag and the full address data.
    """
    card = elem.card
    root = etree.Element(card("addressbook-query"), nsmap=elem.NSMAP)

    prop = etree.SubElement(root, elem.dav("prop"))
    etree.SubElement(prop, elem.GET_ETAG)
    etree.SubElement(prop, elem.ADDRESS_DATA)

    filter_el = etree.SubElement(root, card("filter"), test=query.filter_test)
    for pf in query.prop_filters:
        pf_el = etree.SubElement(filter_el, card("prop-filter"), name=pf.name)
        if pf.all_text_match:
            pf_el.set("test", "allof")
        if pf.is_not_defined:
            etree.SubElement(pf_el, card("is-not-defined"))
            continue
        for tm in pf.text_matches:
            tm_el = etree.SubElement(pf_el, card("text-match"), collation=tm.collation)
            tm_el.set("match-type", tm.match_type)
            if tm.negate_condition:
                tm_el.set("negate-condition", "yes")
            tm_el.text = tm.text

    if query.limit > 0:
        limit_el = etree.SubElement(root, card("limit"))
        etree.SubElement(limit_el, card("nresults")).text = str(query.limit)

    return root


def address_objects_from_multistatus(ms: elem.MultiStatus) -> list[AddressObject]:
    """Decode the address objects of an addressbook-query response.

    Raises:
        HrefError: If a response carries an error status
        ProtocolError: If a response has no address data
    """
    objects: list[AddressObject] = []
    for resp in ms.responses:
        path = resp.path()
        data = resp.get_prop(elem.ADDRESS_DATA)
        if data is None or not data.text:
            raise ProtocolError(f"carddav: missing address-data for {path}")
        etag = resp.prop_text(elem.GET_ETAG).strip('"')
        objects.append(AddressObject(path=path, card=parse_card(data.text), etag=etag))

    logger.debug("decoded %d address objects", len(objects))
    return objects

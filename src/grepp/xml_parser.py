"""
EPP XML Parser

Parses EPP XML responses per RFC 5730-5733 and the .GR domain extension.
"""

import logging
from datetime import datetime
from typing import Iterable, List, Optional

from lxml import etree

from grepp.exceptions import EPPXMLError
from grepp.models import (
    RESULT_OK,
    CheckItem,
    CheckResults,
    ContactInfo,
    DomainContact,
    DomainInfo,
    EppResult,
    ExtensionData,
    HostAddress,
    HostInfo,
    PostalInfoData,
    ResData,
)

logger = logging.getLogger("grepp.parser")

# Namespaces
NS = {
    "epp": "urn:ietf:params:xml:ns:epp-1.0",
    "domain": "urn:ietf:params:xml:ns:domain-1.0",
    "contact": "urn:ietf:params:xml:ns:contact-1.0",
    "host": "urn:ietf:params:xml:ns:host-1.0",
    "extdomain": "http://www.ics.forth.gr/gr-domain-ext-1.0",
}

# Secure parser
_parser = etree.XMLParser(
    resolve_entities=False,
    no_network=True,
    remove_blank_text=True,
)


def _parse_datetime(text: str) -> Optional[datetime]:
    """Parse ISO datetime string, dropping fractional seconds."""
    if not text:
        return None
    text = text.strip().replace("Z", "+00:00")
    if "." in text:
        head, _, tail = text.partition(".")
        offset = ""
        for sign in ("+", "-"):
            if sign in tail:
                offset = sign + tail.split(sign, 1)[1]
                break
        text = head + offset
    try:
        return datetime.fromisoformat(text)
    except ValueError:
        logger.debug(f"Unparseable date: {text}")
        return None


def _find_text(elem: etree._Element, path: str, default: str = None) -> Optional[str]:
    """Find element and return text."""
    found = elem.find(path, NS)
    if found is not None and found.text:
        return found.text
    return default


def _find_all_text(elem: etree._Element, path: str) -> List[str]:
    """Find all elements and return their text."""
    return [e.text for e in elem.findall(path, NS) if e.text]


def _parse_xml(xml_data: bytes) -> etree._Element:
    """Parse XML with secure parser."""
    if isinstance(xml_data, str):
        xml_data = xml_data.encode("utf-8")
    if not xml_data or not xml_data.strip():
        raise EPPXMLError("Empty response")
    try:
        return etree.fromstring(xml_data, _parser)
    except etree.XMLSyntaxError as e:
        raise EPPXMLError(f"XML parse error: {e}")


def _is_available(elem: etree._Element) -> bool:
    return elem.get("avail", "0").lower() in ("1", "true")


class XMLParser:
    """
    Parses EPP XML responses.

    All methods are static. ``parse_result`` is the single entry point used
    by the client; the ``_parse_*`` helpers decode one resData variant each.
    """

    @staticmethod
    def parse_result(xml_data: bytes, expected_codes: Iterable[int] = (RESULT_OK,)) -> EppResult:
        """
        Parse an EPP response into an EppResult.

        Args:
            xml_data: Raw XML bytes
            expected_codes: Result codes that count as success

        Returns:
            EppResult with any resData and extension data decoded

        Raises:
            EPPXMLError: If the document is not an EPP response
        """
        root = _parse_xml(xml_data)

        response = root.find("epp:response", NS)
        if response is None:
            raise EPPXMLError("No response element found")

        result = response.find("epp:result", NS)
        if result is None:
            raise EPPXMLError("No result element found")

        try:
            code = int(result.get("code", ""))
        except ValueError:
            raise EPPXMLError(f"Invalid result code: {result.get('code')!r}")
        msg = _find_text(result, "epp:msg", "")

        # Get transaction IDs
        trn_id = response.find("epp:trID", NS)
        cl_trid = None
        sv_trid = None
        if trn_id is not None:
            cl_trid = _find_text(trn_id, "epp:clTRID")
            sv_trid = _find_text(trn_id, "epp:svTRID")

        res_data = response.find("epp:resData", NS)
        extension = response.find("epp:extension", NS)

        return EppResult(
            code=code,
            message=msg,
            success=code in tuple(expected_codes),
            data=XMLParser._parse_res_data(res_data) if res_data is not None else None,
            extension=XMLParser._parse_extension(extension) if extension is not None else None,
            cl_trid=cl_trid,
            sv_trid=sv_trid,
            raw_xml=xml_data.decode("utf-8", errors="replace") if isinstance(xml_data, bytes) else xml_data,
        )

    @staticmethod
    def _parse_res_data(res_data: etree._Element) -> Optional[ResData]:
        """Decode whichever infData/chkData variant the resData holds."""
        info_data = res_data.find("domain:infData", NS)
        if info_data is not None:
            return XMLParser._parse_domain_info(info_data)

        info_data = res_data.find("contact:infData", NS)
        if info_data is not None:
            return XMLParser._parse_contact_info(info_data)

        info_data = res_data.find("host:infData", NS)
        if info_data is not None:
            return XMLParser._parse_host_info(info_data)

        for kind, key in (("domain", "name"), ("contact", "id"), ("host", "name")):
            check_data = res_data.find(f"{kind}:chkData", NS)
            if check_data is not None:
                return XMLParser._parse_check(check_data, kind, key)

        return None

    @staticmethod
    def _parse_check(check_data: etree._Element, kind: str, key: str) -> CheckResults:
        """Parse domain, contact or host chkData."""
        results = []
        for cd in check_data.findall(f"{kind}:cd", NS):
            key_elem = cd.find(f"{kind}:{key}", NS)
            if key_elem is not None and key_elem.text:
                results.append(CheckItem(
                    name=key_elem.text,
                    available=_is_available(key_elem),
                    reason=_find_text(cd, f"{kind}:reason"),
                ))
        return CheckResults(kind=kind, items=results)

    @staticmethod
    def _parse_domain_info(info_data: etree._Element) -> DomainInfo:
        """Parse domain infData."""
        # Status
        statuses = [s.get("s", "") for s in info_data.findall("domain:status", NS)]

        # Contacts
        contacts = []
        for c in info_data.findall("domain:contact", NS):
            if c.text:
                contacts.append(DomainContact(id=c.text, type=c.get("type", "")))

        # Nameservers
        ns = info_data.find("domain:ns", NS)
        nameservers = []
        if ns is not None:
            nameservers = _find_all_text(ns, "domain:hostObj")
            if not nameservers:
                nameservers = _find_all_text(ns, "domain:hostAttr/domain:hostName")

        return DomainInfo(
            name=_find_text(info_data, "domain:name", ""),
            roid=_find_text(info_data, "domain:roid", ""),
            status=statuses,
            registrant=_find_text(info_data, "domain:registrant"),
            contacts=contacts,
            nameservers=nameservers,
            hosts=_find_all_text(info_data, "domain:host"),
            cl_id=_find_text(info_data, "domain:clID", ""),
            cr_date=_parse_datetime(_find_text(info_data, "domain:crDate")),
            up_date=_parse_datetime(_find_text(info_data, "domain:upDate")),
            ex_date=_parse_datetime(_find_text(info_data, "domain:exDate")),
            auth_info=_find_text(info_data, "domain:authInfo/domain:pw"),
        )

    @staticmethod
    def _parse_contact_info(info_data: etree._Element) -> ContactInfo:
        """Parse contact infData."""
        statuses = [s.get("s", "") for s in info_data.findall("contact:status", NS)]

        # Postal info
        postal_infos = []
        for pi in info_data.findall("contact:postalInfo", NS):
            postal_infos.append(PostalInfoData(
                type=pi.get("type", "loc"),
                name=_find_text(pi, "contact:name"),
                org=_find_text(pi, "contact:org"),
                street=_find_all_text(pi, "contact:addr/contact:street"),
                city=_find_text(pi, "contact:addr/contact:city"),
                sp=_find_text(pi, "contact:addr/contact:sp"),
                pc=_find_text(pi, "contact:addr/contact:pc"),
                cc=_find_text(pi, "contact:addr/contact:cc"),
            ))

        return ContactInfo(
            id=_find_text(info_data, "contact:id", ""),
            roid=_find_text(info_data, "contact:roid", ""),
            status=statuses,
            postal_info=postal_infos,
            voice=_find_text(info_data, "contact:voice"),
            fax=_find_text(info_data, "contact:fax"),
            email=_find_text(info_data, "contact:email"),
            cl_id=_find_text(info_data, "contact:clID", ""),
            cr_date=_parse_datetime(_find_text(info_data, "contact:crDate")),
            up_date=_parse_datetime(_find_text(info_data, "contact:upDate")),
        )

    @staticmethod
    def _parse_host_info(info_data: etree._Element) -> HostInfo:
        """Parse host infData."""
        statuses = [s.get("s", "") for s in info_data.findall("host:status", NS)]

        addresses = []
        for addr in info_data.findall("host:addr", NS):
            if addr.text:
                addresses.append(HostAddress(
                    address=addr.text,
                    ip_version=addr.get("ip", "v4")
                ))

        return HostInfo(
            name=_find_text(info_data, "host:name", ""),
            roid=_find_text(info_data, "host:roid", ""),
            status=statuses,
            addresses=addresses,
            cl_id=_find_text(info_data, "host:clID", ""),
            cr_date=_parse_datetime(_find_text(info_data, "host:crDate")),
            up_date=_parse_datetime(_find_text(info_data, "host:upDate")),
        )

    @staticmethod
    def _parse_extension(extension: etree._Element) -> Optional[ExtensionData]:
        """Parse .GR domain extension data (DACOR token, protocol id)."""
        token = None
        res_data = extension.find("extdomain:resData", NS)
        if res_data is not None:
            token = _find_text(res_data, "extdomain:comment")

        protocol = None
        inf_data = extension.find("extdomain:infData", NS)
        if inf_data is not None:
            protocol = _find_text(inf_data, "extdomain:protocol")

        if token is None and protocol is None:
            return None
        return ExtensionData(dacor_token=token, protocol=protocol)


def decode(xml_data: bytes, expected_codes: Iterable[int] = (RESULT_OK,)) -> EppResult:
    """Decode an EPP response. See XMLParser.parse_result."""
    return XMLParser.parse_result(xml_data, expected_codes)

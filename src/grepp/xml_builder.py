"""
EPP XML Builder

Builds EPP XML commands per RFC 5730-5733 with the .GR registry
extension (gr-domain-ext-1.0).
"""

import secrets
import string
from typing import Callable, Dict, List, Type

from lxml import etree

from grepp import commands as cmd
from grepp.models import ContactDetails, HostAddress

# EPP Namespaces
NS = {
    "epp": "urn:ietf:params:xml:ns:epp-1.0",
    "domain": "urn:ietf:params:xml:ns:domain-1.0",
    "contact": "urn:ietf:params:xml:ns:contact-1.0",
    "host": "urn:ietf:params:xml:ns:host-1.0",
    "extdomain": "http://www.ics.forth.gr/gr-domain-ext-1.0",
}

# Namespace URIs
EPP_NS = "urn:ietf:params:xml:ns:epp-1.0"
DOMAIN_NS = "urn:ietf:params:xml:ns:domain-1.0"
CONTACT_NS = "urn:ietf:params:xml:ns:contact-1.0"
HOST_NS = "urn:ietf:params:xml:ns:host-1.0"

# .GR registry extension
EXTDOMAIN_NS = "http://www.ics.forth.gr/gr-domain-ext-1.0"

CL_TRID_LENGTH = 10


def generate_cl_trid() -> str:
    """Generate client transaction ID."""
    chars = string.ascii_letters + string.digits
    return ''.join(secrets.choice(chars) for _ in range(CL_TRID_LENGTH))


def _create_epp_root() -> etree._Element:
    """Create EPP root element with namespaces."""
    nsmap = {
        None: EPP_NS,
        "domain": DOMAIN_NS,
        "contact": CONTACT_NS,
        "host": HOST_NS,
    }
    return etree.Element("{%s}epp" % EPP_NS, nsmap=nsmap)


def _create_command(root: etree._Element) -> etree._Element:
    return etree.SubElement(root, "{%s}command" % EPP_NS)


def _add_cl_trid(command: etree._Element, cl_trid: str = None) -> None:
    """Add client transaction ID to command."""
    if cl_trid is None:
        cl_trid = generate_cl_trid()
    etree.SubElement(command, "{%s}clTRID" % EPP_NS).text = cl_trid


def _add_extension(command: etree._Element, tag: str) -> etree._Element:
    """Add a .GR domain extension element under <extension>."""
    extension = etree.SubElement(command, "{%s}extension" % EPP_NS)
    ext_elem = etree.Element("{%s}%s" % (EXTDOMAIN_NS, tag), nsmap={"extdomain": EXTDOMAIN_NS})
    extension.append(ext_elem)
    return ext_elem


def _add_postal_info(parent: etree._Element, details: ContactDetails) -> None:
    """Add a localized postal info block. The registry expects type="loc"."""
    postal = etree.SubElement(parent, "{%s}postalInfo" % CONTACT_NS)
    postal.set("type", "loc")
    etree.SubElement(postal, "{%s}name" % CONTACT_NS).text = details.name
    if details.org:
        etree.SubElement(postal, "{%s}org" % CONTACT_NS).text = details.org
    addr = etree.SubElement(postal, "{%s}addr" % CONTACT_NS)
    for street in details.street:
        etree.SubElement(addr, "{%s}street" % CONTACT_NS).text = street
    etree.SubElement(addr, "{%s}city" % CONTACT_NS).text = details.city
    if details.sp:
        etree.SubElement(addr, "{%s}sp" % CONTACT_NS).text = details.sp
    etree.SubElement(addr, "{%s}pc" % CONTACT_NS).text = details.pc
    etree.SubElement(addr, "{%s}cc" % CONTACT_NS).text = details.cc


def _add_host_addresses(parent: etree._Element, addresses: List[HostAddress]) -> None:
    for addr in addresses:
        a = etree.SubElement(parent, "{%s}addr" % HOST_NS)
        a.text = addr.address
        a.set("ip", addr.ip_version)


def _to_bytes(root: etree._Element) -> bytes:
    """Convert element tree to XML bytes."""
    return etree.tostring(
        root,
        xml_declaration=True,
        encoding="UTF-8",
        pretty_print=False
    )


class XMLBuilder:
    """
    Builds EPP XML commands.

    All methods are static and return XML bytes ready to send.
    """

    # =========================================================================
    # Session Commands
    # =========================================================================

    @staticmethod
    def build_login(login: cmd.Login, cl_trid: str = None) -> bytes:
        """Build login command for the domain, contact and host services."""
        root = _create_epp_root()
        command = _create_command(root)
        login_elem = etree.SubElement(command, "{%s}login" % EPP_NS)

        etree.SubElement(login_elem, "{%s}clID" % EPP_NS).text = login.username
        etree.SubElement(login_elem, "{%s}pw" % EPP_NS).text = login.password

        options = etree.SubElement(login_elem, "{%s}options" % EPP_NS)
        etree.SubElement(options, "{%s}version" % EPP_NS).text = "1.0"
        etree.SubElement(options, "{%s}lang" % EPP_NS).text = login.lang

        svcs = etree.SubElement(login_elem, "{%s}svcs" % EPP_NS)
        for uri in (DOMAIN_NS, CONTACT_NS, HOST_NS):
            etree.SubElement(svcs, "{%s}objURI" % EPP_NS).text = uri

        _add_cl_trid(command, cl_trid)
        return _to_bytes(root)

    @staticmethod
    def build_logout(logout: cmd.Logout, cl_trid: str = None) -> bytes:
        """Build logout command."""
        root = _create_epp_root()
        command = _create_command(root)
        etree.SubElement(command, "{%s}logout" % EPP_NS)
        _add_cl_trid(command, cl_trid)
        return _to_bytes(root)

    # =========================================================================
    # Domain Commands
    # =========================================================================

    @staticmethod
    def build_domain_check(check: cmd.DomainCheck, cl_trid: str = None) -> bytes:
        """Build domain:check command."""
        root = _create_epp_root()
        command = _create_command(root)
        check_elem = etree.SubElement(command, "{%s}check" % EPP_NS)

        domain_check = etree.SubElement(check_elem, "{%s}check" % DOMAIN_NS)
        for name in check.names:
            etree.SubElement(domain_check, "{%s}name" % DOMAIN_NS).text = name

        _add_cl_trid(command, cl_trid)
        return _to_bytes(root)

    @staticmethod
    def build_domain_info(info: cmd.DomainInfo, cl_trid: str = None) -> bytes:
        """Build domain:info command."""
        root = _create_epp_root()
        command = _create_command(root)
        info_elem = etree.SubElement(command, "{%s}info" % EPP_NS)

        domain_info = etree.SubElement(info_elem, "{%s}info" % DOMAIN_NS)
        etree.SubElement(domain_info, "{%s}name" % DOMAIN_NS).text = info.name

        _add_cl_trid(command, cl_trid)
        return _to_bytes(root)

    @staticmethod
    def build_domain_create(create_data: cmd.DomainCreate, cl_trid: str = None) -> bytes:
        """Build domain:create command."""
        root = _create_epp_root()
        command = _create_command(root)
        create = etree.SubElement(command, "{%s}create" % EPP_NS)

        domain_create = etree.SubElement(create, "{%s}create" % DOMAIN_NS)
        etree.SubElement(domain_create, "{%s}name" % DOMAIN_NS).text = create_data.name

        period = etree.SubElement(domain_create, "{%s}period" % DOMAIN_NS)
        period.text = str(create_data.period)
        period.set("unit", "y")

        # Nameservers
        if create_data.nameservers:
            ns = etree.SubElement(domain_create, "{%s}ns" % DOMAIN_NS)
            for host in create_data.nameservers:
                etree.SubElement(ns, "{%s}hostObj" % DOMAIN_NS).text = host

        # Registrant
        etree.SubElement(domain_create, "{%s}registrant" % DOMAIN_NS).text = create_data.registrant

        # Contacts
        for contact_type in ("admin", "tech", "billing"):
            contact_id = getattr(create_data, contact_type)
            if contact_id:
                c = etree.SubElement(domain_create, "{%s}contact" % DOMAIN_NS)
                c.text = contact_id
                c.set("type", contact_type)

        # Auth info
        auth = etree.SubElement(domain_create, "{%s}authInfo" % DOMAIN_NS)
        etree.SubElement(auth, "{%s}pw" % DOMAIN_NS).text = create_data.auth_info

        _add_cl_trid(command, cl_trid)
        return _to_bytes(root)

    @staticmethod
    def build_domain_renew(renew: cmd.DomainRenew, cl_trid: str = None) -> bytes:
        """
        Build domain:renew command.

        Args:
            renew: Domain name, current expiry date (YYYY-MM-DD) and period in years
            cl_trid: Client transaction ID
        """
        root = _create_epp_root()
        command = _create_command(root)
        renew_elem = etree.SubElement(command, "{%s}renew" % EPP_NS)

        domain_renew = etree.SubElement(renew_elem, "{%s}renew" % DOMAIN_NS)
        etree.SubElement(domain_renew, "{%s}name" % DOMAIN_NS).text = renew.name
        etree.SubElement(domain_renew, "{%s}curExpDate" % DOMAIN_NS).text = renew.cur_exp_date

        period_elem = etree.SubElement(domain_renew, "{%s}period" % DOMAIN_NS)
        period_elem.text = str(renew.period)
        period_elem.set("unit", "y")

        _add_cl_trid(command, cl_trid)
        return _to_bytes(root)

    @staticmethod
    def build_domain_transfer(transfer: cmd.DomainTransfer, cl_trid: str = None) -> bytes:
        """Build domain:transfer command (op="request")."""
        root = _create_epp_root()
        command = _create_command(root)
        transfer_elem = etree.SubElement(command, "{%s}transfer" % EPP_NS)
        transfer_elem.set("op", "request")

        domain_transfer = etree.SubElement(transfer_elem, "{%s}transfer" % DOMAIN_NS)
        etree.SubElement(domain_transfer, "{%s}name" % DOMAIN_NS).text = transfer.name

        period_elem = etree.SubElement(domain_transfer, "{%s}period" % DOMAIN_NS)
        period_elem.text = str(transfer.period)
        period_elem.set("unit", "y")

        auth = etree.SubElement(domain_transfer, "{%s}authInfo" % DOMAIN_NS)
        etree.SubElement(auth, "{%s}pw" % DOMAIN_NS).text = transfer.auth_info

        _add_cl_trid(command, cl_trid)
        return _to_bytes(root)

    @staticmethod
    def build_domain_update(update_data: cmd.DomainUpdate, cl_trid: str = None) -> bytes:
        """Build domain:update command."""
        root = _create_epp_root()
        command = _create_command(root)
        update_cmd = etree.SubElement(command, "{%s}update" % EPP_NS)

        domain_update = etree.SubElement(update_cmd, "{%s}update" % DOMAIN_NS)
        etree.SubElement(domain_update, "{%s}name" % DOMAIN_NS).text = update_data.name

        sections = (
            ("add", update_data.add_ns, update_data.add_contacts, update_data.add_status),
            ("rem", update_data.rem_ns, update_data.rem_contacts, update_data.rem_status),
        )
        for tag, nameservers, contacts, statuses in sections:
            if not (nameservers or contacts or statuses):
                continue
            section = etree.SubElement(domain_update, "{%s}%s" % (DOMAIN_NS, tag))
            if nameservers:
                ns = etree.SubElement(section, "{%s}ns" % DOMAIN_NS)
                for host in nameservers:
                    etree.SubElement(ns, "{%s}hostObj" % DOMAIN_NS).text = host
            for contact in contacts:
                c = etree.SubElement(section, "{%s}contact" % DOMAIN_NS)
                c.text = contact.id
                c.set("type", contact.type)
            for status in statuses:
                s = etree.SubElement(section, "{%s}status" % DOMAIN_NS)
                s.set("s", status)

        _add_cl_trid(command, cl_trid)
        return _to_bytes(root)

    @staticmethod
    def build_domain_delete(delete: cmd.DomainDelete, cl_trid: str = None) -> bytes:
        """Build domain:delete command."""
        root = _create_epp_root()
        command = _create_command(root)
        delete_elem = etree.SubElement(command, "{%s}delete" % EPP_NS)

        domain_delete = etree.SubElement(delete_elem, "{%s}delete" % DOMAIN_NS)
        etree.SubElement(domain_delete, "{%s}name" % DOMAIN_NS).text = delete.name

        _add_cl_trid(command, cl_trid)
        return _to_bytes(root)

    # =========================================================================
    # .GR Extension Commands
    # =========================================================================

    @staticmethod
    def build_dacor_issue_token(issue: cmd.DacorIssueToken, cl_trid: str = None) -> bytes:
        """
        Build domain:info with the DACOR issueToken extension.

        The registry answers with the transfer token in
        extdomain:resData/comment.
        """
        root = _create_epp_root()
        command = _create_command(root)
        info_elem = etree.SubElement(command, "{%s}info" % EPP_NS)

        domain_info = etree.SubElement(info_elem, "{%s}info" % DOMAIN_NS)
        etree.SubElement(domain_info, "{%s}name" % DOMAIN_NS).text = issue.name

        ext_info = _add_extension(command, "info")
        etree.SubElement(ext_info, "{%s}issueToken" % EXTDOMAIN_NS)

        _add_cl_trid(command, cl_trid)
        return _to_bytes(root)

    @staticmethod
    def build_domain_recall_application(recall: cmd.DomainRecallApplication, cl_trid: str = None) -> bytes:
        """Build domain:delete with the recallApplication extension."""
        root = _create_epp_root()
        command = _create_command(root)
        delete_elem = etree.SubElement(command, "{%s}delete" % EPP_NS)

        domain_delete = etree.SubElement(delete_elem, "{%s}delete" % DOMAIN_NS)
        etree.SubElement(domain_delete, "{%s}name" % DOMAIN_NS).text = recall.name

        ext_delete = _add_extension(command, "delete")
        etree.SubElement(ext_delete, "{%s}op" % EXTDOMAIN_NS).text = "recallApplication"
        etree.SubElement(ext_delete, "{%s}datatype" % EXTDOMAIN_NS).text = "protocol"
        etree.SubElement(ext_delete, "{%s}details" % EXTDOMAIN_NS).text = recall.protocol

        _add_cl_trid(command, cl_trid)
        return _to_bytes(root)

    # =========================================================================
    # Contact Commands
    # =========================================================================

    @staticmethod
    def build_contact_check(check: cmd.ContactCheck, cl_trid: str = None) -> bytes:
        """Build contact:check command."""
        root = _create_epp_root()
        command = _create_command(root)
        check_elem = etree.SubElement(command, "{%s}check" % EPP_NS)

        contact_check = etree.SubElement(check_elem, "{%s}check" % CONTACT_NS)
        for contact_id in check.ids:
            etree.SubElement(contact_check, "{%s}id" % CONTACT_NS).text = contact_id

        _add_cl_trid(command, cl_trid)
        return _to_bytes(root)

    @staticmethod
    def build_contact_info(info: cmd.ContactInfo, cl_trid: str = None) -> bytes:
        """Build contact:info command."""
        root = _create_epp_root()
        command = _create_command(root)
        info_elem = etree.SubElement(command, "{%s}info" % EPP_NS)

        contact_info = etree.SubElement(info_elem, "{%s}info" % CONTACT_NS)
        etree.SubElement(contact_info, "{%s}id" % CONTACT_NS).text = info.id

        _add_cl_trid(command, cl_trid)
        return _to_bytes(root)

    @staticmethod
    def build_contact_create(create_data: cmd.ContactCreate, cl_trid: str = None) -> bytes:
        """Build contact:create command."""
        root = _create_epp_root()
        command = _create_command(root)
        create = etree.SubElement(command, "{%s}create" % EPP_NS)

        contact_create = etree.SubElement(create, "{%s}create" % CONTACT_NS)
        etree.SubElement(contact_create, "{%s}id" % CONTACT_NS).text = create_data.id

        details = create_data.details
        _add_postal_info(contact_create, details)

        if details.voice:
            etree.SubElement(contact_create, "{%s}voice" % CONTACT_NS).text = details.voice
        etree.SubElement(contact_create, "{%s}email" % CONTACT_NS).text = details.email

        auth = etree.SubElement(contact_create, "{%s}authInfo" % CONTACT_NS)
        etree.SubElement(auth, "{%s}pw" % CONTACT_NS).text = create_data.auth_info

        _add_cl_trid(command, cl_trid)
        return _to_bytes(root)

    @staticmethod
    def build_contact_update(update_data: cmd.ContactUpdate, cl_trid: str = None) -> bytes:
        """Build contact:update command replacing postal info, voice and email."""
        root = _create_epp_root()
        command = _create_command(root)
        update_cmd = etree.SubElement(command, "{%s}update" % EPP_NS)

        contact_update = etree.SubElement(update_cmd, "{%s}update" % CONTACT_NS)
        etree.SubElement(contact_update, "{%s}id" % CONTACT_NS).text = update_data.id

        details = update_data.details
        chg = etree.SubElement(contact_update, "{%s}chg" % CONTACT_NS)
        _add_postal_info(chg, details)
        if details.voice:
            etree.SubElement(chg, "{%s}voice" % CONTACT_NS).text = details.voice
        if details.email:
            etree.SubElement(chg, "{%s}email" % CONTACT_NS).text = details.email

        _add_cl_trid(command, cl_trid)
        return _to_bytes(root)

    # =========================================================================
    # Host Commands
    # =========================================================================

    @staticmethod
    def build_host_check(check: cmd.HostCheck, cl_trid: str = None) -> bytes:
        """Build host:check command."""
        root = _create_epp_root()
        command = _create_command(root)
        check_elem = etree.SubElement(command, "{%s}check" % EPP_NS)

        host_check = etree.SubElement(check_elem, "{%s}check" % HOST_NS)
        for name in check.names:
            etree.SubElement(host_check, "{%s}name" % HOST_NS).text = name

        _add_cl_trid(command, cl_trid)
        return _to_bytes(root)

    @staticmethod
    def build_host_info(info: cmd.HostInfo, cl_trid: str = None) -> bytes:
        """Build host:info command."""
        root = _create_epp_root()
        command = _create_command(root)
        info_elem = etree.SubElement(command, "{%s}info" % EPP_NS)

        host_info = etree.SubElement(info_elem, "{%s}info" % HOST_NS)
        etree.SubElement(host_info, "{%s}name" % HOST_NS).text = info.name

        _add_cl_trid(command, cl_trid)
        return _to_bytes(root)

    @staticmethod
    def build_host_create(create_data: cmd.HostCreate, cl_trid: str = None) -> bytes:
        """Build host:create command."""
        root = _create_epp_root()
        command = _create_command(root)
        create = etree.SubElement(command, "{%s}create" % EPP_NS)

        host_create = etree.SubElement(create, "{%s}create" % HOST_NS)
        etree.SubElement(host_create, "{%s}name" % HOST_NS).text = create_data.name
        _add_host_addresses(host_create, create_data.addresses)

        _add_cl_trid(command, cl_trid)
        return _to_bytes(root)

    @staticmethod
    def build_host_update(update_data: cmd.HostUpdate, cl_trid: str = None) -> bytes:
        """Build host:update command."""
        root = _create_epp_root()
        command = _create_command(root)
        update_cmd = etree.SubElement(command, "{%s}update" % EPP_NS)

        host_update = etree.SubElement(update_cmd, "{%s}update" % HOST_NS)
        etree.SubElement(host_update, "{%s}name" % HOST_NS).text = update_data.name

        if update_data.add_addresses:
            add = etree.SubElement(host_update, "{%s}add" % HOST_NS)
            _add_host_addresses(add, update_data.add_addresses)

        if update_data.rem_addresses:
            rem = etree.SubElement(host_update, "{%s}rem" % HOST_NS)
            _add_host_addresses(rem, update_data.rem_addresses)

        _add_cl_trid(command, cl_trid)
        return _to_bytes(root)

    @staticmethod
    def build_host_delete(delete: cmd.HostDelete, cl_trid: str = None) -> bytes:
        """Build host:delete command."""
        root = _create_epp_root()
        command = _create_command(root)
        delete_elem = etree.SubElement(command, "{%s}delete" % EPP_NS)

        host_delete = etree.SubElement(delete_elem, "{%s}delete" % HOST_NS)
        etree.SubElement(host_delete, "{%s}name" % HOST_NS).text = delete.name

        _add_cl_trid(command, cl_trid)
        return _to_bytes(root)


BUILDERS: Dict[Type[cmd.EppCommand], Callable[..., bytes]] = {
    cmd.Login: XMLBuilder.build_login,
    cmd.Logout: XMLBuilder.build_logout,
    cmd.DomainCheck: XMLBuilder.build_domain_check,
    cmd.DomainInfo: XMLBuilder.build_domain_info,
    cmd.DomainCreate: XMLBuilder.build_domain_create,
    cmd.DomainRenew: XMLBuilder.build_domain_renew,
    cmd.DomainTransfer: XMLBuilder.build_domain_transfer,
    cmd.DomainUpdate: XMLBuilder.build_domain_update,
    cmd.DomainDelete: XMLBuilder.build_domain_delete,
    cmd.DacorIssueToken: XMLBuilder.build_dacor_issue_token,
    cmd.DomainRecallApplication: XMLBuilder.build_domain_recall_application,
    cmd.ContactCheck: XMLBuilder.build_contact_check,
    cmd.ContactInfo: XMLBuilder.build_contact_info,
    cmd.ContactCreate: XMLBuilder.build_contact_create,
    cmd.ContactUpdate: XMLBuilder.build_contact_update,
    cmd.HostCheck: XMLBuilder.build_host_check,
    cmd.HostInfo: XMLBuilder.build_host_info,
    cmd.HostCreate: XMLBuilder.build_host_create,
    cmd.HostUpdate: XMLBuilder.build_host_update,
    cmd.HostDelete: XMLBuilder.build_host_delete,
}


def encode(command: cmd.EppCommand, cl_trid: str = None) -> bytes:
    """
    Serialize a command to EPP XML.

    Raises:
        TypeError: If no builder is registered for the command type
    """
    builder = BUILDERS.get(type(command))
    if builder is None:
        raise TypeError(f"No XML builder for {type(command).__name__}")
    return builder(command, cl_trid)

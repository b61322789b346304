from hypothesis import given
from hypothesis import strategies as st

from epp_xml import contact_inf_data, domain_inf_data, epp_response, find, findall
from grepp import commands as cmd
from grepp.models import ContactDetails, ContactInfo, DomainContact, DomainInfo
from grepp.xml_builder import encode
from grepp.xml_parser import decode

domain_names = st.from_regex(r"[a-z0-9]([a-z0-9-]{0,20}[a-z0-9])?\.gr", fullmatch=True)
contact_ids = st.from_regex(r"grepp_[0-9]{1,6}", fullmatch=True)
host_names = st.from_regex(r"ns[0-9]{1,2}\.[a-z]{1,10}\.(gr|net|com)", fullmatch=True)
nameserver_lists = st.lists(host_names, max_size=5, unique=True)
person_names = st.from_regex(r"[A-Z][a-z]{1,10}( [A-Z][a-z]{1,12})?", fullmatch=True)
emails = st.from_regex(r"[a-z]{1,10}@[a-z]{1,10}\.gr", fullmatch=True)

CREATE = "epp:command/epp:create/domain:create"
UPDATE = "epp:command/epp:update/domain:update"
CONTACT_CREATE = "epp:command/epp:create/contact:create"


def info_for(res_data: str):
    result = decode(epp_response(res_data=res_data))
    assert result.success
    return result.data


# =============================================================================
# Command data survives the registry's info response
# =============================================================================

@given(domain_names, contact_ids, contact_ids, nameserver_lists)
def test_domain_create_matches_domain_info(name, registrant, admin, nameservers):
    xml = encode(cmd.DomainCreate(
        name=name, registrant=registrant, admin=admin, nameservers=nameservers, auth_info="Pw1!abcdefgh",
    ))
    sent_name = find(xml, f"{CREATE}/domain:name").text
    sent_registrant = find(xml, f"{CREATE}/domain:registrant").text
    sent_contacts = {e.get("type"): e.text for e in findall(xml, f"{CREATE}/domain:contact")}
    sent_ns = [e.text for e in findall(xml, f"{CREATE}/domain:ns/domain:hostObj")]

    info = info_for(domain_inf_data(sent_name, sent_ns, registrant=sent_registrant, contacts=sent_contacts))

    assert isinstance(info, DomainInfo)
    assert info.name == name
    assert info.registrant == registrant
    assert info.contact("admin") == admin
    assert info.nameservers == nameservers


@given(domain_names, nameserver_lists, contact_ids)
def test_domain_update_matches_domain_info(name, nameservers, tech):
    xml = encode(cmd.DomainUpdate(name=name, add_ns=nameservers, add_contacts=[DomainContact(id=tech, type="tech")]))
    sent_name = find(xml, f"{UPDATE}/domain:name").text
    sent_ns = [e.text for e in findall(xml, f"{UPDATE}/domain:add/domain:ns/domain:hostObj")]
    sent_contacts = {e.get("type"): e.text for e in findall(xml, f"{UPDATE}/domain:add/domain:contact")}

    info = info_for(domain_inf_data(sent_name, sent_ns, contacts=sent_contacts))

    assert info.name == name
    assert info.nameservers == nameservers
    assert info.contact("tech") == tech


@given(contact_ids, person_names, emails)
def test_contact_create_matches_contact_info(contact_id, name, email):
    details = ContactDetails(name=name, email=email, city="Athens", pc="10563")
    xml = encode(cmd.ContactCreate(id=contact_id, details=details, auth_info="Pw1!abcdefgh"))
    sent_id = find(xml, f"{CONTACT_CREATE}/contact:id").text
    sent_name = find(xml, f"{CONTACT_CREATE}/contact:postalInfo/contact:name").text
    sent_email = find(xml, f"{CONTACT_CREATE}/contact:email").text

    info = info_for(contact_inf_data(sent_id, name=sent_name, email=sent_email))

    assert isinstance(info, ContactInfo)
    assert info.id == contact_id
    assert info.email == email
    assert info.postal.name == name

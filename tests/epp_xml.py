"""
Registry response factories and an in-memory connection for tests.
"""

from typing import Dict, Iterable, List, Optional, Tuple, Union

from lxml import etree

from grepp.xml_builder import NS

EPP = NS["epp"]
DOMAIN = NS["domain"]
CONTACT = NS["contact"]
HOST = NS["host"]
EXTDOMAIN = NS["extdomain"]

_PREFIX = {uri: prefix for prefix, uri in NS.items()}


def epp_response(
    code: int = 1000,
    msg: str = "Command completed successfully",
    res_data: str = "",
    extension: str = "",
) -> bytes:
    parts = [
        '<?xml version="1.0" encoding="UTF-8"?>',
        f'<epp xmlns="{EPP}" xmlns:domain="{DOMAIN}" xmlns:contact="{CONTACT}" '
        f'xmlns:host="{HOST}" xmlns:extdomain="{EXTDOMAIN}">',
        "<response>",
        f'<result code="{code}"><msg>{msg}</msg></result>',
    ]
    if res_data:
        parts.append(f"<resData>{res_data}</resData>")
    if extension:
        parts.append(f"<extension>{extension}</extension>")
    parts.append("<trID><clTRID>TESTCLTRID</clTRID><svTRID>SV-0001</svTRID></trID>")
    parts.append("</response></epp>")
    return "".join(parts).encode("utf-8")


def check_data(kind: str, items: Dict[str, bool]) -> str:
    key = "id" if kind == "contact" else "name"
    cds = "".join(
        f'<{kind}:cd><{kind}:{key} avail="{1 if avail else 0}">{name}</{kind}:{key}></{kind}:cd>'
        for name, avail in items.items()
    )
    return f"<{kind}:chkData>{cds}</{kind}:chkData>"


def domain_inf_data(
    name: str,
    nameservers: Iterable[str] = (),
    status: Iterable[str] = ("ok",),
    registrant: Optional[str] = "reg_1",
    contacts: Optional[Dict[str, str]] = None,
    cr_date: str = "2023-05-01T10:00:00.0Z",
    up_date: str = "2024-05-02T11:30:00.0Z",
    ex_date: Optional[str] = "2027-05-01T10:00:00.0Z",
) -> str:
    body = [f"<domain:name>{name}</domain:name>", "<domain:roid>D123-GR</domain:roid>"]
    body.extend(f'<domain:status s="{s}"/>' for s in status)
    if registrant:
        body.append(f"<domain:registrant>{registrant}</domain:registrant>")
    for role, contact_id in (contacts or {}).items():
        body.append(f'<domain:contact type="{role}">{contact_id}</domain:contact>')
    nameservers = list(nameservers)
    if nameservers:
        body.append("<domain:ns>" + "".join(f"<domain:hostObj>{ns}</domain:hostObj>" for ns in nameservers) + "</domain:ns>")
    body.append("<domain:clID>grepp</domain:clID>")
    body.append(f"<domain:crDate>{cr_date}</domain:crDate>")
    body.append(f"<domain:upDate>{up_date}</domain:upDate>")
    if ex_date:
        body.append(f"<domain:exDate>{ex_date}</domain:exDate>")
    return "<domain:infData>" + "".join(body) + "</domain:infData>"


def contact_inf_data(contact_id: str, name: str = "Maria Papadopoulou", email: str = "maria@example.gr") -> str:
    return (
        "<contact:infData>"
        f"<contact:id>{contact_id}</contact:id>"
        "<contact:roid>C1-GR</contact:roid>"
        '<contact:status s="ok"/>'
        '<contact:postalInfo type="int"><contact:name>Int Name</contact:name>'
        "<contact:addr><contact:city>Athens</contact:city><contact:cc>GR</contact:cc></contact:addr>"
        "</contact:postalInfo>"
        f'<contact:postalInfo type="loc"><contact:name>{name}</contact:name>'
        "<contact:org>Example AE</contact:org>"
        "<contact:addr><contact:street>Ermou 1</contact:street><contact:street>2nd floor</contact:street>"
        "<contact:city>Athens</contact:city><contact:pc>10563</contact:pc><contact:cc>GR</contact:cc></contact:addr>"
        "</contact:postalInfo>"
        "<contact:voice>+30.2101234567</contact:voice>"
        f"<contact:email>{email}</contact:email>"
        "<contact:clID>grepp</contact:clID>"
        "<contact:crDate>2023-05-01T10:00:00Z</contact:crDate>"
        "</contact:infData>"
    )


def host_inf_data(name: str, addresses: Iterable[Tuple[str, str]] = (("192.0.2.1", "v4"),)) -> str:
    addrs = "".join(f'<host:addr ip="{version}">{address}</host:addr>' for address, version in addresses)
    return (
        "<host:infData>"
        f"<host:name>{name}</host:name><host:roid>H1-GR</host:roid>"
        f'<host:status s="ok"/>{addrs}<host:clID>grepp</host:clID>'
        "</host:infData>"
    )


def dacor_extension(token: str) -> str:
    return f"<extdomain:resData><extdomain:comment>{token}</extdomain:comment></extdomain:resData>"


def protocol_extension(protocol: str) -> str:
    return f"<extdomain:infData><extdomain:protocol>{protocol}</extdomain:protocol></extdomain:infData>"


def describe(xml: bytes) -> str:
    """Short name of a command document: "login", "logout" or "<object>:<verb>"."""
    root = etree.fromstring(xml)
    command = root.find("epp:command", NS)
    verb = command[0]
    verb_name = etree.QName(verb).localname
    if verb_name in ("login", "logout"):
        return verb_name
    obj = verb[0]
    return f"{_PREFIX[etree.QName(obj).namespace]}:{verb_name}"


class FakeConnection:
    """
    Stand-in for EPPConnection.

    Login and logout are answered automatically; every other command takes
    the next queued response. A queued exception is raised instead.
    """

    url = "https://uat-regepp.ics.forth.gr:700/epp/proxy"

    def __init__(self, responses: Iterable[Union[bytes, Exception]] = (), login_code: int = 1000):
        self.responses: List[Union[bytes, Exception]] = list(responses)
        self.login_code = login_code
        self.requests: List[bytes] = []
        self.closed = False

    def queue(self, *responses: Union[bytes, Exception]) -> "FakeConnection":
        self.responses.extend(responses)
        return self

    @property
    def commands(self) -> List[str]:
        return [describe(xml) for xml in self.requests]

    def sent(self, name: str) -> List[bytes]:
        """Requests whose short name is ``name``."""
        return [xml for xml in self.requests if describe(xml) == name]

    def post(self, xml: bytes) -> bytes:
        self.requests.append(xml)
        name = describe(xml)
        if name == "login":
            return epp_response(self.login_code, "Command completed successfully" if self.login_code == 1000 else "Authentication error")
        if name == "logout":
            return epp_response(1500, "Command completed successfully; ending session")
        if not self.responses:
            raise AssertionError(f"No response queued for {name}")
        response = self.responses.pop(0)
        if isinstance(response, Exception):
            raise response
        return response

    def close(self) -> None:
        self.closed = True


def find(xml: bytes, path: str):
    return etree.fromstring(xml).find(path, NS)


def findall(xml: bytes, path: str):
    return etree.fromstring(xml).findall(path, NS)

"""
EPP Commands

One dataclass per command the .GR registry accepts. Each carries the
fields its XML needs and the result codes that count as success.
"""

from dataclasses import dataclass, field
from typing import ClassVar, List, Optional, Tuple

from grepp.models import (
    RESULT_LOGOUT,
    RESULT_OK,
    RESULT_PENDING,
    ContactDetails,
    DomainContact,
    HostAddress,
)


@dataclass
class EppCommand:
    """Base class for all registry commands."""
    expected_codes: ClassVar[Tuple[int, ...]] = (RESULT_OK,)


# =============================================================================
# Session Commands
# =============================================================================

@dataclass
class Login(EppCommand):
    username: str
    password: str
    lang: str = "el"


@dataclass
class Logout(EppCommand):
    expected_codes: ClassVar[Tuple[int, ...]] = (RESULT_LOGOUT, RESULT_OK)


# =============================================================================
# Domain Commands
# =============================================================================

@dataclass
class DomainCheck(EppCommand):
    names: List[str]


@dataclass
class DomainInfo(EppCommand):
    name: str


@dataclass
class DomainCreate(EppCommand):
    """Domain creation; the registry may answer 1001 while it reviews."""
    expected_codes: ClassVar[Tuple[int, ...]] = (RESULT_OK, RESULT_PENDING)

    name: str
    registrant: str
    auth_info: str
    period: int = 2
    admin: Optional[str] = None
    tech: Optional[str] = None
    billing: Optional[str] = None
    nameservers: List[str] = field(default_factory=list)


@dataclass
class DomainRenew(EppCommand):
    name: str
    cur_exp_date: str  # YYYY-MM-DD
    period: int = 2


@dataclass
class DomainTransfer(EppCommand):
    name: str
    auth_info: str
    period: int = 2


@dataclass
class DomainUpdate(EppCommand):
    name: str
    add_ns: List[str] = field(default_factory=list)
    rem_ns: List[str] = field(default_factory=list)
    add_contacts: List[DomainContact] = field(default_factory=list)
    rem_contacts: List[DomainContact] = field(default_factory=list)
    add_status: List[str] = field(default_factory=list)
    rem_status: List[str] = field(default_factory=list)


@dataclass
class DomainDelete(EppCommand):
    name: str


@dataclass
class DacorIssueToken(EppCommand):
    """Domain info carrying the request for a DACOR transfer token."""
    name: str


@dataclass
class DomainRecallApplication(EppCommand):
    """Domain delete recalling an application still within its grace window."""
    name: str
    protocol: str


# =============================================================================
# Contact Commands
# =============================================================================

@dataclass
class ContactCheck(EppCommand):
    ids: List[str]


@dataclass
class ContactInfo(EppCommand):
    id: str


@dataclass
class ContactCreate(EppCommand):
    id: str
    details: ContactDetails
    auth_info: str


@dataclass
class ContactUpdate(EppCommand):
    id: str
    details: ContactDetails


# =============================================================================
# Host Commands
# =============================================================================

@dataclass
class HostCheck(EppCommand):
    names: List[str]


@dataclass
class HostInfo(EppCommand):
    name: str


@dataclass
class HostCreate(EppCommand):
    expected_codes: ClassVar[Tuple[int, ...]] = (RESULT_OK, RESULT_PENDING)

    name: str
    addresses: List[HostAddress] = field(default_factory=list)


@dataclass
class HostUpdate(EppCommand):
    name: str
    add_addresses: List[HostAddress] = field(default_factory=list)
    rem_addresses: List[HostAddress] = field(default_factory=list)


@dataclass
class HostDelete(EppCommand):
    name: str


def host_addresses(ipv4: Optional[List[str]] = None, ipv6: Optional[List[str]] = None) -> List[HostAddress]:
    """Build a host address list from separate IPv4 and IPv6 lists."""
    addresses = [HostAddress(address=ip, ip_version="v4") for ip in ipv4 or [] if ip]
    addresses.extend(HostAddress(address=ip, ip_version="v6") for ip in ipv6 or [] if ip)
    return addresses

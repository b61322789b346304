"""
EPP Client Models

Data classes for registry results, registry operations, the notification
queue and the audit trail.
"""

from dataclasses import asdict, dataclass, field
from datetime import date, datetime
from enum import Enum
from typing import Any, Dict, List, Optional, Tuple, Union

from grepp.exceptions import (
    EPPAuthenticationError,
    EPPAuthorizationError,
    EPPCommandError,
    EPPConnectionError,
    EPPError,
    EPPObjectExists,
    EPPObjectNotFound,
    EPPSessionError,
)


# EPP result codes used by the client
RESULT_TRANSPORT_ERROR = 0
RESULT_OK = 1000
RESULT_PENDING = 1001
RESULT_LOGOUT = 1500
RESULT_COMMAND_USE_ERROR = 2002
RESULT_AUTHENTICATION_ERROR = 2200
RESULT_AUTHORIZATION_ERROR = 2201
RESULT_INVALID_AUTH_INFO = 2202
RESULT_OBJECT_EXISTS = 2302
RESULT_OBJECT_NOT_FOUND = 2303

_ERRORS_BY_CODE = {
    RESULT_COMMAND_USE_ERROR: EPPSessionError,
    RESULT_AUTHENTICATION_ERROR: EPPAuthenticationError,
    RESULT_AUTHORIZATION_ERROR: EPPAuthorizationError,
    RESULT_INVALID_AUTH_INFO: EPPAuthenticationError,
    RESULT_OBJECT_EXISTS: EPPObjectExists,
    RESULT_OBJECT_NOT_FOUND: EPPObjectNotFound,
}


# =============================================================================
# Response Models
# =============================================================================

@dataclass
class DomainContact:
    """Domain contact association."""
    id: str
    type: str  # admin, tech, billing


@dataclass
class DomainInfo:
    """Domain info response."""
    name: str
    roid: str = ""
    status: List[str] = field(default_factory=list)
    registrant: Optional[str] = None
    contacts: List[DomainContact] = field(default_factory=list)
    nameservers: List[str] = field(default_factory=list)
    hosts: List[str] = field(default_factory=list)  # Subordinate hosts
    cl_id: str = ""  # Sponsoring client
    cr_date: Optional[datetime] = None
    up_date: Optional[datetime] = None
    ex_date: Optional[datetime] = None  # Expiry
    auth_info: Optional[str] = None

    def contact(self, contact_type: str) -> Optional[str]:
        """Return the contact id for a role, if assigned."""
        for item in self.contacts:
            if item.type == contact_type:
                return item.id
        return None


@dataclass
class PostalInfoData:
    """Contact postal information."""
    type: str  # int or loc
    name: Optional[str] = None
    org: Optional[str] = None
    street: List[str] = field(default_factory=list)
    city: Optional[str] = None
    sp: Optional[str] = None  # State/Province
    pc: Optional[str] = None  # Postal Code
    cc: Optional[str] = None  # Country Code


@dataclass
class ContactInfo:
    """Contact info response."""
    id: str
    roid: str = ""
    status: List[str] = field(default_factory=list)
    postal_info: List[PostalInfoData] = field(default_factory=list)
    voice: Optional[str] = None
    fax: Optional[str] = None
    email: Optional[str] = None
    cl_id: str = ""
    cr_date: Optional[datetime] = None
    up_date: Optional[datetime] = None

    @property
    def postal(self) -> Optional[PostalInfoData]:
        """Preferred postal info: the localized form when present."""
        for info in self.postal_info:
            if info.type == "loc":
                return info
        return self.postal_info[0] if self.postal_info else None


@dataclass
class HostAddress:
    """Host IP address."""
    address: str
    ip_version: str = "v4"  # v4 or v6


@dataclass
class HostInfo:
    """Host info response."""
    name: str
    roid: str = ""
    status: List[str] = field(default_factory=list)
    addresses: List[HostAddress] = field(default_factory=list)
    cl_id: str = ""
    cr_date: Optional[datetime] = None
    up_date: Optional[datetime] = None


@dataclass
class CheckItem:
    """Availability of one checked object."""
    name: str  # Domain name, contact id or host name
    available: bool
    reason: Optional[str] = None


@dataclass
class CheckResults:
    """Check response for domains, contacts or hosts."""
    kind: str  # domain, contact or host
    items: List[CheckItem] = field(default_factory=list)

    def is_available(self, name: str) -> bool:
        """Check if a specific object is available."""
        for item in self.items:
            if item.name.lower() == name.lower():
                return item.available
        return False


ResData = Union[DomainInfo, ContactInfo, HostInfo, CheckResults]


@dataclass
class ExtensionData:
    """Data from the registry's proprietary response extension."""
    dacor_token: Optional[str] = None  # Issued transfer token
    protocol: Optional[str] = None  # Application protocol id, needed for recall


@dataclass
class EppResult:
    """Decoded EPP response."""
    code: int
    message: str
    success: bool = False
    data: Optional[ResData] = None
    extension: Optional[ExtensionData] = None
    cl_trid: Optional[str] = None
    sv_trid: Optional[str] = None
    raw_xml: Optional[str] = None
    http_status: Optional[int] = None

    @classmethod
    def transport_error(cls, error: EPPConnectionError) -> "EppResult":
        """Build the result returned for a failed HTTP exchange."""
        return cls(
            code=RESULT_TRANSPORT_ERROR,
            message=error.message,
            success=False,
            http_status=error.http_status,
        )

    @property
    def is_transport_error(self) -> bool:
        return self.code == RESULT_TRANSPORT_ERROR

    def raise_for_error(self) -> "EppResult":
        """
        Raise the matching exception if the command did not succeed.

        Returns:
            self, when successful

        Raises:
            EPPConnectionError: For transport failures (code 0)
            EPPCommandError: Or one of its code-specific subclasses
        """
        if self.success:
            return self
        if self.is_transport_error:
            raise EPPConnectionError(self.message, http_status=self.http_status)
        error_class = _ERRORS_BY_CODE.get(self.code, EPPCommandError)
        raise error_class(self.message, self.code)


# =============================================================================
# Registry Operation Models
# =============================================================================

@dataclass
class ContactDetails:
    """Contact data used to create or update a registry contact."""
    name: str
    email: str
    street: List[str] = field(default_factory=list)
    city: str = ""
    pc: str = ""  # Postal Code
    cc: str = "gr"  # Country code (2-letter ISO)
    org: Optional[str] = None
    sp: Optional[str] = None  # State/Province
    voice: Optional[str] = None  # +30.2101234567 format

    @classmethod
    def from_contact_info(cls, info: ContactInfo) -> "ContactDetails":
        postal = info.postal or PostalInfoData(type="loc")
        return cls(
            name=postal.name or "",
            email=info.email or "",
            street=list(postal.street),
            city=postal.city or "",
            pc=postal.pc or "",
            cc=(postal.cc or "gr").lower(),
            org=postal.org,
            sp=postal.sp,
            voice=info.voice,
        )


@dataclass
class RegistrationRequest:
    """Input for a complete domain registration."""
    domain: str
    registrant: ContactDetails
    nameservers: List[str] = field(default_factory=list)  # ns1..ns5, blanks allowed
    years: int = 2


@dataclass
class OperationResult:
    """Outcome of a registry business operation."""
    success: bool
    message: str = ""
    code: Optional[int] = None
    data: Any = None
    error: Optional[EPPError] = None

    @classmethod
    def ok(cls, data: Any = None, message: str = "OK") -> "OperationResult":
        return cls(success=True, message=message, code=None, data=data)

    @classmethod
    def failure(cls, error: EPPError) -> "OperationResult":
        return cls(success=False, message=error.message, code=error.code, error=error)


class SyncState(str, Enum):
    """Registry view of a locally tracked domain."""
    ACTIVE = "active"
    PENDING_DELETE = "pending_delete"
    EXPIRED = "expired"
    TRANSFERRED_AWAY = "transferred_away"


@dataclass
class DomainSyncInfo:
    """Dates and state used to reconcile one domain."""
    state: SyncState
    expiry_date: Optional[date] = None
    registration_date: Optional[date] = None
    updated_date: Optional[date] = None


@dataclass
class ChildNameserver:
    """Glue host registered under a domain."""
    hostname: str
    addresses: List[str] = field(default_factory=list)


@dataclass
class SyncStats:
    """Counters reported by a domain sync run."""
    total: int = 0
    updated: int = 0
    expired: int = 0
    transferred_away: int = 0
    errors: int = 0
    skipped: int = 0


# =============================================================================
# Notification and Audit Models
# =============================================================================

class NotificationType(str, Enum):
    PRE = "PRE"
    POST = "POST"
    UNEXPECTED = "UNEXPECTED"


class Channel(str, Enum):
    EMAIL = "EMAIL"
    SMS = "SMS"
    WEBHOOK = "WEBHOOK"


class AuditStatus(str, Enum):
    PENDING = "PENDING"
    APPLIED = "APPLIED"
    FAILED = "FAILED"
    DETECTED = "DETECTED"


@dataclass
class RecordChange:
    """Difference for one DNS record type."""
    type: str
    old_value: str
    new_value: str
    detected_at: str  # YYYY-MM-DD HH:MM:SS

    def to_dict(self) -> Dict[str, str]:
        return asdict(self)


@dataclass
class NotificationPayload:
    """Content stored with a queued notification."""
    subject: str
    body: str
    html: bool = False
    type: str = ""  # pre_change, post_change, unexpected
    message: Optional[str] = None  # Short text for SMS
    data: Dict[str, Any] = field(default_factory=dict)  # Extra fields for webhooks

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "NotificationPayload":
        return cls(
            subject=data.get("subject", ""),
            body=data.get("body", ""),
            html=bool(data.get("html", False)),
            type=data.get("type", ""),
            message=data.get("message"),
            data=dict(data.get("data") or {}),
        )

    @property
    def text(self) -> str:
        """Text used by channels that cannot carry the full body."""
        return self.message or self.subject


@dataclass
class QueueItem:
    """Row of the notification queue."""
    id: int
    type: str
    channel: str
    recipient: str
    payload: NotificationPayload
    attempt: int = 0
    max_attempts: int = 5
    next_attempt_at: Optional[datetime] = None
    delivered_at: Optional[datetime] = None
    last_error: Optional[str] = None
    audit_id: Optional[int] = None
    created_at: Optional[datetime] = None


@dataclass
class DispatchStats:
    """Counters reported by one dispatch batch."""
    processed: int = 0
    delivered: int = 0
    failed: int = 0


@dataclass
class AuditRecord:
    """Row of the DNS change audit trail."""
    id: int
    domain_name: str
    change_type: str
    status: str
    old_records: Dict[str, List[str]] = field(default_factory=dict)
    new_records: Dict[str, List[str]] = field(default_factory=dict)
    pre_notice_sent: bool = False
    post_notice_sent: bool = False
    domain_id: Optional[int] = None
    user_id: Optional[int] = None
    actor: Optional[str] = None
    action: str = "UPDATE_ZONE"
    error_message: Optional[str] = None
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None


@dataclass
class MonitoredDomain:
    """Domain with DNS alerts enabled, as selected for monitoring."""
    domain_id: int
    name: str
    user_id: Optional[int]
    owner_email: Optional[str]
    check_interval: int = 300  # seconds


@dataclass
class CheckOutcome:
    """Result of one DNS snapshot comparison."""
    changed: bool
    changes: List[RecordChange] = field(default_factory=list)
    old_records: Dict[str, List[str]] = field(default_factory=dict)
    new_records: Dict[str, List[str]] = field(default_factory=dict)


@dataclass
class MonitorStats:
    """Counters reported by a DNS monitoring pass."""
    checked: int = 0
    changed: int = 0
    errors: int = 0
    skipped: int = 0


DnsRecords = Dict[str, List[str]]
ExpectedCodes = Tuple[int, ...]

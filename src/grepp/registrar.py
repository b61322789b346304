"""
Registry Operations

Business operations on top of the EPP session client. Every public method
returns an OperationResult; EPP failures are reported, never raised.
"""

import functools
import logging
import secrets
import string
from dataclasses import replace
from typing import Callable, Dict, List, Optional

from grepp import commands as cmd
from grepp.client import EPPClient
from grepp.exceptions import (
    EPPCommandError,
    EPPError,
    EPPObjectExists,
    EPPValidationError,
    NameserversRemovedError,
)
from grepp.models import (
    RESULT_AUTHORIZATION_ERROR,
    RESULT_OBJECT_NOT_FOUND,
    RESULT_PENDING,
    CheckResults,
    ChildNameserver,
    ContactDetails,
    ContactInfo,
    DomainInfo,
    DomainSyncInfo,
    EppResult,
    HostInfo,
    OperationResult,
    RegistrationRequest,
    SyncState,
)

logger = logging.getLogger("grepp.registrar")

MAX_NAMESERVERS = 5
DEFAULT_PERIOD = 2
TRANSFER_LOCK_STATUS = "clientTransferProhibited"
PENDING_DELETE_STATUS = "pendingDelete"

# Registry defaults for contact fields the registrant may leave empty
DEFAULT_VOICE = "+30.2101234567"
DEFAULT_CITY = "Athens"
DEFAULT_POSTAL_CODE = "10000"

PASSWORD_SYMBOLS = "!@#$%^&*()"

_ACCENT_MAP = str.maketrans({
    "ά": "α",
    "έ": "ε",
    "ή": "η",
    "ί": "ι",
    "ϊ": "ι",
    "ΐ": "ι",
    "ό": "ο",
    "ύ": "υ",
    "ϋ": "υ",
    "ΰ": "υ",
    "ώ": "ω",
})


def sanitize_domain(domain: str) -> str:
    """
    Normalize a .gr/.ελ domain name for the registry.

    Strips Greek accents and diaeresis, turns a sigma that ends a label
    into final sigma and lowercases the result.
    """
    domain = domain.strip().lower().translate(_ACCENT_MAP)
    return domain.replace("σ-", "ς-").replace("σ.", "ς.")


def generate_password(length: int = 12) -> str:
    """
    Generate an auth info password.

    Contains at least one lowercase letter, one uppercase letter, one digit
    and one symbol.
    """
    if length < 4:
        raise ValueError("Password length must be at least 4")
    pools = [string.ascii_lowercase, string.ascii_uppercase, string.digits, PASSWORD_SYMBOLS]
    chars = [secrets.choice(pool) for pool in pools]
    alphabet = "".join(pools)
    chars.extend(secrets.choice(alphabet) for _ in range(length - len(chars)))
    secrets.SystemRandom().shuffle(chars)
    return "".join(chars)


def _operation(func):
    """Convert EPP exceptions raised by an operation into a failed OperationResult."""
    @functools.wraps(func)
    def wrapper(self, *args, **kwargs):
        try:
            return func(self, *args, **kwargs)
        except EPPError as e:
            logger.error(f"{func.__name__} failed: {e}")
            return OperationResult.failure(e)
    return wrapper


class Registrar:
    """
    Domain, contact and host operations for a .GR registrar account.

    Example:
        registrar = Registrar(client, registrar_id="grepp123")
        result = registrar.check_domain("παράδειγμα.gr")
        if result.success and result.data:
            print("available")
    """

    def __init__(
        self,
        client: EPPClient,
        registrar_id: str,
        default_contact: Optional[ContactDetails] = None,
        contact_id_factory: Optional[Callable[[], str]] = None,
    ):
        """
        Args:
            client: EPP session client
            registrar_id: Registrar prefix used for new contact ids
            default_contact: When set, admin/tech/billing contacts are created
                from it instead of reusing the registrant
            contact_id_factory: Override for contact id generation
        """
        self._client = client
        self._registrar_id = registrar_id
        self._default_contact = default_contact
        self._contact_id_factory = contact_id_factory

    def _new_contact_id(self) -> str:
        if self._contact_id_factory is not None:
            return self._contact_id_factory()
        return f"{self._registrar_id}_{secrets.token_hex(4)}"

    def _execute(self, command: cmd.EppCommand) -> EppResult:
        """Execute a command, raising on any non-success result."""
        return self._client.execute(command).raise_for_error()

    def _domain_info(self, domain: str) -> EppResult:
        result = self._execute(cmd.DomainInfo(name=domain))
        if not isinstance(result.data, DomainInfo):
            raise EPPCommandError("Registry returned no domain data", result.code)
        return result

    def _create_contact(self, details: ContactDetails) -> str:
        """Create a contact under a fresh id, after checking the id is free."""
        contact_id = self._new_contact_id()

        check = self._execute(cmd.ContactCheck(ids=[contact_id]))
        if not isinstance(check.data, CheckResults) or not check.data.is_available(contact_id):
            raise EPPObjectExists("Contact ID not available")

        self._execute(cmd.ContactCreate(
            id=contact_id,
            details=details,
            auth_info=generate_password(),
        ))
        logger.info(f"Created contact {contact_id}")
        return contact_id

    @staticmethod
    def _with_contact_defaults(details: ContactDetails) -> ContactDetails:
        if not details.name or not details.email:
            raise EPPValidationError("Contact name and email are required")
        return replace(
            details,
            street=[s for s in details.street if s],
            city=details.city or DEFAULT_CITY,
            pc=details.pc or DEFAULT_POSTAL_CODE,
            cc=(details.cc or "gr").lower(),
            voice=details.voice or DEFAULT_VOICE,
        )

    # =========================================================================
    # Domain Operations
    # =========================================================================

    @_operation
    def check_domain(self, domain: str) -> OperationResult:
        """Check availability. data is True when the domain can be registered."""
        domain = sanitize_domain(domain)
        result = self._execute(cmd.DomainCheck(names=[domain]))
        available = isinstance(result.data, CheckResults) and result.data.is_available(domain)
        return OperationResult.ok(data=available, message="Available" if available else "Not available")

    @_operation
    def register_domain(self, request: RegistrationRequest) -> OperationResult:
        """
        Register a domain with a new registrant contact.

        Steps: create the registrant contact, create admin/tech/billing
        contacts from the default contact (or reuse the registrant), then
        create the domain. The first failure aborts the sequence; contacts
        already created stay in the registry.
        """
        domain = sanitize_domain(request.domain)
        registrant = self._with_contact_defaults(request.registrant)
        nameservers = [ns.strip() for ns in request.nameservers[:MAX_NAMESERVERS] if ns and ns.strip()]

        registrant_id = self._create_contact(registrant)

        if self._default_contact is not None:
            default = self._with_contact_defaults(self._default_contact)
            admin = self._create_contact(default)
            tech = self._create_contact(default)
            billing = self._create_contact(default)
        else:
            admin = tech = billing = registrant_id

        result = self._execute(cmd.DomainCreate(
            name=domain,
            registrant=registrant_id,
            admin=admin,
            tech=tech,
            billing=billing,
            nameservers=nameservers,
            auth_info=generate_password(),
            period=request.years or DEFAULT_PERIOD,
        ))

        logger.info(f"Domain {domain} created (code {result.code})")
        message = "Domain registration pending" if result.code == RESULT_PENDING else "Domain registered successfully"
        return OperationResult(
            success=True,
            message=message,
            code=result.code,
            data={"registrant": registrant_id, "admin": admin, "tech": tech, "billing": billing},
        )

    @_operation
    def renew_domain(self, domain: str, years: int = DEFAULT_PERIOD) -> OperationResult:
        """Renew using the current expiry date read from the registry."""
        domain = sanitize_domain(domain)
        info = self._domain_info(domain).data
        if info.ex_date is None:
            raise EPPCommandError("Registry returned no expiry date")

        self._execute(cmd.DomainRenew(
            name=domain,
            cur_exp_date=info.ex_date.strftime("%Y-%m-%d"),
            period=years,
        ))
        return OperationResult.ok(message="Domain renewed")

    @_operation
    def transfer_domain(self, domain: str, auth_code: str, years: int = DEFAULT_PERIOD) -> OperationResult:
        domain = sanitize_domain(domain)
        if not auth_code:
            raise EPPValidationError("Transfer auth code is required")
        self._execute(cmd.DomainTransfer(name=domain, auth_info=auth_code, period=years))
        return OperationResult.ok(message="Transfer requested")

    @_operation
    def request_delete(self, domain: str) -> OperationResult:
        domain = sanitize_domain(domain)
        self._execute(cmd.DomainDelete(name=domain))
        return OperationResult.ok(message="Domain deleted")

    @_operation
    def recall_application(self, domain: str) -> OperationResult:
        """Recall a registration; only possible while the registry still holds its protocol id."""
        domain = sanitize_domain(domain)
        result = self._domain_info(domain)
        protocol = result.extension.protocol if result.extension else None
        if not protocol:
            raise EPPCommandError(
                "Domain protocol ID not found. This operation may only be "
                "available within 5 days of registration."
            )

        self._execute(cmd.DomainRecallApplication(name=domain, protocol=protocol))
        return OperationResult.ok(message="Application recalled")

    @_operation
    def get_domain_information(self, domain: str) -> OperationResult:
        domain = sanitize_domain(domain)
        return OperationResult.ok(data=self._domain_info(domain).data)

    # =========================================================================
    # Nameservers
    # =========================================================================

    @_operation
    def get_nameservers(self, domain: str) -> OperationResult:
        domain = sanitize_domain(domain)
        return OperationResult.ok(data=list(self._domain_info(domain).data.nameservers))

    @_operation
    def set_nameservers(self, domain: str, nameservers: List[str]) -> OperationResult:
        """
        Replace the delegation of a domain.

        The current nameservers are removed first, then the new set is
        added. If the add fails after a successful remove the result carries
        a NameserversRemovedError, since the domain is left undelegated.
        """
        domain = sanitize_domain(domain)
        new_ns = [ns.strip().lower() for ns in nameservers[:MAX_NAMESERVERS] if ns and ns.strip()]
        if not new_ns:
            raise EPPValidationError("No nameservers configured")

        current = self._domain_info(domain).data.nameservers

        if current:
            self._execute(cmd.DomainUpdate(name=domain, rem_ns=list(current)))

        result = self._client.execute(cmd.DomainUpdate(name=domain, add_ns=new_ns))
        if not result.success:
            if current:
                logger.error(f"Nameservers of {domain} removed but adding {new_ns} failed: {result.message}")
                raise NameserversRemovedError(
                    f"Old nameservers removed but new nameservers could not be added: {result.message}",
                    result.code,
                    nameservers=new_ns,
                )
            result.raise_for_error()

        return OperationResult.ok(data=new_ns, message="Nameservers updated")

    @_operation
    def get_child_nameservers(self, domain: str) -> OperationResult:
        """List glue hosts delegated under the domain, with their addresses."""
        domain = sanitize_domain(domain)
        info = self._domain_info(domain).data

        children = []
        for ns in info.nameservers:
            if not ns.lower().rstrip(".").endswith(f".{domain}"):
                continue
            host_result = self._client.execute(cmd.HostInfo(name=ns))
            if host_result.success and isinstance(host_result.data, HostInfo):
                children.append(ChildNameserver(
                    hostname=ns,
                    addresses=[a.address for a in host_result.data.addresses],
                ))
        return OperationResult.ok(data=children)

    @_operation
    def register_nameserver(self, host: str, ipv4: str = None, ipv6: str = None) -> OperationResult:
        """Create a glue host. At least one address is required."""
        host = host.strip().lower()
        addresses = cmd.host_addresses([ipv4] if ipv4 else [], [ipv6] if ipv6 else [])
        if not addresses:
            raise EPPValidationError("At least one IP address (IPv4 or IPv6) is required")

        check = self._execute(cmd.HostCheck(names=[host]))
        if isinstance(check.data, CheckResults) and check.data.items and not check.data.is_available(host):
            raise EPPObjectExists("Nameserver already exists")

        self._execute(cmd.HostCreate(name=host, addresses=addresses))
        return OperationResult.ok(message="Nameserver registered")

    @_operation
    def modify_nameserver(self, host: str, ipv4: str = None, ipv6: str = None) -> OperationResult:
        """Replace all addresses of a glue host."""
        host = host.strip().lower()
        new_addresses = cmd.host_addresses([ipv4] if ipv4 else [], [ipv6] if ipv6 else [])
        if not new_addresses:
            raise EPPValidationError("At least one IP address (IPv4 or IPv6) is required")

        info = self._execute(cmd.HostInfo(name=host)).data
        current = info.addresses if isinstance(info, HostInfo) else []

        self._execute(cmd.HostUpdate(
            name=host,
            add_addresses=new_addresses,
            rem_addresses=list(current),
        ))
        return OperationResult.ok(message="Nameserver updated")

    @_operation
    def delete_nameserver(self, host: str) -> OperationResult:
        self._execute(cmd.HostDelete(name=host.strip().lower()))
        return OperationResult.ok(message="Nameserver deleted")

    # =========================================================================
    # Contacts
    # =========================================================================

    @_operation
    def get_contact_information(self, domain: str) -> OperationResult:
        """
        Fetch the registrant and admin/tech/billing contacts of a domain.

        data maps "registrant", "admin", "tech" and "billing" to ContactInfo;
        roles whose contact-info fails are left out.
        """
        domain = sanitize_domain(domain)
        info = self._domain_info(domain).data

        roles = [("registrant", info.registrant)]
        roles.extend((role, info.contact(role)) for role in ("admin", "tech", "billing"))

        contacts: Dict[str, ContactInfo] = {}
        for role, contact_id in roles:
            if not contact_id:
                continue
            result = self._client.execute(cmd.ContactInfo(id=contact_id))
            if result.success and isinstance(result.data, ContactInfo):
                contacts[role] = result.data
            else:
                logger.warning(f"contact-info for {role} {contact_id} failed: {result.message}")
        return OperationResult.ok(data=contacts)

    @_operation
    def set_contact_information(self, domain: str, registrant: ContactDetails) -> OperationResult:
        """Update the registrant contact of a domain in place."""
        domain = sanitize_domain(domain)
        info = self._domain_info(domain).data
        if not info.registrant:
            raise EPPCommandError("Domain has no registrant contact")

        details = replace(registrant, street=[s for s in registrant.street if s], cc=(registrant.cc or "gr").lower())
        self._execute(cmd.ContactUpdate(id=info.registrant, details=details))
        return OperationResult.ok(message="Contact updated")

    # =========================================================================
    # Lock and Transfer Tokens
    # =========================================================================

    @_operation
    def get_registrar_lock(self, domain: str) -> OperationResult:
        """data is True when clientTransferProhibited is set."""
        domain = sanitize_domain(domain)
        info = self._domain_info(domain).data
        return OperationResult.ok(data=TRANSFER_LOCK_STATUS in info.status)

    @_operation
    def set_registrar_lock(self, domain: str, locked: bool) -> OperationResult:
        domain = sanitize_domain(domain)
        if locked:
            update = cmd.DomainUpdate(name=domain, add_status=[TRANSFER_LOCK_STATUS])
        else:
            update = cmd.DomainUpdate(name=domain, rem_status=[TRANSFER_LOCK_STATUS])
        self._execute(update)
        return OperationResult.ok(data=locked, message="Locked" if locked else "Unlocked")

    @_operation
    def get_transfer_token(self, domain: str) -> OperationResult:
        """Ask the registry to issue a DACOR transfer token. data is the token."""
        domain = sanitize_domain(domain)
        result = self._execute(cmd.DacorIssueToken(name=domain))
        token = result.extension.dacor_token if result.extension else None
        if not token:
            raise EPPCommandError("Failed to retrieve transfer token from registry")
        return OperationResult.ok(data=token)

    def send_transfer_key(self, domain: str) -> OperationResult:
        """Issue a DACOR token. The registry has no separate send step."""
        result = self.get_transfer_token(domain)
        if result.success:
            result.message = "DACOR transfer token generated"
        return result

    # =========================================================================
    # Sync and Connectivity
    # =========================================================================

    @_operation
    def sync_domain(self, domain: str) -> OperationResult:
        """
        Read the registry state of a locally tracked domain.

        2303 means the domain no longer exists (expired), 2201 means another
        registrar now sponsors it.
        """
        domain = sanitize_domain(domain)
        result = self._client.execute(cmd.DomainInfo(name=domain))

        if not result.success:
            if result.code == RESULT_OBJECT_NOT_FOUND:
                return OperationResult.ok(data=DomainSyncInfo(state=SyncState.EXPIRED))
            if result.code == RESULT_AUTHORIZATION_ERROR:
                return OperationResult.ok(data=DomainSyncInfo(state=SyncState.TRANSFERRED_AWAY))
            result.raise_for_error()

        info = result.data
        if not isinstance(info, DomainInfo):
            raise EPPCommandError("Registry returned no domain data", result.code)

        state = SyncState.PENDING_DELETE if PENDING_DELETE_STATUS in info.status else SyncState.ACTIVE
        return OperationResult.ok(data=DomainSyncInfo(
            state=state,
            expiry_date=info.ex_date.date() if info.ex_date else None,
            registration_date=info.cr_date.date() if info.cr_date else None,
            updated_date=info.up_date.date() if info.up_date else None,
        ))

    def test_connection(self) -> OperationResult:
        """Log in to verify credentials and reachability."""
        result = self._client.login()
        if result.success:
            return OperationResult.ok(message="Successfully connected to .GR registry")
        return OperationResult(
            success=False,
            message=f"Connection failed: {result.message or 'Unknown error'}",
            code=result.code,
        )

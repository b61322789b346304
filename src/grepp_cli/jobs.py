"""
Batch Jobs

Entry points run from cron: the DNS alert job (queue dispatch, DNS
monitoring, audit retention) and the registry sync. Both return a process
exit code instead of raising.
"""

import logging
import socket
import time
from dataclasses import dataclass
from datetime import datetime
from pathlib import Path
from typing import Callable, Dict, List, Optional
from urllib.parse import urlsplit

from sqlalchemy.engine import Engine

from grepp.alerts import DnsAlertService
from grepp.audit import AuditLogger
from grepp.client import EPPClient
from grepp.commands import DomainCheck
from grepp.dns_monitor import DigResolver, DnsMonitor
from grepp.exceptions import LockError
from grepp.lock import RunLock
from grepp.models import Channel, CheckResults
from grepp.notifications import NotificationManager
from grepp.registrar import Registrar
from grepp.senders import ChannelSender, EmailSender, TwilioSmsSender, WebhookSender
from grepp.store import DomainStore, create_db_engine, utcnow
from grepp.sync import DomainSync
from grepp_cli.config import CLIConfig

logger = logging.getLogger("grepp.cli")

EX_OK = 0
EX_FAILURE = 1
EX_CONFIG = 78
CLEANUP_MARKER = "last_cleanup.txt"


# =============================================================================
# Wiring
# =============================================================================

def build_engine(config: CLIConfig) -> Engine:
    return create_db_engine(config.database.url)


def build_client(config: CLIConfig, on_exchange=None) -> EPPClient:
    registry = config.registry
    return EPPClient(
        username=registry.username,
        password=registry.effective_password,
        use_sandbox=registry.use_sandbox,
        ca_file=registry.ca_file,
        timeout=registry.timeout,
        connect_timeout=registry.connect_timeout,
        on_exchange=on_exchange,
    )


def build_registrar(config: CLIConfig, client: EPPClient) -> Registrar:
    return Registrar(
        client,
        registrar_id=config.registry.registrar_id,
        default_contact=config.registry.default_contact,
    )


def build_senders(config: CLIConfig) -> Dict[Channel, ChannelSender]:
    """Senders for every configured channel."""
    senders: Dict[Channel, ChannelSender] = {}
    if config.email.smtp_host:
        senders[Channel.EMAIL] = EmailSender(
            host=config.email.smtp_host,
            port=config.email.smtp_port,
            username=config.email.smtp_user,
            password=config.email.smtp_password,
            encryption=config.email.smtp_encryption,
            from_email=config.notifications.from_email,
            from_name=config.notifications.from_name,
            timeout=config.email.timeout,
        )
    if config.sms.enabled:
        senders[Channel.SMS] = TwilioSmsSender(
            account_sid=config.sms.twilio_account_sid,
            auth_token=config.sms.twilio_auth_token,
            from_number=config.sms.twilio_from_number,
            timeout=config.sms.timeout,
        )
    if config.webhook.enabled:
        senders[Channel.WEBHOOK] = WebhookSender(
            timeout=config.webhook.timeout,
            verify_ssl=config.webhook.verify_ssl,
            secret_key=config.webhook.secret_key or None,
        )
    return senders


def build_notification_manager(
    config: CLIConfig,
    engine: Engine,
    clock: Callable[[], datetime] = utcnow,
) -> NotificationManager:
    senders = build_senders(config)
    return NotificationManager(
        engine,
        senders,
        max_attempts=config.notifications.max_retry_attempts,
        backoff_schedule=config.notifications.retry_backoff,
        clock=clock,
        escalation_sender=senders.get(Channel.EMAIL),
        admin_email=config.notifications.admin_email,
    )


def build_alert_service(
    config: CLIConfig,
    engine: Engine,
    notifier: NotificationManager,
    resolver: Optional[DigResolver] = None,
    clock: Callable[[], datetime] = utcnow,
) -> DnsAlertService:
    resolver = resolver or DigResolver(
        dig_command=config.monitor.dig_command,
        record_types=config.monitor.record_types,
        timeout=config.monitor.timeout,
    )
    return DnsAlertService(
        engine,
        DnsMonitor(engine, resolver, clock=clock),
        notifier,
        AuditLogger(engine, clock=clock),
        pre_change=config.notifications.pre_change,
        post_change=config.notifications.post_change,
        delay_minutes=config.notifications.delay_minutes,
        base_url=config.notifications.base_url,
        check_delay_ms=config.monitor.check_delay_ms,
        clock=clock,
    )


# =============================================================================
# DNS alert job
# =============================================================================

def _daily_cleanup(config: CLIConfig, audit: AuditLogger, today: str) -> Optional[int]:
    """Purge expired audit rows at most once per UTC day."""
    marker = Path(config.cron.state_dir) / CLEANUP_MARKER
    last = marker.read_text().strip() if marker.exists() else ""
    if last == today:
        return None

    deleted = audit.cleanup_old_logs(config.compliance.audit_retention_days)
    marker.parent.mkdir(parents=True, exist_ok=True)
    marker.write_text(today)
    return deleted


def run_monitor(
    config: Optional[CLIConfig],
    clock: Callable[[], datetime] = utcnow,
    resolver: Optional[DigResolver] = None,
) -> int:
    """
    One DNS alert cron run.

    Returns:
        0 on success, when disabled or when another run holds the lock;
        1 on a fatal error; 78 when no configuration was found
    """
    if config is None:
        logger.error("Configuration file not found")
        return EX_CONFIG
    if not config.notifications.enabled:
        logger.info("DNS alert module is disabled")
        return EX_OK

    started = time.monotonic()
    lock = RunLock(config.cron.lock_file, config.cron.lock_timeout_minutes)
    try:
        if not lock.acquire():
            return EX_OK
    except LockError as e:
        logger.error(str(e))
        return EX_FAILURE

    try:
        logger.info("=== DNS alert job started ===")
        engine = build_engine(config)
        notifier = build_notification_manager(config, engine, clock)

        stats = notifier.dispatch_due(config.cron.queue_batch_size)
        logger.info(f"Queue: {stats.processed} processed, {stats.delivered} delivered, {stats.failed} failed")

        if config.monitor.enabled:
            service = build_alert_service(config, engine, notifier, resolver, clock)
            service.monitor_domains()

        deleted = _daily_cleanup(config, AuditLogger(engine, clock=clock), clock().date().isoformat())
        if deleted is not None:
            logger.info(f"Cleaned up {deleted} old audit log entries")

        logger.info(f"=== DNS alert job completed in {time.monotonic() - started:.2f} seconds ===")
        return EX_OK
    except Exception:
        logger.exception("FATAL ERROR in DNS alert job")
        return EX_FAILURE
    finally:
        lock.release()


# =============================================================================
# Registry sync job
# =============================================================================

def run_sync(config: Optional[CLIConfig]) -> int:
    """
    Reconcile tracked domains with the registry.

    Returns:
        0 on success, 1 on a fatal error, 78 when credentials are missing
    """
    if config is None or not config.registry.has_credentials:
        logger.error("Registry credentials are not configured")
        return EX_CONFIG

    try:
        engine = build_engine(config)
        with build_client(config) as client:
            sync = DomainSync(
                build_registrar(config, client),
                DomainStore(engine),
                delay_ms=config.sync.delay_ms,
                max_runtime_seconds=config.cron.max_runtime_seconds,
            )
            stats = sync.run()
    except Exception:
        logger.exception("FATAL ERROR in domain sync")
        return EX_FAILURE

    logger.info(
        f"Sync stats: total={stats.total} updated={stats.updated} expired={stats.expired} "
        f"transferred_away={stats.transferred_away} errors={stats.errors} skipped={stats.skipped}"
    )
    return EX_OK


# =============================================================================
# Connectivity check
# =============================================================================

@dataclass
class CheckStep:
    """Outcome of one connectivity check step."""
    name: str
    passed: bool
    message: str


def connectivity_check(config: CLIConfig, client: Optional[EPPClient] = None, probe_timeout: float = 10.0) -> List[CheckStep]:
    """
    Step-by-step registry check: CA bundle, TCP reachability, login and a
    domain-check of a random name.
    """
    steps: List[CheckStep] = []
    registry = config.registry

    if registry.ca_file:
        ca = Path(registry.ca_file)
        if ca.is_file():
            steps.append(CheckStep("CA bundle", True, f"{ca} found"))
        else:
            steps.append(CheckStep("CA bundle", False, f"{ca} not found or not readable"))
    else:
        steps.append(CheckStep("CA bundle", True, "Using system trust store"))

    client = client or build_client(config)
    try:
        url = urlsplit(client.url)
        started = time.monotonic()
        try:
            with socket.create_connection((url.hostname, url.port or 443), timeout=probe_timeout):
                pass
            elapsed = time.monotonic() - started
            steps.append(CheckStep("Network", True, f"Connected to {url.hostname}:{url.port or 443} ({elapsed * 1000:.0f}ms)"))
        except OSError as e:
            steps.append(CheckStep("Network", False, f"Connection failed: {e}"))

        started = time.monotonic()
        login = client.login()
        elapsed = time.monotonic() - started
        if not login.success:
            steps.append(CheckStep("Login", False, f"Login failed: {login.message} (code {login.code})"))
            return steps
        steps.append(CheckStep("Login", True, f"Login successful ({elapsed:.2f}s)"))

        test_domain = f"test-{int(time.time())}.gr"
        started = time.monotonic()
        result = client.execute(DomainCheck(names=[test_domain]))
        elapsed = time.monotonic() - started
        if result.success:
            available = isinstance(result.data, CheckResults) and result.data.is_available(test_domain)
            steps.append(CheckStep(
                "Domain check", True,
                f"Domain check successful ({elapsed:.2f}s, available: {'yes' if available else 'no'})",
            ))
        else:
            steps.append(CheckStep("Domain check", False, f"Domain check failed: {result.message}"))
    finally:
        client.close()
    return steps

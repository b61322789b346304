"""
CLI Configuration

Handles configuration loading and management.
"""

import os
from dataclasses import dataclass, field, fields
from pathlib import Path
from typing import Any, Dict, List, Optional

import yaml

from grepp.exceptions import ConfigError
from grepp.models import ContactDetails


# Default config locations
DEFAULT_CONFIG_PATHS = [
    Path("/etc/grepp/grepp.yaml"),
    Path("/etc/grepp/grepp.yml"),
    Path.home() / ".grepp" / "config.yaml",
    Path("grepp.yaml"),
]

PASSWORD_ENV = "GREPP_PASSWORD"


@dataclass
class RegistryConfig:
    """.GR registry account."""
    registrar_id: Optional[str] = None
    username: Optional[str] = None
    password: Optional[str] = None
    uat_password: Optional[str] = None  # Used instead of password in sandbox mode when set
    use_sandbox: bool = False
    ca_file: Optional[str] = None
    timeout: float = 30
    connect_timeout: float = 10
    default_contact: Optional[ContactDetails] = None

    @property
    def effective_password(self) -> Optional[str]:
        if self.use_sandbox and self.uat_password:
            return self.uat_password
        return self.password

    @property
    def has_credentials(self) -> bool:
        return bool(self.registrar_id and self.username and self.effective_password)


@dataclass
class DatabaseConfig:
    url: str = "sqlite:///grepp.db"


@dataclass
class NotificationsConfig:
    """DNS alert notifications."""
    enabled: bool = True
    pre_change: bool = True
    post_change: bool = True
    delay_minutes: int = 60
    from_email: str = "dns-alerts@localhost"
    from_name: str = "DNS Alert System"
    max_retry_attempts: int = 5
    retry_backoff: List[int] = field(default_factory=lambda: [5, 15, 30, 60, 120])  # minutes
    admin_email: Optional[str] = None  # Receives escalations
    base_url: str = ""


@dataclass
class EmailConfig:
    smtp_host: Optional[str] = None
    smtp_port: int = 587
    smtp_user: str = ""
    smtp_password: str = ""
    smtp_encryption: str = "tls"  # tls, ssl or none
    timeout: float = 10


@dataclass
class SmsConfig:
    enabled: bool = False
    twilio_account_sid: str = ""
    twilio_auth_token: str = ""
    twilio_from_number: str = ""
    timeout: float = 10


@dataclass
class WebhookConfig:
    enabled: bool = False
    timeout: float = 10
    verify_ssl: bool = True
    secret_key: str = ""  # HMAC signing key, empty disables signing


@dataclass
class MonitorConfig:
    enabled: bool = True
    record_types: List[str] = field(default_factory=lambda: ["A", "MX", "NS"])
    dig_command: str = "/usr/bin/dig"
    timeout: float = 10  # dig timeout in seconds
    check_delay_ms: int = 100


@dataclass
class ComplianceConfig:
    audit_retention_days: int = 730


@dataclass
class CronConfig:
    lock_file: str = "~/.grepp/run/monitor.lock"
    lock_timeout_minutes: int = 15
    state_dir: str = "~/.grepp/run"
    max_runtime_seconds: Optional[float] = None
    queue_batch_size: int = 100


@dataclass
class SyncConfig:
    delay_ms: int = 250


@dataclass
class LoggingConfig:
    level: str = "WARNING"
    file: Optional[str] = None


@dataclass
class CLIConfig:
    """Complete configuration."""
    registry: RegistryConfig = field(default_factory=RegistryConfig)
    database: DatabaseConfig = field(default_factory=DatabaseConfig)
    notifications: NotificationsConfig = field(default_factory=NotificationsConfig)
    email: EmailConfig = field(default_factory=EmailConfig)
    sms: SmsConfig = field(default_factory=SmsConfig)
    webhook: WebhookConfig = field(default_factory=WebhookConfig)
    monitor: MonitorConfig = field(default_factory=MonitorConfig)
    compliance: ComplianceConfig = field(default_factory=ComplianceConfig)
    cron: CronConfig = field(default_factory=CronConfig)
    sync: SyncConfig = field(default_factory=SyncConfig)
    logging: LoggingConfig = field(default_factory=LoggingConfig)
    profile: str = "default"
    source: Optional[Path] = None

    @classmethod
    def from_dict(cls, data: dict, profile: str = "default") -> "CLIConfig":
        """
        Create config from dictionary.

        Args:
            data: Configuration dictionary
            profile: Profile name to use; its sections replace the root ones

        Returns:
            CLIConfig instance
        """
        if not isinstance(data, dict):
            raise ConfigError("Configuration root must be a mapping")

        profile_data = dict(data)
        profiles = profile_data.pop("profiles", None) or {}
        if profile in profiles:
            profile_data.update(profiles[profile] or {})

        registry_data = dict(_section(profile_data, "registry"))
        contact_data = registry_data.pop("default_contact", None)
        registry = _build(RegistryConfig, registry_data, "registry")
        registry.ca_file = _expand_path(registry.ca_file)
        registry.default_contact = _contact(contact_data)

        env_password = os.environ.get(PASSWORD_ENV)
        if env_password:
            if registry.use_sandbox:
                registry.uat_password = env_password
            else:
                registry.password = env_password

        cron = _build(CronConfig, _section(profile_data, "cron"), "cron")
        cron.lock_file = _expand_path(cron.lock_file)
        cron.state_dir = _expand_path(cron.state_dir)

        log_config = _build(LoggingConfig, _section(profile_data, "logging"), "logging")
        log_config.file = _expand_path(log_config.file)

        return cls(
            registry=registry,
            database=_build(DatabaseConfig, _section(profile_data, "database"), "database"),
            notifications=_build(NotificationsConfig, _section(profile_data, "notifications"), "notifications"),
            email=_build(EmailConfig, _section(profile_data, "email"), "email"),
            sms=_build(SmsConfig, _section(profile_data, "sms"), "sms"),
            webhook=_build(WebhookConfig, _section(profile_data, "webhook"), "webhook"),
            monitor=_build(MonitorConfig, _section(profile_data, "monitor"), "monitor"),
            compliance=_build(ComplianceConfig, _section(profile_data, "compliance"), "compliance"),
            cron=cron,
            sync=_build(SyncConfig, _section(profile_data, "sync"), "sync"),
            logging=log_config,
            profile=profile,
        )

    @classmethod
    def from_file(cls, path: Path, profile: str = "default") -> "CLIConfig":
        """
        Load config from YAML file.

        Raises:
            ConfigError: If the file cannot be read or parsed
        """
        try:
            with open(path, encoding="utf-8") as f:
                data = yaml.safe_load(f)
        except OSError as e:
            raise ConfigError(f"Cannot read config file {path}: {e}") from e
        except yaml.YAMLError as e:
            raise ConfigError(f"Invalid YAML in {path}: {e}") from e

        config = cls.from_dict(data or {}, profile)
        config.source = Path(path)
        return config

    @classmethod
    def find_and_load(cls, profile: str = "default") -> Optional["CLIConfig"]:
        """
        Find and load config from default locations.

        Returns:
            CLIConfig instance or None if not found
        """
        for path in DEFAULT_CONFIG_PATHS:
            if path.exists():
                return cls.from_file(path, profile)
        return None

    def masked(self) -> Dict[str, Any]:
        """Effective values with secrets hidden, for display."""
        return {
            "Profile": self.profile,
            "Config file": str(self.source) if self.source else "(defaults)",
            "Registrar ID": self.registry.registrar_id or "(not set)",
            "Username": self.registry.username or "(not set)",
            "Password": _mask(self.registry.effective_password),
            "Environment": "UAT" if self.registry.use_sandbox else "PRODUCTION",
            "CA file": self.registry.ca_file or "(system trust store)",
            "Timeout": f"{self.registry.timeout}s (connect {self.registry.connect_timeout}s)",
            "Database": _mask_url(self.database.url),
            "Notifications": self.notifications.enabled,
            "SMTP host": self.email.smtp_host or "(not set)",
            "SMTP password": _mask(self.email.smtp_password),
            "SMS": self.sms.enabled,
            "Twilio token": _mask(self.sms.twilio_auth_token),
            "Webhook": self.webhook.enabled,
            "Webhook secret": _mask(self.webhook.secret_key),
            "DNS monitor": self.monitor.enabled,
            "Record types": ", ".join(self.monitor.record_types),
            "Audit retention": f"{self.compliance.audit_retention_days} days",
            "Lock file": self.cron.lock_file,
            "Log level": self.logging.level,
        }


def _section(data: dict, name: str) -> dict:
    section = data.get(name) or {}
    if not isinstance(section, dict):
        raise ConfigError(f"Config section '{name}' must be a mapping")
    return section


def _build(cls, data: dict, name: str):
    """Instantiate a section dataclass, rejecting unknown keys."""
    known = {f.name for f in fields(cls)}
    unknown = sorted(set(data) - known)
    if unknown:
        raise ConfigError(f"Unknown option(s) in '{name}': {', '.join(unknown)}")
    return cls(**data)


def _contact(data: Optional[dict]) -> Optional[ContactDetails]:
    if not data:
        return None
    if not data.get("name") or not data.get("email"):
        raise ConfigError("registry.default_contact needs at least name and email")
    street = data.get("street") or []
    if isinstance(street, str):
        street = [street]
    return ContactDetails(
        name=data["name"],
        email=data["email"],
        street=list(street),
        city=data.get("city", ""),
        pc=str(data.get("pc", "")),
        cc=data.get("cc", "gr"),
        org=data.get("org"),
        sp=data.get("sp"),
        voice=data.get("voice"),
    )


def _expand_path(path: Optional[str]) -> Optional[str]:
    """Expand environment variables and ~ in path."""
    if path is None:
        return None
    return os.path.expandvars(os.path.expanduser(path))


def _mask(secret: Optional[str]) -> str:
    return "********" if secret else "(not set)"


def _mask_url(url: str) -> str:
    if "@" not in url or "://" not in url:
        return url
    scheme, rest = url.split("://", 1)
    credentials, host = rest.rsplit("@", 1)
    user = credentials.split(":", 1)[0]
    return f"{scheme}://{user}:********@{host}"


def create_sample_config() -> str:
    """
    Generate sample configuration YAML.

    Returns:
        Sample config as YAML string
    """
    return """# grepp configuration
# Default location: /etc/grepp/grepp.yaml
# Alternative: ~/.grepp/config.yaml (user install)
# GREPP_PASSWORD in the environment overrides the registry password.

registry:
  registrar_id: "123"
  username: your_username
  password: your_production_password
  uat_password: your_sandbox_password
  use_sandbox: true
  ca_file: null          # CA bundle, system trust store when null
  timeout: 30
  connect_timeout: 10
  default_contact:       # Optional: admin/tech/billing contacts are created from this
    name: Support Team
    email: support@example.gr
    org: Your Company Name
    street: [Main Street 1]
    city: Athens
    pc: "10000"
    cc: gr
    voice: "+30.2101234567"

database:
  url: sqlite:////var/lib/grepp/grepp.db

notifications:
  enabled: true
  pre_change: true
  post_change: true
  delay_minutes: 60
  from_email: dns-alerts@example.gr
  from_name: DNS Alert System
  max_retry_attempts: 5
  retry_backoff: [5, 15, 30, 60, 120]   # minutes
  admin_email: hostmaster@example.gr
  base_url: https://panel.example.gr

email:
  smtp_host: mail.example.gr
  smtp_port: 587
  smtp_user: dns-alerts@example.gr
  smtp_password: your-smtp-password
  smtp_encryption: tls   # tls, ssl or none
  timeout: 10

sms:
  enabled: false
  twilio_account_sid: ""
  twilio_auth_token: ""
  twilio_from_number: ""

webhook:
  enabled: false
  timeout: 10
  verify_ssl: true
  secret_key: ""

monitor:
  enabled: true
  record_types: [A, MX, NS]
  dig_command: /usr/bin/dig
  timeout: 10
  check_delay_ms: 100

compliance:
  audit_retention_days: 730

cron:
  lock_file: /var/lib/grepp/monitor.lock
  lock_timeout_minutes: 15
  state_dir: /var/lib/grepp
  max_runtime_seconds: 240
  queue_batch_size: 100

sync:
  delay_ms: 250

logging:
  level: INFO
  file: /var/log/grepp/grepp.log

# Multiple profiles example (optional)
profiles:
  production:
    registry:
      registrar_id: "123"
      username: your_username
      password: your_production_password
      use_sandbox: false
"""

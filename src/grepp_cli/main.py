"""
grepp CLI Main Entry Point

Command-line interface for .GR registry operations, DNS alert jobs and
domain sync.
"""

import getpass
import logging
import sys
from datetime import timedelta
from pathlib import Path
from typing import Optional

import click

from grepp.audit import AuditLogger
from grepp.exceptions import ConfigError, EPPError
from grepp.models import ContactDetails, OperationResult, RegistrationRequest
from grepp.registrar import Registrar
from grepp.store import init_db, utcnow
from grepp_cli import jobs
from grepp_cli.config import CLIConfig, create_sample_config
from grepp_cli.output import OutputFormatter, print_error, print_info, print_success

__version__ = "1.1.0"

LOG_FORMAT = "%(asctime)s %(levelname)s %(name)s: %(message)s"


# Global state for the CLI session
class CLIState:
    config: Optional[CLIConfig] = None
    formatter: Optional[OutputFormatter] = None


state = CLIState()


def setup_logging(level: str, debug: bool = False, log_file: Optional[str] = None) -> None:
    handlers = [logging.StreamHandler()]
    if log_file:
        Path(log_file).parent.mkdir(parents=True, exist_ok=True)
        handlers.append(logging.FileHandler(log_file, encoding="utf-8"))

    logging.basicConfig(
        level=logging.DEBUG if debug else getattr(logging, level.upper(), logging.WARNING),
        format=LOG_FORMAT,
        handlers=handlers,
        force=True,
    )


# =============================================================================
# Main CLI Group
# =============================================================================

@click.group()
@click.option("--config", "-c", type=click.Path(exists=True), help="Config file path")
@click.option("--profile", "-p", default="default", help="Config profile to use")
@click.option("--sandbox/--production", default=None, help="Override the configured environment")
@click.option("--format", "-f", type=click.Choice(["table", "json"]), default="table", help="Output format")
@click.option("--quiet", "-q", is_flag=True, help="Suppress non-essential output")
@click.option("--debug", is_flag=True, help="Enable debug logging (includes masked EPP XML)")
@click.version_option(version=__version__)
@click.pass_context
def cli(ctx, config, profile, sandbox, format, quiet, debug):
    """
    grepp - .GR Domain Registry Operations and DNS Change Alerts

    \b
    Configuration:
      Use a config file at ~/.grepp/config.yaml or /etc/grepp/grepp.yaml.
      Run 'grepp config init' to create a sample config file.

    \b
    Examples:
      grepp domain check example.gr παράδειγμα.ελ
      grepp --sandbox domain info example.gr
      grepp ns set example.gr ns1.example.net ns2.example.net
      grepp jobs monitor
    """
    state.formatter = OutputFormatter(format=format, quiet=quiet)

    try:
        if config:
            loaded = CLIConfig.from_file(Path(config), profile)
        else:
            loaded = CLIConfig.find_and_load(profile)
    except ConfigError as e:
        setup_logging("WARNING", debug)
        print_error(str(e))
        sys.exit(jobs.EX_CONFIG)

    if loaded is not None and sandbox is not None:
        loaded.registry.use_sandbox = sandbox

    if loaded is not None:
        setup_logging(loaded.logging.level, debug, loaded.logging.file)
    else:
        setup_logging("WARNING", debug)

    state.config = loaded
    ctx.ensure_object(dict)
    ctx.obj["config"] = loaded


def require_config() -> CLIConfig:
    if state.config is None:
        print_error("No configuration found. Run 'grepp config init' or pass --config.")
        sys.exit(jobs.EX_CONFIG)
    return state.config


def get_registrar() -> Registrar:
    """
    Build a registrar for the configured account.

    The session logs in on the first command and logs out when the CLI
    process closes the client.
    """
    config = require_config()
    registry = config.registry

    if not registry.registrar_id or not registry.username:
        print_error("Registrar ID and username must be configured.")
        sys.exit(jobs.EX_CONFIG)

    if not registry.effective_password:
        registry.password = getpass.getpass("Password: ")

    client = jobs.build_client(config)
    click.get_current_context().call_on_close(client.close)
    return jobs.build_registrar(config, client)


def emit(result: OperationResult, data_label: Optional[str] = None) -> None:
    """Print an operation result; exit 1 on failure."""
    if not result.success:
        code = f" (code {result.code})" if result.code else ""
        print_error(f"{result.message}{code}")
        sys.exit(1)

    if result.data is None or isinstance(result.data, bool):
        state.formatter.success(result.message)
        return
    if data_label:
        state.formatter.output({data_label: result.data})
    else:
        state.formatter.output(result.data)


# =============================================================================
# Config Commands
# =============================================================================

@cli.group()
def config():
    """Configuration management commands."""
    pass


@config.command("init")
@click.option("--path", "-p", type=click.Path(), default="~/.grepp/config.yaml", help="Config file path")
def config_init(path):
    """Create sample configuration file."""
    path = Path(path).expanduser()

    path.parent.mkdir(parents=True, exist_ok=True)

    if path.exists():
        if not click.confirm(f"{path} already exists. Overwrite?"):
            return

    path.write_text(create_sample_config())

    print_success(f"Created config file: {path}")
    print_info("Edit the file to configure your registry account and DNS alerts.")


@config.command("show")
def config_show():
    """Show current configuration (secrets masked)."""
    state.formatter.output(require_config().masked())


# =============================================================================
# Database and Connectivity
# =============================================================================

@cli.group()
def db():
    """Database commands."""
    pass


@db.command("init")
def db_init():
    """Create the database tables."""
    config = require_config()
    init_db(jobs.build_engine(config))
    state.formatter.success("Database tables created")


@cli.command()
def check():
    """Run the registry connectivity check."""
    config = require_config()
    registry = config.registry
    if not registry.username or not registry.effective_password:
        print_error("Username and password must be configured.")
        sys.exit(jobs.EX_CONFIG)

    print_info(f"Environment: {'SANDBOX/UAT' if registry.use_sandbox else 'PRODUCTION'}")
    print_info(f"Username: {registry.username}")

    steps = jobs.connectivity_check(config)
    for index, step in enumerate(steps, 1):
        status = click.style("PASS", fg="green") if step.passed else click.style("FAIL", fg="red")
        click.echo(f"[{index}/{len(steps)}] {step.name:<14} {status}  {step.message}")

    if not all(step.passed for step in steps):
        sys.exit(1)


# =============================================================================
# Domain Commands
# =============================================================================

@cli.group()
def domain():
    """Domain management commands."""
    pass


@domain.command("check")
@click.argument("names", nargs=-1, required=True)
def domain_check(names):
    """
    Check domain availability.

    NAMES: One or more domain names to check.
    """
    registrar = get_registrar()
    rows = []
    for name in names:
        result = registrar.check_domain(name)
        if not result.success:
            emit(result)
        rows.append({"Domain": name, "Available": result.data})
    state.formatter.output(rows)


@domain.command("info")
@click.argument("name")
def domain_info(name):
    """Show registry information for a domain."""
    emit(get_registrar().get_domain_information(name))


@domain.command("register")
@click.argument("name")
@click.option("--name", "contact_name", required=True, help="Registrant name")
@click.option("--email", "-e", required=True, help="Registrant email")
@click.option("--org", "-o", help="Organization")
@click.option("--street", "-s", multiple=True, help="Street address (can specify multiple)")
@click.option("--city", help="City (default Athens)")
@click.option("--postal-code", "-z", help="Postal code")
@click.option("--country", "-C", default="gr", help="Country code (2-letter)")
@click.option("--voice", "-v", help="Phone number (+30.2101234567)")
@click.option("--ns", "-n", multiple=True, help="Nameserver (up to 5)")
@click.option("--years", "-y", type=int, default=2, help="Registration period in years")
def domain_register(name, contact_name, email, org, street, city, postal_code, country, voice, ns, years):
    """
    Register a new domain with a fresh registrant contact.

    \b
    Example:
      grepp domain register example.gr --name "Maria P." -e maria@example.gr -n ns1.example.net -n ns2.example.net
    """
    registrant = ContactDetails(
        name=contact_name,
        email=email,
        street=list(street),
        city=city or "",
        pc=postal_code or "",
        cc=country,
        org=org,
        voice=voice,
    )
    result = get_registrar().register_domain(
        RegistrationRequest(domain=name, registrant=registrant, nameservers=list(ns), years=years)
    )
    emit(result, data_label="Contacts")
    if result.data:
        state.formatter.success(result.message)


@domain.command("renew")
@click.argument("name")
@click.option("--years", "-y", type=int, default=2, help="Renewal period in years")
def domain_renew(name, years):
    """Renew a domain from its current expiry date."""
    emit(get_registrar().renew_domain(name, years))


@domain.command("transfer")
@click.argument("name")
@click.option("--auth-code", "-a", required=True, help="Transfer authorization code")
@click.option("--years", "-y", type=int, default=2, help="Renewal period for transfer")
def domain_transfer(name, auth_code, years):
    """Request an incoming transfer."""
    emit(get_registrar().transfer_domain(name, auth_code, years))


@domain.command("delete")
@click.argument("name")
@click.option("--confirm", "-y", is_flag=True, help="Skip confirmation")
def domain_delete(name, confirm):
    """Request deletion of a domain."""
    if not confirm:
        click.confirm(f"Delete domain {name}?", abort=True)
    emit(get_registrar().request_delete(name))


@domain.command("recall")
@click.argument("name")
@click.option("--confirm", "-y", is_flag=True, help="Skip confirmation")
def domain_recall(name, confirm):
    """Recall a domain application (only within 5 days of registration)."""
    if not confirm:
        click.confirm(f"Recall the application of {name}?", abort=True)
    emit(get_registrar().recall_application(name))


@domain.command("lock")
@click.argument("name")
@click.option("--on/--off", "locked", default=None, help="Set the transfer lock; omit to show it")
def domain_lock(name, locked):
    """Show or set the registrar transfer lock."""
    registrar = get_registrar()
    if locked is None:
        result = registrar.get_registrar_lock(name)
        if not result.success:
            emit(result)
        state.formatter.output({"Domain": name, "Transfer lock": result.data})
    else:
        emit(registrar.set_registrar_lock(name, locked))


@domain.command("token")
@click.argument("name")
def domain_token(name):
    """Issue a DACOR transfer token."""
    emit(get_registrar().get_transfer_token(name), data_label="DACOR token")


@domain.command("sync")
@click.argument("name")
def domain_sync(name):
    """Show the registry sync state of a single domain."""
    emit(get_registrar().sync_domain(name))


# =============================================================================
# Contact Commands
# =============================================================================

@cli.group()
def contact():
    """Domain contact commands."""
    pass


@contact.command("info")
@click.argument("domain_name")
def contact_info(domain_name):
    """Show the registrant and admin/tech/billing contacts of a domain."""
    result = get_registrar().get_contact_information(domain_name)
    if not result.success:
        emit(result)
    for role, info in result.data.items():
        state.formatter.info(f"[{role}]")
        state.formatter.output(info)


@contact.command("update")
@click.argument("domain_name")
@click.option("--name", "contact_name", required=True, help="Contact name")
@click.option("--email", "-e", required=True, help="Email address")
@click.option("--org", "-o", help="Organization")
@click.option("--street", "-s", multiple=True, help="Street address (can specify multiple)")
@click.option("--city", required=True, help="City")
@click.option("--postal-code", "-z", default="", help="Postal code")
@click.option("--country", "-C", default="gr", help="Country code (2-letter)")
@click.option("--voice", "-v", help="Phone number")
def contact_update(domain_name, contact_name, email, org, street, city, postal_code, country, voice):
    """Update the registrant contact of a domain."""
    details = ContactDetails(
        name=contact_name,
        email=email,
        street=list(street),
        city=city,
        pc=postal_code,
        cc=country,
        org=org,
        voice=voice,
    )
    emit(get_registrar().set_contact_information(domain_name, details))


# =============================================================================
# Nameserver Commands
# =============================================================================

@cli.group("ns")
def nameserver():
    """Nameserver and glue host commands."""
    pass


@nameserver.command("list")
@click.argument("domain_name")
def ns_list(domain_name):
    """List the nameservers of a domain."""
    emit(get_registrar().get_nameservers(domain_name), data_label="Nameservers")


@nameserver.command("set")
@click.argument("domain_name")
@click.argument("nameservers", nargs=-1, required=True)
def ns_set(domain_name, nameservers):
    """Replace the nameservers of a domain."""
    emit(get_registrar().set_nameservers(domain_name, list(nameservers)))


@nameserver.command("children")
@click.argument("domain_name")
def ns_children(domain_name):
    """List glue hosts under a domain with their addresses."""
    emit(get_registrar().get_child_nameservers(domain_name))


@nameserver.command("register")
@click.argument("hostname")
@click.option("--ipv4", "-4", help="IPv4 address")
@click.option("--ipv6", "-6", help="IPv6 address")
def ns_register(hostname, ipv4, ipv6):
    """Create a glue host."""
    emit(get_registrar().register_nameserver(hostname, ipv4, ipv6))


@nameserver.command("modify")
@click.argument("hostname")
@click.option("--ipv4", "-4", help="IPv4 address")
@click.option("--ipv6", "-6", help="IPv6 address")
def ns_modify(hostname, ipv4, ipv6):
    """Replace the addresses of a glue host."""
    emit(get_registrar().modify_nameserver(hostname, ipv4, ipv6))


@nameserver.command("delete")
@click.argument("hostname")
@click.option("--confirm", "-y", is_flag=True, help="Skip confirmation")
def ns_delete(hostname, confirm):
    """Delete a glue host."""
    if not confirm:
        click.confirm(f"Delete nameserver {hostname}?", abort=True)
    emit(get_registrar().delete_nameserver(hostname))


# =============================================================================
# Audit Commands
# =============================================================================

@cli.group()
def audit():
    """DNS change audit trail."""
    pass


@audit.command("report")
@click.option("--days", "-d", type=int, default=30, help="Report period in days")
def audit_report(days):
    """Daily compliance summary of DNS changes and notices."""
    config = require_config()
    end = utcnow()
    rows = AuditLogger(jobs.build_engine(config)).compliance_report(end - timedelta(days=days), end)
    if not rows:
        state.formatter.info("No DNS changes in this period.")
        return
    state.formatter.output(rows)


@audit.command("missing-notices")
@click.option("--days", "-d", type=int, default=7, help="Look back this many days")
def audit_missing_notices(days):
    """Applied changes without a pre or post notice."""
    config = require_config()
    records = AuditLogger(jobs.build_engine(config)).changes_without_notifications(days)
    if not records:
        state.formatter.info("All applied changes were notified.")
        return
    state.formatter.output(records)


# =============================================================================
# Batch Jobs
# =============================================================================

@cli.group("jobs")
def jobs_group():
    """Cron entry points."""
    pass


@jobs_group.command("monitor")
def jobs_monitor():
    """Dispatch queued notifications, monitor DNS, purge old audit rows."""
    sys.exit(jobs.run_monitor(state.config))


@jobs_group.command("sync")
def jobs_sync():
    """Reconcile tracked domains with the registry."""
    sys.exit(jobs.run_sync(state.config))


# =============================================================================
# Entry Point
# =============================================================================

def main():
    """Main entry point."""
    try:
        cli()
    except EPPError as e:
        print_error(str(e))
        sys.exit(1)
    except KeyboardInterrupt:
        print("\nAborted.")
        sys.exit(130)
    except Exception as e:
        print_error(f"Unexpected error: {e}")
        sys.exit(1)


if __name__ == "__main__":
    main()

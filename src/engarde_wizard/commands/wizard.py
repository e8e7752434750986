"""Wizard command for provisioning and managing an engarde node.

This module provides the `engarde-wizard` command which checks the host,
provisions the server or client role, and opens the management console on
an already provisioned node.
"""

from __future__ import annotations

import sys
from dataclasses import dataclass
from pathlib import Path

import click
from rich.console import Console
from rich.table import Table

from ..config import ENGINES, MTU_RANGE, ProvisionConfig, load_config, parse_ipv4
from ..console import ACTION_LABELS, Action, ActionResult, ManagementConsole
from ..errors import InvalidInputError, MissingConfigError, WizardError
from ..provision import (
    InstallationState,
    InstallationStateDetector,
    PreconditionValidator,
    ProvisionResult,
    Provisioner,
    ServiceManager,
    SshPortMigration,
    allocate_ports,
    check_dependencies,
    detect_public_network,
    get_engine,
    load_bundle,
    read_marker,
)
from ..provision.ports import parse_port
from ..shared import Layout, NodeRole, RunLock, configure_logging
from ..shared.logging import get_logger, level_for_verbosity

console = Console()
logger = get_logger(__name__)

ENGINE_LABELS = {"go": "Go [Stable]", "rust": "Rust [Performance]"}


@dataclass
class WizardOptions:
    """Command-line inputs of one wizard run."""

    role: NodeRole | None = None
    manage: bool = False
    config_path: Path | None = None
    bundle_path: Path | None = None
    engine: str | None = None
    non_interactive: bool = False
    root: Path = Path("/")


@click.command()
@click.option(
    "--role",
    type=click.Choice([role.value for role in NodeRole]),
    default=None,
    help="Node role (prompted if not given)",
)
@click.option("--manage", is_flag=True, help="Open the management console directly")
@click.option(
    "-c",
    "--config",
    "config_path",
    type=click.Path(path_type=Path),
    default=None,
    help="Config file path",
)
@click.option(
    "--bundle",
    "bundle_path",
    type=click.Path(path_type=Path),
    default=None,
    help="Client bundle written by the server (client role)",
)
@click.option("--engine", type=click.Choice(ENGINES), default=None, help="Relay engine")
@click.option("--non-interactive", "-y", is_flag=True, help="Accept all defaults")
@click.option(
    "--root",
    type=click.Path(file_okay=False, path_type=Path),
    default="/",
    hidden=True,
    help="Filesystem root for all managed files",
)
@click.option("-v", "--verbose", count=True, help="Increase verbosity")
@click.option("--log-file", type=click.Path(path_type=Path), default=None, help="Also log to file")
@click.option("--json-logs", is_flag=True, help="Render logs as JSON")
@click.version_option(package_name="engarde-wizard")
def wizard(
    role: str | None,
    manage: bool,
    config_path: Path | None,
    bundle_path: Path | None,
    engine: str | None,
    non_interactive: bool,
    root: Path,
    verbose: int,
    log_file: Path | None,
    json_logs: bool,
) -> None:
    """Provision and manage an engarde + WireGuard node.

    On a fresh host the wizard provisions the chosen role. On a provisioned
    host it opens the management console.

    Examples:

        # Provision the VPS side
        engarde-wizard --role server

        # Provision the client from the bundle copied off the server
        engarde-wizard --role client --bundle ./engarde-client-bundle.yaml

        # Manage an existing installation
        engarde-wizard --manage
    """
    configure_logging(level_for_verbosity(verbose), log_file, json_logs)
    options = WizardOptions(
        role=NodeRole(role) if role else None,
        manage=manage,
        config_path=config_path,
        bundle_path=bundle_path,
        engine=engine,
        non_interactive=non_interactive,
        root=root,
    )
    try:
        run_wizard(options)
    except WizardError as e:
        logger.debug("wizard_failed", error=type(e).__name__)
        click.echo(f"✗ {e}", err=True)
        sys.exit(e.exit_code)


def run_wizard(options: WizardOptions) -> None:
    """Execute the full wizard flow."""
    # ── Step 1: Preconditions ──
    PreconditionValidator(os_release=options.root / "etc/os-release").validate()

    role = options.role or _choose_role(options)
    check_dependencies(role)
    layout = Layout(role, options.root)
    services = ServiceManager(layout.relay_unit_file.parent)

    with RunLock(layout.lock_file):
        # ── Step 2: Existing installation ──
        report = InstallationStateDetector(layout, services).detect()
        provisioned = report.state is InstallationState.PROVISIONED
        if options.manage and not provisioned:
            raise MissingConfigError(
                "This node is not provisioned; run engarde-wizard without --manage to provision it"
            )
        if provisioned:
            if not options.manage:
                click.echo("Installation detected, opening the management console.")
            _manage(layout, read_marker(layout), services, options)
            return
        if report.partial:
            click.echo("Partial installation detected, provisioning again from scratch.")

        # ── Step 3: Provision ──
        config = load_config(options.config_path, role)
        if options.engine:
            config = config.with_overrides(engine=options.engine)
        bundle = None
        if role is NodeRole.SERVER:
            config = _server_inputs(config, options)
        else:
            config, bundle = _client_inputs(config, layout, options)

        provisioner = Provisioner(layout, services=services, engine=get_engine(config.engine))
        result = provisioner.run(config, bundle)
        _print_summary(result)

        if role is NodeRole.SERVER:
            _offer_ssh_migration(layout, services, result, options)

        if not options.non_interactive:
            _manage(layout, result.config, services, options, provisioner)


def _choose_role(options: WizardOptions) -> NodeRole:
    if options.non_interactive:
        return load_config(options.config_path).role
    value = click.prompt(
        "Is this node the server (VPS) or the client?",
        type=click.Choice([role.value for role in NodeRole]),
        default=NodeRole.SERVER.value,
    )
    return NodeRole(value)


def _server_inputs(config: ProvisionConfig, options: WizardOptions) -> ProvisionConfig:
    """Fill in the server's network inputs, prompting unless non-interactive."""
    address, interface = config.public_address, config.public_interface
    if not (address and interface):
        detected = detect_public_network()
        address = address or detected.address
        interface = interface or detected.interface

    if options.non_interactive:
        if not address or not interface:
            raise InvalidInputError(
                "Could not detect the public address and interface; "
                "set public_address and public_interface in the config file"
            )
        return config.with_overrides(public_address=address, public_interface=interface)

    changes = {
        "engine": options.engine or _prompt_engine(config.engine),
        "public_address": click.prompt(
            "Public IPv4 address", default=address, value_proc=_ipv4_value
        ),
        "public_interface": click.prompt(
            "Public network interface", default=interface, value_proc=_interface_value
        ),
        "base_port": click.prompt(
            "Base port (tunnel; relay and web manager take the next two)",
            default=config.base_port,
            value_proc=_base_port_value(config),
        ),
        "mtu": click.prompt(
            "WireGuard MTU (the client uses the same value)",
            default=config.mtu,
            type=click.IntRange(*MTU_RANGE),
        ),
    }
    return config.with_overrides(**changes)


def _client_inputs(config: ProvisionConfig, layout: Layout, options: WizardOptions):
    """Locate the bundle and the engine for the client role."""
    bundle_path = options.bundle_path
    if bundle_path is None and not options.non_interactive:
        bundle_path = Path(
            click.prompt("Path to the client bundle from the server", default=str(layout.bundle))
        )
    bundle = load_bundle(bundle_path or layout.bundle)
    if not options.non_interactive and not options.engine:
        config = config.with_overrides(engine=_prompt_engine(config.engine))
    click.echo(f"Using bundle for server {bundle.server_endpoint} (MTU {bundle.mtu})")
    return config, bundle


def _prompt_engine(default: str) -> str:
    for index, name in enumerate(ENGINES, start=1):
        click.echo(f"  {index}) {ENGINE_LABELS[name]}")
    choice = click.prompt(
        "Which engarde version do you want to install?",
        type=click.IntRange(1, len(ENGINES)),
        default=ENGINES.index(default) + 1 if default in ENGINES else 1,
    )
    return ENGINES[choice - 1]


def _ipv4_value(value: str) -> str:
    try:
        return str(parse_ipv4(value, "IPv4 address"))
    except InvalidInputError as e:
        raise click.BadParameter(str(e)) from e


def _interface_value(value: str) -> str:
    value = value.strip()
    if not value or " " in value:
        raise click.BadParameter("Enter a network interface name such as eth0")
    return value


def _base_port_value(config: ProvisionConfig):
    def convert(value: str) -> int:
        try:
            port = parse_port(value)
            allocate_ports(
                port,
                reserved=frozenset({config.reserved_port}),
                port_range=config.port_range,
            )
        except InvalidInputError as e:
            raise click.BadParameter(str(e)) from e
        return port

    return convert


def _print_summary(result: ProvisionResult) -> None:
    table = Table(title=f"Provisioned {result.config.role.value}")
    table.add_column("Service")
    table.add_column("Port", justify="right")
    for name, port in result.ports.as_dict().items():
        table.add_row(name, str(port))
    console.print(table)

    if result.engine_downloaded:
        click.echo(f"✓ Installed the {result.config.engine} relay engine")
    restarted = ", ".join(result.restarted) or "nothing"
    click.echo(f"✓ {len(result.changed)} file(s) written, restarted: {restarted}")
    if result.bundle_path:
        click.echo(f"\nCopy {result.bundle_path} to the client and run:")
        click.echo(f"  engarde-wizard --role client --bundle {result.bundle_path.name}")


def _offer_ssh_migration(
    layout: Layout,
    services: ServiceManager,
    result: ProvisionResult,
    options: WizardOptions,
) -> None:
    port = result.ports.management_access
    if not layout.sshd_config.exists():
        return
    migration = SshPortMigration(layout.sshd_config, services)
    if not migration.needed(port):
        return
    if options.non_interactive:
        click.echo(f"SSH is not on port {port}; run the wizard interactively to move it.")
        return
    if click.confirm(f"Warning! SSH port will be changed to {port}. Proceed?", default=False):
        migration.apply(port)
        click.echo(f"✓ SSH now listens on port {port}. Reconnect with: ssh -p {port} ...")


def _manage(
    layout: Layout,
    config: ProvisionConfig,
    services: ServiceManager,
    options: WizardOptions,
    provisioner: Provisioner | None = None,
) -> None:
    management = ManagementConsole(layout, config, services, provisioner)
    if options.non_interactive:
        for action in (Action.STATUS_TUNNEL, Action.STATUS_RELAY):
            _, result = management.dispatch(action)
            _report(result)
        return
    state = management.run(_choose_action, _report)
    logger.info("console_closed", state=state.value)


def _choose_action(actions: list[Action]) -> Action:
    while True:
        click.echo("\nOptions:")
        for index, action in enumerate(actions, start=1):
            click.echo(f"  {index}) {ACTION_LABELS[action]}")
        choice = click.prompt("Select an option", type=click.IntRange(1, len(actions)))
        action = actions[choice - 1]
        if action is not Action.REMOVE or click.confirm(
            "This deletes every key and configuration file. Continue?", default=False
        ):
            return action


def _report(result: ActionResult) -> None:
    if result.status is None:
        click.echo(f"✓ {result.message}")
        return
    table = Table(show_header=True)
    table.add_column("Service")
    table.add_column("Enabled")
    table.add_column("Active")
    table.add_row(
        result.status.name,
        "[green]yes[/green]" if result.status.enabled else "[red]no[/red]",
        "[green]yes[/green]" if result.status.active else "[red]no[/red]",
    )
    console.print(table)
    if result.status.detail:
        console.print(result.status.detail, markup=False, highlight=False)

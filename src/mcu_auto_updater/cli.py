"""
MCU Auto-Updater CLI

Entry point for the scheduled update run plus the diagnostics used when
commissioning a host (version check, handshake probe, offline conversion).
"""

import json
import logging
import sys
from pathlib import Path
from typing import Optional

import typer
from rich.console import Console
from rich.panel import Panel
from rich.table import Table

from mcu_auto_updater.config import UpdaterConfig, DEFAULT_WORKDIR
from mcu_auto_updater.core.errors import UpdaterError
from mcu_auto_updater.core.messages import MessageLevel, WarningItem, errors_to_items
from mcu_auto_updater.core.results import Outcome, UpdateReport
from mcu_auto_updater.flash import get_converter
from mcu_auto_updater.orchestrator import UpdateOrchestrator
from mcu_auto_updater.protocol import HandshakeProtocol, SerialLink, list_serial_ports
from mcu_auto_updater.resolver import VersionResolver
from mcu_auto_updater.source import GitSource, LocalSource, SecureFetcher, describe_source
from mcu_auto_updater.targets import list_chips, list_interfaces
from mcu_auto_updater.utils.crypto import OpenSSLDecryptor
from mcu_auto_updater.utils.logging import setup_logging
from mcu_auto_updater.version_store import FileVersionStore

logger = logging.getLogger("mcu_auto_updater")

console = Console()

app = typer.Typer(help="🔧 MCU Auto-Updater - version check, handshake and SWD flash")

ENV_PREFIX = "MCU_UPDATER_"


def print_header(text: str) -> None:
    """Print fancy header."""
    console.print(Panel(text, expand=False, style="bold blue"))


def print_success(text: str) -> None:
    console.print(f"✓ {text}", style="green")


def print_warning(text: str) -> None:
    console.print(f"⚠️  {text}", style="yellow")


def print_error(text: str) -> None:
    console.print(f"❌ {text}", style="red")


def print_structured_warning(warning: WarningItem, verbose: bool = False) -> None:
    """Print a structured warning with optional remediation."""
    styles = {
        MessageLevel.ERROR: "red",
        MessageLevel.WARN: "yellow",
        MessageLevel.INFO: "blue",
    }
    console.print(warning.to_cli_string(verbose=verbose), style=styles.get(warning.level, ""))


def print_report(report: UpdateReport, verbose: bool = False) -> None:
    """Render a run report as a table plus structured warnings."""
    table = Table(title="Update Run")
    table.add_column("Property", style="cyan")
    table.add_column("Value", style="green")

    table.add_row("Outcome", report.outcome.value)
    table.add_row("Remote version", str(report.remote_version))
    table.add_row("Local version", str(report.local_version))
    if report.image_path:
        table.add_row("Image", report.image_path)
    if report.wait_seconds is not None:
        source = "device ack" if report.acked else "default (no ack)"
        table.add_row("Wait", f"{report.wait_seconds}s ({source})")
    if report.metadata.get("command"):
        table.add_row("Programmer", " ".join(report.metadata["command"]))
    if not report.ok:
        table.add_row("Failed stage", report.stage)
        table.add_row("Exit code", str(report.exit_code))
    console.print(table)

    for item in report.warnings + errors_to_items(report.errors):
        print_structured_warning(item, verbose=verbose)


def _config(ctx: typer.Context) -> UpdaterConfig:
    return ctx.obj["config"]


@app.callback()
def main_options(
    ctx: typer.Context,
    workdir: Path = typer.Option(
        DEFAULT_WORKDIR, "--workdir", "-w", envvar=f"{ENV_PREFIX}WORKDIR",
        help="Directory holding the repo checkout, key and version file",
    ),
    repo_dir: Optional[Path] = typer.Option(
        None, "--repo", envvar=f"{ENV_PREFIX}REPO", help="Distribution checkout (default: <workdir>/Orion-Software-Pack)",
    ),
    key_file: Optional[Path] = typer.Option(
        None, "--key-file", envvar=f"{ENV_PREFIX}KEY_FILE", help="Passphrase file (default: <workdir>/key_hsio.bin)",
    ),
    version_file: Optional[Path] = typer.Option(
        None, "--version-file", envvar=f"{ENV_PREFIX}VERSION_FILE", help="Persisted version file",
    ),
    port: Optional[str] = typer.Option(
        None, "--port", "-p", envvar=f"{ENV_PREFIX}PORT", help="Serial port (default /dev/serial0)",
    ),
    baudrate: Optional[int] = typer.Option(None, "--baud", envvar=f"{ENV_PREFIX}BAUD", help="Serial baud rate"),
    interface: Optional[str] = typer.Option(
        None, "--interface", envvar=f"{ENV_PREFIX}INTERFACE", help="Debug interface name (see 'targets')",
    ),
    chip: Optional[str] = typer.Option(
        None, "--chip", envvar=f"{ENV_PREFIX}CHIP", help="Target chip profile (see 'targets')",
    ),
    converter: Optional[str] = typer.Option(
        None, "--converter", envvar=f"{ENV_PREFIX}CONVERTER", help="UF2 converter: native or uf2conv",
    ),
    sudo: Optional[bool] = typer.Option(
        None, "--sudo/--no-sudo", envvar=f"{ENV_PREFIX}SUDO", help="Run OpenOCD through sudo",
    ),
    pull: Optional[bool] = typer.Option(
        None, "--pull/--no-pull", envvar=f"{ENV_PREFIX}PULL", help="git pull the distribution before checking",
    ),
    digest: Optional[str] = typer.Option(
        None, "--digest", envvar=f"{ENV_PREFIX}DIGEST", help="Key derivation digest: sha256 (OpenSSL >= 1.1) or md5",
    ),
    announce_timeout: Optional[float] = typer.Option(
        None, "--announce-timeout", envvar=f"{ENV_PREFIX}ANNOUNCE_TIMEOUT", help="Seconds to wait for an ACK",
    ),
    default_wait: Optional[int] = typer.Option(
        None, "--default-wait", envvar=f"{ENV_PREFIX}DEFAULT_WAIT", help="Wait used when the device never acks",
    ),
    verbose: bool = typer.Option(False, "--verbose", "-v", help="Debug logging (includes serial traffic)"),
    log_file: Optional[str] = typer.Option(
        None, "--log-file", envvar=f"{ENV_PREFIX}LOG_FILE", help="Also log to a rotating file",
    ),
) -> None:
    """Global options shared by every command."""
    setup_logging(verbose=verbose, log_file=log_file)
    try:
        config = UpdaterConfig.from_workdir(
            workdir,
            repo_dir=repo_dir,
            key_file=key_file,
            version_file=version_file,
            serial_port=port,
            baudrate=baudrate,
            interface=interface,
            chip=chip,
            converter=converter,
            use_sudo=sudo,
            pull=pull,
            digest=digest,
            announce_timeout=announce_timeout,
            default_wait=default_wait,
        )
        config.validate()
    except ValueError as e:
        raise typer.BadParameter(str(e))
    ctx.obj = {"config": config, "verbose": verbose}


@app.command()
def run(
    ctx: typer.Context,
    dry_run: bool = typer.Option(False, "--dry-run", help="Resolve, unpack and convert only"),
    output_json: bool = typer.Option(False, "--json", "-j", help="Output report as JSON"),
) -> None:
    """Run the full update pipeline (what the scheduler invokes)."""
    config = _config(ctx)
    try:
        orchestrator = UpdateOrchestrator.from_config(config, dry_run=dry_run)
    except ValueError as e:
        raise typer.BadParameter(str(e))

    report = orchestrator.run()
    logger.info(report.to_summary())

    if output_json:
        console.print_json(json.dumps(report.to_dict()))
    else:
        print_report(report, verbose=ctx.obj["verbose"])
        if report.ok and report.outcome == Outcome.UPDATED:
            print_success(f"Device updated to version {report.remote_version}")
        elif report.ok:
            print_success("Nothing to do" if report.outcome == Outcome.NO_UPDATE else "Dry run complete")
        else:
            print_error(f"Update failed at {report.stage}")

    raise typer.Exit(code=report.exit_code)


@app.command()
def check(
    ctx: typer.Context,
    output_json: bool = typer.Option(False, "--json", "-j", help="Output as JSON"),
) -> None:
    """Compare remote and local versions without touching the device."""
    config = _config(ctx)
    source = GitSource(config.repo_dir, config.git_remote, config.git_branch) if config.pull else LocalSource(config.repo_dir)
    fetcher = SecureFetcher(
        source,
        OpenSSLDecryptor(config.key_file, config.digest),
        version_artifact=config.version_artifact,
        package_artifact=config.package_artifact,
    )
    resolver = VersionResolver(fetcher, FileVersionStore(config.version_file))

    try:
        resolution = resolver.resolve()
    except UpdaterError as e:
        print_error(f"{e.code}: {e}")
        raise typer.Exit(code=e.exit_code)

    if output_json:
        console.print_json(json.dumps({
            "should_update": resolution.should_update,
            "remote_version": resolution.remote_version,
            "local_version": resolution.local_version,
            "warnings": [w.to_dict() for w in resolution.warnings],
        }))
        return

    print_header("Version Check")
    table = Table()
    table.add_column("Source", style="cyan")
    table.add_column("Version", style="green")
    table.add_row("Remote", str(resolution.remote_version))
    table.add_row("Local", str(resolution.local_version))
    console.print(table)
    for item in resolution.warnings:
        print_structured_warning(item, verbose=ctx.obj["verbose"])

    if resolution.should_update:
        print_warning(f"Update available: {resolution.local_version} → {resolution.remote_version}")
    else:
        print_success("Device is up to date")


@app.command()
def status(ctx: typer.Context) -> None:
    """Show effective configuration and the persisted version."""
    config = _config(ctx)
    print_header("Updater Status")

    try:
        persisted = FileVersionStore(config.version_file).read()
        persisted_text = "none (first run)" if persisted is None else str(persisted)
    except UpdaterError as e:
        persisted_text = f"[red]{e}[/red]"

    table = Table(title="Configuration")
    table.add_column("Setting", style="cyan")
    table.add_column("Value", style="green")
    table.add_row("Persisted version", persisted_text)
    source = GitSource(config.repo_dir, config.git_remote, config.git_branch) if config.pull else LocalSource(config.repo_dir)
    table.add_row("Source", describe_source(source) or str(config.repo_dir))
    for key, value in config.to_dict().items():
        table.add_row(key, str(value))
    console.print(table)


@app.command()
def handshake(
    ctx: typer.Context,
    version: int = typer.Option(..., "--version", help="Version number to announce"),
    wait: bool = typer.Option(False, "--wait", help="Also sleep the negotiated delay"),
) -> None:
    """Announce an update to the device and report the negotiated delay (no flash)."""
    config = _config(ctx)
    print_header("Handshake Probe")
    console.print(f"Port: {config.serial_port} @ {config.baudrate}")

    protocol = HandshakeProtocol(
        SerialLink(config.serial_port, config.baudrate, config.read_timeout),
        announce_timeout=config.announce_timeout,
        read_timeout=config.read_timeout,
        retry_interval=config.retry_interval,
        default_wait=config.default_wait,
    )
    try:
        session = protocol.negotiate(version)
        if wait:
            protocol.wait(session)
    except UpdaterError as e:
        print_error(f"{e.code}: {e}")
        raise typer.Exit(code=e.exit_code)

    table = Table(title="Handshake")
    table.add_column("Property", style="cyan")
    table.add_column("Value", style="green")
    table.add_row("State", session.state.value)
    table.add_row("Announcements", str(session.attempts))
    table.add_row("Acked", str(session.acked))
    table.add_row("Wait", f"{session.wait_seconds}s")
    console.print(table)

    if session.acked:
        print_success("Device acknowledged")
    else:
        print_warning("No acknowledgment; default wait applies")


@app.command()
def convert(
    ctx: typer.Context,
    image: Path = typer.Argument(..., help="UF2 image to convert"),
    out: Optional[Path] = typer.Option(None, "--out", "-o", help="Output BIN (default: image with .bin suffix)"),
) -> None:
    """Convert a UF2 image to a flat binary offline."""
    config = _config(ctx)
    if not image.exists():
        print_error(f"File not found: {image}")
        raise typer.Exit(code=1)

    output = out or image.with_suffix(".bin")
    try:
        converted = get_converter(config.converter).convert(image, output)
    except ValueError as e:
        raise typer.BadParameter(str(e))
    except UpdaterError as e:
        print_error(f"{e.code}: {e}")
        raise typer.Exit(code=e.exit_code)

    base = f"0x{converted.base_address:08X}" if converted.base_address is not None else "unknown"
    print_success(f"Wrote {converted.size:,} bytes to {converted.path} (base {base})")


@app.command()
def targets() -> None:
    """List known debug interfaces and chip profiles."""
    table = Table(title="Debug Interfaces")
    table.add_column("Name", style="cyan")
    table.add_column("Driver", style="green")
    table.add_column("Description")
    for iface in list_interfaces():
        table.add_row(iface.name, iface.driver, iface.description)
    console.print(table)

    table = Table(title="Chip Profiles")
    table.add_column("Name", style="cyan")
    table.add_column("OpenOCD target", style="green")
    table.add_column("Description")
    for profile in list_chips():
        table.add_row(profile.name, profile.target_script, profile.description)
    console.print(table)


@app.command()
def ports() -> None:
    """List available serial ports."""
    found = list_serial_ports()
    if not found:
        print_warning("No serial ports found")
        return

    table = Table(title="Serial Ports")
    table.add_column("Device", style="cyan")
    table.add_column("Description", style="green")
    table.add_column("HWID", style="dim")
    for info in found:
        table.add_row(info.device, info.description or "", info.hwid or "")
    console.print(table)


def main() -> None:
    """Main entry point."""
    try:
        app()
    except KeyboardInterrupt:
        console.print("\n[yellow]Operation cancelled by user[/yellow]")
        sys.exit(130)


if __name__ == "__main__":
    main()

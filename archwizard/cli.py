# archwizard/cli.py
import os
from functools import partial
from pathlib import Path
from typing import Optional

import typer
from pydantic import ValidationError
from rich.table import Table

from archwizard import core, planner
from archwizard.config.models import Credentials, InstallerConfig
from archwizard.controller import InstallController
from archwizard.desktops import available_desktops, lookup_desktop
from archwizard.host import install_host_dependencies
from archwizard.inventory import SystemInventory
from archwizard.models import BootMode, InstallMode, InstallPlan
from archwizard.utils.exceptions import InstallerError
from archwizard.utils.executor import Executor
from archwizard.workers.events import EventKind, WorkerEvent

app = typer.Typer(
    help="Unattended Arch Linux installer: inspect drives, prepare a target and install the system.",
    no_args_is_help=True,
)


class AppState:
    """Objects shared by every command, built once by the callback."""

    def __init__(self, config: InstallerConfig, executor: Executor):
        self.config = config
        self.executor = executor
        self.logger = executor.logger
        self.inventory = SystemInventory(executor, config.execution.device_poll_interval)
        self.controller = InstallController(config, executor, self.inventory)


def _privilege_wrapper(config: InstallerConfig) -> Optional[str]:
    """No wrapper is needed when already running as root."""
    if os.geteuid() == 0:
        return None
    return config.execution.privilege_wrapper


@app.callback()
def main_callback(
    ctx: typer.Context,
    config_path: Path = typer.Option(Path("config.toml"), "--config", "-c", help="TOML configuration file."),
    verbose: bool = typer.Option(False, "--verbose", "-v", help="Show debug output on the console."),
):
    try:
        config = InstallerConfig.load(config_path)
    except (ValueError, ValidationError) as e:
        raise typer.BadParameter(str(e), param_hint="--config")

    logger = core.setup_app_logger(config.paths.log_directory, config.paths.log_file_name, verbose)
    executor = Executor(
        logger_instance=logger,
        default_timeout=config.execution.command_timeout,
        chroot_path=config.paths.mount_root,
        privilege_wrapper=_privilege_wrapper(config),
    )
    ctx.obj = AppState(config, executor)


def _build_plan(state: AppState, mode: Optional[InstallMode], boot: Optional[BootMode],
                drive: Optional[str], partition: Optional[str]) -> InstallPlan:
    try:
        return state.config.build_plan(mode, boot, drive, partition)
    except (ValueError, ValidationError) as e:
        state.logger.error(f"Invalid installation choices: {e}")
        raise typer.Exit(code=2)


def _report_event(state: AppState, event: WorkerEvent) -> None:
    """Log events are already mirrored to the logger by the worker; only the outcome is printed here."""
    if event.kind is EventKind.ERROR:
        stage = event.stage.label if event.stage else "Run"
        state.logger.console.print(f"[bold red]✘ {stage} failed:[/bold red] {event.text}")
    elif event.kind is EventKind.COMPLETE:
        state.logger.console.print("[bold green]✔ Completed successfully[/bold green]")


# --- Inspection commands ---

@app.command()
def drives(ctx: typer.Context):
    """List the whole-disk drives on this machine."""
    state: AppState = ctx.obj
    table = Table(title="Drives")
    table.add_column("Device", style="cyan")
    table.add_column("Size (MiB)", justify="right")
    table.add_column("Table")
    table.add_column("Partitions", justify="right")
    for drive in state.inventory.list_drives():
        table.add_row(drive.path, str(drive.size_mib), drive.table_type.value, str(len(drive.partitions)))
    state.logger.console.print(table)


@app.command()
def partitions(ctx: typer.Context, drive: str = typer.Argument(..., help="Drive name or path, e.g. sda.")):
    """List the partitions and free space of DRIVE."""
    state: AppState = ctx.obj
    snapshot = state.inventory.snapshot(drive, with_free_space=True)

    table = Table(title=f"{snapshot.path} ({snapshot.table_type.value}, {snapshot.size_mib} MiB)")
    table.add_column("Device", style="cyan")
    table.add_column("#", justify="right")
    table.add_column("Start (MiB)", justify="right")
    table.add_column("Size (MiB)", justify="right")
    table.add_column("Filesystem")
    table.add_column("Flags")
    table.add_column("Mounted on")
    for part in snapshot.partitions:
        table.add_row(
            part.path,
            str(part.number) if part.number is not None else "?",
            str(part.start_mib),
            str(part.size_mib),
            part.fstype or "",
            part.flags or ("esp" if part.is_esp else ""),
            part.mountpoint or "",
        )
    for region in snapshot.free_regions:
        table.add_row("[dim]free[/dim]", "", f"{region.start_mib:g}", f"{region.size_mib:g}", "", "", "")
    state.logger.console.print(table)


@app.command()
def plan(
    ctx: typer.Context,
    mode: Optional[InstallMode] = typer.Option(None, "--mode", "-m", case_sensitive=False),
    boot: Optional[BootMode] = typer.Option(None, "--boot", "-b", case_sensitive=False),
    drive: Optional[str] = typer.Option(None, "--drive", "-d"),
    partition: Optional[str] = typer.Option(None, "--partition", "-p"),
):
    """Show the partition operations an installation would perform, without changing anything."""
    state: AppState = ctx.obj
    install_plan = _build_plan(state, mode, boot, drive, partition)
    drive_name = install_plan.drive or state.inventory.parent_drive(install_plan.partition)
    if not drive_name:
        state.logger.error(f"Cannot find the drive holding {install_plan.partition_path}")
        raise typer.Exit(code=1)

    snapshot = state.inventory.snapshot(drive_name, with_free_space=install_plan.mode is InstallMode.USE_FREE_SPACE)
    try:
        result = planner.plan(install_plan, snapshot)
    except InstallerError as e:
        state.logger.error(str(e))
        raise typer.Exit(code=1)

    typer.echo(state.config.display_summary(install_plan))
    for number, line in enumerate(result.describe(), start=1):
        typer.echo(f"  {number}. {line}")


# --- Installation commands ---

@app.command()
def prepare(
    ctx: typer.Context,
    mode: Optional[InstallMode] = typer.Option(None, "--mode", "-m", case_sensitive=False),
    boot: Optional[BootMode] = typer.Option(None, "--boot", "-b", case_sensitive=False),
    drive: Optional[str] = typer.Option(None, "--drive", "-d"),
    partition: Optional[str] = typer.Option(None, "--partition", "-p"),
    yes: bool = typer.Option(False, "--yes", "-y", help="Do not ask for confirmation."),
):
    """Partition, format and mount the target drive."""
    state: AppState = ctx.obj
    install_plan = _build_plan(state, mode, boot, drive, partition)
    typer.echo(state.config.display_summary(install_plan))
    if not yes:
        typer.confirm("Partitions on the target will be modified. Continue?", abort=True)

    if not state.controller.prepare_disk(install_plan, partial(_report_event, state)):
        raise typer.Exit(code=1)


@app.command()
def install(
    ctx: typer.Context,
    mode: Optional[InstallMode] = typer.Option(None, "--mode", "-m", case_sensitive=False),
    boot: Optional[BootMode] = typer.Option(None, "--boot", "-b", case_sensitive=False),
    drive: Optional[str] = typer.Option(None, "--drive", "-d"),
    partition: Optional[str] = typer.Option(None, "--partition", "-p"),
    desktop: Optional[str] = typer.Option(None, "--desktop", help=f"One of: {', '.join(available_desktops())}."),
    username: Optional[str] = typer.Option(None, "--username", "-u"),
    yes: bool = typer.Option(False, "--yes", "-y", help="Do not ask for confirmation."),
):
    """Prepare the target drive, then install and configure the system on it."""
    state: AppState = ctx.obj
    install_plan = _build_plan(state, mode, boot, drive, partition)

    desktop = desktop or state.config.install.desktop or typer.prompt("Desktop environment", default="GNOME")
    try:
        profile = lookup_desktop(desktop)
    except InstallerError as e:
        raise typer.BadParameter(str(e), param_hint="--desktop")

    username = username or state.config.install.username or typer.prompt("Username")
    password = typer.prompt(f"Password for {username}", hide_input=True, confirmation_prompt=True)
    root_password = typer.prompt("Password for root", hide_input=True, confirmation_prompt=True)
    try:
        credentials = Credentials(username=username, password=password, root_password=root_password)
    except ValidationError as e:
        state.logger.error(f"Invalid account details: {e}")
        raise typer.Exit(code=2)

    typer.echo(state.config.display_summary(install_plan))
    typer.echo(f"  Desktop:            {profile.name}\n  User:               {credentials.username}\n")
    if not yes:
        typer.confirm("Partitions on the target will be modified and the system installed. Continue?", abort=True)

    report = partial(_report_event, state)
    if not state.controller.prepare_disk(install_plan, report):
        raise typer.Exit(code=1)
    if not state.controller.install_system(install_plan, credentials, profile.name, report):
        raise typer.Exit(code=1)


@app.command()
def deps(ctx: typer.Context):
    """Install the tools the installer needs on this (live) system."""
    state: AppState = ctx.obj
    try:
        install_host_dependencies(state.executor)
    except InstallerError as e:
        state.logger.error(str(e))
        raise typer.Exit(code=1)

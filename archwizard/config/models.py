# archwizard/config/models.py

from pathlib import Path
from typing import List, Optional

import tomlkit
import typer
from pydantic import BaseModel, Field, SecretStr, field_validator

from archwizard.models import BootMode, InstallMode, InstallPlan

USERNAME_PATTERN = r"^[a-z_][a-z0-9_-]{0,31}$"
HOSTNAME_PATTERN = r"^[A-Za-z0-9][A-Za-z0-9-]{0,62}$"

# --- 1. Sub-Models ---

class Paths(BaseModel):
    """Locations on the live system."""
    mount_root: str = "/mnt"
    iso_path: str = "/tmp/archlinux.iso"
    bootstrap_url: str = "https://geo.mirror.pkgbuild.com/iso/latest/archlinux-bootstrap-x86_64.tar.zst"
    bootstrap_archive: str = "/tmp/archlinux-bootstrap-x86_64.tar.zst"
    log_directory: str = "logs"
    log_file_name: str = "archwizard.log"


class Execution(BaseModel):
    """How commands are run and waited on."""
    privilege_wrapper: Optional[str] = "sudo"
    command_timeout: Optional[float] = Field(None, gt=0, description="Seconds; unset means no limit.")
    device_wait_timeout: float = Field(10.0, gt=0)
    device_poll_interval: float = Field(1.0, gt=0)
    event_queue_size: int = Field(1024, ge=1)

    @field_validator("privilege_wrapper")
    @classmethod
    def _empty_wrapper_is_none(cls, value: Optional[str]) -> Optional[str]:
        if value is None:
            return None
        return value.strip() or None


class System(BaseModel):
    """Properties of the installed system."""
    hostname: str = Field("archlinux", pattern=HOSTNAME_PATTERN)
    locale: str = "en_US.UTF-8"
    timezone: str = "UTC"
    admin_group: str = "wheel"
    base_packages: List[str] = Field(default_factory=lambda: ["base", "linux", "linux-firmware", "sudo", "networkmanager"])
    services: List[str] = Field(default_factory=lambda: ["NetworkManager"])
    mirror: str = "https://geo.mirror.pkgbuild.com/$repo/os/$arch"


class Install(BaseModel):
    """Optional preset answers; command-line options take precedence."""
    mode: Optional[InstallMode] = None
    boot_mode: Optional[BootMode] = None
    drive: Optional[str] = None
    partition: Optional[str] = None
    desktop: Optional[str] = None
    username: Optional[str] = Field(None, pattern=USERNAME_PATTERN)


class Credentials(BaseModel):
    """Account details for the installed system. Passwords never leave SecretStr until chpasswd."""
    username: str = Field(pattern=USERNAME_PATTERN)
    password: SecretStr
    root_password: SecretStr

    @field_validator("password", "root_password")
    @classmethod
    def _not_empty(cls, value: SecretStr) -> SecretStr:
        if not value.get_secret_value():
            raise ValueError("password must not be empty")
        return value


# --- 2. Top-Level Root Model ---

class InstallerConfig(BaseModel):
    """The top-level configuration model representing the entire config.toml file."""

    paths: Paths = Field(default_factory=Paths)
    execution: Execution = Field(default_factory=Execution)
    system: System = Field(default_factory=System)
    install: Install = Field(default_factory=Install)

    @classmethod
    def load_config_from_file(cls, path: Path) -> 'InstallerConfig':
        """Loads and validates a TOML file against the Pydantic schema."""
        try:
            content = path.read_text(encoding="utf-8")
        except Exception as e:
            raise ValueError(f"Error reading configuration file: {e}")

        try:
            data = tomlkit.parse(content)
        except Exception as e:
            raise ValueError(f"Invalid TOML format in file: {e}")

        # The cls(**data) call instantiates the model and runs validation
        return cls(**data.unwrap())

    @classmethod
    def load(cls, path: Optional[Path]) -> 'InstallerConfig':
        """Defaults when no file is given or the file does not exist."""
        if path is None or not path.exists():
            return cls()
        return cls.load_config_from_file(path)

    def build_plan(self, mode: Optional[InstallMode] = None, boot_mode: Optional[BootMode] = None,
                   drive: Optional[str] = None, partition: Optional[str] = None) -> InstallPlan:
        """Merges explicit choices over the [install] presets into an immutable InstallPlan."""
        mode = mode or self.install.mode
        boot_mode = boot_mode or self.install.boot_mode
        if mode is None or boot_mode is None:
            raise ValueError("installation mode and boot mode must both be chosen")
        return InstallPlan(
            mode=mode,
            boot_mode=boot_mode,
            drive=drive or self.install.drive,
            partition=partition or self.install.partition,
        )

    def display_summary(self, plan: Optional[InstallPlan] = None) -> str:
        """Generates the summary shown before anything is written to disk."""
        s = typer.style("\nGENERAL CONFIGURATION SUMMARY", fg=typer.colors.BLUE, bold=True) + "\n"
        s += "----------------------------------------\n"
        s += f"  Hostname:           {self.system.hostname}\n"
        s += f"  Locale / Timezone:  {self.system.locale} / {self.system.timezone}\n"
        s += f"  Mount root:         {self.paths.mount_root}\n"
        s += f"  Base packages:      {', '.join(self.system.base_packages)}\n"
        s += f"  Services:           {', '.join(self.system.services) or 'None'}\n"

        if plan is not None:
            s += typer.style("\nDISK PLAN", fg=typer.colors.BLUE, bold=True) + "\n"
            s += "----------------------------------------\n"
            action = typer.style("WIPING", fg=typer.colors.RED) if plan.mode is InstallMode.WIPE_DRIVE else plan.mode.value
            s += f"  Mode:               {action}\n"
            s += f"  Boot:               {plan.boot_mode.value.upper()}\n"
            if plan.drive:
                s += f"  Drive:              {typer.style(plan.drive_path, fg=typer.colors.CYAN)}\n"
            if plan.partition:
                s += f"  Partition:          {typer.style(plan.partition_path, fg=typer.colors.CYAN)}\n"

        return s

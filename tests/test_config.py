import pytest
from pydantic import SecretStr, ValidationError

from archwizard.config.models import Credentials, InstallerConfig
from archwizard.desktops import available_desktops, lookup_desktop
from archwizard.models import BootMode, InstallMode
from archwizard.utils.exceptions import ResourceNotFoundError

# ======= Execute with: pytest tests/test_config.py ========

CONFIG_TOML = """
[paths]
mount_root = "/target"

[execution]
privilege_wrapper = ""
command_timeout = 3600
event_queue_size = 64

[system]
hostname = "workstation"
timezone = "Europe/Amsterdam"
base_packages = ["base", "linux", "linux-firmware"]

[install]
mode = "wipe"
boot_mode = "efi"
drive = "nvme0n1"
desktop = "XFCE"
"""

# ----------------------------------------------------------------------
# --- Loading ---
# ----------------------------------------------------------------------

def test_load_config_from_file(tmp_path):
    path = tmp_path / "config.toml"
    path.write_text(CONFIG_TOML, encoding="utf-8")

    config = InstallerConfig.load_config_from_file(path)

    assert config.paths.mount_root == "/target"
    assert config.execution.privilege_wrapper is None
    assert config.execution.command_timeout == 3600
    assert config.execution.event_queue_size == 64
    assert config.system.hostname == "workstation"
    assert config.system.base_packages == ["base", "linux", "linux-firmware"]
    # untouched sections keep their defaults
    assert config.system.locale == "en_US.UTF-8"
    assert config.install.mode is InstallMode.WIPE_DRIVE
    assert config.install.boot_mode is BootMode.EFI

def test_load_missing_file_gives_defaults(tmp_path):
    config = InstallerConfig.load(tmp_path / "absent.toml")
    assert config.paths.mount_root == "/mnt"
    assert config.execution.privilege_wrapper == "sudo"
    assert config.execution.command_timeout is None
    assert InstallerConfig.load(None) == config

def test_invalid_toml(tmp_path):
    path = tmp_path / "config.toml"
    path.write_text("[paths\nmount_root = ", encoding="utf-8")
    with pytest.raises(ValueError, match="Invalid TOML"):
        InstallerConfig.load_config_from_file(path)

def test_unreadable_file(tmp_path):
    with pytest.raises(ValueError, match="Error reading configuration file"):
        InstallerConfig.load_config_from_file(tmp_path)

@pytest.mark.parametrize("toml", [
    '[system]\nhostname = "bad_host!"\n',
    '[execution]\ncommand_timeout = 0\n',
    '[install]\nmode = "dualboot"\n',
    '[install]\nusername = "Root User"\n',
])
def test_invalid_values_are_rejected(tmp_path, toml):
    path = tmp_path / "config.toml"
    path.write_text(toml, encoding="utf-8")
    with pytest.raises(ValidationError):
        InstallerConfig.load_config_from_file(path)

# ----------------------------------------------------------------------
# --- Building the install plan ---
# ----------------------------------------------------------------------

def test_build_plan_prefers_explicit_choices():
    config = InstallerConfig(install={"mode": "wipe", "boot_mode": "bios", "drive": "sda"})

    plan = config.build_plan(boot_mode=BootMode.EFI, drive="sdb")

    assert plan.mode is InstallMode.WIPE_DRIVE
    assert plan.boot_mode is BootMode.EFI
    assert plan.drive_path == "/dev/sdb"

def test_build_plan_requires_mode_and_boot():
    with pytest.raises(ValueError, match="must both be chosen"):
        InstallerConfig().build_plan(drive="sda")

def test_build_plan_validates_target():
    with pytest.raises(ValidationError):
        InstallerConfig().build_plan(InstallMode.USE_PARTITION, BootMode.BIOS, drive="sda")

def test_display_summary_mentions_plan():
    config = InstallerConfig()
    plan = config.build_plan(InstallMode.USE_PARTITION, BootMode.BIOS, partition="sda3")

    summary = config.display_summary(plan)

    assert "archlinux" in summary
    assert "/dev/sda3" in summary
    assert "BIOS" in summary

# ----------------------------------------------------------------------
# --- Credentials and desktops ---
# ----------------------------------------------------------------------

def test_credentials_hide_passwords():
    credentials = Credentials(username="alice", password="s3cret", root_password="r00t")
    assert isinstance(credentials.password, SecretStr)
    assert "s3cret" not in repr(credentials)
    assert credentials.root_password.get_secret_value() == "r00t"

@pytest.mark.parametrize("fields", [
    {"username": "alice", "password": "", "root_password": "x"},
    {"username": "Alice", "password": "x", "root_password": "x"},
    {"username": "9lives", "password": "x", "root_password": "x"},
])
def test_credentials_validation(fields):
    with pytest.raises(ValidationError):
        Credentials(**fields)

def test_desktop_lookup_is_case_insensitive():
    assert lookup_desktop("  kde PLASMA ").display_manager == "sddm"
    assert lookup_desktop("GNOME").packages == ("gnome", "gnome-shell")
    assert "XFCE" in available_desktops()

def test_unknown_desktop():
    with pytest.raises(ResourceNotFoundError, match="Unknown desktop environment"):
        lookup_desktop("Enlightenment")

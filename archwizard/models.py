# archwizard/models.py
"""
Value objects shared by the inventory, the planner and the workers.

Drive and Partition are immutable snapshots of what lsblk/parted reported at
query time. InstallPlan is fixed before any worker starts and never changes
afterwards. All MiB values are derived from bytes and truncated.
"""

import re
from enum import Enum
from typing import Optional, Tuple

from pydantic import BaseModel, ConfigDict, model_validator

MIB = 1024 * 1024
# lsblk reports START in 512-byte units regardless of the device's logical sector size
LSBLK_SECTOR_SIZE = 512

BIOS_BOOT_GUID = "21686148-6449-6e6f-744e-656564454649"
ESP_GUID = "c12a7328-f81f-11d2-ba4b-00a0c93ec93b"
ESP_MBR_TYPE = "0xef"

_PARTITION_NAME_RE = re.compile(r"^(?P<disk>.*?[a-z])(?:p)?(?P<number>\d+)$")
_DISK_WITH_DIGIT_RE = re.compile(r"^(?P<disk>.*\d)p(?P<number>\d+)$")


def bytes_to_mib(value: int) -> int:
    """Truncating bytes -> MiB conversion."""
    return value // MIB


def device_path(name: str) -> str:
    """'sda' -> '/dev/sda'; paths are returned unchanged."""
    return name if name.startswith("/dev/") else f"/dev/{name}"


def device_name(path: str) -> str:
    """'/dev/sda' -> 'sda'."""
    return path[len("/dev/"):] if path.startswith("/dev/") else path


def partition_number_from_name(name: str) -> Optional[int]:
    """
    Trailing partition index of a kernel device name: sda3 -> 3, nvme0n1p2 -> 2,
    mmcblk0p1 -> 1. Names without a recognisable index give None.
    """
    name = device_name(name)
    match = _DISK_WITH_DIGIT_RE.match(name) or _PARTITION_NAME_RE.match(name)
    if not match:
        return None
    return int(match.group("number"))


def partition_path(drive: str, number: int) -> str:
    """Device path of partition `number` on `drive`; nvme and mmc devices take a 'p' separator."""
    drive = device_path(drive)
    separator = "p" if drive[-1].isdigit() else ""
    return f"{drive}{separator}{number}"


class BootMode(str, Enum):
    BIOS = "bios"
    EFI = "efi"


class InstallMode(str, Enum):
    WIPE_DRIVE = "wipe"
    USE_PARTITION = "partition"
    USE_FREE_SPACE = "free"


class TableType(str, Enum):
    GPT = "gpt"
    DOS = "dos"
    UNKNOWN = "unknown"

    @classmethod
    def parse(cls, value: str) -> "TableType":
        value = value.strip().lower()
        if value == "gpt":
            return cls.GPT
        if value in ("dos", "msdos", "mbr"):
            return cls.DOS
        return cls.UNKNOWN


class PartitionRole(str, Enum):
    """What a partition is for in the finished layout."""
    ROOT = "root"
    BOOT = "boot"
    ESP = "esp"
    BIOS_BOOT = "bios_boot"


class Stage(str, Enum):
    IDLE = "idle"
    PREPARING = "preparing"
    FORMATTING = "formatting"
    MOUNTING = "mounting"
    BOOTSTRAPPING = "bootstrapping"
    INSTALLING_BASE = "installing_base"
    CONFIGURING_SYSTEM = "configuring_system"
    INSTALLING_BOOTLOADER = "installing_bootloader"
    INSTALLING_DESKTOP = "installing_desktop"
    DONE = "done"

    @property
    def label(self) -> str:
        return self.value.replace("_", " ").capitalize()


class Partition(BaseModel):
    """One partition as reported by lsblk."""
    model_config = ConfigDict(frozen=True)

    name: str
    drive: str
    number: Optional[int] = None
    start_sector: int = 0
    size_bytes: int = 0
    fstype: Optional[str] = None
    flags: Optional[str] = None
    part_type: Optional[str] = None
    label: Optional[str] = None
    mountpoint: Optional[str] = None

    @property
    def path(self) -> str:
        return device_path(self.name)

    @property
    def start_bytes(self) -> int:
        return self.start_sector * LSBLK_SECTOR_SIZE

    @property
    def start_mib(self) -> int:
        return bytes_to_mib(self.start_bytes)

    @property
    def size_mib(self) -> int:
        return bytes_to_mib(self.size_bytes)

    @property
    def end_mib(self) -> int:
        return self.start_mib + self.size_mib

    @property
    def is_bios_boot(self) -> bool:
        if self.flags and "bios_grub" in self.flags:
            return True
        return (self.part_type or "").lower() == BIOS_BOOT_GUID

    @property
    def is_esp(self) -> bool:
        part_type = (self.part_type or "").lower()
        return part_type in (ESP_GUID, ESP_MBR_TYPE) or self.label == "ESP"


class FreeRegion(BaseModel):
    """A gap in the partition table, in MiB as printed by parted."""
    model_config = ConfigDict(frozen=True)

    start_mib: float
    end_mib: float
    size_mib: float


class Drive(BaseModel):
    """A whole-disk block device (not a partition or loop device)."""
    model_config = ConfigDict(frozen=True)

    name: str
    size_bytes: int
    table_type: TableType = TableType.UNKNOWN
    partitions: Tuple[Partition, ...] = ()
    free_regions: Tuple[FreeRegion, ...] = ()

    @property
    def path(self) -> str:
        return device_path(self.name)

    @property
    def size_mib(self) -> int:
        return bytes_to_mib(self.size_bytes)

    @property
    def has_bios_boot_partition(self) -> bool:
        return any(p.is_bios_boot for p in self.partitions)

    @property
    def primary_partition_count(self) -> int:
        return len(self.partitions)

    @property
    def mbr_limit_reached(self) -> bool:
        return self.table_type is TableType.DOS and self.primary_partition_count >= 4

    @property
    def esp(self) -> Optional[Partition]:
        return next((p for p in self.partitions if p.is_esp), None)

    def find_partition(self, name_or_path: str) -> Optional[Partition]:
        name = device_name(name_or_path)
        return next((p for p in self.partitions if p.name == name), None)


class InstallPlan(BaseModel):
    """
    The user's choices for one installation. Immutable once built; every worker
    receives the same instance.
    """
    model_config = ConfigDict(frozen=True)

    mode: InstallMode
    boot_mode: BootMode
    drive: Optional[str] = None
    partition: Optional[str] = None

    @model_validator(mode="after")
    def _check_target(self) -> "InstallPlan":
        if self.mode is InstallMode.USE_PARTITION:
            if not self.partition:
                raise ValueError("mode 'partition' requires a target partition")
        elif not self.drive:
            raise ValueError(f"mode '{self.mode.value}' requires a target drive")
        return self

    @property
    def drive_path(self) -> Optional[str]:
        return device_path(self.drive) if self.drive else None

    @property
    def partition_path(self) -> Optional[str]:
        return device_path(self.partition) if self.partition else None

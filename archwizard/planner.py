# archwizard/planner.py
"""
Turns an InstallPlan plus a Drive snapshot into an ordered list of partition
operations, or rejects the plan with a PlanRejectedError.

Nothing here touches the system. The disk executor applies the operations in
order and issues a table-refresh barrier after each one. Partitions created by
a plan are identified after the fact (by the name that was not present before),
so creation operations carry the role the new partition plays instead of a
device path.
"""

from typing import Annotated, Dict, List, Literal, Optional, Sequence, Tuple, Union

from pydantic import BaseModel, ConfigDict, Field

from archwizard.models import (
    BootMode,
    Drive,
    FreeRegion,
    InstallMode,
    InstallPlan,
    Partition,
    PartitionRole,
    TableType,
)
from archwizard.utils.exceptions import PlanRejectedError

BOOT_START_MIB = 1
BOOT_END_MIB = 513
BIOS_BOOT_SIZE_MIB = 1
ESP_SIZE_MIB = 512
# A partition must be strictly larger than this to give up ESP_SIZE_MIB for an ESP
MIN_SPLIT_SIZE_MIB = 600
SHRINKABLE_FILESYSTEMS = ("ext2", "ext3", "ext4")

# Rejection reasons
REASON_MBR_LIMIT = "mbr primary limit"
REASON_NO_FREE_SPACE = "no free space"
REASON_OUT_OF_BOUNDS = "free region outside device boundaries"
REASON_PARTITION_NOT_FOUND = "partition not found"
REASON_AMBIGUOUS_NUMBER = "ambiguous partition number"
REASON_TOO_SMALL = "partition too small"
REASON_UNSUPPORTED_FS = "unsupported filesystem for shrink"
REASON_NO_ESP = "no EFI system partition"
REASON_NO_BIOS_BOOT = "no BIOS boot partition"


# --- Partition operations ---

class _Operation(BaseModel):
    model_config = ConfigDict(frozen=True)


class CreateTable(_Operation):
    kind: Literal["create_table"] = "create_table"
    table: Literal["msdos", "gpt"]

    def describe(self) -> str:
        return f"create {self.table} partition table"


class CreatePartition(_Operation):
    """end_mib of None means 'to the end of the disk' (100%)."""
    kind: Literal["create_partition"] = "create_partition"
    start_mib: int
    end_mib: Optional[int] = None
    fs_hint: Optional[str] = None
    flags: Tuple[str, ...] = ()
    name: Optional[str] = None
    role: Optional[PartitionRole] = None

    def describe(self) -> str:
        end = f"{self.end_mib}MiB" if self.end_mib is not None else "100%"
        text = f"create partition {self.start_mib}MiB-{end}"
        if self.fs_hint:
            text += f" ({self.fs_hint})"
        if self.flags:
            text += f" flags={','.join(self.flags)}"
        if self.name:
            text += f" name={self.name}"
        if self.role:
            text += f" -> {self.role.value}"
        return text


class DeletePartition(_Operation):
    kind: Literal["delete_partition"] = "delete_partition"
    number: int

    def describe(self) -> str:
        return f"delete partition {self.number}"


class ResizePartition(_Operation):
    kind: Literal["resize_partition"] = "resize_partition"
    number: int
    end_mib: int

    def describe(self) -> str:
        return f"move end of partition {self.number} to {self.end_mib}MiB"


class SetFlag(_Operation):
    kind: Literal["set_flag"] = "set_flag"
    number: int
    flag: str
    enabled: bool = True

    def describe(self) -> str:
        return f"set {self.flag} {'on' if self.enabled else 'off'} on partition {self.number}"


class ShrinkFilesystem(_Operation):
    kind: Literal["shrink_filesystem"] = "shrink_filesystem"
    partition: str
    number: int
    size_mib: int

    def describe(self) -> str:
        return f"shrink filesystem on {self.partition} to {self.size_mib}MiB"


PartitionOperation = Annotated[
    Union[CreateTable, CreatePartition, DeletePartition, ResizePartition, SetFlag, ShrinkFilesystem],
    Field(discriminator="kind"),
]


class PartitionPlan(BaseModel):
    """
    Result of planning. `roles` names existing partitions the layout reuses;
    partitions created by `operations` get their role from the operation.
    """
    model_config = ConfigDict(frozen=True)

    install: InstallPlan
    device: str
    operations: Tuple[PartitionOperation, ...] = ()
    roles: Dict[PartitionRole, str] = Field(default_factory=dict)

    def describe(self) -> List[str]:
        lines = [op.describe() for op in self.operations]
        for role, path in self.roles.items():
            lines.append(f"reuse {path} -> {role.value}")
        return lines


# --- Policies ---

def select_largest_free_region(regions: Sequence[FreeRegion]) -> Optional[FreeRegion]:
    """Largest region by size; on a tie the first one listed wins."""
    best = None
    for region in regions:
        if best is None or region.size_mib > best.size_mib:
            best = region
    return best


def plan_wipe_drive(install: InstallPlan, drive: Drive) -> PartitionPlan:
    if install.boot_mode is BootMode.EFI:
        operations = (
            CreateTable(table="gpt"),
            CreatePartition(start_mib=BOOT_START_MIB, end_mib=BOOT_END_MIB, fs_hint="fat32",
                            flags=("esp", "boot"), name="ESP", role=PartitionRole.ESP),
            CreatePartition(start_mib=BOOT_END_MIB, end_mib=None, fs_hint="ext4", role=PartitionRole.ROOT),
        )
    else:
        operations = (
            CreateTable(table="msdos"),
            CreatePartition(start_mib=BOOT_START_MIB, end_mib=BOOT_END_MIB, fs_hint="ext4", role=PartitionRole.BOOT),
            SetFlag(number=1, flag="boot"),
            CreatePartition(start_mib=BOOT_END_MIB, end_mib=None, fs_hint="ext4", role=PartitionRole.ROOT),
        )
    return PartitionPlan(install=install, device=drive.path, operations=operations)


def plan_free_space(install: InstallPlan, drive: Drive) -> PartitionPlan:
    if drive.mbr_limit_reached:
        raise PlanRejectedError(REASON_MBR_LIMIT, f"{drive.path} already has {drive.primary_partition_count} primary partitions")
    if install.boot_mode is BootMode.EFI and drive.esp is None:
        raise PlanRejectedError(REASON_NO_ESP, f"{drive.path} has no ESP to boot from")
    if install.boot_mode is BootMode.BIOS and drive.table_type is TableType.GPT and not drive.has_bios_boot_partition:
        raise PlanRejectedError(REASON_NO_BIOS_BOOT, f"{drive.path} is GPT and has no bios_grub partition for GRUB")

    region = select_largest_free_region(drive.free_regions)
    if region is None:
        raise PlanRejectedError(REASON_NO_FREE_SPACE, drive.path)

    disk_mib = drive.size_mib
    start_mib = int(region.start_mib)
    end_mib = int(region.end_mib)
    if end_mib >= disk_mib:
        end_mib = disk_mib - 1
    if start_mib >= disk_mib or end_mib > disk_mib or start_mib >= end_mib:
        raise PlanRejectedError(REASON_OUT_OF_BOUNDS, f"{start_mib}MiB-{end_mib}MiB on a {disk_mib}MiB disk")

    operations = (
        CreatePartition(start_mib=start_mib, end_mib=end_mib, fs_hint="ext4", role=PartitionRole.ROOT),
    )
    return PartitionPlan(install=install, device=drive.path, operations=operations)


def _require_number(partition: Partition) -> int:
    if partition.number is None:
        raise PlanRejectedError(REASON_AMBIGUOUS_NUMBER, partition.path)
    return partition.number


def plan_bios_boot_recreate(install: InstallPlan, drive: Drive, target: Partition) -> PartitionPlan:
    """
    GPT + BIOS needs a bios_grub partition. The target is deleted and recreated
    as a 1 MiB bios_grub partition followed by the new root in the remaining space.
    """
    number = _require_number(target)
    start_mib = target.start_mib
    end_mib = target.end_mib
    if end_mib - start_mib <= BIOS_BOOT_SIZE_MIB:
        raise PlanRejectedError(REASON_TOO_SMALL, f"{target.path} is {target.size_mib}MiB")

    operations = (
        DeletePartition(number=number),
        CreatePartition(start_mib=start_mib, end_mib=start_mib + BIOS_BOOT_SIZE_MIB,
                        flags=("bios_grub",), role=PartitionRole.BIOS_BOOT),
        CreatePartition(start_mib=start_mib + BIOS_BOOT_SIZE_MIB, end_mib=end_mib,
                        fs_hint="ext4", role=PartitionRole.ROOT),
    )
    return PartitionPlan(install=install, device=drive.path, operations=operations)


def plan_efi_split(install: InstallPlan, drive: Drive, target: Partition) -> PartitionPlan:
    """
    Carves an ESP out of the tail of an existing ext partition: shrink the
    filesystem, move the partition end, create the ESP in the freed space.
    The shrunken partition stays the root. Only GPT tables take a partition name.
    """
    if drive.mbr_limit_reached:
        raise PlanRejectedError(REASON_MBR_LIMIT, f"{drive.path} already has {drive.primary_partition_count} primary partitions")
    number = _require_number(target)
    start_mib = target.start_mib
    end_mib = target.end_mib
    if end_mib - start_mib <= MIN_SPLIT_SIZE_MIB:
        raise PlanRejectedError(REASON_TOO_SMALL, f"{target.path} is {target.size_mib}MiB, need more than {MIN_SPLIT_SIZE_MIB}MiB")
    if target.fstype not in SHRINKABLE_FILESYSTEMS:
        raise PlanRejectedError(REASON_UNSUPPORTED_FS, f"{target.path} has {target.fstype or 'no filesystem'}")

    new_end_mib = end_mib - ESP_SIZE_MIB
    esp_name = "ESP" if drive.table_type is TableType.GPT else None
    operations = (
        ShrinkFilesystem(partition=target.path, number=number, size_mib=new_end_mib - start_mib),
        ResizePartition(number=number, end_mib=new_end_mib),
        CreatePartition(start_mib=new_end_mib, end_mib=end_mib, fs_hint="fat32",
                        flags=("esp", "boot"), name=esp_name, role=PartitionRole.ESP),
    )
    return PartitionPlan(install=install, device=drive.path, operations=operations,
                         roles={PartitionRole.ROOT: target.path})


def plan_use_partition(install: InstallPlan, drive: Drive) -> PartitionPlan:
    target = drive.find_partition(install.partition)
    if target is None:
        raise PlanRejectedError(REASON_PARTITION_NOT_FOUND, f"{install.partition_path} on {drive.path}")

    if install.boot_mode is BootMode.EFI:
        return plan_efi_split(install, drive, target)
    if drive.table_type is TableType.GPT and not drive.has_bios_boot_partition:
        return plan_bios_boot_recreate(install, drive, target)
    return PartitionPlan(install=install, device=drive.path, roles={PartitionRole.ROOT: target.path})


def plan(install: InstallPlan, drive: Drive) -> PartitionPlan:
    """Plans the partition operations for `install` on the `drive` snapshot."""
    if install.mode is InstallMode.WIPE_DRIVE:
        return plan_wipe_drive(install, drive)
    if install.mode is InstallMode.USE_FREE_SPACE:
        return plan_free_space(install, drive)
    return plan_use_partition(install, drive)

# archwizard/inventory.py
"""
Read-only queries about the block devices on the host.

Every query goes through the Executor's low-level execute_command and is
parsed by a small pure function (parse_*) that can be exercised against
captured lsblk/parted output. Unexpected output never raises: malformed
lines are skipped and a failed query yields an empty result.
"""

import os
import re
import shutil
import time
from typing import Dict, List, Optional, Tuple

from archwizard.models import (
    BIOS_BOOT_GUID,
    Drive,
    FreeRegion,
    Partition,
    TableType,
    device_name,
    device_path,
    partition_number_from_name,
)
from archwizard.utils.exceptions import CommandFailedError, ResourceNotFoundError
from archwizard.utils.executor import Executor

PARTED_FALLBACK_PATHS = ("/usr/sbin/parted", "/sbin/parted")
PARTITION_COLUMNS = "NAME,PARTNUM,START,SIZE,FSTYPE,PARTFLAGS,PARTTYPE,PARTLABEL,MOUNTPOINT"
IGNORED_DRIVE_PREFIXES = ("loop", "ram", "zram")

_LSBLK_ESCAPE_RE = re.compile(r"\\x([0-9a-fA-F]{2})")


# --- Parsers (pure functions over captured tool output) ---

def _unescape(value: str) -> str:
    """lsblk -r escapes unsafe characters (notably spaces) as \\xNN."""
    return _LSBLK_ESCAPE_RE.sub(lambda m: chr(int(m.group(1), 16)), value)


def _to_int(value: str) -> Optional[int]:
    try:
        return int(value)
    except (TypeError, ValueError):
        return None


def parse_drive_list(output: str) -> List[Tuple[str, int]]:
    """
    Parses `lsblk -b -d -n -o NAME,SIZE,TYPE`. Keeps whole disks only and skips
    loop/ram devices. Returns (name, size_bytes) pairs in listing order.
    """
    drives = []
    for line in output.splitlines():
        tokens = line.split()
        if len(tokens) < 3:
            continue
        name, size, dev_type = tokens[0], tokens[1], tokens[2]
        if dev_type != "disk" or name.startswith(IGNORED_DRIVE_PREFIXES):
            continue
        size_bytes = _to_int(size)
        if size_bytes is None:
            continue
        drives.append((name, size_bytes))
    return drives


def parse_table_type(output: str) -> TableType:
    """Parses `lsblk -d -n -o PTTYPE`; the first non-empty line wins."""
    for line in output.splitlines():
        if line.strip():
            return TableType.parse(line)
    return TableType.UNKNOWN


def parse_partition_count(output: str) -> int:
    """Counts `part` rows in `lsblk -n -r -o TYPE`."""
    return sum(1 for line in output.splitlines() if line.strip() == "part")


def parse_has_bios_boot(output: str) -> bool:
    """
    Scans `lsblk -n -r -o PARTFLAGS,PARTTYPE` for a bios_grub flag or the BIOS boot
    partition type GUID. Column counts vary with empty fields, so every token is checked.
    """
    for line in output.splitlines():
        for token in line.split():
            if "bios_grub" in token or token.lower() == BIOS_BOOT_GUID:
                return True
    return False


def parse_partitions(output: str, drive: str) -> List[Partition]:
    """
    Parses `lsblk -b -n -r -o NAME,PARTNUM,START,SIZE,FSTYPE,PARTFLAGS,PARTTYPE,PARTLABEL,MOUNTPOINT`.

    Raw mode separates columns with exactly one space and leaves empty fields empty,
    so rows are split on single spaces. The disk row itself (no START) and rows with
    the wrong column count are skipped.
    """
    drive = device_name(drive)
    expected = len(PARTITION_COLUMNS.split(","))
    partitions = []
    for line in output.splitlines():
        if not line.strip():
            continue
        fields = [_unescape(field) for field in line.split(" ")]
        if len(fields) != expected:
            continue
        name, partnum, start, size, fstype, flags, part_type, label, mountpoint = fields
        if name == drive:
            continue
        start_sector = _to_int(start)
        size_bytes = _to_int(size)
        if start_sector is None or size_bytes is None:
            continue
        number = _to_int(partnum)
        if number is None:
            number = partition_number_from_name(name)
        partitions.append(Partition(
            name=name,
            drive=drive,
            number=number,
            start_sector=start_sector,
            size_bytes=size_bytes,
            fstype=fstype or None,
            flags=flags or None,
            part_type=part_type or None,
            label=label or None,
            mountpoint=mountpoint or None,
        ))
    return partitions


def parse_partition_numbers(output: str, drive: str) -> Dict[str, Optional[int]]:
    """
    Parses `lsblk -n -r -o NAME,PARTNUM <drive>` into {name: index}. An empty PARTNUM
    falls back to the trailing digits of the name.
    """
    drive = device_name(drive)
    numbers = {}
    for line in output.splitlines():
        fields = line.strip().split(" ")
        if not fields[0] or fields[0] == drive:
            continue
        number = _to_int(fields[1]) if len(fields) > 1 else None
        numbers[fields[0]] = number if number is not None else partition_number_from_name(fields[0])
    return numbers


def parse_mountpoints(output: str) -> List[str]:
    """Non-empty mountpoints from `lsblk -n -r -o MOUNTPOINT`, swap excluded."""
    mountpoints = []
    for line in output.splitlines():
        mountpoint = _unescape(line.strip())
        if not mountpoint or mountpoint == "[SWAP]":
            continue
        mountpoints.append(mountpoint)
    return mountpoints


def parse_free_regions(output: str) -> List[FreeRegion]:
    """
    Parses `parted <dev> -m unit MiB print free`. Machine-readable rows look like
    `1:1.00MiB:513MiB:512MiB:fat32::boot, esp;` and free rows like
    `1:20481MiB:40960MiB:20479MiB:free;`.
    """
    regions = []
    for line in output.splitlines():
        if "free" not in line:
            continue
        cols = line.strip().rstrip(";").split(":")
        if len(cols) < 4:
            continue
        try:
            start, end, size = (float(col.replace("MiB", "")) for col in cols[1:4])
        except ValueError:
            continue
        regions.append(FreeRegion(start_mib=start, end_mib=end, size_mib=size))
    return regions


# --- Inventory ---

class SystemInventory:
    """
    Queries drives, partitions, mountpoints and free space. Holds no state
    between calls; each method reflects the host at the time it is called.
    """

    def __init__(self, executor: Executor, device_poll_interval: float = 1.0):
        self.executor = executor
        self.logger = executor.logger
        self.device_poll_interval = device_poll_interval

    def _query(self, command: List[str], privileged: bool = False) -> str:
        """Runs a read-only query; failures are logged and yield empty output."""
        try:
            exit_code, stdout, stderr = self.executor.execute_command(command, check=False, privileged=privileged)
        except CommandFailedError as e:
            self.logger.warning(f"Inventory query failed: {e}")
            return ""
        if exit_code != 0:
            self.logger.warning(f"Inventory query '{' '.join(command)}' exited with {exit_code}: {stderr.strip()}")
            return ""
        return stdout

    def locate_parted(self) -> str:
        """Finds the parted binary on PATH or in the usual sbin locations."""
        found = shutil.which("parted")
        if found:
            return found
        for candidate in PARTED_FALLBACK_PATHS:
            if os.path.isfile(candidate) and os.access(candidate, os.X_OK):
                return candidate
        raise ResourceNotFoundError("parted", "Partitioning tool not found")

    def list_drives(self, with_details: bool = True) -> List[Drive]:
        """Whole disks, excluding loop/ram devices. With details each drive also carries its table and partitions."""
        output = self._query(["lsblk", "-b", "-d", "-n", "-o", "NAME,SIZE,TYPE"])
        drives = []
        for name, size_bytes in parse_drive_list(output):
            if with_details:
                drives.append(Drive(
                    name=name,
                    size_bytes=size_bytes,
                    table_type=self.table_type(name),
                    partitions=tuple(self.describe_partitions(name)),
                ))
            else:
                drives.append(Drive(name=name, size_bytes=size_bytes))
        return drives

    def drive_size_bytes(self, drive: str) -> int:
        output = self._query(["lsblk", "-b", "-d", "-n", "-o", "SIZE", device_path(drive)])
        for line in output.splitlines():
            size = _to_int(line.strip())
            if size is not None:
                return size
        return 0

    def table_type(self, drive: str) -> TableType:
        return parse_table_type(self._query(["lsblk", "-d", "-n", "-o", "PTTYPE", device_path(drive)]))

    def has_bios_boot_partition(self, drive: str) -> bool:
        return parse_has_bios_boot(self._query(["lsblk", "-n", "-r", "-o", "PARTFLAGS,PARTTYPE", device_path(drive)]))

    def primary_partition_count(self, drive: str) -> int:
        return parse_partition_count(self._query(["lsblk", "-n", "-r", "-o", "TYPE", device_path(drive)]))

    def mbr_limit_reached(self, drive: str) -> bool:
        return self.table_type(drive) is TableType.DOS and self.primary_partition_count(drive) >= 4

    def describe_partitions(self, drive: str) -> List[Partition]:
        output = self._query(["lsblk", "-b", "-n", "-r", "-o", PARTITION_COLUMNS, device_path(drive)])
        return parse_partitions(output, drive)

    def partition_numbers(self, drive: str) -> Dict[str, Optional[int]]:
        """Maps each partition name on the drive to its index."""
        return parse_partition_numbers(self._query(["lsblk", "-n", "-r", "-o", "NAME,PARTNUM", device_path(drive)]), drive)

    def parent_drive(self, partition: str) -> Optional[str]:
        output = self._query(["lsblk", "-n", "-r", "-o", "PKNAME", device_path(partition)])
        for line in output.splitlines():
            if line.strip():
                return line.strip()
        return None

    def mountpoints(self, target: str) -> List[str]:
        """Mountpoints of a drive (all its partitions) or of one partition, deepest first."""
        found = parse_mountpoints(self._query(["lsblk", "-n", "-r", "-o", "MOUNTPOINT", device_path(target)]))
        return sorted(found, key=len, reverse=True)

    def free_regions(self, drive: str) -> List[FreeRegion]:
        try:
            parted = self.locate_parted()
        except ResourceNotFoundError as e:
            self.logger.warning(str(e))
            return []
        return parse_free_regions(self._query([parted, device_path(drive), "-m", "unit", "MiB", "print", "free"], privileged=True))

    def snapshot(self, drive: str, with_free_space: bool = False) -> Drive:
        """Complete, immutable picture of one drive for the planner."""
        name = device_name(drive)
        return Drive(
            name=name,
            size_bytes=self.drive_size_bytes(name),
            table_type=self.table_type(name),
            partitions=tuple(self.describe_partitions(name)),
            free_regions=tuple(self.free_regions(name)) if with_free_space else (),
        )

    def wait_for_partition_node(self, path: str, timeout_seconds: float = 10.0) -> bool:
        """Polls until the device node exists; False when the timeout elapses first."""
        attempts = max(1, int(timeout_seconds / self.device_poll_interval)) + 1
        for attempt in range(attempts):
            if os.path.exists(path):
                return True
            if attempt < attempts - 1:
                time.sleep(self.device_poll_interval)
        self.logger.warning(f"Device node {path} did not appear within {timeout_seconds:g} seconds")
        return False

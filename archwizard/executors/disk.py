# archwizard/executors/disk.py
from typing import Dict, Optional, Tuple

from archwizard.inventory import SystemInventory
from archwizard.models import PartitionRole, device_path
from archwizard.planner import (
    CreatePartition,
    CreateTable,
    DeletePartition,
    PartitionPlan,
    ResizePartition,
    SetFlag,
    ShrinkFilesystem,
)
from archwizard.utils.exceptions import CommandFailedError, PlanRejectedError, ResourceNotFoundError
from archwizard.utils.executor import CommandResult, Executor

# e2fsck exit codes below this value mean the filesystem is usable (0 clean, 1 fixed, 2 fixed + reboot)
E2FSCK_FAILURE_THRESHOLD = 4


class DiskManager:
    """
    Performs partition table, filesystem and mount operations on the drive
    being prepared. All commands are delegated to the provided Executor and
    run with the privilege wrapper; every table mutation is followed by a
    refresh barrier (partprobe + udevadm settle).
    """

    def __init__(self, executor: Executor, inventory: SystemInventory):
        """
        Initializes the Disk management class.

        Args:
            executor (Executor): An instance of the Executor class for command execution.
            inventory (SystemInventory): Used to locate parted and to discover new partitions.
        """
        self.executor = executor
        self.inventory = inventory
        self.logger = executor.logger
        self._parted_binary: Optional[str] = None

    @property
    def parted(self) -> str:
        if self._parted_binary is None:
            self._parted_binary = self.inventory.locate_parted()
        return self._parted_binary

    def _parted(self, device: str, description: str, *args: str) -> CommandResult:
        return self.executor.run(
            description=description,
            command=[self.parted, "--script", device_path(device), *args],
            privileged=True,
            check=True
        )

    # --- PARTITION TABLE OPERATIONS ---

    def create_table(self, device: str, table: str) -> CommandResult:
        """
        Writes a new, empty partition table. Destroys every partition on the device.

        Args:
            device (str): The disk device path (e.g., '/dev/sda').
            table (str): 'msdos' or 'gpt'.
        """
        return self._parted(device, f"Creating {table} partition table on {device}", "mklabel", table)

    def create_partition(self, device: str, start_mib: int, end_mib: Optional[int], fs_hint: Optional[str] = None) -> CommandResult:
        """
        Creates a primary partition between two MiB offsets.

        Args:
            device (str): The disk device path.
            start_mib (int): Start offset in MiB.
            end_mib (Optional[int]): End offset in MiB, or None for the rest of the disk.
            fs_hint (Optional[str]): Filesystem type hint recorded in the table (e.g. 'ext4', 'fat32').
        """
        end = f"{end_mib}MiB" if end_mib is not None else "100%"
        args = ["mkpart", "primary"]
        if fs_hint:
            args.append(fs_hint)
        args.extend([f"{start_mib}MiB", end])
        return self._parted(device, f"Creating partition {start_mib}MiB-{end} on {device}", *args)

    def delete_partition(self, device: str, number: int) -> CommandResult:
        return self._parted(device, f"Deleting partition {number} on {device}", "rm", str(number))

    def resize_partition(self, device: str, number: int, end_mib: int) -> CommandResult:
        return self._parted(device, f"Moving end of partition {number} on {device} to {end_mib}MiB",
                            "resizepart", str(number), f"{end_mib}MiB")

    def set_flag(self, device: str, number: int, flag: str, enabled: bool = True) -> CommandResult:
        state = "on" if enabled else "off"
        return self._parted(device, f"Setting {flag} {state} on partition {number} of {device}",
                            "set", str(number), flag, state)

    def name_partition(self, device: str, number: int, name: str) -> CommandResult:
        return self._parted(device, f"Naming partition {number} of {device} '{name}'", "name", str(number), name)

    def refresh_table(self, device: str) -> None:
        """
        Asks the kernel to re-read the partition table and waits for udev to
        finish creating device nodes. Failures are logged, not raised: partprobe
        commonly complains about busy partitions that are irrelevant here.
        """
        for command in (["partprobe", device_path(device)], ["udevadm", "settle"]):
            exit_code, _, stderr = self.executor.run(
                description=f"Refreshing partition table ({command[0]})",
                command=command,
                privileged=True,
                check=False
            )
            if exit_code != 0:
                self.logger.warning(f"{command[0]} exited with {exit_code}: {stderr.strip()}")

    # --- FILESYSTEM OPERATIONS ---

    def shrink_filesystem(self, partition_path: str, size_mib: int) -> CommandResult:
        """
        Checks and shrinks an ext2/3/4 filesystem to `size_mib`. Must run before the
        partition itself is made smaller.

        Args:
            partition_path (str): The partition path (e.g., '/dev/sda3').
            size_mib (int): New filesystem size in MiB.
        """
        exit_code, stdout, stderr = self.executor.run(
            description=f"Checking filesystem on {partition_path}",
            command=["e2fsck", "-f", "-y", partition_path],
            privileged=True,
            check=False
        )
        if exit_code >= E2FSCK_FAILURE_THRESHOLD:
            raise CommandFailedError(f"e2fsck -f -y {partition_path}", exit_code, stdout, stderr,
                                     "Filesystem check failed")

        return self.executor.run(
            description=f"Shrinking filesystem on {partition_path} to {size_mib}MiB",
            command=["resize2fs", partition_path, f"{size_mib}M"],
            privileged=True,
            check=True
        )

    def format_partition(self, partition_path: str, filesystem: str, label: Optional[str] = None) -> CommandResult:
        """
        Formats a partition with a specified filesystem.

        Args:
            partition_path (str): The partition path (e.g., '/dev/sda1').
            filesystem (str): 'ext4' or 'fat32'.
            label (Optional[str]): An optional label for the filesystem.

        Returns:
            CommandResult: (exit_code, stdout, stderr).
        """
        if filesystem == "ext4":
            fs_cmd = ["mkfs.ext4", "-F"]
            if label:
                fs_cmd.extend(["-L", label])
        elif filesystem == "fat32":
            # Used for EFI system partition
            fs_cmd = ["mkfs.fat", "-F32"]
            if label:
                fs_cmd.extend(["-n", label])
        else:
            raise ValueError(f"Unsupported filesystem: {filesystem}")

        fs_cmd.append(partition_path)

        return self.executor.run(
            description=f"Formatting {partition_path} as {filesystem}",
            command=fs_cmd,
            privileged=True,
            check=True
        )

    # --- MOUNT/UNMOUNT OPERATIONS ---

    def mount_partition(self, source: str, target: str, options: Optional[str] = None) -> CommandResult:
        """
        Mounts a partition on a target directory, creating the directory first.

        Args:
            source (str): The device to mount (e.g., '/dev/sda1').
            target (str): The mount point (e.g., '/mnt', '/mnt/boot').
            options (Optional[str]): Optional mount options (e.g., 'defaults,noatime').
        """
        self.executor.run(
            description=f"Ensuring mount target directory {target} exists",
            command=["mkdir", "-p", target],
            privileged=True,
            check=True
        )

        command = ["mount"]
        if options:
            command.extend(["-o", options])
        command.extend([source, target])

        return self.executor.run(
            description=f"Mounting {source} to {target} (Options: {options or 'default'})",
            command=command,
            privileged=True,
            check=True
        )

    def unmount(self, target: str, recursive: bool = False, lazy: bool = False, force: bool = False) -> CommandResult:
        """Best-effort unmount; a target that is not mounted is not an error."""
        command = ["umount"]
        if recursive:
            command.append("-R")
        if lazy:
            command.append("-l")
        if force:
            command.append("-f")
        command.append(target)
        return self.executor.run(
            description=f"Unmounting {target}",
            command=command,
            privileged=True,
            check=False
        )

    def release(self, target: str, mount_root: str) -> None:
        """Unmounts everything below the mount root, then every mountpoint of `target`."""
        self.unmount(mount_root, recursive=True, lazy=True)
        for mountpoint in self.inventory.mountpoints(target):
            self.unmount(mountpoint, force=True)

    # --- PLAN EXECUTION ---

    def _identify_new_partition(self, device: str, known: Dict[str, Optional[int]]) -> Tuple[str, int, Dict[str, Optional[int]]]:
        """The one partition whose name was not present before the last creation."""
        current = self.inventory.partition_numbers(device)
        new_names = [name for name in current if name not in known]
        if len(new_names) != 1 or current[new_names[0]] is None:
            raise ResourceNotFoundError(f"new partition on {device} (found {new_names or 'none'})",
                                        "Could not locate the newly created partition")
        return new_names[0], current[new_names[0]], current

    def apply_plan(self, plan: PartitionPlan) -> Dict[PartitionRole, str]:
        """
        Applies the plan's operations in order and returns the device path of every
        partition with a role in the resulting layout.

        A partition is only ever resized after its filesystem was shrunk in the same plan.
        """
        device = plan.device
        roles: Dict[PartitionRole, str] = dict(plan.roles)
        shrunk = set()
        known = self.inventory.partition_numbers(device)

        for operation in plan.operations:
            self.logger.info(f"Applying: {operation.describe()}")

            if isinstance(operation, CreateTable):
                self.create_table(device, operation.table)
                self.refresh_table(device)
                known = self.inventory.partition_numbers(device)

            elif isinstance(operation, CreatePartition):
                self.create_partition(device, operation.start_mib, operation.end_mib, operation.fs_hint)
                self.refresh_table(device)
                name, number, known = self._identify_new_partition(device, known)
                for flag in operation.flags:
                    self.set_flag(device, number, flag)
                if operation.name:
                    self.name_partition(device, number, operation.name)
                if operation.flags or operation.name:
                    self.refresh_table(device)
                if operation.role is not None:
                    roles[operation.role] = device_path(name)

            elif isinstance(operation, DeletePartition):
                self.delete_partition(device, operation.number)
                self.refresh_table(device)
                known = self.inventory.partition_numbers(device)

            elif isinstance(operation, ShrinkFilesystem):
                self.shrink_filesystem(operation.partition, operation.size_mib)
                shrunk.add(operation.number)

            elif isinstance(operation, ResizePartition):
                if operation.number not in shrunk:
                    raise PlanRejectedError("resize before filesystem shrink", f"partition {operation.number} on {device}")
                self.resize_partition(device, operation.number, operation.end_mib)
                self.refresh_table(device)

            elif isinstance(operation, SetFlag):
                self.set_flag(device, operation.number, operation.flag, operation.enabled)
                self.refresh_table(device)

        return roles

# archwizard/workers/disk_prep.py
import os
from typing import Optional

from archwizard import planner
from archwizard.executors.disk import DiskManager
from archwizard.inventory import SystemInventory
from archwizard.models import InstallMode, InstallPlan, PartitionRole, Stage
from archwizard.utils.exceptions import DeviceBusyError, DeviceNotReadyError, ResourceNotFoundError
from archwizard.utils.executor import Executor
from archwizard.workers.base import InstallerWorker
from archwizard.workers.events import EventStream

FILESYSTEMS = (
    (PartitionRole.ROOT, "ext4"),
    (PartitionRole.BOOT, "ext4"),
    (PartitionRole.ESP, "fat32"),
)


class DiskPreparationWorker(InstallerWorker):
    """
    Prepares the target drive for the installation: plans the partition
    operations, releases every mount on the target, applies the plan, formats
    the new filesystems and mounts the root (and, for a wiped BIOS drive, boot)
    under the mount root.

    Planning happens before anything else, so a rejected plan produces a single
    Error event and no system change.
    """

    name = "disk preparation"

    def __init__(self,
                 plan: InstallPlan,
                 executor: Executor,
                 events: EventStream,
                 inventory: Optional[SystemInventory] = None,
                 disk_manager: Optional[DiskManager] = None,
                 mount_root: Optional[str] = None,
                 iso_path: Optional[str] = None,
                 device_wait_timeout: float = 10.0):
        super().__init__(executor, events)
        self.plan = plan
        self.inventory = inventory or SystemInventory(executor)
        self.disk_manager = disk_manager or DiskManager(executor, self.inventory)
        self.mount_root = mount_root or executor.chroot_path
        self.iso_path = iso_path
        self.device_wait_timeout = device_wait_timeout

    def _resolve_drive(self) -> str:
        if self.plan.drive:
            return self.plan.drive
        parent = self.inventory.parent_drive(self.plan.partition)
        if not parent:
            raise ResourceNotFoundError(f"parent drive of {self.plan.partition_path}")
        return parent

    def _wait_for(self, path: str) -> None:
        if not self.inventory.wait_for_partition_node(path, self.device_wait_timeout):
            raise DeviceNotReadyError(path, self.device_wait_timeout)

    def execute(self) -> None:
        self.enter(Stage.PREPARING)
        drive = self.inventory.snapshot(
            self._resolve_drive(),
            with_free_space=self.plan.mode is InstallMode.USE_FREE_SPACE
        )
        partition_plan = planner.plan(self.plan, drive)

        self.log(f"Preparing {drive.path} ({self.plan.mode.value}, {self.plan.boot_mode.value.upper()})")
        for line in partition_plan.describe():
            self.log(f"Planned: {line}")

        # Unmounting
        target = self.plan.partition_path if self.plan.mode is InstallMode.USE_PARTITION else drive.path
        self.log(f"Unmounting {target} and {self.mount_root}")
        self.disk_manager.release(target, self.mount_root)
        still_mounted = self.inventory.mountpoints(target)
        if still_mounted:
            raise DeviceBusyError(target, still_mounted)

        # Executing
        if partition_plan.operations:
            self.log(f"Applying {len(partition_plan.operations)} partition operations")
        roles = self.disk_manager.apply_plan(partition_plan)
        root = roles.get(PartitionRole.ROOT)
        if root is None:
            raise ResourceNotFoundError(f"root partition on {drive.path}", "Could not locate new root partition")

        self.enter(Stage.FORMATTING)
        for role, filesystem in FILESYSTEMS:
            path = roles.get(role)
            if path is None:
                continue
            self._wait_for(path)
            self.log(f"Formatting {path} ({role.value}) as {filesystem}")
            self.disk_manager.format_partition(path, filesystem)

        self.enter(Stage.MOUNTING)
        self.log(f"Mounting {root} at {self.mount_root}")
        self.disk_manager.mount_partition(root, self.mount_root)
        boot = roles.get(PartitionRole.BOOT)
        if boot is not None:
            boot_target = os.path.join(self.mount_root, "boot")
            self.log(f"Mounting {boot} at {boot_target}")
            self.disk_manager.mount_partition(boot, boot_target)

        if self.iso_path and os.path.isfile(self.iso_path):
            self.log(f"Copying {self.iso_path} into {self.mount_root}")
            self.executor.run(
                description=f"Copying {os.path.basename(self.iso_path)} into the target",
                command=["cp", self.iso_path, os.path.join(self.mount_root, os.path.basename(self.iso_path))],
                privileged=True,
                check=True
            )

        self.log("Drive is ready")

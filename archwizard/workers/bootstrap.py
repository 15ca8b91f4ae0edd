# archwizard/workers/bootstrap.py
import os
from typing import Optional

from archwizard.config.models import Credentials, Paths, System
from archwizard.desktops import lookup_desktop
from archwizard.executors.disk import DiskManager
from archwizard.executors.system import SystemManager
from archwizard.inventory import SystemInventory
from archwizard.models import BootMode, InstallPlan, Stage, device_path
from archwizard.utils.exceptions import ResourceNotFoundError
from archwizard.utils.executor import Executor
from archwizard.workers.base import InstallerWorker
from archwizard.workers.events import EventStream

EFI_DIRECTORY = "/boot/efi"
BOOTLOADER_PACKAGES = ("grub", "os-prober")
EFI_PACKAGES = ("efibootmgr",)


class BootstrapWorker(InstallerWorker):
    """
    Installs and configures the base system on the prepared target root:
    package manager bootstrap, base and desktop packages, system settings,
    accounts and the bootloader. Expects the target root to be mounted at the
    Executor's chroot path (the Disk Preparation Worker's result).
    """

    name = "system installation"

    def __init__(self,
                 plan: InstallPlan,
                 credentials: Credentials,
                 desktop: str,
                 executor: Executor,
                 events: EventStream,
                 system_settings: Optional[System] = None,
                 paths: Optional[Paths] = None,
                 inventory: Optional[SystemInventory] = None,
                 system: Optional[SystemManager] = None,
                 disk_manager: Optional[DiskManager] = None):
        super().__init__(executor, events)
        self.plan = plan
        self.credentials = credentials
        self.desktop = desktop
        self.settings = system_settings or System()
        self.paths = paths or Paths(mount_root=executor.chroot_path)
        self.inventory = inventory or SystemInventory(executor)
        self.system = system or SystemManager(executor)
        self.disk_manager = disk_manager or DiskManager(executor, self.inventory)

    def _resolve_drive(self) -> str:
        if self.plan.drive:
            return device_path(self.plan.drive)
        parent = self.inventory.parent_drive(self.plan.partition)
        if not parent:
            raise ResourceNotFoundError(f"parent drive of {self.plan.partition_path}")
        return device_path(parent)

    def _copy_dns(self) -> None:
        self.system.make_directory("/etc")
        self.system.copy_into_target("/etc/resolv.conf", "/etc/resolv.conf", dereference=True)

    def execute(self) -> None:
        self.logger.redact(self.credentials.password, self.credentials.root_password)
        profile = lookup_desktop(self.desktop)
        drive = self._resolve_drive()
        efi = self.plan.boot_mode is BootMode.EFI

        self.enter(Stage.BOOTSTRAPPING)
        self.log("Copying DNS configuration into the target")
        self._copy_dns()

        if not self.system.has_package_manager():
            self.log("No package manager in the target; fetching the bootstrap image")
            self.system.download(self.paths.bootstrap_url, self.paths.bootstrap_archive, on_output=self.logger.debug)
            self.log("Extracting the bootstrap image")
            self.system.extract_bootstrap(self.paths.bootstrap_archive)
            self.system.write_mirrorlist(self.settings.mirror)
            self._copy_dns()

        self.log("Initialising the package keyring")
        self.system.init_keyring()

        self.enter(Stage.INSTALLING_BASE)
        self.system.write_linux_preset()
        packages = list(self.settings.base_packages) + list(BOOTLOADER_PACKAGES)
        if efi:
            packages.extend(EFI_PACKAGES)
        self.log(f"Installing base system: {' '.join(packages)}")
        self.system.install_packages(packages, "Installing the base system", on_output=self.logger.debug)

        self.enter(Stage.INSTALLING_DESKTOP)
        self.log(f"Installing {profile.name}: {' '.join(profile.packages)}")
        self.system.install_packages(profile.packages, f"Installing {profile.name}", on_output=self.logger.debug)

        self.enter(Stage.CONFIGURING_SYSTEM)
        self.log("Building the initramfs")
        self.system.build_initramfs()
        self.log("Generating fstab")
        self.system.generate_fstab()
        self.log(f"Setting hostname {self.settings.hostname}, locale {self.settings.locale}, timezone {self.settings.timezone}")
        self.system.set_hostname(self.settings.hostname)
        self.system.set_locale(self.settings.locale)
        self.system.set_timezone(self.settings.timezone)
        for service in list(self.settings.services) + [profile.display_manager]:
            self.log(f"Enabling {service}")
            self.system.enable_service(service)

        username = self.credentials.username
        self.log(f"Creating user {username}")
        self.system.create_user(username, self.settings.admin_group)
        self.system.set_passwords([
            (username, self.credentials.password.get_secret_value()),
            ("root", self.credentials.root_password.get_secret_value()),
        ])
        self.system.enable_sudo_group(self.settings.admin_group)

        self.enter(Stage.INSTALLING_BOOTLOADER)
        if efi:
            esp = self.inventory.snapshot(drive).esp
            if esp is None:
                raise ResourceNotFoundError(f"EFI system partition on {drive}")
            efi_mount = self.system.target_path(EFI_DIRECTORY)
            self.log(f"Mounting {esp.path} at {efi_mount}")
            self.disk_manager.mount_partition(esp.path, efi_mount)
            self.log("Installing GRUB for EFI")
            self.system.install_grub_efi(EFI_DIRECTORY)
        else:
            self.log(f"Installing GRUB to {drive}")
            self.system.install_grub_bios(drive)
        self.system.enable_os_prober()
        self.log("Writing the GRUB configuration")
        self.system.generate_grub_config()

        self.log(f"Installation finished; the system under {os.path.normpath(self.system.root)} is ready to boot")

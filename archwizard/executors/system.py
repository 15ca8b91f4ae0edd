# archwizard/executors/system.py
import os
from typing import Callable, Iterable, List, Optional

from archwizard.utils.executor import CommandResult, Executor, RunMode

# linux.preset that builds the default image only (no fallback image)
LINUX_PRESET = """\
# mkinitcpio preset file for the 'linux' package

ALL_kver="/boot/vmlinuz-linux"

PRESETS=('default')

default_image="/boot/initramfs-linux.img"
"""

SUDOERS_WHEEL_PATTERN = r"s/^#\s*\(%{group} ALL=(ALL:ALL) ALL\)/\1/"


class SystemManager:
    """
    Operations on the mounted target system: file writes, package installation
    and configuration inside arch-chroot. Every command runs with the privilege
    wrapper; chrooted commands run against the Executor's chroot path.
    """

    def __init__(self, executor: Executor):
        self.executor = executor
        self.logger = executor.logger
        self.root = executor.chroot_path

    def target_path(self, path: str) -> str:
        """'/etc/hostname' -> '/mnt/etc/hostname'."""
        return os.path.join(self.root, path.lstrip("/"))

    # --- FILE OPERATIONS ---

    def write_file(self, path: str, content: str, append: bool = False) -> CommandResult:
        """Writes `content` to a path inside the target through a privileged tee."""
        target = self.target_path(path)
        command = ["tee"]
        if append:
            command.append("-a")
        command.append(target)
        return self.executor.run(
            description=f"{'Appending to' if append else 'Writing'} {target}",
            command=command,
            privileged=True,
            input_text=content,
            check=True
        )

    def make_directory(self, path: str) -> CommandResult:
        return self.executor.run(
            description=f"Creating directory {self.target_path(path)}",
            command=["mkdir", "-p", self.target_path(path)],
            privileged=True,
            check=True
        )

    def copy_into_target(self, source: str, path: str, dereference: bool = False) -> CommandResult:
        command = ["cp"]
        if dereference:
            command.append("--dereference")
        command.extend([source, self.target_path(path)])
        return self.executor.run(
            description=f"Copying {source} into the target",
            command=command,
            privileged=True,
            check=True
        )

    def has_package_manager(self) -> bool:
        return os.path.exists(self.target_path("/usr/bin/pacman"))

    # --- BOOTSTRAP ---

    def download(self, url: str, destination: str, on_output: Optional[Callable[[str], None]] = None) -> CommandResult:
        return self.executor.run(
            description=f"Downloading {url}",
            command=["wget", "--progress=dot:giga", "-O", destination, url],
            mode=RunMode.STREAMING,
            on_output=on_output,
            check=True
        )

    def extract_bootstrap(self, archive: str) -> CommandResult:
        """Extracts the bootstrap tarball (top directory root.x86_64/) straight into the target root."""
        return self.executor.run(
            description=f"Extracting {os.path.basename(archive)} into {self.root}",
            command=["tar", "--zstd", "-xpf", archive, "-C", self.root, "--strip-components=1", "--numeric-owner"],
            privileged=True,
            check=True
        )

    def write_mirrorlist(self, mirror: str) -> CommandResult:
        return self.write_file("/etc/pacman.d/mirrorlist", f"Server = {mirror}\n")

    # --- CHROOT OPERATIONS ---

    def chroot(self, description: str, command: List[str], input_text: Optional[str] = None,
               streaming: bool = False, on_output: Optional[Callable[[str], None]] = None) -> CommandResult:
        return self.executor.run(
            description=description,
            command=command,
            chroot=True,
            privileged=True,
            input_text=input_text,
            mode=RunMode.STREAMING if streaming else RunMode.BLOCKING,
            on_output=on_output,
            check=True
        )

    def init_keyring(self) -> None:
        self.chroot("Initialising the pacman keyring", ["pacman-key", "--init"])
        self.chroot("Populating the pacman keyring", ["pacman-key", "--populate", "archlinux"])

    def write_linux_preset(self) -> CommandResult:
        self.make_directory("/etc/mkinitcpio.d")
        return self.write_file("/etc/mkinitcpio.d/linux.preset", LINUX_PRESET)

    def install_packages(self, packages: Iterable[str], description: str,
                         on_output: Optional[Callable[[str], None]] = None) -> CommandResult:
        packages = list(packages)
        return self.chroot(
            f"{description} ({len(packages)} packages, patience)",
            ["pacman", "-Sy", "--noconfirm", "--needed"] + packages,
            streaming=True,
            on_output=on_output
        )

    def build_initramfs(self) -> CommandResult:
        return self.chroot("Building the initramfs", ["mkinitcpio", "-P"])

    def generate_fstab(self) -> CommandResult:
        """Runs genfstab on the host against the target root and writes its output to /etc/fstab."""
        _, fstab, _ = self.executor.run(
            description=f"Generating fstab for {self.root}",
            command=["genfstab", "-U", self.root],
            privileged=True,
            check=True
        )
        return self.write_file("/etc/fstab", fstab)

    def set_hostname(self, hostname: str) -> CommandResult:
        return self.write_file("/etc/hostname", f"{hostname}\n")

    def set_locale(self, locale: str) -> None:
        charset = locale.split(".", 1)[1] if "." in locale else "UTF-8"
        self.write_file("/etc/locale.gen", f"{locale} {charset}\n", append=True)
        self.chroot("Generating locales", ["locale-gen"])
        self.write_file("/etc/locale.conf", f"LANG={locale}\n")

    def set_timezone(self, timezone: str) -> CommandResult:
        return self.chroot(f"Setting the timezone to {timezone}",
                           ["ln", "-sf", f"/usr/share/zoneinfo/{timezone}", "/etc/localtime"])

    def enable_service(self, service: str) -> CommandResult:
        return self.chroot(f"Enabling {service}", ["systemctl", "enable", service])

    def create_user(self, username: str, group: str) -> CommandResult:
        return self.chroot(f"Adding user account for {username}", ["useradd", "-m", "-G", group, username])

    def set_passwords(self, entries: Iterable[tuple]) -> CommandResult:
        """entries: (user, password) pairs. Passwords only travel over stdin."""
        lines = "".join(f"{user}:{password}\n" for user, password in entries)
        return self.chroot("Setting account passwords", ["chpasswd"], input_text=lines)

    def enable_sudo_group(self, group: str) -> CommandResult:
        return self.chroot(f"Allowing members of {group} to use sudo",
                           ["sed", "-i", SUDOERS_WHEEL_PATTERN.format(group=group), "/etc/sudoers"])

    # --- BOOTLOADER ---

    def enable_os_prober(self) -> CommandResult:
        return self.write_file("/etc/default/grub", "GRUB_DISABLE_OS_PROBER=false\n", append=True)

    def install_grub_bios(self, disk: str) -> CommandResult:
        return self.chroot(f"Installing GRUB (BIOS) to {disk}", ["grub-install", "--target=i386-pc", disk])

    def install_grub_efi(self, efi_directory: str = "/boot/efi", bootloader_id: str = "GRUB") -> CommandResult:
        return self.chroot("Installing GRUB (EFI)", [
            "grub-install", "--target=x86_64-efi", f"--efi-directory={efi_directory}",
            f"--bootloader-id={bootloader_id}",
        ])

    def generate_grub_config(self) -> CommandResult:
        return self.chroot("Writing the GRUB configuration", ["grub-mkconfig", "-o", "/boot/grub/grub.cfg"])

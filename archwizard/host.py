# archwizard/host.py
"""Installs the tools the installer itself needs on the live (host) system."""

import shlex
from pathlib import Path
from typing import Dict, List

from archwizard.utils.exceptions import ResourceNotFoundError
from archwizard.utils.executor import CommandResult, Executor, RunMode

HOST_PACKAGES = ("arch-install-scripts", "parted", "dosfstools", "e2fsprogs", "squashfs-tools", "wget")

_PACMAN = ["pacman", "-Sy", "--noconfirm", "--needed"]
_DNF = ["dnf", "install", "-y"]
_APT = ["apt-get", "install", "-y"]

PACKAGE_MANAGERS: Dict[str, List[str]] = {
    "arch": _PACMAN,
    "manjaro": _PACMAN,
    "endeavouros": _PACMAN,
    "cachyos": _PACMAN,
    "fedora": _DNF,
    "rhel": _DNF,
    "debian": _APT,
    "ubuntu": _APT,
}


def parse_os_release(content: str) -> Dict[str, str]:
    """KEY=value pairs of an os-release file, quotes removed."""
    values = {}
    for line in content.splitlines():
        line = line.strip()
        if not line or line.startswith("#") or "=" not in line:
            continue
        key, _, value = line.partition("=")
        try:
            parts = shlex.split(value)
        except ValueError:
            continue
        values[key] = parts[0] if parts else ""
    return values


def host_install_command(os_release: Dict[str, str]) -> List[str]:
    """Package-manager invocation for the host distribution (ID, then ID_LIKE)."""
    candidates = [os_release.get("ID", "")] + os_release.get("ID_LIKE", "").split()
    for distro in candidates:
        if distro in PACKAGE_MANAGERS:
            return PACKAGE_MANAGERS[distro] + list(HOST_PACKAGES)
    raise ResourceNotFoundError(os_release.get("ID", "unknown"), "No known package manager for host distribution")


def install_host_dependencies(executor: Executor, os_release_path: Path = Path("/etc/os-release")) -> CommandResult:
    try:
        content = os_release_path.read_text(encoding="utf-8")
    except OSError:
        raise ResourceNotFoundError(str(os_release_path)) from None
    command = host_install_command(parse_os_release(content))
    return executor.run(
        description=f"Installing host tools with {command[0]}",
        command=command,
        privileged=True,
        mode=RunMode.STREAMING,
        on_output=executor.logger.debug,
        check=True
    )

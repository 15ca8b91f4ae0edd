# archwizard/desktops.py
from typing import Dict, List, NamedTuple, Tuple

from archwizard.utils.exceptions import ResourceNotFoundError


class DesktopProfile(NamedTuple):
    name: str
    packages: Tuple[str, ...]
    display_manager: str


_LIGHTDM = ("lightdm", "lightdm-gtk-greeter")

DESKTOPS: Dict[str, DesktopProfile] = {
    profile.name.lower(): profile for profile in (
        DesktopProfile("GNOME", ("gnome", "gnome-shell"), "gdm"),
        DesktopProfile("KDE Plasma", ("plasma", "kde-applications", "sddm"), "sddm"),
        DesktopProfile("XFCE", ("xorg-server", "xfce4", "xfce4-goodies") + _LIGHTDM, "lightdm"),
        DesktopProfile("LXQt", ("lxqt", "sddm"), "sddm"),
        DesktopProfile("Cinnamon", ("xorg-server", "cinnamon") + _LIGHTDM, "lightdm"),
        DesktopProfile("MATE", ("xorg-server", "mate", "mate-extra") + _LIGHTDM, "lightdm"),
        DesktopProfile("i3", ("xorg-server", "i3-wm", "i3status", "dmenu", "xterm") + _LIGHTDM, "lightdm"),
    )
}


def available_desktops() -> List[str]:
    return [profile.name for profile in DESKTOPS.values()]


def lookup_desktop(name: str) -> DesktopProfile:
    """Case-insensitive lookup by display name."""
    try:
        return DESKTOPS[name.strip().lower()]
    except KeyError:
        raise ResourceNotFoundError(name, "Unknown desktop environment") from None

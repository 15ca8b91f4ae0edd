# archwizard/__init__.py

# Utility imports
from .utils.exceptions import InstallerError
from .utils.exceptions import CommandFailedError
from .utils.exceptions import CommandNotFoundError
from .utils.exceptions import CommandTimeoutError
from .utils.exceptions import DeviceBusyError
from .utils.exceptions import DeviceNotReadyError
from .utils.exceptions import PlanRejectedError
from .utils.exceptions import ResourceNotFoundError

# Import *
__all__ = [
    "InstallerError",
    "CommandFailedError",
    "CommandNotFoundError",
    "CommandTimeoutError",
    "DeviceBusyError",
    "DeviceNotReadyError",
    "PlanRejectedError",
    "ResourceNotFoundError",
]

# Versioning
__version__ = "0.1.0"

# archwizard/utils/exceptions.py
from typing import Optional


class InstallerError(Exception):
    """Base exception for every failure the installer reports to its controller."""


class CommandFailedError(InstallerError):
    """Base exception for errors during external command execution."""
    def __init__(self, command: str, exit_code: int, stdout: str = "", stderr: str = "", message: str = "Command failed"):
        self.command = command
        self.exit_code = exit_code
        self.stdout = stdout
        self.stderr = stderr
        self.message = message
        text = f"{self.message} (Command: '{self.command}', Exit Code: {self.exit_code})"
        if self.stderr.strip():
            text += f": {self.stderr.strip()}"
        super().__init__(text)


class CommandNotFoundError(CommandFailedError):
    """Exception raised when the program itself is not found."""
    def __init__(self, command: str, stdout: str = "", stderr: str = ""):
        super().__init__(command, 127, stdout, stderr, "Command not found") # 127 is common exit code for command not found


class CommandTimeoutError(CommandFailedError):
    """Exception raised when a command exceeds its timeout."""
    def __init__(self, command: str, timeout: float, stdout: str = "", stderr: str = ""):
        self.timeout = timeout
        super().__init__(command, 124, stdout, stderr, f"Command timed out after {timeout} seconds")


class InvalidCommandError(CommandFailedError):
    """Exception raised for invalid or malformed commands."""
    def __init__(self, command: str, message: str = "Invalid command format"):
        super().__init__(command, -2, "", "", message)


class PermissionDeniedError(CommandFailedError):
    """Exception raised when a command encounters a permission denied error."""
    def __init__(self, command: str, stdout: str = "", stderr: str = ""):
        super().__init__(command, 126, stdout, stderr, "Permission denied") # 126 is common exit code for permission denied


class DeviceNotReadyError(InstallerError):
    """A partition device node did not appear within the wait window."""
    def __init__(self, path: str, timeout_seconds: float):
        self.path = path
        self.timeout_seconds = timeout_seconds
        super().__init__(f"Device node {path} did not appear within {timeout_seconds:g} seconds")


class PlanRejectedError(InstallerError):
    """The planner refused to produce partition operations for the requested plan."""
    def __init__(self, reason: str, detail: Optional[str] = None):
        self.reason = reason
        self.detail = detail
        text = f"Plan rejected: {reason}"
        if detail:
            text += f" ({detail})"
        super().__init__(text)


class ResourceNotFoundError(InstallerError):
    """A required tool, device or file is missing."""
    def __init__(self, resource: str, message: str = "Required resource not found"):
        self.resource = resource
        super().__init__(f"{message}: {resource}")


class DeviceBusyError(InstallerError):
    """The target still has mounted filesystems after unmounting was attempted."""
    def __init__(self, target: str, mountpoints):
        self.target = target
        self.mountpoints = list(mountpoints)
        super().__init__(f"{target} is still mounted at {', '.join(self.mountpoints)}")

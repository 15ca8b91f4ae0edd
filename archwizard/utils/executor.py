# archwizard/utils/executor.py

import subprocess
import shlex
from collections import deque
from enum import Enum
from typing import Callable, List, NamedTuple, Optional, Union

# Local imports
from archwizard.utils.logger import RichAppLogger
from archwizard.utils.exceptions import (
    CommandFailedError,
    CommandNotFoundError,
    CommandTimeoutError,
    InvalidCommandError,
    PermissionDeniedError,
)

# Number of trailing output lines attached to a failed streamed command
STREAM_ERROR_TAIL = 20

OutputHandler = Callable[[str], None]


class RunMode(str, Enum):
    """How a command is waited on."""
    BLOCKING = "blocking"
    STREAMING = "streaming"


class CommandResult(NamedTuple):
    """Outcome of one external command. Unpacks as (exit_code, stdout, stderr)."""
    exit_code: int
    stdout: str
    stderr: str

    @property
    def succeeded(self) -> bool:
        return self.exit_code == 0


def _text(value) -> str:
    if isinstance(value, bytes):
        return value.decode(errors="replace")
    return value or ""


class Executor:
    """
    Runs the external programs the installer depends on (lsblk, parted, mkfs,
    pacman, ...). The RichAppLogger is injected and shared with every component
    that holds the Executor.

    Commands can be wrapped in arch-chroot for the target root and prefixed
    with a privilege wrapper. Every call returns a CommandResult; with
    check=True a non-zero exit becomes a CommandFailedError (or subclass)
    carrying the command's stderr unchanged.
    """

    def __init__(self,
                 logger_instance: RichAppLogger,
                 default_timeout: Optional[float] = None,
                 chroot_path: str = "/mnt",
                 privilege_wrapper: Optional[str] = "sudo"):
        """
        default_timeout of None lets commands run as long as they need; package
        installation and the bootstrap download have no sensible upper bound.
        privilege_wrapper is split like a shell word list ("doas -n"); None or
        "" means commands already run with the needed rights.
        """
        self.logger = logger_instance

        if default_timeout is not None and default_timeout <= 0:
            self.logger.error(f"Invalid command timeout {default_timeout!r}")
            raise ValueError("Default timeout must be a positive number or None.")
        if not isinstance(chroot_path, str) or not chroot_path:
            self.logger.error(f"Invalid chroot path {chroot_path!r}")
            raise ValueError("Chroot path must be a non-empty string.")

        self._default_timeout = default_timeout
        self._chroot_path = chroot_path
        self._privilege_wrapper = shlex.split(privilege_wrapper) if privilege_wrapper else []
        self.logger.debug(f"Executor ready: target root {self._chroot_path}, "
                          f"wrapper {self._privilege_wrapper or 'none'}, timeout {self._default_timeout or 'none'}")

    @property
    def chroot_path(self) -> str:
        return self._chroot_path

    def _prepare_command(self, command: Union[str, list], chroot: bool = False, privileged: bool = False) -> List[str]:
        """
        Normalises `command` to an argument list, then prefixes arch-chroot and
        the privilege wrapper, in that order of wrapping: arch-chroot itself
        needs root, so the wrapper ends up first.
        """
        if isinstance(command, str):
            try:
                argv = shlex.split(command)
            except ValueError as e:
                self.logger.error(f"Cannot split command {command!r}: {e}")
                raise InvalidCommandError(command, f"Failed to parse command string: {e}")
        elif isinstance(command, list):
            if not all(isinstance(arg, str) for arg in command):
                raise InvalidCommandError(str(command), "All elements in command list must be strings.")
            argv = list(command)
        else:
            self.logger.error(f"Invalid command type {type(command).__name__}")
            raise InvalidCommandError(str(command), "Command must be a string or a list of strings.")

        if not argv:
            raise InvalidCommandError(str(command), "Command cannot be empty.")
        if chroot:
            argv = ["arch-chroot", self._chroot_path] + argv
        if privileged:
            argv = self._privilege_wrapper + argv
        return argv

    def _timeout(self, timeout: Optional[float]) -> Optional[float]:
        return timeout if timeout is not None else self._default_timeout

    def _start_failed(self, cmd_string: str, error: OSError) -> CommandFailedError:
        """The process could not be started at all (missing binary, not executable)."""
        self.logger.error(f"Could not start '{cmd_string}': {error}")
        if isinstance(error, PermissionError):
            return PermissionDeniedError(command=cmd_string, stderr=str(error))
        return CommandNotFoundError(command=cmd_string, stderr="Command not found. Check PATH.")

    def _timed_out(self, cmd_string: str, timeout: float, stdout="", stderr="") -> CommandTimeoutError:
        self.logger.warning(f"'{cmd_string}' timed out after {timeout} seconds")
        return CommandTimeoutError(command=cmd_string, timeout=timeout, stdout=_text(stdout), stderr=_text(stderr))

    def _raise_for_exit(self, cmd_string: str, exit_code: int, stdout: str, stderr: str) -> None:
        """Maps a non-zero exit code onto the matching CommandFailedError subclass."""
        self.logger.error(f"'{cmd_string}' exited with {exit_code}: {stderr.strip()}")

        lowered = stderr.lower()
        if exit_code == 127 or "command not found" in lowered:
            raise CommandNotFoundError(command=cmd_string, stdout=stdout, stderr=stderr)
        if exit_code == 126 or "permission denied" in lowered:
            raise PermissionDeniedError(command=cmd_string, stdout=stdout, stderr=stderr)
        raise CommandFailedError(
            command=cmd_string,
            exit_code=exit_code,
            stdout=stdout,
            stderr=stderr,
            message=f"Command failed with exit code {exit_code}"
        )

    def execute_command(self,
                        command: Union[str, list],
                        timeout: Optional[float] = None,
                        check: bool = True,
                        input_text: Optional[str] = None,
                        privileged: bool = False
                        ) -> CommandResult:
        """
        Runs `command` to completion with subprocess.run and captures its output.
        Prints nothing to the console; inventory queries use this directly.
        """
        argv = self._prepare_command(command, privileged=privileged)
        cmd_string = shlex.join(argv)
        timeout = self._timeout(timeout)
        self.logger.debug(f"exec: {cmd_string} (timeout={timeout}, check={check})")

        try:
            process = subprocess.run(argv, capture_output=True, text=True, timeout=timeout, check=False,
                                     input=input_text)
        except OSError as e:
            raise self._start_failed(cmd_string, e) from None
        except subprocess.TimeoutExpired as e:
            raise self._timed_out(cmd_string, timeout, e.stdout, e.stderr) from None

        stdout = process.stdout or ""
        stderr = process.stderr or ""
        if check and process.returncode != 0:
            self._raise_for_exit(cmd_string, process.returncode, stdout, stderr)

        self.logger.debug(f"exit {process.returncode}: {cmd_string}")
        return CommandResult(process.returncode, stdout, stderr)

    def stream_command(self,
                       command: List[str],
                       on_output: Optional[OutputHandler] = None,
                       timeout: Optional[float] = None,
                       check: bool = True
                       ) -> CommandResult:
        """
        Runs a long command with subprocess.Popen and hands each output line to
        on_output as it arrives. stderr is merged into stdout so the pipe cannot
        fill up unread; on failure the last STREAM_ERROR_TAIL lines are the
        error text. The timeout applies once output has ended.
        """
        cmd_string = shlex.join(command)
        timeout = self._timeout(timeout)
        self.logger.debug(f"stream: {cmd_string} (timeout={timeout}, check={check})")

        try:
            process = subprocess.Popen(command, stdout=subprocess.PIPE, stderr=subprocess.STDOUT,
                                       text=True, bufsize=1)
        except OSError as e:
            raise self._start_failed(cmd_string, e) from None

        lines: List[str] = []
        tail = deque(maxlen=STREAM_ERROR_TAIL)
        for line in process.stdout:
            line = line.rstrip("\n")
            lines.append(line)
            tail.append(line)
            if on_output is not None:
                on_output(line)
        process.stdout.close()
        stdout = "\n".join(lines)

        try:
            exit_code = process.wait(timeout=timeout)
        except subprocess.TimeoutExpired:
            process.kill()
            process.wait()
            raise self._timed_out(cmd_string, timeout, stdout) from None

        if check and exit_code != 0:
            self._raise_for_exit(cmd_string, exit_code, stdout, "\n".join(tail))

        self.logger.debug(f"exit {exit_code}: {cmd_string}")
        return CommandResult(exit_code, stdout, "")

    def run(self,
            description: str,
            command: Union[str, list],
            chroot: bool = False,
            privileged: bool = False,
            dryrun: bool = False,
            timeout: Optional[float] = None,
            check: bool = True,
            input_text: Optional[str] = None,
            mode: RunMode = RunMode.BLOCKING,
            on_output: Optional[OutputHandler] = None
            ) -> CommandResult:
        """
        Runs one installer step inside the logger's execution_step, which shows
        a spinner and resolves it to COMPLETED, CRITICAL or FAILED.

        input_text goes to stdin and is never logged. STREAMING mode does not
        take input.
        """
        argv = self._prepare_command(command, chroot=chroot, privileged=privileged)

        if dryrun:
            self.logger.info(f"DRY RUN: Execution skipped for: '{description}'")
            self.logger.debug(f"DRY RUN COMMAND (Prepared): {shlex.join(argv)}")
            return CommandResult(0, "DRY_RUN_STDOUT", "DRY_RUN_STDERR")

        with self.logger.execution_step(description):
            if mode is RunMode.STREAMING:
                result = self.stream_command(command=argv, on_output=on_output, timeout=timeout, check=check)
            else:
                # argv already carries the wrapper
                result = self.execute_command(command=argv, timeout=timeout, check=check,
                                              input_text=input_text, privileged=False)

            self.logger.debug(f"'{description}' finished with exit code {result.exit_code}")
            if result.stdout and mode is RunMode.BLOCKING:
                self.logger.debug(f"  Stdout:\n{result.stdout.strip()}")
            if result.stderr:
                self.logger.debug(f"  Stderr:\n{result.stderr.strip()}")

            return result

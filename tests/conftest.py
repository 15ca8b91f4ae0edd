import pytest
from unittest.mock import MagicMock

from archwizard.inventory import SystemInventory
from archwizard.utils.exceptions import CommandFailedError
from archwizard.utils.executor import CommandResult, Executor
from archwizard.utils.logger import RichAppLogger

# ======= Execute with: pytest tests/ ========


class FakeSystem:
    """
    Stands in for the host behind a mocked Executor: answers each command by the
    longest matching argv prefix and records every call in order.

    Registering the same prefix several times queues the answers; the last one
    keeps being returned once the queue is down to it.
    """

    def __init__(self, logger):
        self.calls = []
        self._responses = {}
        self.executor = MagicMock(spec=Executor)
        self.executor.logger = logger
        self.executor.chroot_path = "/mnt"
        self.executor.run.side_effect = self._run
        self.executor.execute_command.side_effect = self._execute_command

    def on(self, *prefix, stdout="", stderr="", exit_code=0):
        self._responses.setdefault(tuple(prefix), []).append(CommandResult(exit_code, stdout, stderr))
        return self

    def _answer(self, command):
        best = None
        for prefix in self._responses:
            if tuple(command[:len(prefix)]) == prefix and (best is None or len(prefix) > len(best)):
                best = prefix
        if best is None:
            return CommandResult(0, "", "")
        queue = self._responses[best]
        return queue.pop(0) if len(queue) > 1 else queue[0]

    def _record(self, command, check, **kwargs):
        self.calls.append({"command": list(command), **kwargs})
        result = self._answer(command)
        if check and result.exit_code != 0:
            raise CommandFailedError(" ".join(command), result.exit_code, result.stdout, result.stderr)
        return result

    def _run(self, description, command, chroot=False, privileged=False, check=True, input_text=None, **kwargs):
        return self._record(command, check, chroot=chroot, privileged=privileged, input_text=input_text,
                            description=description)

    def _execute_command(self, command, check=True, privileged=False, **kwargs):
        return self._record(command, check, chroot=False, privileged=privileged, input_text=None,
                            description=None)

    # --- Inspection helpers ---

    @property
    def commands(self):
        return [call["command"] for call in self.calls]

    def ran(self, *prefix):
        """Commands starting with the given tokens, in order."""
        return [cmd for cmd in self.commands if tuple(cmd[:len(prefix)]) == prefix]


@pytest.fixture
def mock_rich_logger():
    """Provides a fully-mocked RichAppLogger instance for dependency injection."""
    mock_logger = MagicMock(spec=RichAppLogger)

    # Configure the mock to return a context manager for execution_step
    mock_context_manager = MagicMock()
    mock_context_manager.__enter__.return_value = None
    # We explicitly set __exit__ to return None (no exception suppression)
    mock_context_manager.__exit__.return_value = None
    mock_logger.execution_step.return_value = mock_context_manager

    return mock_logger


@pytest.fixture
def fake_system(mock_rich_logger):
    return FakeSystem(mock_rich_logger)


@pytest.fixture
def inventory(fake_system):
    """SystemInventory over the fake host; parted is always 'found' as plain 'parted'."""
    inv = SystemInventory(fake_system.executor, device_poll_interval=0.01)
    inv.locate_parted = MagicMock(return_value="parted")
    return inv

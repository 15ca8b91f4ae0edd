import threading

import pytest
from unittest.mock import MagicMock, patch

from archwizard.config.models import Credentials, InstallerConfig
from archwizard.controller import InstallController
from archwizard.inventory import SystemInventory
from archwizard.models import BootMode, InstallMode, InstallPlan, Stage
from archwizard.workers.base import InstallerWorker
from archwizard.workers.events import EventKind, EventStream
from archwizard.utils.exceptions import CommandFailedError

# ======= Execute with: pytest tests/test_controller.py ========

PLAN = InstallPlan(mode=InstallMode.WIPE_DRIVE, boot_mode=BootMode.EFI, drive="sda")


class ScriptedWorker(InstallerWorker):
    """Logs a few lines, then finishes or fails as told."""

    name = "scripted"

    def __init__(self, executor, events, fail=None, gate=None):
        super().__init__(executor, events)
        self.fail = fail
        self.gate = gate

    def execute(self):
        self.enter(Stage.PREPARING)
        self.log("step one")
        if self.gate is not None:
            self.gate.wait(5)
        if self.fail is not None:
            raise self.fail
        self.log("step two")

# --- Fixtures ---

@pytest.fixture
def controller(fake_system):
    return InstallController(InstallerConfig(), fake_system.executor, MagicMock(spec=SystemInventory))

# ----------------------------------------------------------------------
# --- Running workers ---
# ----------------------------------------------------------------------

def test_run_worker_relays_every_event(controller, fake_system):
    events = EventStream()
    seen = []

    succeeded = controller.run_worker(ScriptedWorker(fake_system.executor, events), events, seen.append)

    assert succeeded
    assert [e.kind for e in seen] == [EventKind.LOG, EventKind.LOG, EventKind.COMPLETE]
    assert [e.text for e in seen[:2]] == ["step one", "step two"]

def test_run_worker_reports_failure(controller, fake_system):
    events = EventStream()
    seen = []
    worker = ScriptedWorker(fake_system.executor, events, fail=CommandFailedError("mkfs.ext4", 1))

    assert not controller.run_worker(worker, events, seen.append)
    assert seen[-1].kind is EventKind.ERROR
    assert seen[-1].stage is Stage.PREPARING

def test_only_one_worker_at_a_time(controller, fake_system):
    gate = threading.Event()
    first_events = EventStream()
    first = ScriptedWorker(fake_system.executor, first_events, gate=gate)
    started = threading.Event()
    results = []

    def consume(event):
        started.set()

    runner = threading.Thread(target=lambda: results.append(controller.run_worker(first, first_events, consume)))
    runner.start()
    assert started.wait(5)

    second_events = EventStream()
    with pytest.raises(RuntimeError, match="still running"):
        controller.run_worker(ScriptedWorker(fake_system.executor, second_events), second_events, consume)

    gate.set()
    runner.join(5)
    assert results == [True]

    # the slot is free again once the first worker has finished
    third_events = EventStream()
    assert controller.run_worker(ScriptedWorker(fake_system.executor, third_events), third_events, consume)

# ----------------------------------------------------------------------
# --- Worker wiring ---
# ----------------------------------------------------------------------

@patch("archwizard.controller.DiskPreparationWorker")
@patch.object(InstallController, "run_worker", return_value=True)
def test_prepare_disk_uses_configuration(mock_run_worker, mock_worker_class, fake_system):
    config = InstallerConfig(paths={"mount_root": "/target", "iso_path": "/tmp/arch.iso"},
                             execution={"device_wait_timeout": 30, "event_queue_size": 16})
    controller = InstallController(config, fake_system.executor, MagicMock(spec=SystemInventory))

    assert controller.prepare_disk(PLAN, print)

    args, kwargs = mock_worker_class.call_args
    assert args[0] is PLAN
    assert kwargs["mount_root"] == "/target"
    assert kwargs["iso_path"] == "/tmp/arch.iso"
    assert kwargs["device_wait_timeout"] == 30
    assert kwargs["inventory"] is controller.inventory

@patch("archwizard.controller.BootstrapWorker")
@patch.object(InstallController, "run_worker", return_value=False)
def test_install_system_passes_credentials(mock_run_worker, mock_worker_class, controller):
    credentials = Credentials(username="alice", password="pw", root_password="pw")

    assert not controller.install_system(PLAN, credentials, "GNOME", print)

    args, kwargs = mock_worker_class.call_args
    assert args[:3] == (PLAN, credentials, "GNOME")
    assert kwargs["system_settings"] is controller.config.system

# archwizard/controller.py
from typing import Callable, Optional

from archwizard.config.models import Credentials, InstallerConfig
from archwizard.inventory import SystemInventory
from archwizard.models import InstallPlan
from archwizard.utils.executor import Executor
from archwizard.workers.base import InstallerWorker
from archwizard.workers.bootstrap import BootstrapWorker
from archwizard.workers.disk_prep import DiskPreparationWorker
from archwizard.workers.events import EventKind, EventStream, WorkerEvent

EventHandler = Callable[[WorkerEvent], None]


class InstallController:
    """
    Starts workers and consumes their event streams. Only one worker may be
    active at a time; the workers themselves do not guard against concurrent
    runs on the same drive.
    """

    def __init__(self, config: InstallerConfig, executor: Executor, inventory: Optional[SystemInventory] = None):
        self.config = config
        self.executor = executor
        self.logger = executor.logger
        self.inventory = inventory or SystemInventory(executor, config.execution.device_poll_interval)
        self._active: Optional[InstallerWorker] = None

    def _new_stream(self) -> EventStream:
        return EventStream(self.config.execution.event_queue_size)

    def run_worker(self, worker: InstallerWorker, events: EventStream, on_event: EventHandler) -> bool:
        """Runs `worker` on its thread, hands every event to on_event and returns True on Complete."""
        if self._active is not None and self._active.is_alive:
            raise RuntimeError(f"Cannot start {worker.name}: {self._active.name} is still running")

        self._active = worker
        succeeded = False
        try:
            worker.start()
            for event in events:
                on_event(event)
                succeeded = event.kind is EventKind.COMPLETE
            worker.join()
        finally:
            if not worker.is_alive:
                self._active = None
        return succeeded

    def prepare_disk(self, plan: InstallPlan, on_event: EventHandler) -> bool:
        events = self._new_stream()
        worker = DiskPreparationWorker(
            plan,
            self.executor,
            events,
            inventory=self.inventory,
            mount_root=self.config.paths.mount_root,
            iso_path=self.config.paths.iso_path,
            device_wait_timeout=self.config.execution.device_wait_timeout,
        )
        return self.run_worker(worker, events, on_event)

    def install_system(self, plan: InstallPlan, credentials: Credentials, desktop: str, on_event: EventHandler) -> bool:
        events = self._new_stream()
        worker = BootstrapWorker(
            plan,
            credentials,
            desktop,
            self.executor,
            events,
            system_settings=self.config.system,
            paths=self.config.paths,
            inventory=self.inventory,
        )
        return self.run_worker(worker, events, on_event)

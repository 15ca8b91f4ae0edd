# archwizard/workers/base.py
import threading
from typing import Optional

from archwizard.models import Stage
from archwizard.utils.exceptions import InstallerError
from archwizard.utils.executor import Executor
from archwizard.workers.events import EventStream, WorkerEvent


class InstallerWorker:
    """
    Runs one long operation on a background thread and reports through an
    EventStream. Subclasses implement execute(); any InstallerError it raises
    ends the run with a single Error event, and a normal return ends it with
    Complete. There is no retry and no rollback: the first failure stops the run.
    """

    name = "worker"

    def __init__(self, executor: Executor, events: EventStream):
        self.executor = executor
        self.logger = executor.logger
        self.events = events
        self.stage = Stage.IDLE
        self._thread: Optional[threading.Thread] = None

    def start(self) -> threading.Thread:
        if self._thread is not None:
            raise RuntimeError(f"{self.name} worker has already been started")
        self._thread = threading.Thread(target=self.run, name=self.name.replace(" ", "-"), daemon=True)
        self._thread.start()
        return self._thread

    def join(self, timeout: Optional[float] = None) -> None:
        if self._thread is not None:
            self._thread.join(timeout)

    @property
    def is_alive(self) -> bool:
        return self._thread is not None and self._thread.is_alive()

    def execute(self) -> None:
        raise NotImplementedError

    def run(self) -> None:
        try:
            self.execute()
        except InstallerError as e:
            self.logger.error(f"{self.name.capitalize()} failed while {self.stage.label.lower()}: {e}")
            self.events.emit(WorkerEvent.error(str(e), self.stage))
            return
        except Exception as e:
            self.logger.exception(f"Unexpected error in {self.name} while {self.stage.label.lower()}")
            self.events.emit(WorkerEvent.error(f"Unexpected error: {e}", self.stage))
            return

        self.enter(Stage.DONE)
        self.events.emit(WorkerEvent.complete(self.stage))

    def enter(self, stage: Stage) -> None:
        self.stage = stage
        self.logger.section(stage.label)

    def log(self, text: str) -> None:
        """Reports progress to the controller and mirrors it to the log."""
        self.logger.info(text)
        self.events.emit(WorkerEvent.log(text, self.stage))

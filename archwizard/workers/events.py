# archwizard/workers/events.py
"""
One-way event channel from a worker thread to its controller.

A worker emits any number of Log events followed by exactly one terminal
event (Error or Complete). The queue is bounded, so a worker that gets too far
ahead of its consumer blocks instead of growing memory without limit.
"""

import queue
from enum import Enum
from typing import Iterator, Optional

from pydantic import BaseModel, ConfigDict

from archwizard.models import Stage

DEFAULT_QUEUE_SIZE = 1024


class EventKind(str, Enum):
    LOG = "log"
    ERROR = "error"
    COMPLETE = "complete"


class WorkerEvent(BaseModel):
    model_config = ConfigDict(frozen=True)

    kind: EventKind
    text: str = ""
    stage: Optional[Stage] = None

    @classmethod
    def log(cls, text: str, stage: Optional[Stage] = None) -> "WorkerEvent":
        return cls(kind=EventKind.LOG, text=text, stage=stage)

    @classmethod
    def error(cls, text: str, stage: Optional[Stage] = None) -> "WorkerEvent":
        return cls(kind=EventKind.ERROR, text=text, stage=stage)

    @classmethod
    def complete(cls, stage: Optional[Stage] = None) -> "WorkerEvent":
        return cls(kind=EventKind.COMPLETE, stage=stage)

    @property
    def is_terminal(self) -> bool:
        return self.kind is not EventKind.LOG


class EventStream:
    """Bounded FIFO of WorkerEvents for a single worker run."""

    def __init__(self, maxsize: int = DEFAULT_QUEUE_SIZE):
        if maxsize <= 0:
            raise ValueError("Event queue size must be a positive number.")
        self._queue: "queue.Queue[WorkerEvent]" = queue.Queue(maxsize=maxsize)
        self._terminated = False

    @property
    def terminated(self) -> bool:
        """True once the terminal event has been emitted."""
        return self._terminated

    def emit(self, event: WorkerEvent) -> None:
        if self._terminated:
            raise RuntimeError(f"Event stream already terminated; refusing {event.kind.value} event")
        if event.is_terminal:
            self._terminated = True
        self._queue.put(event)

    def get(self, timeout: Optional[float] = None) -> Optional[WorkerEvent]:
        """Next event, or None if nothing arrived within `timeout` seconds."""
        try:
            return self._queue.get(timeout=timeout)
        except queue.Empty:
            return None

    def __iter__(self) -> Iterator[WorkerEvent]:
        """Yields events in emission order up to and including the terminal one."""
        while True:
            event = self._queue.get()
            yield event
            if event.is_terminal:
                return

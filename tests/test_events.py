import threading

import pytest
from pydantic import ValidationError

from archwizard.models import Stage
from archwizard.workers.events import EventKind, EventStream, WorkerEvent

# ======= Execute with: pytest tests/test_events.py ========

def test_events_are_delivered_in_order():
    events = EventStream()
    events.emit(WorkerEvent.log("one", Stage.PREPARING))
    events.emit(WorkerEvent.log("two", Stage.FORMATTING))
    events.emit(WorkerEvent.complete(Stage.DONE))

    assert [(e.kind, e.text) for e in events] == [
        (EventKind.LOG, "one"),
        (EventKind.LOG, "two"),
        (EventKind.COMPLETE, ""),
    ]

def test_nothing_after_terminal_event():
    events = EventStream()
    events.emit(WorkerEvent.error("mkfs failed", Stage.FORMATTING))

    assert events.terminated
    with pytest.raises(RuntimeError):
        events.emit(WorkerEvent.log("late"))
    with pytest.raises(RuntimeError):
        events.emit(WorkerEvent.complete())

def test_get_times_out_with_none():
    assert EventStream().get(timeout=0.01) is None

def test_queue_must_be_bounded():
    with pytest.raises(ValueError):
        EventStream(0)

def test_full_queue_blocks_producer():
    """A producer that outpaces the consumer waits instead of growing the queue."""
    events = EventStream(maxsize=2)
    events.emit(WorkerEvent.log("a"))
    events.emit(WorkerEvent.log("b"))

    producer = threading.Thread(target=events.emit, args=(WorkerEvent.complete(),), daemon=True)
    producer.start()
    producer.join(timeout=0.2)
    assert producer.is_alive()

    received = list(events)
    producer.join(timeout=5)
    assert [e.kind for e in received] == [EventKind.LOG, EventKind.LOG, EventKind.COMPLETE]
    assert not producer.is_alive()

def test_events_are_immutable():
    event = WorkerEvent.log("text", Stage.MOUNTING)
    with pytest.raises(ValidationError):
        event.text = "changed"

def test_stage_labels():
    assert Stage.INSTALLING_BASE.label == "Installing base"
    assert Stage.DONE.label == "Done"

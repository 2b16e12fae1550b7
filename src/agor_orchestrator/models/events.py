"""Message bus event models.

Every event carried by the bus is one of a closed set of kinds with a fixed
payload shape. The wire encoding is JSON with a ``type`` discriminator.
"""

from datetime import datetime, timezone
from enum import Enum
from typing import Annotated, Literal, Union

from pydantic import BaseModel, Field, TypeAdapter


class EventType(str, Enum):
    """Types of bus events."""

    TASK_STATUS_CHANGED = "task_status_changed"
    SESSION_UPDATED = "session_updated"
    TASK_STOP = "task_stop"
    TASK_STOP_ACK = "task_stop_ack"
    TASK_STOPPED_COMPLETE = "task_stopped_complete"
    EXECUTOR_EXITED = "executor_exited"
    QUEUE_MESSAGE_ADDED = "queue_message_added"
    QUEUE_MESSAGE_PROMOTED = "queue_message_promoted"
    QUEUE_MESSAGE_REMOVED = "queue_message_removed"


class _BaseEvent(BaseModel):
    session_id: str
    timestamp: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))


class TaskStatusChanged(_BaseEvent):
    """A task moved between statuses."""

    type: Literal["task_status_changed"] = "task_status_changed"
    task_id: str
    status_from: str | None
    status_to: str


class SessionUpdated(_BaseEvent):
    """Session status/capacity changed."""

    type: Literal["session_updated"] = "session_updated"
    status: str
    ready_for_prompt: bool


class TaskStop(_BaseEvent):
    """Orchestrator asks the executor running ``task_id`` to halt."""

    type: Literal["task_stop"] = "task_stop"
    task_id: str
    sequence: int


class TaskStopAck(_BaseEvent):
    """Executor received a stop request."""

    type: Literal["task_stop_ack"] = "task_stop_ack"
    task_id: str
    sequence: int
    status: str = "stopping"


class TaskStoppedComplete(_BaseEvent):
    """Executor halted the underlying agent call."""

    type: Literal["task_stopped_complete"] = "task_stopped_complete"
    task_id: str
    sequence: int | None = None


class ExecutorExited(_BaseEvent):
    """Executor process for ``task_id`` terminated."""

    type: Literal["executor_exited"] = "executor_exited"
    task_id: str
    exit_code: int | None


class QueueMessageAdded(_BaseEvent):
    """A prompt was queued."""

    type: Literal["queue_message_added"] = "queue_message_added"
    message_id: str
    queue_position: int


class QueueMessagePromoted(_BaseEvent):
    """A queued prompt became a running task."""

    type: Literal["queue_message_promoted"] = "queue_message_promoted"
    message_id: str
    task_id: str


class QueueMessageRemoved(_BaseEvent):
    """A queued prompt was cancelled by a user."""

    type: Literal["queue_message_removed"] = "queue_message_removed"
    message_id: str


BusEvent = Annotated[
    Union[
        TaskStatusChanged,
        SessionUpdated,
        TaskStop,
        TaskStopAck,
        TaskStoppedComplete,
        ExecutorExited,
        QueueMessageAdded,
        QueueMessagePromoted,
        QueueMessageRemoved,
    ],
    Field(discriminator="type"),
]

# Events an executor is allowed to publish through the HTTP surface
ExecutorEvent = Annotated[
    Union[TaskStopAck, TaskStoppedComplete],
    Field(discriminator="type"),
]

_bus_event_adapter: TypeAdapter[BusEvent] = TypeAdapter(BusEvent)


def parse_event(data: dict[str, object]) -> BusEvent:
    """Validate a JSON payload into its event kind."""
    return _bus_event_adapter.validate_python(data)

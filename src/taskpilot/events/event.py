"""
Domain events and snapshots consumed by the automation engine.

The host application publishes these when tasks change and on its periodic
scheduler ticks. Snapshots are read-only copies of the host's data; the
engine never loads tasks or projects on its own.
"""

from datetime import datetime, timezone
from enum import Enum
from typing import Annotated, Any, Dict, List, Literal, Optional, Union
from uuid import UUID, uuid4

from pydantic import BaseModel, ConfigDict, Field, TypeAdapter


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


class EventType(str, Enum):
    """Domain events the engine reacts to."""
    
    TASK_CREATED = "task.created"
    TASK_UPDATED = "task.updated"
    SCHEDULE_TICK = "schedule.tick"
    DUE_DATE_SCAN = "due_date.scan"


# --- Snapshots ---

class UserSnapshot(BaseModel):
    model_config = ConfigDict(frozen=True)

    id: str
    name: str = ""
    email: Optional[str] = None
    timezone: Optional[str] = None


class ProjectSnapshot(BaseModel):
    model_config = ConfigDict(frozen=True)

    id: str
    name: str = ""
    description: Optional[str] = None
    status: Optional[str] = None
    timezone: str = "UTC"
    owner: Optional[UserSnapshot] = None
    tasks_count: int = 0
    completed_tasks_count: int = 0


class TaskSnapshot(BaseModel):
    """A task as the host saw it when the event was emitted."""

    model_config = ConfigDict(frozen=True)

    id: str
    project: ProjectSnapshot
    title: str = ""
    description: Optional[str] = None
    # The board column the task sits in
    status: str = ""
    priority: str = ""
    due_date: Optional[datetime] = None
    created_at: datetime = Field(default_factory=utcnow)
    updated_at: Optional[datetime] = None
    assignee: Optional[UserSnapshot] = None
    creator: Optional[UserSnapshot] = None

    @property
    def project_id(self) -> str:
        return self.project.id


# --- Events ---

class Event(BaseModel):
    """
    Base event model for all events consumed by the engine.
    """
    
    event_id: UUID = Field(default_factory=uuid4)
    event_type: EventType
    timestamp: datetime = Field(default_factory=utcnow)
    metadata: Dict[str, Any] = Field(default_factory=dict)
    
    @property
    def channel(self) -> str:
        """Bus subject for this event."""
        return f"taskpilot.{self.event_type.value}"

    @property
    def project_ids(self) -> Optional[List[str]]:
        """Projects whose rules may react; None means every project."""
        return None


class TaskCreated(Event):
    """A task was created."""
    
    event_type: Literal[EventType.TASK_CREATED] = EventType.TASK_CREATED
    task: TaskSnapshot
    actor: Optional[UserSnapshot] = None

    @property
    def project_ids(self) -> Optional[List[str]]:
        return [self.task.project_id]


class TaskUpdated(Event):
    """A single task field changed."""
    
    event_type: Literal[EventType.TASK_UPDATED] = EventType.TASK_UPDATED
    task: TaskSnapshot
    changed_field: str
    from_value: Optional[Any] = None
    to_value: Optional[Any] = None
    actor: Optional[UserSnapshot] = None

    @property
    def project_ids(self) -> Optional[List[str]]:
        return [self.task.project_id]


class ScheduleTick(Event):
    """Periodic scheduler tick for schedule triggers."""
    
    event_type: Literal[EventType.SCHEDULE_TICK] = EventType.SCHEDULE_TICK
    now: datetime = Field(default_factory=utcnow)
    # Snapshots used for template context, keyed by id on lookup
    projects: List[ProjectSnapshot] = Field(default_factory=list)

    def project(self, project_id: str) -> Optional[ProjectSnapshot]:
        for project in self.projects:
            if project.id == project_id:
                return project
        return None


class DueDateScan(Event):
    """Periodic scan over open tasks that have due dates."""
    
    event_type: Literal[EventType.DUE_DATE_SCAN] = EventType.DUE_DATE_SCAN
    now: datetime = Field(default_factory=utcnow)
    tasks: List[TaskSnapshot] = Field(default_factory=list)

    @property
    def project_ids(self) -> Optional[List[str]]:
        return sorted({task.project_id for task in self.tasks})


DomainEvent = Annotated[
    Union[TaskCreated, TaskUpdated, ScheduleTick, DueDateScan],
    Field(discriminator="event_type"),
]

_event_adapter = TypeAdapter(DomainEvent)


def parse_event(data: Union[Dict[str, Any], str, bytes]) -> Event:
    """Build the concrete event variant from a dict or JSON payload."""
    if isinstance(data, (str, bytes)):
        return _event_adapter.validate_json(data)
    return _event_adapter.validate_python(data)

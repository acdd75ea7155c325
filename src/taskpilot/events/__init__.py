"""TaskPilot Event Bus - domain events consumed by the automation engine."""

from .bus import EventBus, EventHandler
from .event import (
    DueDateScan,
    Event,
    EventType,
    ProjectSnapshot,
    ScheduleTick,
    TaskCreated,
    TaskSnapshot,
    TaskUpdated,
    UserSnapshot,
    parse_event,
)
from .nats_bus import NatsEventBus
from .publisher import EventPublisher

__all__ = [
    # Core interfaces
    "EventBus",
    "EventHandler",
    "EventPublisher",
    # Event models
    "Event",
    "EventType",
    "TaskCreated",
    "TaskUpdated",
    "ScheduleTick",
    "DueDateScan",
    "parse_event",
    # Snapshots
    "UserSnapshot",
    "ProjectSnapshot",
    "TaskSnapshot",
    # Implementations
    "NatsEventBus",
]

"""
Event Publisher Service - used by the host application to emit the events
the automation worker consumes.
"""

from datetime import datetime
from typing import Any, List, Optional
import logging

from .bus import EventBus
from .event import (
    DueDateScan,
    Event,
    ProjectSnapshot,
    ScheduleTick,
    TaskCreated,
    TaskSnapshot,
    TaskUpdated,
    UserSnapshot,
    utcnow,
)

logger = logging.getLogger(__name__)


class EventPublisher:
    """
    High-level service for publishing domain events.
    
    Wraps the EventBus with typed helpers for each event the engine handles.
    """
    
    def __init__(self, event_bus: EventBus):
        self.event_bus = event_bus

    async def _publish(self, event: Event) -> Event:
        logger.info(
            f"Publishing {event.event_type.value} event",
            extra={"event_id": str(event.event_id)},
        )
        await self.event_bus.publish(event)
        return event
    
    async def publish_task_created(
        self,
        task: TaskSnapshot,
        actor: Optional[UserSnapshot] = None,
    ) -> Event:
        """Publish a task.created event."""
        return await self._publish(TaskCreated(task=task, actor=actor))
    
    async def publish_task_updated(
        self,
        task: TaskSnapshot,
        changed_field: str,
        from_value: Any = None,
        to_value: Any = None,
        actor: Optional[UserSnapshot] = None,
    ) -> Event:
        """Publish a task.updated event for one changed field."""
        return await self._publish(
            TaskUpdated(
                task=task,
                changed_field=changed_field,
                from_value=from_value,
                to_value=to_value,
                actor=actor,
            )
        )

    async def publish_schedule_tick(
        self,
        projects: List[ProjectSnapshot],
        now: Optional[datetime] = None,
    ) -> Event:
        """Publish a scheduler tick."""
        return await self._publish(ScheduleTick(now=now or utcnow(), projects=projects))

    async def publish_due_date_scan(
        self,
        tasks: List[TaskSnapshot],
        now: Optional[datetime] = None,
    ) -> Event:
        """Publish a due date scan over the given open tasks."""
        return await self._publish(DueDateScan(now=now or utcnow(), tasks=tasks))

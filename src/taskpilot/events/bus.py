"""
Transport interface between the host application and the automation worker.
"""

from abc import ABC, abstractmethod
from typing import Awaitable, Callable, Optional

from .event import Event


EventHandler = Callable[[Event], Awaitable[None]]


class EventBus(ABC):
    """
    Carries domain events from the host to automation workers.

    Implementations deliver at least once. A handler that returns normally
    has consumed the event; a handler that raises asks for redelivery. Events
    sharing a consumer group are spread across the workers in that group.
    """

    @abstractmethod
    async def connect(self) -> None:
        ...

    @abstractmethod
    async def disconnect(self) -> None:
        """Stop consuming and wait for in-flight handlers before closing."""
        ...

    @abstractmethod
    async def publish(self, event: Event) -> None:
        """Send ``event`` on its ``channel`` subject."""
        ...

    @abstractmethod
    async def subscribe(
        self,
        channel_pattern: str,
        handler: EventHandler,
        consumer_group: Optional[str] = None,
    ) -> None:
        """
        Feed events on ``channel_pattern`` (wildcards allowed, e.g.
        ``taskpilot.task.*``) to ``handler`` until unsubscribed.
        """
        ...

    @abstractmethod
    async def unsubscribe(self, channel_pattern: str) -> None:
        ...

    @abstractmethod
    async def health_check(self) -> bool:
        ...

import asyncio
import logging
from datetime import timedelta
from typing import Optional

from taskpilot.events import EventBus, Event
from taskpilot.events.event import EventType, utcnow
from taskpilot.automations.engine.orchestrator import RuleEngine
from taskpilot.errors import LedgerUnavailableError

logger = logging.getLogger(__name__)

class AutomationWorker:
    """
    Subscribes to task and scheduler events and runs them through the rule engine.
    """

    CONSUMER_GROUP = "taskpilot-automations"

    def __init__(
        self,
        event_bus: EventBus,
        engine: RuleEngine,
        retention: timedelta = timedelta(hours=72),
        prune_interval: float = 3600.0,
    ):
        self.bus = event_bus
        self.engine = engine
        self.retention = retention
        self.prune_interval = prune_interval
        self.running = False
        self._prune_task: Optional[asyncio.Task] = None

    async def start(self):
        """Start listening for events."""
        self.running = True
        logger.info("Starting Automation Worker...")

        for event_type in EventType:
            subject = f"taskpilot.{event_type.value}"
            await self.bus.subscribe(
                subject,
                self.handle_event,
                consumer_group=f"{self.CONSUMER_GROUP}-{event_type.name.lower()}",
            )

        self._prune_task = asyncio.create_task(self._prune_loop(), name="automation-ledger-prune")
        logger.info("Automation Worker listening on taskpilot.task.*, taskpilot.schedule.tick and taskpilot.due_date.scan")

    async def handle_event(self, event: Event):
        """Process incoming event. Store failures propagate so the bus redelivers."""
        if not self.running:
            return

        logger.debug(f"Handling event: {event.event_id} type: {event.event_type.value}")
        outcome = await self.engine.handle_event(event)
        if outcome.errors:
            logger.warning(f"Event {event.event_id} finished with {len(outcome.errors)} error(s): {outcome.errors}")

    def prune_once(self) -> int:
        cutoff = utcnow() - self.retention
        return self.engine.ledger.prune(cutoff)

    async def _prune_loop(self):
        while self.running:
            try:
                self.prune_once()
                await self.engine.guard.prune(utcnow())
            except LedgerUnavailableError as e:
                logger.error(f"Ledger pruning failed: {e}")
            await asyncio.sleep(self.prune_interval)

    async def stop(self):
        self.running = False
        if self._prune_task:
            self._prune_task.cancel()
            try:
                await self._prune_task
            except asyncio.CancelledError:
                pass
            self._prune_task = None
        logger.info("Stopping Automation Worker...")

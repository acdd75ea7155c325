"""
TaskPilot Automation Worker Entry Point

Consumes task and scheduler events from NATS and runs them through the
automation rule engine.
Usage:
    python -m taskpilot.workers.main
"""

import asyncio
import signal
import sys
from datetime import timedelta

from taskpilot.platform.logging import configure_logging, get_logger
from taskpilot.platform.config import settings
from taskpilot.events import NatsEventBus
from taskpilot.storage import PostgresAdapter, PostgresConfig
from taskpilot.automations.engine.orchestrator import build_rule_engine
from taskpilot.automations.engine.worker import AutomationWorker

# Configure logging
configure_logging()
logger = get_logger(__name__)


class WorkerManager:
    """Manages the lifecycle of the automation worker."""

    def __init__(self):
        self.worker = None
        self.event_bus = None
        self.db = None
        self.engine = None
        self._shutdown_event = asyncio.Event()

    async def start(self):
        logger.info("Starting automation worker")

        self.db = PostgresAdapter(PostgresConfig())
        self.db.connect()

        self.engine = build_rule_engine(settings, self.db)

        self.event_bus = NatsEventBus.from_settings(settings)
        await self.event_bus.connect()
        logger.info("Connected to Event Bus")

        self.worker = AutomationWorker(
            event_bus=self.event_bus,
            engine=self.engine,
            retention=timedelta(hours=settings.AUTOMATION_LEDGER_RETENTION_HOURS),
        )
        await self.worker.start()

        # Keep running until shutdown
        await self._shutdown_event.wait()

    async def shutdown(self):
        """Gracefully shutdown the worker and its resources."""
        logger.info("Shutting down automation worker...")

        if self.worker:
            try:
                await self.worker.stop()
            except Exception as e:
                logger.error(f"Error stopping worker: {e}")

        # Disconnecting cancels in-flight handlers; their partial firings are recorded
        if self.event_bus:
            await self.event_bus.disconnect()

        if self.engine:
            await self.engine.guard.store.close()

        if self.db:
            self.db.close()

        self._shutdown_event.set()
        logger.info("Automation worker shutdown complete")


async def main():
    """Main entry point."""
    manager = WorkerManager()

    # Setup signal handlers
    loop = asyncio.get_running_loop()
    if sys.platform != "win32":
        for sig in (signal.SIGINT, signal.SIGTERM):
            loop.add_signal_handler(sig, lambda: asyncio.create_task(manager.shutdown()))

    try:
        await manager.start()
    except asyncio.CancelledError:
        pass
    except Exception as e:
        logger.error(f"Worker failed: {e}", exc_info=True)
        await manager.shutdown()
        sys.exit(1)


if __name__ == "__main__":
    try:
        asyncio.run(main())
    except KeyboardInterrupt:
        pass

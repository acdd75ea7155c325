"""
NATS JetStream transport for automation events.

The host publishes task and scheduler events onto the TASKPILOT_EVENTS
stream; each automation worker reads them through a durable queue consumer
per event type. Delivery is at-least-once and the rule engine's debounce
guard absorbs redeliveries, so handlers only need to raise to get a retry.
"""

import asyncio
from typing import Dict, Optional

import structlog
from nats.aio.client import Client as NATS
from nats.js import JetStreamContext
from nats.js.api import ConsumerConfig, StreamConfig
from pydantic import ValidationError

from .bus import EventBus, EventHandler
from .event import Event, parse_event

logger = structlog.get_logger()


class NatsEventBus(EventBus):
    """
    Event bus on a single JetStream stream.

    Handler success acks the message. A handler error naks it with a delay
    so JetStream redelivers up to ``max_deliver`` times. Payloads that do not
    parse into a known event are terminated, since no redelivery can fix them.
    """

    STREAM_NAME = "TASKPILOT_EVENTS"
    STREAM_SUBJECTS = ["taskpilot.>"]

    def __init__(
        self,
        nats_url: str = "nats://localhost:4222",
        max_reconnect_attempts: int = 60,
        max_deliver: int = 5,
        ack_wait: float = 60.0,
        nak_delay: float = 5.0,
        stream_max_age_hours: int = 24,
    ):
        self.nats_url = nats_url
        self.max_reconnect_attempts = max_reconnect_attempts
        self.max_deliver = max_deliver
        # Longer than one firing with retries, or JetStream redelivers mid-dispatch
        self.ack_wait = ack_wait
        self.nak_delay = nak_delay
        self.stream_max_age_hours = stream_max_age_hours
        self.nc: Optional[NATS] = None
        self.js: Optional[JetStreamContext] = None
        self._subscriptions: Dict[str, object] = {}
        self._tasks: Dict[str, asyncio.Task] = {}
        self._connected = False

    @classmethod
    def from_settings(cls, settings) -> "NatsEventBus":
        return cls(
            nats_url=settings.NATS_URL,
            max_reconnect_attempts=settings.NATS_MAX_RECONNECT_ATTEMPTS,
            max_deliver=settings.NATS_MAX_DELIVER,
            ack_wait=settings.NATS_ACK_WAIT_SECONDS,
            nak_delay=settings.NATS_NAK_DELAY_SECONDS,
            stream_max_age_hours=settings.NATS_STREAM_MAX_AGE_HOURS,
        )

    async def connect(self) -> None:
        if self._connected:
            logger.warning("nats_already_connected")
            return

        try:
            self.nc = NATS()
            await self.nc.connect(
                servers=[self.nats_url],
                max_reconnect_attempts=self.max_reconnect_attempts,
                reconnect_time_wait=2,
            )
            self.js = self.nc.jetstream()
            await self._ensure_stream()
        except Exception as e:
            logger.error("nats_connect_failed", nats_url=self.nats_url, error=str(e))
            raise ConnectionError(f"Could not connect to NATS: {e}")

        self._connected = True
        logger.info("nats_connected", nats_url=self.nats_url, stream=self.STREAM_NAME)

    async def _ensure_stream(self) -> None:
        if not self.js:
            raise RuntimeError("JetStream context not initialized")

        try:
            await self.js.stream_info(self.STREAM_NAME)
            return
        except Exception:
            logger.debug("nats_stream_missing", stream=self.STREAM_NAME)

        config = StreamConfig(
            name=self.STREAM_NAME,
            subjects=self.STREAM_SUBJECTS,
            max_age=self.stream_max_age_hours * 3600,
            max_bytes=256_000_000,
            storage="file",
            discard="old",
        )
        await self.js.add_stream(config=config)
        logger.info("nats_stream_created", stream=self.STREAM_NAME, max_age_hours=self.stream_max_age_hours)

    async def disconnect(self) -> None:
        if not self._connected:
            return

        for task in self._tasks.values():
            task.cancel()
        # Cancelled handlers record their partial firings before exiting
        await asyncio.gather(*self._tasks.values(), return_exceptions=True)

        for pattern, subscription in self._subscriptions.items():
            try:
                await subscription.unsubscribe()
            except Exception as e:
                logger.warning("nats_unsubscribe_failed", pattern=pattern, error=str(e))

        if self.nc:
            await self.nc.close()

        self._connected = False
        self._subscriptions.clear()
        self._tasks.clear()
        logger.info("nats_disconnected")

    async def publish(self, event: Event) -> None:
        if not self._connected or not self.js:
            raise ConnectionError("Not connected to NATS. Call connect() first.")

        ack = await self.js.publish(
            event.channel,
            event.model_dump_json().encode(),
            # Nats-Msg-Id lets JetStream drop duplicate publishes of one event
            headers={
                "Nats-Msg-Id": str(event.event_id),
                "event-type": event.event_type.value,
            },
        )
        logger.debug(
            "event_published",
            event_id=str(event.event_id),
            event_type=event.event_type.value,
            sequence=ack.seq,
        )

    async def subscribe(
        self,
        channel_pattern: str,
        handler: EventHandler,
        consumer_group: Optional[str] = None,
    ) -> None:
        if not self._connected or not self.js:
            raise ConnectionError("Not connected to NATS. Call connect() first.")

        if consumer_group:
            config = ConsumerConfig(
                durable_name=consumer_group,
                deliver_policy="all",
                ack_policy="explicit",
                ack_wait=self.ack_wait,
                max_deliver=self.max_deliver,
            )
            subscription = await self.js.subscribe(
                channel_pattern,
                durable=consumer_group,
                queue=consumer_group,
                config=config,
                manual_ack=True,
            )
        else:
            subscription = await self.js.subscribe(channel_pattern, manual_ack=True)

        self._subscriptions[channel_pattern] = subscription
        self._tasks[channel_pattern] = asyncio.create_task(
            self._process_messages(subscription, handler, channel_pattern),
            name=f"nats-sub-{channel_pattern}",
        )
        logger.info("nats_subscribed", pattern=channel_pattern, consumer_group=consumer_group)

    async def _process_messages(self, subscription, handler: EventHandler, pattern: str) -> None:
        logger.info("nats_consumer_started", pattern=pattern)
        try:
            async for msg in subscription.messages:
                await self._handle_message(msg, handler)
        except asyncio.CancelledError:
            logger.info("nats_consumer_cancelled", pattern=pattern)
            raise
        except Exception as e:
            logger.error("nats_consumer_failed", pattern=pattern, error=str(e), exc_info=True)

    async def _handle_message(self, msg, handler: EventHandler) -> None:
        try:
            event = parse_event(msg.data)
        except ValidationError as e:
            logger.error("event_malformed", subject=msg.subject, error=str(e))
            await msg.term()
            return

        with structlog.contextvars.bound_contextvars(
            event_id=str(event.event_id),
            event_type=event.event_type.value,
        ):
            try:
                await handler(event)
            except Exception as e:
                logger.error("event_handler_failed", subject=msg.subject, error=str(e), exc_info=True)
                await msg.nak(delay=self.nak_delay)
                return

            await msg.ack()
            logger.debug("event_handled", subject=msg.subject)

    async def unsubscribe(self, channel_pattern: str) -> None:
        task = self._tasks.pop(channel_pattern, None)
        if task:
            task.cancel()
        subscription = self._subscriptions.pop(channel_pattern, None)
        if subscription:
            await subscription.unsubscribe()
            logger.info("nats_unsubscribed", pattern=channel_pattern)

    async def health_check(self) -> bool:
        if not self._connected or not self.nc:
            return False
        return self.nc.is_connected

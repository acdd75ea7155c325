"""
Duplicate suppression for (rule, subject) firings.

A burst of identical events (host retries, re-emitted updates) must fire a
rule at most once per subject within the debounce window. The check and the
record happen as one atomic store operation so concurrent handlers of the
same stream cannot both win.
"""
import logging
import threading
from abc import ABC, abstractmethod
from datetime import datetime, timedelta
from typing import TYPE_CHECKING, Dict, Optional

from taskpilot.automations.engine.context import as_aware
from taskpilot.automations.schemas import AutomationRule
from taskpilot.errors import LedgerUnavailableError

if TYPE_CHECKING:
    from taskpilot.automations.engine.ledger import ExecutionLedger

logger = logging.getLogger(__name__)


class DebounceStore(ABC):
    """Keyed store of last-fired timestamps."""

    @abstractmethod
    async def try_acquire(self, key: str, now: datetime, window: timedelta) -> bool:
        """Record now for key unless key fired within window. True if recorded."""
        pass

    @abstractmethod
    async def last_fired(self, key: str) -> Optional[datetime]:
        pass

    @abstractmethod
    async def record(self, key: str, now: datetime, window: timedelta) -> None:
        pass

    async def prune(self, now: datetime, window: timedelta) -> int:
        """Drop entries older than window. Stores with native expiry return 0."""
        return 0

    async def close(self) -> None:
        pass


class InMemoryDebounceStore(DebounceStore):
    """Process-local store for a single worker."""

    def __init__(self):
        self._entries: Dict[str, datetime] = {}
        self._lock = threading.Lock()

    async def try_acquire(self, key: str, now: datetime, window: timedelta) -> bool:
        with self._lock:
            last = self._entries.get(key)
            if last is not None and now - last < window:
                return False
            self._entries[key] = now
            return True

    async def last_fired(self, key: str) -> Optional[datetime]:
        with self._lock:
            return self._entries.get(key)

    async def record(self, key: str, now: datetime, window: timedelta) -> None:
        with self._lock:
            last = self._entries.get(key)
            if last is None or now > last:
                self._entries[key] = now

    async def prune(self, now: datetime, window: timedelta) -> int:
        with self._lock:
            stale = [k for k, fired in self._entries.items() if now - fired >= window]
            for key in stale:
                del self._entries[key]
            return len(stale)


class RedisDebounceStore(DebounceStore):
    """
    Shared store for multiple workers. try_acquire is a single
    SET key value NX PX window, so the key expires on its own.
    """

    def __init__(self, client, prefix: str = "taskpilot:automation:debounce:"):
        self.client = client
        self.prefix = prefix

    @classmethod
    def from_url(cls, url: str, **kwargs) -> "RedisDebounceStore":
        import redis.asyncio as aioredis

        return cls(aioredis.from_url(url, decode_responses=True), **kwargs)

    def _key(self, key: str) -> str:
        return f"{self.prefix}{key}"

    @staticmethod
    def _ttl_ms(window: timedelta) -> int:
        return max(1, int(window.total_seconds() * 1000))

    async def try_acquire(self, key: str, now: datetime, window: timedelta) -> bool:
        acquired = await self.client.set(
            self._key(key), now.isoformat(), nx=True, px=self._ttl_ms(window)
        )
        return bool(acquired)

    async def last_fired(self, key: str) -> Optional[datetime]:
        value = await self.client.get(self._key(key))
        if value is None:
            return None
        if isinstance(value, bytes):
            value = value.decode()
        return datetime.fromisoformat(value)

    async def record(self, key: str, now: datetime, window: timedelta) -> None:
        await self.client.set(self._key(key), now.isoformat(), px=self._ttl_ms(window))

    async def close(self) -> None:
        await self.client.aclose()


class DebounceGuard:
    """Suppresses repeat firings of a rule for the same subject."""

    def __init__(
        self,
        store: DebounceStore,
        window: timedelta = timedelta(seconds=60),
        ledger: Optional["ExecutionLedger"] = None,
    ):
        self.store = store
        self.window = window
        self.ledger = ledger

    @staticmethod
    def key(rule: AutomationRule, subject_key: str) -> str:
        return f"{rule.id}:{subject_key}"

    async def _fired_in_ledger(self, rule: AutomationRule, subject_key: str, now: datetime) -> bool:
        if self.ledger is None:
            return False
        try:
            return self.ledger.fired_within(rule.id, subject_key, self.window, now)
        except LedgerUnavailableError as e:
            logger.warning(f"Ledger unavailable for debounce lookup, using guard store only: {e}")
            return False

    async def should_fire(self, rule: AutomationRule, subject_key: str, now: datetime) -> bool:
        now = as_aware(now)
        if self.window <= timedelta(0):
            return True
        if await self._fired_in_ledger(rule, subject_key, now):
            return False
        last = await self.store.last_fired(self.key(rule, subject_key))
        return last is None or now - as_aware(last) >= self.window

    async def record(self, rule: AutomationRule, subject_key: str, now: datetime) -> None:
        if self.window <= timedelta(0):
            return
        await self.store.record(self.key(rule, subject_key), as_aware(now), self.window)

    async def acquire(self, rule: AutomationRule, subject_key: str, now: datetime) -> bool:
        """Check and record in one step. False means this firing is a duplicate."""
        now = as_aware(now)
        if self.window <= timedelta(0):
            return True
        if await self._fired_in_ledger(rule, subject_key, now):
            return False
        return await self.store.try_acquire(self.key(rule, subject_key), now, self.window)

    async def prune(self, now: datetime) -> int:
        return await self.store.prune(as_aware(now), self.window)

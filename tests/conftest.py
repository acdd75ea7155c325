"""
Pytest configuration and shared fixtures.
"""

import asyncio
import os
import sys
from datetime import datetime, timedelta, timezone

import pytest

sys.path.append(os.path.join(os.getcwd(), "src"))

# Settings are read on first import of taskpilot.platform.config
os.environ.setdefault("APP_ENV", "test")
os.environ.setdefault("DEBUG", "true")
os.environ.setdefault("DATABASE_URL", "sqlite://")
os.environ.setdefault("AUTOMATION_DEBOUNCE_BACKEND", "memory")

from taskpilot.automations.actions.base import ChannelAdapter
from taskpilot.automations.engine.dispatcher import ActionDispatcher
from taskpilot.automations.engine.guard import DebounceGuard, InMemoryDebounceStore
from taskpilot.automations.engine.ledger import ExecutionLedger
from taskpilot.automations.engine.matcher import TriggerMatcher
from taskpilot.automations.engine.orchestrator import RuleEngine
from taskpilot.automations.engine.retry import RetryPolicy
from taskpilot.automations.models import AutomationRuleModel
from taskpilot.automations.repository import AutomationRuleRepository
from taskpilot.automations.schemas import (
    ActionType,
    AutomationAction,
    AutomationRule,
    TriggerType,
    parse_trigger_config,
)
from taskpilot.errors import ConfigurationError
from taskpilot.events.event import ProjectSnapshot, TaskSnapshot, UserSnapshot
from taskpilot.storage import PostgresAdapter, PostgresConfig

FIXED_NOW = datetime(2026, 10, 18, 9, 0, tzinfo=timezone.utc)


@pytest.fixture(scope="session", autouse=True)
def setup_test_environment() -> None:
    """Set up test environment variables."""
    os.environ.setdefault("APP_ENV", "test")


# =============================================================================
# STORAGE
# =============================================================================


@pytest.fixture
def db():
    """In-memory SQLite rule store with the automation tables created."""
    adapter = PostgresAdapter(PostgresConfig(DATABASE_URL="sqlite://"))
    adapter.connect()
    adapter.create_all()
    yield adapter
    adapter.close()


@pytest.fixture
def db_session(db):
    with db.get_session() as session:
        yield session


@pytest.fixture
def store_rule(db):
    """Insert a rule row directly, bypassing validation."""

    def _store(
        id="rule-1",
        project_id="proj-1",
        name="Notify team",
        trigger_type="task_created",
        trigger_config=None,
        actions=None,
        is_active=True,
    ) -> AutomationRuleModel:
        with db.get_session() as session:
            model = AutomationRuleModel(
                id=id,
                project_id=project_id,
                name=name,
                trigger_type=trigger_type,
                trigger_config=trigger_config or {},
                actions=actions if actions is not None else [{"type": "Slack", "config": {"message": "hi"}}],
                is_active=is_active,
            )
            session.add(model)
        return model

    return _store


# =============================================================================
# SNAPSHOTS
# =============================================================================


@pytest.fixture
def owner():
    return UserSnapshot(id="user-owner", name="Olivia Owner", email="olivia@example.com")


@pytest.fixture
def project(owner):
    return ProjectSnapshot(
        id="proj-1",
        name="Website Redesign",
        description="Q4 refresh",
        status="active",
        owner=owner,
        tasks_count=12,
        completed_tasks_count=5,
    )


@pytest.fixture
def make_task(project):
    def _make(**overrides) -> TaskSnapshot:
        fields = {
            "id": "task-42",
            "project": project,
            "title": "Fix login bug",
            "status": "To-Do",
            "priority": "High",
            "created_at": FIXED_NOW,
        }
        fields.update(overrides)
        return TaskSnapshot(**fields)

    return _make


@pytest.fixture
def make_rule():
    """Build an AutomationRule snapshot from raw trigger/action dicts."""

    def _make(
        trigger_type="task_created",
        trigger_config=None,
        actions=None,
        id="rule-1",
        project_id="proj-1",
        name="Notify team",
        is_active=True,
    ) -> AutomationRule:
        if actions is None:
            actions = [{"type": "Slack", "config": {"message": "New task: {{task.title}}"}}]
        return AutomationRule(
            id=id,
            project_id=project_id,
            name=name,
            trigger_type=TriggerType.parse(trigger_type),
            trigger=parse_trigger_config(trigger_type, trigger_config or {}),
            actions=tuple(AutomationAction.model_validate(a) for a in actions),
            is_active=is_active,
        )

    return _make


# =============================================================================
# CHANNELS
# =============================================================================


class RecordingChannel(ChannelAdapter):
    """Channel double that records rendered configs and fails on demand."""

    def __init__(self, action_type=ActionType.SLACK, fail_with=None, delay=0.0):
        super().__init__(timeout=1.0)
        self._action_type = action_type
        self.fail_with = fail_with
        self.delay = delay
        self.calls = []

    @property
    def type_name(self) -> ActionType:
        return self._action_type

    async def send(self, config, context):
        self.calls.append(config)
        if self.delay:
            await asyncio.sleep(self.delay)
        if self.fail_with is not None:
            raise self.fail_with
        return {"ok": True}


class StaticRegistry:
    """Per-test channel registry with the same get() contract as ChannelRegistry."""

    def __init__(self, *channels):
        self.channels = {c.type_name: c for c in channels}

    def get(self, action_type):
        channel = self.channels.get(ActionType.parse(action_type))
        if channel is None:
            raise ConfigurationError(f"No channel registered for action type '{action_type}'")
        return channel


async def _no_sleep(delay):
    return None


@pytest.fixture
def make_channel():
    return RecordingChannel


@pytest.fixture
def make_registry():
    return StaticRegistry


@pytest.fixture
def make_dispatcher():
    def _make(*channels, timeout=1.0, concurrency=4, max_attempts=3, shutdown_grace=0.5):
        return ActionDispatcher(
            registry=StaticRegistry(*channels),
            retry_policy=RetryPolicy(max_attempts=max_attempts, base_delay=0.0, sleep=_no_sleep),
            concurrency=concurrency,
            timeout=timeout,
            shutdown_grace=shutdown_grace,
        )

    return _make


@pytest.fixture
def make_engine(db, make_dispatcher):
    """RuleEngine over the in-memory store with the given channels."""

    def _make(*channels, window=timedelta(seconds=60), scan_interval=timedelta(minutes=5), clock=None, **dispatcher_kwargs):
        ledger = ExecutionLedger(db)
        return RuleEngine(
            db=db,
            repository=AutomationRuleRepository(),
            matcher=TriggerMatcher(scan_interval),
            guard=DebounceGuard(InMemoryDebounceStore(), window, ledger=ledger),
            dispatcher=make_dispatcher(*channels, **dispatcher_kwargs),
            ledger=ledger,
            clock=clock or (lambda: FIXED_NOW),
        )

    return _make

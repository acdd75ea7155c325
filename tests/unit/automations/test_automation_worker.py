import asyncio
from datetime import timedelta
from unittest.mock import AsyncMock, MagicMock

import pytest

from taskpilot.automations.engine.results import EventOutcome
from taskpilot.automations.engine.worker import AutomationWorker
from taskpilot.errors import LedgerUnavailableError
from taskpilot.events.event import TaskCreated, utcnow


@pytest.fixture
def engine():
    engine = MagicMock()
    engine.handle_event = AsyncMock(return_value=EventOutcome(event_id="e1", event_type="task.created"))
    engine.guard.prune = AsyncMock(return_value=0)
    engine.ledger.prune.return_value = 3
    return engine


@pytest.fixture
def worker(engine):
    return AutomationWorker(AsyncMock(), engine, retention=timedelta(hours=72), prune_interval=3600)


@pytest.mark.asyncio
async def test_start_subscribes_each_event_subject(worker):
    await worker.start()
    try:
        subjects = {c.args[0]: c.kwargs["consumer_group"] for c in worker.bus.subscribe.call_args_list}
        assert subjects == {
            "taskpilot.task.created": "taskpilot-automations-task_created",
            "taskpilot.task.updated": "taskpilot-automations-task_updated",
            "taskpilot.schedule.tick": "taskpilot-automations-schedule_tick",
            "taskpilot.due_date.scan": "taskpilot-automations-due_date_scan",
        }
        assert worker.running
    finally:
        await worker.stop()
    assert not worker.running


@pytest.mark.asyncio
async def test_handle_event_runs_engine(worker, engine, make_task):
    worker.running = True
    event = TaskCreated(task=make_task())

    await worker.handle_event(event)

    engine.handle_event.assert_awaited_once_with(event)


@pytest.mark.asyncio
async def test_handle_event_ignored_when_stopped(worker, engine, make_task):
    await worker.handle_event(TaskCreated(task=make_task()))
    engine.handle_event.assert_not_awaited()


@pytest.mark.asyncio
async def test_store_failure_propagates_for_redelivery(worker, engine, make_task):
    worker.running = True
    engine.handle_event.side_effect = LedgerUnavailableError("rule store unavailable")

    with pytest.raises(LedgerUnavailableError):
        await worker.handle_event(TaskCreated(task=make_task()))


def test_prune_once_uses_retention_cutoff(worker, engine):
    assert worker.prune_once() == 3

    [cutoff] = engine.ledger.prune.call_args.args
    assert timedelta(hours=71, minutes=59) < utcnow() - cutoff <= timedelta(hours=72, minutes=1)


@pytest.mark.asyncio
async def test_prune_loop_survives_ledger_outage(worker, engine):
    engine.ledger.prune.side_effect = LedgerUnavailableError("down")
    worker.running = True

    task = asyncio.create_task(worker._prune_loop())
    await asyncio.sleep(0.01)
    worker.running = False
    task.cancel()
    with pytest.raises(asyncio.CancelledError):
        await task

    engine.ledger.prune.assert_called_once()
    engine.guard.prune.assert_not_awaited()

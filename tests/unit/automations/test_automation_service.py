from datetime import datetime, timezone

import pytest

from taskpilot.automations import schemas
from taskpilot.automations.engine.ledger import ExecutionLedger
from taskpilot.automations.engine.results import ActionResult, ActionStatus
from taskpilot.automations.repository import AutomationRuleRepository
from taskpilot.automations.service import AutomationRuleService
from taskpilot.errors import ConfigurationError


@pytest.fixture
def service():
    return AutomationRuleService(AutomationRuleRepository())


def _create(service, session, project_id="proj-1", **overrides):
    data = {
        "name": "Notify on high priority",
        "trigger_type": "Task Created",
        "trigger_config": {"priority": "high"},
        "actions": [{"type": "Slack", "config": {"message": "{{task.title}}"}}],
    }
    data.update(overrides)
    return service.create_rule(session, project_id, schemas.AutomationRuleCreate(**data), created_by="user-1")


def test_create_rule_normalizes_input(service, db_session):
    rule = _create(service, db_session)

    assert rule.id
    assert rule.trigger_type == "task_created"
    assert rule.trigger_config == {"columns": [], "priority": "High"}
    assert rule.actions == [{"type": "Slack", "config": {"message": "{{task.title}}"}, "enabled": True}]
    assert rule.runs_count == 0
    assert rule.version == 1
    assert rule.created_by == "user-1"


def test_get_rule_is_scoped_to_project(service, db_session):
    rule = _create(service, db_session)
    assert service.get_rule(db_session, "proj-1", rule.id) is rule
    assert service.get_rule(db_session, "proj-2", rule.id) is None


def test_list_rules_and_active_rules(service, db_session):
    a = _create(service, db_session, name="A")
    b = _create(service, db_session, name="B", is_active=False)
    _create(service, db_session, project_id="proj-2", name="C")
    d = _create(
        service,
        db_session,
        name="D",
        trigger_type="schedule",
        trigger_config={"frequency": "Daily", "time": "09:00"},
    )

    assert {r.id for r in service.list_rules(db_session, "proj-1")} == {a.id, b.id, d.id}
    assert {r.id for r in service.list_active_rules(db_session, "proj-1")} == {a.id, d.id}
    assert [r.id for r in service.list_active_rules(db_session, "proj-1", schemas.TriggerType.SCHEDULE)] == [d.id]
    assert len(service.list_active_rules(db_session)) == 3


def test_update_rule_bumps_version(service, db_session):
    rule = _create(service, db_session)
    updated = service.update_rule(
        db_session, "proj-1", rule.id, schemas.AutomationRuleUpdate(name="Renamed", description="Pinged on create")
    )
    assert updated.name == "Renamed"
    assert updated.description == "Pinged on create"
    assert updated.version == 2
    # Untouched fields stay
    assert updated.trigger_config["priority"] == "High"


def test_update_trigger_type_revalidates_config(service, db_session):
    rule = _create(service, db_session)

    updated = service.update_rule(
        db_session,
        "proj-1",
        rule.id,
        schemas.AutomationRuleUpdate(trigger_type="due_date", trigger_config={"hours_before": 4}),
    )
    assert updated.trigger_type == "due_date"
    assert updated.trigger_config == {"hours_before": 4, "priority": "Any"}

    with pytest.raises(ConfigurationError):
        service.update_rule(
            db_session,
            "proj-1",
            rule.id,
            schemas.AutomationRuleUpdate(trigger_type="schedule", trigger_config={"frequency": "Hourly"}),
        )


def test_update_missing_rule(service, db_session):
    assert service.update_rule(db_session, "proj-1", "nope", schemas.AutomationRuleUpdate(name="x")) is None


def test_toggle_rule(service, db_session):
    rule = _create(service, db_session)
    assert service.toggle_rule(db_session, "proj-1", rule.id).is_active is False
    assert service.toggle_rule(db_session, "proj-1", rule.id).is_active is True


def test_remove_rule_without_history_deletes(service, db_session):
    rule = _create(service, db_session)
    assert service.remove_rule(db_session, "proj-1", rule.id) == "deleted"
    assert service.get_rule(db_session, "proj-1", rule.id) is None
    assert service.remove_rule(db_session, "proj-1", rule.id) is None


def test_remove_rule_with_history_deactivates(service, db, db_session):
    rule = _create(service, db_session)
    db_session.commit()

    outcome = ActionResult(index=0, action_type="Slack", status=ActionStatus.SUCCEEDED, attempts=1)
    ExecutionLedger(db).record(
        schemas.AutomationRule.from_model(rule),
        "task:1",
        [outcome],
        datetime(2026, 10, 18, 9, 0, tzinfo=timezone.utc),
    )

    assert service.remove_rule(db_session, "proj-1", rule.id) == "deactivated"
    assert service.get_rule(db_session, "proj-1", rule.id).is_active is False


def test_snapshot_from_stored_rule(service, db_session):
    model = _create(service, db_session)
    snapshot = schemas.AutomationRule.from_model(model)

    assert snapshot.trigger_type == schemas.TriggerType.TASK_CREATED
    assert isinstance(snapshot.trigger, schemas.TaskCreatedConfig)
    assert snapshot.actions[0].type == schemas.ActionType.SLACK
    assert snapshot.runnable

import pytest
from datetime import datetime, timezone
from pydantic import ValidationError

from taskpilot.automations import schemas
from taskpilot.errors import ConfigurationError


# =============================================================================
# TRIGGERS
# =============================================================================


@pytest.mark.parametrize(
    "value, expected",
    [
        ("task_created", schemas.TriggerType.TASK_CREATED),
        ("Task Created", schemas.TriggerType.TASK_CREATED),
        ("Task Updated", schemas.TriggerType.TASK_UPDATED),
        ("task_due_date", schemas.TriggerType.DUE_DATE),
        ("Schedule", schemas.TriggerType.SCHEDULE),
    ],
)
def test_trigger_type_parse(value, expected):
    assert schemas.TriggerType.parse(value) == expected


def test_unknown_trigger_type():
    with pytest.raises(ConfigurationError):
        schemas.TriggerType.parse("project_status")


def test_task_created_config_accepts_comma_columns():
    config = schemas.parse_trigger_config("task_created", {"columns": "To Do, In Progress", "priority": "HIGH"})
    assert config.columns == ["To Do", "In Progress"]
    assert config.priority == "High"


def test_task_created_config_rejects_unknown_priority():
    with pytest.raises(ConfigurationError) as exc_info:
        schemas.parse_trigger_config("task_created", {"priority": "Urgent"})
    assert exc_info.value.errors[0]["loc"] == ("priority",)


def test_task_updated_config_defaults():
    config = schemas.parse_trigger_config("task_updated", {"field": "due date", "from_status": ""})
    assert config.field == "DueDate"
    assert config.from_status == "Any"
    assert config.to_status == "Any"


def test_schedule_config_validation():
    config = schemas.parse_trigger_config(
        "schedule", {"frequency": "weekly", "time": "7:05", "timezone": "Europe/Berlin", "day_of_week": 5}
    )
    assert config.frequency == "Weekly"
    assert config.time == "07:05"
    assert (config.hour, config.minute) == (7, 5)
    assert config.tzinfo.key == "Europe/Berlin"

    for bad in (
        {"frequency": "Hourly"},
        {"frequency": "Daily", "time": "25:00"},
        {"frequency": "Daily", "timezone": "Mars/Olympus"},
        {"frequency": "Weekly", "day_of_week": 8},
        {"frequency": "Monthly", "day_of_month": 0},
    ):
        with pytest.raises(ConfigurationError):
            schemas.parse_trigger_config("schedule", bad)


def test_due_date_config():
    config = schemas.parse_trigger_config("due_date", {})
    assert config.hours_before == 24
    assert config.priority == "Any"

    with pytest.raises(ConfigurationError):
        schemas.parse_trigger_config("due_date", {"priority": "Low"})
    with pytest.raises(ConfigurationError):
        schemas.parse_trigger_config("due_date", {"hours_before": 10**12})
    assert schemas.parse_trigger_config("due_date", {"hours_before": -48}).hours_before == -48

    with pytest.raises(ValidationError):
        schemas.AutomationRuleCreate(name="x", trigger_type="due_date", trigger_config={"hours_before": 10**12})


# =============================================================================
# ACTIONS
# =============================================================================


@pytest.mark.parametrize(
    "value, expected",
    [
        ("Email", schemas.ActionType.EMAIL),
        ("send_email", schemas.ActionType.EMAIL),
        ("twilio-sms", schemas.ActionType.SMS),
        ("github", schemas.ActionType.GITHUB_ISSUE),
        ("GitHub Issue", schemas.ActionType.GITHUB_ISSUE),
        ("trello_card", schemas.ActionType.TRELLO_CARD),
        ("notion", schemas.ActionType.NOTION_PAGE),
    ],
)
def test_action_type_parse(value, expected):
    assert schemas.ActionType.parse(value) == expected


def test_unknown_action_type():
    with pytest.raises(ConfigurationError):
        schemas.ActionType.parse("WhatsApp")


def test_legacy_config_keys_are_renamed():
    email = schemas.parse_action_config("Email", {"recipient": "a@x.io", "message": "hi"})
    assert (email.to, email.body) == ("a@x.io", "hi")

    sms = schemas.parse_action_config("SMS", {"to": "+1555", "body": "hi"})
    assert (sms.phone_number, sms.message) == ("+1555", "hi")

    discord = schemas.parse_action_config("Discord", {"message": "hi"})
    assert discord.content == "hi"


def test_webhook_config():
    config = schemas.parse_action_config(
        "Webhook", {"url": "https://x.io", "method": "put", "payload": '{"a": 1}', "headers": ""}
    )
    assert config.method == "PUT"
    assert config.body == {"a": 1}
    assert config.headers == {}

    with pytest.raises(ConfigurationError):
        schemas.parse_action_config("Webhook", {"url": "https://x.io", "body": "{not json"})
    with pytest.raises(ConfigurationError):
        schemas.parse_action_config("Webhook", {"url": "https://x.io", "method": "TRACE"})
    with pytest.raises(ConfigurationError):
        schemas.parse_action_config("Webhook", {})


def test_github_repo_must_be_owner_slash_name():
    with pytest.raises(ConfigurationError):
        schemas.parse_action_config("GitHub Issue", {"repo": "just-a-name", "title": "x"})


def test_calendar_duration_must_be_positive():
    with pytest.raises(ConfigurationError):
        schemas.parse_action_config("Calendar", {"duration": 0})


def test_flat_legacy_action_shape():
    action = schemas.AutomationAction.model_validate(
        {"id": "a1", "type": "Send Email", "recipient": "a@x.io", "subject": "Hi"}
    )
    assert action.type == schemas.ActionType.EMAIL
    assert action.config == {"to": "a@x.io", "subject": "Hi", "provider": "smtp"}
    assert action.enabled


def test_action_with_invalid_config_rejected():
    with pytest.raises(ValidationError):
        schemas.AutomationAction.model_validate({"type": "SMS", "config": {}})


# =============================================================================
# RULES
# =============================================================================


def test_rule_create_validates_trigger_config():
    rule = schemas.AutomationRuleCreate(
        name="Weekly digest",
        trigger_type="Schedule",
        trigger_config={"frequency": "weekly", "day_of_week": 1},
        actions=[{"type": "Slack", "config": {"message": "digest"}}],
    )
    assert rule.trigger_type == schemas.TriggerType.SCHEDULE
    assert rule.trigger_config["frequency"] == "Weekly"
    assert rule.trigger_config["time"] == "09:00"

    with pytest.raises(ValidationError):
        schemas.AutomationRuleCreate(name="x", trigger_type="schedule", trigger_config={})
    with pytest.raises(ValidationError):
        schemas.AutomationRuleCreate(name="x", trigger_type="task_priority")
    with pytest.raises(ValidationError):
        schemas.AutomationRuleCreate(name="", trigger_type="task_created")


def test_response_success_rate():
    now = datetime(2026, 10, 18, tzinfo=timezone.utc)
    base = dict(
        id="r", project_id="p", name="n", trigger_type="task_created", trigger_config={}, actions=[],
        is_active=True, created_at=now, updated_at=now, version=1,
    )
    assert schemas.AutomationRuleResponse(runs_count=0, success_count=0, **base).success_rate == 100.0
    assert schemas.AutomationRuleResponse(runs_count=3, success_count=2, **base).success_rate == 66.67


def test_snapshot_from_malformed_model_raises():
    class Row:
        id = "r"
        project_id = "p"
        name = "n"
        description = None
        trigger_type = "task_created"
        trigger_config = {}
        actions = [{"type": "Fax", "config": {}}]
        is_active = True
        runs_count = 0
        last_run_at = None

    with pytest.raises(ConfigurationError):
        schemas.AutomationRule.from_model(Row())

    Row.trigger_type = "mystery"
    with pytest.raises(ConfigurationError):
        schemas.AutomationRule.from_model(Row())

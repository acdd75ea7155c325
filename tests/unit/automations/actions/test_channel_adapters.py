import pytest
from datetime import datetime, timezone
from unittest.mock import AsyncMock, MagicMock, patch

import httpx

from taskpilot.automations.actions.base import classify_exception
from taskpilot.automations.actions.calendar_action import CalendarChannel
from taskpilot.automations.actions.discord_action import DiscordChannel
from taskpilot.automations.actions.email_action import EmailChannel
from taskpilot.automations.actions.github_action import GitHubIssueChannel
from taskpilot.automations.actions.notion_action import NotionPageChannel
from taskpilot.automations.actions.registry import ChannelRegistry, init_channels
from taskpilot.automations.actions.slack_action import SlackChannel
from taskpilot.automations.actions.sms_action import SMSChannel
from taskpilot.automations.actions.trello_action import TrelloCardChannel
from taskpilot.automations.actions.webhook_action import WebhookChannel
from taskpilot.automations.engine.context import ContextResolver
from taskpilot.automations.schemas import (
    ActionType,
    CalendarConfig,
    DiscordConfig,
    EmailConfig,
    GitHubIssueConfig,
    NotionPageConfig,
    SlackConfig,
    SMSConfig,
    TrelloCardConfig,
    WebhookConfig,
)
from taskpilot.errors import ChannelError, ConfigurationError, FailureKind
from taskpilot.platform.config import Settings

NOW = datetime(2026, 10, 18, 9, 0, tzinfo=timezone.utc)


@pytest.fixture
def settings():
    return Settings(
        SLACK_WEBHOOK_URL="https://hooks.slack.com/services/T000/B000/XXX",
        DISCORD_WEBHOOK_URL="https://discord.com/api/webhooks/1/abc",
        DISCORD_AVATAR_URL="https://cdn.example.com/bot.png",
        TWILIO_ACCOUNT_SID="AC123",
        TWILIO_AUTH_TOKEN="secret",
        TWILIO_FROM_NUMBER="+15550000000",
        GITHUB_TOKEN="gh-token",
        TRELLO_API_KEY="trello-key",
        TRELLO_TOKEN="trello-token",
        NOTION_TOKEN="notion-token",
        GOOGLE_CALENDAR_TOKEN="gcal-token",
    )


@pytest.fixture
def context(make_rule, make_task, project):
    task = make_task(due_date=datetime(2026, 10, 19, 17, 30, tzinfo=timezone.utc))
    return ContextResolver().build(make_rule(), project, task=task, now=NOW)


@pytest.fixture
def http():
    """Patched httpx.AsyncClient; yields the client the adapters talk to."""
    with patch("httpx.AsyncClient") as MockClient:
        mock_client = AsyncMock()
        MockClient.return_value.__aenter__.return_value = mock_client
        mock_client.request.return_value = _response(200, {"id": "abc"})
        yield mock_client


def _response(status_code, data=None, headers=None, text=""):
    response = MagicMock()
    response.status_code = status_code
    response.headers = headers or {}
    response.text = text
    response.json.return_value = data if data is not None else {}
    return response


# =============================================================================
# SLACK / DISCORD
# =============================================================================


@pytest.mark.asyncio
async def test_slack_posts_message(settings, context, http):
    channel = SlackChannel(settings)
    result = await channel.send(SlackConfig(message="New task: Fix login bug", channel="#eng"), context)

    http.request.assert_called_once_with(
        "POST",
        "https://hooks.slack.com/services/T000/B000/XXX",
        json={
            "text": "New task: Fix login bug",
            "username": "TaskPilot Bot",
            "icon_emoji": ":robot_face:",
            "channel": "#eng",
        },
    )
    assert result == {"status_code": 200}


@pytest.mark.asyncio
async def test_slack_config_webhook_overrides_default(settings, context, http):
    await SlackChannel(settings).send(SlackConfig(webhook_url="https://hooks.slack.com/other"), context)
    args, kwargs = http.request.call_args
    assert args[1] == "https://hooks.slack.com/other"
    assert kwargs["json"]["text"] == "Automation triggered: Notify team"


@pytest.mark.asyncio
async def test_slack_without_webhook_is_permanent(context, http):
    channel = SlackChannel(Settings(SLACK_WEBHOOK_URL=""))
    with pytest.raises(ChannelError) as exc_info:
        await channel.send(SlackConfig(message="hi"), context)

    assert exc_info.value.kind == FailureKind.PERMANENT
    http.request.assert_not_called()


@pytest.mark.asyncio
async def test_discord_truncates_content(settings, context, http):
    await DiscordChannel(settings).send(DiscordConfig(content="x" * 2500), context)
    payload = http.request.call_args.kwargs["json"]
    assert len(payload["content"]) == 2000
    assert payload["avatar_url"] == "https://cdn.example.com/bot.png"
    assert payload["username"] == "TaskPilot Bot"


# =============================================================================
# HTTP ERROR CLASSIFICATION
# =============================================================================


@pytest.mark.asyncio
async def test_rate_limit_is_transient_with_retry_after(settings, context, http):
    http.request.return_value = _response(429, headers={"Retry-After": "30"}, text="slow down")

    with pytest.raises(ChannelError) as exc_info:
        await SlackChannel(settings).send(SlackConfig(message="hi"), context)

    error = exc_info.value
    assert error.kind == FailureKind.TRANSIENT
    assert error.status_code == 429
    assert error.retry_after == 30.0


@pytest.mark.asyncio
async def test_server_error_is_transient_client_error_permanent(settings, context, http):
    http.request.return_value = _response(502)
    with pytest.raises(ChannelError) as exc_info:
        await SlackChannel(settings).send(SlackConfig(message="hi"), context)
    assert exc_info.value.transient

    http.request.return_value = _response(404, text="no_team")
    with pytest.raises(ChannelError) as exc_info:
        await SlackChannel(settings).send(SlackConfig(message="hi"), context)
    assert not exc_info.value.transient


def test_classify_transport_errors():
    request = httpx.Request("POST", "https://example.com")
    assert classify_exception(httpx.ConnectError("refused", request=request)) == FailureKind.TRANSIENT
    assert classify_exception(httpx.ReadTimeout("slow", request=request)) == FailureKind.TRANSIENT
    assert classify_exception(ConfigurationError("bad")) == FailureKind.PERMANENT
    assert classify_exception(ValueError("?")) == FailureKind.PERMANENT


# =============================================================================
# WEBHOOK
# =============================================================================


@pytest.mark.asyncio
async def test_webhook_adds_automation_metadata(context, http):
    config = WebhookConfig(
        url="https://example.com/hooks/tasks",
        headers='{"X-Token": "abc"}',
        body={"title": "Fix login bug"},
    )
    await WebhookChannel().send(config, context)

    args, kwargs = http.request.call_args
    assert args == ("POST", "https://example.com/hooks/tasks")
    assert kwargs["headers"] == {"X-Token": "abc"}
    assert kwargs["json"] == {
        "title": "Fix login bug",
        "automation": {
            "id": "rule-1",
            "name": "Notify team",
            "project_id": "proj-1",
            "project": "Website Redesign",
            "triggered_at": "2026-10-18T09:00:00+00:00",
        },
    }


@pytest.mark.asyncio
async def test_webhook_get_sends_no_body(context, http):
    await WebhookChannel().send(WebhookConfig(url="https://example.com/ping", method="get"), context)
    args, kwargs = http.request.call_args
    assert args[0] == "GET"
    assert "json" not in kwargs


@pytest.mark.asyncio
async def test_webhook_list_body_is_sent_as_is(context, http):
    await WebhookChannel().send(WebhookConfig(url="https://example.com/batch", body="[1, 2]"), context)
    assert http.request.call_args.kwargs["json"] == [1, 2]


@pytest.mark.asyncio
async def test_malformed_webhook_url_is_permanent(context, http):
    with pytest.raises(ChannelError) as exc_info:
        await WebhookChannel().send(WebhookConfig(url="not a url"), context)

    assert exc_info.value.kind == FailureKind.PERMANENT
    http.request.assert_not_called()


# =============================================================================
# SMS / EMAIL
# =============================================================================


@pytest.mark.asyncio
async def test_sms_calls_twilio(settings, context, http):
    http.request.return_value = _response(201, {"sid": "SM1", "status": "queued"})

    result = await SMSChannel(settings).send(SMSConfig(phone_number="+15551234567", message="Due soon"), context)

    http.request.assert_called_once_with(
        "POST",
        "https://api.twilio.com/2010-04-01/Accounts/AC123/Messages.json",
        data={"To": "+15551234567", "From": "+15550000000", "Body": "Due soon"},
        auth=("AC123", "secret"),
    )
    assert result == {"sid": "SM1", "status": "queued"}


@pytest.mark.asyncio
async def test_sms_without_credentials_is_permanent(context, http):
    with pytest.raises(ChannelError) as exc_info:
        await SMSChannel(Settings(TWILIO_ACCOUNT_SID="")).send(SMSConfig(phone_number="+1555"), context)
    assert exc_info.value.kind == FailureKind.PERMANENT


@pytest.mark.asyncio
async def test_email_defaults_to_project_owner(context):
    service = MagicMock()
    channel = EmailChannel(service=service)

    result = await channel.send(EmailConfig(body="Task created"), context)

    service.send_email.assert_called_once_with(["olivia@example.com"], "Automation: Notify team", "Task created")
    assert result == {"recipients": ["olivia@example.com"]}


@pytest.mark.asyncio
async def test_email_splits_recipients(context):
    service = MagicMock()
    await EmailChannel(service=service).send(EmailConfig(to="a@x.io, b@x.io", subject="Hi", body="x"), context)
    assert service.send_email.call_args.args[0] == ["a@x.io", "b@x.io"]


@pytest.mark.asyncio
async def test_email_service_errors_propagate(context):
    service = MagicMock()
    service.send_email.side_effect = ChannelError("SMTP error 451", kind=FailureKind.TRANSIENT)

    with pytest.raises(ChannelError) as exc_info:
        await EmailChannel(service=service).send(EmailConfig(to="a@x.io"), context)
    assert exc_info.value.transient


# =============================================================================
# CALENDAR / ISSUE TRACKERS
# =============================================================================


@pytest.mark.asyncio
async def test_calendar_event_starts_at_due_date(settings, context, http):
    http.request.return_value = _response(200, {"id": "evt1", "htmlLink": "https://calendar/evt1"})

    result = await CalendarChannel(settings).send(CalendarConfig(duration_hours=2), context)

    args, kwargs = http.request.call_args
    assert args == ("POST", "https://www.googleapis.com/calendar/v3/calendars/primary/events")
    assert kwargs["headers"] == {"Authorization": "Bearer gcal-token"}
    assert kwargs["json"]["summary"] == "Fix login bug"
    assert kwargs["json"]["start"] == {"dateTime": "2026-10-19T17:30:00+00:00", "timeZone": "UTC"}
    assert kwargs["json"]["end"] == {"dateTime": "2026-10-19T19:30:00+00:00", "timeZone": "UTC"}
    assert result == {"event_id": "evt1", "html_link": "https://calendar/evt1"}


@pytest.mark.asyncio
async def test_github_issue(settings, context, http):
    http.request.return_value = _response(201, {"number": 7, "html_url": "https://github.com/acme/web/issues/7"})
    config = GitHubIssueConfig(repo="acme/web", title="Fix login bug", labels="bug, urgent")

    result = await GitHubIssueChannel(settings).send(config, context)

    args, kwargs = http.request.call_args
    assert args == ("POST", "https://api.github.com/repos/acme/web/issues")
    assert kwargs["json"] == {"title": "Fix login bug", "body": "", "labels": ["bug", "urgent"]}
    assert kwargs["headers"]["Authorization"] == "Bearer gh-token"
    assert result == {"number": 7, "url": "https://github.com/acme/web/issues/7"}


@pytest.mark.asyncio
async def test_trello_card(settings, context, http):
    config = TrelloCardConfig(list_id="list-1", title="Fix login bug", body="From TaskPilot", labels=["l1", "l2"])
    await TrelloCardChannel(settings).send(config, context)

    args, kwargs = http.request.call_args
    assert args == ("POST", "https://api.trello.com/1/cards")
    assert kwargs["params"] == {
        "key": "trello-key",
        "token": "trello-token",
        "idList": "list-1",
        "name": "Fix login bug",
        "desc": "From TaskPilot",
        "idLabels": "l1,l2",
    }


@pytest.mark.asyncio
async def test_notion_page(settings, context, http):
    config = NotionPageConfig(database_id="db-1", title="Fix login bug", body="Details", title_property="Task")
    await NotionPageChannel(settings).send(config, context)

    args, kwargs = http.request.call_args
    assert args == ("POST", "https://api.notion.com/v1/pages")
    page = kwargs["json"]
    assert page["parent"] == {"database_id": "db-1"}
    assert page["properties"] == {"Task": {"title": [{"text": {"content": "Fix login bug"}}]}}
    assert page["children"][0]["paragraph"]["rich_text"][0]["text"]["content"] == "Details"
    assert kwargs["headers"]["Notion-Version"] == "2022-06-28"


# =============================================================================
# REGISTRY
# =============================================================================


def test_init_channels_registers_every_action_type(settings):
    ChannelRegistry.clear()
    try:
        init_channels(settings)
        assert set(ChannelRegistry.registered()) == set(ActionType)
        assert isinstance(ChannelRegistry.get("Slack"), SlackChannel)
        assert isinstance(ChannelRegistry.get("github"), GitHubIssueChannel)
    finally:
        ChannelRegistry.clear()


def test_registry_get_unknown_raises():
    ChannelRegistry.clear()
    with pytest.raises(ConfigurationError):
        ChannelRegistry.get(ActionType.SLACK)

import pytest
from datetime import datetime, timezone

from taskpilot.automations.engine.context import ContextResolver, format_date, format_datetime
from taskpilot.automations.engine.templates import TemplateResolver
from taskpilot.events.event import UserSnapshot


@pytest.fixture
def resolver():
    return TemplateResolver()


@pytest.fixture
def context(make_rule, make_task, project):
    task = make_task(due_date=datetime(2026, 10, 19, 17, 30, tzinfo=timezone.utc))
    return ContextResolver().build(
        make_rule(),
        project,
        task=task,
        now=datetime(2026, 10, 18, 9, 5, tzinfo=timezone.utc),
    )


def test_renders_task_fields(resolver, context):
    rendered = resolver.resolve("Task {{task.title}} has priority {{task.priority}}", context)
    assert rendered == "Task Fix login bug has priority High"


def test_rendered_output_is_stable(resolver, make_rule, make_task, project):
    context = ContextResolver().build(make_rule(), project, task=make_task(priority="high"))

    rendered = resolver.resolve("{{task.title}} / {{task.priority}}", context)

    assert rendered == "Fix login bug / high"
    assert resolver.resolve(rendered, context) == rendered


def test_whitespace_inside_braces(resolver, context):
    assert resolver.resolve("{{ task.title }}|{{project.name   }}", context) == "Fix login bug|Website Redesign"


def test_missing_value_renders_empty(resolver, context):
    # The task has no assignee
    assert resolver.resolve("Assigned to: {{task.assignee.name}}.", context) == "Assigned to: ."


def test_unknown_namespace_renders_empty(resolver, context):
    assert resolver.resolve("[{{weather.today}}] [{{task}}]", context) == "[] []"


def test_keep_unresolved_leaves_tokens(resolver, context):
    rendered = resolver.resolve("{{task.title}} / {{task.assignee.name}}", context, keep_unresolved=True)
    assert rendered == "Fix login bug / {{task.assignee.name}}"


def test_text_without_tokens_is_untouched(resolver, context):
    assert resolver.resolve("Plain {text} with {single} braces", context) == "Plain {text} with {single} braces"
    assert resolver.resolve("", context) == ""


def test_project_and_owner_fields(resolver, context):
    rendered = resolver.resolve(
        "{{project.name}}: {{project.completed_tasks_count}}/{{project.tasks_count}} by {{project.owner.email}}",
        context,
    )
    assert rendered == "Website Redesign: 5/12 by olivia@example.com"


def test_user_falls_back_to_project_owner(resolver, context):
    assert resolver.resolve("Hi {{user.first_name}} {{user.last_name}}", context) == "Hi Olivia Owner"


def test_date_namespace(resolver, context):
    assert resolver.resolve("{{date.today}} {{date.time}}", context) == "2026-10-18 09:05:00"
    assert resolver.resolve("{{date.formatted}}", context) == "Oct 18, 2026 at 9:05 AM"


def test_due_date_formats(resolver, context):
    assert resolver.resolve("{{task.due_date}} / {{task.due_date_formatted}}", context) == "2026-10-19 / Oct 19, 2026"


def test_automation_namespace(resolver, context):
    assert resolver.resolve("{{automation.name}} ({{automation.trigger_type}})", context) == "Notify team (task_created)"


def test_resolve_value_walks_nested_structures(resolver, context):
    value = {
        "title": "{{task.title}}",
        "labels": ["{{task.priority}}", "bug"],
        "meta": {"count": 3, "project": "{{project.id}}"},
    }
    assert resolver.resolve_value(value, context) == {
        "title": "Fix login bug",
        "labels": ["High", "bug"],
        "meta": {"count": 3, "project": "proj-1"},
    }


def test_find_unresolved(resolver, context):
    value = {"a": "{{task.assignee.email}}", "b": ["{{task.title}}", "{{nope.x}}", "{{task.assignee.email}}"]}
    assert resolver.find_unresolved(value, context) == ["{{task.assignee.email}}", "{{nope.x}}"]


def test_local_timezone_applies_to_dates(resolver, make_rule, make_task, project):
    actor = UserSnapshot(id="user-2", name="Ken Tanaka", timezone="Asia/Tokyo")
    ctx = ContextResolver().build(
        make_rule(),
        project,
        task=make_task(),
        actor=actor,
        now=datetime(2026, 10, 18, 20, 0, tzinfo=timezone.utc),
    )
    # 20:00 UTC is 05:00 the next day in Tokyo
    assert resolver.resolve("{{date.today}} {{user.name}}", ctx) == "2026-10-19 Ken Tanaka"


def test_format_helpers():
    assert format_date(datetime(2026, 1, 5)) == "Jan 5, 2026"
    assert format_datetime(datetime(2026, 1, 5, 0, 7)) == "Jan 5, 2026 at 12:07 AM"
    assert format_datetime(datetime(2026, 1, 5, 12, 30)) == "Jan 5, 2026 at 12:30 PM"
    assert format_datetime(datetime(2026, 1, 5, 23, 59)) == "Jan 5, 2026 at 11:59 PM"

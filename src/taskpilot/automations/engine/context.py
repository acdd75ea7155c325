"""
Context snapshots for template rendering.

A Context is assembled once per firing from the event's snapshots and the
firing rule. Every namespace has an explicit resolver that returns a flat
map of dotted keys, so templates can only reach the fields listed here.
"""
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Any, Callable, Dict, Optional
from zoneinfo import ZoneInfo, ZoneInfoNotFoundError

from taskpilot.automations.schemas import AutomationRule
from taskpilot.events.event import ProjectSnapshot, TaskSnapshot, UserSnapshot, utcnow

UTC = ZoneInfo("UTC")


def load_timezone(name: Optional[str]) -> Optional[ZoneInfo]:
    if not name:
        return None
    try:
        return ZoneInfo(name)
    except (ZoneInfoNotFoundError, ValueError):
        return None


def as_aware(value: datetime) -> datetime:
    """Naive datetimes from the host are UTC."""
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value


def format_date(value: datetime) -> str:
    # Oct 18, 2026
    return f"{value.strftime('%b')} {value.day}, {value.year}"


def format_datetime(value: datetime) -> str:
    # Oct 18, 2026 at 9:05 AM
    hour = value.hour % 12 or 12
    meridiem = "AM" if value.hour < 12 else "PM"
    return f"{format_date(value)} at {hour}:{value.minute:02d} {meridiem}"


@dataclass(frozen=True)
class Context:
    project: ProjectSnapshot
    automation: AutomationRule
    now: datetime
    timezone: ZoneInfo = UTC
    task: Optional[TaskSnapshot] = None
    user: Optional[UserSnapshot] = None

    def local(self, value: datetime) -> datetime:
        return as_aware(value).astimezone(self.timezone)

    def namespace(self, name: str) -> Optional[Dict[str, Any]]:
        resolver = NAMESPACE_RESOLVERS.get(name)
        if resolver is None:
            return None
        return resolver(self)

    def lookup(self, path: str) -> Optional[Any]:
        """Resolve 'task.assignee.name'; None when any part is missing."""
        name, _, rest = path.strip().partition(".")
        if not rest:
            return None
        fields = self.namespace(name)
        if fields is None:
            return None
        return fields.get(rest)


# --- Namespace resolvers ---

def _user_fields(user: Optional[UserSnapshot], prefix: str = "") -> Dict[str, Any]:
    if user is None:
        return {}
    return {
        f"{prefix}id": user.id,
        f"{prefix}name": user.name,
        f"{prefix}email": user.email,
    }


def resolve_task(ctx: Context) -> Dict[str, Any]:
    task = ctx.task
    if task is None:
        return {}
    fields = {
        "id": task.id,
        "title": task.title,
        "description": task.description,
        "status": task.status,
        "priority": task.priority,
        "created_at": ctx.local(task.created_at).strftime("%Y-%m-%d %H:%M:%S"),
        "created_at_formatted": format_datetime(ctx.local(task.created_at)),
    }
    if task.due_date is not None:
        due = ctx.local(task.due_date)
        fields["due_date"] = due.strftime("%Y-%m-%d")
        fields["due_date_formatted"] = format_date(due)
    if task.updated_at is not None:
        updated = ctx.local(task.updated_at)
        fields["updated_at"] = updated.strftime("%Y-%m-%d %H:%M:%S")
        fields["updated_at_formatted"] = format_datetime(updated)
    fields.update(_user_fields(task.assignee, "assignee."))
    fields.update(_user_fields(task.creator, "creator."))
    return fields


def resolve_project(ctx: Context) -> Dict[str, Any]:
    project = ctx.project
    fields = {
        "id": project.id,
        "name": project.name,
        "description": project.description,
        "status": project.status,
        "tasks_count": project.tasks_count,
        "completed_tasks_count": project.completed_tasks_count,
    }
    fields.update(_user_fields(project.owner, "owner."))
    return fields


def resolve_user(ctx: Context) -> Dict[str, Any]:
    user = ctx.user
    if user is None:
        return {}
    fields = _user_fields(user)
    parts = user.name.split(" ", 1) if user.name else []
    fields["first_name"] = parts[0] if parts else ""
    fields["last_name"] = parts[1] if len(parts) > 1 else ""
    return fields


def resolve_date(ctx: Context) -> Dict[str, Any]:
    now = ctx.local(ctx.now)
    return {
        "today": now.strftime("%Y-%m-%d"),
        "time": now.strftime("%H:%M:%S"),
        "now": now.strftime("%Y-%m-%d %H:%M:%S"),
        "formatted": format_datetime(now),
        "timestamp": int(now.timestamp()),
    }


def resolve_automation(ctx: Context) -> Dict[str, Any]:
    rule = ctx.automation
    return {
        "id": rule.id,
        "name": rule.name,
        "description": rule.description,
        "trigger_type": rule.trigger_type.value,
    }


NAMESPACE_RESOLVERS: Dict[str, Callable[[Context], Dict[str, Any]]] = {
    "task": resolve_task,
    "project": resolve_project,
    "user": resolve_user,
    "date": resolve_date,
    "automation": resolve_automation,
}

# Variables offered to rule authors, with a short description each
VARIABLE_CATALOG: Dict[str, Dict[str, str]] = {
    "task": {
        "id": "Task ID",
        "title": "Task title",
        "description": "Task description",
        "status": "Board column",
        "priority": "Task priority",
        "due_date": "Due date (YYYY-MM-DD)",
        "due_date_formatted": "Due date, e.g. Oct 18, 2026",
        "created_at_formatted": "Creation time, e.g. Oct 18, 2026 at 9:05 AM",
        "updated_at_formatted": "Last update time",
        "assignee.name": "Assignee name",
        "assignee.email": "Assignee email",
        "creator.name": "Creator name",
        "creator.email": "Creator email",
    },
    "project": {
        "id": "Project ID",
        "name": "Project name",
        "description": "Project description",
        "status": "Project status",
        "tasks_count": "Number of tasks",
        "completed_tasks_count": "Number of completed tasks",
        "owner.name": "Project owner name",
        "owner.email": "Project owner email",
    },
    "user": {
        "name": "Acting user name",
        "email": "Acting user email",
        "first_name": "Acting user first name",
        "last_name": "Acting user last name",
    },
    "date": {
        "today": "Today (YYYY-MM-DD)",
        "time": "Current time (HH:MM:SS)",
        "now": "Current date and time",
        "formatted": "Current date and time, e.g. Oct 18, 2026 at 9:05 AM",
        "timestamp": "Unix timestamp",
    },
    "automation": {
        "id": "Automation ID",
        "name": "Automation name",
        "description": "Automation description",
    },
}


class ContextResolver:
    """Builds the per-firing Context."""

    def build(
        self,
        rule: AutomationRule,
        project: ProjectSnapshot,
        task: Optional[TaskSnapshot] = None,
        actor: Optional[UserSnapshot] = None,
        now: Optional[datetime] = None,
    ) -> Context:
        user = actor
        if user is None and task is not None:
            user = task.assignee
        if user is None:
            user = project.owner

        tz = (
            load_timezone(user.timezone if user else None)
            or load_timezone(project.timezone)
            or UTC
        )

        return Context(
            project=project,
            automation=rule,
            now=as_aware(now or utcnow()),
            timezone=tz,
            task=task,
            user=user,
        )

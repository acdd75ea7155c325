import calendar
import logging
import re
from dataclasses import dataclass
from datetime import date, datetime, time, timedelta, timezone
from typing import Any, List, Optional

from taskpilot.automations.engine.context import as_aware
from taskpilot.automations.schemas import (
    AutomationRule,
    DueDateConfig,
    ScheduleConfig,
    TaskCreatedConfig,
    TaskUpdatedConfig,
    TriggerType,
)
from taskpilot.events.event import (
    DueDateScan,
    Event,
    ProjectSnapshot,
    ScheduleTick,
    TaskCreated,
    TaskSnapshot,
    TaskUpdated,
)

logger = logging.getLogger(__name__)

ANY = "any"

# Tasks in these columns never get due-date reminders
CLOSED_STATUSES = {"done", "completed"}

FIELD_ALIASES = {
    "column": "status",
    "assigneeid": "assignee",
    "assignedto": "assignee",
    "enddate": "duedate",
}


def normalize(value: Any) -> str:
    """'To-Do', 'to do' and 'todo' compare equal."""
    if value is None:
        return ""
    return re.sub(r"[^a-z0-9]", "", str(value).lower())


def normalize_field(value: Any) -> str:
    key = normalize(value)
    return FIELD_ALIASES.get(key, key)


def _is_any(value: Any) -> bool:
    return normalize(value) in (ANY, "")


@dataclass(frozen=True)
class MatchedSubject:
    """One (rule, subject) pair a rule fires for."""

    subject_key: str
    project: Optional[ProjectSnapshot] = None
    task: Optional[TaskSnapshot] = None


def last_occurrence(config: ScheduleConfig, now: datetime) -> datetime:
    """Most recent scheduled instant at or before now, in the rule's timezone."""
    tz = config.tzinfo
    local = as_aware(now).astimezone(tz)
    at = time(config.hour, config.minute)

    def at_day(day: date) -> datetime:
        return datetime.combine(day, at, tzinfo=tz)

    today = local.date()
    if config.frequency == "Daily":
        candidate = at_day(today)
        if candidate > local:
            candidate = at_day(today - timedelta(days=1))
        return candidate

    if config.frequency == "Weekly":
        days_back = (today.isoweekday() - config.day_of_week) % 7
        candidate = at_day(today - timedelta(days=days_back))
        if candidate > local:
            candidate = at_day(today - timedelta(days=days_back + 7))
        return candidate

    # Monthly, clamped to the last day of short months
    def in_month(year: int, month: int) -> datetime:
        last_day = calendar.monthrange(year, month)[1]
        return at_day(date(year, month, min(config.day_of_month, last_day)))

    candidate = in_month(today.year, today.month)
    if candidate > local:
        year, month = (today.year, today.month - 1) if today.month > 1 else (today.year - 1, 12)
        candidate = in_month(year, month)
    return candidate


class TriggerMatcher:
    """
    Decides which subjects of an event a rule fires for.

    Pure: no I/O, no clock. Periodic triggers use the scan interval as the
    width of their matching window so every occurrence lands in exactly one
    tick.
    """

    def __init__(self, scan_interval: timedelta = timedelta(minutes=5)):
        self.scan_interval = scan_interval

    def matches(self, event: Event, rule: AutomationRule) -> bool:
        return len(self.match_subjects(event, rule)) > 0

    def match_subjects(self, event: Event, rule: AutomationRule) -> List[MatchedSubject]:
        trigger = rule.trigger
        if rule.trigger_type == TriggerType.TASK_CREATED and isinstance(trigger, TaskCreatedConfig):
            if isinstance(event, TaskCreated) and self._task_created(event, rule, trigger):
                return [self._task_subject(event.task)]
            return []

        if rule.trigger_type == TriggerType.TASK_UPDATED and isinstance(trigger, TaskUpdatedConfig):
            if isinstance(event, TaskUpdated) and self._task_updated(event, rule, trigger):
                return [self._task_subject(event.task)]
            return []

        if rule.trigger_type == TriggerType.DUE_DATE and isinstance(trigger, DueDateConfig):
            if isinstance(event, DueDateScan):
                return self._due_date(event, rule, trigger)
            return []

        if rule.trigger_type == TriggerType.SCHEDULE and isinstance(trigger, ScheduleConfig):
            if isinstance(event, ScheduleTick):
                return self._schedule(event, rule, trigger)
            return []

        logger.error(
            f"Automation {rule.id} has unsupported trigger {rule.trigger_type!r}; never fires"
        )
        return []

    # --- Live task events ---

    @staticmethod
    def _task_subject(task: TaskSnapshot) -> MatchedSubject:
        return MatchedSubject(subject_key=f"task:{task.id}", project=task.project, task=task)

    def _task_created(self, event: TaskCreated, rule: AutomationRule, config: TaskCreatedConfig) -> bool:
        task = event.task
        if task.project_id != rule.project_id:
            return False
        if config.columns and normalize(task.status) not in {normalize(c) for c in config.columns}:
            return False
        if not _is_any(config.priority) and normalize(task.priority) != normalize(config.priority):
            return False
        return True

    def _task_updated(self, event: TaskUpdated, rule: AutomationRule, config: TaskUpdatedConfig) -> bool:
        if event.task.project_id != rule.project_id:
            return False

        changed = normalize_field(event.changed_field)
        if not _is_any(config.field) and changed != normalize_field(config.field):
            return False

        status_filtered = not _is_any(config.from_status) or not _is_any(config.to_status)
        if status_filtered:
            if changed != "status":
                return False
            if not _is_any(config.from_status) and normalize(event.from_value) != normalize(config.from_status):
                return False
            if not _is_any(config.to_status) and normalize(event.to_value) != normalize(config.to_status):
                return False
        return True

    # --- Periodic triggers ---

    def _due_date(self, event: DueDateScan, rule: AutomationRule, config: DueDateConfig) -> List[MatchedSubject]:
        now = as_aware(event.now)
        upper = timedelta(hours=config.hours_before)
        lower = upper - self.scan_interval

        subjects = []
        for task in event.tasks:
            if task.project_id != rule.project_id or task.due_date is None:
                continue
            if normalize(task.status) in CLOSED_STATUSES:
                continue
            if not _is_any(config.priority) and normalize(task.priority) != normalize(config.priority):
                continue
            due = as_aware(task.due_date)
            remaining = due - now
            if lower < remaining <= upper:
                subjects.append(
                    MatchedSubject(
                        subject_key=f"task:{task.id}:due:{due.astimezone(timezone.utc).isoformat()}",
                        project=task.project,
                        task=task,
                    )
                )
        return subjects

    def _schedule(self, event: ScheduleTick, rule: AutomationRule, config: ScheduleConfig) -> List[MatchedSubject]:
        now = as_aware(event.now)
        occurrence = last_occurrence(config, now)
        if not (now - self.scan_interval < occurrence <= now):
            return []
        project = event.project(rule.project_id) or ProjectSnapshot(id=rule.project_id)
        return [
            MatchedSubject(
                subject_key=f"schedule:{occurrence.astimezone(timezone.utc).isoformat()}",
                project=project,
            )
        ]

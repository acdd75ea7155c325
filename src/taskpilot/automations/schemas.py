import json
import re
from datetime import datetime
from enum import Enum
from typing import Any, ClassVar, Dict, List, Literal, Optional, Tuple, Type, Union
from zoneinfo import ZoneInfo, ZoneInfoNotFoundError

from pydantic import (
    BaseModel,
    ConfigDict,
    Field,
    ValidationError,
    computed_field,
    field_validator,
    model_validator,
)

from taskpilot.errors import ConfigurationError


def _canonical_choice(value: Any, choices: Tuple[str, ...]) -> Any:
    """Map 'high' / 'HIGH' onto the canonical 'High' spelling."""
    if isinstance(value, str):
        for choice in choices:
            if value.strip().lower() == choice.lower():
                return choice
    return value


def _move_legacy_keys(data: Any, aliases: Dict[str, str]) -> Any:
    """Rename legacy config keys ({'recipient': ...} -> {'to': ...})."""
    if not isinstance(data, dict):
        return data
    data = dict(data)
    for legacy, current in aliases.items():
        if legacy in data:
            value = data.pop(legacy)
            data.setdefault(current, value)
    return data


# =============================================================================
# TRIGGERS
# =============================================================================

class TriggerType(str, Enum):
    TASK_CREATED = "task_created"
    TASK_UPDATED = "task_updated"
    DUE_DATE = "due_date"
    SCHEDULE = "schedule"

    @classmethod
    def parse(cls, value: Any) -> "TriggerType":
        """Accept both 'task_created' and the display form 'Task Created'."""
        if isinstance(value, cls):
            return value
        if isinstance(value, str):
            key = value.strip().lower().replace(" ", "_")
            if key == "task_due_date":
                key = cls.DUE_DATE.value
            for member in cls:
                if member.value == key:
                    return member
        raise ConfigurationError(f"Unknown trigger type: {value!r}")


PRIORITIES = ("Any", "Low", "Medium", "High", "Critical")
DUE_PRIORITIES = ("Any", "High", "Critical")
UPDATE_FIELDS = ("Any", "Status", "Priority", "Assignee", "DueDate")
FREQUENCIES = ("Daily", "Weekly", "Monthly")

_TIME_RE = re.compile(r"^([01]?\d|2[0-3]):([0-5]\d)$")


class TriggerConfig(BaseModel):
    model_config = ConfigDict(frozen=True, extra="ignore")


class TaskCreatedConfig(TriggerConfig):
    columns: List[str] = Field(default_factory=list)
    priority: Literal["Any", "Low", "Medium", "High", "Critical"] = "Any"

    @field_validator("priority", mode="before")
    @classmethod
    def _priority(cls, v):
        return _canonical_choice(v, PRIORITIES)

    @field_validator("columns", mode="before")
    @classmethod
    def _columns(cls, v):
        if v is None:
            return []
        if isinstance(v, str):
            return [c.strip() for c in v.split(",") if c.strip()]
        return v


class TaskUpdatedConfig(TriggerConfig):
    field: Literal["Any", "Status", "Priority", "Assignee", "DueDate"] = "Any"
    from_status: str = "Any"
    to_status: str = "Any"

    @field_validator("field", mode="before")
    @classmethod
    def _field(cls, v):
        if isinstance(v, str):
            v = v.replace("_", "").replace(" ", "")
        return _canonical_choice(v, UPDATE_FIELDS)

    @field_validator("from_status", "to_status", mode="before")
    @classmethod
    def _status(cls, v):
        if v is None or (isinstance(v, str) and not v.strip()):
            return "Any"
        return _canonical_choice(v, ("Any",))


class ScheduleConfig(TriggerConfig):
    frequency: Literal["Daily", "Weekly", "Monthly"]
    time: str = "09:00"
    timezone: str = "UTC"
    # 1 = Monday .. 7 = Sunday
    day_of_week: int = Field(default=1, ge=1, le=7)
    # Clamped to the month's last day
    day_of_month: int = Field(default=1, ge=1, le=31)

    @field_validator("frequency", mode="before")
    @classmethod
    def _frequency(cls, v):
        return _canonical_choice(v, FREQUENCIES)

    @field_validator("time")
    @classmethod
    def _time(cls, v: str) -> str:
        match = _TIME_RE.match(v.strip())
        if not match:
            raise ValueError("time must be HH:MM")
        return f"{int(match.group(1)):02d}:{match.group(2)}"

    @field_validator("timezone")
    @classmethod
    def _timezone(cls, v: str) -> str:
        try:
            ZoneInfo(v)
        except (ZoneInfoNotFoundError, ValueError):
            raise ValueError(f"unknown timezone {v!r}")
        return v

    @property
    def hour(self) -> int:
        return int(self.time.split(":")[0])

    @property
    def minute(self) -> int:
        return int(self.time.split(":")[1])

    @property
    def tzinfo(self) -> ZoneInfo:
        return ZoneInfo(self.timezone)


class DueDateConfig(TriggerConfig):
    # Negative values mean "overdue by N hours"
    hours_before: int = Field(default=24, ge=-8760, le=8760)
    priority: Literal["Any", "High", "Critical"] = "Any"

    @field_validator("priority", mode="before")
    @classmethod
    def _priority(cls, v):
        return _canonical_choice(v, DUE_PRIORITIES)


AnyTriggerConfig = Union[TaskCreatedConfig, TaskUpdatedConfig, ScheduleConfig, DueDateConfig]

TRIGGER_CONFIG_MODELS: Dict[TriggerType, Type[TriggerConfig]] = {
    TriggerType.TASK_CREATED: TaskCreatedConfig,
    TriggerType.TASK_UPDATED: TaskUpdatedConfig,
    TriggerType.SCHEDULE: ScheduleConfig,
    TriggerType.DUE_DATE: DueDateConfig,
}


def parse_trigger_config(trigger_type: Any, config: Optional[Dict[str, Any]]) -> AnyTriggerConfig:
    """Validate a stored trigger config against the schema for its type."""
    parsed_type = TriggerType.parse(trigger_type)
    model = TRIGGER_CONFIG_MODELS[parsed_type]
    try:
        return model.model_validate(config or {})
    except ValidationError as e:
        raise ConfigurationError(
            f"Invalid {parsed_type.value} trigger config", errors=e.errors(include_url=False, include_context=False)
        )


# =============================================================================
# ACTIONS
# =============================================================================

class ActionType(str, Enum):
    EMAIL = "Email"
    SMS = "SMS"
    SLACK = "Slack"
    DISCORD = "Discord"
    WEBHOOK = "Webhook"
    CALENDAR = "Calendar"
    GITHUB_ISSUE = "GitHub Issue"
    TRELLO_CARD = "Trello Card"
    NOTION_PAGE = "Notion Page"

    @classmethod
    def parse(cls, value: Any) -> "ActionType":
        if isinstance(value, cls):
            return value
        if isinstance(value, str):
            key = re.sub(r"[^a-z0-9]", "", value.lower())
            key = _ACTION_ALIASES.get(key, key)
            for member in cls:
                if re.sub(r"[^a-z0-9]", "", member.value.lower()) == key:
                    return member
        raise ConfigurationError(f"Unknown action type: {value!r}")


_ACTION_ALIASES = {
    "sendemail": "email",
    "sendsms": "sms",
    "twiliosms": "sms",
    "github": "githubissue",
    "trello": "trellocard",
    "notion": "notionpage",
}

HTTP_METHODS = ("GET", "POST", "PUT", "PATCH", "DELETE")


def _split_list(v):
    if v is None:
        return []
    if isinstance(v, str):
        return [item.strip() for item in v.split(",") if item.strip()]
    return v


def _json_object(v):
    if v is None or v == "":
        return None
    if isinstance(v, str):
        try:
            return json.loads(v)
        except json.JSONDecodeError:
            raise ValueError("must be valid JSON")
    return v


class ActionConfig(BaseModel):
    """Base for action configs. String fields may contain {{...}} templates."""

    model_config = ConfigDict(extra="ignore")

    # Legacy key -> current key
    legacy_aliases: ClassVar[Dict[str, str]] = {}

    @model_validator(mode="before")
    @classmethod
    def _legacy_keys(cls, data):
        return _move_legacy_keys(data, cls.legacy_aliases)


class EmailConfig(ActionConfig):
    legacy_aliases = {"recipient": "to", "message": "body"}

    to: Optional[str] = None
    subject: Optional[str] = None
    body: Optional[str] = None
    provider: str = "smtp"


class SMSConfig(ActionConfig):
    legacy_aliases = {"to": "phone_number", "body": "message"}

    phone_number: str = Field(..., min_length=1)
    message: Optional[str] = None


class SlackConfig(ActionConfig):
    webhook_url: Optional[str] = None
    channel: Optional[str] = None
    message: Optional[str] = None


class DiscordConfig(ActionConfig):
    legacy_aliases = {"message": "content"}

    webhook_url: Optional[str] = None
    content: Optional[str] = None


class WebhookConfig(ActionConfig):
    legacy_aliases = {"payload": "body"}

    url: str = Field(..., min_length=1)
    method: Literal["GET", "POST", "PUT", "PATCH", "DELETE"] = "POST"
    headers: Dict[str, str] = Field(default_factory=dict)
    body: Optional[Union[Dict[str, Any], List[Any]]] = None

    @field_validator("method", mode="before")
    @classmethod
    def _method(cls, v):
        return v.strip().upper() if isinstance(v, str) else v

    @field_validator("headers", mode="before")
    @classmethod
    def _headers(cls, v):
        v = _json_object(v)
        return {} if v is None else v

    @field_validator("body", mode="before")
    @classmethod
    def _body(cls, v):
        return _json_object(v)


class CalendarConfig(ActionConfig):
    legacy_aliases = {"duration": "duration_hours"}

    calendar_id: str = "primary"
    title: Optional[str] = None
    description: Optional[str] = None
    duration_hours: float = Field(default=1.0, gt=0, le=24 * 7)


class GitHubIssueConfig(ActionConfig):
    repo: str = Field(..., pattern=r"^[^/\s]+/[^/\s]+$")
    title: str = Field(..., min_length=1)
    body: Optional[str] = None
    labels: List[str] = Field(default_factory=list)
    token: Optional[str] = None

    @field_validator("labels", mode="before")
    @classmethod
    def _labels(cls, v):
        return _split_list(v)


class TrelloCardConfig(ActionConfig):
    legacy_aliases = {"board_list_id": "list_id"}

    list_id: str = Field(..., min_length=1)
    title: str = Field(..., min_length=1)
    body: Optional[str] = None
    labels: List[str] = Field(default_factory=list)
    token: Optional[str] = None

    @field_validator("labels", mode="before")
    @classmethod
    def _labels(cls, v):
        return _split_list(v)


class NotionPageConfig(ActionConfig):
    database_id: str = Field(..., min_length=1)
    title: str = Field(..., min_length=1)
    body: Optional[str] = None
    # Name of the database's title property
    title_property: str = "Name"
    token: Optional[str] = None


ACTION_CONFIG_MODELS: Dict[ActionType, Type[ActionConfig]] = {
    ActionType.EMAIL: EmailConfig,
    ActionType.SMS: SMSConfig,
    ActionType.SLACK: SlackConfig,
    ActionType.DISCORD: DiscordConfig,
    ActionType.WEBHOOK: WebhookConfig,
    ActionType.CALENDAR: CalendarConfig,
    ActionType.GITHUB_ISSUE: GitHubIssueConfig,
    ActionType.TRELLO_CARD: TrelloCardConfig,
    ActionType.NOTION_PAGE: NotionPageConfig,
}


def parse_action_config(action_type: Any, config: Optional[Dict[str, Any]]) -> ActionConfig:
    """Validate an action config (raw or rendered) against its variant."""
    parsed_type = ActionType.parse(action_type)
    model = ACTION_CONFIG_MODELS[parsed_type]
    try:
        return model.model_validate(config or {})
    except ValidationError as e:
        raise ConfigurationError(
            f"Invalid {parsed_type.value} action config", errors=e.errors(include_url=False, include_context=False)
        )


class AutomationAction(BaseModel):
    """One entry of a rule's ordered action list."""

    model_config = ConfigDict(frozen=True)

    type: ActionType
    config: Dict[str, Any] = Field(default_factory=dict)
    # Disabled actions are kept in the list but skipped
    enabled: bool = True

    @model_validator(mode="before")
    @classmethod
    def _flat_shape(cls, data):
        # Older rules stored the fields next to "type" instead of under "config"
        if isinstance(data, dict) and "config" not in data:
            data = dict(data)
            action_type = data.pop("type", None) or data.pop("name", None)
            data.pop("name", None)
            data.pop("id", None)
            enabled = data.pop("enabled", True)
            return {"type": action_type, "config": data, "enabled": enabled}
        return data

    @field_validator("type", mode="before")
    @classmethod
    def _type(cls, v):
        try:
            return ActionType.parse(v)
        except ConfigurationError as e:
            raise ValueError(str(e))

    @model_validator(mode="after")
    def _check_config(self):
        try:
            parsed = parse_action_config(self.type, self.config)
        except ConfigurationError as e:
            raise ValueError(f"{e}: {e.errors}")
        # Store the normalized shape (legacy keys renamed, JSON strings parsed)
        object.__setattr__(self, "config", parsed.model_dump(exclude_none=True))
        return self


# =============================================================================
# RULES
# =============================================================================

class AutomationRuleBase(BaseModel):
    name: str = Field(..., min_length=1, max_length=255)
    description: Optional[str] = None
    trigger_type: TriggerType
    trigger_config: Dict[str, Any] = Field(default_factory=dict)
    actions: List[AutomationAction] = Field(default_factory=list)
    is_active: bool = True

    @field_validator("trigger_type", mode="before")
    @classmethod
    def _trigger_type(cls, v):
        try:
            return TriggerType.parse(v)
        except ConfigurationError as e:
            raise ValueError(str(e))

    @model_validator(mode="after")
    def _check_trigger_config(self):
        try:
            parsed = parse_trigger_config(self.trigger_type, self.trigger_config)
        except ConfigurationError as e:
            raise ValueError(f"{e}: {e.errors}")
        self.trigger_config = parsed.model_dump()
        return self


class AutomationRuleCreate(AutomationRuleBase):
    pass


class AutomationRuleUpdate(BaseModel):
    name: Optional[str] = Field(default=None, min_length=1, max_length=255)
    description: Optional[str] = None
    trigger_type: Optional[TriggerType] = None
    trigger_config: Optional[Dict[str, Any]] = None
    actions: Optional[List[AutomationAction]] = None
    is_active: Optional[bool] = None

    @field_validator("trigger_type", mode="before")
    @classmethod
    def _trigger_type(cls, v):
        if v is None:
            return v
        try:
            return TriggerType.parse(v)
        except ConfigurationError as e:
            raise ValueError(str(e))


class AutomationRuleResponse(BaseModel):
    id: str
    project_id: str
    name: str
    description: Optional[str] = None
    trigger_type: str
    trigger_config: Dict[str, Any]
    actions: List[Dict[str, Any]]
    is_active: bool
    runs_count: int
    success_count: int
    last_run_at: Optional[datetime] = None
    created_at: datetime
    updated_at: datetime
    created_by: Optional[str] = None
    version: int

    model_config = ConfigDict(from_attributes=True)

    @computed_field
    @property
    def success_rate(self) -> float:
        if not self.runs_count:
            return 100.0
        return round(self.success_count / self.runs_count * 100, 2)


class ExecutionRecordResponse(BaseModel):
    id: str
    rule_id: str
    project_id: str
    subject_key: str
    trigger_type: str
    event_id: Optional[str] = None
    fired_at: datetime
    status: str
    outcomes: List[Dict[str, Any]]

    model_config = ConfigDict(from_attributes=True)


class AutomationRule(BaseModel):
    """
    Immutable snapshot of a stored rule, taken when an event is evaluated.
    Edits to the stored rule only affect the next evaluation.
    """

    model_config = ConfigDict(frozen=True)

    id: str
    project_id: str
    name: str
    description: Optional[str] = None
    trigger_type: TriggerType
    trigger: AnyTriggerConfig
    actions: Tuple[AutomationAction, ...] = ()
    is_active: bool = True
    runs_count: int = 0
    last_run_at: Optional[datetime] = None

    @property
    def runnable(self) -> bool:
        return self.is_active and len(self.actions) > 0

    @classmethod
    def from_model(cls, model: Any) -> "AutomationRule":
        """Build a snapshot from a stored row; malformed rows raise ConfigurationError."""
        trigger_type = TriggerType.parse(model.trigger_type)
        trigger = parse_trigger_config(trigger_type, model.trigger_config)
        try:
            actions = tuple(AutomationAction.model_validate(a) for a in (model.actions or []))
        except ValidationError as e:
            raise ConfigurationError(
                f"Invalid actions on rule {model.id}", errors=e.errors(include_url=False, include_context=False)
            )
        return cls(
            id=model.id,
            project_id=model.project_id,
            name=model.name,
            description=model.description,
            trigger_type=trigger_type,
            trigger=trigger,
            actions=actions,
            is_active=bool(model.is_active),
            runs_count=model.runs_count or 0,
            last_run_at=model.last_run_at,
        )

import logging
from datetime import timedelta
from typing import Any, Dict, Optional
from urllib.parse import quote

from taskpilot.automations.engine.context import Context
from taskpilot.automations.schemas import ActionType, CalendarConfig
from taskpilot.platform.config import Settings, settings as default_settings
from .base import HttpChannelAdapter, require

logger = logging.getLogger(__name__)

class CalendarChannel(HttpChannelAdapter):
    """
    Inserts a Google Calendar event. The event starts at the task's due
    date when there is one, otherwise at the firing time.
    """

    def __init__(self, settings: Optional[Settings] = None, timeout: float = 10.0):
        super().__init__(timeout)
        self.settings = settings or default_settings

    @property
    def type_name(self) -> ActionType:
        return ActionType.CALENDAR

    async def send(self, config: CalendarConfig, context: Context) -> Dict[str, Any]:
        token = require(self.settings.GOOGLE_CALENDAR_TOKEN, "Google Calendar token")

        task = context.task
        start = context.local(task.due_date if task and task.due_date else context.now)
        end = start + timedelta(hours=config.duration_hours)
        tz_name = context.timezone.key

        summary = config.title or (task.title if task else None) or context.automation.name
        event = {
            "summary": summary,
            "description": config.description or "",
            "start": {"dateTime": start.isoformat(), "timeZone": tz_name},
            "end": {"dateTime": end.isoformat(), "timeZone": tz_name},
        }

        response = await self.request(
            "POST",
            f"{self.settings.GOOGLE_CALENDAR_API_URL}/calendars/{quote(config.calendar_id, safe='')}/events",
            json=event,
            headers={"Authorization": f"Bearer {token}"},
        )
        data = self.response_json(response)
        logger.info(f"Calendar event created for automation '{context.automation.name}'")
        return {"event_id": data.get("id"), "html_link": data.get("htmlLink")}

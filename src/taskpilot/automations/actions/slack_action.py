import logging
from typing import Dict, Any, Optional

from taskpilot.automations.engine.context import Context
from taskpilot.automations.schemas import ActionType, SlackConfig
from taskpilot.platform.config import Settings, settings as default_settings
from .base import HttpChannelAdapter, require

logger = logging.getLogger(__name__)

class SlackChannel(HttpChannelAdapter):
    """
    Sends a notification to Slack via an incoming webhook URL.
    """

    def __init__(self, settings: Optional[Settings] = None, timeout: float = 10.0):
        super().__init__(timeout)
        self.settings = settings or default_settings

    @property
    def type_name(self) -> ActionType:
        return ActionType.SLACK

    async def send(self, config: SlackConfig, context: Context) -> Dict[str, Any]:
        webhook_url = require(config.webhook_url or self.settings.SLACK_WEBHOOK_URL, "Slack webhook_url")

        payload = {
            "text": config.message or f"Automation triggered: {context.automation.name}",
            "username": self.settings.AUTOMATION_BOT_NAME,
            "icon_emoji": ":robot_face:",
        }
        if config.channel:
            payload["channel"] = config.channel

        response = await self.request("POST", webhook_url, json=payload)
        logger.info(f"Slack notification sent for automation '{context.automation.name}'")
        return {"status_code": response.status_code}

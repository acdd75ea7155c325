import logging
from typing import Dict, Any, Optional

from taskpilot.automations.engine.context import Context
from taskpilot.automations.schemas import ActionType, DiscordConfig
from taskpilot.platform.config import Settings, settings as default_settings
from .base import HttpChannelAdapter, require

logger = logging.getLogger(__name__)

# Discord message content limit
MAX_CONTENT_LENGTH = 2000

class DiscordChannel(HttpChannelAdapter):
    """
    Posts a message to a Discord channel webhook.
    """

    def __init__(self, settings: Optional[Settings] = None, timeout: float = 10.0):
        super().__init__(timeout)
        self.settings = settings or default_settings

    @property
    def type_name(self) -> ActionType:
        return ActionType.DISCORD

    async def send(self, config: DiscordConfig, context: Context) -> Dict[str, Any]:
        webhook_url = require(config.webhook_url or self.settings.DISCORD_WEBHOOK_URL, "Discord webhook_url")

        content = config.content or f"Automation triggered: **{context.automation.name}**"
        payload = {
            "content": content[:MAX_CONTENT_LENGTH],
            "username": self.settings.AUTOMATION_BOT_NAME,
        }
        if self.settings.DISCORD_AVATAR_URL:
            payload["avatar_url"] = self.settings.DISCORD_AVATAR_URL

        response = await self.request("POST", webhook_url, json=payload)
        logger.info(f"Discord message sent for automation '{context.automation.name}'")
        return {"status_code": response.status_code}

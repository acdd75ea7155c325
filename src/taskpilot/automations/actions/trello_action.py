import logging
from typing import Any, Dict, Optional

from taskpilot.automations.engine.context import Context
from taskpilot.automations.schemas import ActionType, TrelloCardConfig
from taskpilot.platform.config import Settings, settings as default_settings
from .base import HttpChannelAdapter, require

logger = logging.getLogger(__name__)

class TrelloCardChannel(HttpChannelAdapter):
    """
    Creates a card on a Trello list.
    """

    def __init__(self, settings: Optional[Settings] = None, timeout: float = 10.0):
        super().__init__(timeout)
        self.settings = settings or default_settings

    @property
    def type_name(self) -> ActionType:
        return ActionType.TRELLO_CARD

    async def send(self, config: TrelloCardConfig, context: Context) -> Dict[str, Any]:
        api_key = require(self.settings.TRELLO_API_KEY, "Trello API key")
        token = require(config.token or self.settings.TRELLO_TOKEN, "Trello token")

        params = {
            "key": api_key,
            "token": token,
            "idList": config.list_id,
            "name": config.title,
            "desc": config.body or "",
        }
        if config.labels:
            params["idLabels"] = ",".join(config.labels)

        response = await self.request("POST", f"{self.settings.TRELLO_API_URL}/cards", params=params)
        data = self.response_json(response)
        logger.info(f"Trello card created for automation '{context.automation.name}'")
        return {"card_id": data.get("id"), "url": data.get("shortUrl")}

import logging
from typing import Any, Dict, List, Optional

from taskpilot.automations.engine.context import Context
from taskpilot.automations.schemas import ActionType, NotionPageConfig
from taskpilot.platform.config import Settings, settings as default_settings
from .base import HttpChannelAdapter, require

logger = logging.getLogger(__name__)

# Notion limits rich text content to 2000 characters per block
MAX_BLOCK_LENGTH = 2000


class NotionPageChannel(HttpChannelAdapter):
    """
    Adds a page to a Notion database.
    """

    def __init__(self, settings: Optional[Settings] = None, timeout: float = 10.0):
        super().__init__(timeout)
        self.settings = settings or default_settings

    @property
    def type_name(self) -> ActionType:
        return ActionType.NOTION_PAGE

    @staticmethod
    def _paragraphs(body: str) -> List[Dict[str, Any]]:
        chunks = [body[i:i + MAX_BLOCK_LENGTH] for i in range(0, len(body), MAX_BLOCK_LENGTH)]
        return [
            {
                "object": "block",
                "type": "paragraph",
                "paragraph": {"rich_text": [{"type": "text", "text": {"content": chunk}}]},
            }
            for chunk in chunks
        ]

    async def send(self, config: NotionPageConfig, context: Context) -> Dict[str, Any]:
        token = require(config.token or self.settings.NOTION_TOKEN, "Notion token")

        page: Dict[str, Any] = {
            "parent": {"database_id": config.database_id},
            "properties": {
                config.title_property: {"title": [{"text": {"content": config.title}}]},
            },
        }
        if config.body:
            page["children"] = self._paragraphs(config.body)

        response = await self.request(
            "POST",
            f"{self.settings.NOTION_API_URL}/pages",
            json=page,
            headers={
                "Authorization": f"Bearer {token}",
                "Notion-Version": self.settings.NOTION_VERSION,
            },
        )
        data = self.response_json(response)
        logger.info(f"Notion page created for automation '{context.automation.name}'")
        return {"page_id": data.get("id"), "url": data.get("url")}

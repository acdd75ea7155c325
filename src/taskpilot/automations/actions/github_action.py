import logging
from typing import Any, Dict, Optional

from taskpilot.automations.engine.context import Context
from taskpilot.automations.schemas import ActionType, GitHubIssueConfig
from taskpilot.platform.config import Settings, settings as default_settings
from .base import HttpChannelAdapter, require

logger = logging.getLogger(__name__)

class GitHubIssueChannel(HttpChannelAdapter):
    """
    Opens an issue in a GitHub repository.
    """

    def __init__(self, settings: Optional[Settings] = None, timeout: float = 10.0):
        super().__init__(timeout)
        self.settings = settings or default_settings

    @property
    def type_name(self) -> ActionType:
        return ActionType.GITHUB_ISSUE

    async def send(self, config: GitHubIssueConfig, context: Context) -> Dict[str, Any]:
        token = require(config.token or self.settings.GITHUB_TOKEN, "GitHub token")

        payload: Dict[str, Any] = {"title": config.title, "body": config.body or ""}
        if config.labels:
            payload["labels"] = config.labels

        response = await self.request(
            "POST",
            f"{self.settings.GITHUB_API_URL}/repos/{config.repo}/issues",
            json=payload,
            headers={
                "Authorization": f"Bearer {token}",
                "Accept": "application/vnd.github+json",
            },
        )
        data = self.response_json(response)
        logger.info(f"GitHub issue #{data.get('number')} opened in {config.repo}")
        return {"number": data.get("number"), "url": data.get("html_url")}

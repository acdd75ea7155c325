import logging
from typing import Dict, Any

import httpx

from taskpilot.automations.engine.context import Context
from taskpilot.automations.schemas import ActionType, WebhookConfig
from taskpilot.errors import ChannelError, FailureKind
from .base import HttpChannelAdapter

logger = logging.getLogger(__name__)


class WebhookChannel(HttpChannelAdapter):
    """
    Calls an arbitrary HTTP endpoint. JSON object bodies get the firing
    automation's metadata under "automation".
    """

    @property
    def type_name(self) -> ActionType:
        return ActionType.WEBHOOK

    async def send(self, config: WebhookConfig, context: Context) -> Dict[str, Any]:
        try:
            url = httpx.URL(config.url)
        except (httpx.InvalidURL, TypeError) as e:
            raise ChannelError(f"Malformed webhook URL {config.url!r}: {e}", kind=FailureKind.PERMANENT)
        if url.scheme not in ("http", "https") or not url.host:
            raise ChannelError(f"Malformed webhook URL {config.url!r}", kind=FailureKind.PERMANENT)

        body = config.body
        if body is None:
            body = {}
        if isinstance(body, dict):
            body = {
                **body,
                "automation": {
                    "id": context.automation.id,
                    "name": context.automation.name,
                    "project_id": context.project.id,
                    "project": context.project.name,
                    "triggered_at": context.now.isoformat(),
                },
            }

        kwargs: Dict[str, Any] = {"headers": config.headers}
        if config.method != "GET":
            kwargs["json"] = body

        response = await self.request(config.method, str(url), **kwargs)
        logger.info(f"Webhook {config.method} {url.host} succeeded for automation '{context.automation.name}'")
        return {"status_code": response.status_code}

import logging
from typing import Any, Dict, Optional

from taskpilot.automations.engine.context import Context
from taskpilot.automations.schemas import ActionType, SMSConfig
from taskpilot.platform.config import Settings, settings as default_settings
from .base import HttpChannelAdapter, require

logger = logging.getLogger(__name__)

# Twilio rejects longer bodies
MAX_SMS_LENGTH = 1600

class SMSChannel(HttpChannelAdapter):
    """
    Sends an SMS through the Twilio Messages API.
    """

    def __init__(self, settings: Optional[Settings] = None, timeout: float = 10.0):
        super().__init__(timeout)
        self.settings = settings or default_settings

    @property
    def type_name(self) -> ActionType:
        return ActionType.SMS

    async def send(self, config: SMSConfig, context: Context) -> Dict[str, Any]:
        account_sid = require(self.settings.TWILIO_ACCOUNT_SID, "Twilio account SID")
        auth_token = require(self.settings.TWILIO_AUTH_TOKEN, "Twilio auth token")
        from_number = require(self.settings.TWILIO_FROM_NUMBER, "Twilio sender number")

        body = config.message or f"Automation: {context.automation.name}"
        response = await self.request(
            "POST",
            f"{self.settings.TWILIO_API_URL}/Accounts/{account_sid}/Messages.json",
            data={"To": config.phone_number, "From": from_number, "Body": body[:MAX_SMS_LENGTH]},
            auth=(account_sid, auth_token),
        )
        data = self.response_json(response)
        logger.info(f"SMS sent for automation '{context.automation.name}' to {config.phone_number}")
        return {"sid": data.get("sid"), "status": data.get("status")}

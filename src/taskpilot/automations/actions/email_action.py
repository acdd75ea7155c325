import asyncio
import logging
from typing import Any, Dict, Optional

from taskpilot.automations.engine.context import Context
from taskpilot.automations.schemas import ActionType, EmailConfig
from taskpilot.errors import ChannelError, FailureKind
from taskpilot.integrations.email.service import EmailService
from taskpilot.platform.config import Settings
from .base import ChannelAdapter

logger = logging.getLogger(__name__)

class EmailChannel(ChannelAdapter):
    """
    Sends an email over SMTP. Without an explicit recipient the project
    owner is notified.
    """

    def __init__(self, settings: Optional[Settings] = None, timeout: float = 10.0, service: Optional[EmailService] = None):
        super().__init__(timeout)
        self.service = service or EmailService(settings, timeout=timeout)

    @property
    def type_name(self) -> ActionType:
        return ActionType.EMAIL

    async def send(self, config: EmailConfig, context: Context) -> Dict[str, Any]:
        recipients = [r.strip() for r in (config.to or "").split(",") if r.strip()]
        if not recipients and context.project.owner and context.project.owner.email:
            recipients = [context.project.owner.email]
        if not recipients:
            raise ChannelError("Email action has no recipient", kind=FailureKind.PERMANENT)

        subject = config.subject or f"Automation: {context.automation.name}"
        body = config.body or f'Automation "{context.automation.name}" was triggered.'

        # smtplib blocks; keep it off the event loop
        await asyncio.to_thread(self.service.send_email, recipients, subject, body)
        logger.info(f"Email sent for automation '{context.automation.name}' to {recipients}")
        return {"recipients": recipients}

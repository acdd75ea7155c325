from typing import Dict, Optional
import logging

from taskpilot.automations.schemas import ActionType
from taskpilot.errors import ConfigurationError
from taskpilot.platform.config import Settings, settings as default_settings
from .base import ChannelAdapter

logger = logging.getLogger(__name__)

class ChannelRegistry:
    """
    Registry of channel adapters by action type.
    """

    _channels: Dict[ActionType, ChannelAdapter] = {}

    @classmethod
    def register(cls, channel: ChannelAdapter) -> None:
        """Register a channel adapter."""
        name = channel.type_name
        if name in cls._channels:
            logger.warning(f"Channel '{name.value}' already registered. Overwriting.")
        cls._channels[name] = channel
        logger.info(f"Registered channel adapter for action type: '{name.value}'")

    @classmethod
    def get(cls, action_type: ActionType) -> ChannelAdapter:
        """Get a channel adapter by action type."""
        channel = cls._channels.get(ActionType.parse(action_type))
        if not channel:
            raise ConfigurationError(
                f"No channel registered for action type '{action_type}'. "
                f"Registered: {[t.value for t in cls._channels]}"
            )
        return channel

    @classmethod
    def registered(cls) -> Dict[ActionType, ChannelAdapter]:
        return dict(cls._channels)

    @classmethod
    def clear(cls) -> None:
        cls._channels = {}

# Default channels
from .email_action import EmailChannel
from .sms_action import SMSChannel
from .slack_action import SlackChannel
from .discord_action import DiscordChannel
from .webhook_action import WebhookChannel
from .calendar_action import CalendarChannel
from .github_action import GitHubIssueChannel
from .trello_action import TrelloCardChannel
from .notion_action import NotionPageChannel

def init_channels(settings: Optional[Settings] = None) -> None:
    settings = settings or default_settings
    timeout = settings.AUTOMATION_CHANNEL_TIMEOUT_SECONDS
    ChannelRegistry.register(EmailChannel(settings, timeout=timeout))
    ChannelRegistry.register(SMSChannel(settings, timeout=timeout))
    ChannelRegistry.register(SlackChannel(settings, timeout=timeout))
    ChannelRegistry.register(DiscordChannel(settings, timeout=timeout))
    ChannelRegistry.register(WebhookChannel(timeout=timeout))
    ChannelRegistry.register(CalendarChannel(settings, timeout=timeout))
    ChannelRegistry.register(GitHubIssueChannel(settings, timeout=timeout))
    ChannelRegistry.register(TrelloCardChannel(settings, timeout=timeout))
    ChannelRegistry.register(NotionPageChannel(settings, timeout=timeout))

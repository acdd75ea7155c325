import asyncio
from abc import ABC, abstractmethod
from typing import Any, Dict, Optional
import logging

import httpx

from taskpilot.automations.engine.context import Context
from taskpilot.automations.schemas import ActionConfig, ActionType
from taskpilot.errors import ChannelError, ConfigurationError, FailureKind

logger = logging.getLogger(__name__)

# 408 Request Timeout, 429 Too Many Requests
RETRYABLE_STATUS_CODES = frozenset({408, 429})


def status_kind(status_code: int) -> FailureKind:
    if status_code in RETRYABLE_STATUS_CODES or status_code >= 500:
        return FailureKind.TRANSIENT
    return FailureKind.PERMANENT


def classify_exception(exc: BaseException) -> FailureKind:
    """
    Default failure classification for channel calls.

    Timeouts, transport errors and 408/429/5xx responses are transient.
    Other 4xx responses, bad configuration and anything unrecognised are
    permanent.
    """
    if isinstance(exc, ChannelError):
        return exc.kind
    if isinstance(exc, (httpx.TimeoutException, asyncio.TimeoutError, TimeoutError)):
        return FailureKind.TRANSIENT
    if isinstance(exc, httpx.HTTPStatusError):
        return status_kind(exc.response.status_code)
    if isinstance(exc, httpx.TransportError):
        return FailureKind.TRANSIENT
    if isinstance(exc, ConfigurationError):
        return FailureKind.PERMANENT
    return FailureKind.PERMANENT


def _retry_after(response: httpx.Response) -> Optional[float]:
    value = response.headers.get("Retry-After") if response.headers is not None else None
    try:
        return float(value) if value is not None else None
    except (TypeError, ValueError):
        return None


def raise_for_status(response: httpx.Response, channel: str) -> None:
    """Turn an error response into a classified ChannelError."""
    status_code = response.status_code
    if status_code < 400:
        return
    raise ChannelError(
        f"{channel} responded with HTTP {status_code}: {response.text[:200]}",
        kind=status_kind(status_code),
        status_code=status_code,
        retry_after=_retry_after(response),
    )


def require(value: Optional[str], what: str) -> str:
    """Missing credentials or targets are a permanent failure."""
    if not value:
        raise ChannelError(f"{what} is not configured", kind=FailureKind.PERMANENT)
    return value


class ChannelAdapter(ABC):
    """
    Base class for the external channels an automation action can target.
    """

    def __init__(self, timeout: float = 10.0):
        self.timeout = timeout

    @property
    @abstractmethod
    def type_name(self) -> ActionType:
        """The action type this channel serves."""
        pass

    @abstractmethod
    async def send(self, config: ActionConfig, context: Context) -> Dict[str, Any]:
        """
        Deliver one action.

        Args:
            config: The rendered, validated action configuration
            context: The firing's template context

        Returns:
            A small JSON-safe summary of the provider response

        Raises:
            ChannelError: classified as transient or permanent
        """
        pass

    def classify(self, exc: BaseException) -> FailureKind:
        return classify_exception(exc)


class HttpChannelAdapter(ChannelAdapter):
    """Channel backed by a single HTTP call."""

    async def request(self, method: str, url: str, **kwargs) -> httpx.Response:
        async with httpx.AsyncClient(timeout=self.timeout) as client:
            response = await client.request(method, url, **kwargs)
        raise_for_status(response, self.type_name.value)
        return response

    @staticmethod
    def response_json(response: httpx.Response) -> Dict[str, Any]:
        try:
            data = response.json()
        except ValueError:
            return {}
        return data if isinstance(data, dict) else {}

"""
Automation error taxonomy.

Configuration errors fail closed and channel errors carry their retry
classification. A rule store that cannot be read is the only failure that
escapes the engine.
"""

from enum import Enum
from typing import Any, List, Optional


class FailureKind(str, Enum):
    """Retry eligibility of a failed channel call."""

    TRANSIENT = "transient"
    PERMANENT = "permanent"


class AutomationError(Exception):
    """Base class for automation errors."""


class ConfigurationError(AutomationError):
    """Unknown trigger/action type or malformed configuration."""

    def __init__(self, message: str, errors: Optional[List[Any]] = None):
        super().__init__(message)
        self.errors = errors or []


class ChannelError(AutomationError):
    """
    Raised by channel adapters when an external call fails.

    Args:
        message: Human readable reason
        kind: Whether the call may be retried
        status_code: HTTP (or SMTP) status code if any
        retry_after: Provider backoff hint in seconds (rate limits)
    """

    def __init__(
        self,
        message: str,
        kind: FailureKind = FailureKind.PERMANENT,
        status_code: Optional[int] = None,
        retry_after: Optional[float] = None,
    ):
        super().__init__(message)
        self.kind = kind
        self.status_code = status_code
        self.retry_after = retry_after

    @property
    def transient(self) -> bool:
        return self.kind == FailureKind.TRANSIENT


class LedgerUnavailableError(AutomationError):
    """The execution ledger store cannot be reached."""


class DispatchCancelled(AutomationError):
    """A firing was cancelled mid-dispatch; carries the partial results."""

    def __init__(self, results: list):
        super().__init__(f"Dispatch cancelled with {len(results)} action results")
        self.results = results

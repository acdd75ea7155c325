from abc import ABC, abstractmethod
from typing import ContextManager

from sqlalchemy.orm import Session


class StorageAdapter(ABC):
    """
    Relational backend holding the rule store and the execution ledger.

    ``get_session`` is a transactional scope: it commits when the block
    exits cleanly and rolls back when it raises.
    """

    @abstractmethod
    def connect(self) -> None:
        ...

    @abstractmethod
    def close(self) -> None:
        ...

    @abstractmethod
    def health_check(self) -> bool:
        """True when a trivial query round-trips."""
        ...

    @abstractmethod
    def get_session(self) -> ContextManager[Session]:
        ...

    @abstractmethod
    def create_all(self) -> None:
        """Create the automation tables without migrations (SQLite and tests)."""
        ...

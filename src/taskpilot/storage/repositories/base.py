from typing import Any, Dict, Generic, List, Optional, Type, TypeVar

from sqlalchemy import select
from sqlalchemy.orm import Session

from taskpilot.storage.models import Base

T = TypeVar("T", bound=Base)


class BaseRepository(Generic[T]):
    """
    CRUD over one mapped model. Callers own the session and its transaction;
    writes only flush so the caller's commit or rollback decides.
    """

    model: Type[T]
    # Stable listing order, oldest first
    order_by: tuple = ("created_at", "id")

    def _ordering(self):
        return [getattr(self.model, column) for column in self.order_by]

    def create(self, session: Session, entity: T) -> T:
        session.add(entity)
        session.flush()
        return entity

    def get(self, session: Session, id: str) -> Optional[T]:
        return session.get(self.model, id)

    def update(self, session: Session, id: str, updates: Dict[str, Any]) -> Optional[T]:
        entity = self.get(session, id)
        if entity is None:
            return None
        for key, value in updates.items():
            if hasattr(entity, key):
                setattr(entity, key, value)
        session.flush()
        return entity

    def delete(self, session: Session, id: str) -> bool:
        entity = self.get(session, id)
        if entity is None:
            return False
        session.delete(entity)
        session.flush()
        return True

    def list(self, session: Session, limit: int = 100, offset: int = 0) -> List[T]:
        stmt = select(self.model).order_by(*self._ordering()).limit(limit).offset(offset)
        return list(session.scalars(stmt).all())

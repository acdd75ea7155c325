from typing import Any, Dict, Iterable, List, Optional

from sqlalchemy import exists, select
from sqlalchemy.orm import Session

from taskpilot.automations.models import AutomationRuleModel, ExecutionRecordModel
from taskpilot.storage.repositories.base import BaseRepository


class AutomationRuleRepository(BaseRepository[AutomationRuleModel]):
    model = AutomationRuleModel

    def update(self, session: Session, id: str, updates: Dict[str, Any]) -> Optional[AutomationRuleModel]:
        rule = super().update(session, id, updates)
        if rule is not None:
            rule.version += 1
            session.flush()
        return rule

    def list_by_project(
        self, session: Session, project_id: str, limit: int = 100, offset: int = 0
    ) -> List[AutomationRuleModel]:
        stmt = (
            select(AutomationRuleModel)
            .where(AutomationRuleModel.project_id == project_id)
            .order_by(*self._ordering())
            .limit(limit)
            .offset(offset)
        )
        return list(session.scalars(stmt).all())

    def list_active(
        self,
        session: Session,
        trigger_type: Optional[str] = None,
        project_ids: Optional[Iterable[str]] = None,
    ) -> List[AutomationRuleModel]:
        """Fetch active rules, optionally for one trigger type and a set of projects."""
        stmt = select(AutomationRuleModel).where(AutomationRuleModel.is_active == True)
        if trigger_type is not None:
            stmt = stmt.where(AutomationRuleModel.trigger_type == trigger_type)
        if project_ids is not None:
            stmt = stmt.where(AutomationRuleModel.project_id.in_(list(project_ids)))
        return list(session.scalars(stmt.order_by(*self._ordering())).all())

    def has_history(self, session: Session, rule_id: str) -> bool:
        stmt = select(exists().where(ExecutionRecordModel.rule_id == rule_id))
        return bool(session.scalar(stmt))

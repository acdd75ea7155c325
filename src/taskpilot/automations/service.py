import logging
from typing import List, Optional
from uuid import uuid4
from sqlalchemy.orm import Session

from taskpilot.automations.models import AutomationRuleModel
from taskpilot.automations.repository import AutomationRuleRepository
from taskpilot.automations import schemas

logger = logging.getLogger(__name__)

class AutomationRuleService:
    def __init__(self, repository: AutomationRuleRepository):
        self.repository = repository

    def create_rule(
        self,
        session: Session,
        project_id: str,
        rule_create: schemas.AutomationRuleCreate,
        created_by: Optional[str] = None,
    ) -> AutomationRuleModel:
        new_rule = AutomationRuleModel(
            id=str(uuid4()),
            project_id=project_id,
            name=rule_create.name,
            description=rule_create.description,
            trigger_type=rule_create.trigger_type.value,
            trigger_config=rule_create.trigger_config,
            actions=[a.model_dump(mode="json") for a in rule_create.actions],
            is_active=rule_create.is_active,
            runs_count=0,
            success_count=0,
            created_by=created_by,
        )
        return self.repository.create(session, new_rule)

    def get_rule(self, session: Session, project_id: str, rule_id: str) -> Optional[AutomationRuleModel]:
        rule = self.repository.get(session, rule_id)
        if rule is None or rule.project_id != project_id:
            return None
        return rule

    def list_rules(
        self, session: Session, project_id: str, limit: int = 100, offset: int = 0
    ) -> List[AutomationRuleModel]:
        return self.repository.list_by_project(session, project_id, limit, offset)

    def list_active_rules(
        self,
        session: Session,
        project_id: Optional[str] = None,
        trigger_type: Optional[schemas.TriggerType] = None,
    ) -> List[AutomationRuleModel]:
        """Get active rules, optionally for one project and trigger type."""
        project_ids = [project_id] if project_id is not None else None
        type_value = trigger_type.value if trigger_type is not None else None
        return self.repository.list_active(session, type_value, project_ids)

    def update_rule(
        self,
        session: Session,
        project_id: str,
        rule_id: str,
        rule_update: schemas.AutomationRuleUpdate,
    ) -> Optional[AutomationRuleModel]:
        rule = self.get_rule(session, project_id, rule_id)
        if rule is None:
            return None

        updates = rule_update.model_dump(exclude_unset=True)
        # Only description may be cleared
        updates = {k: v for k, v in updates.items() if v is not None or k == "description"}
        if not updates:
            return rule

        # Trigger type and config are validated as a pair
        if "trigger_type" in updates or "trigger_config" in updates:
            trigger_type = updates.get("trigger_type") or rule.trigger_type
            config = updates.get("trigger_config")
            if config is None:
                config = {} if "trigger_type" in updates else rule.trigger_config
            parsed = schemas.parse_trigger_config(trigger_type, config)
            updates["trigger_type"] = schemas.TriggerType.parse(trigger_type).value
            updates["trigger_config"] = parsed.model_dump()

        if rule_update.actions is not None:
            updates["actions"] = [a.model_dump(mode="json") for a in rule_update.actions]

        return self.repository.update(session, rule_id, updates)

    def toggle_rule(self, session: Session, project_id: str, rule_id: str) -> Optional[AutomationRuleModel]:
        rule = self.get_rule(session, project_id, rule_id)
        if rule is None:
            return None
        return self.repository.update(session, rule_id, {"is_active": not rule.is_active})

    def remove_rule(self, session: Session, project_id: str, rule_id: str) -> Optional[str]:
        """
        Remove a rule. Rules with execution history are deactivated so the
        history stays readable; rules that never ran are deleted.

        Returns "deactivated", "deleted", or None when the rule does not exist.
        """
        rule = self.get_rule(session, project_id, rule_id)
        if rule is None:
            return None
        if self.repository.has_history(session, rule_id):
            self.repository.update(session, rule_id, {"is_active": False})
            logger.info(f"Deactivated automation {rule_id} (has execution history)")
            return "deactivated"
        self.repository.delete(session, rule_id)
        logger.info(f"Deleted automation {rule_id}")
        return "deleted"

import logging
from datetime import datetime, timedelta, timezone
from typing import List
from uuid import uuid4

from sqlalchemy import case, delete, exists, or_, select, update
from sqlalchemy.exc import SQLAlchemyError

from taskpilot.automations.engine.context import as_aware
from taskpilot.automations.engine.results import ActionResult, FiringStatus, firing_status
from taskpilot.automations.models import AutomationRuleModel, ExecutionRecordModel
from taskpilot.automations.schemas import AutomationRule
from taskpilot.errors import LedgerUnavailableError
from taskpilot.storage.postgres_adapter import PostgresAdapter

logger = logging.getLogger(__name__)


def _utc(value: datetime) -> datetime:
    return as_aware(value).astimezone(timezone.utc)


class ExecutionLedger:
    """
    Append-only record of rule firings plus the rule's run counters.

    Counters are changed with a single UPDATE expression so concurrent
    firings never lose an increment and last_run_at never moves backwards.
    """

    def __init__(self, db: PostgresAdapter):
        self.db = db

    def record(
        self,
        rule: AutomationRule,
        subject_key: str,
        outcomes: List[ActionResult],
        fired_at: datetime,
        event_id: str = None,
    ) -> ExecutionRecordModel:
        fired_at = _utc(fired_at)
        status = firing_status(outcomes)
        succeeded = 1 if status == FiringStatus.SUCCESS else 0
        last_run = AutomationRuleModel.last_run_at

        try:
            with self.db.get_session() as session:
                record = ExecutionRecordModel(
                    id=str(uuid4()),
                    rule_id=rule.id,
                    project_id=rule.project_id,
                    subject_key=subject_key,
                    trigger_type=rule.trigger_type.value,
                    event_id=event_id,
                    fired_at=fired_at,
                    status=status.value,
                    outcomes=[o.to_dict() for o in outcomes],
                )
                session.add(record)
                session.execute(
                    update(AutomationRuleModel)
                    .where(AutomationRuleModel.id == rule.id)
                    .values(
                        runs_count=AutomationRuleModel.runs_count + 1,
                        success_count=AutomationRuleModel.success_count + succeeded,
                        last_run_at=case(
                            (or_(last_run.is_(None), last_run < fired_at), fired_at),
                            else_=last_run,
                        ),
                        # Counter bumps are not edits
                        updated_at=AutomationRuleModel.updated_at,
                    )
                    .execution_options(synchronize_session=False)
                )
                session.flush()
        except (SQLAlchemyError, ConnectionError) as e:
            raise LedgerUnavailableError(f"Could not record execution of {rule.id}: {e}") from e

        logger.info(f"Recorded {status.value} execution of automation {rule.id} for {subject_key}")
        return record

    def fired_within(self, rule_id: str, subject_key: str, window: timedelta, now: datetime) -> bool:
        since = _utc(now) - window
        stmt = select(
            exists().where(
                ExecutionRecordModel.rule_id == rule_id,
                ExecutionRecordModel.subject_key == subject_key,
                ExecutionRecordModel.fired_at > since,
            )
        )
        try:
            with self.db.get_session() as session:
                return bool(session.scalar(stmt))
        except (SQLAlchemyError, ConnectionError) as e:
            raise LedgerUnavailableError(f"Could not query executions of {rule_id}: {e}") from e

    def history(self, rule_id: str, limit: int = 50) -> List[ExecutionRecordModel]:
        """Most recent executions first."""
        stmt = (
            select(ExecutionRecordModel)
            .where(ExecutionRecordModel.rule_id == rule_id)
            .order_by(ExecutionRecordModel.fired_at.desc())
            .limit(limit)
        )
        try:
            with self.db.get_session() as session:
                return list(session.scalars(stmt).all())
        except (SQLAlchemyError, ConnectionError) as e:
            raise LedgerUnavailableError(f"Could not read executions of {rule_id}: {e}") from e

    def prune(self, older_than: datetime) -> int:
        """Delete executions fired before older_than; returns the count."""
        stmt = delete(ExecutionRecordModel).where(ExecutionRecordModel.fired_at < _utc(older_than))
        try:
            with self.db.get_session() as session:
                result = session.execute(stmt.execution_options(synchronize_session=False))
                count = result.rowcount or 0
        except (SQLAlchemyError, ConnectionError) as e:
            raise LedgerUnavailableError(f"Could not prune executions: {e}") from e

        if count:
            logger.info(f"Pruned {count} automation executions older than {older_than.isoformat()}")
        return count

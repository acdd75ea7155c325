from datetime import datetime
from typing import Dict, Any, List, Optional
from sqlalchemy.orm import Mapped, mapped_column
from sqlalchemy import ForeignKey, Index, String, Text, Boolean, Integer, func, true

from taskpilot.events.event import utcnow
from taskpilot.storage.models import Base, JSON_TYPE, TIMESTAMP_TYPE

class AutomationRuleModel(Base):
    __tablename__ = "automation_rules"

    id: Mapped[str] = mapped_column(String, primary_key=True)
    project_id: Mapped[str] = mapped_column(String, nullable=False, index=True)
    name: Mapped[str] = mapped_column(String(255), nullable=False)
    description: Mapped[Optional[str]] = mapped_column(Text)

    # One of task_created, task_updated, due_date, schedule
    trigger_type: Mapped[str] = mapped_column(String, nullable=False, index=True)
    trigger_config: Mapped[Dict[str, Any]] = mapped_column(JSON_TYPE, nullable=False, default=dict)

    # Ordered list of {"type": "Slack", "config": {...}}
    actions: Mapped[List[Dict[str, Any]]] = mapped_column(JSON_TYPE, nullable=False, default=list)

    is_active: Mapped[bool] = mapped_column(Boolean, server_default=true(), default=True, nullable=False)

    # Counters are only written by the execution ledger
    runs_count: Mapped[int] = mapped_column(Integer, server_default='0', default=0, nullable=False)
    success_count: Mapped[int] = mapped_column(Integer, server_default='0', default=0, nullable=False)
    last_run_at: Mapped[Optional[datetime]] = mapped_column(TIMESTAMP_TYPE, nullable=True)

    # Audit fields
    created_at: Mapped[datetime] = mapped_column(TIMESTAMP_TYPE, server_default=func.now(), default=utcnow)
    updated_at: Mapped[datetime] = mapped_column(TIMESTAMP_TYPE, server_default=func.now(), default=utcnow, onupdate=utcnow)
    created_by: Mapped[Optional[str]] = mapped_column(String)
    version: Mapped[int] = mapped_column(Integer, server_default='1', default=1)

    __table_args__ = (
        Index("ix_automation_rules_project_trigger", "project_id", "trigger_type"),
    )

class ExecutionRecordModel(Base):
    __tablename__ = "automation_executions"

    id: Mapped[str] = mapped_column(String, primary_key=True)
    rule_id: Mapped[str] = mapped_column(
        String, ForeignKey("automation_rules.id", ondelete="CASCADE"), nullable=False
    )
    project_id: Mapped[str] = mapped_column(String, nullable=False, index=True)

    # e.g. task:42, task:42:due:2026-10-19T09:00:00+00:00, schedule:2026-10-19T09:00:00+00:00
    subject_key: Mapped[str] = mapped_column(String, nullable=False)
    trigger_type: Mapped[str] = mapped_column(String, nullable=False)
    event_id: Mapped[Optional[str]] = mapped_column(String, nullable=True)

    fired_at: Mapped[datetime] = mapped_column(TIMESTAMP_TYPE, nullable=False)

    # success, partial, failed, cancelled
    status: Mapped[str] = mapped_column(String, nullable=False, index=True)

    # Per-action results, in action order
    outcomes: Mapped[List[Dict[str, Any]]] = mapped_column(JSON_TYPE, nullable=False, default=list)

    __table_args__ = (
        Index("ix_automation_executions_rule_subject", "rule_id", "subject_key", "fired_at"),
    )

from typing import Annotated, Generator

from fastapi import Depends
from sqlalchemy.orm import Session

from taskpilot.automations.engine.ledger import ExecutionLedger
from taskpilot.automations.engine.orchestrator import RuleEngine, build_rule_engine
from taskpilot.automations.repository import AutomationRuleRepository
from taskpilot.automations.service import AutomationRuleService
from taskpilot.platform.config import settings
from taskpilot.platform.logging import get_logger
from taskpilot.storage import PostgresAdapter, PostgresConfig

logger = get_logger(__name__)

# Singletons
_postgres_adapter: PostgresAdapter | None = None
_rule_engine: RuleEngine | None = None


def get_postgres_adapter() -> PostgresAdapter:
    global _postgres_adapter
    if not _postgres_adapter:
        _postgres_adapter = PostgresAdapter(PostgresConfig())
    return _postgres_adapter


def get_db() -> Generator[Session, None, None]:
    """One transaction per request, committed when the handler returns."""
    with get_postgres_adapter().get_session() as session:
        yield session


def get_rule_engine() -> RuleEngine:
    global _rule_engine
    if not _rule_engine:
        _rule_engine = build_rule_engine(settings, get_postgres_adapter())
    return _rule_engine


def get_execution_ledger(
    engine: Annotated[RuleEngine, Depends(get_rule_engine)],
) -> ExecutionLedger:
    return engine.ledger


def get_automation_service() -> AutomationRuleService:
    return AutomationRuleService(AutomationRuleRepository())


async def init_resources() -> None:
    """Connect the database; SQLite databases get their tables created in place."""
    adapter = get_postgres_adapter()
    adapter.connect()
    if adapter.config.is_sqlite:
        logger.info("Creating automation tables on SQLite")
        adapter.create_all()
    get_rule_engine()


async def close_resources() -> None:
    global _postgres_adapter, _rule_engine

    if _rule_engine:
        await _rule_engine.guard.store.close()
        _rule_engine = None

    if _postgres_adapter:
        _postgres_adapter.close()
        _postgres_adapter = None

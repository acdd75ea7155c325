from typing import Any, Dict, List, Optional, Annotated

from fastapi import APIRouter, Body, Depends, Header, HTTPException, status, Query
from pydantic import ValidationError
from sqlalchemy.orm import Session

from taskpilot.automations import schemas
from taskpilot.automations.service import AutomationRuleService
from taskpilot.automations.engine.ledger import ExecutionLedger
from taskpilot.automations.engine.orchestrator import RuleEngine
from taskpilot.api.dependencies import (
    get_automation_service,
    get_db,
    get_execution_ledger,
    get_rule_engine,
)
from taskpilot.events.event import Event, parse_event
from taskpilot.platform.logging import get_logger

logger = get_logger(__name__)

router = APIRouter()


def _parse_event(payload: Dict[str, Any]) -> Event:
    try:
        return parse_event(payload)
    except ValidationError as e:
        raise HTTPException(
            status_code=422,
            detail=e.errors(include_url=False, include_context=False),
        )


def _get_rule_or_404(service: AutomationRuleService, session: Session, project_id: str, rule_id: str):
    rule = service.get_rule(session, project_id, rule_id)
    if not rule:
        raise HTTPException(status_code=404, detail="Automation not found")
    return rule


@router.post("/", response_model=schemas.AutomationRuleResponse, status_code=status.HTTP_201_CREATED)
def create_automation(
    project_id: str,
    rule_create: schemas.AutomationRuleCreate,
    service: Annotated[AutomationRuleService, Depends(get_automation_service)],
    session: Annotated[Session, Depends(get_db)],
    x_user_id: Annotated[Optional[str], Header()] = None,
):
    """
    Create an automation rule in a project.
    """
    rule = service.create_rule(session, project_id, rule_create, created_by=x_user_id)
    logger.info("Automation created", rule_id=rule.id, project_id=project_id)
    return rule


@router.get("/", response_model=List[schemas.AutomationRuleResponse])
def list_automations(
    project_id: str,
    service: Annotated[AutomationRuleService, Depends(get_automation_service)],
    session: Annotated[Session, Depends(get_db)],
    active_only: bool = False,
    limit: int = Query(default=100, ge=1, le=500),
    offset: int = Query(default=0, ge=0),
):
    """
    List a project's automations.
    """
    if active_only:
        return service.list_active_rules(session, project_id)
    return service.list_rules(session, project_id, limit, offset)


@router.get("/{rule_id}", response_model=schemas.AutomationRuleResponse)
def get_automation(
    project_id: str,
    rule_id: str,
    service: Annotated[AutomationRuleService, Depends(get_automation_service)],
    session: Annotated[Session, Depends(get_db)],
):
    return _get_rule_or_404(service, session, project_id, rule_id)


@router.patch("/{rule_id}", response_model=schemas.AutomationRuleResponse)
def update_automation(
    project_id: str,
    rule_id: str,
    rule_update: schemas.AutomationRuleUpdate,
    service: Annotated[AutomationRuleService, Depends(get_automation_service)],
    session: Annotated[Session, Depends(get_db)],
):
    """
    Update an automation. Trigger type and config are re-validated together.
    """
    rule = service.update_rule(session, project_id, rule_id, rule_update)
    if not rule:
        raise HTTPException(status_code=404, detail="Automation not found")
    return rule


@router.post("/{rule_id}/toggle", response_model=schemas.AutomationRuleResponse)
def toggle_automation(
    project_id: str,
    rule_id: str,
    service: Annotated[AutomationRuleService, Depends(get_automation_service)],
    session: Annotated[Session, Depends(get_db)],
):
    rule = service.toggle_rule(session, project_id, rule_id)
    if not rule:
        raise HTTPException(status_code=404, detail="Automation not found")
    return rule


@router.delete("/{rule_id}")
def delete_automation(
    project_id: str,
    rule_id: str,
    service: Annotated[AutomationRuleService, Depends(get_automation_service)],
    session: Annotated[Session, Depends(get_db)],
):
    """
    Delete an automation. Automations with execution history are
    deactivated instead so their history stays readable.
    """
    result = service.remove_rule(session, project_id, rule_id)
    if result is None:
        raise HTTPException(status_code=404, detail="Automation not found")
    return {"id": rule_id, "result": result}


@router.get("/{rule_id}/executions", response_model=List[schemas.ExecutionRecordResponse])
def list_executions(
    project_id: str,
    rule_id: str,
    service: Annotated[AutomationRuleService, Depends(get_automation_service)],
    ledger: Annotated[ExecutionLedger, Depends(get_execution_ledger)],
    session: Annotated[Session, Depends(get_db)],
    limit: int = Query(default=50, ge=1, le=500),
):
    """
    Most recent executions of an automation, newest first.
    """
    _get_rule_or_404(service, session, project_id, rule_id)
    return ledger.history(rule_id, limit)


@router.post("/{rule_id}/test")
def test_automation(
    project_id: str,
    rule_id: str,
    service: Annotated[AutomationRuleService, Depends(get_automation_service)],
    engine: Annotated[RuleEngine, Depends(get_rule_engine)],
    session: Annotated[Session, Depends(get_db)],
    event: Annotated[Optional[Dict[str, Any]], Body(embed=True)] = None,
):
    """
    Dry run: show whether the trigger matches the given event and how each
    action would render. Nothing is sent or recorded.
    """
    model = _get_rule_or_404(service, session, project_id, rule_id)
    rule = schemas.AutomationRule.from_model(model)
    parsed = _parse_event(event) if event is not None else None
    return engine.preview(rule, parsed).to_dict()


@router.post("/{rule_id}/dispatch")
async def dispatch_automation(
    project_id: str,
    rule_id: str,
    event: Annotated[Dict[str, Any], Body(embed=True)],
    service: Annotated[AutomationRuleService, Depends(get_automation_service)],
    engine: Annotated[RuleEngine, Depends(get_rule_engine)],
    session: Annotated[Session, Depends(get_db)],
):
    """
    Run a synthetic event through one automation. Matching, duplicate
    suppression, delivery and recording behave exactly as for live events.
    """
    _get_rule_or_404(service, session, project_id, rule_id)
    outcome = await engine.fire_rule(rule_id, _parse_event(event))
    return outcome.to_dict()

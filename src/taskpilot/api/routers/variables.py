from typing import Dict, List

from fastapi import APIRouter

from taskpilot.automations.engine.context import VARIABLE_CATALOG
from taskpilot.automations.schemas import ActionType, TriggerType

router = APIRouter()


@router.get("/variables")
def list_variables() -> Dict[str, List[Dict[str, str]]]:
    """
    Template variables available in action configs, grouped by namespace.
    """
    return {
        namespace: [
            {"variable": f"{{{{{namespace}.{key}}}}}", "description": description}
            for key, description in fields.items()
        ]
        for namespace, fields in VARIABLE_CATALOG.items()
    }


@router.get("/types")
def list_types() -> Dict[str, List[str]]:
    """Supported trigger and action types."""
    return {
        "triggers": [t.value for t in TriggerType],
        "actions": [a.value for a in ActionType],
    }

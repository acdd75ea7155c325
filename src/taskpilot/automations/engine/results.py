from dataclasses import asdict, dataclass, field
from enum import Enum
from typing import Any, Dict, List, Optional


class ActionStatus(str, Enum):
    SUCCEEDED = "succeeded"
    FAILED = "failed"
    SKIPPED = "skipped"
    CANCELLED = "cancelled"


class FiringStatus(str, Enum):
    SUCCESS = "success"
    PARTIAL = "partial"
    FAILED = "failed"
    CANCELLED = "cancelled"


@dataclass
class ActionResult:
    index: int
    action_type: str
    status: ActionStatus
    attempts: int = 0
    error: Optional[str] = None
    failure_kind: Optional[str] = None
    response: Optional[Dict[str, Any]] = None
    duration_ms: float = 0.0

    @property
    def succeeded(self) -> bool:
        return self.status == ActionStatus.SUCCEEDED

    def to_dict(self) -> Dict[str, Any]:
        data = asdict(self)
        data["status"] = self.status.value
        return data


def firing_status(results: List[ActionResult]) -> FiringStatus:
    """Overall status of one firing from its per-action results."""
    if any(r.status == ActionStatus.CANCELLED for r in results):
        return FiringStatus.CANCELLED
    attempted = [r for r in results if r.status != ActionStatus.SKIPPED]
    if all(r.succeeded for r in attempted):
        return FiringStatus.SUCCESS
    if any(r.succeeded for r in attempted):
        return FiringStatus.PARTIAL
    return FiringStatus.FAILED


@dataclass
class FiringResult:
    rule_id: str
    rule_name: str
    subject_key: str
    status: FiringStatus
    actions: List[ActionResult] = field(default_factory=list)
    execution_id: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        return {
            "rule_id": self.rule_id,
            "rule_name": self.rule_name,
            "subject_key": self.subject_key,
            "status": self.status.value,
            "execution_id": self.execution_id,
            "actions": [a.to_dict() for a in self.actions],
        }


@dataclass
class EventOutcome:
    """What one event did across all rules."""

    event_id: str
    event_type: str
    rules_evaluated: int = 0
    rules_matched: int = 0
    fired: List[FiringResult] = field(default_factory=list)
    # "<rule_id>:<subject_key>" for each duplicate the guard dropped
    suppressed: List[str] = field(default_factory=list)
    errors: List[Dict[str, Any]] = field(default_factory=list)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "event_id": self.event_id,
            "event_type": self.event_type,
            "rules_evaluated": self.rules_evaluated,
            "rules_matched": self.rules_matched,
            "fired": [f.to_dict() for f in self.fired],
            "suppressed": list(self.suppressed),
            "errors": list(self.errors),
        }


@dataclass
class ActionPreview:
    index: int
    action_type: str
    config: Dict[str, Any]
    unresolved: List[str] = field(default_factory=list)
    errors: List[Any] = field(default_factory=list)

    @property
    def valid(self) -> bool:
        return not self.errors


@dataclass
class RulePreview:
    """Dry run of a rule: nothing is sent or recorded."""

    rule_id: str
    trigger_matched: bool
    subjects: List[str] = field(default_factory=list)
    actions: List[ActionPreview] = field(default_factory=list)
    errors: List[str] = field(default_factory=list)

    @property
    def would_execute(self) -> bool:
        return (
            self.trigger_matched
            and not self.errors
            and len(self.actions) > 0
            and all(a.valid for a in self.actions)
        )

    def to_dict(self) -> Dict[str, Any]:
        return {
            "rule_id": self.rule_id,
            "trigger_matched": self.trigger_matched,
            "would_execute": self.would_execute,
            "subjects": list(self.subjects),
            "errors": list(self.errors),
            "actions": [
                {
                    "index": a.index,
                    "type": a.action_type,
                    "config": a.config,
                    "unresolved": a.unresolved,
                    "valid": a.valid,
                    "errors": a.errors,
                }
                for a in self.actions
            ],
        }

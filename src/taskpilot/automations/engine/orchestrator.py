"""
Rule engine: event in, firings out.

For each event the engine loads the active rules of the matching trigger
type, matches subjects, suppresses duplicates through the guard, and for
every surviving (rule, subject) dispatches the rule's actions and records
one ledger entry. Firings of different rules run concurrently and never
affect each other.
"""
import asyncio
from datetime import datetime
from typing import Callable, List, Optional, Tuple

from sqlalchemy.exc import SQLAlchemyError

from taskpilot.automations.engine.context import ContextResolver, as_aware
from taskpilot.automations.engine.dispatcher import ActionDispatcher
from taskpilot.automations.engine.guard import DebounceGuard
from taskpilot.automations.engine.ledger import ExecutionLedger
from taskpilot.automations.engine.matcher import MatchedSubject, TriggerMatcher
from taskpilot.automations.engine.results import (
    EventOutcome,
    FiringResult,
    RulePreview,
    firing_status,
)
from taskpilot.automations.repository import AutomationRuleRepository
from taskpilot.automations.schemas import AutomationRule, TriggerType
from taskpilot.errors import ConfigurationError, DispatchCancelled, LedgerUnavailableError
from taskpilot.events.event import (
    DueDateScan,
    Event,
    EventType,
    ProjectSnapshot,
    ScheduleTick,
    utcnow,
)
from taskpilot.platform.logging import get_logger
from taskpilot.platform.metrics import CONFIGURATION_ERRORS, RULE_FIRINGS, SUPPRESSED_DUPLICATES
from taskpilot.storage.postgres_adapter import PostgresAdapter

logger = get_logger(__name__)

EVENT_TRIGGERS = {
    EventType.TASK_CREATED: TriggerType.TASK_CREATED,
    EventType.TASK_UPDATED: TriggerType.TASK_UPDATED,
    EventType.DUE_DATE_SCAN: TriggerType.DUE_DATE,
    EventType.SCHEDULE_TICK: TriggerType.SCHEDULE,
}


class RuleEngine:
    def __init__(
        self,
        db: PostgresAdapter,
        repository: AutomationRuleRepository,
        matcher: TriggerMatcher,
        guard: DebounceGuard,
        dispatcher: ActionDispatcher,
        ledger: ExecutionLedger,
        context_resolver: Optional[ContextResolver] = None,
        clock: Callable[[], datetime] = utcnow,
        enabled: bool = True,
    ):
        self.db = db
        self.repository = repository
        self.matcher = matcher
        self.guard = guard
        self.dispatcher = dispatcher
        self.ledger = ledger
        self.context_resolver = context_resolver or ContextResolver()
        self.clock = clock
        self.enabled = enabled

    # --- Rule loading ---

    def _load_rules(
        self, trigger_type: TriggerType, project_ids: Optional[List[str]]
    ) -> Tuple[List[AutomationRule], List[dict]]:
        """Active rules as immutable snapshots; malformed rules are reported, not returned."""
        try:
            with self.db.get_session() as session:
                models = self.repository.list_active(session, trigger_type.value, project_ids)
                snapshots, errors = [], []
                for model in models:
                    try:
                        snapshots.append(AutomationRule.from_model(model))
                    except ConfigurationError as e:
                        CONFIGURATION_ERRORS.inc()
                        logger.error(
                            "automation.configuration_error",
                            rule_id=model.id,
                            error=str(e),
                            details=e.errors,
                        )
                        errors.append({"rule_id": model.id, "error": str(e)})
                return snapshots, errors
        except (SQLAlchemyError, ConnectionError) as e:
            raise LedgerUnavailableError(f"Could not load automation rules: {e}") from e

    def _load_rule(self, rule_id: str) -> AutomationRule:
        try:
            with self.db.get_session() as session:
                model = self.repository.get(session, rule_id)
                if model is None:
                    raise ConfigurationError(f"Automation {rule_id} not found")
                return AutomationRule.from_model(model)
        except (SQLAlchemyError, ConnectionError) as e:
            raise LedgerUnavailableError(f"Could not load automation {rule_id}: {e}") from e

    def _event_time(self, event: Event) -> datetime:
        if isinstance(event, (ScheduleTick, DueDateScan)):
            return as_aware(event.now)
        return as_aware(self.clock())

    # --- Event handling ---

    async def handle_event(self, event: Event) -> EventOutcome:
        """
        Evaluate every active rule against the event and fire the matches.

        Raises:
            LedgerUnavailableError: the rule store could not be read, so
                nothing was evaluated and the event may be redelivered.
        """
        outcome = EventOutcome(event_id=str(event.event_id), event_type=event.event_type.value)
        if not self.enabled:
            logger.debug("automation.disabled", event_id=outcome.event_id)
            return outcome

        trigger_type = EVENT_TRIGGERS.get(event.event_type)
        if trigger_type is None:
            logger.warning("automation.unknown_event", event_type=str(event.event_type))
            return outcome

        rules, errors = self._load_rules(trigger_type, event.project_ids)
        outcome.errors.extend(errors)
        await self._evaluate(event, rules, outcome)

        logger.info(
            "automation.event_handled",
            event_id=outcome.event_id,
            event_type=outcome.event_type,
            rules_evaluated=outcome.rules_evaluated,
            rules_matched=outcome.rules_matched,
            fired=len(outcome.fired),
            suppressed=len(outcome.suppressed),
            errors=len(outcome.errors),
        )
        return outcome

    async def fire_rule(self, rule_id: str, event: Event) -> EventOutcome:
        """Evaluate one stored rule against a (synthetic) event."""
        outcome = EventOutcome(event_id=str(event.event_id), event_type=event.event_type.value)
        try:
            rule = self._load_rule(rule_id)
        except ConfigurationError as e:
            outcome.errors.append({"rule_id": rule_id, "error": str(e)})
            return outcome
        await self._evaluate(event, [rule], outcome)
        return outcome

    async def _evaluate(self, event: Event, rules: List[AutomationRule], outcome: EventOutcome) -> None:
        now = self._event_time(event)
        firings = []

        for rule in rules:
            outcome.rules_evaluated += 1
            if not rule.runnable:
                logger.info("automation.not_runnable", rule_id=rule.id, active=rule.is_active, actions=len(rule.actions))
                continue

            try:
                subjects = self.matcher.match_subjects(event, rule)
            except Exception as e:
                CONFIGURATION_ERRORS.inc()
                logger.error("automation.configuration_error", rule_id=rule.id, error=repr(e))
                outcome.errors.append({"rule_id": rule.id, "error": str(e)})
                continue
            if not subjects:
                continue
            outcome.rules_matched += 1

            for subject in subjects:
                if not await self.guard.acquire(rule, subject.subject_key, now):
                    SUPPRESSED_DUPLICATES.labels(trigger_type=rule.trigger_type.value).inc()
                    logger.info(
                        "automation.suppressed_duplicate",
                        rule_id=rule.id,
                        subject_key=subject.subject_key,
                        event_id=outcome.event_id,
                    )
                    outcome.suppressed.append(f"{rule.id}:{subject.subject_key}")
                    continue
                firings.append((rule, subject))

        results = await asyncio.gather(
            *(self._fire(rule, subject, event, now) for rule, subject in firings),
            return_exceptions=True,
        )
        for (rule, subject), result in zip(firings, results):
            if isinstance(result, FiringResult):
                outcome.fired.append(result)
            elif isinstance(result, asyncio.CancelledError):
                raise result
            else:
                logger.error(
                    "automation.firing_error",
                    rule_id=rule.id,
                    subject_key=subject.subject_key,
                    error=repr(result),
                )
                outcome.errors.append({"rule_id": rule.id, "subject_key": subject.subject_key, "error": str(result)})

    async def _fire(self, rule: AutomationRule, subject: MatchedSubject, event: Event, now: datetime) -> FiringResult:
        project = subject.project or ProjectSnapshot(id=rule.project_id)
        context = self.context_resolver.build(
            rule,
            project,
            task=subject.task,
            actor=getattr(event, "actor", None),
            now=now,
        )
        event_id = str(event.event_id)

        try:
            actions = await self.dispatcher.dispatch_all(rule, context)
        except DispatchCancelled as e:
            # Shutting down: keep the partial firing on record, then stop
            self.ledger.record(rule, subject.subject_key, e.results, now, event_id)
            RULE_FIRINGS.labels(trigger_type=rule.trigger_type.value, status="cancelled").inc()
            logger.warning("automation.cancelled", rule_id=rule.id, subject_key=subject.subject_key)
            raise asyncio.CancelledError()

        status = firing_status(actions)
        record = self.ledger.record(rule, subject.subject_key, actions, now, event_id)
        RULE_FIRINGS.labels(trigger_type=rule.trigger_type.value, status=status.value).inc()
        logger.info(
            "automation.fired",
            rule_id=rule.id,
            rule_name=rule.name,
            subject_key=subject.subject_key,
            status=status.value,
            event_id=event_id,
        )
        return FiringResult(
            rule_id=rule.id,
            rule_name=rule.name,
            subject_key=subject.subject_key,
            status=status,
            actions=actions,
            execution_id=record.id,
        )

    # --- Preview ---

    def preview(self, rule: AutomationRule, event: Optional[Event] = None) -> RulePreview:
        """
        Dry run: match the rule against the event (or assume it matched) and
        render its actions. Nothing is sent, guarded or recorded.
        """
        preview = RulePreview(rule_id=rule.id, trigger_matched=event is None)
        if not rule.actions:
            preview.errors.append("Automation has no actions")

        subjects: List[MatchedSubject] = []
        if event is not None:
            subjects = self.matcher.match_subjects(event, rule)
            preview.trigger_matched = bool(subjects)
            preview.subjects = [s.subject_key for s in subjects]

        subject = subjects[0] if subjects else MatchedSubject(subject_key="preview")
        context = self.context_resolver.build(
            rule,
            subject.project or ProjectSnapshot(id=rule.project_id),
            task=subject.task,
            actor=getattr(event, "actor", None),
            now=self._event_time(event) if event is not None else self.clock(),
        )
        preview.actions = [
            self.dispatcher.preview(index, action, context) for index, action in enumerate(rule.actions)
        ]
        return preview


def build_rule_engine(settings, db: PostgresAdapter, store=None) -> RuleEngine:
    """Wire a RuleEngine from settings. store defaults to the configured debounce backend."""
    from datetime import timedelta

    from taskpilot.automations.actions.registry import ChannelRegistry, init_channels
    from taskpilot.automations.engine.guard import InMemoryDebounceStore, RedisDebounceStore
    from taskpilot.automations.engine.retry import RetryPolicy

    if not ChannelRegistry.registered():
        init_channels(settings)

    if store is None:
        if settings.AUTOMATION_DEBOUNCE_BACKEND == "redis":
            store = RedisDebounceStore.from_url(settings.REDIS_URL)
        else:
            store = InMemoryDebounceStore()

    ledger = ExecutionLedger(db)
    dispatcher = ActionDispatcher(
        registry=ChannelRegistry,
        retry_policy=RetryPolicy(
            max_attempts=settings.AUTOMATION_RETRY_MAX_ATTEMPTS,
            base_delay=settings.AUTOMATION_RETRY_BASE_DELAY,
            max_delay=settings.AUTOMATION_RETRY_MAX_DELAY,
            total_budget=settings.AUTOMATION_RETRY_BUDGET_SECONDS,
        ),
        concurrency=settings.AUTOMATION_ACTION_CONCURRENCY,
        timeout=settings.AUTOMATION_CHANNEL_TIMEOUT_SECONDS,
        shutdown_grace=settings.AUTOMATION_SHUTDOWN_GRACE_SECONDS,
    )
    return RuleEngine(
        db=db,
        repository=AutomationRuleRepository(),
        matcher=TriggerMatcher(timedelta(minutes=settings.AUTOMATION_SCAN_INTERVAL_MINUTES)),
        guard=DebounceGuard(store, timedelta(seconds=settings.AUTOMATION_DEBOUNCE_SECONDS), ledger=ledger),
        dispatcher=dispatcher,
        ledger=ledger,
        enabled=settings.AUTOMATIONS_ENABLED,
    )

"""
Action dispatch.

Each action of a firing is rendered, validated, and sent through its
channel independently; a failing action never stops its siblings.
"""
import asyncio
import logging
import time
from typing import Dict, List, Optional, Set

from taskpilot.automations.actions.registry import ChannelRegistry
from taskpilot.automations.engine.context import Context
from taskpilot.automations.engine.results import ActionPreview, ActionResult, ActionStatus
from taskpilot.automations.engine.retry import RetryPolicy
from taskpilot.automations.engine.templates import TemplateResolver
from taskpilot.automations.schemas import AutomationAction, AutomationRule, parse_action_config
from taskpilot.errors import ConfigurationError, DispatchCancelled, FailureKind
from taskpilot.platform.metrics import ACTION_LATENCY, ACTION_OUTCOMES

logger = logging.getLogger(__name__)


class ActionDispatcher:
    def __init__(
        self,
        registry=ChannelRegistry,
        resolver: Optional[TemplateResolver] = None,
        retry_policy: Optional[RetryPolicy] = None,
        concurrency: int = 4,
        timeout: float = 10.0,
        shutdown_grace: float = 5.0,
    ):
        self.registry = registry
        self.resolver = resolver or TemplateResolver()
        self.retry_policy = retry_policy or RetryPolicy()
        self.timeout = timeout
        self.shutdown_grace = shutdown_grace
        # Shared by every firing handled by this dispatcher
        self._semaphore = asyncio.Semaphore(max(1, concurrency))

    def _finish(self, result: ActionResult, started: float) -> ActionResult:
        elapsed = time.perf_counter() - started
        result.duration_ms = round(elapsed * 1000, 2)
        ACTION_OUTCOMES.labels(action_type=result.action_type, status=result.status.value).inc()
        ACTION_LATENCY.labels(action_type=result.action_type).observe(elapsed)
        return result

    async def dispatch(
        self, rule: AutomationRule, index: int, action: AutomationAction, context: Context
    ) -> ActionResult:
        """Run one action. Business failures are returned, never raised."""
        started = time.perf_counter()
        result = ActionResult(index=index, action_type=action.type.value, status=ActionStatus.FAILED)

        if not action.enabled:
            result.status = ActionStatus.SKIPPED
            return self._finish(result, started)

        try:
            rendered = self.resolver.resolve_value(action.config, context)
            config = parse_action_config(action.type, rendered)
            channel = self.registry.get(action.type)
        except ConfigurationError as e:
            logger.error(f"Automation {rule.id} action #{index} ({action.type.value}) misconfigured: {e} {e.errors}")
            result.error = str(e)
            result.failure_kind = FailureKind.PERMANENT.value
            return self._finish(result, started)

        async def attempt():
            return await asyncio.wait_for(channel.send(config, context), timeout=self.timeout)

        label = f"automation {rule.id} action #{index} ({action.type.value})"
        outcome = await self.retry_policy.run(attempt, channel.classify, label=label)

        result.attempts = outcome.attempts
        if outcome.ok:
            result.status = ActionStatus.SUCCEEDED
            result.response = outcome.value if isinstance(outcome.value, dict) else None
        else:
            error = outcome.error
            if isinstance(error, (asyncio.TimeoutError, TimeoutError)):
                result.error = f"Timed out after {self.timeout}s"
            else:
                result.error = str(error) or error.__class__.__name__
            result.failure_kind = outcome.failure_kind.value if outcome.failure_kind else None
            logger.warning(f"{label} failed after {outcome.attempts} attempt(s): {result.error}")
        return self._finish(result, started)

    async def dispatch_all(self, rule: AutomationRule, context: Context) -> List[ActionResult]:
        """
        Run every action of the rule with bounded concurrency. Results come
        back in action order.

        If the caller is cancelled, started actions get shutdown_grace
        seconds to finish, the rest are marked cancelled, and
        DispatchCancelled carries the partial results.
        """
        started: Set[int] = set()

        async def run(index: int, action: AutomationAction) -> ActionResult:
            async with self._semaphore:
                started.add(index)
                return await self.dispatch(rule, index, action, context)

        tasks = [asyncio.create_task(run(i, a)) for i, a in enumerate(rule.actions)]
        if not tasks:
            return []

        try:
            await asyncio.wait(tasks)
        except asyncio.CancelledError:
            for i, task in enumerate(tasks):
                if i not in started:
                    task.cancel()
            in_flight = [t for t in tasks if not t.done()]
            if in_flight:
                await asyncio.wait(in_flight, timeout=self.shutdown_grace)
            for task in tasks:
                if not task.done():
                    task.cancel()
            raise DispatchCancelled(self._collect(rule, tasks))

        return self._collect(rule, tasks)

    def _collect(self, rule: AutomationRule, tasks: List[asyncio.Task]) -> List[ActionResult]:
        results = []
        for index, (task, action) in enumerate(zip(tasks, rule.actions)):
            if task.done() and not task.cancelled() and task.exception() is None:
                results.append(task.result())
            elif task.done() and not task.cancelled():
                error = task.exception()
                logger.error(f"Automation {rule.id} action #{index} crashed: {error!r}")
                results.append(
                    ActionResult(
                        index=index,
                        action_type=action.type.value,
                        status=ActionStatus.FAILED,
                        error=repr(error),
                        failure_kind=FailureKind.PERMANENT.value,
                    )
                )
            else:
                results.append(
                    ActionResult(index=index, action_type=action.type.value, status=ActionStatus.CANCELLED)
                )
        return results

    def preview(self, index: int, action: AutomationAction, context: Context) -> ActionPreview:
        """Render an action for inspection, keeping unresolved tokens visible."""
        rendered: Dict = self.resolver.resolve_value(action.config, context, keep_unresolved=True)
        preview = ActionPreview(
            index=index,
            action_type=action.type.value,
            config=rendered,
            unresolved=self.resolver.find_unresolved(action.config, context),
        )
        try:
            parse_action_config(action.type, self.resolver.resolve_value(action.config, context))
            self.registry.get(action.type)
        except ConfigurationError as e:
            preview.errors = [str(e)] + list(e.errors)
        return preview

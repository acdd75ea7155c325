"""
Prometheus metrics for the automation engine.

Exposed through the API's /metrics mount.
"""

from prometheus_client import Counter, Histogram

RULE_FIRINGS = Counter(
    "taskpilot_automation_firings_total",
    "Automation rule firings",
    ["trigger_type", "status"],
)

SUPPRESSED_DUPLICATES = Counter(
    "taskpilot_automation_suppressed_total",
    "Rule firings suppressed by the debounce guard",
    ["trigger_type"],
)

CONFIGURATION_ERRORS = Counter(
    "taskpilot_automation_config_errors_total",
    "Rules skipped because of invalid trigger or action configuration",
)

ACTION_OUTCOMES = Counter(
    "taskpilot_automation_actions_total",
    "Action dispatch outcomes",
    ["action_type", "status"],
)

ACTION_LATENCY = Histogram(
    "taskpilot_automation_action_seconds",
    "Action dispatch latency including retries",
    ["action_type"],
)

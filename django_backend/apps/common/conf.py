"""
Access to the ``CASE_ORCHESTRATION`` settings block.
"""

from typing import Any

from django.conf import settings

DEFAULTS = {
    'CONFLICT_THRESHOLD_MINUTES': 30,
    'MAX_ACTIONS_PER_RULE': 20,
    'MAX_RULE_CASCADE_DEPTH': 3,
    'MAX_RECURRENCE_ITERATIONS': 366,
    'DEFAULT_AVAILABLE_HOURS': 40,
    'ENFORCE_TRANSITION_GUARDS': False,
    'HIGH_WORKLOAD_THRESHOLD': 0.9,
    'RULE_HISTORY_LIMIT': 1000,
    'WORKFLOW_HISTORY_LIMIT': 100,
    'NOTIFICATION_BACKEND': 'apps.notifications.services.DatabaseNotificationOutbox',
    'RECURRING_TASKS_INTERVAL_MINUTES': 15,
    'OVERDUE_CHECK_INTERVAL_MINUTES': 30,
    'SCHEDULE_CLOCK_SKEW_SECONDS': 60,
    'TASK_REPOSITORY': 'apps.tasks.repositories.InMemoryTaskRepository',
    'CASE_REPOSITORY': 'apps.cases.repositories.InMemoryCaseRepository',
    'RULE_REPOSITORY': 'apps.workflows.repositories.InMemoryRuleRepository',
}


def get_setting(name: str) -> Any:
    """Return a tunable, falling back to the built-in default."""
    if name not in DEFAULTS:
        raise KeyError(f"Unknown case orchestration setting: {name}")
    overrides = getattr(settings, 'CASE_ORCHESTRATION', None) or {}
    return overrides.get(name, DEFAULTS[name])

"""
Celery Beat schedule configuration.

Intervals are read from the ``CASE_ORCHESTRATION`` settings block.
"""

from datetime import timedelta
from typing import Any, Dict

from apps.common.conf import get_setting


def get_beat_schedule() -> Dict[str, Dict[str, Any]]:
    """
    Build the Celery Beat schedule.

    Returns:
        Dict[str, Dict[str, Any]]: Beat entries keyed by name
    """
    recurring = timedelta(minutes=get_setting('RECURRING_TASKS_INTERVAL_MINUTES'))
    overdue = timedelta(minutes=get_setting('OVERDUE_CHECK_INTERVAL_MINUTES'))
    return {
        'process-recurring-tasks': {
            'task': 'apps.celery.tasks.process_recurring_tasks',
            'schedule': recurring,
            'options': {
                'queue': 'scheduling',
                # A run not picked up before the next one is due is dropped.
                'expires': recurring.total_seconds(),
            },
        },
        'check-overdue-tasks': {
            'task': 'apps.celery.tasks.check_overdue_tasks',
            'schedule': overdue,
            'options': {
                'queue': 'monitoring',
                'expires': overdue.total_seconds(),
            },
        },
    }

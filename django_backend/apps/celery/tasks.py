"""
Celery tasks for case and task automation.

Periodic jobs drive the process-wide orchestrator: recurring series are
expanded, overdue tasks flagged and escalated, and case priorities
recomputed. Notifications queued through ``CeleryNotificationPort`` are
delivered here into the notification outbox.
"""

import logging
from dataclasses import asdict
from typing import Any, Dict

from celery import shared_task
from django.db import DatabaseError
from django.utils import timezone

from apps.notifications.services import DatabaseNotificationOutbox
from apps.workflows.engines import get_case_task_orchestrator

logger = logging.getLogger(__name__)


# =============================================================================
# SCHEDULING TASKS
# =============================================================================

@shared_task(bind=True, max_retries=2)
def process_recurring_tasks(self) -> Dict[str, Any]:
    """
    Create the due occurrences of every recurring task series.

    Returns:
        Dict with the run time and the ids of the created occurrences
    """
    try:
        logger.info("Processing recurring tasks")
        created = get_case_task_orchestrator().scheduler.process_recurring_tasks()

        result = {
            'run_time': timezone.now().isoformat(),
            'created_tasks': len(created),
            'task_ids': [task.task_id for task in created],
        }
        logger.info(f"Recurring task processing completed: {len(created)} occurrence(s) created")
        return result

    except Exception as exc:
        logger.error(f"Recurring task processing failed: {exc}")

        if self.request.retries < self.max_retries:
            raise self.retry(exc=exc, countdown=300)

        raise


@shared_task(bind=True, max_retries=2)
def recompute_case_priorities(self, case_id: str) -> Dict[str, Any]:
    """
    Recompute the priority tier of a case's open tasks.

    Args:
        case_id: Case whose pending and in-progress tasks are rescored

    Returns:
        Dict with the case id and the number of tasks whose tier changed
    """
    try:
        updated = get_case_task_orchestrator().priority_service.auto_prioritize_case_tasks(case_id)
        return {'case_id': case_id, 'updated_tasks': updated}

    except Exception as exc:
        logger.error(f"Priority recomputation for case {case_id} failed: {exc}")

        if self.request.retries < self.max_retries:
            raise self.retry(exc=exc, countdown=60)

        raise


# =============================================================================
# MONITORING TASKS
# =============================================================================

@shared_task(bind=True, max_retries=2)
def check_overdue_tasks(self) -> Dict[str, Any]:
    """
    Flag overdue tasks and run the escalation rules on them.

    Returns:
        Dict with the check time and the automation report
    """
    try:
        logger.info("Checking for overdue tasks")
        report = get_case_task_orchestrator().process_overdue_tasks()

        result = {
            'check_time': timezone.now().isoformat(),
            **asdict(report),
        }
        if report.errors:
            logger.warning(f"Overdue task check finished with {len(report.errors)} error(s): {report.errors}")
        else:
            logger.info(
                f"Overdue task check completed: {report.overdue_tasks_flagged} flagged, "
                f"{report.escalations} escalated"
            )
        return result

    except Exception as exc:
        logger.error(f"Overdue task check failed: {exc}")

        if self.request.retries < self.max_retries:
            raise self.retry(exc=exc, countdown=300)

        raise


# =============================================================================
# NOTIFICATION TASKS
# =============================================================================

@shared_task(bind=True, max_retries=3, default_retry_delay=60)
def dispatch_notification(self, payload: Dict[str, Any]) -> Dict[str, Any]:
    """
    Store a queued notification in the outbox.

    Args:
        payload: Serialized ``NotificationPayload``

    Returns:
        Dict with the notification id and its recipient count
    """
    try:
        DatabaseNotificationOutbox().deliver(payload)
        logger.info(f"Dispatched notification {payload['id']} ({payload.get('template')})")
        return {
            'notification_id': payload['id'],
            'recipients': len(payload.get('recipients') or []),
        }

    except DatabaseError as exc:
        logger.error(f"Failed to dispatch notification {payload.get('id')}: {exc}")

        if self.request.retries < self.max_retries:
            retry_delay = 60 * (2 ** self.request.retries)
            raise self.retry(exc=exc, countdown=retry_delay)

        raise

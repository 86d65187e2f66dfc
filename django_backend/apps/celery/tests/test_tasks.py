"""
Tests for the Celery tasks and the beat schedule.

Tasks are called directly; the process-wide orchestrator is replaced by a mock.
"""

from datetime import timedelta
from unittest.mock import Mock, patch

from django.db import DatabaseError
from django.test import SimpleTestCase, TestCase, override_settings
from freezegun import freeze_time

from apps.celery.schedules import get_beat_schedule
from apps.celery.tasks import (
    check_overdue_tasks,
    dispatch_notification,
    process_recurring_tasks,
    recompute_case_priorities,
)
from apps.notifications.models import NotificationRecord
from apps.notifications.tests import NotificationPayloadFactory
from apps.tasks.tests import ScheduledTaskFactory
from apps.workflows.engines import AutomationReport


@patch('apps.celery.tasks.get_case_task_orchestrator')
class AutomationTasksTestCase(SimpleTestCase):
    """Test the periodic automation tasks."""

    @freeze_time('2024-01-01 09:00:00')
    def test_check_overdue_tasks_reports_the_run(self, get_orchestrator):
        orchestrator = get_orchestrator.return_value
        orchestrator.process_overdue_tasks.return_value = AutomationReport(
            overdue_tasks_flagged=2, tasks_evaluated=2, escalations=1, notifications_sent=3,
        )

        result = check_overdue_tasks()

        orchestrator.process_overdue_tasks.assert_called_once_with()
        self.assertEqual(result['check_time'], '2024-01-01T09:00:00+00:00')
        self.assertEqual(result['overdue_tasks_flagged'], 2)
        self.assertEqual(result['escalations'], 1)
        self.assertEqual(result['errors'], [])

    def test_process_recurring_tasks_lists_created_occurrences(self, get_orchestrator):
        orchestrator = get_orchestrator.return_value
        created = [ScheduledTaskFactory(), ScheduledTaskFactory()]
        orchestrator.scheduler.process_recurring_tasks.return_value = created

        result = process_recurring_tasks()

        self.assertEqual(result['created_tasks'], 2)
        self.assertEqual(result['task_ids'], [task.task_id for task in created])

    def test_recompute_case_priorities(self, get_orchestrator):
        orchestrator = get_orchestrator.return_value
        orchestrator.priority_service.auto_prioritize_case_tasks.return_value = 3

        result = recompute_case_priorities('CASE-1')

        orchestrator.priority_service.auto_prioritize_case_tasks.assert_called_once_with('CASE-1')
        self.assertEqual(result, {'case_id': 'CASE-1', 'updated_tasks': 3})

    def test_failures_propagate_when_called_directly(self, get_orchestrator):
        orchestrator = get_orchestrator.return_value
        orchestrator.process_overdue_tasks.side_effect = RuntimeError('repository unavailable')

        with self.assertRaises(RuntimeError):
            check_overdue_tasks()


class DispatchNotificationTestCase(TestCase):
    """Test delivery of queued notifications into the outbox."""

    def test_payload_is_stored(self):
        payload = NotificationPayloadFactory(recipients=['att-1', 'att-2']).to_dict()

        result = dispatch_notification(payload)

        self.assertEqual(result, {'notification_id': payload['id'], 'recipients': 2})
        record = NotificationRecord.objects.get(notification_id=payload['id'])
        self.assertEqual(record.recipients, ['att-1', 'att-2'])
        self.assertEqual(record.template, 'task_assigned')

    @patch('apps.celery.tasks.DatabaseNotificationOutbox')
    def test_database_errors_propagate(self, outbox_class):
        outbox_class.return_value = Mock(deliver=Mock(side_effect=DatabaseError('locked')))

        with self.assertRaises(DatabaseError):
            dispatch_notification(NotificationPayloadFactory().to_dict())


class BeatScheduleTestCase(SimpleTestCase):

    def test_default_intervals(self):
        schedule = get_beat_schedule()

        self.assertEqual(schedule['process-recurring-tasks']['schedule'], timedelta(minutes=15))
        self.assertEqual(schedule['check-overdue-tasks']['schedule'], timedelta(minutes=30))
        self.assertEqual(schedule['check-overdue-tasks']['task'], 'apps.celery.tasks.check_overdue_tasks')
        self.assertEqual(schedule['check-overdue-tasks']['options']['queue'], 'monitoring')

    @override_settings(CASE_ORCHESTRATION={'OVERDUE_CHECK_INTERVAL_MINUTES': 5})
    def test_intervals_from_settings(self):
        schedule = get_beat_schedule()

        self.assertEqual(schedule['check-overdue-tasks']['schedule'], timedelta(minutes=5))
        self.assertEqual(schedule['check-overdue-tasks']['options']['expires'], 300.0)

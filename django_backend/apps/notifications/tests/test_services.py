"""
Tests for notification payloads, recipient resolution and delivery ports.
"""

from unittest.mock import Mock, patch

from django.test import SimpleTestCase, TestCase, override_settings

from apps.common.ports import FixedClock
from apps.notifications.choices import NotificationChannel, NotificationUrgency
from apps.notifications.models import NotificationRecord
from apps.notifications.services import (
    CeleryNotificationPort,
    DatabaseNotificationOutbox,
    InMemoryNotificationOutbox,
    NotificationPayload,
    NotificationService,
    get_notification_backend,
)
from apps.notifications.tests import NotificationPayloadFactory
from apps.tasks.tests import NOW
from apps.users.choices import UserRole
from apps.users.directory import UserDirectory
from apps.users.tests import UserProfileFactory


class RecipientResolutionTestCase(SimpleTestCase):

    def setUp(self):
        self.directory = UserDirectory([
            UserProfileFactory(id='admin-1', role=UserRole.ADMIN),
            UserProfileFactory(id='admin-2', role=UserRole.ADMIN),
            UserProfileFactory(id='att-1', supervisor_id='admin-1'),
        ])
        self.service = NotificationService(
            port=InMemoryNotificationOutbox(),
            identity=self.directory,
            clock=FixedClock(NOW),
        )

    def test_role_tokens(self):
        recipients = self.service.resolve_recipients(
            ['assignee', 'supervisor', 'case_attorney'],
            assignee_id='att-1',
            case_attorney_id='att-9',
        )
        self.assertEqual(recipients, ['att-1', 'admin-1', 'att-9'])

    def test_role_name_expands_to_users(self):
        self.assertEqual(self.service.resolve_recipients(['admin']), ['admin-1', 'admin-2'])

    def test_unresolved_tokens_are_dropped_and_duplicates_removed(self):
        recipients = self.service.resolve_recipients(
            ['supervisor', 'case_attorney', 'assignee', 'att-1'],
            assignee_id='att-1',
        )
        self.assertEqual(recipients, ['admin-1', 'att-1'])

    def test_supervisor_without_identity(self):
        service = NotificationService(port=InMemoryNotificationOutbox())
        self.assertEqual(service.resolve_recipients(['supervisor'], assignee_id='att-1'), [])


class NotificationServiceTestCase(SimpleTestCase):

    def setUp(self):
        self.outbox = InMemoryNotificationOutbox()
        self.service = NotificationService(port=self.outbox, clock=FixedClock(NOW))

    def test_build_stamps_clock_time(self):
        payload = self.service.build(
            NotificationChannel.EMAIL, ['att-1'], 'task_escalated',
            urgency=NotificationUrgency.HIGH, subject='Escalated', case_id='CASE-1',
        )
        self.assertTrue(payload.id.startswith('notification_'))
        self.assertEqual(payload.created_at, NOW)
        self.assertEqual(payload.urgency, NotificationUrgency.HIGH)

    def test_send_delivers_serialized_payload(self):
        payload = NotificationPayloadFactory(recipients=['att-1', 'att-2'])

        self.service.send(payload)

        self.assertEqual(len(self.outbox.sent), 1)
        delivered = self.outbox.sent[0]
        self.assertEqual(delivered['channel'], 'in_app')
        self.assertEqual(delivered['created_at'], NOW.isoformat())
        self.assertEqual(len(self.outbox.for_recipient('att-2')), 1)

    def test_send_many_counts(self):
        self.assertEqual(self.service.send_many(NotificationPayloadFactory.build_batch(3)), 3)
        self.outbox.clear()
        self.assertEqual(self.outbox.sent, [])

    def test_payload_from_dict(self):
        payload = NotificationPayloadFactory(urgency=NotificationUrgency.CRITICAL)

        restored = NotificationPayload.from_dict(payload.to_dict())

        self.assertEqual(restored, payload)

    def test_port_errors_propagate(self):
        port = Mock()
        port.deliver.side_effect = RuntimeError('transport down')
        service = NotificationService(port=port, clock=FixedClock(NOW))

        with self.assertRaises(RuntimeError):
            service.send(NotificationPayloadFactory())

    def test_urgency_for_task_priority(self):
        self.assertEqual(NotificationUrgency.for_task_priority('urgent'), NotificationUrgency.CRITICAL)
        self.assertEqual(NotificationUrgency.for_task_priority('low'), NotificationUrgency.LOW)
        self.assertEqual(NotificationUrgency.for_task_priority('unknown'), NotificationUrgency.MEDIUM)


class NotificationBackendTestCase(TestCase):

    def test_database_outbox_writes_record(self):
        payload = NotificationPayloadFactory(task_id='task_1', metadata={'phase': 'intake_risk_assessment'})

        DatabaseNotificationOutbox().deliver(payload.to_dict())

        record = NotificationRecord.objects.get(notification_id=payload.id)
        self.assertEqual(record.recipients, ['att-1'])
        self.assertEqual(record.task_id, 'task_1')
        self.assertEqual(NotificationRecord.objects.for_case('CASE-1').count(), 1)

    @override_settings(CASE_ORCHESTRATION={
        'NOTIFICATION_BACKEND': 'apps.notifications.services.InMemoryNotificationOutbox',
    })
    def test_backend_from_settings(self):
        self.assertIsInstance(get_notification_backend(), InMemoryNotificationOutbox)

    def test_default_backend_is_database_outbox(self):
        self.assertIsInstance(get_notification_backend(), DatabaseNotificationOutbox)

    @patch('apps.celery.tasks.dispatch_notification')
    def test_celery_port_queues_delivery(self, mock_dispatch):
        payload = NotificationPayloadFactory().to_dict()

        CeleryNotificationPort().deliver(payload)

        mock_dispatch.delay.assert_called_once_with(payload)

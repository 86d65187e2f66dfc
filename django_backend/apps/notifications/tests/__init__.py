"""
Test utilities for the notifications application.
"""

import factory
from faker import Faker

from apps.notifications.choices import NotificationChannel, NotificationUrgency
from apps.notifications.services import NotificationPayload
from apps.tasks.tests import NOW

fake = Faker()


class NotificationPayloadFactory(factory.Factory):

    class Meta:
        model = NotificationPayload

    id = factory.Sequence(lambda n: f"notification_{n}")
    channel = NotificationChannel.IN_APP
    recipients = factory.LazyFunction(lambda: ['att-1'])
    template = 'task_assigned'
    urgency = NotificationUrgency.MEDIUM
    subject = factory.LazyFunction(lambda: fake.sentence(nb_words=5).rstrip('.'))
    message = factory.LazyFunction(lambda: fake.paragraph(nb_sentences=1))
    case_id = 'CASE-1'
    created_at = NOW

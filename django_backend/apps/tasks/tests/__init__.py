"""
Test utilities for the tasks application.

Factories build scheduling entities with realistic data:

    from apps.tasks.tests import ScheduleRequestFactory, ScheduledTaskFactory, NOW
"""

from datetime import datetime, timedelta, timezone as dt_timezone

import factory
from faker import Faker

from apps.tasks.choices import TaskPriority, TaskStatus
from apps.tasks.entities import ScheduledTask, ScheduleRequest

fake = Faker()

NOW = datetime(2024, 1, 1, 9, 0, tzinfo=dt_timezone.utc)


class ScheduleRequestFactory(factory.Factory):
    """Factory for valid schedule requests one day after ``NOW``."""

    class Meta:
        model = ScheduleRequest

    title = factory.LazyFunction(lambda: fake.sentence(nb_words=4).rstrip('.'))
    description = factory.LazyFunction(lambda: fake.paragraph(nb_sentences=2))
    assigned_to = 'att-1'
    assigned_by = 'admin-1'
    scheduled_time = NOW + timedelta(days=1)
    case_id = factory.Sequence(lambda n: f"CASE-{n}")
    priority = TaskPriority.MEDIUM


class ScheduledTaskFactory(factory.Factory):
    """Factory for tasks already held by a repository."""

    class Meta:
        model = ScheduledTask

    id = factory.Sequence(lambda n: f"scheduled_{n}")
    task_id = factory.Sequence(lambda n: f"task_{n}")
    case_id = 'CASE-1'
    title = factory.LazyFunction(lambda: fake.sentence(nb_words=4).rstrip('.'))
    scheduled_time = NOW + timedelta(days=1)
    assigned_to = 'att-1'
    assigned_by = 'admin-1'
    priority = TaskPriority.MEDIUM
    status = TaskStatus.PENDING
    created_at = NOW
    updated_at = NOW

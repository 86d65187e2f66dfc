"""
Test utilities for the workflows application.

Factories build rule engine inputs with realistic data:

    from apps.workflows.tests import NOW, BusinessRuleFactory, WorkflowContextFactory
"""

from datetime import datetime, timezone as dt_timezone

import factory
from faker import Faker

from apps.cases.choices import CasePhase, CaseStatus, CaseType
from apps.cases.state_machine import CaseState
from apps.common.choices import ConditionOperator
from apps.users.choices import UserRole
from apps.users.directory import UserDirectory, UserProfile
from apps.workflows.choices import RuleCategory, TriggerEventType
from apps.workflows.entities import (
    BusinessRule,
    Condition,
    SendNotificationAction,
    TriggerEvent,
    WorkflowContext,
)

fake = Faker()

NOW = datetime(2024, 1, 1, 9, 0, tzinfo=dt_timezone.utc)


def build_directory():
    """A small firm: two attorneys, an assistant and an administrator."""
    return UserDirectory([
        UserProfile(id='admin-1', name='Ben Ode', role=UserRole.ADMIN),
        UserProfile(id='att-1', name='Ana Ruiz', role=UserRole.ATTORNEY, active_task_count=6,
                    supervisor_id='admin-1', specializations=frozenset({'criminal'})),
        UserProfile(id='att-2', name='Dan Kim', role=UserRole.ATTORNEY, active_task_count=2,
                    supervisor_id='admin-1'),
        UserProfile(id='asst-1', name='Eve Moss', role=UserRole.ASSISTANT, active_task_count=1,
                    supervisor_id='att-1'),
    ])


class CaseStateFactory(factory.Factory):
    """Factory for a criminal defense case at intake."""

    class Meta:
        model = CaseState

    case_id = factory.Sequence(lambda n: f"CASE-{n}")
    case_type = CaseType.CRIMINAL_DEFENSE
    phase = CasePhase.INTAKE_RISK_ASSESSMENT
    status = CaseStatus.ACTIVE
    title = factory.LazyFunction(lambda: f"State v. {fake.last_name()}")
    metadata = factory.LazyFunction(dict)


class ConditionFactory(factory.Factory):
    class Meta:
        model = Condition

    field = 'task.priority'
    operator = ConditionOperator.EQUALS
    value = 'high'
    weight = 1.0


class BusinessRuleFactory(factory.Factory):
    """Factory for an active rule that notifies the assignee of high priority tasks."""

    class Meta:
        model = BusinessRule

    id = factory.Sequence(lambda n: f"rule_{n}")
    name = factory.LazyFunction(lambda: fake.sentence(nb_words=3).rstrip('.'))
    category = RuleCategory.QUALITY_CONTROL
    priority = 10
    conditions = factory.LazyFunction(lambda: [ConditionFactory()])
    actions = factory.LazyFunction(lambda: [
        SendNotificationAction(id='notify', recipients=('assignee',), template='rule_matched'),
    ])


class WorkflowContextFactory(factory.Factory):
    """Factory for a task-level context on a criminal case."""

    class Meta:
        model = WorkflowContext

    case_id = 'CASE-1'
    task_id = 'task-1'
    user_id = 'att-1'
    user_role = UserRole.ATTORNEY
    case_type = CaseType.CRIMINAL_DEFENSE
    phase = CasePhase.PRE_PROCEEDING_PREPARATION
    timestamp = NOW
    trigger_event = factory.LazyFunction(lambda: TriggerEvent(TriggerEventType.TASK_UPDATED))
    metadata = factory.LazyFunction(lambda: {
        'case': {'id': 'CASE-1', 'type': CaseType.CRIMINAL_DEFENSE.value},
        'task': {'id': 'task-1', 'priority': 'high', 'status': 'pending', 'assigned_to': 'att-1'},
    })

"""
Workflow choices.

Vocabulary shared by the business rule engine, the task template engine
and the case/task orchestrator.
"""

from django.db import models
from django.utils.translation import gettext_lazy as _


class RuleCategory(models.TextChoices):
    """Business areas a rule belongs to."""

    TASK_ASSIGNMENT = 'task_assignment', _('Task Assignment')
    ESCALATION = 'escalation', _('Escalation')
    DEADLINE_MANAGEMENT = 'deadline_management', _('Deadline Management')
    WORKLOAD_BALANCE = 'workload_balance', _('Workload Balance')
    COMPLIANCE = 'compliance', _('Compliance')
    QUALITY_CONTROL = 'quality_control', _('Quality Control')


class ActionType(models.TextChoices):
    """Kinds of intention a rule action can produce."""

    ASSIGN_TASK = 'assign_task', _('Assign Task')
    ESCALATE_TASK = 'escalate_task', _('Escalate Task')
    CHANGE_PRIORITY = 'change_priority', _('Change Priority')
    SET_DEADLINE = 'set_deadline', _('Set Deadline')
    SEND_NOTIFICATION = 'send_notification', _('Send Notification')
    CREATE_DEPENDENCY = 'create_dependency', _('Create Dependency')
    UPDATE_STATUS = 'update_status', _('Update Status')
    REQUEST_REVIEW = 'request_review', _('Request Review')
    REASSIGN_TASK = 'reassign_task', _('Reassign Task')


class FailureStrategy(models.TextChoices):
    """What a rule does when one of its actions fails."""

    CONTINUE = 'continue', _('Continue')
    STOP = 'stop', _('Stop')
    ROLLBACK = 'rollback', _('Rollback')


class LogicalOperator(models.TextChoices):
    """How a condition joins the conditions that follow it."""

    AND = 'AND', _('And')
    OR = 'OR', _('Or')


class TriggerEventType(models.TextChoices):
    """Events that cause rules to be evaluated."""

    TASK_CREATED = 'task_created', _('Task Created')
    TASK_UPDATED = 'task_updated', _('Task Updated')
    TASK_STATUS_CHANGE = 'task_status_change', _('Task Status Change')
    TASK_OVERDUE = 'task_overdue', _('Task Overdue')
    PHASE_CHANGED = 'phase_changed', _('Phase Changed')
    DEADLINE_APPROACHING = 'deadline_approaching', _('Deadline Approaching')
    USER_ACTION = 'user_action', _('User Action')
    SYSTEM_EVENT = 'system_event', _('System Event')


class AssignmentStrategy(models.TextChoices):
    """How ``assign_task`` picks a user."""

    EXPERTISE_BASED = 'expertise_based', _('Expertise Based')
    WORKLOAD_BALANCE = 'workload_balance', _('Workload Balance')
    PRIORITY_BASED = 'priority_based', _('Priority Based')


class DeadlineStrategy(models.TextChoices):
    """How ``set_deadline`` computes a new due date."""

    COMPLEXITY_BASED = 'complexity_based', _('Complexity Based')
    DEPENDENCY_BASED = 'dependency_based', _('Dependency Based')
    FIXED_OFFSET = 'fixed_offset', _('Fixed Offset')


class HealthStatus(models.TextChoices):
    HEALTHY = 'healthy', _('Healthy')
    DEGRADED = 'degraded', _('Degraded')

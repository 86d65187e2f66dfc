from django.db import models
from django.utils.translation import gettext_lazy as _


class TaskStatus(models.TextChoices):
    """Task status choices for case work."""

    PENDING = 'pending', _('Pending')
    IN_PROGRESS = 'in_progress', _('In Progress')
    WAITING_DEPENDENCIES = 'waiting_dependencies', _('Waiting on Dependencies')
    OVERDUE = 'overdue', _('Overdue')
    COMPLETED = 'completed', _('Completed')
    CANCELLED = 'cancelled', _('Cancelled')

    @classmethod
    def get_active_statuses(cls):
        """Get statuses that represent open work."""
        return [cls.PENDING, cls.IN_PROGRESS, cls.WAITING_DEPENDENCIES, cls.OVERDUE]

    @classmethod
    def get_working_statuses(cls):
        """Statuses counted as someone's current load."""
        return [cls.PENDING, cls.IN_PROGRESS]

    @classmethod
    def get_completed_statuses(cls):
        """Get statuses that represent finished work."""
        return [cls.COMPLETED, cls.CANCELLED]


class TaskPriority(models.TextChoices):
    """Task priority levels with clear hierarchy."""

    LOW = 'low', _('Low')
    MEDIUM = 'medium', _('Medium')
    HIGH = 'high', _('High')
    URGENT = 'urgent', _('Urgent')

    @classmethod
    def get_priority_order(cls):
        """Get priorities in ascending order of urgency."""
        return [cls.LOW, cls.MEDIUM, cls.HIGH, cls.URGENT]

    @classmethod
    def get_priority_weights(cls):
        """Get numeric weights for priority comparisons."""
        return {
            cls.LOW: 1,
            cls.MEDIUM: 2,
            cls.HIGH: 3,
            cls.URGENT: 4,
        }

    @classmethod
    def rank(cls, priority) -> int:
        return cls.get_priority_weights()[cls(priority)]

    @classmethod
    def get_estimated_hours(cls):
        """Fixed effort estimate per priority, used for workload tracking."""
        return {
            cls.URGENT: 4,
            cls.HIGH: 3,
            cls.MEDIUM: 2,
            cls.LOW: 1,
        }

    @classmethod
    def get_calendar_colors(cls):
        return {
            cls.URGENT: '#dc3545',
            cls.HIGH: '#fd7e14',
            cls.MEDIUM: '#ffc107',
            cls.LOW: '#28a745',
        }


class RecurrenceType(models.TextChoices):
    DAILY = 'daily', _('Daily')
    WEEKLY = 'weekly', _('Weekly')
    MONTHLY = 'monthly', _('Monthly')
    YEARLY = 'yearly', _('Yearly')


class ConflictType(models.TextChoices):
    TIME_OVERLAP = 'time_overlap', _('Time Overlap')
    DEPENDENCY_CONFLICT = 'dependency_conflict', _('Dependency Conflict')


class ConflictSeverity(models.TextChoices):
    LOW = 'low', _('Low')
    MEDIUM = 'medium', _('Medium')
    HIGH = 'high', _('High')


class CapacityStatus(models.TextChoices):
    UNDER_CAPACITY = 'under_capacity', _('Under Capacity')
    AT_CAPACITY = 'at_capacity', _('At Capacity')
    OVER_CAPACITY = 'over_capacity', _('Over Capacity')

    @classmethod
    def for_utilization(cls, utilization_rate: float) -> 'CapacityStatus':
        """Map a utilization percentage to a capacity band."""
        if utilization_rate < 80:
            return cls.UNDER_CAPACITY
        if utilization_rate <= 100:
            return cls.AT_CAPACITY
        return cls.OVER_CAPACITY


class OptimizationStrategy(models.TextChoices):
    BALANCE_WORKLOAD = 'balance_workload', _('Balance Workload')
    MINIMIZE_DELAYS = 'minimize_delays', _('Minimize Delays')
    MAXIMIZE_EFFICIENCY = 'maximize_efficiency', _('Maximize Efficiency')
    MEET_DEADLINES = 'meet_deadlines', _('Meet Deadlines')


class ScheduleAction(models.TextChoices):
    """Schedule history action types for audit trail."""

    SCHEDULED = 'task_scheduled', _('Scheduled')
    RESCHEDULED = 'task_rescheduled', _('Rescheduled')
    CANCELLED = 'task_cancelled', _('Cancelled')
    COMPLETED = 'task_completed', _('Completed')
    STATUS_CHANGED = 'status_changed', _('Status Changed')
    REASSIGNED = 'task_reassigned', _('Reassigned')
    RECURRED = 'task_recurred', _('Recurring Occurrence Created')
    PRIORITY_ADJUSTED = 'priority_adjusted', _('Priority Adjusted')
    ESCALATED = 'task_escalated', _('Escalated')
    DEPENDENCY_ADDED = 'dependency_added', _('Dependency Added')

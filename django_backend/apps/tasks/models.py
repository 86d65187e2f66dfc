from django.db import models
from django.utils.translation import gettext_lazy as _

from apps.common.models import MetadataMixin, TimestampMixin
from apps.tasks.choices import ScheduleAction, TaskPriority, TaskStatus
from apps.tasks.managers import ScheduledTaskManager


class ScheduledTaskRecord(TimestampMixin, MetadataMixin):
    """Persisted scheduled task."""

    schedule_id = models.CharField(
        max_length=64,
        unique=True,
        help_text=_("Scheduler entry identifier")
    )
    task_id = models.CharField(
        max_length=64,
        unique=True,
        help_text=_("Task identifier")
    )
    case_id = models.CharField(
        max_length=64,
        blank=True,
        null=True,
        db_index=True,
        help_text=_("Case the task belongs to")
    )
    title = models.CharField(
        max_length=255,
        help_text=_("Task title")
    )
    description = models.TextField(blank=True)
    scheduled_time = models.DateTimeField(
        db_index=True,
        help_text=_("When work on the task is planned")
    )
    due_date = models.DateTimeField(
        null=True,
        blank=True,
        db_index=True,
        help_text=_("Deadline")
    )
    priority = models.CharField(
        max_length=20,
        choices=TaskPriority.choices,
        default=TaskPriority.MEDIUM,
        db_index=True
    )
    status = models.CharField(
        max_length=30,
        choices=TaskStatus.choices,
        default=TaskStatus.PENDING,
        db_index=True
    )
    assigned_to = models.CharField(
        max_length=64,
        db_index=True,
        help_text=_("Assignee user id")
    )
    assigned_by = models.CharField(
        max_length=64,
        help_text=_("User id of whoever scheduled the task")
    )
    escalation_level = models.PositiveSmallIntegerField(default=0)
    recurrence = models.JSONField(null=True, blank=True)
    reminder_settings = models.JSONField(null=True, blank=True)
    reminders = models.JSONField(default=list, blank=True)
    conflicts = models.JSONField(default=list, blank=True)
    dependencies = models.JSONField(
        default=list,
        blank=True,
        help_text=_("Task ids that must finish first")
    )
    completed_at = models.DateTimeField(null=True, blank=True)

    objects = ScheduledTaskManager()

    class Meta:
        db_table = 'tasks_scheduled_task'
        verbose_name = _('Scheduled Task')
        verbose_name_plural = _('Scheduled Tasks')
        ordering = ['scheduled_time', 'id']
        indexes = [
            models.Index(fields=['assigned_to', 'status'], name='tasks_assignee_status_idx'),
            models.Index(fields=['case_id', 'status'], name='tasks_case_status_idx'),
        ]

    def __str__(self):
        return f"{self.task_id}: {self.title}"


class PriorityAdjustment(TimestampMixin):
    """Audit record of a manual priority override."""

    task = models.ForeignKey(
        ScheduledTaskRecord,
        on_delete=models.CASCADE,
        related_name='priority_adjustments'
    )
    previous_priority = models.CharField(max_length=20, choices=TaskPriority.choices)
    new_priority = models.CharField(max_length=20, choices=TaskPriority.choices)
    reason = models.TextField(blank=True)
    adjusted_by = models.CharField(max_length=64)

    class Meta:
        db_table = 'tasks_priority_adjustment'
        verbose_name = _('Priority Adjustment')
        verbose_name_plural = _('Priority Adjustments')
        ordering = ['created_at', 'id']

    def __str__(self):
        return f"{self.task.task_id}: {self.previous_priority} -> {self.new_priority}"


class ScheduleEvent(TimestampMixin):
    """Schedule history entry (scheduled, rescheduled, cancelled, ...)."""

    action = models.CharField(max_length=30, choices=ScheduleAction.choices)
    task_id = models.CharField(max_length=64, db_index=True)
    user_id = models.CharField(max_length=64, db_index=True)
    timestamp = models.DateTimeField()
    details = models.JSONField(default=dict, blank=True)

    class Meta:
        db_table = 'tasks_schedule_event'
        verbose_name = _('Schedule Event')
        verbose_name_plural = _('Schedule Events')
        ordering = ['-timestamp', '-id']

    def __str__(self):
        return f"{self.action} {self.task_id}"


class AssigneeScheduleLock(models.Model):
    """One row per assignee, held with ``select_for_update`` while their schedule is checked and written."""

    assigned_to = models.CharField(max_length=64, unique=True)

    class Meta:
        db_table = 'tasks_assignee_schedule_lock'
        verbose_name = _('Assignee Schedule Lock')
        verbose_name_plural = _('Assignee Schedule Locks')

    def __str__(self):
        return self.assigned_to

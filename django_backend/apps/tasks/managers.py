from django.db import models

from apps.tasks.choices import TaskStatus


class ScheduledTaskQuerySet(models.QuerySet):
    """Custom QuerySet for scheduled tasks with the filters the scheduler needs."""

    def active(self):
        """Filter tasks that are neither completed nor cancelled."""
        return self.exclude(status__in=TaskStatus.get_completed_statuses())

    def working(self):
        """Filter tasks counted as an assignee's current load."""
        return self.filter(status__in=TaskStatus.get_working_statuses())

    def for_assignee(self, user_id):
        """Filter tasks assigned to a specific user."""
        return self.filter(assigned_to=user_id)

    def for_case(self, case_id):
        """Filter tasks belonging to a specific case."""
        return self.filter(case_id=case_id)

    def overdue(self, now):
        """Filter open tasks whose due date has passed."""
        return self.active().filter(due_date__lt=now)

    def due_before(self, moment):
        """Filter open tasks due on or before ``moment``."""
        return self.active().filter(due_date__lte=moment)

    def scheduled_between(self, start, end):
        """Filter tasks whose scheduled time falls inside the window."""
        return self.filter(scheduled_time__gte=start, scheduled_time__lte=end)

    def near(self, moment, threshold):
        """Filter tasks scheduled within ``threshold`` of ``moment``."""
        return self.filter(
            scheduled_time__gt=moment - threshold,
            scheduled_time__lt=moment + threshold,
        )

    def recurring(self):
        """Filter tasks carrying a recurrence rule."""
        return self.filter(recurrence__isnull=False)


class ScheduledTaskManager(models.Manager):
    """Manager exposing the scheduled task queryset helpers."""

    def get_queryset(self):
        return ScheduledTaskQuerySet(self.model, using=self._db)

    def active(self):
        return self.get_queryset().active()

    def for_assignee(self, user_id):
        return self.get_queryset().for_assignee(user_id)

    def for_case(self, case_id):
        return self.get_queryset().for_case(case_id)

    def overdue(self, now):
        return self.get_queryset().overdue(now)

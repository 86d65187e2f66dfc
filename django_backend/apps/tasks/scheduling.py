"""
Task scheduling engine.

Registers tasks with the scheduler, detects time and dependency conflicts,
attaches priority-tiered reminders, tracks per-assignee workload, expands
recurring series and proposes optimized orderings.
"""

import logging
import uuid
from dataclasses import dataclass, replace
from datetime import datetime, timedelta
from typing import Any, Dict, List, Optional

from django.utils.dateparse import parse_datetime

from apps.common.conf import get_setting
from apps.common.exceptions import ScheduleConflict, ValidationError
from apps.common.ports import Clock, IdentityPort, SystemClock
from apps.common.utils import format_duration, interpolate_template, safe_divide
from apps.tasks.choices import (
    CapacityStatus,
    ConflictSeverity,
    ConflictType,
    OptimizationStrategy,
    ScheduleAction,
    TaskPriority,
    TaskStatus,
)
from apps.tasks.entities import (
    CalendarEvent,
    Conflict,
    OptimizationRequest,
    OptimizationResult,
    RecurrenceRule,
    Reminder,
    ReminderSettings,
    ReminderTemplate,
    ScheduledTask,
    ScheduleHistoryEntry,
    ScheduleRequest,
    UserWorkload,
)
from apps.tasks.recurrence import next_occurrence
from apps.tasks.repositories import InMemoryTaskRepository, TaskRepository

logger = logging.getLogger(__name__)

REMINDER_TEMPLATES = {
    'urgent': (
        ReminderTemplate('urgent_24h', 'email', 1440, ('assignee', 'supervisor'),
                         'URGENT: Task due in 24 hours - {task_title}'),
        ReminderTemplate('urgent_2h', 'in_app', 120, ('assignee',),
                         'URGENT: Task due in 2 hours - {task_title}'),
    ),
    'high': (
        ReminderTemplate('high_48h', 'email', 2880, ('assignee',),
                         'High priority task due in 2 days - {task_title}'),
        ReminderTemplate('high_24h', 'in_app', 1440, ('assignee',),
                         'High priority task due tomorrow - {task_title}'),
    ),
    'medium': (
        ReminderTemplate('medium_72h', 'in_app', 4320, ('assignee',),
                         'Task due in 3 days - {task_title}'),
    ),
    'deadline': (
        ReminderTemplate('deadline_7d', 'email', 10080, ('assignee', 'case_attorney'),
                         'Deadline approaching: {task_title} due in 7 days'),
        ReminderTemplate('deadline_3d', 'email', 4320, ('assignee', 'supervisor'),
                         'URGENT: Deadline in 3 days - {task_title}'),
        ReminderTemplate('deadline_1d', 'sms', 1440, ('assignee',),
                         'FINAL REMINDER: {task_title} due tomorrow'),
    ),
}

DEFAULT_EVENT_COLOR = '#6c757d'
DEFAULT_TASK_DURATION_HOURS = 2


@dataclass
class ScheduleStats:
    total_tasks: int
    scheduled_tasks: int
    overdue_tasks: int
    upcoming_tasks: int
    conflicts: int
    average_task_duration: float
    utilization_rate: float


def _new_id(prefix: str) -> str:
    return f"{prefix}_{uuid.uuid4().hex[:12]}"


class TaskSchedulingService:
    """
    Scheduler for case tasks.

    Every check-then-write sequence runs under ``repository.lock()`` so a
    conflict check and the insert it guards are never interleaved with
    another writer.
    """

    def __init__(
        self,
        repository: Optional[TaskRepository] = None,
        identity: Optional[IdentityPort] = None,
        clock: Optional[Clock] = None,
        conflict_threshold_minutes: Optional[int] = None,
    ):
        self.repository = repository or InMemoryTaskRepository()
        self.identity = identity
        self.clock = clock or SystemClock()
        self.conflict_threshold = timedelta(
            minutes=conflict_threshold_minutes or get_setting('CONFLICT_THRESHOLD_MINUTES')
        )
        # Start times stamped by a caller a moment before validation still count as now.
        self.clock_skew = timedelta(seconds=get_setting('SCHEDULE_CLOCK_SKEW_SECONDS'))

    # ------------------------------------------------------------------
    # Validation and conflicts
    # ------------------------------------------------------------------

    def validate_schedule_request(self, request: ScheduleRequest) -> List[str]:
        """Return every problem with ``request``; empty when it is valid."""
        errors = []
        now = self.clock.now()

        if not request.title or not request.title.strip():
            errors.append('Task title is required')
        if not request.assigned_to:
            errors.append('Assignee is required')
        if not request.assigned_by:
            errors.append('Assigned by is required')
        if not request.scheduled_time:
            errors.append('Scheduled time is required')
        else:
            if request.scheduled_time < now - self.clock_skew:
                errors.append('Scheduled time cannot be in the past')
            if request.due_date and request.due_date < request.scheduled_time:
                errors.append('Due date must be after scheduled time')
        if request.recurrence:
            errors.extend(self.validate_recurrence_rule(request.recurrence))
        return errors

    def validate_recurrence_rule(self, rule: RecurrenceRule) -> List[str]:
        errors = []
        if rule.interval is None or rule.interval <= 0:
            errors.append('Recurrence interval must be positive')
        if rule.end_date and rule.end_date <= self.clock.now():
            errors.append('Recurrence end date must be in the future')
        if rule.max_occurrences is not None and rule.max_occurrences <= 0:
            errors.append('Max occurrences must be positive')
        if rule.days_of_week and any(day < 0 or day > 6 for day in rule.days_of_week):
            errors.append('Days of week must be between 0 and 6')
        if rule.day_of_month is not None and not 1 <= rule.day_of_month <= 31:
            errors.append('Day of month must be between 1 and 31')
        if rule.month_of_year is not None and not 1 <= rule.month_of_year <= 12:
            errors.append('Month of year must be between 1 and 12')
        return errors

    def check_schedule_conflicts(self, request: ScheduleRequest) -> List[Conflict]:
        """
        Report conflicts between ``request`` and tasks already scheduled.

        Time overlaps (same assignee, closer than the threshold) are medium
        severity. A dependency still due after the requested start is high
        severity. Nothing is rejected here; callers decide.
        """
        conflicts = []
        if not request.scheduled_time:
            return conflicts

        if request.assigned_to:
            nearby = self.repository.list(
                assigned_to=request.assigned_to,
                statuses=TaskStatus.get_active_statuses(),
                start=request.scheduled_time - self.conflict_threshold,
                end=request.scheduled_time + self.conflict_threshold,
            )
            for task in nearby:
                if request.task_id and task.task_id == request.task_id:
                    continue
                if abs(task.scheduled_time - request.scheduled_time) < self.conflict_threshold:
                    conflicts.append(Conflict(
                        type=ConflictType.TIME_OVERLAP,
                        severity=ConflictSeverity.MEDIUM,
                        conflicting_task_id=task.task_id,
                        description=f'Time overlap with task "{task.title}"',
                        suggested_resolution='Reschedule one of the tasks to avoid overlap',
                    ))

        for dependency_id in request.dependencies:
            dependency = self.repository.find(dependency_id)
            if dependency is None or not dependency.is_active or not dependency.due_date:
                continue
            if dependency.due_date > request.scheduled_time:
                conflicts.append(Conflict(
                    type=ConflictType.DEPENDENCY_CONFLICT,
                    severity=ConflictSeverity.HIGH,
                    conflicting_task_id=dependency_id,
                    description=f'Scheduled before dependency "{dependency.title}" is complete',
                    suggested_resolution=f'Reschedule after {dependency.due_date.date().isoformat()}',
                ))

        return conflicts

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    def schedule_task(self, request: ScheduleRequest, reject_dependency_conflicts: bool = False) -> ScheduledTask:
        """
        Register a task with the scheduler.

        Args:
            request: Task to schedule
            reject_dependency_conflicts: Refuse the request when a
                dependency conflict is found instead of recording it

        Returns:
            The scheduled task, with any recorded conflicts attached

        Raises:
            ValidationError: If the request is malformed
            ScheduleConflict: If dependency conflicts are rejected and found
        """
        errors = self.validate_schedule_request(request)
        if errors:
            logger.warning(f"Rejected schedule request '{request.title}': {'; '.join(errors)}")
            raise ValidationError(errors, message=f"Schedule validation failed: {', '.join(errors)}")

        now = self.clock.now()
        with self.repository.lock(assigned_to=request.assigned_to):
            conflicts = self.check_schedule_conflicts(request)
            blocking = [conflict for conflict in conflicts if conflict.severity == ConflictSeverity.HIGH]
            if blocking and reject_dependency_conflicts:
                descriptions = ', '.join(conflict.description for conflict in blocking)
                logger.warning(f"Rejected schedule request '{request.title}': {descriptions}")
                raise ScheduleConflict(
                    conflicts=blocking,
                    message=f"High priority schedule conflicts: {descriptions}",
                    details={'conflicts': [conflict.to_dict() for conflict in blocking]},
                )

            task = ScheduledTask(
                id=_new_id('scheduled'),
                task_id=request.task_id or _new_id('task'),
                case_id=request.case_id,
                title=request.title.strip(),
                description=request.description,
                scheduled_time=request.scheduled_time,
                due_date=request.due_date,
                priority=request.priority,
                status=request.status,
                assigned_to=request.assigned_to,
                assigned_by=request.assigned_by,
                recurrence=request.recurrence,
                reminder_settings=request.reminder_settings or self.get_default_reminder_settings(request.priority),
                dependencies=list(request.dependencies),
                metadata=dict(request.metadata),
                conflicts=conflicts,
                created_at=now,
                updated_at=now,
            )
            task.reminders = self.build_reminders(task)
            self.repository.add(task)
            self._log_history(ScheduleAction.SCHEDULED, task, request.assigned_by, {
                'title': task.title,
                'assigned_to': task.assigned_to,
                'scheduled_time': task.scheduled_time.isoformat(),
            })

        for conflict in conflicts:
            logger.warning(f"Task {task.task_id} scheduled with conflict: {conflict.description}")
        logger.info(
            f"Scheduled task {task.task_id} '{task.title}' for {task.assigned_to} "
            f"at {task.scheduled_time.isoformat()} ({task.priority})"
        )
        return task

    def reschedule_task(
        self,
        task_id: str,
        new_scheduled_time: datetime,
        new_due_date: Optional[datetime] = None,
        user_id: Optional[str] = None,
    ) -> ScheduledTask:
        """
        Move a task to a new time, rebuilding its reminders.

        Raises:
            NotFound: If the task does not exist
            ValidationError: If the new times are invalid
        """
        with self.repository.lock():
            task = self.repository.get(task_id)
            due_date = new_due_date or task.due_date
            errors = []
            if new_scheduled_time < self.clock.now() - self.clock_skew:
                errors.append('Scheduled time cannot be in the past')
            if due_date and due_date < new_scheduled_time:
                errors.append('Due date must be after scheduled time')
            if errors:
                raise ValidationError(errors)

            old_scheduled_time, old_due_date = task.scheduled_time, task.due_date
            task.scheduled_time = new_scheduled_time
            task.due_date = due_date
            task.conflicts = self.check_schedule_conflicts(self._as_request(task))
            task.reminders = self.build_reminders(task)
            task.updated_at = self.clock.now()
            self.repository.save(task)
            self._log_history(ScheduleAction.RESCHEDULED, task, user_id or task.assigned_by, {
                'title': task.title,
                'old_scheduled_time': old_scheduled_time.isoformat(),
                'new_scheduled_time': new_scheduled_time.isoformat(),
                'old_due_date': old_due_date.isoformat() if old_due_date else None,
                'new_due_date': due_date.isoformat() if due_date else None,
            })

        logger.info(f"Rescheduled task {task_id} to {new_scheduled_time.isoformat()}")
        return task

    def cancel_task(self, task_id: str, user_id: Optional[str] = None) -> ScheduledTask:
        """Cancel a task; it stops counting toward workload and calendars."""
        task = self.update_task_status(task_id, TaskStatus.CANCELLED, user_id=user_id)
        logger.info(f"Cancelled task {task_id}")
        return task

    def complete_task(self, task_id: str, user_id: Optional[str] = None) -> ScheduledTask:
        return self.update_task_status(task_id, TaskStatus.COMPLETED, user_id=user_id)

    def update_task_status(self, task_id: str, status: TaskStatus, user_id: Optional[str] = None) -> ScheduledTask:
        """
        Set a task's status and record the change in the schedule history.

        Raises:
            NotFound: If the task does not exist
        """
        status = TaskStatus(status)
        now = self.clock.now()
        with self.repository.lock():
            task = self.repository.get(task_id)
            previous = task.status
            task.status = status
            task.updated_at = now
            if status == TaskStatus.COMPLETED:
                task.completed_at = now
            self.repository.save(task)
            if status == TaskStatus.CANCELLED:
                action = ScheduleAction.CANCELLED
            elif status == TaskStatus.COMPLETED:
                action = ScheduleAction.COMPLETED
            else:
                action = ScheduleAction.STATUS_CHANGED
            self._log_history(action, task, user_id or task.assigned_by, {
                'title': task.title,
                'from': str(previous),
                'to': str(status),
            })
        logger.debug(f"Task {task_id} status {previous} -> {status}")
        return task

    def reassign_task(self, task_id: str, new_assignee: str, user_id: Optional[str] = None) -> ScheduledTask:
        with self.repository.lock():
            task = self.repository.get(task_id)
            previous = task.assigned_to
            task.assigned_to = new_assignee
            task.conflicts = self.check_schedule_conflicts(self._as_request(task))
            task.reminders = self.build_reminders(task)
            task.updated_at = self.clock.now()
            self.repository.save(task)
            self._log_history(ScheduleAction.REASSIGNED, task, user_id or task.assigned_by, {
                'from': previous,
                'to': new_assignee,
            })
        logger.info(f"Reassigned task {task_id} from {previous} to {new_assignee}")
        return task

    def escalate_task(
        self,
        task_id: str,
        escalation_level: int,
        new_assignee: Optional[str] = None,
        extend_due_by: Optional[timedelta] = None,
        user_id: Optional[str] = None,
    ) -> ScheduledTask:
        """
        Raise a task's escalation level, optionally handing it over and
        pushing its deadline back.

        Raises:
            NotFound: If the task does not exist
        """
        with self.repository.lock():
            task = self.repository.get(task_id)
            previous_level, previous_assignee = task.escalation_level, task.assigned_to
            task.escalation_level = escalation_level
            if new_assignee:
                task.assigned_to = new_assignee
            if extend_due_by and task.due_date:
                task.due_date = task.due_date + extend_due_by
            task.reminders = self.build_reminders(task)
            task.updated_at = self.clock.now()
            self.repository.save(task)
            self._log_history(ScheduleAction.ESCALATED, task, user_id or task.assigned_by, {
                'from_level': previous_level,
                'to_level': escalation_level,
                'from_assignee': previous_assignee,
                'to_assignee': task.assigned_to,
                'due_date': task.due_date.isoformat() if task.due_date else None,
            })
        logger.warning(f"Escalated task {task_id} to level {escalation_level} ({task.assigned_to})")
        return task

    def add_dependency(self, task_id: str, depends_on: str, user_id: Optional[str] = None) -> ScheduledTask:
        """
        Make ``task_id`` wait for ``depends_on``.

        Raises:
            NotFound: If either task does not exist
            ValidationError: If the dependency would point at the task itself
        """
        if task_id == depends_on:
            raise ValidationError(['A task cannot depend on itself'])
        with self.repository.lock():
            task = self.repository.get(task_id)
            dependency = self.repository.get(depends_on)
            if depends_on not in task.dependencies:
                task.dependencies.append(depends_on)
                if dependency.is_active and task.status == TaskStatus.PENDING:
                    task.status = TaskStatus.WAITING_DEPENDENCIES
                task.conflicts = self.check_schedule_conflicts(self._as_request(task))
                task.updated_at = self.clock.now()
                self.repository.save(task)
                self._log_history(ScheduleAction.DEPENDENCY_ADDED, task, user_id or task.assigned_by, {
                    'depends_on': depends_on,
                    'status': str(task.status),
                })
        return task

    def mark_overdue_tasks(self) -> List[ScheduledTask]:
        """Flag open tasks past their due date as OVERDUE."""
        now = self.clock.now()
        flagged = []
        statuses = [TaskStatus.PENDING, TaskStatus.IN_PROGRESS, TaskStatus.WAITING_DEPENDENCIES]
        with self.repository.lock():
            for task in self.repository.list(statuses=statuses):
                if task.due_date and task.due_date < now:
                    logger.info(f"Task {task.task_id} is overdue by {format_duration(now - task.due_date)}")
                    flagged.append(self.update_task_status(task.task_id, TaskStatus.OVERDUE))
        if flagged:
            logger.warning(f"Marked {len(flagged)} task(s) overdue")
        return flagged

    @staticmethod
    def _as_request(task: ScheduledTask) -> ScheduleRequest:
        return ScheduleRequest(
            task_id=task.task_id,
            case_id=task.case_id,
            title=task.title,
            scheduled_time=task.scheduled_time,
            due_date=task.due_date,
            priority=task.priority,
            assigned_to=task.assigned_to,
            assigned_by=task.assigned_by,
            dependencies=task.dependencies,
        )

    def _log_history(self, action: ScheduleAction, task: ScheduledTask, user_id: str, details: Dict[str, Any]) -> None:
        self.repository.record_event(ScheduleHistoryEntry(
            action=str(action),
            task_id=task.task_id,
            user_id=user_id or '',
            timestamp=self.clock.now(),
            details=details,
        ))

    # ------------------------------------------------------------------
    # Queries
    # ------------------------------------------------------------------

    def get_task(self, task_id: str) -> ScheduledTask:
        return self.repository.get(task_id)

    def get_scheduled_tasks(
        self,
        user_id: Optional[str] = None,
        case_id: Optional[str] = None,
        start: Optional[datetime] = None,
        end: Optional[datetime] = None,
        priority: Optional[TaskPriority] = None,
        status: Optional[TaskStatus] = None,
    ) -> List[ScheduledTask]:
        """Scheduled tasks matching every given filter, earliest first."""
        tasks = self.repository.list(
            case_id=case_id,
            assigned_to=user_id,
            statuses=[status] if status else None,
            start=start,
            end=end,
        )
        if priority:
            tasks = [task for task in tasks if task.priority == priority]
        return tasks

    def get_schedule_history(self, task_id: Optional[str] = None, limit: Optional[int] = None) -> List[ScheduleHistoryEntry]:
        """History entries, newest first."""
        return self.repository.list_events(task_id=task_id, limit=limit)

    # ------------------------------------------------------------------
    # Reminders
    # ------------------------------------------------------------------

    @staticmethod
    def get_default_reminder_settings(priority: TaskPriority) -> ReminderSettings:
        templates = REMINDER_TEMPLATES.get(str(priority), ())
        return ReminderSettings(enabled=bool(templates))

    def build_reminders(self, task: ScheduledTask) -> List[Reminder]:
        """
        Materialize reminders for a task from its reminder settings.

        Reminders fire ``offset_minutes`` before the due date, so tasks
        without a due date get none.
        """
        settings = task.reminder_settings or self.get_default_reminder_settings(task.priority)
        if not settings.enabled or not task.due_date:
            return []

        templates = list(REMINDER_TEMPLATES.get(str(task.priority), ()))
        if settings.include_deadline_reminders:
            templates.extend(REMINDER_TEMPLATES['deadline'])
        templates.extend(settings.custom_reminders)

        context = {'task_title': task.title, 'case_id': task.case_id or '', 'task_id': task.task_id}
        return [
            Reminder(
                id=f"{template.id}_{task.task_id}",
                task_id=task.task_id,
                template_id=template.id,
                channel=template.channel,
                reminder_time=task.due_date - timedelta(minutes=template.offset_minutes),
                recipients=self._resolve_recipients(task, template.recipients),
                message=interpolate_template(template.message, context),
            )
            for template in templates
        ]

    def _resolve_recipients(self, task: ScheduledTask, tokens) -> List[str]:
        recipients = []
        for token in tokens:
            if token == 'assignee':
                user_id = task.assigned_to
            elif token == 'supervisor':
                supervisor = self.identity.get_supervisor(task.assigned_to) if self.identity else None
                user_id = supervisor.id if supervisor else None
            elif token == 'case_attorney':
                user_id = task.metadata.get('case_attorney_id')
            else:
                user_id = None
            if user_id is None:
                logger.debug(f"No recipient for '{token}' on task {task.task_id}")
            elif user_id not in recipients:
                recipients.append(user_id)
        return recipients

    def get_upcoming_reminders(self, user_id: Optional[str] = None, hours_ahead: int = 24) -> List[Reminder]:
        """Unsent reminders firing within the next ``hours_ahead`` hours."""
        now = self.clock.now()
        window_end = now + timedelta(hours=hours_ahead)
        upcoming = []
        for task in self.repository.list(assigned_to=user_id, statuses=TaskStatus.get_active_statuses()):
            upcoming.extend(
                reminder for reminder in task.reminders
                if not reminder.sent and now <= reminder.reminder_time <= window_end
            )
        return sorted(upcoming, key=lambda reminder: reminder.reminder_time)

    # ------------------------------------------------------------------
    # Calendar
    # ------------------------------------------------------------------

    @staticmethod
    def build_calendar_event(task: ScheduledTask) -> CalendarEvent:
        return CalendarEvent(
            id=f"event_{task.id}",
            title=task.title,
            description=task.description,
            start=task.scheduled_time,
            end=task.due_date or task.scheduled_time + timedelta(hours=1),
            color=TaskPriority.get_calendar_colors().get(task.priority, DEFAULT_EVENT_COLOR),
            attendees=[task.assigned_to, task.assigned_by],
            recurring=task.recurrence is not None,
            metadata={
                'task_id': task.task_id,
                'case_id': task.case_id,
                'priority': str(task.priority),
                'status': str(task.status),
            },
        )

    def get_calendar_events(
        self,
        user_id: Optional[str] = None,
        start: Optional[datetime] = None,
        end: Optional[datetime] = None,
    ) -> List[CalendarEvent]:
        events = [
            self.build_calendar_event(task)
            for task in self.repository.list()
            if task.status != TaskStatus.CANCELLED
        ]
        if user_id:
            events = [event for event in events if user_id in event.attendees]
        if start:
            events = [event for event in events if event.start >= start]
        if end:
            events = [event for event in events if event.end <= end]
        return sorted(events, key=lambda event: event.start)

    # ------------------------------------------------------------------
    # Workload
    # ------------------------------------------------------------------

    def _available_hours(self, user_id: str) -> float:
        user = self.identity.get_user(user_id) if self.identity else None
        if user is not None and getattr(user, 'available_hours', None):
            return float(user.available_hours)
        return float(get_setting('DEFAULT_AVAILABLE_HOURS'))

    def get_user_workload(self, user_id: str) -> UserWorkload:
        """
        Committed hours of one assignee's open tasks.

        Each task counts a fixed estimate by priority. Capacity is under
        below 80% utilization, at capacity up to 100% and over beyond it.
        """
        now = self.clock.now()
        tasks = self.repository.list(assigned_to=user_id, statuses=TaskStatus.get_active_statuses())
        total_hours = sum(task.estimated_hours for task in tasks)
        available_hours = self._available_hours(user_id)
        utilization_rate = safe_divide(total_hours * 100, available_hours)
        return UserWorkload(
            user_id=user_id,
            total_tasks=len(tasks),
            active_tasks=sum(1 for task in tasks if task.status == TaskStatus.PENDING),
            overdue_tasks=sum(1 for task in tasks if task.is_overdue(now)),
            high_priority_tasks=sum(
                1 for task in tasks if task.priority in (TaskPriority.HIGH, TaskPriority.URGENT)
            ),
            total_hours=total_hours,
            available_hours=available_hours,
            utilization_rate=utilization_rate,
            capacity_status=CapacityStatus.for_utilization(utilization_rate),
        )

    def get_user_workloads(self, user_id: Optional[str] = None) -> List[UserWorkload]:
        """Workloads of every assignee with open tasks, busiest first."""
        if user_id:
            user_ids = {user_id}
        else:
            user_ids = {
                task.assigned_to for task in self.repository.list(statuses=TaskStatus.get_active_statuses())
            }
        workloads = [self.get_user_workload(uid) for uid in sorted(user_ids)]
        return sorted(workloads, key=lambda workload: workload.utilization_rate, reverse=True)

    def get_schedule_stats(self, user_id: Optional[str] = None, case_id: Optional[str] = None) -> ScheduleStats:
        now = self.clock.now()
        next_week = now + timedelta(days=7)
        tasks = [
            task for task in self.repository.list(case_id=case_id, assigned_to=user_id)
            if task.status != TaskStatus.CANCELLED
        ]

        total_duration = sum(
            (task.due_date - task.scheduled_time).total_seconds() / 3600 if task.due_date
            else DEFAULT_TASK_DURATION_HOURS
            for task in tasks
        )
        available_hours = self._available_hours(user_id) if user_id else float(get_setting('DEFAULT_AVAILABLE_HOURS'))
        total_hours = sum(task.estimated_hours for task in tasks)

        return ScheduleStats(
            total_tasks=len(tasks),
            scheduled_tasks=sum(1 for task in tasks if task.status == TaskStatus.PENDING),
            overdue_tasks=sum(
                1 for task in tasks
                if task.due_date and task.due_date < now and task.status != TaskStatus.COMPLETED
            ),
            upcoming_tasks=sum(1 for task in tasks if task.due_date and now <= task.due_date <= next_week),
            conflicts=sum(len(self.check_schedule_conflicts(self._as_request(task))) for task in tasks),
            average_task_duration=safe_divide(total_duration, len(tasks)),
            utilization_rate=min(safe_divide(total_hours * 100, available_hours), 100),
        )

    # ------------------------------------------------------------------
    # Recurrence
    # ------------------------------------------------------------------

    def process_recurring_tasks(self) -> List[ScheduledTask]:
        """
        Spawn the next occurrence of every completed recurring task.

        The next date is computed from the series anchor. A completed task
        spawns at most one successor; the link is stored in its metadata.
        """
        created = []
        now = self.clock.now()
        with self.repository.lock():
            for task in self.repository.list(statuses=[TaskStatus.COMPLETED]):
                if task.recurrence is None or task.metadata.get('next_occurrence_task_id'):
                    continue
                new_task = self._create_next_occurrence(task, now)
                if new_task is not None:
                    created.append(new_task)

        if created:
            logger.info(f"Created {len(created)} recurring task occurrence(s)")
        return created

    def _create_next_occurrence(self, task: ScheduledTask, now: datetime) -> Optional[ScheduledTask]:
        rule = task.recurrence
        series_id = task.metadata.get('recurring_task_id', task.task_id)
        anchor_value = task.metadata.get('recurrence_anchor')
        anchor = parse_datetime(anchor_value) if anchor_value else task.scheduled_time
        occurrence_number = task.metadata.get('occurrence_number', 1)

        if rule.max_occurrences and occurrence_number >= rule.max_occurrences:
            logger.debug(f"Series {series_id} reached {rule.max_occurrences} occurrences")
            return None

        next_time = next_occurrence(rule, anchor, after=task.scheduled_time)
        if next_time is None:
            logger.debug(f"Series {series_id} has no further occurrences")
            return None

        new_task_id = f"{series_id}-{occurrence_number + 1}"
        if self.repository.find(new_task_id) is not None:
            return None

        due_date = next_time + (task.due_date - task.scheduled_time) if task.due_date else None
        new_task = replace(
            task,
            id=_new_id('scheduled'),
            task_id=new_task_id,
            scheduled_time=next_time,
            due_date=due_date,
            status=TaskStatus.PENDING,
            conflicts=[],
            escalation_level=0,
            created_at=now,
            updated_at=now,
            completed_at=None,
            metadata={
                **{key: value for key, value in task.metadata.items() if key != 'next_occurrence_task_id'},
                'recurring_task_id': series_id,
                'recurrence_anchor': anchor.isoformat(),
                'occurrence_number': occurrence_number + 1,
            },
        )
        new_task.reminders = self.build_reminders(new_task)
        self.repository.add(new_task)

        task.metadata['next_occurrence_task_id'] = new_task_id
        self.repository.save(task)
        self._log_history(ScheduleAction.RECURRED, new_task, task.assigned_by, {
            'recurring_task_id': series_id,
            'occurrence_number': occurrence_number + 1,
            'scheduled_time': next_time.isoformat(),
        })
        return new_task

    # ------------------------------------------------------------------
    # Optimization
    # ------------------------------------------------------------------

    def optimize_schedule(self, request: OptimizationRequest) -> OptimizationResult:
        """
        Propose an ordering (and, for workload balancing, reassignments) of
        the open tasks scheduled inside the request's timeframe.

        This is a greedy heuristic. It is not globally optimal and nothing
        is persisted; callers apply the proposal with ``reschedule_task``
        and ``reassign_task``.
        """
        strategy = OptimizationStrategy(request.strategy)
        constraints = request.constraints
        tasks = [
            task for task in self.get_scheduled_tasks(
                user_id=request.user_id, case_id=request.case_id, start=request.start, end=request.end,
            )
            if task.is_active
        ]
        tasks.sort(key=lambda task: TaskPriority.rank(task.priority), reverse=True)

        result = OptimizationResult(strategy=strategy)
        if strategy == OptimizationStrategy.MINIMIZE_DELAYS:
            tasks = self._minimize_delays(tasks)
        elif strategy == OptimizationStrategy.MEET_DEADLINES:
            tasks = self._meet_deadlines(tasks)
        elif strategy == OptimizationStrategy.MAXIMIZE_EFFICIENCY:
            tasks = self._group_by_case(tasks)
        elif strategy == OptimizationStrategy.BALANCE_WORKLOAD:
            result.reassignments = self._balance_workload(tasks, constraints)

        if constraints.respect_dependencies:
            tasks = self._order_dependencies(tasks)
        tasks, result.deferred_tasks = self._apply_capacity_constraints(tasks, constraints)

        result.optimized_tasks = tasks
        result.recommendations = self._build_recommendations(tasks, result)
        result.workloads = {
            user_id: self.get_user_workload(user_id)
            for user_id in sorted({task.assigned_to for task in tasks})
        }
        logger.info(
            f"Optimized {len(tasks)} task(s) with {strategy}: "
            f"{len(result.reassignments)} reassignment(s), {len(result.deferred_tasks)} deferred"
        )
        return result

    @staticmethod
    def _minimize_delays(tasks: List[ScheduledTask]) -> List[ScheduledTask]:
        return sorted(tasks, key=lambda task: (
            task.due_date is None,
            task.due_date or datetime.max.replace(tzinfo=task.scheduled_time.tzinfo),
            -TaskPriority.rank(task.priority),
        ))

    def _meet_deadlines(self, tasks: List[ScheduledTask]) -> List[ScheduledTask]:
        now = self.clock.now()
        return sorted(tasks, key=lambda task: (
            task.due_date is None,
            (task.due_date - now).total_seconds() if task.due_date else 0,
        ))

    @staticmethod
    def _group_by_case(tasks: List[ScheduledTask]) -> List[ScheduledTask]:
        groups: Dict[Optional[str], List[ScheduledTask]] = {}
        for task in tasks:
            groups.setdefault(task.case_id, []).append(task)
        return [task for group in groups.values() for task in group]

    def _balance_workload(self, tasks: List[ScheduledTask], constraints) -> List[Dict[str, Any]]:
        """Move low priority tasks from the busiest to the least busy assignee."""
        loads: Dict[str, float] = {user_id: 0.0 for user_id in constraints.candidate_users}
        for task in tasks:
            loads[task.assigned_to] = loads.get(task.assigned_to, 0.0) + task.estimated_hours
        if len(loads) < 2:
            return []

        reassignments = []
        for _ in range(len(tasks)):
            busiest = max(loads, key=lambda user_id: (loads[user_id], user_id))
            movable = sorted(
                (task for task in tasks if task.assigned_to == busiest),
                key=lambda task: TaskPriority.rank(task.priority),
            )
            moved = False
            for task in movable:
                hours = task.estimated_hours
                targets = sorted(
                    (user_id for user_id in loads
                     if user_id != busiest and not constraints.is_unavailable(user_id, task.scheduled_time)),
                    key=lambda user_id: (loads[user_id], user_id),
                )
                if targets and loads[busiest] - loads[targets[0]] > hours:
                    target = targets[0]
                    loads[busiest] -= hours
                    loads[target] += hours
                    reassignments.append({
                        'task_id': task.task_id,
                        'from_user': busiest,
                        'to_user': target,
                        'hours': hours,
                    })
                    task.assigned_to = target
                    moved = True
                    break
            if not moved:
                break
        return reassignments

    @staticmethod
    def _order_dependencies(tasks: List[ScheduledTask]) -> List[ScheduledTask]:
        """Stable reordering that places each task after its in-set dependencies."""
        in_set = {task.task_id for task in tasks}
        placed = set()
        ordered = []
        pending = list(tasks)
        while pending:
            progressed = False
            for task in list(pending):
                if all(dep in placed or dep not in in_set for dep in task.dependencies):
                    ordered.append(task)
                    placed.add(task.task_id)
                    pending.remove(task)
                    progressed = True
                    break
            if not progressed:
                logger.warning(f"Dependency cycle among tasks {[task.task_id for task in pending]}")
                ordered.extend(pending)
                break
        return ordered

    @staticmethod
    def _apply_capacity_constraints(tasks: List[ScheduledTask], constraints):
        kept, deferred = [], []
        daily_hours: Dict[tuple, float] = {}
        for task in tasks:
            if constraints.is_unavailable(task.assigned_to, task.scheduled_time):
                deferred.append(task.task_id)
                continue
            if constraints.max_hours_per_day:
                key = (task.assigned_to, task.scheduled_time.date())
                if daily_hours.get(key, 0) + task.estimated_hours > constraints.max_hours_per_day:
                    deferred.append(task.task_id)
                    continue
                daily_hours[key] = daily_hours.get(key, 0) + task.estimated_hours
            kept.append(task)
        return kept, deferred

    def _build_recommendations(self, tasks: List[ScheduledTask], result: OptimizationResult) -> List[str]:
        now = self.clock.now()
        recommendations = []
        overdue = [
            task for task in tasks
            if task.due_date and task.due_date < now and task.status != TaskStatus.COMPLETED
        ]
        if overdue:
            recommendations.append(f"Consider rescheduling or prioritizing {len(overdue)} overdue tasks")
        high_priority = [task for task in tasks if task.priority in (TaskPriority.HIGH, TaskPriority.URGENT)]
        if len(high_priority) > 5:
            recommendations.append('High concentration of high-priority tasks - consider resource allocation')
        if result.reassignments:
            recommendations.append(f"Reassign {len(result.reassignments)} task(s) to balance workload")
        if result.deferred_tasks:
            recommendations.append(
                f"Reschedule {len(result.deferred_tasks)} task(s) that exceed daily capacity or fall on unavailable dates"
            )
        return recommendations

"""
Scheduled task persistence.

``InMemoryTaskRepository`` keeps tasks in an arena keyed by task id and is
what tests and single-process hosts use. ``DjangoTaskRepository`` stores
the same entities in ``ScheduledTaskRecord`` rows. The scheduler holds
``lock()`` around every check-then-write sequence.
"""

import copy
import threading
from contextlib import contextmanager
from dataclasses import dataclass
from datetime import datetime
from typing import Iterable, Iterator, List, Optional, Protocol

from django.db import transaction
from django.utils import timezone

from apps.common.exceptions import NotFound
from apps.tasks.entities import (
    Conflict,
    RecurrenceRule,
    Reminder,
    ReminderSettings,
    ScheduledTask,
    ScheduleHistoryEntry,
)
from apps.tasks.models import AssigneeScheduleLock, PriorityAdjustment, ScheduledTaskRecord, ScheduleEvent


@dataclass
class PriorityAdjustmentEntry:
    task_id: str
    previous_priority: str
    new_priority: str
    reason: str
    adjusted_by: str
    timestamp: Optional[datetime] = None


class TaskRepository(Protocol):
    """Persistence port for scheduled tasks and their audit trails."""

    def lock(self, assigned_to: Optional[str] = None):
        ...

    def get(self, task_id: str) -> ScheduledTask:
        ...

    def find(self, task_id: str) -> Optional[ScheduledTask]:
        ...

    def add(self, task: ScheduledTask) -> ScheduledTask:
        ...

    def save(self, task: ScheduledTask) -> ScheduledTask:
        ...

    def list(
        self,
        case_id: Optional[str] = None,
        assigned_to: Optional[str] = None,
        statuses: Optional[Iterable[str]] = None,
        start: Optional[datetime] = None,
        end: Optional[datetime] = None,
    ) -> List[ScheduledTask]:
        ...

    def record_event(self, entry: ScheduleHistoryEntry) -> None:
        ...

    def list_events(
        self,
        task_id: Optional[str] = None,
        user_id: Optional[str] = None,
        limit: Optional[int] = None,
    ) -> List[ScheduleHistoryEntry]:
        ...

    def record_adjustment(self, entry: PriorityAdjustmentEntry) -> None:
        ...

    def list_adjustments(self, task_id: str) -> List[PriorityAdjustmentEntry]:
        ...


def _matches(task: ScheduledTask, case_id, assigned_to, statuses, start, end) -> bool:
    if case_id is not None and task.case_id != case_id:
        return False
    if assigned_to is not None and task.assigned_to != assigned_to:
        return False
    if statuses is not None and task.status not in statuses:
        return False
    if start is not None and task.scheduled_time < start:
        return False
    if end is not None and task.scheduled_time > end:
        return False
    return True


class InMemoryTaskRepository:
    """Arena of scheduled tasks keyed by task id."""

    def __init__(self, tasks: Optional[Iterable[ScheduledTask]] = None):
        self._lock = threading.RLock()
        self._tasks = {}
        self._events: List[ScheduleHistoryEntry] = []
        self._adjustments: List[PriorityAdjustmentEntry] = []
        for task in tasks or []:
            self._tasks[task.task_id] = copy.deepcopy(task)

    @contextmanager
    def lock(self, assigned_to: Optional[str] = None) -> Iterator[None]:
        # One process: the arena lock already covers every assignee.
        with self._lock:
            yield

    def find(self, task_id: str) -> Optional[ScheduledTask]:
        task = self._tasks.get(task_id)
        return copy.deepcopy(task) if task else None

    def get(self, task_id: str) -> ScheduledTask:
        task = self.find(task_id)
        if task is None:
            raise NotFound(f"Task {task_id} not found", details={'task_id': task_id})
        return task

    def add(self, task: ScheduledTask) -> ScheduledTask:
        with self._lock:
            self._tasks[task.task_id] = copy.deepcopy(task)
        return task

    def save(self, task: ScheduledTask) -> ScheduledTask:
        with self._lock:
            if task.task_id not in self._tasks:
                raise NotFound(f"Task {task.task_id} not found", details={'task_id': task.task_id})
            self._tasks[task.task_id] = copy.deepcopy(task)
        return task

    def list(self, case_id=None, assigned_to=None, statuses=None, start=None, end=None) -> List[ScheduledTask]:
        statuses = set(statuses) if statuses is not None else None
        with self._lock:
            tasks = [
                copy.deepcopy(task) for task in self._tasks.values()
                if _matches(task, case_id, assigned_to, statuses, start, end)
            ]
        return sorted(tasks, key=lambda task: (task.scheduled_time, task.task_id))

    def record_event(self, entry: ScheduleHistoryEntry) -> None:
        with self._lock:
            self._events.append(entry)

    def list_events(self, task_id=None, user_id=None, limit=None) -> List[ScheduleHistoryEntry]:
        events = [
            entry for entry in reversed(self._events)
            if (task_id is None or entry.task_id == task_id) and (user_id is None or entry.user_id == user_id)
        ]
        return events[:limit] if limit else events

    def record_adjustment(self, entry: PriorityAdjustmentEntry) -> None:
        with self._lock:
            self._adjustments.append(entry)

    def list_adjustments(self, task_id: str) -> List[PriorityAdjustmentEntry]:
        return [entry for entry in self._adjustments if entry.task_id == task_id]


def _to_entity(record: ScheduledTaskRecord) -> ScheduledTask:
    return ScheduledTask(
        id=record.schedule_id,
        task_id=record.task_id,
        case_id=record.case_id,
        title=record.title,
        description=record.description,
        scheduled_time=record.scheduled_time,
        due_date=record.due_date,
        priority=record.priority,
        status=record.status,
        assigned_to=record.assigned_to,
        assigned_by=record.assigned_by,
        recurrence=RecurrenceRule.from_dict(record.recurrence),
        reminder_settings=ReminderSettings.from_dict(record.reminder_settings),
        reminders=[Reminder.from_dict(item) for item in record.reminders or []],
        conflicts=[Conflict.from_dict(item) for item in record.conflicts or []],
        dependencies=list(record.dependencies or []),
        metadata=dict(record.metadata or {}),
        escalation_level=record.escalation_level,
        created_at=record.created_at,
        updated_at=record.updated_at,
        completed_at=record.completed_at,
    )


def _to_fields(task: ScheduledTask) -> dict:
    return {
        'schedule_id': task.id,
        'case_id': task.case_id,
        'title': task.title,
        'description': task.description,
        'scheduled_time': task.scheduled_time,
        'due_date': task.due_date,
        'priority': task.priority,
        'status': task.status,
        'assigned_to': task.assigned_to,
        'assigned_by': task.assigned_by,
        'recurrence': task.recurrence.to_dict() if task.recurrence else None,
        'reminder_settings': task.reminder_settings.to_dict() if task.reminder_settings else None,
        'reminders': [reminder.to_dict() for reminder in task.reminders],
        'conflicts': [conflict.to_dict() for conflict in task.conflicts],
        'dependencies': list(task.dependencies),
        'metadata': task.metadata,
        'escalation_level': task.escalation_level,
        'completed_at': task.completed_at,
    }


class DjangoTaskRepository:
    """Scheduled task store backed by the ORM."""

    @contextmanager
    def lock(self, assigned_to: Optional[str] = None) -> Iterator[None]:
        """
        Run the block in a transaction. With ``assigned_to`` the assignee's
        lock row is held until it ends, so concurrent conflict checks and
        inserts for one assignee are serialized across processes.
        """
        with transaction.atomic():
            if assigned_to:
                AssigneeScheduleLock.objects.get_or_create(assigned_to=assigned_to)
                AssigneeScheduleLock.objects.select_for_update().get(assigned_to=assigned_to)
            yield

    def find(self, task_id: str) -> Optional[ScheduledTask]:
        record = ScheduledTaskRecord.objects.filter(task_id=task_id).first()
        return _to_entity(record) if record else None

    def get(self, task_id: str) -> ScheduledTask:
        task = self.find(task_id)
        if task is None:
            raise NotFound(f"Task {task_id} not found", details={'task_id': task_id})
        return task

    def add(self, task: ScheduledTask) -> ScheduledTask:
        record = ScheduledTaskRecord.objects.create(task_id=task.task_id, **_to_fields(task))
        return _to_entity(record)

    def save(self, task: ScheduledTask) -> ScheduledTask:
        updated = ScheduledTaskRecord.objects.filter(task_id=task.task_id).update(
            updated_at=timezone.now(), **_to_fields(task)
        )
        if not updated:
            raise NotFound(f"Task {task.task_id} not found", details={'task_id': task.task_id})
        return task

    def list(self, case_id=None, assigned_to=None, statuses=None, start=None, end=None) -> List[ScheduledTask]:
        queryset = ScheduledTaskRecord.objects.all()
        if case_id is not None:
            queryset = queryset.for_case(case_id)
        if assigned_to is not None:
            queryset = queryset.for_assignee(assigned_to)
        if statuses is not None:
            queryset = queryset.filter(status__in=list(statuses))
        if start is not None:
            queryset = queryset.filter(scheduled_time__gte=start)
        if end is not None:
            queryset = queryset.filter(scheduled_time__lte=end)
        return [_to_entity(record) for record in queryset.order_by('scheduled_time', 'task_id')]

    def record_event(self, entry: ScheduleHistoryEntry) -> None:
        ScheduleEvent.objects.create(
            action=entry.action,
            task_id=entry.task_id,
            user_id=entry.user_id,
            timestamp=entry.timestamp,
            details=entry.details,
        )

    def list_events(self, task_id=None, user_id=None, limit=None) -> List[ScheduleHistoryEntry]:
        queryset = ScheduleEvent.objects.all()
        if task_id is not None:
            queryset = queryset.filter(task_id=task_id)
        if user_id is not None:
            queryset = queryset.filter(user_id=user_id)
        if limit:
            queryset = queryset[:limit]
        return [
            ScheduleHistoryEntry(
                action=event.action,
                task_id=event.task_id,
                user_id=event.user_id,
                timestamp=event.timestamp,
                details=dict(event.details),
            )
            for event in queryset
        ]

    def record_adjustment(self, entry: PriorityAdjustmentEntry) -> None:
        PriorityAdjustment.objects.create(
            task=ScheduledTaskRecord.objects.get(task_id=entry.task_id),
            previous_priority=entry.previous_priority,
            new_priority=entry.new_priority,
            reason=entry.reason,
            adjusted_by=entry.adjusted_by,
        )

    def list_adjustments(self, task_id: str) -> List[PriorityAdjustmentEntry]:
        return [
            PriorityAdjustmentEntry(
                task_id=task_id,
                previous_priority=adjustment.previous_priority,
                new_priority=adjustment.new_priority,
                reason=adjustment.reason,
                adjusted_by=adjustment.adjusted_by,
                timestamp=adjustment.created_at,
            )
            for adjustment in PriorityAdjustment.objects.filter(task__task_id=task_id)
        ]

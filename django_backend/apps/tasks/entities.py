"""
Task scheduling entities.

Plain dataclasses shared by the scheduling engine, the priority scorer
and the task repositories. JSON helpers cover the nested values that the
Django repository stores in ``JSONField`` columns.
"""

from dataclasses import dataclass, field
from datetime import date, datetime
from typing import Any, Dict, List, Optional

from django.utils.dateparse import parse_date, parse_datetime

from apps.tasks.choices import (
    CapacityStatus,
    ConflictSeverity,
    ConflictType,
    OptimizationStrategy,
    RecurrenceType,
    TaskPriority,
    TaskStatus,
)


def _iso(value: Optional[datetime]) -> Optional[str]:
    return value.isoformat() if value else None


def _as_date(value: Any) -> date:
    """Accept dates, datetimes or ISO strings and return a ``date``."""
    if isinstance(value, datetime):
        return value.date()
    if isinstance(value, date):
        return value
    parsed = parse_date(str(value)) or parse_datetime(str(value))
    if parsed is None:
        raise ValueError(f"Invalid date: {value!r}")
    return parsed.date() if isinstance(parsed, datetime) else parsed


@dataclass
class RecurrenceRule:
    """How a task repeats, relative to its first scheduled time."""

    type: RecurrenceType
    interval: int = 1
    end_date: Optional[datetime] = None
    max_occurrences: Optional[int] = None
    days_of_week: Optional[List[int]] = None
    day_of_month: Optional[int] = None
    month_of_year: Optional[int] = None
    exceptions: List[date] = field(default_factory=list)

    def __post_init__(self):
        self.type = RecurrenceType(self.type)
        self.exceptions = [_as_date(value) for value in self.exceptions]

    def is_exception(self, moment: datetime) -> bool:
        return moment.date() in self.exceptions

    def to_dict(self) -> Dict[str, Any]:
        return {
            'type': str(self.type),
            'interval': self.interval,
            'end_date': _iso(self.end_date),
            'max_occurrences': self.max_occurrences,
            'days_of_week': self.days_of_week,
            'day_of_month': self.day_of_month,
            'month_of_year': self.month_of_year,
            'exceptions': [value.isoformat() for value in self.exceptions],
        }

    @classmethod
    def from_dict(cls, data: Optional[Dict[str, Any]]) -> Optional['RecurrenceRule']:
        if not data:
            return None
        end_date = data.get('end_date')
        return cls(
            type=data['type'],
            interval=data.get('interval', 1),
            end_date=parse_datetime(end_date) if isinstance(end_date, str) else end_date,
            max_occurrences=data.get('max_occurrences'),
            days_of_week=data.get('days_of_week'),
            day_of_month=data.get('day_of_month'),
            month_of_year=data.get('month_of_year'),
            exceptions=data.get('exceptions') or [],
        )


@dataclass(frozen=True)
class ReminderTemplate:
    """A reminder fired ``offset_minutes`` before a task's due date."""

    id: str
    channel: str
    offset_minutes: int
    recipients: tuple
    message: str


@dataclass
class ReminderSettings:
    enabled: bool = True
    include_deadline_reminders: bool = False
    custom_reminders: List[ReminderTemplate] = field(default_factory=list)

    def to_dict(self) -> Dict[str, Any]:
        return {
            'enabled': self.enabled,
            'include_deadline_reminders': self.include_deadline_reminders,
            'custom_reminders': [
                {
                    'id': reminder.id,
                    'channel': reminder.channel,
                    'offset_minutes': reminder.offset_minutes,
                    'recipients': list(reminder.recipients),
                    'message': reminder.message,
                }
                for reminder in self.custom_reminders
            ],
        }

    @classmethod
    def from_dict(cls, data: Optional[Dict[str, Any]]) -> Optional['ReminderSettings']:
        if data is None:
            return None
        return cls(
            enabled=data.get('enabled', True),
            include_deadline_reminders=data.get('include_deadline_reminders', False),
            custom_reminders=[
                ReminderTemplate(
                    id=item['id'],
                    channel=item['channel'],
                    offset_minutes=item['offset_minutes'],
                    recipients=tuple(item.get('recipients', ())),
                    message=item['message'],
                )
                for item in data.get('custom_reminders', [])
            ],
        )


@dataclass
class Reminder:
    """A concrete reminder attached to a scheduled task."""

    id: str
    task_id: str
    template_id: str
    channel: str
    reminder_time: datetime
    recipients: List[str]
    message: str
    sent: bool = False

    def to_dict(self) -> Dict[str, Any]:
        return {
            'id': self.id,
            'task_id': self.task_id,
            'template_id': self.template_id,
            'channel': self.channel,
            'reminder_time': _iso(self.reminder_time),
            'recipients': list(self.recipients),
            'message': self.message,
            'sent': self.sent,
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> 'Reminder':
        return cls(
            id=data['id'],
            task_id=data['task_id'],
            template_id=data['template_id'],
            channel=data['channel'],
            reminder_time=parse_datetime(data['reminder_time']),
            recipients=list(data.get('recipients', [])),
            message=data['message'],
            sent=data.get('sent', False),
        )


@dataclass
class Conflict:
    """A scheduling incompatibility between a request and an existing task."""

    type: ConflictType
    severity: ConflictSeverity
    conflicting_task_id: str
    description: str
    suggested_resolution: str = ''

    def to_dict(self) -> Dict[str, Any]:
        return {
            'type': str(self.type),
            'severity': str(self.severity),
            'conflicting_task_id': self.conflicting_task_id,
            'description': self.description,
            'suggested_resolution': self.suggested_resolution,
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> 'Conflict':
        return cls(
            type=ConflictType(data['type']),
            severity=ConflictSeverity(data['severity']),
            conflicting_task_id=data['conflicting_task_id'],
            description=data['description'],
            suggested_resolution=data.get('suggested_resolution', ''),
        )


@dataclass
class ScheduleRequest:
    """Input to ``TaskSchedulingService.schedule_task``."""

    title: str
    assigned_to: Optional[str]
    assigned_by: Optional[str]
    scheduled_time: Optional[datetime]
    case_id: Optional[str] = None
    task_id: Optional[str] = None
    description: str = ''
    due_date: Optional[datetime] = None
    priority: TaskPriority = TaskPriority.MEDIUM
    status: TaskStatus = TaskStatus.PENDING
    recurrence: Optional[RecurrenceRule] = None
    reminder_settings: Optional[ReminderSettings] = None
    dependencies: List[str] = field(default_factory=list)
    metadata: Dict[str, Any] = field(default_factory=dict)


@dataclass
class ScheduledTask:
    """A task registered with the scheduler."""

    id: str
    task_id: str
    title: str
    scheduled_time: datetime
    assigned_to: str
    assigned_by: str
    case_id: Optional[str] = None
    description: str = ''
    due_date: Optional[datetime] = None
    priority: TaskPriority = TaskPriority.MEDIUM
    status: TaskStatus = TaskStatus.PENDING
    recurrence: Optional[RecurrenceRule] = None
    reminder_settings: Optional[ReminderSettings] = None
    dependencies: List[str] = field(default_factory=list)
    metadata: Dict[str, Any] = field(default_factory=dict)
    reminders: List[Reminder] = field(default_factory=list)
    conflicts: List[Conflict] = field(default_factory=list)
    escalation_level: int = 0
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None
    completed_at: Optional[datetime] = None

    def __post_init__(self):
        self.priority = TaskPriority(self.priority)
        self.status = TaskStatus(self.status)

    @property
    def is_active(self) -> bool:
        return self.status not in TaskStatus.get_completed_statuses()

    def is_overdue(self, now: datetime) -> bool:
        return bool(self.due_date) and self.due_date < now and self.is_active

    @property
    def estimated_hours(self) -> int:
        return TaskPriority.get_estimated_hours()[self.priority]


@dataclass
class ScheduleHistoryEntry:
    action: str
    task_id: str
    user_id: str
    timestamp: datetime
    details: Dict[str, Any] = field(default_factory=dict)


@dataclass
class CalendarEvent:
    id: str
    title: str
    start: datetime
    end: datetime
    color: str
    description: str = ''
    all_day: bool = False
    attendees: List[str] = field(default_factory=list)
    recurring: bool = False
    metadata: Dict[str, Any] = field(default_factory=dict)


@dataclass
class UserWorkload:
    """Committed hours for one assignee and the resulting capacity band."""

    user_id: str
    total_tasks: int
    active_tasks: int
    overdue_tasks: int
    high_priority_tasks: int
    total_hours: float
    available_hours: float
    utilization_rate: float
    capacity_status: CapacityStatus


@dataclass
class OptimizationConstraints:
    max_hours_per_day: Optional[float] = None
    respect_dependencies: bool = True
    unavailable_dates: Dict[str, List[date]] = field(default_factory=dict)
    candidate_users: List[str] = field(default_factory=list)

    def is_unavailable(self, user_id: str, moment: datetime) -> bool:
        return moment.date() in {_as_date(value) for value in self.unavailable_dates.get(user_id, [])}


@dataclass
class OptimizationRequest:
    strategy: OptimizationStrategy
    start: datetime
    end: datetime
    user_id: Optional[str] = None
    case_id: Optional[str] = None
    constraints: OptimizationConstraints = field(default_factory=OptimizationConstraints)


@dataclass
class OptimizationResult:
    """
    Proposed ordering and reassignments for a set of tasks.

    The result is a heuristic proposal; it is not applied and it is not
    guaranteed to be globally optimal.
    """

    strategy: OptimizationStrategy
    optimized_tasks: List[ScheduledTask] = field(default_factory=list)
    reassignments: List[Dict[str, Any]] = field(default_factory=list)
    deferred_tasks: List[str] = field(default_factory=list)
    recommendations: List[str] = field(default_factory=list)
    workloads: Dict[str, UserWorkload] = field(default_factory=dict)

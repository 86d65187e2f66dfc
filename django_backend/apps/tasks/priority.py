"""
Task priority scoring.

A task's score is the sum of six capped factors: deadline proximity, case
urgency, client importance, dependency blockage, assignee workload
pressure and age. The score maps onto a priority tier through fixed
thresholds.
"""

import logging
from dataclasses import asdict, dataclass, field
from typing import Any, Dict, List, Optional, Tuple

from apps.cases.choices import CaseStatus, CaseType
from apps.common.exceptions import NotFound
from apps.common.ports import Clock, SystemClock
from apps.common.utils import days_until
from apps.tasks.choices import ScheduleAction, TaskPriority, TaskStatus
from apps.tasks.entities import ScheduledTask, ScheduleHistoryEntry
from apps.tasks.repositories import InMemoryTaskRepository, PriorityAdjustmentEntry, TaskRepository

logger = logging.getLogger(__name__)

# (case type, case status) -> base priority of work on such cases
CASE_URGENCY_MATRIX = {
    (CaseType.CRIMINAL_DEFENSE, CaseStatus.ACTIVE): TaskPriority.HIGH,
    (CaseType.MEDICAL_MALPRACTICE, CaseStatus.ACTIVE): TaskPriority.HIGH,
    (CaseType.LABOR_DISPUTE, CaseStatus.ACTIVE): TaskPriority.MEDIUM,
    (CaseType.CONTRACT_DISPUTE, CaseStatus.ACTIVE): TaskPriority.MEDIUM,
}

URGENCY_POINTS = {
    TaskPriority.URGENT: 25,
    TaskPriority.HIGH: 20,
    TaskPriority.MEDIUM: 15,
    TaskPriority.LOW: 10,
}

CLIENT_IMPORTANCE_BASELINE = 10

# Lower bounds of each tier, highest first
PRIORITY_THRESHOLDS = (
    (80, TaskPriority.URGENT),
    (60, TaskPriority.HIGH),
    (40, TaskPriority.MEDIUM),
)


def score_to_priority(score: float) -> TaskPriority:
    """Map a score to its tier; higher scores never yield a lower tier."""
    for threshold, priority in PRIORITY_THRESHOLDS:
        if score >= threshold:
            return priority
    return TaskPriority.LOW


@dataclass
class PriorityFactors:
    deadline_proximity: float = 0
    case_urgency: float = 0
    client_importance: float = 0
    dependency_blockage: float = 0
    workload_pressure: float = 0
    age: float = 0

    @property
    def total(self) -> float:
        return (
            self.deadline_proximity + self.case_urgency + self.client_importance
            + self.dependency_blockage + self.workload_pressure + self.age
        )

    def to_dict(self) -> Dict[str, float]:
        return asdict(self)


@dataclass
class PriorityScore:
    task_id: str
    score: float
    factors: PriorityFactors
    reasoning: List[str] = field(default_factory=list)

    @property
    def priority(self) -> TaskPriority:
        return score_to_priority(self.score)


@dataclass
class TaskPriorityResponse:
    """Scored view of a task, as returned by the listing operations."""

    id: str
    title: str
    current_priority: TaskPriority
    calculated_priority: TaskPriority
    priority_score: float
    is_overdue: bool
    due_in_days: Optional[float]
    factors: Dict[str, float]
    recommendations: List[str] = field(default_factory=list)
    case_id: Optional[str] = None
    assigned_to: Optional[str] = None


class TaskPriorityService:
    """
    Computes composite priority scores and priority-ordered task views.

    Case type and status come from the case repository when one is given;
    otherwise from the task's ``case_type`` / ``case_status`` metadata.
    """

    def __init__(
        self,
        repository: Optional[TaskRepository] = None,
        case_repository: Optional[Any] = None,
        clock: Optional[Clock] = None,
    ):
        self.repository = repository or InMemoryTaskRepository()
        self.case_repository = case_repository
        self.clock = clock or SystemClock()

    # ------------------------------------------------------------------
    # Scoring
    # ------------------------------------------------------------------

    def calculate_task_priority(self, task_id: str) -> PriorityScore:
        """
        Score a persisted task.

        Raises:
            NotFound: If the task does not exist
        """
        return self.calculate_priority(self.repository.get(task_id))

    def calculate_priority(self, task: ScheduledTask) -> PriorityScore:
        factors = self._calculate_factors(task)
        score = PriorityScore(
            task_id=task.task_id,
            score=factors.total,
            factors=factors,
            reasoning=self._build_reasoning(factors),
        )
        logger.debug(f"Task {task.task_id} scored {score.score:.1f} ({score.priority})")
        return score

    def _calculate_factors(self, task: ScheduledTask) -> PriorityFactors:
        now = self.clock.now()
        factors = PriorityFactors(client_importance=CLIENT_IMPORTANCE_BASELINE)

        if task.due_date:
            days = days_until(task.due_date, now)
            if task.due_date < now:
                factors.deadline_proximity = 30
            elif days <= 1:
                factors.deadline_proximity = 25
            elif days <= 3:
                factors.deadline_proximity = 20
            elif days <= 7:
                factors.deadline_proximity = 15
            elif days <= 14:
                factors.deadline_proximity = 10

        base_priority = CASE_URGENCY_MATRIX.get(self._case_info(task))
        if base_priority is not None:
            factors.case_urgency = URGENCY_POINTS[base_priority]

        working = TaskStatus.get_working_statuses()
        blocked = [
            other for other in self.repository.list(statuses=working)
            if task.task_id in other.dependencies
        ]
        factors.dependency_blockage = min(20, len(blocked) * 5)

        active_count = len(self.repository.list(assigned_to=task.assigned_to, statuses=working))
        if active_count > 15:
            factors.workload_pressure = 15
        elif active_count > 10:
            factors.workload_pressure = 10
        elif active_count > 5:
            factors.workload_pressure = 5

        if task.created_at:
            age_in_days = (now - task.created_at).total_seconds() / 86400
            factors.age = min(15, max(0.0, age_in_days * 0.5))

        return factors

    def _case_info(self, task: ScheduledTask) -> Tuple[Optional[str], Optional[str]]:
        if self.case_repository is not None and task.case_id:
            try:
                case = self.case_repository.get(task.case_id)
                return CaseType(case.case_type), CaseStatus(case.status)
            except NotFound:
                logger.debug(f"Case {task.case_id} not found, using task metadata for urgency")
        case_type = task.metadata.get('case_type')
        case_status = task.metadata.get('case_status')
        try:
            return (
                CaseType(case_type) if case_type else None,
                CaseStatus(case_status) if case_status else None,
            )
        except ValueError:
            return None, None

    @staticmethod
    def _build_reasoning(factors: PriorityFactors) -> List[str]:
        reasoning = []
        if factors.deadline_proximity >= 25:
            reasoning.append('Very urgent deadline')
        elif factors.deadline_proximity >= 15:
            reasoning.append('Approaching deadline')
        if factors.case_urgency >= 20:
            reasoning.append('High priority case type')
        if factors.dependency_blockage >= 10:
            reasoning.append('Blocking other tasks')
        if factors.workload_pressure >= 10:
            reasoning.append('High workload pressure')
        if factors.age >= 10:
            reasoning.append('Task has been pending for a long time')
        return reasoning

    @staticmethod
    def generate_recommendations(task: ScheduledTask, score: PriorityScore) -> List[str]:
        recommendations = []
        if score.factors.deadline_proximity >= 25:
            recommendations.append('Immediate attention required - deadline is very close or passed')
        if score.factors.dependency_blockage >= 10:
            recommendations.append('Complete this task to unblock dependent tasks')
        if score.factors.workload_pressure >= 15:
            recommendations.append('Consider delegating or rescheduling due to high workload')
        if score.score >= 60 and task.priority == TaskPriority.LOW:
            recommendations.append('Consider increasing priority - calculated score suggests higher importance')
        if score.score < 40 and task.priority == TaskPriority.HIGH:
            recommendations.append('Consider decreasing priority - calculated score suggests lower importance')
        return recommendations

    def _to_response(self, task: ScheduledTask, due_in_days: Optional[float] = None) -> TaskPriorityResponse:
        now = self.clock.now()
        score = self.calculate_priority(task)
        if due_in_days is None and task.due_date:
            due_in_days = days_until(task.due_date, now)
        return TaskPriorityResponse(
            id=task.task_id,
            title=task.title,
            current_priority=task.priority,
            calculated_priority=score.priority,
            priority_score=score.score,
            is_overdue=task.is_overdue(now),
            due_in_days=due_in_days,
            factors=score.factors.to_dict(),
            recommendations=self.generate_recommendations(task, score),
            case_id=task.case_id,
            assigned_to=task.assigned_to,
        )

    # ------------------------------------------------------------------
    # Views
    # ------------------------------------------------------------------

    def prioritize_tasks(self, case_id: Optional[str] = None, user_id: Optional[str] = None) -> List[TaskPriorityResponse]:
        """
        Score pending and in-progress tasks, highest score first.

        Args:
            case_id: Restrict to one case
            user_id: Restrict to one assignee

        Returns:
            List of scored task views
        """
        tasks = self.repository.list(
            case_id=case_id,
            assigned_to=user_id,
            statuses=TaskStatus.get_working_statuses(),
        )
        responses = [self._to_response(task) for task in tasks]
        responses.sort(key=lambda response: response.priority_score, reverse=True)
        return responses

    def get_priority_based_task_list(self, user_id: Optional[str] = None, limit: int = 20) -> List[TaskPriorityResponse]:
        return self.prioritize_tasks(user_id=user_id)[:limit]

    def get_overdue_tasks(self, case_id: Optional[str] = None) -> List[TaskPriorityResponse]:
        """Open tasks past their due date, most overdue first."""
        now = self.clock.now()
        tasks = [
            task for task in self.repository.list(case_id=case_id)
            if task.is_overdue(now)
        ]
        responses = [self._to_response(task) for task in tasks]
        responses.sort(key=lambda response: response.due_in_days or 0)
        return responses

    def get_urgent_tasks(self, hours_threshold: int = 24) -> List[TaskPriorityResponse]:
        """Pending or in-progress tasks due within ``hours_threshold`` hours."""
        now = self.clock.now()
        responses = []
        for task in self.repository.list(statuses=TaskStatus.get_working_statuses()):
            if not task.due_date:
                continue
            hours_until_due = (task.due_date - now).total_seconds() / 3600
            if hours_until_due <= hours_threshold:
                responses.append(self._to_response(task, due_in_days=hours_until_due / 24))
        responses.sort(key=lambda response: response.due_in_days or 0)
        return responses

    # ------------------------------------------------------------------
    # Updates
    # ------------------------------------------------------------------

    def auto_prioritize_case_tasks(self, case_id: str) -> int:
        """
        Recompute and apply tiers for a case's pending and in-progress tasks.

        Manual overrides are replaced by the recomputed tier.

        Returns:
            Number of tasks whose priority changed
        """
        updated_count = 0
        with self.repository.lock():
            tasks = self.repository.list(case_id=case_id, statuses=TaskStatus.get_working_statuses())
            for task in tasks:
                calculated = self.calculate_priority(task).priority
                had_override = task.metadata.pop('priority_override', None) is not None
                if calculated == task.priority and not had_override:
                    continue
                if calculated != task.priority:
                    updated_count += 1
                task.priority = calculated
                task.updated_at = self.clock.now()
                self.repository.save(task)

        logger.info(f"Auto-prioritized case {case_id}: {updated_count} task(s) changed")
        return updated_count

    def adjust_task_priority(self, task_id: str, new_priority: TaskPriority, reason: str, adjusted_by: str) -> ScheduledTask:
        """
        Manually set a task's priority and record the override.

        The override holds until the next recompute of the task's case.

        Raises:
            NotFound: If the task does not exist
        """
        new_priority = TaskPriority(new_priority)
        now = self.clock.now()
        with self.repository.lock():
            task = self.repository.get(task_id)
            previous = task.priority
            task.priority = new_priority
            task.updated_at = now
            task.metadata['priority_override'] = {
                'priority': str(new_priority),
                'reason': reason,
                'adjusted_by': adjusted_by,
                'adjusted_at': now.isoformat(),
            }
            self.repository.save(task)
            self.repository.record_adjustment(PriorityAdjustmentEntry(
                task_id=task_id,
                previous_priority=str(previous),
                new_priority=str(new_priority),
                reason=reason,
                adjusted_by=adjusted_by,
                timestamp=now,
            ))
            self.repository.record_event(ScheduleHistoryEntry(
                action=ScheduleAction.PRIORITY_ADJUSTED,
                task_id=task_id,
                user_id=adjusted_by,
                timestamp=now,
                details={'from': str(previous), 'to': str(new_priority), 'reason': reason},
            ))

        logger.info(f"Priority of task {task_id} changed from {previous} to {new_priority} by {adjusted_by}: {reason}")
        return task

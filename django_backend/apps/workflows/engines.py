"""
Case and task orchestration.

``CaseTaskOrchestrator`` ties the case state machine to task generation,
business rules, scheduling, priority scoring and notifications:

- a phase transition is validated and committed, then the new phase's
  tasks are generated, passed through the rule engine and scheduled
- a task completion is checked against the rules, and the tasks waiting
  on it are re-evaluated
- periodic automation flags overdue tasks, escalates them and expands
  recurring series

Entry points return structured results. A failing step is reported in
the result's ``errors`` or ``warnings`` and never raised.
"""

import logging
import math
import uuid
from contextlib import contextmanager
from dataclasses import dataclass, field, replace
from datetime import datetime, timedelta
from functools import lru_cache
from typing import Any, Dict, Iterator, List, Optional, Tuple

from django.utils.module_loading import import_string

from apps.cases.choices import CasePhase, CaseStatus, CaseType
from apps.cases.services import CaseTransitionService
from apps.cases.state_machine import CaseState
from apps.common.conf import get_setting
from apps.common.exceptions import CaseManagementException, NotFound
from apps.common.ports import Clock, IdentityPort, SystemClock
from apps.common.utils import safe_divide
from apps.notifications.services import NotificationPayload, NotificationService
from apps.tasks.choices import TaskPriority, TaskStatus
from apps.tasks.entities import ScheduledTask, ScheduleHistoryEntry, ScheduleRequest
from apps.tasks.priority import TaskPriorityService
from apps.tasks.scheduling import TaskSchedulingService
from apps.users.choices import UserRole
from apps.users.directory import user_directory

from .choices import ActionType, HealthStatus, TriggerEventType
from .defaults import TASK_COMPLETION_ATTEMPTED
from .entities import (
    ActionResult,
    CreatedTask,
    RuleEvaluationResult,
    TaskTemplate,
    TriggerEvent,
    UpdatedTask,
    WorkflowContext,
    WorkflowResult,
)
from .rules import BusinessRuleEngine
from .templates import TASKS_CREATED_TEMPLATE, WorkflowEngine, tasks_created_notice, workflow_engine

logger = logging.getLogger(__name__)

PHASE_BASE_DAYS = {
    CasePhase.INTAKE_RISK_ASSESSMENT: 3,
    CasePhase.PRE_PROCEEDING_PREPARATION: 7,
    CasePhase.FORMAL_PROCEEDINGS: 14,
    CasePhase.RESOLUTION_POST_PROCEEDING: 10,
    CasePhase.CLOSURE_REVIEW_ARCHIVING: 5,
}
DEFAULT_PHASE_DAYS = 7

CASE_TYPE_MULTIPLIERS = {
    CaseType.CRIMINAL_DEFENSE: 1.2,
    CaseType.DIVORCE_FAMILY: 1.5,
    CaseType.MEDICAL_MALPRACTICE: 2.0,
    CaseType.CONTRACT_DISPUTE: 1.0,
    CaseType.LABOR_DISPUTE: 1.3,
    CaseType.INHERITANCE_DISPUTE: 1.4,
    CaseType.ADMINISTRATIVE_CASE: 1.1,
    CaseType.DEMOLITION_CASE: 0.8,
    CaseType.SPECIAL_MATTERS: 1.8,
}

UPCOMING_DEADLINE_WINDOW = timedelta(days=7)

# Task metadata keys exposed to rule conditions as ``task.<key>``.
TASK_FACT_KEYS = ('category', 'value', 'required_expertise', 'estimated_duration')

SYSTEM_ACTOR = 'system'


@dataclass
class CaseTaskIntegration:
    """A request to move a case to another phase and run its automation."""

    case_id: str
    to_phase: CasePhase
    user_id: str
    user_role: UserRole
    from_phase: Optional[CasePhase] = None
    target_status: Optional[CaseStatus] = None
    reason: Optional[str] = None
    metadata: Dict[str, Any] = field(default_factory=dict)


@dataclass
class PhaseTransitionResult:
    case_id: str
    success: bool = False
    phase_transition_valid: bool = False
    from_phase: Optional[CasePhase] = None
    to_phase: Optional[CasePhase] = None
    tasks_created: List[ScheduledTask] = field(default_factory=list)
    tasks_updated: List[UpdatedTask] = field(default_factory=list)
    notifications_sent: int = 0
    errors: List[str] = field(default_factory=list)
    warnings: List[str] = field(default_factory=list)
    error_code: Optional[str] = None
    workflow_results: List[WorkflowResult] = field(default_factory=list)
    rule_results: List[RuleEvaluationResult] = field(default_factory=list)
    priority_scores: Dict[str, float] = field(default_factory=dict)


@dataclass
class CompletionResult:
    task_id: str
    success: bool = False
    completed: bool = False
    follow_up_tasks: List[ScheduledTask] = field(default_factory=list)
    updated_tasks: List[UpdatedTask] = field(default_factory=list)
    notifications: List[NotificationPayload] = field(default_factory=list)
    errors: List[str] = field(default_factory=list)
    warnings: List[str] = field(default_factory=list)
    rule_results: List[RuleEvaluationResult] = field(default_factory=list)


@dataclass
class TaskWorkflowOrchestration:
    case_id: str
    phase: CasePhase
    active_tasks: int
    completed_tasks: int
    overdue_tasks: int
    upcoming_deadlines: int
    automation_rules_triggered: int
    business_rules_evaluated: int
    workload_balance: float


@dataclass
class CaseTaskStatistics:
    total_tasks: int
    active_tasks: int
    completed_tasks: int
    overdue_tasks: int
    high_priority_tasks: int
    automation_efficiency: float
    average_completion_time: float
    workflow_health: float


@dataclass
class AutomationReport:
    """Outcome of a periodic automation run."""

    recurring_tasks_created: int = 0
    overdue_tasks_flagged: int = 0
    tasks_evaluated: int = 0
    escalations: int = 0
    follow_up_tasks: int = 0
    notifications_sent: int = 0
    errors: List[str] = field(default_factory=list)


@dataclass
class AppliedIntents:
    """What applying a batch of rule intents produced."""

    updated: List[UpdatedTask] = field(default_factory=list)
    follow_ups: List[CreatedTask] = field(default_factory=list)
    # (notification spec, assignee the ``assignee`` token resolves to)
    notifications: List[Tuple[Dict[str, Any], Optional[str]]] = field(default_factory=list)
    errors: List[str] = field(default_factory=list)


def _flatten(results: List[RuleEvaluationResult]) -> Iterator[RuleEvaluationResult]:
    for result in results:
        yield result
        yield from _flatten(result.cascaded_results)


def _intents(results: List[RuleEvaluationResult]) -> Iterator[Tuple[str, ActionResult]]:
    for result in _flatten(results):
        for intent in result.intents:
            yield result.rule_id, intent


@contextmanager
def _collect_errors(step: str, errors: List[str]) -> Iterator[None]:
    """Record an unexpected failure of one automation step instead of raising it."""
    try:
        yield
    except Exception as e:
        logger.exception(f"{step} failed: {e}")
        errors.append(f"{step} failed: {e}")


class CaseTaskOrchestrator:
    """
    Coordinates the case and task engines.

    Every collaborator can be injected; the defaults are in-memory
    services sharing one clock.
    """

    def __init__(
        self,
        case_service: Optional[CaseTransitionService] = None,
        workflow_engine: Optional[WorkflowEngine] = None,
        rule_engine: Optional[BusinessRuleEngine] = None,
        scheduler: Optional[TaskSchedulingService] = None,
        priority_service: Optional[TaskPriorityService] = None,
        notifications: Optional[NotificationService] = None,
        identity: Optional[IdentityPort] = None,
        clock: Optional[Clock] = None,
    ):
        self.clock = clock or SystemClock()
        self.identity = identity
        self.case_service = case_service or CaseTransitionService(clock=self.clock)
        self.workflow_engine = workflow_engine or WorkflowEngine(clock=self.clock)
        self.rule_engine = rule_engine or BusinessRuleEngine(identity=identity, clock=self.clock)
        self.scheduler = scheduler or TaskSchedulingService(identity=identity, clock=self.clock)
        self.priority_service = priority_service or TaskPriorityService(
            repository=self.scheduler.repository,
            case_repository=self.case_service.repository,
            clock=self.clock,
        )
        self.notifications = notifications or NotificationService(identity=identity, clock=self.clock)

    # ------------------------------------------------------------------
    # Phase transitions
    # ------------------------------------------------------------------

    def handle_case_phase_transition(self, integration: CaseTaskIntegration) -> PhaseTransitionResult:
        """
        Move a case to a new phase and run the phase's task automation.

        The transition is validated and committed first; nothing else runs
        if it is rejected. Generated tasks are evaluated against the
        business rules, their intents applied, and the tasks scheduled.

        Args:
            integration: Transition request

        Returns:
            PhaseTransitionResult aggregating every step's outcome
        """
        result = PhaseTransitionResult(case_id=integration.case_id, to_phase=integration.to_phase)
        try:
            self.case_service.get_case(integration.case_id)
        except NotFound as e:
            result.errors.append(e.message)
            result.error_code = e.code
            return result

        with self.case_service.repository.lock(integration.case_id):
            current = self.case_service.get_case(integration.case_id)
            if integration.from_phase and CasePhase(integration.from_phase) != current.phase:
                result.from_phase = current.phase
                result.errors.append(
                    f"Case {current.case_id} is in phase {current.phase}, not {integration.from_phase}"
                )
                result.error_code = 'stale_phase'
                return result

            transition = self.case_service.request_transition(
                case_id=integration.case_id,
                target_phase=integration.to_phase,
                user_id=integration.user_id,
                user_role=integration.user_role,
                target_status=integration.target_status,
                reason=integration.reason,
                metadata=integration.metadata,
            )
            result.from_phase = transition.from_phase
            result.warnings.extend(transition.warnings)
            if not transition.success:
                result.errors.extend(transition.errors or [transition.message])
                result.error_code = transition.error_code
                return result

            result.phase_transition_valid = True
            self._run_phase_automation(transition.case, transition.from_phase, integration, result)

        result.success = not result.errors
        logger.info(
            f"Phase transition of case {integration.case_id} to {integration.to_phase}: "
            f"{len(result.tasks_created)} task(s) created, {result.notifications_sent} notification(s), "
            f"{len(result.errors)} error(s)"
        )
        return result

    def _run_phase_automation(
        self,
        case: CaseState,
        previous_phase: Optional[CasePhase],
        integration: CaseTaskIntegration,
        result: PhaseTransitionResult,
    ) -> None:
        now = self.clock.now()
        event = TriggerEvent(
            TriggerEventType.PHASE_CHANGED,
            {'from_phase': str(previous_phase) if previous_phase else None, 'to_phase': str(case.phase)},
        )
        context = WorkflowContext(
            case_id=case.case_id,
            user_id=integration.user_id,
            user_role=integration.user_role,
            case_type=case.case_type,
            phase=case.phase,
            previous_phase=previous_phase,
            timestamp=now,
            trigger_event=event,
            metadata={
                **self._case_facts(case, integration.user_id, integration.user_role),
                'event': {'type': str(event.type), **event.details},
            },
        )

        # The phase is already committed: from here on a failing step is
        # recorded in ``result.errors`` and the remaining steps still run.
        drafts: List[CreatedTask] = []
        notices: List[Tuple[Dict[str, Any], Optional[str]]] = []
        with _collect_errors('Task generation', result.errors):
            workflow = self.workflow_engine.process_phase_transition(context)
            result.workflow_results.append(workflow)
            result.errors.extend(workflow.errors)
            drafts = list(workflow.created_tasks)
            notices.extend(
                (notice, None) for notice in workflow.notifications
                if notice.get('template') != TASKS_CREATED_TEMPLATE
            )

        # Draft notices are only sent once their task is scheduled.
        planned: List[Tuple[CreatedTask, List[Tuple[Dict[str, Any], Optional[str]]]]] = []
        follow_ups: List[CreatedTask] = []
        for draft in drafts:
            draft_notices = []
            with _collect_errors(f"Rule evaluation for task '{draft.title}'", result.errors):
                rule_results = self.rule_engine.evaluate_rules(self._draft_context(context, draft))
                result.rule_results.extend(rule_results)
                self._collect_rule_issues(rule_results, result.warnings)
                applied = self._apply_to_draft(draft, rule_results, context)
                follow_ups.extend(applied.follow_ups)
                draft_notices = applied.notifications
            planned.append((draft, draft_notices))
        planned.extend((follow_up, []) for follow_up in follow_ups)

        if not drafts:
            with _collect_errors('Rule evaluation', result.errors):
                rule_results = self.rule_engine.evaluate_rules(context)
                result.rule_results.extend(rule_results)
                self._collect_rule_issues(rule_results, result.warnings)
                notices.extend(self._notification_intents(rule_results, assignee_id=None))

        for draft, draft_notices in planned:
            with _collect_errors(f"Scheduling task '{draft.title}'", result.errors):
                task = self._schedule_draft(draft, case, now, result.errors)
                if task is not None:
                    result.tasks_created.append(task)
                    notices.extend(draft_notices)
                    result.priority_scores[task.task_id] = self.priority_service.calculate_priority(task).score

        if result.tasks_created:
            notices.insert(0, (tasks_created_notice(context, len(result.tasks_created)), None))

        with _collect_errors('Notification delivery', result.errors):
            payloads = self._build_payloads(notices, requester_id=integration.user_id, case=case)
            result.notifications_sent = self.notifications.send_many(payloads)

        with _collect_errors('Workload review', result.errors):
            orchestration = self.get_task_workflow_orchestration(case.case_id)
            if orchestration.overdue_tasks > 0:
                result.warnings.append(f"Case has {orchestration.overdue_tasks} overdue tasks")
            if orchestration.workload_balance > get_setting('HIGH_WORKLOAD_THRESHOLD'):
                result.warnings.append('High workload detected for assigned team members')

    def calculate_default_due_date(
        self,
        phase: CasePhase,
        case_type: CaseType,
        start: Optional[datetime] = None,
    ) -> datetime:
        """Phase base days scaled by the case type multiplier, rounded up to whole days."""
        base_days = PHASE_BASE_DAYS.get(CasePhase(phase), DEFAULT_PHASE_DAYS)
        multiplier = CASE_TYPE_MULTIPLIERS.get(CaseType(case_type), 1.0)
        days = math.ceil(round(base_days * multiplier, 6))
        return (start or self.clock.now()) + timedelta(days=days)

    # ------------------------------------------------------------------
    # Task completion
    # ------------------------------------------------------------------

    def handle_task_completion(
        self,
        task_id: str,
        case_id: Optional[str],
        user_id: str,
        user_role: Optional[UserRole] = None,
        metadata: Optional[Dict[str, Any]] = None,
    ) -> CompletionResult:
        """
        Complete a task unless a rule requires a review first.

        Rules see the task as it would be once completed, with an
        ``event.type`` of ``task_completion_attempted``. A requested review
        is scheduled as a follow-up task and the completion is held back.
        Once completed, tasks waiting on this one are re-evaluated.
        """
        result = CompletionResult(task_id=task_id)
        task = self.scheduler.repository.find(task_id)
        if task is None or (case_id and task.case_id != case_id):
            result.errors.append('Task not found')
            return result
        if not task.is_active:
            result.errors.append(f"Task {task_id} is already {task.status}")
            return result

        case = self._find_case(task.case_id)
        now = self.clock.now()
        event = TriggerEvent(
            TriggerEventType.TASK_STATUS_CHANGE,
            {'old_status': str(task.status), 'new_status': str(TaskStatus.COMPLETED)},
        )
        facts = self._task_facts(task)
        facts.update(status=str(TaskStatus.COMPLETED), previous_status=str(task.status))
        context = WorkflowContext(
            case_id=task.case_id,
            task_id=task_id,
            user_id=user_id,
            user_role=user_role,
            case_type=case.case_type if case else None,
            phase=case.phase if case else None,
            timestamp=now,
            trigger_event=event,
            metadata={
                **(self._case_facts(case, user_id, user_role) if case else {}),
                **(metadata or {}),
                'task': facts,
                'event': {'type': TASK_COMPLETION_ATTEMPTED, **event.details},
            },
        )

        applied = None
        with _collect_errors('Rule evaluation', result.errors):
            rule_results = self.rule_engine.evaluate_rules(context)
            result.rule_results.extend(rule_results)
            self._collect_rule_issues(rule_results, result.warnings)
            applied = self._apply_to_task(task, rule_results, context)
        if applied is None:
            # Without a rule verdict the task is left open.
            return result

        reviews = [draft for draft in applied.follow_ups if draft.metadata.get('review_of') == task_id]
        if reviews:
            review_types = ', '.join(draft.metadata['review_type'] for draft in reviews)
            result.warnings.append(f"Task {task_id} requires {review_types} review before completion")
        else:
            try:
                self.scheduler.complete_task(task_id, user_id=user_id)
                result.completed = True
            except CaseManagementException as e:
                result.errors.append(f"Failed to complete task {task_id}: {e.message}")
            if result.completed:
                with _collect_errors('Dependent task activation', result.errors):
                    self._activate_dependents(task, context, result, applied)

        for draft in applied.follow_ups:
            with _collect_errors(f"Scheduling task '{draft.title}'", result.errors):
                scheduled = self._schedule_draft(draft, case, now, result.errors)
                if scheduled is not None:
                    result.follow_up_tasks.append(scheduled)

        result.updated_tasks.extend(applied.updated)
        result.errors.extend(applied.errors)
        with _collect_errors('Notification delivery', result.errors):
            result.notifications = self._build_payloads(applied.notifications, requester_id=user_id, case=case)
            self.notifications.send_many(result.notifications)

        result.success = not result.errors
        logger.info(
            f"Completion of task {task_id}: completed={result.completed}, "
            f"{len(result.follow_up_tasks)} follow-up task(s), {len(result.errors)} error(s)"
        )
        return result

    def _activate_dependents(
        self,
        task: ScheduledTask,
        context: WorkflowContext,
        result: CompletionResult,
        applied: AppliedIntents,
    ) -> None:
        waiting = self.scheduler.repository.list(
            case_id=task.case_id,
            statuses=[TaskStatus.WAITING_DEPENDENCIES],
        )
        for dependent in waiting:
            if task.task_id not in dependent.dependencies:
                continue
            dependent_context = replace(
                context,
                task_id=dependent.task_id,
                trigger_event=TriggerEvent(
                    TriggerEventType.TASK_STATUS_CHANGE,
                    {'dependency_completed': task.task_id},
                ),
                metadata={
                    **context.metadata,
                    'task': self._task_facts(dependent),
                    'event': {'type': 'dependency_completed', 'dependency_id': task.task_id},
                },
            )
            rule_results = self.rule_engine.evaluate_rules(dependent_context)
            result.rule_results.extend(rule_results)
            self._collect_rule_issues(rule_results, result.warnings)
            dependent_applied = self._apply_to_task(dependent, rule_results, dependent_context)
            applied.updated.extend(dependent_applied.updated)
            applied.follow_ups.extend(dependent_applied.follow_ups)
            applied.notifications.extend(dependent_applied.notifications)
            applied.errors.extend(dependent_applied.errors)

    # ------------------------------------------------------------------
    # Periodic automation
    # ------------------------------------------------------------------

    def process_overdue_tasks(self) -> AutomationReport:
        """
        Flag tasks past their due date and run the rules on every overdue
        task with a ``task_overdue`` trigger.
        """
        report = AutomationReport()
        with _collect_errors('Overdue task flagging', report.errors):
            report.overdue_tasks_flagged = len(self.scheduler.mark_overdue_tasks())

        for task in self.scheduler.repository.list(statuses=[TaskStatus.OVERDUE]):
            with _collect_errors(f"Overdue processing of task {task.task_id}", report.errors):
                self._process_overdue_task(task, report)

        if report.tasks_evaluated:
            logger.info(
                f"Processed {report.tasks_evaluated} overdue task(s): {report.escalations} escalated, "
                f"{len(report.errors)} error(s)"
            )
        return report

    def _process_overdue_task(self, task: ScheduledTask, report: AutomationReport) -> None:
        now = self.clock.now()
        case = self._find_case(task.case_id)
        event = TriggerEvent(
            TriggerEventType.TASK_OVERDUE,
            {'due_date': task.due_date.isoformat() if task.due_date else None},
        )
        context = WorkflowContext(
            case_id=task.case_id,
            task_id=task.task_id,
            case_type=case.case_type if case else None,
            phase=case.phase if case else None,
            timestamp=now,
            trigger_event=event,
            metadata={
                **(self._case_facts(case, None, None) if case else {}),
                'task': self._task_facts(task),
                'event': {'type': str(event.type), **event.details},
            },
        )
        rule_results = self.rule_engine.evaluate_rules(context)
        report.tasks_evaluated += 1

        applied = self._apply_to_task(task, rule_results, context)
        report.escalations += sum(1 for update in applied.updated if 'escalation_level' in update.changes)
        report.errors.extend(applied.errors)
        for draft in applied.follow_ups:
            if self._schedule_draft(draft, case, now, report.errors) is not None:
                report.follow_up_tasks += 1
        payloads = self._build_payloads(applied.notifications, requester_id=None, case=case)
        report.notifications_sent += self.notifications.send_many(payloads)

    def process_scheduled_automations(self) -> AutomationReport:
        """Expand recurring series, then process overdue tasks."""
        recurring = self.scheduler.process_recurring_tasks()
        report = self.process_overdue_tasks()
        report.recurring_tasks_created = len(recurring)
        return report

    # ------------------------------------------------------------------
    # Reporting
    # ------------------------------------------------------------------

    def get_task_workflow_orchestration(self, case_id: str) -> TaskWorkflowOrchestration:
        """
        Task counts and team load of one case.

        Raises:
            NotFound: If the case does not exist
        """
        case = self.case_service.get_case(case_id)
        now = self.clock.now()
        tasks = self.scheduler.get_scheduled_tasks(case_id=case_id)

        assignees = sorted({task.assigned_to for task in tasks if task.is_active and task.assigned_to})
        utilization = [self.scheduler.get_user_workload(user_id).utilization_rate for user_id in assignees]
        rules = self.rule_engine.get_rules(active_only=False)

        return TaskWorkflowOrchestration(
            case_id=case_id,
            phase=case.phase,
            active_tasks=sum(1 for task in tasks if task.status in TaskStatus.get_working_statuses()),
            completed_tasks=sum(1 for task in tasks if task.status == TaskStatus.COMPLETED),
            overdue_tasks=sum(1 for task in tasks if task.is_overdue(now)),
            upcoming_deadlines=sum(
                1 for task in tasks
                if task.is_active and task.due_date and now <= task.due_date <= now + UPCOMING_DEADLINE_WINDOW
            ),
            automation_rules_triggered=sum(1 for rule in rules if rule.trigger_count > 0),
            business_rules_evaluated=sum(1 for rule in rules if rule.is_active),
            workload_balance=min(safe_divide(sum(utilization), len(utilization)) / 100, 1.0),
        )

    def get_case_task_statistics(self, case_id: str) -> CaseTaskStatistics:
        now = self.clock.now()
        tasks = self.scheduler.get_scheduled_tasks(case_id=case_id)
        total = len(tasks)

        completed = [task for task in tasks if task.status == TaskStatus.COMPLETED]
        timed = [task for task in completed if task.completed_at]
        completion_hours = sum(
            (task.completed_at - task.scheduled_time).total_seconds() / 3600 for task in timed
        )
        overdue = sum(
            1 for task in tasks
            if task.due_date and task.due_date < now and task.status not in TaskStatus.get_completed_statuses()
        )
        automation_efficiency = safe_divide(
            sum(1 for task in tasks if task.metadata.get('auto_generated')) * 100, total
        )
        overdue_penalty = min(overdue * 10, 50)
        efficiency_bonus = min(automation_efficiency * 0.3, 30)

        return CaseTaskStatistics(
            total_tasks=total,
            active_tasks=sum(1 for task in tasks if task.status in TaskStatus.get_working_statuses()),
            completed_tasks=len(completed),
            overdue_tasks=overdue,
            high_priority_tasks=sum(
                1 for task in tasks if task.priority in (TaskPriority.HIGH, TaskPriority.URGENT)
            ),
            automation_efficiency=automation_efficiency,
            average_completion_time=safe_divide(completion_hours, len(timed)),
            workflow_health=max(0.0, 100 - overdue_penalty + efficiency_bonus),
        )

    def get_integration_health(self) -> Dict[str, Any]:
        templates = self.workflow_engine.get_templates()
        stats = self.scheduler.get_schedule_stats()
        active_rules = self.rule_engine.get_rules(active_only=True)
        rule_stats = self.rule_engine.get_stats()
        transitions = self.case_service.state_machine.get_all_transitions()

        health = {
            'workflow_engine': {
                'status': HealthStatus.HEALTHY if templates else HealthStatus.DEGRADED,
                'templates_count': len(templates),
            },
            'task_scheduling': {
                'status': HealthStatus.HEALTHY if stats.conflicts <= stats.total_tasks else HealthStatus.DEGRADED,
                'scheduled_tasks': stats.total_tasks,
                'conflicts': stats.conflicts,
            },
            'business_rules': {
                'status': HealthStatus.HEALTHY if active_rules else HealthStatus.DEGRADED,
                'active_rules': len(active_rules),
                'evaluation_rate': safe_divide(rule_stats.successful_executions * 100, rule_stats.total_evaluations),
            },
            'case_integration': {
                'status': HealthStatus.HEALTHY if transitions else HealthStatus.DEGRADED,
                'supported_case_types': len(CaseType.values),
                'phase_transitions': len(transitions),
            },
        }
        healthy = all(section['status'] == HealthStatus.HEALTHY for section in health.values())
        health['overall'] = HealthStatus.HEALTHY if healthy else HealthStatus.DEGRADED
        return health

    def get_available_phase_transitions(self, case_id: str, user_role: UserRole) -> List[CasePhase]:
        case = self.case_service.get_case(case_id)
        return self.case_service.state_machine.get_available_transitions(case, user_role)

    def get_phase_requirements(self, phase: CasePhase, case_type: CaseType) -> List[str]:
        return self.case_service.state_machine.get_phase_requirements(phase, case_type)

    def get_case_task_templates(self, case_type: CaseType, phase: Optional[CasePhase] = None) -> List[TaskTemplate]:
        return self.workflow_engine.get_templates(case_type=case_type, phase=phase)

    def get_case_workflow_history(self, case_id: str) -> List[Dict[str, Any]]:
        return self.workflow_engine.get_workflow_history(case_id)

    def get_case_rule_history(self, case_id: str, limit: int = 100) -> List[Any]:
        return [
            record for record in self.rule_engine.get_evaluation_history(limit=get_setting('RULE_HISTORY_LIMIT'))
            if record.context.case_id == case_id
        ][:limit]

    def get_case_schedule_history(self, case_id: str) -> List[ScheduleHistoryEntry]:
        task_ids = {task.task_id for task in self.scheduler.get_scheduled_tasks(case_id=case_id)}
        return [entry for entry in self.scheduler.get_schedule_history() if entry.task_id in task_ids]

    # ------------------------------------------------------------------
    # Facts
    # ------------------------------------------------------------------

    def _find_case(self, case_id: Optional[str]) -> Optional[CaseState]:
        if not case_id:
            return None
        try:
            return self.case_service.get_case(case_id)
        except NotFound:
            logger.warning(f"Case {case_id} referenced by a task was not found")
            return None

    @staticmethod
    def _case_facts(case: CaseState, user_id: Optional[str], user_role: Optional[UserRole]) -> Dict[str, Any]:
        return {
            **case.metadata,
            'case_title': case.title,
            'case': {
                'id': case.case_id,
                'type': str(case.case_type),
                'phase': str(case.phase),
                'status': str(case.status),
                'title': case.title,
            },
            'user': {'id': user_id, 'role': str(user_role) if user_role else None},
        }

    def _assignee_role(self, user_id: Optional[str]) -> Optional[str]:
        if self.identity is None or not user_id:
            return None
        user = self.identity.get_user(user_id)
        return str(user.role) if user else None

    def _task_facts(self, task: ScheduledTask) -> Dict[str, Any]:
        completed = 0
        for dependency_id in task.dependencies:
            dependency = self.scheduler.repository.find(dependency_id)
            if dependency is not None and dependency.status == TaskStatus.COMPLETED:
                completed += 1

        facts = {
            'id': task.task_id,
            'title': task.title,
            'assigned_to': task.assigned_to,
            'assignee_role': self._assignee_role(task.assigned_to),
            'priority': str(task.priority),
            'status': str(task.status),
            'due_date': task.due_date,
            'escalation_level': task.escalation_level,
            'dependencies': list(task.dependencies) or None,
            'completed_dependencies': completed,
        }
        facts.update({key: task.metadata[key] for key in TASK_FACT_KEYS if key in task.metadata})
        return facts

    def _draft_context(self, context: WorkflowContext, draft: CreatedTask) -> WorkflowContext:
        # A generated task's initiator is only a placeholder assignee.
        provisional = bool(draft.metadata.get('auto_generated')) and draft.assigned_to == context.user_id
        facts = {
            'id': draft.id,
            'title': draft.title,
            'assigned_to': None if provisional else draft.assigned_to,
            'provisional_assignee': draft.assigned_to if provisional else None,
            'assignee_role': None if provisional else self._assignee_role(draft.assigned_to),
            'priority': str(draft.priority),
            'status': str(draft.status),
            'due_date': draft.due_date,
            'escalation_level': draft.escalation_level,
            'dependencies': list(draft.dependencies) or None,
            'completed_dependencies': 0,
            'template_id': draft.metadata.get('template_id'),
        }
        facts.update({key: draft.metadata[key] for key in TASK_FACT_KEYS if key in draft.metadata})
        return replace(context, task_id=draft.id, metadata={**context.metadata, 'task': facts})

    @staticmethod
    def _collect_rule_issues(results: List[RuleEvaluationResult], warnings: List[str]) -> None:
        for result in _flatten(results):
            warnings.extend(f"Rule {result.rule_id}: {error}" for error in result.errors)
            warnings.extend(f"Rule {result.rule_id}: {warning}" for warning in result.warnings)

    # ------------------------------------------------------------------
    # Applying rule intents
    # ------------------------------------------------------------------

    def _apply_to_draft(
        self,
        draft: CreatedTask,
        results: List[RuleEvaluationResult],
        context: WorkflowContext,
    ) -> AppliedIntents:
        """Fold rule intents into a task that has not been scheduled yet."""
        applied = AppliedIntents()
        for rule_id, intent in _intents(results):
            value = intent.result
            kind = intent.action_type

            if kind == ActionType.ASSIGN_TASK:
                draft.assigned_to = value['assigned_to']
                if value['notify_immediately']:
                    applied.notifications.append((self._assignment_notice(draft.title, context), draft.assigned_to))
            elif kind == ActionType.REASSIGN_TASK:
                draft.assigned_to = value['reassigned_to']
            elif kind == ActionType.CHANGE_PRIORITY:
                draft.priority = TaskPriority(value['new_priority'])
            elif kind == ActionType.SET_DEADLINE:
                draft.due_date = value['new_deadline']
            elif kind == ActionType.UPDATE_STATUS:
                draft.status = TaskStatus(value['new_status'])
            elif kind == ActionType.ESCALATE_TASK:
                draft.escalation_level = value['escalation_level']
                if value['escalated_to']:
                    draft.assigned_to = value['escalated_to']
                applied.notifications.extend((spec, draft.assigned_to) for spec in value['notifications'])
            elif kind == ActionType.CREATE_DEPENDENCY:
                if value['depends_on'] not in draft.dependencies:
                    draft.dependencies.append(value['depends_on'])
            elif kind == ActionType.REQUEST_REVIEW:
                applied.follow_ups.append(self._review_draft(draft.id, draft.title, draft.case_id, draft.assigned_to,
                                                             value, context))
            elif kind == ActionType.SEND_NOTIFICATION:
                applied.notifications.append((value, None))
            logger.debug(f"Applied {kind} from rule {rule_id} to generated task {draft.id}")

        # The assignee token resolves to whoever ended up owning the task.
        applied.notifications = [
            (spec, assignee or draft.assigned_to) for spec, assignee in applied.notifications
        ]
        return applied

    def _apply_to_task(
        self,
        task: ScheduledTask,
        results: List[RuleEvaluationResult],
        context: WorkflowContext,
    ) -> AppliedIntents:
        """Apply rule intents to a scheduled task through the task services."""
        applied = AppliedIntents()
        actor = context.user_id or SYSTEM_ACTOR
        for rule_id, intent in _intents(results):
            try:
                task = self._apply_intent(task, rule_id, intent, context, actor, applied)
            except CaseManagementException as e:
                applied.errors.append(
                    f"Failed to apply {intent.action_type} from rule {rule_id} to task {task.task_id}: {e.message}"
                )
        return applied

    def _apply_intent(
        self,
        task: ScheduledTask,
        rule_id: str,
        intent: ActionResult,
        context: WorkflowContext,
        actor: str,
        applied: AppliedIntents,
    ) -> ScheduledTask:
        value = intent.result
        kind = intent.action_type

        if kind in (ActionType.ASSIGN_TASK, ActionType.REASSIGN_TASK):
            new_assignee = value.get('assigned_to') or value.get('reassigned_to')
            previous = task.assigned_to
            task = self.scheduler.reassign_task(task.task_id, new_assignee, user_id=actor)
            applied.updated.append(UpdatedTask(task.task_id, {'assigned_to': new_assignee}, {'assigned_to': previous}))
            if value.get('notify_immediately'):
                applied.notifications.append((self._assignment_notice(task.title, context), new_assignee))
        elif kind == ActionType.CHANGE_PRIORITY:
            previous = task.priority
            task = self.priority_service.adjust_task_priority(
                task.task_id, value['new_priority'], value['reason'] or f"Business rule {rule_id}", actor
            )
            applied.updated.append(UpdatedTask(task.task_id, {'priority': str(task.priority)},
                                               {'priority': str(previous)}))
        elif kind == ActionType.SET_DEADLINE:
            previous = task.due_date
            task = self.scheduler.reschedule_task(
                task.task_id,
                max(task.scheduled_time, self.clock.now()),
                new_due_date=value['new_deadline'],
                user_id=actor,
            )
            applied.updated.append(UpdatedTask(task.task_id, {'due_date': task.due_date}, {'due_date': previous}))
        elif kind == ActionType.UPDATE_STATUS:
            previous = task.status
            task = self.scheduler.update_task_status(task.task_id, value['new_status'], user_id=actor)
            applied.updated.append(UpdatedTask(task.task_id, {'status': str(task.status)},
                                               {'status': str(previous)}))
            if value['notify_assignee']:
                applied.notifications.append(({
                    'channel': 'in_app',
                    'recipients': ['assignee'],
                    'template': 'task_status_updated',
                    'urgency': 'medium',
                    'subject': f"Task '{task.title}' is now {task.status}",
                    'task_id': task.task_id,
                }, task.assigned_to))
        elif kind == ActionType.ESCALATE_TASK:
            previous_level, previous_assignee = task.escalation_level, task.assigned_to
            extension = value['deadline_extension_hours']
            task = self.scheduler.escalate_task(
                task.task_id,
                value['escalation_level'],
                new_assignee=value['escalated_to'],
                extend_due_by=timedelta(hours=extension) if extension else None,
                user_id=actor,
            )
            applied.updated.append(UpdatedTask(
                task.task_id,
                {'escalation_level': task.escalation_level, 'assigned_to': task.assigned_to},
                {'escalation_level': previous_level, 'assigned_to': previous_assignee},
            ))
            applied.notifications.extend((spec, task.assigned_to) for spec in value['notifications'])
            if value['notify_supervisor']:
                applied.notifications.append(({
                    'channel': 'email',
                    'recipients': ['supervisor'],
                    'template': 'task_escalated',
                    'urgency': 'high',
                    'subject': f"Task '{task.title}' escalated to level {task.escalation_level}",
                    'task_id': task.task_id,
                }, previous_assignee))
        elif kind == ActionType.CREATE_DEPENDENCY:
            task = self.scheduler.add_dependency(task.task_id, value['depends_on'], user_id=actor)
            applied.updated.append(UpdatedTask(task.task_id, {'dependencies': list(task.dependencies)}))
        elif kind == ActionType.REQUEST_REVIEW:
            applied.follow_ups.append(
                self._review_draft(task.task_id, task.title, task.case_id, task.assigned_to, value, context)
            )
        elif kind == ActionType.SEND_NOTIFICATION:
            applied.notifications.append((value, task.assigned_to))
        return task

    def _review_draft(
        self,
        task_id: str,
        title: str,
        case_id: Optional[str],
        fallback_reviewer: Optional[str],
        value: Dict[str, Any],
        context: WorkflowContext,
    ) -> CreatedTask:
        reviewer = self.rule_engine.find_least_loaded_user(value['requested_from']) or fallback_reviewer
        review_type = value['review_type']
        return CreatedTask(
            id=f"task_{uuid.uuid4().hex[:12]}",
            title=f"{review_type.replace('_', ' ').title()} Review - {title}",
            description='Review checklist: ' + ', '.join(value['checklist']) if value['checklist'] else '',
            case_id=case_id,
            assigned_to=reviewer,
            assigned_by=context.user_id or SYSTEM_ACTOR,
            priority=TaskPriority.HIGH,
            due_date=value['deadline'],
            metadata={
                'review_of': task_id,
                'review_type': review_type,
                'checklist': list(value['checklist']),
                'auto_approve': value['auto_approve'],
                'auto_generated': True,
            },
        )

    @staticmethod
    def _assignment_notice(title: str, context: WorkflowContext) -> Dict[str, Any]:
        return {
            'channel': 'in_app',
            'recipients': ['assignee'],
            'template': 'task_assigned',
            'urgency': 'high',
            'subject': f"New task assigned: {title}",
            'case_id': context.case_id,
        }

    @staticmethod
    def _notification_intents(
        results: List[RuleEvaluationResult],
        assignee_id: Optional[str],
    ) -> List[Tuple[Dict[str, Any], Optional[str]]]:
        specs = []
        for _, intent in _intents(results):
            if intent.action_type == ActionType.SEND_NOTIFICATION:
                specs.append((intent.result, assignee_id))
            elif intent.action_type == ActionType.ESCALATE_TASK:
                specs.extend((spec, assignee_id) for spec in intent.result['notifications'])
        return specs

    # ------------------------------------------------------------------
    # Scheduling and notification helpers
    # ------------------------------------------------------------------

    def _schedule_draft(
        self,
        draft: CreatedTask,
        case: Optional[CaseState],
        now: datetime,
        errors: List[str],
    ) -> Optional[ScheduledTask]:
        due_date = draft.due_date
        if due_date is None and case is not None:
            due_date = self.calculate_default_due_date(case.phase, case.case_type, now)

        request = ScheduleRequest(
            task_id=draft.id,
            case_id=draft.case_id,
            title=draft.title,
            description=draft.description,
            scheduled_time=self.clock.now(),
            due_date=due_date,
            priority=draft.priority,
            status=draft.status,
            assigned_to=draft.assigned_to,
            assigned_by=draft.assigned_by,
            dependencies=list(draft.dependencies),
            metadata=dict(draft.metadata),
        )
        try:
            task = self.scheduler.schedule_task(request, reject_dependency_conflicts=True)
            if draft.escalation_level:
                task = self.scheduler.escalate_task(task.task_id, draft.escalation_level, user_id=draft.assigned_by)
        except CaseManagementException as e:
            logger.warning(f"Could not schedule task '{draft.title}': {e.message}")
            errors.append(f"Failed to schedule task '{draft.title}': {e.message}")
            return None
        return task

    def _build_payloads(
        self,
        specs: List[Tuple[Dict[str, Any], Optional[str]]],
        requester_id: Optional[str],
        case: Optional[CaseState],
    ) -> List[NotificationPayload]:
        payloads = []
        case_attorney_id = case.metadata.get('attorney_id') if case else None
        for spec, assignee_id in specs:
            recipients = self.notifications.resolve_recipients(
                spec.get('recipients', []),
                assignee_id=assignee_id,
                requester_id=requester_id,
                case_attorney_id=case_attorney_id,
            )
            if not recipients:
                logger.info(f"Skipped notification '{spec.get('template')}': no resolvable recipients")
                continue
            payloads.append(self.notifications.build(
                channel=spec['channel'],
                recipients=recipients,
                template=spec['template'],
                urgency=spec.get('urgency', 'medium'),
                subject=spec.get('subject', ''),
                message=spec.get('message', ''),
                case_id=spec.get('case_id') or (case.case_id if case else None),
                task_id=spec.get('task_id'),
            ))
        return payloads


def build_case_task_orchestrator() -> CaseTaskOrchestrator:
    """
    Orchestrator over the stores named by the ``CASE_REPOSITORY``,
    ``TASK_REPOSITORY`` and ``RULE_REPOSITORY`` settings.

    Notifications go to the ``NOTIFICATION_BACKEND`` port.
    """
    clock = SystemClock()
    return CaseTaskOrchestrator(
        case_service=CaseTransitionService(
            repository=import_string(get_setting('CASE_REPOSITORY'))(),
            clock=clock,
        ),
        workflow_engine=workflow_engine,
        rule_engine=BusinessRuleEngine(
            repository=import_string(get_setting('RULE_REPOSITORY'))(),
            identity=user_directory,
            clock=clock,
        ),
        scheduler=TaskSchedulingService(
            repository=import_string(get_setting('TASK_REPOSITORY'))(),
            identity=user_directory,
            clock=clock,
        ),
        identity=user_directory,
        clock=clock,
    )


@lru_cache(maxsize=None)
def get_case_task_orchestrator() -> CaseTaskOrchestrator:
    """Process-wide orchestrator, built on first use so importing this module touches no database."""
    return build_case_task_orchestrator()

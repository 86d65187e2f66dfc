"""
Business rule engine for case task automation.

Rules are evaluated in ascending ``priority`` order against a
``WorkflowContext``. A matching rule runs its actions in declared order;
each action handler is a pure computation that returns the intention
(assign to X, escalate to Y, move the deadline to Z) for the caller to
apply. Nothing in this module writes tasks.

Per-rule statistics are bumped through the rule repository so that
concurrent evaluations never lose an increment.
"""

import logging
import threading
import time
import uuid
from dataclasses import replace
from datetime import datetime, timedelta
from typing import Any, Callable, Dict, List, Optional

from django.core.exceptions import ImproperlyConfigured

from apps.common.conf import get_setting
from apps.common.exceptions import (
    CaseManagementException,
    NoEscalationPath,
    NotFound,
    RuleExecutionError,
    ValidationError,
)
from apps.common.ports import Clock, IdentityPort, SystemClock
from apps.common.utils import get_nested_value, interpolate_template, safe_divide, truncate_history

from .choices import (
    ActionType,
    AssignmentStrategy,
    DeadlineStrategy,
    FailureStrategy,
    LogicalOperator,
    TriggerEventType,
)
from .defaults import get_default_escalation_paths, get_default_rules, get_expertise_score
from .entities import (
    ActionResult,
    AssignmentCandidate,
    AssignTaskAction,
    BusinessRule,
    ChangePriorityAction,
    Condition,
    ConditionOutcome,
    CreateDependencyAction,
    EscalateTaskAction,
    EscalationPath,
    EvaluationRecord,
    ReassignTaskAction,
    RequestReviewAction,
    RuleAction,
    RuleEvaluationResult,
    RuleStats,
    SendNotificationAction,
    SetDeadlineAction,
    TriggerEvent,
    UpdateStatusAction,
    WorkflowContext,
)
from .repositories import InMemoryRuleRepository, RuleRepository

logger = logging.getLogger(__name__)

DEFAULT_ESTIMATED_HOURS = 4

# Candidate score weights.
EXPERTISE_WEIGHT = 0.6
AVAILABILITY_WEIGHT = 0.3
ACTIVE_WEIGHT = 0.1

RULE_FIELDS = ('name', 'description', 'category', 'priority', 'is_active', 'conditions', 'actions', 'metadata')

Compensator = Callable[[ActionResult, WorkflowContext], None]


def _task_facts(context: WorkflowContext) -> Dict[str, Any]:
    return context.metadata.get('task') or {}


def _elapsed_ms(started: float) -> float:
    return (time.perf_counter() - started) * 1000


class BusinessRuleEngine:
    """
    Evaluates business rules and turns matching ones into action intents.

    Args:
        repository: Rule store; an in-memory one when omitted
        identity: Identity port used to find assignment candidates
        clock: Source of "now" for ``$now`` conditions and deadlines
        load_defaults: Register the built-in rule set on construction
    """

    def __init__(
        self,
        repository: Optional[RuleRepository] = None,
        identity: Optional[IdentityPort] = None,
        clock: Optional[Clock] = None,
        load_defaults: bool = True,
    ):
        self.repository = repository or InMemoryRuleRepository()
        self.identity = identity
        self.clock = clock or SystemClock()
        self._lock = threading.Lock()
        self._history: List[EvaluationRecord] = []
        self._compensators: Dict[ActionType, Compensator] = {}
        self._escalation_paths: Dict[str, List[EscalationPath]] = {
            str(role): list(paths) for role, paths in get_default_escalation_paths().items()
        }
        self._handlers: Dict[ActionType, Callable[[Any, WorkflowContext], Any]] = {
            ActionType.ASSIGN_TASK: self._assign_task,
            ActionType.ESCALATE_TASK: self._escalate_task,
            ActionType.CHANGE_PRIORITY: self._change_priority,
            ActionType.SET_DEADLINE: self._set_deadline,
            ActionType.SEND_NOTIFICATION: self._send_notification,
            ActionType.CREATE_DEPENDENCY: self._create_dependency,
            ActionType.UPDATE_STATUS: self._update_status,
            ActionType.REQUEST_REVIEW: self._request_review,
            ActionType.REASSIGN_TASK: self._reassign_task,
        }
        missing = set(ActionType.values) - {str(action_type) for action_type in self._handlers}
        if missing:
            raise ImproperlyConfigured(f"No handler for action types: {', '.join(sorted(missing))}")

        if load_defaults:
            for rule in get_default_rules():
                if self.repository.find(rule.id) is None:
                    self.add_rule(rule)
            logger.info(f"Initialized business rule engine with {len(self.repository.list())} rules")

    # ------------------------------------------------------------------
    # Evaluation
    # ------------------------------------------------------------------

    def evaluate_rules(self, context: WorkflowContext) -> List[RuleEvaluationResult]:
        """
        Evaluate every active rule against ``context``.

        One result is returned per active rule, matched or not, in
        evaluation order. Failures inside a rule are recorded on that
        rule's result and never stop the remaining rules.

        Args:
            context: Facts to evaluate against

        Returns:
            List of per-rule evaluation results
        """
        if context.timestamp is None:
            context = replace(context, timestamp=self.clock.now())

        results = self._evaluate_all(context)

        record = EvaluationRecord(
            id=f"evaluation_{uuid.uuid4().hex[:12]}",
            context=context,
            results=results,
            timestamp=self.clock.now(),
        )
        with self._lock:
            self._history.append(record)
            truncate_history(self._history, get_setting('RULE_HISTORY_LIMIT'))

        matched = sum(1 for result in results if result.matched)
        logger.info(
            f"Evaluated {len(results)} rules for case {context.case_id}, task {context.task_id} "
            f"({context.trigger_event.type}): {matched} matched"
        )
        return results

    def _evaluate_all(self, context: WorkflowContext) -> List[RuleEvaluationResult]:
        return [self.evaluate_rule(rule, context) for rule in self.repository.list(active_only=True)]

    def evaluate_rule(
        self,
        rule: BusinessRule,
        context: WorkflowContext,
        record_stats: bool = True,
    ) -> RuleEvaluationResult:
        """Evaluate one rule and, when it matches, run its actions."""
        if context.timestamp is None:
            context = replace(context, timestamp=self.clock.now())

        started = time.perf_counter()
        result = RuleEvaluationResult(rule_id=rule.id, rule_name=rule.name)

        try:
            outcome = self.evaluate_conditions(rule.conditions, context)
            result.matched = outcome.matched
            result.score = outcome.score
            result.confidence = outcome.confidence
            if outcome.matched:
                self._execute_actions(rule, context, result)
        except Exception as e:
            logger.exception(f"Error evaluating rule '{rule.id}'")
            result.errors.append(f"Rule evaluation failed: {e}")

        result.execution_time = _elapsed_ms(started)

        if record_stats:
            failed = bool(result.errors) or any(not action.success for action in result.results)
            self.repository.record_outcome(
                rule.id,
                succeeded=result.succeeded,
                failed=failed,
                execution_time=result.execution_time,
                timestamp=context.timestamp,
            )
        return result

    def evaluate_conditions(self, conditions: List[Condition], context: WorkflowContext) -> ConditionOutcome:
        """
        Combine condition results into a match decision, a weighted score
        and a confidence (share of conditions matched). The score is the
        weighted share of matched conditions times 100, so a full match
        scores 10000; a rule without conditions scores 100.

        Conditions are AND-joined until one carries a ``logical_operator``;
        from then on that operator applies. Once OR is in effect, the first
        matching condition that carries an operator ends the scan.
        """
        if not conditions:
            return ConditionOutcome(matched=True, score=100.0, confidence=1.0)

        weighted = 0.0
        total_weight = 0.0
        matched_count = 0
        current = LogicalOperator.AND

        for condition in conditions:
            matched = condition.evaluate(context.metadata, context)
            if matched:
                matched_count += 1
                weighted += 100 * condition.weight
            total_weight += condition.weight

            if condition.logical_operator:
                if current == LogicalOperator.OR and matched:
                    break
                current = condition.logical_operator

        if current == LogicalOperator.OR:
            is_match = matched_count > 0
        else:
            is_match = matched_count == len(conditions)

        return ConditionOutcome(
            matched=is_match,
            score=safe_divide(weighted, total_weight) * 100,
            confidence=matched_count / len(conditions),
        )

    def _execute_actions(self, rule: BusinessRule, context: WorkflowContext, result: RuleEvaluationResult) -> None:
        max_actions = get_setting('MAX_ACTIONS_PER_RULE')
        actions = rule.actions
        if len(actions) > max_actions:
            result.warnings.append(
                f"Rule {rule.id} declares {len(actions)} actions; only the first {max_actions} were executed"
            )
            actions = actions[:max_actions]

        for action in actions:
            action_result = self.execute_action(action, context)
            result.actions_executed.append(action)
            result.results.append(action_result)

            if action_result.success:
                if isinstance(action, UpdateStatusAction) and action.cascade:
                    result.cascaded_results.extend(self._cascade(action, context, result))
                continue

            if action.failure_strategy == FailureStrategy.STOP:
                result.errors.append(f"Action {action.action_type} failed and rule execution stopped")
                break
            if action.failure_strategy == FailureStrategy.ROLLBACK:
                self._rollback(result, context)
                result.errors.append(f"Action {action.action_type} failed and rule actions were rolled back")
                break
            result.warnings.append(f"Action {action.action_type} failed: {action_result.error}")

    def execute_action(self, action: RuleAction, context: WorkflowContext) -> ActionResult:
        """Run one action handler and capture its intent or its failure."""
        started = time.perf_counter()
        handler = self._handlers[action.action_type]
        try:
            intent = handler(action, context)
        except CaseManagementException as e:
            logger.warning(f"Action {action.id} ({action.action_type}) failed: {e.message}")
            return ActionResult(
                action_id=action.id,
                action_type=action.action_type,
                success=False,
                error=e.message,
                execution_time=_elapsed_ms(started),
            )
        except Exception as e:
            logger.exception(f"Unexpected error in action {action.id} ({action.action_type})")
            return ActionResult(
                action_id=action.id,
                action_type=action.action_type,
                success=False,
                error=str(e),
                execution_time=_elapsed_ms(started),
            )

        return ActionResult(
            action_id=action.id,
            action_type=action.action_type,
            success=True,
            result=intent,
            execution_time=_elapsed_ms(started),
        )

    def _cascade(
        self,
        action: UpdateStatusAction,
        context: WorkflowContext,
        result: RuleEvaluationResult,
    ) -> List[RuleEvaluationResult]:
        max_depth = get_setting('MAX_RULE_CASCADE_DEPTH')
        if context.cascade_depth >= max_depth:
            result.warnings.append(f"Cascade depth limit of {max_depth} reached; re-evaluation skipped")
            return []

        task = {**_task_facts(context), 'status': str(action.new_status)}
        cascaded = replace(
            context.with_metadata(task=task),
            cascade_depth=context.cascade_depth + 1,
            trigger_event=TriggerEvent(
                TriggerEventType.TASK_STATUS_CHANGE,
                {'new_status': str(action.new_status), 'source_rule': result.rule_id},
            ),
        )
        logger.debug(f"Rule {result.rule_id} cascades at depth {cascaded.cascade_depth}")
        return self._evaluate_all(cascaded)

    # ------------------------------------------------------------------
    # Rollback
    # ------------------------------------------------------------------

    def register_compensator(self, action_type: ActionType, handler: Compensator) -> None:
        """Register the undo step run for ``action_type`` when a rule rolls back."""
        self._compensators[ActionType(action_type)] = handler

    def _rollback(self, result: RuleEvaluationResult, context: WorkflowContext) -> None:
        done = [action_result for action_result in result.results if action_result.success]
        for action_result in reversed(done):
            compensator = self._compensators.get(action_result.action_type)
            if compensator is None:
                result.warnings.append(f"No compensating handler for {action_result.action_type}")
            else:
                try:
                    compensator(action_result, context)
                except Exception as e:
                    logger.exception(f"Compensation of action {action_result.action_id} failed")
                    result.errors.append(f"Rollback of {action_result.action_type} failed: {e}")
                    continue
            action_result.rolled_back = True

    # ------------------------------------------------------------------
    # Action handlers
    # ------------------------------------------------------------------

    def _assign_task(self, action: AssignTaskAction, context: WorkflowContext) -> Dict[str, Any]:
        candidates = self.find_assignment_candidates(context, role=action.required_role)

        if action.strategy == AssignmentStrategy.EXPERTISE_BASED:
            selected = self._select_by_expertise(candidates, action, context)
        elif action.strategy == AssignmentStrategy.PRIORITY_BASED:
            selected = self._select_by_priority(candidates)
        else:
            selected = self._select_by_workload(candidates, action.max_workload_threshold)

        if selected is None:
            raise RuleExecutionError(
                f"No suitable assignee found using {action.strategy} strategy",
                details={'strategy': str(action.strategy), 'candidates': len(candidates)},
            )

        return {
            'assigned_to': selected.user_id,
            'assignee_role': str(selected.role),
            'strategy': str(action.strategy),
            'score': selected.score,
            'notify_immediately': action.notify_immediately,
            'previous_assignee': _task_facts(context).get('assigned_to'),
        }

    def find_assignment_candidates(
        self,
        context: WorkflowContext,
        role: Optional[str] = None,
    ) -> List[AssignmentCandidate]:
        """
        Score every active user (optionally of one role) for the task.

        The score blends the role's expertise in the case type, the share
        of free capacity and whether the user is active.
        """
        if self.identity is None:
            return []

        case_type = context.case_type or get_nested_value(context.metadata, 'case.type')
        candidates = []
        for user in self.identity.list_users(role=role):
            capacity = getattr(user, 'max_active_tasks', 0) or 0
            workload = safe_divide(self.identity.get_active_task_count(user.id), capacity, default=1.0)
            expertise = get_expertise_score(user.role, case_type) if case_type else 0.0
            available = bool(getattr(user, 'is_active', True))
            factors = {
                'expertise': expertise,
                'availability': max(0.0, 1 - workload),
                'active': 1.0 if available else 0.0,
            }
            score = (
                EXPERTISE_WEIGHT * factors['expertise']
                + AVAILABILITY_WEIGHT * factors['availability']
                + ACTIVE_WEIGHT * factors['active']
            )
            candidates.append(AssignmentCandidate(
                user_id=user.id,
                name=user.name,
                role=user.role,
                score=round(score, 4),
                available=available,
                current_workload=workload,
                expertise=tuple(sorted(getattr(user, 'specializations', ()) or ())),
                factors=factors,
            ))

        return sorted(candidates, key=lambda candidate: (-candidate.score, candidate.user_id))

    @staticmethod
    def _select_by_expertise(
        candidates: List[AssignmentCandidate],
        action: AssignTaskAction,
        context: WorkflowContext,
    ) -> Optional[AssignmentCandidate]:
        required = _task_facts(context).get('required_expertise') or []
        if isinstance(required, str):
            required = [required]

        eligible = []
        for candidate in candidates:
            if not candidate.available:
                continue
            # Declared specializations satisfy the task; otherwise the role matrix must.
            if required:
                if not set(required) <= set(candidate.expertise):
                    continue
            elif candidate.factors['expertise'] < action.min_expertise_score:
                continue
            if action.consider_workload and candidate.current_workload > action.max_workload_threshold:
                continue
            eligible.append(candidate)
        return eligible[0] if eligible else None

    @staticmethod
    def _select_by_workload(
        candidates: List[AssignmentCandidate],
        max_workload: float,
    ) -> Optional[AssignmentCandidate]:
        eligible = [
            candidate for candidate in candidates
            if candidate.available and candidate.current_workload <= max_workload
        ]
        eligible.sort(key=lambda candidate: (candidate.current_workload, -candidate.score, candidate.user_id))
        return eligible[0] if eligible else None

    @staticmethod
    def _select_by_priority(candidates: List[AssignmentCandidate]) -> Optional[AssignmentCandidate]:
        eligible = [candidate for candidate in candidates if candidate.available]
        return eligible[0] if eligible else None

    def _escalate_task(self, action: EscalateTaskAction, context: WorkflowContext) -> Dict[str, Any]:
        task = _task_facts(context)
        role = task.get('assignee_role')
        if not role and self.identity is not None and task.get('assigned_to'):
            assignee = self.identity.get_user(task['assigned_to'])
            role = assignee.role if assignee else None
        if not role:
            raise NoEscalationPath("Cannot escalate task without current assignee role")

        paths = self._escalation_paths.get(str(role))
        if not paths:
            raise NoEscalationPath(
                f"No escalation path defined for role: {role}",
                details={'role': str(role)},
            )

        current_level = int(task.get('escalation_level') or 0)
        next_level = current_level + action.increment_level
        path = next((item for item in paths if item.level == next_level), None)
        if path is None:
            raise NoEscalationPath(
                f"No next escalation level found for level {current_level}",
                details={'role': str(role), 'level': current_level},
            )

        facts = {**task, 'escalation_level': next_level}
        unmet = [condition.field for condition in path.conditions if not condition.evaluate(facts, context)]
        if unmet:
            raise NoEscalationPath(
                f"Escalation conditions not met for level {next_level}: {', '.join(unmet)}",
                details={'role': str(role), 'level': next_level},
            )

        target = self.find_least_loaded_user(path.to_role)
        return {
            'escalation_level': next_level,
            'from_role': str(path.from_role),
            'to_role': str(path.to_role),
            'escalated_to': target,
            'approval_required': path.approval_required,
            'notify_supervisor': action.notify_supervisor,
            'deadline_extension_hours': action.deadline_extension_hours,
            'notifications': [
                {
                    'channel': rule.channel,
                    'recipients': list(rule.recipients),
                    'template': rule.template,
                    'urgency': rule.urgency,
                    'delay_minutes': rule.delay_minutes,
                }
                for rule in path.notification_rules
            ],
        }

    def find_least_loaded_user(self, role: str) -> Optional[str]:
        if self.identity is None:
            return None
        users = sorted(
            self.identity.list_users(role=role),
            key=lambda user: (self.identity.get_active_task_count(user.id), user.id),
        )
        return users[0].id if users else None

    def _change_priority(self, action: ChangePriorityAction, context: WorkflowContext) -> Dict[str, Any]:
        return {
            'new_priority': str(action.priority),
            'previous_priority': _task_facts(context).get('priority'),
            'reason': action.reason,
            'changed_by': context.user_id,
            'timestamp': context.timestamp,
        }

    def _set_deadline(self, action: SetDeadlineAction, context: WorkflowContext) -> Dict[str, Any]:
        task = _task_facts(context)
        now = context.timestamp

        if action.strategy == DeadlineStrategy.COMPLEXITY_BASED:
            estimated = task.get('estimated_duration') or DEFAULT_ESTIMATED_HOURS
            hours = max(float(estimated) * (1 + action.buffer_percentage), action.min_extension_hours)
            new_deadline = now + timedelta(hours=hours)
        elif action.strategy == DeadlineStrategy.DEPENDENCY_BASED:
            due_dates = [value for value in task.get('dependency_due_dates') or [] if isinstance(value, datetime)]
            new_deadline = max(due_dates + [now]) + timedelta(hours=action.offset_hours)
        else:
            base = task.get('due_date') if isinstance(task.get('due_date'), datetime) else now
            new_deadline = base + timedelta(hours=action.offset_hours)

        return {
            'new_deadline': new_deadline,
            'previous_deadline': task.get('due_date'),
            'strategy': str(action.strategy),
            'reason': action.reason or f"Deadline adjusted using {action.strategy} strategy",
        }

    def _send_notification(self, action: SendNotificationAction, context: WorkflowContext) -> Dict[str, Any]:
        data = context.template_data()
        return {
            'channel': action.channel,
            'recipients': list(action.recipients),
            'template': action.template,
            'urgency': action.urgency,
            'subject': interpolate_template(action.subject, data) if action.subject else '',
            'case_id': context.case_id,
            'task_id': context.task_id,
        }

    def _create_dependency(self, action: CreateDependencyAction, context: WorkflowContext) -> Dict[str, Any]:
        depends_on = interpolate_template(action.depends_on, context.template_data()) if action.depends_on else ''
        if not depends_on:
            raise RuleExecutionError("Dependency target is required")
        return {
            'depends_on': depends_on,
            'dependency_type': action.dependency_type,
        }

    def _update_status(self, action: UpdateStatusAction, context: WorkflowContext) -> Dict[str, Any]:
        return {
            'new_status': str(action.new_status),
            'previous_status': _task_facts(context).get('status'),
            'notify_assignee': action.notify_assignee,
            'cascade': action.cascade,
            'updated_by': context.user_id,
        }

    def _request_review(self, action: RequestReviewAction, context: WorkflowContext) -> Dict[str, Any]:
        return {
            'review_type': action.review_type,
            'requested_from': str(action.required_role),
            'deadline': context.timestamp + timedelta(hours=action.deadline_offset_hours),
            'auto_approve': action.auto_approve_if_no_response,
            'checklist': list(action.checklist),
            'requested_by': context.user_id,
        }

    def _reassign_task(self, action: ReassignTaskAction, context: WorkflowContext) -> Dict[str, Any]:
        current = _task_facts(context).get('assigned_to')
        candidates = [
            candidate for candidate in self.find_assignment_candidates(context, role=action.required_role)
            if candidate.user_id != current and candidate.available
        ]
        if not candidates:
            raise RuleExecutionError(
                "No alternative assignee available for reassignment",
                details={'required_role': action.required_role},
            )
        return {
            'reassigned_to': candidates[0].user_id,
            'previous_assignee': current,
            'reason': action.reason,
            'reassigned_by': context.user_id,
        }

    # ------------------------------------------------------------------
    # Rule management
    # ------------------------------------------------------------------

    def add_rule(self, rule: BusinessRule) -> BusinessRule:
        """
        Register a rule, replacing any rule with the same id.

        Raises:
            ValidationError: If the rule lacks an id or a name
        """
        errors = []
        if not rule.id:
            errors.append('Rule id is required')
        if not rule.name:
            errors.append('Rule name is required')
        if errors:
            raise ValidationError(errors)

        now = self.clock.now()
        rule.created_at = rule.created_at or now
        rule.updated_at = now
        self.repository.add(rule)
        logger.info(f"Registered business rule '{rule.id}' (priority {rule.priority})")
        return rule

    def get_rule(self, rule_id: str) -> Optional[BusinessRule]:
        return self.repository.find(rule_id)

    def get_rules(self, category: Optional[str] = None, active_only: bool = True) -> List[BusinessRule]:
        return self.repository.list(category=category, active_only=active_only)

    def update_rule(self, rule_id: str, **changes) -> bool:
        """
        Change the editable fields of a rule.

        Returns:
            False when the rule does not exist

        Raises:
            ValidationError: If an unknown field is given
        """
        unknown = sorted(set(changes) - set(RULE_FIELDS))
        if unknown:
            raise ValidationError([f"Unknown rule field: {name}" for name in unknown])

        with self.repository.lock():
            rule = self.repository.find(rule_id)
            if rule is None:
                logger.warning(f"Rule '{rule_id}' not found for update")
                return False
            rule = replace(rule, **changes)
            rule.updated_at = self.clock.now()
            self.repository.save(rule)
        logger.info(f"Updated business rule '{rule_id}': {', '.join(sorted(changes))}")
        return True

    def delete_rule(self, rule_id: str) -> bool:
        deleted = self.repository.delete(rule_id)
        if deleted:
            logger.info(f"Deleted business rule '{rule_id}'")
        else:
            logger.warning(f"Rule '{rule_id}' not found for deletion")
        return deleted

    def activate_rule(self, rule_id: str) -> bool:
        return self.update_rule(rule_id, is_active=True)

    def deactivate_rule(self, rule_id: str) -> bool:
        return self.update_rule(rule_id, is_active=False)

    def test_rule(self, rule_id: str, context: WorkflowContext) -> RuleEvaluationResult:
        """
        Dry-run one rule, active or not, without touching statistics or
        the evaluation history.

        Raises:
            NotFound: If the rule does not exist
        """
        return self.evaluate_rule(self.repository.get(rule_id), context, record_stats=False)

    def reset_stats(self, rule_id: Optional[str] = None) -> int:
        if rule_id is not None and self.repository.find(rule_id) is None:
            raise NotFound(f"Rule not found: {rule_id}", details={'rule_id': rule_id})
        count = self.repository.reset_stats(rule_id)
        logger.info(f"Reset statistics of {count} rule(s)")
        return count

    # ------------------------------------------------------------------
    # Escalation paths
    # ------------------------------------------------------------------

    def get_escalation_paths(self, role: Optional[str] = None) -> Dict[str, List[EscalationPath]]:
        if role is not None:
            return {str(role): list(self._escalation_paths.get(str(role), []))}
        return {key: list(paths) for key, paths in self._escalation_paths.items()}

    def add_escalation_path(self, path: EscalationPath) -> None:
        """Add or replace the step ``path.level`` of ``path.from_role``."""
        with self._lock:
            paths = [
                item for item in self._escalation_paths.get(str(path.from_role), [])
                if item.level != path.level
            ]
            paths.append(path)
            self._escalation_paths[str(path.from_role)] = sorted(paths, key=lambda item: item.level)

    # ------------------------------------------------------------------
    # Reporting
    # ------------------------------------------------------------------

    def get_stats(self) -> RuleStats:
        rules = self.repository.list()
        total_evaluations = sum(rule.trigger_count for rule in rules)
        total_time = sum(rule.total_execution_time for rule in rules)

        ranked = sorted(rules, key=lambda rule: (-rule.success_rate, -rule.trigger_count, rule.id))
        top_performing = [
            {
                'rule_id': rule.id,
                'rule_name': rule.name,
                'success_rate': rule.success_rate,
                'execution_count': rule.trigger_count,
            }
            for rule in ranked[:5]
        ]

        categories: Dict[str, Dict[str, Any]] = {}
        for rule in rules:
            entry = categories.setdefault(
                str(rule.category),
                {'category': str(rule.category), 'rule_count': 0, 'execution_count': 0},
            )
            entry['rule_count'] += 1
            entry['execution_count'] += rule.trigger_count

        return RuleStats(
            total_rules=len(rules),
            active_rules=sum(1 for rule in rules if rule.is_active),
            total_evaluations=total_evaluations,
            successful_executions=sum(rule.success_count for rule in rules),
            failed_executions=sum(rule.failure_count for rule in rules),
            average_execution_time=safe_divide(total_time, total_evaluations),
            top_performing_rules=top_performing,
            rule_categories=list(categories.values()),
        )

    def get_evaluation_history(self, limit: int = 100) -> List[EvaluationRecord]:
        """Most recent evaluations first."""
        with self._lock:
            return list(reversed(self._history))[:limit]

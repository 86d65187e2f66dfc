"""
Data structures of the workflow core.

Rules are lists of weighted conditions plus typed actions. Each action kind
is its own dataclass, so a rule can only carry actions the engine knows how
to handle. Templates describe the tasks a case phase generates.
"""

from dataclasses import dataclass, field, fields, replace
from datetime import datetime
from typing import Any, ClassVar, Dict, List, Optional, Tuple, Type

from apps.cases.choices import CasePhase, CaseType
from apps.common.choices import ConditionOperator
from apps.common.utils import evaluate_operator, get_nested_value
from apps.tasks.choices import TaskPriority, TaskStatus
from apps.users.choices import UserRole

from .choices import (
    ActionType,
    AssignmentStrategy,
    DeadlineStrategy,
    FailureStrategy,
    LogicalOperator,
    RuleCategory,
    TriggerEventType,
)

# Condition value replaced by the evaluation timestamp.
NOW_MARKER = '$now'


@dataclass(frozen=True)
class TriggerEvent:
    type: TriggerEventType
    details: Dict[str, Any] = field(default_factory=dict)

    def __post_init__(self):
        object.__setattr__(self, 'type', TriggerEventType(self.type))


@dataclass
class WorkflowContext:
    """
    Facts a rule or template is evaluated against.

    Conditions read ``metadata`` through dot paths such as ``task.priority``
    or ``case.type``. The remaining fields identify what the evaluation is
    about and who caused it.
    """

    case_id: Optional[str] = None
    task_id: Optional[str] = None
    user_id: Optional[str] = None
    user_role: Optional[UserRole] = None
    case_type: Optional[CaseType] = None
    phase: Optional[CasePhase] = None
    previous_phase: Optional[CasePhase] = None
    timestamp: Optional[datetime] = None
    trigger_event: TriggerEvent = field(
        default_factory=lambda: TriggerEvent(TriggerEventType.SYSTEM_EVENT)
    )
    metadata: Dict[str, Any] = field(default_factory=dict)
    cascade_depth: int = 0

    def with_metadata(self, **updates) -> 'WorkflowContext':
        return replace(self, metadata={**self.metadata, **updates})

    def template_data(self) -> Dict[str, Any]:
        """Interpolation data: the metadata plus the context identifiers."""
        data = dict(self.metadata)
        data.setdefault('case_id', self.case_id)
        data.setdefault('case_type', str(self.case_type) if self.case_type else None)
        data.setdefault('phase', str(self.phase) if self.phase else None)
        data.setdefault('previous_phase', str(self.previous_phase) if self.previous_phase else None)
        data.setdefault('user_id', self.user_id)
        return data


@dataclass
class Condition:
    """One weighted test of a context field."""

    field: str
    operator: ConditionOperator
    value: Any = None
    weight: float = 1.0
    logical_operator: Optional[LogicalOperator] = None
    id: str = ''

    def __post_init__(self):
        self.operator = ConditionOperator(self.operator)
        if self.logical_operator is not None:
            self.logical_operator = LogicalOperator(self.logical_operator)

    def resolve_value(self, context: Optional[WorkflowContext] = None) -> Any:
        if self.value == NOW_MARKER and context is not None:
            return context.timestamp
        return self.value

    def evaluate(self, data: Dict[str, Any], context: Optional[WorkflowContext] = None) -> bool:
        actual = get_nested_value(data, self.field)
        return evaluate_operator(actual, self.operator, self.resolve_value(context))

    def to_dict(self) -> Dict[str, Any]:
        return {
            'id': self.id,
            'field': self.field,
            'operator': str(self.operator),
            'value': self.value,
            'weight': self.weight,
            'logical_operator': str(self.logical_operator) if self.logical_operator else None,
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> 'Condition':
        return cls(
            id=data.get('id', ''),
            field=data['field'],
            operator=data['operator'],
            value=data.get('value'),
            weight=data.get('weight', 1.0),
            logical_operator=data.get('logical_operator'),
        )


@dataclass
class RuleAction:
    """
    Base of every action kind.

    Subclasses add their parameters as fields and set ``action_type``.
    """

    id: str
    failure_strategy: FailureStrategy = FailureStrategy.CONTINUE

    action_type: ClassVar[ActionType]

    def __post_init__(self):
        self.failure_strategy = FailureStrategy(self.failure_strategy)

    @property
    def parameters(self) -> Dict[str, Any]:
        return {
            item.name: getattr(self, item.name)
            for item in fields(self)
            if item.name not in ('id', 'failure_strategy')
        }

    def to_dict(self) -> Dict[str, Any]:
        parameters = {
            key: list(value) if isinstance(value, tuple) else value
            for key, value in self.parameters.items()
        }
        return {
            'id': self.id,
            'type': str(self.action_type),
            'failure_strategy': str(self.failure_strategy),
            'parameters': parameters,
        }

    @staticmethod
    def from_dict(data: Dict[str, Any]) -> 'RuleAction':
        action_class = ACTION_CLASSES[ActionType(data['type'])]
        return action_class(
            id=data['id'],
            failure_strategy=data.get('failure_strategy', FailureStrategy.CONTINUE),
            **data.get('parameters', {}),
        )


@dataclass
class AssignTaskAction(RuleAction):
    action_type: ClassVar[ActionType] = ActionType.ASSIGN_TASK

    strategy: AssignmentStrategy = AssignmentStrategy.WORKLOAD_BALANCE
    required_role: Optional[str] = None
    consider_workload: bool = True
    max_workload_threshold: float = 0.8
    min_expertise_score: float = 0.0
    notify_immediately: bool = False

    def __post_init__(self):
        super().__post_init__()
        self.strategy = AssignmentStrategy(self.strategy)


@dataclass
class EscalateTaskAction(RuleAction):
    action_type: ClassVar[ActionType] = ActionType.ESCALATE_TASK

    increment_level: int = 1
    notify_supervisor: bool = True
    deadline_extension_hours: int = 0


@dataclass
class ChangePriorityAction(RuleAction):
    action_type: ClassVar[ActionType] = ActionType.CHANGE_PRIORITY

    priority: TaskPriority = TaskPriority.HIGH
    reason: str = ''

    def __post_init__(self):
        super().__post_init__()
        self.priority = TaskPriority(self.priority)


@dataclass
class SetDeadlineAction(RuleAction):
    action_type: ClassVar[ActionType] = ActionType.SET_DEADLINE

    strategy: DeadlineStrategy = DeadlineStrategy.COMPLEXITY_BASED
    buffer_percentage: float = 0.2
    min_extension_hours: float = 24
    offset_hours: float = 24
    consider_dependencies: bool = True
    reason: str = ''

    def __post_init__(self):
        super().__post_init__()
        self.strategy = DeadlineStrategy(self.strategy)


@dataclass
class SendNotificationAction(RuleAction):
    action_type: ClassVar[ActionType] = ActionType.SEND_NOTIFICATION

    channel: str = 'in_app'
    recipients: Tuple[str, ...] = ('assignee',)
    template: str = ''
    urgency: str = 'medium'
    subject: str = ''

    def __post_init__(self):
        super().__post_init__()
        self.recipients = tuple(self.recipients)


@dataclass
class CreateDependencyAction(RuleAction):
    action_type: ClassVar[ActionType] = ActionType.CREATE_DEPENDENCY

    depends_on: str = ''
    dependency_type: str = 'finish_to_start'


@dataclass
class UpdateStatusAction(RuleAction):
    action_type: ClassVar[ActionType] = ActionType.UPDATE_STATUS

    new_status: TaskStatus = TaskStatus.PENDING
    notify_assignee: bool = False
    cascade: bool = False

    def __post_init__(self):
        super().__post_init__()
        self.new_status = TaskStatus(self.new_status)


@dataclass
class RequestReviewAction(RuleAction):
    action_type: ClassVar[ActionType] = ActionType.REQUEST_REVIEW

    review_type: str = 'quality'
    required_role: str = UserRole.ATTORNEY
    deadline_offset_hours: float = 24
    auto_approve_if_no_response: bool = False
    checklist: Tuple[str, ...] = ()

    def __post_init__(self):
        super().__post_init__()
        self.checklist = tuple(self.checklist)


@dataclass
class ReassignTaskAction(RuleAction):
    action_type: ClassVar[ActionType] = ActionType.REASSIGN_TASK

    reason: str = ''
    required_role: Optional[str] = None


ACTION_CLASSES: Dict[ActionType, Type[RuleAction]] = {
    action_class.action_type: action_class
    for action_class in (
        AssignTaskAction,
        EscalateTaskAction,
        ChangePriorityAction,
        SetDeadlineAction,
        SendNotificationAction,
        CreateDependencyAction,
        UpdateStatusAction,
        RequestReviewAction,
        ReassignTaskAction,
    )
}


@dataclass
class BusinessRule:
    """A prioritized set of conditions and the actions run when they match."""

    id: str
    name: str
    category: RuleCategory
    priority: int = 100
    is_active: bool = True
    description: str = ''
    conditions: List[Condition] = field(default_factory=list)
    actions: List[RuleAction] = field(default_factory=list)
    metadata: Dict[str, Any] = field(default_factory=dict)
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None
    last_triggered: Optional[datetime] = None
    trigger_count: int = 0
    success_count: int = 0
    failure_count: int = 0
    total_execution_time: float = 0.0

    def __post_init__(self):
        self.category = RuleCategory(self.category)

    @property
    def success_rate(self) -> float:
        if not self.trigger_count:
            return 0.0
        return self.success_count * 100 / self.trigger_count

    def definition(self) -> Dict[str, Any]:
        """The operator-editable part of the rule, as stored in JSON."""
        return {
            'conditions': [condition.to_dict() for condition in self.conditions],
            'actions': [action.to_dict() for action in self.actions],
        }


@dataclass
class ConditionOutcome:
    matched: bool
    score: float
    confidence: float


@dataclass
class ActionResult:
    """What one action produced: an intention for the caller to apply."""

    action_id: str
    action_type: ActionType
    success: bool
    result: Any = None
    error: Optional[str] = None
    execution_time: float = 0.0
    rolled_back: bool = False


@dataclass
class RuleEvaluationResult:
    rule_id: str
    rule_name: str
    matched: bool = False
    score: float = 0.0
    confidence: float = 0.0
    actions_executed: List[RuleAction] = field(default_factory=list)
    results: List[ActionResult] = field(default_factory=list)
    errors: List[str] = field(default_factory=list)
    warnings: List[str] = field(default_factory=list)
    execution_time: float = 0.0
    cascaded_results: List['RuleEvaluationResult'] = field(default_factory=list)

    @property
    def succeeded(self) -> bool:
        return self.matched and not self.errors and all(result.success for result in self.results)

    @property
    def intents(self) -> List[ActionResult]:
        """Successful, not rolled back, action results to apply."""
        return [result for result in self.results if result.success and not result.rolled_back]


@dataclass
class EvaluationRecord:
    id: str
    context: WorkflowContext
    results: List[RuleEvaluationResult]
    timestamp: datetime


@dataclass(frozen=True)
class NotificationRule:
    channel: str
    recipients: Tuple[str, ...]
    template: str
    urgency: str
    delay_minutes: int = 0


@dataclass(frozen=True)
class EscalationPath:
    """One step up the escalation ladder of a role."""

    level: int
    from_role: UserRole
    to_role: UserRole
    conditions: Tuple[Condition, ...] = ()
    notification_rules: Tuple[NotificationRule, ...] = ()
    approval_required: bool = False


@dataclass
class AssignmentCandidate:
    user_id: str
    name: str
    role: UserRole
    score: float
    available: bool
    current_workload: float
    expertise: Tuple[str, ...] = ()
    factors: Dict[str, float] = field(default_factory=dict)


@dataclass
class RuleStats:
    total_rules: int
    active_rules: int
    total_evaluations: int
    successful_executions: int
    failed_executions: int
    average_execution_time: float
    top_performing_rules: List[Dict[str, Any]]
    rule_categories: List[Dict[str, Any]]


@dataclass
class TaskTemplate:
    """Blueprint of a task generated when a case enters a phase."""

    id: str
    name: str
    case_type: CaseType
    phase: CasePhase
    title_template: str
    default_priority: TaskPriority = TaskPriority.MEDIUM
    description: str = ''
    description_template: str = ''
    default_assignee_role: Optional[UserRole] = None
    due_date_offset_days: Optional[int] = None
    required_fields: Tuple[str, ...] = ()
    conditions: List[Condition] = field(default_factory=list)
    auto_create: bool = True

    def __post_init__(self):
        self.case_type = CaseType(self.case_type)
        self.phase = CasePhase(self.phase)
        self.default_priority = TaskPriority(self.default_priority)


@dataclass
class CreatedTask:
    """A task produced by a template or a rule, not yet scheduled."""

    id: str
    title: str
    case_id: Optional[str]
    assigned_to: Optional[str]
    assigned_by: Optional[str]
    priority: TaskPriority = TaskPriority.MEDIUM
    status: TaskStatus = TaskStatus.PENDING
    description: str = ''
    due_date: Optional[datetime] = None
    escalation_level: int = 0
    dependencies: List[str] = field(default_factory=list)
    metadata: Dict[str, Any] = field(default_factory=dict)


@dataclass
class UpdatedTask:
    id: str
    changes: Dict[str, Any]
    previous_values: Dict[str, Any] = field(default_factory=dict)


@dataclass
class WorkflowResult:
    success: bool = True
    created_tasks: List[CreatedTask] = field(default_factory=list)
    updated_tasks: List[UpdatedTask] = field(default_factory=list)
    notifications: List[Any] = field(default_factory=list)
    errors: List[str] = field(default_factory=list)

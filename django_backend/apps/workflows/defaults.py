"""
Built-in rule set, escalation ladder, expertise matrix and task templates.

Engines load these at construction unless told otherwise; operators can
replace or extend them at runtime through the engines' registry methods.
"""

from typing import Dict, List

from apps.cases.choices import CasePhase, CaseType
from apps.common.choices import ConditionOperator
from apps.tasks.choices import TaskPriority, TaskStatus
from apps.users.choices import UserRole

from .choices import AssignmentStrategy, DeadlineStrategy, FailureStrategy, RuleCategory
from .entities import (
    NOW_MARKER,
    AssignTaskAction,
    BusinessRule,
    Condition,
    EscalateTaskAction,
    EscalationPath,
    NotificationRule,
    RequestReviewAction,
    SendNotificationAction,
    SetDeadlineAction,
    TaskTemplate,
    UpdateStatusAction,
)

TASK_COMPLETION_ATTEMPTED = 'task_completion_attempted'

# Case types in the column order of EXPERTISE_MATRIX rows.
EXPERTISE_CASE_TYPES = (
    CaseType.CRIMINAL_DEFENSE,
    CaseType.LABOR_DISPUTE,
    CaseType.MEDICAL_MALPRACTICE,
    CaseType.DIVORCE_FAMILY,
    CaseType.INHERITANCE_DISPUTE,
    CaseType.CONTRACT_DISPUTE,
    CaseType.ADMINISTRATIVE_CASE,
    CaseType.DEMOLITION_CASE,
    CaseType.SPECIAL_MATTERS,
)

EXPERTISE_MATRIX: Dict[str, Dict[str, float]] = {
    role: dict(zip(EXPERTISE_CASE_TYPES, scores))
    for role, scores in (
        (UserRole.ATTORNEY, (0.9, 0.8, 0.7, 0.6, 0.5, 0.4, 0.3, 0.2, 0.1)),
        (UserRole.ASSISTANT, (0.4, 0.3, 0.5, 0.7, 0.6, 0.5, 0.4, 0.3, 0.2)),
        (UserRole.ADMIN, (0.3, 0.2, 0.3, 0.4, 0.5, 0.6, 0.7, 0.8, 0.4)),
    )
}


def get_expertise_score(role: str, case_type: str) -> float:
    """Expertise of a role for a case type; 0 when unknown."""
    return EXPERTISE_MATRIX.get(str(role), {}).get(str(case_type), 0.0)


def get_default_rules() -> List[BusinessRule]:
    return [
        BusinessRule(
            id='expertise_based_assignment',
            name='Expertise-Based Task Assignment',
            description='Assign tasks to users with relevant expertise',
            category=RuleCategory.TASK_ASSIGNMENT,
            priority=1,
            conditions=[
                Condition(id='has_expertise', field='task.required_expertise',
                          operator=ConditionOperator.EXISTS, weight=0.8),
                Condition(id='not_assigned', field='task.assigned_to',
                          operator=ConditionOperator.NOT_EXISTS, weight=0.5),
            ],
            actions=[
                AssignTaskAction(
                    id='assign_to_expert',
                    strategy=AssignmentStrategy.EXPERTISE_BASED,
                    consider_workload=True,
                    min_expertise_score=0.7,
                ),
            ],
            metadata={'tags': ['assignment', 'expertise', 'automation']},
        ),
        BusinessRule(
            id='workload_balance_assignment',
            name='Workload-Based Assignment',
            description='Assign tasks to users with lowest current workload',
            category=RuleCategory.TASK_ASSIGNMENT,
            priority=2,
            conditions=[
                Condition(id='unassigned_task', field='task.assigned_to',
                          operator=ConditionOperator.NOT_EXISTS, weight=0.7),
                Condition(id='normal_priority', field='task.priority', operator=ConditionOperator.IN,
                          value=[TaskPriority.LOW.value, TaskPriority.MEDIUM.value], weight=0.3),
            ],
            actions=[
                AssignTaskAction(
                    id='assign_to_least_busy',
                    strategy=AssignmentStrategy.WORKLOAD_BALANCE,
                    max_workload_threshold=0.8,
                ),
            ],
            metadata={'tags': ['assignment', 'workload', 'balance']},
        ),
        BusinessRule(
            id='high_priority_assignment',
            name='High Priority Task Assignment',
            description='Immediately assign high priority tasks to available senior staff',
            category=RuleCategory.TASK_ASSIGNMENT,
            priority=3,
            conditions=[
                Condition(id='high_priority', field='task.priority', operator=ConditionOperator.IN,
                          value=[TaskPriority.HIGH.value, TaskPriority.URGENT.value], weight=0.9),
                Condition(id='unassigned', field='task.assigned_to',
                          operator=ConditionOperator.NOT_EXISTS, weight=0.8),
            ],
            actions=[
                AssignTaskAction(
                    id='assign_to_senior',
                    strategy=AssignmentStrategy.PRIORITY_BASED,
                    required_role=UserRole.ATTORNEY.value,
                    notify_immediately=True,
                    failure_strategy=FailureStrategy.STOP,
                ),
                SendNotificationAction(
                    id='notify_supervisor',
                    channel='email',
                    recipients=('supervisor',),
                    template='high_priority_task_assigned',
                    urgency='high',
                ),
            ],
            metadata={'tags': ['assignment', 'high_priority', 'urgent']},
        ),
        BusinessRule(
            id='overdue_task_escalation',
            name='Overdue Task Escalation',
            description='Escalate overdue tasks to supervisors',
            category=RuleCategory.ESCALATION,
            priority=4,
            conditions=[
                Condition(id='task_overdue', field='task.due_date',
                          operator=ConditionOperator.LESS_THAN, value=NOW_MARKER, weight=0.9),
                Condition(id='not_completed', field='task.status', operator=ConditionOperator.NOT_EQUALS,
                          value=TaskStatus.COMPLETED.value, weight=0.8),
                Condition(id='low_escalation_level', field='task.escalation_level',
                          operator=ConditionOperator.LESS_THAN, value=3, weight=0.6),
            ],
            actions=[
                EscalateTaskAction(
                    id='escalate_task',
                    increment_level=1,
                    notify_supervisor=True,
                    deadline_extension_hours=24,
                ),
                SendNotificationAction(
                    id='notify_assignee',
                    channel='in_app',
                    recipients=('assignee',),
                    template='task_escalated',
                    urgency='high',
                ),
            ],
            metadata={'tags': ['escalation', 'overdue', 'deadline']},
        ),
        BusinessRule(
            id='deadline_adjustment',
            name='Intelligent Deadline Adjustment',
            description='Automatically adjust deadlines based on complexity and dependencies',
            category=RuleCategory.DEADLINE_MANAGEMENT,
            priority=5,
            conditions=[
                Condition(id='has_dependencies', field='task.dependencies',
                          operator=ConditionOperator.EXISTS, weight=0.7),
                Condition(id='complex_task', field='task.estimated_duration',
                          operator=ConditionOperator.GREATER_THAN, value=8, weight=0.6),
            ],
            actions=[
                SetDeadlineAction(
                    id='adjust_deadline',
                    strategy=DeadlineStrategy.COMPLEXITY_BASED,
                    buffer_percentage=0.2,
                    consider_dependencies=True,
                    min_extension_hours=24,
                ),
            ],
            metadata={'tags': ['deadline', 'planning', 'complexity']},
        ),
        BusinessRule(
            id='compliance_review_required',
            name='Compliance Review Requirement',
            description='Require compliance review for certain case types',
            category=RuleCategory.COMPLIANCE,
            priority=6,
            conditions=[
                Condition(id='regulated_case_type', field='case.type', operator=ConditionOperator.IN,
                          value=[CaseType.CRIMINAL_DEFENSE.value, CaseType.MEDICAL_MALPRACTICE.value],
                          weight=0.9),
                Condition(id='critical_task', field='task.category', operator=ConditionOperator.IN,
                          value=['court_filing', 'evidence_handling'], weight=0.8),
            ],
            actions=[
                RequestReviewAction(
                    id='request_compliance_review',
                    review_type='compliance',
                    required_role=UserRole.ADMIN.value,
                    deadline_offset_hours=48,
                    auto_approve_if_no_response=False,
                    failure_strategy=FailureStrategy.STOP,
                ),
                SendNotificationAction(
                    id='notify_compliance_officer',
                    channel='email',
                    recipients=(UserRole.ADMIN.value,),
                    template='compliance_review_required',
                    urgency='high',
                ),
            ],
            metadata={'tags': ['compliance', 'review', 'regulatory']},
        ),
        BusinessRule(
            id='quality_check_before_completion',
            name='Quality Check Before Task Completion',
            description='Ensure quality checks are performed before marking tasks complete',
            category=RuleCategory.QUALITY_CONTROL,
            priority=7,
            conditions=[
                Condition(id='high_value_task', field='task.value',
                          operator=ConditionOperator.GREATER_THAN, value=10000, weight=0.8),
                Condition(id='completion_attempted', field='event.type', operator=ConditionOperator.EQUALS,
                          value=TASK_COMPLETION_ATTEMPTED, weight=0.9),
            ],
            actions=[
                RequestReviewAction(
                    id='require_quality_review',
                    review_type='quality',
                    required_role=UserRole.ATTORNEY.value,
                    deadline_offset_hours=24,
                    checklist=('document_accuracy', 'client_communication', 'deadline_compliance'),
                    failure_strategy=FailureStrategy.STOP,
                ),
            ],
            metadata={'tags': ['quality', 'review', 'validation']},
        ),
        BusinessRule(
            id='dependency_auto_activation',
            name='Dependency-Based Task Activation',
            description='Automatically activate tasks when dependencies are completed',
            category=RuleCategory.TASK_ASSIGNMENT,
            priority=8,
            conditions=[
                Condition(id='has_completed_dependencies', field='task.completed_dependencies',
                          operator=ConditionOperator.GREATER_THAN, value=0, weight=0.8),
                Condition(id='waiting_for_dependencies', field='task.status', operator=ConditionOperator.EQUALS,
                          value=TaskStatus.WAITING_DEPENDENCIES.value, weight=0.9),
            ],
            actions=[
                UpdateStatusAction(
                    id='activate_task',
                    new_status=TaskStatus.PENDING,
                    notify_assignee=True,
                ),
            ],
            metadata={'tags': ['dependencies', 'automation', 'workflow']},
        ),
    ]


def get_default_escalation_paths() -> Dict[str, List[EscalationPath]]:
    return {
        UserRole.ASSISTANT: [
            EscalationPath(
                level=1,
                from_role=UserRole.ASSISTANT,
                to_role=UserRole.ATTORNEY,
                conditions=(Condition(field='escalation_level', operator=ConditionOperator.EQUALS, value=1),),
                notification_rules=(
                    NotificationRule('email', (UserRole.ATTORNEY.value,), 'task_escalated_to_attorney', 'medium'),
                ),
            ),
            EscalationPath(
                level=2,
                from_role=UserRole.ASSISTANT,
                to_role=UserRole.ADMIN,
                conditions=(Condition(field='escalation_level', operator=ConditionOperator.EQUALS, value=2),),
                notification_rules=(
                    NotificationRule('email', (UserRole.ADMIN.value,), 'task_escalated_to_admin', 'high'),
                ),
                approval_required=True,
            ),
        ],
        UserRole.ATTORNEY: [
            EscalationPath(
                level=1,
                from_role=UserRole.ATTORNEY,
                to_role=UserRole.ADMIN,
                conditions=(Condition(field='escalation_level', operator=ConditionOperator.EQUALS, value=1),),
                notification_rules=(
                    NotificationRule('email', (UserRole.ADMIN.value,), 'attorney_task_escalated', 'high'),
                ),
            ),
        ],
    }


def get_default_templates() -> List[TaskTemplate]:
    return [
        TaskTemplate(
            id='criminal_intake_risk_assessment',
            name='Criminal Intake Risk Assessment',
            description='Complete initial risk assessment for criminal case',
            case_type=CaseType.CRIMINAL_DEFENSE,
            phase=CasePhase.INTAKE_RISK_ASSESSMENT,
            title_template='Complete Risk Assessment - {case_title}',
            description_template=(
                'Conduct thorough risk assessment including bail analysis, evidence review, '
                'and potential defenses'
            ),
            default_priority=TaskPriority.HIGH,
            default_assignee_role=UserRole.ATTORNEY,
            due_date_offset_days=3,
            required_fields=('client_statement', 'police_report', 'arrest_records'),
        ),
        TaskTemplate(
            id='criminal_bail_hearing',
            name='Bail Hearing Preparation',
            description='Prepare and conduct bail hearing',
            case_type=CaseType.CRIMINAL_DEFENSE,
            phase=CasePhase.PRE_PROCEEDING_PREPARATION,
            title_template='Prepare Bail Hearing - {case_title}',
            description_template=(
                'Prepare bail application, gather character references, and prepare arguments '
                'for bail hearing'
            ),
            default_priority=TaskPriority.URGENT,
            default_assignee_role=UserRole.ATTORNEY,
            due_date_offset_days=1,
            required_fields=('client_financial_info', 'character_references', 'bail_application'),
        ),
        TaskTemplate(
            id='divorce_mediation',
            name='Divorce Mediation',
            description='Conduct divorce mediation sessions',
            case_type=CaseType.DIVORCE_FAMILY,
            phase=CasePhase.PRE_PROCEEDING_PREPARATION,
            title_template='Conduct Mediation - {case_title}',
            description_template='Schedule and conduct mediation sessions to resolve divorce disputes amicably',
            default_priority=TaskPriority.MEDIUM,
            default_assignee_role=UserRole.ATTORNEY,
            due_date_offset_days=14,
            required_fields=('mediation_agreement', 'financial_disclosures'),
        ),
        TaskTemplate(
            id='divorce_custody_evaluation',
            name='Child Custody Evaluation',
            description='Complete child custody evaluation',
            case_type=CaseType.DIVORCE_FAMILY,
            phase=CasePhase.FORMAL_PROCEEDINGS,
            title_template='Complete Custody Evaluation - {case_title}',
            description_template=(
                'Coordinate with custody evaluator, provide necessary documentation, and prepare '
                'for custody hearing'
            ),
            default_priority=TaskPriority.HIGH,
            default_assignee_role=UserRole.ATTORNEY,
            due_date_offset_days=21,
            required_fields=('custody_questionnaire', 'home_study', 'child_interview_notes'),
        ),
        TaskTemplate(
            id='medical_record_review',
            name='Medical Record Review',
            description='Review medical records for potential malpractice',
            case_type=CaseType.MEDICAL_MALPRACTICE,
            phase=CasePhase.INTAKE_RISK_ASSESSMENT,
            title_template='Review Medical Records - {case_title}',
            description_template='Thoroughly review medical records to identify potential standard of care violations',
            default_priority=TaskPriority.HIGH,
            default_assignee_role=UserRole.ATTORNEY,
            due_date_offset_days=7,
            required_fields=('medical_records', 'expert_consultation_report'),
        ),
        TaskTemplate(
            id='expert_witness_coordination',
            name='Expert Witness Coordination',
            description='Coordinate with medical expert witnesses',
            case_type=CaseType.MEDICAL_MALPRACTICE,
            phase=CasePhase.PRE_PROCEEDING_PREPARATION,
            title_template='Coordinate Expert Witnesses - {case_title}',
            description_template='Identify, retain, and prepare medical expert witnesses for case',
            default_priority=TaskPriority.MEDIUM,
            default_assignee_role=UserRole.ATTORNEY,
            due_date_offset_days=10,
            required_fields=('expert_retainer_agreement', 'expert_report'),
        ),
    ]

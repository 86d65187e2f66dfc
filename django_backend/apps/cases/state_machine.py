"""
Case phase state machine.

Declares which phase moves are legal for every case type, which roles may
perform them and which guards (conditions and required fields) should hold
before the move. The machine is a pure function of its transition table and
the input state: it never mutates cases.
"""

import logging
from dataclasses import dataclass, field
from typing import Any, Dict, Iterable, List, Optional, Tuple

from apps.common.choices import ConditionOperator
from apps.common.conf import get_setting
from apps.common.exceptions import PermissionDenied, TransitionNotAllowed
from apps.common.utils import evaluate_operator, get_nested_value
from apps.users.choices import UserRole

from .choices import CasePhase, CaseStatus, CaseType

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class TransitionCondition:
    """Guard evaluated against the transition request metadata."""

    field: str
    operator: ConditionOperator
    value: Any = None

    def is_met(self, metadata: Dict[str, Any]) -> bool:
        return evaluate_operator(get_nested_value(metadata, self.field), self.operator, self.value)

    def describe(self) -> str:
        if self.operator in (ConditionOperator.EXISTS, ConditionOperator.NOT_EXISTS):
            return f"{self.field} {self.operator}"
        return f"{self.field} {self.operator} {self.value}"


@dataclass(frozen=True)
class TransitionEdge:
    """A declared move between two phases."""

    from_phase: CasePhase
    to_phase: CasePhase
    allowed_roles: Tuple[UserRole, ...]
    conditions: Tuple[TransitionCondition, ...] = ()
    required_fields: Tuple[str, ...] = ()
    case_type: Optional[CaseType] = None

    def merged_with(self, other: 'TransitionEdge') -> 'TransitionEdge':
        """Combine a base edge with a case-type specific refinement."""
        roles = tuple(role for role in self.allowed_roles if role in other.allowed_roles)
        return TransitionEdge(
            from_phase=self.from_phase,
            to_phase=self.to_phase,
            allowed_roles=roles,
            conditions=self.conditions + other.conditions,
            required_fields=tuple(dict.fromkeys(self.required_fields + other.required_fields)),
            case_type=other.case_type,
        )


@dataclass
class CaseState:
    """Snapshot of a case as seen by the workflow core."""

    case_id: str
    case_type: CaseType
    phase: CasePhase
    status: CaseStatus = CaseStatus.ACTIVE
    title: str = ''
    metadata: Dict[str, Any] = field(default_factory=dict)
    version: int = 0


@dataclass
class TransitionCheck:
    """Outcome of asking whether a case may move to a target phase."""

    success: bool
    message: str = ''
    errors: List[str] = field(default_factory=list)
    warnings: List[str] = field(default_factory=list)
    error_code: Optional[str] = None
    edge: Optional[TransitionEdge] = None


def _edge(from_phase, to_phase, conditions=(), required_fields=(), case_type=None) -> TransitionEdge:
    return TransitionEdge(
        from_phase=from_phase,
        to_phase=to_phase,
        allowed_roles=tuple(UserRole.get_case_managing_roles()),
        conditions=tuple(TransitionCondition(*condition) for condition in conditions),
        required_fields=tuple(required_fields),
        case_type=case_type,
    )


EQ = ConditionOperator.EQUALS
EXISTS = ConditionOperator.EXISTS

BASE_TRANSITIONS: Tuple[TransitionEdge, ...] = (
    _edge(CasePhase.INTAKE_RISK_ASSESSMENT, CasePhase.PRE_PROCEEDING_PREPARATION,
          conditions=[('risk_assessment_completed', EQ, True)],
          required_fields=['client_information', 'case_description', 'initial_evidence']),
    _edge(CasePhase.INTAKE_RISK_ASSESSMENT, CasePhase.CLOSURE_REVIEW_ARCHIVING,
          conditions=[('case_rejected', EQ, True)]),
    _edge(CasePhase.PRE_PROCEEDING_PREPARATION, CasePhase.FORMAL_PROCEEDINGS,
          conditions=[('preparation_completed', EQ, True)],
          required_fields=['legal_research', 'document_preparation', 'witness_preparation']),
    _edge(CasePhase.PRE_PROCEEDING_PREPARATION, CasePhase.CLOSURE_REVIEW_ARCHIVING,
          conditions=[('case_settled', EQ, True)]),
    _edge(CasePhase.FORMAL_PROCEEDINGS, CasePhase.RESOLUTION_POST_PROCEEDING,
          conditions=[('proceedings_completed', EQ, True)]),
    _edge(CasePhase.FORMAL_PROCEEDINGS, CasePhase.CLOSURE_REVIEW_ARCHIVING,
          conditions=[('case_dismissed', EQ, True)]),
    _edge(CasePhase.RESOLUTION_POST_PROCEEDING, CasePhase.CLOSURE_REVIEW_ARCHIVING,
          conditions=[('resolution_completed', EQ, True)],
          required_fields=['final_judgment', 'settlement_agreement', 'appeal_period']),
)

CASE_TYPE_TRANSITIONS: Tuple[TransitionEdge, ...] = (
    _edge(CasePhase.INTAKE_RISK_ASSESSMENT, CasePhase.PRE_PROCEEDING_PREPARATION,
          conditions=[('bail_hearing_scheduled', EQ, True), ('evidence_secured', EQ, True)],
          required_fields=['arrest_records', 'police_reports', 'witness_statements'],
          case_type=CaseType.CRIMINAL_DEFENSE),
    _edge(CasePhase.PRE_PROCEEDING_PREPARATION, CasePhase.FORMAL_PROCEEDINGS,
          conditions=[('mediation_attempted', EQ, True), ('custody_agreement', EXISTS, None)],
          required_fields=['marriage_certificate', 'financial_disclosures', 'child_custody_plan'],
          case_type=CaseType.DIVORCE_FAMILY),
    _edge(CasePhase.INTAKE_RISK_ASSESSMENT, CasePhase.PRE_PROCEEDING_PREPARATION,
          conditions=[('medical_records_reviewed', EQ, True), ('expert_consultation_completed', EQ, True)],
          required_fields=['medical_records', 'expert_reports', 'hospital_documentation'],
          case_type=CaseType.MEDICAL_MALPRACTICE),
    _edge(CasePhase.PRE_PROCEEDING_PREPARATION, CasePhase.FORMAL_PROCEEDINGS,
          conditions=[('contract_analyzed', EQ, True), ('breach_documented', EQ, True)],
          required_fields=['contract_document', 'breach_evidence', 'correspondence'],
          case_type=CaseType.CONTRACT_DISPUTE),
    _edge(CasePhase.PRE_PROCEEDING_PREPARATION, CasePhase.FORMAL_PROCEEDINGS,
          conditions=[('labor_board_notified', EQ, True), ('employment_history_verified', EQ, True)],
          required_fields=['employment_contract', 'payroll_records', 'grievance_documentation'],
          case_type=CaseType.LABOR_DISPUTE),
    _edge(CasePhase.INTAKE_RISK_ASSESSMENT, CasePhase.PRE_PROCEEDING_PREPARATION,
          conditions=[('will_located', EXISTS, None), ('heirs_identified', EQ, True)],
          required_fields=['death_certificate', 'will_document', 'probate_court_filing'],
          case_type=CaseType.INHERITANCE_DISPUTE),
    _edge(CasePhase.FORMAL_PROCEEDINGS, CasePhase.RESOLUTION_POST_PROCEEDING,
          conditions=[('administrative_hearing_completed', EQ, True), ('evidence_submitted', EQ, True)],
          required_fields=['agency_decision', 'appeal_documentation', 'compliance_report'],
          case_type=CaseType.ADMINISTRATIVE_CASE),
    _edge(CasePhase.PRE_PROCEEDING_PREPARATION, CasePhase.FORMAL_PROCEEDINGS,
          conditions=[('property_inspection_completed', EQ, True), ('notices_served', EQ, True)],
          required_fields=['property_survey', 'demolition_permit', 'environmental_assessment'],
          case_type=CaseType.DEMOLITION_CASE),
    _edge(CasePhase.INTAKE_RISK_ASSESSMENT, CasePhase.PRE_PROCEEDING_PREPARATION,
          conditions=[('specialized_assessment_completed', EQ, True), ('expert_consultation_scheduled', EQ, True)],
          required_fields=['case_assessment', 'expert_referral', 'specialized_documentation'],
          case_type=CaseType.SPECIAL_MATTERS),
)


class StateMachine:
    """
    Validates case phase transitions against a static transition table.

    The table is keyed on ``(case_type, from_phase)``. Case-type specific
    edges refine the base edge with the same endpoints: their guards are
    added to the base guards.
    """

    def __init__(
        self,
        base_transitions: Iterable[TransitionEdge] = BASE_TRANSITIONS,
        case_type_transitions: Iterable[TransitionEdge] = CASE_TYPE_TRANSITIONS,
        enforce_guards: Optional[bool] = None,
    ):
        self._base = tuple(base_transitions)
        self._case_type = tuple(case_type_transitions)
        self._enforce_guards = enforce_guards
        self._table: Dict[Tuple[CaseType, CasePhase], Dict[CasePhase, TransitionEdge]] = self._build_table()

    @property
    def enforce_guards(self) -> bool:
        if self._enforce_guards is None:
            return bool(get_setting('ENFORCE_TRANSITION_GUARDS'))
        return self._enforce_guards

    def _build_table(self) -> Dict[Tuple[CaseType, CasePhase], Dict[CasePhase, TransitionEdge]]:
        table: Dict[Tuple[CaseType, CasePhase], Dict[CasePhase, TransitionEdge]] = {}
        for case_type in CaseType:
            for edge in self._base:
                table.setdefault((case_type, edge.from_phase), {})[edge.to_phase] = edge
        for edge in self._case_type:
            targets = table.setdefault((edge.case_type, edge.from_phase), {})
            base = targets.get(edge.to_phase)
            targets[edge.to_phase] = base.merged_with(edge) if base else edge
        return table

    def _targets(self, case_type: CaseType, phase: CasePhase) -> Dict[CasePhase, TransitionEdge]:
        try:
            key = (CaseType(case_type), CasePhase(phase))
        except ValueError:
            return {}
        return self._table.get(key, {})

    def get_edge(self, case_type: CaseType, from_phase: CasePhase, to_phase: CasePhase) -> Optional[TransitionEdge]:
        try:
            return self._targets(case_type, from_phase).get(CasePhase(to_phase))
        except ValueError:
            return None

    def validate_transition(self, state: CaseState, target_phase: CasePhase, role: UserRole) -> TransitionEdge:
        """
        Return the edge for the move or raise.

        Raises:
            TransitionNotAllowed: no edge from the current phase to the target
            PermissionDenied: the edge exists but the role may not take it
        """
        edge = self.get_edge(state.case_type, state.phase, target_phase)
        if edge is None:
            raise TransitionNotAllowed(
                f"Invalid transition from {state.phase} to {target_phase}",
                details={'case_type': state.case_type, 'from_phase': state.phase, 'to_phase': target_phase},
            )
        if role not in edge.allowed_roles:
            raise PermissionDenied(
                f"User role {role} is not authorized for the transition from {state.phase} to {target_phase}",
                details={'role': role, 'allowed_roles': list(edge.allowed_roles)},
            )
        return edge

    def evaluate_guards(self, edge: TransitionEdge, metadata: Optional[Dict[str, Any]]) -> List[str]:
        """List the unmet guards of an edge as human readable messages."""
        metadata = metadata or {}
        problems = []
        missing = [name for name in edge.required_fields if name not in metadata]
        if missing:
            problems.append(f"Missing required fields: {', '.join(missing)}")
        for condition in edge.conditions:
            if not condition.is_met(metadata):
                problems.append(f"Condition failed: {condition.describe()}")
        return problems

    def can_transition(
        self,
        state: CaseState,
        target_phase: CasePhase,
        role: UserRole,
        metadata: Optional[Dict[str, Any]] = None,
    ) -> TransitionCheck:
        """
        Check whether ``state`` may move to ``target_phase``.

        Success depends only on the edge existing and the role being
        allowed. Unmet guards are reported as warnings, or as errors when
        guard enforcement is switched on.
        """
        try:
            edge = self.validate_transition(state, target_phase, role)
        except (TransitionNotAllowed, PermissionDenied) as exc:
            logger.debug(f"Transition check failed for case {state.case_id}: {exc.message}")
            return TransitionCheck(success=False, message=exc.message, errors=[exc.message], error_code=exc.code)

        problems = self.evaluate_guards(edge, metadata)
        if problems and self.enforce_guards:
            return TransitionCheck(
                success=False,
                message="Transition guards not met",
                errors=problems,
                error_code='transition_guards_not_met',
                edge=edge,
            )
        return TransitionCheck(
            success=True,
            message=f"Transition from {state.phase} to {target_phase} is allowed",
            warnings=problems,
            edge=edge,
        )

    def get_available_transitions(self, state: CaseState, role: UserRole) -> List[CasePhase]:
        targets = self._targets(state.case_type, state.phase)
        return [phase for phase, edge in targets.items() if role in edge.allowed_roles]

    def get_phase_requirements(self, phase: CasePhase, case_type: CaseType) -> List[str]:
        """Union of the required fields of every edge leaving ``phase``."""
        requirements: Dict[str, None] = {}
        for edge in self._targets(case_type, phase).values():
            requirements.update(dict.fromkeys(edge.required_fields))
        return list(requirements)

    def get_case_type_workflow(self, case_type: CaseType) -> List[TransitionEdge]:
        return [edge for edge in self._case_type if edge.case_type == case_type]

    def get_all_transitions(self) -> List[TransitionEdge]:
        return list(self._base) + list(self._case_type)

    def is_terminal(self, phase: CasePhase, case_type: CaseType) -> bool:
        return not self._targets(case_type, phase)


state_machine = StateMachine()

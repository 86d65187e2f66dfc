"""
Case transition service.

``request_transition`` is the only writer of a case's phase and status.
It validates the move with the state machine and persists the new state
while holding the case lock, so two requests for the same case never
interleave validation and commit.
"""

import logging
from dataclasses import dataclass, field, replace
from typing import Any, Dict, List, Optional

from apps.common.exceptions import ConcurrentModification, NotFound
from apps.common.ports import Clock, SystemClock
from apps.common.utils import merge_metadata
from apps.users.choices import UserRole

from .choices import CasePhase, CaseStatus
from .repositories import CaseRepository, InMemoryCaseRepository, TransitionRecord
from .state_machine import CaseState, StateMachine, state_machine as default_state_machine

logger = logging.getLogger(__name__)


@dataclass
class TransitionResult:
    """Structured outcome of a transition request."""

    success: bool
    case_id: str
    from_phase: Optional[CasePhase] = None
    to_phase: Optional[CasePhase] = None
    from_status: Optional[CaseStatus] = None
    to_status: Optional[CaseStatus] = None
    message: str = ''
    errors: List[str] = field(default_factory=list)
    warnings: List[str] = field(default_factory=list)
    error_code: Optional[str] = None
    case: Optional[CaseState] = None


class CaseTransitionService:
    """Applies validated phase transitions to persisted cases."""

    def __init__(
        self,
        repository: Optional[CaseRepository] = None,
        machine: Optional[StateMachine] = None,
        clock: Optional[Clock] = None,
    ):
        self.repository = repository or InMemoryCaseRepository()
        self.state_machine = machine or default_state_machine
        self.clock = clock or SystemClock()

    def open_case(self, state: CaseState) -> CaseState:
        """Register a new case with the repository."""
        logger.info(f"Opening case {state.case_id} ({state.case_type}) in phase {state.phase}")
        return self.repository.add(state)

    def get_case(self, case_id: str) -> CaseState:
        return self.repository.get(case_id)

    @staticmethod
    def resolve_target_status(target_phase: CasePhase, target_status: Optional[CaseStatus]) -> CaseStatus:
        if target_status:
            return CaseStatus(target_status)
        if target_phase == CasePhase.CLOSURE_REVIEW_ARCHIVING:
            return CaseStatus.COMPLETED
        return CaseStatus.ACTIVE

    def request_transition(
        self,
        case_id: str,
        target_phase: CasePhase,
        user_id: str,
        user_role: UserRole,
        target_status: Optional[CaseStatus] = None,
        reason: Optional[str] = None,
        metadata: Optional[Dict[str, Any]] = None,
    ) -> TransitionResult:
        """
        Move a case to ``target_phase`` if the state machine allows it.

        Args:
            case_id: Case to move
            target_phase: Phase to enter
            user_id: Requesting user
            user_role: Role of the requesting user
            target_status: Status after the move; defaults to ACTIVE, or
                COMPLETED when entering closure
            reason: Free text stored in the audit trail
            metadata: Facts supporting the transition, merged into the case

        Returns:
            TransitionResult describing the accepted or rejected move
        """
        try:
            with self.repository.lock(case_id):
                state = self.repository.get(case_id)
                merged = merge_metadata(state.metadata, metadata)
                check = self.state_machine.can_transition(state, target_phase, user_role, merged)
                if not check.success:
                    logger.warning(
                        f"Rejected transition of case {case_id} from {state.phase} to {target_phase} "
                        f"by {user_id} ({user_role}): {'; '.join(check.errors)}"
                    )
                    return TransitionResult(
                        success=False,
                        case_id=case_id,
                        from_phase=state.phase,
                        to_phase=CasePhase(target_phase),
                        from_status=state.status,
                        message=check.message,
                        errors=check.errors,
                        error_code=check.error_code,
                        case=state,
                    )

                new_status = self.resolve_target_status(target_phase, target_status)
                updated = self.repository.save(
                    replace(state, phase=CasePhase(target_phase), status=new_status, metadata=merged),
                    expected_version=state.version,
                )
                self.repository.record_transition(TransitionRecord(
                    case_id=case_id,
                    from_phase=state.phase,
                    to_phase=updated.phase,
                    from_status=state.status,
                    to_status=new_status,
                    user_id=user_id,
                    user_role=str(user_role),
                    reason=reason or '',
                    warnings=list(check.warnings),
                    metadata=dict(metadata or {}),
                    timestamp=self.clock.now(),
                ))
        except (NotFound, ConcurrentModification) as exc:
            logger.warning(f"Transition of case {case_id} failed: {exc.message}")
            return TransitionResult(
                success=False,
                case_id=case_id,
                to_phase=target_phase,
                message=exc.message,
                errors=[exc.message],
                error_code=exc.code,
            )
        except ValueError as exc:
            message = f"Invalid transition request: {exc}"
            return TransitionResult(success=False, case_id=case_id, message=message, errors=[message],
                                    error_code='validation_error')

        logger.info(
            f"Case {case_id} moved from {state.phase} to {updated.phase} ({new_status}) by {user_id}"
        )
        return TransitionResult(
            success=True,
            case_id=case_id,
            from_phase=state.phase,
            to_phase=updated.phase,
            from_status=state.status,
            to_status=new_status,
            message=check.message,
            warnings=check.warnings,
            case=updated,
        )

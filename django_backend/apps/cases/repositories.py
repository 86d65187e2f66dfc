"""
Case persistence.

Two interchangeable backends implement ``CaseRepository``: an in-memory
store that serializes writers with one lock per case, and a Django store
that locks the case row and checks the version on update.
"""

import copy
import logging
import threading
from contextlib import contextmanager
from dataclasses import dataclass, field, replace
from datetime import datetime
from typing import Any, Dict, Iterator, List, Optional, Protocol

from django.db import transaction
from django.db.models import F
from django.utils import timezone

from apps.common.exceptions import ConcurrentModification, NotFound

from .choices import CasePhase, CaseStatus, CaseType
from .models import Case, CaseTransition
from .state_machine import CaseState

logger = logging.getLogger(__name__)


@dataclass
class TransitionRecord:
    """Audit entry for an accepted transition."""

    case_id: str
    from_phase: CasePhase
    to_phase: CasePhase
    from_status: CaseStatus
    to_status: CaseStatus
    user_id: str
    user_role: str
    reason: str = ''
    warnings: List[str] = field(default_factory=list)
    metadata: Dict[str, Any] = field(default_factory=dict)
    timestamp: Optional[datetime] = None


class CaseRepository(Protocol):
    """Persistence port for cases and their transition audit trail."""

    def lock(self, case_id: str):
        ...

    def get(self, case_id: str) -> CaseState:
        ...

    def add(self, state: CaseState) -> CaseState:
        ...

    def save(self, state: CaseState, expected_version: int) -> CaseState:
        ...

    def record_transition(self, record: TransitionRecord) -> None:
        ...

    def list_transitions(self, case_id: str) -> List[TransitionRecord]:
        ...


class InMemoryCaseRepository:
    """Case store for tests and single-process deployments."""

    def __init__(self):
        self._registry_lock = threading.Lock()
        self._case_locks: Dict[str, threading.RLock] = {}
        self._cases: Dict[str, CaseState] = {}
        self._transitions: Dict[str, List[TransitionRecord]] = {}

    def _lock_for(self, case_id: str) -> threading.RLock:
        with self._registry_lock:
            return self._case_locks.setdefault(case_id, threading.RLock())

    @contextmanager
    def lock(self, case_id: str) -> Iterator[None]:
        """Serialize every read-validate-write sequence on one case."""
        case_lock = self._lock_for(case_id)
        with case_lock:
            yield

    def get(self, case_id: str) -> CaseState:
        state = self._cases.get(case_id)
        if state is None:
            raise NotFound(f"Case {case_id} not found", details={'case_id': case_id})
        return copy.deepcopy(state)

    def exists(self, case_id: str) -> bool:
        return case_id in self._cases

    def add(self, state: CaseState) -> CaseState:
        with self.lock(state.case_id):
            self._cases[state.case_id] = copy.deepcopy(state)
        return state

    def save(self, state: CaseState, expected_version: int) -> CaseState:
        with self.lock(state.case_id):
            current = self._cases.get(state.case_id)
            if current is None:
                raise NotFound(f"Case {state.case_id} not found", details={'case_id': state.case_id})
            if current.version != expected_version:
                raise ConcurrentModification(
                    f"Case {state.case_id} changed (version {current.version}, expected {expected_version})",
                    details={'case_id': state.case_id},
                )
            stored = replace(copy.deepcopy(state), version=expected_version + 1)
            self._cases[state.case_id] = stored
        return copy.deepcopy(stored)

    def record_transition(self, record: TransitionRecord) -> None:
        with self.lock(record.case_id):
            self._transitions.setdefault(record.case_id, []).append(record)

    def list_transitions(self, case_id: str) -> List[TransitionRecord]:
        return list(self._transitions.get(case_id, []))

    def list_cases(self) -> List[CaseState]:
        return [copy.deepcopy(state) for state in self._cases.values()]


def _to_state(case: Case) -> CaseState:
    return CaseState(
        case_id=case.case_id,
        case_type=CaseType(case.case_type),
        phase=CasePhase(case.phase),
        status=CaseStatus(case.status),
        title=case.title,
        metadata=dict(case.metadata or {}),
        version=case.version,
    )


class DjangoCaseRepository:
    """Case store backed by the ``Case`` and ``CaseTransition`` models."""

    @contextmanager
    def lock(self, case_id: str) -> Iterator[None]:
        """Hold the case row lock for the duration of the block."""
        with transaction.atomic():
            if not Case.objects.select_for_update().filter(case_id=case_id).exists():
                raise NotFound(f"Case {case_id} not found", details={'case_id': case_id})
            yield

    def get(self, case_id: str) -> CaseState:
        try:
            return _to_state(Case.objects.get(case_id=case_id))
        except Case.DoesNotExist:
            raise NotFound(f"Case {case_id} not found", details={'case_id': case_id})

    def add(self, state: CaseState) -> CaseState:
        case = Case.objects.create(
            case_id=state.case_id,
            title=state.title,
            case_type=state.case_type,
            phase=state.phase,
            status=state.status,
            metadata=state.metadata,
            version=state.version,
        )
        return _to_state(case)

    def save(self, state: CaseState, expected_version: int) -> CaseState:
        updated = Case.objects.filter(case_id=state.case_id, version=expected_version).update(
            phase=state.phase,
            status=state.status,
            title=state.title,
            metadata=state.metadata,
            version=F('version') + 1,
            updated_at=timezone.now(),
        )
        if not updated:
            if not Case.objects.filter(case_id=state.case_id).exists():
                raise NotFound(f"Case {state.case_id} not found", details={'case_id': state.case_id})
            raise ConcurrentModification(
                f"Case {state.case_id} changed since version {expected_version}",
                details={'case_id': state.case_id},
            )
        return self.get(state.case_id)

    def record_transition(self, record: TransitionRecord) -> None:
        CaseTransition.objects.create(
            case=Case.objects.get(case_id=record.case_id),
            from_phase=record.from_phase,
            to_phase=record.to_phase,
            from_status=record.from_status,
            to_status=record.to_status,
            user_id=record.user_id,
            user_role=record.user_role,
            reason=record.reason,
            warnings=record.warnings,
            metadata=record.metadata,
        )

    def list_transitions(self, case_id: str) -> List[TransitionRecord]:
        return [
            TransitionRecord(
                case_id=case_id,
                from_phase=CasePhase(entry.from_phase),
                to_phase=CasePhase(entry.to_phase),
                from_status=CaseStatus(entry.from_status),
                to_status=CaseStatus(entry.to_status),
                user_id=entry.user_id,
                user_role=entry.user_role,
                reason=entry.reason,
                warnings=list(entry.warnings),
                metadata=dict(entry.metadata),
                timestamp=entry.created_at,
            )
            for entry in CaseTransition.objects.filter(case__case_id=case_id)
        ]

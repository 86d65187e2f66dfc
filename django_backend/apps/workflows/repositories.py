"""
Business rule persistence.

``InMemoryRuleRepository`` keeps rules in a dict guarded by a lock;
``DjangoRuleRepository`` stores them in ``BusinessRuleRecord`` rows and
bumps the statistics counters with ``F()`` expressions so concurrent
evaluations never lose an increment.
"""

import copy
import threading
from contextlib import contextmanager
from datetime import datetime
from typing import Iterable, Iterator, List, Optional, Protocol

from django.db import transaction
from django.db.models import F
from django.utils import timezone

from apps.common.exceptions import NotFound

from .entities import BusinessRule, Condition, RuleAction
from .models import BusinessRuleRecord


class RuleRepository(Protocol):
    """Persistence port for business rules and their counters."""

    def lock(self):
        ...

    def find(self, rule_id: str) -> Optional[BusinessRule]:
        ...

    def get(self, rule_id: str) -> BusinessRule:
        ...

    def list(self, category: Optional[str] = None, active_only: bool = False) -> List[BusinessRule]:
        ...

    def add(self, rule: BusinessRule) -> BusinessRule:
        ...

    def save(self, rule: BusinessRule) -> BusinessRule:
        ...

    def delete(self, rule_id: str) -> bool:
        ...

    def record_outcome(
        self,
        rule_id: str,
        succeeded: bool,
        failed: bool,
        execution_time: float,
        timestamp: datetime,
    ) -> None:
        ...

    def reset_stats(self, rule_id: Optional[str] = None) -> int:
        ...


def _sorted(rules: Iterable[BusinessRule]) -> List[BusinessRule]:
    return sorted(rules, key=lambda rule: (rule.priority, rule.id))


def _not_found(rule_id: str) -> NotFound:
    return NotFound(f"Rule not found: {rule_id}", details={'rule_id': rule_id})


class InMemoryRuleRepository:
    """Rule registry for tests and single-process hosts."""

    def __init__(self, rules: Optional[Iterable[BusinessRule]] = None):
        self._lock = threading.RLock()
        self._rules = {}
        for rule in rules or []:
            self._rules[rule.id] = copy.deepcopy(rule)

    @contextmanager
    def lock(self) -> Iterator[None]:
        with self._lock:
            yield

    def find(self, rule_id: str) -> Optional[BusinessRule]:
        rule = self._rules.get(rule_id)
        return copy.deepcopy(rule) if rule else None

    def get(self, rule_id: str) -> BusinessRule:
        rule = self.find(rule_id)
        if rule is None:
            raise _not_found(rule_id)
        return rule

    def list(self, category=None, active_only=False) -> List[BusinessRule]:
        with self._lock:
            rules = [
                copy.deepcopy(rule) for rule in self._rules.values()
                if (category is None or rule.category == category) and (rule.is_active or not active_only)
            ]
        return _sorted(rules)

    def add(self, rule: BusinessRule) -> BusinessRule:
        with self._lock:
            self._rules[rule.id] = copy.deepcopy(rule)
        return rule

    def save(self, rule: BusinessRule) -> BusinessRule:
        with self._lock:
            current = self._rules.get(rule.id)
            if current is None:
                raise _not_found(rule.id)
            stored = copy.deepcopy(rule)
            # Counters are owned by record_outcome.
            stored.trigger_count = current.trigger_count
            stored.success_count = current.success_count
            stored.failure_count = current.failure_count
            stored.total_execution_time = current.total_execution_time
            stored.last_triggered = current.last_triggered
            self._rules[rule.id] = stored
        return rule

    def delete(self, rule_id: str) -> bool:
        with self._lock:
            return self._rules.pop(rule_id, None) is not None

    def record_outcome(self, rule_id, succeeded, failed, execution_time, timestamp) -> None:
        with self._lock:
            rule = self._rules.get(rule_id)
            if rule is None:
                return
            rule.trigger_count += 1
            if succeeded:
                rule.success_count += 1
            if failed:
                rule.failure_count += 1
            rule.total_execution_time += execution_time
            rule.last_triggered = timestamp

    def reset_stats(self, rule_id: Optional[str] = None) -> int:
        with self._lock:
            if rule_id is None:
                rules = list(self._rules.values())
            else:
                rules = [self._rules[rule_id]] if rule_id in self._rules else []
            for rule in rules:
                rule.trigger_count = rule.success_count = rule.failure_count = 0
                rule.total_execution_time = 0.0
                rule.last_triggered = None
        return len(rules)


def _to_entity(record: BusinessRuleRecord) -> BusinessRule:
    return BusinessRule(
        id=record.rule_id,
        name=record.name,
        description=record.description,
        category=record.category,
        priority=record.priority,
        is_active=record.is_active,
        conditions=[Condition.from_dict(item) for item in record.conditions],
        actions=[RuleAction.from_dict(item) for item in record.actions],
        metadata=dict(record.metadata),
        created_at=record.created_at,
        updated_at=record.updated_at,
        last_triggered=record.last_triggered,
        trigger_count=record.trigger_count,
        success_count=record.success_count,
        failure_count=record.failure_count,
        total_execution_time=record.total_execution_time,
    )


def _to_fields(rule: BusinessRule) -> dict:
    definition = rule.definition()
    return {
        'name': rule.name,
        'description': rule.description,
        'category': str(rule.category),
        'priority': rule.priority,
        'is_active': rule.is_active,
        'conditions': definition['conditions'],
        'actions': definition['actions'],
        'metadata': dict(rule.metadata),
    }


class DjangoRuleRepository:
    """Rule store backed by the ORM."""

    @contextmanager
    def lock(self) -> Iterator[None]:
        with transaction.atomic():
            yield

    def find(self, rule_id: str) -> Optional[BusinessRule]:
        record = BusinessRuleRecord.objects.filter(rule_id=rule_id).first()
        return _to_entity(record) if record else None

    def get(self, rule_id: str) -> BusinessRule:
        rule = self.find(rule_id)
        if rule is None:
            raise _not_found(rule_id)
        return rule

    def list(self, category=None, active_only=False) -> List[BusinessRule]:
        queryset = BusinessRuleRecord.objects.active() if active_only else BusinessRuleRecord.objects.all()
        if category is not None:
            queryset = queryset.for_category(category)
        return _sorted(_to_entity(record) for record in queryset)

    def add(self, rule: BusinessRule) -> BusinessRule:
        record, _ = BusinessRuleRecord.objects.update_or_create(
            rule_id=rule.id, defaults=_to_fields(rule)
        )
        return _to_entity(record)

    def save(self, rule: BusinessRule) -> BusinessRule:
        updated = BusinessRuleRecord.objects.filter(rule_id=rule.id).update(
            updated_at=timezone.now(), **_to_fields(rule)
        )
        if not updated:
            raise _not_found(rule.id)
        return rule

    def delete(self, rule_id: str) -> bool:
        deleted, _ = BusinessRuleRecord.objects.filter(rule_id=rule_id).delete()
        return bool(deleted)

    def record_outcome(self, rule_id, succeeded, failed, execution_time, timestamp) -> None:
        updates = {
            'trigger_count': F('trigger_count') + 1,
            'total_execution_time': F('total_execution_time') + execution_time,
            'last_triggered': timestamp,
            'updated_at': timezone.now(),
        }
        if succeeded:
            updates['success_count'] = F('success_count') + 1
        if failed:
            updates['failure_count'] = F('failure_count') + 1
        BusinessRuleRecord.objects.filter(rule_id=rule_id).update(**updates)

    def reset_stats(self, rule_id: Optional[str] = None) -> int:
        queryset = BusinessRuleRecord.objects.all()
        if rule_id is not None:
            queryset = queryset.filter(rule_id=rule_id)
        return queryset.update(
            trigger_count=0,
            success_count=0,
            failure_count=0,
            total_execution_time=0.0,
            last_triggered=None,
            updated_at=timezone.now(),
        )

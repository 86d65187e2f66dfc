"""
Workflow models.

Business rules are stored with their conditions and actions as JSON and
their evaluation counters as plain columns, so counters can be bumped
with ``F()`` expressions without rewriting the definition.
"""

from django.db import models
from django.db.models import QuerySet
from django.utils.translation import gettext_lazy as _

from apps.common.models import MetadataMixin, TimestampMixin
from apps.workflows.choices import RuleCategory


class BusinessRuleQuerySet(QuerySet):

    def active(self) -> QuerySet:
        """Active rules in evaluation order."""
        return self.filter(is_active=True).order_by('priority', 'rule_id')

    def for_category(self, category: str) -> QuerySet:
        return self.filter(category=category)


class BusinessRuleRecord(TimestampMixin, MetadataMixin):
    """
    Persisted business rule and its evaluation statistics.

    Lower ``priority`` values are evaluated first.
    """

    rule_id = models.CharField(
        max_length=100,
        unique=True,
        help_text=_("Stable rule identifier")
    )
    name = models.CharField(max_length=200)
    description = models.TextField(blank=True)
    category = models.CharField(
        max_length=30,
        choices=RuleCategory.choices,
        db_index=True
    )
    priority = models.IntegerField(
        default=100,
        db_index=True,
        help_text=_("Evaluation order, lowest first")
    )
    is_active = models.BooleanField(default=True, db_index=True)
    conditions = models.JSONField(default=list, blank=True)
    actions = models.JSONField(default=list, blank=True)

    # Statistics
    trigger_count = models.PositiveIntegerField(default=0)
    success_count = models.PositiveIntegerField(default=0)
    failure_count = models.PositiveIntegerField(default=0)
    total_execution_time = models.FloatField(
        default=0.0,
        help_text=_("Sum of evaluation times in milliseconds")
    )
    last_triggered = models.DateTimeField(null=True, blank=True)

    objects = BusinessRuleQuerySet.as_manager()

    class Meta:
        db_table = 'workflows_business_rule'
        ordering = ['priority', 'rule_id']
        verbose_name = _('Business Rule')
        verbose_name_plural = _('Business Rules')
        indexes = [
            models.Index(fields=['is_active', 'priority'], name='workflows_rule_active_idx'),
        ]

    def __str__(self) -> str:
        return f"{self.name} ({self.rule_id})"

    @property
    def success_rate(self) -> float:
        if not self.trigger_count:
            return 0.0
        return self.success_count * 100 / self.trigger_count

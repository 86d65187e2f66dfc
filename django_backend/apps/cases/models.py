from django.db import models
from django.utils.translation import gettext_lazy as _

from apps.common.models import MetadataMixin, TimestampMixin
from apps.cases.choices import CasePhase, CaseStatus, CaseType
from apps.users.choices import UserRole


class Case(TimestampMixin, MetadataMixin):
    """Persisted case aggregate; ``version`` guards concurrent transitions."""

    case_id = models.CharField(
        max_length=64,
        unique=True,
        help_text=_("External case identifier")
    )
    title = models.CharField(
        max_length=255,
        blank=True,
        help_text=_("Case title")
    )
    case_type = models.CharField(
        max_length=32,
        choices=CaseType.choices,
        db_index=True,
        help_text=_("Practice area of the case")
    )
    phase = models.CharField(
        max_length=40,
        choices=CasePhase.choices,
        default=CasePhase.INTAKE_RISK_ASSESSMENT,
        db_index=True,
        help_text=_("Current workflow phase")
    )
    status = models.CharField(
        max_length=20,
        choices=CaseStatus.choices,
        default=CaseStatus.DRAFT,
        db_index=True,
        help_text=_("Current lifecycle status")
    )
    version = models.PositiveIntegerField(
        default=0,
        help_text=_("Optimistic concurrency counter, bumped on every transition")
    )

    class Meta:
        db_table = 'cases_case'
        verbose_name = _('Case')
        verbose_name_plural = _('Cases')
        ordering = ['-created_at']
        indexes = [
            models.Index(fields=['case_type', 'phase'], name='cases_type_phase_idx'),
        ]

    def __str__(self):
        return f"{self.case_id} ({self.get_phase_display()})"


class CaseTransition(TimestampMixin, MetadataMixin):
    """Audit record of an accepted phase transition."""

    case = models.ForeignKey(
        Case,
        on_delete=models.CASCADE,
        related_name='transitions',
        help_text=_("Case that moved")
    )
    from_phase = models.CharField(max_length=40, choices=CasePhase.choices)
    to_phase = models.CharField(max_length=40, choices=CasePhase.choices)
    from_status = models.CharField(max_length=20, choices=CaseStatus.choices)
    to_status = models.CharField(max_length=20, choices=CaseStatus.choices)
    user_id = models.CharField(
        max_length=64,
        help_text=_("User who requested the transition")
    )
    user_role = models.CharField(max_length=20, choices=UserRole.choices)
    reason = models.TextField(blank=True)
    warnings = models.JSONField(default=list, blank=True)

    class Meta:
        db_table = 'cases_transition'
        verbose_name = _('Case Transition')
        verbose_name_plural = _('Case Transitions')
        ordering = ['created_at', 'id']

    def __str__(self):
        return f"{self.case.case_id}: {self.from_phase} -> {self.to_phase}"

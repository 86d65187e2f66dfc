from django.db import models
from django.utils.translation import gettext_lazy as _


class CaseType(models.TextChoices):
    """Practice areas handled by the firm."""

    LABOR_DISPUTE = 'labor_dispute', _('Labor Dispute')
    MEDICAL_MALPRACTICE = 'medical_malpractice', _('Medical Malpractice')
    CRIMINAL_DEFENSE = 'criminal_defense', _('Criminal Defense')
    DIVORCE_FAMILY = 'divorce_family', _('Divorce & Family')
    INHERITANCE_DISPUTE = 'inheritance_dispute', _('Inheritance Dispute')
    CONTRACT_DISPUTE = 'contract_dispute', _('Contract Dispute')
    ADMINISTRATIVE_CASE = 'administrative_case', _('Administrative Case')
    DEMOLITION_CASE = 'demolition_case', _('Demolition Case')
    SPECIAL_MATTERS = 'special_matters', _('Special Matters')


class CasePhase(models.TextChoices):
    """Workflow phases a case moves through."""

    INTAKE_RISK_ASSESSMENT = 'intake_risk_assessment', _('Intake & Risk Assessment')
    PRE_PROCEEDING_PREPARATION = 'pre_proceeding_preparation', _('Pre-Proceeding Preparation')
    FORMAL_PROCEEDINGS = 'formal_proceedings', _('Formal Proceedings')
    RESOLUTION_POST_PROCEEDING = 'resolution_post_proceeding', _('Resolution & Post-Proceeding')
    CLOSURE_REVIEW_ARCHIVING = 'closure_review_archiving', _('Closure, Review & Archiving')

    @classmethod
    def get_workflow_order(cls):
        """Get the regular phase progression."""
        return [
            cls.INTAKE_RISK_ASSESSMENT,
            cls.PRE_PROCEEDING_PREPARATION,
            cls.FORMAL_PROCEEDINGS,
            cls.RESOLUTION_POST_PROCEEDING,
            cls.CLOSURE_REVIEW_ARCHIVING,
        ]


class CaseStatus(models.TextChoices):
    """Lifecycle status of a case."""

    DRAFT = 'draft', _('Draft')
    ACTIVE = 'active', _('Active')
    ON_HOLD = 'on_hold', _('On Hold')
    COMPLETED = 'completed', _('Completed')
    CANCELLED = 'cancelled', _('Cancelled')

    @classmethod
    def get_closed_statuses(cls):
        return [cls.COMPLETED, cls.CANCELLED]

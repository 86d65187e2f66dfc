from django.db import models
from django.utils.translation import gettext_lazy as _


class ConditionOperator(models.TextChoices):
    """Comparison operators shared by transition guards, templates and rules."""

    EQUALS = 'equals', _('Equals')
    NOT_EQUALS = 'not_equals', _('Not Equals')
    CONTAINS = 'contains', _('Contains')
    EXISTS = 'exists', _('Exists')
    NOT_EXISTS = 'not_exists', _('Does Not Exist')
    GREATER_THAN = 'greater_than', _('Greater Than')
    LESS_THAN = 'less_than', _('Less Than')
    IN = 'in', _('In')
    NOT_IN = 'not_in', _('Not In')
    MATCHES_PATTERN = 'matches_pattern', _('Matches Pattern')

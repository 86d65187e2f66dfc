"""
Django application configuration for the cases module.
"""

from django.apps import AppConfig


class CasesConfig(AppConfig):
    """
    Application configuration for the cases module.

    Owns the case aggregate, the phase state machine and the transition
    audit trail.
    """

    default_auto_field = 'django.db.models.BigAutoField'
    name = 'apps.cases'
    verbose_name = 'Cases & Phase Transitions'

"""
Django application configuration for the workflows module.
"""

from django.apps import AppConfig
from django.utils.translation import gettext_lazy as _


class WorkflowsConfig(AppConfig):
    """
    Configuration class for the workflows application.

    Owns the business rule engine, the task template engine and the
    case/task orchestrator that drives them.
    """

    default_auto_field = 'django.db.models.BigAutoField'
    name = 'apps.workflows'
    label = 'workflows'
    verbose_name = _('Workflows & Automation')

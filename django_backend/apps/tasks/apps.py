"""
Django application configuration for the tasks module.
"""

from django.apps import AppConfig
from django.utils.translation import gettext_lazy as _


class TasksConfig(AppConfig):
    """
    Configuration class for the tasks application.

    Owns scheduled tasks, recurrence expansion, priority scoring and the
    schedule audit trail.
    """

    default_auto_field = 'django.db.models.BigAutoField'
    name = 'apps.tasks'
    label = 'tasks'
    verbose_name = _('Task Scheduling')

"""
Django application configuration for the users module.
"""

from django.apps import AppConfig
from django.utils.translation import gettext_lazy as _


class UsersConfig(AppConfig):
    """Identity lookups for assignment, escalation and notification routing."""

    default_auto_field = 'django.db.models.BigAutoField'
    name = 'apps.users'
    label = 'users'
    verbose_name = _('Case Team Directory')

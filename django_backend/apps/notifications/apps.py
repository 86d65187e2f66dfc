"""
Notifications application configuration.
"""
from django.apps import AppConfig
from django.utils.translation import gettext_lazy as _


class NotificationsConfig(AppConfig):
    """
    Configuration class for the notifications application.

    Owns notification payloads, recipient resolution and the outbox the
    delivery workers read from.
    """

    default_auto_field = 'django.db.models.BigAutoField'
    name = 'apps.notifications'
    label = 'notifications'
    verbose_name = _('Notifications')

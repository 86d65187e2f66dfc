"""
Notification choices.

Channels and urgency levels of the payloads the orchestration core hands to
the notification port.
"""

from django.db import models
from django.utils.translation import gettext_lazy as _


class NotificationChannel(models.TextChoices):
    """Delivery channel requested for a notification."""

    EMAIL = "email", _("Email")
    IN_APP = "in_app", _("In-App")
    SMS = "sms", _("SMS")


class NotificationUrgency(models.TextChoices):
    """How quickly a notification should reach its recipients."""

    LOW = "low", _("Low")
    MEDIUM = "medium", _("Medium")
    HIGH = "high", _("High")
    CRITICAL = "critical", _("Critical")

    @classmethod
    def for_task_priority(cls, priority: str) -> 'NotificationUrgency':
        """Map a task priority onto a notification urgency."""
        mapping = {
            'low': cls.LOW,
            'medium': cls.MEDIUM,
            'high': cls.HIGH,
            'urgent': cls.CRITICAL,
        }
        return mapping.get(str(priority), cls.MEDIUM)


class RecipientToken(models.TextChoices):
    """Role tokens resolved to concrete user ids before delivery."""

    ASSIGNEE = "assignee", _("Assignee")
    SUPERVISOR = "supervisor", _("Supervisor")
    CASE_ATTORNEY = "case_attorney", _("Case Attorney")
    REQUESTER = "requester", _("Requester")

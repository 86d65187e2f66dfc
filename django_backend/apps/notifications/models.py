from django.db import models
from django.utils.translation import gettext_lazy as _

from apps.common.models import MetadataMixin, TimestampMixin
from apps.notifications.choices import NotificationChannel, NotificationUrgency


class NotificationRecordQuerySet(models.QuerySet):

    def for_case(self, case_id: str):
        return self.filter(case_id=case_id)


class NotificationRecord(TimestampMixin, MetadataMixin):
    """
    Outbox entry for a notification payload built by the core.

    Delivery transports read from this table; the core only writes to it.
    """

    notification_id = models.CharField(
        max_length=64,
        unique=True,
        help_text=_("Payload identifier")
    )
    channel = models.CharField(
        max_length=20,
        choices=NotificationChannel.choices,
        default=NotificationChannel.IN_APP
    )
    urgency = models.CharField(
        max_length=20,
        choices=NotificationUrgency.choices,
        default=NotificationUrgency.MEDIUM,
        db_index=True
    )
    recipients = models.JSONField(default=list, blank=True)
    template = models.CharField(max_length=100, blank=True)
    subject = models.CharField(max_length=255, blank=True)
    message = models.TextField(blank=True)
    case_id = models.CharField(
        max_length=64,
        blank=True,
        null=True,
        db_index=True
    )
    task_id = models.CharField(max_length=64, blank=True, null=True)

    objects = NotificationRecordQuerySet.as_manager()

    class Meta:
        db_table = 'notifications_outbox'
        ordering = ['-created_at']
        verbose_name = _('Notification')
        verbose_name_plural = _('Notifications')

    def __str__(self) -> str:
        return f"{self.channel}: {self.subject or self.template}"

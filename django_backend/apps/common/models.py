"""
Common abstract models for the case orchestration core.
"""

from django.db import models


class TimestampMixin(models.Model):
    """Mixin to provide creation and modification timestamps."""

    created_at = models.DateTimeField(
        auto_now_add=True,
        db_index=True,
        help_text="When this record was created"
    )
    updated_at = models.DateTimeField(
        auto_now=True,
        help_text="When this record was last modified"
    )

    class Meta:
        abstract = True
        ordering = ['-created_at']


class MetadataMixin(models.Model):
    """Mixin to provide an open metadata map."""

    metadata = models.JSONField(
        default=dict,
        blank=True,
        help_text="Additional metadata for this record"
    )

    class Meta:
        abstract = True

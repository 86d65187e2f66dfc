from django.db import models
from django.utils.translation import gettext_lazy as _


class UserRole(models.TextChoices):
    """Roles of the people working on cases."""

    ADMIN = 'admin', _('Administrator')
    ATTORNEY = 'attorney', _('Attorney')
    PARALEGAL = 'paralegal', _('Paralegal')
    ASSISTANT = 'assistant', _('Assistant')
    ARCHIVIST = 'archivist', _('Archivist')

    @classmethod
    def get_case_managing_roles(cls):
        """Roles allowed to move cases between phases."""
        return [cls.ATTORNEY, cls.ADMIN]

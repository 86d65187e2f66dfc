"""
Project configuration package.

Loads the Celery application on Django start so that ``shared_task``
decorators bind to it.
"""

from .celery import app as celery_app

__all__ = ['celery_app']

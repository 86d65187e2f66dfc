"""
Celery configuration for the case orchestration backend.

Redis is the broker and result backend. Periodic jobs (recurrence
expansion, overdue monitoring) are declared in ``apps.celery.schedules``.
"""

import os
import logging
from typing import Any, Dict

from celery import Celery, signals

os.environ.setdefault('DJANGO_SETTINGS_MODULE', 'config.settings')

logger = logging.getLogger('celery')

app = Celery('case_orchestration')


class CeleryConfig:
    """Celery settings not owned by Django's ``CELERY_*`` namespace."""

    task_serializer: str = 'json'
    result_serializer: str = 'json'
    accept_content: list = ['json']

    enable_utc: bool = True

    worker_prefetch_multiplier: int = 1
    worker_max_tasks_per_child: int = 1000

    result_expires: int = 3600

    task_routes: Dict[str, Dict[str, str]] = {
        'apps.celery.tasks.dispatch_notification': {'queue': 'notifications'},
        'apps.celery.tasks.process_recurring_tasks': {'queue': 'scheduling'},
        'apps.celery.tasks.check_overdue_tasks': {'queue': 'monitoring'},
        'apps.celery.tasks.recompute_case_priorities': {'queue': 'scheduling'},
    }
    task_default_queue: str = 'default'

    task_acks_late: bool = True
    task_reject_on_worker_lost: bool = True
    task_soft_time_limit: int = 300
    task_time_limit: int = 600


app.config_from_object(CeleryConfig)
app.config_from_object('django.conf:settings', namespace='CELERY')
app.autodiscover_tasks(['apps.celery'])


@app.on_after_configure.connect
def setup_periodic_tasks(sender: Celery, **kwargs) -> None:
    """Install the beat schedule once the app is configured."""
    from apps.celery.schedules import get_beat_schedule

    sender.conf.beat_schedule = get_beat_schedule()


@signals.setup_logging.connect
def setup_celery_logging(**kwargs) -> None:
    """Configure logging for Celery workers."""
    import logging.config
    from django.conf import settings

    if hasattr(settings, 'LOGGING'):
        logging.config.dictConfig(settings.LOGGING)


@signals.task_failure.connect
def task_failure_handler(sender=None, task_id=None, exception=None, einfo=None, **kwds) -> None:
    """Log task failures."""
    logger.error(
        f"Task {sender.name}[{task_id}] failed: {exception}",
        extra={'task_id': task_id, 'task_name': sender.name},
        exc_info=einfo,
    )


@app.task(bind=True, name='celery.ping')
def ping_task(self) -> Dict[str, Any]:
    """Health check task for monitoring."""
    return {
        'status': 'ok',
        'worker': self.request.hostname,
        'task_id': self.request.id,
    }


__all__ = ['app']

"""
Django settings for the case orchestration backend.

Only what the orchestration core needs is configured here: the database,
installed apps, logging, Celery and the domain tunables consumed through
``apps.common.conf``.
"""

import os
from pathlib import Path

BASE_DIR = Path(__file__).resolve().parent.parent

SECRET_KEY = os.environ.get('DJANGO_SECRET_KEY', 'insecure-development-key')
DEBUG = os.environ.get('DJANGO_DEBUG', 'False').lower() == 'true'
ALLOWED_HOSTS = [host for host in os.environ.get('DJANGO_ALLOWED_HOSTS', '').split(',') if host]

INSTALLED_APPS = [
    'django.contrib.contenttypes',
    'apps.common',
    'apps.users',
    'apps.cases',
    'apps.tasks',
    'apps.workflows',
    'apps.notifications',
]

DATABASES = {
    'default': {
        'ENGINE': 'django.db.backends.sqlite3',
        'NAME': os.environ.get('DJANGO_DB_NAME', str(BASE_DIR / 'db.sqlite3')),
    }
}

DEFAULT_AUTO_FIELD = 'django.db.models.BigAutoField'

LANGUAGE_CODE = 'en-us'
TIME_ZONE = 'UTC'
USE_I18N = True
USE_TZ = True

# =============================================================================
# LOGGING
# =============================================================================

LOG_LEVEL = os.environ.get('DJANGO_LOG_LEVEL', 'INFO')

LOGGING = {
    'version': 1,
    'disable_existing_loggers': False,
    'formatters': {
        'verbose': {
            'format': '[{asctime}] {levelname} {name} {message}',
            'style': '{',
        },
        'simple': {
            'format': '{levelname} {message}',
            'style': '{',
        },
    },
    'handlers': {
        'console': {
            'class': 'logging.StreamHandler',
            'formatter': 'verbose',
        },
    },
    'root': {
        'handlers': ['console'],
        'level': 'WARNING',
    },
    'loggers': {
        'apps.cases': {'handlers': ['console'], 'level': LOG_LEVEL, 'propagate': False},
        'apps.tasks': {'handlers': ['console'], 'level': LOG_LEVEL, 'propagate': False},
        'apps.workflows': {'handlers': ['console'], 'level': LOG_LEVEL, 'propagate': False},
        'apps.notifications': {'handlers': ['console'], 'level': LOG_LEVEL, 'propagate': False},
        'apps.celery': {'handlers': ['console'], 'level': LOG_LEVEL, 'propagate': False},
        'celery': {'handlers': ['console'], 'level': 'INFO', 'propagate': False},
    },
}

# =============================================================================
# CELERY
# =============================================================================

CELERY_BROKER_URL = os.environ.get('CELERY_BROKER_URL', 'redis://localhost:6379/0')
CELERY_RESULT_BACKEND = os.environ.get('CELERY_RESULT_BACKEND', 'redis://localhost:6379/0')
CELERY_TASK_ALWAYS_EAGER = os.environ.get('CELERY_ALWAYS_EAGER', 'False').lower() == 'true'
CELERY_TASK_EAGER_PROPAGATES = True
CELERY_TIMEZONE = TIME_ZONE

# =============================================================================
# CASE ORCHESTRATION
# =============================================================================

CASE_ORCHESTRATION = {
    'CONFLICT_THRESHOLD_MINUTES': 30,
    'MAX_ACTIONS_PER_RULE': 20,
    'MAX_RULE_CASCADE_DEPTH': 3,
    'MAX_RECURRENCE_ITERATIONS': 366,
    'DEFAULT_AVAILABLE_HOURS': 40,
    'ENFORCE_TRANSITION_GUARDS': os.environ.get('ENFORCE_TRANSITION_GUARDS', 'False').lower() == 'true',
    'HIGH_WORKLOAD_THRESHOLD': 0.9,
    'RULE_HISTORY_LIMIT': 1000,
    'WORKFLOW_HISTORY_LIMIT': 100,
    'NOTIFICATION_BACKEND': os.environ.get(
        'NOTIFICATION_BACKEND', 'apps.notifications.services.DatabaseNotificationOutbox'
    ),
    'RECURRING_TASKS_INTERVAL_MINUTES': 15,
    'OVERDUE_CHECK_INTERVAL_MINUTES': 30,
    'SCHEDULE_CLOCK_SKEW_SECONDS': 60,
    'TASK_REPOSITORY': 'apps.tasks.repositories.DjangoTaskRepository',
    'CASE_REPOSITORY': 'apps.cases.repositories.DjangoCaseRepository',
    'RULE_REPOSITORY': 'apps.workflows.repositories.DjangoRuleRepository',
}

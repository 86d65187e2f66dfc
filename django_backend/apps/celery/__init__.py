"""
Background jobs of the case orchestration backend.

``tasks`` wraps the orchestrator's periodic automation and notification
delivery as Celery tasks; ``schedules`` declares the beat schedule that
drives them. The Celery application itself lives in ``config.celery``.
"""

"""
Boundaries the orchestration core depends on.

Engines receive these collaborators at construction time. Production code
passes the Django backed implementations; tests pass in-memory ones.
"""

from datetime import datetime, timedelta
from typing import Any, Dict, List, Optional, Protocol

from django.utils import timezone


class Clock(Protocol):
    """Supplies the current time."""

    def now(self) -> datetime:
        ...


class SystemClock:
    """Clock backed by ``django.utils.timezone.now``."""

    def now(self) -> datetime:
        return timezone.now()


class FixedClock:
    """Clock frozen at a given instant; ``advance`` moves it forward."""

    def __init__(self, moment: datetime):
        self._moment = moment

    def now(self) -> datetime:
        return self._moment

    def set(self, moment: datetime) -> None:
        self._moment = moment

    def advance(self, **kwargs) -> datetime:
        self._moment = self._moment + timedelta(**kwargs)
        return self._moment


class IdentityPort(Protocol):
    """Resolves users to their role, expertise and current load."""

    def get_user(self, user_id: str) -> Optional[Any]:
        ...

    def list_users(self, role: Optional[str] = None) -> List[Any]:
        ...

    def get_active_task_count(self, user_id: str) -> int:
        ...

    def get_supervisor(self, user_id: str) -> Optional[Any]:
        ...


class NotificationPort(Protocol):
    """Delivers notification payloads built by the core."""

    def deliver(self, payload: Dict[str, Any]) -> None:
        ...

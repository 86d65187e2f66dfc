"""
In-memory identity directory.

Implements the identity port consumed by the rule engine (expertise and
workload based assignment), the priority scorer (workload pressure) and
the orchestrator (team workload warnings).
"""

import logging
import threading
from dataclasses import dataclass, field, replace
from typing import Dict, Iterable, List, Optional

from apps.common.exceptions import NotFound

from .choices import UserRole

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class UserProfile:
    """Identity data the orchestration core needs about one person."""

    id: str
    name: str
    role: UserRole
    email: str = ''
    specializations: frozenset = field(default_factory=frozenset)
    active_task_count: int = 0
    max_active_tasks: int = 20
    available_hours: float = 40.0
    supervisor_id: Optional[str] = None
    is_active: bool = True

    @property
    def workload_ratio(self) -> float:
        """Share of the person's task capacity already in use."""
        if self.max_active_tasks <= 0:
            return 1.0
        return self.active_task_count / self.max_active_tasks


class UserDirectory:
    """Thread safe in-memory registry of user profiles."""

    def __init__(self, users: Optional[Iterable[UserProfile]] = None):
        self._lock = threading.Lock()
        self._users: Dict[str, UserProfile] = {}
        for user in users or []:
            self._users[user.id] = user

    def add_user(self, user: UserProfile) -> UserProfile:
        with self._lock:
            self._users[user.id] = user
        logger.debug(f"Registered user {user.id} ({user.role})")
        return user

    def get_user(self, user_id: str) -> Optional[UserProfile]:
        return self._users.get(user_id)

    def require_user(self, user_id: str) -> UserProfile:
        user = self.get_user(user_id)
        if user is None:
            raise NotFound(f"User {user_id} not found", details={'user_id': user_id})
        return user

    def list_users(self, role: Optional[str] = None) -> List[UserProfile]:
        users = [user for user in self._users.values() if user.is_active]
        if role:
            users = [user for user in users if user.role == role]
        return sorted(users, key=lambda user: user.id)

    def get_active_task_count(self, user_id: str) -> int:
        user = self.get_user(user_id)
        return user.active_task_count if user else 0

    def get_supervisor(self, user_id: str) -> Optional[UserProfile]:
        user = self.get_user(user_id)
        if user is None or not user.supervisor_id:
            return None
        return self.get_user(user.supervisor_id)

    def adjust_active_task_count(self, user_id: str, delta: int) -> int:
        """Atomically change a user's active task counter."""
        with self._lock:
            user = self._users.get(user_id)
            if user is None:
                raise NotFound(f"User {user_id} not found", details={'user_id': user_id})
            count = max(0, user.active_task_count + delta)
            self._users[user_id] = replace(user, active_task_count=count)
        return count


# Global user directory instance
user_directory = UserDirectory()

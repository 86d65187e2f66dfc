"""
Notification payloads and delivery ports.

The orchestration core never talks to email, SMS or push transports. It
builds ``NotificationPayload`` objects, resolves role tokens such as
``assignee`` or ``supervisor`` to user ids and hands the payload to a
``NotificationPort``:

- ``InMemoryNotificationOutbox`` keeps payloads in a list (tests, single
  process deployments)
- ``DatabaseNotificationOutbox`` writes them to the ``NotificationRecord``
  outbox table read by the delivery workers
- ``CeleryNotificationPort`` defers delivery to the ``dispatch_notification``
  Celery task
"""

import logging
import threading
import uuid
from dataclasses import asdict, dataclass, field
from datetime import datetime
from typing import Any, Dict, Iterable, List, Optional

from django.utils.dateparse import parse_datetime
from django.utils.module_loading import import_string

from apps.common.conf import get_setting
from apps.common.ports import Clock, IdentityPort, NotificationPort, SystemClock
from apps.users.choices import UserRole

from .choices import NotificationChannel, NotificationUrgency, RecipientToken
from .models import NotificationRecord

logger = logging.getLogger(__name__)


@dataclass
class NotificationPayload:
    """A notification ready to be handed to a delivery port."""

    id: str
    channel: NotificationChannel
    recipients: List[str]
    template: str
    urgency: NotificationUrgency = NotificationUrgency.MEDIUM
    subject: str = ''
    message: str = ''
    case_id: Optional[str] = None
    task_id: Optional[str] = None
    metadata: Dict[str, Any] = field(default_factory=dict)
    created_at: Optional[datetime] = None

    def __post_init__(self):
        self.channel = NotificationChannel(self.channel)
        self.urgency = NotificationUrgency(self.urgency)

    def to_dict(self) -> Dict[str, Any]:
        data = asdict(self)
        data['channel'] = str(self.channel)
        data['urgency'] = str(self.urgency)
        data['created_at'] = self.created_at.isoformat() if self.created_at else None
        return data

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> 'NotificationPayload':
        created_at = data.get('created_at')
        if isinstance(created_at, str):
            created_at = parse_datetime(created_at)
        return cls(
            id=data['id'],
            channel=data['channel'],
            recipients=list(data.get('recipients') or []),
            template=data.get('template', ''),
            urgency=data.get('urgency', NotificationUrgency.MEDIUM),
            subject=data.get('subject', ''),
            message=data.get('message', ''),
            case_id=data.get('case_id'),
            task_id=data.get('task_id'),
            metadata=dict(data.get('metadata') or {}),
            created_at=created_at,
        )


class InMemoryNotificationOutbox:
    """Notification port that keeps every delivered payload in memory."""

    def __init__(self):
        self._lock = threading.Lock()
        self.sent: List[Dict[str, Any]] = []

    def deliver(self, payload: Dict[str, Any]) -> None:
        with self._lock:
            self.sent.append(dict(payload))

    def for_recipient(self, user_id: str) -> List[Dict[str, Any]]:
        return [payload for payload in self.sent if user_id in payload.get('recipients', [])]

    def clear(self) -> None:
        with self._lock:
            self.sent.clear()


class DatabaseNotificationOutbox:
    """Notification port writing payloads to the outbox table."""

    def deliver(self, payload: Dict[str, Any]) -> None:
        NotificationRecord.objects.create(
            notification_id=payload['id'],
            channel=payload['channel'],
            urgency=payload.get('urgency', NotificationUrgency.MEDIUM),
            recipients=list(payload.get('recipients') or []),
            template=payload.get('template', ''),
            subject=payload.get('subject', ''),
            message=payload.get('message', ''),
            case_id=payload.get('case_id'),
            task_id=payload.get('task_id'),
            metadata=payload.get('metadata') or {},
        )


class CeleryNotificationPort:
    """Notification port that queues delivery on the notifications queue."""

    def deliver(self, payload: Dict[str, Any]) -> None:
        from apps.celery.tasks import dispatch_notification

        dispatch_notification.delay(payload)


def get_notification_backend() -> NotificationPort:
    """Instantiate the port named by the ``NOTIFICATION_BACKEND`` setting."""
    backend_path = get_setting('NOTIFICATION_BACKEND')
    return import_string(backend_path)()


class NotificationService:
    """Builds notification payloads and hands them to a delivery port."""

    def __init__(
        self,
        port: Optional[NotificationPort] = None,
        identity: Optional[IdentityPort] = None,
        clock: Optional[Clock] = None,
    ):
        self.port = port if port is not None else get_notification_backend()
        self.identity = identity
        self.clock = clock or SystemClock()

    def build(
        self,
        channel: NotificationChannel,
        recipients: Iterable[str],
        template: str,
        urgency: NotificationUrgency = NotificationUrgency.MEDIUM,
        subject: str = '',
        message: str = '',
        case_id: Optional[str] = None,
        task_id: Optional[str] = None,
        metadata: Optional[Dict[str, Any]] = None,
    ) -> NotificationPayload:
        return NotificationPayload(
            id=f"notification_{uuid.uuid4().hex[:12]}",
            channel=channel,
            recipients=list(recipients),
            template=template,
            urgency=urgency,
            subject=subject,
            message=message,
            case_id=case_id,
            task_id=task_id,
            metadata=dict(metadata or {}),
            created_at=self.clock.now(),
        )

    def resolve_recipients(
        self,
        tokens: Iterable[str],
        assignee_id: Optional[str] = None,
        requester_id: Optional[str] = None,
        case_attorney_id: Optional[str] = None,
    ) -> List[str]:
        """
        Turn recipient tokens into user ids.

        ``assignee``, ``supervisor``, ``case_attorney`` and ``requester``
        are resolved from the given ids; a role name expands to every active
        user holding that role; anything else is taken as a user id. Tokens
        that cannot be resolved are dropped.

        Args:
            tokens: Recipient tokens or user ids
            assignee_id: Current assignee of the task concerned
            requester_id: User who triggered the notification
            case_attorney_id: Attorney responsible for the case

        Returns:
            Unique user ids, in token order
        """
        resolved: Dict[str, None] = {}
        roles = set(UserRole.values)

        for token in tokens:
            if token == RecipientToken.ASSIGNEE:
                user_ids = [assignee_id]
            elif token == RecipientToken.REQUESTER:
                user_ids = [requester_id]
            elif token == RecipientToken.CASE_ATTORNEY:
                user_ids = [case_attorney_id]
            elif token == RecipientToken.SUPERVISOR:
                supervisor = None
                if self.identity is not None and assignee_id:
                    supervisor = self.identity.get_supervisor(assignee_id)
                user_ids = [supervisor.id if supervisor else None]
            elif token in roles:
                users = self.identity.list_users(role=token) if self.identity is not None else []
                user_ids = [user.id for user in users]
            else:
                user_ids = [token]

            for user_id in user_ids:
                if user_id:
                    resolved[user_id] = None
                else:
                    logger.debug(f"Dropped unresolved notification recipient '{token}'")

        return list(resolved)

    def send(self, payload: NotificationPayload) -> NotificationPayload:
        """Hand one payload to the port."""
        if not payload.recipients:
            logger.warning(f"Notification {payload.id} ({payload.template}) has no recipients")
        self.port.deliver(payload.to_dict())
        logger.info(
            f"Queued {payload.channel} notification {payload.id} ({payload.template}) "
            f"for {len(payload.recipients)} recipient(s)"
        )
        return payload

    def send_many(self, payloads: Iterable[NotificationPayload]) -> int:
        count = 0
        for payload in payloads:
            self.send(payload)
            count += 1
        return count

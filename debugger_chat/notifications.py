import logging
import time
from dataclasses import dataclass, field
from typing import Callable, Dict, List, Optional, Union

from .errors import ChatError
from .models import new_id
from .observability import log_event


@dataclass
class Notification:
    message: str
    kind: str
    created_at: float
    expires_at: float
    id: str = field(default_factory=new_id)

    def to_dict(self) -> Dict[str, object]:
        return {"id": self.id, "message": self.message, "kind": self.kind}


class ErrorChannel:
    """Shared sink for user-facing error notifications.

    Every notification auto-expires after `ttl_seconds` and may be dismissed
    earlier by id.
    """

    def __init__(self, ttl_seconds: float = 10.0, clock: Callable[[], float] = time.monotonic):
        self.ttl = ttl_seconds
        self._clock = clock
        self._items: List[Notification] = []

    def report(self, error: Union[ChatError, str], kind: Optional[str] = None) -> Notification:
        if isinstance(error, ChatError):
            message, kind = error.message, kind or error.kind
        else:
            message, kind = str(error), kind or "ChatError"
        now = self._clock()
        note = Notification(message=message, kind=kind, created_at=now, expires_at=now + self.ttl)
        self._items.append(note)
        log_event("error_reported", level=logging.WARNING, kind=kind, message=message)
        return note

    def active(self) -> List[Notification]:
        now = self._clock()
        self._items = [n for n in self._items if n.expires_at > now]
        return list(self._items)

    def dismiss(self, notification_id: str) -> bool:
        before = len(self._items)
        self._items = [n for n in self._items if n.id != notification_id]
        return len(self._items) != before

    def clear(self) -> None:
        self._items = []

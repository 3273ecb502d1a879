from __future__ import annotations

import asyncio
import json
import logging
import math
import os
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Dict, List, Optional, Sequence

from .errors import NotFoundError, StorageError
from .models import Message, Session, new_id, now_ms
from .notifications import ErrorChannel
from .observability import STORE_WRITES_TOTAL, log_event
from .scheduling import Debouncer


def _sanitize_session(raw: Any) -> Optional[Session]:
    if not isinstance(raw, dict):
        return None
    messages: List[Message] = []
    raw_messages = raw.get("messages")
    if isinstance(raw_messages, list):
        for m in raw_messages:
            try:
                messages.append(Message.from_dict(m))
            except (ValueError, TypeError):
                continue
    ts = raw.get("timestamp")
    return Session(
        id=str(raw.get("id") or new_id()),
        name=str(raw.get("name") or "Chat"),
        timestamp=int(ts) if isinstance(ts, (int, float)) and not isinstance(ts, bool) else now_ms(),
        messages=tuple(messages),
        is_new=not messages,
    )


def decode_sessions(text: str) -> List[Session]:
    """Parse a persisted session image, dropping whatever cannot be used.

    Sessions come back most recent first.
    """
    data = json.loads(text)
    if not isinstance(data, list):
        log_event("session_image_invalid", level=logging.WARNING, detail="not a list; resetting")
        return []
    sessions = [s for s in (_sanitize_session(item) for item in data) if s is not None]
    seen = set()
    unique: List[Session] = []
    for s in sessions:
        if s.id in seen:
            continue
        seen.add(s.id)
        unique.append(s)
    unique.sort(key=lambda s: s.timestamp or 0, reverse=True)
    return unique


def encode_sessions(sessions: Sequence[Session]) -> str:
    return json.dumps([s.to_dict() for s in sessions if s.id])


class SessionStore:
    """Durable session list backed by a local JSON file.

    Writes are debounced: `replace()` schedules a save that fires after a
    quiet period, so callers see eventually-consistent persistence.
    """

    def __init__(
        self,
        path: Path,
        debounce_seconds: float = 0.5,
        errors: Optional[ErrorChannel] = None,
    ):
        self.path = Path(path)
        self.errors = errors
        self.sessions: List[Session] = []
        self._debouncer = Debouncer(debounce_seconds, self.save_now)

    async def load(self) -> List[Session]:
        loop = asyncio.get_running_loop()
        try:
            text = await loop.run_in_executor(None, self._read)
        except (OSError, UnicodeDecodeError) as e:
            raise StorageError("Could not load previous chat sessions.") from e
        if text is None:
            self.sessions = []
            return []
        try:
            self.sessions = decode_sessions(text)
        except ValueError as e:
            raise StorageError("Could not load previous chat sessions.") from e
        log_event("sessions_loaded", count=len(self.sessions), path=str(self.path))
        return list(self.sessions)

    def replace(self, sessions: Sequence[Session]) -> None:
        self.sessions = list(sessions)
        if self.sessions:
            self._debouncer.trigger()

    @property
    def write_pending(self) -> bool:
        return self._debouncer.pending

    async def save_now(self) -> None:
        body = encode_sessions(self.sessions)
        loop = asyncio.get_running_loop()
        try:
            await loop.run_in_executor(None, self._write, body)
            STORE_WRITES_TOTAL.labels(status="ok").inc()
            log_event("sessions_persisted", level=logging.DEBUG, count=len(self.sessions))
        except OSError as e:
            STORE_WRITES_TOTAL.labels(status="error").inc()
            log_event("sessions_persist_error", level=logging.ERROR, error=str(e))
            if self.errors is not None:
                self.errors.report(StorageError())

    async def flush(self) -> None:
        await self._debouncer.flush()

    def _read(self) -> Optional[str]:
        if not self.path.exists():
            return None
        return self.path.read_text(encoding="utf-8")

    def _write(self, body: str) -> None:
        self.path.parent.mkdir(parents=True, exist_ok=True)
        tmp = self.path.with_suffix(self.path.suffix + ".tmp")
        tmp.write_text(body, encoding="utf-8")
        os.replace(tmp, self.path)


@dataclass
class UserProfile:
    clerk_id: str
    email: str
    first_name: Optional[str] = None
    last_name: Optional[str] = None
    image_url: Optional[str] = None
    chat_history: List[Message] = field(default_factory=list)
    created_at: int = field(default_factory=now_ms)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "clerkId": self.clerk_id,
            "email": self.email,
            "firstName": self.first_name,
            "lastName": self.last_name,
            "imageUrl": self.image_url,
        }


class UserStore:
    """Server-side profiles and message history keyed by identity id."""

    def __init__(self) -> None:
        self._users: Dict[str, UserProfile] = {}
        self._lock = asyncio.Lock()

    async def register(self, profile: UserProfile) -> UserProfile:
        async with self._lock:
            if profile.clerk_id in self._users:
                raise ValueError("User already exists")
            if any(u.email == profile.email for u in self._users.values()):
                raise ValueError("User already exists")
            self._users[profile.clerk_id] = profile
            return profile

    async def get(self, clerk_id: str) -> UserProfile:
        user = self._users.get(clerk_id)
        if user is None:
            raise NotFoundError("User not found")
        return user

    async def append_message(self, clerk_id: str, message: Message) -> Message:
        async with self._lock:
            user = await self.get(clerk_id)
            user.chat_history.append(message)
            return message

    async def history(self, clerk_id: str, page: int = 1, limit: int = 20) -> Dict[str, Any]:
        user = await self.get(clerk_id)
        page = max(1, page)
        limit = max(1, limit)
        ordered = sorted(user.chat_history, key=lambda m: m.timestamp, reverse=True)
        start = (page - 1) * limit
        return {
            "messages": [m.to_dict() for m in ordered[start : start + limit]],
            "totalPages": math.ceil(len(ordered) / limit),
        }

    async def clear_history(self, clerk_id: str) -> None:
        async with self._lock:
            user = await self.get(clerk_id)
            user.chat_history = []

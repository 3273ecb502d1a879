from __future__ import annotations

import time
import uuid
from dataclasses import dataclass, field
from typing import Any, Dict, Optional, Tuple

SENDERS = ("user", "assistant", "system")
DEFAULT_SESSION_NAME = "New Chat"
LOG_DISPLAY_CHARS = 150


def now_ms() -> int:
    return int(time.time() * 1000)


def new_id() -> str:
    return str(uuid.uuid4())


@dataclass(frozen=True)
class Message:
    sender: str
    text: str
    is_markdown: bool = False
    id: str = field(default_factory=new_id)
    timestamp: int = field(default_factory=now_ms)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "sender": self.sender,
            "text": self.text,
            "isMarkdown": self.is_markdown,
            "timestamp": self.timestamp,
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "Message":
        """Build a message from its persisted form; raises ValueError if unusable."""
        if not isinstance(data, dict):
            raise ValueError("message must be an object")
        sender = data.get("sender")
        # Older images stored assistant replies under sender "aws"
        if sender == "aws":
            sender = "assistant"
        if sender not in SENDERS:
            raise ValueError(f"unknown sender: {sender!r}")
        text = data.get("text")
        if not isinstance(text, str):
            raise ValueError("message text must be a string")
        ts = data.get("timestamp")
        return cls(
            sender=sender,
            text=text,
            is_markdown=bool(data.get("isMarkdown", False)),
            id=str(data.get("id") or new_id()),
            timestamp=int(ts) if isinstance(ts, (int, float)) and not isinstance(ts, bool) else now_ms(),
        )


@dataclass(frozen=True)
class Session:
    id: str = field(default_factory=new_id)
    name: str = DEFAULT_SESSION_NAME
    timestamp: int = field(default_factory=now_ms)
    messages: Tuple[Message, ...] = ()
    is_new: bool = True

    def to_dict(self) -> Dict[str, Any]:
        data: Dict[str, Any] = {
            "id": self.id,
            "name": self.name,
            "timestamp": self.timestamp,
            "messages": [m.to_dict() for m in self.messages],
        }
        # Only empty sessions keep the "new" marker across restarts
        if not self.messages:
            data["isNew"] = True
        return data


@dataclass(frozen=True)
class MetricsSnapshot:
    invocations: int = 0
    errors: int = 0
    throttles: int = 0

    def to_dict(self) -> Dict[str, Any]:
        return {"invocations": self.invocations, "errors": self.errors, "throttles": self.throttles}


@dataclass(frozen=True)
class LogLine:
    text: str

    @property
    def severity(self) -> str:
        lowered = self.text.lower()
        if "error" in lowered:
            return "error"
        if "warn" in lowered:
            return "warn"
        return "info"

    @property
    def display_text(self) -> str:
        if len(self.text) <= LOG_DISPLAY_CHARS:
            return self.text
        return self.text[:LOG_DISPLAY_CHARS] + "..."

    def to_dict(self) -> Dict[str, Any]:
        return {"text": self.display_text, "title": self.text, "severity": self.severity}


@dataclass(frozen=True)
class Identity:
    id: str
    display_name: str = ""
    avatar_url: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        return {"id": self.id, "displayName": self.display_name, "avatarUrl": self.avatar_url}

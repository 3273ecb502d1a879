"""Session lifecycle operations.

All functions here are pure over immutable `Session` values: they return new
lists instead of mutating their input, and they never raise. Unknown or stale
session ids are healed by creating a fresh session so the chat can always
continue.
"""
from __future__ import annotations

import dataclasses
import logging
from typing import List, Optional, Sequence, Tuple

from .models import DEFAULT_SESSION_NAME, Message, Session, now_ms
from .observability import log_event

TITLE_MAX_CHARS = 40


def create_session() -> Session:
    return Session()


def title_for(messages: Sequence[Message]) -> str:
    first = next((m for m in messages if m.sender == "user"), None)
    if first is None or not first.text:
        return DEFAULT_SESSION_NAME
    title = first.text[:TITLE_MAX_CHARS]
    return f"{title}..." if len(title) < len(first.text) else title


def find_session(session_id: Optional[str], sessions: Sequence[Session]) -> Optional[Session]:
    if not session_id:
        return None
    return next((s for s in sessions if s.id == session_id), None)


def switch_to(
    session_id: Optional[str], sessions: Sequence[Session]
) -> Tuple[List[Session], str, Tuple[Message, ...]]:
    """Make `session_id` current.

    Returns (sessions, active_id, active_messages). A missing id yields a new
    empty session at the front of the list, replacing any stale entry that
    carried the requested id.
    """
    session = find_session(session_id, sessions)
    if session is not None:
        return list(sessions), session.id, session.messages
    log_event("session_switch_missing", level=logging.WARNING, sessionId=session_id)
    fresh = create_session()
    remaining = [s for s in sessions if s.id != session_id]
    return [fresh] + remaining, fresh.id, ()


def append_message(session_id: str, message: Message, sessions: Sequence[Session]) -> List[Session]:
    if find_session(session_id, sessions) is None:
        return list(sessions)
    out: List[Session] = []
    for s in sessions:
        if s.id != session_id:
            out.append(s)
            continue
        messages = s.messages + (message,)
        name, is_new = s.name, s.is_new
        if is_new and message.sender == "user" and not any(m.sender == "user" for m in s.messages):
            name = title_for(messages)
            is_new = False
        out.append(dataclasses.replace(s, messages=messages, name=name, is_new=is_new, timestamp=now_ms()))
    return out


def finalize_title(session_id: str, sessions: Sequence[Session]) -> List[Session]:
    """Title a still-new session that already has messages (used when leaving it)."""
    out: List[Session] = []
    for s in sessions:
        if s.id == session_id and s.is_new and s.messages:
            s = dataclasses.replace(s, name=title_for(s.messages), is_new=False)
        out.append(s)
    return out


def delete_session(
    session_id: str, sessions: Sequence[Session], current_id: Optional[str]
) -> Tuple[List[Session], str]:
    """Remove a session and work out which session is current afterwards.

    The caller loads the messages of the returned current id.
    """
    remaining = [s for s in sessions if s.id != session_id]
    if len(remaining) == len(sessions):
        # Nothing removed; still guarantee a valid current session.
        if find_session(current_id, remaining) is None:
            healed, active_id, _ = switch_to(current_id, remaining)
            return healed, active_id
        return remaining, current_id  # type: ignore[return-value]
    if session_id != current_id and find_session(current_id, remaining) is not None:
        return remaining, current_id  # type: ignore[return-value]
    if remaining:
        newest = max(remaining, key=lambda s: s.timestamp or 0)
        return remaining, newest.id
    fresh = create_session()
    return [fresh], fresh.id

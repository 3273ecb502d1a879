from __future__ import annotations

import asyncio
import logging
from typing import Any, Dict, List, Optional, Sequence, Tuple

from .errors import StorageError
from .gateway import Answer, AskResult, QueryGateway
from .models import Identity, Message, Session
from .notifications import ErrorChannel
from .observability import log_event
from .sessions import append_message, create_session, delete_session, finalize_title, find_session, switch_to
from .store import SessionStore, UserStore
from .telemetry import TelemetryPoller


class ChatOrchestrator:
    """Ties sessions, the query gateway and the telemetry poller together.

    Holds the UI-facing state: session list, current session pointer, loading
    flag, pending delete confirmation and error notifications.
    """

    def __init__(
        self,
        store: SessionStore,
        gateway: QueryGateway,
        poller: TelemetryPoller,
        errors: ErrorChannel,
        users: Optional[UserStore] = None,
    ):
        self.store = store
        self.gateway = gateway
        self.poller = poller
        self.errors = errors
        self.users = users
        self.current_id: Optional[str] = None
        self.loading = False
        self.pending_delete: Optional[str] = None
        self._ask_lock = asyncio.Lock()
        self._in_flight = 0

    @property
    def sessions(self) -> List[Session]:
        return self.store.sessions

    @property
    def messages(self) -> Tuple[Message, ...]:
        session = find_session(self.current_id, self.sessions)
        return session.messages if session is not None else ()

    def _commit(self, sessions: Sequence[Session]) -> None:
        self.store.replace(sessions)

    async def load(self) -> None:
        try:
            sessions = await self.store.load()
        except StorageError as e:
            log_event("sessions_load_error", level=logging.ERROR, error=e.message)
            self.errors.report(e)
            sessions = []
        if not sessions:
            sessions = [create_session()]
        sessions, self.current_id, _ = switch_to(sessions[0].id, sessions)
        self._commit(sessions)

    def switch_session(self, session_id: str) -> Tuple[Message, ...]:
        sessions, self.current_id, messages = switch_to(session_id, self.sessions)
        self._commit(sessions)
        return messages

    def new_chat(self) -> Session:
        sessions = self.sessions
        if self.current_id:
            sessions = finalize_title(self.current_id, sessions)
        fresh = create_session()
        sessions, self.current_id, _ = switch_to(fresh.id, [fresh] + list(sessions))
        self._commit(sessions)
        log_event("session_created", sessionId=fresh.id)
        return fresh

    def request_delete(self, session_id: str) -> None:
        self.pending_delete = session_id

    def cancel_delete(self) -> None:
        self.pending_delete = None

    def confirm_delete(self) -> Optional[str]:
        """Delete the session awaiting confirmation; returns the new current id."""
        target, self.pending_delete = self.pending_delete, None
        if not target:
            return None
        sessions, current_id = delete_session(target, self.sessions, self.current_id)
        sessions, self.current_id, _ = switch_to(current_id, sessions)
        self._commit(sessions)
        log_event("session_deleted", sessionId=target, currentId=self.current_id)
        return self.current_id

    async def ask(self, prompt: str, user: Optional[Identity]) -> Optional[AskResult]:
        """Submit a prompt for the current session.

        Returns None when the submission is blank or throttled.
        """
        if not self.gateway.admit(prompt):
            return None
        if user is None or not self.gateway.client.configured:
            # Rejected before anything is recorded in the conversation.
            return await self.gateway.send(prompt, user)

        session_id = self.current_id or self._ensure_current()
        text = prompt.strip()
        async with self._ask_lock:
            session_id = self._live_session(session_id)
            user_message = Message(sender="user", text=text)
            self._commit(append_message(session_id, user_message, self.sessions))
            await self._mirror(user, user_message)

            self._in_flight += 1
            self.loading = True
            try:
                result = await self.gateway.send(text, user)
            finally:
                self._in_flight -= 1
                self.loading = self._in_flight > 0

            if isinstance(result, Answer):
                reply = Message(sender="assistant", text=result.text, is_markdown=result.is_markdown)
            else:
                reply = Message(sender="system", text=f"Error: {result.message or 'Could not get response.'}")
            session_id = self._live_session(session_id)
            self._commit(append_message(session_id, reply, self.sessions))
            return result

    def _live_session(self, session_id: str) -> str:
        """The session an ask lands in; falls back to the current one if it was deleted."""
        if find_session(session_id, self.sessions) is not None:
            return session_id
        fallback = self._ensure_current()
        log_event("ask_session_gone", level=logging.WARNING, sessionId=session_id, fallbackId=fallback)
        return fallback

    def _ensure_current(self) -> str:
        sessions, self.current_id, _ = switch_to(self.current_id, self.sessions)
        self._commit(sessions)
        return self.current_id

    async def _mirror(self, user: Identity, message: Message) -> None:
        if self.users is None:
            return
        try:
            await self.users.append_message(user.id, message)
        except Exception as e:
            # Server-side history is best effort; the chat goes on.
            log_event("history_mirror_error", level=logging.WARNING, userId=user.id, error=str(e))

    def state(self) -> Dict[str, Any]:
        return {
            "currentSessionId": self.current_id,
            "sessions": [
                {
                    "id": s.id,
                    "name": s.name,
                    "timestamp": s.timestamp,
                    "isNew": s.is_new,
                    "current": s.id == self.current_id,
                }
                for s in self.sessions
            ],
            "messages": [m.to_dict() for m in self.messages],
            "loading": self.loading,
            "pendingDelete": self.pending_delete,
            "telemetry": self.poller.state.to_dict(),
            "notifications": [n.to_dict() for n in self.errors.active()],
        }

    async def start(self, poll: bool = True) -> None:
        await self.load()
        if poll:
            self.poller.start()

    async def shutdown(self) -> None:
        await self.poller.stop()
        await self.store.flush()

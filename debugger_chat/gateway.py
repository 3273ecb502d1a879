"""Prompt → inference round trip → normalized answer.

The Lambda behind the debugger can answer in two shapes: a plain JSON object
(`{"response": ...}`) or an API-Gateway style envelope
(`{"statusCode": 200, "body": "<json string>"}`). Responses are decoded in
two phases into one of the payload variants below, then normalized.
"""
from __future__ import annotations

import asyncio
import json
import logging
import re
from dataclasses import dataclass
from typing import Any, Dict, Optional, Union

from .errors import (
    ChatError,
    InvalidResponseError,
    NetworkError,
    NotConfiguredError,
    RemoteFunctionError,
    RequestTimeoutError,
    UnauthenticatedError,
)
from .models import Identity
from .notifications import ErrorChannel
from .observability import ASKS_THROTTLED_TOTAL, ASKS_TOTAL, log_event
from .providers.base import InferenceClient, InvocationResult
from .scheduling import Throttle

NO_RESPONSE_TEXT = "No meaningful response received."

_LIST_LINE = re.compile(r"^[ \t]*(?:[-*+]|\d+\.)[ \t]+\S", re.MULTILINE)


@dataclass(frozen=True)
class DirectPayload:
    data: Dict[str, Any]


@dataclass(frozen=True)
class EnvelopePayload:
    status_code: int
    body: str
    error: Optional[str] = None


@dataclass(frozen=True)
class FunctionErrorPayload:
    function_error: str
    raw: str


ResponsePayload = Union[DirectPayload, EnvelopePayload, FunctionErrorPayload]


@dataclass(frozen=True)
class Answer:
    text: str
    is_markdown: bool = False
    ok: bool = True


@dataclass(frozen=True)
class GatewayFailure:
    kind: str
    message: str
    ok: bool = False


AskResult = Union[Answer, GatewayFailure]


def is_markdown(text: str) -> bool:
    return "```" in text or bool(_LIST_LINE.search(text))


def decode_payload(result: InvocationResult) -> ResponsePayload:
    raw = result.payload.decode("utf-8", errors="replace") if result.payload else ""
    if result.function_error:
        return FunctionErrorPayload(function_error=result.function_error, raw=raw)
    try:
        outer = json.loads(raw or "{}")
    except ValueError as e:
        raise InvalidResponseError() from e
    if not isinstance(outer, dict):
        raise InvalidResponseError()
    status = outer.get("statusCode")
    body = outer.get("body")
    if isinstance(status, (int, float)) and not isinstance(status, bool) and isinstance(body, str):
        err = outer.get("error")
        return EnvelopePayload(status_code=int(status), body=body, error=err if isinstance(err, str) else None)
    return DirectPayload(data=outer)


def _function_error_message(payload: FunctionErrorPayload) -> str:
    try:
        data = json.loads(payload.raw or "{}")
    except ValueError:
        return payload.raw or "Could not parse error payload"
    if isinstance(data, dict):
        return str(data.get("errorMessage") or data.get("errorType") or json.dumps(data))
    return payload.raw


def _envelope_error_message(payload: EnvelopePayload) -> str:
    try:
        body = json.loads(payload.body or "{}")
    except ValueError:
        body = None
    if isinstance(body, dict):
        detail = body.get("error") or body.get("message")
        if detail:
            return str(detail)
    if payload.error:
        return payload.error
    return payload.body or f"Lambda invocation failed with status {payload.status_code}"


def normalize(payload: ResponsePayload) -> Answer:
    """Turn a decoded payload into an Answer, raising ChatError on failures."""
    if isinstance(payload, FunctionErrorPayload):
        raise RemoteFunctionError(_function_error_message(payload))
    if isinstance(payload, EnvelopePayload):
        if payload.status_code >= 400:
            raise RemoteFunctionError(_envelope_error_message(payload))
        try:
            data = json.loads(payload.body or "{}")
        except ValueError as e:
            raise InvalidResponseError() from e
        if not isinstance(data, dict):
            raise InvalidResponseError()
    else:
        data = payload.data
    text = data.get("response") or data.get("message") or NO_RESPONSE_TEXT
    if not isinstance(text, str):
        text = json.dumps(text)
    return Answer(text=text, is_markdown=is_markdown(text))


class QueryGateway:
    """Rate-limited adapter from a user prompt to a normalized answer.

    `ask` never raises: failures come back as `GatewayFailure` and are also
    published on the error channel.
    """

    def __init__(
        self,
        client: InferenceClient,
        throttle: Throttle,
        errors: ErrorChannel,
        timeout_seconds: float = 30.0,
    ):
        self.client = client
        self.throttle = throttle
        self.errors = errors
        self.timeout = timeout_seconds

    def admit(self, prompt: str) -> bool:
        """Apply the leading-edge throttle; blank prompts are never admitted."""
        if not (prompt or "").strip():
            return False
        if not self.throttle.try_acquire():
            ASKS_THROTTLED_TOTAL.inc()
            log_event("ask_throttled", level=logging.DEBUG)
            return False
        return True

    async def ask(self, prompt: str, user: Optional[Identity]) -> Optional[AskResult]:
        """Throttled ask; returns None when the submission is dropped."""
        if not self.admit(prompt):
            return None
        return await self.send(prompt, user)

    async def send(self, prompt: str, user: Optional[Identity]) -> AskResult:
        """One round trip for an already-admitted prompt."""
        prompt = (prompt or "").strip()
        try:
            answer = await self._round_trip(prompt, user)
        except ChatError as e:
            return self._fail(e)
        except Exception as e:
            log_event("ask_unexpected_error", level=logging.ERROR, error=repr(e))
            return self._fail(NetworkError(str(e) or None))
        ASKS_TOTAL.labels(outcome="ok").inc()
        log_event("ask_ok", userId=user.id if user else None, isMarkdown=answer.is_markdown, chars=len(answer.text))
        return answer

    async def _round_trip(self, prompt: str, user: Optional[Identity]) -> Answer:
        if user is None:
            raise UnauthenticatedError()
        if not self.client.configured:
            raise NotConfiguredError()
        payload = {"body": json.dumps({"prompt": prompt, "userId": user.id})}
        log_event("ask_invoke", provider=self.client.provider_name, userId=user.id)
        try:
            result = await asyncio.wait_for(self.client.invoke(payload), timeout=self.timeout)
        except asyncio.TimeoutError as e:
            raise RequestTimeoutError() from e
        return normalize(decode_payload(result))

    def _fail(self, error: ChatError) -> GatewayFailure:
        ASKS_TOTAL.labels(outcome=error.kind).inc()
        self.errors.report(error)
        return GatewayFailure(kind=error.kind, message=error.message)

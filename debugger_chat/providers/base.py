from __future__ import annotations

import abc
from dataclasses import dataclass
from datetime import datetime
from typing import Any, Dict, List, Optional

from ..scheduling import CancellationToken


@dataclass
class InvocationResult:
    """Raw outcome of one inference round trip, before normalization."""

    payload: bytes
    function_error: Optional[str] = None
    status_code: int = 200


class InferenceClient(abc.ABC):
    """Abstract inference endpoint.

    Implementations perform exactly one round trip per call and raise
    `ChatError` subclasses for transport failures.
    """

    provider_name: str = "unknown"

    def __init__(self, function_name: Optional[str] = None):
        self.function_name = function_name

    @property
    def configured(self) -> bool:
        return bool(self.function_name)

    @abc.abstractmethod
    async def invoke(self, payload: Dict[str, Any]) -> InvocationResult:
        ...


class TelemetrySource(abc.ABC):
    """Abstract metrics/log query service for the inference function."""

    provider_name: str = "unknown"

    def __init__(self, function_name: Optional[str] = None):
        self.function_name = function_name

    @property
    def configured(self) -> bool:
        return bool(self.function_name)

    @abc.abstractmethod
    async def metric_sum(self, metric_name: str, start: datetime, end: datetime, period_seconds: int) -> float:
        ...

    @abc.abstractmethod
    async def recent_logs(
        self, start: datetime, limit: int, token: Optional[CancellationToken] = None
    ) -> List[str]:
        ...

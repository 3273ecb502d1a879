import asyncio
import json
from datetime import datetime
from typing import Any, Dict, List, Optional

from ..scheduling import CancellationToken
from .base import InferenceClient, InvocationResult, TelemetrySource

MOCK_LOGS = [
    "[INFO] Test log message 1",
    "[ERROR] Test error message",
    "[WARN] Test warning message",
    "[INFO] Test log message 2",
    "[DEBUG] Test debug message",
]

MOCK_METRICS = {"Invocations": 100.0, "Errors": 5.0, "Throttles": 2.0}


class MockInferenceClient(InferenceClient):
    provider_name: str = "mock"

    def __init__(self, function_name: Optional[str] = None, delay_seconds: float = 0.0):
        super().__init__(function_name=function_name or "mock-debugger")
        self.delay = delay_seconds
        self.calls: List[Dict[str, Any]] = []

    async def invoke(self, payload: Dict[str, Any]) -> InvocationResult:
        self.calls.append(payload)
        if self.delay:
            await asyncio.sleep(self.delay)
        try:
            prompt = json.loads(payload.get("body") or "{}").get("prompt") or ""
        except ValueError:
            prompt = ""
        envelope = {
            "statusCode": 200,
            "body": json.dumps({"response": f"You asked: {prompt}"}),
        }
        return InvocationResult(payload=json.dumps(envelope).encode("utf-8"))


class MockTelemetrySource(TelemetrySource):
    provider_name: str = "mock"

    def __init__(self, function_name: Optional[str] = None):
        super().__init__(function_name=function_name or "mock-debugger")

    async def metric_sum(self, metric_name: str, start: datetime, end: datetime, period_seconds: int) -> float:
        return MOCK_METRICS.get(metric_name, 0.0)

    async def recent_logs(
        self, start: datetime, limit: int, token: Optional[CancellationToken] = None
    ) -> List[str]:
        return MOCK_LOGS[-limit:]

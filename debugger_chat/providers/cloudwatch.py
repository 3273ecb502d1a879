import asyncio
import logging
from datetime import datetime
from typing import Any, Dict, List, Optional

from botocore.exceptions import BotoCoreError, ClientError

from ..errors import NetworkError, NotConfiguredError
from ..observability import log_event
from ..scheduling import CancellationToken
from .base import TelemetrySource


class CloudWatchTelemetrySource(TelemetrySource):
    """Lambda metrics from CloudWatch and recent lines from its CloudWatch Logs group."""

    provider_name: str = "cloudwatch"

    def __init__(self, cloudwatch_client: Any, logs_client: Any, function_name: Optional[str]):
        super().__init__(function_name=function_name)
        self._cw = cloudwatch_client
        self._logs = logs_client

    @property
    def log_group_name(self) -> str:
        return f"/aws/lambda/{self.function_name}"

    async def metric_sum(self, metric_name: str, start: datetime, end: datetime, period_seconds: int) -> float:
        if not self.configured:
            raise NotConfiguredError("Lambda function name not configured.")
        loop = asyncio.get_running_loop()

        def _get():
            return self._cw.get_metric_statistics(
                Namespace="AWS/Lambda",
                MetricName=metric_name,
                Dimensions=[{"Name": "FunctionName", "Value": self.function_name}],
                StartTime=start,
                EndTime=end,
                Period=period_seconds,
                Statistics=["Sum"],
            )

        try:
            resp = await loop.run_in_executor(None, _get)
        except (ClientError, BotoCoreError) as e:
            raise NetworkError(f"Failed to fetch CloudWatch metric {metric_name}: {e}") from e
        points = resp.get("Datapoints") or []
        total = sum(float(p.get("Sum") or 0) for p in points)
        log_event("metric_fetched", level=logging.DEBUG, metric=metric_name, datapoints=len(points), sum=total)
        return total

    async def recent_logs(
        self, start: datetime, limit: int, token: Optional[CancellationToken] = None
    ) -> List[str]:
        if not self.configured:
            raise NotConfiguredError("Lambda function name not configured.")
        loop = asyncio.get_running_loop()
        start_ms = int(start.timestamp() * 1000)
        events: List[Dict[str, Any]] = []
        next_token: Optional[str] = None

        # FilterLogEvents returns oldest first; walk every page and keep the tail.
        while True:
            kwargs: Dict[str, Any] = {
                "logGroupName": self.log_group_name,
                "startTime": start_ms,
                "limit": limit,
            }
            if next_token:
                kwargs["nextToken"] = next_token

            def _filter(kw=kwargs):
                return self._logs.filter_log_events(**kw)

            try:
                resp = await loop.run_in_executor(None, _filter)
            except (ClientError, BotoCoreError) as e:
                raise NetworkError(f"Failed to fetch CloudWatch logs: {e}") from e
            if token is not None and token.cancelled:
                return []
            events.extend(resp.get("events") or [])
            events = events[-limit:]
            next_token = resp.get("nextToken")
            if not next_token:
                break
        events.sort(key=lambda e: e.get("timestamp") or 0)
        return [str(e.get("message") or "") for e in events]

from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass, field
from datetime import datetime, timedelta, timezone
from typing import List, Optional, Set, Tuple

from .errors import ChatError, NetworkError
from .models import LogLine, MetricsSnapshot
from .notifications import ErrorChannel
from .observability import LOG_FETCH_SUPERSEDED_TOTAL, POLL_CYCLES_TOTAL, log_event
from .providers.base import TelemetrySource
from .scheduling import CancellationToken

NO_LOGS_LINE = "No recent logs found."
LOGS_ERROR_LINE = "Error fetching logs."
NOT_CONFIGURED_LINE = "Lambda function name not configured."
EMPTY_LOG_LINE = "Empty log message"

# Extra lookback so the daily datapoint is not cut off at the window edge
METRICS_SLACK = timedelta(minutes=5)


@dataclass
class TelemetryState:
    metrics: MetricsSnapshot = field(default_factory=MetricsSnapshot)
    logs: List[LogLine] = field(default_factory=list)
    updated_at: Optional[datetime] = None
    cycle: int = 0

    def to_dict(self) -> dict:
        return {
            "metrics": self.metrics.to_dict(),
            "logs": [line.to_dict() for line in self.logs],
            "updatedAt": self.updated_at.isoformat() if self.updated_at else None,
        }


class TelemetryPoller:
    """Periodically pulls Lambda metrics and recent log lines.

    Each cycle gets its own cancellation token; starting a cycle cancels the
    previous one so a slow log fetch can never overwrite newer state.
    """

    def __init__(
        self,
        source: TelemetrySource,
        errors: ErrorChannel,
        interval_seconds: float = 30.0,
        metrics_window: timedelta = timedelta(hours=24),
        logs_window: timedelta = timedelta(hours=1),
        logs_limit: int = 20,
    ):
        self.source = source
        self.errors = errors
        self.interval = interval_seconds
        self.metrics_window = metrics_window
        self.logs_window = logs_window
        self.logs_limit = logs_limit
        self.state = TelemetryState()
        self._token: Optional[CancellationToken] = None
        self._task: Optional[asyncio.Task] = None
        self._live: Set[asyncio.Task] = set()
        self._cycles = 0

    @property
    def running(self) -> bool:
        return self._task is not None and not self._task.done()

    async def fetch_metrics(self) -> MetricsSnapshot:
        if not self.source.configured:
            log_event("metrics_skipped", level=logging.WARNING, reason="function not configured")
            return MetricsSnapshot()
        end = datetime.now(timezone.utc)
        start = end - self.metrics_window - METRICS_SLACK
        period = int(self.metrics_window.total_seconds())
        try:
            invocations, errors, throttles = await asyncio.gather(
                self.source.metric_sum("Invocations", start, end, period),
                self.source.metric_sum("Errors", start, end, period),
                self.source.metric_sum("Throttles", start, end, period),
            )
        except ChatError as e:
            self.errors.report(e)
            return MetricsSnapshot()
        except Exception as e:
            log_event("metrics_fetch_error", level=logging.ERROR, error=repr(e))
            self.errors.report(NetworkError("Failed to fetch CloudWatch metrics"))
            return MetricsSnapshot()
        return MetricsSnapshot(
            invocations=max(0, int(invocations or 0)),
            errors=max(0, int(errors or 0)),
            throttles=max(0, int(throttles or 0)),
        )

    async def fetch_logs(self, token: CancellationToken) -> Optional[List[LogLine]]:
        """Recent log lines, or None if the fetch was superseded."""
        if not self.source.configured:
            return [LogLine(NOT_CONFIGURED_LINE)]
        start = datetime.now(timezone.utc) - self.logs_window
        try:
            raw = await self.source.recent_logs(start, self.logs_limit, token=token)
        except ChatError as e:
            if token.cancelled:
                return None
            self.errors.report(e)
            return [LogLine(LOGS_ERROR_LINE)]
        except Exception as e:
            if token.cancelled:
                return None
            log_event("logs_fetch_error", level=logging.ERROR, error=repr(e))
            self.errors.report(NetworkError("Failed to fetch CloudWatch logs"))
            return [LogLine(LOGS_ERROR_LINE)]
        if token.cancelled:
            LOG_FETCH_SUPERSEDED_TOTAL.inc()
            log_event("logs_fetch_superseded", level=logging.DEBUG, reason=token.reason)
            return None
        lines = [LogLine((m or "").strip() or EMPTY_LOG_LINE) for m in raw][-self.logs_limit:]
        if not lines:
            return [LogLine(NO_LOGS_LINE)]
        return lines

    async def poll_once(self) -> Tuple[MetricsSnapshot, List[LogLine]]:
        if self._token is not None:
            self._token.cancel("New log request started")
        token = CancellationToken()
        self._token = token
        self._cycles += 1
        cycle = self._cycles

        metrics, logs = await asyncio.gather(self.fetch_metrics(), self.fetch_logs(token))
        if token.cancelled:
            POLL_CYCLES_TOTAL.labels(outcome="superseded").inc()
            return metrics, logs or []
        self.state = TelemetryState(
            metrics=metrics, logs=logs or [], updated_at=datetime.now(timezone.utc), cycle=cycle
        )
        POLL_CYCLES_TOTAL.labels(outcome="applied").inc()
        log_event(
            "telemetry_polled",
            level=logging.DEBUG,
            cycle=cycle,
            metrics=metrics.to_dict(),
            logLines=len(self.state.logs),
        )
        return metrics, self.state.logs

    async def _run(self) -> None:
        # Fixed cadence: a tick never waits on the previous cycle.
        while True:
            for stale in list(self._live):
                stale.cancel()
            cycle = asyncio.create_task(self.poll_once())
            self._live.add(cycle)
            cycle.add_done_callback(self._cycle_done)
            await asyncio.sleep(self.interval)

    def _cycle_done(self, task: asyncio.Task) -> None:
        self._live.discard(task)
        if task.cancelled():
            POLL_CYCLES_TOTAL.labels(outcome="superseded").inc()
            return
        exc = task.exception()
        if exc is not None:
            POLL_CYCLES_TOTAL.labels(outcome="error").inc()
            log_event("telemetry_poll_error", level=logging.ERROR, error=repr(exc))

    def start(self) -> None:
        if self.running:
            return
        self._task = asyncio.create_task(self._run())

    async def stop(self) -> None:
        if self._token is not None:
            self._token.cancel("Poller stopping")
        task, self._task = self._task, None
        pending = list(self._live)
        if task is not None:
            pending.append(task)
        for t in pending:
            t.cancel()
        await asyncio.gather(*pending, return_exceptions=True)
        self._live.clear()

import asyncio

import pytest

from debugger_chat.errors import NetworkError
from debugger_chat.models import LogLine, MetricsSnapshot
from debugger_chat.notifications import ErrorChannel
from debugger_chat.providers.base import TelemetrySource
from debugger_chat.providers.mock import MockTelemetrySource
from debugger_chat.telemetry import TelemetryPoller


class FakeSource(TelemetrySource):
    provider_name = "fake"

    def __init__(self, metrics=None, logs=None, function_name="debugger-fn"):
        super().__init__(function_name=function_name)
        self.metrics = metrics or {}
        self.logs = logs if logs is not None else []
        self.metric_exc = None
        self.log_exc = None
        self.metric_calls = []
        self.log_calls = []
        self.gates = []

    async def metric_sum(self, metric_name, start, end, period_seconds):
        self.metric_calls.append((metric_name, end - start, period_seconds))
        if self.metric_exc:
            raise self.metric_exc
        return self.metrics.get(metric_name, 0)

    async def recent_logs(self, start, limit, token=None):
        self.log_calls.append(limit)
        if self.gates:
            gate, lines = self.gates.pop(0)
            await gate.wait()
            return lines
        if self.log_exc:
            raise self.log_exc
        return list(self.logs)


@pytest.mark.asyncio
async def test_poll_once_collects_metrics_and_trims_logs():
    src = FakeSource(
        metrics={"Invocations": 12, "Errors": 3, "Throttles": 1},
        logs=["  [INFO] started  ", "", "[ERROR] failed\n"],
    )
    poller = TelemetryPoller(src, ErrorChannel())
    metrics, logs = await poller.poll_once()

    assert metrics == MetricsSnapshot(invocations=12, errors=3, throttles=1)
    assert [l.text for l in logs] == ["[INFO] started", "Empty log message", "[ERROR] failed"]
    assert [l.severity for l in logs] == ["info", "info", "error"]
    assert poller.state.metrics == metrics
    assert poller.state.logs == logs
    names = sorted(c[0] for c in src.metric_calls)
    assert names == ["Errors", "Invocations", "Throttles"]
    assert all(period == 86400 for _, _, period in src.metric_calls)
    assert src.log_calls == [20]


@pytest.mark.asyncio
async def test_empty_logs_produce_sentinel_line():
    poller = TelemetryPoller(FakeSource(logs=[]), ErrorChannel())
    _, logs = await poller.poll_once()
    assert [l.text for l in logs] == ["No recent logs found."]


@pytest.mark.asyncio
async def test_metric_failure_yields_zero_snapshot_and_reports():
    src = FakeSource(logs=["ok"])
    src.metric_exc = NetworkError("metrics down")
    errors = ErrorChannel()
    poller = TelemetryPoller(src, errors)
    metrics, logs = await poller.poll_once()
    assert metrics == MetricsSnapshot()
    assert [l.text for l in logs] == ["ok"]
    assert "metrics down" in [n.message for n in errors.active()]


@pytest.mark.asyncio
async def test_log_failure_yields_error_sentinel_and_reports():
    src = FakeSource()
    src.log_exc = RuntimeError("socket closed")
    errors = ErrorChannel()
    poller = TelemetryPoller(src, errors)
    _, logs = await poller.poll_once()
    assert [l.text for l in logs] == ["Error fetching logs."]
    assert errors.active()[0].kind == "NetworkError"


@pytest.mark.asyncio
async def test_unconfigured_function_skips_queries():
    src = FakeSource(function_name="")
    poller = TelemetryPoller(src, ErrorChannel())
    metrics, logs = await poller.poll_once()
    assert metrics == MetricsSnapshot()
    assert [l.text for l in logs] == ["Lambda function name not configured."]
    assert src.metric_calls == [] and src.log_calls == []


@pytest.mark.asyncio
async def test_new_cycle_supersedes_pending_log_fetch():
    src = FakeSource()
    slow_gate, fast_gate = asyncio.Event(), asyncio.Event()
    src.gates = [(slow_gate, ["stale line"]), (fast_gate, ["fresh line"])]
    poller = TelemetryPoller(src, ErrorChannel())

    first = asyncio.create_task(poller.poll_once())
    await asyncio.sleep(0)
    second = asyncio.create_task(poller.poll_once())
    await asyncio.sleep(0)

    fast_gate.set()
    await second
    assert [l.text for l in poller.state.logs] == ["fresh line"]

    # The superseded fetch finishing late must not overwrite newer state
    slow_gate.set()
    await first
    assert [l.text for l in poller.state.logs] == ["fresh line"]


@pytest.mark.asyncio
async def test_start_polls_immediately_and_stop_cancels():
    poller = TelemetryPoller(MockTelemetrySource(), ErrorChannel(), interval_seconds=60)
    poller.start()
    for _ in range(50):
        await asyncio.sleep(0.01)
        if poller.state.cycle:
            break
    assert poller.state.metrics == MetricsSnapshot(invocations=100, errors=5, throttles=2)
    assert any(l.severity == "warn" for l in poller.state.logs)
    assert poller.running
    await poller.stop()
    assert not poller.running


def test_log_line_display_truncation():
    line = LogLine("e" * 200)
    assert line.display_text == "e" * 150 + "..."
    assert line.to_dict()["title"] == "e" * 200


class HangingFirstFetch(FakeSource):
    """First log query never returns; later ones answer immediately."""

    def __init__(self):
        super().__init__(metrics={"Invocations": 7.0}, logs=["fresh line"])
        self.never = asyncio.Event()

    async def recent_logs(self, start, limit, token=None):
        self.log_calls.append(limit)
        if len(self.log_calls) == 1:
            await self.never.wait()
        return list(self.logs)


@pytest.mark.asyncio
async def test_background_loop_keeps_cadence_when_a_log_fetch_hangs():
    src = HangingFirstFetch()
    poller = TelemetryPoller(src, ErrorChannel(), interval_seconds=0.05)
    poller.start()
    await asyncio.sleep(0.4)

    assert len(src.log_calls) > 1
    assert [l.text for l in poller.state.logs] == ["fresh line"]
    assert poller.state.metrics.invocations == 7

    await poller.stop()
    assert not poller.running


@pytest.mark.asyncio
async def test_metric_counts_are_integers():
    src = FakeSource(metrics={"Invocations": 100.0, "Errors": 5.0, "Throttles": 2.0})
    metrics, _ = await TelemetryPoller(src, ErrorChannel()).poll_once()
    assert metrics.to_dict() == {"invocations": 100, "errors": 5, "throttles": 2}
    assert all(isinstance(v, int) for v in metrics.to_dict().values())

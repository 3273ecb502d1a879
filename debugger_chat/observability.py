import json
import logging
import os
import time
from typing import Any

from prometheus_client import Counter, Histogram

logger = logging.getLogger("debugger_chat")
# Ensure our application logger emits under Uvicorn:
# - honor LOG_LEVEL env (default INFO)
# - attach a StreamHandler if none present
# - disable propagate to avoid duplicate logs with Uvicorn root handlers
try:
    _lvl_name = os.getenv("LOG_LEVEL", "INFO").strip().upper()
    _lvl = getattr(logging, _lvl_name, logging.INFO)
except Exception:
    _lvl = logging.INFO
logger.setLevel(_lvl)
if not logger.handlers:
    _h = logging.StreamHandler()
    _h.setLevel(_lvl)
    _h.setFormatter(logging.Formatter('%(message)s'))
    logger.addHandler(_h)
logger.propagate = False


def log_event(event: str, level: int = logging.INFO, **fields: Any) -> None:
    """Emit a one-line JSON log record. Never raises."""
    try:
        payload = {"ts": int(time.time() * 1000), "event": event}
        payload.update(fields)
        logger.log(level, json.dumps(payload, default=str))
    except Exception:
        pass


# HTTP request metrics
HTTP_REQUESTS_TOTAL = Counter(
    "debugger_chat_http_requests_total",
    "Total HTTP requests",
    ["method", "path", "status_class"],
)
HTTP_REQUEST_DURATION_SECONDS = Histogram(
    "debugger_chat_http_request_duration_seconds",
    "Duration of HTTP requests in seconds",
    ["method", "path"],
)

# Chat / inference
ASKS_TOTAL = Counter(
    "debugger_chat_asks_total",
    "Ask submissions by outcome",
    ["outcome"],
)
ASKS_THROTTLED_TOTAL = Counter(
    "debugger_chat_asks_throttled_total",
    "Ask submissions dropped by the leading-edge throttle",
)
INFERENCE_SECONDS = Histogram(
    "debugger_chat_inference_seconds",
    "Inference round trip latency in seconds",
    ["provider"],
)

# Telemetry polling
POLL_CYCLES_TOTAL = Counter(
    "debugger_chat_poll_cycles_total",
    "Telemetry poll cycles by outcome",
    ["outcome"],
)
LOG_FETCH_SUPERSEDED_TOTAL = Counter(
    "debugger_chat_log_fetch_superseded_total",
    "Log fetches whose results were discarded because a newer cycle started",
)

# Persistence
STORE_WRITES_TOTAL = Counter(
    "debugger_chat_store_writes_total",
    "Session store writes by status",
    ["status"],
)

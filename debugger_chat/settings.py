import os
from dataclasses import dataclass, field
from pathlib import Path
from typing import List, Optional

# Load environment variables from .env if available, but avoid during pytest to keep tests deterministic
from dotenv import load_dotenv

if "PYTEST_CURRENT_TEST" not in os.environ:
    load_dotenv()


def _env_str(name: str, default: str = "") -> str:
    return (os.getenv(name) or default).strip()


def _env_int(name: str, default: int) -> int:
    try:
        return int(os.getenv(name, str(default)))
    except Exception:
        return default


def _env_float(name: str, default: float) -> float:
    try:
        return float(os.getenv(name, str(default)))
    except Exception:
        return default


def _env_bool(name: str, default: bool) -> bool:
    try:
        v = os.getenv(name, "1" if default else "0").strip().lower()
        return v in ("1", "true", "yes", "on")
    except Exception:
        return default


def _env_list(name: str, default: List[str]) -> List[str]:
    raw = _env_str(name)
    if not raw:
        return list(default)
    return [p.strip() for p in raw.split(",") if p.strip()]


DEFAULT_SESSION_STORE_PATH = Path.home() / ".debugger_chat" / "chat_sessions.json"


@dataclass
class Settings:
    """Runtime configuration, normally built from the environment via `from_env`."""

    aws_region: str = "ap-south-1"
    lambda_function_name: str = ""
    aws_endpoint_url: Optional[str] = None

    inference_provider: str = "lambda"
    telemetry_provider: str = "cloudwatch"
    inference_timeout_seconds: float = 30.0
    inference_max_retries: int = 3
    ask_throttle_ms: int = 1000

    poll_interval_seconds: float = 30.0
    metrics_window_hours: int = 24
    logs_window_minutes: int = 60
    logs_limit: int = 20

    session_store_path: Path = DEFAULT_SESSION_STORE_PATH
    persist_debounce_ms: int = 500
    error_toast_seconds: float = 10.0

    identity_provider: str = "static"
    clerk_secret_key: str = ""
    clerk_api_url: str = "https://api.clerk.com/v1"
    clerk_timeout_seconds: float = 10.0

    log_level: str = "INFO"
    cors_origins: List[str] = field(default_factory=lambda: ["http://localhost:5173"])
    poller_enabled: bool = True

    @property
    def log_group_name(self) -> str:
        return f"/aws/lambda/{self.lambda_function_name}"

    @classmethod
    def from_env(cls) -> "Settings":
        return cls(
            aws_region=_env_str("AWS_REGION", "ap-south-1"),
            lambda_function_name=_env_str("AWS_LAMBDA_FUNCTION_NAME"),
            aws_endpoint_url=_env_str("AWS_ENDPOINT_URL") or None,
            inference_provider=_env_str("INFERENCE_PROVIDER", "lambda").lower(),
            telemetry_provider=_env_str("TELEMETRY_PROVIDER", "cloudwatch").lower(),
            inference_timeout_seconds=_env_float("INFERENCE_TIMEOUT_SECONDS", 30.0),
            inference_max_retries=_env_int("INFERENCE_MAX_RETRIES", 3),
            ask_throttle_ms=_env_int("ASK_THROTTLE_MS", 1000),
            poll_interval_seconds=_env_float("POLL_INTERVAL_SECONDS", 30.0),
            metrics_window_hours=_env_int("METRICS_WINDOW_HOURS", 24),
            logs_window_minutes=_env_int("LOGS_WINDOW_MINUTES", 60),
            logs_limit=_env_int("LOGS_LIMIT", 20),
            session_store_path=Path(_env_str("SESSION_STORE_PATH") or DEFAULT_SESSION_STORE_PATH),
            persist_debounce_ms=_env_int("PERSIST_DEBOUNCE_MS", 500),
            error_toast_seconds=_env_float("ERROR_TOAST_SECONDS", 10.0),
            identity_provider=_env_str("IDENTITY_PROVIDER", "static").lower(),
            clerk_secret_key=_env_str("CLERK_SECRET_KEY"),
            clerk_api_url=_env_str("CLERK_API_URL", "https://api.clerk.com/v1"),
            clerk_timeout_seconds=_env_float("CLERK_TIMEOUT_SECONDS", 10.0),
            log_level=_env_str("LOG_LEVEL", "INFO").upper(),
            cors_origins=_env_list("CORS_ORIGINS", ["http://localhost:5173"]),
            poller_enabled=_env_bool("POLLER_ENABLED", True),
        )

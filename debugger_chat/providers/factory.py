import logging
from typing import Any, Dict, Optional

import boto3
from botocore.config import Config

from ..observability import log_event
from ..settings import Settings
from .base import InferenceClient, TelemetrySource
from .mock import MockInferenceClient, MockTelemetrySource


def _client_kwargs(settings: Settings) -> Dict[str, Any]:
    kwargs: Dict[str, Any] = {}
    if settings.aws_region:
        kwargs["region_name"] = settings.aws_region
    if settings.aws_endpoint_url:
        kwargs["endpoint_url"] = settings.aws_endpoint_url
    return kwargs


def make_lambda_client(settings: Settings):
    """boto3 Lambda client with transport-level retries and a bounded read timeout."""
    config = Config(
        retries={"max_attempts": max(1, settings.inference_max_retries), "mode": "standard"},
        read_timeout=settings.inference_timeout_seconds,
        connect_timeout=min(10.0, settings.inference_timeout_seconds),
    )
    return boto3.client("lambda", config=config, **_client_kwargs(settings))


def get_inference_client(settings: Settings, provider: Optional[str] = None) -> InferenceClient:
    """Return an inference client based on settings or an explicit override.

    'lambda' (default) or 'mock'/'test'; unknown names fall back to mock.
    """
    prov = (provider or settings.inference_provider or "lambda").lower()

    if prov in ("mock", "test"):
        return MockInferenceClient(function_name=settings.lambda_function_name or None)

    if prov in ("lambda", "aws"):
        from .aws_lambda import LambdaInferenceClient

        return LambdaInferenceClient(make_lambda_client(settings), settings.lambda_function_name)

    log_event("inference_provider_unknown", level=logging.WARNING, provider=prov)
    return MockInferenceClient(function_name=settings.lambda_function_name or None)


def get_telemetry_source(settings: Settings, provider: Optional[str] = None) -> TelemetrySource:
    prov = (provider or settings.telemetry_provider or "cloudwatch").lower()

    if prov in ("mock", "test"):
        return MockTelemetrySource(function_name=settings.lambda_function_name or None)

    if prov in ("cloudwatch", "aws"):
        from .cloudwatch import CloudWatchTelemetrySource

        kwargs = _client_kwargs(settings)
        return CloudWatchTelemetrySource(
            boto3.client("cloudwatch", **kwargs),
            boto3.client("logs", **kwargs),
            settings.lambda_function_name,
        )

    log_event("telemetry_provider_unknown", level=logging.WARNING, provider=prov)
    return MockTelemetrySource(function_name=settings.lambda_function_name or None)

import asyncio
import json
import logging
import time
from typing import Any, Dict, Optional

from botocore.exceptions import (
    BotoCoreError,
    ClientError,
    ConnectTimeoutError,
    NoCredentialsError,
    PartialCredentialsError,
    ReadTimeoutError,
)

from ..errors import NetworkError, NotConfiguredError, RequestTimeoutError
from ..observability import INFERENCE_SECONDS, log_event
from .base import InferenceClient, InvocationResult


class LambdaInferenceClient(InferenceClient):
    """Invokes the debugger Lambda synchronously (RequestResponse).

    The boto3 client is injected; its retry and timeout policy lives in the
    client's botocore Config, not here.
    """

    provider_name: str = "lambda"

    def __init__(self, client: Any, function_name: Optional[str]):
        super().__init__(function_name=function_name)
        self._client = client

    async def invoke(self, payload: Dict[str, Any]) -> InvocationResult:
        if not self.configured:
            raise NotConfiguredError()
        body = json.dumps(payload)
        loop = asyncio.get_running_loop()

        def _invoke():
            return self._client.invoke(
                FunctionName=self.function_name,
                InvocationType="RequestResponse",
                Payload=body,
            )

        t0 = time.perf_counter()
        try:
            resp = await loop.run_in_executor(None, _invoke)
        except (ReadTimeoutError, ConnectTimeoutError) as e:
            raise RequestTimeoutError() from e
        except (NoCredentialsError, PartialCredentialsError) as e:
            raise NotConfiguredError("AWS credentials error. Please check configuration.") from e
        except ClientError as e:
            code = e.response.get("Error", {}).get("Code", "")
            msg = e.response.get("Error", {}).get("Message") or str(e)
            if code == "ResourceNotFoundException":
                raise NotConfiguredError(f"Lambda function not found: {self.function_name}") from e
            raise NetworkError(msg) from e
        except BotoCoreError as e:
            raise NetworkError(str(e) or None) from e
        finally:
            try:
                INFERENCE_SECONDS.labels(provider=self.provider_name).observe(time.perf_counter() - t0)
            except Exception:
                pass

        raw = resp.get("Payload")
        if hasattr(raw, "read"):
            raw = raw.read()
        if isinstance(raw, str):
            raw = raw.encode("utf-8")
        log_event(
            "lambda_invoked",
            level=logging.DEBUG,
            functionName=self.function_name,
            statusCode=resp.get("StatusCode"),
            functionError=resp.get("FunctionError"),
        )
        return InvocationResult(
            payload=raw or b"",
            function_error=resp.get("FunctionError") or None,
            status_code=int(resp.get("StatusCode") or 200),
        )

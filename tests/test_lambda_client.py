import json

import pytest

# Import-or-skip for AWS deps
boto3 = pytest.importorskip(
    "boto3",
    reason="Lambda tests require boto3. Install with: python -m pip install -e '.[test]'",
)
from botocore.exceptions import EndpointConnectionError, NoCredentialsError, ReadTimeoutError
from botocore.stub import Stubber

from debugger_chat.errors import NetworkError, NotConfiguredError, RequestTimeoutError
from debugger_chat.providers.aws_lambda import LambdaInferenceClient
from debugger_chat.providers.factory import make_lambda_client
from debugger_chat.settings import Settings


def _payload(prompt="why?", user_id="u1"):
    return {"body": json.dumps({"prompt": prompt, "userId": user_id})}


@pytest.mark.asyncio
async def test_invoke_sends_request_response_and_reads_payload():
    client = boto3.client("lambda", region_name="us-east-1")
    stubber = Stubber(client)
    envelope = {"statusCode": 200, "body": json.dumps({"response": "hi"})}
    stubber.add_response(
        "invoke",
        {"StatusCode": 200, "Payload": json.dumps(envelope).encode("utf-8")},
        {
            "FunctionName": "debugger-fn",
            "InvocationType": "RequestResponse",
            "Payload": json.dumps(_payload()),
        },
    )
    stubber.activate()

    cli = LambdaInferenceClient(client, "debugger-fn")
    res = await cli.invoke(_payload())

    assert json.loads(res.payload) == envelope
    assert res.function_error is None
    assert res.status_code == 200
    stubber.assert_no_pending_responses()
    stubber.deactivate()


@pytest.mark.asyncio
async def test_invoke_reports_function_error():
    client = boto3.client("lambda", region_name="us-east-1")
    stubber = Stubber(client)
    stubber.add_response(
        "invoke",
        {
            "StatusCode": 200,
            "FunctionError": "Unhandled",
            "Payload": b'{"errorMessage": "boom", "errorType": "Exception"}',
        },
    )
    stubber.activate()

    res = await LambdaInferenceClient(client, "debugger-fn").invoke(_payload())
    assert res.function_error == "Unhandled"
    assert json.loads(res.payload)["errorMessage"] == "boom"
    stubber.deactivate()


@pytest.mark.asyncio
async def test_missing_function_raises_not_configured():
    client = boto3.client("lambda", region_name="us-east-1")
    stubber = Stubber(client)
    stubber.add_client_error("invoke", service_error_code="ResourceNotFoundException", http_status_code=404)
    stubber.activate()

    with pytest.raises(NotConfiguredError):
        await LambdaInferenceClient(client, "debugger-fn").invoke(_payload())
    stubber.deactivate()


@pytest.mark.asyncio
async def test_other_client_errors_are_network_errors():
    client = boto3.client("lambda", region_name="us-east-1")
    stubber = Stubber(client)
    stubber.add_client_error(
        "invoke",
        service_error_code="TooManyRequestsException",
        service_message="Rate exceeded",
        http_status_code=429,
    )
    stubber.activate()

    with pytest.raises(NetworkError) as ei:
        await LambdaInferenceClient(client, "debugger-fn").invoke(_payload())
    assert ei.value.message == "Rate exceeded"
    stubber.deactivate()


class FakeLambdaClient:
    def __init__(self, exc):
        self.exc = exc

    def invoke(self, **kwargs):
        raise self.exc


@pytest.mark.parametrize("exc, expected", [
    (ReadTimeoutError(endpoint_url="https://lambda"), RequestTimeoutError),
    (EndpointConnectionError(endpoint_url="https://lambda"), NetworkError),
    (NoCredentialsError(), NotConfiguredError),
])
@pytest.mark.asyncio
async def test_transport_exceptions_map_to_taxonomy(exc, expected):
    with pytest.raises(expected):
        await LambdaInferenceClient(FakeLambdaClient(exc), "debugger-fn").invoke(_payload())


@pytest.mark.asyncio
async def test_unconfigured_function_never_calls_aws():
    with pytest.raises(NotConfiguredError):
        await LambdaInferenceClient(FakeLambdaClient(AssertionError("no call")), "").invoke(_payload())


def test_lambda_client_config_carries_retries_and_timeout():
    settings = Settings(aws_region="us-east-1", inference_timeout_seconds=30, inference_max_retries=3)
    client = make_lambda_client(settings)
    assert client.meta.config.read_timeout == 30
    assert client.meta.config.retries["max_attempts"] == 3

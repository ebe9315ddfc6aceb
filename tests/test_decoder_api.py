from __future__ import annotations

import asyncio
import json
import sys
from pathlib import Path

import httpx
import pytest

sys.path.append(str(Path(__file__).resolve().parents[1]))

from eliot_admin.errors import ApiCallError
from eliot_admin.infrastructure.decoder_api import ApiCredentials, DecoderApiClient, response_field

CREDENTIALS = ApiCredentials(base="https://decoders.example/", key="k3y")


def _call(handler, credentials: ApiCredentials = CREDENTIALS, body: dict | None = None) -> dict:
    client = DecoderApiClient(http_client=httpx.AsyncClient(transport=httpx.MockTransport(handler)))
    return asyncio.run(client.call_endpoint(credentials, "GenerateRulesBlock", body or {}, label="milesight"))


def test_call_endpoint_posts_json_with_code_parameter():
    captured: dict[str, object] = {}

    def handler(request: httpx.Request) -> httpx.Response:
        captured["url"] = f"{request.url.scheme}://{request.url.host}{request.url.path}"
        captured["code"] = request.url.params["code"]
        captured["body"] = json.loads(request.content)
        return httpx.Response(200, json={"RulesBlock": "rules"})

    payload = _call(handler, body={"documentation": "doc"})

    assert payload == {"RulesBlock": "rules"}
    assert captured == {
        "url": "https://decoders.example/api/GenerateRulesBlock",
        "code": "k3y",
        "body": {"documentation": "doc"},
    }


def test_missing_credentials_fail_before_any_request():
    def handler(request: httpx.Request) -> httpx.Response:
        raise AssertionError("no request expected")

    with pytest.raises(ApiCallError, match="API credentials not configured for milesight"):
        _call(handler, credentials=ApiCredentials(base="", key="k"))


def test_server_error_message_is_surfaced():
    def handler(request: httpx.Request) -> httpx.Response:
        return httpx.Response(400, json={"error": "documentation is required"})

    with pytest.raises(ApiCallError, match="documentation is required") as excinfo:
        _call(handler)
    assert excinfo.value.upstream_status == 400


def test_status_and_reason_used_without_error_body():
    def handler(request: httpx.Request) -> httpx.Response:
        return httpx.Response(503, text="busy")

    with pytest.raises(ApiCallError, match="API call failed: 503 Service Unavailable"):
        _call(handler)


def test_non_object_response_is_rejected():
    def handler(request: httpx.Request) -> httpx.Response:
        return httpx.Response(200, json=["rules"])

    with pytest.raises(ApiCallError, match="Unexpected response"):
        _call(handler)


def test_transport_errors_become_api_errors():
    def handler(request: httpx.Request) -> httpx.Response:
        raise httpx.ConnectError("refused", request=request)

    with pytest.raises(ApiCallError, match="API call failed: refused"):
        _call(handler)


def test_response_field_accepts_either_casing():
    assert response_field({"CompositeSpec": "pascal", "compositeSpec": "camel"}, "compositeSpec") == "pascal"
    assert response_field({"compositeSpec": "camel"}, "compositeSpec") == "camel"
    assert response_field({"CompositeSpec": ""}, "compositeSpec", None) is None

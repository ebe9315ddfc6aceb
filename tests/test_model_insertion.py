from __future__ import annotations

import asyncio
import json
import sys
from pathlib import Path

import httpx
import pytest

sys.path.append(str(Path(__file__).resolve().parents[1]))

from eliot_admin.application.model_insertion import (
    InsertionForm,
    ModelInsertionService,
    build_insertion_payload,
    missing_attributes,
    parse_attributes,
)
from eliot_admin.domain.attributes import AttributeMapping
from eliot_admin.errors import ApiCallError, FormError, JsonParseError
from eliot_admin.infrastructure.device_services import ModelDbInsertionClient

SERVICE_SQL = """BEGIN TRAN;
  DECLARE @tpModel nvarchar(200) = N'TP-1';
  SET @deviceModelId = SCOPE_IDENTITY();
  -- attributeFriENDlyName
COMMIT TRAN;
"""


def _form(**overrides) -> InsertionForm:
    values = {
        "decoderName": "MilesightEM300",
        "modelName": "EM300-TH",
        "supplier": "Milesight",
        "decodedData": '{"temperature": "21,5", "humidity": 40, "status": "ok"}',
        "deviceProfile": "EU868",
    }
    values.update(overrides)
    return InsertionForm.model_validate(values)


def test_payload_converts_comma_decimals():
    payload = build_insertion_payload(_form())

    assert payload == {
        "decoderName": "MilesightEM300",
        "deviceProfile": "EU868",
        "modelName": "EM300-TH",
        "supplier": "Milesight",
        "useOpenAI": False,
        "decodedData": {"temperature": 21.5, "humidity": 40, "status": "ok"},
    }


def test_payload_requires_every_field():
    with pytest.raises(FormError, match="supplier"):
        build_insertion_payload(_form(supplier="  "))


@pytest.mark.parametrize("decoded", ["{not json", "[1, 2]"])
def test_payload_requires_a_json_object(decoded):
    with pytest.raises(JsonParseError):
        build_insertion_payload(_form(decodedData=decoded))


def test_missing_attributes_lists_unmapped_keys():
    existing = [AttributeMapping(attribute_name="temperature")]

    assert missing_attributes('{"temperature": 1, "humidity": 2}', existing) == ["humidity"]
    assert missing_attributes("broken", existing) == []


def test_parse_attributes_accepts_wire_names():
    parsed = parse_attributes([{"attributeName": "battery", "dataAttributeId": 5, "friendlyName": "Battery"}])

    assert parsed[0].attribute_name == "battery"
    assert parsed[0].to_wire()["friendlyName"] == "Battery"
    with pytest.raises(FormError):
        parse_attributes({"attributeName": "battery"})
    with pytest.raises(FormError):
        parse_attributes([{"dataAttributeId": "many"}])


def _insertion_service(handler) -> ModelInsertionService:
    http_client = httpx.AsyncClient(transport=httpx.MockTransport(handler))
    return ModelInsertionService(ModelDbInsertionClient("https://insert.example/api", http_client=http_client))


def test_submit_returns_editable_session():
    captured: dict = {}

    def handler(request: httpx.Request) -> httpx.Response:
        captured.update(json.loads(request.content))
        return httpx.Response(
            200,
            json={
                "sql": SERVICE_SQL,
                "unknownKeys": ["status"],
                "mapped": [{"attributeName": "temperature", "dataAttributeId": 3, "friendlyName": "Temperature"}],
                "templateSource": {"builtinCount": 40, "csvCount": 2, "csvPath": "t.csv", "loadedFromCsv": True},
            },
        )

    session = asyncio.run(_insertion_service(handler).submit(_form()))

    assert captured["decodedData"]["temperature"] == 21.5
    assert "attributeFriendlyName" in session.sql
    assert session.result.unknown_keys == ["status"]
    assert session.platform_ids == [1]

    added = session.add_missing_attributes()
    assert [item.attribute_name for item in added] == ["humidity", "status"]
    assert session.add_missing_attributes() == []

    assert session.toggle_platform(7) == [1, 7]
    sql = session.rebuild_sql()
    assert sql.count("--") >= 3
    assert "Link to Chirpstack (iotPlatformId = 7)" in sql
    assert session.sql == sql


def test_last_platform_cannot_be_removed():
    def handler(request: httpx.Request) -> httpx.Response:
        return httpx.Response(200, json={"sql": SERVICE_SQL})

    session = asyncio.run(_insertion_service(handler).submit(_form()))

    with pytest.raises(FormError, match="At least one IoT platform"):
        session.toggle_platform(1)
    session.toggle_platform(9)
    assert session.toggle_platform(1) == [9]


def test_upstream_failure_is_reported():
    def handler(request: httpx.Request) -> httpx.Response:
        return httpx.Response(500, json={"error": "template missing"})

    with pytest.raises(ApiCallError, match="Failed to process model insertion") as excinfo:
        asyncio.run(_insertion_service(handler).submit(_form()))
    assert excinfo.value.upstream_status == 500

"""Form handling for generating device-model insertion SQL."""
from __future__ import annotations

import json
import logging
from dataclasses import dataclass, field
from typing import Any, Iterable, Sequence

from pydantic import BaseModel, ConfigDict, Field, ValidationError

from eliot_admin.core.sql_builder import update_sql_with_attributes
from eliot_admin.core.text_transforms import clean_sql_text, convert_to_number
from eliot_admin.domain.attributes import THINGPARK_PLATFORM_ID, AttributeMapping
from eliot_admin.errors import FormError, JsonParseError
from eliot_admin.infrastructure.device_services import ModelDbInsertionClient, ModelInsertionResult

LOGGER = logging.getLogger(__name__)


class InsertionForm(BaseModel):
    """The five inputs of the insertion form, accepted in wire or Python casing."""

    model_config = ConfigDict(populate_by_name=True, protected_namespaces=())

    decoder_name: str = Field(default="", alias="decoderName")
    model_name: str = Field(default="", alias="modelName")
    supplier: str = ""
    decoded_data: str = Field(default="", alias="decodedData")
    device_profile: str = Field(default="", alias="deviceProfile")


def parse_decoded_data(decoded_data: str) -> Any:
    try:
        return json.loads(decoded_data)
    except ValueError as exc:
        raise JsonParseError("Please provide valid JSON data") from exc


def build_insertion_payload(form: InsertionForm) -> dict[str, Any]:
    required = {
        "decoderName": form.decoder_name,
        "modelName": form.model_name,
        "supplier": form.supplier,
        "decodedData": form.decoded_data,
        "deviceProfile": form.device_profile,
    }
    missing = [name for name, value in required.items() if not value.strip()]
    if missing:
        raise FormError(f"Please fill in every field: {', '.join(missing)}")

    parsed = parse_decoded_data(form.decoded_data)
    if not isinstance(parsed, dict):
        raise JsonParseError("Decoded data must be a JSON object")

    decoded: dict[str, Any] = {}
    for key, value in parsed.items():
        decoded[key] = convert_to_number(value) if isinstance(value, str) else value

    return {
        "decoderName": form.decoder_name,
        "deviceProfile": form.device_profile,
        "modelName": form.model_name,
        "supplier": form.supplier,
        "useOpenAI": False,
        "decodedData": decoded,
    }


def parse_attributes(items: object) -> list[AttributeMapping]:
    if not isinstance(items, list):
        raise FormError("attributes must be a list")
    try:
        return [AttributeMapping.model_validate(item) for item in items]
    except ValidationError as exc:
        raise FormError(f"Invalid attribute: {exc.errors()[0]['msg']}") from exc


def missing_attributes(decoded_data: str, existing: Iterable[AttributeMapping]) -> list[str]:
    """Keys of ``decoded_data`` that no attribute covers yet.

    Unparseable or non-object input yields no keys.
    """

    try:
        parsed = json.loads(decoded_data) if decoded_data else None
    except ValueError:
        return []
    if not isinstance(parsed, dict):
        return []
    known = {attribute.attribute_name for attribute in existing}
    return [key for key in parsed if key not in known]


@dataclass(slots=True)
class InsertionSession:
    """Result of one SQL generation plus the user's edits to it."""

    form: InsertionForm
    result: ModelInsertionResult
    mapped: list[AttributeMapping] = field(default_factory=list)
    additional: list[AttributeMapping] = field(default_factory=list)
    platform_ids: list[int] = field(default_factory=lambda: [THINGPARK_PLATFORM_ID])
    updated_sql: str = ""

    @property
    def sql(self) -> str:
        return self.updated_sql or self.result.sql

    @property
    def attributes(self) -> list[AttributeMapping]:
        return [*self.mapped, *self.additional]

    def add_missing_attributes(self) -> list[AttributeMapping]:
        """Append default attributes for decoded keys not yet mapped."""

        added = [AttributeMapping.for_key(key) for key in missing_attributes(self.form.decoded_data, self.attributes)]
        self.additional.extend(added)
        return added

    def toggle_platform(self, platform_id: int) -> list[int]:
        if platform_id in self.platform_ids:
            if len(self.platform_ids) == 1:
                raise FormError("At least one IoT platform must be selected")
            self.platform_ids.remove(platform_id)
        else:
            self.platform_ids = sorted([*self.platform_ids, platform_id])
        return self.platform_ids

    def rebuild_sql(self) -> str:
        self.updated_sql = update_sql_with_attributes(self.sql, self.attributes, self.platform_ids)
        return self.updated_sql


class ModelInsertionService:
    def __init__(self, client: ModelDbInsertionClient) -> None:
        self._client = client

    async def submit(self, form: InsertionForm) -> InsertionSession:
        payload = build_insertion_payload(form)
        result = await self._client.generate(payload)
        result.sql = clean_sql_text(result.sql)
        LOGGER.info(
            "insertion sql generated model=%s mapped=%d unknown=%d",
            form.model_name,
            len(result.mapped),
            len(result.unknown_keys),
        )
        return InsertionSession(form=form, result=result, mapped=[item.model_copy() for item in result.mapped])


def rebuild_sql(sql: str, attributes: Sequence[AttributeMapping], platform_ids: Sequence[int]) -> str:
    """Stateless variant used by the tools endpoint."""

    return update_sql_with_attributes(clean_sql_text(sql), attributes, platform_ids)


__all__ = [
    "InsertionForm",
    "InsertionSession",
    "ModelInsertionService",
    "build_insertion_payload",
    "missing_attributes",
    "parse_attributes",
    "parse_decoded_data",
    "rebuild_sql",
]

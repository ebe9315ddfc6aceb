"""Stateless text utilities and the device lookup helper."""
from __future__ import annotations

from fastapi import APIRouter, Depends

from eliot_admin.application import Console
from eliot_admin.application.model_insertion import parse_attributes, rebuild_sql
from eliot_admin.core import text_transforms
from eliot_admin.domain.attributes import ATTRIBUTE_UNITS, IOT_PLATFORMS, NOTIFICATION_TYPES
from eliot_admin.errors import FormError
from eliot_admin.routes.deps import get_console

router = APIRouter(prefix="/tools", tags=["tools"])


def _text(payload: dict, key: str = "text") -> str:
    value = payload.get(key)
    if not isinstance(value, str):
        raise FormError(f"{key} is required")
    return value


@router.post("/json/check")
async def check_json(payload: dict) -> dict:
    return {"malformed": text_transforms.is_json_malformed(_text(payload))}


@router.post("/json/repair")
async def repair_json(payload: dict) -> dict:
    fixed, data = text_transforms.repair_and_parse(_text(payload))
    return {"text": fixed, "data": data}


@router.post("/json/clean-quotes")
async def clean_quotes(payload: dict) -> dict:
    return {"text": text_transforms.clean_double_quotes(_text(payload))}


@router.post("/numbers/normalize")
async def normalize_numbers(payload: dict) -> dict:
    return {"text": text_transforms.normalize_numbers(_text(payload))}


@router.post("/sql/format")
async def format_sql(payload: dict) -> dict:
    return {"sql": text_transforms.format_sql(_text(payload, "sql"))}


@router.post("/sql/clean")
async def clean_sql(payload: dict) -> dict:
    return {"sql": text_transforms.clean_sql_text(_text(payload, "sql"))}


@router.post("/sql/attributes")
async def update_sql_attributes(payload: dict) -> dict:
    platform_ids = payload.get("platformIds", [1])
    if not isinstance(platform_ids, list) or not all(isinstance(item, int) for item in platform_ids):
        raise FormError("platformIds must be a list of integers")
    sql = rebuild_sql(_text(payload, "sql"), parse_attributes(payload.get("attributes", [])), platform_ids)
    return {"sql": sql}


@router.post("/device-lookup")
async def device_lookup(payload: dict, console: Console = Depends(get_console)) -> dict:
    """Look up a device by supplier/model, or by a pasted JSON description."""
    if "json" in payload:
        extracted = text_transforms.extract_supplier_and_model(_text(payload, "json"))
        if extracted is None:
            raise FormError("Could not find supplier or model in the JSON")
        supplier, model = extracted
    else:
        supplier = str(payload.get("supplier") or "")
        model = str(payload.get("model") or "")
        if not supplier.strip() or not model.strip():
            raise FormError("Both supplier and model are required")
    match = await console.finder.find(supplier, model)
    return match.model_dump(by_alias=True)


@router.get("/reference")
async def reference_tables() -> dict:
    return {
        "units": [{"id": key, "unit": value} for key, value in ATTRIBUTE_UNITS.items()],
        "platforms": [{"id": key, "name": value} for key, value in IOT_PLATFORMS.items()],
        "notificationTypes": NOTIFICATION_TYPES,
    }

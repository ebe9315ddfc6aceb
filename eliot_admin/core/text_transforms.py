"""String and JSON munging applied to user input before it is sent upstream."""
from __future__ import annotations

import json
import re
from typing import Any

from eliot_admin.errors import JsonParseError

_DIGIT_COMMA_DIGIT = re.compile(r"(\d),(\d)")
_JS_FLOAT_PREFIX = re.compile(r"[+-]?(?:\d+\.?\d*|\.\d+)(?:[eE][+-]?\d+)?")

_TYPE_PLACEHOLDER = re.compile(r":\s*string|:\s*double|:\s*integer|:\s*boolean|:\s*float", re.IGNORECASE)
_UNQUOTED_KEY = re.compile(r"[{,]\s*[a-zA-Z_][a-zA-Z0-9_]*\s*:")

_BARE_KEY = re.compile(r"([{,]\s*)([a-zA-Z_][a-zA-Z0-9_]*)(\s*:)")
_QUOTED_KEY = re.compile(r'"\s*([a-zA-Z_][a-zA-Z0-9_]*)\s*:')
_MISSING_COMMA = re.compile(r'([a-zA-Z0-9_]+|"[^"]*"|true|false|null|\d+\.?\d*)\s*\n\s*(")')
_TRAILING_COMMA = re.compile(r",(\s*[}\]])")

# Order matters: "int" must run after "integer", "bool" after "boolean".
TYPE_PLACEHOLDERS: tuple[tuple[str, str], ...] = (
    ("string", '"example"'),
    ("double", "0.0"),
    ("float", "0.0"),
    ("integer", "0"),
    ("int", "0"),
    ("boolean", "false"),
    ("bool", "false"),
    ("number", "0"),
)

_SQL_BREAK_KEYWORDS = (
    "BEGIN",
    "END",
    "SELECT",
    "FROM",
    "WHERE",
    "INSERT INTO",
    "VALUES",
    "UPDATE",
    "SET",
    "DECLARE",
)

SUPPLIER_KEYS = ("supplier", "Supplier", "manufacturer", "Manufacturer")
MODEL_KEYS = ("model", "Model", "modelName", "ModelName", "deviceProfile", "DeviceProfile")


def normalize_numbers(text: str) -> str:
    """Turn decimal commas between digits into periods.

    Matches do not overlap, so ``"1,2,3"`` becomes ``"1.2,3"``.
    """

    return _DIGIT_COMMA_DIGIT.sub(r"\1.\2", text)


def convert_to_number(value: str) -> float | int | str:
    """Parse a possibly comma-decimal string the way ``parseFloat`` would.

    Only the leading numeric prefix is read (``"12.5 V"`` gives ``12.5``).
    Values without one are returned unchanged.
    """

    normalized = value.replace(",", ".", 1).lstrip()
    match = _JS_FLOAT_PREFIX.match(normalized)
    if not match:
        return value
    number = float(match.group(0))
    if number.is_integer():
        return int(number)
    return number


def clean_double_quotes(text: str) -> str:
    return text.replace('""', '"')


def _parses(text: str) -> bool:
    try:
        json.loads(text)
    except ValueError:
        return False
    return True


def is_json_malformed(text: str) -> bool:
    """True when ``text`` is invalid JSON that :func:`repair_json` can likely fix."""

    if not text.strip():
        return False
    if _parses(text):
        return False
    return bool(_TYPE_PLACEHOLDER.search(text) or _UNQUOTED_KEY.search(text))


def repair_json(text: str) -> str:
    """Best-effort repair of schema-like pseudo JSON.

    Quotes bare keys, inserts missing commas between lines, swaps type names
    such as ``double`` for example values and drops trailing commas.
    """

    fixed = text.strip()
    fixed = _BARE_KEY.sub(r'\1"\2"\3', fixed)
    fixed = _QUOTED_KEY.sub(r'"\1":', fixed)
    fixed = _MISSING_COMMA.sub(r"\1,\n\2", fixed)
    for type_name, example in TYPE_PLACEHOLDERS:
        pattern = re.compile(rf":\s*{type_name}\b", re.IGNORECASE)
        fixed = pattern.sub(lambda _match, example=example: f": {example}", fixed)
    fixed = _TRAILING_COMMA.sub(r"\1", fixed)
    return fixed


def repair_and_parse(text: str) -> tuple[str, Any]:
    """Repair ``text`` and parse it; returns the repaired text and the value."""

    fixed = repair_json(text)
    try:
        return fixed, json.loads(fixed)
    except ValueError as exc:
        raise JsonParseError("The JSON structure is too broken to repair automatically") from exc


def format_sql(sql: str) -> str:
    formatted = sql.replace("\r\n", "\n").replace(";", ";\n")
    for keyword in _SQL_BREAK_KEYWORDS:
        pattern = re.compile(rf"\b{keyword}\b", re.IGNORECASE)
        formatted = pattern.sub(lambda _match, keyword=keyword: f"\n{keyword}", formatted)
    return formatted.strip()


def clean_sql_text(sql: str) -> str:
    """Undo keyword corruptions produced by naive SQL formatting."""

    cleaned = re.sub(r"attributeFri\s*\n\s*ENDlyName", "attributeFriendlyName", sql)
    cleaned = cleaned.replace("attributeFriENDlyName", "attributeFriendlyName")
    cleaned = re.sub(r'"\s*\n\s*SELECTable"', '"selectable"', cleaned)
    return cleaned.replace("SELECTable", "selectable")


def _first_truthy(data: dict[str, Any], keys: tuple[str, ...]) -> str:
    for key in keys:
        value = data.get(key)
        if value:
            return str(value)
    return ""


def extract_supplier_and_model(json_text: str) -> tuple[str, str] | None:
    """Pull ``(supplier, model)`` out of a pasted device description."""

    try:
        data = json.loads(json_text)
    except ValueError:
        return None
    if not isinstance(data, dict):
        return None

    supplier = _first_truthy(data, SUPPLIER_KEYS)
    model = _first_truthy(data, MODEL_KEYS)
    if supplier or model:
        return supplier, model
    return None


__all__ = [
    "clean_double_quotes",
    "clean_sql_text",
    "convert_to_number",
    "extract_supplier_and_model",
    "format_sql",
    "is_json_malformed",
    "normalize_numbers",
    "repair_and_parse",
    "repair_json",
]

"""Rewrites generated device-model SQL after attributes or platforms changed.

The insertion service returns a complete T-SQL script. Editing an attribute
or the platform selection regenerates two parts of it: the
``dbo.deviceModelAttribute`` inserts and the per-platform
``dbo.iotPlatformDeviceModel``/``dbo.iotDeviceModelTag`` link sections.
Everything else in the script is kept as the service produced it.
"""
from __future__ import annotations

import logging
import re
from typing import Iterable, Sequence

from eliot_admin.core.text_transforms import clean_sql_text
from eliot_admin.domain.attributes import THINGPARK_PLATFORM_ID, AttributeMapping, platform_name, unit_description
from eliot_admin.errors import FormError

LOGGER = logging.getLogger(__name__)

_THINGPARK_LITERAL = re.compile(
    r"INSERT\s+INTO\s+dbo\.iotDeviceModelTag[\s\S]*?VALUES\s*\([\s\S]*?@iotPlatformDeviceModelId"
    r"[\s\S]*?'DeviceModelID'[\s,]*\r?\n\s*('(?:[^']|'')*')\s*\)",
    re.IGNORECASE,
)
_HEADER_THINGPARK_ID = re.compile(r"ThingPark ID:\s*([^\r\n]+)", re.IGNORECASE)
_DECLARED_TP_MODEL = re.compile(r"DECLARE\s+@tpModel\s+nvarchar\(200\)\s*=\s*N'([^']*)'", re.IGNORECASE)
_HAS_TP_MODEL = re.compile(r"DECLARE\s+@tpModel\b", re.IGNORECASE)

_ATTRIBUTE_INSERT = re.compile(
    r"--[^\n]*\s*\n+\s*INSERT INTO dbo\.deviceModelAttribute[\s\S]*?VALUES[\s\S]*?\([^)]*\);",
    re.IGNORECASE,
)
_AFTER_DEVICE_MODEL_ID = re.compile(r"(SET @deviceModelId = SCOPE_IDENTITY\(\);)")
_TP_MODEL_DECLARATION = re.compile(r"(DECLARE @tpModel\s+nvarchar\(200\)\s*=\s*N'[^']*';)")

_PLATFORM_SECTION = re.compile(
    r"(?:/\*[^*]*\*/\s*)?INSERT INTO dbo\.iotPlatformDeviceModel\s*\([^)]*\)\s*VALUES\s*\([^)]*@deviceModelId[^)]*\);?"
    r"\s*(?:SET @iotPlatformDeviceModelId = SCOPE_IDENTITY\(\);)?"
    r"\s*INSERT INTO dbo\.iotDeviceModelTag\s*\([^)]*\)\s*VALUES\s*\([^)]*'DeviceModelID'[^)]*\);?",
    re.IGNORECASE,
)
_PLATFORM_HEADER = re.compile(r"/\*\s*----\s*Link to IoT Platforms[^*]*\*/\s*")
_PLATFORM_DECLARATION = re.compile(r"\s*DECLARE @iotPlatformDeviceModelId int;\s*(?=\n|\Z)")
_EXCESS_BLANK_LINES = re.compile(r"\n{3,}")

_BEFORE_SELECT = re.compile(r"(\n\n+SELECT\s+DISTINCT)", re.IGNORECASE)
_BEFORE_COMMIT = re.compile(r"(\n\s*COMMIT TRAN;)", re.IGNORECASE)

_DEVICE_MODEL_INSERT = re.compile(
    r"\(.*deviceModelName.*deviceModelVersion.*deviceModelSupplier.*iotPlatformId.*decoderFunctionName.*display.*\)"
    r"[\s\S]*?VALUES[\s\S]*?\(.*@name.*NULL.*@supplier.*\d+.*@decoder.*1.*\)",
    re.IGNORECASE,
)
_SUPPLIER_PLATFORM = re.compile(r"(@supplier,\s*)(\d+)")

CHIRPSTACK_DECLARATION = "DECLARE @chirpstackDeviceModel nvarchar(200) = @tpModel; -- change if ChirpStack differs"

ATTRIBUTE_INSERT_TEMPLATE = """--{attribute_name}

  INSERT INTO dbo.deviceModelAttribute
                             (  deviceModelId
                             ,   dataAttributeId
                             ,   attributeName
                             ,   attributeDescription
                             ,   attributeValueList
                             ,   includeInResponse
                             ,                          notificationType
                             ,                          triggerLogic
                             ,                          triggerValue
                             ,   attributeFriendlyName
                             )

  VALUES
  (
  @deviceModelId,
  {data_attribute_id},
  N'{attribute_name_sql}',
  N'{description}',
  N'{value_list}',
  '{include}',
  '{notification_type}',
  NULL,
  NULL,
  N'{friendly_name}'
  );"""

PLATFORM_LINK_TEMPLATE = """    /* ---- Link to {name} (iotPlatformId = {platform_id}) ---------------------------- */
      INSERT INTO dbo.iotPlatformDeviceModel
                             (  iotPlatformId
                             ,   deviceModelId
                             )
      VALUES
      (
      {platform_id},
      @deviceModelId
      );

      SET @iotPlatformDeviceModelId = SCOPE_IDENTITY();

      INSERT INTO dbo.iotDeviceModelTag
                             (  iotPlatformDeviceModelId
                             ,   tag
                             ,   [value]
                             )
      VALUES
      (
      @iotPlatformDeviceModelId,
      'DeviceModelID',
      {value_expression}
      );"""

_PLATFORM_BLOCK_HEADER = "    /* ---- Link to IoT Platforms -------------------------------------------- */\n"


def _sql_literal(value: str) -> str:
    return value.replace("'", "''")


def render_attribute_insert(attribute: AttributeMapping) -> str:
    value_list = (
        f'[ {{ "value": "{attribute.value_kind}", '
        f'"description": "{unit_description(attribute.data_attribute_id)}", "selectable": false }} ]'
    )
    return ATTRIBUTE_INSERT_TEMPLATE.format(
        attribute_name=attribute.attribute_name,
        attribute_name_sql=_sql_literal(attribute.attribute_name),
        data_attribute_id=attribute.data_attribute_id,
        description=_sql_literal(attribute.description),
        value_list=value_list,
        include=1 if attribute.include_in_response else 0,
        notification_type=attribute.notification_type,
        friendly_name=_sql_literal(attribute.friendly_name),
    )


def _thingpark_value(original_sql: str) -> str:
    """Tag value for the ThingPark link, preferring what the script already had."""

    literal = _THINGPARK_LITERAL.search(original_sql)
    if literal:
        return literal.group(1)
    if _HAS_TP_MODEL.search(original_sql):
        return "'{\"OTAA\": \"' + @tpModel + '\", \"ABP\": \"' + @tpModel + '\"}'"

    header = _HEADER_THINGPARK_ID.search(original_sql)
    declared = _DECLARED_TP_MODEL.search(original_sql)
    if header:
        literal_id = header.group(1).strip()
    elif declared:
        literal_id = declared.group(1)
    else:
        literal_id = ""
    safe_id = _sql_literal(literal_id)
    return f"'{{\"OTAA\": \"{safe_id}\", \"ABP\": \"{safe_id}\"}}'"


def render_platform_links(platform_ids: Sequence[int], original_sql: str, *, declare: bool) -> str:
    header = _PLATFORM_BLOCK_HEADER
    if declare:
        header += "      DECLARE @iotPlatformDeviceModelId int;\n  "
    else:
        header += "  "

    sections = []
    for platform_id in platform_ids:
        if platform_id == THINGPARK_PLATFORM_ID:
            value_expression = _thingpark_value(original_sql)
        else:
            value_expression = "@chirpstackDeviceModel"
        sections.append(
            PLATFORM_LINK_TEMPLATE.format(
                name=platform_name(platform_id),
                platform_id=platform_id,
                value_expression=value_expression,
            )
        )
    return header + "\n" + "\n\n".join(sections)


def _unique(platform_ids: Iterable[int]) -> list[int]:
    seen: list[int] = []
    for platform_id in platform_ids:
        if platform_id not in seen:
            seen.append(platform_id)
    return seen


def update_sql_with_attributes(
    sql: str,
    attributes: Sequence[AttributeMapping],
    platform_ids: Iterable[int],
) -> str:
    """Regenerate attribute inserts and platform links in ``sql``.

    The first platform id becomes the primary ``iotPlatformId`` of the
    device-model insert.
    """

    platforms = _unique(platform_ids)
    if not platforms:
        raise FormError("At least one IoT platform must be selected")

    original = sql
    updated = _ATTRIBUTE_INSERT.sub("", original)

    inserts = "\n\n\n".join(render_attribute_insert(attribute) for attribute in attributes)
    updated = _AFTER_DEVICE_MODEL_ID.sub(lambda match: f"{match.group(1)}\n\n\n{inserts}", updated, count=1)
    updated = clean_sql_text(updated)

    if "DECLARE @chirpstackDeviceModel" not in updated:
        updated = _TP_MODEL_DECLARATION.sub(
            lambda match: f"{match.group(1)}\n    {CHIRPSTACK_DECLARATION}",
            updated,
            count=1,
        )

    updated = _PLATFORM_SECTION.sub("", updated)
    updated = _PLATFORM_HEADER.sub("", updated)
    updated = _PLATFORM_DECLARATION.sub("", updated)

    platform_block = render_platform_links(
        platforms,
        original,
        declare="DECLARE @iotPlatformDeviceModelId" not in updated,
    )
    updated = _EXCESS_BLANK_LINES.sub("\n\n", updated)

    if _BEFORE_SELECT.search(updated):
        updated = _BEFORE_SELECT.sub(lambda match: f"\n\n{platform_block}\n{match.group(1)}", updated, count=1)
    elif _BEFORE_COMMIT.search(updated):
        updated = _BEFORE_COMMIT.sub(lambda match: f"\n{platform_block}\n\n{match.group(1)}", updated, count=1)
    else:
        updated = updated.strip() + "\n\n" + platform_block

    primary = platforms[0]
    updated = _DEVICE_MODEL_INSERT.sub(
        lambda match: _SUPPLIER_PLATFORM.sub(lambda inner: f"{inner.group(1)}{primary}", match.group(0), count=1),
        updated,
        count=1,
    )

    LOGGER.info("sql rewritten attributes=%d platforms=%s", len(attributes), platforms)
    return updated


__all__ = ["render_attribute_insert", "render_platform_links", "update_sql_with_attributes"]

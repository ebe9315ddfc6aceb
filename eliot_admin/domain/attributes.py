"""Device telemetry attributes written by the SQL insertion tool."""
from __future__ import annotations

from typing import Any, Literal

from pydantic import BaseModel, ConfigDict, Field

ATTRIBUTE_UNITS: dict[int, str] = {
    1: "Unknown",
    2: "Amp",
    3: "grader",
    4: "status",
    5: "%",
    6: "tal",
    7: "Lux",
    8: "kPa",
    9: "st",
    10: "C",
    11: "mV",
    12: "ppb",
    13: "m/s",
    14: "text",
    15: "V",
    16: "Ohm",
    17: "ppm",
    18: "hPa",
    19: "µg/m3",
    20: "dBA",
    21: "µm",
    22: "#/cm3",
    23: "mm",
    24: "s",
    25: "W/m2",
    26: "mm/h",
    27: "km",
    28: "m",
    29: "kWh",
    30: "kVarh",
    31: "m3",
    32: "l",
    33: "Wh",
    34: "VArh",
    35: "W",
    36: "mA",
    37: "V",
    38: "Hz",
    39: "nm",
    40: "Pa",
    41: "dB",
    42: "Bq/m3",
    43: "Ah",
    44: "ds/m",
    45: "g",
    46: "min",
}

IOT_PLATFORMS: dict[int, str] = {
    1: "Thingpark",
    6: "Radonova",
    7: "Chirpstack",
    8: "Kameror MKB Net",
    9: "Netmore",
}

THINGPARK_PLATFORM_ID = 1

NOTIFICATION_TYPES: dict[str, str] = {
    "M": "Measurement",
    "A": "Alert",
    "S": "Status",
}


def unit_description(data_attribute_id: int) -> str:
    return ATTRIBUTE_UNITS.get(data_attribute_id, "Unknown")


def platform_name(platform_id: int) -> str:
    return IOT_PLATFORMS.get(platform_id, f"Platform {platform_id}")


class AttributeMapping(BaseModel):
    """One telemetry field as it will be stored in ``dbo.deviceModelAttribute``.

    Accepts the camelCase names of the insertion service (``attributeName``,
    ``friendlyName`` ...) as well as the snake_case field names.
    """

    model_config = ConfigDict(populate_by_name=True)

    attribute_name: str = Field(default="", alias="attributeName")
    data_attribute_id: int = Field(default=1, alias="dataAttributeId")
    friendly_name: str = Field(default="", alias="friendlyName")
    description: str = ""
    value_kind: Literal["string", "number", "boolean"] | str = Field(default="string", alias="valueKind")
    include_in_response: bool = Field(default=True, alias="includeInResponse")
    notification_type: str = Field(default="M", alias="notificationType")

    @classmethod
    def for_key(cls, key: str) -> "AttributeMapping":
        """Default mapping for a decoded-data key that the service did not map."""

        return cls(attribute_name=key, friendly_name=key)

    def to_wire(self) -> dict[str, Any]:
        return self.model_dump(by_alias=True)


__all__ = [
    "ATTRIBUTE_UNITS",
    "AttributeMapping",
    "IOT_PLATFORMS",
    "NOTIFICATION_TYPES",
    "THINGPARK_PLATFORM_ID",
    "platform_name",
    "unit_description",
]

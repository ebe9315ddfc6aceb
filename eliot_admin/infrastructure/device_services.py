"""Upstream device-model lookup and SQL insertion services."""
from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Any

import httpx
from pydantic import BaseModel, ConfigDict, Field

from eliot_admin.domain.attributes import AttributeMapping
from eliot_admin.errors import ApiCallError

LOGGER = logging.getLogger(__name__)


class DeviceModel(BaseModel):
    model_config = ConfigDict(populate_by_name=True, extra="allow", protected_namespaces=())

    manufacturer: str = ""
    model_name: str = Field(default="", alias="modelName")
    model_id: str = Field(default="", alias="modelId")
    connectivity: str = ""
    ism_bands: list[str] = Field(default_factory=list, alias="ismBands")


class DeviceEvidence(BaseModel):
    model_config = ConfigDict(extra="allow", protected_namespaces=())

    lorawan_version: str = ""
    device_class: str = ""
    manufacturer: str = ""
    model_name: str = ""
    regions: list[str] = Field(default_factory=list)
    sources: list[str] = Field(default_factory=list)
    notes: str = ""


class DeviceModelMatch(BaseModel):
    """Structured answer of the device-model finder."""

    model_config = ConfigDict(populate_by_name=True, extra="allow")

    status: str = ""
    query: dict[str, Any] = Field(default_factory=dict)
    best_match: DeviceModel | None = Field(default=None, alias="bestMatch")
    confidence: float = 0.0
    why: list[str] = Field(default_factory=list)
    alternatives: list[DeviceModel] = Field(default_factory=list)
    evidence: DeviceEvidence | None = None


class TemplateSource(BaseModel):
    model_config = ConfigDict(populate_by_name=True, extra="allow")

    builtin_count: int = Field(default=0, alias="builtinCount")
    csv_count: int = Field(default=0, alias="csvCount")
    csv_path: str = Field(default="", alias="csvPath")
    loaded_from_csv: bool = Field(default=False, alias="loadedFromCsv")


class ModelInsertionResult(BaseModel):
    """Response of the SQL-insertion generator."""

    model_config = ConfigDict(populate_by_name=True, extra="allow")

    sql: str = ""
    unknown_keys: list[str] = Field(default_factory=list, alias="unknownKeys")
    mapped: list[AttributeMapping] = Field(default_factory=list)
    template_source: TemplateSource | None = Field(default=None, alias="templateSource")


@dataclass(slots=True)
class UpstreamResponse:
    status_code: int
    payload: Any

    @property
    def ok(self) -> bool:
        return 200 <= self.status_code < 300


class UpstreamJsonClient:
    """POSTs JSON to a single configured URL and returns status plus body."""

    def __init__(self, url: str, *, name: str, timeout: float = 60.0, http_client: httpx.AsyncClient | None = None) -> None:
        self.url = url
        self.name = name
        self._client = http_client or httpx.AsyncClient(timeout=timeout)
        self._owns_client = http_client is None

    @property
    def configured(self) -> bool:
        return bool(self.url)

    async def forward(self, payload: Any) -> UpstreamResponse:
        """Pass ``payload`` through; transport and decoding errors propagate."""

        if not self.configured:
            raise ApiCallError("API URL not configured", upstream_status=500)
        response = await self._client.post(self.url, json=payload, headers={"Content-Type": "application/json"})
        data = response.json()
        if not response.is_success:
            LOGGER.warning("%s upstream returned status=%d", self.name, response.status_code)
        return UpstreamResponse(status_code=response.status_code, payload=data)

    async def aclose(self) -> None:
        if self._owns_client:
            await self._client.aclose()


class DeviceModelFinderClient(UpstreamJsonClient):
    def __init__(self, url: str, **kwargs: Any) -> None:
        super().__init__(url, name="device-model-finder", **kwargs)

    async def find(self, supplier: str, model: str) -> DeviceModelMatch:
        try:
            result = await self.forward({"supplier": supplier.strip(), "model": model.strip()})
        except (httpx.HTTPError, ValueError) as exc:
            raise ApiCallError(f"Device model lookup failed: {exc}") from exc
        if not result.ok:
            raise ApiCallError(
                f"Device model lookup failed: {result.status_code}",
                upstream_status=result.status_code,
            )
        return DeviceModelMatch.model_validate(result.payload)


class ModelDbInsertionClient(UpstreamJsonClient):
    def __init__(self, url: str, **kwargs: Any) -> None:
        super().__init__(url, name="model-db-insertion", **kwargs)

    async def generate(self, payload: dict[str, Any]) -> ModelInsertionResult:
        try:
            result = await self.forward(payload)
        except (httpx.HTTPError, ValueError) as exc:
            raise ApiCallError(f"Failed to process model insertion: {exc}") from exc
        if not result.ok:
            raise ApiCallError("Failed to process model insertion", upstream_status=result.status_code)
        return ModelInsertionResult.model_validate(result.payload)


__all__ = [
    "DeviceModelFinderClient",
    "DeviceModelMatch",
    "ModelDbInsertionClient",
    "ModelInsertionResult",
    "UpstreamJsonClient",
    "UpstreamResponse",
]

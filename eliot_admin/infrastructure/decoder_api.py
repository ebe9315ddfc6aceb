"""Authenticated JSON calls to the decoder generation and refinement functions."""
from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Any

import httpx

from eliot_admin.config import Settings
from eliot_admin.errors import ApiCallError

LOGGER = logging.getLogger(__name__)


@dataclass(frozen=True, slots=True)
class ApiCredentials:
    base: str
    key: str

    @property
    def configured(self) -> bool:
        return bool(self.base and self.key)


def resolve_credentials(manufacturer: str, settings: Settings) -> ApiCredentials:
    """Credentials for a manufacturer's generation endpoints.

    A ``DECODER_BASE_<M>``/``DECODER_KEY_<M>`` pair wins over the unified
    ``DECODER_BASE``/``DECODER_KEY``.
    """

    override = settings.decoder_overrides.get(str(manufacturer).lower())
    if override:
        return ApiCredentials(base=override[0], key=override[1])
    return ApiCredentials(base=settings.decoder_base, key=settings.decoder_key)


def resolve_refine_credentials(settings: Settings) -> ApiCredentials:
    return ApiCredentials(base=settings.refine_base, key=settings.refine_key)


def _pascal(name: str) -> str:
    return name[:1].upper() + name[1:]


def _camel(name: str) -> str:
    return name[:1].lower() + name[1:]


def response_field(payload: dict[str, Any], name: str, default: Any = "") -> Any:
    """Read ``name`` from a generation response in either casing.

    The functions are inconsistent about PascalCase and camelCase keys, so
    both are checked (PascalCase first) and the first truthy value wins.
    """

    for key in (_pascal(name), _camel(name)):
        value = payload.get(key)
        if value:
            return value
    return default


class DecoderApiClient:
    """Uniform POST helper for ``{base}/api/{path}?code={key}`` functions."""

    def __init__(self, *, timeout: float = 120.0, http_client: httpx.AsyncClient | None = None) -> None:
        self._client = http_client or httpx.AsyncClient(timeout=timeout)
        self._owns_client = http_client is None

    @staticmethod
    def _error_message(response: httpx.Response) -> str:
        try:
            data = response.json()
        except ValueError:
            data = None
        if isinstance(data, dict) and data.get("error"):
            return str(data["error"])
        return f"API call failed: {response.status_code} {response.reason_phrase}".rstrip()

    async def call_endpoint(
        self,
        credentials: ApiCredentials,
        path: str,
        body: dict[str, Any],
        *,
        label: str = "decoder generation",
    ) -> dict[str, Any]:
        if not credentials.configured:
            raise ApiCallError(f"API credentials not configured for {label}")

        base = credentials.base[:-1] if credentials.base.endswith("/") else credentials.base
        url = f"{base}/api/{path}"
        LOGGER.info("calling %s endpoint=%s", label, path)
        try:
            response = await self._client.post(
                url,
                params={"code": credentials.key},
                json=body,
                headers={"Content-Type": "application/json; charset=utf-8"},
            )
        except httpx.HTTPError as exc:
            raise ApiCallError(f"API call failed: {exc}") from exc

        if not response.is_success:
            message = self._error_message(response)
            LOGGER.warning("%s endpoint=%s failed status=%d", label, path, response.status_code)
            raise ApiCallError(message, upstream_status=response.status_code)

        try:
            payload = response.json()
        except ValueError as exc:
            raise ApiCallError(f"Invalid JSON from {path}") from exc
        if not isinstance(payload, dict):
            raise ApiCallError(f"Unexpected response from {path}")
        return payload

    async def aclose(self) -> None:
        if self._owns_client:
            await self._client.aclose()


__all__ = [
    "ApiCredentials",
    "DecoderApiClient",
    "resolve_credentials",
    "resolve_refine_credentials",
    "response_field",
]

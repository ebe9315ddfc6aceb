"""Same-origin pass-through to the device lookup and SQL insertion services."""
from __future__ import annotations

import logging

import httpx
from fastapi import APIRouter, Depends, Request
from fastapi.responses import JSONResponse

from eliot_admin.application import Console
from eliot_admin.infrastructure.device_services import UpstreamJsonClient
from eliot_admin.routes.deps import get_console

LOGGER = logging.getLogger(__name__)

router = APIRouter(tags=["proxy"])


async def _forward(request: Request, client: UpstreamJsonClient) -> JSONResponse:
    if not client.configured:
        return JSONResponse(status_code=500, content={"error": "API URL not configured"})
    try:
        payload = await request.json()
    except ValueError:
        return JSONResponse(status_code=400, content={"error": "Request body must be JSON"})

    try:
        result = await client.forward(payload)
    except (httpx.HTTPError, ValueError) as exc:
        LOGGER.error("%s proxy error: %s", client.name, exc)
        return JSONResponse(status_code=500, content={"error": str(exc)})
    return JSONResponse(status_code=result.status_code, content=result.payload)


@router.post("/device-model-finder")
async def device_model_finder(request: Request, console: Console = Depends(get_console)) -> JSONResponse:
    return await _forward(request, console.finder)


@router.post("/model-db-insertion")
async def model_db_insertion(request: Request, console: Console = Depends(get_console)) -> JSONResponse:
    return await _forward(request, console.insertion_client)

import logging
from contextlib import asynccontextmanager

import httpx
from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from eliot_admin.application import Console
from eliot_admin.config import Settings, get_settings
from eliot_admin.errors import ApiCallError, ConsoleError
from eliot_admin.routes import artifacts, decoder, insertion, proxy, tools

LOGGER = logging.getLogger(__name__)


def create_app(settings: Settings | None = None, *, http_client: httpx.AsyncClient | None = None) -> FastAPI:
    settings = settings or get_settings()
    console = Console(settings, http_client=http_client)

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        yield
        await console.aclose()

    app = FastAPI(title="Eliot Admin Console API", version="0.1.0", lifespan=lifespan)
    app.state.console = console

    app.add_middleware(
        CORSMiddleware,
        allow_origins=list(settings.cors_origins),
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    @app.exception_handler(ConsoleError)
    async def console_error_handler(request: Request, exc: ConsoleError) -> JSONResponse:
        content: dict[str, object] = {"error": str(exc)}
        if isinstance(exc, ApiCallError) and exc.upstream_status is not None:
            content["upstream_status"] = exc.upstream_status
        LOGGER.info("%s %s -> %d %s", request.method, request.url.path, exc.status_code, exc)
        return JSONResponse(status_code=exc.status_code, content=content)

    app.include_router(proxy.router, prefix="/api")
    app.include_router(decoder.router, prefix="/api")
    app.include_router(artifacts.router, prefix="/api")
    app.include_router(insertion.router, prefix="/api")
    app.include_router(tools.router, prefix="/api")

    @app.get("/", include_in_schema=False)
    async def root() -> JSONResponse:
        """Provide a lightweight landing page for container checks."""
        return JSONResponse(
            {
                "message": "Eliot Admin Console API",
                "docs": "/docs",
                "health": "/api/tools/reference",
            }
        )

    return app


app = create_app()

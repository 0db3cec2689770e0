from __future__ import annotations

from collections.abc import AsyncIterator, Awaitable, Callable
from contextlib import asynccontextmanager
from time import perf_counter
from urllib.parse import urlsplit
from uuid import uuid4

from fastapi import FastAPI, Request, Response
from fastapi.staticfiles import StaticFiles
from structlog.contextvars import bind_contextvars, reset_contextvars

from publisher.app.api.routes import router
from publisher.app.config import AppSettings
from publisher.app.dependencies import get_emoji_asset_table, get_settings, get_telemetry
from publisher.app.logging_config import configure_application_logging


def health_check() -> dict[str, str]:
    return {"status": "ok"}


@asynccontextmanager
async def app_lifespan(_: FastAPI) -> AsyncIterator[None]:
    settings = get_settings()
    configure_application_logging(settings)
    if settings.blob_store_backend == "filesystem":
        settings.blob_store_dir.mkdir(parents=True, exist_ok=True)
    # Static lookup data is loaded once per process, before the first request.
    get_emoji_asset_table()
    yield


def create_app() -> FastAPI:
    settings = get_settings()
    app = FastAPI(title="MDX Publisher API", version="0.1.0", lifespan=app_lifespan)

    async def request_context_middleware(
        request: Request,
        call_next: Callable[[Request], Awaitable[Response]],
    ) -> Response:
        telemetry = get_telemetry()
        incoming_request_id = request.headers.get("X-Request-ID")
        request_id = (
            incoming_request_id.strip()
            if isinstance(incoming_request_id, str) and incoming_request_id.strip()
            else str(uuid4())
        )
        context_tokens = bind_contextvars(
            http_request_id=request_id,
            http_method=request.method,
            http_path=request.url.path,
        )
        started_at = perf_counter()
        telemetry.emit(
            "http.request.start",
            request_id=request_id,
            method=request.method,
            path=request.url.path,
        )
        try:
            response = await call_next(request)
        except Exception as exc:
            telemetry.emit(
                "http.request.error",
                request_id=request_id,
                method=request.method,
                path=request.url.path,
                duration_ms=int((perf_counter() - started_at) * 1000),
                error_type=type(exc).__name__,
            )
            raise
        else:
            response.headers["X-Request-ID"] = request_id
            telemetry.emit(
                "http.request.finish",
                request_id=request_id,
                method=request.method,
                path=request.url.path,
                duration_ms=int((perf_counter() - started_at) * 1000),
                status_code=response.status_code,
            )
            return response
        finally:
            reset_contextvars(**context_tokens)

    app.middleware("http")(request_context_middleware)
    app.include_router(router)
    app.add_api_route(
        "/health",
        health_check,
        methods=["GET"],
        tags=["system"],
        operation_id="health_check",
    )
    _mount_blob_store(app=app, settings=settings)

    return app


def _mount_blob_store(*, app: FastAPI, settings: AppSettings) -> None:
    """Serve the filesystem blob store under the path of `public_base_url`."""
    if settings.blob_store_backend != "filesystem":
        return
    mount_path = urlsplit(settings.public_base_url).path.rstrip("/")
    if not mount_path:
        return
    app.mount(
        mount_path,
        StaticFiles(directory=settings.blob_store_dir, check_dir=False),
        name="blob_store",
    )


app = create_app()

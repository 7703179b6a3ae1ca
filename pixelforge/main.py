from __future__ import annotations

import logging
from contextlib import asynccontextmanager

from fastapi import FastAPI

from pixelforge.infrastructure.api.dependencies import get_settings, get_worker_pool
from pixelforge.infrastructure.api.middlewares import add_default_middlewares
from pixelforge.infrastructure.api.routes.image_routes import router as image_router
from pixelforge.infrastructure.api.routes.storage_routes import router as storage_router

logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    settings = get_settings()
    logger.info(
        "Starting %s: rate_limit=%d/%dms pipeline_workers=%s queue=%d timeout=%.1fs",
        app.title,
        settings.rate_limit_max,
        settings.rate_limit_window_ms,
        settings.pipeline_max_workers or "cpu",
        settings.pipeline_max_queue,
        settings.pipeline_timeout_seconds,
    )
    yield
    get_worker_pool().shutdown(wait=False)
    get_worker_pool.cache_clear()


def create_app() -> FastAPI:
    settings = get_settings()
    logging.basicConfig(
        level=getattr(logging, settings.log_level, logging.INFO),
        format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
    )
    app = FastAPI(
        title="PixelForge Backend",
        version="0.1.0",
        lifespan=lifespan,
        description="""
        ## PixelForge Backend API

        Image upload and transformation service. Transformations (crop, resize,
        rotate, flip, mirror, filters, format/quality, watermark) run through a
        fixed-order pipeline; saved results are stored as content-addressed
        variants so identical requests never run the pipeline twice.

        ### Authentication
        All endpoints (except root and health) require a Supabase access token:
        ```
        Authorization: Bearer your-jwt-token
        ```

        ### Error Responses
        - **400 Bad Request**: Invalid transformations or unsupported format
        - **401 Unauthorized**: Missing or invalid authentication token
        - **404 Not Found**: Image or variant does not exist or belongs to another user
        - **422 Unprocessable Entity**: Request body validation or pipeline failure
        - **429 Too Many Requests**: Transform rate limit hit; honour `Retry-After`
        - **502 Bad Gateway**: Storage backend failure
        - **503 Service Unavailable**: Pipeline workers saturated
        - **504 Gateway Timeout**: Pipeline run exceeded its time budget
        """,
    )
    add_default_middlewares(app)

    @app.get(
        "/",
        summary="API Root",
        description="Get basic information about the PixelForge API",
    )
    def root():
        return {"status": "ok", "service": "pixelforge-backend", "version": app.version}

    @app.get(
        "/health",
        summary="Health Check",
        description="Check if the API service is running and healthy",
    )
    def health():
        return {"status": "healthy"}

    app.include_router(image_router)
    app.include_router(storage_router)
    return app


app = create_app()

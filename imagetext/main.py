from __future__ import annotations

import logging
from collections.abc import AsyncIterator
from contextlib import asynccontextmanager

from fastapi import FastAPI, Request
from fastapi.responses import JSONResponse

from imagetext.api.routes import router
from imagetext.core.config import settings
from imagetext.core.errors import (
    ConcurrencyError,
    ExtractionError,
    InitializationError,
    InvalidImageError,
    LifecycleError,
    OCRServiceError,
)
from imagetext.core.logging import configure_logging
from imagetext.ocr.base_ocr import EngineFactory
from imagetext.ocr.factory import get_engine_factory
from imagetext.ocr.service import OCRService

logger = logging.getLogger(__name__)

_STATUS_CODES: dict[type[OCRServiceError], int] = {
    InitializationError: 503,
    ExtractionError: 422,
    ConcurrencyError: 409,
    LifecycleError: 500,
}


def _status_for(exc: OCRServiceError) -> int:
    if isinstance(exc, InvalidImageError):
        return 413 if exc.too_large else 400
    for exc_type, status in _STATUS_CODES.items():
        if isinstance(exc, exc_type):
            return status
    return 500


def create_app(engine_factory: EngineFactory | None = None) -> FastAPI:
    configure_logging(settings.log_level)

    @asynccontextmanager
    async def lifespan(app: FastAPI) -> AsyncIterator[None]:
        service: OCRService = app.state.ocr_service
        logger.info("startup", extra={"ocr_provider": settings.ocr_provider})
        if settings.init_on_startup:
            try:
                await service.initialize()
            except InitializationError:
                # Left uninitialized; the first extraction retries construction
                logger.warning("ocr_engine_deferred")
        yield
        await service.cleanup()
        logger.info("shutdown")

    app = FastAPI(title="ImageText", version="0.1.0", lifespan=lifespan)
    app.include_router(router)

    # One service per application instance; routes reach it through app.state
    app.state.ocr_service = OCRService(
        engine_factory or get_engine_factory(settings),
        language=settings.ocr_language,
    )

    @app.get("/")
    async def root():
        return {
            "message": "Welcome to the ImageText OCR API",
            "docs": "/docs",
            "health": "/health",
        }

    @app.exception_handler(OCRServiceError)
    async def _ocr_error(request: Request, exc: OCRServiceError) -> JSONResponse:
        status = _status_for(exc)
        logger.info("request_failed", extra={"path": request.url.path, "status": status, "error": type(exc).__name__})
        return JSONResponse(status_code=status, content={"detail": exc.message})

    return app


app = create_app()

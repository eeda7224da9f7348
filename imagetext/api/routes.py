from __future__ import annotations

import json
import logging
from collections.abc import AsyncIterator

from fastapi import APIRouter, Depends, File, HTTPException, Request, UploadFile
from fastapi.responses import Response, StreamingResponse

from imagetext.core.config import settings
from imagetext.core.errors import OCRServiceError
from imagetext.ocr.image import ImagePayload, validate_upload
from imagetext.ocr.service import ExtractionOutcome, OCRService
from imagetext.schemas import (
    DownloadRequest,
    ErrorResponse,
    ExtractionResponse,
    HealthResponse,
    TextIn,
    TextStatsOut,
)
from imagetext.text.stats import classify_text, compute_stats, safe_download_filename

logger = logging.getLogger(__name__)
router = APIRouter()

_IMAGE_ERRORS = {
    400: {"model": ErrorResponse, "description": "Not an image, or empty"},
    413: {"model": ErrorResponse, "description": "Image larger than the upload limit"},
}
_UPLOAD_ERRORS = {
    **_IMAGE_ERRORS,
    409: {"model": ErrorResponse, "description": "Another image is being processed"},
    422: {"model": ErrorResponse, "description": "Text extraction failed"},
    500: {"model": ErrorResponse, "description": "OCR service has been shut down"},
    503: {"model": ErrorResponse, "description": "OCR engine is still loading"},
}


def get_ocr_service(request: Request) -> OCRService:
    return request.app.state.ocr_service


async def _read_image(file: UploadFile) -> ImagePayload:
    limit = settings.max_upload_bytes
    if file.size is not None:
        validate_upload(file.content_type, file.size, limit)

    # Never buffer more than one byte past the limit
    data = await file.read(limit + 1)
    validate_upload(file.content_type, len(data), limit)
    return ImagePayload.from_bytes(data, file.content_type)


@router.get("/health", response_model=HealthResponse)
async def health(service: OCRService = Depends(get_ocr_service)) -> HealthResponse:
    return HealthResponse(status="ok", ocr_state=service.state.value)


@router.post("/extract", response_model=ExtractionResponse, responses=_UPLOAD_ERRORS)
async def extract(
    file: UploadFile = File(...),
    service: OCRService = Depends(get_ocr_service),
) -> ExtractionResponse:
    image = await _read_image(file)

    progress: list[int] = []
    text = await service.extract_text(image, progress.append)
    result = classify_text(text)

    logger.info(
        "extract_request_complete",
        extra={"upload_filename": file.filename, "text_found": result.text_found, "chars": result.stats.characters},
    )
    return ExtractionResponse.from_result(result, progress)


@router.post("/extract/stream", responses=_IMAGE_ERRORS)
async def extract_stream(
    file: UploadFile = File(...),
    service: OCRService = Depends(get_ocr_service),
) -> StreamingResponse:
    """Stream progress as NDJSON lines, ending in a ``result`` or ``error`` line."""
    image = await _read_image(file)

    async def _lines() -> AsyncIterator[str]:
        progress: list[int] = []
        try:
            async for item in service.stream_text(image):
                if isinstance(item, ExtractionOutcome):
                    body = ExtractionResponse.from_result(classify_text(item.text), progress)
                    yield json.dumps({"type": "result", **body.model_dump()}) + "\n"
                else:
                    progress.append(item.percent)
                    yield json.dumps({"type": "progress", "percent": item.percent}) + "\n"
        except OCRServiceError as exc:
            # Headers are already sent; report the failure in-band
            logger.warning("extract_stream_failed", extra={"error": type(exc).__name__})
            yield json.dumps({"type": "error", "detail": exc.message}) + "\n"

    return StreamingResponse(_lines(), media_type="application/x-ndjson")


@router.post("/stats", response_model=TextStatsOut)
async def stats(body: TextIn) -> TextStatsOut:
    return TextStatsOut.from_stats(compute_stats(body.text))


@router.post("/download", responses={400: {"model": ErrorResponse, "description": "No text to download"}})
async def download(body: DownloadRequest) -> Response:
    if not body.text:
        raise HTTPException(status_code=400, detail="There is no text to download")

    filename = safe_download_filename(body.filename)
    return Response(
        content=body.text.encode("utf-8"),
        media_type="text/plain; charset=utf-8",
        headers={"Content-Disposition": f'attachment; filename="{filename}"'},
    )

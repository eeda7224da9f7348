from __future__ import annotations

from imagetext.core.config import Settings, settings as default_settings
from imagetext.ocr.base_ocr import EngineFactory, OCREngine
from imagetext.ocr.mock_ocr import construct_mock_engine


def get_engine_factory(settings: Settings | None = None) -> EngineFactory:
    """Return the async constructor for the configured OCR engine.

    OCR_PROVIDER options:
        mock       — deterministic text (dev/test, no deps required)
        tesseract  — TesseractOCREngine (pytesseract + tesseract binary)
        paddleocr  — LocalOCREngine (pip install paddlepaddle paddleocr)
    """
    settings = settings or default_settings
    provider = settings.ocr_provider.lower().strip()

    if provider == "mock":
        return construct_mock_engine

    if provider == "tesseract":
        from imagetext.ocr.engines import TesseractOCREngine

        async def construct_tesseract(language: str) -> OCREngine:
            return await TesseractOCREngine.construct(language, tesseract_cmd=settings.tesseract_cmd)

        return construct_tesseract

    if provider == "paddleocr":
        from imagetext.ocr.engines import LocalOCREngine

        async def construct_paddle(language: str) -> OCREngine:
            return await LocalOCREngine.construct(language, use_gpu=settings.paddle_use_gpu)

        return construct_paddle

    raise ValueError(f"Unknown OCR_PROVIDER={settings.ocr_provider!r}")

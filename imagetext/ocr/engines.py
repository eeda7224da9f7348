"""TesseractOCREngine (pytesseract) and LocalOCREngine (PaddleOCR).

Both engines are blocking native libraries; every call into them runs in the
default executor so the event loop keeps serving requests.
"""
from __future__ import annotations

import asyncio
import io
import logging

from imagetext.ocr.base_ocr import RECOGNIZING, OCREngine, ProgressMessage, ProgressSink
from imagetext.ocr.image import ImagePayload

logger = logging.getLogger(__name__)

# tesseract language code -> PaddleOCR language code
_PADDLE_LANGS = {"eng": "en", "fra": "fr", "deu": "german", "spa": "es", "chi_sim": "ch"}


def _open_image(image: ImagePayload):
    from PIL import Image  # type: ignore[import]

    img = Image.open(io.BytesIO(image.data))
    img.load()
    return img


# ---------------------------------------------------------------------------
# TesseractOCREngine — pytesseract
# ---------------------------------------------------------------------------

class TesseractOCREngine(OCREngine):
    """OCR engine backed by the Tesseract binary via pytesseract.

    Install dependency:
        apt install tesseract-ocr tesseract-ocr-eng
        pip install pytesseract pillow

    Config (via .env):
        OCR_PROVIDER=tesseract
        OCR_LANGUAGE=eng
        TESSERACT_CMD=/usr/bin/tesseract   # only if not on PATH
    """

    def __init__(self, language: str = "eng", tesseract_cmd: str | None = None) -> None:
        self._language = language
        self._tesseract_cmd = tesseract_cmd
        self._pytesseract = None

    @classmethod
    async def construct(cls, language: str, tesseract_cmd: str | None = None) -> TesseractOCREngine:
        engine = cls(language, tesseract_cmd)
        loop = asyncio.get_running_loop()
        await loop.run_in_executor(None, engine._load)
        return engine

    def _load(self) -> None:
        try:
            import pytesseract  # type: ignore[import]
        except ModuleNotFoundError as exc:
            raise RuntimeError("pytesseract is not installed. Run: pip install pytesseract") from exc

        if self._tesseract_cmd:
            pytesseract.pytesseract.tesseract_cmd = self._tesseract_cmd

        version = pytesseract.get_tesseract_version()
        available = set(pytesseract.get_languages(config=""))
        missing = [lang for lang in self._language.split("+") if lang not in available]
        if missing:
            raise RuntimeError(f"Tesseract language data not installed: {', '.join(missing)}")

        self._pytesseract = pytesseract
        logger.info("tesseract_loaded", extra={"version": str(version), "lang": self._language})

    async def recognize(self, image: ImagePayload, progress: ProgressSink) -> str:
        if self._pytesseract is None:
            raise RuntimeError("Tesseract engine used before construction")

        await progress(ProgressMessage(status=RECOGNIZING, progress=0.0))
        loop = asyncio.get_running_loop()
        text = await loop.run_in_executor(None, self._image_to_string, image)
        await progress(ProgressMessage(status=RECOGNIZING, progress=1.0))
        return text

    def _image_to_string(self, image: ImagePayload) -> str:
        img = _open_image(image)
        text = self._pytesseract.image_to_string(img, lang=self._language)
        logger.info("tesseract_complete", extra={"chars": len(text)})
        return text

    async def terminate(self) -> None:
        # pytesseract spawns one process per call; nothing stays resident
        self._pytesseract = None


# ---------------------------------------------------------------------------
# LocalOCREngine — PaddleOCR
# ---------------------------------------------------------------------------

class LocalOCREngine(OCREngine):
    """OCR engine backed by PaddleOCR (runs 100% locally, no cloud calls).

    Install dependency:
        pip install paddlepaddle paddleocr

    Config (via .env):
        OCR_PROVIDER=paddleocr
        OCR_LANGUAGE=eng     # mapped to PaddleOCR's "en"
        PADDLE_USE_GPU=false
    """

    def __init__(self, language: str = "eng", use_gpu: bool = False) -> None:
        self._lang = _PADDLE_LANGS.get(language, language)
        self._use_gpu = use_gpu
        self._ocr = None

    @classmethod
    async def construct(cls, language: str, use_gpu: bool = False) -> LocalOCREngine:
        engine = cls(language, use_gpu)
        loop = asyncio.get_running_loop()
        await loop.run_in_executor(None, engine._load)
        return engine

    def _load(self) -> None:
        try:
            from paddleocr import PaddleOCR  # type: ignore[import]
        except ModuleNotFoundError as exc:
            raise RuntimeError(
                "PaddleOCR is not installed. Run: pip install paddlepaddle paddleocr"
            ) from exc
        self._ocr = PaddleOCR(
            use_angle_cls=True,
            lang=self._lang,
            use_gpu=self._use_gpu,
            show_log=False,
        )
        logger.info("paddleocr_loaded", extra={"lang": self._lang, "use_gpu": self._use_gpu})

    async def recognize(self, image: ImagePayload, progress: ProgressSink) -> str:
        if self._ocr is None:
            raise RuntimeError("PaddleOCR engine used before construction")

        await progress(ProgressMessage(status=RECOGNIZING, progress=0.0))
        loop = asyncio.get_running_loop()
        text = await loop.run_in_executor(None, self._run_ocr, image)
        await progress(ProgressMessage(status=RECOGNIZING, progress=1.0))
        return text

    def _run_ocr(self, image: ImagePayload) -> str:
        import numpy as np  # type: ignore[import]

        img_array = np.array(_open_image(image).convert("RGB"))
        result = self._ocr.ocr(img_array, cls=True)

        lines: list[str] = []
        if result and result[0]:
            for line in result[0]:
                # Each line: [bounding_box, [text, confidence]]
                lines.append(line[1][0])

        logger.info("paddleocr_complete", extra={"lines": len(lines)})
        return "\n".join(lines)

    async def terminate(self) -> None:
        self._ocr = None

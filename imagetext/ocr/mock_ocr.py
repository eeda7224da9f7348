from __future__ import annotations

from collections.abc import Sequence

from imagetext.ocr.base_ocr import RECOGNIZING, OCREngine, ProgressMessage, ProgressSink
from imagetext.ocr.image import ImagePayload

SAMPLE_TEXT = "HELLO WORLD\nThis text was produced by the mock OCR engine."


class MockOCREngine(OCREngine):
    """Deterministic engine for development and tests (no native deps)."""

    def __init__(
        self,
        text: str = SAMPLE_TEXT,
        progress_steps: Sequence[float] = (0.3, 0.7, 1.0),
        fail_with: BaseException | None = None,
    ) -> None:
        self.text = text
        self.progress_steps = tuple(progress_steps)
        self.fail_with = fail_with
        self.calls = 0
        self.terminated = False

    async def recognize(self, image: ImagePayload, progress: ProgressSink) -> str:
        self.calls += 1
        await progress(ProgressMessage(status="loading language traineddata", progress=1.0))
        for step in self.progress_steps:
            await progress(ProgressMessage(status=RECOGNIZING, progress=step))
        if self.fail_with is not None:
            raise self.fail_with
        return self.text

    async def terminate(self) -> None:
        self.terminated = True


async def construct_mock_engine(language: str) -> OCREngine:
    return MockOCREngine()

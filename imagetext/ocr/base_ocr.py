from __future__ import annotations

from collections.abc import Awaitable, Callable
from dataclasses import dataclass

from imagetext.ocr.image import ImagePayload

RECOGNIZING = "recognizing"


@dataclass(frozen=True)
class ProgressMessage:
    """Raw progress report from an engine; ``progress`` is a 0.0 to 1.0 fraction."""
    status: str
    progress: float


ProgressSink = Callable[[ProgressMessage], Awaitable[None]]


class OCREngine:
    """Handle to a constructed recognition engine. Not reentrant."""

    async def recognize(self, image: ImagePayload, progress: ProgressSink) -> str:
        raise NotImplementedError

    async def terminate(self) -> None:
        return None


# construct(language) -> ready engine handle
EngineFactory = Callable[[str], Awaitable[OCREngine]]

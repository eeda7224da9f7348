"""Recognition lifecycle manager.

Owns exactly one OCR engine handle and drives it through
uninitialized -> ready -> terminated:

- ``initialize()`` builds the engine once (idempotent, retryable on failure)
- ``extract_text()`` recognizes a single image, reporting integer progress
- ``stream_text()`` exposes the same extraction as an async iterator
- ``cleanup()`` terminates the engine; the service is unusable afterwards

The engine is not reentrant, so a second extraction while one is in flight is
rejected with ``ConcurrencyError`` rather than queued.
"""
from __future__ import annotations

import asyncio
import inspect
import logging
import math
import time
from collections.abc import AsyncIterator, Awaitable, Callable
from dataclasses import dataclass
from enum import Enum
from typing import Union

from imagetext.core.errors import (
    ConcurrencyError,
    ExtractionError,
    InitializationError,
    LifecycleError,
)
from imagetext.ocr.base_ocr import RECOGNIZING, EngineFactory, OCREngine, ProgressMessage
from imagetext.ocr.image import ImagePayload

logger = logging.getLogger(__name__)

ProgressCallback = Callable[[int], Union[Awaitable[None], None]]
ImageSource = Union[ImagePayload, bytes, str]


class EngineState(str, Enum):
    UNINITIALIZED = "uninitialized"
    READY = "ready"
    TERMINATED = "terminated"


@dataclass(frozen=True)
class ProgressEvent:
    percent: int  # 0 – 100


@dataclass(frozen=True)
class ExtractionOutcome:
    text: str


def to_percent(fraction: float) -> int:
    """Convert an engine fraction to a 0–100 integer, rounding halves up."""
    return max(0, min(100, math.floor(fraction * 100 + 0.5)))


def _as_payload(image: ImageSource) -> ImagePayload:
    if isinstance(image, ImagePayload):
        return image
    if isinstance(image, str):
        return ImagePayload.from_data_uri(image)
    return ImagePayload.from_bytes(image)


class OCRService:
    def __init__(self, engine_factory: EngineFactory, *, language: str = "eng") -> None:
        self._engine_factory = engine_factory
        self._language = language
        self._engine: OCREngine | None = None
        self._state = EngineState.UNINITIALIZED
        self._busy = False
        self._constructing = False
        self._init_lock = asyncio.Lock()
        self._detached: set[asyncio.Task] = set()

    @property
    def state(self) -> EngineState:
        return self._state

    @property
    def is_ready(self) -> bool:
        return self._state is EngineState.READY

    @property
    def is_busy(self) -> bool:
        return self._busy

    def _ensure_usable(self, operation: str) -> None:
        if self._state is EngineState.TERMINATED:
            raise LifecycleError(f"Cannot {operation}: OCR service has been shut down.")

    # ------------------------------------------------------------------ #
    #  Lifecycle                                                           #
    # ------------------------------------------------------------------ #

    async def initialize(self) -> None:
        self._ensure_usable("initialize")
        if self._state is EngineState.READY:
            return

        async with self._init_lock:
            # State may have changed while we waited for the lock
            self._ensure_usable("initialize")
            if self._state is EngineState.READY:
                return

            logger.info("ocr_engine_initializing", extra={"lang": self._language})
            t0 = time.monotonic()
            self._constructing = True
            try:
                engine = await self._engine_factory(self._language)
            except Exception as exc:
                logger.exception("ocr_engine_init_failed", extra={"lang": self._language})
                raise InitializationError() from exc
            finally:
                self._constructing = False

            if self._state is EngineState.TERMINATED:
                # cleanup() ran while the engine was being built
                await self._terminate_engine(engine)
                raise LifecycleError("Cannot initialize: OCR service was shut down during startup.")

            self._engine = engine
            self._state = EngineState.READY
            logger.info(
                "ocr_engine_ready",
                extra={"lang": self._language, "duration_ms": int((time.monotonic() - t0) * 1000)},
            )

    async def cleanup(self) -> None:
        """Terminate the engine. No-op unless ready or still being constructed.

        When construction is in flight the service is marked terminated at
        once and the engine is torn down as soon as the factory returns it.
        """
        if self._state is EngineState.UNINITIALIZED and self._constructing:
            self._state = EngineState.TERMINATED
            logger.info("ocr_engine_terminate_deferred")
            return
        if self._state is not EngineState.READY:
            return

        engine, self._engine = self._engine, None
        self._state = EngineState.TERMINATED
        await self._terminate_engine(engine)

    async def _terminate_engine(self, engine: OCREngine) -> None:
        try:
            await engine.terminate()
        except Exception:
            # The handle is gone either way; the service stays terminated
            logger.exception("ocr_engine_terminate_failed")
            return
        logger.info("ocr_engine_terminated")

    # ------------------------------------------------------------------ #
    #  Extraction                                                          #
    # ------------------------------------------------------------------ #

    async def extract_text(
        self,
        image: ImageSource,
        on_progress: ProgressCallback | None = None,
    ) -> str:
        """Recognize text in *image* and return it verbatim.

        ``on_progress`` receives strictly increasing percentages (0–100) during
        the recognizing phase; it may be a plain function or a coroutine
        function. Engine failures are raised as ``ExtractionError`` and leave
        the service ready for the next image.
        """
        self._ensure_usable("extract text")
        if self._busy:
            raise ConcurrencyError()

        payload = _as_payload(image)
        self._busy = True
        try:
            if self._state is not EngineState.READY:
                await self.initialize()
            return await self._recognize(payload, on_progress)
        finally:
            self._busy = False

    async def _recognize(self, image: ImagePayload, on_progress: ProgressCallback | None) -> str:
        engine = self._engine
        last_percent = -1

        async def sink(message: ProgressMessage) -> None:
            nonlocal last_percent
            if message.status != RECOGNIZING:
                return
            percent = to_percent(message.progress)
            if percent <= last_percent:
                return
            last_percent = percent
            logger.debug("ocr_progress", extra={"percent": percent})
            if on_progress is not None:
                result = on_progress(percent)
                if inspect.isawaitable(result):
                    await result

        logger.info(
            "ocr_extraction_started",
            extra={"image_bytes": image.size, "mime_type": image.mime_type},
        )
        t0 = time.monotonic()
        try:
            text = await engine.recognize(image, sink)
        except Exception as exc:
            logger.exception(
                "ocr_extraction_failed",
                extra={"image_bytes": image.size, "mime_type": image.mime_type},
            )
            raise ExtractionError() from exc

        logger.info(
            "ocr_extraction_completed",
            extra={"chars": len(text), "duration_ms": int((time.monotonic() - t0) * 1000)},
        )
        return text

    async def stream_text(
        self, image: ImageSource
    ) -> AsyncIterator[ProgressEvent | ExtractionOutcome]:
        """Yield zero or more ``ProgressEvent`` then one ``ExtractionOutcome``.

        Errors surface from the iterator with the same types as
        ``extract_text``. If the consumer stops early the extraction keeps
        running in the background until the engine finishes, so the engine is
        never re-entered.
        """
        queue: asyncio.Queue[int] = asyncio.Queue()
        task = asyncio.ensure_future(self.extract_text(image, queue.put_nowait))
        getter: asyncio.Future | None = None
        try:
            while True:
                getter = asyncio.ensure_future(queue.get())
                done, _ = await asyncio.wait({getter, task}, return_when=asyncio.FIRST_COMPLETED)
                if getter in done:
                    yield ProgressEvent(getter.result())
                    continue
                getter.cancel()
                break

            while not queue.empty():
                yield ProgressEvent(queue.get_nowait())
            yield ExtractionOutcome(task.result())
        finally:
            if getter is not None and not getter.done():
                getter.cancel()
            if not task.done():
                self._detach(task)

    def _detach(self, task: asyncio.Task) -> None:
        logger.info("ocr_stream_abandoned")
        self._detached.add(task)

        def _done(t: asyncio.Task) -> None:
            self._detached.discard(t)
            if not t.cancelled() and t.exception() is not None:
                logger.info("ocr_abandoned_extraction_failed", extra={"error": type(t.exception()).__name__})

        task.add_done_callback(_done)

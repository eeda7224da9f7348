"""Recognition lifecycle manager tests — stub engines only."""
from __future__ import annotations

import asyncio
from unittest.mock import AsyncMock

import pytest

from imagetext.core.errors import (
    ConcurrencyError,
    ExtractionError,
    InitializationError,
    LifecycleError,
)
from imagetext.ocr.base_ocr import RECOGNIZING, OCREngine, ProgressMessage
from imagetext.ocr.image import ImagePayload
from imagetext.ocr.mock_ocr import MockOCREngine
from imagetext.ocr.service import (
    EngineState,
    ExtractionOutcome,
    OCRService,
    ProgressEvent,
    to_percent,
)
from imagetext.text.stats import classify_text

IMAGE = ImagePayload.from_bytes(b"\x89PNG fake", "image/png")


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------

class _Factory:
    """Engine constructor that counts calls and can fail a set number of times."""

    def __init__(self, engine: OCREngine | None = None, failures: int = 0) -> None:
        self.engine = engine or MockOCREngine()
        self.failures = failures
        self.calls = 0
        self.languages: list[str] = []

    async def __call__(self, language: str) -> OCREngine:
        self.calls += 1
        self.languages.append(language)
        if self.failures:
            self.failures -= 1
            raise OSError("traineddata download failed")
        return self.engine


class _ScriptedEngine(OCREngine):
    """Replays a fixed list of progress messages, then returns ``text``."""

    def __init__(self, messages: list[tuple[str, float]], text: str = "ok") -> None:
        self.messages = messages
        self.text = text

    async def recognize(self, image, progress) -> str:
        for status, value in self.messages:
            await progress(ProgressMessage(status=status, progress=value))
        return self.text


class _GatedEngine(OCREngine):
    """Blocks inside ``recognize`` until released."""

    def __init__(self) -> None:
        self.started = asyncio.Event()
        self.release = asyncio.Event()
        self.calls = 0

    async def recognize(self, image, progress) -> str:
        self.calls += 1
        self.started.set()
        await progress(ProgressMessage(status=RECOGNIZING, progress=0.5))
        await self.release.wait()
        return "gated"


# ---------------------------------------------------------------------------
# initialize
# ---------------------------------------------------------------------------

@pytest.mark.asyncio
async def test_initialize_is_idempotent() -> None:
    factory = _Factory()
    service = OCRService(factory)

    await service.initialize()
    await service.initialize()

    assert factory.calls == 1
    assert service.state is EngineState.READY
    assert factory.languages == ["eng"]


@pytest.mark.asyncio
async def test_concurrent_initialize_constructs_once() -> None:
    factory = _Factory()
    service = OCRService(factory)

    await asyncio.gather(service.initialize(), service.initialize(), service.initialize())

    assert factory.calls == 1
    assert service.is_ready


@pytest.mark.asyncio
async def test_initialize_failure_stays_uninitialized_and_can_retry() -> None:
    factory = _Factory(failures=1)
    service = OCRService(factory)

    with pytest.raises(InitializationError) as info:
        await service.initialize()
    assert service.state is EngineState.UNINITIALIZED
    assert isinstance(info.value.__cause__, OSError)
    assert "try again" in info.value.message

    await service.initialize()
    assert service.state is EngineState.READY
    assert factory.calls == 2


# ---------------------------------------------------------------------------
# extract_text
# ---------------------------------------------------------------------------

@pytest.mark.asyncio
async def test_extract_text_initializes_lazily() -> None:
    factory = _Factory(MockOCREngine(text="lazy"))
    service = OCRService(factory)
    assert service.state is EngineState.UNINITIALIZED

    text = await service.extract_text(IMAGE)

    assert text == "lazy"
    assert factory.calls == 1
    assert service.is_ready


@pytest.mark.asyncio
async def test_extract_text_end_to_end_progress_and_result() -> None:
    engine = MockOCREngine(text="HELLO WORLD", progress_steps=(0.30, 0.70, 1.0))
    service = OCRService(_Factory(engine))
    seen: list[int] = []

    text = await service.extract_text(IMAGE, seen.append)

    assert seen == [30, 70, 100]
    assert text == "HELLO WORLD"


@pytest.mark.asyncio
@pytest.mark.parametrize("raw", ["HELLO WORLD", "  padded\n\n", "", "   \t\n", "ünïcödé ✓"])
async def test_extract_text_returns_engine_text_verbatim(raw: str) -> None:
    service = OCRService(_Factory(MockOCREngine(text=raw)))
    assert await service.extract_text(IMAGE) == raw


@pytest.mark.asyncio
async def test_blank_result_is_no_text_found_not_an_error() -> None:
    service = OCRService(_Factory(MockOCREngine(text="  \n ")))
    text = await service.extract_text(IMAGE)
    assert classify_text(text).text_found is False


@pytest.mark.asyncio
async def test_progress_only_reports_recognizing_phase_in_range_and_increasing() -> None:
    engine = _ScriptedEngine(
        [
            ("loading tesseract core", 0.5),
            (RECOGNIZING, 0.0),
            (RECOGNIZING, 0.104),
            ("initializing api", 1.0),
            (RECOGNIZING, 0.05),   # regression is dropped
            (RECOGNIZING, 0.104),  # repeat is dropped
            (RECOGNIZING, 0.555),
            (RECOGNIZING, 1.7),    # clamped
            (RECOGNIZING, 1.0),
        ]
    )
    service = OCRService(_Factory(engine))
    seen: list[int] = []

    await service.extract_text(IMAGE, seen.append)

    assert seen == [0, 10, 56, 100]
    assert all(0 <= p <= 100 for p in seen)
    assert seen == sorted(seen)


@pytest.mark.asyncio
async def test_async_progress_callback_is_awaited() -> None:
    service = OCRService(_Factory(MockOCREngine(progress_steps=(0.25, 1.0))))
    callback = AsyncMock()

    await service.extract_text(IMAGE, callback)

    assert [c.args[0] for c in callback.await_args_list] == [25, 100]


@pytest.mark.asyncio
async def test_extract_text_accepts_data_uri_and_bytes() -> None:
    service = OCRService(_Factory(MockOCREngine(text="x")))
    assert await service.extract_text(b"raw bytes") == "x"
    assert await service.extract_text("data:image/png;base64,iVBORw0KGgo=") == "x"


@pytest.mark.asyncio
async def test_extraction_failure_wraps_error_and_stays_ready() -> None:
    engine = MockOCREngine(text="recovered", fail_with=RuntimeError("tesseract segfault"))
    service = OCRService(_Factory(engine))

    with pytest.raises(ExtractionError) as info:
        await service.extract_text(IMAGE)
    assert isinstance(info.value.__cause__, RuntimeError)
    assert "segfault" not in info.value.message
    assert service.state is EngineState.READY
    assert service.is_busy is False

    engine.fail_with = None
    assert await service.extract_text(IMAGE) == "recovered"


@pytest.mark.asyncio
async def test_extract_text_propagates_initialization_error() -> None:
    factory = _Factory(failures=1)
    service = OCRService(factory)

    with pytest.raises(InitializationError):
        await service.extract_text(IMAGE)
    assert service.is_busy is False

    assert await service.extract_text(IMAGE)
    assert factory.calls == 2


@pytest.mark.asyncio
async def test_second_concurrent_extraction_is_rejected() -> None:
    engine = _GatedEngine()
    service = OCRService(_Factory(engine))

    first = asyncio.create_task(service.extract_text(IMAGE))
    await engine.started.wait()
    assert service.is_busy

    with pytest.raises(ConcurrencyError):
        await service.extract_text(IMAGE)

    engine.release.set()
    assert await first == "gated"
    assert engine.calls == 1
    assert service.is_busy is False


# ---------------------------------------------------------------------------
# cleanup
# ---------------------------------------------------------------------------

@pytest.mark.asyncio
async def test_cleanup_terminates_engine_and_is_idempotent() -> None:
    engine = MockOCREngine()
    service = OCRService(_Factory(engine))
    await service.initialize()

    await service.cleanup()
    await service.cleanup()

    assert engine.terminated is True
    assert service.state is EngineState.TERMINATED


@pytest.mark.asyncio
async def test_cleanup_before_initialize_is_noop() -> None:
    factory = _Factory()
    service = OCRService(factory)

    await service.cleanup()

    assert service.state is EngineState.UNINITIALIZED
    await service.initialize()
    assert factory.calls == 1


@pytest.mark.asyncio
async def test_calls_after_cleanup_raise_lifecycle_error_without_engine_use() -> None:
    engine = MockOCREngine()
    factory = _Factory(engine)
    service = OCRService(factory)
    await service.initialize()
    await service.cleanup()

    with pytest.raises(LifecycleError):
        await service.extract_text(IMAGE)
    with pytest.raises(LifecycleError):
        await service.initialize()

    assert engine.calls == 0
    assert factory.calls == 1


@pytest.mark.asyncio
async def test_cleanup_still_terminates_when_engine_teardown_fails() -> None:
    engine = MockOCREngine()
    engine.terminate = AsyncMock(side_effect=RuntimeError("worker already gone"))
    service = OCRService(_Factory(engine))
    await service.initialize()

    await service.cleanup()

    engine.terminate.assert_awaited_once()
    assert service.state is EngineState.TERMINATED


class _GatedFactory:
    """Engine constructor that blocks until ``gate`` is set."""

    def __init__(self, engine: OCREngine | None = None) -> None:
        self.engine = engine or MockOCREngine()
        self.started = asyncio.Event()
        self.gate = asyncio.Event()
        self.calls = 0

    async def __call__(self, language: str) -> OCREngine:
        self.calls += 1
        self.started.set()
        await self.gate.wait()
        return self.engine


@pytest.mark.asyncio
async def test_cleanup_during_pending_initialize_stays_terminated() -> None:
    factory = _GatedFactory()
    service = OCRService(factory)

    first = asyncio.create_task(service.initialize())
    second = asyncio.create_task(service.initialize())   # waits on the init lock
    await factory.started.wait()

    await service.cleanup()
    assert service.state is EngineState.TERMINATED

    factory.gate.set()
    results = await asyncio.gather(first, second, return_exceptions=True)

    assert all(isinstance(r, LifecycleError) for r in results)
    assert service.state is EngineState.TERMINATED
    assert factory.calls == 1
    # The engine built after shutdown is torn down, not leaked
    assert factory.engine.terminated is True


@pytest.mark.asyncio
async def test_initialize_waiting_on_lock_rejects_after_terminate() -> None:
    factory = _Factory()
    service = OCRService(factory)

    await service._init_lock.acquire()
    waiter = asyncio.create_task(service.initialize())
    await asyncio.sleep(0)   # waiter passed the early check and is queued on the lock

    # Another caller finishes construction and shuts the service down meanwhile
    service._engine = factory.engine
    service._state = EngineState.READY
    await service.cleanup()
    service._init_lock.release()

    with pytest.raises(LifecycleError):
        await waiter
    assert service.state is EngineState.TERMINATED
    assert factory.calls == 0


@pytest.mark.asyncio
async def test_cleanup_during_lazy_init_in_extract_text() -> None:
    engine = MockOCREngine()
    factory = _GatedFactory(engine)
    service = OCRService(factory)

    extraction = asyncio.create_task(service.extract_text(IMAGE))
    await factory.started.wait()
    await service.cleanup()
    factory.gate.set()

    with pytest.raises(LifecycleError):
        await extraction
    assert service.state is EngineState.TERMINATED
    assert service.is_busy is False
    assert engine.calls == 0
    assert engine.terminated is True


# ---------------------------------------------------------------------------
# stream_text
# ---------------------------------------------------------------------------

@pytest.mark.asyncio
async def test_stream_yields_progress_then_single_outcome() -> None:
    engine = MockOCREngine(text="HELLO WORLD", progress_steps=(0.3, 0.7, 1.0))
    service = OCRService(_Factory(engine))

    items = [item async for item in service.stream_text(IMAGE)]

    assert items == [
        ProgressEvent(30),
        ProgressEvent(70),
        ProgressEvent(100),
        ExtractionOutcome("HELLO WORLD"),
    ]


@pytest.mark.asyncio
async def test_stream_raises_extraction_error() -> None:
    engine = MockOCREngine(progress_steps=(0.5,), fail_with=ValueError("bad pixels"))
    service = OCRService(_Factory(engine))

    seen = []
    with pytest.raises(ExtractionError):
        async for item in service.stream_text(IMAGE):
            seen.append(item)

    assert seen == [ProgressEvent(50)]
    assert service.is_ready


@pytest.mark.asyncio
async def test_abandoned_stream_lets_engine_finish() -> None:
    engine = _GatedEngine()
    service = OCRService(_Factory(engine))

    stream = service.stream_text(IMAGE)
    assert await stream.__anext__() == ProgressEvent(50)
    await stream.aclose()

    # Engine is still running, so the handle stays busy
    assert service.is_busy
    with pytest.raises(ConcurrencyError):
        await service.extract_text(IMAGE)

    engine.release.set()
    for _ in range(10):
        if not service.is_busy:
            break
        await asyncio.sleep(0)
    assert service.is_busy is False


# ---------------------------------------------------------------------------
# to_percent
# ---------------------------------------------------------------------------

@pytest.mark.parametrize(
    ("fraction", "percent"),
    [(0.0, 0), (0.004, 0), (0.005, 1), (0.125, 13), (0.5, 50), (0.999, 100), (1.0, 100), (-0.2, 0), (3.0, 100)],
)
def test_to_percent_rounds_half_up_and_clamps(fraction: float, percent: int) -> None:
    assert to_percent(fraction) == percent

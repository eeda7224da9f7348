from __future__ import annotations

from pydantic import BaseModel, Field

from imagetext.text.stats import ExtractionResult, TextStats


class HealthResponse(BaseModel):
    status: str
    ocr_state: str


class TextStatsOut(BaseModel):
    characters: int
    words: int
    lines: int

    @classmethod
    def from_stats(cls, stats: TextStats) -> TextStatsOut:
        return cls(characters=stats.characters, words=stats.words, lines=stats.lines)


class ExtractionResponse(BaseModel):
    text: str
    text_found: bool
    message: str
    stats: TextStatsOut
    # Percentages reported during recognition, in order
    progress: list[int] = Field(default_factory=list)

    @classmethod
    def from_result(cls, result: ExtractionResult, progress: list[int] | None = None) -> ExtractionResponse:
        return cls(
            text=result.text,
            text_found=result.text_found,
            message=result.message,
            stats=TextStatsOut.from_stats(result.stats),
            progress=progress or [],
        )


class TextIn(BaseModel):
    text: str


class DownloadRequest(TextIn):
    filename: str | None = None


class ErrorResponse(BaseModel):
    detail: str

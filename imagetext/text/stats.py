from __future__ import annotations

from dataclasses import dataclass

DEFAULT_DOWNLOAD_FILENAME = "extracted_text.txt"

TEXT_FOUND_MESSAGE = "Text extracted successfully!"
NO_TEXT_MESSAGE = "No text found in the image. Please try with a clearer image."


@dataclass(frozen=True)
class TextStats:
    characters: int
    words: int
    lines: int


@dataclass(frozen=True)
class ExtractionResult:
    text: str
    text_found: bool
    stats: TextStats

    @property
    def message(self) -> str:
        return TEXT_FOUND_MESSAGE if self.text_found else NO_TEXT_MESSAGE


def word_count(text: str) -> int:
    return len(text.split())


def line_count(text: str) -> int:
    # Blank lines do not count
    return sum(1 for line in text.split("\n") if line.strip())


def compute_stats(text: str) -> TextStats:
    return TextStats(characters=len(text), words=word_count(text), lines=line_count(text))


def classify_text(text: str | None) -> ExtractionResult:
    """Split a successful recognition into "text found" and "no text found".

    Empty or whitespace-only output is not an error; it is reported with
    ``text_found=False`` and an empty text.
    """
    if not text or not text.strip():
        return ExtractionResult(text="", text_found=False, stats=compute_stats(""))
    return ExtractionResult(text=text, text_found=True, stats=compute_stats(text))


def safe_download_filename(filename: str | None) -> str:
    """Reduce a client-supplied name to a plain ``.txt`` basename."""
    if not filename:
        return DEFAULT_DOWNLOAD_FILENAME
    name = filename.replace("\\", "/").rsplit("/", 1)[-1]
    name = "".join(c for c in name if c.isalnum() or c in "._- ").strip(" .")
    if not name:
        return DEFAULT_DOWNLOAD_FILENAME
    if not name.lower().endswith(".txt"):
        name += ".txt"
    return name

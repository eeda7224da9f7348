from __future__ import annotations

from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    model_config = SettingsConfigDict(env_file=".env", env_file_encoding="utf-8", extra="ignore")

    log_level: str = "INFO"

    # OCR provider: mock | tesseract | paddleocr
    ocr_provider: str = "mock"
    ocr_language: str = "eng"   # tesseract language code; mapped for paddleocr
    tesseract_cmd: str | None = None
    paddle_use_gpu: bool = False

    # Construct the engine at startup; when false it is built on first use
    init_on_startup: bool = True

    # Upload limits (enforced by the HTTP layer, not the OCR service)
    max_upload_bytes: int = 10 * 1024 * 1024


settings = Settings()

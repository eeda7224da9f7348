"""Shared pytest configuration and fixtures for ImageText tests."""
from __future__ import annotations

import os

# Provide env vars before any imagetext module is imported
os.environ.setdefault("OCR_PROVIDER", "mock")
os.environ.setdefault("LOG_LEVEL", "WARNING")

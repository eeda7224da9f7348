from __future__ import annotations

import logging

# Attributes present on every LogRecord; anything else came in via ``extra=``.
_RESERVED = set(vars(logging.LogRecord("", 0, "", 0, "", None, None))) | {"message", "asctime"}


class ExtraFormatter(logging.Formatter):
    """Standard formatter that appends ``extra={...}`` fields as key=value pairs."""

    def format(self, record: logging.LogRecord) -> str:
        base = super().format(record)
        extras = {k: v for k, v in vars(record).items() if k not in _RESERVED}
        if not extras:
            return base
        fields = " ".join(f"{k}={v!r}" for k, v in sorted(extras.items()))
        return f"{base} {fields}"


def configure_logging(level: str = "INFO") -> None:
    root = logging.getLogger()
    root.setLevel(level.upper())

    for handler in root.handlers:
        if getattr(handler, "_imagetext", False):
            return

    handler = logging.StreamHandler()
    handler.setFormatter(
        ExtraFormatter(
            fmt="%(asctime)s %(levelname)s %(name)s: %(message)s",
            datefmt="%Y-%m-%dT%H:%M:%S",
        )
    )
    handler._imagetext = True  # type: ignore[attr-defined]
    root.addHandler(handler)

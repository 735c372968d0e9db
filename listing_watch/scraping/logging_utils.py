"""
Structured logging helpers for the polling engine.
"""

from __future__ import annotations

import json
import logging
from typing import Any


def log_event(
    logger: logging.Logger,
    level: int,
    event: str,
    **fields: Any,
) -> None:
    """
    Emit one structured log line as compact JSON.
    """

    payload = {"event": event, **fields}
    logger.log(level, json.dumps(payload, default=str, sort_keys=True))


def describe_error(exc: BaseException) -> str:
    """
    Render an exception as `TypeName: message` for log fields and alerts.
    """

    message = str(exc).strip()
    if not message:
        return type(exc).__name__
    return f"{type(exc).__name__}: {message}"

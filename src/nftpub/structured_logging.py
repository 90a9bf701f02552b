# src/nftpub/structured_logging.py
from __future__ import annotations

import json
import logging
import time
from typing import Any, Dict, Optional

Json = Dict[str, Any]

_LEVELS = {"DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"}


def _now_ms() -> int:
    return int(time.time() * 1000)


def level_from_name(name: Optional[str], default: int = logging.INFO) -> int:
    level_name = (name or "").strip().upper()
    if level_name not in _LEVELS:
        return int(default)
    return int(getattr(logging, level_name))


def configure_structured_logging(level: str = "INFO") -> None:
    """Configure stdlib logging for JSONL output (stderr; stdout stays free for results).

    - One handler on the "nftpub" logger, message-only format.
    - Safe to call multiple times (only the level is updated).
    """
    lvl = level_from_name(level)

    logger = logging.getLogger("nftpub")
    if getattr(logger, "_nftpub_configured", False):  # type: ignore[attr-defined]
        logger.setLevel(lvl)
        for h in logger.handlers:
            h.setLevel(lvl)
        return

    handler = logging.StreamHandler()
    handler.setLevel(lvl)
    handler.setFormatter(logging.Formatter("%(message)s"))

    logger.handlers = [handler]
    logger.setLevel(lvl)
    logger.propagate = False
    setattr(logger, "_nftpub_configured", True)  # type: ignore[attr-defined]


def log_event(logger: logging.Logger, event: str, *, level: int = logging.INFO, **fields: Any) -> None:
    """Emit a single JSONL log event at the given level."""
    if not logger.isEnabledFor(level):
        return
    payload: Json = {"ts_ms": _now_ms(), "event": str(event)}
    payload.update(fields)
    try:
        logger.log(level, json.dumps(payload, sort_keys=True, separators=(",", ":"), ensure_ascii=False))
    except (TypeError, ValueError):
        parts = [f"event={event}"] + [f"{k}={fields.get(k)!r}" for k in sorted(fields.keys())]
        logger.log(level, " ".join(parts))

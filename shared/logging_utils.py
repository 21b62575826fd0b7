"""watchsync logging utilities."""
from __future__ import annotations
import json
import logging
import logging.handlers
import time
from pathlib import Path
from typing import Any

LOG_FORMAT = "%(asctime)s [%(levelname)s] %(name)s: %(message)s"


def setup_rotating_logger(name: str, log_dir: Path, level: int | str = logging.INFO) -> logging.Logger:
    """
    Attach a rotating file handler (5MB x 5) and a console handler to the
    `name` logger. Child loggers (``watchsync.client.*``) propagate into it.
    """
    if isinstance(level, str):
        level = logging.getLevelName(level.upper())
    log_dir.mkdir(parents=True, exist_ok=True)

    logger = logging.getLogger(name)
    logger.setLevel(level)

    if not logger.handlers:
        fmt = logging.Formatter(LOG_FORMAT)
        fh = logging.handlers.RotatingFileHandler(
            log_dir / f"{name}.log", maxBytes=5 * 1024 * 1024, backupCount=5, encoding="utf-8"
        )
        fh.setLevel(level)
        fh.setFormatter(fmt)
        logger.addHandler(fh)

        ch = logging.StreamHandler()
        ch.setLevel(level)
        ch.setFormatter(fmt)
        logger.addHandler(ch)

    return logger


class AuditLog:
    """Appends one JSON object per line to a daily ``watchsync-YYYY-MM-DD.jsonl``."""

    def __init__(self, log_dir: Path):
        self.log_dir = log_dir

    @property
    def current_file(self) -> Path:
        return self.log_dir / f"watchsync-{time.strftime('%Y-%m-%d')}.jsonl"

    def write(self, event: str, **fields: Any) -> None:
        record = {"event": event, "ts_utc_ms": int(time.time() * 1000), **fields}
        self.log_dir.mkdir(parents=True, exist_ok=True)
        with open(self.current_file, "a", encoding="utf-8") as f:
            f.write(json.dumps(record) + "\n")

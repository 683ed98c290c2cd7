"""Rotating file logging shared by the sync machinery."""
from __future__ import annotations

import logging
from logging.handlers import RotatingFileHandler
from pathlib import Path

from core.settings import SYNC, SYNC_LOG_PATH


ROOT_LOGGER = "triplog"


def ensure_logger(name: str, path: Path = SYNC_LOG_PATH) -> logging.Logger:
    """Named logger writing through the single handler of ``triplog``.

    Every ``triplog.*`` logger propagates to the parent, so the rotating file
    has exactly one writer.
    """

    parent = logging.getLogger(ROOT_LOGGER)
    if not any(isinstance(h, RotatingFileHandler) for h in parent.handlers):
        Path(path).parent.mkdir(parents=True, exist_ok=True)
        handler = RotatingFileHandler(
            path,
            maxBytes=SYNC.log_max_bytes,
            backupCount=SYNC.log_backups,
            encoding="utf-8",
        )
        formatter = logging.Formatter("%(asctime)s [%(levelname)s] %(name)s: %(message)s")
        handler.setFormatter(formatter)
        parent.addHandler(handler)
    parent.setLevel(logging.INFO)
    if name == ROOT_LOGGER or name.startswith(ROOT_LOGGER + "."):
        return logging.getLogger(name)
    return logging.getLogger(f"{ROOT_LOGGER}.{name}")


def read_log_tail(lines: int = 100, path: Path = SYNC_LOG_PATH) -> str:
    try:
        with open(path, "r", encoding="utf-8") as fh:
            content = fh.readlines()
    except FileNotFoundError:
        return "O log de sincronização ainda não foi criado."
    content = [line.rstrip("\n") for line in content[-lines:]]
    return "\n".join(content)


__all__ = ["ROOT_LOGGER", "ensure_logger", "read_log_tail"]

from __future__ import annotations

import json
import logging
from logging.handlers import RotatingFileHandler
from pathlib import Path

# csl.ledger carries the command audit trail (applied/rejected actions, loads, saves).
CHANNELS = ("ledger", "sales", "costing", "capital")

# LogRecord attributes passed through ``extra=`` that end up in the JSON line.
CONTEXT_FIELDS = {"action_kind": "action"}


class JsonFormatter(logging.Formatter):
    def format(self, record: logging.LogRecord) -> str:
        payload = {
            "time": self.formatTime(record, self.datefmt),
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
        }
        for attr, key in CONTEXT_FIELDS.items():
            value = getattr(record, attr, None)
            if value:
                payload[key] = value
        if record.exc_info:
            payload["exception"] = self.formatException(record.exc_info)
        return json.dumps(payload, ensure_ascii=False)


def _handler(path: Path, level: int) -> RotatingFileHandler:
    fh = RotatingFileHandler(path, maxBytes=2_000_000, backupCount=5, encoding="utf-8")
    fh.setFormatter(JsonFormatter(datefmt="%Y-%m-%d %H:%M:%S"))
    fh.setLevel(level)
    return fh


def setup_logging(logs_dir: Path, level: int = logging.INFO) -> None:
    """Root logs go to app.log/errors.log; each csl.<channel> also gets its own file."""
    logs_dir.mkdir(parents=True, exist_ok=True)

    root = logging.getLogger()
    root.setLevel(level)
    if root.handlers:
        return

    root.addHandler(_handler(logs_dir / "app.log", logging.INFO))
    root.addHandler(_handler(logs_dir / "errors.log", logging.ERROR))

    for channel in CHANNELS:
        logger = logging.getLogger(f"csl.{channel}")
        logger.addHandler(_handler(logs_dir / f"{channel}.log", level))
        logger.setLevel(level)

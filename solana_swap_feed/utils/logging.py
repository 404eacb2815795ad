"""
Logging setup for the swap feed.

Colored console output for humans, JSON lines on disk for machines.
"""
from __future__ import annotations

import json
import logging
import logging.handlers
from datetime import datetime
from pathlib import Path

from solana_swap_feed.config import Settings


class ColoredFormatter(logging.Formatter):
    """Console formatter that highlights trade and connection events."""

    GREY = "\x1b[90m"
    GREEN = "\x1b[92m"
    CYAN = "\x1b[96m"
    RED = "\x1b[91m"
    MAGENTA = "\x1b[95m"
    YELLOW = "\x1b[93m"
    RESET = "\x1b[0m"

    DATE_FMT = "%H:%M:%S"

    def format(self, record: logging.LogRecord) -> str:
        if record.levelno >= logging.ERROR:
            color = self.RED
        elif record.levelno >= logging.WARNING:
            color = self.YELLOW
        else:
            color = self.GREY

        msg = str(record.msg)
        if "BUY" in msg or "🟢" in msg:
            color = self.GREEN
        elif "SELL" in msg or "🔴" in msg:
            color = self.MAGENTA
        elif "🔌" in msg or "📡" in msg or "🔍" in msg:
            color = self.CYAN

        timestamp = datetime.fromtimestamp(record.created).strftime(self.DATE_FMT)
        line = f"{color}{timestamp} {record.levelname[0]} {record.name} {record.getMessage()}{self.RESET}"

        extra_data = getattr(record, "extra_data", None)
        if extra_data:
            context = " | ".join(f"{k}={v}" for k, v in extra_data.items())
            line += f" ({context})"

        if record.exc_info:
            line += f"\n{self.formatException(record.exc_info)}"
        return line


class StructuredFormatter(logging.Formatter):
    """Outputs one JSON object per record."""

    def format(self, record: logging.LogRecord) -> str:
        log_data = {
            "timestamp": datetime.fromtimestamp(record.created).isoformat(),
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
            "module": record.module,
            "function": record.funcName,
            "line": record.lineno,
        }

        extra_data = getattr(record, "extra_data", None)
        if isinstance(extra_data, dict):
            log_data.update(extra_data)

        if record.exc_info:
            log_data["exception"] = self.formatException(record.exc_info)

        return json.dumps(log_data, default=str)


def setup_logging(settings: Settings, enable_file: bool = True) -> None:
    logger = logging.getLogger()
    logger.setLevel(settings.LOG_LEVEL.upper())

    # Remove existing handlers to avoid duplicates on reload
    if logger.hasHandlers():
        logger.handlers.clear()

    console_handler = logging.StreamHandler()
    console_handler.setFormatter(ColoredFormatter())
    logger.addHandler(console_handler)

    if enable_file:
        log_dir = Path(settings.LOG_DIR)
        log_dir.mkdir(parents=True, exist_ok=True)

        file_handler = logging.handlers.RotatingFileHandler(
            log_dir / "swap_feed.log",
            maxBytes=10 * 1024 * 1024,  # 10MB
            backupCount=5,
            encoding="utf-8",
        )
        file_handler.setFormatter(StructuredFormatter())
        logger.addHandler(file_handler)

    # Silence noisy libraries - only show WARNING and above
    for noisy in ("httpx", "httpcore", "websockets", "solana", "solders", "aiohttp", "asyncio"):
        logging.getLogger(noisy).setLevel(logging.WARNING)

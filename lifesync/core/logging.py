"""Loguru setup: stdout, rotating file, Slack alerts and credential redaction."""

import logging
import re
import sys
from pathlib import Path
from typing import Any, Dict

import httpx
from loguru import logger

from lifesync.core.config import settings

LOG_FORMAT = "{time:YYYY-MM-DD HH:mm:ss.SSS} | {level} | {extra[name]}:{function}:{line} | {message}"

_LEVEL_ALIASES = {"WARN": "WARNING", "FATAL": "CRITICAL"}
_KNOWN_LEVELS = {"TRACE", "DEBUG", "INFO", "SUCCESS", "WARNING", "ERROR", "CRITICAL"}

# Token-bearing fragments that must never reach a sink in clear text.
_SECRET_PATTERNS = [
    re.compile(r"(?i)(bearer\s+)[A-Za-z0-9\-._~+/]+=*"),
    re.compile(r"(?i)((?:access_token|refresh_token|client_secret|api_key|password)['\"]?\s*[:=]\s*['\"]?)[^'\",&\s}]+"),
]

_configured = False


class InterceptHandler(logging.Handler):
    """Send stdlib records (uvicorn, sqlalchemy, httpx) through loguru."""

    def emit(self, record: logging.LogRecord) -> None:
        try:
            level = logger.level(record.levelname).name
        except ValueError:
            level = record.levelno

        frame, depth = logging.currentframe(), 2
        while frame and frame.f_code.co_name == "emit":
            frame = frame.f_back
            depth += 1

        logger.opt(depth=depth, exception=record.exc_info).log(level, record.getMessage())


def redact(text: str) -> str:
    for pattern in _SECRET_PATTERNS:
        text = pattern.sub(r"\1***", text)
    return text


def _redacting_patcher(record: Dict[str, Any]) -> None:
    record["message"] = redact(record["message"])


def _resolve_level(raw: str) -> str:
    level = (raw or "INFO").strip().upper()
    level = _LEVEL_ALIASES.get(level, level)
    return level if level in _KNOWN_LEVELS else "INFO"


def _slack_sink(message: Any) -> None:
    record = message.record
    source = record["extra"].get("name", "lifesync")
    text = f"[{settings.ENV}] [{record['level'].name}] {source}:{record['function']}:{record['line']}\n{record['message']}"
    try:
        httpx.post(settings.SLACK_WEBHOOK_URL, json={"text": text}, timeout=5.0)
    except httpx.HTTPError as exc:
        # Logging here would re-enter this sink.
        print(f"Slack alert failed: {exc}", file=sys.stderr)


def configure_logging() -> None:
    global _configured
    if _configured:
        return
    _configured = True

    level = _resolve_level(settings.effective_log_level)

    logger.remove()
    logger.configure(extra={"name": "lifesync"}, patcher=_redacting_patcher)
    logger.add(sys.stdout, level=level, format=LOG_FORMAT, backtrace=False, diagnose=False)

    if settings.LOG_TO_FILE:
        log_dir = Path(settings.LOG_DIR)
        log_dir.mkdir(parents=True, exist_ok=True)
        logger.add(
            log_dir / "lifesync.log",
            level=level,
            format=LOG_FORMAT,
            rotation="10 MB",
            retention="14 days",
            enqueue=True,
            backtrace=False,
            diagnose=False,
        )

    if settings.SLACK_WEBHOOK_URL:
        logger.add(_slack_sink, level="ERROR", enqueue=True)

    logging.basicConfig(handlers=[InterceptHandler()], level=0, force=True)
    for name in ("uvicorn", "uvicorn.error", "uvicorn.access"):
        stdlib_logger = logging.getLogger(name)
        stdlib_logger.handlers = [InterceptHandler()]
        stdlib_logger.propagate = False


def get_logger(name: str, **context: Any) -> logger.__class__:
    return logger.bind(name=name, **context)


configure_logging()

import json
import logging
import os
import sys
from typing import Any, Dict

from loguru import logger

from zenscribe.core.config import settings

CONSOLE_FORMAT = (
    "<green>{time:YYYY-MM-DD HH:mm:ss.SSS}</green> | "
    "<level>{level: <8}</level> | "
    "<magenta>{extra[request_id]}</magenta> | "
    "<cyan>{name}</cyan>:<cyan>{function}</cyan>:<cyan>{line}</cyan> | "
    "<level>{message}</level>"
)


class InterceptHandler(logging.Handler):
    """Forwards stdlib logging records (uvicorn, sqlalchemy, httpx) into loguru"""

    def emit(self, record: logging.LogRecord) -> None:
        try:
            level = logger.level(record.levelname).name
        except ValueError:
            level = record.levelno

        # Skip logging's own frames so loguru reports the real caller
        frame, depth = logging.currentframe(), 2
        while frame and frame.f_code.co_filename == logging.__file__:
            frame = frame.f_back
            depth += 1

        logger.opt(depth=depth, exception=record.exc_info).log(level, record.getMessage())


def json_format(record: Dict[str, Any]) -> str:
    """
    Loguru format callable producing one JSON object per line

    Bound values such as request_id become top-level keys.
    """
    payload = {
        "timestamp": record["time"].isoformat(),
        "level": record["level"].name,
        "message": record["message"],
        "logger": record["name"],
        "function": record["function"],
        "line": record["line"],
        "pid": record["process"].id,
    }
    payload.update({k: str(v) for k, v in record["extra"].items() if k != "json"})

    exc = record["exception"]
    if exc:
        payload["exception"] = {"type": exc.type.__name__, "value": str(exc.value)}

    record["extra"]["json"] = json.dumps(payload)
    return "{extra[json]}\n"


def _log_file(suffix: str) -> str:
    return os.path.join(settings.LOG_DIR, f"{settings.ENVIRONMENT}_{suffix}.log")


def setup_logging() -> None:
    """
    Configure loguru sinks for the current environment

    Console always; when LOG_TO_FILE is set an error file in every
    environment and a full JSON log in production and staging.
    """
    level = settings.LOG_LEVEL or ("DEBUG" if settings.DEBUG else "INFO")
    structured = settings.ENVIRONMENT in ("production", "staging")

    logger.remove()
    logger.configure(extra={"request_id": "-"})
    logger.add(
        sys.stderr,
        format=CONSOLE_FORMAT,
        level=level,
        backtrace=True,
        diagnose=settings.ENVIRONMENT != "production",
    )

    if settings.LOG_TO_FILE:
        os.makedirs(settings.LOG_DIR, exist_ok=True)
        logger.add(
            _log_file("error"),
            format=json_format if structured else CONSOLE_FORMAT,
            level="ERROR",
            rotation="10 MB",
            retention="30 days",
            compression="zip",
            diagnose=False,
            enqueue=True,
        )
        if structured:
            logger.add(
                _log_file("all"),
                format=json_format,
                level=level,
                rotation="50 MB",
                retention="7 days",
                compression="zip",
                enqueue=True,
            )

    logging.basicConfig(handlers=[InterceptHandler()], level=0, force=True)
    for name in settings.NOISY_LOGGERS:
        std_logger = logging.getLogger(name)
        std_logger.handlers = [InterceptHandler()]
        std_logger.propagate = False

    logger.info(f"Logging configured for {settings.ENVIRONMENT} at {level}")

# wristpass/infra/log.py
from __future__ import annotations
import logging
import os
import sys

from loguru import logger

LOG_FORMAT = " | ".join((
    "<g>{time:YYYY-MM-DD HH:mm:ss.SSS}</>",
    "<lvl>{level:<8}</>",
    "<c>{name}:{function}:{line}</>",
    "{message}",
    "<lk>{extra}</>",
))

_configured = False


class InterceptHandler(logging.Handler):
    """Routes stdlib logging (uvicorn, sqlalchemy) into loguru."""

    def emit(self, record: logging.LogRecord) -> None:
        try:
            level = logger.level(record.levelname).name
        except ValueError:
            level = record.levelno

        frame, depth = logging.currentframe(), 2
        while frame and frame.f_code.co_filename == logging.__file__:
            frame = frame.f_back
            depth += 1

        logger.opt(depth=depth, exception=record.exc_info).log(
            level, record.getMessage()
        )


def setup_logging(level: str | None = None, json_logs: bool | None = None):
    """
    Env:
      LOG_LEVEL = DEBUG | INFO | WARNING ...   (default INFO)
      LOG_JSON  = 1 to emit one JSON object per line
    """
    global _configured
    if _configured:
        return logger

    level = (level or os.getenv("LOG_LEVEL", "INFO")).upper()
    if json_logs is None:
        json_logs = os.getenv("LOG_JSON", "0") == "1"

    logger.remove()
    if json_logs:
        logger.add(sys.stdout, level=level, serialize=True, enqueue=True)
    else:
        logger.add(sys.stdout, level=level, format=LOG_FORMAT, enqueue=True)

    logging.basicConfig(handlers=[InterceptHandler()], level=0, force=True)
    for name in ("uvicorn", "uvicorn.error", "uvicorn.access"):
        lg = logging.getLogger(name)
        lg.handlers = [InterceptHandler()]
        lg.propagate = False

    _configured = True
    return logger

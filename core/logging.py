"""Centralized logging setup."""

import logging
import sys
from contextvars import ContextVar

# Set per request by RequestLoggingMiddleware; read by utils.logging_helpers
request_id_var: ContextVar[str] = ContextVar("request_id", default="")

STDOUT_HANDLER_NAME = "realtime-stdout"

# Pusher SDK and HTTP clients are chatty at INFO
NOISY_LOGGERS = ("urllib3", "httpx", "httpcore", "pusher")


def configure_logging(*, environment: str, log_level: str) -> int:
    level = getattr(logging, (log_level or "INFO").upper(), logging.INFO)

    root = logging.getLogger()
    root.setLevel(level)

    if not any(h.get_name() == STDOUT_HANDLER_NAME for h in root.handlers):
        handler = logging.StreamHandler(sys.stdout)
        handler.set_name(STDOUT_HANDLER_NAME)
        handler.setLevel(level)
        handler.setFormatter(
            logging.Formatter(
                "[%(asctime)s.%(msecs)03d] [%(levelname)-5s] [%(name)-20s] %(message)s",
                datefmt="%Y-%m-%d %H:%M:%S",
            )
        )
        root.addHandler(handler)

    for noisy in NOISY_LOGGERS:
        logging.getLogger(noisy).setLevel(logging.WARNING)

    for name in ("uvicorn", "uvicorn.error", "uvicorn.access"):
        uv_logger = logging.getLogger(name)
        uv_logger.handlers.clear()
        uv_logger.propagate = True
        uv_logger.setLevel(level)

    if environment == "production":
        logging.getLogger("uvicorn.access").setLevel(logging.WARNING)

    return level

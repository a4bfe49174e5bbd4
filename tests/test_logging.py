import logging

from core.logging import STDOUT_HANDLER_NAME, configure_logging


def _stdout_handlers():
    return [h for h in logging.getLogger().handlers if h.get_name() == STDOUT_HANDLER_NAME]


def test_configure_logging_is_idempotent_and_quiets_noisy_loggers():
    root = logging.getLogger()
    previous_level = root.level
    try:
        assert configure_logging(environment="development", log_level="debug") == logging.DEBUG
        assert configure_logging(environment="development", log_level="debug") == logging.DEBUG

        assert len(_stdout_handlers()) == 1
        assert root.level == logging.DEBUG
        assert logging.getLogger("pusher").level == logging.WARNING
        assert logging.getLogger("uvicorn.access").propagate is True
        assert logging.getLogger("uvicorn.access").level == logging.DEBUG
    finally:
        root.setLevel(previous_level)


def test_production_silences_access_log_and_unknown_level_falls_back():
    root = logging.getLogger()
    previous_level = root.level
    try:
        assert configure_logging(environment="production", log_level="chatty") == logging.INFO
        assert logging.getLogger("uvicorn.access").level == logging.WARNING
    finally:
        root.setLevel(previous_level)
        logging.getLogger("uvicorn.access").setLevel(logging.NOTSET)

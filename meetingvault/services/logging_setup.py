import logging
import os
from datetime import datetime
from logging.handlers import RotatingFileHandler

_FORMAT = "[%(asctime)s] [%(name)s] %(message)s"
_DATE_FORMAT = "%H:%M:%S"

# Third-party loggers that are too chatty at DEBUG for the session log.
_QUIET_LOGGERS = ("urllib3", "httpx", "httpcore", "multipart")


def _build_handlers(log_path: str, console_level: int) -> list[logging.Handler]:
    formatter = logging.Formatter(_FORMAT, _DATE_FORMAT)

    file_handler = RotatingFileHandler(log_path, maxBytes=5_000_000, backupCount=3, encoding="utf-8")
    file_handler.setLevel(logging.DEBUG)
    file_handler.name = "meetingvault_file"

    stream_handler = logging.StreamHandler()
    stream_handler.setLevel(console_level)
    stream_handler.name = "meetingvault_stream"

    for handler in (file_handler, stream_handler):
        handler.setFormatter(formatter)
    return [file_handler, stream_handler]


def _install(logger: logging.Logger, handlers: list[logging.Handler]) -> None:
    for handler in list(logger.handlers):
        logger.removeHandler(handler)
    for handler in handlers:
        logger.addHandler(handler)


def configure_logging(logs_dir: str, console_level: int = logging.INFO) -> str:
    """Send every logger to a per-boot rotating file plus the console.

    Returns the path of the log file. Calling it again (e.g. one app per test)
    replaces the previous handlers instead of stacking them.
    """
    os.makedirs(logs_dir, exist_ok=True)
    stamp = datetime.now().strftime("%Y-%m-%d_%H-%M-%S")
    log_path = os.path.join(logs_dir, f"meetingvault_{stamp}.log")
    handlers = _build_handlers(log_path, console_level)

    root_logger = logging.getLogger()
    root_logger.setLevel(logging.DEBUG)
    _install(root_logger, handlers)

    # uvicorn configures its own handlers; route them through ours.
    for name in ("uvicorn", "uvicorn.error", "uvicorn.access"):
        uv_logger = logging.getLogger(name)
        uv_logger.setLevel(logging.INFO)
        _install(uv_logger, handlers)
        uv_logger.propagate = False

    for name in _QUIET_LOGGERS:
        logging.getLogger(name).setLevel(logging.WARNING)

    root_logger.info("Logging initialized: %s", log_path)
    return log_path

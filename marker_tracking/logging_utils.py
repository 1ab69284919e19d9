import logging
from contextlib import contextmanager
from typing import Iterator, Optional, Union

LOG_FORMAT = "%(asctime)s %(levelname)s [%(tracker)s] %(message)s"


class TrackerNameFilter(logging.Filter):
    """Stamp every record with the tracker it came from."""

    def __init__(self, tracker_name: str):
        super().__init__()
        self.tracker_name = tracker_name

    def filter(self, record: logging.LogRecord) -> bool:
        record.tracker = self.tracker_name
        return True


def _level(level: Union[int, str]) -> int:
    if isinstance(level, int):
        return level
    value = logging.getLevelName(str(level).upper())
    if not isinstance(value, int):
        raise ValueError(f"unknown log level: {level!r}")
    return value


def _handler(handler: logging.Handler, tracker_name: str) -> logging.Handler:
    handler.setFormatter(logging.Formatter(LOG_FORMAT))
    handler.addFilter(TrackerNameFilter(tracker_name))
    return handler


def setup_logger(tracker_name: str, level: Union[int, str] = logging.INFO) -> logging.Logger:
    """
    Logger for one tracker, ``marker_tracking.<tracker_name>``.

    Pipelines and sessions that share a tracker name share the logger and
    its single stream handler; the level is updated on every call.
    """
    logger = logging.getLogger(f"marker_tracking.{tracker_name}")
    logger.setLevel(_level(level))

    if not logger.handlers:
        logger.addHandler(_handler(logging.StreamHandler(), tracker_name))

    return logger


def add_file_handler(logger: logging.Logger, tracker_name: str, log_path: str) -> logging.Handler:
    handler = _handler(logging.FileHandler(log_path, encoding="utf-8"), tracker_name)
    logger.addHandler(handler)
    return handler


@contextmanager
def file_logging(logger: logging.Logger, tracker_name: str, log_path: Optional[str]) -> Iterator[Optional[logging.Handler]]:
    """Mirror ``logger`` into ``log_path`` for the duration of the block. No-op for None."""
    if log_path is None:
        yield None
        return
    handler = add_file_handler(logger, tracker_name, log_path)
    try:
        yield handler
    finally:
        logger.removeHandler(handler)
        handler.close()

import logging

import pytest

from marker_tracking.logging_utils import file_logging, setup_logger


def test_setup_logger_is_idempotent_per_tracker():
    a = setup_logger("log_test_a", "debug")
    again = setup_logger("log_test_a", logging.WARNING)

    assert a is again
    assert a.name == "marker_tracking.log_test_a"
    assert len(a.handlers) == 1
    assert a.level == logging.WARNING


def test_unknown_level_rejected():
    with pytest.raises(ValueError):
        setup_logger("log_test_b", "chatty")


def test_file_logging_writes_tracker_name_and_detaches(tmp_path):
    logger = setup_logger("log_test_c", "INFO")
    log_path = tmp_path / "session.log"

    with file_logging(logger, "log_test_c", str(log_path)) as handler:
        assert handler in logger.handlers
        logger.info("pipeline ready")

    assert handler not in logger.handlers
    line = log_path.read_text(encoding="utf-8").strip()
    assert "INFO [log_test_c] pipeline ready" in line


def test_file_logging_detaches_on_error(tmp_path):
    logger = setup_logger("log_test_d", "INFO")

    with pytest.raises(RuntimeError):
        with file_logging(logger, "log_test_d", str(tmp_path / "x.log")):
            raise RuntimeError("source failed")

    assert not any(isinstance(h, logging.FileHandler) for h in logger.handlers)


def test_file_logging_without_path_is_a_noop():
    logger = setup_logger("log_test_e")
    before = list(logger.handlers)

    with file_logging(logger, "log_test_e", None) as handler:
        assert handler is None

    assert logger.handlers == before

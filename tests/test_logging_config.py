import logging
from logging.handlers import RotatingFileHandler

from logging_config import get_logger, setup_logging


def test_setup_logging_string_levels():
    setup_logging("ERROR")
    root = logging.getLogger()
    assert root.getEffectiveLevel() == logging.ERROR
    assert len(root.handlers) >= 1

    setup_logging("debug")
    assert logging.getLogger().getEffectiveLevel() == logging.DEBUG


def test_setup_logging_numeric_and_unknown():
    setup_logging(10)
    assert logging.getLogger().getEffectiveLevel() == logging.DEBUG

    setup_logging("chatty")
    assert logging.getLogger().getEffectiveLevel() == logging.INFO


def test_setup_logging_adds_rotating_file_handler(tmp_path):
    root = logging.getLogger()
    before = list(root.handlers)
    log_file = tmp_path / "relay.log"
    try:
        setup_logging("INFO", log_file=str(log_file))
        get_logger("relay.test").info("hello file")
        file_handlers = [h for h in root.handlers if isinstance(h, RotatingFileHandler)]
        assert len(file_handlers) == 1
        file_handlers[0].flush()
        assert "hello file" in log_file.read_text(encoding="utf-8")
    finally:
        for handler in root.handlers[:]:
            if handler not in before:
                root.removeHandler(handler)
                handler.close()

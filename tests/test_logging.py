import logging

import pytest
from rich.logging import RichHandler

from sshmux.core import logging as sshmux_logging
from sshmux.core.logging import get_logger, setup_logging


@pytest.fixture(autouse=True)
def restore_root():
    root = logging.getLogger()
    level = root.level
    yield
    for handler in list(sshmux_logging._installed):
        root.removeHandler(handler)
        handler.close()
    sshmux_logging._installed.clear()
    root.setLevel(level)
    for name in sshmux_logging._NOISY_LOGGERS:
        logging.getLogger(name).setLevel(logging.NOTSET)


def _rich_handlers():
    return [h for h in logging.getLogger().handlers if isinstance(h, RichHandler)]


class TestSetupLogging:
    def test_repeated_setup_keeps_one_handler(self):
        setup_logging("INFO")
        setup_logging("DEBUG")
        assert len(_rich_handlers()) == 1
        assert logging.getLogger().level == logging.DEBUG

    def test_foreign_handlers_survive(self):
        foreign = logging.NullHandler()
        root = logging.getLogger()
        root.addHandler(foreign)
        try:
            setup_logging("INFO")
            setup_logging("WARNING")
            assert foreign in root.handlers
        finally:
            root.removeHandler(foreign)

    def test_unknown_level_falls_back_to_info(self):
        setup_logging("chatty")
        assert logging.getLogger().level == logging.INFO

    def test_file_handler_writes_records(self, tmp_path):
        log_file = tmp_path / "logs" / "sshmux.log"
        setup_logging("INFO", log_file=log_file)
        get_logger("sshmux.tests").info("connected to example.org")
        for handler in sshmux_logging._installed:
            handler.flush()
        content = log_file.read_text(encoding="utf-8")
        assert "connected to example.org" in content
        assert "[MainThread] sshmux.tests" in content

    def test_paramiko_is_quieted(self):
        setup_logging("DEBUG")
        assert logging.getLogger("paramiko.transport").level == logging.WARNING

    def test_paramiko_left_alone_on_request(self):
        setup_logging("DEBUG", quiet_paramiko=False)
        assert logging.getLogger("paramiko").level == logging.NOTSET


class TestPackageLogger:
    def test_package_has_null_handler(self):
        handlers = logging.getLogger(sshmux_logging.PACKAGE_LOGGER).handlers
        assert any(isinstance(h, logging.NullHandler) for h in handlers)

# test_logging_config.py - root logger setup tests

import logging

import pytest

from vdiagram.logging_config import configure_logging


@pytest.fixture
def restore_root_logger():
    """Put back pytest's handlers after configure_logging() replaced them"""
    root = logging.getLogger()
    handlers, level = list(root.handlers), root.level
    yield root
    for handler in root.handlers:
        if handler not in handlers:
            handler.close()
    root.handlers[:] = handlers
    root.setLevel(level)


class TestConfigureLogging:

    def test_console_only(self, restore_root_logger):
        assert configure_logging("debug") is None
        root = restore_root_logger
        assert root.level == logging.DEBUG
        assert len(root.handlers) == 1
        assert logging.getLogger("pyVmomi").level == logging.INFO

    def test_unknown_level_falls_back_to_info(self, restore_root_logger):
        configure_logging("LOUD")
        assert restore_root_logger.level == logging.INFO

    def test_log_file(self, restore_root_logger, tmp_path):
        log_file = configure_logging("INFO", tmp_path / "logs")
        assert log_file.parent == tmp_path / "logs"
        assert log_file.name.startswith("vdiagram-log_")
        logging.getLogger("vdiagram.test").info("collected 3 VMs")
        for handler in restore_root_logger.handlers:
            handler.flush()
        assert "collected 3 VMs" in log_file.read_text(encoding="utf-8")

    def test_unwritable_log_dir(self, restore_root_logger, tmp_path):
        blocker = tmp_path / "file"
        blocker.write_text("x")
        assert configure_logging("INFO", blocker / "logs") is None
        assert len(restore_root_logger.handlers) == 1

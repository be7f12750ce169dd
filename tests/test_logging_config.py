import logging
import pytest

from proxylink.shared.logging_config import setup_logging

@pytest.fixture
def restore_root_logger():
    root = logging.getLogger()
    handlers = root.handlers[:]
    level = root.level
    yield root
    for handler in root.handlers[:]:
        root.removeHandler(handler)
        handler.close()
    for handler in handlers:
        root.addHandler(handler)
    root.setLevel(level)

def test_console_only(restore_root_logger):
    setup_logging("DEBUG")
    assert restore_root_logger.level == logging.DEBUG
    assert len(restore_root_logger.handlers) == 1

def test_with_log_dir(restore_root_logger, tmp_path):
    log_dir = tmp_path / "logs"
    setup_logging("info", log_dir)

    logging.getLogger("Connection").error("tunnel worker failed to start")
    for handler in restore_root_logger.handlers:
        handler.flush()

    assert len(restore_root_logger.handlers) == 3
    files = {p.name.split("_")[0]: p for p in log_dir.iterdir()}
    assert "tunnel worker failed to start" in files["error"].read_text(encoding="utf-8")
    assert "tunnel worker failed to start" in files["proxylink"].read_text(encoding="utf-8")

import logging
import sys
from pathlib import Path

import pytest

ROOT = Path(__file__).resolve().parents[1]
if str(ROOT) not in sys.path:
    sys.path.insert(0, str(ROOT))

from loop_export.logging_setup import LOGGER_NAME, configure_logging


@pytest.fixture(autouse=True)
def restore_root_logger():
    root = logging.getLogger()
    handlers, level = root.handlers[:], root.level
    yield
    for handler in root.handlers:
        if handler not in handlers:
            handler.close()
    root.handlers[:] = handlers
    root.setLevel(level)


def test_file_logging_writes_formatted_lines(tmp_path):
    log_path = tmp_path / "logs" / "export.log"
    logger = configure_logging(log_file=log_path, include_stream=False)
    logger.info("capture started")
    for handler in logging.getLogger().handlers:
        handler.flush()

    assert logger.name == LOGGER_NAME
    content = log_path.read_text(encoding="utf-8")
    assert " - INFO - capture started" in content


def test_verbose_enables_debug():
    logger = configure_logging(verbose=True, include_stream=False)
    assert logger.isEnabledFor(logging.DEBUG)
    logger = configure_logging(verbose=False, include_stream=False)
    assert not logger.isEnabledFor(logging.DEBUG)


def test_unwritable_log_path_falls_back(tmp_path):
    blocker = tmp_path / "not-a-dir"
    blocker.write_text("file", encoding="utf-8")

    logger = configure_logging(log_file=blocker / "export.log", include_stream=False)
    handlers = [h for h in logging.getLogger().handlers if isinstance(h, logging.FileHandler)]

    assert len(handlers) == 1
    assert Path(handlers[0].baseFilename).name == "export.log"
    assert Path(handlers[0].baseFilename).parent != blocker
    assert logger.name == LOGGER_NAME

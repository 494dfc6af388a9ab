import logging

import pytest

from intent_warden.logging_utils import PACKAGE_LOGGER, configure_logging, parse_level


@pytest.fixture
def package_logger(monkeypatch):
    logger = logging.getLogger(PACKAGE_LOGGER)
    monkeypatch.setattr(logger, "_intent_warden_configured", False, raising=False)
    level = logger.level
    before = list(logger.handlers)
    yield logger
    for h in logger.handlers[:]:
        if h not in before:
            logger.removeHandler(h)
            h.close()
    logger.setLevel(level)


def test_configure_logging_is_idempotent(tmp_path, package_logger):
    target = tmp_path / "logs" / "warden.log"
    before = list(package_logger.handlers)
    assert configure_logging(str(target), also_console=False) == str(target)
    added = [h for h in package_logger.handlers if h not in before]
    assert len(added) == 1

    assert configure_logging(str(tmp_path / "other.log"), level=logging.DEBUG) == str(target)
    assert [h for h in package_logger.handlers if h not in before] == added
    assert package_logger.level == logging.DEBUG

    logging.getLogger("intent_warden.test").warning("denied write")
    for h in added:
        h.flush()
    assert "WARNING [MainThread] intent_warden.test: denied write" in target.read_text(encoding="utf-8")


def test_root_logger_is_left_alone(tmp_path, package_logger):
    root = logging.getLogger()
    handlers, level = list(root.handlers), root.level
    configure_logging(str(tmp_path / "warden.log"), level=logging.DEBUG, also_console=False)
    assert root.handlers == handlers
    assert root.level == level


@pytest.mark.parametrize(
    "value, expected",
    [("debug", logging.DEBUG), ("WARNING", logging.WARNING), (30, 30), ("10", 10), ("chatty", logging.INFO), (None, logging.INFO)],
)
def test_parse_level(value, expected):
    assert parse_level(value) == expected

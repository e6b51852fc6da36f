import logging

import pytest

from receipt_intelligence.logging_setup import _parse_level, get_logger


@pytest.mark.parametrize(
    "raw, expected",
    [(logging.DEBUG, logging.DEBUG), ("warning", logging.WARNING), (" 15 ", 15), ("bogus", logging.INFO)],
)
def test_parse_level(raw, expected):
    assert _parse_level(raw) == expected


def test_level_falls_back_to_environment(monkeypatch):
    monkeypatch.setenv("RECEIPT_INTELLIGENCE_LOG_LEVEL", "ERROR")
    assert _parse_level(None) == logging.ERROR
    assert _parse_level("nonsense") == logging.ERROR


def test_module_loggers_live_under_the_package_root():
    logger = get_logger("receipt_intelligence.pipeline")
    assert logger.name == "receipt_intelligence.pipeline"
    assert logging.getLogger("receipt_intelligence").handlers

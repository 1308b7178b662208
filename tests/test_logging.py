from __future__ import annotations

import logging

import pytest

from curve_sculptor.logging import LEVEL_ENV, get_logger, level_from_env


def test_level_defaults_to_info(monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.delenv(LEVEL_ENV, raising=False)
    assert level_from_env() == logging.INFO


@pytest.mark.parametrize(
    ("value", "expected"),
    [("debug", logging.DEBUG), (" WARNING ", logging.WARNING), ("chatty", logging.INFO)],
)
def test_level_from_environment(monkeypatch: pytest.MonkeyPatch, value: str, expected: int) -> None:
    monkeypatch.setenv(LEVEL_ENV, value)
    assert level_from_env() == expected


def test_get_logger_applies_level_without_handlers(monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.setenv(LEVEL_ENV, "ERROR")
    logger = get_logger("curve_sculptor.tests.logging")
    assert logger.level == logging.ERROR
    assert logger.handlers == []

"""Tests for the package-level logger configuration."""

from __future__ import annotations

import logging

import pytest

import pos_engine


def test_package_logger_has_console_handler():
    assert pos_engine.log.name == "pos_engine"
    assert any(
        isinstance(handler, logging.StreamHandler) and not isinstance(handler, logging.FileHandler)
        for handler in pos_engine.log.handlers
    )


@pytest.mark.parametrize(
    "raw, expected",
    [
        (None, logging.INFO),
        ("debug", logging.DEBUG),
        (" Warning ", logging.WARNING),
        ("chatty", logging.INFO),
    ],
)
def test_resolve_level_accepts_names_and_falls_back_to_info(raw, expected):
    assert pos_engine._resolve_level(raw) == expected


def test_configure_logging_is_idempotent():
    handlers = list(pos_engine.log.handlers)

    assert pos_engine._configure_logging() is pos_engine.log
    assert pos_engine.log.handlers == handlers

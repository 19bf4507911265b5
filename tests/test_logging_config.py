from __future__ import annotations

import logging

from killclip.config import LoggingSettings
from killclip.logging_config import DEFAULT_LOG_FORMAT, configure_logging


def test_configure_logging_uses_settings_level_and_default_format(monkeypatch) -> None:
    captured: dict[str, object] = {}
    monkeypatch.setattr(logging, "basicConfig", lambda **kwargs: captured.update(kwargs))

    configure_logging(LoggingSettings(level="warning"))

    assert captured == {"level": logging.WARNING, "format": DEFAULT_LOG_FORMAT, "force": True}


def test_verbose_forces_debug_and_custom_format_wins(monkeypatch) -> None:
    captured: dict[str, object] = {}
    monkeypatch.setattr(logging, "basicConfig", lambda **kwargs: captured.update(kwargs))

    configure_logging(LoggingSettings(level="ERROR", format="%(message)s"), verbose=True)

    assert captured["level"] == logging.DEBUG
    assert captured["format"] == "%(message)s"


def test_unknown_level_falls_back_to_info(monkeypatch) -> None:
    captured: dict[str, object] = {}
    monkeypatch.setattr(logging, "basicConfig", lambda **kwargs: captured.update(kwargs))

    configure_logging(LoggingSettings(level="chatty"))

    assert captured["level"] == logging.INFO

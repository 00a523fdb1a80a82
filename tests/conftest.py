"""Shared pytest fixtures."""

import logging

import pytest

import promstash.config
from promstash.config import reset_settings


@pytest.fixture(autouse=True)
def isolated_settings(tmp_path, monkeypatch):
    """Keep user config files and PROMSTASH_* variables out of tests."""
    monkeypatch.setattr(promstash.config, "DEFAULT_CONFIG_PATH", tmp_path / "absent.yaml")
    monkeypatch.chdir(tmp_path)
    for name in list(promstash.config.Settings.model_fields):
        monkeypatch.delenv(f"PROMSTASH_{name.upper()}", raising=False)
    reset_settings()

    yield

    reset_settings()
    # CLI runs point logging at streams that are closed once the run ends
    logging.getLogger().handlers.clear()


@pytest.fixture
def exposition_text():
    """Exposition payload with one counter and two series."""
    return (
        "# HELP http_requests_total Total HTTP requests.\n"
        "# TYPE http_requests_total counter\n"
        'http_requests_total{method="GET"} 10\n'
        'http_requests_total{method="POST"} 3\n'
    )

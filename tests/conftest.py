"""
Test-wide fixtures and configuration.

Forces DOCCONF_ENV=testing so every test sees the same deterministic settings
(scoring disabled, OpenAI provider with a dummy key, short timeouts).
"""
import os

import pytest

from docconfidence.core import unified_config


def pytest_configure(config: pytest.Config) -> None:  # noqa: D401
    os.environ["DOCCONF_ENV"] = "testing"
    unified_config.reload_config()


@pytest.fixture
def test_config():
    return unified_config.get_config()

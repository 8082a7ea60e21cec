"""Shared fixtures."""

import pytest

from sqlrunner.config import Config


@pytest.fixture
def config():
    """Defaults that do not depend on the environment."""
    return Config()

"""
Root conftest for tests.

Settings are cached process-wide by get_settings(); clear the cache around
every test so MULTIFACTOR_* environment overrides in one test cannot leak
into another.
"""

import pytest

from config.settings import get_settings


@pytest.fixture(autouse=True)
def _reset_settings_cache():
    get_settings.cache_clear()
    yield
    get_settings.cache_clear()

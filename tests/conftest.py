"""
Pytest configuration and shared fixtures for eregs tests.
"""

from pathlib import Path

import pytest

from eregs.services import cache as cache_module
from eregs.settings import Settings
from tests.helpers import BASE_URL, Clock


@pytest.fixture
def cache_dir(tmp_path: Path) -> Path:
    """Directory for per-namespace cache files."""
    return tmp_path / "cache"


@pytest.fixture
def settings(cache_dir: Path) -> Settings:
    """Settings with fast retries and a temporary cache directory."""
    return Settings.model_validate(
        {
            "EREGULATIONS_API_URL": BASE_URL,
            "EREGULATIONS_CACHE_DIR": str(cache_dir),
            "MAX_RETRIES": 1,
            "RETRY_DELAY": 0,
            "REQUEST_TIMEOUT": 5,
        }
    )


@pytest.fixture
def clock(monkeypatch: pytest.MonkeyPatch) -> Clock:
    """Freeze cache time; advance it explicitly."""
    fake = Clock()
    monkeypatch.setattr(cache_module, "now_ms", fake)
    return fake

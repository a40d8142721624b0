"""
Pytest configuration and fixtures for casdisk tests.
"""

from __future__ import annotations

import os
from pathlib import Path
from typing import Callable, Generator
from unittest.mock import patch

import pytest

from casdisk.config import Settings, clear_settings_cache, get_settings
from casdisk.content.write import staging_dir


@pytest.fixture
def temp_dir(tmp_path: Path) -> Path:
    """Provide a temporary directory for test outputs."""
    return tmp_path


@pytest.fixture
def cache_dir(temp_dir: Path) -> Path:
    """Provide a cache root that does not exist yet."""
    return temp_dir / "cache"


@pytest.fixture
def mock_env_vars(temp_dir: Path) -> Generator[dict[str, str], None, None]:
    """Provide environment variables for settings tests."""
    env_vars = {
        "CACHE_DIR": str(temp_dir / "env-cache"),
        "LOG_LEVEL": "DEBUG",
        "FSYNC": "true",
        "CHUNK_SIZE": "4096",
    }

    with patch.dict(os.environ, env_vars, clear=False):
        clear_settings_cache()
        yield env_vars


@pytest.fixture
def mock_settings(mock_env_vars: dict[str, str]) -> Generator[Settings, None, None]:
    """Provide a Settings instance loaded from the mock environment."""
    settings = get_settings()
    settings.ensure_directories()
    yield settings
    clear_settings_cache()


@pytest.fixture(autouse=True)
def reset_settings_cache() -> Generator[None, None, None]:
    """Automatically reset settings cache before and after each test."""
    clear_settings_cache()
    yield
    clear_settings_cache()


def _staged_files(cache: Path) -> list[Path]:
    tmp = staging_dir(cache)
    if not tmp.exists():
        return []
    return sorted(tmp.iterdir())


def _content_files(cache: Path) -> list[Path]:
    root = cache / "content-v2"
    if not root.exists():
        return []
    return sorted(p for p in root.rglob("*") if p.is_file())


@pytest.fixture
def staged_files() -> Callable[[Path], list[Path]]:
    """Provide a lister for leftover staging files under a cache."""
    return _staged_files


@pytest.fixture
def content_files() -> Callable[[Path], list[Path]]:
    """Provide a lister for every published blob under a cache."""
    return _content_files

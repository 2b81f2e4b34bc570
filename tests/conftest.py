"""Shared pytest fixtures for omnifs tests."""

import io
import os
import pathlib
import re

import pytest
from PIL import Image

from omnifs.storage import LocalOptions, LocalStorage, StorageFactory
from omnifs.utils.config import config as config_module

# Process-wide keys that would leak the developer's own setup into tests.
STORAGE_ENV_PATTERN = re.compile(
    r"^(ENV|STORAGE_.*|LOCAL_.*|DATA_PUBLIC_URL|S3_.*|ALI_OSS_.*|HW_OBS_.*|TX_COS_.*|MINIO_.*|CONFIG_ENCRYPTION_KEY|LOG_.*)$"
)


@pytest.fixture(autouse=True)
def isolated_storage_env(monkeypatch):
    """Start every test without storage env vars, global config or cached storage."""
    for key in list(os.environ):
        if STORAGE_ENV_PATTERN.match(key):
            monkeypatch.delenv(key, raising=False)

    monkeypatch.setattr(config_module, "_global_config", None)
    StorageFactory.reset()
    yield
    StorageFactory.reset()


@pytest.fixture
def storage_root(tmp_path: pathlib.Path) -> pathlib.Path:
    """Create a temporary directory used as the local storage root."""
    root = tmp_path / "storage"
    root.mkdir()
    return root


@pytest.fixture
def local_storage(storage_root: pathlib.Path) -> LocalStorage:
    """Local storage rooted at storage_root, served from http://files.test/files."""
    return LocalStorage(LocalOptions(base_path=str(storage_root), base_url="http://files.test/files"))


def _png_bytes(size: tuple[int, int], color, mode: str = "RGB") -> bytes:
    output = io.BytesIO()
    Image.new(mode, size, color=color).save(output, "PNG")
    return output.getvalue()


@pytest.fixture
def sample_png() -> bytes:
    """A 200x100 red RGB PNG image."""
    return _png_bytes((200, 100), (255, 0, 0))


@pytest.fixture
def sample_rgba_png() -> bytes:
    """A 100x100 semi-transparent blue RGBA PNG image."""
    return _png_bytes((100, 100), (0, 0, 255, 128), mode="RGBA")


@pytest.fixture
def sample_jpeg() -> bytes:
    """A 300x300 green JPEG image."""
    output = io.BytesIO()
    Image.new("RGB", (300, 300), color=(0, 255, 0)).save(output, "JPEG")
    return output.getvalue()

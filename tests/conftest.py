from pathlib import Path

import pytest
from PIL import Image

import heic_converter


@pytest.fixture(autouse=True)
def reset_logger():
    yield
    heic_converter.logger.handlers.clear()


@pytest.fixture
def make_heic():
    """Write a solid-colour HEIC file and return its path."""

    def _make(path: Path, size=(64, 48), color=(200, 40, 40)) -> Path:
        path.parent.mkdir(parents=True, exist_ok=True)
        Image.new("RGB", size, color).save(path, format="HEIF", quality=90)
        return path

    return _make

"""
Pytest configuration and shared fixtures for test suite.
"""

import os
import shutil
import tempfile
import threading
from pathlib import Path

import pytest
from PIL import Image


def _vertical_gradient() -> Image.Image:
    """256x256 image, dark at the top and bright at the bottom."""
    return Image.linear_gradient('L').convert('RGB')


def _horizontal_gradient() -> Image.Image:
    """256x256 image, dark on the left and bright on the right."""
    return Image.linear_gradient('L').rotate(90).convert('RGB')


def save_image(image: Image.Image, path: Path) -> str:
    path.parent.mkdir(parents=True, exist_ok=True)
    image.save(path, 'PNG')
    return str(path)


@pytest.fixture
def temp_dir():
    """Create a temporary directory for tests (symlinks resolved)."""
    tmpdir = tempfile.mkdtemp()
    yield Path(tmpdir).resolve()
    shutil.rmtree(tmpdir, ignore_errors=True)


@pytest.fixture
def gradient_image():
    return _vertical_gradient()


@pytest.fixture
def photo_tree(temp_dir):
    """
    Create a small photo library.

    Layout:
        library/
            alpha/sunset.png      vertical gradient
            beta/sunset_copy.png  same picture, different folder
            beta/horizon.png      horizontal gradient
            beta/notes.txt        not an image

    Returns:
        dict with the root and every image path
    """
    root = temp_dir / "library"
    paths = {
        'root': str(root),
        'alpha': str(root / "alpha"),
        'beta': str(root / "beta"),
        'sunset': save_image(_vertical_gradient(), root / "alpha" / "sunset.png"),
        'sunset_copy': save_image(_vertical_gradient(), root / "beta" / "sunset_copy.png"),
        'horizon': save_image(_horizontal_gradient(), root / "beta" / "horizon.png"),
    }
    (root / "beta" / "notes.txt").write_text("not an image")
    return paths


class FakeExtractor:
    """
    Feature extractor backed by a table of scalar "vectors".

    ``values`` maps file names to floats; unknown files fail extraction.
    The distance is the absolute difference, so similarity is
    ``1 / (1 + |a - b|)``.
    """

    thread_safe = True

    def __init__(self, values: dict, on_extract=None):
        self.values = values
        self.on_extract = on_extract
        self.calls = []
        self._lock = threading.Lock()

    def extract(self, path):
        with self._lock:
            self.calls.append(path)
        if self.on_extract is not None:
            self.on_extract(path)
        return self.values.get(os.path.basename(path))

    def distance(self, a, b):
        return abs(a - b)


@pytest.fixture
def fake_extractor_factory():
    """Build FakeExtractor instances from a name -> value table."""
    return FakeExtractor

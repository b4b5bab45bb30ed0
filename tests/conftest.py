"""Shared fixtures: in-memory test images and a sandboxed output store."""

import io

import numpy as np
import pytest
from PIL import Image  # type: ignore


def image_bytes(img: Image.Image, fmt: str) -> bytes:
    buf = io.BytesIO()
    img.save(buf, format=fmt)
    return buf.getvalue()


@pytest.fixture
def encode_image():
    """Return a helper that encodes a Pillow image to bytes in a given format."""
    return image_bytes


@pytest.fixture
def red_png() -> bytes:
    """A 2x2 opaque red PNG."""
    return image_bytes(Image.new("RGBA", (2, 2), color=(255, 0, 0, 255)), "PNG")


@pytest.fixture
def noisy_rgba() -> np.ndarray:
    """A 7x5 RGBA array with random pixels, alpha included."""
    rng = np.random.default_rng(1234)
    return rng.integers(0, 256, size=(5, 7, 4), dtype=np.uint8)


@pytest.fixture
def store(tmp_path):
    from imaging.storage import OutputStore

    return OutputStore(tmp_path / "outputs")

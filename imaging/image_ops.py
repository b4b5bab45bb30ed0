"""Pixel transforms.

A transform is any callable that takes a ``PixelBuffer`` and returns a new
one of the same size. The pipeline applies exactly one of them between
decoding and encoding, so adding an effect means adding a function here.
"""

from __future__ import annotations

from typing import Callable

import numpy as np

from imaging.pixels import PixelBuffer

Transform = Callable[[PixelBuffer], PixelBuffer]


def grayscale(buffer: PixelBuffer) -> PixelBuffer:
    """Replace R, G and B of every pixel with ``floor((R + G + B) / 3)``.

    The average is computed from the original channel values in a wider
    integer type. Alpha is left untouched and the input buffer is not
    modified.
    """
    rgb = buffer.data[..., :3].astype(np.uint16)
    avg = (rgb.sum(axis=2) // 3).astype(np.uint8)
    out = buffer.data.copy()
    out[..., :3] = avg[..., np.newaxis]
    return PixelBuffer(width=buffer.width, height=buffer.height, data=out)

"""Pixel buffers and the codec wrappers around Pillow.

Decoding turns an encoded JPEG, PNG or GIF into an RGBA ``PixelBuffer``
backed by a numpy array. Encoding always produces PNG, the canonical
output format, so ``decode(encode(buffer))`` reproduces the buffer
exactly.
"""

from __future__ import annotations

import os
from dataclasses import dataclass
from io import BytesIO
from typing import BinaryIO, Dict, Optional, Union

import numpy as np
from PIL import Image, UnidentifiedImageError  # type: ignore[import]

from imaging.errors import DecodeError, EncodeError, UnsupportedFormat

ImageSource = Union[bytes, bytearray, BinaryIO, str, "os.PathLike[str]"]

# Extension / MIME subtype -> Pillow format name.
ACCEPTED_FORMATS: Dict[str, str] = {
    "jpg": "JPEG",
    "jpeg": "JPEG",
    "png": "PNG",
    "gif": "GIF",
}
RASTER_EXTENSIONS = tuple(f".{ext}" for ext in ACCEPTED_FORMATS)

# Formats Pillow may report for data that is valid for the declared format.
_FORMAT_ALIASES: Dict[str, str] = {"MPO": "JPEG"}

OUTPUT_FORMAT = "PNG"
OUTPUT_EXTENSION = ".png"
OUTPUT_MEDIA_TYPE = "image/png"


@dataclass(eq=False)
class PixelBuffer:
    """Decoded RGBA raster, 8 bits per channel.

    ``data`` has shape ``(height, width, 4)`` and dtype ``uint8``.
    """

    width: int
    height: int
    data: np.ndarray

    def __post_init__(self) -> None:
        if self.width <= 0 or self.height <= 0:
            raise ValueError(f"invalid dimensions {self.width}x{self.height}")
        if self.data.dtype != np.uint8 or self.data.shape != (self.height, self.width, 4):
            raise ValueError(
                f"pixel data of shape {self.data.shape} ({self.data.dtype}) "
                f"does not match {self.width}x{self.height} RGBA"
            )

    @classmethod
    def from_bytes(cls, width: int, height: int, raw: bytes) -> "PixelBuffer":
        """Build a buffer from a flat R,G,B,A byte sequence."""
        if len(raw) != width * height * 4:
            raise ValueError(f"expected {width * height * 4} bytes, got {len(raw)}")
        data = np.frombuffer(raw, dtype=np.uint8).reshape(height, width, 4).copy()
        return cls(width, height, data)

    def tobytes(self) -> bytes:
        return self.data.tobytes()

    def __eq__(self, other: object) -> bool:
        if not isinstance(other, PixelBuffer):
            return NotImplemented
        return (
            self.width == other.width
            and self.height == other.height
            and np.array_equal(self.data, other.data)
        )


@dataclass(frozen=True)
class EncodedImage:
    """Encoded image bytes in the canonical output format."""

    data: bytes
    format: str = OUTPUT_FORMAT

    @property
    def extension(self) -> str:
        return OUTPUT_EXTENSION

    @property
    def media_type(self) -> str:
        return OUTPUT_MEDIA_TYPE


def _normalise(declared: str) -> str:
    """Reduce a MIME type, extension or filename to a bare lowercase token."""
    value = declared.split(";", 1)[0].strip().lower()
    if "/" in value:
        # MIME type such as image/png
        kind, _, subtype = value.partition("/")
        return subtype if kind == "image" else ""
    _, ext = os.path.splitext(value)
    return (ext or value).lstrip(".")


def format_for(declared: Optional[str]) -> str:
    """Return the Pillow format name for a declared extension or MIME type.

    Raises:
        UnsupportedFormat: If the value is missing or not an accepted format.
    """
    token = _normalise(declared) if declared else ""
    fmt = ACCEPTED_FORMATS.get(token)
    if fmt is None:
        raise UnsupportedFormat(
            f"Unsupported image type {declared!r}; only JPEG, PNG and GIF files are allowed"
        )
    return fmt


def resolve_format(original_name: Optional[str], declared_type: Optional[str]) -> str:
    """Cross-check the filename extension against the declared content type.

    Each value that is present must name an accepted format and both must
    name the same one. At least one of them is required.
    """
    ext = os.path.splitext(original_name or "")[1]
    if not ext and not declared_type:
        raise UnsupportedFormat("No file extension or content type to identify the image")
    from_ext = format_for(ext) if ext else None
    from_type = format_for(declared_type) if declared_type else None
    if from_ext and from_type and from_ext != from_type:
        raise UnsupportedFormat(
            f"File extension {ext!r} does not match content type {declared_type!r}"
        )
    return from_ext or from_type  # type: ignore[return-value]


def _read_source(source: ImageSource) -> bytes:
    if isinstance(source, (bytes, bytearray)):
        return bytes(source)
    if isinstance(source, (str, os.PathLike)):
        with open(source, "rb") as f:
            return f.read()
    return source.read()


def decode(source: ImageSource, declared: str) -> PixelBuffer:
    """Decode an encoded image into an RGBA ``PixelBuffer``.

    Args:
        source: Raw bytes, a binary file object or a filesystem path.
        declared: Declared MIME type, extension or filename of the data.

    Returns:
        The decoded buffer. Animated GIFs yield their first frame.

    Raises:
        UnsupportedFormat: If ``declared`` is not an accepted format. The
            source is not read in that case.
        DecodeError: If the data is not a valid image of the declared format.
    """
    expected = format_for(declared)
    try:
        raw = _read_source(source)
    except OSError as exc:
        raise DecodeError(f"Could not read image data: {exc.strerror or exc}") from exc
    if not raw:
        raise DecodeError("Image data is empty")

    try:
        with Image.open(BytesIO(raw)) as img:
            detected = _FORMAT_ALIASES.get(img.format or "", img.format)
            if detected != expected:
                raise DecodeError(f"Image data is {detected or 'unknown'}, not {expected}")
            img.load()
            rgba = img.convert("RGBA")
    except DecodeError:
        raise
    except (UnidentifiedImageError, Image.DecompressionBombError) as exc:
        raise DecodeError(f"Invalid {expected} image: {exc}") from exc
    except (OSError, SyntaxError, ValueError, EOFError) as exc:
        # Pillow reports truncated and corrupt streams through these.
        raise DecodeError(f"Corrupt {expected} image: {exc}") from exc

    width, height = rgba.size
    if width == 0 or height == 0:
        raise DecodeError("Image has zero width or height")
    data = np.asarray(rgba, dtype=np.uint8).copy()
    return PixelBuffer(width=width, height=height, data=data)


def encode(buffer: PixelBuffer) -> EncodedImage:
    """Encode a buffer as an RGBA PNG.

    Raises:
        EncodeError: If Pillow fails to produce the PNG.
    """
    out = BytesIO()
    try:
        img = Image.fromarray(np.ascontiguousarray(buffer.data))
        img.save(out, format=OUTPUT_FORMAT)
    except (OSError, ValueError, TypeError) as exc:
        raise EncodeError(f"Failed to encode {OUTPUT_FORMAT}: {exc}") from exc
    return EncodedImage(data=out.getvalue())

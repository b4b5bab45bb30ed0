"""Decode, transform, encode and store a single uploaded image."""

from __future__ import annotations

import logging
import os
from typing import Optional

from imaging.errors import DecodeError, ProcessingFailure
from imaging.image_ops import Transform, grayscale
from imaging.pixels import ImageSource, decode, encode, resolve_format
from imaging.storage import OutputStore, StoredOutput

logger = logging.getLogger(__name__)


class Pipeline:
    """Runs one transform over uploaded images and stores the results.

    The pipeline owns no state besides a reference to its store, so one
    instance can serve concurrent requests.
    """

    def __init__(self, store: OutputStore, transform: Transform = grayscale) -> None:
        self.store = store
        self.transform = transform

    def process(
        self,
        source: ImageSource,
        original_name: str,
        declared_type: Optional[str] = None,
    ) -> StoredOutput:
        """Process one image and persist the result.

        Args:
            source: Encoded image bytes, a binary file object or a path to a
                staged upload. The source is read once and never deleted.
            original_name: Filename supplied by the client.
            declared_type: MIME type supplied by the client, if any.

        Returns:
            The stored output descriptor.

        Raises:
            UnsupportedFormat: If the name or type is not an accepted image
                format. Nothing is read in that case.
            DecodeError: If the data is not a valid image of that format.
            EncodeError: If the result cannot be encoded.
            StoreUnavailable: If the result cannot be written.
        """
        try:
            fmt = resolve_format(original_name, declared_type)
            if isinstance(source, (str, os.PathLike)):
                source = self._read_staged(source)
            logger.debug("Decoding %s as %s", original_name, fmt)
            buffer = decode(source, fmt)
            name = getattr(self.transform, "__name__", "transform")
            logger.debug("Applying %s to %dx%d image", name, buffer.width, buffer.height)
            result = self.transform(buffer)
            encoded = encode(result)
            stored = self.store.save(encoded, original_name)
        except ProcessingFailure as exc:
            logger.warning("Processing %s failed (%s): %s", original_name, exc.kind, exc)
            raise
        logger.info("Processed %s -> %s", original_name, stored.filename)
        return stored

    @staticmethod
    def _read_staged(path: "os.PathLike[str] | str") -> bytes:
        try:
            with open(path, "rb") as f:
                return f.read()
        except OSError as exc:
            raise DecodeError(f"Could not read uploaded file: {exc.strerror}") from exc

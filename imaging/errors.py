"""Failure taxonomy for the image processing core.

Every stage of the pipeline raises one of the subclasses below. None of
them are retried; the HTTP layer in ``main.py`` decides how each kind is
reported to the client.
"""

from __future__ import annotations


class ProcessingFailure(Exception):
    """Base class for all failures raised by the imaging package."""

    kind: str = "ProcessingFailure"


class UnsupportedFormat(ProcessingFailure):
    """The declared extension or MIME type is not an accepted raster format."""

    kind = "UnsupportedFormat"


class DecodeError(ProcessingFailure):
    """The input bytes are not a valid image of the declared format."""

    kind = "DecodeError"


class EncodeError(ProcessingFailure):
    kind = "EncodeError"


class StoreUnavailable(ProcessingFailure):
    """The output directory cannot be read or written."""

    kind = "StoreUnavailable"


class NotFound(ProcessingFailure):
    """No stored output with the requested name exists under the store root."""

    kind = "NotFound"

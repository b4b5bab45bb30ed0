"""Pydantic response schemas for the HTTP endpoints in ``main.py``.

Field names follow the JSON the web client already consumes
(``downloadUrl`` rather than ``download_url``).
"""

from __future__ import annotations

from datetime import datetime
from typing import List

from pydantic import BaseModel


class HealthResponse(BaseModel):
    status: str
    message: str
    timestamp: datetime


class ProcessImageResponse(BaseModel):
    """Response returned after an upload was processed and stored.

    Attributes:
        success: Always ``True``; failures use ``ErrorResponse``.
        message: Human readable status.
        filename: Name of the stored output.
        downloadUrl: URL serving the stored output inline.
        created: Creation time of the stored output.
    """

    success: bool = True
    message: str
    filename: str
    downloadUrl: str
    created: datetime


class ImageEntry(BaseModel):
    filename: str
    url: str
    created: datetime


class ImageListResponse(BaseModel):
    success: bool = True
    images: List[ImageEntry]


class ErrorResponse(BaseModel):
    success: bool = False
    error: str

"""Local filesystem store for processed images.

Processed images live in a single flat directory. Every file is
self-contained: the catalog is rebuilt from filenames and file
modification times, with no companion metadata files.

Names are derived from the upload time in milliseconds, a random token
and a sanitized stem of the original filename, e.g.
``processed-1718000000000-3f9a1c2e-holiday.png``. Writes go to a hidden
temporary file first and are published with ``os.link``, which refuses
to replace an existing entry. A collision therefore never clobbers a
file; the name is re-derived with a numeric suffix and published again.
"""

from __future__ import annotations

import logging
import mimetypes
import os
import re
import tempfile
import time
import uuid
from dataclasses import dataclass
from datetime import datetime, timezone
from pathlib import Path
from typing import List, Union

from imaging.errors import NotFound, StoreUnavailable
from imaging.pixels import OUTPUT_EXTENSION, RASTER_EXTENSIONS, EncodedImage

logger = logging.getLogger(__name__)

NAME_PREFIX = "processed"
MAX_STEM_LENGTH = 64
MAX_NAME_ATTEMPTS = 100
_UNSAFE_CHARS = re.compile(r"[^A-Za-z0-9_-]+")


@dataclass(frozen=True)
class StoredOutput:
    """A processed image persisted in an ``OutputStore``.

    Attributes:
        filename: Name of the file, unique within the store.
        path: Location of the file inside the store root.
        url: Relative URL under which the boundary serves the file.
        created_at: Creation time (UTC) persisted as the file's mtime.
    """

    filename: str
    path: Path
    url: str
    created_at: datetime


def _name_token() -> str:
    return uuid.uuid4().hex[:8]


def _now_ns() -> int:
    return time.time_ns()


def _to_datetime(ns: int) -> datetime:
    return datetime.fromtimestamp(ns / 1e9, tz=timezone.utc)


def sanitize_stem(original_name: str) -> str:
    """Reduce an uploaded filename to a short, filesystem-safe stem.

    Directory components are dropped and only the part before the first
    dot is kept, so ``../photos/cat.final.JPG`` becomes ``cat``.
    """
    base = re.split(r"[\\/]", original_name or "")[-1]
    stem = base.split(".", 1)[0]
    stem = _UNSAFE_CHARS.sub("-", stem).strip("-_")
    return stem[:MAX_STEM_LENGTH] or "image"


def media_type(filename: str) -> str:
    guessed, _ = mimetypes.guess_type(filename)
    return guessed or "application/octet-stream"


class OutputStore:
    """Flat directory of processed images.

    Args:
        root: Directory holding the stored files. Created if missing.
        url_prefix: Prefix of the URLs reported for stored files.

    Raises:
        StoreUnavailable: If the root directory cannot be created.
    """

    def __init__(self, root: Union[str, "os.PathLike[str]"], url_prefix: str = "/outputs") -> None:
        self.root = Path(root)
        self.url_prefix = url_prefix.rstrip("/")
        try:
            self.root.mkdir(parents=True, exist_ok=True)
        except OSError as exc:
            raise StoreUnavailable(f"Output directory unavailable: {exc.strerror}") from exc

    def _describe(self, filename: str, mtime_ns: int) -> StoredOutput:
        return StoredOutput(
            filename=filename,
            path=self.root / filename,
            url=f"{self.url_prefix}/{filename}",
            created_at=_to_datetime(mtime_ns),
        )

    def _write_temp(self, data: bytes, created_ns: int) -> str:
        fd, tmp_path = tempfile.mkstemp(dir=self.root, prefix=".", suffix=".tmp")
        try:
            with os.fdopen(fd, "wb") as f:
                f.write(data)
                f.flush()
                os.fsync(f.fileno())
            os.utime(tmp_path, ns=(created_ns, created_ns))
        except BaseException:
            os.unlink(tmp_path)
            raise
        return tmp_path

    def save(self, encoded: EncodedImage, original_name: str) -> StoredOutput:
        """Persist encoded bytes under a new, unique filename.

        Args:
            encoded: Image bytes in the canonical output format.
            original_name: Filename of the upload, used for the name stem.

        Returns:
            The descriptor of the new entry.

        Raises:
            StoreUnavailable: If the directory cannot be written or no free
                name was found.
        """
        created_ns = _now_ns()
        base = f"{NAME_PREFIX}-{created_ns // 1_000_000}-{_name_token()}-{sanitize_stem(original_name)}"
        try:
            tmp_path = self._write_temp(encoded.data, created_ns)
        except OSError as exc:
            raise StoreUnavailable(f"Could not write to output directory: {exc.strerror}") from exc

        try:
            for attempt in range(MAX_NAME_ATTEMPTS):
                filename = f"{base}{OUTPUT_EXTENSION}" if attempt == 0 else f"{base}-{attempt}{OUTPUT_EXTENSION}"
                try:
                    os.link(tmp_path, self.root / filename)
                except FileExistsError:
                    logger.debug("Name %s already taken, retrying", filename)
                    continue
                except OSError as exc:
                    raise StoreUnavailable(f"Could not publish output: {exc.strerror}") from exc
                logger.info("Stored %s (%d bytes)", filename, len(encoded.data))
                return self._describe(filename, created_ns)
        finally:
            try:
                os.unlink(tmp_path)
            except OSError:
                logger.warning("Could not remove temporary file %s", os.path.basename(tmp_path))
        raise StoreUnavailable(f"No free output name after {MAX_NAME_ATTEMPTS} attempts")

    def list(self) -> List[StoredOutput]:
        """List stored raster images, newest first.

        Raises:
            StoreUnavailable: If the directory cannot be read.
        """
        outputs = []
        try:
            with os.scandir(self.root) as entries:
                for entry in entries:
                    name = entry.name
                    if name.startswith(".") or not name.lower().endswith(RASTER_EXTENSIONS):
                        continue
                    try:
                        if not entry.is_file():
                            continue
                        if entry.is_symlink() and not self._inside_root(Path(entry.path)):
                            continue
                        mtime_ns = entry.stat().st_mtime_ns
                    except FileNotFoundError:
                        # Deleted between scandir and stat.
                        continue
                    outputs.append(self._describe(name, mtime_ns))
        except OSError as exc:
            raise StoreUnavailable(f"Error reading image directory: {exc.strerror}") from exc
        outputs.sort(key=lambda o: o.filename)
        outputs.sort(key=lambda o: o.created_at, reverse=True)
        return outputs

    def _inside_root(self, path: Path) -> bool:
        """True if ``path``, with symlinks resolved, sits directly in the root."""
        try:
            return path.resolve().parent == self.root.resolve()
        except OSError:
            return False

    def resolve(self, filename: str) -> Path:
        """Return the path of a stored file, rejecting names outside the root.

        Raises:
            NotFound: If the name is invalid or no such entry exists.
        """
        if (
            not filename
            or filename != os.path.basename(filename)
            or "\\" in filename
            or "\x00" in filename
            or filename.startswith(".")
            or not filename.lower().endswith(RASTER_EXTENSIONS)
        ):
            raise NotFound(f"File not found: {filename!r}")
        path = self.root / filename
        if not self._inside_root(path) or not path.is_file():
            raise NotFound(f"File not found: {filename!r}")
        return path

    def read(self, filename: str) -> bytes:
        """Return the bytes of a stored file.

        Raises:
            NotFound: If the name is invalid or no such entry exists.
            StoreUnavailable: If the file exists but cannot be read.
        """
        path = self.resolve(filename)
        try:
            return path.read_bytes()
        except FileNotFoundError as exc:
            raise NotFound(f"File not found: {filename!r}") from exc
        except OSError as exc:
            raise StoreUnavailable(f"Could not read {filename!r}: {exc.strerror}") from exc

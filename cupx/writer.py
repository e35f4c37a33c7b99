from __future__ import annotations

import io
import logging
import os
import shutil
import tempfile
import zipfile
from dataclasses import dataclass
from pathlib import Path
from typing import BinaryIO, Dict, Optional, Union

from . import cup
from .constants import (
    PICS_PREFIX,
    POINTS_NAME,
    PATH_SEPARATORS,
    SPOOL_MAX_SIZE,
    COPY_BUFFER_SIZE,
)
from .cup import CupFile
from .errors import InvalidFilenameError
from .limited import LimitedStream


logger = logging.getLogger(__name__)


class PictureSource:
    """Where the bytes of a picture come from when the file is written."""

    def open(self) -> BinaryIO:
        raise NotImplementedError


@dataclass
class BytesSource(PictureSource):
    data: bytes

    def open(self) -> BinaryIO:
        return io.BytesIO(self.data)


@dataclass
class PathSource(PictureSource):
    path: Path

    def open(self) -> BinaryIO:
        return open(self.path, "rb")


SourceArg = Union[PictureSource, bytes, bytearray, memoryview, str, os.PathLike]


def as_source(source: SourceArg) -> PictureSource:
    if isinstance(source, PictureSource):
        return source
    if isinstance(source, (bytes, bytearray, memoryview)):
        return BytesSource(bytes(source))
    if isinstance(source, (str, os.PathLike)):
        return PathSource(Path(source))
    raise TypeError(f"Unsupported picture source: {type(source).__name__}")


def validate_filename(filename: str) -> None:
    if not filename or any(sep in filename for sep in PATH_SEPARATORS):
        raise InvalidFilenameError(filename)


def _stream_is_seekable(f: BinaryIO) -> bool:
    try:
        if not f.seekable():
            return False
        f.tell()
    except (AttributeError, OSError, ValueError):
        return False
    return True


class CupxWriter:
    """Builder for CUPX files: one CUP record plus any number of pictures.

    Usage:
        CupxWriter(cup_file) \\
            .add_picture("photo.jpg", Path("images/photo.jpg")) \\
            .add_picture("inline.jpg", b"...") \\
            .write_to_path("output.cupx")
    """

    def __init__(
        self,
        cup_file: CupFile,
        *,
        compression: int = zipfile.ZIP_DEFLATED,
        compresslevel: Optional[int] = None,
        spool_max_size: int = SPOOL_MAX_SIZE,
    ):
        self.cup_file = cup_file
        self.pictures: Dict[str, PictureSource] = {}
        self.compression = compression
        self.compresslevel = compresslevel
        self.spool_max_size = spool_max_size

    def add_picture(self, filename: str, source: SourceArg) -> "CupxWriter":
        """Add a picture stored as ``pics/<filename>``; re-adding a name replaces it.

        ``source`` may be a PictureSource, raw bytes, or a filesystem path. Paths
        are only opened when the file is written.
        """
        self.pictures[filename] = as_source(source)
        return self

    def validate(self) -> None:
        for filename in self.pictures:
            validate_filename(filename)

    # -------- Output --------

    def _zip(self, fh: BinaryIO) -> zipfile.ZipFile:
        return zipfile.ZipFile(fh, "w", compression=self.compression, compresslevel=self.compresslevel)

    def _write_pics_archive(self, fh: BinaryIO) -> None:
        with self._zip(fh) as zf:
            for filename, source in self.pictures.items():
                with source.open() as src, zf.open(PICS_PREFIX + filename, "w") as dst:
                    shutil.copyfileobj(src, dst, COPY_BUFFER_SIZE)

    def _points_archive_bytes(self) -> bytes:
        buf = io.BytesIO()
        with self._zip(buf) as zf:
            zf.writestr(POINTS_NAME, cup.dumps(self.cup_file))
        return buf.getvalue()

    def write(self, sink: BinaryIO) -> None:
        """Write the CUPX file to ``sink``.

        Seekable sinks receive the pictures archive directly; other sinks get it
        through a spooled temporary buffer. Without pictures only the points
        archive is written.

        Raises:
            InvalidFilenameError: A picture name is empty or contains a path
                separator. Nothing has been written in that case.
            OSError: A picture file cannot be read or the sink cannot be written.
        """
        self.validate()
        points = self._points_archive_bytes()

        if self.pictures:
            if _stream_is_seekable(sink):
                view = LimitedStream(sink, sink.tell(), growable=True)
                self._write_pics_archive(view)
                sink.seek(view.range.end)
            else:
                with tempfile.SpooledTemporaryFile(max_size=self.spool_max_size) as spool:
                    self._write_pics_archive(spool)
                    spool.seek(0)
                    shutil.copyfileobj(spool, sink, COPY_BUFFER_SIZE)
        sink.write(points)
        sink.flush()
        logger.debug("wrote CUPX: %d picture(s), points archive %d bytes", len(self.pictures), len(points))

    def write_to_bytes(self) -> bytes:
        buf = io.BytesIO()
        self.write(buf)
        return buf.getvalue()

    def write_to_path(self, path: Union[str, os.PathLike]) -> None:
        """Write the CUPX file to ``path``; a partially written file is removed on failure."""
        self.validate()
        path = Path(path)
        try:
            with open(path, "wb") as f:
                self.write(f)
        except BaseException:
            try:
                path.unlink()
            except OSError:
                pass
            raise

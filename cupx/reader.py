from __future__ import annotations

import logging
import os
import shutil
import zipfile
import zlib
from pathlib import Path
from typing import BinaryIO, IO, List, Optional, Tuple, Union

from . import cup
from .boundary import find_boundary
from .constants import PICS_PREFIX, POINTS_NAME, SCAN_CHUNK_SIZE, COPY_BUFFER_SIZE
from .cup import CupFile, Encoding, Task, Waypoint
from .errors import (
    ArchiveError,
    CupxError,
    CupxWarning,
    PictureNotFoundError,
)
from .limited import ByteRange, LimitedStream


logger = logging.getLogger(__name__)

EncodingArg = Optional[Union[Encoding, str]]


def _open_zip(view: LimitedStream, what: str) -> zipfile.ZipFile:
    try:
        return zipfile.ZipFile(view)
    except zipfile.BadZipFile as exc:
        raise ArchiveError(f"Malformed {what} archive: {exc}") from exc


def _strip_pics_prefix(name: str) -> Optional[str]:
    if len(name) > len(PICS_PREFIX) and name[: len(PICS_PREFIX)].lower() == PICS_PREFIX:
        return name[len(PICS_PREFIX):]
    return None


def _load_points(view: LimitedStream, encoding: EncodingArg) -> Tuple[CupFile, List[CupxWarning]]:
    with _open_zip(view, "points") as zf:
        names = zf.namelist()
        member = POINTS_NAME if POINTS_NAME in names else None
        if member is None:
            member = next((n for n in names if n.lower() == POINTS_NAME.lower()), None)
        if member is None:
            raise ArchiveError(f"{POINTS_NAME} not found in points archive")
        try:
            with zf.open(member) as fh:
                cup_file, issues = cup.load(fh, encoding)
        except (zipfile.BadZipFile, zlib.error, EOFError) as exc:
            raise ArchiveError(f"Corrupt {member}: {exc}") from exc
    return cup_file, list(issues)


class CupxFile:
    """A parsed CUPX file: waypoint/task data plus an optional pictures archive.

    CUPX files are two ZIP archives back to back. The first holds pictures
    under ``pics/``; the second holds ``POINTS.CUP``. ``POINTS.CUP`` is parsed
    when the file is opened; pictures are indexed then but only decompressed
    when read.

    Usage:
        cupx, warnings = CupxFile.from_path("waypoints.cupx")
        with cupx:
            for name in cupx.picture_names():
                data = cupx.read_picture_bytes(name)

    Both archive views share one underlying stream, so an instance must not be
    used from several threads without external locking.
    """

    def __init__(
        self,
        stream: BinaryIO,
        cup_file: CupFile,
        points_view: LimitedStream,
        pics_view: Optional[LimitedStream] = None,
        pics_archive: Optional[zipfile.ZipFile] = None,
        *,
        close_stream: bool = False,
    ):
        self._stream: Optional[BinaryIO] = stream
        self._cup_file = cup_file
        self._points_view = points_view
        self._pics_view = pics_view
        self._pics_archive = pics_archive
        self._close_stream = close_stream

    # -------- Opening --------

    @classmethod
    def from_path(cls, path: Union[str, os.PathLike], encoding: EncodingArg = None) -> Tuple["CupxFile", List[CupxWarning]]:
        """Open a CUPX file from disk; the file stays open until ``close()``.

        ``encoding`` overrides detection of the ``POINTS.CUP`` text encoding.
        """
        f = open(path, "rb")
        return cls.from_stream(f, encoding, close_stream=True)

    @classmethod
    def from_stream(
        cls,
        stream: BinaryIO,
        encoding: EncodingArg = None,
        *,
        close_stream: bool = False,
        chunk_size: int = SCAN_CHUNK_SIZE,
    ) -> Tuple["CupxFile", List[CupxWarning]]:
        """Parse a CUPX file from any seekable binary stream.

        Returns the file together with the advisories found while opening it
        (a missing pictures archive, recoverable CUP parse issues).

        Raises:
            InvalidCupxError: No ZIP archive found.
            MalformedBoundaryError: Archive boundary out of range.
            ArchiveError: Either archive is malformed or POINTS.CUP is missing.
            CupError: POINTS.CUP cannot be parsed.

        With ``close_stream=True`` the stream is also closed when opening fails.
        """
        try:
            boundary = find_boundary(stream, chunk_size=chunk_size)
            warnings: List[CupxWarning] = list(boundary.warnings)

            points_view = LimitedStream(stream, boundary.split, boundary.size)
            cup_file, cup_issues = _load_points(points_view, encoding)
            warnings.extend(cup_issues)

            pics_view: Optional[LimitedStream] = None
            pics_archive: Optional[zipfile.ZipFile] = None
            if boundary.has_pictures:
                pics_view = LimitedStream(stream, 0, boundary.split)
                pics_archive = _open_zip(pics_view, "pictures")
        except (CupxError, OSError, ValueError, EOFError, RuntimeError):
            if close_stream:
                stream.close()
            raise

        logger.debug(
            "opened CUPX: %d waypoints, %d tasks, pictures=%s, %d warning(s)",
            len(cup_file.waypoints),
            len(cup_file.tasks),
            pics_archive is not None,
            len(warnings),
        )
        return cls(stream, cup_file, points_view, pics_view, pics_archive, close_stream=close_stream), warnings

    # -------- Lifecycle --------

    def __enter__(self):
        return self

    def __exit__(self, exc_type, exc, tb):
        self.close()

    def close(self):
        if self._pics_archive is not None:
            self._pics_archive.close()
            self._pics_archive = None
        for view in (self._pics_view, self._points_view):
            if view is not None:
                view.close()
        if self._stream is not None and self._close_stream:
            self._stream.close()
        self._stream = None

    def __repr__(self) -> str:
        return (
            f"<CupxFile waypoints={len(self.waypoints)} tasks={len(self.tasks)} "
            f"pictures={'yes' if self.has_pictures else 'no'}>"
        )

    # -------- Points --------

    @property
    def cup_file(self) -> CupFile:
        return self._cup_file

    @property
    def waypoints(self) -> List[Waypoint]:
        return self._cup_file.waypoints

    @property
    def tasks(self) -> List[Task]:
        return self._cup_file.tasks

    # -------- Pictures --------

    @property
    def has_pictures(self) -> bool:
        return self._pics_view is not None

    @property
    def points_range(self) -> ByteRange:
        return self._points_view.range

    @property
    def pictures_range(self) -> Optional[ByteRange]:
        return self._pics_view.range if self._pics_view is not None else None

    def picture_names(self) -> List[str]:
        """Picture file names without the ``pics/`` prefix, in archive order."""
        if self._pics_archive is None:
            return []
        names = []
        for info in self._pics_archive.infolist():
            if info.is_dir():
                continue
            name = _strip_pics_prefix(info.filename)
            if name is not None:
                names.append(name)
        return names

    def _picture_info(self, filename: str) -> zipfile.ZipInfo:
        if self._pics_archive is None:
            raise PictureNotFoundError(filename)
        target = filename.lower()
        for info in self._pics_archive.infolist():
            name = _strip_pics_prefix(info.filename)
            if name is not None and not info.is_dir() and name.lower() == target:
                return info
        raise PictureNotFoundError(filename)

    def read_picture(self, filename: str) -> IO[bytes]:
        """Return a stream of the decompressed picture. Matching is case-insensitive.

        The returned stream is only valid while this file is open.
        """
        info = self._picture_info(filename)
        return self._pics_archive.open(info)

    def read_picture_bytes(self, filename: str) -> bytes:
        info = self._picture_info(filename)
        try:
            with self._pics_archive.open(info) as fh:
                return fh.read()
        except (zipfile.BadZipFile, zlib.error, EOFError) as exc:
            raise ArchiveError(f"Corrupt picture {filename!r}: {exc}") from exc

    def extract_pictures(self, outdir: Union[str, os.PathLike]) -> List[Path]:
        """Write every picture into ``outdir`` and return the written paths."""
        out = Path(outdir)
        out.mkdir(parents=True, exist_ok=True)
        written: List[Path] = []
        for name in self.picture_names():
            dst = out / Path(name.replace("\\", "/")).name
            try:
                with self.read_picture(name) as src, open(dst, "wb") as wf:
                    shutil.copyfileobj(src, wf, COPY_BUFFER_SIZE)
            except (zipfile.BadZipFile, zlib.error, EOFError) as exc:
                raise ArchiveError(f"Corrupt picture {name!r}: {exc}") from exc
            written.append(dst)
        return written

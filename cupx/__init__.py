"""
cupx: reader and writer for SeeYou CUPX waypoint files.

A CUPX file is two ZIP archives written back to back:

- a pictures archive holding images under ``pics/`` (optional), followed by
- a points archive holding a single ``POINTS.CUP`` waypoint/task file.

The boundary between the two is found by scanning backward for ZIP End Of
Central Directory records in bounded chunks, so files of any size open
without being read into memory. Each half is then handed to :mod:`zipfile`
through a range-restricted stream view.

    from cupx import CupxFile, CupxWriter

    cupx, warnings = CupxFile.from_path("waypoints.cupx")
    print(len(cupx.waypoints), cupx.picture_names())

    CupxWriter(cupx.cup_file).add_picture("a.jpg", b"...").write_to_path("out.cupx")
"""

__version__ = "0.1"

from .cup import CupFile, Encoding, Task, Waypoint, WaypointStyle
from .errors import (
    CupxError,
    InvalidCupxError,
    MalformedBoundaryError,
    ArchiveError,
    CupError,
    InvalidFilenameError,
    PictureNotFoundError,
    RangeOverflowError,
    CupxWarning,
    NoPicturesArchive,
    CupParseIssue,
)
from .reader import CupxFile
from .writer import CupxWriter, PictureSource, BytesSource, PathSource

__all__ = [
    "CupxFile",
    "CupxWriter",
    "PictureSource",
    "BytesSource",
    "PathSource",
    "CupFile",
    "Encoding",
    "Task",
    "Waypoint",
    "WaypointStyle",
    "CupxError",
    "InvalidCupxError",
    "MalformedBoundaryError",
    "ArchiveError",
    "CupError",
    "InvalidFilenameError",
    "PictureNotFoundError",
    "RangeOverflowError",
    "CupxWarning",
    "NoPicturesArchive",
    "CupParseIssue",
]

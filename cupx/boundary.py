from __future__ import annotations

import logging
import os
import struct
from dataclasses import dataclass, field
from typing import BinaryIO, List, Optional, Tuple

from .constants import (
    EOCD_SIGNATURE,
    EOCD_MIN_SIZE,
    EOCD_COMMENT_LEN_OFFSET,
    SCAN_CHUNK_SIZE,
)
from .errors import CupxWarning, InvalidCupxError, MalformedBoundaryError, NoPicturesArchive


logger = logging.getLogger(__name__)

_COMMENT_LEN = struct.Struct("<H")


@dataclass
class Boundary:
    """Where the pictures archive ends and the points archive begins."""

    split: int
    size: int
    trailing_offset: int
    leading_offset: Optional[int] = None
    warnings: List[CupxWarning] = field(default_factory=list)

    @property
    def has_pictures(self) -> bool:
        return self.leading_offset is not None


def _read_exact(f: BinaryIO, n: int) -> bytes:
    b = f.read(n)
    if len(b) != n:
        raise InvalidCupxError(f"Unexpected end of stream: read {len(b)} of {n} bytes while scanning for archive boundary")
    return b


def _scan_terminators(f: BinaryIO, size: int, chunk_size: int, wanted: int = 2) -> List[Tuple[int, int]]:
    """Return up to ``wanted`` (offset, comment_len) pairs, nearest to EOF first."""
    found: List[Tuple[int, int]] = []
    overlap = EOCD_MIN_SIZE - 1
    # Candidates starting at or after `limit` were examined by an earlier chunk
    limit = size
    while len(found) < wanted and limit > 0:
        chunk_start = max(0, limit - chunk_size)
        chunk_end = min(size, limit + overlap)
        f.seek(chunk_start)
        chunk = _read_exact(f, chunk_end - chunk_start)
        scan_end = len(chunk)
        while len(found) < wanted:
            pos = chunk.rfind(EOCD_SIGNATURE, 0, scan_end)
            if pos == -1:
                break
            scan_end = pos + len(EOCD_SIGNATURE) - 1
            offset = chunk_start + pos
            if offset >= limit:
                continue
            if offset + EOCD_MIN_SIZE > size:
                # Too close to EOF to hold the comment length field
                continue
            (comment_len,) = _COMMENT_LEN.unpack_from(chunk, pos + EOCD_COMMENT_LEN_OFFSET)
            found.append((offset, comment_len))
        limit = chunk_start
    return found


def find_boundary(f: BinaryIO, *, chunk_size: int = SCAN_CHUNK_SIZE) -> Boundary:
    """Locate the split between the pictures and points archives.

    The stream is scanned backward from its end in ``chunk_size`` blocks, so
    memory use does not depend on the stream length. The two End Of Central
    Directory records closest to EOF are kept; the farther one terminates the
    pictures archive and the split is the first byte after its comment.

    Raises:
        InvalidCupxError: No End Of Central Directory record was found.
        MalformedBoundaryError: The computed split does not fall before the
            points archive's terminator.
    """
    if chunk_size < EOCD_MIN_SIZE:
        raise ValueError(f"chunk_size must be at least {EOCD_MIN_SIZE}")
    size = f.seek(0, os.SEEK_END)
    found = _scan_terminators(f, size, chunk_size)

    if not found:
        raise InvalidCupxError()

    trailing_offset = found[0][0]
    if len(found) == 1:
        logger.debug("single EOCD at %d; no pictures archive", trailing_offset)
        return Boundary(split=0, size=size, trailing_offset=trailing_offset, warnings=[NoPicturesArchive()])

    leading_offset, comment_len = found[1]
    split = leading_offset + EOCD_MIN_SIZE + comment_len
    if not 0 < split < trailing_offset:
        raise MalformedBoundaryError(
            f"Archive boundary {split} out of range (pictures EOCD at {leading_offset}, "
            f"points EOCD at {trailing_offset})"
        )
    logger.debug("EOCDs at %d and %d; split at %d of %d", leading_offset, trailing_offset, split, size)
    return Boundary(split=split, size=size, trailing_offset=trailing_offset, leading_offset=leading_offset)

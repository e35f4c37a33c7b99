from __future__ import annotations

import errno
import io
import os
from typing import BinaryIO, NamedTuple, Optional

from .errors import RangeOverflowError


class ByteRange(NamedTuple):
    start: int
    end: int

    @property
    def length(self) -> int:
        return self.end - self.start


class LimitedStream(io.RawIOBase):
    """Window onto ``[start, end)`` of another seekable stream.

    Positions reported by ``tell``/``seek`` are relative to ``start``. The
    underlying stream is repositioned before every read or write, so several
    views can share one file handle as long as they are used one at a time.

    A fixed view refuses writes that would cross ``end``. A growable view
    (``growable=True``) moves ``end`` forward as data is written, which is what
    a writer producing a fresh archive needs. Closing a view never closes the
    underlying stream.
    """

    def __init__(self, inner: BinaryIO, start: int = 0, end: Optional[int] = None, *, growable: bool = False):
        super().__init__()
        self._inner = inner
        self._pos = 0
        self.growable = growable
        if start < 0:
            self.close()
            raise ValueError("start must be non-negative")
        if end is None:
            end = start if growable else inner.seek(0, os.SEEK_END)
        if end < start:
            self.close()
            raise ValueError(f"invalid range [{start}, {end})")
        self._start = start
        self._end = end

    @property
    def inner(self) -> BinaryIO:
        return self._inner

    @property
    def range(self) -> ByteRange:
        return ByteRange(self._start, self._end)

    @property
    def size(self) -> int:
        return self._end - self._start

    def readable(self) -> bool:
        return True

    def seekable(self) -> bool:
        return True

    def writable(self) -> bool:
        try:
            return bool(self._inner.writable())
        except AttributeError:
            return hasattr(self._inner, "write")

    def readinto(self, b) -> int:
        self._checkClosed()
        remaining = self.size - self._pos
        if remaining <= 0:
            return 0
        want = min(len(b), remaining)
        self._inner.seek(self._start + self._pos)
        data = self._inner.read(want)
        n = len(data)
        b[:n] = data
        self._pos += n
        return n

    def write(self, b) -> int:
        self._checkClosed()
        if not self.writable():
            raise io.UnsupportedOperation("underlying stream is not writable")
        data = memoryview(b).cast("B")
        n = len(data)
        new_pos = self._pos + n
        if new_pos > self.size and not self.growable:
            raise RangeOverflowError(
                f"write of {n} bytes at {self._pos} exceeds fixed range of {self.size} bytes"
            )
        self._inner.seek(self._start + self._pos)
        self._inner.write(data)
        self._pos = new_pos
        if self._start + new_pos > self._end:
            self._end = self._start + new_pos
        return n

    def seek(self, offset: int, whence: int = os.SEEK_SET) -> int:
        self._checkClosed()
        if whence == os.SEEK_SET:
            new_pos = offset
        elif whence == os.SEEK_CUR:
            new_pos = self._pos + offset
        elif whence == os.SEEK_END:
            new_pos = self.size + offset
        else:
            raise ValueError(f"invalid whence ({whence!r})")
        if new_pos < 0:
            raise OSError(errno.EINVAL, f"negative seek position {new_pos}")
        self._pos = new_pos
        return new_pos

    def tell(self) -> int:
        self._checkClosed()
        return self._pos

    def flush(self) -> None:
        if not self.closed and self.writable() and not getattr(self._inner, "closed", False):
            self._inner.flush()

    def __repr__(self) -> str:
        mode = "growable" if self.growable else "fixed"
        return f"<LimitedStream [{self._start}, {self._end}) {mode} pos={self._pos}>"

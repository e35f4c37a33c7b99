from __future__ import annotations

from typing import Optional


class CupxError(Exception):
    """Base class for CUPX-specific errors."""


# Container structure
class InvalidCupxError(CupxError):
    def __init__(self, message: str = "Invalid CUPX file: could not find two ZIP archives"):
        super().__init__(message)


class MalformedBoundaryError(CupxError):
    pass


class ArchiveError(CupxError):
    pass


class CupError(CupxError):
    pass


# Writer validation
class InvalidFilenameError(CupxError):
    def __init__(self, filename: str):
        super().__init__(f"Invalid picture filename: {filename!r}")
        self.filename = filename


# Access
class PictureNotFoundError(CupxError, KeyError):
    def __init__(self, filename: str):
        super().__init__(filename)
        self.filename = filename

    def __str__(self) -> str:
        return f"Picture not found: {self.filename!r}"


class RangeOverflowError(CupxError, OSError):
    pass


class CupxWarning:
    """Non-fatal finding reported alongside a successful result."""

    message: str = ""

    def __eq__(self, other) -> bool:
        return type(self) is type(other) and vars(self) == vars(other)

    def __hash__(self) -> int:
        return hash((type(self).__name__, tuple(sorted(vars(self).items()))))

    def __repr__(self) -> str:
        fields = ", ".join(f"{k}={v!r}" for k, v in vars(self).items())
        return f"{type(self).__name__}({fields})"

    def __str__(self) -> str:
        return self.message


class NoPicturesArchive(CupxWarning):
    message = "The CUPX file does not contain a pictures archive"


class CupParseIssue(CupxWarning):
    def __init__(self, message: str, line: Optional[int] = None):
        self.message = message
        self.line = line

    def __str__(self) -> str:
        if self.line is None:
            return self.message
        return f"line {self.line}: {self.message}"

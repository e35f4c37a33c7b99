"""
Compact reader/writer for SeeYou CUP waypoint files (the POINTS.CUP record).

Layout
- Optional UTF-8 BOM; UTF-8 or Windows-1252 text; CRLF or LF line endings
- Header row naming the columns, e.g.
  name,code,country,lat,lon,elev,style,rwdir,rwlen,rwwidth,freq,desc,userdata,pics
  Older files omit rwwidth/userdata/pics; columns are mapped by header name.
- One waypoint per row, CSV with double-quote quoting; quoted fields may
  contain commas and line breaks
  - lat: DDMM.mmm + N/S   (e.g. 5107.830N)
  - lon: DDDMM.mmm + E/W  (e.g. 01410.467E)
  - elev: number + m/ft   (e.g. 504.0m)
  - rwlen/rwwidth: number + m/nm/ml
  - pics: picture file names separated by ';'
- Optional "-----Related Tasks-----" line followed by tasks:
  - "Description","WP1","WP2",...   starts a task
  - Options,Key=Value,...           task options
  - ObsZone=N,Key=Value,...         observation zone N
  - anything else (Point=, STARTS=) is kept verbatim with its task

Rows that cannot be parsed are skipped and reported as CupParseIssue with the
1-based line number. Structural problems (no usable header, undecodable text
with an explicit encoding) raise CupError.
"""

from __future__ import annotations

import csv
import io
import re
from dataclasses import dataclass, field
from enum import Enum, IntEnum
from typing import BinaryIO, Dict, List, Optional, Tuple, Union

from .errors import CupError, CupParseIssue


TASKS_MARKER = "-----Related Tasks-----"
COLUMNS = (
    "name",
    "code",
    "country",
    "lat",
    "lon",
    "elev",
    "style",
    "rwdir",
    "rwlen",
    "rwwidth",
    "freq",
    "desc",
    "userdata",
    "pics",
)
REQUIRED_COLUMNS = ("name", "lat", "lon")
# Long column names used by older SeeYou exports
_HEADER_ALIASES = {
    "title": "name",
    "latitude": "lat",
    "longitude": "lon",
    "elevation": "elev",
    "direction": "rwdir",
    "length": "rwlen",
    "frequency": "freq",
    "description": "desc",
}

_UTF8_BOM = b"\xef\xbb\xbf"
_LAT_RE = re.compile(r"^(\d{2})(\d{2}(?:\.\d*)?)([NS])$", re.IGNORECASE)
_LON_RE = re.compile(r"^(\d{3})(\d{2}(?:\.\d*)?)([EW])$", re.IGNORECASE)
_ELEV_RE = re.compile(r"^(-?\d+(?:\.\d*)?)\s*(m|ft)?$", re.IGNORECASE)
_DIM_RE = re.compile(r"^(\d+(?:\.\d*)?)\s*(m|nm|ml)?$", re.IGNORECASE)
_LINE_BREAK_RE = re.compile(r"\r\n|\r|\n")


class Encoding(Enum):
    UTF8 = "utf-8"
    WINDOWS_1252 = "cp1252"

    @classmethod
    def coerce(cls, value: Union["Encoding", str]) -> "Encoding":
        if isinstance(value, cls):
            return value
        key = str(value).strip().lower().replace("_", "-")
        if key in ("utf-8", "utf8"):
            return cls.UTF8
        if key in ("windows-1252", "cp1252", "cp-1252"):
            return cls.WINDOWS_1252
        raise ValueError(f"Unsupported CUP encoding: {value!r}")


class WaypointStyle(IntEnum):
    UNKNOWN = 0
    WAYPOINT = 1
    AIRFIELD_GRASS = 2
    OUTLANDING = 3
    GLIDING_AIRFIELD = 4
    AIRFIELD_SOLID = 5
    MOUNTAIN_PASS = 6
    MOUNTAIN_TOP = 7
    TRANSMITTER_MAST = 8
    VOR = 9
    NDB = 10
    COOLING_TOWER = 11
    DAM = 12
    TUNNEL = 13
    BRIDGE = 14
    POWER_PLANT = 15
    CASTLE = 16
    INTERSECTION = 17
    MARKER = 18
    CONTROL_POINT = 19
    PG_TAKE_OFF = 20
    PG_LANDING_ZONE = 21


@dataclass
class Elevation:
    value: float = 0.0
    unit: str = "m"  # "m" or "ft"

    def meters(self) -> float:
        return self.value * 0.3048 if self.unit == "ft" else self.value


@dataclass
class RunwayDimension:
    value: float
    unit: str = "m"  # "m", "nm" or "ml"


@dataclass
class Waypoint:
    name: str
    code: str = ""
    country: str = ""
    latitude: float = 0.0
    longitude: float = 0.0
    elevation: Elevation = field(default_factory=Elevation)
    style: WaypointStyle = WaypointStyle.UNKNOWN
    runway_direction: Optional[int] = None
    runway_length: Optional[RunwayDimension] = None
    runway_width: Optional[RunwayDimension] = None
    frequency: str = ""
    description: str = ""
    userdata: str = ""
    pictures: List[str] = field(default_factory=list)


@dataclass
class ObservationZone:
    index: int
    params: Dict[str, str] = field(default_factory=dict)


@dataclass
class Task:
    description: str = ""
    waypoint_names: List[str] = field(default_factory=list)
    options: Dict[str, str] = field(default_factory=dict)
    observation_zones: List[ObservationZone] = field(default_factory=list)
    extra_lines: List[str] = field(default_factory=list)


@dataclass
class CupFile:
    waypoints: List[Waypoint] = field(default_factory=list)
    tasks: List[Task] = field(default_factory=list)


# -------- Decoding --------

def decode(data: bytes, encoding: Optional[Union[Encoding, str]] = None) -> Tuple[str, List[CupParseIssue]]:
    """Decode raw CUP bytes, detecting the encoding when none is given."""
    issues: List[CupParseIssue] = []
    if encoding is not None:
        enc = Encoding.coerce(encoding)
        if enc is Encoding.UTF8 and data.startswith(_UTF8_BOM):
            data = data[len(_UTF8_BOM):]
        try:
            return data.decode(enc.value), issues
        except UnicodeDecodeError as exc:
            raise CupError(f"CUP data is not valid {enc.value}: {exc}") from exc
    if data.startswith(_UTF8_BOM):
        data = data[len(_UTF8_BOM):]
    try:
        return data.decode("utf-8"), issues
    except UnicodeDecodeError:
        issues.append(CupParseIssue("CUP data is not valid UTF-8; decoded as Windows-1252"))
        return data.decode("cp1252", errors="replace"), issues


def _parse_lat(s: str) -> float:
    m = _LAT_RE.match(s.strip())
    if not m:
        raise ValueError(f"invalid latitude {s!r}")
    deg, minutes, hemi = int(m.group(1)), float(m.group(2)), m.group(3).upper()
    if minutes >= 60.0:
        raise ValueError(f"invalid latitude minutes {s!r}")
    value = deg + minutes / 60.0
    if value > 90.0:
        raise ValueError(f"latitude out of range {s!r}")
    return -value if hemi == "S" else value


def _parse_lon(s: str) -> float:
    m = _LON_RE.match(s.strip())
    if not m:
        raise ValueError(f"invalid longitude {s!r}")
    deg, minutes, hemi = int(m.group(1)), float(m.group(2)), m.group(3).upper()
    if minutes >= 60.0:
        raise ValueError(f"invalid longitude minutes {s!r}")
    value = deg + minutes / 60.0
    if value > 180.0:
        raise ValueError(f"longitude out of range {s!r}")
    return -value if hemi == "W" else value


def _parse_elevation(s: str) -> Elevation:
    s = s.strip()
    if not s:
        return Elevation()
    m = _ELEV_RE.match(s)
    if not m:
        raise ValueError(f"invalid elevation {s!r}")
    return Elevation(float(m.group(1)), (m.group(2) or "m").lower())


def _parse_dimension(s: str) -> Optional[RunwayDimension]:
    s = s.strip()
    if not s:
        return None
    m = _DIM_RE.match(s)
    if not m:
        raise ValueError(f"invalid runway dimension {s!r}")
    return RunwayDimension(float(m.group(1)), (m.group(2) or "m").lower())


def _parse_runway_direction(s: str) -> Optional[int]:
    s = s.strip()
    if not s:
        return None
    value = int(s)
    if not 0 <= value <= 360:
        raise ValueError(f"runway direction out of range {s!r}")
    return value


def _parse_style(s: str) -> WaypointStyle:
    s = s.strip()
    if not s:
        return WaypointStyle.UNKNOWN
    return WaypointStyle(int(s))


def _split_row(line: str) -> List[str]:
    return next(csv.reader([line], skipinitialspace=True))


def _parse_waypoint(row: List[str], columns: Dict[str, int], lineno: int, issues: List[CupParseIssue]) -> Optional[Waypoint]:
    def get(col: str) -> str:
        idx = columns.get(col)
        if idx is None or idx >= len(row):
            return ""
        return row[idx]

    name = get("name").strip()
    if not name:
        issues.append(CupParseIssue("waypoint without a name skipped", lineno))
        return None
    try:
        lat = _parse_lat(get("lat"))
        lon = _parse_lon(get("lon"))
    except ValueError as exc:
        issues.append(CupParseIssue(f"waypoint {name!r} skipped: {exc}", lineno))
        return None

    wp = Waypoint(name=name, code=get("code"), country=get("country").strip(), latitude=lat, longitude=lon)
    wp.frequency = get("freq").strip()
    wp.description = get("desc")
    wp.userdata = get("userdata")
    wp.pictures = [p.strip() for p in get("pics").split(";") if p.strip()]

    # Secondary fields: report and leave at their defaults
    try:
        wp.elevation = _parse_elevation(get("elev"))
    except ValueError as exc:
        issues.append(CupParseIssue(f"waypoint {name!r}: {exc}", lineno))
    try:
        wp.style = _parse_style(get("style"))
    except ValueError:
        issues.append(CupParseIssue(f"waypoint {name!r}: invalid style {get('style')!r}", lineno))
    try:
        wp.runway_direction = _parse_runway_direction(get("rwdir"))
    except ValueError:
        issues.append(CupParseIssue(f"waypoint {name!r}: invalid runway direction {get('rwdir')!r}", lineno))
    for col, attr in (("rwlen", "runway_length"), ("rwwidth", "runway_width")):
        try:
            setattr(wp, attr, _parse_dimension(get(col)))
        except ValueError as exc:
            issues.append(CupParseIssue(f"waypoint {name!r}: {exc}", lineno))
    return wp


def _parse_key_values(fields: List[str]) -> Dict[str, str]:
    out: Dict[str, str] = {}
    for f in fields:
        if "=" in f:
            k, v = f.split("=", 1)
            out[k.strip()] = v.strip()
    return out


def _parse_task_line(line: str, lineno: int, tasks: List[Task], issues: List[CupParseIssue]) -> None:
    current = tasks[-1] if tasks else None
    head = line.split(",", 1)[0].strip()
    if head.lower() == "options":
        if current is None:
            issues.append(CupParseIssue("task options before any task ignored", lineno))
            return
        current.options.update(_parse_key_values(_split_row(line)[1:]))
        return
    if head.lower().startswith("obszone="):
        if current is None:
            issues.append(CupParseIssue("observation zone before any task ignored", lineno))
            return
        fields = _split_row(line)
        try:
            index = int(fields[0].split("=", 1)[1])
        except ValueError:
            issues.append(CupParseIssue(f"invalid observation zone {fields[0]!r}", lineno))
            return
        current.observation_zones.append(ObservationZone(index=index, params=_parse_key_values(fields[1:])))
        return
    if "=" in head and not head.startswith('"'):
        if current is None:
            issues.append(CupParseIssue(f"task line before any task ignored: {head!r}", lineno))
            return
        current.extra_lines.append(line)
        return
    fields = _split_row(line)
    tasks.append(Task(description=fields[0] if fields else "", waypoint_names=fields[1:]))


def _parse_header(row: List[str], lineno: int) -> Dict[str, int]:
    names = [_HEADER_ALIASES.get(c.strip().lower(), c.strip().lower()) for c in row]
    if not names or names[0] != "name":
        raise CupError(f"line {lineno}: expected CUP header row, got {','.join(row)[:40]!r}")
    columns: Dict[str, int] = {}
    for idx, col in enumerate(names):
        columns.setdefault(col, idx)
    missing = [c for c in REQUIRED_COLUMNS if c not in columns]
    if missing:
        raise CupError(f"CUP header is missing required column(s): {', '.join(missing)}")
    return columns


def parse_text(text: str) -> Tuple[CupFile, List[CupParseIssue]]:
    """Parse decoded CUP text.

    The waypoint section is read as one CSV stream, so a quoted field may span
    several lines; issues report the line a row starts on. Task lines are
    handled one physical line at a time.
    """
    issues: List[CupParseIssue] = []
    cup = CupFile()
    columns: Optional[Dict[str, int]] = None
    in_tasks = False

    buf = io.StringIO(text.replace("\x1a", ""), newline="")
    reader = csv.reader(buf, skipinitialspace=True)
    last_line = 0
    try:
        for row in reader:
            lineno, last_line = last_line + 1, reader.line_num
            if not any(f.strip() for f in row):
                continue
            if row[0].strip().startswith(TASKS_MARKER):
                in_tasks = True
                break
            if columns is None:
                columns = _parse_header(row, lineno)
                continue
            wp = _parse_waypoint(row, columns, lineno, issues)
            if wp is not None:
                cup.waypoints.append(wp)
    except csv.Error as exc:
        raise CupError(f"line {reader.line_num}: {exc}") from exc

    if in_tasks:
        # The reader stops right after the marker line; the rest is unread
        for lineno, raw in enumerate(_LINE_BREAK_RE.split(buf.read()), start=last_line + 1):
            line = raw.strip()
            if line:
                _parse_task_line(line, lineno, cup.tasks, issues)
    return cup, issues


def loads(data: bytes, encoding: Optional[Union[Encoding, str]] = None) -> Tuple[CupFile, List[CupParseIssue]]:
    text, issues = decode(data, encoding)
    cup, parse_issues = parse_text(text)
    return cup, issues + parse_issues


def load(fp: BinaryIO, encoding: Optional[Union[Encoding, str]] = None) -> Tuple[CupFile, List[CupParseIssue]]:
    return loads(fp.read(), encoding)


# -------- Encoding --------

def _quote(s: str) -> str:
    return '"' + s.replace('"', '""') + '"'


def _key_value(key: str, value: str) -> str:
    item = f"{key}={value}"
    if any(c in item for c in ',"\r\n') or item != item.strip():
        return _quote(item)
    return item


def _fmt_num(v: float) -> str:
    return repr(float(v))


def _fmt_lat(lat: float) -> str:
    total = round(abs(lat) * 60.0, 3)
    deg = int(total // 60)
    minutes = total - deg * 60
    return f"{deg:02d}{minutes:06.3f}{'S' if lat < 0 else 'N'}"


def _fmt_lon(lon: float) -> str:
    total = round(abs(lon) * 60.0, 3)
    deg = int(total // 60)
    minutes = total - deg * 60
    return f"{deg:03d}{minutes:06.3f}{'W' if lon < 0 else 'E'}"


def _fmt_dim(d: Optional[RunwayDimension]) -> str:
    return "" if d is None else f"{_fmt_num(d.value)}{d.unit}"


def _format_waypoint(wp: Waypoint) -> str:
    return ",".join(
        [
            _quote(wp.name),
            _quote(wp.code),
            _quote(wp.country),
            _fmt_lat(wp.latitude),
            _fmt_lon(wp.longitude),
            f"{_fmt_num(wp.elevation.value)}{wp.elevation.unit}",
            str(int(wp.style)),
            "" if wp.runway_direction is None else str(wp.runway_direction),
            _fmt_dim(wp.runway_length),
            _fmt_dim(wp.runway_width),
            _quote(wp.frequency),
            _quote(wp.description),
            _quote(wp.userdata),
            _quote(";".join(wp.pictures)),
        ]
    )


def _format_task(task: Task) -> List[str]:
    lines = [",".join([_quote(task.description)] + [_quote(n) for n in task.waypoint_names])]
    if task.options:
        lines.append(",".join(["Options"] + [_key_value(k, v) for k, v in task.options.items()]))
    for oz in task.observation_zones:
        lines.append(",".join([f"ObsZone={oz.index}"] + [_key_value(k, v) for k, v in oz.params.items()]))
    lines.extend(task.extra_lines)
    return lines


def dumps(cup: CupFile) -> bytes:
    """Serialize to UTF-8 CUP text with CRLF line endings."""
    lines = [",".join(COLUMNS)]
    lines.extend(_format_waypoint(wp) for wp in cup.waypoints)
    if cup.tasks:
        lines.append(TASKS_MARKER)
        for task in cup.tasks:
            lines.extend(_format_task(task))
    return ("\r\n".join(lines) + "\r\n").encode("utf-8")


def dump(cup: CupFile, fp: BinaryIO) -> None:
    fp.write(dumps(cup))

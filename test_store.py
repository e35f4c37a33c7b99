from __future__ import annotations

import hashlib
import io
import os
import tempfile
import unittest
import zipfile
from pathlib import Path

from cupx import CupxFile, CupxWriter
from cupx.boundary import find_boundary
from cupx.constants import EOCD_SIGNATURE
from cupx.cup import CupFile, Elevation, Encoding, Task, Waypoint, WaypointStyle
from cupx.errors import (
    ArchiveError,
    CupError,
    CupParseIssue,
    CupxError,
    InvalidFilenameError,
    NoPicturesArchive,
    PictureNotFoundError,
)
from cupx.writer import BytesSource, PathSource


def _sample_cup() -> CupFile:
    return CupFile(
        waypoints=[
            Waypoint(
                name="Lesce",
                code="LJBL",
                country="SI",
                latitude=51.5,
                longitude=7.25,
                elevation=Elevation(504.0, "m"),
                style=WaypointStyle.AIRFIELD_SOLID,
                pictures=["a.jpg", "b.jpg"],
            )
        ],
        tasks=[Task(description="Local", waypoint_names=["Lesce", "Lesce"])],
    )


def _many_waypoints(n: int) -> CupFile:
    waypoints = []
    for i in range(n):
        digest = hashlib.sha256(str(i).encode("ascii")).hexdigest()
        waypoints.append(
            Waypoint(
                name=f"WP{i:05d}",
                code=digest[:6],
                latitude=(i % 170) - 85 + 0.5,
                longitude=(i % 350) - 175 + 0.25,
                description=digest + hashlib.sha256(digest.encode("ascii")).hexdigest(),
            )
        )
    return CupFile(waypoints=waypoints)


def _zip_bytes(entries, compression: int = zipfile.ZIP_DEFLATED) -> bytes:
    buf = io.BytesIO()
    with zipfile.ZipFile(buf, "w", compression=compression) as zf:
        for name, data in entries.items():
            zf.writestr(name, data)
    return buf.getvalue()


def _open(data: bytes, encoding=None, **kwargs):
    return CupxFile.from_stream(io.BytesIO(data), encoding, **kwargs)


class _Unseekable:
    """Write-only sink without seek/tell, like a pipe or socket."""

    def __init__(self):
        self.buf = io.BytesIO()

    def write(self, b):
        return self.buf.write(b)

    def flush(self):
        pass

    def seekable(self):
        return False

    def tell(self):
        raise OSError("not seekable")

    def getvalue(self) -> bytes:
        return self.buf.getvalue()


class CupxReadWriteTests(unittest.TestCase):
    def setUp(self):
        self._tmp = tempfile.TemporaryDirectory()
        self.addCleanup(self._tmp.cleanup)
        self.tmp = Path(self._tmp.name)
        self.b_path = self.tmp / "b.jpg"
        self.b_path.write_bytes(bytes(10))

    def _writer(self, **kwargs) -> CupxWriter:
        return (
            CupxWriter(_sample_cup(), **kwargs)
            .add_picture("a.jpg", bytes([1, 2, 3, 4, 5]))
            .add_picture("b.jpg", self.b_path)
        )

    def test_roundtrip(self):
        data = self._writer().write_to_bytes()
        cupx, warnings = _open(data)
        with cupx:
            self.assertEqual(warnings, [])
            self.assertTrue(cupx.has_pictures)
            self.assertEqual(sorted(cupx.picture_names()), ["a.jpg", "b.jpg"])
            with cupx.read_picture("a.jpg") as fh:
                self.assertEqual(fh.read(), bytes([1, 2, 3, 4, 5]))
            self.assertEqual(cupx.read_picture_bytes("b.jpg"), bytes(10))
            self.assertEqual(cupx.cup_file, _sample_cup())
            self.assertEqual(len(cupx.waypoints), 1)
            self.assertEqual(len(cupx.tasks), 1)
            self.assertEqual(cupx.pictures_range.start, 0)
            self.assertEqual(cupx.pictures_range.end, cupx.points_range.start)
            self.assertEqual(cupx.points_range.end, len(data))

    def test_output_layout(self):
        data = self._writer().write_to_bytes()
        self.assertEqual(data.count(EOCD_SIGNATURE), 2)
        split = find_boundary(io.BytesIO(data)).split
        with zipfile.ZipFile(io.BytesIO(data[:split])) as zf:
            self.assertEqual(zf.namelist(), ["pics/a.jpg", "pics/b.jpg"])
            self.assertTrue(all(i.compress_type == zipfile.ZIP_DEFLATED for i in zf.infolist()))
        with zipfile.ZipFile(io.BytesIO(data[split:])) as zf:
            self.assertEqual(zf.namelist(), ["POINTS.CUP"])
            self.assertTrue(zf.read("POINTS.CUP").startswith(b"name,code,country,lat,lon,"))

    def test_stored_compression(self):
        data = self._writer(compression=zipfile.ZIP_STORED).write_to_bytes()
        split = find_boundary(io.BytesIO(data)).split
        with zipfile.ZipFile(io.BytesIO(data[:split])) as zf:
            self.assertTrue(all(i.compress_type == zipfile.ZIP_STORED for i in zf.infolist()))

    def test_write_to_path_and_from_path(self):
        out = self.tmp / "out.cupx"
        self._writer().write_to_path(out)
        cupx, warnings = CupxFile.from_path(out)
        handle = cupx._stream
        with cupx:
            self.assertEqual(warnings, [])
            self.assertEqual(cupx.read_picture_bytes("a.jpg"), bytes([1, 2, 3, 4, 5]))
            self.assertIn("waypoints=1", repr(cupx))
        self.assertTrue(handle.closed)

    def test_from_path_missing_file(self):
        with self.assertRaises(FileNotFoundError):
            CupxFile.from_path(self.tmp / "nope.cupx")

    def test_no_pictures(self):
        data = CupxWriter(_sample_cup()).write_to_bytes()
        self.assertEqual(data.count(EOCD_SIGNATURE), 1)
        cupx, warnings = _open(data)
        with cupx:
            self.assertEqual(warnings, [NoPicturesArchive()])
            self.assertFalse(cupx.has_pictures)
            self.assertIsNone(cupx.pictures_range)
            self.assertEqual(cupx.picture_names(), [])
            self.assertEqual(cupx.cup_file, _sample_cup())
            with self.assertRaises(PictureNotFoundError):
                cupx.read_picture("a.jpg")

    def test_truncated_terminator_fails(self):
        data = self._writer().write_to_bytes()
        off = data.rfind(EOCD_SIGNATURE)
        with self.assertRaises(CupxError):
            _open(data[:off] + data[off + len(EOCD_SIGNATURE):])
        with self.assertRaises(CupxError):
            _open(data[:-10])

    def test_not_a_cupx_file(self):
        with self.assertRaises(CupxError):
            _open(b"this is plain text, not a zip" * 10)

    def test_failed_open_closes_owned_stream(self):
        for close_stream in (True, False):
            with self.subTest(close_stream=close_stream):
                stream = io.BytesIO(b"this is plain text, not a zip" * 10)
                with self.assertRaises(CupxError):
                    CupxFile.from_stream(stream, close_stream=close_stream)
                self.assertEqual(stream.closed, close_stream)

        points = _zip_bytes({"OTHER.TXT": b""})
        stream = io.BytesIO(points)
        with self.assertRaises(ArchiveError):
            CupxFile.from_stream(stream, close_stream=True)
        self.assertTrue(stream.closed)

    def test_quoted_fields_survive_container(self):
        original = CupFile(
            waypoints=[
                Waypoint(name="A", country="S,I", latitude=51.5, longitude=7.25, description="line1\nline2"),
                Waypoint(name="B", description="x\u2028y"),
            ],
            tasks=[Task(description="", waypoint_names=["A", "", "B"], options={"Note": "a, b"})],
        )
        data = CupxWriter(original).add_picture("a.jpg", b"a").write_to_bytes()
        cupx, warnings = _open(data)
        with cupx:
            self.assertEqual(warnings, [])
            self.assertEqual(cupx.waypoints[0].country, "S,I")
            self.assertEqual(cupx.cup_file, original)

    def test_three_archives_first_ignored(self):
        first = _zip_bytes({"readme.txt": b"unrelated archive"})
        data = first + self._writer().write_to_bytes()
        cupx, warnings = _open(data)
        with cupx:
            self.assertEqual(warnings, [])
            self.assertEqual(cupx.picture_names(), ["a.jpg", "b.jpg"])
            self.assertEqual(cupx.read_picture_bytes("b.jpg"), bytes(10))
            self.assertEqual(cupx.cup_file, _sample_cup())

    def test_large_points_archive(self):
        original = _many_waypoints(2000)
        data = CupxWriter(original).add_picture("p.jpg", b"picture").write_to_bytes()
        cupx, warnings = _open(data)
        with cupx:
            # Leading terminator sits more than one scan chunk before EOF
            self.assertGreater(cupx.points_range.length, 65536)
            self.assertEqual(warnings, [])
            self.assertEqual(cupx.cup_file, original)
            self.assertEqual(cupx.read_picture_bytes("p.jpg"), b"picture")

    def test_small_scan_chunks(self):
        data = self._writer().write_to_bytes()
        cupx, warnings = _open(data, chunk_size=32)
        with cupx:
            self.assertEqual(warnings, [])
            self.assertEqual(cupx.read_picture_bytes("a.jpg"), bytes([1, 2, 3, 4, 5]))

    def test_case_insensitive_lookup(self):
        data = CupxWriter(CupFile()).add_picture("Photo.JPG", b"jpeg bytes").write_to_bytes()
        cupx, _ = _open(data)
        with cupx:
            self.assertEqual(cupx.picture_names(), ["Photo.JPG"])
            self.assertEqual(cupx.read_picture_bytes("photo.jpg"), b"jpeg bytes")
            self.assertEqual(cupx.read_picture_bytes("PHOTO.JPG"), b"jpeg bytes")

    def test_missing_picture(self):
        cupx, _ = _open(self._writer().write_to_bytes())
        with cupx:
            with self.assertRaises(PictureNotFoundError) as ctx:
                cupx.read_picture("c.jpg")
            self.assertIsInstance(ctx.exception, KeyError)
            self.assertEqual(ctx.exception.filename, "c.jpg")
            self.assertIn("c.jpg", str(ctx.exception))

    def test_foreign_entries_and_prefix_case(self):
        pics = _zip_bytes(
            {
                "PICS/upper.jpg": b"upper",
                "pics/sub/": b"",
                "other/readme.txt": b"not a picture",
                "pics/low.jpg": b"low",
            }
        )
        points = _zip_bytes({"points.cup": b"name,code,country,lat,lon\r\n"})
        cupx, warnings = _open(pics + points)
        with cupx:
            self.assertEqual(warnings, [])
            self.assertEqual(cupx.picture_names(), ["upper.jpg", "low.jpg"])
            self.assertEqual(cupx.read_picture_bytes("UPPER.jpg"), b"upper")
            with self.assertRaises(PictureNotFoundError):
                cupx.read_picture("readme.txt")

    def test_points_entry_missing(self):
        pics = _zip_bytes({"pics/a.jpg": b"a"})
        points = _zip_bytes({"OTHER.TXT": b"name,code,country,lat,lon\r\n"})
        with self.assertRaises(ArchiveError):
            _open(pics + points)

    def test_corrupt_picture_is_scoped(self):
        payload = b"BADPAYLOAD" * 8
        data = bytearray(
            CupxWriter(_sample_cup(), compression=zipfile.ZIP_STORED)
            .add_picture("good.jpg", b"GOODDATA" * 4)
            .add_picture("bad.jpg", payload)
            .write_to_bytes()
        )
        idx = data.find(payload)
        data[idx + 3] ^= 0xFF
        cupx, warnings = _open(bytes(data))
        with cupx:
            self.assertEqual(warnings, [])
            with self.assertRaises(ArchiveError):
                cupx.read_picture_bytes("bad.jpg")
            self.assertEqual(cupx.read_picture_bytes("good.jpg"), b"GOODDATA" * 4)
            self.assertEqual(cupx.cup_file, _sample_cup())

    def test_interleaved_picture_reads(self):
        big = os.urandom(50_000)
        data = CupxWriter(CupFile()).add_picture("big.bin", big).add_picture("small.bin", b"small").write_to_bytes()
        cupx, _ = _open(data)
        with cupx:
            with cupx.read_picture("big.bin") as fh:
                head = fh.read(1000)
                self.assertEqual(cupx.read_picture_bytes("small.bin"), b"small")
                rest = fh.read()
            self.assertEqual(head + rest, big)

    def test_extract_pictures(self):
        cupx, _ = _open(self._writer().write_to_bytes())
        outdir = self.tmp / "extract"
        with cupx:
            written = cupx.extract_pictures(outdir)
        self.assertEqual([p.name for p in written], ["a.jpg", "b.jpg"])
        self.assertEqual((outdir / "a.jpg").read_bytes(), bytes([1, 2, 3, 4, 5]))
        self.assertEqual((outdir / "b.jpg").read_bytes(), bytes(10))

    def test_points_encoding(self):
        latin = 'name,code,country,lat,lon\r\n"Zürich","Z",CH,4722.000N,00833.000E\r\n'.encode("cp1252")
        data = _zip_bytes({"pics/z.jpg": b"z"}) + _zip_bytes({"POINTS.CUP": latin})

        cupx, warnings = _open(data)
        with cupx:
            self.assertEqual(cupx.waypoints[0].name, "Zürich")
            self.assertEqual(len(warnings), 1)
            self.assertIsInstance(warnings[0], CupParseIssue)

        cupx, warnings = _open(data, Encoding.WINDOWS_1252)
        with cupx:
            self.assertEqual(warnings, [])
            self.assertEqual(cupx.waypoints[0].name, "Zürich")

        with self.assertRaises(CupError):
            _open(data, "utf-8")


class CupxWriterTests(unittest.TestCase):
    def setUp(self):
        self._tmp = tempfile.TemporaryDirectory()
        self.addCleanup(self._tmp.cleanup)
        self.tmp = Path(self._tmp.name)

    def test_invalid_names_write_nothing(self):
        for name in ["", "/", "\\", "a/b.jpg", "a\\b.jpg"]:
            with self.subTest(name=name):
                writer = CupxWriter(_sample_cup()).add_picture("ok.jpg", b"x").add_picture(name, b"y")
                sink = io.BytesIO()
                with self.assertRaises(InvalidFilenameError) as ctx:
                    writer.write(sink)
                self.assertEqual(ctx.exception.filename, name)
                self.assertEqual(sink.getvalue(), b"")

    def test_invalid_name_creates_no_file(self):
        out = self.tmp / "bad.cupx"
        writer = CupxWriter(_sample_cup()).add_picture("dir/x.jpg", b"y")
        with self.assertRaises(InvalidFilenameError):
            writer.write_to_path(out)
        self.assertFalse(out.exists())

    def test_failed_write_removes_partial_file(self):
        out = self.tmp / "partial.cupx"
        writer = CupxWriter(_sample_cup()).add_picture("a.jpg", b"a").add_picture("gone.jpg", self.tmp / "gone.jpg")
        with self.assertRaises(FileNotFoundError):
            writer.write_to_path(out)
        self.assertFalse(out.exists())

    def test_missing_source_file(self):
        writer = CupxWriter(_sample_cup()).add_picture("gone.jpg", str(self.tmp / "gone.jpg"))
        with self.assertRaises(OSError):
            writer.write(io.BytesIO())

    def test_duplicate_name_replaces(self):
        writer = (
            CupxWriter(CupFile())
            .add_picture("test.jpg", b"first")
            .add_picture("other.jpg", b"other")
            .add_picture("test.jpg", b"second")
        )
        self.assertEqual(list(writer.pictures), ["test.jpg", "other.jpg"])
        cupx, _ = _open(writer.write_to_bytes())
        with cupx:
            self.assertEqual(cupx.picture_names(), ["test.jpg", "other.jpg"])
            self.assertEqual(cupx.read_picture_bytes("test.jpg"), b"second")

    def test_source_coercion(self):
        writer = CupxWriter(CupFile())
        writer.add_picture("a.jpg", bytearray(b"abc"))
        writer.add_picture("b.jpg", "pictures/b.jpg")
        writer.add_picture("c.jpg", Path("pictures/c.jpg"))
        self.assertEqual(writer.pictures["a.jpg"], BytesSource(b"abc"))
        self.assertEqual(writer.pictures["b.jpg"], PathSource(Path("pictures/b.jpg")))
        self.assertEqual(writer.pictures["c.jpg"], PathSource(Path("pictures/c.jpg")))
        with self.assertRaises(TypeError):
            writer.add_picture("d.jpg", 42)

    def test_non_seekable_sink(self):
        picture = os.urandom(200_000)
        writer = CupxWriter(_sample_cup(), spool_max_size=1024).add_picture("big.jpg", picture)
        sink = _Unseekable()
        writer.write(sink)
        cupx, warnings = _open(sink.getvalue())
        with cupx:
            self.assertEqual(warnings, [])
            self.assertEqual(cupx.read_picture_bytes("big.jpg"), picture)
            self.assertEqual(cupx.cup_file, _sample_cup())

    def test_sink_with_existing_data(self):
        sink = io.BytesIO()
        sink.write(b"HEADER")
        CupxWriter(_sample_cup()).add_picture("a.jpg", b"abc").write(sink)
        data = sink.getvalue()
        self.assertTrue(data.startswith(b"HEADER"))
        cupx, warnings = _open(data)
        with cupx:
            self.assertEqual(warnings, [])
            self.assertEqual(cupx.read_picture_bytes("a.jpg"), b"abc")


if __name__ == "__main__":
    unittest.main()

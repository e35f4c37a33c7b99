from __future__ import annotations

import argparse
import logging
import os
import sys
from pathlib import Path
from typing import List, Optional, Sequence

from cupx import cup
from cupx.cup import CupFile
from cupx.errors import CupxError, CupxWarning
from cupx.reader import CupxFile
from cupx.writer import CupxWriter


def _print_warnings(warnings: Sequence[CupxWarning]) -> None:
    for w in warnings:
        print(f"Warning: {w}", file=sys.stderr)


def cmd_list(archive: str, *, encoding: Optional[str] = None) -> bool:
    """Print picture names, one per line."""
    cupx, warnings = CupxFile.from_path(archive, encoding)
    with cupx:
        _print_warnings(warnings)
        for name in cupx.picture_names():
            print(name)
    return True


def cmd_info(archive: str, *, encoding: Optional[str] = None) -> bool:
    """Print counts, archive ranges and advisories."""
    cupx, warnings = CupxFile.from_path(archive, encoding)
    with cupx:
        print(f"Waypoints: {len(cupx.waypoints)}")
        print(f"Tasks: {len(cupx.tasks)}")
        print(f"Pictures: {len(cupx.picture_names())}")
        pr = cupx.pictures_range
        if pr is not None:
            print(f"Pictures archive: bytes {pr.start}-{pr.end}")
        else:
            print("Pictures archive: none")
        r = cupx.points_range
        print(f"Points archive: bytes {r.start}-{r.end}")
        print(f"Warnings: {len(warnings)}")
        for w in warnings:
            print("  " + str(w))
    return True


def cmd_extract(
    archive: str,
    *,
    outdir: str = ".",
    names: Optional[List[str]] = None,
    cup_path: Optional[str] = None,
    encoding: Optional[str] = None,
    quiet: bool = False,
) -> bool:
    """Extract pictures (all, or the given names) and optionally the CUP record."""
    cupx, warnings = CupxFile.from_path(archive, encoding)
    with cupx:
        _print_warnings(warnings)
        out = Path(outdir)
        out.mkdir(parents=True, exist_ok=True)
        if names:
            for name in names:
                dst = out / Path(name.replace("\\", "/")).name
                dst.write_bytes(cupx.read_picture_bytes(name))
                if not quiet:
                    print(f"  extracting: {name}")
        else:
            for dst in cupx.extract_pictures(out):
                if not quiet:
                    print(f"  extracting: {dst.name}")
        if cup_path:
            Path(cup_path).write_bytes(cup.dumps(cupx.cup_file))
            if not quiet:
                print(f"  writing: {cup_path}")
    return True


def cmd_pack(output: str, pictures: Sequence[str], *, cup_path: Optional[str] = None, encoding: Optional[str] = None) -> bool:
    """Build a CUPX file from a CUP file and picture files."""
    if cup_path:
        with open(cup_path, "rb") as f:
            cup_file, issues = cup.load(f, encoding)
        _print_warnings(issues)
    else:
        cup_file = CupFile()
    writer = CupxWriter(cup_file)
    for p in pictures:
        writer.add_picture(os.path.basename(p), Path(p))
    writer.write_to_path(output)
    print(f"Done: {len(cup_file.waypoints)} waypoints, {len(writer.pictures)} pictures -> {output}")
    return True


def main(argv: Optional[List[str]] = None) -> None:
    ap = argparse.ArgumentParser(prog="cupx", description="Read and write SeeYou CUPX files")
    ap.add_argument("-v", "--verbose", action="store_true", help="Enable debug logging")
    sub = ap.add_subparsers(dest="cmd", required=True)

    enc_choices = ["utf-8", "windows-1252"]

    ap_list = sub.add_parser("list", help="List picture names")
    ap_list.add_argument("archive", help="CUPX file path")
    ap_list.add_argument("--encoding", choices=enc_choices, help="POINTS.CUP encoding (default: detect)")

    ap_info = sub.add_parser("info", help="Show file information")
    ap_info.add_argument("archive", help="CUPX file path")
    ap_info.add_argument("--encoding", choices=enc_choices, help="POINTS.CUP encoding (default: detect)")

    ap_extract = sub.add_parser("extract", help="Extract pictures")
    ap_extract.add_argument("archive", help="CUPX file path")
    ap_extract.add_argument("names", nargs="*", help="Picture names to extract (default: all)")
    ap_extract.add_argument("--outdir", default=".", help="Output directory")
    ap_extract.add_argument("--cup", dest="cup_path", help="Also write POINTS.CUP to this path")
    ap_extract.add_argument("--encoding", choices=enc_choices, help="POINTS.CUP encoding (default: detect)")
    ap_extract.add_argument("--quiet", help="limit outputs to errors only", action="store_true")

    ap_pack = sub.add_parser("pack", help="Create a CUPX file")
    ap_pack.add_argument("output", help="Output CUPX path")
    ap_pack.add_argument("pictures", nargs="*", help="Picture files to include")
    ap_pack.add_argument("--cup", dest="cup_path", help="CUP file with waypoints/tasks (default: empty)")
    ap_pack.add_argument("--encoding", choices=enc_choices, help="Encoding of --cup (default: detect)")

    args = ap.parse_args(argv)
    if args.verbose:
        logging.basicConfig(level=logging.DEBUG, format="%(name)s: %(message)s")
    try:
        if args.cmd == "list":
            cmd_list(args.archive, encoding=args.encoding)
        elif args.cmd == "info":
            cmd_info(args.archive, encoding=args.encoding)
        elif args.cmd == "extract":
            cmd_extract(
                args.archive,
                outdir=args.outdir,
                names=args.names,
                cup_path=args.cup_path,
                encoding=args.encoding,
                quiet=args.quiet,
            )
        elif args.cmd == "pack":
            cmd_pack(args.output, args.pictures, cup_path=args.cup_path, encoding=args.encoding)
        else:
            raise RuntimeError("Unknown command")
    except FileNotFoundError as e:
        print(f"Error: {e}", file=sys.stderr)
        sys.exit(2)
    except (CupxError, OSError, ValueError, RuntimeError) as e:
        print(f"Error: {e}", file=sys.stderr)
        sys.exit(2)


if __name__ == "__main__":
    main()

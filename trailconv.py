#!/usr/bin/env python3
"""
Waymark — Trail Converter
=========================
Convert trail files between GPX, KML and KMZ.

Usage:
    python trailconv.py trail.gpx trail.kmz            # Convert GPX → KMZ
    python trailconv.py trail.kml trail.gpx --merge    # KML → GPX, one segment per track
    python trailconv.py --info trail.gpx               # Show file info only
    python trailconv.py --formats                      # List all formats
    python trailconv.py in.gpx out.kml out.kmz         # Multi-output
"""

from __future__ import annotations
import argparse
import sys
import os
from pathlib import Path

sys.path.insert(0, os.path.dirname(os.path.abspath(__file__)))

from loguru import logger

from errors import WaymarkError
from gpx_format import GpxDocument
from formats import (
    FORMAT_REGISTRY, all_lines, get_format, kml_to_gpx, merge_track_segments,
    read_file, reverse_lines, supported_input_formats, supported_output_formats,
    write_file, SOFT_FULL_NAME,
)


def format_distance(km: float) -> str:
    """Format distance in human-readable form."""
    if km >= 1:
        return f"{km:.2f} km"
    return f"{km * 1000:.0f} m"


def show_info(doc, filepath: str = ""):
    """Display information about a GPX or KML document."""
    if filepath:
        print(f"\n📁 File: {filepath}")
        fmt = get_format(Path(filepath).suffix)
        if fmt:
            print(f"   Format: {fmt.name} (.{fmt.extension})")

    gpx = doc if isinstance(doc, GpxDocument) else kml_to_gpx(doc)
    print(f"   Waypoints: {len(gpx.waypoints)}")

    type_names = {"route": "🛣️  Route", "track": "📍 Track"}
    for i, (kind, name, line) in enumerate(all_lines(doc)):
        print(f"\n   [{i+1}] {type_names[kind]}: {name or '(unnamed)'}")
        print(f"       Points: {len(line)}")
        if len(line):
            print(f"       Distance: {format_distance(line.length())}")
            print(f"       Start: {line.start.lat:.5f}, {line.start.lon:.5f}")
            if len(line) > 1:
                print(f"       End:   {line.end.lat:.5f}, {line.end.lon:.5f}")


def list_formats():
    """Print the format table, grouped by document family."""
    print(f"\n{SOFT_FULL_NAME}")
    print("=" * 60)
    print(f"{'Ext':<7} {'Family':<8} {'Format Name':<28} {'Read':>5} {'Write':>6}")
    print("-" * 60)
    for fmt in sorted(FORMAT_REGISTRY, key=lambda f: (f.family, f.extension)):
        r = "✓" if fmt.reader else "-"
        w = "✓" if fmt.writer else "-"
        print(f"  .{fmt.extension:<4} {fmt.family.upper():<8} {fmt.name:<28} {r:>5} {w:>6}")
    print("-" * 60)
    families = sorted({fmt.family for fmt in FORMAT_REGISTRY})
    print(f"  Total: {len(FORMAT_REGISTRY)} formats in {len(families)} families "
          f"({', '.join(f.upper() for f in families)})")
    print(f"  Readable: {len(supported_input_formats())}, Writable: {len(supported_output_formats())}")
    print("  Any readable format converts to any writable one.\n")


def main(argv=None):
    parser = argparse.ArgumentParser(
        prog="trailconv",
        description=f"{SOFT_FULL_NAME} — GPX / KML / KMZ Trail Converter",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
  %(prog)s trail.gpx trail.kmz           Convert GPX to zipped KML
  %(prog)s --info trail.kml              Show file information
  %(prog)s --formats                     List all supported formats
  %(prog)s in.gpx out.kml out.kmz        Convert to multiple formats
        """)

    parser.add_argument("input", nargs="?", help="Input trail file")
    parser.add_argument("outputs", nargs="*", help="Output trail file(s)")
    parser.add_argument("--formats", action="store_true", help="List supported formats")
    parser.add_argument("--info", action="store_true", help="Show file info")
    parser.add_argument("--verbose", "-v", action="store_true", help="Verbose output")
    parser.add_argument("--reverse", action="store_true", help="Reverse every route and track")
    parser.add_argument("--merge", action="store_true", help="Merge each track's segments into one")
    parser.add_argument("--name", type=str, default="", help="Document name for KML output")

    args = parser.parse_args(argv)

    logger.remove()
    logger.add(sys.stderr, level="DEBUG" if args.verbose else "WARNING")

    if args.formats:
        list_formats()
        return 0

    if not args.input:
        parser.print_help()
        return 1

    try:
        doc = read_file(args.input)
    except (WaymarkError, ValueError) as e:
        print(f"❌ Error reading {args.input}: {e}", file=sys.stderr)
        return 1

    if args.verbose or args.info:
        show_info(doc, args.input)

    if not args.outputs:
        if not args.info:
            print(f"✅ Read {args.input}")
            print("   (specify output file(s) to convert, or use --info for details)")
        return 0

    if args.reverse or args.merge:
        doc = doc if isinstance(doc, GpxDocument) else kml_to_gpx(doc)
        if args.merge:
            merge_track_segments(doc)
        if args.reverse:
            reverse_lines(doc)
            if args.verbose:
                print("   ↩️  Lines reversed")

    for output_path in args.outputs:
        try:
            write_file(output_path, doc, name=args.name)
        except (WaymarkError, ValueError) as e:
            print(f"❌ Error writing {output_path}: {e}", file=sys.stderr)
            return 1
        fmt = get_format(Path(output_path).suffix)
        fmt_name = fmt.name if fmt else Path(output_path).suffix.upper()
        print(f"✅ Converted → {output_path} ({fmt_name})")

    return 0


if __name__ == "__main__":
    sys.exit(main())

"""
Waymark — Format registry & GPX ⇄ KML conversion

Supported formats (read & write): GPX, KML, KMZ
"""

from __future__ import annotations
from dataclasses import dataclass
from pathlib import Path
from typing import Callable, Dict, List, Optional, Union

from loguru import logger

from models import Polyline, merge_lines
from gpx_format import (
    GpxDocument, Route, Track, TrackSegment, Waypoint,
    line_points, line_track_points, load_gpx, save_gpx,
)
from kml_format import (
    Document, Folder, KmlDocument, KmlPoint, LineString, LineStyle,
    MultiGeometry, Placemark, Style, load_kml, save_kml,
)


SOFT_NAME = "Waymark"
SOFT_VERSION = "1.0"
SOFT_FULL_NAME = f"{SOFT_NAME} v{SOFT_VERSION}"

AnyDocument = Union[GpxDocument, KmlDocument]


# ─────────────────────────────────────────────────────────────
# GPX → KML
# ─────────────────────────────────────────────────────────────

# KML colors are aabbggrr
ROUTE_COLORS = [
    ("red",        "961400FF"),
    ("green",      "9678FF00"),
    ("blue",       "96FF7800"),
    ("cyan",       "96F0FF14"),
    ("orange",     "961478FF"),
    ("dark_green", "96008C14"),
    ("purple",     "96FF7878"),
    ("pink",       "96A078F0"),
    ("brown",      "96143C96"),
    ("dark_blue",  "96F01414"),
]
ROUTE_WIDTH = 4.0


def gpx_to_kml(gpx: GpxDocument, name: str = "") -> KmlDocument:
    """
    Build a KML document from GPX data: a Waypoints folder of points, a
    Routes folder of line strings, and a Tracks folder where each track is a
    MultiGeometry with one line string per segment.
    """
    styles = [Style(id=color_name, line_style=LineStyle(color, ROUTE_WIDTH))
              for color_name, color in ROUTE_COLORS]
    folders: List[Folder] = []

    if gpx.waypoints:
        folder = Folder(name="Waypoints", visibility=1)
        for wpt in gpx.waypoints:
            folder.placemarks.append(Placemark(
                name=wpt.name,
                description=wpt.desc,
                visibility=1,
                geometry=KmlPoint.from_position(wpt.position()),
            ))
        folders.append(folder)

    if gpx.routes:
        folder = Folder(name="Routes", visibility=1)
        for i, route in enumerate(gpx.routes):
            folder.placemarks.append(Placemark(
                name=route.name,
                description=route.desc,
                visibility=1,
                style_url=f"#{ROUTE_COLORS[i % len(ROUTE_COLORS)][0]}",
                geometry=LineString.from_line(route.line()),
            ))
        folders.append(folder)

    if gpx.tracks:
        folder = Folder(name="Tracks", visibility=1)
        for i, track in enumerate(gpx.tracks):
            folder.placemarks.append(Placemark(
                name=track.name,
                description=track.desc,
                visibility=1,
                style_url=f"#{ROUTE_COLORS[i % len(ROUTE_COLORS)][0]}",
                geometry=MultiGeometry([LineString.from_line(seg.line())
                                        for seg in track.segments]),
            ))
        folders.append(folder)

    return KmlDocument(document=Document(
        name=name,
        visibility=1,
        open=1,
        styles=styles,
        folders=folders,
    ))


# ─────────────────────────────────────────────────────────────
# KML → GPX
# ─────────────────────────────────────────────────────────────

def kml_to_gpx(kml: KmlDocument) -> GpxDocument:
    """
    Flatten a KML document into GPX: points become waypoints, line strings
    become routes, multi-geometries become tracks (one segment per line).
    """
    gpx = GpxDocument()
    for pm in kml.document.iter_placemarks():
        geometry = pm.geometry
        if isinstance(geometry, KmlPoint):
            pos = geometry.position()
            gpx.waypoints.append(Waypoint(pos.lat, pos.lon, pos.ele,
                                          name=pm.name, desc=pm.description))
        elif isinstance(geometry, LineString):
            gpx.routes.append(Route(pm.name, pm.description,
                                    line_points(geometry.line())))
        elif isinstance(geometry, MultiGeometry):
            gpx.tracks.append(Track(
                name=pm.name,
                desc=pm.description,
                segments=[TrackSegment(line_track_points(ls.line()))
                          for ls in geometry.line_strings],
            ))
    return gpx


# ─────────────────────────────────────────────────────────────
# Line transforms
# ─────────────────────────────────────────────────────────────

def merge_track_segments(gpx: GpxDocument):
    """Join each track's segments into a single segment, points kept as they are."""
    for track in gpx.tracks:
        if len(track.segments) > 1:
            track.segments = [TrackSegment([pt for seg in track.segments for pt in seg.points])]


def reverse_lines(gpx: GpxDocument):
    """Reverse the direction of every route and track."""
    for route in gpx.routes:
        line = route.line()
        line.reverse()
        route.points = line_points(line)
    for track in gpx.tracks:
        track.segments.reverse()
        for segment in track.segments:
            segment.points.reverse()


def all_lines(doc: AnyDocument) -> List[tuple]:
    """(kind, name, Polyline) for every route and track of a document."""
    lines = []
    if isinstance(doc, GpxDocument):
        lines += [("route", r.name, r.line()) for r in doc.routes]
        lines += [("track", t.name, t.line()) for t in doc.tracks]
    else:
        for pm in doc.document.iter_placemarks():
            if isinstance(pm.geometry, MultiGeometry):
                line: Polyline = merge_lines(ls.line() for ls in pm.geometry.line_strings)
                lines.append(("track", pm.name, line))
            elif isinstance(pm.geometry, LineString):
                lines.append(("route", pm.name, pm.geometry.line()))
    return lines


# ─────────────────────────────────────────────────────────────
# Format Registry
# ─────────────────────────────────────────────────────────────

@dataclass
class FormatDesc:
    """Description of a file format."""
    extension: str
    name: str
    family: str
    reader: Optional[Callable] = None
    writer: Optional[Callable] = None


FORMAT_REGISTRY: List[FormatDesc] = [
    FormatDesc("gpx", "GPS Exchange Format",  "gpx", load_gpx, save_gpx),
    FormatDesc("kml", "Google Earth KML",     "kml", load_kml, save_kml),
    FormatDesc("kmz", "Google Earth KMZ",     "kml", load_kml, save_kml),
]

_FORMAT_BY_EXT: Dict[str, FormatDesc] = {fmt.extension: fmt for fmt in FORMAT_REGISTRY}


def get_format(ext: str) -> Optional[FormatDesc]:
    """Get format descriptor by extension."""
    return _FORMAT_BY_EXT.get(ext.lower().lstrip("."))


def supported_input_formats() -> List[str]:
    return sorted(f.extension for f in FORMAT_REGISTRY if f.reader)


def supported_output_formats() -> List[str]:
    return sorted(f.extension for f in FORMAT_REGISTRY if f.writer)


def _format_for(filepath: str) -> FormatDesc:
    ext = Path(filepath).suffix.lower().lstrip(".")
    fmt = get_format(ext)
    if fmt is None:
        raise ValueError(f"Unsupported format: .{ext}\n"
                         f"Supported: {', '.join(supported_input_formats())}")
    return fmt


def read_file(filepath: str) -> AnyDocument:
    """Auto-detect format and read a GPX or KML/KMZ file."""
    return _format_for(filepath).reader(filepath)


def write_file(filepath: str, doc: AnyDocument, name: str = ""):
    """Auto-detect format and write, converting between GPX and KML if needed."""
    fmt = _format_for(filepath)
    if fmt.family == "kml" and isinstance(doc, GpxDocument):
        doc = gpx_to_kml(doc, name or Path(filepath).stem)
    elif fmt.family == "gpx" and isinstance(doc, KmlDocument):
        doc = kml_to_gpx(doc)
    fmt.writer(doc, filepath)
    return doc


def convert(input_path: str, output_path: str, reverse: bool = False,
            merge: bool = False, name: str = "") -> AnyDocument:
    """Convert a GPS file from one format to another."""
    doc = read_file(input_path)
    if reverse or merge:
        gpx = doc if isinstance(doc, GpxDocument) else kml_to_gpx(doc)
        if merge:
            merge_track_segments(gpx)
        if reverse:
            reverse_lines(gpx)
        doc = gpx
    logger.debug(f"Converting {input_path} → {output_path}")
    return write_file(output_path, doc, name=name)

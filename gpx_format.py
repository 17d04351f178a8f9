"""
Waymark — GPX (GPS Exchange Format) reader & writer

Waypoints, routes and multi-segment tracks. Coordinates are written with a
fixed number of digits: 5 for lat/lon, 0 for elevation.
"""

from __future__ import annotations
import re
import xml.etree.ElementTree as ET
from dataclasses import dataclass, field
from datetime import datetime, timedelta, timezone
from typing import Callable, List, Optional

from loguru import logger

from errors import DecodeError, EncodeError, OpenError
from models import FloatFive, FloatZero, Polyline, Position, merge_lines
from xmlio import (
    ENCODE_ERRORS, child_text, detect_namespace, ensure_parent_dir, format_float, local_name,
    parse_float, parse_int, sub_text, tagger, write_bytes, xml_prettify,
)


GPX_ROOT = "gpx"
GPX_VERSION = 1.1


# ─────────────────────────────────────────────────────────────
# Document tree
# ─────────────────────────────────────────────────────────────

@dataclass
class GpxPoint:
    lat: float = 0.0
    lon: float = 0.0
    ele: float = 0.0

    @classmethod
    def from_position(cls, pos: Position) -> GpxPoint:
        return cls(pos.lat, pos.lon, pos.ele)

    def position(self) -> Position:
        return Position(self.lat, self.lon, self.ele)


@dataclass
class Waypoint(GpxPoint):
    name: str = ""
    sym: str = ""
    desc: str = ""


@dataclass
class TrackPoint(GpxPoint):
    time: Optional[datetime] = None


@dataclass
class Route:
    name: str = ""
    desc: str = ""
    points: List[GpxPoint] = field(default_factory=list)

    def line(self) -> Polyline:
        return Polyline(p.position() for p in self.points)


@dataclass
class TrackSegment:
    points: List[TrackPoint] = field(default_factory=list)

    def line(self) -> Polyline:
        return Polyline(p.position() for p in self.points)


@dataclass
class Track:
    leg: int = 0
    name: str = ""
    desc: str = ""
    segments: List[TrackSegment] = field(default_factory=list)

    def line(self) -> Polyline:
        """All segments joined into one path."""
        return merge_lines(seg.line() for seg in self.segments)


@dataclass
class GpxDocument:
    version: float = GPX_VERSION
    xmlns: str = ""
    waypoints: List[Waypoint] = field(default_factory=list)
    tracks: List[Track] = field(default_factory=list)
    routes: List[Route] = field(default_factory=list)


def line_points(line: Polyline) -> List[GpxPoint]:
    return [GpxPoint.from_position(pos) for pos in line]


def line_track_points(line: Polyline) -> List[TrackPoint]:
    return [TrackPoint(pos.lat, pos.lon, pos.ele) for pos in line]


# ─────────────────────────────────────────────────────────────
# Timestamps (RFC 3339)
# ─────────────────────────────────────────────────────────────

_TIME_RE = re.compile(
    r"^(\d{4})-(\d\d)-(\d\d)[Tt](\d\d):(\d\d):(\d\d)(?:\.(\d+))?"
    r"(?:([Zz])|([+-])(\d\d):(\d\d))$"
)


def parse_time(text: str) -> datetime:
    m = _TIME_RE.match(text.strip())
    if not m:
        raise ValueError(f"invalid timestamp {text!r}")
    year, month, day, hour, minute, second, frac, z, sign, off_h, off_m = m.groups()
    micro = int((frac or "0")[:6].ljust(6, "0"))
    if z or sign is None:
        tz = timezone.utc
    else:
        offset = timedelta(hours=int(off_h), minutes=int(off_m))
        tz = timezone(-offset if sign == "-" else offset)
    return datetime(int(year), int(month), int(day), int(hour), int(minute),
                    int(second), micro, tzinfo=tz)


def format_time(dt: datetime) -> str:
    text = (f"{dt.year:04d}-{dt.month:02d}-{dt.day:02d}"
            f"T{dt.hour:02d}:{dt.minute:02d}:{dt.second:02d}")
    if dt.microsecond:
        text += "." + f"{dt.microsecond:06d}".rstrip("0")
    offset = dt.utcoffset()
    if not offset:
        return text + "Z"
    if offset % timedelta(minutes=1):
        raise ValueError(f"UTC offset {offset} is not a whole number of minutes")
    minutes = offset // timedelta(minutes=1)
    sign = "-" if minutes < 0 else "+"
    minutes = abs(minutes)
    return f"{text}{sign}{minutes // 60:02d}:{minutes % 60:02d}"


# ─────────────────────────────────────────────────────────────
# Decode
# ─────────────────────────────────────────────────────────────

def decode_gpx(data: bytes) -> GpxDocument:
    """Parse GPX bytes into a GpxDocument. Raises DecodeError."""
    try:
        root = ET.fromstring(data)
    except ET.ParseError as e:
        raise DecodeError(f"decoding gpx: {e}") from e

    if local_name(root.tag) != GPX_ROOT:
        raise DecodeError(f"decoding gpx: unexpected root element <{local_name(root.tag)}>")

    ns = detect_namespace(root)
    _tag = tagger(ns)
    try:
        return _read_document(root, ns, _tag)
    except ValueError as e:
        raise DecodeError(f"decoding gpx: {e}") from e


def _read_point(elem: ET.Element, _tag: Callable[[str], str], cls=GpxPoint, **extra):
    return cls(
        lat=parse_float(elem.get("lat")),
        lon=parse_float(elem.get("lon")),
        ele=parse_float(child_text(elem, _tag("ele"))),
        **extra,
    )


def _read_document(root: ET.Element, ns: str, _tag) -> GpxDocument:
    doc = GpxDocument(version=parse_float(root.get("version")), xmlns=ns)

    for wpt in root.findall(_tag("wpt")):
        doc.waypoints.append(_read_point(
            wpt, _tag, Waypoint,
            name=child_text(wpt, _tag("name")),
            sym=child_text(wpt, _tag("sym")),
            desc=child_text(wpt, _tag("desc")),
        ))

    for trk in root.findall(_tag("trk")):
        track = Track(
            leg=parse_int(trk.get("leg")),
            name=child_text(trk, _tag("name")),
            desc=child_text(trk, _tag("desc")),
        )
        for trkseg in trk.findall(_tag("trkseg")):
            segment = TrackSegment()
            for trkpt in trkseg.findall(_tag("trkpt")):
                time_text = child_text(trkpt, _tag("time"))
                segment.points.append(_read_point(
                    trkpt, _tag, TrackPoint,
                    time=parse_time(time_text) if time_text.strip() else None,
                ))
            track.segments.append(segment)
        doc.tracks.append(track)

    for rte in root.findall(_tag("rte")):
        route = Route(
            name=child_text(rte, _tag("name")),
            desc=child_text(rte, _tag("desc")),
        )
        for rtept in rte.findall(_tag("rtept")):
            route.points.append(_read_point(rtept, _tag))
        doc.routes.append(route)

    return doc


# ─────────────────────────────────────────────────────────────
# Encode
# ─────────────────────────────────────────────────────────────

def _write_point(parent: ET.Element, tag: str, pt: GpxPoint) -> ET.Element:
    el = ET.SubElement(parent, tag)
    el.set("lat", FloatFive(pt.lat).text())
    el.set("lon", FloatFive(pt.lon).text())
    if pt.ele != 0:
        sub_text(el, "ele", FloatZero(pt.ele).text())
    return el


def _build_tree(doc: GpxDocument) -> ET.Element:
    root = ET.Element(GPX_ROOT)
    root.set("version", format_float(doc.version))
    if doc.xmlns:
        root.set("xmlns", doc.xmlns)

    for wpt in doc.waypoints:
        el = _write_point(root, "wpt", wpt)
        sub_text(el, "name", wpt.name)
        if wpt.sym:
            sub_text(el, "sym", wpt.sym)
        if wpt.desc:
            sub_text(el, "desc", wpt.desc)

    for track in doc.tracks:
        trk = ET.SubElement(root, "trk")
        if track.leg:
            trk.set("leg", str(int(track.leg)))
        sub_text(trk, "name", track.name)
        sub_text(trk, "desc", track.desc)
        for segment in track.segments:
            trkseg = ET.SubElement(trk, "trkseg")
            for pt in segment.points:
                el = _write_point(trkseg, "trkpt", pt)
                if pt.time is not None:
                    sub_text(el, "time", format_time(pt.time))

    for route in doc.routes:
        rte = ET.SubElement(root, "rte")
        sub_text(rte, "name", route.name)
        sub_text(rte, "desc", route.desc)
        for pt in route.points:
            _write_point(rte, "rtept", pt)

    return root


def encode_gpx(doc: GpxDocument) -> bytes:
    """Serialize a GpxDocument to tab-indented GPX bytes. Raises EncodeError."""
    try:
        return xml_prettify(_build_tree(doc))
    except ENCODE_ERRORS as e:
        raise EncodeError(f"encoding gpx: {e}") from e


# ─────────────────────────────────────────────────────────────
# Files
# ─────────────────────────────────────────────────────────────

def load_gpx(filepath: str) -> GpxDocument:
    """Read and decode a GPX file."""
    try:
        with open(filepath, "rb") as f:
            data = f.read()
    except OSError as e:
        raise OpenError(f"reading gpx: {e}", filepath) from e
    try:
        doc = decode_gpx(data)
    except DecodeError as e:
        raise DecodeError(e.message, filepath) from e
    logger.debug(f"Loaded {filepath}: {len(doc.waypoints)} waypoints, "
                 f"{len(doc.tracks)} tracks, {len(doc.routes)} routes")
    return doc


def save_gpx(doc: GpxDocument, filepath: str):
    """Encode and write a GPX file, creating parent directories."""
    ensure_parent_dir(filepath)
    try:
        payload = encode_gpx(doc)
    except EncodeError as e:
        raise EncodeError(e.message, filepath) from e
    write_bytes(filepath, payload)
    logger.debug(f"Saved {filepath} ({len(payload)} bytes)")

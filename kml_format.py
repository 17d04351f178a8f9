"""
Waymark — KML (Google Earth) reader & writer, with KMZ archives

A KML document is a styled tree: Document → Folders → Placemarks, each
Placemark carrying one geometry (Point, LineString or MultiGeometry).
KML coordinates are "lon,lat,ele" with lon first, the reverse of GPX.
A .kmz file is a zip archive holding a single KML entry.
"""

from __future__ import annotations
import xml.etree.ElementTree as ET
import zipfile
import zlib
from dataclasses import dataclass, field
from typing import Iterator, List, Optional, Union

from loguru import logger

from errors import DecodeError, EncodeError, OpenError, WriteError
from models import FloatFive, FloatOne, FloatZero, Polyline, Position
from xmlio import (
    ENCODE_ERRORS, child_text, detect_namespace, ensure_parent_dir, format_bool,
    format_float, local_name, parse_bool, parse_float, parse_int, safe_float,
    sub_text, tagger, write_bytes, xml_prettify,
)


KML_NS = "http://www.opengis.net/kml/2.2"
KML_ROOT = "kml"
KMZ_EXTENSION = ".kmz"
KMZ_ENTRY_NAME = "doc.kml"


# ─────────────────────────────────────────────────────────────
# Coordinates
# ─────────────────────────────────────────────────────────────

def parse_coordinates(text: str) -> Position:
    """
    Parse a single "lon,lat,ele" tuple. Unparseable fields read as 0 and a
    missing elevation is 0, so bad input never raises.
    """
    parts = text.strip().split(",")
    if len(parts) < 2:
        logger.warning(f"Incomplete coordinates {text!r}, missing fields read as 0")
    lon = safe_float(parts[0])
    lat = safe_float(parts[1]) if len(parts) > 1 else 0.0
    ele = safe_float(parts[2]) if len(parts) > 2 else 0.0
    return Position(lat, lon, ele)


def parse_line(text: str) -> Polyline:
    return Polyline(parse_coordinates(token) for token in text.split())


def position_coordinates(pos: Position) -> str:
    return f"{FloatFive(pos.lon).text()},{FloatFive(pos.lat).text()},{FloatZero(pos.ele).text()}"


def line_coordinates(line: Polyline) -> str:
    return " ".join(position_coordinates(pos) for pos in line)


# ─────────────────────────────────────────────────────────────
# Document tree
# ─────────────────────────────────────────────────────────────

@dataclass
class Icon:
    href: str = ""


@dataclass
class HotSpot:
    x: float = 0.0
    y: float = 0.0
    xunits: str = ""
    yunits: str = ""


@dataclass
class LineStyle:
    color: str = ""
    width: float = 0.0


@dataclass
class IconStyle:
    color: str = ""
    scale: float = 0.0
    icon: Optional[Icon] = None
    hot_spot: Optional[HotSpot] = None


@dataclass
class LabelStyle:
    color: str = ""
    scale: float = 0.0


@dataclass
class ListStyle:
    scale: float = 0.0
    item_icon: Optional[Icon] = None


@dataclass
class Style:
    id: str = ""
    line_style: Optional[LineStyle] = None
    icon_style: Optional[IconStyle] = None
    label_style: Optional[LabelStyle] = None
    list_style: Optional[ListStyle] = None


@dataclass
class Pair:
    key: str = ""
    style_url: str = ""


@dataclass
class StyleMap:
    id: str = ""
    pairs: List[Pair] = field(default_factory=list)


@dataclass
class KmlPoint:
    coordinates: str = ""

    @classmethod
    def from_position(cls, pos: Position) -> KmlPoint:
        return cls(position_coordinates(pos))

    def position(self) -> Position:
        return parse_coordinates(self.coordinates)


@dataclass
class LineString:
    extrude: bool = False
    tessellate: bool = False
    altitude_mode: str = ""
    coordinates: str = ""

    @classmethod
    def from_line(cls, line: Polyline, extrude: bool = True, tessellate: bool = True,
                  altitude_mode: str = "clampToGround") -> LineString:
        return cls(extrude, tessellate, altitude_mode, line_coordinates(line))

    def line(self) -> Polyline:
        return parse_line(self.coordinates)


@dataclass
class MultiGeometry:
    line_strings: List[LineString] = field(default_factory=list)


Geometry = Union[KmlPoint, LineString, MultiGeometry]


@dataclass
class Placemark:
    name: str = ""
    description: str = ""
    visibility: int = 0
    open: int = 0
    style_url: str = ""
    geometry: Optional[Geometry] = None
    style: Optional[Style] = None
    legacy: str = ""

    def get_line_string(self) -> Optional[LineString]:
        """The direct LineString, else the first one of a MultiGeometry."""
        if isinstance(self.geometry, LineString):
            return self.geometry
        if isinstance(self.geometry, MultiGeometry) and self.geometry.line_strings:
            return self.geometry.line_strings[0]
        return None

    def get_point(self) -> Optional[KmlPoint]:
        return self.geometry if isinstance(self.geometry, KmlPoint) else None


@dataclass
class Folder:
    name: str = ""
    description: str = ""
    visibility: int = 0
    open: int = 0
    placemarks: List[Placemark] = field(default_factory=list)
    folders: List[Folder] = field(default_factory=list)

    def iter_placemarks(self) -> Iterator[Placemark]:
        """Placemarks of this folder, then of each sub-folder, depth first."""
        yield from self.placemarks
        for sub in self.folders:
            yield from sub.iter_placemarks()


@dataclass
class Document:
    name: str = ""
    description: str = ""
    visibility: int = 0
    open: int = 0
    styles: List[Style] = field(default_factory=list)
    style_maps: List[StyleMap] = field(default_factory=list)
    placemarks: List[Placemark] = field(default_factory=list)
    folders: List[Folder] = field(default_factory=list)

    def iter_placemarks(self) -> Iterator[Placemark]:
        yield from self.placemarks
        for folder in self.folders:
            yield from folder.iter_placemarks()


@dataclass
class KmlDocument:
    xmlns: str = KML_NS
    document: Document = field(default_factory=Document)


# ─────────────────────────────────────────────────────────────
# Decode
# ─────────────────────────────────────────────────────────────

def decode_kml(data: bytes) -> KmlDocument:
    """Parse KML bytes into a KmlDocument. Raises DecodeError."""
    try:
        root = ET.fromstring(data)
    except ET.ParseError as e:
        raise DecodeError(f"decoding kml: {e}") from e

    if local_name(root.tag) != KML_ROOT:
        raise DecodeError(f"decoding kml: unexpected root element <{local_name(root.tag)}>")

    ns = detect_namespace(root)
    reader = _KmlReader(ns)
    try:
        doc_el = root.find(reader.tag("Document"))
        document = reader.document(doc_el) if doc_el is not None else Document()
    except ValueError as e:
        raise DecodeError(f"decoding kml: {e}") from e
    return KmlDocument(xmlns=ns, document=document)


class _KmlReader:
    """Element → dataclass conversion for one namespace."""

    def __init__(self, ns: str):
        self.tag = tagger(ns)

    def _text(self, el: ET.Element, name: str) -> str:
        return child_text(el, self.tag(name))

    def _int(self, el: ET.Element, name: str) -> int:
        return parse_int(self._text(el, name))

    def _float(self, el: ET.Element, name: str) -> float:
        return parse_float(self._text(el, name))

    def document(self, el: ET.Element) -> Document:
        return Document(
            name=self._text(el, "name"),
            description=self._text(el, "description"),
            visibility=self._int(el, "visibility"),
            open=self._int(el, "open"),
            styles=[self.style(s) for s in el.findall(self.tag("Style"))],
            style_maps=[self.style_map(s) for s in el.findall(self.tag("StyleMap"))],
            placemarks=[self.placemark(p) for p in el.findall(self.tag("Placemark"))],
            folders=[self.folder(f) for f in el.findall(self.tag("Folder"))],
        )

    def folder(self, el: ET.Element) -> Folder:
        return Folder(
            name=self._text(el, "name"),
            description=self._text(el, "description"),
            visibility=self._int(el, "visibility"),
            open=self._int(el, "open"),
            placemarks=[self.placemark(p) for p in el.findall(self.tag("Placemark"))],
            folders=[self.folder(f) for f in el.findall(self.tag("Folder"))],
        )

    def placemark(self, el: ET.Element) -> Placemark:
        style_el = el.find(self.tag("Style"))
        return Placemark(
            name=self._text(el, "name"),
            description=self._text(el, "description"),
            visibility=self._int(el, "visibility"),
            open=self._int(el, "open"),
            style_url=self._text(el, "styleUrl"),
            geometry=self.geometry(el),
            style=self.style(style_el) if style_el is not None else None,
            legacy=el.get("legacy", ""),
        )

    def geometry(self, el: ET.Element) -> Optional[Geometry]:
        # A direct LineString takes precedence over a MultiGeometry
        found = []
        for name in ("LineString", "MultiGeometry", "Point"):
            child = el.find(self.tag(name))
            if child is not None:
                found.append((name, child))
        if not found:
            return None
        if len(found) > 1:
            logger.warning(f"Placemark {self._text(el, 'name')!r} has "
                           f"{', '.join(n for n, _ in found)}; keeping {found[0][0]}")
        name, child = found[0]
        if name == "LineString":
            return self.line_string(child)
        if name == "MultiGeometry":
            return MultiGeometry([self.line_string(ls)
                                  for ls in child.findall(self.tag("LineString"))])
        return KmlPoint(self._text(child, "coordinates"))

    def line_string(self, el: ET.Element) -> LineString:
        return LineString(
            extrude=parse_bool(self._text(el, "extrude")),
            tessellate=parse_bool(self._text(el, "tessellate")),
            altitude_mode=self._text(el, "altitudeMode"),
            coordinates=self._text(el, "coordinates"),
        )

    def icon(self, el: Optional[ET.Element]) -> Optional[Icon]:
        if el is None:
            return None
        return Icon(self._text(el, "href"))

    def style(self, el: ET.Element) -> Style:
        style = Style(id=el.get("id", ""))
        line_el = el.find(self.tag("LineStyle"))
        if line_el is not None:
            style.line_style = LineStyle(self._text(line_el, "color"),
                                         self._float(line_el, "width"))
        icon_el = el.find(self.tag("IconStyle"))
        if icon_el is not None:
            style.icon_style = IconStyle(
                color=self._text(icon_el, "color"),
                scale=self._float(icon_el, "scale"),
                icon=self.icon(icon_el.find(self.tag("Icon"))),
            )
            hot_el = icon_el.find(self.tag("hotSpot"))
            if hot_el is not None:
                style.icon_style.hot_spot = HotSpot(
                    parse_float(hot_el.get("x")), parse_float(hot_el.get("y")),
                    hot_el.get("xunits", ""), hot_el.get("yunits", ""),
                )
        label_el = el.find(self.tag("LabelStyle"))
        if label_el is not None:
            style.label_style = LabelStyle(self._text(label_el, "color"),
                                           self._float(label_el, "scale"))
        list_el = el.find(self.tag("ListStyle"))
        if list_el is not None:
            style.list_style = ListStyle(self._float(list_el, "scale"),
                                         self.icon(list_el.find(self.tag("ItemIcon"))))
        return style

    def style_map(self, el: ET.Element) -> StyleMap:
        return StyleMap(
            id=el.get("id", ""),
            pairs=[Pair(self._text(p, "key"), self._text(p, "styleUrl"))
                   for p in el.findall(self.tag("Pair"))],
        )


# ─────────────────────────────────────────────────────────────
# Encode
# ─────────────────────────────────────────────────────────────

def _write_icon(parent: ET.Element, tag: str, icon: Icon):
    el = ET.SubElement(parent, tag)
    if icon.href:
        sub_text(el, "href", icon.href)


def _write_style(parent: ET.Element, style: Style):
    el = ET.SubElement(parent, "Style")
    if style.id:
        el.set("id", style.id)

    if style.line_style is not None:
        ls = ET.SubElement(el, "LineStyle")
        if style.line_style.color:
            sub_text(ls, "color", style.line_style.color)
        sub_text(ls, "width", FloatOne(style.line_style.width).text())

    if style.icon_style is not None:
        icon_style = style.icon_style
        ic = ET.SubElement(el, "IconStyle")
        if icon_style.color:
            sub_text(ic, "color", icon_style.color)
        sub_text(ic, "scale", format_float(icon_style.scale))
        if icon_style.icon is not None:
            _write_icon(ic, "Icon", icon_style.icon)
        if icon_style.hot_spot is not None:
            hs = ET.SubElement(ic, "hotSpot")
            hs.set("x", format_float(icon_style.hot_spot.x))
            hs.set("y", format_float(icon_style.hot_spot.y))
            if icon_style.hot_spot.xunits:
                hs.set("xunits", icon_style.hot_spot.xunits)
            if icon_style.hot_spot.yunits:
                hs.set("yunits", icon_style.hot_spot.yunits)

    if style.label_style is not None:
        lb = ET.SubElement(el, "LabelStyle")
        if style.label_style.color:
            sub_text(lb, "color", style.label_style.color)
        sub_text(lb, "scale", FloatOne(style.label_style.scale).text())

    if style.list_style is not None:
        li = ET.SubElement(el, "ListStyle")
        sub_text(li, "scale", FloatOne(style.list_style.scale).text())
        if style.list_style.item_icon is not None:
            _write_icon(li, "ItemIcon", style.list_style.item_icon)


def _write_line_string(parent: ET.Element, ls: LineString):
    el = ET.SubElement(parent, "LineString")
    sub_text(el, "extrude", format_bool(ls.extrude))
    sub_text(el, "tessellate", format_bool(ls.tessellate))
    sub_text(el, "altitudeMode", ls.altitude_mode)
    sub_text(el, "coordinates", ls.coordinates)


def _write_geometry(parent: ET.Element, geometry: Geometry):
    if isinstance(geometry, KmlPoint):
        pt = ET.SubElement(parent, "Point")
        sub_text(pt, "coordinates", geometry.coordinates)
    elif isinstance(geometry, LineString):
        _write_line_string(parent, geometry)
    elif isinstance(geometry, MultiGeometry):
        mg = ET.SubElement(parent, "MultiGeometry")
        for ls in geometry.line_strings:
            _write_line_string(mg, ls)
    else:
        raise TypeError(f"unsupported geometry {type(geometry).__name__}")


def _write_placemark(parent: ET.Element, pm: Placemark):
    el = ET.SubElement(parent, "Placemark")
    if pm.legacy:
        el.set("legacy", pm.legacy)
    sub_text(el, "name", pm.name)
    sub_text(el, "description", pm.description)
    sub_text(el, "visibility", str(int(pm.visibility)))
    sub_text(el, "open", str(int(pm.open)))
    if pm.style_url:
        sub_text(el, "styleUrl", pm.style_url)
    if pm.geometry is not None:
        _write_geometry(el, pm.geometry)
    if pm.style is not None:
        _write_style(el, pm.style)


def _write_folder(parent: ET.Element, folder: Folder):
    el = ET.SubElement(parent, "Folder")
    sub_text(el, "name", folder.name)
    sub_text(el, "description", folder.description)
    sub_text(el, "visibility", str(int(folder.visibility)))
    sub_text(el, "open", str(int(folder.open)))
    for pm in folder.placemarks:
        _write_placemark(el, pm)
    for sub in folder.folders:
        _write_folder(el, sub)


def _build_tree(doc: KmlDocument) -> ET.Element:
    root = ET.Element(KML_ROOT)
    if doc.xmlns:
        root.set("xmlns", doc.xmlns)

    d = doc.document
    el = ET.SubElement(root, "Document")
    if d.name:
        sub_text(el, "name", d.name)
    if d.description:
        sub_text(el, "description", d.description)
    sub_text(el, "visibility", str(int(d.visibility)))
    sub_text(el, "open", str(int(d.open)))
    for style in d.styles:
        _write_style(el, style)
    for style_map in d.style_maps:
        sm = ET.SubElement(el, "StyleMap")
        if style_map.id:
            sm.set("id", style_map.id)
        for pair in style_map.pairs:
            p = ET.SubElement(sm, "Pair")
            if pair.key:
                sub_text(p, "key", pair.key)
            if pair.style_url:
                sub_text(p, "styleUrl", pair.style_url)
    for pm in d.placemarks:
        _write_placemark(el, pm)
    for folder in d.folders:
        _write_folder(el, folder)
    return root


def encode_kml(doc: KmlDocument) -> bytes:
    """Serialize a KmlDocument to tab-indented KML bytes. Raises EncodeError."""
    try:
        return xml_prettify(_build_tree(doc))
    except ENCODE_ERRORS as e:
        raise EncodeError(f"encoding kml: {e}") from e


# ─────────────────────────────────────────────────────────────
# KMZ archives
# ─────────────────────────────────────────────────────────────

def is_kmz(filepath: str) -> bool:
    return filepath.lower().endswith(KMZ_EXTENSION)


def read_first_entry(filepath: str) -> bytes:
    """Bytes of the first entry of a zip archive. Other entries are ignored."""
    try:
        archive = zipfile.ZipFile(filepath)
    except (OSError, zipfile.BadZipFile) as e:
        raise OpenError(f"opening archive: {e}", filepath) from e

    with archive:
        entries = archive.infolist()
        if not entries:
            raise OpenError("unzipping archive: no entries", filepath)
        if len(entries) > 1:
            logger.warning(f"{filepath} has {len(entries)} entries, "
                           f"reading only {entries[0].filename!r}")
        try:
            with archive.open(entries[0]) as f:
                return f.read()
        except (OSError, zipfile.BadZipFile, zlib.error,
                RuntimeError, NotImplementedError, EOFError) as e:
            raise OpenError(f"unzipping {entries[0].filename!r}: {e}", filepath) from e


def write_single_entry(filepath: str, name: str, payload: bytes):
    """Write a zip archive holding exactly one entry."""
    try:
        with zipfile.ZipFile(filepath, "w", compression=zipfile.ZIP_DEFLATED) as archive:
            archive.writestr(name, payload)
    except OSError as e:
        raise WriteError(f"writing archive: {e}", filepath) from e


# ─────────────────────────────────────────────────────────────
# Files
# ─────────────────────────────────────────────────────────────

def load_kml(filepath: str) -> KmlDocument:
    """Read a .kml file, or the first entry of a .kmz archive."""
    if is_kmz(filepath):
        data = read_first_entry(filepath)
    else:
        try:
            with open(filepath, "rb") as f:
                data = f.read()
        except OSError as e:
            raise OpenError(f"opening kml: {e}", filepath) from e
    try:
        doc = decode_kml(data)
    except DecodeError as e:
        raise DecodeError(e.message, filepath) from e
    logger.debug(f"Loaded {filepath}: {len(doc.document.folders)} folders")
    return doc


def save_kml(doc: KmlDocument, filepath: str):
    """Encode and write a .kml file, or a single-entry .kmz archive."""
    ensure_parent_dir(filepath)
    try:
        payload = encode_kml(doc)
    except EncodeError as e:
        raise EncodeError(e.message, filepath) from e
    if is_kmz(filepath):
        write_single_entry(filepath, KMZ_ENTRY_NAME, payload)
    else:
        write_bytes(filepath, payload)
    logger.debug(f"Saved {filepath} ({len(payload)} bytes)")

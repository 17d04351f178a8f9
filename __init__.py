"""
Waymark — GPX & KML Trail Converter
===================================
Read, write and convert trail data between GPX, KML and KMZ, merge and
match lines, and annotate trails from a JSON data file.

Quick start:
    python trailconv.py trail.gpx trail.kmz                 # CLI
    python annotate.py legs.gpx wpts.gpx data.json out.gpx  # Annotator

Library:
    from formats import convert, read_file, write_file
    convert("trail.gpx", "trail.kmz")
"""

from models import Position, Polyline, distance, is_close, merge_lines
from errors import WaymarkError, OpenError, DecodeError, EncodeError, WriteError, AnnotationError
from gpx_format import GpxDocument, decode_gpx, encode_gpx, load_gpx, save_gpx
from kml_format import KmlDocument, decode_kml, encode_kml, load_kml, save_kml
from formats import (
    read_file, write_file, convert, gpx_to_kml, kml_to_gpx,
    supported_input_formats, supported_output_formats,
    get_format, FORMAT_REGISTRY,
)

__version__ = "1.0.0"
__all__ = [
    "Position", "Polyline", "distance", "is_close", "merge_lines",
    "WaymarkError", "OpenError", "DecodeError", "EncodeError", "WriteError", "AnnotationError",
    "GpxDocument", "decode_gpx", "encode_gpx", "load_gpx", "save_gpx",
    "KmlDocument", "decode_kml", "encode_kml", "load_kml", "save_kml",
    "read_file", "write_file", "convert", "gpx_to_kml", "kml_to_gpx",
    "supported_input_formats", "supported_output_formats",
    "get_format", "FORMAT_REGISTRY",
]

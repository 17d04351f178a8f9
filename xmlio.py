"""
Waymark — XML helpers shared by the GPX and KML adapters
"""

from __future__ import annotations
import os
import re
import xml.etree.ElementTree as ET
from xml.dom import minidom
from xml.parsers.expat import ExpatError
from typing import Callable, Optional

from loguru import logger

from errors import WriteError


XML_ENCODING = "UTF-8"

# Raised while building or pretty-printing a tree from bad field values
ENCODE_ERRORS = (TypeError, ValueError, AttributeError, ExpatError)


# ─────────────────────────────────────────────────────────────
# Reading
# ─────────────────────────────────────────────────────────────

def detect_namespace(root: ET.Element) -> str:
    m = re.match(r"\{(.+?)\}", root.tag)
    return m.group(1) if m else ""


def local_name(tag: str) -> str:
    return tag.rsplit("}", 1)[-1]


def tagger(ns: str) -> Callable[[str], str]:
    """Qualify bare element names with the document namespace, if any."""
    def _tag(name: str) -> str:
        return f"{{{ns}}}{name}" if ns else name
    return _tag


def child_text(elem: ET.Element, tag: str) -> str:
    el = elem.find(tag)
    if el is not None and el.text:
        return el.text
    return ""


def parse_float(text: Optional[str]) -> float:
    """Strict float; blank or missing is 0. Raises ValueError otherwise."""
    if text is None or not text.strip():
        return 0.0
    return float(text.strip())


def parse_int(text: Optional[str]) -> int:
    if text is None or not text.strip():
        return 0
    return int(text.strip())


_TRUE = {"1", "t", "T", "true", "TRUE", "True"}
_FALSE = {"0", "f", "F", "false", "FALSE", "False"}


def parse_bool(text: Optional[str]) -> bool:
    if text is None or not text.strip():
        return False
    text = text.strip()
    if text in _TRUE:
        return True
    if text in _FALSE:
        return False
    raise ValueError(f"invalid boolean {text!r}")


def safe_float(s: str, default: float = 0.0) -> float:
    """Lenient float: anything unparseable becomes `default`."""
    try:
        return float(s.strip())
    except (ValueError, TypeError, AttributeError):
        logger.warning(f"Unparseable number {s!r}, using {default}")
        return default


# ─────────────────────────────────────────────────────────────
# Writing
# ─────────────────────────────────────────────────────────────

def format_float(value: float) -> str:
    """Shortest text that reads back as the same float ("1", "1.25")."""
    text = repr(float(value))
    return text[:-2] if text.endswith(".0") else text


def format_bool(value: bool) -> str:
    return "true" if value else "false"


def sub_text(parent: ET.Element, tag: str, text: str) -> ET.Element:
    el = ET.SubElement(parent, tag)
    el.text = text
    return el


def xml_prettify(root: ET.Element) -> bytes:
    """XML declaration plus tab-indented document, UTF-8 encoded."""
    rough = ET.tostring(root, encoding="unicode")
    return minidom.parseString(rough).toprettyxml(indent="\t", encoding=XML_ENCODING)


def ensure_parent_dir(filepath: str):
    parent = os.path.dirname(filepath)
    if parent:
        try:
            os.makedirs(parent, exist_ok=True)
        except OSError as e:
            raise WriteError(f"creating directory {parent!r}: {e}", filepath) from e


def write_bytes(filepath: str, payload: bytes):
    try:
        with open(filepath, "wb") as f:
            f.write(payload)
    except OSError as e:
        raise WriteError(f"writing file: {e}", filepath) from e

"""
Waymark — error types

Every failure surfaced by the readers and writers is a WaymarkError; the
subclass says which step failed and `path` (when known) says where.
"""

from __future__ import annotations
from typing import Optional


class WaymarkError(Exception):
    def __init__(self, message: str, path: Optional[str] = None):
        self.message = message
        self.path = path
        super().__init__(f"{message} ({path})" if path else message)


class OpenError(WaymarkError):
    """A file or archive could not be opened or unzipped."""


class DecodeError(WaymarkError):
    """Bytes were not well-formed XML or not the expected document."""


class EncodeError(WaymarkError):
    """A document could not be serialized."""


class WriteError(WaymarkError):
    """Serialized bytes could not be written or the archive not finalized."""


class AnnotationError(WaymarkError):
    """Metadata does not line up with the GPX being annotated."""

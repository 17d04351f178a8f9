"""
Waymark — GPX & KML Trail Converter
Geo primitives: Position, Polyline, distance, merge_lines
"""

from __future__ import annotations
import math
from dataclasses import dataclass
from typing import Iterable, Iterator, List, Tuple


# ─────────────────────────────────────────────────────────────
# Fixed-precision text
# ─────────────────────────────────────────────────────────────

class FixedFloat(float):
    """A float that always renders with a fixed number of fractional digits."""
    digits = 0

    def text(self) -> str:
        return f"{float(self):.{self.digits}f}"


class FloatFive(FixedFloat):
    digits = 5


class FloatZero(FixedFloat):
    digits = 0


class FloatOne(FixedFloat):
    digits = 1


# ─────────────────────────────────────────────────────────────
# Position
# ─────────────────────────────────────────────────────────────

# Degrees of arc → statute miles → km
_NM_PER_DEGREE = 60 * 1.1515
_KM_PER_MILE = 1.609344


def distance(a: Position, b: Position) -> float:
    """
    Great-circle distance in km (spherical law of cosines).
    Elevation is ignored.
    """
    radlat1 = math.pi * a.lat / 180
    radlat2 = math.pi * b.lat / 180
    radtheta = math.pi * (a.lon - b.lon) / 180

    dist = math.sin(radlat1) * math.sin(radlat2) + \
        math.cos(radlat1) * math.cos(radlat2) * math.cos(radtheta)
    # Rounding can push the sum just outside acos' domain
    dist = max(-1.0, min(1.0, dist))

    dist = math.degrees(math.acos(dist))
    return dist * _NM_PER_DEGREE * _KM_PER_MILE


def is_close(a: Position, b: Position, km: float) -> bool:
    return distance(a, b) < km


@dataclass(frozen=True)
class Position:
    """A point on the earth: degrees latitude/longitude, meters elevation."""
    lat: float = 0.0
    lon: float = 0.0
    ele: float = 0.0

    def distance(self, other: Position) -> float:
        return distance(self, other)

    def is_close(self, other: Position, km: float) -> bool:
        return is_close(self, other, km)


# ─────────────────────────────────────────────────────────────
# Polyline
# ─────────────────────────────────────────────────────────────

class Polyline:
    """An ordered path of positions. Order is the direction of travel."""

    def __init__(self, points: Iterable[Position] = ()):
        self._points: List[Position] = list(points)

    def __len__(self) -> int:
        return len(self._points)

    def __getitem__(self, index) -> Position:
        return self._points[index]

    def __iter__(self) -> Iterator[Position]:
        return iter(self._points)

    def __eq__(self, other) -> bool:
        if not isinstance(other, Polyline):
            return NotImplemented
        return self._points == other._points

    def __repr__(self) -> str:
        return f"Polyline({self._points!r})"

    @property
    def start(self) -> Position:
        return self._points[0]

    @property
    def end(self) -> Position:
        return self._points[-1]

    def append(self, pos: Position):
        self._points.append(pos)

    def copy(self) -> Polyline:
        return Polyline(self._points)

    def reverse(self):
        """Reverse the direction of travel in place."""
        self._points.reverse()

    def length(self) -> float:
        """Total length in km."""
        total = 0.0
        for i in range(1, len(self._points)):
            total += distance(self._points[i - 1], self._points[i])
        return total

    def closest_match(self, pos: Position, km: float) -> Tuple[bool, int]:
        """
        Find the point nearest to pos among those closer than km.
        Returns (found, index). On equal distances the earlier point wins.
        """
        found = False
        index = 0
        best = 0.0
        for i, candidate in enumerate(self._points):
            if not is_close(candidate, pos, km):
                continue
            d = distance(candidate, pos)
            if not found or d < best:
                index = i
                best = d
            found = True
        return found, index


def merge_lines(lines: Iterable[Polyline]) -> Polyline:
    """Concatenate lines end to start. Shared endpoints are kept."""
    merged = Polyline()
    for line in lines:
        merged._points.extend(line)
    return merged

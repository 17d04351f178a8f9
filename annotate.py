#!/usr/bin/env python3
"""
Waymark — Trail annotator
=========================
Turn a GPX of per-leg tracks and a GPX of waypoints into one GPX of
annotated routes and waypoints, using descriptions from a JSON data file.

Usage:
    python annotate.py routes.gpx waypoints.gpx data.json trail.gpx

Data file layout (keys are case-insensitive):
    {
      "Legs":      [{"Leg": 1, "From": "...", "To": "...",
                     "Highlights": "...", "Description": "..."}],
      "Waypoints": [{"Waypoint": "...", "Description": "...",
                     "Terrain": "...", "Summary": "..."}],
      "Mapping":   [{"Gpx": "name in gpx", "Data": "name in data"}]
    }

A mapping with an empty "Data" marks a GPX waypoint that has no data; an
empty "Gpx" marks a data entry that has no waypoint.
"""

from __future__ import annotations
import argparse
import json
import os
import sys
from dataclasses import dataclass, field
from typing import Dict, List, Set

sys.path.insert(0, os.path.dirname(os.path.abspath(__file__)))

from loguru import logger

from errors import AnnotationError, DecodeError, OpenError, WaymarkError
from gpx_format import GpxDocument, Route, Waypoint, line_points, load_gpx, save_gpx


@dataclass
class LegData:
    leg: int = 0
    from_: str = ""
    to: str = ""
    highlights: str = ""
    description: str = ""


@dataclass
class WaypointData:
    waypoint: str = ""
    description: str = ""
    terrain: str = ""
    summary: str = ""


@dataclass
class MappingData:
    gpx: str = ""
    data: str = ""


def _lower_keys(record: dict) -> dict:
    return {str(k).lower(): v for k, v in record.items()}


@dataclass
class TrailData:
    legs: List[LegData] = field(default_factory=list)
    waypoints: List[WaypointData] = field(default_factory=list)
    mapping: List[MappingData] = field(default_factory=list)

    @classmethod
    def from_dict(cls, raw: dict) -> TrailData:
        raw = _lower_keys(raw)
        legs = []
        for rec in raw.get("legs") or []:
            rec = _lower_keys(rec)
            legs.append(LegData(
                leg=int(rec.get("leg", 0)),
                from_=rec.get("from", ""),
                to=rec.get("to", ""),
                highlights=rec.get("highlights", ""),
                description=rec.get("description", ""),
            ))
        waypoints = []
        for rec in raw.get("waypoints") or []:
            rec = _lower_keys(rec)
            waypoints.append(WaypointData(
                waypoint=rec.get("waypoint", ""),
                description=rec.get("description", ""),
                terrain=rec.get("terrain", ""),
                summary=rec.get("summary", ""),
            ))
        mapping = []
        for rec in raw.get("mapping") or []:
            rec = _lower_keys(rec)
            mapping.append(MappingData(rec.get("gpx", ""), rec.get("data", "")))
        return cls(legs, waypoints, mapping)

    @classmethod
    def load(cls, filepath: str) -> TrailData:
        try:
            with open(filepath, "r", encoding="utf-8") as f:
                text = f.read()
        except OSError as e:
            raise OpenError(f"reading data: {e}", filepath) from e
        try:
            return cls.from_dict(json.loads(text))
        except (ValueError, TypeError, AttributeError) as e:
            raise DecodeError(f"decoding data: {e}", filepath) from e


def _leg_route(track, leg: LegData, total: int) -> Route:
    highlights = leg.highlights.replace("•", "★")
    return Route(
        name=f"Leg {leg.leg} / {total}: {leg.from_} to {leg.to}",
        desc=f"{highlights}\n\n{leg.description}",
        points=line_points(track.line()),
    )


def _annotated_waypoint(wpt: Waypoint, name: str, data: WaypointData) -> Waypoint:
    desc = "★ " + data.description
    if data.terrain:
        desc += "\n\nTerrain: " + data.terrain
    if data.summary:
        name += f" ({data.summary})"
    return Waypoint(wpt.lat, wpt.lon, wpt.ele, name=name, sym=wpt.sym, desc=desc)


def annotate(tracks: GpxDocument, waypoints: GpxDocument, data: TrailData) -> GpxDocument:
    """
    One route per track, titled and described from its leg, followed by
    every waypoint renamed and described from the waypoint data.
    Raises AnnotationError when GPX and data do not match up.
    """
    renames: Dict[str, str] = {}
    gpx_only: Set[str] = set()
    data_only: Set[str] = set()
    for m in data.mapping:
        if not m.data:
            gpx_only.add(m.gpx)
        elif not m.gpx:
            data_only.add(m.data)
        else:
            renames[m.gpx] = m.data

    legs = {leg.leg: leg for leg in data.legs}
    waypoint_data = {w.waypoint: w for w in data.waypoints}

    out = GpxDocument()
    for track in tracks.tracks:
        leg = legs.get(track.leg)
        if leg is None:
            raise AnnotationError(f"no data for leg {track.leg} (track {track.name!r})")
        out.routes.append(_leg_route(track, leg, len(data.legs)))

    done: Set[str] = set()
    for wpt in waypoints.waypoints:
        name = renames.get(wpt.name, wpt.name)
        info = waypoint_data.get(name)
        if info is None:
            if name not in gpx_only:
                raise AnnotationError(f"no data for waypoint {name!r}")
            out.waypoints.append(Waypoint(wpt.lat, wpt.lon, wpt.ele,
                                          name=name, sym=wpt.sym, desc=wpt.desc))
            continue
        done.add(name)
        out.waypoints.append(_annotated_waypoint(wpt, name, info))

    for name in waypoint_data:
        if name not in done and name not in data_only:
            raise AnnotationError(f"waypoint data {name!r} matches no gpx waypoint")

    logger.debug(f"Annotated {len(out.routes)} routes, {len(out.waypoints)} waypoints")
    return out


def main():
    parser = argparse.ArgumentParser(
        prog="annotate",
        description="Build an annotated trail GPX from leg tracks, waypoints and a data file",
    )
    parser.add_argument("routes", help="GPX with one track per leg")
    parser.add_argument("waypoints", help="GPX with the trail waypoints")
    parser.add_argument("data", help="JSON data file")
    parser.add_argument("output", help="Output GPX file")
    parser.add_argument("--verbose", "-v", action="store_true", help="Verbose output")
    args = parser.parse_args()

    logger.remove()
    logger.add(sys.stderr, level="DEBUG" if args.verbose else "WARNING")

    try:
        data = TrailData.load(args.data)
        out = annotate(load_gpx(args.routes), load_gpx(args.waypoints), data)
        save_gpx(out, args.output)
    except WaymarkError as e:
        print(f"❌ {e}", file=sys.stderr)
        return 1

    print(f"✅ Wrote {args.output} ({len(out.routes)} routes, {len(out.waypoints)} waypoints)")
    return 0


if __name__ == "__main__":
    sys.exit(main())

"""Decode TopoJSON topologies into GeoJSON.

Arcs are delta-decoded and de-quantized when the topology carries a
``transform``; negative arc indexes (~i) refer to arc i reversed. Every
object in ``objects`` contributes its features, in document order.
"""

from __future__ import annotations

import logging

from geodata.features import FeatureCollection, from_geojson

logger = logging.getLogger(__name__)


def topojson_to_geojson(topology: dict) -> dict:
    """Convert a TopoJSON Topology dict to a GeoJSON FeatureCollection dict."""
    transform = topology.get("transform")
    arcs = [_decode_arc(arc, transform) for arc in topology.get("arcs") or []]
    decoder = _GeometryDecoder(arcs, transform)

    features: list[dict] = []
    for obj in (topology.get("objects") or {}).values():
        features.extend(decoder.features(obj))
    return {"type": "FeatureCollection", "features": features}


def parse_topojson(topology: dict) -> FeatureCollection:
    return from_geojson(topojson_to_geojson(topology))


def _decode_arc(arc: list, transform: dict | None) -> list[list[float]]:
    if not transform:
        return [list(p) for p in arc]
    sx, sy = transform["scale"]
    tx, ty = transform["translate"]
    x = y = 0
    decoded = []
    for point in arc:
        x += point[0]
        y += point[1]
        decoded.append([x * sx + tx, y * sy + ty, *point[2:]])
    return decoded


class _GeometryDecoder:
    def __init__(self, arcs: list, transform: dict | None) -> None:
        self._arcs = arcs
        self._transform = transform

    def features(self, obj: dict) -> list[dict]:
        if not isinstance(obj, dict):
            return []
        if obj.get("type") == "GeometryCollection":
            found = []
            for child in obj.get("geometries") or []:
                found.extend(self.features(child))
            return found
        try:
            geometry = self.geometry(obj)
        except (KeyError, IndexError, TypeError, ValueError) as e:
            logger.warning(f"Skipping malformed TopoJSON {obj.get('type')} ({type(e).__name__}: {e})")
            return []
        if geometry is None:
            return []
        feature = {
            "type": "Feature",
            "properties": dict(obj.get("properties") or {}),
            "geometry": geometry,
        }
        if "id" in obj:
            feature["id"] = obj["id"]
        return [feature]

    def geometry(self, obj: dict) -> dict | None:
        kind = obj.get("type")
        if kind == "Point":
            return {"type": kind, "coordinates": self._point(obj["coordinates"])}
        if kind == "MultiPoint":
            return {"type": kind, "coordinates": [self._point(p) for p in obj["coordinates"]]}
        if kind == "LineString":
            return {"type": kind, "coordinates": self._line(obj["arcs"])}
        if kind == "MultiLineString":
            return {"type": kind, "coordinates": [self._line(a) for a in obj["arcs"]]}
        if kind == "Polygon":
            return {"type": kind, "coordinates": [self._line(r) for r in obj["arcs"]]}
        if kind == "MultiPolygon":
            return {
                "type": kind,
                "coordinates": [[self._line(r) for r in poly] for poly in obj["arcs"]],
            }
        return None

    def _point(self, point: list) -> list[float]:
        if not self._transform:
            return list(point)
        sx, sy = self._transform["scale"]
        tx, ty = self._transform["translate"]
        return [point[0] * sx + tx, point[1] * sy + ty, *point[2:]]

    def _line(self, arc_indexes: list[int]) -> list[list[float]]:
        coords: list[list[float]] = []
        for index in arc_indexes:
            arc = self._arcs[index] if index >= 0 else self._arcs[~index][::-1]
            coords.extend(arc[1:] if coords else arc)
        return coords

"""Canonical feature collection — the shape every converter targets.

All coordinates are stored in GeoJSON convention: [lng, lat] or [lng, lat, alt].
Only Point, LineString and Polygon geometries exist in the canonical form;
multi-part GeoJSON geometries are split into one feature per part.
"""

from __future__ import annotations

import copy
from dataclasses import dataclass, field

GEOMETRY_TYPES = ("Point", "LineString", "Polygon")
WGS84 = "EPSG:4326"

_MULTI_TYPES = {
    "MultiPoint": "Point",
    "MultiLineString": "LineString",
    "MultiPolygon": "Polygon",
}


@dataclass
class Geometry:
    """A single geometry.

    Attributes:
        type: One of "Point", "LineString", "Polygon".
        coordinates: GeoJSON-style coordinate arrays.
            Point: [lng, lat]
            LineString: [[lng, lat], [lng, lat], ...]
            Polygon: [[[lng, lat], ...], ...]  (list of rings)
    """

    type: str
    coordinates: list


@dataclass
class Feature:
    """A geometry plus its properties and optional per-feature style.

    ``style`` holds rendering overrides written by the join correlator or the
    constraint filter (fill, fillColor, outline, outlineColor, strokeColor).
    """

    geometry: Geometry
    properties: dict = field(default_factory=dict)
    style: dict | None = None
    feature_id: str | None = None


@dataclass
class FeatureCollection:
    """An ordered sequence of features with an optional CRS annotation.

    ``crs`` is an ``authority:code`` string; None means implied WGS84.
    """

    features: list[Feature] = field(default_factory=list)
    crs: str | None = None
    name: str = ""

    def __len__(self) -> int:
        return len(self.features)

    def __iter__(self):
        return iter(self.features)

    @property
    def is_wgs84(self) -> bool:
        return self.crs is None or self.crs == WGS84

    def to_geojson(self) -> dict:
        """Export to a GeoJSON FeatureCollection dict."""
        data: dict = {
            "type": "FeatureCollection",
            "features": [_feature_to_geojson(f) for f in self.features],
        }
        if self.crs is not None:
            authority, _, code = self.crs.partition(":")
            data["crs"] = {"type": authority, "properties": {"code": code}}
        if self.name:
            data["name"] = self.name
        return data


def crs_code(data: dict) -> str | None:
    """Read the CRS annotation of a GeoJSON dict as ``authority:code``.

    Understands the legacy ``{"type": "EPSG", "properties": {"code": ...}}``
    form and the named form ``{"type": "name", "properties": {"name": ...}}``
    with either ``EPSG:3857`` or ``urn:ogc:def:crs:EPSG::3857`` names.
    """
    crs = data.get("crs")
    if not isinstance(crs, dict):
        return None
    props = crs.get("properties") or {}
    crs_type = str(crs.get("type", ""))

    if crs_type.upper() == "EPSG" and "code" in props:
        return f"EPSG:{props['code']}"

    if crs_type.lower() == "name":
        name = str(props.get("name", ""))
        if name.upper().endswith("CRS84"):
            return WGS84
        parts = [p for p in name.split(":") if p]
        if len(parts) >= 2:
            # urn:ogc:def:crs:EPSG::3857 -> EPSG, 3857
            return f"{parts[-2].upper()}:{parts[-1]}"
    return None


def from_geojson(data) -> FeatureCollection:
    """Build a FeatureCollection from a parsed GeoJSON object.

    Accepts a FeatureCollection, a single Feature, a bare geometry, or a
    list of any of these. Features without a usable geometry are skipped.
    """
    collection = FeatureCollection()
    if isinstance(data, list):
        for item in data:
            collection.features.extend(from_geojson(item).features)
        return collection
    if not isinstance(data, dict):
        return collection

    collection.crs = crs_code(data)
    collection.name = str(data.get("name", "") or "")

    kind = data.get("type")
    if kind == "FeatureCollection":
        for idx, raw in enumerate(data.get("features") or []):
            collection.features.extend(_parse_feature(raw, idx))
    elif kind == "Feature":
        collection.features.extend(_parse_feature(data, 0))
    elif kind is not None:
        collection.features.extend(
            _parse_feature({"type": "Feature", "geometry": data}, 0)
        )
    return collection


def _parse_feature(raw, idx: int) -> list[Feature]:
    """Parse a single GeoJSON Feature dict into one or more Features."""
    if not isinstance(raw, dict):
        return []

    geometry = raw.get("geometry")
    if not isinstance(geometry, dict):
        return []

    properties = raw.get("properties") or {}
    if not isinstance(properties, dict):
        properties = {}

    feature_id = raw.get("id")
    if feature_id is not None and not isinstance(feature_id, str):
        feature_id = str(feature_id)

    return [
        Feature(geometry=geom, properties=properties, feature_id=feature_id)
        for geom in _split_geometry(geometry)
    ]


def _split_geometry(geometry: dict) -> list[Geometry]:
    geom_type = geometry.get("type", "")
    coordinates = geometry.get("coordinates")

    if geom_type == "GeometryCollection":
        parts: list[Geometry] = []
        for child in geometry.get("geometries") or []:
            if isinstance(child, dict):
                parts.extend(_split_geometry(child))
        return parts
    if coordinates is None:
        return []
    if geom_type in _MULTI_TYPES:
        single = _MULTI_TYPES[geom_type]
        return [Geometry(single, part) for part in coordinates]
    if geom_type in GEOMETRY_TYPES:
        return [Geometry(geom_type, coordinates)]
    return []


def _feature_to_geojson(feature: Feature) -> dict:
    data = {
        "type": "Feature",
        "geometry": {
            "type": feature.geometry.type,
            "coordinates": copy.deepcopy(feature.geometry.coordinates),
        },
        "properties": dict(feature.properties),
    }
    if feature.feature_id is not None:
        data["id"] = feature.feature_id
    return data

"""Convert ESRI REST query JSON (``f=json``/``f=pjson``) to GeoJSON.

Only the first path of a polyline and the first ring of a polygon are read;
multi-part geometries are truncated to their first part.
"""

from __future__ import annotations

import logging

from geodata.features import FeatureCollection, from_geojson

logger = logging.getLogger(__name__)

# ESRI well-known IDs that alias EPSG codes
_ESRI_WKID_ALIASES = {102100: 3857, 102113: 3857}


def esri_rest_to_geojson(obj: dict) -> dict:
    """Convert an ESRI REST feature set dict to a GeoJSON dict.

    Objects that are already a FeatureCollection, or that carry no
    ``geometryType``/``features``, are returned unchanged.
    """
    if (
        not isinstance(obj, dict)
        or obj.get("geometryType") is None
        or not isinstance(obj.get("features"), list)
        or obj.get("type") == "FeatureCollection"
    ):
        return obj

    geometry_type = obj["geometryType"]
    features = []
    for raw in obj["features"]:
        if not isinstance(raw, dict) or not isinstance(raw.get("geometry"), dict):
            continue
        geometry = _convert_geometry(geometry_type, raw["geometry"])
        if geometry is None:
            continue
        features.append(
            {
                "type": "Feature",
                "properties": dict(raw.get("attributes") or {}),
                "geometry": geometry,
            }
        )

    return {
        "type": "FeatureCollection",
        "crs": {"type": "EPSG", "properties": {"code": _crs_code(obj)}},
        "features": features,
    }


def parse_esri_rest(obj: dict) -> FeatureCollection:
    """ESRI REST feature set dict -> canonical FeatureCollection."""
    return from_geojson(esri_rest_to_geojson(obj))


def _convert_geometry(geometry_type: str, geometry: dict) -> dict | None:
    if geometry_type == "esriGeometryPoint":
        if "x" not in geometry or "y" not in geometry:
            return None
        return {"type": "Point", "coordinates": [geometry["x"], geometry["y"]]}

    if geometry_type == "esriGeometryPolyline":
        paths = geometry.get("paths") or []
        if not paths:
            return None
        if len(paths) > 1:
            logger.debug(f"Polyline has {len(paths)} paths; keeping the first")
        return {"type": "LineString", "coordinates": paths[0]}

    if geometry_type == "esriGeometryPolygon":
        rings = geometry.get("rings") or geometry.get("paths") or []
        if not rings:
            return None
        if len(rings) > 1:
            logger.debug(f"Polygon has {len(rings)} rings; keeping the first")
        return {"type": "Polygon", "coordinates": [rings[0]]}

    logger.warning(f"Unsupported ESRI geometry type: {geometry_type}")
    return None


def _crs_code(obj: dict) -> str:
    ref = obj.get("spatialReference") or {}
    wkid = ref.get("latestWkid") or ref.get("wkid")
    if not wkid:
        return "4326"
    try:
        wkid = int(wkid)
    except (TypeError, ValueError):
        return "4326"
    return str(_ESRI_WKID_ALIASES.get(wkid, wkid))

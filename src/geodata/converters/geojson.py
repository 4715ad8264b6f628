"""Parse GeoJSON (RFC 7946) and TopoJSON text into a FeatureCollection.

GeoJSON passes through unchanged apart from splitting multi-part
geometries; a TopoJSON Topology is decoded first.
"""

from __future__ import annotations

import json
import logging

from geodata.converters.topojson import parse_topojson
from geodata.features import FeatureCollection, from_geojson

logger = logging.getLogger(__name__)


def parse_geojson(geojson) -> FeatureCollection:
    """Parse GeoJSON/TopoJSON text (or an already-decoded object).

    Returns:
        FeatureCollection with parsed features. Empty on parse errors.
    """
    if isinstance(geojson, (str, bytes)):
        try:
            data = json.loads(geojson)
        except (json.JSONDecodeError, UnicodeDecodeError) as e:
            logger.warning(f"GeoJSON parse error: {e}")
            return FeatureCollection()
    else:
        data = geojson

    if isinstance(data, dict) and data.get("type") == "Topology":
        return parse_topojson(data)

    collection = from_geojson(data)
    if not collection.name and collection.features:
        first_name = collection.features[0].properties.get("name", "")
        if first_name:
            collection.name = f"GeoJSON ({first_name}...)"
    return collection

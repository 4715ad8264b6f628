"""Format converters — every source payload becomes a canonical FeatureCollection.

Service responses: ESRI REST JSON and ESRI/OGC GML. Raw data files:
GeoJSON, TopoJSON, KML/KMZ, GPX (parsed with xml.etree.ElementTree) and
CZML (passed through).
"""

from geodata.converters.czml import czml_extent, parse_czml
from geodata.converters.esri_gml import (
    esri_gml_to_geojson,
    needs_axis_swap,
    parse_esri_gml,
    swap_axes,
    xml_to_object,
)
from geodata.converters.esri_rest import esri_rest_to_geojson, parse_esri_rest
from geodata.converters.geojson import parse_geojson
from geodata.converters.gpx import parse_gpx
from geodata.converters.kml import parse_kml, parse_kmz
from geodata.converters.topojson import parse_topojson, topojson_to_geojson

__all__ = [
    "czml_extent",
    "esri_gml_to_geojson",
    "esri_rest_to_geojson",
    "needs_axis_swap",
    "parse_czml",
    "parse_esri_gml",
    "parse_esri_rest",
    "parse_geojson",
    "parse_gpx",
    "parse_kml",
    "parse_kmz",
    "parse_topojson",
    "swap_axes",
    "topojson_to_geojson",
    "xml_to_object",
]

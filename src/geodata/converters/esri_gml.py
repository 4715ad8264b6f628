"""Convert ESRI WFS GML responses to GeoJSON.

The XML is first turned into a plain object tree (``xml_to_object``), then
every member literally named Point, LineString or Polygon becomes one
feature. GML position lists are latitude first; coordinates are swapped to
[lng, lat]. Feature attributes are not extracted.
"""

from __future__ import annotations

import re
import xml.etree.ElementTree as ET
from typing import Callable

from geodata.features import FeatureCollection, from_geojson
from geodata.geometry import map_runs, walk_coordinate_tree

GEOMETRY_MEMBERS = ("Point", "LineString", "Polygon")

# Marker of a gazetteer service that returns lon/lat despite advertising lat/lon
GAZETTEER_MARKER = "gazetter"

_POSITION_KEYS = ("pos", "posList", "coordinates")
_SEPARATORS = re.compile(r"[ ,\s]+")


def xml_to_object(xml_string: str):
    """Parse XML into nested dicts keyed by local element name.

    Namespace prefixes are dropped, attributes become keys, repeated
    elements become lists and text-only elements become strings. The root
    element itself is not included.

    Raises:
        xml.etree.ElementTree.ParseError: If the text is not well-formed.
    """
    root = ET.fromstring(xml_string)
    return _element_to_object(root)


def _local_name(tag: str) -> str:
    return tag.split("}", 1)[1] if "}" in tag else tag.split(":")[-1]


def _element_to_object(elem: ET.Element):
    children = list(elem)
    text = (elem.text or "").strip()
    if not children and not elem.attrib:
        return text

    obj: dict = {}
    for key, value in elem.attrib.items():
        obj[_local_name(key)] = value
    for child in children:
        name = _local_name(child.tag)
        value = _element_to_object(child)
        if name in obj:
            existing = obj[name]
            if isinstance(existing, list):
                existing.append(value)
            else:
                obj[name] = [existing, value]
        else:
            obj[name] = value
    if text:
        obj["text"] = text
    return obj


def find_members(tree, names: tuple[str, ...], visit: Callable[[str, object], None]) -> None:
    """Call ``visit(name, value)`` for every member named in ``names``.

    Matched members are not searched further.
    """
    if isinstance(tree, list):
        for item in tree:
            find_members(item, names, visit)
        return
    if not isinstance(tree, dict):
        return
    for key, value in tree.items():
        if key in names:
            for item in value if isinstance(value, list) else [value]:
                visit(key, item)
        elif isinstance(value, (dict, list)):
            find_members(value, names, visit)


def gml_to_coords(pos_list: str) -> list[list[float]]:
    """Parse ``"lat lng lat lng ..."`` (or comma separated) to [[lng, lat], ...]."""
    values = [v for v in _SEPARATORS.split(pos_list.strip()) if v]
    coords = []
    for i in range(0, len(values) - 1, 2):
        try:
            coords.append([float(values[i + 1]), float(values[i])])
        except ValueError:
            continue
    return coords


def _first_position_text(member) -> str | None:
    found: list[str] = []

    def _collect(_name, value):
        if not found:
            if isinstance(value, dict):
                value = value.get("text", "")
            if isinstance(value, str) and value:
                found.append(value)

    find_members(member, _POSITION_KEYS, _collect)
    return found[0] if found else None


def _convert_member(geometry_type: str, member) -> dict | None:
    text = _first_position_text(member)
    if text is None:
        return None
    coords = gml_to_coords(text)
    if not coords:
        return None
    if geometry_type == "Point":
        coordinates = coords[0]
    elif geometry_type == "Polygon":
        coordinates = [coords]
    else:
        coordinates = coords
    return {
        "type": "Feature",
        "properties": {},
        "geometry": {"type": geometry_type, "coordinates": coordinates},
    }


def esri_gml_to_geojson(tree) -> dict:
    """Convert an XML object tree of a GML feature response to GeoJSON."""
    features: list[dict] = []

    def _visit(name: str, member) -> None:
        feature = _convert_member(name, member)
        if feature is not None:
            features.append(feature)

    members = tree.get("featureMember") if isinstance(tree, dict) else None
    if members is None and isinstance(tree, dict):
        members = tree.get("featureMembers")
    find_members(members if members is not None else tree, GEOMETRY_MEMBERS, _visit)

    return {
        "type": "FeatureCollection",
        "crs": {"type": "EPSG", "properties": {"code": "4326"}},
        "features": features,
    }


def parse_esri_gml(tree) -> FeatureCollection:
    """XML object tree -> canonical FeatureCollection."""
    return from_geojson(esri_gml_to_geojson(tree))


def swap_axes(collection: FeatureCollection) -> None:
    """Swap the first two axes of every position in place."""

    def _swap(point: list) -> list:
        return [point[1], point[0], *point[2:]]

    walk_coordinate_tree(
        collection,
        lambda coords: map_runs(coords, lambda run: [_swap(p) for p in run], _swap),
    )


def needs_axis_swap(source_text: str) -> bool:
    """Heuristic for one gazetteer service that flips its axes."""
    return GAZETTEER_MARKER in source_text

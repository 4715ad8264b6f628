"""Translate GPX 1.0/1.1 to a canonical FeatureCollection.

Handles wpt (waypoint) -> Point, trk/trkseg/trkpt -> one LineString per
segment, rte/rtept -> LineString. GPX carries lat/lon attributes (latitude
first); positions are stored as [lng, lat] or [lng, lat, ele].
"""

from __future__ import annotations

import logging
import xml.etree.ElementTree as ET

from geodata.features import Feature, FeatureCollection, Geometry

logger = logging.getLogger(__name__)


def parse_gpx(gpx_string: str) -> FeatureCollection:
    """Parse a GPX XML string into a FeatureCollection.

    Returns:
        Collection of parsed features. Empty on parse errors.
    """
    try:
        root = ET.fromstring(gpx_string)
    except ET.ParseError as e:
        logger.warning(f"GPX parse error: {e}")
        return FeatureCollection()

    ns = _detect_namespace(root)
    features: list[Feature] = []

    for idx, wpt in enumerate(root.findall(f"{ns}wpt")):
        feature = _parse_waypoint(wpt, ns, idx)
        if feature is not None:
            features.append(feature)

    for idx, trk in enumerate(root.findall(f"{ns}trk")):
        features.extend(_parse_track(trk, ns, idx))

    for idx, rte in enumerate(root.findall(f"{ns}rte")):
        feature = _parse_route(rte, ns, idx)
        if feature is not None:
            features.append(feature)

    metadata = root.find(f"{ns}metadata")
    name = _get_child_text(metadata, "name", ns) if metadata is not None else ""
    return FeatureCollection(features=features, name=name)


def _detect_namespace(root: ET.Element) -> str:
    if "{" in root.tag:
        return root.tag.split("}")[0] + "}"
    return ""


def _get_child_text(parent: ET.Element, tag: str, ns: str) -> str:
    elem = parent.find(f"{ns}{tag}")
    if elem is not None and elem.text:
        return elem.text.strip()
    return ""


def _parse_position(elem: ET.Element, ns: str) -> list[float] | None:
    """[lng, lat] or [lng, lat, ele] from an element with lat/lon attributes."""
    try:
        lat = float(elem.get("lat", ""))
        lon = float(elem.get("lon", ""))
    except ValueError:
        return None

    ele = _get_child_text(elem, "ele", ns)
    if ele:
        try:
            return [lon, lat, float(ele)]
        except ValueError:
            pass
    return [lon, lat]


def _common_properties(elem: ET.Element, ns: str) -> dict:
    properties: dict = {}
    for tag, key in (("name", "name"), ("desc", "description"), ("time", "time")):
        value = _get_child_text(elem, tag, ns)
        if value:
            properties[key] = value
    return properties


def _parse_waypoint(wpt: ET.Element, ns: str, idx: int) -> Feature | None:
    position = _parse_position(wpt, ns)
    if position is None:
        return None
    return Feature(
        geometry=Geometry("Point", position),
        properties=_common_properties(wpt, ns),
        feature_id=f"gpx-wpt-{idx}",
    )


def _parse_track(trk: ET.Element, ns: str, idx: int) -> list[Feature]:
    properties = _common_properties(trk, ns)
    features = []
    for seg_idx, seg in enumerate(trk.findall(f"{ns}trkseg")):
        coords = [
            p for p in (_parse_position(pt, ns) for pt in seg.findall(f"{ns}trkpt"))
            if p is not None
        ]
        if len(coords) < 2:
            continue
        features.append(
            Feature(
                geometry=Geometry("LineString", coords),
                properties=dict(properties),
                feature_id=f"gpx-trk-{idx}-{seg_idx}",
            )
        )
    return features


def _parse_route(rte: ET.Element, ns: str, idx: int) -> Feature | None:
    coords = [
        p for p in (_parse_position(pt, ns) for pt in rte.findall(f"{ns}rtept"))
        if p is not None
    ]
    if len(coords) < 2:
        return None
    return Feature(
        geometry=Geometry("LineString", coords),
        properties=_common_properties(rte, ns),
        feature_id=f"gpx-rte-{idx}",
    )

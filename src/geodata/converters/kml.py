"""Translate KML 2.2/2.3 (and zipped KMZ) to a canonical FeatureCollection.

Handles Placemark/Point, Placemark/LineString, Placemark/Polygon and the
same geometries nested in MultiGeometry. Extracts name, description,
ExtendedData/Data values and inline styles (LineStyle color/width,
PolyStyle color). KML coordinates are "lng,lat,alt lng,lat,alt".
"""

from __future__ import annotations

import io
import logging
import xml.etree.ElementTree as ET
import zipfile

from geodata.features import Feature, FeatureCollection, Geometry

logger = logging.getLogger(__name__)


def parse_kml(kml_string: str) -> FeatureCollection:
    """Parse a KML XML string into a FeatureCollection.

    Args:
        kml_string: Raw KML XML content.

    Returns:
        Collection of parsed features. Empty on parse errors.
    """
    try:
        root = ET.fromstring(kml_string)
    except ET.ParseError as e:
        logger.warning(f"KML parse error: {e}")
        return FeatureCollection()

    ns = _detect_namespace(root)

    doc_name = ""
    doc = root.find(f"{ns}Document")
    if doc is not None:
        doc_name = _get_child_text(doc, "name", ns)

    features: list[Feature] = []
    for idx, placemark in enumerate(root.iter(f"{ns}Placemark")):
        features.extend(_parse_placemark(placemark, ns, idx))

    return FeatureCollection(features=features, name=doc_name)


def parse_kmz(data: bytes) -> FeatureCollection:
    """Parse a KMZ archive: the first ``.kml`` entry (doc.kml preferred)."""
    try:
        archive = zipfile.ZipFile(io.BytesIO(data))
    except zipfile.BadZipFile as e:
        logger.warning(f"KMZ is not a zip archive: {e}")
        return FeatureCollection()

    with archive:
        names = [n for n in archive.namelist() if n.lower().endswith(".kml")]
        if not names:
            logger.warning("KMZ archive contains no KML document")
            return FeatureCollection()
        names.sort(key=lambda n: (n.lower() != "doc.kml", n))
        text = archive.read(names[0]).decode("utf-8", errors="replace")
    return parse_kml(text)


def _detect_namespace(root: ET.Element) -> str:
    """Detect KML namespace from root element tag."""
    if "{" in root.tag:
        return root.tag.split("}")[0] + "}"
    return ""


def _get_child_text(parent: ET.Element, tag: str, ns: str) -> str:
    elem = parent.find(f"{ns}{tag}")
    if elem is not None and elem.text:
        return elem.text.strip()
    return ""


def _parse_placemark(pm: ET.Element, ns: str, idx: int) -> list[Feature]:
    """Parse a Placemark into one feature per contained geometry."""
    properties: dict = {}
    name = _get_child_text(pm, "name", ns)
    description = _get_child_text(pm, "description", ns)
    if name:
        properties["name"] = name
    if description:
        properties["description"] = description
    properties.update(_parse_extended_data(pm, ns))

    style = _parse_style(pm, ns) or None

    geometries = []
    for tag in ("Point", "LineString", "Polygon"):
        for elem in pm.iter(f"{ns}{tag}"):
            geometry = _parse_geometry(tag, elem, ns)
            if geometry is not None:
                geometries.append(geometry)

    return [
        Feature(
            geometry=geometry,
            properties=dict(properties),
            style=dict(style) if style else None,
            feature_id=f"kml-{idx}" if len(geometries) == 1 else f"kml-{idx}-{part}",
        )
        for part, geometry in enumerate(geometries)
    ]


def _parse_geometry(tag: str, elem: ET.Element, ns: str) -> Geometry | None:
    if tag == "Polygon":
        rings = _parse_polygon_rings(elem, ns)
        return Geometry("Polygon", rings) if rings else None

    coords = _parse_coordinates(elem, ns)
    if not coords:
        return None
    if tag == "Point":
        return Geometry("Point", coords[0])
    return Geometry("LineString", coords)


def _parse_coordinate_string(coord_str: str) -> list[list[float]]:
    """Parse 'lng,lat[,alt] lng,lat[,alt] ...' into coordinate lists."""
    coords = []
    for token in coord_str.strip().split():
        parts = token.split(",")
        if len(parts) < 2:
            continue
        try:
            coord = [float(parts[0]), float(parts[1])]
            if len(parts) >= 3 and parts[2]:
                coord.append(float(parts[2]))
        except ValueError:
            continue
        coords.append(coord)
    return coords


def _parse_coordinates(geom_elem: ET.Element, ns: str) -> list[list[float]]:
    coord_elem = geom_elem.find(f"{ns}coordinates")
    if coord_elem is None or not coord_elem.text:
        return []
    return _parse_coordinate_string(coord_elem.text)


def _parse_polygon_rings(polygon_elem: ET.Element, ns: str) -> list[list[list[float]]]:
    """Outer boundary first, then inner boundaries (holes)."""
    rings = []
    for boundary in ("outerBoundaryIs", "innerBoundaryIs"):
        for elem in polygon_elem.findall(f"{ns}{boundary}"):
            ring = elem.find(f"{ns}LinearRing")
            if ring is None:
                continue
            coords = _parse_coordinates(ring, ns)
            if coords:
                rings.append(coords)
    return rings


def _parse_extended_data(pm: ET.Element, ns: str) -> dict:
    values: dict = {}
    extended = pm.find(f"{ns}ExtendedData")
    if extended is None:
        return values
    for data in extended.iter(f"{ns}Data"):
        key = data.get("name")
        if key:
            values[key] = _get_child_text(data, "value", ns)
    for simple in extended.iter(f"{ns}SimpleData"):
        key = simple.get("name")
        if key:
            values[key] = (simple.text or "").strip()
    return values


def _kml_color_to_css(abgr: str) -> str:
    """KML colors are aabbggrr hex; convert to #rrggbb."""
    abgr = abgr.strip().lstrip("#")
    if len(abgr) != 8:
        return f"#{abgr}"
    return f"#{abgr[6:8]}{abgr[4:6]}{abgr[2:4]}"


def _parse_style(pm: ET.Element, ns: str) -> dict:
    """Parse the inline Style element of a Placemark."""
    style_elem = pm.find(f"{ns}Style")
    if style_elem is None:
        return {}

    style: dict = {}
    line_style = style_elem.find(f"{ns}LineStyle")
    if line_style is not None:
        color = _get_child_text(line_style, "color", ns)
        if color:
            style["strokeColor"] = _kml_color_to_css(color)
        width = _get_child_text(line_style, "width", ns)
        if width:
            try:
                style["strokeWidth"] = float(width)
            except ValueError:
                pass

    poly_style = style_elem.find(f"{ns}PolyStyle")
    if poly_style is not None:
        color = _get_child_text(poly_style, "color", ns)
        if color:
            style["fillColor"] = _kml_color_to_css(color)
        fill = _get_child_text(poly_style, "fill", ns)
        if fill:
            style["fill"] = fill != "0"

    return style

"""Data format detection from URLs and file names."""

from __future__ import annotations

from urllib.parse import parse_qs, urlsplit

SUPPORTED_FORMATS = (
    "CZML",
    "GEOJSON",
    "GJSON",
    "TOPOJSON",
    "JSON",
    "KML",
    "KMZ",
    "GPX",
    "CSV",
)

GEOJSON_FORMATS = ("GEOJSON", "GJSON", "JSON")


def detect_format(url: str | None) -> str | None:
    """Derive an upper-case format tag from a URL or file name.

    The ``outputFormat`` query parameter wins, then ``f``, then the file
    extension (only when the last dot follows the last slash).

    Returns:
        The format tag, or None if nothing could be derived.
    """
    if not url:
        return None

    query = parse_qs(urlsplit(url).query)
    for param in ("outputFormat", "f"):
        values = query.get(param)
        if values and values[0]:
            return values[0].upper()

    path = url.split("?", 1)[0]
    idx = path.rfind(".")
    if idx != -1 and idx > path.rfind("/"):
        ext = path[idx + 1:]
        return ext.upper() or None
    return None


def is_format_supported(name: str | None) -> bool:
    """True if the format derived from ``name`` has a local handler."""
    return detect_format(name) in SUPPORTED_FORMATS

"""CZML passthrough: validate the packet list and derive its extent.

CZML is handed to the globe renderer as is; only the extent is computed
here, from ``position`` and ``polyline.positions`` cartographicDegrees.
"""

from __future__ import annotations

import json
import logging

from geodata.geometry import Extent

logger = logging.getLogger(__name__)


def parse_czml(czml) -> list[dict]:
    """Parse CZML text (or an already-decoded document) into packets.

    A single packet object is wrapped in a list. Invalid input yields [].
    """
    if isinstance(czml, (str, bytes)):
        try:
            czml = json.loads(czml)
        except (json.JSONDecodeError, UnicodeDecodeError) as e:
            logger.warning(f"CZML parse error: {e}")
            return []
    if isinstance(czml, dict):
        czml = [czml]
    if not isinstance(czml, list):
        return []
    return [packet for packet in czml if isinstance(packet, dict)]


def czml_extent(packets: list[dict]) -> Extent | None:
    """Bounding box of every cartographicDegrees position in the packets."""
    lngs: list[float] = []
    lats: list[float] = []
    for packet in packets:
        for holder in (packet.get("position"), (packet.get("polyline") or {}).get("positions")):
            if not isinstance(holder, dict):
                continue
            for lng, lat in _positions(holder):
                lngs.append(lng)
                lats.append(lat)
    if not lngs:
        return None
    return Extent(west=min(lngs), south=min(lats), east=max(lngs), north=max(lats))


def _positions(holder: dict) -> list[tuple[float, float]]:
    """Split [lng, lat, h, ...], or [t, lng, lat, h, ...] when sampled against an epoch."""
    values = holder.get("cartographicDegrees") or []
    step, offset = (4, 1) if "epoch" in holder else (3, 0)
    if len(values) % step != 0:
        return []
    return [
        (float(values[i + offset]), float(values[i + offset + 1]))
        for i in range(0, len(values), step)
    ]

"""Share state: serialize the layer stack into a URL and load it back."""

from __future__ import annotations

import json
import logging
from dataclasses import dataclass
from typing import Iterable, Optional
from urllib.parse import parse_qs, quote, unquote, urlsplit

from pydantic import BaseModel

from geodata.geometry import Extent
from geodata.layers.layer import Layer
from geodata.style import Color

logger = logging.getLogger(__name__)

SHARE_VERSION = "0.0.02"

# Characters encodeURIComponent leaves alone
_URI_COMPONENT_SAFE = "-_.!~*'()"


class ShareRequest(BaseModel):
    """Payload posted to a share service or embedded in a ``vis_str`` URL."""

    layers: str
    version: str = SHARE_VERSION
    camera: Optional[str] = None
    id: Optional[str] = None
    image: Optional[str] = None


@dataclass
class InitialLoad:
    """Query parameters of the URL the viewer was launched with."""

    vis_server: str
    vis_url: str | None = None
    vis_str: str | None = None
    data_url: str | None = None
    format: str | None = None


def serialize_layers(layers: Iterable[Layer]) -> str:
    """JSON list of the parts of each layer needed to request it again."""
    entries = []
    for layer in layers:
        layer_type = getattr(layer.type, "value", layer.type)
        entries.append({
            "name": layer.name,
            "type": layer_type,
            "proxy": layer.proxy,
            "url": layer.url,
            "extent": layer.extent.to_dict() if layer.extent else None,
        })
    return json.dumps(entries)


def revive(value):
    """Turn nested extent and color dicts back into Extent and Color."""
    if isinstance(value, list):
        return [revive(item) for item in value]
    if not isinstance(value, dict):
        return value
    if "west" in value:
        return Extent(value["west"], value["south"], value["east"], value["north"])
    if "red" in value:
        return Color(value["red"], value["green"], value["blue"], value.get("alpha", 1.0))
    return {key: revive(item) for key, item in value.items()}


def parse_layers(text: str) -> list[dict]:
    """Parse ``serialize_layers`` output, reviving every nested object."""
    return [revive(entry) for entry in json.loads(text)]


def share_request(
    layers: Iterable[Layer],
    camera: Extent | None = None,
    image: str | None = None,
    vis_id: str | None = None,
) -> ShareRequest:
    return ShareRequest(
        layers=serialize_layers(layers),
        camera=json.dumps(camera.to_dict()) if camera else None,
        id=vis_id,
        image=image,
    )


def share_request_url(request: ShareRequest, vis_server: str) -> str:
    """URL that relaunches the viewer with ``request``. The image is left out."""
    payload = request.model_dump_json(exclude={"image"}, exclude_none=True)
    return f"{vis_server}?vis_str={quote(payload, safe=_URI_COMPONENT_SAFE)}"


def camera_extent(request: ShareRequest) -> Extent | None:
    if not request.camera:
        return None
    return revive(json.loads(request.camera))


def parse_initial_url(url: str) -> InitialLoad:
    parts = urlsplit(url)
    params = {key: values[0] for key, values in parse_qs(parts.query).items()}
    data_url = params.get("data_url")
    return InitialLoad(
        vis_server=f"{parts.scheme}://{parts.netloc}",
        vis_url=params.get("vis_url"),
        vis_str=params.get("vis_str"),
        data_url=unquote(data_url) if data_url else None,
        format=params.get("format"),
    )

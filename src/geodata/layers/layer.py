"""Layer dataclass and its type/state enums.

A layer is one displayable unit in the registry: either a feature layer
(vector data drawn through a renderer data source) or an imagery layer
(a tile source drawn as an imagery primitive).
"""

from __future__ import annotations

import uuid
from dataclasses import dataclass, field
from enum import Enum
from typing import TYPE_CHECKING

from geodata.features import FeatureCollection
from geodata.geometry import Extent
from geodata.style import LayerStyle

if TYPE_CHECKING:
    from geodata.backends.base import ImageryProvider
    from geodata.layers.handles import LayerHandle
    from geodata.services import ServiceDescription


class LayerKind(str, Enum):
    FEATURE = "feature"
    IMAGERY = "imagery"
    DATA = "data"


class LayerType(str, Enum):
    """Service type tag carried by a layer descriptor."""

    WFS = "WFS"
    REST = "REST"
    GME = "GME"
    WMS = "WMS"
    DATA = "DATA"

    @property
    def kind(self) -> LayerKind:
        if self in (LayerType.WFS, LayerType.REST, LayerType.GME):
            return LayerKind.FEATURE
        if self is LayerType.WMS:
            return LayerKind.IMAGERY
        return LayerKind.DATA


class LayerState(str, Enum):
    CREATED = "created"
    ADDED = "added"
    HIDDEN = "hidden"
    REMOVED = "removed"


@dataclass(eq=False)
class Layer:
    """A named, displayable layer.

    Attributes:
        name: Display name, unique within the registry once added.
        type: Service type tag (a LayerType, or an unrecognised string from
            an external descriptor).
        url: Source URL; empty for data read from a local file.
        proxy: Route requests through the CORS proxy.
        extent: Bounding box in degrees, computed from the features if unset.
        style: Rendering style for feature layers.
        show: Visibility flag.
        description: Service description for service layers.
        csv_url: Optional per-layer join table fetched after the features.
        handle: Renderer handle, owned by the registry after add.
        collection: Canonical features that fed a feature layer.
        czml: CZML packets for layers loaded from CZML.
        provider: Tile source for imagery layers.
        state: Lifecycle state.
        layer_id: Unique identifier for this layer.
    """

    name: str
    type: LayerType | str = LayerType.DATA
    url: str = ""
    proxy: bool = False
    extent: Extent | None = None
    style: LayerStyle | None = None
    show: bool = True
    description: ServiceDescription | None = None
    csv_url: str | None = None
    handle: LayerHandle | None = None
    collection: FeatureCollection | None = None
    czml: list[dict] | None = None
    provider: ImageryProvider | None = None
    state: LayerState = LayerState.CREATED
    layer_id: str = field(default_factory=lambda: f"layer-{uuid.uuid4().hex[:8]}")

    @property
    def is_feature_layer(self) -> bool:
        """True unless the layer draws as imagery."""
        if self.provider is not None:
            return False
        return self.type != LayerType.WMS

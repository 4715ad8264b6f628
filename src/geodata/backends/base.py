"""Renderer backend interface.

A backend owns two kinds of renderer-native objects: feature data sources
(built from a canonical FeatureCollection) and imagery primitives (tile
layers built from an ImageryProvider). Backends differ in how stacking is
expressed: an explicit integer z-index per object, or an implicit draw
order changed one step at a time with raise/lower.
"""

from __future__ import annotations

from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from enum import Enum
from typing import Any

from geodata.features import FeatureCollection
from geodata.style import LayerStyle


class Ordering(str, Enum):
    Z_INDEX = "z_index"
    DRAW_ORDER = "draw_order"


@dataclass
class ImageryProvider:
    """Reference to a tile source, independent of the renderer.

    Attributes:
        kind: "wms" or "arcgis".
        url: Service endpoint (already routed through the proxy if needed).
        layers: WMS layer names.
        parameters: Extra WMS request parameters.
        proxy: Proxy object for renderers that proxy per tile request.
    """

    kind: str
    url: str
    layers: str = ""
    parameters: dict = field(default_factory=dict)
    proxy: Any = None


class RendererBackend(ABC):
    """Operations the layer registry and pipeline need from a renderer."""

    name: str = "renderer"
    ordering: Ordering = Ordering.Z_INDEX
    supports_czml: bool = False

    # -- feature data sources ------------------------------------------------

    @abstractmethod
    def create_data_source(self, collection: FeatureCollection, style: LayerStyle) -> Any:
        """Build (but do not display) a data source for a feature collection."""

    def create_czml_source(self, packets: list[dict]) -> Any:
        raise NotImplementedError(f"{self.name} cannot display CZML")

    @abstractmethod
    def add_data_source(self, data_source: Any) -> None:
        """Add a data source to the active (drawn) set."""

    @abstractmethod
    def remove_data_source(self, data_source: Any, destroy: bool = False) -> None:
        """Remove a data source from the active set, optionally destroying it."""

    @abstractmethod
    def contains_data_source(self, data_source: Any) -> bool: ...

    @abstractmethod
    def destroy_data_source(self, data_source: Any) -> None:
        """Free a data source that is not in the active set."""

    def refresh_data_source(self, data_source: Any) -> None:
        """Redraw a data source after its features were restyled."""

    # -- imagery -------------------------------------------------------------

    @abstractmethod
    def add_imagery(self, provider: ImageryProvider) -> Any:
        """Create an imagery primitive on top of the existing imagery."""

    @abstractmethod
    def remove_imagery(self, primitive: Any) -> None: ...

    @abstractmethod
    def set_imagery_visible(self, primitive: Any, visible: bool) -> None: ...

    # -- ordering ------------------------------------------------------------

    def set_z_index(self, primitive: Any, z_index: int) -> None:
        raise NotImplementedError(f"{self.name} has no explicit z-index")

    def index_of_imagery(self, primitive: Any) -> int:
        raise NotImplementedError(f"{self.name} has no draw-order index")

    def raise_imagery(self, primitive: Any) -> None:
        raise NotImplementedError(f"{self.name} has no draw-order index")

    def lower_imagery(self, primitive: Any) -> None:
        raise NotImplementedError(f"{self.name} has no draw-order index")

"""2D map renderer backend — every drawn object carries an explicit z-index.

Models a slippy-map viewer: feature layers and tile layers both live in
the map's layer set and stack by integer z-index.
"""

from __future__ import annotations

from dataclasses import dataclass, field

from geodata.backends.base import ImageryProvider, Ordering, RendererBackend
from geodata.features import FeatureCollection
from geodata.style import LayerStyle


@dataclass(eq=False)
class MapFeatureLayer:
    collection: FeatureCollection | None
    style: LayerStyle
    z_index: int = 0
    destroyed: bool = False
    revision: int = 0


@dataclass(eq=False)
class MapTileLayer:
    provider: ImageryProvider
    z_index: int = 0
    show: bool = True


@dataclass
class FlatMapBackend(RendererBackend):
    name: str = "map"
    ordering: Ordering = Ordering.Z_INDEX
    supports_czml: bool = False
    map_layers: list = field(default_factory=list)

    def create_data_source(self, collection: FeatureCollection, style: LayerStyle) -> MapFeatureLayer:
        return MapFeatureLayer(collection=collection, style=style)

    def add_data_source(self, data_source: MapFeatureLayer) -> None:
        if data_source.destroyed:
            raise ValueError("Cannot add a destroyed layer")
        if data_source not in self.map_layers:
            self.map_layers.append(data_source)

    def remove_data_source(self, data_source: MapFeatureLayer, destroy: bool = False) -> None:
        if data_source in self.map_layers:
            self.map_layers.remove(data_source)
        if destroy:
            self.destroy_data_source(data_source)

    def contains_data_source(self, data_source: MapFeatureLayer) -> bool:
        return data_source in self.map_layers

    def destroy_data_source(self, data_source: MapFeatureLayer) -> None:
        data_source.destroyed = True
        data_source.collection = None

    def refresh_data_source(self, data_source: MapFeatureLayer) -> None:
        data_source.revision += 1

    def add_imagery(self, provider: ImageryProvider) -> MapTileLayer:
        primitive = MapTileLayer(provider=provider)
        self.map_layers.append(primitive)
        return primitive

    def remove_imagery(self, primitive: MapTileLayer) -> None:
        if primitive in self.map_layers:
            self.map_layers.remove(primitive)

    def set_imagery_visible(self, primitive: MapTileLayer, visible: bool) -> None:
        primitive.show = visible

    def set_z_index(self, primitive, z_index: int) -> None:
        primitive.z_index = z_index

    def stacking(self) -> list:
        """Drawn objects bottom to top."""
        return sorted(self.map_layers, key=lambda p: p.z_index)

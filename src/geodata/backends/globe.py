"""Globe renderer backend — tracked data-source collection, draw-order imagery.

Models the collections a 3D globe viewer exposes: a data-source collection
that draws whatever it contains, and an imagery-layer list ordered bottom
to top whose order is changed one step at a time.
"""

from __future__ import annotations

from dataclasses import dataclass, field

from geodata.backends.base import ImageryProvider, Ordering, RendererBackend
from geodata.features import FeatureCollection
from geodata.style import LayerStyle



@dataclass(eq=False)
class GlobeDataSource:
    collection: FeatureCollection | None = None
    style: LayerStyle | None = None
    packets: list[dict] | None = None
    destroyed: bool = False
    revision: int = 0


@dataclass(eq=False)
class GlobeImageryLayer:
    provider: ImageryProvider
    show: bool = True


@dataclass
class GlobeBackend(RendererBackend):
    name: str = "globe"
    ordering: Ordering = Ordering.DRAW_ORDER
    supports_czml: bool = True
    data_sources: list[GlobeDataSource] = field(default_factory=list)
    imagery_layers: list[GlobeImageryLayer] = field(default_factory=list)

    def create_data_source(self, collection: FeatureCollection, style: LayerStyle) -> GlobeDataSource:
        return GlobeDataSource(collection=collection, style=style)

    def create_czml_source(self, packets: list[dict]) -> GlobeDataSource:
        return GlobeDataSource(packets=packets)

    def add_data_source(self, data_source: GlobeDataSource) -> None:
        if data_source.destroyed:
            raise ValueError("Cannot add a destroyed data source")
        if data_source not in self.data_sources:
            self.data_sources.append(data_source)

    def remove_data_source(self, data_source: GlobeDataSource, destroy: bool = False) -> None:
        if data_source in self.data_sources:
            self.data_sources.remove(data_source)
        if destroy:
            self.destroy_data_source(data_source)

    def contains_data_source(self, data_source: GlobeDataSource) -> bool:
        return data_source in self.data_sources

    def destroy_data_source(self, data_source: GlobeDataSource) -> None:
        data_source.destroyed = True
        data_source.collection = None
        data_source.packets = None

    def refresh_data_source(self, data_source: GlobeDataSource) -> None:
        data_source.revision += 1

    def add_imagery(self, provider: ImageryProvider) -> GlobeImageryLayer:
        primitive = GlobeImageryLayer(provider=provider)
        self.imagery_layers.append(primitive)
        return primitive

    def remove_imagery(self, primitive: GlobeImageryLayer) -> None:
        if primitive in self.imagery_layers:
            self.imagery_layers.remove(primitive)

    def set_imagery_visible(self, primitive: GlobeImageryLayer, visible: bool) -> None:
        primitive.show = visible

    def index_of_imagery(self, primitive: GlobeImageryLayer) -> int:
        try:
            return self.imagery_layers.index(primitive)
        except ValueError:
            return -1

    def raise_imagery(self, primitive: GlobeImageryLayer) -> None:
        idx = self.index_of_imagery(primitive)
        if 0 <= idx < len(self.imagery_layers) - 1:
            layers = self.imagery_layers
            layers[idx], layers[idx + 1] = layers[idx + 1], layers[idx]

    def lower_imagery(self, primitive: GlobeImageryLayer) -> None:
        idx = self.index_of_imagery(primitive)
        if idx > 0:
            layers = self.imagery_layers
            layers[idx], layers[idx - 1] = layers[idx - 1], layers[idx]

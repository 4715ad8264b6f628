"""LayerRegistry — ordered stack of displayable layers.

Index 0 is the bottom of the stack. Feature layers always occupy a
contiguous run at the top and imagery layers the run below it, whatever
order the layers arrive in. The registry owns every layer's renderer
handle from ``add`` until ``remove``.
"""

from __future__ import annotations

import logging
from typing import Callable, Iterator

from geodata.backends.base import Ordering, RendererBackend
from geodata.config import settings
from geodata.errors import LayerStateError
from geodata.events import (
    LAYER_ADDED,
    LAYER_REMOVED,
    LAYERS_REORDERED,
    VIEWER_CHANGED,
    EventBus,
)
from geodata.layers.handles import LayerHandle
from geodata.layers.layer import Layer, LayerState

logger = logging.getLogger(__name__)


class LayerRegistry:
    """Registry of active map layers."""

    def __init__(
        self,
        backend: RendererBackend,
        events: EventBus | None = None,
        z_index_base: int | None = None,
    ) -> None:
        self._backend = backend
        self._layers: list[Layer] = []
        self.events = events or EventBus()
        self.z_index_base = settings.z_index_base if z_index_base is None else z_index_base

    @property
    def backend(self) -> RendererBackend:
        return self._backend

    @property
    def layers(self) -> list[Layer]:
        """Snapshot of the stack, bottom first."""
        return list(self._layers)

    def __len__(self) -> int:
        return len(self._layers)

    def __iter__(self) -> Iterator[Layer]:
        return iter(list(self._layers))

    def get(self, index: int) -> Layer | None:
        """Layer at ``index``, or None when the index is out of range."""
        if 0 <= index < len(self._layers):
            return self._layers[index]
        return None

    def index_of(self, layer: Layer) -> int:
        for idx, existing in enumerate(self._layers):
            if existing is layer:
                return idx
        return -1

    def get_layer(self, layer_id: str) -> Layer | None:
        for layer in self._layers:
            if layer.layer_id == layer_id:
                return layer
        return None

    def list_layers(self, feature_only: bool = False) -> list[Layer]:
        if feature_only:
            return [layer for layer in self._layers if layer.is_feature_layer]
        return list(self._layers)

    def get_unique_layer_name(self, name: str) -> str:
        """Return ``name``, or ``name (n)`` with the smallest free n."""
        taken = {layer.name for layer in self._layers}
        candidate = name
        n = 1
        while candidate in taken:
            candidate = f"{name} ({n})"
            n += 1
        return candidate

    def add(self, layer: Layer) -> Layer:
        """Add a layer to the stack and attach its handle.

        Feature layers go on top. Imagery layers go directly beneath the
        feature run, above any existing imagery.

        Raises:
            LayerStateError: If the layer was removed from a registry.
        """
        if layer.state is LayerState.REMOVED:
            raise LayerStateError(f"Layer {layer.name!r} was removed and cannot be added again")
        if self.index_of(layer) >= 0:
            logger.warning(f"Layer {layer.name} is already in the registry")
            return layer

        layer.name = self.get_unique_layer_name(layer.name)
        if layer.is_feature_layer:
            self._layers.append(layer)
        else:
            self._layers.insert(self._first_feature_index(), layer)

        if layer.handle is not None:
            layer.handle.attach()
            if not layer.show:
                layer.handle.set_visible(False)
        layer.state = LayerState.ADDED if layer.show else LayerState.HIDDEN
        self._sync_z_order()

        logger.info(f"Added layer {layer.name} at index {self.index_of(layer)}")
        self.events.publish(LAYER_ADDED, self, layer)
        return layer

    def remove(self, index: int) -> Layer | None:
        """Release and remove the layer at ``index``. Logs and returns None if there is none."""
        layer = self.get(index)
        if layer is None:
            logger.warning(f"No layer at index {index} to remove")
            return None

        if layer.handle is not None:
            layer.handle.release()
            layer.handle = None
        del self._layers[index]
        layer.state = LayerState.REMOVED
        self._sync_z_order()

        logger.info(f"Removed layer {layer.name}")
        self.events.publish(LAYER_REMOVED, self, layer)
        return layer

    def is_layer_movable(self, layer: Layer) -> bool:
        return not layer.is_feature_layer

    def move_up(self, layer: Layer) -> bool:
        """Swap an imagery layer with the one above it. Returns True on a swap."""
        return self._move(layer, 1)

    def move_down(self, layer: Layer) -> bool:
        """Swap an imagery layer with the one below it. Returns True on a swap."""
        return self._move(layer, -1)

    def _move(self, layer: Layer, step: int) -> bool:
        idx = self.index_of(layer)
        if idx < 0 or not self.is_layer_movable(layer):
            return False
        neighbour = self.get(idx + step)
        if neighbour is None or not self.is_layer_movable(neighbour):
            return False

        self._layers[idx], self._layers[idx + step] = neighbour, layer
        if self._backend.ordering is Ordering.Z_INDEX:
            self._sync_z_order()
        elif layer.handle is not None and neighbour.handle is not None:
            if step > 0:
                layer.handle.raise_above(neighbour.handle)
            else:
                layer.handle.lower_below(neighbour.handle)

        self.events.publish(LAYERS_REORDERED, self)
        return True

    def show(self, layer: Layer, visible: bool) -> None:
        if self.index_of(layer) < 0:
            logger.warning(f"Cannot show missing layer {layer.name}")
            return
        if layer.handle is not None:
            layer.handle.set_visible(visible)
        layer.show = visible
        layer.state = LayerState.ADDED if visible else LayerState.HIDDEN
        # A re-added data source needs its stacking value again
        self._sync_z_order()

    def refresh(self, layer: Layer) -> None:
        """Redraw a feature layer after its features were restyled."""
        if layer.handle is not None:
            layer.handle.refresh()

    def switch_backend(
        self,
        backend: RendererBackend,
        rebuild: Callable[[Layer], LayerHandle | None],
    ) -> None:
        """Move every layer to a new renderer.

        Handles on the old renderer are released; ``rebuild`` supplies a new
        handle per layer, and layers are re-attached bottom to top.
        """
        for layer in self._layers:
            if layer.handle is not None:
                layer.handle.release()
                layer.handle = None

        self._backend = backend
        for layer in self._layers:
            layer.handle = rebuild(layer)
            if layer.handle is None:
                logger.warning(f"Layer {layer.name} could not be rebuilt on {backend.name}")
                continue
            layer.handle.attach()
            if not layer.show:
                layer.handle.set_visible(False)
        self._sync_z_order()

        logger.info(f"Switched renderer to {backend.name}")
        self.events.publish(VIEWER_CHANGED, self)

    def _first_feature_index(self) -> int:
        for idx, layer in enumerate(self._layers):
            if layer.is_feature_layer:
                return idx
        return len(self._layers)

    def _sync_z_order(self) -> None:
        if self._backend.ordering is not Ordering.Z_INDEX:
            return
        for idx, layer in enumerate(self._layers):
            if layer.handle is not None:
                layer.handle.set_order(self.z_index_base + idx)

"""Renderer handles — the registry's only view of renderer-native objects.

A FeatureHandle wraps a feature data source, an ImageryHandle wraps an
imagery primitive. Both expose the same small interface so the registry
never inspects what the renderer gave it.
"""

from __future__ import annotations

import logging
from abc import ABC, abstractmethod
from typing import Any

from geodata.backends.base import ImageryProvider, Ordering, RendererBackend

logger = logging.getLogger(__name__)


class LayerHandle(ABC):
    is_imagery: bool = False

    def __init__(self, backend: RendererBackend) -> None:
        self.backend = backend

    @abstractmethod
    def attach(self) -> None:
        """Make the renderer draw this object."""

    @abstractmethod
    def detach(self) -> None:
        """Stop drawing without freeing the renderer object."""

    @abstractmethod
    def release(self) -> None:
        """Stop drawing and free the renderer object."""

    @abstractmethod
    def set_visible(self, visible: bool) -> None: ...

    def set_order(self, z_index: int) -> None:
        """Apply an explicit stacking value. Ignored by draw-order renderers."""
        if self.backend.ordering is Ordering.Z_INDEX:
            self.backend.set_z_index(self.native, z_index)

    def refresh(self) -> None:
        pass

    @property
    @abstractmethod
    def native(self) -> Any: ...


class FeatureHandle(LayerHandle):
    """Wraps a feature data source.

    Hiding a feature layer removes its data source from the renderer's
    active set rather than flagging it invisible.
    """

    def __init__(self, backend: RendererBackend, data_source: Any) -> None:
        super().__init__(backend)
        self.data_source = data_source

    @property
    def native(self) -> Any:
        return self.data_source

    @property
    def attached(self) -> bool:
        return self.backend.contains_data_source(self.data_source)

    def attach(self) -> None:
        if not self.attached:
            self.backend.add_data_source(self.data_source)

    def detach(self) -> None:
        self.backend.remove_data_source(self.data_source, destroy=False)

    def release(self) -> None:
        if self.attached:
            self.backend.remove_data_source(self.data_source, destroy=True)
        else:
            self.backend.destroy_data_source(self.data_source)

    def set_visible(self, visible: bool) -> None:
        if visible:
            self.attach()
        else:
            self.detach()

    def set_order(self, z_index: int) -> None:
        # A hidden data source is not on the map
        if self.attached:
            super().set_order(z_index)

    def refresh(self) -> None:
        self.backend.refresh_data_source(self.data_source)


class ImageryHandle(LayerHandle):
    """Wraps an imagery primitive built from a provider."""

    is_imagery = True

    def __init__(self, backend: RendererBackend, provider: ImageryProvider, visible: bool = True) -> None:
        super().__init__(backend)
        self.provider = provider
        self.primitive: Any = None
        self._visible = visible

    @property
    def native(self) -> Any:
        return self.primitive

    def attach(self) -> None:
        if self.primitive is None:
            self.primitive = self.backend.add_imagery(self.provider)
            self.backend.set_imagery_visible(self.primitive, self._visible)

    def detach(self) -> None:
        if self.primitive is not None:
            self.backend.remove_imagery(self.primitive)
            self.primitive = None

    def release(self) -> None:
        self.detach()

    def set_visible(self, visible: bool) -> None:
        self._visible = visible
        if self.primitive is not None:
            self.backend.set_imagery_visible(self.primitive, visible)

    def draw_index(self) -> int:
        return self.backend.index_of_imagery(self.primitive)

    def raise_above(self, other: ImageryHandle) -> None:
        """Raise one step at a time until drawn directly above ``other``."""
        while self.draw_index() < other.draw_index():
            self.backend.raise_imagery(self.primitive)

    def lower_below(self, other: ImageryHandle) -> None:
        """Lower one step at a time until drawn directly below ``other``."""
        while self.draw_index() > other.draw_index():
            self.backend.lower_imagery(self.primitive)

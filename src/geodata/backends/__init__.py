"""Renderer backends: a draw-order globe and a z-index 2D map."""

from geodata.backends.base import ImageryProvider, Ordering, RendererBackend
from geodata.backends.flat_map import FlatMapBackend
from geodata.backends.globe import GlobeBackend

__all__ = [
    "FlatMapBackend",
    "GlobeBackend",
    "ImageryProvider",
    "Ordering",
    "RendererBackend",
]

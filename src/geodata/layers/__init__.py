"""Layer model, renderer handles and the ordered layer registry."""

from geodata.layers.handles import FeatureHandle, ImageryHandle, LayerHandle
from geodata.layers.layer import Layer, LayerKind, LayerState, LayerType
from geodata.layers.registry import LayerRegistry

__all__ = [
    "FeatureHandle",
    "ImageryHandle",
    "Layer",
    "LayerHandle",
    "LayerKind",
    "LayerRegistry",
    "LayerState",
    "LayerType",
]

"""Geospatial layer pipeline: ingest, normalize and stack map layers.

Reads GeoJSON, TopoJSON, KML/KMZ, GPX, CZML, ESRI REST JSON and GML
service responses into one canonical feature model, reprojects and
downsamples it, colours it from a CSV join table, and keeps an ordered
stack of layers in step with a globe or a 2D map renderer.
"""

from geodata.backends import FlatMapBackend, GlobeBackend, RendererBackend
from geodata.events import EventBus
from geodata.features import Feature, FeatureCollection, Geometry
from geodata.geometry import Extent
from geodata.layers import Layer, LayerRegistry, LayerState, LayerType
from geodata.pipeline import LoadResult, LoadStatus, Pipeline

__all__ = [
    "EventBus",
    "Extent",
    "Feature",
    "FeatureCollection",
    "FlatMapBackend",
    "Geometry",
    "GlobeBackend",
    "Layer",
    "LayerRegistry",
    "LayerState",
    "LayerType",
    "LoadResult",
    "LoadStatus",
    "Pipeline",
    "RendererBackend",
]

"""Pipeline — turns layer descriptors and raw payloads into registry layers.

Every load ends in exactly one way: the layer is added to the registry
(ADDED) or a LoadError goes to the error reporter (FAILED). Two soft
outcomes exist besides: a raw-data format with no local handler
(UNHANDLED, the caller may offer the remote conversion service) and a
response that arrived after its request was superseded (DISCARDED).
"""

from __future__ import annotations

import asyncio
import json
import logging
import xml.etree.ElementTree as ET
from dataclasses import dataclass
from enum import Enum
from typing import Callable, Optional

from geodata.backends.base import RendererBackend
from geodata.config import settings
from geodata.converters import (
    czml_extent,
    needs_axis_swap,
    parse_czml,
    parse_esri_gml,
    parse_esri_rest,
    parse_geojson,
    parse_gpx,
    parse_kml,
    parse_kmz,
    swap_axes,
    xml_to_object,
)
from geodata.correlate import Constraint, JoinTable, apply_constraints, correlate, parse_join_table
from geodata.errors import LoadError, UnsupportedProjectionError, UnsupportedServiceError
from geodata.events import JOIN_TABLE_CHANGED, LAYER_REMOVED
from geodata.features import FeatureCollection
from geodata.fetch import Fetcher
from geodata.formats import GEOJSON_FORMATS, detect_format, is_format_supported
from geodata.geometry import Extent, compute_extent, downsample
from geodata.layers.handles import FeatureHandle, ImageryHandle, LayerHandle
from geodata.layers.layer import Layer, LayerKind, LayerType
from geodata.layers.registry import LayerRegistry
from geodata.projection import TransformRegistry, default_registry, reproject_collection
from geodata.services import CorsProxy, ServiceDescription, imagery_provider, should_use_proxy
from geodata.share import (
    ShareRequest,
    camera_extent,
    parse_initial_url,
    parse_layers,
    share_request,
    share_request_url,
)
from geodata.style import default_style

logger = logging.getLogger(__name__)

ErrorReporter = Callable[[LoadError], None]


class LoadStatus(str, Enum):
    ADDED = "added"
    FAILED = "failed"
    UNHANDLED = "unhandled"
    DISCARDED = "discarded"
    JOINED = "joined"


@dataclass
class LoadResult:
    status: LoadStatus
    layer: Layer | None = None
    error: LoadError | None = None

    @property
    def ok(self) -> bool:
        return self.status in (LoadStatus.ADDED, LoadStatus.JOINED)


def log_load_error(error: LoadError) -> None:
    logger.error(f"Load failed: {error}" + (f" ({error.url})" if error.url else ""))


_RAW_CONVERTERS: dict[str, Callable[..., FeatureCollection]] = {
    **{fmt: parse_geojson for fmt in GEOJSON_FORMATS},
    "TOPOJSON": parse_geojson,
    "KML": parse_kml,
    "KMZ": parse_kmz,
    "GPX": parse_gpx,
}


def _convert(converter: Callable[..., FeatureCollection], payload, url: str | None) -> FeatureCollection:
    """Run a converter, turning a structurally broken payload into a LoadError."""
    try:
        return converter(payload)
    except (KeyError, IndexError, TypeError, AttributeError, ValueError) as e:
        raise LoadError(f"Malformed data ({type(e).__name__}: {e})", url=url) from e


class Pipeline:
    """Fetches, converts and normalizes layers, then adds them to a registry."""

    def __init__(
        self,
        registry: LayerRegistry,
        fetcher: Fetcher,
        reporter: Optional[ErrorReporter] = None,
        transforms: Optional[TransformRegistry] = None,
        proxy: Optional[CorsProxy] = None,
    ):
        self.registry = registry
        self.fetcher = fetcher
        self.reporter = reporter or log_load_error
        self.transforms = transforms or default_registry()
        self.proxy = proxy or CorsProxy()
        self.csvs: list[JoinTable] = []
        self.services: list[ServiceDescription] = []
        self.vis_server: str | None = None
        self.vis_id: str | None = None
        self.camera: Extent | None = None
        self._generations: dict[str, int] = {}
        registry.events.subscribe(LAYER_REMOVED, self._on_layer_removed)

    # -- request generations -------------------------------------------------

    def _begin(self, key: str) -> int:
        token = self._generations.get(key, 0) + 1
        self._generations[key] = token
        return token

    def _is_stale(self, key: str, token: int) -> bool:
        if self._generations.get(key) != token:
            logger.debug(f"Discarding superseded response for {key}")
            return True
        return False

    def _on_layer_removed(self, registry, layer: Layer) -> None:
        if layer.layer_id in self._generations:
            self._generations[layer.layer_id] += 1

    # -- outcomes -------------------------------------------------------------

    def _fail(self, error: LoadError, layer: Layer | None = None) -> LoadResult:
        self.reporter(error)
        return LoadResult(LoadStatus.FAILED, layer=layer, error=error)

    def _resolve(self, url: str, layer: Layer | None = None) -> str:
        if (layer is not None and layer.proxy) or should_use_proxy(url):
            return self.proxy.get_url(url)
        return url

    # -- layer requests -------------------------------------------------------

    async def load(self, layer: Layer) -> LoadResult:
        """Request a layer according to its service type.

        Raises:
            UnsupportedServiceError: If the layer type has no handler.
        """
        try:
            kind = LayerType(layer.type).kind
        except ValueError:
            raise UnsupportedServiceError(
                f"Creating layer for unsupported service: {layer.type}"
            ) from None

        key = layer.layer_id
        token = self._begin(key)
        try:
            if kind is LayerKind.FEATURE:
                return await self._load_feature(layer, key, token)
            if kind is LayerKind.IMAGERY:
                return self._load_imagery(layer)
            return await self._load_data(layer, key, token)
        except LoadError as e:
            if e.url is None:
                e.url = layer.url
            return self._fail(e, layer)

    async def _load_feature(self, layer: Layer, key: str, token: int) -> LoadResult:
        username = password = None
        if layer.description is not None:
            username, password = layer.description.username, layer.description.password
        response = await self.fetcher.fetch_text(self._resolve(layer.url, layer), username, password)
        if self._is_stale(key, token):
            return LoadResult(LoadStatus.DISCARDED, layer=layer)

        collection = self._parse_feature_response(response.text, layer)
        if not collection.features:
            # Exception reports and HTML error pages parse to nothing
            raise LoadError(f"No features returned for {layer.name}", url=layer.url)

        if layer.csv_url:
            csv_response = await self.fetcher.fetch_text(layer.csv_url)
            if self._is_stale(key, token):
                return LoadResult(LoadStatus.DISCARDED, layer=layer)
            try:
                table = parse_join_table(csv_response.text)
            except ValueError as e:
                raise LoadError(f"Bad join table: {e}", url=layer.csv_url) from e
            correlate(collection.features, table)

        return self.add_feature_layer(collection, layer)

    def _parse_feature_response(self, text: str, layer: Layer) -> FeatureCollection:
        if text.lstrip().startswith("{"):
            try:
                data = json.loads(text)
            except ValueError as e:
                raise LoadError(f"Invalid JSON from feature service: {e}", url=layer.url) from e
            return _convert(parse_esri_rest, data, layer.url)

        try:
            tree = xml_to_object(text)
        except ET.ParseError as e:
            raise LoadError(f"Invalid XML from feature service: {e}", url=layer.url) from e
        if isinstance(tree, dict) and "Exception" in tree:
            exception = tree["Exception"]
            detail = exception.get("ExceptionText") if isinstance(exception, dict) else exception
            logger.warning(f"Exception returned by the WFS server: {detail}")
        collection = _convert(parse_esri_gml, tree, layer.url)
        if needs_axis_swap(text):
            swap_axes(collection)
        return collection

    def _load_imagery(self, layer: Layer) -> LoadResult:
        proxy = None
        if layer.proxy or should_use_proxy(layer.url):
            proxy = self.proxy
            description = layer.description
            if description is not None and description.username and description.password:
                proxy = proxy.with_credentials(description.username, description.password)

        layer.provider = imagery_provider(layer.url, proxy)
        layer.handle = ImageryHandle(self.registry.backend, layer.provider, visible=layer.show)
        self.registry.add(layer)
        return LoadResult(LoadStatus.ADDED, layer=layer)

    async def _load_data(self, layer: Layer, key: str, token: int) -> LoadResult:
        fmt = detect_format(layer.url)
        url = self._resolve(layer.url, layer)
        if fmt == "KMZ":
            response = await self.fetcher.fetch_bytes(url)
        else:
            response = await self.fetcher.fetch_text(url)
        if self._is_stale(key, token):
            return LoadResult(LoadStatus.DISCARDED, layer=layer)
        return self.load_text(response.body, layer.name, fmt, layer)

    # -- raw data -------------------------------------------------------------

    def load_text(
        self,
        text: str | bytes,
        source_name: str,
        format: str | None = None,
        layer: Layer | None = None,
    ) -> LoadResult:
        """Convert a raw-data payload by format and add it as a layer.

        ``format`` defaults to the one detected from ``source_name``. CSV
        text is ingested as the join table rather than added as a layer.
        """
        if layer is None:
            layer = Layer(name=source_name, type=LayerType.DATA)
        fmt = (format or detect_format(source_name) or "").upper()
        if isinstance(text, bytes) and fmt != "KMZ":
            text = text.decode("utf-8", errors="replace")

        if fmt == "CZML":
            return self._add_czml(parse_czml(text), layer)
        if fmt == "CSV":
            try:
                self.ingest_csv(text)
            except ValueError as e:
                return self._fail(LoadError(f"Bad join table in {source_name}: {e}"), layer)
            return LoadResult(LoadStatus.JOINED)

        converter = _RAW_CONVERTERS.get(fmt)
        if converter is None:
            logger.info(f"There is no handler for {source_name} based on its extension")
            return LoadResult(LoadStatus.UNHANDLED, layer=layer)
        if fmt == "KMZ" and isinstance(text, str):
            return self._fail(LoadError(f"KMZ data must be binary: {source_name}"), layer)

        try:
            collection = _convert(converter, text, layer.url or None)
        except LoadError as e:
            return self._fail(e, layer)
        if not collection.features:
            return self._fail(LoadError(f"No features could be read from {source_name}"), layer)
        return self.add_feature_layer(collection, layer)

    def _add_czml(self, packets: list[dict], layer: Layer) -> LoadResult:
        backend = self.registry.backend
        if not packets:
            return self._fail(LoadError(f"Invalid CZML: {layer.name}"), layer)
        if not backend.supports_czml:
            return self._fail(LoadError(f"{backend.name} renderer cannot display CZML"), layer)

        layer.czml = packets
        if layer.extent is None:
            layer.extent = czml_extent(packets)
        layer.handle = FeatureHandle(backend, backend.create_czml_source(packets))
        self.registry.add(layer)
        return LoadResult(LoadStatus.ADDED, layer=layer)

    def add_feature_layer(self, collection: FeatureCollection, layer: Layer) -> LoadResult:
        """Normalize a feature collection and add it to the registry as ``layer``."""
        if layer.style is None:
            layer.style = default_style(layer.name)

        if not reproject_collection(collection, self.transforms):
            return self._fail(UnsupportedProjectionError(collection.crs, url=layer.url), layer)

        downsample(collection)
        if self.csvs:
            correlate(collection.features, self.csvs[-1])
        if layer.extent is None:
            layer.extent = compute_extent(collection)

        layer.collection = collection
        backend = self.registry.backend
        layer.handle = FeatureHandle(backend, backend.create_data_source(collection, layer.style))
        self.registry.add(layer)
        return LoadResult(LoadStatus.ADDED, layer=layer)

    async def load_url(self, url: str, format: str | None = None) -> LoadResult:
        """Fetch a raw data file by URL and load it."""
        if format is None and not is_format_supported(url):
            logger.info(f"No local handler for {url}")
            return LoadResult(LoadStatus.UNHANDLED)
        fmt = (format or detect_format(url)).upper()

        layer = Layer(name=url, type=LayerType.DATA, url=url)
        try:
            if fmt == "KMZ":
                response = await self.fetcher.fetch_bytes(self._resolve(url))
            else:
                response = await self.fetcher.fetch_text(self._resolve(url))
        except LoadError as e:
            return self._fail(e, layer)
        return self.load_text(response.body, url, fmt, layer)

    def add_file(self, name: str, data: bytes | str) -> LoadResult:
        """Load a local file's contents.

        An unsupported format is UNHANDLED, unless the file is too large to
        send to the conversion service, which is a load error.
        """
        if is_format_supported(name):
            return self.load_text(data, name)

        if len(data) > settings.max_conversion_size:
            return self._fail(LoadError(f"File is too large to send to conversion service: {name}"))
        logger.info(f"No local format handler for {name}")
        return LoadResult(LoadStatus.UNHANDLED)

    # -- join tables ----------------------------------------------------------

    def ingest_csv(self, text: str) -> JoinTable:
        """Make ``text`` the current join table and re-apply it to every feature layer.

        Raises:
            ValueError: If the CSV has no usable header row.
        """
        table = parse_join_table(text)
        self.csvs.append(table)
        for layer in self.registry.list_layers(feature_only=True):
            if layer.collection is None:
                continue
            correlate(layer.collection.features, table)
            self.registry.refresh(layer)
        logger.info(f"Join table on {table.join_key} with {len(table)} rows")
        self.registry.events.publish(JOIN_TABLE_CHANGED, self.registry)
        return table

    def apply_constraints(self, constraints: list[Constraint]) -> int:
        highlighted = 0
        for layer in self.registry.list_layers(feature_only=True):
            if layer.collection is None:
                continue
            highlighted += apply_constraints(layer.collection.features, constraints)
            self.registry.refresh(layer)
        return highlighted

    # -- renderer -------------------------------------------------------------

    def set_backend(self, backend: RendererBackend) -> None:
        """Move every layer to ``backend``, rebuilding handles from retained data."""
        self.registry.switch_backend(backend, lambda layer: self._rebuild_handle(backend, layer))

    def _rebuild_handle(self, backend: RendererBackend, layer: Layer) -> LayerHandle | None:
        if layer.provider is not None:
            return ImageryHandle(backend, layer.provider, visible=layer.show)
        if layer.czml is not None:
            if not backend.supports_czml:
                return None
            return FeatureHandle(backend, backend.create_czml_source(layer.czml))
        if layer.collection is not None:
            return FeatureHandle(backend, backend.create_data_source(layer.collection, layer.style))
        return None

    # -- services -------------------------------------------------------------

    def add_services(self, services: list[ServiceDescription] | None) -> None:
        if not services:
            return
        for service in services:
            logger.info(f"Added service for {service.name}")
            self.services.append(service)

    def get_services(self) -> list[ServiceDescription]:
        return self.services

    # -- share state ----------------------------------------------------------

    def share_request(self, camera: Extent | None = None, image: str | None = None) -> ShareRequest:
        return share_request(self.registry, camera=camera, image=image, vis_id=self.vis_id)

    def share_request_url(self, request: ShareRequest) -> str:
        return share_request_url(request, self.vis_server or "")

    async def load_initial_url(self, url: str) -> list[LoadResult]:
        """Load the layers named by the launch URL (vis_url, vis_str or data_url)."""
        initial = parse_initial_url(url)
        self.vis_server = initial.vis_server

        try:
            if initial.vis_url:
                response = await self.fetcher.fetch_text(initial.vis_url)
                request = ShareRequest.model_validate_json(response.text)
            elif initial.vis_str:
                request = ShareRequest.model_validate_json(initial.vis_str)
            elif initial.data_url:
                return [await self.load_url(initial.data_url, initial.format)]
            else:
                return []
        except LoadError as e:
            return [self._fail(e)]
        except ValueError as e:
            return [self._fail(LoadError(f"Invalid share state: {e}", url=initial.vis_url))]

        self.vis_id = request.id
        self.camera = camera_extent(request)
        layers = [
            Layer(
                name=entry.get("name") or entry.get("url", ""),
                type=entry.get("type", LayerType.DATA),
                url=entry.get("url", ""),
                proxy=bool(entry.get("proxy")),
                extent=entry.get("extent"),
            )
            for entry in parse_layers(request.layers)
        ]
        return list(await asyncio.gather(*(self.load(layer) for layer in layers)))

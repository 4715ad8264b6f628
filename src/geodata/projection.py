"""Coordinate reprojection to WGS84 using pyproj.

The TransformRegistry decides which source CRS codes are supported. A code
without a registered transform is a soft failure: the data is left as is
and the caller decides whether to drop the collection.
"""

from __future__ import annotations

import logging

from pyproj import CRS, Transformer
from pyproj.exceptions import CRSError

from geodata.config import settings
from geodata.features import WGS84, FeatureCollection
from geodata.geometry import map_runs, walk_coordinate_tree

logger = logging.getLogger(__name__)


class TransformRegistry:
    """Registered ``authority:code`` -> WGS84 transforms."""

    def __init__(
        self,
        codes: list[str] | None = None,
        aliases: dict[str, str] | None = None,
    ) -> None:
        self._sources: dict[str, CRS] = {}
        self._forward: dict[str, Transformer] = {}
        self._aliases = {
            k.upper(): v.upper()
            for k, v in (settings.crs_aliases if aliases is None else aliases).items()
        }
        for code in settings.registered_crs if codes is None else codes:
            self.register(code)

    def normalize(self, code: str) -> str:
        """Upper-case a code and resolve aliases (e.g. EPSG:4283 -> EPSG:4326)."""
        code = code.strip().upper()
        return self._aliases.get(code, code)

    def register(self, code: str, definition: str | None = None) -> bool:
        """Register a transform from ``code`` to WGS84.

        Args:
            code: ``authority:code`` key, e.g. "EPSG:28355".
            definition: Optional proj string or WKT; defaults to ``code``.

        Returns:
            True if registered, False if pyproj could not build the CRS.
        """
        key = self.normalize(code)
        try:
            source = CRS.from_user_input(definition or key)
        except CRSError as e:
            logger.warning(f"Cannot register projection {code}: {e}")
            return False
        self._sources[key] = source
        self._forward[key] = Transformer.from_crs(
            source, CRS.from_epsg(4326), always_xy=True
        )
        logger.debug(f"Registered projection {key}")
        return True

    def is_registered(self, code: str) -> bool:
        key = self.normalize(code)
        return key == WGS84 or key in self._forward

    def transformer(self, code: str) -> Transformer | None:
        return self._forward.get(self.normalize(code))

    def inverse(self, code: str) -> Transformer | None:
        """Transformer from WGS84 back to ``code``."""
        source = self._sources.get(self.normalize(code))
        if source is None:
            return None
        return Transformer.from_crs(CRS.from_epsg(4326), source, always_xy=True)


_default_registry: TransformRegistry | None = None


def default_registry() -> TransformRegistry:
    """Shared registry built lazily from settings."""
    global _default_registry
    if _default_registry is None:
        _default_registry = TransformRegistry()
    return _default_registry


def _transform_point(transformer: Transformer, point: list) -> list:
    x, y = transformer.transform(point[0], point[1])
    return [x, y, *point[2:]]


def _transform_run(transformer: Transformer, run: list) -> list:
    if not run:
        return run
    xs, ys = transformer.transform([p[0] for p in run], [p[1] for p in run])
    return [[x, y, *p[2:]] for x, y, p in zip(xs, ys, run)]


def reproject(
    coordinates: list,
    source_crs: str,
    registry: TransformRegistry | None = None,
) -> list:
    """Transform a position or coordinate tree from ``source_crs`` to WGS84.

    Returns the input unchanged (and logs) if ``source_crs`` is unregistered.
    """
    registry = registry or default_registry()
    code = registry.normalize(source_crs)
    if code == WGS84:
        return coordinates
    transformer = registry.transformer(code)
    if transformer is None:
        logger.warning(f"Unsupported data projection: {source_crs}")
        return coordinates
    return map_runs(
        coordinates,
        lambda run: _transform_run(transformer, run),
        lambda point: _transform_point(transformer, point),
    )


def reproject_collection(
    collection: FeatureCollection,
    registry: TransformRegistry | None = None,
) -> bool:
    """Reproject every feature in place and mark the collection as WGS84.

    Returns False, leaving the collection untouched, when its CRS has no
    registered transform.
    """
    if collection.crs is None:
        return True
    registry = registry or default_registry()
    code = registry.normalize(collection.crs)
    if code == WGS84:
        collection.crs = WGS84
        return True
    if not registry.is_registered(code):
        logger.warning(f"Unsupported data projection: {collection.crs}")
        return False

    walk_coordinate_tree(collection, lambda coords: reproject(coords, code, registry))
    logger.debug(f"Reprojected {len(collection)} features from {code}")
    collection.crs = WGS84
    return True

"""Coordinate-tree traversal, point-count reduction and extents.

A coordinate tree is the ``coordinates`` member of a canonical geometry:
a single position, a run of positions, or nested runs (polygon rings).
``walk_coordinate_tree`` visits every tree in a collection and ``map_runs``
applies a policy to its leaves; reprojection, downsampling and vertex
counting are all expressed as policies over this one walk.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Callable

from geodata.config import settings
from geodata.features import FeatureCollection

logger = logging.getLogger(__name__)

# Coordinate tree depths
POSITION = 0
RUN = 1
NESTED = 2


@dataclass
class Extent:
    """Geographic bounding box in degrees."""

    west: float
    south: float
    east: float
    north: float

    def union(self, other: Extent) -> Extent:
        return Extent(
            west=min(self.west, other.west),
            south=min(self.south, other.south),
            east=max(self.east, other.east),
            north=max(self.north, other.north),
        )

    def to_dict(self) -> dict:
        return {
            "west": self.west,
            "south": self.south,
            "east": self.east,
            "north": self.north,
        }


@dataclass
class VertexCount:
    total: int = 0
    longest: int = 0


def coordinate_depth(coords: list) -> int:
    """Classify a coordinate tree as POSITION, RUN or NESTED."""
    if not coords:
        return RUN
    first = coords[0]
    if not isinstance(first, (list, tuple)):
        return POSITION
    if not first or not isinstance(first[0], (list, tuple)):
        return RUN
    return NESTED


def map_runs(
    coords: list,
    run_fn: Callable[[list], list],
    point_fn: Callable[[list], list] | None = None,
) -> list:
    """Rebuild a coordinate tree by applying ``run_fn`` to every leaf run.

    A bare position is passed to ``point_fn`` (left as is when None).
    """
    depth = coordinate_depth(coords)
    if depth == POSITION:
        return point_fn(coords) if point_fn is not None else coords
    if depth == RUN:
        return run_fn(coords)
    return [map_runs(child, run_fn, point_fn) for child in coords]


def walk_coordinate_tree(
    collection: FeatureCollection,
    visit: Callable[[list], list | None],
) -> None:
    """Call ``visit`` with every geometry's coordinate tree.

    A non-None return value replaces the tree in place.
    """
    for feature in collection.features:
        result = visit(feature.geometry.coordinates)
        if result is not None:
            feature.geometry.coordinates = result


def count_vertices(collection: FeatureCollection) -> VertexCount:
    """Total vertex count and the length of the longest run."""
    count = VertexCount()

    def _run(run: list) -> list:
        count.total += len(run)
        count.longest = max(count.longest, len(run))
        return run

    def _point(point: list) -> list:
        count.total += 1
        return point

    walk_coordinate_tree(collection, _inspect(_run, _point))
    return count


def reduce_vertices(
    points: list,
    tolerance: float,
    max_run: int,
    min_run: int | None = None,
) -> list:
    """Greedy point-count reduction over a single coordinate run.

    Retains point 0, then skips forward while the Manhattan distance from
    the last retained point stays within ``tolerance``, dropping at most
    ``max_run - 1`` points in a row. Runs shorter than ``min_run`` are
    returned unchanged.
    """
    if min_run is None:
        min_run = settings.downsample_min_run
    if coordinate_depth(points) != RUN or len(points) < min_run:
        return points

    reduced = []
    v = 0
    while v < len(points):
        reduced.append(points[v])
        anchor = points[v]
        skip = 1
        while skip < max_run:
            if v + skip >= len(points):
                break
            candidate = points[v + skip]
            if abs(anchor[0] - candidate[0]) + abs(anchor[1] - candidate[1]) > tolerance:
                break
            skip += 1
        v += skip
    return reduced


def downsample(
    collection: FeatureCollection,
    tolerance: float | None = None,
    max_run: int | None = None,
) -> bool:
    """Reduce the vertex count of a large collection in place.

    Returns True if the collection was reduced.
    """
    if tolerance is None:
        tolerance = settings.downsample_tolerance
    if max_run is None:
        max_run = settings.downsample_max_run

    count = count_vertices(collection)
    if (
        count.longest < settings.downsample_min_run
        or count.total < settings.downsample_min_total
    ):
        logger.debug(
            f"Skipping downsampling ({count.total} vertices, longest run {count.longest})"
        )
        return False

    walk_coordinate_tree(
        collection,
        lambda coords: map_runs(
            coords, lambda run: reduce_vertices(run, tolerance, max_run)
        ),
    )
    after = count_vertices(collection)
    logger.info(f"Downsampled collection from {count.total} to {after.total} vertices")
    return True


def compute_extent(collection: FeatureCollection) -> Extent | None:
    """Bounding box of every position in the collection, or None if empty."""
    lngs: list[float] = []
    lats: list[float] = []

    def _point(point: list) -> list:
        lngs.append(point[0])
        lats.append(point[1])
        return point

    def _run(run: list) -> list:
        for point in run:
            _point(point)
        return run

    walk_coordinate_tree(collection, _inspect(_run, _point))
    if not lngs:
        return None
    return Extent(west=min(lngs), south=min(lats), east=max(lngs), north=max(lats))


def _inspect(run_fn: Callable[[list], list], point_fn: Callable[[list], list]):
    """Wrap read-only policies as a visitor that leaves trees unchanged."""

    def _visit(coords: list) -> None:
        map_runs(coords, run_fn, point_fn)

    return _visit

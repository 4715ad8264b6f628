"""Exception hierarchy for the geodata pipeline.

Defects (programming errors in the dispatch table, reuse of a removed layer)
are raised. Load errors are handed to the error reporter by the pipeline and
never propagate out of a load.
"""

from __future__ import annotations


class GeoDataError(Exception):
    """Base class for all geodata errors."""


class UnsupportedServiceError(GeoDataError, ValueError):
    """Raised when a layer names a service type the pipeline cannot dispatch."""


class LayerStateError(GeoDataError):
    """Raised when a removed layer is added again."""


class LoadError(GeoDataError):
    """A single layer failed to load. Reported, not raised."""

    def __init__(self, message: str, url: str | None = None) -> None:
        super().__init__(message)
        self.url = url


class FetchError(LoadError):
    """HTTP failure from the fetcher, carrying status code and response body."""

    def __init__(self, status_code: int, body: str = "", url: str | None = None) -> None:
        super().__init__(f"HTTP Error {status_code}", url=url)
        self.status_code = status_code
        self.body = body


class UnsupportedProjectionError(LoadError):
    """The feature collection names a CRS with no registered transform."""

    def __init__(self, code: str, url: str | None = None) -> None:
        super().__init__(f"Unsupported data projection: {code}", url=url)
        self.code = code

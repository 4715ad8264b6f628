"""OGC/ESRI service helpers: feature request URLs, imagery providers, CORS proxy."""

from __future__ import annotations

import logging
from dataclasses import dataclass, field, replace
from urllib.parse import parse_qs, quote, urlsplit, urlunsplit

from geodata.backends.base import ImageryProvider
from geodata.config import settings
from geodata.geometry import Extent

logger = logging.getLogger(__name__)

# Tile request parameters sent to every WMS server
WMS_PARAMETERS = {"format": "image/png", "transparent": "true", "styles": ""}


@dataclass
class ServiceDescription:
    """One layer offered by a remote service.

    Attributes:
        name: Layer (feature type) name on the service.
        base_url: Service endpoint without a query string.
        type: "WMS", "WFS" or "REST".
        version: Protocol version; WFS requests are always made as 1.1.
        esri: The WFS server is an ESRI server (GML only, no JSON output).
        count: Maximum number of features to request.
        extent: Bounding box filter in degrees.
        username: Credentials forwarded through the proxy.
        password: Credentials forwarded through the proxy.
        proxy: Route requests through the CORS proxy.
    """

    name: str
    base_url: str
    type: str = "WFS"
    version: str | None = None
    esri: bool = False
    count: int | None = None
    extent: Extent | None = None
    username: str | None = None
    password: str | None = None
    proxy: bool = False


@dataclass(frozen=True)
class CorsProxy:
    """Rewrites URLs to go through a same-origin proxy."""

    base_url: str = field(default_factory=lambda: settings.proxy_url)
    username: str | None = None
    password: str | None = None

    def get_url(self, url: str) -> str:
        if self.username:
            parts = urlsplit(url)
            userinfo = f"{quote(self.username, safe='')}:{quote(self.password or '', safe='')}"
            url = urlunsplit(parts._replace(netloc=f"{userinfo}@{parts.netloc}"))
        return f"{self.base_url}{url}"

    def with_credentials(self, username: str, password: str) -> CorsProxy:
        return replace(self, username=username, password=password)


def should_use_proxy(url: str, always_use_proxy: bool | None = None) -> bool:
    """Only absolute http(s) URLs are proxied, and only when proxying is switched on."""
    if always_use_proxy is None:
        always_use_proxy = settings.always_use_proxy
    if not always_use_proxy:
        return False
    return "http" in url


def feature_url(description: ServiceDescription) -> str:
    """Build the request URL that fetches a service layer's features."""
    logger.debug(f"Building request for {description.name}")

    request = description.base_url
    name = quote(description.name, safe="")
    service = description.type.upper()

    if service == "WMS":
        return f"{request}?service=wms&request=GetMap&layers={name}"
    if service == "WFS":
        description.version = "1.1"
        request += (
            f"?service=wfs&request=GetFeature&typeName={name}"
            f"&version={description.version}&srsName=EPSG:4326"
        )
        if not description.esri:
            request += "&outputFormat=JSON"
        if description.count:
            request += f"&maxFeatures={description.count}"
    elif service == "REST":
        request += (
            f"/{description.name}/query?geometryType=esriGeometryEnvelope&inSR="
            "&spatialRel=esriSpatialRelIntersects&returnGeometry=true&f=pjson"
        )
    else:
        logger.warning(f"No feature request for service type {description.type}")

    ext = description.extent
    if ext is not None:
        version = float(description.version or 0)
        if service == "WFS" and version < 1.1:
            request += f"&bbox={ext.west},{ext.south},{ext.east},{ext.north}"
        elif service == "REST":
            request += f"&geometry={ext.west},{ext.south},{ext.east},{ext.north}"
        else:
            # WFS 1.1 and later use lat/lon axis order
            request += (
                f"&bbox={ext.south},{ext.west},{ext.north},{ext.east}"
                ",urn:x-ogc:def:crs:EPSG:6.9:4326"
            )
    return request


def imagery_provider(request: str, proxy: CorsProxy | None = None) -> ImageryProvider:
    """Tile source for a WMS GetMap URL.

    ``layers=REST`` in the query selects an ArcGIS map server tiled at
    the same endpoint.
    """
    parts = urlsplit(request)
    layer_names = parse_qs(parts.query).get("layers", [""])[0]
    server = urlunsplit((parts.scheme or "http", parts.netloc, parts.path, "", ""))

    if layer_names == "REST":
        return ImageryProvider(kind="arcgis", url=server, proxy=proxy)
    return ImageryProvider(
        kind="wms",
        url=server,
        layers=layer_names,
        parameters=dict(WMS_PARAMETERS),
        proxy=proxy,
    )

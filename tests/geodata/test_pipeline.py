"""Tests for the load pipeline — service layers, raw data, joins, share state."""

import asyncio
import json

import pytest

from geodata.backends import FlatMapBackend, GlobeBackend
from geodata.config import settings
from geodata.correlate import Constraint
from geodata.errors import FetchError, LoadError, UnsupportedProjectionError, UnsupportedServiceError
from geodata.events import JOIN_TABLE_CHANGED
from geodata.fetch import FetchResponse
from geodata.geometry import Extent
from geodata.layers import FeatureHandle, ImageryHandle, Layer, LayerRegistry, LayerType
from geodata.pipeline import LoadStatus, Pipeline
from geodata.projection import TransformRegistry
from geodata.services import ServiceDescription
from geodata.share import ShareRequest, serialize_layers

WFS_URL = "http://example.com/wfs?service=wfs&request=GetFeature&typeName=towns"
WMS_URL = "http://example.com/wms?service=wms&request=GetMap&layers=roads"
DATA_URL = "http://example.com/data/suburbs.geojson"

REST_RESPONSE = json.dumps({
    "geometryType": "esriGeometryPoint",
    "features": [{"attributes": {"name": "Town"}, "geometry": {"x": 10, "y": 20}}],
})

GML_RESPONSE = """\
<wfs:FeatureCollection xmlns:wfs="http://www.opengis.net/wfs"
    xmlns:gml="http://www.opengis.net/gml" xmlns:ows="http://example.com/ows">
  <gml:featureMember>
    <ows:Towns gml:id="t1">
      <ows:Shape><gml:Point><gml:pos>-33.86 151.20</gml:pos></gml:Point></ows:Shape>
    </ows:Towns>
  </gml:featureMember>
</wfs:FeatureCollection>
"""

SUBURBS = json.dumps({
    "type": "FeatureCollection",
    "features": [{
        "type": "Feature",
        "properties": {"id": "A", "pop": 500},
        "geometry": {"type": "Polygon", "coordinates": [[[0, 0], [1, 0], [1, 1], [0, 0]]]},
    }],
})

KML = """\
<kml xmlns="http://www.opengis.net/kml/2.2"><Document>
  <Placemark><name>HQ</name><Point><coordinates>-122.4,37.7,0</coordinates></Point></Placemark>
</Document></kml>
"""

CZML = json.dumps([
    {"id": "document", "version": "1.0"},
    {"id": "sat", "position": {"cartographicDegrees": [150.0, -33.0, 1000.0]}},
])


class FakeFetcher:
    """Serves canned bodies by URL; unknown URLs are a 404."""

    def __init__(self, responses=None):
        self.responses = dict(responses or {})
        self.requests = []
        self.gate = None

    async def fetch_text(self, url, username=None, password=None):
        self.requests.append((url, username, password))
        return await self._respond(url)

    async def fetch_bytes(self, url):
        self.requests.append((url, None, None))
        return await self._respond(url)

    async def _respond(self, url):
        if self.gate is not None:
            await self.gate.wait()
        body = self.responses.get(url)
        if body is None:
            raise FetchError(404, "not found", url=url)
        return FetchResponse(body)


def make_pipeline(responses=None, backend=None):
    registry = LayerRegistry(backend or GlobeBackend())
    fetcher = FakeFetcher(responses)
    errors = []
    pipeline = Pipeline(
        registry,
        fetcher,
        reporter=errors.append,
        transforms=TransformRegistry(codes=["EPSG:3857"], aliases={}),
    )
    return pipeline, fetcher, errors


@pytest.mark.unit
class TestServiceLayers:
    """Feature and imagery service layers."""

    def test_rest_json_feature_layer(self):
        pipeline, _, errors = make_pipeline({WFS_URL: REST_RESPONSE})
        layer = Layer(name="Towns", type=LayerType.WFS, url=WFS_URL)
        result = asyncio.run(pipeline.load(layer))

        assert result.status is LoadStatus.ADDED
        assert result.ok
        assert errors == []
        assert pipeline.registry.layers == [layer]
        assert layer.collection.features[0].properties == {"name": "Town"}
        assert layer.extent == Extent(10, 20, 10, 20)
        assert layer.style is not None
        assert isinstance(layer.handle, FeatureHandle)
        assert layer.handle.data_source in pipeline.registry.backend.data_sources

    def test_gml_feature_layer(self):
        pipeline, _, errors = make_pipeline({WFS_URL: GML_RESPONSE})
        layer = Layer(name="Towns", type=LayerType.WFS, url=WFS_URL)
        result = asyncio.run(pipeline.load(layer))

        assert result.status is LoadStatus.ADDED
        assert layer.collection.features[0].geometry.coordinates == [151.20, -33.86]

    def test_gazetteer_response_swapped(self):
        text = GML_RESPONSE.replace("ows:Towns", "ows:gazetter_Towns")
        pipeline, _, _ = make_pipeline({WFS_URL: text})
        layer = Layer(name="Towns", type=LayerType.WFS, url=WFS_URL)
        asyncio.run(pipeline.load(layer))
        assert layer.collection.features[0].geometry.coordinates == [-33.86, 151.20]

    def test_credentials_forwarded(self):
        pipeline, fetcher, _ = make_pipeline({WFS_URL: REST_RESPONSE})
        desc = ServiceDescription(name="towns", base_url="http://example.com/wfs",
                                  username="user", password="pw")
        layer = Layer(name="Towns", type=LayerType.WFS, url=WFS_URL, description=desc)
        asyncio.run(pipeline.load(layer))
        assert fetcher.requests == [(WFS_URL, "user", "pw")]

    def test_proxied_layer_url(self):
        pipeline, fetcher, _ = make_pipeline({"/proxy/" + WFS_URL: REST_RESPONSE})
        layer = Layer(name="Towns", type=LayerType.WFS, url=WFS_URL, proxy=True)
        result = asyncio.run(pipeline.load(layer))
        assert result.status is LoadStatus.ADDED
        assert fetcher.requests[0][0] == "/proxy/" + WFS_URL

    def test_per_layer_join_table(self):
        csv_url = "http://example.com/scores.csv"
        pipeline, _, _ = make_pipeline({WFS_URL: SUBURBS, csv_url: "id,score\nA,7\n"})
        layer = Layer(name="Suburbs", type=LayerType.WFS, url=WFS_URL, csv_url=csv_url)
        asyncio.run(pipeline.load(layer))
        assert layer.collection.features[0].properties["score"] == 7

    def test_wms_imagery_layer(self):
        pipeline, fetcher, _ = make_pipeline()
        layer = Layer(name="Roads", type=LayerType.WMS, url=WMS_URL)
        result = asyncio.run(pipeline.load(layer))

        assert result.status is LoadStatus.ADDED
        assert fetcher.requests == []
        assert layer.provider.kind == "wms"
        assert layer.provider.layers == "roads"
        assert isinstance(layer.handle, ImageryHandle)
        assert pipeline.registry.backend.imagery_layers == [layer.handle.primitive]

    def test_imagery_proxy_carries_credentials(self):
        pipeline, _, _ = make_pipeline()
        desc = ServiceDescription(name="roads", base_url="http://example.com/wms", type="WMS",
                                  username="user", password="pw")
        layer = Layer(name="Roads", type=LayerType.WMS, url=WMS_URL, proxy=True, description=desc)
        asyncio.run(pipeline.load(layer))
        assert layer.provider.proxy.username == "user"
        assert layer.provider.proxy.password == "pw"

    def test_hidden_imagery_layer(self):
        pipeline, _, _ = make_pipeline()
        layer = Layer(name="Roads", type=LayerType.WMS, url=WMS_URL, show=False)
        asyncio.run(pipeline.load(layer))
        assert layer.handle.primitive.show is False

    def test_unsupported_type_raises(self):
        pipeline, _, _ = make_pipeline()
        with pytest.raises(UnsupportedServiceError):
            asyncio.run(pipeline.load(Layer(name="x", type="FTP", url="ftp://example.com/x")))

    def test_fetch_error_reported_once(self):
        pipeline, _, errors = make_pipeline()
        layer = Layer(name="Towns", type=LayerType.WFS, url=WFS_URL)
        result = asyncio.run(pipeline.load(layer))

        assert result.status is LoadStatus.FAILED
        assert isinstance(result.error, FetchError)
        assert errors == [result.error]
        assert errors[0].status_code == 404
        assert len(pipeline.registry) == 0

    def test_invalid_json_reported(self):
        pipeline, _, errors = make_pipeline({WFS_URL: "{not json"})
        result = asyncio.run(pipeline.load(Layer(name="Towns", type=LayerType.WFS, url=WFS_URL)))
        assert result.status is LoadStatus.FAILED
        assert len(errors) == 1
        assert errors[0].url == WFS_URL


@pytest.mark.unit
class TestRawData:
    """Raw data files by URL, by name and by content."""

    def test_geojson_data_layer(self):
        pipeline, _, _ = make_pipeline({DATA_URL: SUBURBS})
        layer = Layer(name="Suburbs", type=LayerType.DATA, url=DATA_URL)
        result = asyncio.run(pipeline.load(layer))
        assert result.status is LoadStatus.ADDED
        assert layer.extent == Extent(0, 0, 1, 1)

    def test_load_url_kml(self):
        url = "http://example.com/hq.kml"
        pipeline, _, _ = make_pipeline({url: KML})
        result = asyncio.run(pipeline.load_url(url))
        assert result.status is LoadStatus.ADDED
        assert result.layer.name == url
        assert result.layer.collection.features[0].geometry.coordinates[:2] == [-122.4, 37.7]

    def test_load_url_unknown_format(self):
        pipeline, fetcher, errors = make_pipeline()
        result = asyncio.run(pipeline.load_url("http://example.com/data.shp"))
        assert result.status is LoadStatus.UNHANDLED
        assert fetcher.requests == []
        assert errors == []

    def test_load_url_format_override(self):
        url = "http://example.com/export"
        pipeline, _, _ = make_pipeline({url: SUBURBS})
        result = asyncio.run(pipeline.load_url(url, "geojson"))
        assert result.status is LoadStatus.ADDED

    def test_load_url_fetch_error(self):
        pipeline, _, errors = make_pipeline()
        result = asyncio.run(pipeline.load_url("http://example.com/gone.kml"))
        assert result.status is LoadStatus.FAILED
        assert len(errors) == 1

    def test_load_text_unhandled(self):
        pipeline, _, errors = make_pipeline()
        assert pipeline.load_text("whatever", "notes.txt").status is LoadStatus.UNHANDLED
        assert errors == []

    def test_empty_collection_is_an_error(self):
        pipeline, _, errors = make_pipeline()
        result = pipeline.load_text('{"type": "FeatureCollection", "features": []}', "e.geojson")
        assert result.status is LoadStatus.FAILED
        assert isinstance(errors[0], LoadError)
        assert len(pipeline.registry) == 0

    def test_unregistered_projection_reported(self):
        data = json.loads(SUBURBS)
        data["crs"] = {"type": "EPSG", "properties": {"code": "28356"}}
        pipeline, _, errors = make_pipeline()
        result = pipeline.load_text(json.dumps(data), "mga.geojson")

        assert result.status is LoadStatus.FAILED
        assert isinstance(errors[0], UnsupportedProjectionError)
        assert errors[0].code == "EPSG:28356"
        assert len(pipeline.registry) == 0

    def test_registered_projection_reprojected(self):
        data = {
            "type": "FeatureCollection",
            "crs": {"type": "EPSG", "properties": {"code": "3857"}},
            "features": [{"type": "Feature", "properties": {},
                          "geometry": {"type": "Point", "coordinates": [111319.49079327357, 0]}}],
        }
        pipeline, _, _ = make_pipeline()
        result = pipeline.load_text(json.dumps(data), "merc.geojson")
        assert result.status is LoadStatus.ADDED
        lng, lat = result.layer.collection.features[0].geometry.coordinates[:2]
        assert lng == pytest.approx(1.0)
        assert lat == pytest.approx(0.0, abs=1e-9)
        assert result.layer.collection.crs == "EPSG:4326"

    def test_czml_on_globe(self):
        pipeline, _, _ = make_pipeline()
        result = pipeline.load_text(CZML, "sat.czml")
        assert result.status is LoadStatus.ADDED
        assert result.layer.czml[1]["id"] == "sat"
        assert result.layer.extent == Extent(150.0, -33.0, 150.0, -33.0)

    def test_czml_on_flat_map_is_an_error(self):
        pipeline, _, errors = make_pipeline(backend=FlatMapBackend())
        result = pipeline.load_text(CZML, "sat.czml")
        assert result.status is LoadStatus.FAILED
        assert len(errors) == 1

    def test_add_file(self):
        pipeline, _, _ = make_pipeline()
        result = pipeline.add_file("hq.kml", KML.encode("utf-8"))
        assert result.status is LoadStatus.ADDED
        assert result.layer.name == "hq.kml"

    def test_add_file_unsupported(self, monkeypatch):
        monkeypatch.setattr(settings, "max_conversion_size", 10)
        pipeline, _, errors = make_pipeline()
        assert pipeline.add_file("small.shp", b"12345").status is LoadStatus.UNHANDLED
        assert errors == []
        assert pipeline.add_file("large.shp", b"x" * 11).status is LoadStatus.FAILED
        assert len(errors) == 1


@pytest.mark.unit
class TestJoinTables:
    """CSV data is a join table applied to every feature layer."""

    def test_csv_recolours_existing_layers(self):
        pipeline, _, _ = make_pipeline()
        layer = pipeline.load_text(SUBURBS, "suburbs.geojson").layer
        data_source = layer.handle.data_source
        changed = []
        pipeline.registry.events.subscribe(JOIN_TABLE_CHANGED, lambda s, l: changed.append(s))

        result = pipeline.load_text("id,score\nA,7\n", "scores.csv")

        assert result.status is LoadStatus.JOINED
        feature = layer.collection.features[0]
        assert feature.properties["score"] == 7
        assert feature.style["fill"] is True
        assert data_source.revision == 1
        assert changed == [pipeline.registry]
        assert len(pipeline.registry) == 1

    def test_later_layers_use_current_table(self):
        pipeline, _, _ = make_pipeline()
        pipeline.ingest_csv("id,score\nA,3\n")
        layer = pipeline.load_text(SUBURBS, "suburbs.geojson").layer
        assert layer.collection.features[0].properties["score"] == 3

    def test_bad_csv_reported(self):
        pipeline, _, errors = make_pipeline()
        result = pipeline.load_text("", "empty.csv")
        assert result.status is LoadStatus.FAILED
        assert len(errors) == 1
        assert pipeline.csvs == []

    def test_apply_constraints(self):
        pipeline, _, _ = make_pipeline()
        layer = pipeline.load_text(SUBURBS, "suburbs.geojson").layer
        assert pipeline.apply_constraints([Constraint("pop", 0, 1000)]) == 1
        assert layer.collection.features[0].style["outline"] is True


@pytest.mark.unit
class TestSupersededRequests:
    """A layer's newest request wins; other layers never interfere."""

    def test_newer_request_wins(self):
        pipeline, fetcher, errors = make_pipeline({DATA_URL: SUBURBS})
        layer = Layer(name="Suburbs", url=DATA_URL)

        async def run():
            fetcher.gate = asyncio.Event()
            first = asyncio.create_task(pipeline.load(layer))
            second = asyncio.create_task(pipeline.load(layer))
            await asyncio.sleep(0)
            await asyncio.sleep(0)
            fetcher.gate.set()
            return await first, await second

        first, second = asyncio.run(run())
        assert first.status is LoadStatus.DISCARDED
        assert second.status is LoadStatus.ADDED
        assert pipeline.registry.layers == [layer]
        assert errors == []

    def test_same_url_in_flight_for_two_layers(self):
        pipeline, fetcher, errors = make_pipeline({DATA_URL: SUBURBS})

        async def run():
            fetcher.gate = asyncio.Event()
            first = asyncio.create_task(pipeline.load(Layer(name="Suburbs", url=DATA_URL)))
            second = asyncio.create_task(pipeline.load(Layer(name="Suburbs", url=DATA_URL)))
            await asyncio.sleep(0)
            await asyncio.sleep(0)
            fetcher.gate.set()
            return await first, await second

        results = asyncio.run(run())
        assert [r.status for r in results] == [LoadStatus.ADDED, LoadStatus.ADDED]
        assert [layer.name for layer in pipeline.registry] == ["Suburbs", "Suburbs (1)"]
        assert errors == []

    def test_removal_discards_pending_reload(self):
        pipeline, fetcher, errors = make_pipeline({DATA_URL: SUBURBS})
        layer = Layer(name="Suburbs", url=DATA_URL)
        asyncio.run(pipeline.load(layer))

        async def run():
            fetcher.gate = asyncio.Event()
            reload = asyncio.create_task(pipeline.load(layer))
            await asyncio.sleep(0)
            await asyncio.sleep(0)
            pipeline.registry.remove(0)
            fetcher.gate.set()
            return await reload

        assert asyncio.run(run()).status is LoadStatus.DISCARDED
        assert len(pipeline.registry) == 0
        assert errors == []

    def test_removing_another_layer_keeps_pending_load(self):
        pipeline, fetcher, _ = make_pipeline({DATA_URL: SUBURBS})
        asyncio.run(pipeline.load(Layer(name="Suburbs", url=DATA_URL)))

        async def run():
            fetcher.gate = asyncio.Event()
            pending = asyncio.create_task(pipeline.load(Layer(name="Again", url=DATA_URL)))
            await asyncio.sleep(0)
            await asyncio.sleep(0)
            pipeline.registry.remove(0)
            fetcher.gate.set()
            return await pending

        assert asyncio.run(run()).status is LoadStatus.ADDED
        assert [layer.name for layer in pipeline.registry] == ["Again"]


@pytest.mark.unit
class TestMalformedPayloads:
    """Broken payloads end as exactly one reported error, never an exception."""

    def test_topojson_bad_arc_index(self):
        pipeline, _, errors = make_pipeline()
        text = '{"type": "Topology", "arcs": [], "objects": {"a": {"type": "LineString", "arcs": [5]}}}'
        result = pipeline.load_text(text, "x.topojson")
        assert result.status is LoadStatus.FAILED
        assert errors == [result.error]
        assert len(pipeline.registry) == 0

    def test_topojson_objects_not_a_mapping(self):
        pipeline, _, errors = make_pipeline()
        result = pipeline.load_text('{"type": "Topology", "arcs": [], "objects": [1]}', "x.topojson")
        assert result.status is LoadStatus.FAILED
        assert len(errors) == 1

    def test_esri_null_feature(self):
        body = json.dumps({"geometryType": "esriGeometryPoint", "features": [None]})
        pipeline, _, errors = make_pipeline({WFS_URL: body})
        layer = Layer(name="Towns", type=LayerType.REST, url=WFS_URL)
        result = asyncio.run(pipeline.load(layer))
        assert result.status is LoadStatus.FAILED
        assert errors == [result.error]
        assert len(pipeline.registry) == 0

    def test_esri_bad_feature_skipped(self):
        body = json.loads(REST_RESPONSE)
        body["features"].insert(0, "junk")
        pipeline, _, errors = make_pipeline({WFS_URL: json.dumps(body)})
        result = asyncio.run(pipeline.load(Layer(name="Towns", type=LayerType.REST, url=WFS_URL)))
        assert result.status is LoadStatus.ADDED
        assert len(result.layer.collection) == 1
        assert errors == []

    def test_html_error_page(self):
        page = "<html><body><h1>Service unavailable</h1></body></html>"
        pipeline, _, errors = make_pipeline({WFS_URL: page})
        result = asyncio.run(pipeline.load(Layer(name="Towns", type=LayerType.WFS, url=WFS_URL)))
        assert result.status is LoadStatus.FAILED
        assert errors[0].url == WFS_URL
        assert len(pipeline.registry) == 0

    def test_wfs_exception_report(self):
        report = (
            '<ExceptionReport xmlns="http://www.opengis.net/ows">'
            "<Exception><ExceptionText>Unknown type</ExceptionText></Exception>"
            "</ExceptionReport>"
        )
        pipeline, _, errors = make_pipeline({WFS_URL: report})
        result = asyncio.run(pipeline.load(Layer(name="Towns", type=LayerType.WFS, url=WFS_URL)))
        assert result.status is LoadStatus.FAILED
        assert len(errors) == 1

    def test_one_bad_layer_does_not_sink_the_batch(self):
        bad_url = "http://example.com/data/broken.topojson"
        broken = '{"type": "Topology", "arcs": [], "objects": {"a": {"type": "Polygon", "arcs": [[9]]}}}'
        layers = serialize_layers([
            Layer(name="Broken", url=bad_url),
            Layer(name="Suburbs", url=DATA_URL),
        ])
        pipeline, _, errors = make_pipeline({bad_url: broken, DATA_URL: SUBURBS})
        pipeline.vis_server = "http://viewer.example.com/"
        url = pipeline.share_request_url(ShareRequest(layers=layers))

        results = asyncio.run(pipeline.load_initial_url(url))
        assert [r.status for r in results] == [LoadStatus.FAILED, LoadStatus.ADDED]
        assert len(errors) == 1


@pytest.mark.unit
class TestSetBackend:
    """Switching renderers rebuilds every layer from retained data."""

    def test_globe_to_map(self):
        pipeline, _, _ = make_pipeline()
        asyncio.run(pipeline.load(Layer(name="Roads", type=LayerType.WMS, url=WMS_URL)))
        suburbs = pipeline.load_text(SUBURBS, "suburbs.geojson").layer
        sat = pipeline.load_text(CZML, "sat.czml").layer

        flat = FlatMapBackend()
        pipeline.set_backend(flat)

        assert pipeline.registry.backend is flat
        assert suburbs.handle.data_source in flat.map_layers
        assert suburbs.handle.data_source.collection is suburbs.collection
        assert sat.handle is None
        assert len(flat.map_layers) == 2


@pytest.mark.unit
class TestShareState:
    """Share requests and launch URLs."""

    def test_share_request_round_trip(self):
        pipeline, _, _ = make_pipeline({DATA_URL: SUBURBS})
        asyncio.run(pipeline.load(Layer(name="Suburbs", url=DATA_URL)))
        pipeline.vis_server = "http://viewer.example.com/"
        request = pipeline.share_request(camera=Extent(1, 2, 3, 4))
        url = pipeline.share_request_url(request)

        other, _, _ = make_pipeline({DATA_URL: SUBURBS})
        results = asyncio.run(other.load_initial_url(url))

        assert [r.status for r in results] == [LoadStatus.ADDED]
        assert other.camera == Extent(1, 2, 3, 4)
        assert other.registry.get(0).name == "Suburbs"
        assert other.registry.get(0).extent == Extent(0, 0, 1, 1)

    def test_vis_url_fetched(self):
        vis_url = "http://share.example.com/vis/42"
        layers = serialize_layers([Layer(name="Roads", type=LayerType.WMS, url=WMS_URL)])
        body = ShareRequest(layers=layers, id="42").model_dump_json()
        pipeline, _, _ = make_pipeline({vis_url: body})

        results = asyncio.run(
            pipeline.load_initial_url("http://viewer.example.com/?vis_url=" + vis_url)
        )
        assert [r.status for r in results] == [LoadStatus.ADDED]
        assert pipeline.vis_id == "42"
        assert pipeline.vis_server == "http://viewer.example.com"

    def test_data_url(self):
        pipeline, _, _ = make_pipeline({DATA_URL: SUBURBS})
        results = asyncio.run(
            pipeline.load_initial_url("http://viewer.example.com/?data_url=" + DATA_URL)
        )
        assert [r.status for r in results] == [LoadStatus.ADDED]

    def test_invalid_vis_str_reported(self):
        pipeline, _, errors = make_pipeline()
        results = asyncio.run(pipeline.load_initial_url("http://viewer.example.com/?vis_str=nope"))
        assert [r.status for r in results] == [LoadStatus.FAILED]
        assert len(errors) == 1

    def test_no_parameters(self):
        pipeline, _, _ = make_pipeline()
        assert asyncio.run(pipeline.load_initial_url("http://viewer.example.com/")) == []


@pytest.mark.unit
class TestServices:
    """Service descriptions offered to the UI."""

    def test_add_and_get(self):
        pipeline, _, _ = make_pipeline()
        desc = ServiceDescription(name="roads", base_url="http://example.com/wfs")
        pipeline.add_services([desc])
        pipeline.add_services(None)
        assert pipeline.get_services() == [desc]

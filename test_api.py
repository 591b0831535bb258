"""Test the FastAPI backend endpoints with stubbed collaborators."""

import pytest
from fastapi.testclient import TestClient

from area_engine import compute_area
from backend import main

LAT, LNG = 29.7604, -95.3698
LOT = [[-95.3700, 29.7602], [-95.3700, 29.7605], [-95.3697, 29.7605], [-95.3697, 29.7602]]
HOUSE = [[-95.3699, 29.7603], [-95.3699, 29.7604], [-95.3698, 29.7604], [-95.3698, 29.7603]]
SHED = [[-95.36975, 29.76025], [-95.36975, 29.76028], [-95.36972, 29.76028], [-95.36972, 29.76025]]


@pytest.fixture
def client():
    with TestClient(main.app) as tc:
        yield tc


def _stub(monkeypatch, coords=(LAT, LNG), parcel=None, buildings=None):
    async def resolve(http_client, query):
        return coords

    async def parcel_geom(http_client, lat, lng):
        return parcel

    async def building_geoms(http_client, lat, lng):
        return buildings

    monkeypatch.setattr(main, "resolve_location", resolve)
    monkeypatch.setattr(main, "fetch_parcel_geometry", parcel_geom)
    monkeypatch.setattr(main, "fetch_building_geometries", building_geoms)


def test_health(client):
    r = client.get("/health")
    assert r.status_code == 200
    assert r.json()["status"] == "ok"
    assert r.json()["http_client"] is True


def test_analyze(client, monkeypatch):
    _stub(monkeypatch, parcel={"rings": [LOT]}, buildings=[{"rings": [HOUSE]}, {"rings": [SHED]}])

    r = client.post("/api/analyze", json={"query": "901 Bagby St, Houston, TX"})
    assert r.status_code == 200
    data = r.json()
    assert data["coordinates"] == {"lat": LAT, "lng": LNG}
    assert data["parcel_sqft"] == compute_area([LOT])
    assert data["building_sqft"] == compute_area([HOUSE]) + compute_area([SHED])
    assert data["building_count"] == 2
    assert data["data_sources"] == {"parcel_found": True, "building_service": True}


def test_analyze_nothing_found(client, monkeypatch):
    _stub(monkeypatch, parcel=None, buildings=[])

    data = client.post("/api/analyze", json={"query": "29.7604, -95.3698"}).json()
    assert data["parcel_sqft"] is None
    assert data["building_sqft"] is None
    assert data["building_count"] == 0


def test_analyze_building_service_down(client, monkeypatch):
    _stub(monkeypatch, parcel={"rings": [LOT]}, buildings=None)

    data = client.post("/api/analyze", json={"query": "29.7604, -95.3698"}).json()
    assert data["parcel_sqft"] == compute_area([LOT])
    assert data["building_sqft"] is None
    assert data["data_sources"]["building_service"] is False


def test_analyze_unresolvable_location(client, monkeypatch):
    _stub(monkeypatch, coords=None)

    r = client.post("/api/analyze", json={"query": "nowhere"})
    assert r.status_code == 400


def test_area_geometry(client):
    r = client.post("/api/area", json={"geometry": {"rings": [LOT, HOUSE[::-1]]}})
    assert r.status_code == 200
    assert r.json()["area_sqft"] == compute_area([LOT, HOUSE[::-1]])


def test_area_geojson(client):
    r = client.post("/api/area", json={"geometry": {"type": "Polygon", "coordinates": [LOT]}})
    assert r.json()["area_sqft"] == compute_area([LOT])


def test_area_polygons(client):
    r = client.post("/api/area", json={"polygons": [[HOUSE], [SHED], [[[0, 0], [1, 1]]]]})
    assert r.json()["area_sqft"] == compute_area([HOUSE]) + compute_area([SHED])


def test_area_unavailable_is_null(client):
    r = client.post("/api/area", json={"polygons": []})
    assert r.status_code == 200
    assert r.json()["area_sqft"] is None


def test_area_requires_input(client):
    assert client.post("/api/area", json={}).status_code == 400


def test_cache_clear(client):
    assert client.post("/api/cache/clear").json() == {"status": "cleared"}


def test_analyze_multipolygon_building(client, monkeypatch):
    """Each member of a multi-part footprint counts on its own."""
    multi = {"type": "MultiPolygon", "coordinates": [[HOUSE], [SHED[::-1]]]}
    _stub(monkeypatch, parcel={"rings": [LOT]}, buildings=[multi])

    data = client.post("/api/analyze", json={"query": "29.7604, -95.3698"}).json()
    assert data["building_sqft"] == compute_area([HOUSE]) + compute_area([SHED])
    assert data["building_count"] == 1


def test_analyze_geocoder_garbage_is_400(client, monkeypatch):
    async def no_match(http_client, query):
        return None

    monkeypatch.setattr(main, "resolve_location", no_match)
    assert client.post("/api/analyze", json={"query": "901 Bagby St"}).status_code == 400

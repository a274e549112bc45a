import csv
import io

import pytest
from fastapi.testclient import TestClient

from ecoroute.main import create_app
from ecoroute.services.routing.engine import OptimizerEngine

DEPOT = {"lat": 12.9716, "lng": 77.5946, "address": "Depot"}
PICKUPS = [
    {"lat": 12.9850, "lng": 77.6050, "address": "P1", "waste_type": "plastic", "priority": 1},
    {"lat": 12.9600, "lng": 77.6200, "address": "P2", "waste_type": "paper", "priority": 3},
    {"lat": 12.9780, "lng": 77.5800, "address": "P3", "priority": 2},
]


@pytest.fixture
def api_client(test_settings, fake_router, fixed_clock):
    engine = OptimizerEngine(settings=test_settings, routing_provider=fake_router(), clock=fixed_clock)
    with TestClient(create_app(test_settings, engine=engine)) as client:
        yield client


def _optimize(client: TestClient, **overrides) -> dict:
    payload = {
        "collector_id": "collector-7",
        "pickup_locations": PICKUPS,
        "start_location": DEPOT,
        "vehicle_type": "van",
    }
    payload.update(overrides)
    return client.post("/api/routes/optimize", json=payload)


def test_health_endpoints(api_client):
    assert api_client.get("/api/health").json() == {"status": "ok"}

    routing = api_client.get("/api/health/routing").json()
    assert routing["live_routing"] is True
    assert routing["live_weather"] is False
    assert routing["live_traffic"] is False
    assert routing["queue"]["pending"] == 0


def test_root_lists_the_api(api_client):
    body = api_client.get("/").json()
    assert body["status"] == "running"
    assert body["health"] == "/api/health"


def test_optimize_then_fetch_and_export(api_client):
    response = _optimize(api_client)
    assert response.status_code == 200
    route = response.json()

    assert route["collector_id"] == "collector-7"
    assert route["vehicle_type"] == "van"
    assert route["fallback"] is False
    assert route["waypoints"][0]["address"] == "Depot"
    assert sorted(point["address"] for point in route["waypoints"][1:]) == ["P1", "P2", "P3"]
    assert len(route["segments"]) == 3
    assert route["segments"][0]["from"]["address"] == "Depot"
    assert route["segments"][0]["live"] is True
    assert route["estimated_savings"]["distance"] >= 0

    fetched = api_client.get(f"/api/routes/{route['id']}")
    assert fetched.status_code == 200
    assert fetched.json()["id"] == route["id"]

    exported = api_client.get(f"/api/routes/{route['id']}/csv")
    assert exported.status_code == 200
    assert exported.headers["content-type"].startswith("text/csv")
    rows = list(csv.DictReader(io.StringIO(exported.text)))
    assert [row["sequence"] for row in rows] == ["1", "2", "3"]
    assert rows[0]["from_lat"] == "12.9716"

    metrics = api_client.get("/api/routes/metrics").json()
    assert metrics["routes_optimized"] == 1
    assert metrics["queue"]["dispatched"] == 12


def test_unknown_route_is_404(api_client):
    assert api_client.get("/api/routes/route-missing").status_code == 404
    assert api_client.get("/api/routes/route-missing/csv").status_code == 404


@pytest.mark.parametrize(
    "overrides",
    [
        {"pickup_locations": []},
        {"vehicle_type": "plane"},
        {"start_location": {"lat": 120.0, "lng": 77.59}},
        {"pickup_locations": [{"lat": 12.98, "lng": 77.6, "priority": 5}]},
    ],
)
def test_invalid_optimize_requests_are_400(api_client, overrides):
    response = _optimize(api_client, **overrides)
    assert response.status_code == 400
    assert response.json()["detail"]


def test_shortest_path_prefers_live_geometry(api_client):
    response = api_client.post(
        "/api/routes/shortest-path",
        json={"from_lat": 12.9716, "from_lng": 77.5946, "to_lat": 12.9800, "to_lng": 77.6000},
    )
    assert response.status_code == 200
    body = response.json()
    assert body["source"] == "live"
    assert body["path"][0]["kind"] == "start"
    assert body["instructions"][-1] == "Arrive at destination"


def test_shortest_path_rejects_bad_coordinates(api_client):
    response = api_client.post(
        "/api/routes/shortest-path",
        json={"from_lat": 95.0, "from_lng": 77.5946, "to_lat": 12.98, "to_lng": 77.6},
    )
    assert response.status_code == 400


def test_collection_time(api_client):
    response = api_client.post("/api/routes/collection-time", json={"location": DEPOT})
    assert response.status_code == 200
    body = response.json()
    # weekday late morning without providers: time-of-day traffic, good collection window
    assert body["traffic_score"] == pytest.approx(60.0)
    assert body["time_score"] == 100
    assert body["best_time"] in ("Now", "Later today")
    assert 0 <= body["overall_score"] <= 100

import asyncio
from datetime import datetime

import pytest

from ecoroute.errors import OptimizationFailure, ValidationError
from ecoroute.models.domain import Location, VehicleType
from ecoroute.services.geospatial import haversine_km
from ecoroute.services.routing.engine import OptimizerEngine, estimate_savings, stitch_polyline
from ecoroute.services.routing.models import RouteSegment


def _engine(settings, **kwargs) -> OptimizerEngine:
    kwargs.setdefault("clock", lambda: datetime(2024, 7, 10, 11, 0))
    return OptimizerEngine(settings=settings, **kwargs)


def _assert_route_shape(route, start, pickups):
    assert route.waypoints[0] == start
    assert len(route.waypoints) == len(pickups) + 1
    assert sorted(route.waypoints[1:], key=pickups.index) == pickups
    assert len(route.segments) == len(route.waypoints) - 1
    for segment, (origin, destination) in zip(route.segments, zip(route.waypoints, route.waypoints[1:])):
        assert segment.origin == origin
        assert segment.destination == destination


@pytest.mark.asyncio
async def test_scenario_a_van_route_with_live_provider(test_settings, fake_router, depot, pickups):
    router = fake_router()
    engine = _engine(test_settings, routing_provider=router)

    route = await engine.optimize_route("collector-1", pickups, depot, "van")

    _assert_route_shape(route, depot, pickups)
    assert route.vehicle_type is VehicleType.VAN
    assert not route.fallback
    assert route.estimated_savings.distance >= 0
    assert route.estimated_savings.cost >= 0
    assert 0 <= route.efficiency <= 100
    assert route.total_distance_km == pytest.approx(sum(s.distance_km for s in route.segments))
    assert route.total_duration_hr > 0
    assert route.total_fuel_cost > 0
    assert route.total_emissions_kg > 0
    assert all(segment.live for segment in route.segments)
    assert route.full_polyline[0] == depot.coordinates
    assert route.full_polyline[-1] == route.waypoints[-1].coordinates
    # 12 directed pairs among four locations, each fetched once thanks to the cache
    assert len(router.calls) == 12
    assert router.peak_in_flight <= test_settings.max_concurrent_requests
    await engine.aclose()


@pytest.mark.asyncio
async def test_route_without_live_routing_uses_haversine(test_settings, depot, pickups):
    engine = _engine(test_settings)
    route = await engine.optimize_route("collector-1", pickups, depot)

    _assert_route_shape(route, depot, pickups)
    assert not any(segment.live for segment in route.segments)
    assert route.total_distance_km == pytest.approx(
        sum(haversine_km(a.lat, a.lng, b.lat, b.lng) for a, b in zip(route.waypoints, route.waypoints[1:]))
    )
    assert engine.queue.dispatched == 0
    await engine.aclose()


@pytest.mark.asyncio
async def test_scenario_c_rate_limited_segment_still_resolves(test_settings, fake_router, depot, pickups):
    router = fake_router(rate_limited_calls=1)
    engine = _engine(test_settings, routing_provider=router)

    route = await engine.optimize_route("collector-1", pickups, depot, VehicleType.TRUCK)

    _assert_route_shape(route, depot, pickups)
    assert not route.fallback
    assert engine.queue.rate_limited == 1
    assert len(router.calls) == 13
    await engine.aclose()


@pytest.mark.asyncio
async def test_failing_provider_degrades_every_segment(test_settings, fake_router, depot, pickups):
    engine = _engine(test_settings, routing_provider=fake_router(fail=True))
    route = await engine.optimize_route("collector-1", pickups, depot)

    _assert_route_shape(route, depot, pickups)
    assert not route.fallback
    assert not any(segment.live for segment in route.segments)
    await engine.aclose()


@pytest.mark.asyncio
async def test_scenario_d_single_pickup(test_settings, depot):
    engine = _engine(test_settings)
    pickup = Location(lat=12.98, lng=77.60)

    route = await engine.optimize_route("collector-1", [pickup], depot)

    assert route.waypoints == [depot, pickup]
    assert len(route.segments) == 1
    await engine.aclose()


@pytest.mark.parametrize(
    ("pickups", "start", "vehicle"),
    [
        ([], Location(lat=12.97, lng=77.59), "truck"),
        ([Location(lat=91.0, lng=77.6)], Location(lat=12.97, lng=77.59), "truck"),
        ([Location(lat=12.98, lng=77.6)], Location(lat=12.97, lng=-181.0), "truck"),
        ([Location(lat=12.98, lng=77.6)], Location(lat=12.97, lng=77.59), "hovercraft"),
        ([Location(lat=12.98, lng=77.6, priority=7)], Location(lat=12.97, lng=77.59), "van"),
    ],
)
@pytest.mark.asyncio
async def test_invalid_requests_raise_validation_error(test_settings, pickups, start, vehicle):
    engine = _engine(test_settings)
    with pytest.raises(ValidationError):
        await engine.optimize_route("collector-1", pickups, start, vehicle)
    assert engine.performance_metrics()["routes_optimized"] == 0
    await engine.aclose()


@pytest.mark.asyncio
async def test_unexpected_failure_returns_fallback_route(test_settings, depot, pickups, monkeypatch):
    engine = _engine(test_settings)

    async def explode(*args, **kwargs):
        raise OptimizationFailure("search blew up")

    monkeypatch.setattr(engine.optimizer, "optimize", explode)
    route = await engine.optimize_route("collector-1", pickups, depot, "bike")

    assert route.fallback
    assert route.id.startswith("fallback-route-")
    assert route.waypoints == [depot, *pickups]
    assert route.efficiency == 50
    assert route.estimated_savings.distance == 0
    assert route.estimated_savings.cost == 0
    first = route.segments[0]
    assert first.duration_hr == pytest.approx(first.distance_km / 40)
    assert engine.get_route(route.id) is route
    assert engine.performance_metrics()["routes_optimized"] == 0
    assert engine.performance_metrics()["fallback_routes"] == 1
    await engine.aclose()


@pytest.mark.asyncio
async def test_registry_keeps_most_recent_routes(test_settings, depot):
    settings = test_settings.model_copy(update={"route_registry_size": 2})
    engine = _engine(settings)
    pickup = [Location(lat=12.98, lng=77.60)]

    routes = [await engine.optimize_route(f"c{index}", pickup, depot) for index in range(3)]

    assert engine.get_route(routes[0].id) is None
    assert engine.get_route(routes[1].id) is routes[1]
    assert engine.get_route(routes[2].id) is routes[2]
    metrics = engine.performance_metrics()
    assert metrics["routes_optimized"] == 3
    assert "cache" in metrics and "queue" in metrics
    await engine.aclose()


@pytest.mark.asyncio
async def test_prewarm_fetches_pairs_once_and_reuses_cache(test_settings, fake_router, depot, pickups):
    router = fake_router()
    engine = _engine(test_settings, routing_provider=router)
    locations = [depot, *pickups]

    assert await engine.prewarm(locations, VehicleType.TRUCK) == 12
    assert await engine.prewarm(locations, VehicleType.TRUCK) == 12
    assert len(router.calls) == 12
    # longest pair first
    first_origin, first_destination, _ = router.calls[0]
    longest = max(
        engine.estimate_distance(a, b) for a in locations for b in locations if a is not b
    )
    assert engine.estimate_distance(first_origin, first_destination) == pytest.approx(longest)
    await engine.aclose()


@pytest.mark.asyncio
async def test_prewarm_stops_when_cancelled(test_settings, fake_router, depot, pickups):
    router = fake_router()
    engine = _engine(test_settings, routing_provider=router)
    cancel = asyncio.Event()
    cancel.set()

    assert await engine.prewarm([depot, *pickups], VehicleType.TRUCK, cancel) == 0
    assert router.calls == []
    await engine.aclose()


@pytest.mark.asyncio
async def test_cancelling_optimization_signals_children(test_settings, fake_router, depot, pickups):
    router = fake_router(delay=0.5)
    engine = _engine(test_settings, routing_provider=router)
    cancel = asyncio.Event()

    task = asyncio.create_task(engine.optimize_route("collector-1", pickups, depot, cancel_event=cancel))
    await asyncio.sleep(0.05)
    task.cancel()

    with pytest.raises(asyncio.CancelledError):
        await task
    assert cancel.is_set()
    await engine.aclose()


@pytest.mark.asyncio
async def test_persistent_cache_is_shared_between_engines(test_settings, fake_router, depot):
    settings = test_settings.model_copy(update={"persistent_cache_enabled": True})
    destination = Location(lat=12.99, lng=77.62)

    first = _engine(settings, routing_provider=fake_router())
    live = await first.route_data(depot, destination, VehicleType.TRUCK)
    await first.aclose()

    second = _engine(settings, routing_provider=fake_router(fail=True))
    cached = await second.route_data(depot, destination, VehicleType.TRUCK)
    assert cached is not None
    assert cached.distance_km == pytest.approx(live.distance_km)
    await second.aclose()


@pytest.mark.asyncio
async def test_collection_time_prediction(test_settings, static_weather, static_traffic, depot):
    good = _engine(
        test_settings,
        weather_provider=static_weather("clear"),
        traffic_provider=static_traffic(0.1),
        clock=lambda: datetime(2024, 7, 10, 11, 0),
    )
    prediction = await good.predict_collection_time(depot)
    assert prediction["best_time"] == "Now"
    assert prediction["traffic_score"] == pytest.approx(90.0)
    assert prediction["overall_score"] == pytest.approx((90 + 100 + 100) / 3, abs=0.1)

    poor = _engine(
        test_settings,
        weather_provider=static_weather("snow"),
        traffic_provider=static_traffic(0.7),
        clock=lambda: datetime(2024, 7, 10, 20, 0),
    )
    prediction = await poor.predict_collection_time(depot)
    assert prediction["best_time"] == "Later today"
    assert prediction["weather_score"] == 70
    assert prediction["time_score"] == 60
    await good.aclose()
    await poor.aclose()


@pytest.mark.asyncio
async def test_sweeper_lifecycle_and_memo_trim(test_settings):
    settings = test_settings.model_copy(
        update={"distance_memo_max_entries": 10, "distance_memo_keep_entries": 5}
    )
    engine = _engine(settings)
    origin = Location(lat=0.0, lng=0.0)
    for index in range(12):
        engine.estimate_distance(origin, Location(lat=0.0, lng=index * 0.01))

    assert await engine.sweep() == 7
    assert len(engine.memo) == 5

    engine.start()
    assert engine._sweeper is not None and not engine._sweeper.done()
    await engine.aclose()
    assert engine._sweeper is None


def _segment(origin, destination, distance, cost, polyline=None):
    return RouteSegment(
        origin=origin,
        destination=destination,
        distance_km=distance,
        duration_hr=distance / 40,
        fuel_cost=cost,
        emissions_kg=cost,
        polyline=polyline,
    )


def test_stitch_polyline_skips_shared_points_and_bridges_gaps():
    a, b, c = Location(lat=0, lng=0), Location(lat=0, lng=1), Location(lat=0, lng=2)
    joined = stitch_polyline(
        [
            _segment(a, b, 1, 1, ((0.0, 0.0), (0.0, 0.5), (0.0, 1.0))),
            _segment(b, c, 1, 1, ((0.0, 1.0), (0.0, 1.5), (0.0, 2.0))),
        ]
    )
    assert joined == [(0.0, 0.0), (0.0, 0.5), (0.0, 1.0), (0.0, 1.5), (0.0, 2.0)]

    gapped = stitch_polyline(
        [
            _segment(a, b, 1, 1, ((0.0, 0.0), (0.0, 0.98))),
            _segment(b, c, 1, 1, ((0.0, 1.0), (0.0, 2.0))),
        ]
    )
    assert gapped == [(0.0, 0.0), (0.0, 0.98), (0.0, 1.0), (0.0, 2.0)]

    no_geometry = stitch_polyline([_segment(a, b, 1, 1), _segment(b, c, 1, 1)])
    assert no_geometry == [a.coordinates, b.coordinates, c.coordinates]


def test_savings_are_relative_to_input_order_and_never_negative():
    a, b = Location(lat=0, lng=0), Location(lat=0, lng=1)
    baseline = [_segment(a, b, 10, 4)]
    better = [_segment(a, b, 8, 3)]

    savings, efficiency = estimate_savings(better, baseline)
    assert savings.distance == pytest.approx(20.0)
    assert savings.time == pytest.approx(16.0)
    assert savings.cost == pytest.approx(25.0)
    assert savings.emissions == pytest.approx(22.5)
    assert efficiency == pytest.approx(22.5)

    worse, efficiency = estimate_savings(baseline, better)
    assert worse.distance == 0
    assert worse.cost == 0
    assert efficiency == 0

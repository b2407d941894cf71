import asyncio
import random

from fleetsim.repository import MemoryRepository
from fleetsim.schemas import Coordinate, Delivery, Route, Vehicle
from fleetsim.sim.engine import ProgressionEngine, interpolate_position
from fleetsim.sim.ledger import ProgressLedger


def _vehicle(vehicle_id="veh-1", route_id="route-1", fuel_level=80.0):
    return Vehicle(
        id=vehicle_id,
        vehicle_number=f"VH-{vehicle_id}",
        driver_name="Rohan Desai",
        status="in-transit",
        latitude=0.0,
        longitude=0.0,
        fuel_level=fuel_level,
        current_route_id=route_id,
    )


def _route(route_id="route-1", vehicle_id="veh-1", path=((0.0, 0.0), (0.0, 1.0), (1.0, 1.0))):
    points = [Coordinate(latitude=lat, longitude=lng) for lat, lng in path]
    return Route(
        id=route_id,
        name=f"Route-{vehicle_id}",
        vehicle_id=vehicle_id,
        status="active",
        total_distance=222.39,
        estimated_duration=267,
        estimated_cost=111.2,
        waypoints=points,
        path_coordinates=points,
    )


def _engine(repo, events=None, **kwargs):
    async def sink(payload):
        if events is not None:
            events.append(payload)

    return ProgressionEngine(repo, ProgressLedger(), random.Random(7), update_sink=sink, **kwargs)


async def _store(*records):
    repo = MemoryRepository()
    for record in records:
        if isinstance(record, Vehicle):
            await repo.create_vehicle(record)
        elif isinstance(record, Route):
            await repo.create_route(record)
        else:
            await repo.create_delivery(record)
    return repo


def test_interpolate_position_walks_segments():
    path = [Coordinate(latitude=0, longitude=0), Coordinate(latitude=0, longitude=2), Coordinate(latitude=2, longitude=2)]

    assert interpolate_position(path, 0.0) == (0.0, 0.0)
    assert interpolate_position(path, 0.25) == (0.0, 1.0)
    assert interpolate_position(path, 0.5) == (0.0, 2.0)
    assert interpolate_position(path, 1.0) == (2.0, 2.0)
    assert interpolate_position(path[:1], 0.3) == (0.0, 0.0)


def test_twenty_ticks_complete_a_fresh_route():
    async def scenario():
        repo = await _store(_vehicle(), _route())
        engine = _engine(repo)
        reports = [await engine.tick() for _ in range(20)]
        return repo, reports

    repo, reports = asyncio.run(scenario())
    vehicle = asyncio.run(repo.get_vehicle("veh-1"))
    route = asyncio.run(repo.get_route("route-1"))

    assert [r.completed for r in reports] == [0] * 19 + [1]
    assert vehicle.route_completion == 100
    assert vehicle.status == "idle"
    assert vehicle.current_route_id is None
    assert (vehicle.latitude, vehicle.longitude) == (1.0, 1.0)
    assert vehicle.speed == 0
    assert route.status == "completed"
    assert route.completed_at is not None


def test_completion_is_idempotent():
    async def scenario():
        repo = await _store(_vehicle(), _route())
        engine = _engine(repo)
        for _ in range(20):
            await engine.tick()
        before = await repo.get_vehicle("veh-1")
        reports = [await engine.tick() for _ in range(5)]
        after = await repo.get_vehicle("veh-1")
        return before, after, reports

    before, after, reports = asyncio.run(scenario())

    assert all(r.advanced == 0 and r.completed == 0 for r in reports)
    assert after == before


def test_route_completion_leaves_deliveries_in_transit():
    delivery = Delivery(
        id="del-1",
        order_id="ORD-1",
        status="in-transit",
        customer_id="CUST-1",
        customer_name="Prime Delivery",
        pickup_address="1 Market Road",
        pickup_lat=0.0,
        pickup_lng=0.0,
        delivery_address="2 Main Road",
        delivery_lat=1.0,
        delivery_lng=1.0,
        vehicle_id="veh-1",
        route_id="route-1",
    )

    async def scenario():
        repo = await _store(_vehicle(), _route(), delivery)
        engine = _engine(repo)
        for _ in range(25):
            await engine.tick()
        return await repo.get_delivery("del-1"), await repo.get_route("route-1")

    stored, route = asyncio.run(scenario())

    assert route.status == "completed"
    assert stored.status == "in-transit"
    assert stored.actual_delivery_time is None


def test_fuel_stays_in_range_over_long_run():
    async def scenario():
        repo = await _store(_vehicle(fuel_level=5.0), _route())
        engine = _engine(repo, step=0.0005)
        levels = []
        for _ in range(1000):
            await engine.tick()
            levels.append((await repo.get_vehicle("veh-1")).fuel_level)
        return levels

    levels = asyncio.run(scenario())

    assert all(0 <= level <= 100 for level in levels)
    assert levels[-1] == 0.0
    assert levels == sorted(levels, reverse=True)


def test_speed_is_memoized_per_route_and_drops_near_arrival():
    events = []

    async def scenario():
        repo = await _store(_vehicle(), _route())
        engine = _engine(repo, events=events)
        for _ in range(20):
            await engine.tick()

    asyncio.run(scenario())
    speeds = [event["vehicle"]["speed"] for event in events]

    assert len(events) == 20
    assert len(set(speeds[:17])) == 1
    assert 30 <= speeds[0] <= 60
    assert speeds[17:] == [0, 0, 0]


def test_events_carry_camel_case_vehicle_snapshot():
    events = []

    async def scenario():
        repo = await _store(_vehicle(), _route())
        await _engine(repo, events=events).tick()

    asyncio.run(scenario())

    assert events[0]["eventType"] == "vehicle_update"
    snapshot = events[0]["vehicle"]
    assert snapshot["id"] == "veh-1"
    assert snapshot["routeCompletion"] == 5.0
    assert snapshot["currentRouteId"] == "route-1"
    assert "lastUpdate" in snapshot


def test_one_vehicle_failure_does_not_stop_the_tick():
    class FlakyRepository(MemoryRepository):
        async def get_route(self, route_id):
            if route_id == "route-bad":
                raise RuntimeError("store timeout")
            return await super().get_route(route_id)

    async def scenario():
        repo = FlakyRepository()
        await repo.create_vehicle(_vehicle("veh-bad", "route-bad"))
        await repo.create_vehicle(_vehicle("veh-ghost", "route-missing"))
        await repo.create_vehicle(_vehicle("veh-1", "route-1"))
        await repo.create_route(_route())
        report = await _engine(repo).tick()
        return report, await repo.get_vehicle("veh-1")

    report, vehicle = asyncio.run(scenario())

    assert report.failed == 1
    assert report.skipped == 1
    assert report.advanced == 1
    assert vehicle.route_completion == 5.0


def test_single_point_path_arrives_immediately():
    async def scenario():
        repo = await _store(_vehicle(), _route(path=((0.5, 0.5),)))
        report = await _engine(repo).tick()
        return report, await repo.get_vehicle("veh-1")

    report, vehicle = asyncio.run(scenario())

    assert report.completed == 1
    assert vehicle.status == "idle"
    assert vehicle.route_completion == 100
    assert (vehicle.latitude, vehicle.longitude) == (0.5, 0.5)


def test_progress_resumes_from_persisted_completion():
    async def scenario():
        vehicle = _vehicle()
        vehicle.route_completion = 50.0
        repo = await _store(vehicle, _route())
        await _engine(repo).tick()
        return await repo.get_vehicle("veh-1")

    vehicle = asyncio.run(scenario())

    assert vehicle.route_completion == 55.0


def test_overlapping_tick_is_refused():
    async def scenario():
        repo = await _store(_vehicle(), _route())
        engine = _engine(repo)
        async with engine._tick_lock:
            report = await engine.tick()
        return report, await repo.get_vehicle("veh-1")

    report, vehicle = asyncio.run(scenario())

    assert report.overlapped
    assert vehicle.route_completion == 0


def test_failed_release_is_retried_on_next_tick():
    class FailOnceRepository(MemoryRepository):
        def __init__(self):
            super().__init__()
            self.failed = False

        async def update_vehicle(self, vehicle_id, patch):
            if patch.get("status") == "idle" and not self.failed:
                self.failed = True
                raise RuntimeError("write rejected")
            return await super().update_vehicle(vehicle_id, patch)

    async def scenario():
        repo = FailOnceRepository()
        await repo.create_vehicle(_vehicle())
        await repo.create_route(_route())
        engine = _engine(repo)
        reports = [await engine.tick() for _ in range(21)]
        return reports, await repo.get_vehicle("veh-1"), await repo.get_route("route-1")

    reports, vehicle, route = asyncio.run(scenario())

    assert reports[19].failed == 1
    assert reports[20].completed == 1
    assert vehicle.status == "idle"
    assert vehicle.current_route_id is None
    assert vehicle.route_completion == 100
    assert route.status == "completed"


def test_vehicle_left_on_completed_route_is_released():
    async def scenario():
        route = _route()
        route.status = "completed"
        repo = await _store(_vehicle(), route)
        report = await _engine(repo).tick()
        return report, await repo.get_vehicle("veh-1")

    report, vehicle = asyncio.run(scenario())

    assert report.completed == 1
    assert vehicle.status == "idle"
    assert vehicle.current_route_id is None

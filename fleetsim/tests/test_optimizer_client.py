import asyncio
import json

import httpx
import pytest

from fleetsim import dispatch
from fleetsim.optimizer_client import RemotePlanError, request_route_plan
from fleetsim.repository import MemoryRepository
from fleetsim.schemas import Coordinate, Delivery, Vehicle
from fleetsim.sim.ledger import ProgressLedger

WAYPOINTS = [Coordinate(latitude=0, longitude=0, label="start"), Coordinate(latitude=0, longitude=1)]


def test_remote_plan_is_parsed_from_camel_case():
    seen = {}

    def handler(request):
        seen["url"] = str(request.url)
        seen["body"] = json.loads(request.content)
        return httpx.Response(
            200,
            json={
                "visitingOrder": [0, 1],
                "totalDistance": 111.19,
                "estimatedDurationMinutes": 133,
                "pathCoordinates": [{"lat": 0, "lng": 0}, {"lat": 0, "lng": 1}],
            },
        )

    plan = asyncio.run(
        request_route_plan("http://optimizer:8000/", WAYPOINTS, transport=httpx.MockTransport(handler))
    )

    assert seen["url"] == "http://optimizer:8000/api/routes/optimize"
    assert seen["body"]["algorithm"] == "dijkstra"
    assert seen["body"]["waypoints"][0] == {"latitude": 0.0, "longitude": 0.0, "label": "start"}
    assert plan.visiting_order == [0, 1]
    assert plan.total_distance == 111.19
    assert plan.path_coordinates[1] == Coordinate(latitude=0, longitude=1)
    assert plan.meta["source"] == "remote"


def test_policy_falls_back_to_local_planning(monkeypatch):
    async def unavailable(*args, **kwargs):
        raise httpx.ConnectError("connection refused")

    monkeypatch.setattr(dispatch, "request_route_plan", unavailable)
    policy = dispatch.AssignmentPolicy(MemoryRepository(), ProgressLedger(), optimizer_url="http://optimizer:8000")

    plan = asyncio.run(policy.plan(WAYPOINTS))

    assert plan.visiting_order == [0, 1]
    assert plan.total_distance == 111.19
    assert "source" not in plan.meta


def _policy_with_remote(repo, handler):
    return dispatch.AssignmentPolicy(
        repo,
        ProgressLedger(),
        optimizer_url="http://optimizer:8000",
        optimizer_transport=httpx.MockTransport(handler),
    )


async def _two_vehicles_two_deliveries(repo):
    for idx in range(2):
        await repo.create_vehicle(
            Vehicle(id=f"veh-{idx}", vehicle_number=f"VH-{idx}", driver_name="Mohan Singh", latitude=20.0, longitude=85.0)
        )
    for idx in range(2):
        await repo.create_delivery(
            Delivery(
                id=f"del-{idx}",
                order_id=f"ORD-{idx}",
                customer_id="CUST-1",
                customer_name="Prime Delivery",
                pickup_address="1 Market Road",
                pickup_lat=20.0,
                pickup_lng=85.0,
                delivery_address=f"{idx} Main Road",
                delivery_lat=20.5 + idx,
                delivery_lng=85.5,
            )
        )
    return repo


def test_malformed_remote_reply_falls_back_to_local_planning():
    replies = [[], {"visitingOrder": None}]

    def handler(request):
        return httpx.Response(200, json=replies.pop(0))

    async def scenario():
        repo = await _two_vehicles_two_deliveries(MemoryRepository())
        result = await _policy_with_remote(repo, handler).assign_pending()
        return result, await repo.list_vehicles()

    result, vehicles = asyncio.run(scenario())

    assert len(result.routes) == 2
    assert result.deliveries_assigned == 2
    assert all(v.status == "in-transit" for v in vehicles)
    assert all(len(r.path_coordinates) == 2 for r in result.routes)


def test_remote_plan_that_skips_waypoints_is_rejected():
    def handler(request):
        return httpx.Response(
            200,
            json={
                "visitingOrder": [1, 0],
                "totalDistance": 1.0,
                "estimatedDurationMinutes": 1,
                "pathCoordinates": [{"lat": 0, "lng": 1}, {"lat": 0, "lng": 0}],
            },
        )

    with pytest.raises(RemotePlanError):
        asyncio.run(request_route_plan("http://optimizer:8000", WAYPOINTS, transport=httpx.MockTransport(handler)))

    policy = _policy_with_remote(MemoryRepository(), handler)
    plan = asyncio.run(policy.plan(WAYPOINTS))

    assert plan.visiting_order == [0, 1]
    assert "source" not in plan.meta


def test_remote_path_must_match_the_waypoints_sent():
    def handler(request):
        return httpx.Response(
            200,
            json={
                "visitingOrder": [0, 1],
                "totalDistance": 1.0,
                "estimatedDurationMinutes": 1,
                "pathCoordinates": [{"lat": 0, "lng": 0}, {"lat": 45, "lng": 45}],
            },
        )

    with pytest.raises(RemotePlanError):
        asyncio.run(request_route_plan("http://optimizer:8000", WAYPOINTS, transport=httpx.MockTransport(handler)))

from __future__ import annotations

"""
File: fleetsim/optimizer_client.py
Purpose: HTTP client for a remote route optimizer.
Key responsibilities:
- Call /api/routes/optimize with a waypoint list.
- Validate the reply against the optimize response contract.
- Normalize it into a RoutePlan over the caller's own waypoints.
"""

import math
from typing import Sequence

import httpx

from fleetsim.routing.optimizer import RoutePlan
from fleetsim.schemas import Coordinate, OptimizeResponse


class RemotePlanError(ValueError):
    """The optimizer answered, but the plan does not fit the waypoints sent."""


def _same_point(a: Coordinate, b: Coordinate) -> bool:
    return math.isclose(a.latitude, b.latitude, abs_tol=1e-9) and math.isclose(a.longitude, b.longitude, abs_tol=1e-9)


def check_plan_covers(reply: OptimizeResponse, waypoints: Sequence[Coordinate]) -> None:
    """Raise RemotePlanError unless the reply visits every waypoint once, starting at index 0."""
    order = reply.visiting_order
    if sorted(order) != list(range(len(waypoints))):
        raise RemotePlanError(f"visiting order is not a permutation: {order}")
    if order and order[0] != 0:
        raise RemotePlanError(f"visiting order does not start at the vehicle: {order}")
    if len(reply.path_coordinates) != len(order):
        raise RemotePlanError("path length does not match visiting order")
    for idx, point in zip(order, reply.path_coordinates):
        if not _same_point(waypoints[idx], point):
            raise RemotePlanError(f"path point does not match waypoint {idx}")


async def request_route_plan(
    optimizer_url: str,
    waypoints: Sequence[Coordinate],
    algorithm: str = "dijkstra",
    timeout: float = 10.0,
    transport: httpx.AsyncBaseTransport | None = None,
) -> RoutePlan:
    """Call the remote optimizer and return its plan.

    Raises httpx.HTTPError for transport/status failures, pydantic's
    ValidationError for a malformed body and RemotePlanError for a plan that
    does not cover the waypoints.
    """
    payload = {
        "waypoints": [w.model_dump() for w in waypoints],
        "algorithm": algorithm,
    }
    async with httpx.AsyncClient(timeout=timeout, transport=transport) as client:
        resp = await client.post(f"{optimizer_url.rstrip('/')}/api/routes/optimize", json=payload)
        resp.raise_for_status()
        data = resp.json()
    reply = OptimizeResponse.model_validate(data)
    check_plan_covers(reply, waypoints)
    return RoutePlan(
        visiting_order=list(reply.visiting_order),
        total_distance=reply.total_distance,
        estimated_duration_minutes=reply.estimated_duration_minutes,
        path_coordinates=[waypoints[idx] for idx in reply.visiting_order],
        meta={"algorithm": algorithm, "source": "remote"},
    )

from __future__ import annotations

"""
File: fleetsim/routing/optimizer.py
Purpose: Waypoint ordering for a single vehicle route.
Key responsibilities:
- Order waypoints with a greedy nearest-neighbour sweep from a fixed start.
- Provide the "dijkstra" and "astar" labelled variants.
- Report total distance, estimated duration and the interpolatable path.

Both labels are heuristics for a fixed-start travelling-salesman tour. Neither
computes a shortest path over a road graph and neither is optimal. The "astar"
label runs A*-style open-set/gScore/fScore bookkeeping towards the waypoint
centroid before the sweep; the sweep itself is shared, so both labels return
the same visiting order for the same input.
"""

from dataclasses import dataclass, field
import math
from typing import Sequence

from fleetsim.routing.geo import centroid, haversine_km
from fleetsim.schemas import Coordinate

ALGORITHMS = ("dijkstra", "astar")
DEFAULT_AVERAGE_SPEED_KMH = 50.0


@dataclass
class RoutePlan:
    """Optimizer output for one waypoint list."""
    visiting_order: list[int]
    total_distance: float
    estimated_duration_minutes: int
    path_coordinates: list[Coordinate]
    meta: dict[str, object] = field(default_factory=dict)


def distance_matrix(waypoints: Sequence[Coordinate]) -> list[list[float]]:
    """Pairwise haversine distances; the diagonal is zero."""
    n = len(waypoints)
    matrix = [[0.0] * n for _ in range(n)]
    for i in range(n):
        for j in range(i + 1, n):
            d = haversine_km(waypoints[i], waypoints[j])
            matrix[i][j] = d
            matrix[j][i] = d
    return matrix


def nearest_neighbour_order(distances: list[list[float]], start: int = 0) -> list[int]:
    """Greedy sweep; ties resolve to the lowest unvisited index."""
    n = len(distances)
    order = [start]
    visited = {start}
    current = start
    while len(order) < n:
        nearest = -1
        best = float("inf")
        for idx in range(n):
            if idx in visited:
                continue
            if distances[current][idx] < best:
                best = distances[current][idx]
                nearest = idx
        order.append(nearest)
        visited.add(nearest)
        current = nearest
    return order


def round_half_up(value: float, digits: int = 0) -> float:
    """Round with halves going up, unlike the built-in banker's rounding."""
    scale = 10 ** digits
    return math.floor(value * scale + 0.5) / scale


def estimate_duration_minutes(distance_km: float, average_speed_kmh: float = DEFAULT_AVERAGE_SPEED_KMH) -> int:
    """Travel time at a constant average speed, rounded to whole minutes."""
    return int(round_half_up(distance_km / average_speed_kmh * 60))


def _astar_bookkeeping(waypoints: Sequence[Coordinate], distances: list[list[float]]) -> dict[str, object]:
    """Relax gScore/fScore from the start with a centroid heuristic.

    Returns the bookkeeping summary only; it does not change the visiting order.
    """
    n = len(waypoints)
    centre = centroid(waypoints)
    heuristic = [haversine_km(point, centre) for point in waypoints]
    g_score = [float("inf")] * n
    f_score = [float("inf")] * n
    came_from: dict[int, int] = {}
    g_score[0] = 0.0
    f_score[0] = heuristic[0]

    open_set = {0}
    expansions = 0
    while open_set:
        current = min(open_set, key=lambda idx: (f_score[idx], idx))
        open_set.discard(current)
        expansions += 1
        for neighbour in range(n):
            if neighbour == current:
                continue
            tentative = g_score[current] + distances[current][neighbour]
            if tentative < g_score[neighbour]:
                came_from[neighbour] = current
                g_score[neighbour] = tentative
                f_score[neighbour] = tentative + heuristic[neighbour]
                open_set.add(neighbour)

    return {
        "centroid": {"latitude": centre.latitude, "longitude": centre.longitude},
        "expansions": expansions,
        "came_from": dict(sorted(came_from.items())),
    }


def optimize_route(
    waypoints: Sequence[Coordinate],
    algorithm: str = "dijkstra",
    average_speed_kmh: float = DEFAULT_AVERAGE_SPEED_KMH,
) -> RoutePlan:
    """Order waypoints (index 0 is the fixed start) and build the route plan."""
    if algorithm not in ALGORITHMS:
        raise ValueError(f"invalid algorithm: {algorithm}")

    points = list(waypoints)
    if len(points) <= 1:
        return RoutePlan(
            visiting_order=list(range(len(points))),
            total_distance=0.0,
            estimated_duration_minutes=0,
            path_coordinates=points,
            meta={"algorithm": algorithm},
        )

    distances = distance_matrix(points)
    meta: dict[str, object] = {"algorithm": algorithm}
    if algorithm == "astar":
        meta.update(_astar_bookkeeping(points, distances))

    order = nearest_neighbour_order(distances, start=0)
    total = sum(distances[a][b] for a, b in zip(order, order[1:]))

    return RoutePlan(
        visiting_order=order,
        total_distance=round_half_up(total, 2),
        estimated_duration_minutes=estimate_duration_minutes(total, average_speed_kmh),
        path_coordinates=[points[idx] for idx in order],
        meta=meta,
    )

import pytest

from fleetsim.routing.geo import haversine_km
from fleetsim.routing.optimizer import estimate_duration_minutes, optimize_route, round_half_up
from fleetsim.schemas import Coordinate


def _points(*pairs):
    return [Coordinate(latitude=lat, longitude=lng) for lat, lng in pairs]


def test_zero_or_one_waypoint_is_a_zero_route():
    for waypoints in ([], _points((20.5, 85.9))):
        plan = optimize_route(waypoints, "dijkstra")
        assert plan.total_distance == 0.0
        assert plan.estimated_duration_minutes == 0
        assert plan.visiting_order == list(range(len(waypoints)))
        assert plan.path_coordinates == waypoints


def test_unit_square_visits_in_order_with_lowest_index_tie_break():
    waypoints = _points((0, 0), (0, 1), (1, 1), (1, 0))

    plan = optimize_route(waypoints, "dijkstra")

    assert plan.visiting_order == [0, 1, 2, 3]
    legs = [haversine_km(a, b) for a, b in zip(waypoints, waypoints[1:])]
    assert plan.total_distance == round_half_up(sum(legs), 2)
    assert plan.path_coordinates == waypoints


def test_visiting_order_is_permutation_starting_at_zero():
    waypoints = _points(
        (22.2369, 84.8549),
        (25.5941, 85.1376),
        (20.5244, 85.8830),
        (24.7955, 84.9994),
        (19.8135, 85.2055),
    )

    plan = optimize_route(waypoints, "dijkstra")

    assert plan.visiting_order[0] == 0
    assert sorted(plan.visiting_order) == list(range(len(waypoints)))
    ordered = [waypoints[idx] for idx in plan.visiting_order]
    legs = sum(haversine_km(a, b) for a, b in zip(ordered, ordered[1:]))
    assert plan.total_distance == round_half_up(legs, 2)
    assert plan.estimated_duration_minutes == estimate_duration_minutes(legs)


def test_astar_label_matches_dijkstra_order_and_reports_bookkeeping():
    waypoints = _points((22.2369, 84.8549), (20.5244, 85.8830), (25.5941, 85.1376), (19.8135, 85.2055))

    dijkstra = optimize_route(waypoints, "dijkstra")
    astar = optimize_route(waypoints, "astar")

    assert astar.visiting_order == dijkstra.visiting_order
    assert astar.total_distance == dijkstra.total_distance
    assert astar.meta["expansions"] >= len(waypoints)
    assert "centroid" not in dijkstra.meta


def test_duplicate_points_keep_input_order():
    waypoints = _points((0, 0), (1, 1), (1, 1), (1, 1))

    assert optimize_route(waypoints).visiting_order == [0, 1, 2, 3]


def test_unknown_algorithm_is_rejected():
    with pytest.raises(ValueError):
        optimize_route(_points((0, 0), (1, 1)), "genetic")


def test_duration_uses_fifty_kmh_average():
    assert estimate_duration_minutes(50.0) == 60
    assert estimate_duration_minutes(12.4) == 15


def test_halves_round_up():
    assert round(2.5) == 2
    assert round_half_up(2.5) == 3
    assert round_half_up(0.5) == 1
    assert round_half_up(1.4999) == 1
    assert round_half_up(12.345678, 2) == 12.35

from __future__ import annotations

"""
File: fleetsim/metrics.py
Purpose: Dashboard metrics computed from fleet records.
Key responsibilities:
- Active/completed delivery counts, average delivery time, on-time rate.
- Revenue from route cost estimates and route efficiency.
"""

from datetime import datetime

from fleetsim.schemas import Alert, DashboardMetrics, Delivery, Route, Vehicle, utc_now


def compute_dashboard_metrics(
    vehicles: list[Vehicle],
    deliveries: list[Delivery],
    routes: list[Route],
    alerts: list[Alert],
    now: datetime | None = None,
) -> DashboardMetrics:
    """Compute the dashboard summary used by the UI."""
    now = now or utc_now()
    total = len(deliveries)
    active_deliveries = sum(1 for d in deliveries if d.status == "in-transit")
    completed_today = sum(
        1 for d in deliveries if d.status == "delivered" and d.created_at.date() == now.date()
    )
    active_vehicles = sum(1 for v in vehicles if v.status != "idle")
    pending_alerts = sum(1 for a in alerts if not a.is_read)

    durations_min = [
        (d.actual_delivery_time - d.created_at).total_seconds() / 60.0
        for d in deliveries
        if d.actual_delivery_time is not None
    ]
    avg_delivery_time = sum(durations_min) / total if total else 0.0

    on_time = sum(
        1
        for d in deliveries
        if d.actual_delivery_time is not None
        and d.estimated_delivery_time is not None
        and d.actual_delivery_time <= d.estimated_delivery_time
    )
    on_time_pct = on_time / total * 100.0 if total else 0.0

    total_revenue = sum(r.estimated_cost for r in routes)
    route_efficiency = active_deliveries / active_vehicles * 100.0 if active_vehicles else 0.0

    return DashboardMetrics(
        active_deliveries=active_deliveries,
        completed_today=completed_today,
        active_vehicles=active_vehicles,
        average_delivery_time=round(avg_delivery_time),
        on_time_percentage=round(on_time_pct),
        total_revenue=round(total_revenue),
        pending_alerts=pending_alerts,
        route_efficiency=round(route_efficiency),
    )

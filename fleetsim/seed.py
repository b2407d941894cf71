from __future__ import annotations

"""
File: fleetsim/seed.py
Purpose: Deterministic demo data for an empty store.
Key responsibilities:
- Use a seeded RNG to place vehicles around Odisha depots.
- Create deliveries, alerts and sensor readings that reference them.
"""

from datetime import timedelta
import random

from fleetsim.repository import DocumentRepository
from fleetsim.schemas import Alert, Delivery, SensorReading, Vehicle, utc_now

DEPOTS = [
    (22.2369, 84.8549, "Rourkela"),
    (20.5244, 85.8830, "Cuttack"),
    (19.8135, 85.2055, "Bhubaneswar"),
]
CITIES = [
    (22.2369, 84.8549, "Rourkela"),
    (24.7955, 84.9994, "Gaya"),
    (25.5941, 85.1376, "Patna"),
    (20.5244, 85.8830, "Cuttack"),
    (19.8135, 85.2055, "Bhubaneswar"),
]
DRIVERS = ["Rohan Desai", "Aditya Kumar", "Bhavesh Patel", "Anjan Nair", "Mohan Singh"]
CUSTOMERS = ["Odisha Trading Corp", "Prime Delivery", "Star Logistics", "Direct Shipping", "Fast Track Delivery"]
ALERT_KINDS = [
    ("delivery_delay", "info", "Delivery delayed"),
    ("fuel_low", "warning", "Fuel level low"),
    ("maintenance_required", "critical", "Maintenance required"),
]


def generate_demo_fleet(
    seed: int,
    vehicles_count: int = 15,
    deliveries_count: int = 30,
) -> tuple[list[Vehicle], list[Delivery], list[Alert], list[SensorReading]]:
    """Generate demo records deterministically for a seed."""
    rng = random.Random(seed)
    now = utc_now()

    vehicles: list[Vehicle] = []
    for idx in range(vehicles_count):
        lat, lng, _ = DEPOTS[idx % len(DEPOTS)]
        vehicles.append(
            Vehicle(
                id=f"veh-{1000 + idx}",
                vehicle_number=f"VH-{1000 + idx}",
                driver_name=DRIVERS[idx % len(DRIVERS)],
                status="idle",
                latitude=round(lat + rng.uniform(0, 0.1), 6),
                longitude=round(lng + rng.uniform(0, 0.1), 6),
                fuel_level=round(rng.uniform(50, 100), 2),
                temperature=round(rng.uniform(35, 45), 1),
            )
        )

    deliveries: list[Delivery] = []
    for idx in range(deliveries_count):
        p_lat, p_lng, p_name = CITIES[idx % len(CITIES)]
        d_lat, d_lng, d_name = CITIES[(idx + 1) % len(CITIES)]
        scheduled = now + timedelta(hours=idx)
        estimated = scheduled + timedelta(hours=3)
        status = ["pending", "in-transit", "delivered"][idx % 3]
        delivered_at = None
        if status == "delivered":
            delivered_at = estimated - timedelta(minutes=rng.randint(0, 120))
        deliveries.append(
            Delivery(
                id=f"del-{10000 + idx}",
                order_id=f"ORD-{10000 + idx}",
                status=status,
                customer_id=f"CUST-{idx}",
                customer_name=CUSTOMERS[idx % len(CUSTOMERS)],
                pickup_address=f"{1000 + idx} {p_name} Market, Odisha",
                pickup_lat=p_lat,
                pickup_lng=p_lng,
                delivery_address=f"{2000 + idx} {d_name} Main Road, Odisha",
                delivery_lat=d_lat,
                delivery_lng=d_lng,
                vehicle_id=vehicles[idx].id if status == "in-transit" and idx < vehicles_count else None,
                scheduled_time=scheduled,
                estimated_delivery_time=estimated,
                actual_delivery_time=delivered_at,
                priority=["high", "normal", "low"][idx % 3],
                package_weight=round(rng.uniform(5, 25), 2),
                created_at=now - timedelta(minutes=rng.randint(0, 7 * 24 * 60)),
            )
        )

    alerts: list[Alert] = []
    for idx in range(min(6, vehicles_count)):
        kind, severity, text = ALERT_KINDS[idx % len(ALERT_KINDS)]
        alerts.append(
            Alert(
                type=kind,
                severity=severity,
                message=f"Alert for vehicle {vehicles[idx].vehicle_number}: {text}",
                vehicle_id=vehicles[idx].id,
                is_read=idx % 2 == 0,
                created_at=now - timedelta(minutes=rng.randint(0, 60)),
            )
        )

    readings = [
        SensorReading(
            device_id=f"DEV-{1000 + idx}",
            vehicle_id=vehicle.id,
            latitude=vehicle.latitude,
            longitude=vehicle.longitude,
            speed=vehicle.speed,
            fuel_level=vehicle.fuel_level,
            temperature=vehicle.temperature,
            engine_status="idle" if vehicle.status == "idle" else "running",
            connection_status="connected" if rng.random() > 0.2 else "unstable",
        )
        for idx, vehicle in enumerate(vehicles)
    ]
    return vehicles, deliveries, alerts, readings


async def seed_if_empty(repo: DocumentRepository, seed: int) -> bool:
    """Populate the store with demo data unless it already holds vehicles."""
    if await repo.list_vehicles():
        return False
    vehicles, deliveries, alerts, readings = generate_demo_fleet(seed)
    for vehicle in vehicles:
        await repo.create_vehicle(vehicle)
    for delivery in deliveries:
        await repo.create_delivery(delivery)
    for alert in alerts:
        await repo.create_alert(alert)
    for reading in readings:
        await repo.create_sensor_reading(reading)
    return True

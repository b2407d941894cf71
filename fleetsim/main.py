from __future__ import annotations

"""
File: fleetsim/main.py
Purpose: FastAPI entrypoint for the delivery fleet simulation service.
Key responsibilities:
- Wire the store, progress ledger, assignment policy and progression loop.
- Expose CRUD for vehicles/deliveries/routes/alerts/sensors plus optimization endpoints.
- Stream vehicle_update events to WebSocket viewers (and RabbitMQ when enabled).
Key entrypoints:
- create_app()
- /api/* endpoints, /ws
Config/env vars:
- STORAGE_BACKEND, SEED_DEMO_DATA, MYSQL_*, MQ_ENABLED, RABBITMQ_*, OPTIMIZER_URL
- TICK_INTERVAL_S, PROGRESS_STEP, SPEED_*_KMH, FUEL_DRAIN_MAX, COST_PER_KM, SIM_SEED
"""

import asyncio
from contextlib import asynccontextmanager
from dataclasses import dataclass
from datetime import timedelta
import logging
import random
from typing import Any, Optional

from fastapi import Depends, FastAPI, HTTPException, Request, WebSocket, WebSocketDisconnect

from fleetsim.db import MySQLRepository
from fleetsim.dispatch import AssignmentPolicy
from fleetsim.metrics import compute_dashboard_metrics
from fleetsim.mq import VehicleEventPublisher
from fleetsim.repository import DocumentRepository, MemoryRepository
from fleetsim.routing.optimizer import ALGORITHMS, optimize_route
from fleetsim.schemas import (
    Alert,
    AlertCreate,
    DashboardMetrics,
    Delivery,
    DeliveryCreate,
    DeliveryPatch,
    OptimizeAllResponse,
    OptimizeRequest,
    OptimizeResponse,
    Route,
    RouteCreate,
    RoutePatch,
    SensorReading,
    SensorReadingCreate,
    Vehicle,
    VehicleCreate,
    VehiclePatch,
    utc_now,
)
from fleetsim.seed import seed_if_empty
from fleetsim.settings import Settings, rabbit_url, settings
from fleetsim.sim.engine import ProgressionEngine, vehicle_update_event
from fleetsim.sim.ledger import ProgressLedger
from fleetsim.ws import ViewerHub

logging.basicConfig(level=logging.INFO, format="%(asctime)s %(levelname)s fleetsim %(message)s")
logger = logging.getLogger("fleetsim")

DEFAULT_DEMO_SEED = 42


@dataclass
class FleetServices:
    """Long-lived collaborators shared by the endpoints."""
    config: Settings
    repo: DocumentRepository
    ledger: ProgressLedger
    policy: AssignmentPolicy
    engine: ProgressionEngine
    viewers: ViewerHub
    auto_assign: bool


async def build_repository(config: Settings) -> DocumentRepository:
    """Return the configured store, falling back to memory if MySQL is unreachable."""
    if config.storage_backend != "mysql":
        return MemoryRepository()
    repo = MySQLRepository(config)
    try:
        await asyncio.to_thread(repo.ensure_schema)
        logger.info("connected to mysql host=%s db=%s", config.mysql_host, config.mysql_db)
        return repo
    except Exception as exc:  # noqa: BLE001
        logger.error("mysql unavailable, falling back to in-memory storage err=%s", exc)
        return MemoryRepository()


def create_app(
    config: Settings = settings,
    repo: DocumentRepository | None = None,
    rng: random.Random | None = None,
    start_background: bool = True,
) -> FastAPI:
    """Build the service; tests inject a store/RNG and disable background work."""

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        store = repo if repo is not None else await build_repository(config)
        if config.seed_demo_data and await seed_if_empty(store, config.sim_seed or DEFAULT_DEMO_SEED):
            logger.info("seeded demo fleet")

        viewers = ViewerHub()
        publisher: VehicleEventPublisher | None = None
        if config.mq_enabled:
            publisher = VehicleEventPublisher(rabbit_url(), config.exchange_name)
            try:
                await publisher.start()
            except Exception as exc:  # noqa: BLE001
                logger.error("rabbitmq unavailable, broadcasting to websocket only err=%s", exc)
                publisher = None

        async def publish_vehicle_update(payload: dict[str, Any]) -> None:
            await viewers.broadcast(payload)
            if publisher is not None:
                await publisher.publish(payload)

        ledger = ProgressLedger()
        engine = ProgressionEngine(
            repo=store,
            ledger=ledger,
            rng=rng if rng is not None else random.Random(config.sim_seed),
            update_sink=publish_vehicle_update,
            step=config.progress_step,
            speed_range=(config.speed_min_kmh, config.speed_max_kmh),
            slowdown_at=config.arrival_slowdown_at,
            fuel_drain_max=config.fuel_drain_max,
        )
        policy = AssignmentPolicy(
            repo=store,
            ledger=ledger,
            cost_per_km=config.cost_per_km,
            average_speed_kmh=config.average_speed_kmh,
            assign_busy_vehicles=config.assign_busy_vehicles,
            optimizer_url=config.optimizer_url,
        )
        app.state.fleet = FleetServices(
            config=config,
            repo=store,
            ledger=ledger,
            policy=policy,
            engine=engine,
            viewers=viewers,
            auto_assign=start_background,
        )

        tick_task: asyncio.Task | None = None
        if start_background:
            tick_task = asyncio.create_task(engine.run(config.tick_interval_s))
            policy.schedule(config.startup_assign_delay_s, reason="startup")
        logger.info("fleetsim started storage=%s", type(store).__name__)
        try:
            yield
        finally:
            if tick_task is not None:
                tick_task.cancel()
                await asyncio.gather(tick_task, return_exceptions=True)
            await policy.shutdown()
            if publisher is not None:
                await publisher.close()
            await store.close()

    app = FastAPI(title="fleetsim", version="1.0.0", lifespan=lifespan)
    register_routes(app)
    return app


def services(request: Request) -> FleetServices:
    return request.app.state.fleet


def _matches(text: str, search: Optional[str]) -> bool:
    return search is None or search.lower() in text.lower()


def register_routes(app: FastAPI) -> None:
    """Attach HTTP and WebSocket endpoints."""

    @app.get("/health")
    async def health() -> dict[str, str]:
        """Liveness/readiness endpoint."""
        return {"status": "ok"}

    @app.get("/api/metrics", response_model=DashboardMetrics)
    async def metrics(fleet: FleetServices = Depends(services)) -> DashboardMetrics:
        return compute_dashboard_metrics(
            vehicles=await fleet.repo.list_vehicles(),
            deliveries=await fleet.repo.list_deliveries(),
            routes=await fleet.repo.list_routes(),
            alerts=await fleet.repo.list_alerts(),
        )

    # Vehicles

    @app.get("/api/vehicles", response_model=list[Vehicle])
    async def list_vehicles(
        status: Optional[str] = None,
        search: Optional[str] = None,
        fleet: FleetServices = Depends(services),
    ) -> list[Vehicle]:
        vehicles = await fleet.repo.list_vehicles()
        return [
            v for v in vehicles
            if (status is None or v.status == status) and _matches(v.vehicle_number, search)
        ]

    @app.get("/api/vehicles/active", response_model=list[Vehicle])
    async def active_vehicles(fleet: FleetServices = Depends(services)) -> list[Vehicle]:
        return [v for v in await fleet.repo.list_vehicles() if v.status in {"in-transit", "idle"}]

    @app.get("/api/vehicles/{vehicle_id}", response_model=Vehicle)
    async def get_vehicle(vehicle_id: str, fleet: FleetServices = Depends(services)) -> Vehicle:
        vehicle = await fleet.repo.get_vehicle(vehicle_id)
        if vehicle is None:
            raise HTTPException(status_code=404, detail="Vehicle not found")
        return vehicle

    @app.post("/api/vehicles", response_model=Vehicle, status_code=201)
    async def create_vehicle(payload: VehicleCreate, fleet: FleetServices = Depends(services)) -> Vehicle:
        return await fleet.repo.create_vehicle(payload)

    @app.patch("/api/vehicles/{vehicle_id}", response_model=Vehicle)
    async def patch_vehicle(
        vehicle_id: str,
        payload: VehiclePatch,
        fleet: FleetServices = Depends(services),
    ) -> Vehicle:
        async with fleet.ledger.lock_for(vehicle_id):
            vehicle = await fleet.repo.update_vehicle(vehicle_id, payload.model_dump(exclude_unset=True))
        if vehicle is None:
            raise HTTPException(status_code=404, detail="Vehicle not found")
        return vehicle

    @app.delete("/api/vehicles/{vehicle_id}")
    async def delete_vehicle(vehicle_id: str, fleet: FleetServices = Depends(services)) -> dict[str, bool]:
        async with fleet.ledger.lock_for(vehicle_id):
            deleted = await fleet.repo.delete_vehicle(vehicle_id)
        if not deleted:
            raise HTTPException(status_code=404, detail="Vehicle not found")
        fleet.ledger.forget_vehicle(vehicle_id)
        return {"success": True}

    # Deliveries

    @app.get("/api/deliveries", response_model=list[Delivery])
    async def list_deliveries(
        status: Optional[str] = None,
        priority: Optional[str] = None,
        search: Optional[str] = None,
        fleet: FleetServices = Depends(services),
    ) -> list[Delivery]:
        deliveries = await fleet.repo.list_deliveries()
        return [
            d for d in deliveries
            if (status is None or d.status == status)
            and (priority is None or d.priority == priority)
            and (_matches(d.customer_name, search) or _matches(d.order_id, search))
        ]

    @app.get("/api/deliveries/active", response_model=list[Delivery])
    async def active_deliveries(fleet: FleetServices = Depends(services)) -> list[Delivery]:
        return [d for d in await fleet.repo.list_deliveries() if d.status in {"in-transit", "pending"}]

    @app.get("/api/deliveries/{delivery_id}", response_model=Delivery)
    async def get_delivery(delivery_id: str, fleet: FleetServices = Depends(services)) -> Delivery:
        delivery = await fleet.repo.get_delivery(delivery_id)
        if delivery is None:
            raise HTTPException(status_code=404, detail="Delivery not found")
        return delivery

    @app.post("/api/deliveries", response_model=Delivery, status_code=201)
    async def create_delivery(payload: DeliveryCreate, fleet: FleetServices = Depends(services)) -> Delivery:
        now = utc_now()
        data = payload.model_copy(
            update={
                "scheduled_time": payload.scheduled_time or now + timedelta(hours=1),
                "estimated_delivery_time": payload.estimated_delivery_time or now + timedelta(hours=2),
            }
        )
        delivery = await fleet.repo.create_delivery(data)
        logger.info("delivery created order_id=%s status=%s", delivery.order_id, delivery.status)
        if fleet.auto_assign:
            fleet.policy.schedule(fleet.config.create_assign_delay_s, reason="delivery_created")
        return delivery

    @app.patch("/api/deliveries/{delivery_id}", response_model=Delivery)
    async def patch_delivery(
        delivery_id: str,
        payload: DeliveryPatch,
        fleet: FleetServices = Depends(services),
    ) -> Delivery:
        patch = payload.model_dump(exclude_unset=True)
        if patch.get("status") == "delivered" and patch.get("actual_delivery_time") is None:
            patch["actual_delivery_time"] = utc_now()
        delivery = await fleet.repo.update_delivery(delivery_id, patch)
        if delivery is None:
            raise HTTPException(status_code=404, detail="Delivery not found")
        return delivery

    @app.delete("/api/deliveries/{delivery_id}")
    async def delete_delivery(delivery_id: str, fleet: FleetServices = Depends(services)) -> dict[str, bool]:
        if not await fleet.repo.delete_delivery(delivery_id):
            raise HTTPException(status_code=404, detail="Delivery not found")
        return {"success": True}

    # Routes

    @app.get("/api/routes", response_model=list[Route])
    async def list_routes(
        status: Optional[str] = None,
        algorithm: Optional[str] = None,
        search: Optional[str] = None,
        fleet: FleetServices = Depends(services),
    ) -> list[Route]:
        routes = await fleet.repo.list_routes()
        return [
            r for r in routes
            if (status is None or r.status == status)
            and (algorithm is None or r.algorithm == algorithm)
            and _matches(r.name, search)
        ]

    @app.get("/api/routes/active", response_model=list[Route])
    async def active_routes(fleet: FleetServices = Depends(services)) -> list[Route]:
        return [r for r in await fleet.repo.list_routes() if r.status == "active"]

    @app.get("/api/routes/status")
    async def routes_status(fleet: FleetServices = Depends(services)) -> dict[str, Any]:
        """Optimization readiness summary."""
        deliveries = await fleet.repo.list_deliveries()
        vehicles = await fleet.repo.list_vehicles()
        routes = await fleet.repo.list_routes()
        pending = sum(1 for d in deliveries if d.status == "pending")
        in_transit = sum(1 for d in deliveries if d.status == "in-transit")
        delivered = sum(1 for d in deliveries if d.status == "delivered")
        return {
            "deliveries": {
                "total": len(deliveries),
                "pending": pending,
                "inTransit": in_transit,
                "delivered": delivered,
                "other": len(deliveries) - pending - in_transit - delivered,
            },
            "vehicles": {
                "total": len(vehicles),
                "idle": sum(1 for v in vehicles if v.status == "idle"),
                "inTransit": sum(1 for v in vehicles if v.status == "in-transit"),
            },
            "routes": len(routes),
        }

    @app.post("/api/routes/optimize", response_model=OptimizeResponse)
    async def optimize(payload: OptimizeRequest, fleet: FleetServices = Depends(services)) -> OptimizeResponse:
        if payload.algorithm not in ALGORITHMS:
            raise HTTPException(status_code=400, detail=f"Unknown algorithm: {payload.algorithm}")
        plan = optimize_route(payload.waypoints, payload.algorithm, average_speed_kmh=fleet.config.average_speed_kmh)
        return OptimizeResponse(
            visiting_order=plan.visiting_order,
            total_distance=plan.total_distance,
            estimated_duration_minutes=plan.estimated_duration_minutes,
            path_coordinates=plan.path_coordinates,
        )

    @app.post("/api/routes/optimize-all", response_model=OptimizeAllResponse)
    async def optimize_all(fleet: FleetServices = Depends(services)) -> OptimizeAllResponse:
        result = await fleet.policy.assign_pending()
        return OptimizeAllResponse(
            message=result.message,
            routes=result.routes,
            deliveries_assigned=result.deliveries_assigned,
        )

    @app.get("/api/routes/{route_id}", response_model=Route)
    async def get_route(route_id: str, fleet: FleetServices = Depends(services)) -> Route:
        route = await fleet.repo.get_route(route_id)
        if route is None:
            raise HTTPException(status_code=404, detail="Route not found")
        return route

    @app.post("/api/routes", response_model=Route, status_code=201)
    async def create_route(payload: RouteCreate, fleet: FleetServices = Depends(services)) -> Route:
        return await fleet.repo.create_route(payload)

    @app.patch("/api/routes/{route_id}", response_model=Route)
    async def patch_route(route_id: str, payload: RoutePatch, fleet: FleetServices = Depends(services)) -> Route:
        current = await fleet.repo.get_route(route_id)
        if current is None:
            raise HTTPException(status_code=404, detail="Route not found")
        if current.status == "completed" and payload.status not in {None, "completed"}:
            raise HTTPException(status_code=409, detail="Route already completed")
        route = await fleet.repo.update_route(route_id, payload.model_dump(exclude_unset=True))
        if route is None:
            raise HTTPException(status_code=404, detail="Route not found")
        return route

    # Alerts

    @app.get("/api/alerts", response_model=list[Alert])
    async def list_alerts(fleet: FleetServices = Depends(services)) -> list[Alert]:
        return await fleet.repo.list_alerts()

    @app.get("/api/alerts/recent", response_model=list[Alert])
    async def recent_alerts(fleet: FleetServices = Depends(services)) -> list[Alert]:
        return (await fleet.repo.list_alerts())[:5]

    @app.patch("/api/alerts/mark-all-read")
    async def mark_all_alerts_read(fleet: FleetServices = Depends(services)) -> dict[str, Any]:
        count = 0
        for alert in await fleet.repo.list_alerts():
            if not alert.is_read:
                await fleet.repo.mark_alert_read(alert.id)
                count += 1
        return {"success": True, "count": count}

    @app.get("/api/alerts/{alert_id}", response_model=Alert)
    async def get_alert(alert_id: str, fleet: FleetServices = Depends(services)) -> Alert:
        alert = await fleet.repo.get_alert(alert_id)
        if alert is None:
            raise HTTPException(status_code=404, detail="Alert not found")
        return alert

    @app.post("/api/alerts", response_model=Alert, status_code=201)
    async def create_alert(payload: AlertCreate, fleet: FleetServices = Depends(services)) -> Alert:
        return await fleet.repo.create_alert(payload)

    @app.patch("/api/alerts/{alert_id}/read")
    async def mark_alert_read(alert_id: str, fleet: FleetServices = Depends(services)) -> dict[str, bool]:
        if await fleet.repo.mark_alert_read(alert_id) is None:
            raise HTTPException(status_code=404, detail="Alert not found")
        return {"success": True}

    @app.delete("/api/alerts/{alert_id}")
    async def delete_alert(alert_id: str, fleet: FleetServices = Depends(services)) -> dict[str, bool]:
        if not await fleet.repo.delete_alert(alert_id):
            raise HTTPException(status_code=404, detail="Alert not found")
        return {"success": True}

    # IoT sensors

    @app.get("/api/iot/sensors", response_model=list[SensorReading])
    async def list_sensor_readings(fleet: FleetServices = Depends(services)) -> list[SensorReading]:
        return await fleet.repo.list_sensor_readings()

    @app.post("/api/iot/sensors", response_model=SensorReading, status_code=201)
    async def create_sensor_reading(
        payload: SensorReadingCreate,
        fleet: FleetServices = Depends(services),
    ) -> SensorReading:
        return await fleet.repo.create_sensor_reading(payload)

    @app.websocket("/ws")
    async def websocket_endpoint(websocket: WebSocket) -> None:
        """WebSocket endpoint streaming vehicle_update events."""
        fleet: FleetServices = websocket.app.state.fleet
        moving = [v for v in await fleet.repo.list_vehicles() if v.status == "in-transit"]
        await fleet.viewers.connect(websocket, snapshot=[vehicle_update_event(v) for v in moving])
        try:
            while True:
                await websocket.receive_text()
        except WebSocketDisconnect:
            pass
        finally:
            await fleet.viewers.disconnect(websocket)


app = create_app()

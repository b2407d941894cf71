from __future__ import annotations

"""
File: fleetsim/dispatch.py
Purpose: Delivery assignment policy (contiguous round-robin batches per vehicle).
Key responsibilities:
- Partition pending deliveries across vehicles in list order.
- Plan one route per non-empty batch and persist Route/Delivery/Vehicle updates.
- Treat each vehicle's batch as an independent unit of work with compensation.
Key entrypoints:
- AssignmentPolicy.assign_pending()
- AssignmentPolicy.schedule()
Config/env vars:
- ASSIGN_BUSY_VEHICLES, COST_PER_KM, AVERAGE_SPEED_KMH, OPTIMIZER_URL
"""

import asyncio
from dataclasses import dataclass, field
import logging
import time
from typing import Sequence, TypeVar

import httpx
from pydantic import ValidationError

from fleetsim.optimizer_client import request_route_plan
from fleetsim.repository import DocumentRepository
from fleetsim.routing.optimizer import DEFAULT_AVERAGE_SPEED_KMH, RoutePlan, optimize_route
from fleetsim.schemas import Coordinate, Delivery, Route, RouteCreate, Vehicle, utc_now
from fleetsim.sim.ledger import ProgressLedger

logger = logging.getLogger("fleetsim.dispatch")

T = TypeVar("T")


@dataclass
class AssignmentResult:
    """Outcome of one assignment pass."""
    message: str
    routes: list[Route] = field(default_factory=list)
    deliveries_assigned: int = 0


def partition_batches(items: Sequence[T], bins: int) -> list[list[T]]:
    """Split items into min(bins, len(items)) contiguous batches.

    Batch sizes differ by at most one and larger batches come first, so 7 items
    over 3 bins gives sizes 3, 2, 2.
    """
    count = min(bins, len(items))
    if count <= 0:
        return []
    base, extra = divmod(len(items), count)
    batches: list[list[T]] = []
    start = 0
    for idx in range(count):
        size = base + (1 if idx < extra else 0)
        batches.append(list(items[start:start + size]))
        start += size
    return batches


class AssignmentPolicy:
    """Binds pending deliveries to vehicles and materializes active routes."""
    def __init__(
        self,
        repo: DocumentRepository,
        ledger: ProgressLedger,
        cost_per_km: float = 0.5,
        average_speed_kmh: float = DEFAULT_AVERAGE_SPEED_KMH,
        assign_busy_vehicles: bool = False,
        optimizer_url: str = "",
        optimizer_transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        self.repo = repo
        self.ledger = ledger
        self.cost_per_km = cost_per_km
        self.average_speed_kmh = average_speed_kmh
        self.assign_busy_vehicles = assign_busy_vehicles
        self.optimizer_url = optimizer_url
        self.optimizer_transport = optimizer_transport
        self._pass_lock = asyncio.Lock()
        self._background: set[asyncio.Task] = set()

    def schedule(self, delay_s: float, reason: str) -> asyncio.Task:
        """Run an assignment pass in the background after a delay."""
        task = asyncio.create_task(self._run_after(delay_s, reason))
        self._background.add(task)
        task.add_done_callback(self._background.discard)
        return task

    async def _run_after(self, delay_s: float, reason: str) -> None:
        await asyncio.sleep(delay_s)
        try:
            result = await self.assign_pending()
            logger.info(
                "auto assignment reason=%s routes=%s deliveries=%s",
                reason,
                len(result.routes),
                result.deliveries_assigned,
            )
        except Exception as exc:  # noqa: BLE001
            logger.exception("auto assignment failed reason=%s err=%s", reason, exc)

    async def shutdown(self) -> None:
        """Cancel pending background passes."""
        for task in list(self._background):
            task.cancel()
        if self._background:
            await asyncio.gather(*self._background, return_exceptions=True)

    def _eligible(self, vehicle: Vehicle) -> bool:
        if self.assign_busy_vehicles:
            return True
        return vehicle.status == "idle"

    async def assign_pending(self) -> AssignmentResult:
        """Assign every pending delivery to eligible vehicles, one route per vehicle."""
        async with self._pass_lock:
            pending = [d for d in await self.repo.list_deliveries() if d.status == "pending"]
            vehicles = [v for v in await self.repo.list_vehicles() if self._eligible(v)]
            logger.info("assignment pass pending=%s vehicles=%s", len(pending), len(vehicles))

            if not pending:
                return AssignmentResult(message="No pending deliveries")
            if not vehicles:
                return AssignmentResult(message="No vehicles available")

            result = AssignmentResult(message="Routes optimized successfully")
            for vehicle, batch in zip(vehicles, partition_batches(pending, len(vehicles))):
                try:
                    outcome = await self._assign_batch(vehicle, batch)
                except Exception as exc:  # noqa: BLE001
                    logger.exception("assignment batch aborted vehicle_id=%s err=%s", vehicle.id, exc)
                    continue
                if outcome is None:
                    continue
                route, assigned = outcome
                result.routes.append(route)
                result.deliveries_assigned += assigned
            logger.info(
                "assignment complete routes=%s deliveries=%s",
                len(result.routes),
                result.deliveries_assigned,
            )
            return result

    async def plan(self, waypoints: Sequence[Coordinate]) -> RoutePlan:
        """Plan with the remote optimizer when configured, else locally."""
        if self.optimizer_url:
            try:
                return await request_route_plan(
                    self.optimizer_url,
                    waypoints,
                    algorithm="dijkstra",
                    transport=self.optimizer_transport,
                )
            except (httpx.HTTPError, ValidationError, ValueError) as exc:
                logger.warning("remote optimizer unusable, planning locally err=%s", exc)
        return self.plan_locally(waypoints)

    def plan_locally(self, waypoints: Sequence[Coordinate]) -> RoutePlan:
        return optimize_route(waypoints, "dijkstra", average_speed_kmh=self.average_speed_kmh)

    async def _still_pending(self, deliveries: Sequence[Delivery]) -> list[Delivery]:
        fresh_batch: list[Delivery] = []
        for item in deliveries:
            fresh = await self.repo.get_delivery(item.id)
            if fresh is not None and fresh.status == "pending":
                fresh_batch.append(fresh)
        return fresh_batch

    @staticmethod
    def _waypoints(vehicle: Vehicle, deliveries: Sequence[Delivery]) -> list[Coordinate]:
        start = Coordinate(
            latitude=vehicle.latitude,
            longitude=vehicle.longitude,
            label=f"Vehicle Start ({vehicle.vehicle_number})",
        )
        return [start] + [d.destination() for d in deliveries]

    async def _assign_batch(self, vehicle: Vehicle, batch: list[Delivery]) -> tuple[Route, int] | None:
        """Plan a batch, then create and bind its route under the vehicle's lock."""
        deliveries = await self._still_pending(batch)
        if not deliveries:
            return None
        # Planning may call the remote optimizer, so it happens before the lock is taken.
        waypoints = self._waypoints(vehicle, deliveries)
        plan = await self.plan(waypoints)

        async with self.ledger.lock_for(vehicle.id):
            current = await self.repo.get_vehicle(vehicle.id)
            if current is None or not self._eligible(current):
                logger.info("skip batch vehicle no longer eligible vehicle_id=%s", vehicle.id)
                return None
            deliveries = await self._still_pending(deliveries)
            if not deliveries:
                return None
            fresh_waypoints = self._waypoints(current, deliveries)
            if fresh_waypoints != waypoints:
                logger.info("replanning batch after concurrent change vehicle_id=%s", current.id)
                waypoints = fresh_waypoints
                plan = self.plan_locally(waypoints)

            superseded_route_id = current.current_route_id if current.status == "in-transit" else None
            if superseded_route_id:
                logger.warning(
                    "reassigning busy vehicle vehicle_id=%s superseded_route_id=%s",
                    current.id,
                    superseded_route_id,
                )

            route: Route | None = None
            applied: list[Delivery] = []
            try:
                route = await self.repo.create_route(
                    RouteCreate(
                        name=f"Route-{current.vehicle_number}-{int(time.time() * 1000)}",
                        vehicle_id=current.id,
                        algorithm="dijkstra",
                        status="active",
                        total_distance=plan.total_distance,
                        estimated_duration=plan.estimated_duration_minutes,
                        estimated_cost=round(plan.total_distance * self.cost_per_km, 2),
                        waypoints=waypoints,
                        path_coordinates=plan.path_coordinates,
                        started_at=utc_now(),
                    )
                )
                for delivery in deliveries:
                    updated = await self.repo.update_delivery(
                        delivery.id,
                        {"status": "in-transit", "vehicle_id": current.id, "route_id": route.id},
                    )
                    if updated is not None:
                        applied.append(delivery)
                updated_vehicle = await self.repo.update_vehicle(
                    current.id,
                    {"status": "in-transit", "current_route_id": route.id, "route_completion": 0.0},
                )
                if updated_vehicle is None:
                    raise LookupError(f"vehicle removed during assignment: {current.id}")
            except Exception as exc:  # noqa: BLE001
                logger.exception("assignment batch failed vehicle_id=%s err=%s", current.id, exc)
                await self._compensate(route, applied)
                return None

            self.ledger.clear(current.id, superseded_route_id)
            self.ledger.reset(current.id)
            if superseded_route_id:
                await self._close_superseded(superseded_route_id, route.id)
            logger.info(
                "route assigned vehicle_id=%s route_id=%s deliveries=%s distance_km=%s",
                current.id,
                route.id,
                len(applied),
                route.total_distance,
            )
            return route, len(applied)

    async def _close_superseded(self, route_id: str, replacement_id: str) -> None:
        """Complete a replaced route so a vehicle never owns two active routes."""
        try:
            await self.repo.update_route(
                route_id,
                {"status": "completed", "completed_at": utc_now(), "superseded_by": replacement_id},
            )
        except Exception as exc:  # noqa: BLE001
            logger.exception("closing superseded route failed route_id=%s err=%s", route_id, exc)

    async def _compensate(self, route: Route | None, applied: list[Delivery]) -> None:
        """Undo the writes of a failed batch, best effort."""
        for delivery in applied:
            try:
                await self.repo.update_delivery(
                    delivery.id,
                    {"status": delivery.status, "vehicle_id": delivery.vehicle_id, "route_id": delivery.route_id},
                )
            except Exception as exc:  # noqa: BLE001
                logger.exception("rollback failed delivery_id=%s err=%s", delivery.id, exc)
        if route is not None:
            try:
                await self.repo.delete_route(route.id)
            except Exception as exc:  # noqa: BLE001
                logger.exception("rollback failed route_id=%s err=%s", route.id, exc)

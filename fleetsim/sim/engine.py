from __future__ import annotations

"""
File: fleetsim/sim/engine.py
Purpose: Vehicle progression loop for in-transit vehicles.
Key responsibilities:
- Advance each in-transit vehicle a fixed fraction of its route per tick.
- Interpolate position along the route path; derive speed, fuel and completion.
- Complete routes (never deliveries) and emit vehicle_update events.
- Isolate per-vehicle failures and refuse overlapping ticks.
Key entrypoints:
- ProgressionEngine.tick()
- ProgressionEngine.run()
"""

import asyncio
from dataclasses import dataclass
import logging
import math
import random
from typing import Any, Awaitable, Callable, Sequence

from fleetsim.repository import DocumentRepository
from fleetsim.routing.geo import lerp
from fleetsim.schemas import Coordinate, Vehicle, utc_now
from fleetsim.sim.ledger import ProgressLedger

logger = logging.getLogger("fleetsim.engine")

VehicleUpdateSink = Callable[[dict[str, Any]], Awaitable[None]]


async def _discard(_payload: dict[str, Any]) -> None:
    return None


@dataclass
class TickReport:
    """What one tick did, for logging and tests."""
    advanced: int = 0
    completed: int = 0
    skipped: int = 0
    failed: int = 0
    overlapped: bool = False


def interpolate_position(path: Sequence[Coordinate], progress: float) -> tuple[float, float]:
    """Piecewise-linear position along path for a progress fraction in [0, 1]."""
    if len(path) == 1:
        return path[0].latitude, path[0].longitude
    segment_float = progress * (len(path) - 1)
    segment_index = min(int(math.floor(segment_float)), len(path) - 2)
    segment_progress = segment_float - segment_index
    return lerp(path[segment_index], path[segment_index + 1], segment_progress)


def vehicle_update_event(vehicle: Vehicle) -> dict[str, Any]:
    """Broadcast envelope for a refreshed vehicle snapshot."""
    return {
        "eventType": "vehicle_update",
        "vehicle": vehicle.model_dump(mode="json", by_alias=True),
    }


class ProgressionEngine:
    """Advances in-transit vehicles along their routes, one tick at a time."""
    def __init__(
        self,
        repo: DocumentRepository,
        ledger: ProgressLedger,
        rng: random.Random,
        update_sink: VehicleUpdateSink = _discard,
        step: float = 0.05,
        speed_range: tuple[float, float] = (30.0, 60.0),
        slowdown_at: float = 0.9,
        fuel_drain_max: float = 0.3,
    ) -> None:
        """Initialize the engine with its store, ledger and random source."""
        self.repo = repo
        self.ledger = ledger
        self.rng = rng
        self.update_sink = update_sink
        self.step = step
        self.speed_range = speed_range
        self.slowdown_at = slowdown_at
        self.fuel_drain_max = fuel_drain_max
        self._tick_lock = asyncio.Lock()
        self.ticks = 0

    async def run(self, interval_s: float) -> None:
        """Tick forever on a fixed interval; cancel the task to stop."""
        logger.info("progression loop started interval_s=%s step=%s", interval_s, self.step)
        last_in_transit = -1
        while True:
            try:
                report = await self.tick()
                in_transit = report.advanced + report.completed
                if in_transit and in_transit != last_in_transit:
                    logger.info("moving vehicles in_transit=%s", in_transit)
                last_in_transit = in_transit
            except Exception as exc:  # noqa: BLE001
                logger.exception("tick failed err=%s", exc)
            await asyncio.sleep(interval_s)

    async def tick(self) -> TickReport:
        """Advance every in-transit vehicle once, sequentially."""
        if self._tick_lock.locked():
            logger.warning("tick skipped, previous tick still running")
            return TickReport(overlapped=True)

        async with self._tick_lock:
            report = TickReport()
            for vehicle in await self.repo.list_vehicles():
                if vehicle.status != "in-transit" or not vehicle.current_route_id:
                    continue
                try:
                    async with self.ledger.lock_for(vehicle.id):
                        outcome = await self._advance_vehicle(vehicle.id)
                except Exception as exc:  # noqa: BLE001
                    report.failed += 1
                    logger.exception("vehicle update failed vehicle_id=%s err=%s", vehicle.id, exc)
                    continue
                if outcome == "completed":
                    report.completed += 1
                elif outcome == "advanced":
                    report.advanced += 1
                else:
                    report.skipped += 1
            self.ticks += 1
            return report

    async def _advance_vehicle(self, vehicle_id: str) -> str:
        """Advance one vehicle; returns advanced, completed or skipped."""
        # Re-read under the lock: assignment may have replaced the route.
        vehicle = await self.repo.get_vehicle(vehicle_id)
        if vehicle is None or vehicle.status != "in-transit" or not vehicle.current_route_id:
            return "skipped"

        route_id = vehicle.current_route_id
        route = await self.repo.get_route(route_id)
        if route is None:
            logger.warning("route missing vehicle_id=%s route_id=%s", vehicle.id, route_id)
            return "skipped"
        if route.status == "completed":
            # A previous tick completed the route but failed to release the vehicle.
            return await self._release_vehicle(vehicle.id, route_id)

        path = route.path_coordinates
        if not path:
            return "skipped"

        if len(path) == 1:
            progress = 1.0
        else:
            progress = self.ledger.advance(vehicle.id, self.step, resume_from=vehicle.route_completion / 100)
        latitude, longitude = interpolate_position(path, progress)

        route_speed = self.ledger.speed_for(route_id, self.rng, *self.speed_range)
        speed = route_speed if progress < self.slowdown_at else 0
        fuel_level = max(0.0, vehicle.fuel_level - self.rng.random() * self.fuel_drain_max)
        completion = max(vehicle.route_completion, round(progress * 100, 2))

        patch: dict[str, Any] = {
            "latitude": latitude,
            "longitude": longitude,
            "speed": speed,
            "fuel_level": fuel_level,
            "route_completion": completion,
        }
        completed = progress >= 1.0
        if completed:
            patch["status"] = "idle"
            patch["current_route_id"] = None

        # Vehicle first: a failed write leaves the route active and the next tick retries.
        updated = await self.repo.update_vehicle(vehicle.id, patch)
        if updated is None:
            return "skipped"
        if completed:
            await self._complete_route(vehicle.id, route_id)
        await self.update_sink(vehicle_update_event(updated))
        return "completed" if completed else "advanced"

    async def _complete_route(self, vehicle_id: str, route_id: str) -> None:
        self.ledger.clear(vehicle_id, route_id)
        # Deliveries on this route stay in-transit until confirmed externally.
        await self.repo.update_route(route_id, {"status": "completed", "completed_at": utc_now()})
        logger.info("route completed vehicle_id=%s route_id=%s", vehicle_id, route_id)

    async def _release_vehicle(self, vehicle_id: str, route_id: str) -> str:
        """Return a vehicle still bound to a completed route to idle."""
        self.ledger.clear(vehicle_id, route_id)
        updated = await self.repo.update_vehicle(
            vehicle_id,
            {"status": "idle", "current_route_id": None, "speed": 0, "route_completion": 100.0},
        )
        if updated is None:
            return "skipped"
        logger.warning("released vehicle from completed route vehicle_id=%s route_id=%s", vehicle_id, route_id)
        await self.update_sink(vehicle_update_event(updated))
        return "completed"

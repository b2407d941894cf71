from __future__ import annotations

"""
File: fleetsim/sim/ledger.py
Purpose: Process-local progress bookkeeping for in-transit vehicles.
Key responsibilities:
- Track per-vehicle progress fractions and per-route cruising speeds.
- Hand out per-vehicle locks shared by assignment and the progression loop.

Nothing here is persisted. Losing the ledger restarts affected vehicles at 0%.
"""

import asyncio
import random

from fleetsim.routing.optimizer import round_half_up


class ProgressLedger:
    """Injectable store of transient simulation state."""
    def __init__(self) -> None:
        self.progress: dict[str, float] = {}
        self.route_speeds: dict[str, int] = {}
        self._locks: dict[str, asyncio.Lock] = {}

    def lock_for(self, vehicle_id: str) -> asyncio.Lock:
        """Return the exclusive-access lock for one vehicle."""
        lock = self._locks.get(vehicle_id)
        if lock is None:
            lock = asyncio.Lock()
            self._locks[vehicle_id] = lock
        return lock

    def progress_of(self, vehicle_id: str) -> float:
        return self.progress.get(vehicle_id, 0.0)

    def advance(self, vehicle_id: str, step: float, resume_from: float = 0.0) -> float:
        """Advance a vehicle's progress by step, capped at 1.0.

        A vehicle missing from the ledger (e.g. after a restart) resumes from
        resume_from, normally its persisted routeCompletion / 100.
        """
        # Rounding keeps 20 steps of 0.05 landing exactly on 1.0.
        value = min(1.0, round(self.progress.get(vehicle_id, resume_from) + step, 9))
        self.progress[vehicle_id] = value
        return value

    def reset(self, vehicle_id: str) -> None:
        """Restart a vehicle at 0% (new route assigned)."""
        self.progress[vehicle_id] = 0.0

    def speed_for(self, route_id: str, rng: random.Random, low: float, high: float) -> int:
        """Memoized cruising speed for a route, drawn once from [low, high]."""
        speed = self.route_speeds.get(route_id)
        if speed is None:
            speed = int(round_half_up(rng.uniform(low, high)))
            self.route_speeds[route_id] = speed
        return speed

    def clear(self, vehicle_id: str, route_id: str | None = None) -> None:
        """Forget a vehicle's progress and its route's speed."""
        self.progress.pop(vehicle_id, None)
        if route_id is not None:
            self.route_speeds.pop(route_id, None)

    def forget_vehicle(self, vehicle_id: str) -> None:
        """Drop all state for a deleted vehicle."""
        self.progress.pop(vehicle_id, None)
        self._locks.pop(vehicle_id, None)

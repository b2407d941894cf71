from __future__ import annotations

"""
File: fleetsim/repository.py
Purpose: Persistence interface for fleet records plus the in-memory backend.
Key responsibilities:
- Typed CRUD/patch operations for vehicles, deliveries, routes, alerts, sensor readings.
- Keep one JSON document per record, keyed by id, in insertion order.
Key entrypoints:
- DocumentRepository (backend-agnostic operations)
- MemoryRepository
"""

from typing import Any, Type, TypeVar

from pydantic import BaseModel

from fleetsim.schemas import (
    Alert,
    AlertCreate,
    Delivery,
    DeliveryCreate,
    Route,
    RouteCreate,
    SensorReading,
    SensorReadingCreate,
    Vehicle,
    VehicleCreate,
    utc_now,
)

ModelT = TypeVar("ModelT", bound=BaseModel)

COLLECTIONS = ("vehicles", "deliveries", "routes", "alerts", "sensor_readings")


class DocumentRepository:
    """Typed record operations over a document store.

    Backends implement the five `_doc_*` primitives. Documents are stored in
    their camelCase wire form. `update_*` methods take snake_case patches and
    return the updated record, or None when the id is unknown.
    """

    async def _doc_insert(self, collection: str, doc_id: str, doc: dict[str, Any]) -> None:
        raise NotImplementedError

    async def _doc_all(self, collection: str) -> list[dict[str, Any]]:
        raise NotImplementedError

    async def _doc_get(self, collection: str, doc_id: str) -> dict[str, Any] | None:
        raise NotImplementedError

    async def _doc_replace(self, collection: str, doc_id: str, doc: dict[str, Any]) -> bool:
        raise NotImplementedError

    async def _doc_delete(self, collection: str, doc_id: str) -> bool:
        raise NotImplementedError

    async def close(self) -> None:
        return None

    # Generic helpers

    @staticmethod
    def _encode(record: BaseModel) -> dict[str, Any]:
        return record.model_dump(mode="json", by_alias=True)

    async def _create(self, collection: str, record: ModelT) -> ModelT:
        await self._doc_insert(collection, record.id, self._encode(record))  # type: ignore[attr-defined]
        return record

    async def _list(self, collection: str, model: Type[ModelT]) -> list[ModelT]:
        return [model.model_validate(doc) for doc in await self._doc_all(collection)]

    async def _get(self, collection: str, model: Type[ModelT], doc_id: str) -> ModelT | None:
        doc = await self._doc_get(collection, doc_id)
        if doc is None:
            return None
        return model.model_validate(doc)

    async def _update(self, collection: str, model: Type[ModelT], doc_id: str, patch: dict[str, Any]) -> ModelT | None:
        current = await self._get(collection, model, doc_id)
        if current is None:
            return None
        merged = current.model_dump()
        merged.update(patch)
        merged["id"] = doc_id
        updated = model.model_validate(merged)
        if not await self._doc_replace(collection, doc_id, self._encode(updated)):
            return None
        return updated

    # Vehicles

    async def list_vehicles(self) -> list[Vehicle]:
        return await self._list("vehicles", Vehicle)

    async def get_vehicle(self, vehicle_id: str) -> Vehicle | None:
        return await self._get("vehicles", Vehicle, vehicle_id)

    async def create_vehicle(self, data: VehicleCreate | Vehicle) -> Vehicle:
        vehicle = data if isinstance(data, Vehicle) else Vehicle(**data.model_dump())
        return await self._create("vehicles", vehicle)

    async def update_vehicle(self, vehicle_id: str, patch: dict[str, Any]) -> Vehicle | None:
        return await self._update("vehicles", Vehicle, vehicle_id, {**patch, "last_update": utc_now()})

    async def delete_vehicle(self, vehicle_id: str) -> bool:
        return await self._doc_delete("vehicles", vehicle_id)

    # Deliveries

    async def list_deliveries(self) -> list[Delivery]:
        return await self._list("deliveries", Delivery)

    async def get_delivery(self, delivery_id: str) -> Delivery | None:
        return await self._get("deliveries", Delivery, delivery_id)

    async def create_delivery(self, data: DeliveryCreate | Delivery) -> Delivery:
        delivery = data if isinstance(data, Delivery) else Delivery(**data.model_dump())
        return await self._create("deliveries", delivery)

    async def update_delivery(self, delivery_id: str, patch: dict[str, Any]) -> Delivery | None:
        return await self._update("deliveries", Delivery, delivery_id, patch)

    async def delete_delivery(self, delivery_id: str) -> bool:
        return await self._doc_delete("deliveries", delivery_id)

    # Routes

    async def list_routes(self) -> list[Route]:
        return await self._list("routes", Route)

    async def get_route(self, route_id: str) -> Route | None:
        return await self._get("routes", Route, route_id)

    async def create_route(self, data: RouteCreate | Route) -> Route:
        route = data if isinstance(data, Route) else Route(**data.model_dump())
        return await self._create("routes", route)

    async def update_route(self, route_id: str, patch: dict[str, Any]) -> Route | None:
        return await self._update("routes", Route, route_id, patch)

    async def delete_route(self, route_id: str) -> bool:
        return await self._doc_delete("routes", route_id)

    # Alerts

    async def list_alerts(self) -> list[Alert]:
        """Alerts newest first."""
        alerts = await self._list("alerts", Alert)
        return sorted(alerts, key=lambda a: a.created_at, reverse=True)

    async def get_alert(self, alert_id: str) -> Alert | None:
        return await self._get("alerts", Alert, alert_id)

    async def create_alert(self, data: AlertCreate | Alert) -> Alert:
        alert = data if isinstance(data, Alert) else Alert(**data.model_dump())
        return await self._create("alerts", alert)

    async def mark_alert_read(self, alert_id: str) -> Alert | None:
        return await self._update("alerts", Alert, alert_id, {"is_read": True})

    async def delete_alert(self, alert_id: str) -> bool:
        return await self._doc_delete("alerts", alert_id)

    # Sensor readings

    async def list_sensor_readings(self) -> list[SensorReading]:
        return await self._list("sensor_readings", SensorReading)

    async def create_sensor_reading(self, data: SensorReadingCreate | SensorReading) -> SensorReading:
        reading = data if isinstance(data, SensorReading) else SensorReading(**data.model_dump())
        return await self._create("sensor_readings", reading)


class MemoryRepository(DocumentRepository):
    """Process-local backend; dicts preserve insertion order."""
    def __init__(self) -> None:
        self._docs: dict[str, dict[str, dict[str, Any]]] = {name: {} for name in COLLECTIONS}

    async def _doc_insert(self, collection: str, doc_id: str, doc: dict[str, Any]) -> None:
        self._docs[collection][doc_id] = dict(doc)

    async def _doc_all(self, collection: str) -> list[dict[str, Any]]:
        return [dict(doc) for doc in self._docs[collection].values()]

    async def _doc_get(self, collection: str, doc_id: str) -> dict[str, Any] | None:
        doc = self._docs[collection].get(doc_id)
        return dict(doc) if doc is not None else None

    async def _doc_replace(self, collection: str, doc_id: str, doc: dict[str, Any]) -> bool:
        if doc_id not in self._docs[collection]:
            return False
        self._docs[collection][doc_id] = dict(doc)
        return True

    async def _doc_delete(self, collection: str, doc_id: str) -> bool:
        return self._docs[collection].pop(doc_id, None) is not None

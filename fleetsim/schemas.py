from __future__ import annotations

"""
File: fleetsim/schemas.py
Purpose: Pydantic models for the fleet wire contract.
Key responsibilities:
- Define Vehicle/Delivery/Route/Alert/SensorReading records with camelCase wire names.
- Define create/patch payloads and optimization request/response contracts.
Key entrypoints:
- Vehicle, Delivery, Route, Coordinate, OptimizeRequest, OptimizeResponse
"""

from datetime import datetime, timezone
from typing import Annotated, Literal, Optional
from uuid import uuid4

from pydantic import AfterValidator, AliasChoices, BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel


VehicleStatus = Literal["idle", "in-transit", "maintenance"]
DeliveryStatus = Literal["pending", "in-transit", "delivered", "delayed"]
DeliveryPriority = Literal["low", "normal", "high"]
RouteStatus = Literal["planned", "active", "completed"]
RouteAlgorithm = Literal["dijkstra", "astar"]
AlertSeverity = Literal["info", "warning", "critical"]


def utc_now() -> datetime:
    return datetime.now(timezone.utc)


def new_id() -> str:
    return str(uuid4())


def _as_utc(value: datetime) -> datetime:
    """Naive timestamps are taken to be UTC."""
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value


UtcDatetime = Annotated[datetime, AfterValidator(_as_utc)]


class WireModel(BaseModel):
    """Base model: snake_case in Python, camelCase on the wire."""
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)


class Coordinate(BaseModel):
    """Immutable geographic point; accepts lat/lng/address spellings on input."""
    model_config = ConfigDict(frozen=True)

    latitude: float = Field(validation_alias=AliasChoices("latitude", "lat"))
    longitude: float = Field(validation_alias=AliasChoices("longitude", "lng"))
    label: Optional[str] = Field(default=None, validation_alias=AliasChoices("label", "address"))


class VehicleCreate(WireModel):
    vehicle_number: str
    driver_name: str
    driver_id: Optional[str] = None
    status: VehicleStatus = "idle"
    latitude: float
    longitude: float
    speed: float = 0.0
    fuel_level: float = Field(default=100.0, ge=0, le=100)
    temperature: Optional[float] = None
    current_route_id: Optional[str] = None
    route_completion: float = Field(default=0.0, ge=0, le=100)


class Vehicle(VehicleCreate):
    """Persisted vehicle record."""
    id: str = Field(default_factory=new_id)
    last_update: UtcDatetime = Field(default_factory=utc_now)


class VehiclePatch(WireModel):
    """Partial vehicle update (e.g. a driver's best-effort location feed)."""
    vehicle_number: Optional[str] = None
    driver_name: Optional[str] = None
    driver_id: Optional[str] = None
    status: Optional[VehicleStatus] = None
    latitude: Optional[float] = None
    longitude: Optional[float] = None
    speed: Optional[float] = None
    fuel_level: Optional[float] = Field(default=None, ge=0, le=100)
    temperature: Optional[float] = None
    current_route_id: Optional[str] = None
    route_completion: Optional[float] = Field(default=None, ge=0, le=100)


class DeliveryCreate(WireModel):
    order_id: str
    status: DeliveryStatus = "pending"
    customer_id: str
    customer_name: str
    pickup_address: str
    pickup_lat: float
    pickup_lng: float
    delivery_address: str
    delivery_lat: float
    delivery_lng: float
    vehicle_id: Optional[str] = None
    route_id: Optional[str] = None
    scheduled_time: Optional[UtcDatetime] = None
    estimated_delivery_time: Optional[UtcDatetime] = None
    actual_delivery_time: Optional[UtcDatetime] = None
    priority: DeliveryPriority = "normal"
    package_weight: Optional[float] = None


class Delivery(DeliveryCreate):
    """Persisted delivery record."""
    id: str = Field(default_factory=new_id)
    created_at: UtcDatetime = Field(default_factory=utc_now)

    def destination(self) -> Coordinate:
        return Coordinate(latitude=self.delivery_lat, longitude=self.delivery_lng, label=self.delivery_address)


class DeliveryPatch(WireModel):
    status: Optional[DeliveryStatus] = None
    customer_name: Optional[str] = None
    delivery_address: Optional[str] = None
    delivery_lat: Optional[float] = None
    delivery_lng: Optional[float] = None
    vehicle_id: Optional[str] = None
    route_id: Optional[str] = None
    scheduled_time: Optional[UtcDatetime] = None
    estimated_delivery_time: Optional[UtcDatetime] = None
    actual_delivery_time: Optional[UtcDatetime] = None
    priority: Optional[DeliveryPriority] = None
    package_weight: Optional[float] = None


class RouteCreate(WireModel):
    name: str
    vehicle_id: Optional[str] = None
    status: RouteStatus = "planned"
    algorithm: RouteAlgorithm = "dijkstra"
    total_distance: float = Field(ge=0)
    estimated_duration: int = Field(ge=0)
    estimated_cost: float = Field(ge=0)
    actual_cost: Optional[float] = None
    waypoints: list[Coordinate]
    path_coordinates: list[Coordinate] = Field(min_length=1)
    started_at: Optional[UtcDatetime] = None
    completed_at: Optional[UtcDatetime] = None


class Route(RouteCreate):
    """Persisted route record."""
    id: str = Field(default_factory=new_id)
    created_at: UtcDatetime = Field(default_factory=utc_now)
    superseded_by: Optional[str] = None


class RoutePatch(WireModel):
    """Routes are immutable apart from their status and cost fields."""
    name: Optional[str] = None
    status: Optional[RouteStatus] = None
    estimated_cost: Optional[float] = Field(default=None, ge=0)
    actual_cost: Optional[float] = None
    started_at: Optional[UtcDatetime] = None
    completed_at: Optional[UtcDatetime] = None


class AlertCreate(WireModel):
    type: str
    severity: AlertSeverity = "info"
    message: str
    vehicle_id: Optional[str] = None
    delivery_id: Optional[str] = None
    route_id: Optional[str] = None
    is_read: bool = False
    metadata: Optional[str] = None


class Alert(AlertCreate):
    id: str = Field(default_factory=new_id)
    created_at: UtcDatetime = Field(default_factory=utc_now)


class SensorReadingCreate(WireModel):
    device_id: str
    vehicle_id: str
    latitude: float
    longitude: float
    speed: float
    fuel_level: float
    temperature: Optional[float] = None
    engine_status: str = "running"
    connection_status: str = "connected"


class SensorReading(SensorReadingCreate):
    id: str = Field(default_factory=new_id)
    timestamp: UtcDatetime = Field(default_factory=utc_now)


class OptimizeRequest(WireModel):
    """Request body for /api/routes/optimize."""
    waypoints: list[Coordinate]
    algorithm: str = "dijkstra"


class OptimizeResponse(WireModel):
    """Response payload for /api/routes/optimize."""
    visiting_order: list[int]
    total_distance: float
    estimated_duration_minutes: int
    path_coordinates: list[Coordinate]


class OptimizeAllResponse(WireModel):
    message: str
    routes: list[Route]
    deliveries_assigned: int


class DashboardMetrics(WireModel):
    active_deliveries: int
    completed_today: int
    active_vehicles: int
    average_delivery_time: int
    on_time_percentage: int
    total_revenue: int
    pending_alerts: int
    route_efficiency: int

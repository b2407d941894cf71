from __future__ import annotations

"""
File: fleetsim/mq.py
Purpose: Optional RabbitMQ fan-out of vehicle updates.
Key responsibilities:
- Declare the durable fleet events topic exchange.
- Publish vehicle.updated events as persistent JSON messages.
Config/env vars:
- MQ_ENABLED, RABBITMQ_HOST, RABBITMQ_PORT, RABBITMQ_USER, RABBITMQ_PASS
"""

import json
import logging
from typing import Any

import aio_pika
from aio_pika import ExchangeType

logger = logging.getLogger("fleetsim.mq")

VEHICLE_UPDATED = "vehicle.updated"


def build_message(payload: dict[str, Any]) -> aio_pika.Message:
    """Persistent JSON message; the vehicle id rides along as a header."""
    vehicle = payload.get("vehicle") or {}
    return aio_pika.Message(
        body=json.dumps(payload, separators=(",", ":")).encode("utf-8"),
        content_type="application/json",
        delivery_mode=aio_pika.DeliveryMode.PERSISTENT,
        type=payload.get("eventType"),
        headers={"vehicle_id": vehicle["id"]} if "id" in vehicle else {},
    )


class VehicleEventPublisher:
    """Publishes vehicle_update events to RabbitMQ once started."""
    def __init__(self, rabbit_url: str, exchange_name: str) -> None:
        self.rabbit_url = rabbit_url
        self.exchange_name = exchange_name
        self.connection: aio_pika.abc.AbstractRobustConnection | None = None
        self.exchange: aio_pika.abc.AbstractExchange | None = None
        self.failures = 0

    async def start(self) -> None:
        """Connect with robust reconnect behavior and declare the exchange."""
        self.connection = await aio_pika.connect_robust(self.rabbit_url)
        channel = await self.connection.channel()
        self.exchange = await channel.declare_exchange(self.exchange_name, ExchangeType.TOPIC, durable=True)
        logger.info("vehicle event publisher started exchange=%s", self.exchange_name)

    async def publish(self, payload: dict[str, Any]) -> None:
        if self.exchange is None:
            return
        try:
            await self.exchange.publish(build_message(payload), routing_key=VEHICLE_UPDATED)
        except Exception as exc:  # noqa: BLE001
            self.failures += 1
            logger.warning("vehicle event publish failed failures=%s err=%s", self.failures, exc)

    async def close(self) -> None:
        if self.connection is not None:
            await self.connection.close()
            self.connection = None
            self.exchange = None

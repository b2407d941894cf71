"""
File: fleetsim/settings.py
Purpose: Environment-backed configuration for the fleet simulation service.
Key responsibilities:
- Parse storage (memory/MySQL), RabbitMQ and optimizer settings.
- Define progression, assignment and cost parameters.
"""

from dataclasses import dataclass
import os


def _bool_env(name: str, default: bool = False) -> bool:
    """Parse a boolean env var (1/true/yes/on) with a fallback."""
    raw = os.getenv(name, "")
    if raw == "":
        return default
    return raw.strip().lower() in {"1", "true", "yes", "on"}


def _optional_int_env(name: str) -> int | None:
    """Parse an integer env var, returning None when unset."""
    raw = os.getenv(name, "")
    if raw == "":
        return None
    return int(raw)


@dataclass(frozen=True)
class Settings:
    """Service configuration parsed from environment."""
    storage_backend: str = os.getenv("STORAGE_BACKEND", "memory")
    seed_demo_data: bool = _bool_env("SEED_DEMO_DATA", True)
    mysql_host: str = os.getenv("MYSQL_HOST", "mysql")
    mysql_port: int = int(os.getenv("MYSQL_PORT", "3306"))
    mysql_user: str = os.getenv("MYSQL_USER", "fleet")
    mysql_password: str = os.getenv("MYSQL_PASSWORD", "fleetpass")
    mysql_db: str = os.getenv("MYSQL_DB", "smart_delivery")
    mq_enabled: bool = _bool_env("MQ_ENABLED", False)
    rabbit_host: str = os.getenv("RABBITMQ_HOST", "rabbitmq")
    rabbit_port: int = int(os.getenv("RABBITMQ_PORT", "5672"))
    rabbit_user: str = os.getenv("RABBITMQ_USER", "fleet")
    rabbit_pass: str = os.getenv("RABBITMQ_PASS", "fleetpass")
    exchange_name: str = "fleet.events"
    optimizer_url: str = os.getenv("OPTIMIZER_URL", "")
    sim_seed: int | None = _optional_int_env("SIM_SEED")
    tick_interval_s: float = float(os.getenv("TICK_INTERVAL_S", "3"))
    progress_step: float = float(os.getenv("PROGRESS_STEP", "0.05"))
    speed_min_kmh: float = float(os.getenv("SPEED_MIN_KMH", "30"))
    speed_max_kmh: float = float(os.getenv("SPEED_MAX_KMH", "60"))
    arrival_slowdown_at: float = float(os.getenv("ARRIVAL_SLOWDOWN_AT", "0.9"))
    fuel_drain_max: float = float(os.getenv("FUEL_DRAIN_MAX", "0.3"))
    average_speed_kmh: float = float(os.getenv("AVERAGE_SPEED_KMH", "50"))
    cost_per_km: float = float(os.getenv("COST_PER_KM", "0.5"))
    startup_assign_delay_s: float = float(os.getenv("STARTUP_ASSIGN_DELAY_S", "0.5"))
    create_assign_delay_s: float = float(os.getenv("CREATE_ASSIGN_DELAY_S", "0.1"))
    assign_busy_vehicles: bool = _bool_env("ASSIGN_BUSY_VEHICLES", False)


settings = Settings()


def rabbit_url() -> str:
    return f"amqp://{settings.rabbit_user}:{settings.rabbit_pass}@{settings.rabbit_host}:{settings.rabbit_port}/"

import os
from dataclasses import dataclass


def _get_bool(env_name: str, default: bool = False) -> bool:
    val = os.getenv(env_name)
    if val is None:
        return default
    return str(val).strip().lower() in {"1", "true", "yes", "y", "on"}


@dataclass
class Settings:
    # App
    APP_HOST: str = os.getenv("APP_HOST", "0.0.0.0")
    APP_PORT: int = int(os.getenv("APP_PORT", "8000"))
    LOG_LEVEL: str = os.getenv("LOG_LEVEL", "INFO")
    INSTANCE_ID: str = os.getenv("INSTANCE_ID", "unknown")
    SEED_ON_STARTUP: bool = _get_bool("SEED_ON_STARTUP", True)

    # Database (SQLite by default in a Docker volume)
    DB_URL: str = os.getenv("DB_URL", "sqlite+aiosqlite:////data/data.db")
    SQLITE_BUSY_TIMEOUT: float = float(os.getenv("SQLITE_BUSY_TIMEOUT", "15"))

    # Redis
    REDIS_ENABLED: bool = _get_bool("REDIS_ENABLED", True)
    REDIS_HOST: str = os.getenv("REDIS_HOST", "redis")
    REDIS_PORT: int = int(os.getenv("REDIS_PORT", "6379"))
    REDIS_DB: int = int(os.getenv("REDIS_DB", "0"))
    REDIS_USERNAME: str = os.getenv("REDIS_USERNAME", "")
    REDIS_PASSWORD: str = os.getenv("REDIS_PASSWORD", "")
    REDIS_SSL: bool = _get_bool("REDIS_SSL", False)
    REDIS_EVENTS_CHANNEL: str = os.getenv("REDIS_EVENTS_CHANNEL", "store-events")

    # Kafka
    KAFKA_ENABLED: bool = _get_bool("KAFKA_ENABLED", True)
    KAFKA_BOOTSTRAP_SERVERS: str = os.getenv("KAFKA_BOOTSTRAP_SERVERS", "kafka:9092")
    ORDER_EVENTS_TOPIC: str = os.getenv("ORDER_EVENTS_TOPIC", "order-events")

    # Auth (tokens are issued by the account service, we only verify them)
    JWT_SECRET: str = os.getenv("JWT_SECRET", "change-me-in-production")
    JWT_ALGORITHM: str = os.getenv("JWT_ALGORITHM", "HS256")

    # Pagination
    USER_PAGE_SIZE: int = int(os.getenv("USER_PAGE_SIZE", "10"))
    ADMIN_PAGE_SIZE: int = int(os.getenv("ADMIN_PAGE_SIZE", "20"))
    MAX_PAGE_SIZE: int = int(os.getenv("MAX_PAGE_SIZE", "100"))


settings = Settings()

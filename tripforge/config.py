from __future__ import annotations

import os
from typing import Literal, Optional

import yaml
from pydantic import BaseModel


class RedisConfig(BaseModel):
    """Connection settings for the Redis broker."""

    host: str = "localhost"
    port: int = 6379
    db: int = 0
    password: Optional[str] = None


class QueueConfig(BaseModel):
    """Job queue, retry and worker settings."""

    backend: Literal["inmemory", "redis"] = "inmemory"
    name: str = "itinerary_processing"
    redis: RedisConfig = RedisConfig()
    connect_timeout: float = 5.0
    command_timeout: float = 5.0
    concurrency: int = 5
    max_attempts: int = 3
    backoff_delay: float = 5.0
    default_delay: float = 0.0
    priority: int = 1
    keep_completed: int = 10
    keep_failed: int = 5
    lock_duration: float = 30.0
    max_stalled_count: int = 1
    stall_check_interval: float = 30.0
    poll_interval: float = 1.0


class MonitorConfig(BaseModel):
    """Stuck-job monitor settings."""

    enabled: bool = True
    check_interval: float = 60.0
    stuck_threshold: float = 60.0
    batch_size: int = 20


class GenerationConfig(BaseModel):
    """AI content generation settings."""

    model: str = "groq:llama3-8b-8192"
    timeout: float = 60.0


class PdfConfig(BaseModel):
    """PDF rendering settings."""

    storage_path: str = "./pdfs"
    timeout: float = 300.0


class TripforgeConfig(BaseModel):
    """Top-level configuration model."""

    queue: QueueConfig = QueueConfig()
    monitor: MonitorConfig = MonitorConfig()
    generation: GenerationConfig = GenerationConfig()
    pdf: PdfConfig = PdfConfig()
    database_url: Optional[str] = None
    log_level: str = "INFO"


def load_config(path: Optional[str] = None) -> TripforgeConfig:
    """Load configuration from YAML file.

    Args:
        path: Optional path to config file. Falls back to TRIPFORGE_CONFIG env
            variable or 'config.yaml' in the current directory.
    """

    config_path = path or os.getenv("TRIPFORGE_CONFIG", "config.yaml")
    if os.path.exists(config_path):
        with open(config_path) as f:
            data = yaml.safe_load(f) or {}
        config = TripforgeConfig(**data)
    else:
        config = TripforgeConfig()

    env_db_url = os.getenv("TRIPFORGE_DATABASE_URL") or os.getenv("DATABASE_URL")
    if env_db_url:
        config.database_url = env_db_url
    env_backend = os.getenv("TRIPFORGE_QUEUE_BACKEND")
    if env_backend:
        config.queue.backend = env_backend.lower()  # type: ignore[assignment]
    env_level = os.getenv("TRIPFORGE_LOG_LEVEL")
    if env_level:
        config.log_level = env_level.upper()
    return config

"""Application configuration and settings management."""

from pathlib import Path
from typing import Annotated, Any, Literal, Optional

import json
from pydantic import Field, field_validator
from pydantic_settings import BaseSettings, NoDecode, SettingsConfigDict


class Settings(BaseSettings):
    """Runtime configuration loaded from environment variables or defaults."""

    model_config = SettingsConfigDict(
        env_prefix="AUTORIDE_",
        case_sensitive=False,
        env_file=".env",
        env_file_encoding="utf-8",
    )

    app_name: str = "AutoRide Dispatch API"
    api_prefix: str = "/api"
    log_level: str = "INFO"
    data_root: Path = Field(default=Path("data"), description="Root directory for session snapshots.")

    # Routing
    osrm_base_url: Optional[str] = Field(
        default=None,
        description="Base URL for the OSRM routing service (e.g., http://localhost:5000).",
    )
    osrm_profile: Literal["driving", "car"] = Field(
        default="driving",
        description="OSRM profile to use when requesting directions.",
    )
    osrm_timeout_seconds: float = Field(default=5.0, gt=0.0)
    osrm_max_retries: int = Field(default=1, ge=0)
    osrm_backoff_seconds: float = Field(default=0.5, ge=0.0)
    routing_timeout_seconds: float = Field(
        default=8.0,
        gt=0.0,
        description="Upper bound for a single route lookup, retries included.",
    )
    average_speed_kmh: float = Field(default=30.0, gt=0.0, description="Assumed urban speed for ETA estimates.")
    min_route_points: int = Field(default=10, ge=2)

    # Journey simulation
    tick_interval_seconds: float = Field(default=1.0, ge=0.0)
    progress_step: float = Field(default=0.02, gt=0.0, le=1.0)
    pickup_dwell_seconds: float = Field(default=3.0, ge=0.0)
    completion_delay_seconds: float = Field(default=2.0, ge=0.0)

    # Session persistence
    snapshot_max_age_seconds: float = Field(default=300.0, gt=0.0)
    snapshot_table: str = "dispatch_sessions"
    supabase_url: Optional[str] = Field(
        default=None,
        description="Supabase project URL (e.g., https://xxx.supabase.co).",
    )
    supabase_key: Optional[str] = Field(
        default=None,
        description="Supabase service role key for backend operations.",
    )

    # Fleet and external location feed
    fleet_size: int = Field(default=10, ge=0)
    fleet_center_lat: float = 40.7589
    fleet_center_lng: float = -73.9851
    fleet_spread_degrees: float = Field(default=0.1, ge=0.0)
    feed_enabled: bool = False
    feed_interval_seconds: float = Field(default=2.0, gt=0.0)
    feed_step_degrees: float = Field(default=0.0001, ge=0.0)
    feed_seed: Optional[int] = None

    # Events
    kafka_brokers: Annotated[tuple[str, ...], NoDecode] = Field(
        default=(),
        description="Kafka bootstrap servers. Leave empty to keep events in-process only.",
    )
    kafka_client_id: str = "autoride-dispatch"
    event_history_size: int = Field(default=100, ge=1)
    subscriber_queue_size: int = Field(default=256, ge=1)

    default_user_id: str = "user-demo"
    frontend_allowed_origins: Annotated[tuple[str, ...], NoDecode] = Field(
        default=(
            "http://localhost:3000",
            "http://127.0.0.1:3000",
        ),
        description="Permitted web origins for browser clients (CORS).",
    )

    @field_validator("data_root", mode="before")
    @classmethod
    def _expand_path(cls, value: Any) -> Path:
        path_value = value if isinstance(value, Path) else Path(str(value))
        return path_value.expanduser().resolve()

    @field_validator("frontend_allowed_origins", "kafka_brokers", mode="before")
    @classmethod
    def _parse_str_tuple_from_env(cls, value: Any) -> tuple[str, ...]:
        """Parse string tuple from environment variable (comma-separated or JSON array)."""
        if isinstance(value, tuple):
            return value
        if isinstance(value, list):
            return tuple(str(item) for item in value)
        if isinstance(value, str):
            # Try JSON first
            try:
                parsed = json.loads(value)
                if isinstance(parsed, list):
                    return tuple(str(item) for item in parsed)
            except (json.JSONDecodeError, TypeError):
                pass
            if "," in value:
                return tuple(item.strip() for item in value.split(",") if item.strip())
            if value.strip():
                return (value.strip(),)
        return tuple()


settings = Settings()

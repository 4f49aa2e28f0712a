from __future__ import annotations

from functools import lru_cache
from typing import Annotated, List, Optional

from pydantic import Field, field_validator
from pydantic_settings import BaseSettings, NoDecode, SettingsConfigDict


DEFAULT_TIME_SLOTS = [
    "09:00 AM", "10:00 AM", "11:00 AM", "12:00 PM",
    "01:00 PM", "02:00 PM", "03:00 PM", "04:00 PM",
    "05:00 PM", "06:00 PM",
]


class Settings(BaseSettings):
    """Agent console backend settings and shared environment variables."""

    api_prefix: str = "/api"
    app_name: str = "Dispatch Console Backend"
    log_level: str = "INFO"
    timezone: str = "Asia/Kolkata"

    # Call-center backend (HTTP)
    backend_base_url: str = "https://callcenter-baclend.onrender.com"
    backend_timeout_seconds: float = 15.0
    agent_display_name: str = "Agent"

    # Identity provider tokens
    auth_jwt_secret: Optional[str] = None
    auth_jwt_algorithm: str = "HS256"

    # Supabase record store
    supabase_url: Optional[str] = None
    supabase_service_role_key: Optional[str] = None
    table_placed_orders: str = "placed_orders"
    table_dispatch: str = "dispatch"
    table_memberships: str = "memberships"
    table_allowed_numbers: str = "membership_allowed_numbers"
    table_users: str = "users"
    table_addresses: str = "addresses"

    # Real-time incoming call events (Socket.IO)
    realtime_url: Optional[str] = None
    realtime_incoming_call_event: str = "incoming-call"

    # Geocoding (Nominatim-compatible)
    geocoder_base_url: str = "https://nominatim.openstreetmap.org"
    geocoder_user_agent: str = "dispatch-console/1.0"
    geocoder_timeout_seconds: float = 10.0
    geocoder_cache_size: int = 512

    # Tab-scoped session storage
    redis_url: Optional[str] = None
    redis_session_prefix: str = "dispatch-console-session"
    session_ttl_minutes: int = 12 * 60

    # Work queue
    scheduled_visibility_minutes: int = 60
    scheduled_recheck_seconds: int = 60

    # Workflow
    dispatch_redirect_delay_seconds: int = 3
    # Comma-separated in the environment, so skip the JSON decoding of complex fields.
    schedule_time_slots: Annotated[List[str], NoDecode] = Field(default_factory=lambda: list(DEFAULT_TIME_SLOTS))

    model_config = SettingsConfigDict(
        env_prefix="",
        env_file=(".env", ".env.local"),
        env_file_encoding="utf-8",
    )

    @field_validator("schedule_time_slots", mode="before")
    @classmethod
    def split_time_slots(cls, value):
        if isinstance(value, str):
            items = [item.strip() for item in value.split(",") if item.strip()]
            return items or list(DEFAULT_TIME_SLOTS)
        if value is None:
            return list(DEFAULT_TIME_SLOTS)
        return value


@lru_cache
def get_settings() -> Settings:
    return Settings()

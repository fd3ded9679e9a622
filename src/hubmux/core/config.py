# hubmux/core/config.py
"""
Central configuration for the hub multiplexer.

Environment variables override defaults.
"""
from __future__ import annotations

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """Environment-driven settings with sensible defaults."""

    model_config = SettingsConfigDict(env_file=".env", extra="ignore")

    app_env: str = "dev"
    log_level: str = "INFO"
    log_json: bool = Field(
        default=True,
        description="Emit JSON log lines instead of plain text",
    )

    # ZeroMQ transport
    zmq_io_threads: int = Field(default=1, ge=1)
    zmq_linger_ms: int = Field(
        default=0,
        description="Milliseconds to keep unsent data after close",
    )
    zmq_rcvhwm: int = Field(
        default=1000,
        ge=0,
        description="Receive high-water mark per hub socket (0 = unlimited)",
    )

    stop_timeout: float = Field(
        default=5.0,
        gt=0,
        description="Seconds to wait for a receive thread to exit on stop",
    )


settings = Settings()

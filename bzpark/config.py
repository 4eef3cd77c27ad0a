"""
Centralized configuration management using Pydantic Settings
Single source of truth for the serial bridge and reservation client

Values come from environment variables or a .env file next to the process.
"""
from pydantic_settings import BaseSettings
from pydantic import Field, field_validator
from typing import List, Optional
from functools import lru_cache

from . import __version__


class Settings(BaseSettings):
    """Bridge settings with environment variable support and validation"""

    # ========================================================================
    # Application
    # ========================================================================
    app_name: str = Field(
        default="BZpark Sensor Bridge",
        description="Application name"
    )
    app_version: str = Field(
        default=__version__,
        description="Application version"
    )
    log_level: str = Field(
        default="INFO",
        description="Logging level"
    )
    json_logs: bool = Field(
        default=False,
        description="Emit JSON logs instead of console output"
    )

    # ========================================================================
    # Local diagnostic API
    # ========================================================================
    api_host: str = Field(
        default="0.0.0.0",
        description="Local API bind host"
    )
    api_port: int = Field(
        default=8000,
        ge=1,
        le=65535,
        description="Local API port"
    )
    cors_origins_str: str = Field(
        default="*",
        alias="cors_origins",
        description="Comma-separated list of allowed CORS origins"
    )

    @property
    def cors_origins(self) -> List[str]:
        """Parse CORS origins from comma-separated string"""
        return [origin.strip() for origin in self.cors_origins_str.split(",") if origin.strip()]

    # ========================================================================
    # Data store (backend REST API)
    # ========================================================================
    backend_url: str = Field(
        default="http://localhost:8888",
        description="Base URL of the parking backend"
    )
    mapping_timeout_seconds: float = Field(
        default=5.0,
        gt=0,
        description="Timeout for sensor mapping lookups"
    )
    sensor_put_timeout_seconds: float = Field(
        default=1.5,
        gt=0,
        description="Timeout for sensor range updates"
    )
    reservation_timeout_seconds: float = Field(
        default=8.0,
        ge=1,
        le=30,
        description="Timeout for reservation calls"
    )

    # ========================================================================
    # Serial port
    # ========================================================================
    com_port: str = Field(
        default="COM5",
        description="Serial port the Arduino/ESP8266 is attached to"
    )
    baud_rate: int = Field(
        default=9600,
        gt=0,
        description="Serial baud rate"
    )
    serial_reconnect: bool = Field(
        default=True,
        description="Re-open the serial port after hardware errors"
    )
    serial_reconnect_max_seconds: float = Field(
        default=60.0,
        ge=1,
        description="Upper bound for the reconnect backoff"
    )

    # ========================================================================
    # Sensor routing
    # ========================================================================
    auto_detect_sensors: bool = Field(
        default=False,
        description="Resolve sensor IDs from the backend device registry"
    )
    sensor_id1: Optional[int] = Field(
        default=None,
        description="Legacy sensor ID for channel 1"
    )
    sensor_id2: Optional[int] = Field(
        default=None,
        description="Legacy sensor ID for channel 2 (optional)"
    )
    device_ip: Optional[str] = Field(
        default=None,
        description="IP of the mapped device that owns unlabeled readings"
    )
    mapping_refresh_seconds: float = Field(
        default=300.0,
        ge=5,
        description="Sensor mapping refresh interval in seconds"
    )
    seq_reset_ms: int = Field(
        default=2000,
        ge=0,
        description="Reset channel alternation after this many ms of silence"
    )

    # ========================================================================
    # Rate limiting
    # ========================================================================
    min_interval_ms: int = Field(
        default=300,
        ge=0,
        description="Minimum gap between updates for one sensor"
    )
    min_change: int = Field(
        default=1,
        ge=0,
        description="Minimum change in inches before an update is sent"
    )

    # ========================================================================
    # Reservations
    # ========================================================================
    hold_amount: float = Field(
        default=30.00,
        gt=0,
        le=999.99,
        description="Fixed hold payment amount"
    )

    # ========================================================================
    # Validators
    # ========================================================================

    @field_validator("log_level")
    @classmethod
    def validate_log_level(cls, v: str) -> str:
        """Validate log level"""
        valid_levels = ["DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"]
        if v.upper() not in valid_levels:
            raise ValueError(f"Invalid log level: {v}. Must be one of {valid_levels}")
        return v.upper()

    @field_validator("backend_url")
    @classmethod
    def strip_trailing_slash(cls, v: str) -> str:
        return v.rstrip("/")

    @field_validator("sensor_id1", "sensor_id2", mode="before")
    @classmethod
    def zero_means_unset(cls, v):
        """An empty or zero sensor ID is the same as none"""
        if v in (None, "", "0", 0):
            return None
        return v

    @property
    def legacy_sensor_ids(self) -> tuple:
        return (self.sensor_id1, self.sensor_id2)

    def routing_configured(self) -> bool:
        """True when readings have somewhere to go"""
        return self.auto_detect_sensors or self.sensor_id1 is not None

    class Config:
        """Pydantic configuration"""
        env_file = ".env"
        env_file_encoding = "utf-8"
        case_sensitive = False
        populate_by_name = True
        extra = "ignore"


@lru_cache()
def get_settings() -> Settings:
    """
    Get cached settings instance
    Uses lru_cache to ensure singleton pattern
    """
    return Settings()

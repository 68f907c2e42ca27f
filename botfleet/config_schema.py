"""Pydantic schema for configuration validation.

All config values are validated at startup. Typos and invalid values
fail fast with clear error messages.

Usage:
    from botfleet.config_schema import load_validated_config, AppConfig
    config = load_validated_config("config/config.yaml")
    # config is now a validated AppConfig instance
"""

from __future__ import annotations

from pathlib import Path
from typing import Any, Literal

import yaml
from pydantic import BaseModel, ConfigDict, Field, field_validator, model_validator


# =============================================================================
# BASE MODEL WITH STRICT VALIDATION
# =============================================================================

class StrictModel(BaseModel):
    """Base model that rejects unknown fields (catches typos)."""

    model_config = ConfigDict(extra="forbid")


# =============================================================================
# GAME SERVER MODEL
# =============================================================================

class ServerConfig(StrictModel):
    """Remote game server the bots connect to."""

    host: str = Field(default="localhost", description="Game server host")
    port: int = Field(default=25565, gt=0, lt=65536, description="Game server port")
    version: str = Field(default="1.21.1", description="Protocol version string")
    auth: Literal["microsoft", "offline"] = Field(
        default="microsoft",
        description="Login flow used by the connection backend"
    )
    backend: Literal["offline"] = Field(
        default="offline",
        description="Connection backend (offline = in-memory world)"
    )


# =============================================================================
# BEHAVIOR MODEL
# =============================================================================

class BehaviorConfig(StrictModel):
    """Per-bot behavior tuning shared by every execution unit."""

    protected_blocks: list[str] = Field(
        default_factory=lambda: [
            "light_gray_concrete",
            "smooth_quartz_slab",
            "water",
            "barrier",
            "bedrock",
        ],
        description="Materials the scanner never selects"
    )
    cps: float = Field(default=20.0, gt=0, description="Destructive actions per second")
    scan_radius: int = Field(default=8, ge=0, description="Half-size of the scan cube")
    max_dig_distance: float = Field(
        default=8.0, gt=0, description="Max bot-to-block distance for digging"
    )
    follow_range: float = Field(default=1.0, ge=0, description="Follow goal radius")
    grief_range: float = Field(default=1.0, ge=0, description="Grief approach radius")
    trap_block: str = Field(default="dirt", description="Material used to build traps")
    trap_range: float = Field(
        default=4.5, gt=0, description="Max distance to target before building starts"
    )
    trap_approach_range: float = Field(
        default=3.5, ge=0, description="Follow radius while approaching a trap target"
    )
    sweep_distance: float = Field(
        default=10000.0, gt=0, description="Clearmap goal distance along the angle"
    )
    placement_delay_seconds: float = Field(
        default=0.05, ge=0, description="Pause after each placed block"
    )
    grant_stack_size: int = Field(default=64, gt=0, le=64)
    grant_slot: int = Field(default=36, ge=0, description="Inventory slot for granted stacks")

    @model_validator(mode="after")
    def validate_ranges(self) -> BehaviorConfig:
        """Approach radius must bring the bot inside building range."""
        if self.trap_approach_range >= self.trap_range:
            raise ValueError(
                f"trap_approach_range ({self.trap_approach_range}) must be < "
                f"trap_range ({self.trap_range})"
            )
        return self


# =============================================================================
# SUPERVISOR MODEL
# =============================================================================

class SupervisorConfig(StrictModel):
    """Fleet supervisor policy."""

    respawn_delay_seconds: float = Field(
        default=5.0, ge=0, description="Delay before respawning a crashed unit"
    )
    rekey_policy: Literal["auth_only", "always"] = Field(
        default="auth_only",
        description="Which units move from initial to final handle on login"
    )


# =============================================================================
# DASHBOARD MODEL
# =============================================================================

class DashboardConfig(StrictModel):
    """Control surface server configuration."""

    host: str = Field(
        default="0.0.0.0",
        description="Host to bind (0.0.0.0 for all interfaces)"
    )
    port: int = Field(default=3000, gt=0, description="Port number")
    keepalive_seconds: float = Field(
        default=30.0, gt=0, description="Idle time before the server pings a client"
    )


# =============================================================================
# OFFLINE WORLD MODEL
# =============================================================================

class OfflinePlayerConfig(StrictModel):
    """A non-bot player placed in the offline world."""

    name: str
    x: float = 0.0
    y: float = 1.0
    z: float = 0.0


class OfflineConfig(StrictModel):
    """In-memory world used when server.backend is 'offline'."""

    tick_interval_seconds: float = Field(default=0.05, gt=0)
    platform_radius: int = Field(default=16, ge=1, description="Half-size of the stone floor")
    move_speed: float = Field(default=0.5, gt=0, description="Blocks travelled per tick")
    creative: bool = Field(default=True, description="Bots may request item grants")
    players: list[OfflinePlayerConfig] = Field(default_factory=list)


# =============================================================================
# LOGGING MODEL
# =============================================================================

class LoggingConfig(StrictModel):
    """Logging configuration."""

    level: str = Field(default="INFO", description="Root log level")
    forward_to_dashboard: bool = Field(
        default=True,
        description="Mirror botfleet log records to control-surface clients"
    )

    @field_validator("level")
    @classmethod
    def validate_level(cls, v: str) -> str:
        """Accept standard level names in any case."""
        level = v.upper()
        if level not in {"DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"}:
            raise ValueError(f"Unknown log level: {v}")
        return level


# =============================================================================
# ROOT CONFIG MODEL
# =============================================================================

class AppConfig(StrictModel):
    """Root configuration model for the entire application.

    All fields have sensible defaults, so an empty config file is valid.
    """

    server: ServerConfig = Field(default_factory=ServerConfig)
    accounts_file: str = Field(
        default="accountsList.txt",
        description="Newline-delimited list of authenticated account names"
    )
    behavior: BehaviorConfig = Field(default_factory=BehaviorConfig)
    supervisor: SupervisorConfig = Field(default_factory=SupervisorConfig)
    dashboard: DashboardConfig = Field(default_factory=DashboardConfig)
    offline: OfflineConfig = Field(default_factory=OfflineConfig)
    logging: LoggingConfig = Field(default_factory=LoggingConfig)


# =============================================================================
# LOADING FUNCTIONS
# =============================================================================

def load_validated_config(config_path: str | Path = "config/config.yaml") -> AppConfig:
    """Load and validate configuration from YAML file.

    Args:
        config_path: Path to config YAML file.

    Returns:
        Validated AppConfig instance.

    Raises:
        FileNotFoundError: If config file doesn't exist.
        pydantic.ValidationError: If config is invalid (with detailed error message).
    """
    path = Path(config_path)
    if not path.exists():
        raise FileNotFoundError(f"Config file not found: {path}")

    with open(path) as f:
        raw_config = yaml.safe_load(f) or {}

    return AppConfig.model_validate(raw_config)


def validate_config_dict(config_dict: dict[str, Any]) -> AppConfig:
    """Validate a configuration dictionary.

    Args:
        config_dict: Configuration as a dictionary.

    Returns:
        Validated AppConfig instance.

    Raises:
        pydantic.ValidationError: If config is invalid.
    """
    return AppConfig.model_validate(config_dict)


# =============================================================================
# EXPORTS
# =============================================================================

__all__ = [
    "AppConfig",
    "ServerConfig",
    "BehaviorConfig",
    "SupervisorConfig",
    "DashboardConfig",
    "OfflineConfig",
    "OfflinePlayerConfig",
    "LoggingConfig",
    "load_validated_config",
    "validate_config_dict",
]

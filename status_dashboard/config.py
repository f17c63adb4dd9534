"""Configuration management for the status dashboard."""

import os
import shlex
from pathlib import Path
from typing import Any, Dict, List, Optional

import yaml
from pydantic import BaseModel, Field, field_validator


LOG_LEVELS = ("CRITICAL", "ERROR", "WARNING", "INFO", "DEBUG")


class DashboardConfig(BaseModel):
    """Runtime configuration, built once at startup."""

    # HTTP settings
    host: str = Field(default="0.0.0.0", description="Interface to listen on")
    port: int = Field(default=3000, ge=1, le=65535, description="Listen port")

    # Refresh settings
    refresh_interval_minutes: int = Field(default=15, ge=1, description="Refresh cadence in minutes")

    # Collector settings
    collector_command: List[str] = Field(
        default_factory=lambda: ["node", "client.js"],
        description="Collector argv, executed without a shell",
    )
    collector_workdir: str = Field(default_factory=os.getcwd, description="Collector working directory")
    status_file: str = Field(default="status.html", description="Artifact written by the collector")
    collector_timeout_seconds: float = Field(default=0, ge=0, description="Kill the collector after this many seconds (0 = never)")

    log_level: str = Field(default="INFO", description="Logging level")

    @field_validator("log_level")
    @classmethod
    def _normalise_log_level(cls, value: str) -> str:
        level = str(value).strip().upper()
        if level == "WARN":
            level = "WARNING"
        if level not in LOG_LEVELS:
            raise ValueError(f"log_level must be one of {', '.join(LOG_LEVELS)}")
        return level

    @property
    def refresh_interval_ms(self) -> int:
        return self.refresh_interval_minutes * 60 * 1000

    @property
    def refresh_interval_seconds(self) -> int:
        return self.refresh_interval_minutes * 60

    @property
    def status_file_path(self) -> Path:
        path = Path(self.status_file)
        if not path.is_absolute():
            path = Path(self.collector_workdir) / path
        return path


def load_config(config_path: Optional[str] = None) -> DashboardConfig:
    """Load configuration from an optional YAML file and environment variables."""
    if config_path is None:
        config_path = os.getenv("STATUS_DASHBOARD_CONFIG", "config/status_dashboard.yaml")

    config_data: Dict[str, Any] = {}

    if os.path.exists(config_path):
        with open(config_path, "r") as f:
            config_data = yaml.safe_load(f) or {}

    if isinstance(config_data.get("collector_command"), str):
        config_data["collector_command"] = shlex.split(config_data["collector_command"])

    env_overrides = {
        "host": os.getenv("HOST"),
        "port": os.getenv("PORT"),
        "refresh_interval_minutes": os.getenv("REFRESH_INTERVAL_MINUTES"),
        "collector_command": os.getenv("COLLECTOR_COMMAND"),
        "collector_workdir": os.getenv("COLLECTOR_WORKDIR"),
        "status_file": os.getenv("STATUS_FILE"),
        "collector_timeout_seconds": os.getenv("COLLECTOR_TIMEOUT_SECONDS"),
        "log_level": os.getenv("LOG_LEVEL"),
    }

    for key, value in env_overrides.items():
        if value is None or not value.strip():
            continue
        value = value.strip()
        if key in ["port", "refresh_interval_minutes"]:
            value = int(value)
        elif key == "collector_timeout_seconds":
            value = float(value)
        elif key == "collector_command":
            value = shlex.split(value)
        config_data[key] = value

    return DashboardConfig(**config_data)

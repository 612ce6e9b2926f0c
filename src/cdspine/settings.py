"""Runtime settings for cd-spine.

Pydantic v2 model whose fields can be overridden from ``CDSPINE_*``
environment variables via ``from_env()``. Precedence: keyword overrides >
environment variables > field defaults.

Example::

    settings = FlowSettings.from_env(log_level="DEBUG")
    client = DockerClient(settings.docker_binary)
"""

from __future__ import annotations

import os
from pathlib import Path
from typing import Any

from pydantic import BaseModel, Field, ValidationError

from cdspine.core.errors import ConfigError

_TRUE_VALUES = ("true", "1", "yes")


class FlowSettings(BaseModel):
    """Process-level settings for one cd-spine invocation."""

    docker_binary: str = Field(
        default="docker",
        description="docker-compatible CLI used to drive the engine",
    )
    stop_timeout_seconds: int = Field(
        default=10,
        ge=0,
        description="Grace period given to a unit when it is stopped",
    )
    log_level: str = Field(default="INFO", description="Log level")
    json_logs: bool | None = Field(
        default=None,
        description="JSON log output (auto-detected from the terminal if unset)",
    )
    code_dir: Path = Field(
        default_factory=Path.cwd,
        description="Directory holding the project code and manifest",
    )
    manifest_file: str = Field(
        default="cdflow.yaml",
        description="Manifest file name, relative to code_dir",
    )

    @property
    def manifest_path(self) -> Path:
        return self.code_dir / self.manifest_file

    @classmethod
    def from_env(cls, **overrides: Any) -> FlowSettings:
        """Create settings from CDSPINE_* environment variables."""
        env_map = {
            "docker_binary": "CDSPINE_DOCKER_BINARY",
            "stop_timeout_seconds": "CDSPINE_STOP_TIMEOUT_SECONDS",
            "log_level": "CDSPINE_LOG_LEVEL",
            "json_logs": "CDSPINE_JSON_LOGS",
            "code_dir": "CDSPINE_CODE_DIR",
            "manifest_file": "CDSPINE_MANIFEST",
        }
        values: dict[str, Any] = {}
        for field_name, env_var in env_map.items():
            env_val = os.environ.get(env_var)
            if env_val is None:
                continue
            if field_name == "json_logs":
                values[field_name] = env_val.lower() in _TRUE_VALUES
            else:
                values[field_name] = env_val
        values.update({key: value for key, value in overrides.items() if value is not None})
        try:
            return cls(**values)
        except ValidationError as exc:
            raise ConfigError(f"invalid settings: {exc}", cause=exc) from exc

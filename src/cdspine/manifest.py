"""Project manifest (``cdflow.yaml``).

The manifest lives at the root of the code directory and names the images
each stage runs::

    version: 2
    team: platform
    config:
      image: org/config:1
      params:
        account_prefix: acme
    release:
      image: org/release:1
    terraform:
      image: hashicorp/terraform:1.7
"""

from __future__ import annotations

from pathlib import Path
from typing import Any

import yaml
from pydantic import BaseModel, Field, ValidationError

from cdspine.core.errors import ConfigError


class ConfigSection(BaseModel):
    image: str
    params: dict[str, Any] = Field(default_factory=dict)


class ReleaseSection(BaseModel):
    image: str


class TerraformSection(BaseModel):
    image: str


class Manifest(BaseModel):
    """Validated ``cdflow.yaml`` contents."""

    version: int = 2
    team: str
    component: str | None = None
    config: ConfigSection
    release: ReleaseSection
    terraform: TerraformSection


def load_manifest(path: Path) -> Manifest:
    """Load and validate the manifest at ``path``.

    ``component`` defaults to the name of the directory holding the file.
    """
    try:
        raw = yaml.safe_load(path.read_text(encoding="utf-8"))
    except FileNotFoundError as exc:
        raise ConfigError(f"manifest not found: {path}", cause=exc) from exc
    except yaml.YAMLError as exc:
        raise ConfigError(f"could not parse {path}: {exc}", cause=exc) from exc

    if not isinstance(raw, dict):
        raise ConfigError(f"{path} must contain a mapping at the top level")

    try:
        manifest = Manifest.model_validate(raw)
    except ValidationError as exc:
        raise ConfigError(f"invalid manifest {path}: {exc}", cause=exc) from exc

    if manifest.component is None:
        manifest.component = path.resolve().parent.name
    return manifest

"""
Test support utilities for cd-spine tests.

Helpers that don't fit as pytest fixtures but are shared across test
modules: project directory scaffolding and metadata document encoding.
"""

from __future__ import annotations

import json
from pathlib import Path
from typing import Any

import yaml

CONFIG_IMAGE = "org/config:1"
RELEASE_IMAGE = "org/release:1"
TERRAFORM_IMAGE = "hashicorp/terraform:1.7"


def write_manifest(code_dir: Path, content: dict[str, Any]) -> Path:
    """Write ``content`` as ``cdflow.yaml`` in ``code_dir``."""
    path = code_dir / "cdflow.yaml"
    with open(path, "w", encoding="utf-8") as f:
        yaml.dump(content, f, default_flow_style=False)
    return path


def write_config_file(code_dir: Path, name: str, content: dict[str, Any] | None = None) -> Path:
    """Write ``config/<name>`` in ``code_dir`` (a terraform var-file)."""
    config_dir = code_dir / "config"
    config_dir.mkdir(parents=True, exist_ok=True)
    path = config_dir / name
    path.write_text(json.dumps(content or {}), encoding="utf-8")
    return path


def document(content: dict[str, Any]) -> bytes:
    """Encode a metadata document the way a unit would write it."""
    return json.dumps(content).encode("utf-8")

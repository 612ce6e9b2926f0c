"""Provisioning command assembly.

Commands are plain argument lists run inside the terraform unit. Optional
var-files are appended in a fixed order, each only when its condition
holds:

1. release metadata (``/build/release-metadata.json``) when a version is known
2. ``config/common.json`` when it exists in the code directory
3. ``config/<env>.json`` when it exists in the code directory

A missing optional file is not an error; its flag is left out.
"""

from __future__ import annotations

from collections.abc import Mapping, Sequence
from pathlib import Path

from cdspine.stage.handoff import BUILD_MOUNT, CODE_MOUNT, RELEASE_METADATA_FILE

CONFIG_DIR = "config"
COMMON_CONFIG_FILE = "common.json"
PLAN_FILE = f"{BUILD_MOUNT}/plan"
BACKEND_OVERRIDE_FILE = "cdspine_backend_override.tf.json"


def var_file_flags(code_dir: Path, env_name: str, version: str | None) -> list[str]:
    """Return the optional ``-var-file`` flags, in their fixed order."""
    flags: list[str] = []
    if version:
        flags.append(f"-var-file={BUILD_MOUNT}/{RELEASE_METADATA_FILE}")

    if (code_dir / CONFIG_DIR / COMMON_CONFIG_FILE).exists():
        flags.append(f"-var-file={CODE_MOUNT}/{CONFIG_DIR}/{COMMON_CONFIG_FILE}")

    env_file = f"{env_name}.json"
    if (code_dir / CONFIG_DIR / env_file).exists():
        flags.append(f"-var-file={CODE_MOUNT}/{CONFIG_DIR}/{env_file}")
    return flags


def assemble(
    base: Sequence[str], code_dir: Path, env_name: str, version: str | None
) -> list[str]:
    """``base`` followed by the applicable var-file flags."""
    return [*base, *var_file_flags(code_dir, env_name, version)]


def init_command(backend_config: Mapping[str, str]) -> list[str]:
    command = ["terraform", "init", "-input=false"]
    command.extend(f"-backend-config={key}={backend_config[key]}" for key in sorted(backend_config))
    return command


def workspace_command(env_name: str, create: bool) -> list[str]:
    command = ["terraform", "workspace", "select"]
    if create:
        command.append("-or-create=true")
    command.append(env_name)
    return command


def plan_command(code_dir: Path, env_name: str, version: str | None) -> list[str]:
    return assemble(
        ["terraform", "plan", "-input=false", f"-out={PLAN_FILE}"],
        code_dir, env_name, version,
    )


def apply_command() -> list[str]:
    # Variables are baked into the saved plan; apply takes no var-files.
    return ["terraform", "apply", "-input=false", PLAN_FILE]


def plan_destroy_command(code_dir: Path, env_name: str, version: str | None) -> list[str]:
    return assemble(["terraform", "plan", "-destroy", "-input=false"], code_dir, env_name, version)


def destroy_command(code_dir: Path, env_name: str, version: str | None) -> list[str]:
    return assemble(
        ["terraform", "destroy", "-auto-approve", "-input=false"],
        code_dir, env_name, version,
    )

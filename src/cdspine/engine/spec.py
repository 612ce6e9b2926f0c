"""Launch data model for pipeline units.

A ``LaunchSpec`` describes one unit invocation: what image to run, with
which command and environment, and which volumes to bind where. Specs are
immutable and built fresh for every stage invocation.

.. code-block:: text

    LaunchSpec
    ├── What: image, entrypoint, command, working_dir
    ├── Environment: environment (rendered sorted by name)
    ├── Storage: bindings (source → target, ro / rw)
    ├── Identity: name_prefix
    └── Contract: input_stream, success_exit_code
"""

from __future__ import annotations

import uuid
from collections.abc import Mapping
from dataclasses import dataclass, field
from typing import BinaryIO


def unit_name(prefix: str) -> str:
    """Return a unique unit name for ``prefix``."""
    return f"{prefix}-{uuid.uuid4().hex[:12]}"


@dataclass(frozen=True)
class VolumeBinding:
    """Bind a host path or named volume to a path inside the unit."""

    source: str  # Host path or volume name
    target: str  # Container-internal path
    read_only: bool = False

    def to_bind(self) -> str:
        """Render in ``source:target[:ro]`` form."""
        bind = f"{self.source}:{self.target}"
        return f"{bind}:ro" if self.read_only else bind


@dataclass(frozen=True)
class LaunchSpec:
    """Everything needed to create one unit.

    Example:
        >>> spec = LaunchSpec(
        ...     image="org/release:1",
        ...     working_dir="/code",
        ...     environment={"VERSION": "42", "TEAM": "platform"},
        ...     bindings=(VolumeBinding("vol-1", "/build"),),
        ...     name_prefix="cdspine-release",
        ... )
        >>> spec.env_list()
        ['TEAM=platform', 'VERSION=42']
    """

    image: str
    working_dir: str | None = None
    entrypoint: tuple[str, ...] = ()
    command: tuple[str, ...] = ()
    environment: Mapping[str, str] = field(default_factory=dict)
    bindings: tuple[VolumeBinding, ...] = ()
    name_prefix: str = "cdspine"
    input_stream: BinaryIO | None = field(default=None, compare=False)
    success_exit_code: int = 0
    init: bool = True

    def env_list(self) -> list[str]:
        """Environment as ``NAME=value`` strings, sorted for stable output."""
        return [f"{key}={self.environment[key]}" for key in sorted(self.environment)]

    def bind_list(self) -> list[str]:
        return [binding.to_bind() for binding in self.bindings]

    @property
    def wants_stdin(self) -> bool:
        return self.input_stream is not None


@dataclass(frozen=True)
class ExitResult:
    """Final state of a unit (or exec process) after it has finished."""

    exit_code: int
    running: bool = False

    def succeeded(self, success_exit_code: int = 0) -> bool:
        return not self.running and self.exit_code == success_exit_code

"""Pipeline state accumulated across stages.

Each completed stage contributes a ``StageOutput``; ``PipelineState.merge``
folds it in, with later stages overriding keys set by earlier ones.

Example:
    >>> state = PipelineState()
    >>> state.merge("defaults", {"VERSION": "1", "TEAM": "a"})
    >>> state.merge("config", {"TEAM": "b", "REGION": "eu"})
    >>> state.env == {"VERSION": "1", "TEAM": "b", "REGION": "eu"}
    True
"""

from __future__ import annotations

from collections.abc import Mapping
from dataclasses import dataclass, field
from typing import Any

from cdspine.core.logging import get_logger

logger = get_logger(__name__)


@dataclass(frozen=True)
class StageOutput:
    """Environment and metadata emitted by one stage."""

    env: Mapping[str, str] = field(default_factory=dict)
    metadata: Mapping[str, Any] = field(default_factory=dict)


@dataclass
class PipelineState:
    """Merged environment and metadata for one command invocation."""

    env: dict[str, str] = field(default_factory=dict)
    metadata: dict[str, Any] = field(default_factory=dict)
    stages: list[str] = field(default_factory=list)

    def merge(
        self,
        stage: str,
        env: Mapping[str, str] | None = None,
        metadata: Mapping[str, Any] | None = None,
    ) -> None:
        """Fold a stage's output in; its keys override existing ones."""
        env = env or {}
        overridden = sorted(key for key in env if key in self.env and self.env[key] != env[key])
        self.env.update(env)
        self.metadata.update(metadata or {})
        self.stages.append(stage)
        logger.debug("state.merged", stage=stage, keys=len(env), overridden=overridden)

    def merge_output(self, stage: str, output: StageOutput) -> None:
        self.merge(stage, output.env, output.metadata)

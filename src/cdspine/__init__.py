"""cd-spine — container-driven release, deploy and destroy pipelines.

cd-spine runs each pipeline stage in its own short-lived container
("unit") and hands state from one stage to the next through a shared
build volume and small JSON documents copied out of the units.

Key Concepts:
    DockerClient: Engine client driving the ``docker`` CLI.
    StageRunner: Runs one ``LaunchSpec`` to completion; always removes
        the unit it created.
    CleanupStack: Reverse-order teardown that combines every failure
        with the error already propagating.
    run_release / run_deploy / run_destroy: The pipeline commands.

Related Modules:
    - :mod:`cdspine.engine` — Launch specs, transport, multiplexer, client
    - :mod:`cdspine.stage` — Stage runner and volume handoff protocol
    - :mod:`cdspine.pipeline` — Config, release and terraform stages
    - :mod:`cdspine.cli` — ``cdspine`` command line
"""

from __future__ import annotations

__version__ = "0.3.0"

from cdspine.core.cleanup import CleanupStack
from cdspine.core.errors import CdSpineError
from cdspine.engine.client import DockerClient, Engine
from cdspine.engine.spec import ExitResult, LaunchSpec, VolumeBinding
from cdspine.pipeline import (
    DeployArgs,
    DestroyArgs,
    PipelineContext,
    ReleaseArgs,
    run_deploy,
    run_destroy,
    run_release,
)
from cdspine.stage.runner import StageRunner

__all__ = [
    "CdSpineError",
    "CleanupStack",
    "DeployArgs",
    "DestroyArgs",
    "DockerClient",
    "Engine",
    "ExitResult",
    "LaunchSpec",
    "PipelineContext",
    "ReleaseArgs",
    "StageRunner",
    "VolumeBinding",
    "run_deploy",
    "run_destroy",
    "run_release",
]

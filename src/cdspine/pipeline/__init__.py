"""Pipeline commands: release, deploy and destroy."""

from cdspine.pipeline.context import PipelineContext
from cdspine.pipeline.deploy import DeployArgs, run_deploy
from cdspine.pipeline.destroy import DestroyArgs, run_destroy
from cdspine.pipeline.release import ReleaseArgs, run_release
from cdspine.pipeline.state import PipelineState, StageOutput

__all__ = [
    "DeployArgs",
    "DestroyArgs",
    "PipelineContext",
    "PipelineState",
    "ReleaseArgs",
    "StageOutput",
    "run_deploy",
    "run_destroy",
    "run_release",
]

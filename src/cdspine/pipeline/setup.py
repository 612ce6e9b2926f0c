"""Shared preparation for the deploy and destroy commands."""

from __future__ import annotations

from collections.abc import Mapping
from dataclasses import dataclass

from cdspine.core.cleanup import CleanupStack
from cdspine.core.logging import get_logger
from cdspine.pipeline.config_stage import ConfigStage, PrepareTerraformResponse
from cdspine.pipeline.context import PipelineContext
from cdspine.pipeline.state import PipelineState, StageOutput
from cdspine.pipeline.terraform import TerraformUnit

logger = get_logger(__name__)


@dataclass
class TerraformSetup:
    response: PrepareTerraformResponse
    volume: str
    image: str
    state: PipelineState


def setup_terraform(
    ctx: PipelineContext,
    cleanup: CleanupStack,
    *,
    env_name: str,
    version: str,
    env: Mapping[str, str],
    state_should_exist: bool | None = None,
) -> TerraformSetup:
    """Create the build volume and let the config unit prepare it.

    The volume's removal is registered on ``cleanup`` as soon as it
    exists. The config unit unpacks the release for ``version`` onto the
    volume and answers with the environment, backend and terraform image
    for ``env_name``.
    """
    manifest = ctx.manifest
    ctx.engine.ensure_image(manifest.config.image, ctx.error_sink)

    volume = ctx.engine.create_volume()
    cleanup.push(ctx.engine.remove_volume, volume)

    config = ConfigStage(
        ctx.runner(),
        image=manifest.config.image,
        volume=volume,
        output_sink=ctx.output_sink,
        error_sink=ctx.error_sink,
    )
    ctx.announce(f"preparing {env_name} for version {version}")
    response = config.prepare_terraform(
        version, env_name, manifest.config.params, env, state_should_exist
    )

    state = PipelineState()
    state.merge_output(
        "config",
        StageOutput(
            env=response.env,
            metadata={
                "backend_type": response.terraform_backend_type,
                "backend_config": response.terraform_backend_config,
            },
        ),
    )

    image = response.terraform_image or manifest.terraform.image
    ctx.engine.ensure_image(image, ctx.error_sink)
    logger.info("terraform.image", image=image)
    return TerraformSetup(response=response, volume=volume, image=image, state=state)


def start_terraform(
    ctx: PipelineContext,
    cleanup: CleanupStack,
    setup: TerraformSetup,
    *,
    env_name: str,
    create_workspace: bool,
) -> TerraformUnit:
    """Start the terraform unit and bring it to the target workspace.

    Its teardown is registered on ``cleanup`` before any command runs.
    """
    terraform = TerraformUnit.create(
        ctx.engine,
        image=setup.image,
        code_dir=ctx.code_dir,
        volume=setup.volume,
        output_sink=ctx.output_sink,
        error_sink=ctx.error_sink,
        cancel=ctx.cancel,
        stop_timeout=ctx.stop_timeout,
    )
    cleanup.push(terraform.done)

    terraform.stage_code()
    ctx.announce("initialising terraform")
    terraform.configure_backend(setup.response, setup.state.env)
    ctx.announce(f"selecting workspace {env_name}")
    terraform.switch_workspace(env_name, create=create_workspace, env=setup.state.env)
    return terraform

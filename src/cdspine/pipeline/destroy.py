"""``destroy`` command — tear down an environment's infrastructure."""

from __future__ import annotations

from collections.abc import Mapping
from dataclasses import dataclass

from cdspine.core.cleanup import CleanupStack
from cdspine.core.logging import LogContext, get_logger
from cdspine.pipeline.commands import destroy_command, plan_destroy_command
from cdspine.pipeline.context import PipelineContext
from cdspine.pipeline.setup import setup_terraform, start_terraform

logger = get_logger(__name__)


@dataclass(frozen=True)
class DestroyArgs:
    env_name: str
    version: str
    plan_only: bool = False
    state_should_exist: bool = True


def run_destroy(ctx: PipelineContext, args: DestroyArgs, env: Mapping[str, str]) -> None:
    with LogContext(command="destroy", env_name=args.env_name, version=args.version), \
            CleanupStack() as cleanup:
        setup = setup_terraform(
            ctx,
            cleanup,
            env_name=args.env_name,
            version=args.version,
            env=env,
            state_should_exist=args.state_should_exist,
        )
        # Destroying an environment never creates its workspace.
        terraform = start_terraform(
            ctx, cleanup, setup, env_name=args.env_name, create_workspace=False,
        )

        plan = plan_destroy_command(ctx.code_dir, args.env_name, args.version)
        ctx.announce("generating plan", plan)
        terraform.run(plan, setup.state.env)

        if args.plan_only:
            logger.info("destroy.plan_only")
            return

        destroy = destroy_command(ctx.code_dir, args.env_name, args.version)
        ctx.announce("applying plan", destroy)
        terraform.run(destroy, setup.state.env)
        logger.info("destroy.applied")

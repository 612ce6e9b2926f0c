"""``deploy`` command — plan and apply a release to an environment.

.. code-block:: text

    setup (volume, prepare_terraform) ─▶ terraform unit ─▶ init ─▶ workspace
        ─▶ plan ──(plan_only)──▶ done
              └──▶ apply saved plan ─▶ done
    teardown: terraform unit, then volume (always)
"""

from __future__ import annotations

from collections.abc import Mapping
from dataclasses import dataclass

from cdspine.core.cleanup import CleanupStack
from cdspine.core.logging import LogContext, get_logger
from cdspine.pipeline.commands import apply_command, plan_command
from cdspine.pipeline.context import PipelineContext
from cdspine.pipeline.setup import setup_terraform, start_terraform

logger = get_logger(__name__)


@dataclass(frozen=True)
class DeployArgs:
    env_name: str
    version: str
    plan_only: bool = False


def run_deploy(ctx: PipelineContext, args: DeployArgs, env: Mapping[str, str]) -> None:
    with LogContext(command="deploy", env_name=args.env_name, version=args.version), \
            CleanupStack() as cleanup:
        setup = setup_terraform(
            ctx, cleanup, env_name=args.env_name, version=args.version, env=env,
        )
        terraform = start_terraform(
            ctx, cleanup, setup, env_name=args.env_name, create_workspace=True,
        )

        plan = plan_command(ctx.code_dir, args.env_name, args.version)
        ctx.announce("generating plan", plan)
        terraform.run(plan, setup.state.env)

        if args.plan_only:
            logger.info("deploy.plan_only")
            return

        apply = apply_command()
        ctx.announce("applying plan", apply)
        terraform.run(apply, setup.state.env)
        logger.info("deploy.applied")

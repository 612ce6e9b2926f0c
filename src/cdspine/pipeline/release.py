"""``release`` command — build and publish a release.

.. code-block:: text

    create build volume
        │
    config: configure_release ──▶ env (merged over VERSION/TEAM/COMPONENT/COMMIT)
        │
    release unit (/code ro, /build rw) ──▶ /release-metadata.json (copied out)
        │
    write {"release": metadata} to /build/release-metadata.json
        │
    config: upload_release (packages /build, records terraform image)
        │
    remove build volume (always)
"""

from __future__ import annotations

from collections.abc import Mapping
from dataclasses import dataclass
from pathlib import Path
from typing import BinaryIO

from cdspine.core.cleanup import CleanupStack
from cdspine.core.logging import LogContext, get_logger
from cdspine.engine.spec import LaunchSpec, VolumeBinding
from cdspine.pipeline.config_stage import ConfigStage
from cdspine.pipeline.context import PipelineContext
from cdspine.pipeline.state import PipelineState
from cdspine.stage.handoff import (
    BUILD_MOUNT,
    CODE_MOUNT,
    RELEASE_METADATA_FILE,
    RELEASE_METADATA_PATH,
    read_document,
    write_document,
)
from cdspine.stage.runner import StageRunner

logger = get_logger(__name__)

DOCKER_SOCKET = "/var/run/docker.sock"
RELEASE_BUILD_NAME = "release"


@dataclass(frozen=True)
class ReleaseArgs:
    version: str
    commit: str = ""


def run_release_container(
    runner: StageRunner,
    *,
    image: str,
    code_dir: Path,
    volume: str,
    env: Mapping[str, str],
    output_sink: BinaryIO,
    error_sink: BinaryIO,
) -> dict[str, str]:
    """Run the release unit and return the metadata it left behind."""
    spec = LaunchSpec(
        image=image,
        working_dir=CODE_MOUNT,
        environment=dict(env),
        bindings=(
            VolumeBinding(str(code_dir), CODE_MOUNT, read_only=True),
            VolumeBinding(volume, BUILD_MOUNT),
            VolumeBinding(DOCKER_SOCKET, DOCKER_SOCKET),
        ),
        name_prefix="cdspine-release",
    )
    result = runner.run(
        spec,
        output_sink=output_sink,
        error_sink=error_sink,
        before_remove=lambda unit_id: read_document(runner.engine, unit_id, RELEASE_METADATA_PATH),
    )
    return result.output


def release_defaults(ctx: PipelineContext, args: ReleaseArgs) -> dict[str, str]:
    """Keys every release unit receives before config output is merged."""
    return {
        "VERSION": args.version,
        "TEAM": ctx.manifest.team,
        "COMPONENT": ctx.manifest.component or ctx.code_dir.name,
        "COMMIT": args.commit,
    }


def run_release(ctx: PipelineContext, args: ReleaseArgs, env: Mapping[str, str]) -> PipelineState:
    """Run the release command end to end. Returns the final pipeline state."""
    manifest = ctx.manifest
    state = PipelineState()

    with LogContext(command="release", version=args.version), CleanupStack() as cleanup:
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

        ctx.announce("configuring release")
        configured = config.configure_release(args.version, manifest.config.params, env)
        state.merge("defaults", release_defaults(ctx, args))
        state.merge("config", configured.env)

        ctx.announce(f"building release with {manifest.release.image}")
        ctx.engine.ensure_image(manifest.release.image, ctx.error_sink)
        metadata = run_release_container(
            ctx.runner(),
            image=manifest.release.image,
            code_dir=ctx.code_dir,
            volume=volume,
            env=state.env,
            output_sink=ctx.output_sink,
            error_sink=ctx.error_sink,
        )
        release_metadata = {RELEASE_BUILD_NAME: metadata}
        state.merge("release", metadata={RELEASE_BUILD_NAME: metadata})

        write_document(
            ctx.engine,
            image=manifest.config.image,
            volume=volume,
            name=RELEASE_METADATA_FILE,
            document=release_metadata,
        )

        terraform_image = resolve_image_digest(ctx, manifest.terraform.image)
        ctx.announce("uploading release")
        uploaded = config.upload_release(terraform_image, release_metadata)
        logger.info("release.uploaded", message=uploaded.message)
        ctx.announce(uploaded.message or f"released {args.version}")

    return state


def resolve_image_digest(ctx: PipelineContext, image: str) -> str:
    """Pin ``image`` to its repo digest when the engine knows one."""
    ctx.engine.ensure_image(image, ctx.error_sink)
    digests = ctx.engine.image_repo_digests(image)
    return digests[0] if digests else image

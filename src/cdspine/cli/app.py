"""
Root Typer application for the ``cdspine`` CLI.

Usage::

    cdspine release 42                  # build and publish version 42
    cdspine deploy live 42              # plan and apply version 42 to live
    cdspine deploy live 42 --plan-only  # plan only
    cdspine destroy qa 42               # plan and destroy qa

SIGINT / SIGTERM cancel the running command: in-flight streams abort,
units and the build volume are still torn down, and the cancellation is
reported like any other failure.
"""

from __future__ import annotations

import os
import signal
import sys
import threading
from collections.abc import Callable
from pathlib import Path
from types import FrameType

import typer
from rich.console import Console

from cdspine import __version__
from cdspine.core.errors import CancellationError, CdSpineError, CleanupError
from cdspine.core.logging import configure_logging, get_logger
from cdspine.engine.client import DockerClient
from cdspine.manifest import load_manifest
from cdspine.pipeline.context import PipelineContext
from cdspine.pipeline.deploy import DeployArgs, run_deploy
from cdspine.pipeline.destroy import DestroyArgs, run_destroy
from cdspine.pipeline.release import ReleaseArgs, run_release
from cdspine.settings import FlowSettings

app = typer.Typer(
    name="cdspine",
    help="cdspine — release, deploy and destroy with ephemeral containers.",
    no_args_is_help=True,
    rich_markup_mode="rich",
)
err_console = Console(stderr=True)
logger = get_logger(__name__)


def _version_callback(value: bool) -> None:
    if value:
        typer.echo(f"cd-spine {__version__}")
        raise typer.Exit()


@app.callback()
def main(
    version: bool | None = typer.Option(
        None,
        "--version",
        "-V",
        help="Show version and exit.",
        callback=_version_callback,
        is_eager=True,
    ),
) -> None:
    """cdspine CLI — container-driven delivery pipelines."""


# ── Context / execution helpers ──────────────────────────────────────────


def build_context(settings: FlowSettings, cancel: threading.Event) -> PipelineContext:
    """Load the manifest and wire the engine client for one invocation."""
    configure_logging(level=settings.log_level, json_format=settings.json_logs)
    manifest = load_manifest(settings.manifest_path)
    return PipelineContext(
        engine=DockerClient(settings.docker_binary),
        code_dir=settings.code_dir.resolve(),
        manifest=manifest,
        output_sink=sys.stdout.buffer,
        error_sink=sys.stderr.buffer,
        cancel=cancel,
        stop_timeout=settings.stop_timeout_seconds,
    )


def install_signal_handlers(cancel: threading.Event) -> None:
    def _handle(signum: int, frame: FrameType | None) -> None:
        logger.warning("signal.received", signal=signal.Signals(signum).name)
        cancel.set()

    signal.signal(signal.SIGINT, _handle)
    signal.signal(signal.SIGTERM, _handle)


def _was_cancelled(exc: CdSpineError) -> bool:
    """True for a cancellation, including one whose teardown also failed."""
    if isinstance(exc, CleanupError):
        return isinstance(exc.primary, CancellationError)
    return isinstance(exc, CancellationError)


def execute(code_dir: Path | None, command: Callable[[PipelineContext], object]) -> None:
    """Run ``command`` and turn failures into one message plus exit status 1."""
    cancel = threading.Event()
    try:
        settings = FlowSettings.from_env(code_dir=code_dir)
        ctx = build_context(settings, cancel)
        install_signal_handlers(cancel)
        command(ctx)
    except CdSpineError as exc:
        logger.debug("command.failed", **exc.to_dict())
        if _was_cancelled(exc):
            err_console.print(f"[bold yellow]Cancelled[/bold yellow]: {exc}")
            raise typer.Exit(code=130) from exc
        err_console.print(f"[bold red]Error[/bold red] ({exc.category.value}): {exc}")
        raise typer.Exit(code=1) from exc


CODE_DIR_OPTION = typer.Option(None, "--code-dir", "-C", help="Project directory (default: cwd).")


# ── Commands ─────────────────────────────────────────────────────────────


@app.command()
def release(
    version: str = typer.Argument(..., help="Version to release."),
    code_dir: Path | None = CODE_DIR_OPTION,
) -> None:
    """Build and publish a release."""
    args = ReleaseArgs(version=version, commit=os.environ.get("GIT_COMMIT", ""))
    execute(code_dir, lambda ctx: run_release(ctx, args, dict(os.environ)))


@app.command()
def deploy(
    env_name: str = typer.Argument(..., help="Target environment."),
    version: str = typer.Argument(..., help="Version to deploy."),
    plan_only: bool = typer.Option(False, "--plan-only", "-p", help="Stop after the plan."),
    code_dir: Path | None = CODE_DIR_OPTION,
) -> None:
    """Plan and apply a release to an environment."""
    args = DeployArgs(env_name=env_name, version=version, plan_only=plan_only)
    execute(code_dir, lambda ctx: run_deploy(ctx, args, dict(os.environ)))


@app.command()
def destroy(
    env_name: str = typer.Argument(..., help="Environment to destroy."),
    version: str = typer.Argument(..., help="Version the environment runs."),
    plan_only: bool = typer.Option(False, "--plan-only", "-p", help="Stop after the plan."),
    code_dir: Path | None = CODE_DIR_OPTION,
) -> None:
    """Destroy an environment's infrastructure."""
    args = DestroyArgs(env_name=env_name, version=version, plan_only=plan_only)
    execute(code_dir, lambda ctx: run_destroy(ctx, args, dict(os.environ)))

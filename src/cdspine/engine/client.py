"""Container engine client for cd-spine.

Drives the container engine through the ``docker`` CLI (subprocess). Any
runtime exposing a ``docker``-compatible CLI works (Docker, Podman, Colima).

Key Concepts:
    Engine: Protocol listing the capability set the stage runner and the
        pipeline commands rely on. Tests substitute a fake.
    DockerClient: ``Engine`` implementation on top of the ``docker`` CLI.
        One instance is constructed per invocation and passed to every
        component that needs it.

Attach before start:
    The CLI cannot attach to a container that has only been created, but
    ``docker start --attach`` attaches before it starts. ``attach()``
    therefore returns a pending ``ProcessTransport`` and ``start()``
    launches it. Units without a pending attach are started with plain
    ``docker start``.

Every CLI failure raises ``EngineError`` carrying the command line and the
CLI's stderr. Nothing is retried.
"""

from __future__ import annotations

import io
import json
import shutil
import subprocess
import threading
from collections.abc import Mapping, Sequence
from typing import BinaryIO, Protocol

from cdspine.core.errors import EngineError
from cdspine.core.logging import get_logger
from cdspine.engine import multiplex
from cdspine.engine.spec import ExitResult, LaunchSpec, unit_name
from cdspine.engine.transport import ProcessTransport, Transport

logger = get_logger(__name__)

_MISSING_IMAGE_MARKERS = ("no such image", "no such object", "image not known")


class Engine(Protocol):
    """Container engine capability set used by cd-spine."""

    def create(self, spec: LaunchSpec) -> str: ...

    def attach(self, unit_id: str, stdin: bool) -> Transport: ...

    def start(self, unit_id: str) -> None: ...

    def inspect(self, unit_id: str) -> ExitResult: ...

    def stop(self, unit_id: str, timeout: float) -> None: ...

    def remove(self, unit_id: str, force: bool = False) -> None: ...

    def pull(self, image: str, sink: BinaryIO) -> None: ...

    def ensure_image(self, image: str, sink: BinaryIO) -> None: ...

    def image_repo_digests(self, image: str) -> list[str]: ...

    def create_volume(self) -> str: ...

    def remove_volume(self, volume: str) -> None: ...

    def copy_from(self, unit_id: str, path: str) -> BinaryIO: ...

    def copy_to(self, unit_id: str, path: str, archive: BinaryIO) -> None: ...

    def exec(
        self,
        unit_id: str,
        command: Sequence[str],
        *,
        environment: Mapping[str, str] | None = None,
        working_dir: str | None = None,
        output_sink: BinaryIO,
        error_sink: BinaryIO,
        cancel: threading.Event | None = None,
    ) -> ExitResult: ...


class DockerClient:
    """``Engine`` implementation using the ``docker`` CLI.

    Parameters
    ----------
    docker_binary
        Name or path of the CLI binary.
    label_prefix
        Label namespace applied to every unit and volume so leftovers
        can be found with ``docker ps --filter label=...``.

    Example::

        client = DockerClient()
        volume = client.create_volume()
        try:
            ...
        finally:
            client.remove_volume(volume)
    """

    def __init__(
        self,
        docker_binary: str = "docker",
        label_prefix: str = "cdspine",
    ) -> None:
        self.label_prefix = label_prefix
        self._docker_cmd = self._find_docker(docker_binary)
        self._pending: dict[str, ProcessTransport] = {}
        self._pending_lock = threading.Lock()

    @staticmethod
    def _find_docker(docker_binary: str) -> str:
        docker = shutil.which(docker_binary)
        if docker is None:
            raise EngineError(
                f"{docker_binary} CLI not found on PATH. Install Docker or add it to PATH."
            )
        return docker

    # ------------------------------------------------------------------
    # Units
    # ------------------------------------------------------------------

    def create(self, spec: LaunchSpec) -> str:
        """Create (but do not start) a unit. Returns its ID."""
        name = unit_name(spec.name_prefix)
        args = [
            "create",
            "--name", name,
            "--label", f"{self.label_prefix}.unit={spec.name_prefix}",
            "--log-driver", "none",
        ]
        if spec.wants_stdin:
            args.append("--interactive")
        if spec.init:
            args.append("--init")
        if spec.working_dir:
            args.extend(["--workdir", spec.working_dir])
        for entry in spec.env_list():
            args.extend(["--env", entry])
        for bind in spec.bind_list():
            args.extend(["--volume", bind])

        # --entrypoint takes a single executable; the rest leads the command.
        command = list(spec.command)
        if spec.entrypoint:
            args.extend(["--entrypoint", spec.entrypoint[0]])
            command = list(spec.entrypoint[1:]) + command
        args.append(spec.image)
        args.extend(command)

        result = self._run_docker(args)
        unit_id = result.stdout.strip()
        logger.debug("unit.created", unit=unit_id, name=name, image=spec.image)
        return unit_id

    def attach(self, unit_id: str, stdin: bool) -> Transport:
        """Prepare an attach session; it goes live when ``start()`` is called."""
        args = [self._docker_cmd, "start", "--attach"]
        if stdin:
            args.append("--interactive")
        args.append(unit_id)
        transport = ProcessTransport(args, stdin=stdin)
        with self._pending_lock:
            self._pending[unit_id] = transport
        return transport

    def start(self, unit_id: str) -> None:
        with self._pending_lock:
            transport = self._pending.pop(unit_id, None)
        if transport is not None:
            transport.launch()
        else:
            self._run_docker(["start", unit_id])
        logger.debug("unit.started", unit=unit_id, attached=transport is not None)

    def inspect(self, unit_id: str) -> ExitResult:
        result = self._run_docker(
            ["inspect", "--type", "container", "--format", "{{json .State}}", unit_id]
        )
        try:
            state = json.loads(result.stdout)
            return ExitResult(exit_code=int(state["ExitCode"]), running=bool(state["Running"]))
        except (ValueError, KeyError, TypeError) as exc:
            raise EngineError(f"unexpected inspect output for {unit_id}: {result.stdout!r}", cause=exc) from exc

    def stop(self, unit_id: str, timeout: float) -> None:
        self._run_docker(["stop", "--time", str(int(timeout)), unit_id])
        logger.debug("unit.stopped", unit=unit_id)

    def remove(self, unit_id: str, force: bool = False) -> None:
        with self._pending_lock:
            transport = self._pending.pop(unit_id, None)
        if transport is not None:
            transport.close()
        args = ["rm", "--force", unit_id] if force else ["rm", unit_id]
        self._run_docker(args)
        logger.debug("unit.removed", unit=unit_id)

    # ------------------------------------------------------------------
    # Images
    # ------------------------------------------------------------------

    def pull(self, image: str, sink: BinaryIO) -> None:
        logger.info("image.pull", image=image)
        result = self._run_docker(["pull", image], text=False)
        sink.write(result.stdout)
        sink.flush()

    def ensure_image(self, image: str, sink: BinaryIO) -> None:
        """Pull ``image`` unless it is already present locally.

        Only an inspect failure that says the image does not exist leads
        to a pull; any other failure is an ``EngineError``.
        """
        result = self._run_docker(["image", "inspect", image], check=False)
        if result.returncode == 0:
            return
        stderr = result.stderr.lower()
        if any(marker in stderr for marker in _MISSING_IMAGE_MARKERS):
            self.pull(image, sink)
            return
        raise EngineError(
            f"could not check for image {image} (exit {result.returncode}): {result.stderr.strip()}"
        ).with_context(image=image)

    def image_repo_digests(self, image: str) -> list[str]:
        result = self._run_docker(
            ["image", "inspect", "--format", "{{json .RepoDigests}}", image]
        )
        try:
            digests = json.loads(result.stdout)
        except ValueError as exc:
            raise EngineError(f"unexpected inspect output for {image}: {result.stdout!r}", cause=exc) from exc
        return list(digests or [])

    # ------------------------------------------------------------------
    # Volumes
    # ------------------------------------------------------------------

    def create_volume(self) -> str:
        result = self._run_docker(
            ["volume", "create", "--label", f"{self.label_prefix}.volume=build"]
        )
        volume = result.stdout.strip()
        logger.info("volume.created", volume=volume)
        return volume

    def remove_volume(self, volume: str) -> None:
        self._run_docker(["volume", "rm", volume])
        logger.info("volume.removed", volume=volume)

    # ------------------------------------------------------------------
    # Copy / exec
    # ------------------------------------------------------------------

    def copy_from(self, unit_id: str, path: str) -> BinaryIO:
        """Tar stream for ``path`` inside the unit (``docker cp UNIT:PATH -``)."""
        result = self._run_docker(["cp", f"{unit_id}:{path}", "-"], text=False)
        return io.BytesIO(result.stdout)

    def copy_to(self, unit_id: str, path: str, archive: BinaryIO) -> None:
        """Extract a tar stream into ``path`` inside the unit."""
        self._run_docker(["cp", "-", f"{unit_id}:{path}"], text=False, input=archive.read())

    def exec(
        self,
        unit_id: str,
        command: Sequence[str],
        *,
        environment: Mapping[str, str] | None = None,
        working_dir: str | None = None,
        output_sink: BinaryIO,
        error_sink: BinaryIO,
        cancel: threading.Event | None = None,
    ) -> ExitResult:
        """Run ``command`` inside a running unit and stream its output.

        Returns the process's exit status; a non-zero status is reported,
        not raised, so the caller decides what it means.
        """
        args = [self._docker_cmd, "exec"]
        if working_dir:
            args.extend(["--workdir", working_dir])
        for key in sorted(environment or {}):
            args.extend(["--env", f"{key}={environment[key]}"])
        args.append(unit_id)
        args.extend(command)

        transport = ProcessTransport(args)
        multiplex.stream(
            transport,
            output_sink=output_sink,
            error_sink=error_sink,
            start=transport.launch,
            cancel=cancel,
        )
        exit_code = transport.wait()
        logger.debug("unit.exec", unit=unit_id, cmd=command[0] if command else "", exit_code=exit_code)
        return ExitResult(exit_code=exit_code)

    # ------------------------------------------------------------------
    # Private helpers
    # ------------------------------------------------------------------

    def _run_docker(
        self,
        args: list[str],
        check: bool = True,
        text: bool = True,
        input: bytes | None = None,
    ) -> subprocess.CompletedProcess:
        """Run a docker CLI command."""
        cmd = [self._docker_cmd, *args]
        logger.debug("docker.exec", cmd=" ".join(cmd))
        try:
            result = subprocess.run(
                cmd,
                capture_output=True,
                text=text,
                input=input,
            )
        except OSError as exc:
            raise EngineError(f"could not run {self._docker_cmd}: {exc}", cause=exc) from exc
        if check and result.returncode != 0:
            stderr = result.stderr if text else result.stderr.decode("utf-8", "replace")
            raise EngineError(
                f"docker command failed (exit {result.returncode}): "
                f"{' '.join(args)}\n{stderr.strip()}"
            )
        return result

"""Terraform unit — a long-lived provisioning container driven by exec.

The unit idles while commands are exec'd into it one by one:

.. code-block:: text

    /code  (project code, read-only)     /build (build volume, rw, working dir)
       │                                    │
       └── infra/ ── stage_code() ─────────▶├── *.tf
                                            ├── cdspine_backend_override.tf.json
                                            ├── release-metadata.json
                                            └── plan

Every command that exits non-zero raises ``StageFailedError``.
"""

from __future__ import annotations

import io
import json
import threading
from collections.abc import Mapping, Sequence
from pathlib import Path
from typing import BinaryIO

from cdspine.core.cleanup import CleanupStack
from cdspine.core.errors import CancellationError, StageFailedError
from cdspine.core.logging import get_logger
from cdspine.engine.client import Engine
from cdspine.engine.spec import LaunchSpec, VolumeBinding
from cdspine.pipeline.commands import BACKEND_OVERRIDE_FILE, init_command, workspace_command
from cdspine.pipeline.config_stage import PrepareTerraformResponse
from cdspine.stage.handoff import BUILD_MOUNT, CODE_MOUNT, pack_file

logger = get_logger(__name__)

INFRA_DIR = "infra"
IDLE_COMMAND = "trap 'exit 0' TERM INT; while true; do sleep 1; done"


class TerraformUnit:
    """Handle on a running terraform unit."""

    def __init__(
        self,
        engine: Engine,
        unit_id: str,
        *,
        output_sink: BinaryIO,
        error_sink: BinaryIO,
        cancel: threading.Event | None = None,
        stop_timeout: float = 10,
        base_env: Mapping[str, str] | None = None,
    ) -> None:
        self.engine = engine
        self.unit_id = unit_id
        self.output_sink = output_sink
        self.error_sink = error_sink
        self.cancel = cancel
        self.stop_timeout = stop_timeout
        self.base_env = dict(base_env or {"TF_IN_AUTOMATION": "true"})
        self._done = False

    @classmethod
    def create(
        cls,
        engine: Engine,
        *,
        image: str,
        code_dir: Path,
        volume: str,
        output_sink: BinaryIO,
        error_sink: BinaryIO,
        cancel: threading.Event | None = None,
        stop_timeout: float = 10,
    ) -> TerraformUnit:
        """Create and start an idle terraform unit."""
        spec = LaunchSpec(
            image=image,
            working_dir=BUILD_MOUNT,
            entrypoint=("/bin/sh", "-c"),
            command=(IDLE_COMMAND,),
            bindings=(
                VolumeBinding(str(code_dir), CODE_MOUNT, read_only=True),
                VolumeBinding(volume, BUILD_MOUNT),
            ),
            name_prefix="cdspine-terraform",
        )
        unit_id = engine.create(spec)
        unit = cls(
            engine,
            unit_id,
            output_sink=output_sink,
            error_sink=error_sink,
            cancel=cancel,
            stop_timeout=stop_timeout,
        )
        with CleanupStack() as cleanup:
            cleanup.push(unit.done)
            engine.start(unit_id)
            cleanup.pop_all()
        logger.info("terraform.started", unit=unit_id, image=image)
        return unit

    def run(self, command: Sequence[str], env: Mapping[str, str] | None = None) -> None:
        """Exec ``command`` in the unit with ``env`` layered over the base env."""
        if self.cancel is not None and self.cancel.is_set():
            raise CancellationError(f"cancelled before running {' '.join(command[:2])}")
        environment = {**self.base_env, **(env or {})}
        result = self.engine.exec(
            self.unit_id,
            command,
            environment=environment,
            working_dir=BUILD_MOUNT,
            output_sink=self.output_sink,
            error_sink=self.error_sink,
            cancel=self.cancel,
        )
        if result.exit_code != 0:
            raise StageFailedError(" ".join(command[:2]), result.exit_code, unit_id=self.unit_id)

    def stage_code(self) -> None:
        """Copy the project's terraform code onto the build volume."""
        self.run(["cp", "-R", f"{CODE_MOUNT}/{INFRA_DIR}/.", f"{BUILD_MOUNT}/"])

    def configure_backend(
        self, response: PrepareTerraformResponse, env: Mapping[str, str] | None = None
    ) -> None:
        """Declare the backend type and run ``terraform init`` with its config."""
        if response.terraform_backend_type:
            document = {"terraform": {"backend": {response.terraform_backend_type: {}}}}
            archive = pack_file(BACKEND_OVERRIDE_FILE, json.dumps(document).encode("utf-8"))
            self.engine.copy_to(self.unit_id, BUILD_MOUNT, io.BytesIO(archive))
            logger.info("terraform.backend", backend_type=response.terraform_backend_type)
        self.run(init_command(response.terraform_backend_config), env)

    def switch_workspace(
        self, env_name: str, *, create: bool, env: Mapping[str, str] | None = None
    ) -> None:
        self.run(workspace_command(env_name, create), env)
        logger.info("terraform.workspace", workspace=env_name)

    def done(self) -> None:
        """Stop and remove the unit. Safe to call more than once."""
        if self._done:
            return
        self._done = True
        with CleanupStack() as cleanup:
            cleanup.push(self.engine.remove, self.unit_id, force=True)
            cleanup.push(self.engine.stop, self.unit_id, self.stop_timeout)
        logger.info("terraform.removed", unit=self.unit_id)

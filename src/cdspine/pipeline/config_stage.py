"""Config stage — resolve release / deploy configuration in a unit.

Each action is one unit invocation of the project's config image:

.. code-block:: text

    {"Action": "prepare_terraform", "Request": {...}}
            │ stdin
            ▼
    ┌─────────────────┐   /build (build volume, rw)
    │   config unit   │── unpacks / packages the release here
    └─────────────────┘
            │ writes /config-response.json
            ▼
    copied out before removal, validated into a response model

The unit logs its own debug output to stderr, which is passed through to
the error sink.
"""

from __future__ import annotations

import io
import json
from collections.abc import Mapping
from typing import Any, BinaryIO, TypeVar

from pydantic import BaseModel, ConfigDict, Field, ValidationError

from cdspine.core.errors import HandoffDecodeError
from cdspine.core.logging import get_logger
from cdspine.engine.spec import LaunchSpec, VolumeBinding
from cdspine.stage.handoff import BUILD_MOUNT, CONFIG_RESPONSE_PATH, read_document
from cdspine.stage.runner import StageRunner

logger = get_logger(__name__)

ResponseT = TypeVar("ResponseT", bound=BaseModel)


class _Response(BaseModel):
    model_config = ConfigDict(populate_by_name=True, extra="ignore")


class ConfigureReleaseResponse(_Response):
    env: dict[str, str] = Field(default_factory=dict, alias="Env")


class PrepareTerraformResponse(_Response):
    env: dict[str, str] = Field(default_factory=dict, alias="Env")
    terraform_image: str = Field(default="", alias="TerraformImage")
    terraform_backend_type: str = Field(default="", alias="TerraformBackendType")
    terraform_backend_config: dict[str, str] = Field(
        default_factory=dict, alias="TerraformBackendConfig"
    )


class UploadReleaseResponse(_Response):
    message: str = Field(default="", alias="Message")


class ConfigStage:
    """Client for the config image's request/response actions.

    Parameters
    ----------
    runner
        Stage runner used for each action's unit.
    image
        Config image from the manifest.
    volume
        Build volume, bound read-write at ``/build``.
    """

    def __init__(
        self,
        runner: StageRunner,
        *,
        image: str,
        volume: str,
        output_sink: BinaryIO,
        error_sink: BinaryIO,
    ) -> None:
        self.runner = runner
        self.image = image
        self.volume = volume
        self.output_sink = output_sink
        self.error_sink = error_sink

    def configure_release(
        self, version: str, config: Mapping[str, Any], env: Mapping[str, str]
    ) -> ConfigureReleaseResponse:
        return self._request(
            "configure_release",
            {"Version": version, "Config": dict(config), "Env": dict(env)},
            ConfigureReleaseResponse,
        )

    def prepare_terraform(
        self,
        version: str,
        env_name: str,
        config: Mapping[str, Any],
        env: Mapping[str, str],
        state_should_exist: bool | None = None,
    ) -> PrepareTerraformResponse:
        return self._request(
            "prepare_terraform",
            {
                "Version": version,
                "EnvName": env_name,
                "Config": dict(config),
                "Env": dict(env),
                "StateShouldExist": state_should_exist,
            },
            PrepareTerraformResponse,
        )

    def upload_release(
        self, terraform_image: str, release_metadata: Mapping[str, Mapping[str, str]]
    ) -> UploadReleaseResponse:
        return self._request(
            "upload_release",
            {
                "TerraformImage": terraform_image,
                "ReleaseMetadata": {key: dict(value) for key, value in release_metadata.items()},
            },
            UploadReleaseResponse,
        )

    def _request(
        self, action: str, request: dict[str, Any], response_model: type[ResponseT]
    ) -> ResponseT:
        payload = json.dumps({"Action": action, "Request": request}).encode("utf-8")
        spec = LaunchSpec(
            image=self.image,
            working_dir=BUILD_MOUNT,
            command=(action,),
            bindings=(VolumeBinding(self.volume, BUILD_MOUNT),),
            name_prefix="cdspine-config",
            input_stream=io.BytesIO(payload + b"\n"),
        )
        logger.info("config.request", action=action)
        result = self.runner.run(
            spec,
            output_sink=self.output_sink,
            error_sink=self.error_sink,
            before_remove=lambda unit_id: read_document(
                self.runner.engine, unit_id, CONFIG_RESPONSE_PATH, nested=True
            ),
        )
        try:
            return response_model.model_validate(result.output)
        except ValidationError as exc:
            raise HandoffDecodeError(
                CONFIG_RESPONSE_PATH, f"unexpected {action} response: {exc}", cause=exc
            ) from exc

"""
End-to-end tests for the deploy command against the fake engine.

The terraform unit idles while commands are exec'd into it; the tests
assert on the exact command sequence and on teardown.
"""

import json

import pytest

from cdspine.core.errors import CancellationError, CleanupError, EngineError, StageFailedError
from cdspine.pipeline.commands import BACKEND_OVERRIDE_FILE
from cdspine.pipeline.deploy import DeployArgs, run_deploy
from tests._support import CONFIG_IMAGE, TERRAFORM_IMAGE, write_config_file
from tests._support.fake_engine import script_config

PINNED_IMAGE = "hashicorp/terraform@sha256:feed"


@pytest.fixture
def requests(engine):
    return script_config(engine, CONFIG_IMAGE, {
        "prepare_terraform": {
            "Env": {"AWS_ACCESS_KEY_ID": "AKIA"},
            "TerraformImage": PINNED_IMAGE,
            "TerraformBackendType": "s3",
            "TerraformBackendConfig": {"bucket": "state", "key": "billing/live.tfstate"},
        },
    })


def _terraform_commands(engine):
    return [command for command in engine.exec_commands() if command[0] == "terraform"]


class TestRunDeploy:
    """Tests for run_deploy()."""

    def test_command_sequence(self, ctx, engine, requests):
        write_config_file(ctx.code_dir, "common.json")

        run_deploy(ctx, DeployArgs("live", "42"), {})

        assert engine.exec_commands()[0] == ["cp", "-R", "/code/infra/.", "/build/"]
        assert _terraform_commands(engine) == [
            [
                "terraform", "init", "-input=false",
                "-backend-config=bucket=state", "-backend-config=key=billing/live.tfstate",
            ],
            ["terraform", "workspace", "select", "-or-create=true", "live"],
            [
                "terraform", "plan", "-input=false", "-out=/build/plan",
                "-var-file=/build/release-metadata.json", "-var-file=/code/config/common.json",
            ],
            ["terraform", "apply", "-input=false", "/build/plan"],
        ]

    def test_plan_only_never_applies(self, ctx, engine, requests):
        run_deploy(ctx, DeployArgs("live", "42", plan_only=True), {})

        commands = _terraform_commands(engine)
        assert sum(1 for c in commands if c[1] == "plan") == 1
        assert not any(c[1] == "apply" for c in commands)
        assert engine.volumes_removed == engine.volumes_created
        assert len(engine.volumes_removed) == 1

    def test_prepare_request(self, ctx, engine, requests):
        run_deploy(ctx, DeployArgs("live", "42"), {"HOME": "/root"})
        (request,) = requests
        assert request["Action"] == "prepare_terraform"
        assert request["Request"]["Version"] == "42"
        assert request["Request"]["EnvName"] == "live"
        assert request["Request"]["Env"] == {"HOME": "/root"}
        assert request["Request"]["StateShouldExist"] is None

    def test_terraform_unit_uses_config_image_and_env(self, ctx, engine, requests):
        run_deploy(ctx, DeployArgs("live", "42"), {})

        (unit,) = engine.units_for(PINNED_IMAGE)
        assert unit.spec.working_dir == "/build"
        assert unit.spec.bind_list()[0] == f"{ctx.code_dir}:/code:ro"
        assert unit.stopped
        assert unit.removed == 1
        for call in engine.execs:
            if call.command[0] == "terraform":
                assert call.environment["AWS_ACCESS_KEY_ID"] == "AKIA"
                assert call.environment["TF_IN_AUTOMATION"] == "true"
                assert call.working_dir == "/build"

    def test_manifest_image_when_config_names_none(self, ctx, engine):
        script_config(engine, CONFIG_IMAGE, {"prepare_terraform": {}})
        run_deploy(ctx, DeployArgs("qa", "42", plan_only=True), {})
        assert len(engine.units_for(TERRAFORM_IMAGE)) == 1
        assert _terraform_commands(engine)[0] == ["terraform", "init", "-input=false"]

    def test_backend_override_is_written(self, ctx, engine, requests):
        run_deploy(ctx, DeployArgs("live", "42", plan_only=True), {})

        (_, path, name, content) = engine.copied_in[0]
        assert path == "/build"
        assert name == BACKEND_OVERRIDE_FILE
        assert json.loads(content) == {"terraform": {"backend": {"s3": {}}}}

    def test_no_backend_override_without_backend_type(self, ctx, engine):
        script_config(engine, CONFIG_IMAGE, {"prepare_terraform": {}})
        run_deploy(ctx, DeployArgs("qa", "42", plan_only=True), {})
        assert engine.copied_in == []


class TestRunDeployFailures:
    """Failures abort and still tear everything down."""

    def test_plan_failure_skips_apply(self, ctx, engine, requests):
        engine.exit_code_for(["terraform", "plan"], 1)

        with pytest.raises(StageFailedError) as exc_info:
            run_deploy(ctx, DeployArgs("live", "42"), {})

        assert exc_info.value.exit_code == 1
        assert not any(c[1] == "apply" for c in _terraform_commands(engine))
        assert sorted(engine.removed_units) == sorted(engine.created_units)
        assert engine.volumes_removed == engine.volumes_created

    def test_config_failure_removes_volume(self, ctx, engine):
        script_config(engine, CONFIG_IMAGE, {}, exit_code=1)

        with pytest.raises(StageFailedError):
            run_deploy(ctx, DeployArgs("live", "42"), {})

        assert engine.exec_commands() == []
        assert engine.volumes_removed == engine.volumes_created

    def test_teardown_failure_is_combined_with_plan_failure(self, ctx, engine, requests):
        engine.exit_code_for(["terraform", "plan"], 1)
        engine.fail("remove_volume", EngineError("volume is in use"))

        with pytest.raises(CleanupError) as exc_info:
            run_deploy(ctx, DeployArgs("live", "42"), {})

        message = str(exc_info.value)
        assert "terraform plan" in message
        assert "volume is in use" in message
        # The terraform unit is still stopped and removed.
        (unit,) = engine.units_for(PINNED_IMAGE)
        assert unit.removed == 1

    def test_terraform_start_failure(self, ctx, engine, requests):
        original_start = engine.start

        def start(unit_id):
            if engine.units[unit_id].spec.image == PINNED_IMAGE:
                raise EngineError("OCI runtime create failed")
            original_start(unit_id)

        engine.start = start

        with pytest.raises(EngineError, match="OCI runtime"):
            run_deploy(ctx, DeployArgs("live", "42"), {})

        (unit,) = engine.units_for(PINNED_IMAGE)
        assert unit.removed == 1
        assert engine.volumes_removed == engine.volumes_created

    def test_cancel_after_plan_skips_apply(self, ctx, engine, requests):
        original_exec = engine.exec

        def exec_then_cancel(unit_id, command, **kwargs):
            result = original_exec(unit_id, command, **kwargs)
            if command[:2] == ["terraform", "plan"]:
                ctx.cancel.set()
            return result

        engine.exec = exec_then_cancel

        with pytest.raises(CancellationError, match="terraform apply"):
            run_deploy(ctx, DeployArgs("live", "42"), {})

        assert not any(c[1] == "apply" for c in _terraform_commands(engine))
        assert sorted(engine.removed_units) == sorted(engine.created_units)
        assert engine.volumes_removed == engine.volumes_created

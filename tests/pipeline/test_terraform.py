"""Tests for the terraform unit's start-up, teardown and cancellation."""

import threading

import pytest

from cdspine.core.errors import CancellationError, CleanupError, EngineError
from cdspine.pipeline.terraform import TerraformUnit
from tests._support import TERRAFORM_IMAGE


def _create(engine, code_dir, out_sink, err_sink, cancel=None):
    return TerraformUnit.create(
        engine,
        image=TERRAFORM_IMAGE,
        code_dir=code_dir,
        volume="vol-1",
        output_sink=out_sink,
        error_sink=err_sink,
        cancel=cancel,
        stop_timeout=1,
    )


class TestTerraformUnitCreate:
    """Tests for TerraformUnit.create()."""

    def test_started_unit_is_not_torn_down(self, engine, code_dir, out_sink, err_sink):
        unit = _create(engine, code_dir, out_sink, err_sink)
        assert engine.units[unit.unit_id].started
        assert engine.removed_units == []

    def test_start_failure_removes_unit(self, engine, code_dir, out_sink, err_sink):
        engine.fail("start", EngineError("OCI runtime create failed"))
        with pytest.raises(EngineError, match="OCI runtime create failed"):
            _create(engine, code_dir, out_sink, err_sink)
        assert engine.removed_units == engine.created_units

    def test_start_failure_survives_teardown_failure(self, engine, code_dir, out_sink, err_sink):
        engine.fail("start", EngineError("OCI runtime create failed"))
        engine.fail("remove", EngineError("daemon unreachable"))

        with pytest.raises(CleanupError) as exc_info:
            _create(engine, code_dir, out_sink, err_sink)

        message = str(exc_info.value)
        assert message.startswith("OCI runtime create failed")
        assert "daemon unreachable" in message
        assert isinstance(exc_info.value.primary, EngineError)


class TestTerraformUnitRun:
    """Tests for TerraformUnit.run()."""

    def test_env_layered_over_base(self, engine, code_dir, out_sink, err_sink):
        unit = _create(engine, code_dir, out_sink, err_sink)
        unit.run(["terraform", "plan"], {"TF_IN_AUTOMATION": "1", "A": "x"})
        (call,) = engine.execs
        assert call.environment == {"TF_IN_AUTOMATION": "1", "A": "x"}
        assert call.working_dir == "/build"

    def test_cancelled_unit_runs_nothing(self, engine, code_dir, out_sink, err_sink):
        cancel = threading.Event()
        unit = _create(engine, code_dir, out_sink, err_sink, cancel=cancel)
        cancel.set()

        with pytest.raises(CancellationError, match="terraform apply"):
            unit.run(["terraform", "apply", "-input=false", "/build/plan"])
        assert engine.execs == []

    def test_done_is_idempotent(self, engine, code_dir, out_sink, err_sink):
        unit = _create(engine, code_dir, out_sink, err_sink)
        unit.done()
        unit.done()
        assert engine.removed_units == [unit.unit_id]
        assert engine.units[unit.unit_id].stopped

"""
Shared pytest fixtures and configuration for cd-spine tests.

This module provides:
- A recording ``FakeEngine`` in place of the docker CLI
- Byte sinks standing in for the process's stdout / stderr
- A scaffolded project directory with a manifest and terraform code
- A ``PipelineContext`` wiring them together

Usage:
    Fixtures are auto-discovered by pytest; request them by name.

    def test_release(ctx, engine):
        ...
"""

from __future__ import annotations

import io
from pathlib import Path

import pytest
import structlog

from cdspine.core.logging import clear_context
from cdspine.manifest import load_manifest
from cdspine.pipeline.context import PipelineContext
from tests._support import CONFIG_IMAGE, RELEASE_IMAGE, TERRAFORM_IMAGE, write_manifest
from tests._support.fake_engine import FakeEngine


# =============================================================================
# Test Markers Configuration
# =============================================================================


def pytest_collection_modifyitems(config: pytest.Config, items: list[pytest.Item]) -> None:
    """Auto-mark tests based on their markers: everything not integration is unit."""
    for item in items:
        if item.get_closest_marker("integration") is None:
            item.add_marker(pytest.mark.unit)


# =============================================================================
# Engine / sinks
# =============================================================================


@pytest.fixture
def engine() -> FakeEngine:
    return FakeEngine()


@pytest.fixture
def out_sink() -> io.BytesIO:
    return io.BytesIO()


@pytest.fixture
def err_sink() -> io.BytesIO:
    return io.BytesIO()


# =============================================================================
# Project
# =============================================================================


@pytest.fixture
def code_dir(tmp_path: Path) -> Path:
    """A project directory with a manifest and an ``infra/`` tree."""
    project = tmp_path / "billing-service"
    (project / "infra").mkdir(parents=True)
    (project / "infra" / "main.tf").write_text('variable "env" {}\n', encoding="utf-8")
    write_manifest(
        project,
        {
            "version": 2,
            "team": "platform",
            "config": {"image": CONFIG_IMAGE, "params": {"account_prefix": "acme"}},
            "release": {"image": RELEASE_IMAGE},
            "terraform": {"image": TERRAFORM_IMAGE},
        },
    )
    return project


@pytest.fixture
def ctx(engine: FakeEngine, code_dir: Path, out_sink: io.BytesIO, err_sink: io.BytesIO) -> PipelineContext:
    return PipelineContext(
        engine=engine,
        code_dir=code_dir,
        manifest=load_manifest(code_dir / "cdflow.yaml"),
        output_sink=out_sink,
        error_sink=err_sink,
        stop_timeout=1,
    )


@pytest.fixture(autouse=True)
def _reset_logging():
    """Undo any ``configure_logging`` call so captured streams don't leak."""
    yield
    structlog.reset_defaults()
    clear_context()

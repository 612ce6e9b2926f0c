"""Tests for the launch data model."""

import io

from cdspine.engine.spec import ExitResult, LaunchSpec, VolumeBinding, unit_name


class TestVolumeBinding:
    def test_read_write(self):
        assert VolumeBinding("vol-1", "/build").to_bind() == "vol-1:/build"

    def test_read_only(self):
        assert VolumeBinding("/src", "/code", read_only=True).to_bind() == "/src:/code:ro"


class TestLaunchSpec:
    """Tests for LaunchSpec rendering."""

    def test_env_list_is_sorted_by_name(self):
        spec = LaunchSpec(image="img", environment={"b": "2", "A": "1", "a": "3"})
        assert spec.env_list() == ["A=1", "a=3", "b=2"]

    def test_env_list_is_independent_of_insertion_order(self):
        first = LaunchSpec(image="img", environment={"X": "1", "Y": "2"})
        second = LaunchSpec(image="img", environment={"Y": "2", "X": "1"})
        assert first.env_list() == second.env_list()

    def test_bind_list(self):
        spec = LaunchSpec(
            image="img",
            bindings=(VolumeBinding("/src", "/code", read_only=True), VolumeBinding("v", "/build")),
        )
        assert spec.bind_list() == ["/src:/code:ro", "v:/build"]

    def test_wants_stdin(self):
        assert not LaunchSpec(image="img").wants_stdin
        assert LaunchSpec(image="img", input_stream=io.BytesIO(b"{}")).wants_stdin

    def test_defaults(self):
        spec = LaunchSpec(image="img")
        assert spec.success_exit_code == 0
        assert spec.init is True
        assert spec.name_prefix == "cdspine"


class TestUnitName:
    def test_names_are_unique_and_prefixed(self):
        first, second = unit_name("cdspine-release"), unit_name("cdspine-release")
        assert first != second
        assert first.startswith("cdspine-release-")


class TestExitResult:
    def test_succeeded(self):
        assert ExitResult(0).succeeded()
        assert not ExitResult(1).succeeded()
        assert ExitResult(3).succeeded(success_exit_code=3)
        assert not ExitResult(0, running=True).succeeded()

"""Tests for the metadata document handoff between stages."""

import io
import json
import tarfile

import pytest

from cdspine.core.errors import EngineError, HandoffDecodeError
from cdspine.engine.spec import LaunchSpec
from cdspine.stage.handoff import (
    BUILD_MOUNT,
    RELEASE_METADATA_FILE,
    RELEASE_METADATA_PATH,
    decode_document,
    pack_file,
    read_document,
    unpack_file,
    write_document,
)

IMAGE = "org/release:1"


def _unit(engine, files):
    engine.script(IMAGE, files=files)
    return engine.create(LaunchSpec(image=IMAGE))


class TestArchives:
    def test_pack_then_unpack(self):
        archive = pack_file("release-metadata.json", b'{"a": "1"}')
        assert unpack_file(io.BytesIO(archive), "/x") == b'{"a": "1"}'

    def test_directory_entry_is_rejected(self):
        buffer = io.BytesIO()
        with tarfile.open(fileobj=buffer, mode="w") as tar:
            info = tarfile.TarInfo("release-metadata.json")
            info.type = tarfile.DIRTYPE
            tar.addfile(info)
        buffer.seek(0)
        with pytest.raises(HandoffDecodeError, match="not a regular file"):
            unpack_file(buffer, "/x")

    def test_garbage_is_not_a_tar(self):
        with pytest.raises(HandoffDecodeError, match="invalid tar archive"):
            unpack_file(io.BytesIO(b"definitely not a tarball" * 40), "/x")


class TestDecodeDocument:
    """Tests for document shape checks."""

    def test_string_values(self):
        assert decode_document(b'{"version": "42"}', "/x") == {"version": "42"}

    def test_empty_object(self):
        assert decode_document(b"{}", "/x") == {}

    def test_invalid_json(self):
        with pytest.raises(HandoffDecodeError, match="invalid JSON"):
            decode_document(b"{not json", "/x")

    def test_top_level_must_be_object(self):
        with pytest.raises(HandoffDecodeError, match="expected a JSON object"):
            decode_document(b'["a"]', "/x")

    def test_non_string_value(self):
        with pytest.raises(HandoffDecodeError, match="'count' is not a string"):
            decode_document(b'{"count": 3}', "/x")

    def test_nested_maps_only_when_allowed(self):
        payload = b'{"Env": {"A": "1"}, "TerraformImage": "tf"}'
        assert decode_document(payload, "/x", nested=True)["Env"] == {"A": "1"}
        with pytest.raises(HandoffDecodeError):
            decode_document(payload, "/x")

    def test_nested_map_values_must_be_strings(self):
        with pytest.raises(HandoffDecodeError, match="string or string map"):
            decode_document(b'{"Env": {"A": 1}}', "/x", nested=True)


class TestReadDocument:
    def test_reads_non_ascii_values(self, engine):
        metadata = {"image": "org/app:42", "notes": "déploiement ✓"}
        unit_id = _unit(engine, {RELEASE_METADATA_PATH: json.dumps(metadata).encode("utf-8")})
        assert read_document(engine, unit_id, RELEASE_METADATA_PATH) == metadata

    def test_missing_document(self, engine):
        unit_id = _unit(engine, {})
        with pytest.raises(HandoffDecodeError, match="could not copy from container") as exc_info:
            read_document(engine, unit_id, RELEASE_METADATA_PATH)
        assert exc_info.value.context.path == RELEASE_METADATA_PATH


class TestWriteDocument:
    """Tests for writing a document onto the build volume."""

    def test_copies_document_into_volume_and_removes_helper(self, engine):
        write_document(
            engine,
            image="org/config:1",
            volume="vol-9",
            name=RELEASE_METADATA_FILE,
            document={"release": {"version": "42", "notes": "ünïcode"}},
        )

        (unit_id, path, name, content) = engine.copied_in[0]
        assert path == BUILD_MOUNT
        assert name == RELEASE_METADATA_FILE
        assert json.loads(content.decode("utf-8")) == {
            "release": {"version": "42", "notes": "ünïcode"}
        }
        helper = engine.units[unit_id]
        assert helper.spec.bind_list() == ["vol-9:/build"]
        assert not helper.started
        assert engine.removed_units == [unit_id]

    def test_helper_removed_when_copy_fails(self, engine):
        engine.fail("copy_to", EngineError("read-only file system"))
        with pytest.raises(EngineError):
            write_document(engine, image="img", volume="v", name="x.json", document={})
        assert engine.removed_units == engine.created_units


class TestSingleEntryArchive:
    def test_second_entry_is_rejected(self):
        buffer = io.BytesIO()
        with tarfile.open(fileobj=buffer, mode="w") as tar:
            for name in ("release-metadata.json", "extra.json"):
                info = tarfile.TarInfo(name)
                info.size = 2
                tar.addfile(info, io.BytesIO(b"{}"))
        buffer.seek(0)
        with pytest.raises(HandoffDecodeError, match="unexpected second entry extra.json"):
            unpack_file(buffer, "/x")

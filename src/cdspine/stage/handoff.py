"""Volume handoff protocol — how stages exchange state.

Two channels, both filesystem based:

* **Shared volume.** The producing stage binds the build volume read-write
  at ``BUILD_MOUNT``; later stages bind the same volume at the same path.
  cd-spine never interprets what the stages leave there; it only binds and
  removes the volume.
* **Metadata document.** A stage writes one JSON object to a fixed path in
  its own filesystem. Before the unit is removed, the document is copied
  out as a one-entry tar archive and decoded.

Document contract: UTF-8 JSON object with string keys and string values,
or, for nested documents, string values and string→string mappings.

Example::

    metadata = read_document(engine, unit_id, RELEASE_METADATA_PATH)
    write_document(
        engine,
        image=config_image,
        volume=build_volume,
        name=RELEASE_METADATA_FILE,
        document={"release": metadata},
    )
"""

from __future__ import annotations

import io
import json
import tarfile
from collections.abc import Mapping
from typing import Any, BinaryIO

from cdspine.core.cleanup import CleanupStack
from cdspine.core.errors import EngineError, HandoffDecodeError
from cdspine.core.logging import get_logger
from cdspine.engine.client import Engine
from cdspine.engine.spec import LaunchSpec, VolumeBinding

logger = get_logger(__name__)

BUILD_MOUNT = "/build"
CODE_MOUNT = "/code"

RELEASE_METADATA_PATH = "/release-metadata.json"
RELEASE_METADATA_FILE = "release-metadata.json"
CONFIG_RESPONSE_PATH = "/config-response.json"


def pack_file(name: str, payload: bytes, mode: int = 0o644) -> bytes:
    """Build a tar archive holding a single regular file."""
    buffer = io.BytesIO()
    with tarfile.open(fileobj=buffer, mode="w") as tar:
        info = tarfile.TarInfo(name=name)
        info.size = len(payload)
        info.mode = mode
        tar.addfile(info, io.BytesIO(payload))
    return buffer.getvalue()


def unpack_file(archive: BinaryIO, path: str) -> bytes:
    """Return the contents of the single regular file in a tar stream."""
    try:
        with tarfile.open(fileobj=archive, mode="r|") as tar:
            member = tar.next()
            if member is None:
                raise HandoffDecodeError(path, "archive is empty")
            if not member.isfile():
                raise HandoffDecodeError(path, f"{member.name} is not a regular file")
            extracted = tar.extractfile(member)
            if extracted is None:
                raise HandoffDecodeError(path, f"could not extract {member.name}")
            payload = extracted.read()
            extra = tar.next()
            if extra is not None:
                raise HandoffDecodeError(path, f"unexpected second entry {extra.name}")
            return payload
    except tarfile.TarError as exc:
        raise HandoffDecodeError(path, f"invalid tar archive: {exc}", cause=exc) from exc


def decode_document(payload: bytes, path: str, *, nested: bool = False) -> dict[str, Any]:
    """Decode a metadata document and check its shape."""
    try:
        document = json.loads(payload.decode("utf-8"))
    except (UnicodeDecodeError, ValueError) as exc:
        raise HandoffDecodeError(path, f"invalid JSON: {exc}", cause=exc) from exc

    if not isinstance(document, dict):
        raise HandoffDecodeError(path, f"expected a JSON object, got {type(document).__name__}")

    for key, value in document.items():
        if isinstance(value, str):
            continue
        if nested and _is_string_map(value):
            continue
        expected = "a string or string map" if nested else "a string"
        raise HandoffDecodeError(path, f"value for {key!r} is not {expected}")
    return document


def _is_string_map(value: Any) -> bool:
    return isinstance(value, dict) and all(isinstance(item, str) for item in value.values())


def read_document(
    engine: Engine, unit_id: str, path: str, *, nested: bool = False
) -> dict[str, Any]:
    """Copy a metadata document out of a (stopped) unit and decode it."""
    try:
        archive = engine.copy_from(unit_id, path)
    except EngineError as exc:
        raise HandoffDecodeError(path, f"could not copy from container: {exc}", cause=exc) from exc
    try:
        document = decode_document(unpack_file(archive, path), path, nested=nested)
    finally:
        archive.close()
    logger.debug("handoff.read", unit=unit_id, path=path, keys=len(document))
    return document


def write_document(
    engine: Engine,
    *,
    image: str,
    volume: str,
    name: str,
    document: Mapping[str, Any],
) -> None:
    """Write ``document`` as ``BUILD_MOUNT/name`` on ``volume``.

    A helper unit with the volume bound is created (never started), the
    file is copied in, and the helper is removed.
    """
    payload = json.dumps(document, ensure_ascii=False, sort_keys=True).encode("utf-8")
    spec = LaunchSpec(
        image=image,
        bindings=(VolumeBinding(volume, BUILD_MOUNT),),
        name_prefix="cdspine-handoff",
        init=False,
    )
    with CleanupStack() as cleanup:
        unit_id = engine.create(spec)
        cleanup.push(engine.remove, unit_id)
        engine.copy_to(unit_id, BUILD_MOUNT, io.BytesIO(pack_file(name, payload)))
    logger.info("handoff.written", volume=volume, path=f"{BUILD_MOUNT}/{name}")

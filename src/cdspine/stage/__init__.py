"""Stage layer: run one unit per stage and hand state between stages."""

from cdspine.stage.handoff import (
    BUILD_MOUNT,
    CODE_MOUNT,
    CONFIG_RESPONSE_PATH,
    RELEASE_METADATA_FILE,
    RELEASE_METADATA_PATH,
    decode_document,
    pack_file,
    read_document,
    unpack_file,
    write_document,
)
from cdspine.stage.runner import StageResult, StageRunner

__all__ = [
    "BUILD_MOUNT",
    "CODE_MOUNT",
    "CONFIG_RESPONSE_PATH",
    "RELEASE_METADATA_FILE",
    "RELEASE_METADATA_PATH",
    "StageResult",
    "StageRunner",
    "decode_document",
    "pack_file",
    "read_document",
    "unpack_file",
    "write_document",
]

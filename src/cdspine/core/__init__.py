"""Core primitives shared by the engine, stage and pipeline layers."""

from cdspine.core.cleanup import CleanupStack
from cdspine.core.errors import (
    CancellationError,
    CdSpineError,
    CleanupError,
    ConfigError,
    EngineError,
    ErrorCategory,
    ErrorContext,
    HandoffDecodeError,
    StageFailedError,
    StreamError,
    UnitStillRunningError,
)

__all__ = [
    "CancellationError",
    "CdSpineError",
    "CleanupError",
    "CleanupStack",
    "ConfigError",
    "EngineError",
    "ErrorCategory",
    "ErrorContext",
    "HandoffDecodeError",
    "StageFailedError",
    "StreamError",
    "UnitStillRunningError",
]

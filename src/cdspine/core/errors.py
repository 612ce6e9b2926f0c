"""
Structured error types for cd-spine.

Every failure raised by the engine client, the stage runner and the pipeline
commands is a ``CdSpineError``. Each error carries:

- **Category:** what kind of failure (engine, stream, stage, handoff, ...)
- **Context:** stage, unit, image and path metadata for logging
- **Cause:** the chained underlying exception

Architecture:
    ::

        ┌──────────────────────────────────────────────────────────────┐
        │                        CdSpineError                           │
        │               (category, context, cause)                      │
        ├──────────────────────────────────────────────────────────────┤
        │  EngineError         StageFailedError     HandoffDecodeError │
        │  (ENGINE)            (STAGE, exit_code)   (HANDOFF, path)    │
        │       │                                                      │
        │  StreamError         CancellationError    CleanupError       │
        │  (STREAM)            (CANCELLED)          (primary+failures) │
        │                                                              │
        │  ConfigError         UnitStillRunningError                   │
        │  (CONFIG)            (INTERNAL)                              │
        └──────────────────────────────────────────────────────────────┘

Nothing in cd-spine retries automatically. A failed stage aborts the
pipeline and re-running the command is the recovery path.

Examples:
    >>> error = StageFailedError("release", exit_code=3)
    >>> error.exit_code
    3
    >>> error.category.value
    'STAGE'

    Combining a primary failure with a teardown failure:

    >>> combined = CleanupError(StageFailedError("plan", 1), [EngineError("volume busy")])
    >>> "volume busy" in str(combined)
    True

Tags:
    error-handling, exception-hierarchy, cleanup, cd-spine
"""

from __future__ import annotations

from collections.abc import Sequence
from dataclasses import dataclass, field
from enum import Enum
from typing import Any


class ErrorCategory(str, Enum):
    """Standard error categories for classification and reporting."""

    ENGINE = "ENGINE"  # Container engine API / CLI failure
    STREAM = "STREAM"  # I/O fault while multiplexing unit stdio
    STAGE = "STAGE"  # Unit exited with an unsuccessful status
    CANCELLED = "CANCELLED"  # External cancellation
    HANDOFF = "HANDOFF"  # Metadata document missing or malformed
    CLEANUP = "CLEANUP"  # Deferred teardown failed
    CONFIG = "CONFIG"  # Settings or manifest invalid
    INTERNAL = "INTERNAL"  # Internal-consistency fault


@dataclass
class ErrorContext:
    """Structured metadata attached to an error.

    Known fields are promoted to attributes; anything else lands in
    ``metadata``.
    """

    stage: str | None = None
    unit_id: str | None = None
    image: str | None = None
    path: str | None = None
    metadata: dict[str, Any] = field(default_factory=dict)

    def to_dict(self) -> dict[str, Any]:
        result: dict[str, Any] = {}
        for key in ("stage", "unit_id", "image", "path"):
            value = getattr(self, key)
            if value is not None:
                result[key] = value
        if self.metadata:
            result["metadata"] = dict(self.metadata)
        return result


class CdSpineError(Exception):
    """Base exception for all cd-spine errors.

    Subclasses set ``default_category`` to classify themselves. Wrapping
    code passes ``cause=`` so the original exception is preserved both on
    the ``cause`` attribute and as ``__cause__`` for tracebacks.

    Example:
        >>> error = CdSpineError("something failed").with_context(stage="config")
        >>> error.context.stage
        'config'
    """

    default_category: ErrorCategory = ErrorCategory.INTERNAL

    def __init__(
        self,
        message: str,
        *,
        category: ErrorCategory | None = None,
        context: ErrorContext | None = None,
        cause: BaseException | None = None,
    ):
        super().__init__(message)
        self.message = message
        self.category = category or self.default_category
        self.context = context or ErrorContext()
        self.cause = cause

        if cause is not None:
            self.__cause__ = cause

    def with_context(self, **kwargs: Any) -> CdSpineError:
        """Add context to this error (fluent API)."""
        for key, value in kwargs.items():
            if key != "metadata" and hasattr(self.context, key):
                setattr(self.context, key, value)
            else:
                self.context.metadata[key] = value
        return self

    def to_dict(self) -> dict[str, Any]:
        """Serialize for structured logging."""
        result: dict[str, Any] = {
            "error_type": type(self).__name__,
            "message": self.message,
            "category": self.category.value,
        }
        context = self.context.to_dict()
        if context:
            result["context"] = context
        if self.cause is not None:
            result["cause"] = f"{type(self.cause).__name__}: {self.cause}"
        return result

    def __repr__(self) -> str:
        return f"{type(self).__name__}({self.message!r}, category={self.category.value})"


# =============================================================================
# ENGINE / STREAM ERRORS
# =============================================================================


class EngineError(CdSpineError):
    """Container engine API or CLI failure. Fatal to the current stage."""

    default_category = ErrorCategory.ENGINE


class StreamError(EngineError):
    """I/O fault while pumping a unit's stdin/stdout/stderr."""

    default_category = ErrorCategory.STREAM


class CancellationError(CdSpineError):
    """The invocation was cancelled from outside (signal, shutdown)."""

    default_category = ErrorCategory.CANCELLED

    def __init__(self, message: str = "operation cancelled", **kwargs: Any):
        super().__init__(message, **kwargs)


# =============================================================================
# STAGE ERRORS
# =============================================================================


class StageFailedError(CdSpineError):
    """A unit exited with a status other than its declared success status."""

    default_category = ErrorCategory.STAGE

    def __init__(self, stage: str, exit_code: int, *, unit_id: str | None = None, **kwargs: Any):
        self.stage = stage
        self.exit_code = exit_code
        target = f"container {unit_id}" if unit_id else stage
        super().__init__(
            f"{stage}: {target} exited with unsuccessful exit code {exit_code}",
            **kwargs,
        )
        self.context.stage = stage
        self.context.unit_id = unit_id


class UnitStillRunningError(CdSpineError):
    """A unit was still running after its output stream completed."""

    default_category = ErrorCategory.INTERNAL


class HandoffDecodeError(CdSpineError):
    """A metadata document could not be copied out or decoded."""

    default_category = ErrorCategory.HANDOFF

    def __init__(self, path: str, reason: str, **kwargs: Any):
        self.path = path
        self.reason = reason
        super().__init__(f"could not read {path}: {reason}", **kwargs)
        self.context.path = path


# =============================================================================
# CLEANUP / CONFIG ERRORS
# =============================================================================


class CleanupError(CdSpineError):
    """One or more teardown actions failed.

    When a primary error was already propagating, both are reported: the
    message starts with the primary error and appends every teardown
    failure.
    """

    default_category = ErrorCategory.CLEANUP

    def __init__(
        self,
        primary: BaseException | None,
        failures: Sequence[BaseException],
    ):
        self.primary = primary
        self.failures = list(failures)
        parts = [str(failure) for failure in self.failures]
        if primary is not None:
            message = f"{primary}, also " + ", also ".join(parts)
        else:
            message = "cleanup failed: " + ", also ".join(parts)
        cause = primary
        if cause is None and self.failures:
            cause = self.failures[0]
        super().__init__(message, cause=cause)


class ConfigError(CdSpineError):
    """Invalid settings or manifest."""

    default_category = ErrorCategory.CONFIG


__all__ = [
    "CancellationError",
    "CdSpineError",
    "CleanupError",
    "ConfigError",
    "EngineError",
    "ErrorCategory",
    "ErrorContext",
    "HandoffDecodeError",
    "StageFailedError",
    "StreamError",
    "UnitStillRunningError",
]

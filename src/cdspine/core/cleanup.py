"""Deferred teardown with error aggregation.

``CleanupStack`` collects teardown actions (remove a unit, remove a volume)
and runs them in reverse registration order when the block exits. Every
action runs even when an earlier one fails, and no failure is dropped:
teardown failures are combined with the error that was already propagating
into a single ``CleanupError``.

Example::

    with CleanupStack() as cleanup:
        volume = engine.create_volume()
        cleanup.push(engine.remove_volume, volume)
        ...  # any failure here still removes the volume
"""

from __future__ import annotations

from collections.abc import Callable
from types import TracebackType
from typing import Any

from cdspine.core.errors import CleanupError
from cdspine.core.logging import get_logger

logger = get_logger(__name__)


class CleanupStack:
    """Run registered teardown actions in reverse order, aggregating failures."""

    def __init__(self) -> None:
        self._actions: list[tuple[Callable[..., Any], tuple[Any, ...], dict[str, Any]]] = []

    def push(self, callback: Callable[..., Any], /, *args: Any, **kwargs: Any) -> None:
        """Register ``callback(*args, **kwargs)`` to run on exit."""
        self._actions.append((callback, args, kwargs))

    def __len__(self) -> int:
        return len(self._actions)

    def __enter__(self) -> CleanupStack:
        return self

    def __exit__(
        self,
        exc_type: type[BaseException] | None,
        exc: BaseException | None,
        tb: TracebackType | None,
    ) -> bool:
        failures = self._unwind()
        if failures:
            raise CleanupError(exc, failures) from exc
        return False

    def close(self) -> None:
        """Run all pending actions now. Raises ``CleanupError`` on failure."""
        failures = self._unwind()
        if failures:
            raise CleanupError(None, failures)

    def pop_all(self) -> CleanupStack:
        """Move all pending actions to a new stack and return it.

        Leaves this stack empty, so leaving its block runs nothing.
        """
        stack = CleanupStack()
        stack._actions, self._actions = self._actions, []
        return stack

    def _unwind(self) -> list[Exception]:
        failures: list[Exception] = []
        while self._actions:
            callback, args, kwargs = self._actions.pop()
            try:
                callback(*args, **kwargs)
            except Exception as exc:
                logger.warning(
                    "cleanup.failed",
                    action=getattr(callback, "__qualname__", repr(callback)),
                    error=str(exc),
                )
                failures.append(exc)
        return failures

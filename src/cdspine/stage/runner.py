"""Stage runner — one pipeline stage, one unit.

.. code-block:: text

    create ──▶ attach + stream + start ──▶ inspect ──▶ exit == success?
       │                                                  │ no → StageFailedError
       │                                                  │ yes
       │                                          before_remove(unit_id)
       │                                                  │
       └────────────── remove (always) ◀──────────────────┘

Removal is registered on a ``CleanupStack`` immediately after creation, so
every ``create`` is paired with exactly one ``remove`` whatever happens in
between. After a cancellation a best-effort ``stop`` runs before the
removal. Teardown failures are combined with the stage's own failure.
"""

from __future__ import annotations

import threading
from collections.abc import Callable
from dataclasses import dataclass
from typing import Any, BinaryIO

from cdspine.core.cleanup import CleanupStack
from cdspine.core.errors import CancellationError, StageFailedError, UnitStillRunningError
from cdspine.core.logging import get_logger
from cdspine.engine import multiplex
from cdspine.engine.client import Engine
from cdspine.engine.spec import ExitResult, LaunchSpec

logger = get_logger(__name__)

BeforeRemove = Callable[[str], Any]


@dataclass(frozen=True)
class StageResult:
    """Outcome of a successful stage: exit state plus the hook's output."""

    exit: ExitResult
    output: Any = None


class StageRunner:
    """Runs ``LaunchSpec``s to completion against an engine.

    Parameters
    ----------
    engine
        The engine client, shared by every stage of the invocation.
    cancel
        Event set on external cancellation (signal handler, shutdown).
    stop_timeout
        Seconds given to a unit to stop after a cancellation.
    """

    def __init__(
        self,
        engine: Engine,
        *,
        cancel: threading.Event | None = None,
        stop_timeout: float = 10,
    ) -> None:
        self.engine = engine
        self.cancel = cancel
        self.stop_timeout = stop_timeout

    def run(
        self,
        spec: LaunchSpec,
        *,
        output_sink: BinaryIO,
        error_sink: BinaryIO,
        before_remove: BeforeRemove | None = None,
        started: Callable[[str], None] | None = None,
    ) -> StageResult:
        """Run ``spec`` and return its result.

        Raises
        ------
        StageFailedError
            Exit status differs from ``spec.success_exit_code``.
        CancellationError
            The cancel event fired while the unit was running.
        CleanupError
            Removing the unit failed (combined with any earlier failure).
        """
        if self.cancel is not None and self.cancel.is_set():
            raise CancellationError(f"cancelled before starting {spec.name_prefix}")

        with CleanupStack() as cleanup:
            unit_id = self.engine.create(spec)
            cleanup.push(self.engine.remove, unit_id, force=True)
            logger.info("stage.started", stage=spec.name_prefix, unit=unit_id, image=spec.image)

            def start() -> None:
                self.engine.start(unit_id)
                if started is not None:
                    started(unit_id)

            transport = self.engine.attach(unit_id, spec.wants_stdin)
            try:
                multiplex.stream(
                    transport,
                    input_stream=spec.input_stream,
                    output_sink=output_sink,
                    error_sink=error_sink,
                    start=start,
                    cancel=self.cancel,
                )
            except CancellationError:
                cleanup.push(self.engine.stop, unit_id, self.stop_timeout)
                raise

            result = self.engine.inspect(unit_id)
            if result.running:
                raise UnitStillRunningError(
                    f"unexpected container still running after output closed: {unit_id}"
                ).with_context(stage=spec.name_prefix, unit_id=unit_id)

            if result.exit_code != spec.success_exit_code:
                raise StageFailedError(spec.name_prefix, result.exit_code, unit_id=unit_id)

            output = None
            if before_remove is not None:
                try:
                    output = before_remove(unit_id)
                except Exception as exc:
                    logger.error("stage.before_remove_failed", unit=unit_id, error=str(exc))
                    raise

            logger.info("stage.finished", stage=spec.name_prefix, unit=unit_id, exit_code=result.exit_code)
            return StageResult(exit=result, output=output)

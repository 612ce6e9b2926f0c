"""Stream multiplexer — pump a unit's stdio while it runs.

``stream()`` wires two worker threads onto a transport before the unit is
started:

.. code-block:: text

    input_stream ──[input worker]──▶ transport ──▶ unit stdin
                                         │
    output_sink ◀──┐                     │
                   ├─[output worker]◀── frames()
    error_sink  ◀──┘

    start() is called only after both workers are running, so no early
    output is lost. The caller blocks until the output worker finishes
    or the cancel event fires.

Both workers are joined and the transport is closed on every exit path.
"""

from __future__ import annotations

import threading
from collections.abc import Callable
from typing import BinaryIO

from cdspine.core.errors import CancellationError, StreamError
from cdspine.core.logging import get_logger
from cdspine.engine.transport import CHUNK_SIZE, StreamKind, Transport

logger = get_logger(__name__)

POLL_INTERVAL = 0.1


def stream(
    transport: Transport,
    *,
    output_sink: BinaryIO,
    error_sink: BinaryIO,
    start: Callable[[], None],
    input_stream: BinaryIO | None = None,
    cancel: threading.Event | None = None,
    poll_interval: float = POLL_INTERVAL,
) -> None:
    """Multiplex ``transport`` into the two sinks around a call to ``start``.

    Raises
    ------
    StreamError
        The output side faulted while demultiplexing.
    CancellationError
        ``cancel`` was set before the start or before the output side finished.
    """
    done = threading.Event()
    faults: list[BaseException] = []
    workers: list[threading.Thread] = []

    def cancelled() -> bool:
        return cancel is not None and cancel.is_set()

    def pump_input(source: BinaryIO) -> None:
        try:
            while True:
                chunk = source.read(CHUNK_SIZE)
                if not chunk:
                    break
                transport.write(chunk)
        except (OSError, ValueError) as exc:
            # The unit stopped reading, or the transport was torn down.
            logger.debug("stream.input_closed", error=str(exc))
        finally:
            try:
                transport.close_write()
            except (OSError, ValueError) as exc:
                logger.debug("stream.close_write_failed", error=str(exc))
            source.close()

    def pump_output() -> None:
        try:
            for kind, chunk in transport.frames():
                sink = output_sink if kind is StreamKind.STDOUT else error_sink
                sink.write(chunk)
                sink.flush()
        except Exception as exc:
            faults.append(exc)
        finally:
            done.set()

    if input_stream is not None:
        workers.append(
            threading.Thread(
                target=pump_input, args=(input_stream,), name="cdspine-stdin", daemon=True
            )
        )
    workers.append(threading.Thread(target=pump_output, name="cdspine-stdout", daemon=True))

    try:
        for worker in workers:
            worker.start()

        if cancelled():
            raise CancellationError("cancelled before starting unit")
        start()

        while not done.wait(poll_interval):
            if cancelled():
                break
        if cancelled():
            logger.info("stream.cancelled")
            raise CancellationError("cancelled while streaming unit output")
    finally:
        transport.close()
        for worker in workers:
            worker.join()

    if faults:
        raise StreamError(f"error streaming unit output: {faults[0]}", cause=faults[0])

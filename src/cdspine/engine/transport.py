"""Duplex stdio transport between cd-spine and a running unit.

A transport carries raw input towards the unit and framed output back:
``frames()`` yields ``(StreamKind, chunk)`` pairs so a single reader can
demultiplex standard output from error output.

``ProcessTransport`` implements the protocol on top of a ``docker`` CLI
child process (``docker start --attach`` or ``docker exec``). The child is
spawned by ``launch()``; readers that were wired up earlier simply block
until the launch happens, or until the transport is closed.
"""

from __future__ import annotations

import os
import selectors
import subprocess
import threading
from collections.abc import Iterator, Sequence
from enum import Enum
from typing import Protocol, runtime_checkable

from cdspine.core.errors import EngineError
from cdspine.core.logging import get_logger

logger = get_logger(__name__)

CHUNK_SIZE = 32 * 1024


class StreamKind(str, Enum):
    """Which output stream a frame belongs to."""

    STDOUT = "stdout"
    STDERR = "stderr"


@runtime_checkable
class Transport(Protocol):
    """Bidirectional channel to a unit's stdio."""

    def write(self, data: bytes) -> None:
        """Send raw bytes to the unit's stdin."""
        ...

    def close_write(self) -> None:
        """Signal end of input."""
        ...

    def frames(self) -> Iterator[tuple[StreamKind, bytes]]:
        """Yield output frames until the unit closes its output."""
        ...

    def close(self) -> None:
        """Tear the channel down. Idempotent; unblocks pending readers."""
        ...


class ProcessTransport:
    """Transport backed by a ``docker`` CLI child process.

    Parameters
    ----------
    argv
        Full command line of the child (``[docker, start, --attach, ...]``).
    stdin
        Open a stdin pipe to the child. Without it the child's stdin is
        ``/dev/null``.
    """

    def __init__(self, argv: Sequence[str], *, stdin: bool = False) -> None:
        self.argv = list(argv)
        self.want_stdin = stdin
        self._process: subprocess.Popen[bytes] | None = None
        self._ready = threading.Event()
        self._closed = False
        self._drained = False
        self._reading = False
        self._lock = threading.Lock()

    @property
    def launched(self) -> bool:
        return self._process is not None

    def launch(self) -> None:
        """Spawn the child process."""
        with self._lock:
            if self._closed:
                raise EngineError(f"transport closed before launch: {' '.join(self.argv)}")
            if self._process is not None:
                return
            logger.debug("transport.launch", cmd=" ".join(self.argv))
            try:
                self._process = subprocess.Popen(
                    self.argv,
                    stdin=subprocess.PIPE if self.want_stdin else subprocess.DEVNULL,
                    stdout=subprocess.PIPE,
                    stderr=subprocess.PIPE,
                )
            except OSError as exc:
                raise EngineError(f"could not run {self.argv[0]}: {exc}", cause=exc) from exc
            finally:
                self._ready.set()

    def _wait_launched(self) -> subprocess.Popen[bytes] | None:
        self._ready.wait()
        return self._process

    def write(self, data: bytes) -> None:
        process = self._wait_launched()
        if process is None or process.stdin is None:
            raise BrokenPipeError("transport has no input channel")
        process.stdin.write(data)
        process.stdin.flush()

    def close_write(self) -> None:
        process = self._wait_launched()
        if process is not None and process.stdin is not None and not process.stdin.closed:
            process.stdin.close()

    def frames(self) -> Iterator[tuple[StreamKind, bytes]]:
        process = self._wait_launched()
        if process is None:
            return
        stdout, stderr = process.stdout, process.stderr
        if stdout is None or stderr is None:
            raise EngineError(f"transport has no output pipes: {' '.join(self.argv)}")
        with self._lock:
            if stdout.closed:
                return
            self._reading = True
        try:
            with selectors.DefaultSelector() as selector:
                selector.register(stdout, selectors.EVENT_READ, StreamKind.STDOUT)
                selector.register(stderr, selectors.EVENT_READ, StreamKind.STDERR)
                while selector.get_map():
                    for key, _ in selector.select():
                        chunk = os.read(key.fd, CHUNK_SIZE)
                        if not chunk:
                            selector.unregister(key.fileobj)
                            continue
                        yield key.data, chunk
            self._drained = True
        finally:
            with self._lock:
                self._reading = False
                stdout.close()
                stderr.close()

    def wait(self) -> int:
        """Wait for the child to exit and return its status."""
        process = self._wait_launched()
        if process is None:
            raise EngineError(f"transport was never launched: {' '.join(self.argv)}")
        return process.wait()

    def close(self) -> None:
        with self._lock:
            self._closed = True
            process = self._process
        self._ready.set()
        if process is None:
            return
        if self._drained:
            # Output reached EOF: the child is exiting on its own.
            process.wait()
        elif process.poll() is None:
            logger.debug("transport.terminate", pid=process.pid)
            process.terminate()
            try:
                process.wait(timeout=5)
            except subprocess.TimeoutExpired:
                process.kill()
                process.wait()
        if process.stdin is not None and not process.stdin.closed:
            try:
                process.stdin.close()
            except BrokenPipeError:
                logger.debug("transport.stdin_already_closed", pid=process.pid)
        # An active reader closes the output pipes itself when it finishes.
        with self._lock:
            if not self._reading:
                for pipe in (process.stdout, process.stderr):
                    if pipe is not None and not pipe.closed:
                        pipe.close()

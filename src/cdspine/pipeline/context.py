"""Per-invocation context shared by the pipeline commands."""

from __future__ import annotations

import threading
from dataclasses import dataclass, field
from pathlib import Path
from typing import BinaryIO

from cdspine.engine.client import Engine
from cdspine.manifest import Manifest
from cdspine.stage.runner import StageRunner


@dataclass
class PipelineContext:
    """Everything a command needs: engine, code, manifest and output sinks."""

    engine: Engine
    code_dir: Path
    manifest: Manifest
    output_sink: BinaryIO
    error_sink: BinaryIO
    cancel: threading.Event = field(default_factory=threading.Event)
    stop_timeout: float = 10

    def runner(self) -> StageRunner:
        return StageRunner(self.engine, cancel=self.cancel, stop_timeout=self.stop_timeout)

    def announce(self, headline: str, command: list[str] | None = None) -> None:
        """Write a progress headline (and the command about to run) to the error sink."""
        text = f"\n{headline}\n"
        if command:
            text += f"$ {' '.join(command)}\n"
        self.error_sink.write(text.encode("utf-8"))
        self.error_sink.flush()

"""Container engine layer: launch specs, stdio transport, multiplexer, client."""

from cdspine.engine.client import DockerClient, Engine
from cdspine.engine.multiplex import stream
from cdspine.engine.spec import ExitResult, LaunchSpec, VolumeBinding, unit_name
from cdspine.engine.transport import ProcessTransport, StreamKind, Transport

__all__ = [
    "DockerClient",
    "Engine",
    "ExitResult",
    "LaunchSpec",
    "ProcessTransport",
    "StreamKind",
    "Transport",
    "VolumeBinding",
    "stream",
    "unit_name",
]
